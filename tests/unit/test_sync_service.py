import asyncio

import httpx
import pytest

from nanochat.core.exceptions import MalformedTimestamp, NetworkUnavailable, NotFound, RemoteAPIError, StaleReconciliation
from nanochat.services.decoder import EntityKind
from nanochat.services.pending import PendingState

from conftest import assistant_payload, catalog_payload, file_payload, member_payload, project_payload


def test_refresh_conversations_and_messages(server, sync_factory):
    server.add_conversation("c1")
    server.add_conversation("c2", pinned=True)
    server.add_message("m1", "c1")
    server.add_message("m2", "c1", role="assistant", content="reply")

    async def scenario():
        async with sync_factory() as sync:
            result = await sync.refresh_conversations()
            assert result.ok
            assert sorted(result.report.upserted) == ["c1", "c2"]
            assert [c.id for c in await sync.list_conversations()] == ["c2", "c1"]

            await sync.refresh_messages("c1")
            assert [m.id for m in await sync.get_messages("c1")] == ["m1", "m2"]

            # Server-side deletion is mirrored by the next full refresh
            del server.conversations["c2"]
            result = await sync.refresh_conversations()
            assert result.report.deleted == ["c2"]

    asyncio.run(scenario())


def test_refresh_keeps_undecodable_items(server, sync_factory):
    server.add_conversation("c1")
    server.add_conversation("c2")

    async def scenario():
        async with sync_factory() as sync:
            await sync.refresh_conversations()
            server.conversations["c2"]["createdAt"] = "not a date"
            result = await sync.refresh_conversations()
            assert not result.ok
            assert result.failures[0].entity_id == "c2"
            assert result.report.deleted == []
            assert (await sync.get_conversation("c2")).id == "c2"

    asyncio.run(scenario())


def test_message_with_bad_timestamp_is_never_stored(server, sync_factory):
    server.add_conversation("c1")
    server.add_message("m1", "c1")
    server.add_message("m-bad", "c1", role="assistant", content="partial", createdAt="not-a-date")

    async def scenario():
        async with sync_factory() as sync:
            await sync.refresh_conversations()
            result = await sync.refresh_messages("c1")
            assert result.report.upserted == ["m1"]
            assert len(result.failures) == 1
            failure = result.failures[0]
            assert failure.entity_id == "m-bad"
            assert isinstance(failure.error, MalformedTimestamp)
            assert failure.error.field == "createdAt"

            assert await sync.store.get_message("m-bad") is None
            assert [m.id for m in await sync.get_messages("c1")] == ["m1"]
            assert (await sync.store.counts())["messages"] == 1

    asyncio.run(scenario())


def test_search_refresh_is_a_page(server, sync_factory):
    server.add_conversation("c1", title="Travel")
    server.add_conversation("c2", title="Work")

    async def scenario():
        async with sync_factory() as sync:
            await sync.refresh_conversations()
            result = await sync.refresh_conversations(search="travel")
            assert result.report.upserted == ["c1"]
            assert result.report.deleted == []
            assert len(await sync.list_conversations()) == 2

    asyncio.run(scenario())


def test_messages_not_found_prunes_conversation(server, sync_factory):
    server.add_conversation("c1")
    server.add_message("m1", "c1")

    async def scenario():
        async with sync_factory() as sync:
            await sync.refresh_conversations()
            await sync.refresh_messages("c1")
            del server.conversations["c1"]
            with pytest.raises(NotFound):
                await sync.refresh_messages("c1")
            with pytest.raises(NotFound):
                await sync.get_conversation("c1")
            assert await sync.get_messages("c1") == []

    asyncio.run(scenario())


def test_network_failure_leaves_cache_untouched(server, sync_factory):
    server.add_conversation("c1")

    async def scenario():
        async with sync_factory() as sync:
            await sync.refresh_conversations()
            server.fail("GET", "/api/db/conversations", httpx.ConnectError("offline"))
            with pytest.raises(NetworkUnavailable):
                await sync.refresh_conversations()
            assert [c.id for c in await sync.list_conversations()] == ["c1"]

    asyncio.run(scenario())


def test_cancelled_refresh_is_dropped(server, sync_factory, monkeypatch):
    server.add_conversation("c1")

    async def scenario():
        async with sync_factory() as sync:
            original = sync.api.get_conversations

            async def slow_fetch(**kwargs):
                result = await original(**kwargs)
                sync.cancel_refresh(EntityKind.CONVERSATION)
                return result

            monkeypatch.setattr(sync.api, "get_conversations", slow_fetch)
            with pytest.raises(StaleReconciliation):
                await sync.refresh_conversations()
            assert await sync.list_conversations() == []

    asyncio.run(scenario())


def test_newer_refresh_supersedes_older(server, sync_factory, monkeypatch):
    server.add_conversation("c1")

    async def scenario():
        async with sync_factory() as sync:
            original = sync.api.get_conversations
            release = asyncio.Event()

            async def gated_fetch(**kwargs):
                result = await original(**kwargs)
                await release.wait()
                return result

            monkeypatch.setattr(sync.api, "get_conversations", gated_fetch)
            older = asyncio.create_task(sync.refresh_conversations())
            await asyncio.sleep(0.05)
            monkeypatch.setattr(sync.api, "get_conversations", original)
            newer = await sync.refresh_conversations()
            release.set()

            with pytest.raises(StaleReconciliation):
                await older
            assert newer.report.upserted == ["c1"]

    asyncio.run(scenario())


def test_toggle_pinned_confirms_with_server(server, sync_factory):
    server.add_conversation("c1")

    async def scenario():
        async with sync_factory() as sync:
            await sync.refresh_conversations()
            record = await sync.toggle_pinned("c1")
            assert record.pinned is True
            assert server.conversations["c1"]["pinned"] is True
            assert server.bodies("POST", "/api/db/conversations")[-1]["action"] == "togglePin"

    asyncio.run(scenario())


def test_failed_optimistic_writes_are_restored(server, sync_factory):
    server.add_conversation("c1", title="Original")
    server.add_message("m1", "c1")

    async def scenario():
        async with sync_factory() as sync:
            await sync.refresh_conversations()
            await sync.refresh_messages("c1")
            server.fail("POST", "/api/db/conversations", 500)
            server.fail("POST", "/api/db/messages", 503)

            with pytest.raises(RemoteAPIError):
                await sync.toggle_pinned("c1")
            with pytest.raises(RemoteAPIError):
                await sync.rename_conversation("c1", "Renamed")
            with pytest.raises(RemoteAPIError):
                await sync.set_starred("m1", True)

            conversation = await sync.get_conversation("c1")
            assert conversation.pinned is False
            assert conversation.title == "Original"
            assert (await sync.get_messages("c1"))[0].starred is False

    asyncio.run(scenario())


def test_set_starred_and_starred_list(server, sync_factory):
    server.add_conversation("c1")
    server.add_message("m1", "c1")

    async def scenario():
        async with sync_factory() as sync:
            await sync.refresh_messages("c1")
            record = await sync.set_starred("m1", True)
            assert record.starred is True
            assert [m.id for m in await sync.list_starred_messages()] == ["m1"]
            with pytest.raises(NotFound):
                await sync.set_starred("missing", True)

    asyncio.run(scenario())


def test_delete_cascade_prunes_even_when_remote_is_gone(server, sync_factory):
    server.add_conversation("c1")
    server.add_message("m1", "c1")

    async def scenario():
        async with sync_factory() as sync:
            await sync.refresh_conversations()
            await sync.refresh_messages("c1")
            del server.conversations["c1"]
            removed = await sync.delete_cascade("c1")
            assert removed == {"conversations": 1, "messages": 1, "attachments": 0}
            assert await sync.list_conversations() == []

    asyncio.run(scenario())


def test_send_message_confirms_placeholder_by_echo(server, sync_factory):
    server.add_conversation("c1")
    server.add_message("m0", "c1", content="earlier")

    async def scenario():
        async with sync_factory() as sync:
            await sync.refresh_conversations()
            op = await sync.send_message("c1", "Hi there", "openai/gpt-4o")
            assert op.state is PendingState.CONFIRMED
            assert op.server_id is not None

            listed = await sync.get_messages("c1")
            assert [m.role for m in listed] == ["user", "user", "assistant"]
            assert listed[1].id == op.server_id
            assert listed[1].content == "Hi there"
            assert listed[-1].content == "Hello from the assistant"
            assert not any(m.local_only for m in listed)
            assert (await sync.get_conversation("c1")).generating is False
            assert len(sync.pending) == 0

            body = server.bodies("POST", "/api/generate-message")[0]
            assert body["client_message_id"] == op.correlation_id

    asyncio.run(scenario())


def test_send_message_pairs_oldest_placeholder_without_echo(server, sync_factory):
    server.add_conversation("c1")
    server.echo_client_id = False

    async def scenario():
        async with sync_factory() as sync:
            await sync.refresh_conversations()
            op = await sync.send_message("c1", "Hello", "openai/gpt-4o")
            assert op.state is PendingState.CONFIRMED
            listed = await sync.get_messages("c1")
            assert [m.id for m in listed] == [op.server_id, listed[1].id]
            assert listed[1].role == "assistant"

    asyncio.run(scenario())


def test_send_message_ignores_history_without_echo(server, sync_factory):
    server.add_conversation("c1")
    server.add_message("m-old", "c1", content="Hello")
    server.add_message("m-old-a", "c1", role="assistant", content="Earlier reply")
    server.echo_client_id = False

    async def scenario():
        async with sync_factory() as sync:
            await sync.refresh_conversations()
            await sync.refresh_messages("c1")
            op = await sync.send_message("c1", "Hello", "openai/gpt-4o")
            assert op.state is PendingState.CONFIRMED
            assert op.server_id not in ("m-old", "m-old-a")

            listed = await sync.get_messages("c1")
            ids = [m.id for m in listed]
            assert ids[:2] == ["m-old", "m-old-a"]
            assert ids[2] == op.server_id
            assert listed[3].role == "assistant"
            assert listed[3].content == "Hello from the assistant"
            assert not any(m.local_only for m in listed)

    asyncio.run(scenario())


def test_send_message_polls_until_generation_finishes(server, sync_factory):
    server.add_conversation("c1")
    server.generating_polls = 2

    async def scenario():
        async with sync_factory() as sync:
            await sync.refresh_conversations()
            op = await sync.send_message("c1", "Long question", "openai/gpt-4o")
            assert op.state is PendingState.CONFIRMED
            listed = await sync.get_messages("c1")
            assert listed[-1].role == "assistant"
            assert listed[-1].content == "Hello from the assistant"
            assert (await sync.get_conversation("c1")).generating is False
            assert len(server.bodies("GET", "/api/db/messages")) == 4

    asyncio.run(scenario())


def test_send_message_failure_removes_placeholder(server, sync_factory):
    server.add_conversation("c1")
    server.fail("POST", "/api/generate-message", 500)

    async def scenario():
        async with sync_factory() as sync:
            await sync.refresh_conversations()
            op = await sync.send_message("c1", "Hello", "openai/gpt-4o")
            assert op.state is PendingState.FAILED
            assert isinstance(op.error, RemoteAPIError)
            assert await sync.get_messages("c1") == []
            assert (await sync.get_conversation("c1")).generating is False

    asyncio.run(scenario())


def test_send_message_without_confirmation_fails(server, sync_factory):
    server.add_conversation("c1")
    # Reply never completes within the poll budget
    server.generating_polls = 50

    async def scenario():
        async with sync_factory() as sync:
            await sync.refresh_conversations()
            server.echo_client_id = False
            server.fail("GET", "/api/db/messages", 502)
            op = await sync.send_message("c1", "Hello", "openai/gpt-4o")
            assert op.state is PendingState.FAILED
            assert await sync.get_messages("c1") == []

    asyncio.run(scenario())


def test_send_message_starts_new_conversation(server, sync_factory):
    async def scenario():
        async with sync_factory() as sync:
            op = await sync.send_message(None, "First message", "openai/gpt-4o")
            assert op.state is PendingState.CONFIRMED
            assert op.conversation_id in server.conversations
            listed = await sync.get_messages(op.conversation_id)
            assert [m.role for m in listed] == ["user", "assistant"]

    asyncio.run(scenario())


def test_send_requires_content(sync_factory):
    async def scenario():
        async with sync_factory() as sync:
            with pytest.raises(ValueError):
                await sync.send_message("c1", "", "openai/gpt-4o")

    asyncio.run(scenario())


def test_upload_image_sniffs_type_and_names_file(server, sync_factory):
    png = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32

    async def scenario():
        async with sync_factory() as sync:
            image = await sync.upload_image(png)
            upload = server.uploads[0]
            assert upload["content_type"] == "image/png"
            assert upload["data"] == png
            assert upload["filename"].startswith("image-") and upload["filename"].endswith(".png")
            assert image.storage_id == upload["storage_id"]
            assert image.url == f"https://files.test/{upload['storage_id']}"
            assert image.file_name == upload["filename"]

            named = await sync.upload_image(b"no magic bytes here", "camera.jpg")
            assert server.uploads[1]["content_type"] == "image/jpeg"
            assert named.file_name == "camera.jpg"

    asyncio.run(scenario())


def test_upload_document_then_send_with_attachment(server, sync_factory):
    server.add_conversation("c1")

    async def scenario():
        async with sync_factory() as sync:
            document = await sync.upload_document(b"# Notes", "notes.md")
            assert document.file_type == "markdown"
            assert server.uploads[0]["content_type"] == "text/markdown"
            assert server.uploads[0]["filename"] == "notes.md"

            await sync.refresh_conversations()
            op = await sync.send_message("c1", "Summarise this", "openai/gpt-4o", documents=[document])
            assert op.state is PendingState.CONFIRMED
            body = server.bodies("POST", "/api/generate-message")[0]
            assert body["documents"][0]["storage_id"] == document.storage_id
            assert body["documents"][0]["fileType"] == "markdown"

    asyncio.run(scenario())


def test_empty_upload_is_rejected(server, sync_factory):
    async def scenario():
        async with sync_factory() as sync:
            with pytest.raises(ValueError):
                await sync.upload_document(b"", "empty.txt")
            assert server.uploads == []

    asyncio.run(scenario())


def test_create_and_branch_conversation(server, sync_factory):
    async def scenario():
        async with sync_factory() as sync:
            created = await sync.create_conversation("Ideas")
            assert created.title == "Ideas"
            server.add_message("m1", created.id, content="first")
            server.add_message("m2", created.id, role="assistant", content="second")
            server.add_message("m3", created.id, content="third")

            branched = await sync.branch_conversation(created.id, "m2")
            assert branched.title == "Ideas (branch)"
            assert [m.content for m in await sync.get_messages(branched.id)] == ["first", "second"]

    asyncio.run(scenario())


def test_projects_members_and_files(server, sync_factory):
    server.projects.append(project_payload("p1"))
    server.members["p1"] = [member_payload("pm1", project_id=None)]
    server.files["p1"] = [file_payload("pf1"), file_payload("pf2")]
    server.add_conversation("c1", projectId="p1")

    async def scenario():
        async with sync_factory() as sync:
            await sync.refresh_projects()
            await sync.refresh_conversations()
            await sync.refresh_project_members("p1")
            await sync.refresh_project_files("p1")
            assert [m.project_id for m in await sync.list_project_members("p1")] == ["p1"]
            assert len(await sync.list_project_files("p1")) == 2

            added = await sync.add_project_member("p1", "new@example.com", role="editor")
            assert added.project_id == "p1"
            assert len(await sync.list_project_members("p1")) == 2

            await sync.delete_project_file("p1", "pf1")
            assert [f.id for f in await sync.list_project_files("p1")] == ["pf2"]

            updated = await sync.update_project("p1", name="Renamed")
            assert (await sync.get_project("p1")).name == "Renamed" == updated.name

            removed = await sync.delete_project("p1")
            assert removed["projects"] == 1
            assert await sync.list_projects() == []
            assert (await sync.get_conversation("c1")).project_id is None

    asyncio.run(scenario())


def test_assistants(server, sync_factory):
    server.assistants = [assistant_payload("a2", isDefault=True), assistant_payload("a1", isDefault=True)]

    async def scenario():
        async with sync_factory() as sync:
            await sync.refresh_assistants()
            assert (await sync.get_default_assistant()).id == "a1"
            created = await sync.create_assistant("Coder", "Write code.")
            assert created.name == "Coder"
            assert len(await sync.list_assistants()) == 3

    asyncio.run(scenario())


def test_user_settings_update_and_rollback(server, sync_factory):
    async def scenario():
        async with sync_factory() as sync:
            fetched = await sync.refresh_user_settings()
            assert fetched.follow_up_questions_enabled is True

            updated = await sync.update_user_settings("u1", theme="dark", mcp_enabled=True)
            assert updated.theme == "dark"
            assert (await sync.get_user_settings("u1")).mcp_enabled is True

            server.fail("POST", "/api/db/user-settings", 500)
            with pytest.raises(RemoteAPIError):
                await sync.update_user_settings("u1", theme="light")
            assert (await sync.get_user_settings("u1")).theme == "dark"

            with pytest.raises(ValueError):
                await sync.update_user_settings("u1", colour="red")

    asyncio.run(scenario())


def test_model_catalog(server, sync_factory):
    server.catalog = [
        catalog_payload("openai/gpt-4o", pinned=True),
        catalog_payload("meta/llama", enabled=False),
    ]

    async def scenario():
        async with sync_factory() as sync:
            await sync.refresh_models()
            assert [m.model_id for m in await sync.list_models()] == ["openai/gpt-4o", "meta/llama"]
            assert [m.model_id for m in await sync.list_models(enabled_only=True)] == ["openai/gpt-4o"]

            enabled = await sync.set_model_enabled("meta/llama", True)
            assert enabled.enabled is True
            groups = await sync.list_model_groups()
            assert [g.name for g in groups] == ["nanogpt"]
            assert groups[0].models[0].model_id == "openai/gpt-4o"

            server.fail("POST", "/api/db/user-models", 500)
            with pytest.raises(RemoteAPIError):
                await sync.set_model_pinned("meta/llama", True)
            assert [m.model_id for m in await sync.list_models() if m.pinned] == ["openai/gpt-4o"]

    asyncio.run(scenario())


def test_follow_up_questions_are_stored(server, sync_factory):
    server.add_conversation("c1")
    server.add_message("m1", "c1", role="assistant", content="answer")

    async def scenario():
        async with sync_factory() as sync:
            await sync.refresh_messages("c1")
            suggestions = await sync.fetch_follow_up_questions("c1", "m1")
            assert suggestions == ["Why?", "How?"]
            assert (await sync.get_messages("c1"))[0].follow_up_suggestions == ["Why?", "How?"]

    asyncio.run(scenario())


def test_model_providers_drop_unavailable(server, sync_factory):
    price = {"inputPer1kTokens": 0.001, "outputPer1kTokens": 0.002}
    server.providers["openai/gpt-4o"] = {
        "canonicalId": "openai/gpt-4o",
        "displayName": "GPT-4o",
        "supportsProviderSelection": True,
        "providers": [
            {"provider": "azure", "pricing": price, "available": True},
            {"provider": "openai", "pricing": price, "available": False},
        ],
    }

    async def scenario():
        async with sync_factory() as sync:
            response = await sync.fetch_model_providers("openai/gpt-4o")
            assert [p.id for p in response.providers] == ["azure"]
            assert response.display_name == "GPT-4o"

    asyncio.run(scenario())
