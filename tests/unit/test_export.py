import json
from datetime import datetime, timezone

import pytest

from nanochat.services import export
from nanochat.services.decoder import EntityKind, decode

from conftest import conversation_payload, document_payload, image_payload, message_payload

NOW = datetime(2024, 2, 3, 4, 5, tzinfo=timezone.utc)


@pytest.fixture
def conversation():
    return decode(EntityKind.CONVERSATION, conversation_payload(title="Trip: Paris/Rome?", projectId="p1"))


@pytest.fixture
def messages():
    return [
        decode(EntityKind.MESSAGE, message_payload("m1", content="Plan my trip", images=[image_payload(0)])),
        decode(EntityKind.MESSAGE, message_payload(
            "m2", role="assistant", content="Day 1: Louvre", modelId="openai/gpt-4o",
            reasoning="Consider museums", documents=[document_payload(0)],
        )),
    ]


def test_markdown_export(conversation, messages):
    text = export.export_conversation_markdown(conversation, messages, now=NOW)
    assert text.startswith("# Trip: Paris/Rome?\n")
    assert "**Exported on:** Feb 03, 2024 04:05 UTC" in text
    assert "**Last updated:** Jan 01, 2024 11:00 UTC" in text
    assert "**Project ID:** p1" in text
    assert "### **You**" in text
    assert "### **Assistant** *(openai/gpt-4o)*" in text
    assert "![img0.png](https://files.test/img0.png)" in text
    assert "<summary>Reasoning</summary>" in text
    assert "- [doc0.pdf](https://files.test/doc0.pdf)" in text
    assert text.index("Plan my trip") < text.index("Day 1: Louvre")


def test_multi_conversation_markdown(conversation, messages):
    text = export.export_conversations_markdown([(conversation, messages), (conversation, [])], now=NOW)
    assert text.startswith("# NanoChat Export")
    assert "**Conversations:** 2" in text
    assert "## 1. Trip: Paris/Rome?" in text
    assert "## 2. Trip: Paris/Rome?" in text


def test_text_export(conversation, messages):
    text = export.export_conversation_text(conversation, messages, now=NOW)
    lines = text.splitlines()
    assert lines[0] == "Trip: Paris/Rome?"
    assert lines[1] == "=" * len("Trip: Paris/Rome?")
    assert "[You]:\nPlan my trip" in text
    assert "[Assistant]:\nDay 1: Louvre" in text


def test_json_export_is_wire_shaped(conversation, messages):
    document = json.loads(export.export_conversation_json(conversation, messages))
    assert document["id"] == "c1"
    assert document["createdAt"] == "2024-01-01T10:00:00.000Z"
    assert [m["id"] for m in document["messages"]] == ["m1", "m2"]
    assert document["messages"][0]["images"][0]["storage_id"] == "img-0"


def test_sanitize_filename():
    assert export.sanitize_filename('  Trip: Paris/Rome? <2024> "v2"  ') == "trip-parisrome-2024-v2"
    assert len(export.sanitize_filename("x" * 80)) == 50
    assert export.export_filename("???", "markdown") == "conversation.md"
    assert export.export_filename("Notes", "json") == "notes.json"


def test_render_rejects_unknown_format(conversation, messages):
    with pytest.raises(ValueError):
        export.render("pdf", conversation, messages)
