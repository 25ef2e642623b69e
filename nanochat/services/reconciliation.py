"""
Reconciliation of server state into the local store.

Server state wins for every field. The only local-only state is a
placeholder message standing in for an unconfirmed send, and it is replaced
(never merged) by the server record once that arrives. Writers to the same
entity id are serialized; a reconciliation whose fetch was cancelled or
superseded is dropped before commit.
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Hashable, Iterable, List, Optional, Sequence, Set

from sqlalchemy.ext.asyncio import AsyncSession

from nanochat.core.exceptions import NotFound, StaleReconciliation
from nanochat.crud import (
    crud_assistant,
    crud_catalog,
    crud_conversation,
    crud_message,
    crud_project,
    crud_project_file,
    crud_project_member,
)
from nanochat.db.models import Message
from nanochat.observability.context import conversation_id_ctx, entity_kind_ctx
from nanochat.observability.metrics import inc_counter
from nanochat.schemas import (
    AssistantResponse,
    ConversationResponse,
    MessageResponse,
    ProjectFileResponse,
    ProjectMemberResponse,
    ProjectResponse,
    UserModel,
    UserSettings,
)
from nanochat.schemas.records import ConversationRecord, MessageRecord
from nanochat.services.decoder import EntityKind
from nanochat.services.pending import PendingChannel
from nanochat.services.store import LocalStore
from nanochat.utils.async_helpers import GenerationToken, GenerationTracker, KeyedLocks

logger = logging.getLogger(__name__)

KIND_BY_TYPE = {
    ConversationResponse: EntityKind.CONVERSATION,
    MessageResponse: EntityKind.MESSAGE,
    ProjectResponse: EntityKind.PROJECT,
    ProjectMemberResponse: EntityKind.PROJECT_MEMBER,
    ProjectFileResponse: EntityKind.PROJECT_FILE,
    AssistantResponse: EntityKind.ASSISTANT,
    UserSettings: EntityKind.USER_SETTINGS,
    UserModel: EntityKind.USER_MODEL,
}

# Kinds whose list scope must be narrowed by a parent id
SCOPED_KINDS = {EntityKind.MESSAGE, EntityKind.PROJECT_MEMBER, EntityKind.PROJECT_FILE}

LIST_KINDS = {
    EntityKind.CONVERSATION,
    EntityKind.MESSAGE,
    EntityKind.PROJECT,
    EntityKind.PROJECT_MEMBER,
    EntityKind.PROJECT_FILE,
    EntityKind.ASSISTANT,
    EntityKind.USER_MODEL,
}


def kind_of(dto: Any) -> EntityKind:
    for cls, kind in KIND_BY_TYPE.items():
        if isinstance(dto, cls):
            return kind
    raise TypeError(f"Cannot reconcile {type(dto).__name__}")


def entity_id(dto: Any) -> str:
    if isinstance(dto, UserModel):
        return dto.model_id
    return dto.id


# Allowed clock difference between this device and the server
PAIRING_SKEW = timedelta(minutes=5)


def could_confirm(placeholder: Message, dto: MessageResponse) -> bool:
    """Whether `dto` may be the server copy of an unechoed placeholder.

    It must be a message of the same role and text, created no earlier than
    the placeholder was (less `PAIRING_SKEW`). Older history never matches.
    """
    if dto.role != placeholder.role:
        return False
    if dto.content.strip() != (placeholder.content or "").strip():
        return False
    return dto.created_at >= placeholder.created_at - PAIRING_SKEW


@dataclass
class ReconcileReport:
    kind: EntityKind
    scope_id: Optional[str] = None
    upserted: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    # correlation id -> server id of placeholders replaced by this pass
    confirmed: Dict[str, str] = field(default_factory=dict)


class Reconciler:
    """Merges fetched DTOs into a LocalStore"""

    def __init__(self, store: LocalStore, channel: Optional[PendingChannel] = None):
        self.store = store
        self.channel = channel
        self.locks = KeyedLocks()
        self.generations = GenerationTracker()

    # ------------------------------------------------------------------
    # Tokens and locks

    @staticmethod
    def scope_key(kind: EntityKind, scope_id: Optional[str] = None) -> Hashable:
        return ("scope", kind.value, scope_id or "*")

    @staticmethod
    def entity_key(kind: EntityKind, id: str) -> Hashable:
        return (kind.value, id)

    @staticmethod
    def placeholder_key(correlation_id: str) -> Hashable:
        return ("placeholder", correlation_id)

    def begin(self, kind: EntityKind, scope_id: Optional[str] = None) -> GenerationToken:
        """Start a fetch generation for a list scope, voiding any older one"""
        return self.generations.begin(self.scope_key(kind, scope_id))

    def cancel(self, kind: EntityKind, scope_id: Optional[str] = None) -> None:
        self.generations.cancel(self.scope_key(kind, scope_id))

    def _check_live(self, token: Optional[GenerationToken], kind: EntityKind, id: Optional[str] = None) -> None:
        if token is None or token.is_live():
            return
        inc_counter("reconcile_stale_total", kind=kind.value)
        logger.info(f"Dropping stale {kind.value} reconciliation for {token.key!r}")
        raise StaleReconciliation(entity_kind=kind.value, entity_id=id)

    # ------------------------------------------------------------------
    # Single entity

    async def upsert_from_server(self, dto: Any, token: Optional[GenerationToken] = None) -> Any:
        """Overwrite the local copy of one entity with the server's"""
        kind = kind_of(dto)
        id = entity_id(dto)
        entity_kind_ctx.set(kind.value)
        if isinstance(dto, MessageResponse) and dto.client_message_id:
            return await self.confirm_placeholder(dto.client_message_id, dto, token=token)

        async with self.locks.hold(self.entity_key(kind, id)):
            self._check_live(token, kind, id)
            async with self.store.transaction() as db:
                await self.store.apply(db, dto)
                self._check_live(token, kind, id)
        logger.debug(f"Upserted {kind.value} {id}")
        return dto

    # ------------------------------------------------------------------
    # Lists

    async def _scope_ids(self, db: AsyncSession, kind: EntityKind, scope_id: Optional[str]) -> List[str]:
        if kind is EntityKind.CONVERSATION:
            return await crud_conversation.ids_in_scope(db, project_id=scope_id)
        if kind is EntityKind.MESSAGE:
            return await crud_message.ids_in_conversation(db, scope_id)
        if kind is EntityKind.PROJECT:
            return await crud_project.ids(db)
        if kind is EntityKind.PROJECT_MEMBER:
            return await crud_project_member.ids_for_project(db, project_id=scope_id)
        if kind is EntityKind.PROJECT_FILE:
            return await crud_project_file.ids_for_project(db, project_id=scope_id)
        if kind is EntityKind.ASSISTANT:
            return await crud_assistant.ids(db)
        return await crud_catalog.ids(db)

    async def _delete(self, db: AsyncSession, kind: EntityKind, ids: Sequence[str]) -> None:
        if not ids:
            return
        if kind is EntityKind.CONVERSATION:
            await crud_conversation.remove_cascade(db, ids)
        elif kind is EntityKind.MESSAGE:
            await crud_message.remove_cascade(db, ids)
        elif kind is EntityKind.PROJECT:
            await crud_project.remove_cascade(db, list(ids))
            for project_id in ids:
                await crud_conversation.detach_project(db, project_id=project_id)
        elif kind is EntityKind.PROJECT_MEMBER:
            await crud_project_member.remove_many(db, ids)
        elif kind is EntityKind.PROJECT_FILE:
            await crud_project_file.remove_many(db, ids)
        elif kind is EntityKind.ASSISTANT:
            await crud_assistant.remove_many(db, ids)
        else:
            await crud_catalog.remove_many(db, ids)
        inc_counter("sync_deletes_total", value=len(ids), kind=kind.value)

    async def _placeholder_keys(self, db: AsyncSession, kind: EntityKind, scope_id: Optional[str]) -> Set[Hashable]:
        if kind is not EntityKind.MESSAGE:
            return set()
        return {self.placeholder_key(p.correlation_id) for p in await crud_message.get_placeholders(db, scope_id)}

    async def reconcile_list(
            self,
            kind: EntityKind,
            dtos: Sequence[Any],
            *,
            scope_id: Optional[str] = None,
            paginated: bool = False,
            token: Optional[GenerationToken] = None,
            retain: Iterable[str] = ()
    ) -> ReconcileReport:
        """Apply a list response to its slice of the store.

        A complete response replaces the slice: rows in scope but absent from
        `dtos` are deleted with their children. A paginated response only
        upserts. Ids in `retain` (items that failed to decode) are never
        deleted.

        Every id that may be written is locked first. If the slice grew while
        waiting for those locks, they are released and taken again over the
        wider set.
        """
        if kind not in LIST_KINDS:
            raise ValueError(f"{kind.value} has no list reconciliation")
        if kind in SCOPED_KINDS and scope_id is None:
            raise ValueError(f"{kind.value} lists need a scope id")
        entity_kind_ctx.set(kind.value)
        if kind is EntityKind.MESSAGE:
            conversation_id_ctx.set(scope_id)

        incoming = [entity_id(dto) for dto in dtos]
        async with self.store.transaction() as db:
            known = set(await self._scope_ids(db, kind, scope_id))
            pending_keys = await self._placeholder_keys(db, kind, scope_id)

        report = ReconcileReport(kind=kind, scope_id=scope_id)
        while True:
            keys = {self.entity_key(kind, id) for id in set(incoming) | known} | pending_keys
            async with self.locks.hold(self.scope_key(kind, scope_id), *keys):
                self._check_live(token, kind)
                async with self.store.transaction() as db:
                    existing = set(await self._scope_ids(db, kind, scope_id))
                    current_keys = await self._placeholder_keys(db, kind, scope_id)
                    if existing <= known and current_keys <= pending_keys:
                        await self._apply_list(db, report, dtos, existing, paginated=paginated, retain=retain)
                        self._check_live(token, kind)
                        break
            logger.debug(f"{kind.value} scope {scope_id or '*'} grew while locking; retrying")
            known |= existing
            pending_keys |= current_keys

        self._publish(report.confirmed)
        logger.info(
            f"Reconciled {kind.value} list (scope={scope_id or '*'}, paginated={paginated}): "
            f"{len(report.upserted)} upserted, {len(report.deleted)} deleted"
            + (f", {len(report.confirmed)} placeholder(s) confirmed" if report.confirmed else "")
        )
        return report

    async def _apply_list(
            self,
            db: AsyncSession,
            report: ReconcileReport,
            dtos: Sequence[Any],
            existing: Set[str],
            *,
            paginated: bool,
            retain: Iterable[str]
    ) -> None:
        kind, scope_id = report.kind, report.scope_id
        if kind is EntityKind.MESSAGE:
            report.confirmed = await self._replace_placeholders(db, scope_id, dtos, existing)
        swapped = set(report.confirmed.values())

        for position, dto in enumerate(dtos):
            if kind is EntityKind.USER_MODEL:
                await self.store.apply(db, dto, position=position)
            elif kind is EntityKind.PROJECT_MEMBER:
                await self.store.apply(db, dto, project_id=scope_id)
            elif dto.id not in swapped:
                await self.store.apply(db, dto)
            report.upserted.append(entity_id(dto))

        if not paginated:
            incoming = [entity_id(dto) for dto in dtos]
            keep = set(incoming) | set(retain)
            report.deleted = sorted(existing - keep)
            await self._delete(db, kind, report.deleted)
            if kind is EntityKind.MESSAGE:
                await crud_message.resequence(db, scope_id, incoming)

    # ------------------------------------------------------------------
    # Placeholders

    async def _swap(self, db: AsyncSession, placeholder: Message, dto: MessageResponse) -> None:
        sequence = placeholder.sequence
        await crud_message.remove_cascade(db, [placeholder.id])
        await self.store.apply(db, dto, sequence=sequence)

    async def _replace_placeholders(
            self,
            db: AsyncSession,
            conversation_id: str,
            dtos: Sequence[MessageResponse],
            existing: Set[str]
    ) -> Dict[str, str]:
        """Pair new user messages with local placeholders.

        An echoed correlation id pairs directly. Otherwise a message pairs with
        the oldest placeholder it could be the server copy of (see
        `could_confirm`); placeholders with no such message stay pending.
        """
        placeholders = await crud_message.get_placeholders(db, conversation_id)
        if not placeholders:
            return {}
        by_correlation = {p.correlation_id: p for p in placeholders}
        confirmed: Dict[str, str] = {}

        fresh = [dto for dto in dtos if dto.id not in existing and dto.role == "user"]
        unmatched = []
        for dto in fresh:
            placeholder = by_correlation.pop(dto.client_message_id, None) if dto.client_message_id else None
            if placeholder is None:
                unmatched.append(dto)
                continue
            confirmed[placeholder.correlation_id] = dto.id
            await self._swap(db, placeholder, dto)

        remaining = [p for p in placeholders if p.correlation_id in by_correlation]
        for dto in unmatched:
            placeholder = next((p for p in remaining if could_confirm(p, dto)), None)
            if placeholder is None:
                continue
            remaining.remove(placeholder)
            confirmed[placeholder.correlation_id] = dto.id
            await self._swap(db, placeholder, dto)
        return confirmed

    def _publish(self, confirmed: Dict[str, str]) -> None:
        if self.channel is None:
            return
        for correlation_id, server_id in confirmed.items():
            self.channel.confirmed(correlation_id, server_id)

    async def confirm_placeholder(
            self,
            correlation_id: str,
            dto: MessageResponse,
            token: Optional[GenerationToken] = None
    ) -> MessageResponse:
        """Replace the placeholder carrying `correlation_id` with the server record"""
        kind = EntityKind.MESSAGE
        async with self.locks.hold(self.entity_key(kind, dto.id), self.placeholder_key(correlation_id)):
            self._check_live(token, kind, dto.id)
            async with self.store.transaction() as db:
                placeholder = await crud_message.get_by_correlation(db, correlation_id)
                if placeholder is not None and placeholder.local_only:
                    await self._swap(db, placeholder, dto)
                    confirmed = {correlation_id: dto.id}
                else:
                    await self.store.apply(db, dto)
                    confirmed = {}
                self._check_live(token, kind, dto.id)
        self._publish(confirmed)
        return dto

    async def confirm_next_pending(
            self,
            conversation_id: str,
            dto: MessageResponse,
            token: Optional[GenerationToken] = None
    ) -> Optional[str]:
        """Pair a server record with the oldest placeholder it could confirm.

        Returns the correlation id that was confirmed, or None when no
        placeholder matched; the record is then stored as a plain upsert.
        """
        kind = EntityKind.MESSAGE
        while True:
            async with self.store.transaction() as db:
                stored = await crud_message.get(db, dto.id)
                placeholders = [] if stored is not None else await crud_message.get_placeholders(db, conversation_id)
            candidate = next((p for p in placeholders if could_confirm(p, dto)), None)
            if candidate is None:
                await self.upsert_from_server(dto, token=token)
                return None

            correlation_id = candidate.correlation_id
            async with self.locks.hold(self.entity_key(kind, dto.id), self.placeholder_key(correlation_id)):
                self._check_live(token, kind, dto.id)
                async with self.store.transaction() as db:
                    placeholder = await crud_message.get_by_correlation(db, correlation_id)
                    if placeholder is not None and placeholder.local_only:
                        await self._swap(db, placeholder, dto)
                        self._check_live(token, kind, dto.id)
                        break
            # Claimed by another writer while unlocked
            logger.debug(f"Placeholder {correlation_id} already resolved; looking again")

        self._publish({correlation_id: dto.id})
        return correlation_id

    # ------------------------------------------------------------------
    # Optimistic overlays and local deletes

    async def set_conversation_pinned(self, conversation_id: str, pinned: bool) -> ConversationRecord:
        async with self.locks.hold(self.entity_key(EntityKind.CONVERSATION, conversation_id)):
            return await self.store.set_conversation_flags(conversation_id, pinned=pinned)

    async def set_conversation_generating(self, conversation_id: str, generating: bool) -> ConversationRecord:
        """Short-lived overlay; the next reconciliation overwrites it"""
        async with self.locks.hold(self.entity_key(EntityKind.CONVERSATION, conversation_id)):
            return await self.store.set_conversation_flags(conversation_id, generating=generating)

    async def set_conversation_title(self, conversation_id: str, title: str) -> ConversationRecord:
        async with self.locks.hold(self.entity_key(EntityKind.CONVERSATION, conversation_id)):
            return await self.store.set_conversation_flags(conversation_id, title=title)

    async def set_message_starred(self, message_id: str, starred: bool) -> MessageRecord:
        async with self.locks.hold(self.entity_key(EntityKind.MESSAGE, message_id)):
            return await self.store.set_message_fields(message_id, starred=starred)

    async def set_follow_up_suggestions(self, message_id: str, suggestions: List[str]) -> MessageRecord:
        async with self.locks.hold(self.entity_key(EntityKind.MESSAGE, message_id)):
            return await self.store.set_message_fields(message_id, follow_up_suggestions=list(suggestions))

    async def delete_conversation(self, conversation_id: str) -> Dict[str, int]:
        async with self.locks.hold(self.entity_key(EntityKind.CONVERSATION, conversation_id)):
            return await self.store.delete_conversation_cascade(conversation_id)

    async def delete_message(self, message_id: str) -> int:
        async with self.locks.hold(self.entity_key(EntityKind.MESSAGE, message_id)):
            return await self.store.delete_message_cascade(message_id)

    async def delete_project(self, project_id: str) -> Dict[str, int]:
        async with self.locks.hold(self.entity_key(EntityKind.PROJECT, project_id)):
            return await self.store.delete_project_cascade(project_id)

    async def require_conversation(self, conversation_id: str) -> ConversationRecord:
        record = await self.store.get_conversation(conversation_id)
        if record is None:
            raise NotFound(entity_kind="conversation", entity_id=conversation_id)
        return record
