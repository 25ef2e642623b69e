"""
Pending operations for optimistic local state.

Each in-flight send is a small state machine: PENDING -> CONFIRMED | FAILED.
The network side never touches an operation directly; it publishes an
Outcome on a PendingChannel and the store side applies it.
"""
import asyncio
import enum
import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from nanochat.core.exceptions import InvalidTransition
from nanochat.schemas.common import utcnow

logger = logging.getLogger(__name__)


class PendingState(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


def new_correlation_id() -> str:
    return uuid.uuid4().hex


@dataclass
class PendingOperation:
    conversation_id: Optional[str]
    correlation_id: str = field(default_factory=new_correlation_id)
    kind: str = "send_message"
    created_at: datetime = field(default_factory=utcnow)
    state: PendingState = PendingState.PENDING
    server_id: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def is_pending(self) -> bool:
        return self.state is PendingState.PENDING

    def _leave_pending(self, target: PendingState) -> None:
        if self.state is not PendingState.PENDING:
            raise InvalidTransition(
                f"Cannot move {self.kind} from {self.state.value} to {target.value}",
                entity_kind="pending_operation",
                entity_id=self.correlation_id,
            )
        self.state = target

    def confirm(self, server_id: str) -> None:
        self._leave_pending(PendingState.CONFIRMED)
        self.server_id = server_id

    def fail(self, error: Exception) -> None:
        self._leave_pending(PendingState.FAILED)
        self.error = error


@dataclass(frozen=True)
class Outcome:
    """Result of the network side of a pending operation"""
    correlation_id: str
    server_id: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class PendingQueue:
    """Pending operations per conversation, oldest first"""

    def __init__(self):
        self._operations: "OrderedDict[str, PendingOperation]" = OrderedDict()

    def open(self, conversation_id: Optional[str], *, correlation_id: Optional[str] = None) -> PendingOperation:
        op = PendingOperation(conversation_id=conversation_id, correlation_id=correlation_id or new_correlation_id())
        self._operations[op.correlation_id] = op
        return op

    def get(self, correlation_id: str) -> Optional[PendingOperation]:
        return self._operations.get(correlation_id)

    def pending(self, conversation_id: Optional[str] = None) -> List[PendingOperation]:
        return [
            op for op in self._operations.values()
            if op.is_pending and (conversation_id is None or op.conversation_id == conversation_id)
        ]

    def oldest(self, conversation_id: str) -> Optional[PendingOperation]:
        pending = self.pending(conversation_id)
        return pending[0] if pending else None

    def discard(self, correlation_id: str) -> None:
        self._operations.pop(correlation_id, None)

    def prune(self) -> int:
        """Drop operations that reached a terminal state"""
        done = [key for key, op in self._operations.items() if not op.is_pending]
        for key in done:
            del self._operations[key]
        return len(done)

    def __len__(self) -> int:
        return len(self._operations)


class PendingChannel:
    """Hands Outcomes from the network side to the store side"""

    def __init__(self, queue: PendingQueue):
        self.queue = queue
        self._outcomes: "asyncio.Queue[Outcome]" = asyncio.Queue()

    def publish(self, outcome: Outcome) -> None:
        self._outcomes.put_nowait(outcome)

    def confirmed(self, correlation_id: str, server_id: str) -> None:
        self.publish(Outcome(correlation_id=correlation_id, server_id=server_id))

    def failed(self, correlation_id: str, error: Exception) -> None:
        self.publish(Outcome(correlation_id=correlation_id, error=error))

    def __len__(self) -> int:
        return self._outcomes.qsize()

    def drain(self) -> Dict[str, PendingOperation]:
        """Apply every queued outcome to its operation; returns the operations touched"""
        touched: Dict[str, PendingOperation] = {}
        while True:
            try:
                outcome = self._outcomes.get_nowait()
            except asyncio.QueueEmpty:
                break
            op = self.queue.get(outcome.correlation_id)
            if op is None:
                logger.warning(f"Outcome for unknown pending operation {outcome.correlation_id}")
                continue
            if not op.is_pending:
                # A second outcome for a settled operation is dropped, never re-applied
                logger.debug(f"Ignoring outcome for settled operation {op.correlation_id} ({op.state.value})")
                continue
            if outcome.ok:
                op.confirm(outcome.server_id)
            else:
                op.fail(outcome.error)
            touched[op.correlation_id] = op
        return touched

    async def next(self) -> Outcome:
        return await self._outcomes.get()
