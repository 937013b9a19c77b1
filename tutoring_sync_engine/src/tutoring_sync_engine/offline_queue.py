"""
Offline Operation Queue

Device-wide FIFO of operations recorded while offline. Every change is
written through to persistence so queued work survives a restart.

Draining replays operations strictly in enqueue order. The first failure
stops the drain; the failed operation and everything behind it stay queued.
"""

import asyncio
import inspect
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from tutoring_sync_engine.errors import NotFoundError, QueueFullError
from tutoring_sync_engine.persistence import OFFLINE_QUEUE, Persistence

logger = logging.getLogger(__name__)


class OfflineOperationKind(Enum):
    SEND_MESSAGE = "send_message"
    END_SESSION = "end_session"


class OverflowPolicy(Enum):
    """What enqueue does when the queue is full."""
    REJECT = "reject"
    DROP_OLDEST = "drop_oldest"


@dataclass(frozen=True)
class OfflineOperation:
    """
    A deferred operation.

    For SEND_MESSAGE the payload holds the learner message id that was
    appended optimistically, so replay resumes at the reply step.
    """
    kind: OfflineOperationKind
    session_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    enqueued_at: datetime = field(default_factory=datetime.now)
    sequence: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "session_id": self.session_id,
            "payload": dict(self.payload),
            "enqueued_at": self.enqueued_at.isoformat(),
            "sequence": self.sequence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OfflineOperation":
        return cls(
            id=data["id"],
            kind=OfflineOperationKind(data["kind"]),
            session_id=data["session_id"],
            payload=dict(data.get("payload") or {}),
            enqueued_at=datetime.fromisoformat(data["enqueued_at"]),
            sequence=data.get("sequence", 0),
        )


@dataclass
class DrainResult:
    """Outcome of one drain pass."""
    replayed: int = 0
    remaining: int = 0
    failed_operation_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.failed_operation_id is None


class OfflineOperationQueue:
    """Bounded, persisted FIFO with a halt-on-failure drain."""

    def __init__(
        self,
        persistence: Persistence,
        max_size: int = 500,
        overflow_policy: OverflowPolicy = OverflowPolicy.REJECT,
        on_drop: Optional[Callable[[OfflineOperation], Any]] = None,
    ):
        """
        Args:
            persistence: Store the queue is written through to
            max_size: Maximum number of queued operations
            overflow_policy: REJECT raises QueueFullError, DROP_OLDEST discards the head
            on_drop: Called with each operation discarded by DROP_OLDEST
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.persistence = persistence
        self.max_size = max_size
        self.overflow_policy = OverflowPolicy(overflow_policy)
        self._items: List[OfflineOperation] = []
        self._next_sequence = 0
        self._lock = asyncio.Lock()
        self._drain_lock = asyncio.Lock()
        self.dropped_count = 0
        self.on_drop = on_drop

    def __len__(self) -> int:
        return len(self._items)

    @property
    def is_draining(self) -> bool:
        return self._drain_lock.locked()

    def snapshot(self) -> List[OfflineOperation]:
        return list(self._items)

    def peek(self) -> Optional[OfflineOperation]:
        return self._items[0] if self._items else None

    def pending_for_session(self, session_id: str) -> List[OfflineOperation]:
        return [op for op in self._items if op.session_id == session_id]

    def has_pending(self, session_id: str) -> bool:
        return any(op.session_id == session_id for op in self._items)

    async def load(self) -> int:
        """Restore queued operations from persistence in their original order."""
        stored = await self.persistence.list_values(OFFLINE_QUEUE)
        operations = sorted(
            (OfflineOperation.from_dict(d) for d in stored),
            key=lambda op: (op.sequence, op.enqueued_at),
        )
        async with self._lock:
            self._items = operations
            self._next_sequence = operations[-1].sequence + 1 if operations else 0
        if operations:
            logger.info(f"📥 [OfflineQueue] Restored {len(operations)} queued operations")
        return len(operations)

    async def enqueue(self, op: OfflineOperation) -> OfflineOperation:
        """
        Append an operation to the tail.

        Returns:
            The stored operation (with its queue sequence number)

        Raises:
            QueueFullError: queue is full and the policy is REJECT
        """
        dropped: Optional[OfflineOperation] = None
        async with self._lock:
            if len(self._items) >= self.max_size:
                if self.overflow_policy is OverflowPolicy.REJECT:
                    raise QueueFullError(
                        f"Offline queue is full ({self.max_size} operations); try again once back online"
                    )
                dropped = self._items.pop(0)
                self.dropped_count += 1

            stored = OfflineOperation(
                id=op.id,
                kind=op.kind,
                session_id=op.session_id,
                payload=op.payload,
                enqueued_at=op.enqueued_at,
                sequence=self._next_sequence,
            )
            self._next_sequence += 1
            self._items.append(stored)

        if dropped is not None:
            logger.warning(
                f"⚠️ [OfflineQueue] Queue full, dropped oldest {dropped.kind.value} "
                f"operation {dropped.id} for session {dropped.session_id}"
            )
            await self.persistence.delete(OFFLINE_QUEUE, dropped.id)
            await self._notify_dropped(dropped)
        await self.persistence.put(OFFLINE_QUEUE, stored.id, stored.to_dict())
        logger.info(
            f"📴 [OfflineQueue] Queued {stored.kind.value} for session {stored.session_id} "
            f"({len(self._items)} pending)"
        )
        return stored

    async def _notify_dropped(self, op: OfflineOperation) -> None:
        if self.on_drop is None:
            return
        try:
            result = self.on_drop(op)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"❌ [OfflineQueue] Drop handler failed for operation {op.id}: {e}", exc_info=True)

    async def discard(self, operation_id: str) -> OfflineOperation:
        """Remove one operation by id (e.g. one that keeps failing)."""
        async with self._lock:
            for index, op in enumerate(self._items):
                if op.id == operation_id:
                    del self._items[index]
                    break
            else:
                raise NotFoundError(f"Queued operation {operation_id} not found")
        await self.persistence.delete(OFFLINE_QUEUE, operation_id)
        logger.warning(f"🗑️ [OfflineQueue] Discarded operation {operation_id}")
        return op

    async def _remove_head(self, op: OfflineOperation) -> None:
        async with self._lock:
            if self._items and self._items[0].id == op.id:
                self._items.pop(0)
        await self.persistence.delete(OFFLINE_QUEUE, op.id)

    async def drain(self, apply: Callable[[OfflineOperation], Awaitable[Any]]) -> DrainResult:
        """
        Replay queued operations from the head, one at a time.

        Only one drain runs at a time; a second caller waits for the first to
        finish and then drains whatever is left. Never raises for a failed
        operation: the error is logged and reported in the result.

        Args:
            apply: Coroutine that applies one operation

        Returns:
            DrainResult with the number replayed and what is left
        """
        result = DrainResult()
        async with self._drain_lock:
            while True:
                op = self.peek()
                if op is None:
                    break
                try:
                    await apply(op)
                except Exception as e:
                    result.failed_operation_id = op.id
                    result.error = str(e) or type(e).__name__
                    logger.error(
                        f"❌ [OfflineQueue] Replay of {op.kind.value} {op.id} for session "
                        f"{op.session_id} failed, stopping drain: {e}",
                        exc_info=True,
                    )
                    break
                await self._remove_head(op)
                result.replayed += 1

        result.remaining = len(self._items)
        if result.replayed:
            logger.info(
                f"✅ [OfflineQueue] Replayed {result.replayed} operations ({result.remaining} remaining)"
            )
        return result
