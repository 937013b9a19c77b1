"""
End-to-End Tests: Offline Sync Flow

Covers the offline path end to end: optimistic append with a placeholder,
queued ends, replay on reconnect, halt-on-failure, bounded queue and replay
after a restart.
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "tutoring_sync_engine", "src"))

from conftest import make_engine

from tutoring_sync_engine.connectivity import ManualConnectivity
from tutoring_sync_engine.errors import ConnectivityDeferred, InvalidStateError, QueueFullError
from tutoring_sync_engine.offline_queue import OfflineOperation, OfflineOperationKind, OverflowPolicy
from tutoring_sync_engine.response_templates import OFFLINE_DROPPED_TEXT, OFFLINE_PLACEHOLDER_TEXT


class TestOfflineSyncFlow:
    """Test suite for offline operation and replay."""

    @pytest.mark.asyncio
    async def test_offline_message_is_answered_after_reconnect(self, engine, connectivity):
        await engine.start()
        try:
            session = await engine.start_session("learner-1", "mathematics")
            await connectivity.set_online(False)

            placeholder = await engine.send_message(session.id, "hello")

            assert placeholder.content == OFFLINE_PLACEHOLDER_TEXT
            assert placeholder.metadata["is_offline_placeholder"] is True
            assert len(session.messages) == 3
            assert engine.get_sync_status()["pending_operations"] == 1

            await connectivity.set_online(True)
            result = await engine.offline_sync.wait_for_sync()

            assert result.replayed == 1
            assert len(session.messages) == 4
            learner = [m for m in session.messages if not m.is_from_tutor]
            assert len(learner) == 1
            reply = session.messages[-1]
            assert reply.metadata["in_reply_to"] == learner[0].id
            assert reply.content.startswith("That's an interesting question about Mathematics.")
            assert engine.get_sync_status()["pending_operations"] == 0
        finally:
            await engine.stop()

    @pytest.mark.asyncio
    async def test_replayed_reply_is_published(self, engine, connectivity):
        await engine.start()
        try:
            session = await engine.start_session("learner-1", "mathematics")
            await connectivity.set_online(False)
            await engine.send_message(session.id, "hello")
            events = []
            engine.message_events.subscribe(events.append)

            await connectivity.set_online(True)
            await engine.offline_sync.wait_for_sync()

            assert len(events) == 1
            assert events[0].message.metadata["in_reply_to"] == session.messages[1].id
        finally:
            await engine.stop()

    @pytest.mark.asyncio
    async def test_offline_end_is_deferred(self, engine, connectivity):
        await engine.start()
        try:
            session = await engine.start_session("learner-1", "science")
            await connectivity.set_online(False)
            await engine.send_message(session.id, "hello")

            deferred = await engine.end_session(session.id)

            assert isinstance(deferred, ConnectivityDeferred)
            assert deferred.kind == "end_session"
            assert deferred.session_id == session.id
            assert session.end_time is None
            assert await engine.get_active_session("learner-1") is None
            with pytest.raises(InvalidStateError):
                await engine.send_message(session.id, "one more thing")
            with pytest.raises(InvalidStateError):
                await engine.end_session(session.id)

            await connectivity.set_online(True)
            await engine.offline_sync.wait_for_sync()

            ended = await engine.get_session(session.id)
            assert ended.end_time is not None
            assert [m.is_from_tutor for m in ended.messages] == [True, False, True, True, True]
            assert ended.messages[3].metadata["in_reply_to"] == ended.messages[1].id
            assert ended.messages[-1].metadata["message_type"] == "farewell"
        finally:
            await engine.stop()

    @pytest.mark.asyncio
    async def test_pending_work_keeps_session_order(self, engine, connectivity):
        """Test a send made online while earlier work is queued waits its turn."""
        session = await engine.start_session("learner-1", "mathematics")
        await connectivity.set_online(False)
        await engine.send_message(session.id, "first")
        await connectivity.set_online(True)

        second = await engine.send_message(session.id, "second")
        assert second.metadata["is_offline_placeholder"] is True

        result = await engine.offline_sync.sync_now()
        assert result.replayed == 2

        contents = [m.content for m in session.messages]
        assert contents[1] == "first"
        assert contents[2] == OFFLINE_PLACEHOLDER_TEXT
        assert contents[3] == "second"
        assert contents[4] == OFFLINE_PLACEHOLDER_TEXT
        assert session.messages[5].metadata["in_reply_to"] == session.messages[1].id
        assert session.messages[6].metadata["in_reply_to"] == session.messages[3].id

    @pytest.mark.asyncio
    async def test_sync_now_while_offline_replays_nothing(self, engine, connectivity):
        session = await engine.start_session("learner-1", "mathematics")
        await connectivity.set_online(False)
        await engine.send_message(session.id, "hello")

        result = await engine.offline_sync.sync_now()

        assert result.replayed == 0
        assert result.remaining == 1

    @pytest.mark.asyncio
    async def test_drain_halts_on_failing_operation(self, engine, connectivity):
        """Test a poisoned operation blocks the queue until it is discarded."""
        poisoned = await engine.queue.enqueue(
            OfflineOperation(
                kind=OfflineOperationKind.SEND_MESSAGE,
                session_id="missing",
                payload={"message_id": "nope"},
            )
        )
        session = await engine.start_session("learner-1", "mathematics")
        await connectivity.set_online(False)
        await engine.send_message(session.id, "hello")
        await connectivity.set_online(True)

        result = await engine.offline_sync.sync_now()

        assert result.replayed == 0
        assert result.remaining == 2
        assert result.failed_operation_id == poisoned.id
        status = engine.get_sync_status()
        assert status["failed_operation_id"] == poisoned.id
        assert len(session.messages) == 3

        await engine.queue.discard(poisoned.id)
        result = await engine.offline_sync.sync_now()

        assert result.replayed == 1
        assert result.completed
        assert len(session.messages) == 4

    @pytest.mark.asyncio
    async def test_replay_is_idempotent(self, engine, connectivity):
        session = await engine.start_session("learner-1", "mathematics")
        await connectivity.set_online(False)
        await engine.send_message(session.id, "hello")
        op = engine.queue.peek()
        await connectivity.set_online(True)
        await engine.offline_sync.sync_now()

        again = await engine.lifecycle.replay_operation(op)

        assert again.id == session.messages[-1].id
        assert len(session.messages) == 4

    @pytest.mark.asyncio
    async def test_full_queue_leaves_session_untouched(self, persistence, connectivity, clock):
        engine = make_engine(
            persistence=persistence, connectivity=connectivity, clock=clock, offline_queue_max_size=1
        )
        session = await engine.start_session("learner-1", "mathematics")
        await connectivity.set_online(False)
        await engine.send_message(session.id, "first")

        with pytest.raises(QueueFullError):
            await engine.send_message(session.id, "second")
        with pytest.raises(QueueFullError):
            await engine.end_session(session.id)

        assert [m.content for m in session.messages][1:] == ["first", OFFLINE_PLACEHOLDER_TEXT]
        assert len(engine.queue) == 1
        assert not engine.lifecycle.is_closing(session.id)

    @pytest.mark.asyncio
    async def test_dropped_end_reopens_session(self, persistence, connectivity, clock):
        engine = make_engine(
            persistence=persistence,
            connectivity=connectivity,
            clock=clock,
            offline_queue_max_size=1,
            offline_queue_overflow=OverflowPolicy.DROP_OLDEST,
        )
        first = await engine.start_session("learner-1", "mathematics")
        second = await engine.start_session("learner-2", "science")
        await connectivity.set_online(False)

        assert isinstance(await engine.end_session(first.id), ConnectivityDeferred)
        assert engine.lifecycle.is_closing(first.id)

        await engine.send_message(second.id, "hello")

        assert engine.queue.dropped_count == 1
        assert not engine.lifecycle.is_closing(first.id)
        assert first.is_active
        assert (await engine.get_active_session("learner-1")).id == first.id

        await connectivity.set_online(True)
        await engine.offline_sync.sync_now()

        assert await engine.end_session(first.id) is None
        assert not first.is_active
        assert first.messages[-1].metadata["message_type"] == "farewell"

    @pytest.mark.asyncio
    async def test_dropped_send_gets_undelivered_notice(self, persistence, connectivity, clock):
        engine = make_engine(
            persistence=persistence,
            connectivity=connectivity,
            clock=clock,
            offline_queue_max_size=1,
            offline_queue_overflow=OverflowPolicy.DROP_OLDEST,
        )
        first = await engine.start_session("learner-1", "mathematics")
        second = await engine.start_session("learner-2", "science")
        events = []
        engine.message_events.subscribe(events.append)
        await connectivity.set_online(False)

        await engine.send_message(first.id, "hello")
        learner_message = first.messages[1]
        dropped_id = engine.queue.peek().id
        await engine.send_message(second.id, "hi")

        notice = first.messages[-1]
        assert [m.content for m in first.messages][1:] == [
            "hello",
            OFFLINE_PLACEHOLDER_TEXT,
            OFFLINE_DROPPED_TEXT,
        ]
        assert notice.is_from_tutor
        assert notice.metadata["offline_dropped"] is True
        assert notice.metadata["dropped_operation_id"] == dropped_id
        assert first.reply_to(learner_message.id) is notice
        assert any(event.message.id == notice.id for event in events)
        assert not engine.queue.has_pending(first.id)

        await connectivity.set_online(True)
        result = await engine.offline_sync.sync_now()

        assert result.replayed == 1
        assert len(first.messages) == 4
        assert second.messages[-1].metadata["in_reply_to"] == second.messages[1].id

    @pytest.mark.asyncio
    async def test_queue_survives_restart(self, persistence, clock):
        """Test work queued before a restart is replayed by the next engine."""
        offline = ManualConnectivity(initially_online=False)
        first = make_engine(persistence=persistence, connectivity=offline, clock=clock)
        await first.start()
        session = await first.start_session("learner-1", "english")
        await first.send_message(session.id, "hello")
        await first.end_session(session.id)
        await first.stop()

        restarted = make_engine(persistence=persistence, connectivity=ManualConnectivity(), clock=clock)
        await restarted.start()
        try:
            result = await restarted.offline_sync.wait_for_sync()
            assert result.replayed == 2
            ended = await restarted.get_session(session.id)
            assert ended.end_time is not None
            assert len(ended.messages) == 5
            assert len(restarted.queue) == 0
        finally:
            await restarted.stop()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
