"""
Unit Tests for Session State and the Session Store
"""

import asyncio
import pytest
import sys
import os
from datetime import datetime, timedelta

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "tutoring_sync_engine", "src"))

from tutoring_sync_engine.errors import InvalidStateError, NotFoundError, ValidationError
from tutoring_sync_engine.learning_style import LearningStyle
from tutoring_sync_engine.session_state import (
    RequestType,
    TutoringMessage,
    TutoringSession,
    TutorPersonality,
)
from tutoring_sync_engine.session_store import SessionStore

START = datetime(2024, 3, 1, 15, 0)


def make_session(session_id="s1", user_id="u1", start=START) -> TutoringSession:
    return TutoringSession(id=session_id, user_id=user_id, subject="science", start_time=start)


def message(msg_id, from_tutor=False, metadata=None) -> TutoringMessage:
    return TutoringMessage(
        id=msg_id,
        is_from_tutor=from_tutor,
        content=f"text {msg_id}",
        timestamp=START,
        metadata=metadata,
    )


class TestTutoringSession:
    """Test suite for TutoringSession."""

    def test_new_session_is_active(self):
        session = make_session()
        assert session.is_active
        assert session.messages == []
        assert session.personality == TutorPersonality.ENCOURAGING

    def test_append_after_end_is_rejected(self):
        session = make_session()
        session.end(START + timedelta(minutes=5))
        assert not session.is_active
        with pytest.raises(InvalidStateError):
            session.append_message(message("m1"))

    def test_end_twice_is_rejected(self):
        session = make_session()
        session.end(START)
        with pytest.raises(InvalidStateError):
            session.end(START + timedelta(minutes=1))

    def test_end_before_start_is_rejected(self):
        with pytest.raises(ValidationError):
            make_session().end(START - timedelta(seconds=1))

    def test_reply_to_ignores_placeholders(self):
        """Test only real tutor replies count as answering a learner message."""
        session = make_session()
        session.append_message(message("learner"))
        session.append_message(message("ph", True, {"placeholder_for": "learner", "is_offline_placeholder": True}))
        assert session.reply_to("learner") is None

        session.append_message(message("reply", True, {"in_reply_to": "learner"}))
        assert session.reply_to("learner").id == "reply"
        assert session.find_message("ph").is_from_tutor

    def test_dict_round_trip(self):
        session = TutoringSession(
            id="s1",
            user_id="u1",
            subject="english",
            start_time=START,
            personality=TutorPersonality.CHALLENGING,
            language="nd",
            learning_style=LearningStyle(preferred_depth=0.9),
            lesson_id="lesson-2",
        )
        session.append_message(
            TutoringMessage(
                id="m1",
                is_from_tutor=False,
                content="What is a noun?",
                timestamp=START,
                request_type=RequestType.CONCEPT_EXPLANATION,
            )
        )
        session.end(START + timedelta(minutes=3))

        restored = TutoringSession.from_dict(session.to_dict())

        assert restored.to_dict() == session.to_dict()
        assert restored.messages[0].request_type == RequestType.CONCEPT_EXPLANATION
        assert restored.end_time == START + timedelta(minutes=3)


class TestSessionStore:
    """Test suite for SessionStore."""

    def test_require_unknown_session(self):
        with pytest.raises(NotFoundError):
            SessionStore().require("missing")

    def test_active_for_user_newest_first(self):
        store = SessionStore()
        store.add(make_session("old", start=START))
        store.add(make_session("new", start=START + timedelta(hours=1)))
        store.add(make_session("other", user_id="u2"))

        assert [s.id for s in store.active_for_user("u1")] == ["new", "old"]
        assert "other" in store
        assert len(store) == 3

    def test_remove(self):
        store = SessionStore()
        store.add(make_session())
        assert store.remove("s1").id == "s1"
        assert store.get("s1") is None
        assert store.remove("s1") is None

    @pytest.mark.asyncio
    async def test_lock_is_per_session(self):
        store = SessionStore()
        assert store.lock_for("a") is store.lock_for("a")
        assert store.lock_for("a") is not store.lock_for("b")

        order = []

        async def turn(name):
            async with store.lock_for("a"):
                order.append(f"{name}-start")
                await asyncio.sleep(0.01)
                order.append(f"{name}-end")

        await asyncio.gather(turn("one"), turn("two"))
        assert order == ["one-start", "one-end", "two-start", "two-end"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
