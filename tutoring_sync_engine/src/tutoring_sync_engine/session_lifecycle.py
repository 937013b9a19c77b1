"""
Session Lifecycle Manager

Starts, ends and drives tutoring sessions. A session is Active until it is
ended and never reopens.

Online, a learner message is answered straight away: append the learner
message, dispatch, append the reply, persist, publish both. Offline, the
learner message is appended optimistically next to a placeholder reply and
the reply step is queued. Replay later picks up at the reply step, so the
learner message is never appended twice.

Every mutation of a session happens under that session's lock.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Union

from tutoring_sync_engine.connectivity import ConnectivityMonitor
from tutoring_sync_engine.errors import (
    ConnectivityDeferred,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from tutoring_sync_engine.event_bus import EventBus
from tutoring_sync_engine.learning_style import LearningStyle
from tutoring_sync_engine.offline_queue import (
    OfflineOperation,
    OfflineOperationKind,
    OfflineOperationQueue,
)
from tutoring_sync_engine.persistence import LEARNING_STYLES, SESSIONS, Persistence
from tutoring_sync_engine.request_classifier import classify_request
from tutoring_sync_engine.response_dispatcher import ResponseDispatcher
from tutoring_sync_engine.response_templates import (
    OFFLINE_DROPPED_TEXT,
    OFFLINE_PLACEHOLDER_TEXT,
    farewell_message,
    welcome_message,
)
from tutoring_sync_engine.session_state import (
    MessageEvent,
    RequestType,
    TutoringMessage,
    TutoringSession,
    TutorPersonality,
    new_id,
)
from tutoring_sync_engine.session_store import SessionStore

logger = logging.getLogger(__name__)


class SessionLifecycleManager:
    """Session state machine with online and offline paths."""

    def __init__(
        self,
        store: SessionStore,
        persistence: Persistence,
        dispatcher: ResponseDispatcher,
        queue: OfflineOperationQueue,
        connectivity: ConnectivityMonitor,
        message_events: Optional[EventBus] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Args:
            store: Owner of live sessions
            persistence: System of record for sessions and learning styles
            dispatcher: Builds tutor replies
            queue: Offline operation queue
            connectivity: Tells whether to answer now or defer
            message_events: Bus every appended message is published on
            clock: Returns the current time
        """
        self.store = store
        self.persistence = persistence
        self.dispatcher = dispatcher
        self.queue = queue
        self.connectivity = connectivity
        self.message_events = message_events or EventBus("messages")
        self.clock = clock

        # Called after work is queued while online, so replay starts promptly
        self.drain_trigger: Optional[Callable[[], Any]] = None

        # Sessions whose end is queued; they take no further messages
        self._closing: Set[str] = set()
        self._learning_styles: Dict[str, LearningStyle] = {}

    # ------------------------------------------------------------------
    # Start / end
    # ------------------------------------------------------------------

    async def start_session(
        self,
        user_id: str,
        subject: str,
        personality: TutorPersonality = TutorPersonality.ENCOURAGING,
        language: str = "en",
        learning_style: Optional[LearningStyle] = None,
        lesson_id: Optional[str] = None,
        quiz_id: Optional[str] = None,
    ) -> TutoringSession:
        """
        Create an Active session and greet the learner.

        Args:
            user_id: Learner id
            subject: Subject key (e.g. "mathematics")
            personality: Tutor tone
            language: Reply language code
            learning_style: Preferences for this session; the learner's saved
                preference (or the default) when omitted
            lesson_id: Lesson the session is attached to
            quiz_id: Quiz the session is attached to

        Returns:
            The new session, already holding the welcome message

        Raises:
            ValidationError: blank subject or user id
        """
        if not subject or not subject.strip():
            raise ValidationError("Subject cannot be empty")
        if not user_id or not user_id.strip():
            raise ValidationError("User id cannot be empty")

        if learning_style is None:
            learning_style = await self.get_learning_style(user_id)

        now = self.clock()
        session = TutoringSession(
            id=new_id(),
            user_id=user_id,
            subject=subject,
            start_time=now,
            personality=TutorPersonality(personality),
            language=language or "en",
            learning_style=learning_style,
            lesson_id=lesson_id,
            quiz_id=quiz_id,
        )
        welcome = TutoringMessage(
            id=new_id(),
            is_from_tutor=True,
            content=await self.dispatcher.translator.translate(
                welcome_message(subject, session.personality, lesson_id, quiz_id), session.language
            ),
            timestamp=now,
            metadata={
                "message_type": "welcome",
                "subject": subject,
                "lesson_id": lesson_id,
                "quiz_id": quiz_id,
            },
        )
        session.append_message(welcome)

        self.store.add(session)
        await self._save_session(session)
        await self._publish(session, welcome)

        logger.info(f"✅ [SessionLifecycle] Started {subject} session {session.id} for user {user_id}")
        return session

    async def end_session(self, session_id: str) -> Optional[ConnectivityDeferred]:
        """
        End an Active session.

        Online, the farewell is appended and the session leaves the live store.
        Offline (or while earlier work for the session is still queued) the end
        is queued and a ConnectivityDeferred is returned.

        Raises:
            NotFoundError: unknown session
            InvalidStateError: session already ended or already closing
        """
        async with self.store.lock_for(session_id):
            session = await self._require_active(session_id)

            if self._must_defer(session_id):
                op = await self.queue.enqueue(
                    OfflineOperation(kind=OfflineOperationKind.END_SESSION, session_id=session_id)
                )
                self._closing.add(session_id)
                self._kick_drain()
                logger.info(f"📴 [SessionLifecycle] End of session {session_id} queued ({op.id})")
                return ConnectivityDeferred(
                    operation_id=op.id,
                    kind=op.kind.value,
                    session_id=session_id,
                )

            await self._end(session)
            return None

    async def _end(self, session: TutoringSession) -> TutoringMessage:
        """Append the farewell, mark the session Ended, persist and publish. Caller holds the lock."""
        now = max(self.clock(), session.start_time)
        duration_minutes = int((now - session.start_time).total_seconds() // 60)
        message_count = len(session.messages)

        farewell = TutoringMessage(
            id=new_id(),
            is_from_tutor=True,
            content=await self.dispatcher.translator.translate(
                farewell_message(session.subject, session.personality, duration_minutes, message_count),
                session.language,
            ),
            timestamp=now,
            metadata={
                "message_type": "farewell",
                "session_duration_minutes": duration_minutes,
                "message_count": message_count,
            },
        )
        session.append_message(farewell)
        session.end(now)

        await self._save_session(session)
        self.store.remove(session.id)
        self._closing.discard(session.id)
        await self._publish(session, farewell)

        logger.info(
            f"✅ [SessionLifecycle] Ended session {session.id} after {duration_minutes} min, "
            f"{message_count} messages"
        )
        return farewell

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send_message(
        self,
        session_id: str,
        content: str,
        request_type: Optional[RequestType] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TutoringMessage:
        """
        Send a learner message and get the tutor reply.

        An explicit request_type wins over classification. Offline, the
        returned message is the placeholder; the real reply arrives on the
        message event bus after replay.

        Raises:
            ValidationError: blank content
            NotFoundError: unknown session
            InvalidStateError: session ended or closing
            QueueFullError: offline and the queue refuses more work
        """
        if not content or not content.strip():
            raise ValidationError("Message content cannot be empty")

        async with self.store.lock_for(session_id):
            session = await self._require_active(session_id)

            resolved_type = RequestType(request_type) if request_type else classify_request(
                content, session.lesson_id, session.quiz_id
            )
            now = self.clock()
            learner_message = TutoringMessage(
                id=new_id(),
                is_from_tutor=False,
                content=content,
                timestamp=now,
                request_type=resolved_type,
                metadata=dict(metadata) if metadata else None,
            )

            if self._must_defer(session_id):
                return await self._send_deferred(session, learner_message)

            session.append_message(learner_message)
            reply = await self.dispatcher.dispatch(session, learner_message)
            session.append_message(reply)

            await self._save_session(session)
            await self._publish(session, learner_message)
            await self._publish(session, reply)
            return reply

    async def _send_deferred(self, session: TutoringSession, learner_message: TutoringMessage) -> TutoringMessage:
        # Enqueue first so a full queue leaves the session untouched
        op = await self.queue.enqueue(
            OfflineOperation(
                kind=OfflineOperationKind.SEND_MESSAGE,
                session_id=session.id,
                payload={
                    "message_id": learner_message.id,
                    "content": learner_message.content,
                    "request_type": learner_message.request_type.value if learner_message.request_type else None,
                    "metadata": learner_message.metadata,
                },
            )
        )

        placeholder = TutoringMessage(
            id=new_id(),
            is_from_tutor=True,
            content=OFFLINE_PLACEHOLDER_TEXT,
            timestamp=learner_message.timestamp,
            request_type=learner_message.request_type,
            metadata={
                "is_offline_placeholder": True,
                "operation_id": op.id,
                "placeholder_for": learner_message.id,
            },
        )
        session.append_message(learner_message)
        session.append_message(placeholder)

        await self._save_session(session)
        await self._publish(session, learner_message)
        await self._publish(session, placeholder)
        self._kick_drain()
        return placeholder

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    async def replay_operation(self, op: OfflineOperation) -> Union[TutoringMessage, None]:
        """
        Apply one queued operation. Used by the offline queue drain.

        Raises whatever the underlying step raises; the drain stops on it.
        """
        if op.kind is OfflineOperationKind.SEND_MESSAGE:
            return await self._replay_send(op)
        if op.kind is OfflineOperationKind.END_SESSION:
            return await self._replay_end(op)
        raise ValidationError(f"Unknown offline operation kind: {op.kind}")

    async def _replay_send(self, op: OfflineOperation) -> TutoringMessage:
        message_id = op.payload.get("message_id")
        async with self.store.lock_for(op.session_id):
            session = self.store.require(op.session_id)
            learner_message = session.find_message(message_id)
            if learner_message is None:
                raise NotFoundError(f"Message {message_id} not found in session {op.session_id}")

            existing = session.reply_to(message_id)
            if existing is not None:
                logger.info(f"ℹ️ [SessionLifecycle] Message {message_id} already answered, skipping replay")
                return existing

            reply = await self.dispatcher.dispatch(session, learner_message)
            session.append_message(reply)
            await self._save_session(session)
            await self._publish(session, reply)
            return reply

    async def _replay_end(self, op: OfflineOperation) -> TutoringMessage:
        async with self.store.lock_for(op.session_id):
            session = self.store.require(op.session_id)
            return await self._end(session)

    async def handle_dropped_operation(self, op: OfflineOperation) -> Optional[TutoringMessage]:
        """
        Undo the optimistic effects of an operation the full queue discarded.

        A dropped end reopens the session. A dropped send gets a tutor note in
        place of the reply that will never come. Takes no session lock: the
        queue calls this from inside enqueue, where the caller may already hold
        the lock of the same session.
        """
        if op.kind is OfflineOperationKind.END_SESSION:
            self._closing.discard(op.session_id)
            logger.warning(f"⚠️ [SessionLifecycle] Queued end of session {op.session_id} was dropped, session stays active")
            return None

        session = self.store.get(op.session_id)
        message_id = op.payload.get("message_id")
        if session is None or not session.is_active:
            return None
        if session.find_message(message_id) is None or session.reply_to(message_id) is not None:
            return None

        notice = TutoringMessage(
            id=new_id(),
            is_from_tutor=True,
            content=OFFLINE_DROPPED_TEXT,
            timestamp=self.clock(),
            metadata={
                "offline_dropped": True,
                "dropped_operation_id": op.id,
                "in_reply_to": message_id,
            },
        )
        session.append_message(notice)
        logger.warning(f"⚠️ [SessionLifecycle] Reply to message {message_id} in session {op.session_id} was dropped")

        await self._save_session(session)
        await self._publish(session, notice)
        return notice

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_active_session(self, user_id: str) -> Optional[TutoringSession]:
        """Most recently started Active session of the user (closing sessions excluded)."""
        for session in self.store.active_for_user(user_id):
            if session.id not in self._closing:
                return session
        return None

    async def get_session(self, session_id: str) -> Optional[TutoringSession]:
        """Live session, or the archived copy for ended sessions."""
        session = self.store.get(session_id)
        if session is not None:
            return session
        data = await self.persistence.get(SESSIONS, session_id)
        return TutoringSession.from_dict(data) if data else None

    async def get_session_history(self, user_id: str) -> List[TutoringSession]:
        """All sessions of a user, newest first."""
        sessions = {
            data["id"]: TutoringSession.from_dict(data)
            for data in await self.persistence.list_values(SESSIONS)
            if data.get("user_id") == user_id
        }
        for live in self.store.all():
            if live.user_id == user_id:
                sessions[live.id] = live
        return sorted(sessions.values(), key=lambda s: s.start_time, reverse=True)

    def is_closing(self, session_id: str) -> bool:
        return session_id in self._closing

    # ------------------------------------------------------------------
    # Learning style preferences
    # ------------------------------------------------------------------

    async def set_learning_style(self, user_id: str, style: LearningStyle) -> LearningStyle:
        """Save a learner's preference. Applies to sessions started afterwards."""
        self._learning_styles[user_id] = style
        try:
            await self.persistence.put(LEARNING_STYLES, user_id, style.to_dict())
        except Exception as e:
            logger.error(f"❌ [SessionLifecycle] Error saving learning style for {user_id}: {e}", exc_info=True)
        return style

    async def get_learning_style(self, user_id: str) -> LearningStyle:
        style = self._learning_styles.get(user_id)
        if style is not None:
            return style
        data = await self.persistence.get(LEARNING_STYLES, user_id)
        style = LearningStyle.from_dict(data) if data else LearningStyle()
        self._learning_styles[user_id] = style
        return style

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def restore(self) -> int:
        """
        Reload Active sessions from persistence into the live store.

        Call after the offline queue is loaded so sessions with a queued end
        come back as closing.
        """
        restored = 0
        for data in await self.persistence.list_values(SESSIONS):
            if data.get("end_time") or data["id"] in self.store:
                continue
            self.store.add(TutoringSession.from_dict(data))
            restored += 1

        for op in self.queue.snapshot():
            if op.kind is OfflineOperationKind.END_SESSION:
                self._closing.add(op.session_id)

        logger.info(f"💾 [SessionLifecycle] Restored {restored} active sessions")
        return restored

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _require_active(self, session_id: str) -> TutoringSession:
        session = self.store.get(session_id)
        if session is None:
            archived = await self.persistence.get(SESSIONS, session_id)
            if archived and archived.get("end_time"):
                raise InvalidStateError(f"No active session with id {session_id}")
            raise NotFoundError(f"Session {session_id} not found")
        if not session.is_active or session_id in self._closing:
            raise InvalidStateError(f"No active session with id {session_id}")
        return session

    def _must_defer(self, session_id: str) -> bool:
        # Queued work for the session must be applied first to keep its order
        return not self.connectivity.is_online() or self.queue.has_pending(session_id)

    def _kick_drain(self) -> None:
        if self.connectivity.is_online() and self.drain_trigger is not None:
            self.drain_trigger()

    async def _save_session(self, session: TutoringSession) -> None:
        try:
            await self.persistence.put(SESSIONS, session.id, session.to_dict())
        except Exception as e:
            # The live store stays authoritative for this process
            logger.error(f"❌ [SessionLifecycle] Error saving session {session.id}: {e}", exc_info=True)

    async def _publish(self, session: TutoringSession, message: TutoringMessage) -> None:
        await self.message_events.publish(MessageEvent(session_id=session.id, message=message))
