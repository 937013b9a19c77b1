"""
Session State Data Model

Defines the tutoring session, its messages, and the enums that tag them.
A session is Active until `end()` sets `end_time`; after that it is terminal
and rejects new messages.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

from tutoring_sync_engine.errors import InvalidStateError, ValidationError
from tutoring_sync_engine.learning_style import LearningStyle


class RequestType(Enum):
    """Learner intent for a single message turn."""
    CONCEPT_EXPLANATION = "concept_explanation"
    PROBLEM_SOLVING = "problem_solving"
    PRACTICE_QUESTIONS = "practice_questions"
    STUDY_PLANNING = "study_planning"
    MOTIVATION = "motivation"
    EXAM_PREPARATION = "exam_preparation"
    SUBJECT_OVERVIEW = "subject_overview"
    LESSON_HELP = "lesson_help"
    QUIZ_HELP = "quiz_help"
    QUICK_QUESTION = "quick_question"


class TutorPersonality(Enum):
    """Tone the tutor uses for welcome, farewell and reply suffixes."""
    ENCOURAGING = "encouraging"
    ANALYTICAL = "analytical"
    PATIENT = "patient"
    CHALLENGING = "challenging"
    CREATIVE = "creative"
    ADAPTABLE = "adaptable"


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class TutoringMessage:
    """One turn in a session, from the learner or the tutor."""
    id: str
    is_from_tutor: bool
    content: str
    timestamp: datetime
    request_type: Optional[RequestType] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "is_from_tutor": self.is_from_tutor,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "request_type": self.request_type.value if self.request_type else None,
            "metadata": dict(self.metadata) if self.metadata else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TutoringMessage":
        request_type = data.get("request_type")
        return cls(
            id=data["id"],
            is_from_tutor=data["is_from_tutor"],
            content=data["content"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            request_type=RequestType(request_type) if request_type else None,
            metadata=data.get("metadata"),
        )


@dataclass
class TutoringSession:
    """A bounded tutoring conversation between one learner and the tutor."""
    id: str
    user_id: str
    subject: str
    start_time: datetime
    personality: TutorPersonality = TutorPersonality.ENCOURAGING
    language: str = "en"
    learning_style: LearningStyle = field(default_factory=LearningStyle)
    lesson_id: Optional[str] = None
    quiz_id: Optional[str] = None
    end_time: Optional[datetime] = None
    messages: List[TutoringMessage] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.end_time is None

    def append_message(self, message: TutoringMessage) -> None:
        """Append a message. Ended sessions are terminal."""
        if not self.is_active:
            raise InvalidStateError(f"No active session with id {self.id}")
        self.messages.append(message)

    def end(self, at: datetime) -> None:
        """Move the session to the Ended state."""
        if not self.is_active:
            raise InvalidStateError(f"Session {self.id} has already ended")
        if at < self.start_time:
            raise ValidationError("Session end time cannot be before its start time")
        self.end_time = at

    def find_message(self, message_id: str) -> Optional[TutoringMessage]:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def reply_to(self, message_id: str) -> Optional[TutoringMessage]:
        """Return the real (non-placeholder) tutor reply to a learner message, if any."""
        for message in self.messages:
            metadata = message.metadata or {}
            if message.is_from_tutor and metadata.get("in_reply_to") == message_id:
                return message
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "subject": self.subject,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "personality": self.personality.value,
            "language": self.language,
            "learning_style": self.learning_style.to_dict(),
            "lesson_id": self.lesson_id,
            "quiz_id": self.quiz_id,
            "messages": [m.to_dict() for m in self.messages],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TutoringSession":
        end_time = data.get("end_time")
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            subject=data["subject"],
            start_time=datetime.fromisoformat(data["start_time"]),
            end_time=datetime.fromisoformat(end_time) if end_time else None,
            personality=TutorPersonality(data.get("personality", "encouraging")),
            language=data.get("language", "en"),
            learning_style=LearningStyle.from_dict(data.get("learning_style") or {}),
            lesson_id=data.get("lesson_id"),
            quiz_id=data.get("quiz_id"),
            messages=[TutoringMessage.from_dict(m) for m in data.get("messages", [])],
        )


@dataclass(frozen=True)
class MessageEvent:
    """Published for every message appended to a session."""
    session_id: str
    message: TutoringMessage
