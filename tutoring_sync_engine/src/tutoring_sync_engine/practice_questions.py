"""
Practice Question Cache

Per-subject pool of multiple-choice practice questions. A request is served
from the pool when enough matching (topic, difficulty) questions exist;
otherwise a fresh batch is generated and added to the pool.

Each subject pool is capped; when it overflows the oldest questions are
evicted from memory and from persistence.
"""

import asyncio
import logging
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from tutoring_sync_engine.errors import ValidationError
from tutoring_sync_engine.persistence import PRACTICE_QUESTIONS, Persistence
from tutoring_sync_engine.response_templates import subject_display_name

logger = logging.getLogger(__name__)

OPTION_LABELS = ["A", "B", "C", "D"]


@dataclass(frozen=True)
class PracticeQuestion:
    """A cached multiple-choice question."""
    id: str
    subject: str
    topic: str
    question: str
    options: List[str]
    correct_option_index: int
    explanation: str
    difficulty: str
    created_at: datetime = field(default_factory=datetime.now)
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.options:
            raise ValidationError("A practice question needs at least one option")
        if not 0 <= self.correct_option_index < len(self.options):
            raise ValidationError(
                f"correct_option_index {self.correct_option_index} out of range for "
                f"{len(self.options)} options"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "subject": self.subject,
            "topic": self.topic,
            "question": self.question,
            "options": list(self.options),
            "correct_option_index": self.correct_option_index,
            "explanation": self.explanation,
            "difficulty": self.difficulty,
            "created_at": self.created_at.isoformat(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PracticeQuestion":
        return cls(
            id=data["id"],
            subject=data["subject"],
            topic=data["topic"],
            question=data["question"],
            options=list(data["options"]),
            correct_option_index=data["correct_option_index"],
            explanation=data["explanation"],
            difficulty=data["difficulty"],
            created_at=datetime.fromisoformat(data["created_at"]),
            metadata=data.get("metadata"),
        )


class PracticeQuestionCache:
    """
    Generate-or-sample cache of practice questions, keyed by subject.

    All randomness (sampling, correct answer position) comes from the injected
    rng. Mutations are serialized by an asyncio.Lock.
    """

    def __init__(
        self,
        persistence: Persistence,
        rng: Optional[random.Random] = None,
        max_per_subject: int = 500,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Args:
            persistence: Store used to keep the cache across restarts
            rng: Random source (seed it for reproducible output)
            max_per_subject: Questions kept per subject before evicting the oldest
            clock: Returns the current time
        """
        if max_per_subject < 1:
            raise ValueError("max_per_subject must be at least 1")
        self.persistence = persistence
        self.rng = rng or random.Random()
        self.max_per_subject = max_per_subject
        self.clock = clock
        self._questions: Dict[str, List[PracticeQuestion]] = {}
        self._lock = asyncio.Lock()

        # Stats
        self.generated_count = 0
        self.served_from_cache = 0
        self.evicted_count = 0

    async def load(self) -> int:
        """Rebuild the in-memory pools from persistence. Returns the number loaded."""
        stored = await self.persistence.list_values(PRACTICE_QUESTIONS)
        questions = sorted(
            (PracticeQuestion.from_dict(d) for d in stored),
            key=lambda q: q.created_at,
        )
        async with self._lock:
            self._questions = {}
            for question in questions:
                self._questions.setdefault(question.subject, []).append(question)
        logger.info(f"📚 [PracticeQuestionCache] Loaded {len(questions)} cached questions")
        return len(questions)

    def cached_for(self, subject: str, topic: Optional[str] = None, difficulty: Optional[str] = None) -> List[PracticeQuestion]:
        return [
            q for q in self._questions.get(subject, [])
            if (topic is None or q.topic == topic) and (difficulty is None or q.difficulty == difficulty)
        ]

    async def generate_practice_questions(
        self,
        subject: str,
        topic: str,
        difficulty: str,
        count: int,
        grade_level: str,
    ) -> List[PracticeQuestion]:
        """
        Return `count` questions for (subject, topic, difficulty).

        Serves a random sample without replacement when the pool already holds
        enough matches; otherwise generates `count` new questions and caches them.

        Raises:
            ValidationError: count < 1, count larger than the subject cap, or blank subject
        """
        if not subject or not subject.strip():
            raise ValidationError("Subject cannot be empty")
        if count < 1:
            raise ValidationError("count must be at least 1")
        if count > self.max_per_subject:
            raise ValidationError(f"count cannot exceed {self.max_per_subject}")

        async with self._lock:
            matching = self.cached_for(subject, topic, difficulty)
            if len(matching) >= count:
                self.served_from_cache += count
                return self.rng.sample(matching, count)

            questions = [
                self._build_question(subject, topic, difficulty, grade_level, i)
                for i in range(count)
            ]
            pool = self._questions.setdefault(subject, [])
            pool.extend(questions)
            self.generated_count += count
            evicted = self._evict_overflow(subject)

        for question in questions:
            await self.persistence.put(PRACTICE_QUESTIONS, question.id, question.to_dict())
        for question in evicted:
            await self.persistence.delete(PRACTICE_QUESTIONS, question.id)

        logger.info(
            f"✅ [PracticeQuestionCache] Generated {count} {difficulty} questions on "
            f"'{topic}' for {subject}"
        )
        return questions

    def _build_question(self, subject: str, topic: str, difficulty: str, grade_level: str, index: int) -> PracticeQuestion:
        now = self.clock()
        return PracticeQuestion(
            id=uuid.uuid4().hex,
            subject=subject,
            topic=topic,
            question=f"Practice question {index + 1} about {topic} in {subject_display_name(subject)}",
            options=[f"Option {label}" for label in OPTION_LABELS],
            correct_option_index=self.rng.randrange(len(OPTION_LABELS)),
            explanation=f"This is the explanation for question {index + 1}",
            difficulty=difficulty,
            created_at=now,
            metadata={"grade_level": grade_level, "generated_at": now.isoformat()},
        )

    def _evict_overflow(self, subject: str) -> List[PracticeQuestion]:
        """Drop the oldest questions of a subject beyond the cap. Caller holds the lock."""
        pool = self._questions.get(subject, [])
        overflow = len(pool) - self.max_per_subject
        if overflow <= 0:
            return []
        evicted = pool[:overflow]
        del pool[:overflow]
        self.evicted_count += overflow
        logger.info(f"🧹 [PracticeQuestionCache] Evicted {overflow} old {subject} questions")
        return evicted

    def get_stats(self) -> Dict[str, Any]:
        return {
            "subjects": len(self._questions),
            "cached_questions": sum(len(pool) for pool in self._questions.values()),
            "generated": self.generated_count,
            "served_from_cache": self.served_from_cache,
            "evicted": self.evicted_count,
            "max_per_subject": self.max_per_subject,
        }

    def clear(self):
        self._questions.clear()
