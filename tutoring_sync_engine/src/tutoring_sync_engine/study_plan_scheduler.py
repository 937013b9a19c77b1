"""
Study Plan Scheduler

Spreads a subject -> hours distribution over a date range as one-hour
sessions stacked from 16:00 each day.

If the range is too short for the requested hours the tail of the shuffled
subject list is dropped. The plan reports both the requested hours
(subject_distribution) and what was actually scheduled (scheduled_hours) so
the caller can see the shortfall.
"""

import asyncio
import logging
import math
import random
import uuid
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from tutoring_sync_engine.errors import NotFoundError, ValidationError
from tutoring_sync_engine.event_bus import EventBus
from tutoring_sync_engine.persistence import STUDY_PLANS, Persistence
from tutoring_sync_engine.response_templates import subject_display_name

logger = logging.getLogger(__name__)

FIRST_SESSION_HOUR = 16
# Sessions run 16:00-23:00 at most
MAX_SESSIONS_PER_DAY = 7
SESSION_DESCRIPTION = "Focus on key concepts and practice problems"
DEFAULT_PLAN_DESCRIPTION = "AI-generated study plan based on your learning needs"


@dataclass(frozen=True)
class StudySession:
    """One scheduled one-hour block."""
    id: str
    scheduled_date: date
    start_time: time
    end_time: time
    subject: str
    title: str
    description: str = SESSION_DESCRIPTION
    lesson_id: Optional[str] = None
    quiz_id: Optional[str] = None
    is_completed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "scheduled_date": self.scheduled_date.isoformat(),
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
            "subject": self.subject,
            "title": self.title,
            "description": self.description,
            "lesson_id": self.lesson_id,
            "quiz_id": self.quiz_id,
            "is_completed": self.is_completed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StudySession":
        return cls(
            id=data["id"],
            scheduled_date=date.fromisoformat(data["scheduled_date"]),
            start_time=time.fromisoformat(data["start_time"]),
            end_time=time.fromisoformat(data["end_time"]),
            subject=data["subject"],
            title=data["title"],
            description=data.get("description", SESSION_DESCRIPTION),
            lesson_id=data.get("lesson_id"),
            quiz_id=data.get("quiz_id"),
            is_completed=data.get("is_completed", False),
        )


@dataclass(frozen=True)
class StudyPlan:
    """A dated schedule of study sessions for one learner."""
    id: str
    user_id: str
    created_at: datetime
    start_date: date
    end_date: date
    title: str
    description: str
    sessions: List[StudySession] = field(default_factory=list)
    subject_distribution: Dict[str, int] = field(default_factory=dict)
    is_active: bool = True

    @property
    def scheduled_hours(self) -> Dict[str, int]:
        """Hours per subject that made it into the schedule."""
        return dict(Counter(s.subject for s in self.sessions))

    @property
    def unscheduled_hours(self) -> Dict[str, int]:
        """Requested hours per subject that did not fit (only subjects with a shortfall)."""
        scheduled = self.scheduled_hours
        return {
            subject: hours - scheduled.get(subject, 0)
            for subject, hours in self.subject_distribution.items()
            if hours > scheduled.get(subject, 0)
        }

    @property
    def completed_count(self) -> int:
        return sum(1 for s in self.sessions if s.is_completed)

    def find_session(self, session_id: str) -> Optional[StudySession]:
        for session in self.sessions:
            if session.id == session_id:
                return session
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat(),
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "title": self.title,
            "description": self.description,
            "sessions": [s.to_dict() for s in self.sessions],
            "subject_distribution": dict(self.subject_distribution),
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StudyPlan":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            start_date=date.fromisoformat(data["start_date"]),
            end_date=date.fromisoformat(data["end_date"]),
            title=data["title"],
            description=data["description"],
            sessions=[StudySession.from_dict(s) for s in data.get("sessions", [])],
            subject_distribution=dict(data.get("subject_distribution") or {}),
            is_active=data.get("is_active", True),
        )


def _as_date(value: Union[date, datetime]) -> date:
    return value.date() if isinstance(value, datetime) else value


class StudyPlanScheduler:
    """Creates study plans and tracks session completion."""

    def __init__(
        self,
        persistence: Persistence,
        plan_events: Optional[EventBus] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Args:
            persistence: Store for plans
            plan_events: Bus every created or updated plan is published on
            rng: Random source for the subject shuffle
            clock: Returns the current time
        """
        self.persistence = persistence
        self.plan_events = plan_events or EventBus("study_plans")
        self.rng = rng or random.Random()
        self.clock = clock
        self._plans: Dict[str, StudyPlan] = {}
        self._lock = asyncio.Lock()

    async def load(self) -> int:
        """Load active, not yet finished plans from persistence."""
        today = self.clock().date()
        loaded = 0
        for data in await self.persistence.list_values(STUDY_PLANS):
            plan = StudyPlan.from_dict(data)
            if plan.is_active and plan.end_date >= today:
                self._plans[plan.id] = plan
                loaded += 1
        logger.info(f"📋 [StudyPlanScheduler] Loaded {loaded} active study plans")
        return loaded

    async def create_study_plan(
        self,
        user_id: str,
        start_date: Union[date, datetime],
        end_date: Union[date, datetime],
        subject_distribution: Dict[str, int],
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> StudyPlan:
        """
        Build a plan of one-hour sessions covering the requested hours.

        Args:
            user_id: Learner id
            start_date: First day (inclusive)
            end_date: Last day (inclusive)
            subject_distribution: Subject -> whole hours requested
            title: Plan title (defaults to "Study Plan (d/m - d/m)")
            description: Plan description

        Returns:
            The stored plan

        Raises:
            ValidationError: end before start, negative or non-integer hours,
                or more sessions per day than fit between 16:00 and 23:00
        """
        start = _as_date(start_date)
        end = _as_date(end_date)
        if end < start:
            raise ValidationError("End date cannot be before start date")

        for subject, hours in subject_distribution.items():
            if not subject or not str(subject).strip():
                raise ValidationError("Subject names cannot be empty")
            if isinstance(hours, bool) or not isinstance(hours, int):
                raise ValidationError(f"Hours for {subject} must be a whole number")
            if hours < 0:
                raise ValidationError(f"Hours for {subject} cannot be negative")

        total_days = (end - start).days + 1
        total_hours = sum(subject_distribution.values())
        sessions_per_day = math.ceil(total_hours / total_days)
        if sessions_per_day > MAX_SESSIONS_PER_DAY:
            raise ValidationError(
                f"{total_hours} hours over {total_days} days needs {sessions_per_day} sessions a day; "
                f"at most {MAX_SESSIONS_PER_DAY} fit"
            )

        labels = [subject for subject, hours in subject_distribution.items() for _ in range(hours)]
        self.rng.shuffle(labels)

        sessions: List[StudySession] = []
        for day in range(total_days):
            if not labels:
                break
            scheduled_date = start + timedelta(days=day)
            for index in range(sessions_per_day):
                if not labels:
                    break
                subject = labels.pop(0)
                sessions.append(StudySession(
                    id=uuid.uuid4().hex,
                    scheduled_date=scheduled_date,
                    start_time=time(FIRST_SESSION_HOUR + index, 0),
                    end_time=time(FIRST_SESSION_HOUR + index + 1, 0),
                    subject=subject,
                    title=f"{subject_display_name(subject)} Study Session",
                ))

        plan = StudyPlan(
            id=uuid.uuid4().hex,
            user_id=user_id,
            created_at=self.clock(),
            start_date=start,
            end_date=end,
            title=title or f"Study Plan ({start.day}/{start.month} - {end.day}/{end.month})",
            description=description or DEFAULT_PLAN_DESCRIPTION,
            sessions=sessions,
            subject_distribution=dict(subject_distribution),
        )

        async with self._lock:
            self._plans[plan.id] = plan
        await self._save_plan(plan)
        await self.plan_events.publish(plan)

        if plan.unscheduled_hours:
            logger.warning(
                f"⚠️ [StudyPlanScheduler] Plan {plan.id} could not fit {plan.unscheduled_hours}"
            )
        logger.info(
            f"✅ [StudyPlanScheduler] Created plan {plan.id} with {len(sessions)} sessions "
            f"over {total_days} days"
        )
        return plan

    async def get_study_plan(self, plan_id: str) -> Optional[StudyPlan]:
        plan = self._plans.get(plan_id)
        if plan is not None:
            return plan
        data = await self.persistence.get(STUDY_PLANS, plan_id)
        if not data:
            return None
        plan = StudyPlan.from_dict(data)
        self._plans[plan.id] = plan
        return plan

    async def get_active_study_plan(self, user_id: str) -> Optional[StudyPlan]:
        """Most recently created active plan of the user that has not finished."""
        today = self.clock().date()
        candidates = [
            p for p in self._plans.values()
            if p.user_id == user_id and p.is_active and p.end_date >= today
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda p: p.created_at)

    async def update_session_completion(self, plan_id: str, session_id: str, is_completed: bool) -> StudyPlan:
        """
        Set one study session's completion flag.

        Raises:
            NotFoundError: unknown plan or session
        """
        async with self._lock:
            plan = await self.get_study_plan(plan_id)
            if plan is None:
                raise NotFoundError(f"Study plan {plan_id} not found")
            if plan.find_session(session_id) is None:
                raise NotFoundError(f"Study session {session_id} not found in plan {plan_id}")

            sessions = [
                replace(s, is_completed=is_completed) if s.id == session_id else s
                for s in plan.sessions
            ]
            updated = replace(plan, sessions=sessions)
            self._plans[plan_id] = updated

        await self._save_plan(updated)
        await self.plan_events.publish(updated)
        return updated

    async def _save_plan(self, plan: StudyPlan) -> None:
        try:
            await self.persistence.put(STUDY_PLANS, plan.id, plan.to_dict())
        except Exception as e:
            logger.error(f"❌ [StudyPlanScheduler] Error saving study plan {plan.id}: {e}", exc_info=True)
