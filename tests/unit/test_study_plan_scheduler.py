"""
Unit Tests for the Study Plan Scheduler

Tests session layout, validation, completion updates and plan lookup.
"""

import random
import pytest
import sys
import os
from collections import Counter
from datetime import date, datetime, time

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "tutoring_sync_engine", "src"))

from tutoring_sync_engine.errors import NotFoundError, ValidationError
from tutoring_sync_engine.event_bus import EventBus
from tutoring_sync_engine.persistence import STUDY_PLANS, InMemoryPersistence
from tutoring_sync_engine.study_plan_scheduler import StudyPlan, StudyPlanScheduler


class TestStudyPlanScheduler:
    """Test suite for StudyPlanScheduler."""

    @pytest.fixture
    def store(self):
        return InMemoryPersistence()

    @pytest.fixture
    def events(self):
        return EventBus("study_plans")

    @pytest.fixture
    def scheduler(self, store, events, clock):
        return StudyPlanScheduler(store, plan_events=events, rng=random.Random(4), clock=clock)

    @pytest.mark.asyncio
    async def test_spreads_hours_over_days(self, scheduler):
        """Test six hours over three days become two one-hour sessions a day."""
        plan = await scheduler.create_study_plan(
            "u1", date(2024, 3, 1), date(2024, 3, 3), {"mathematics": 4, "english": 2}
        )

        assert len(plan.sessions) == 6
        per_day = Counter(s.scheduled_date for s in plan.sessions)
        assert per_day == {date(2024, 3, 1): 2, date(2024, 3, 2): 2, date(2024, 3, 3): 2}
        for session in plan.sessions:
            assert session.start_time in (time(16, 0), time(17, 0))
            assert session.end_time.hour == session.start_time.hour + 1
            assert session.title == f"{session.subject.capitalize()} Study Session"
        assert plan.scheduled_hours == {"mathematics": 4, "english": 2}
        assert plan.unscheduled_hours == {}
        assert plan.title == "Study Plan (1/3 - 3/3)"
        assert plan.is_active

    @pytest.mark.asyncio
    async def test_single_day_plan(self, scheduler):
        plan = await scheduler.create_study_plan("u1", date(2024, 3, 1), date(2024, 3, 1), {"science": 3})
        assert [s.start_time for s in plan.sessions] == [time(16, 0), time(17, 0), time(18, 0)]

    @pytest.mark.asyncio
    async def test_fewer_hours_than_days(self, scheduler):
        plan = await scheduler.create_study_plan("u1", date(2024, 3, 1), date(2024, 3, 7), {"english": 2})
        assert [s.scheduled_date for s in plan.sessions] == [date(2024, 3, 1), date(2024, 3, 2)]

    @pytest.mark.asyncio
    async def test_accepts_datetimes(self, scheduler):
        plan = await scheduler.create_study_plan(
            "u1", datetime(2024, 3, 1, 9, 30), datetime(2024, 3, 2, 9, 30), {"english": 1}
        )
        assert plan.start_date == date(2024, 3, 1)
        assert plan.end_date == date(2024, 3, 2)

    @pytest.mark.asyncio
    async def test_empty_distribution(self, scheduler):
        plan = await scheduler.create_study_plan("u1", date(2024, 3, 1), date(2024, 3, 2), {})
        assert plan.sessions == []

    @pytest.mark.asyncio
    async def test_rejects_end_before_start(self, scheduler):
        with pytest.raises(ValidationError):
            await scheduler.create_study_plan("u1", date(2024, 3, 2), date(2024, 3, 1), {"english": 1})

    @pytest.mark.parametrize("distribution", [
        {"mathematics": -1},
        {"mathematics": 1.5},
        {"mathematics": True},
        {"": 2},
        {"mathematics": 8},
    ])
    @pytest.mark.asyncio
    async def test_rejects_bad_distribution(self, scheduler, distribution):
        with pytest.raises(ValidationError):
            await scheduler.create_study_plan("u1", date(2024, 3, 1), date(2024, 3, 1), distribution)

    @pytest.mark.asyncio
    async def test_seeded_layout_is_reproducible(self, clock):
        distribution = {"mathematics": 3, "english": 3, "science": 3}
        plans = []
        for _ in range(2):
            scheduler = StudyPlanScheduler(InMemoryPersistence(), rng=random.Random(9), clock=clock)
            plans.append(await scheduler.create_study_plan("u1", date(2024, 3, 1), date(2024, 3, 3), distribution))
        assert [s.subject for s in plans[0].sessions] == [s.subject for s in plans[1].sessions]

    @pytest.mark.asyncio
    async def test_plan_is_persisted_and_published(self, scheduler, store, events):
        published = []
        events.subscribe(published.append)

        plan = await scheduler.create_study_plan(
            "u1", date(2024, 3, 1), date(2024, 3, 2), {"english": 2}, title="Exam week"
        )

        assert published == [plan]
        stored = StudyPlan.from_dict(await store.get(STUDY_PLANS, plan.id))
        assert stored == plan
        assert stored.title == "Exam week"

    @pytest.mark.asyncio
    async def test_update_session_completion(self, scheduler, store, events):
        plan = await scheduler.create_study_plan("u1", date(2024, 3, 1), date(2024, 3, 2), {"english": 2})
        published = []
        events.subscribe(published.append)
        target = plan.sessions[0]

        updated = await scheduler.update_session_completion(plan.id, target.id, True)

        assert updated.find_session(target.id).is_completed
        assert updated.completed_count == 1
        assert not plan.find_session(target.id).is_completed
        assert published == [updated]
        assert (await scheduler.get_study_plan(plan.id)).completed_count == 1
        stored = await store.get(STUDY_PLANS, plan.id)
        assert StudyPlan.from_dict(stored).completed_count == 1

    @pytest.mark.asyncio
    async def test_update_unknown_plan_or_session(self, scheduler):
        plan = await scheduler.create_study_plan("u1", date(2024, 3, 1), date(2024, 3, 1), {"english": 1})
        with pytest.raises(NotFoundError):
            await scheduler.update_session_completion("missing", plan.sessions[0].id, True)
        with pytest.raises(NotFoundError):
            await scheduler.update_session_completion(plan.id, "missing", True)

    @pytest.mark.asyncio
    async def test_active_plan_is_newest_unfinished(self, scheduler, clock):
        await scheduler.create_study_plan("u1", date(2024, 2, 1), date(2024, 2, 5), {"english": 1})
        older = await scheduler.create_study_plan("u1", date(2024, 3, 1), date(2024, 3, 9), {"english": 1})
        clock.advance(minutes=5)
        newer = await scheduler.create_study_plan("u1", date(2024, 3, 2), date(2024, 3, 4), {"science": 1})

        assert (await scheduler.get_active_study_plan("u1")).id == newer.id
        assert await scheduler.get_active_study_plan("u2") is None

        clock.advance(days=4)
        assert (await scheduler.get_active_study_plan("u1")).id == older.id

    @pytest.mark.asyncio
    async def test_load_skips_finished_plans(self, scheduler, store, clock):
        await scheduler.create_study_plan("u1", date(2024, 2, 1), date(2024, 2, 5), {"english": 1})
        current = await scheduler.create_study_plan("u1", date(2024, 3, 1), date(2024, 3, 5), {"english": 1})

        restored = StudyPlanScheduler(store, clock=clock)
        assert await restored.load() == 1
        assert (await restored.get_active_study_plan("u1")).id == current.id


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
