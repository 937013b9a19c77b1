"""
Tutoring Engine

Wires the session lifecycle, offline queue and sync, study plan scheduler
and practice question cache together and exposes the inbound operations in
one place.
"""

import logging
import random
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

from tutoring_sync_engine.config import EngineSettings
from tutoring_sync_engine.connectivity import (
    ConnectivityMonitor,
    ManualConnectivity,
    SocketConnectivityMonitor,
)
from tutoring_sync_engine.errors import ConnectivityDeferred
from tutoring_sync_engine.event_bus import EventBus
from tutoring_sync_engine.learning_style import LearningStyle
from tutoring_sync_engine.offline_queue import OfflineOperationQueue, OverflowPolicy
from tutoring_sync_engine.offline_sync import OfflineSync
from tutoring_sync_engine.persistence import InMemoryPersistence, Persistence, SupabasePersistence
from tutoring_sync_engine.practice_questions import PracticeQuestion, PracticeQuestionCache
from tutoring_sync_engine.response_dispatcher import ResponseDispatcher
from tutoring_sync_engine.response_generation import (
    OpenAIResponseGenerator,
    ResponseGenerator,
    TemplateResponseGenerator,
)
from tutoring_sync_engine.session_lifecycle import SessionLifecycleManager
from tutoring_sync_engine.session_state import RequestType, TutoringMessage, TutoringSession, TutorPersonality
from tutoring_sync_engine.session_store import SessionStore
from tutoring_sync_engine.study_plan_scheduler import StudyPlan, StudyPlanScheduler
from tutoring_sync_engine.translation import Translator

logger = logging.getLogger(__name__)


class TutoringEngine:
    """Facade over the tutoring components."""

    def __init__(
        self,
        persistence: Persistence,
        connectivity: ConnectivityMonitor,
        generator: ResponseGenerator,
        rng: Optional[random.Random] = None,
        translator: Optional[Translator] = None,
        generation_timeout_seconds: Optional[float] = 30.0,
        offline_queue_max_size: int = 500,
        offline_queue_overflow: OverflowPolicy = OverflowPolicy.REJECT,
        practice_cache_max_per_subject: int = 500,
        grade_level: str = "primary_4_7",
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.persistence = persistence
        self.connectivity = connectivity
        self.rng = rng or random.Random()
        self.clock = clock

        self.message_events = EventBus("messages")
        self.plan_events = EventBus("study_plans")

        self.store = SessionStore()
        self.queue = OfflineOperationQueue(
            persistence,
            max_size=offline_queue_max_size,
            overflow_policy=offline_queue_overflow,
        )
        self.practice_cache = PracticeQuestionCache(
            persistence,
            rng=self.rng,
            max_per_subject=practice_cache_max_per_subject,
            clock=clock,
        )
        self.dispatcher = ResponseDispatcher(
            generator,
            self.practice_cache,
            translator=translator,
            generation_timeout_seconds=generation_timeout_seconds,
            grade_level=grade_level,
            clock=clock,
        )
        self.lifecycle = SessionLifecycleManager(
            self.store,
            persistence,
            self.dispatcher,
            self.queue,
            connectivity,
            message_events=self.message_events,
            clock=clock,
        )
        self.scheduler = StudyPlanScheduler(
            persistence,
            plan_events=self.plan_events,
            rng=self.rng,
            clock=clock,
        )
        self.offline_sync = OfflineSync(self.queue, self.lifecycle.replay_operation, connectivity)
        self.lifecycle.drain_trigger = self.offline_sync.schedule_drain
        self.queue.on_drop = self.lifecycle.handle_dropped_operation
        self.grade_level = grade_level
        self.started = False

    async def start(self):
        """Restore persisted state, then start connectivity monitoring and replay."""
        if self.started:
            return
        await self.queue.load()
        await self.lifecycle.restore()
        await self.scheduler.load()
        await self.practice_cache.load()
        await self.connectivity.start()
        await self.offline_sync.start()
        self.started = True
        logger.info("✅ [TutoringEngine] Engine started")

    async def stop(self):
        await self.offline_sync.stop()
        await self.connectivity.stop()
        self.started = False
        logger.info("🛑 [TutoringEngine] Engine stopped")

    # Sessions

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
        return await self.lifecycle.start_session(
            user_id, subject, personality, language, learning_style, lesson_id, quiz_id
        )

    async def end_session(self, session_id: str) -> Optional[ConnectivityDeferred]:
        return await self.lifecycle.end_session(session_id)

    async def send_message(
        self,
        session_id: str,
        content: str,
        request_type: Optional[RequestType] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TutoringMessage:
        return await self.lifecycle.send_message(session_id, content, request_type, metadata)

    async def get_active_session(self, user_id: str) -> Optional[TutoringSession]:
        return await self.lifecycle.get_active_session(user_id)

    async def get_session(self, session_id: str) -> Optional[TutoringSession]:
        return await self.lifecycle.get_session(session_id)

    async def get_session_history(self, user_id: str) -> List[TutoringSession]:
        return await self.lifecycle.get_session_history(user_id)

    async def set_learning_style(self, user_id: str, style: LearningStyle) -> LearningStyle:
        return await self.lifecycle.set_learning_style(user_id, style)

    async def get_learning_style(self, user_id: str) -> LearningStyle:
        return await self.lifecycle.get_learning_style(user_id)

    # Study plans

    async def create_study_plan(
        self,
        user_id: str,
        start_date: date,
        end_date: date,
        subject_distribution: Dict[str, int],
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> StudyPlan:
        return await self.scheduler.create_study_plan(
            user_id, start_date, end_date, subject_distribution, title, description
        )

    async def update_session_completion(self, plan_id: str, session_id: str, is_completed: bool) -> StudyPlan:
        return await self.scheduler.update_session_completion(plan_id, session_id, is_completed)

    async def get_study_plan(self, plan_id: str) -> Optional[StudyPlan]:
        return await self.scheduler.get_study_plan(plan_id)

    async def get_active_study_plan(self, user_id: str) -> Optional[StudyPlan]:
        return await self.scheduler.get_active_study_plan(user_id)

    # Practice questions

    async def generate_practice_questions(
        self,
        subject: str,
        topic: str,
        difficulty: str = "medium",
        count: int = 3,
        grade_level: Optional[str] = None,
    ) -> List[PracticeQuestion]:
        return await self.practice_cache.generate_practice_questions(
            subject, topic, difficulty, count, grade_level or self.grade_level
        )

    # Sync

    def get_sync_status(self) -> Dict[str, Any]:
        return self.offline_sync.get_status()


def build_engine(
    settings: Optional[EngineSettings] = None,
    persistence: Optional[Persistence] = None,
    connectivity: Optional[ConnectivityMonitor] = None,
    generator: Optional[ResponseGenerator] = None,
    rng: Optional[random.Random] = None,
    clock: Callable[[], datetime] = datetime.now,
    supabase_client: Any = None,
) -> TutoringEngine:
    """
    Build an engine from settings, letting callers override any collaborator.

    Args:
        settings: Engine settings (read from the environment if None)
        persistence: Storage backend override
        connectivity: Connectivity monitor override
        generator: Response generator override
        rng: Random source override (seeded from RANDOM_SEED otherwise)
        clock: Returns the current time
        supabase_client: Client for PERSISTENCE_BACKEND=supabase (the backend passes
            its cached get_supabase_client())

    Raises:
        ValueError: supabase persistence selected without a client or a persistence override
    """
    settings = settings or EngineSettings.from_env()

    if rng is None:
        rng = random.Random(settings.random_seed)

    if persistence is None:
        if settings.persistence_backend == "supabase":
            if supabase_client is None:
                raise ValueError(
                    "PERSISTENCE_BACKEND=supabase needs a Supabase client; pass supabase_client or persistence"
                )
            persistence = SupabasePersistence(supabase_client, table=settings.supabase_kv_table)
        else:
            persistence = InMemoryPersistence()

    if connectivity is None:
        if settings.connectivity_mode == "probe":
            connectivity = SocketConnectivityMonitor(
                host=settings.connectivity_probe_host,
                port=settings.connectivity_probe_port,
                poll_interval_seconds=settings.connectivity_poll_seconds,
            )
        else:
            connectivity = ManualConnectivity()

    if generator is None:
        if settings.generation_backend == "openai":
            from openai import AsyncOpenAI

            generator = OpenAIResponseGenerator(
                client=AsyncOpenAI(api_key=settings.openai_api_key),
                model=settings.openai_model,
            )
        else:
            generator = TemplateResponseGenerator(rng=rng)

    logger.info(
        f"🔧 [TutoringEngine] persistence={type(persistence).__name__} "
        f"connectivity={type(connectivity).__name__} generator={type(generator).__name__}"
    )
    return TutoringEngine(
        persistence=persistence,
        connectivity=connectivity,
        generator=generator,
        rng=rng,
        generation_timeout_seconds=settings.generation_timeout_seconds,
        offline_queue_max_size=settings.offline_queue_max_size,
        offline_queue_overflow=OverflowPolicy(settings.offline_queue_overflow),
        practice_cache_max_per_subject=settings.practice_cache_max_per_subject,
        grade_level=settings.default_grade_level,
        clock=clock,
    )
