"""
FastAPI Backend for the Tutoring Sync Engine

Provides REST API endpoints for:
- Tutoring sessions (start, message, end, history)
- Study plans and session completion
- Practice questions
- Offline queue status, manual drain and connectivity switching
- Server-sent events for messages appended to a session
"""

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel
from typing import Optional, Dict, Any
from datetime import date
import os
import sys
import json
import asyncio
import logging
import signal

backend_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(backend_dir)

if backend_dir not in sys.path:
    sys.path.insert(0, backend_dir)

# Setup enhanced logging with pretty formatting
from lib.logger import setup_logging, get_logger

setup_logging(level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO), use_colors=True)

logger = get_logger("backend.main")

# Add the tutoring_sync_engine package to Python path
package_src = os.path.join(project_root, 'tutoring_sync_engine', 'src')
if os.path.exists(package_src) and package_src not in sys.path:
    sys.path.insert(0, package_src)

from lib.supabase_client import get_supabase_client

from tutoring_sync_engine.config import EngineSettings
from tutoring_sync_engine.connectivity import ManualConnectivity
from tutoring_sync_engine.engine import TutoringEngine, build_engine
from tutoring_sync_engine.errors import (
    InvalidStateError,
    NotFoundError,
    QueueFullError,
    TutoringError,
    ValidationError,
)
from tutoring_sync_engine.learning_style import LearningStyle
from tutoring_sync_engine.session_state import MessageEvent, RequestType, TutorPersonality
from tutoring_sync_engine.study_plan_scheduler import StudyPlan

# Singleton engine used by the module-level app
_engine_instance: Optional[TutoringEngine] = None


def get_engine_instance() -> TutoringEngine:
    """Get or create the singleton TutoringEngine from environment settings."""
    global _engine_instance
    if _engine_instance is None:
        settings = EngineSettings.from_env()
        client = get_supabase_client() if settings.persistence_backend == "supabase" else None
        _engine_instance = build_engine(settings, supabase_client=client)
    return _engine_instance


# ==================== Pydantic Models ====================

class LearningStyleModel(BaseModel):
    visual: float = 0.5
    auditory: float = 0.5
    kinesthetic: float = 0.5
    reading_writing: float = 0.5
    preferred_depth: float = 0.5
    complexity_preference: float = 0.5
    learning_pace: float = 0.5
    prefers_examples: bool = True
    prefers_step_by_step: bool = True
    preferred_language: str = "en"


class StartSessionRequest(BaseModel):
    user_id: str
    subject: str
    personality: TutorPersonality = TutorPersonality.ENCOURAGING
    language: str = "en"
    learning_style: Optional[LearningStyleModel] = None
    lesson_id: Optional[str] = None
    quiz_id: Optional[str] = None


class SendMessageRequest(BaseModel):
    content: str
    request_type: Optional[RequestType] = None
    metadata: Optional[Dict[str, Any]] = None


class CreateStudyPlanRequest(BaseModel):
    user_id: str
    start_date: date
    end_date: date
    subject_distribution: Dict[str, int]
    title: Optional[str] = None
    description: Optional[str] = None


class SessionCompletionRequest(BaseModel):
    is_completed: bool


class PracticeQuestionsRequest(BaseModel):
    subject: str
    topic: str
    difficulty: str = "medium"
    count: int = 3
    grade_level: Optional[str] = None


class ConnectivityRequest(BaseModel):
    online: bool


class EndSessionResponse(BaseModel):
    session_id: str
    status: str
    operation_id: Optional[str] = None


# ==================== Helper Functions ====================

def plan_to_response(plan: StudyPlan) -> Dict[str, Any]:
    data = plan.to_dict()
    data["scheduled_hours"] = plan.scheduled_hours
    data["unscheduled_hours"] = plan.unscheduled_hours
    return data


def _error_response(status_code: int, error: TutoringError) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(error), "code": error.code})


def create_app(engine: Optional[TutoringEngine] = None) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        engine: Engine to serve (the environment-configured singleton if None)
    """
    app = FastAPI(
        title="Tutoring Sync Engine API",
        description="REST API for tutoring sessions with offline-first synchronization",
        version="0.1.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://localhost:3001",
            "http://127.0.0.1:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_engine() -> TutoringEngine:
        return engine if engine is not None else get_engine_instance()

    # ==================== Error Handlers ====================

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        logger.warning(f"Validation error on {request.url.path}", data={"error": str(exc)})
        return _error_response(400, exc)

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error_response(404, exc)

    @app.exception_handler(InvalidStateError)
    async def invalid_state_handler(request: Request, exc: InvalidStateError):
        return _error_response(409, exc)

    @app.exception_handler(QueueFullError)
    async def queue_full_handler(request: Request, exc: QueueFullError):
        logger.error("Offline queue full", data={"path": request.url.path})
        return _error_response(503, exc)

    # ==================== Endpoints ====================

    @app.get("/")
    async def root():
        """Health check endpoint."""
        tutoring = get_engine()
        return {
            "status": "healthy",
            "service": "Tutoring Sync Engine API",
            "version": "0.1.0",
            "online": tutoring.connectivity.is_online(),
            "live_sessions": len(tutoring.store),
        }

    @app.post("/api/sessions")
    async def start_session(body: StartSessionRequest):
        logger.request("POST", "/api/sessions", user_id=body.user_id, data={"subject": body.subject})
        style = LearningStyle(**body.learning_style.model_dump()) if body.learning_style else None
        session = await get_engine().start_session(
            user_id=body.user_id,
            subject=body.subject,
            personality=body.personality,
            language=body.language,
            learning_style=style,
            lesson_id=body.lesson_id,
            quiz_id=body.quiz_id,
        )
        return session.to_dict()

    @app.get("/api/sessions/{session_id}")
    async def get_session(session_id: str):
        session = await get_engine().get_session(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return session.to_dict()

    @app.post("/api/sessions/{session_id}/messages")
    async def send_message(session_id: str, body: SendMessageRequest):
        logger.request("POST", f"/api/sessions/{session_id}/messages")
        reply = await get_engine().send_message(
            session_id, body.content, request_type=body.request_type, metadata=body.metadata
        )
        return reply.to_dict()

    @app.post("/api/sessions/{session_id}/end", response_model=EndSessionResponse)
    async def end_session(session_id: str):
        deferred = await get_engine().end_session(session_id)
        if deferred is not None:
            return EndSessionResponse(session_id=session_id, status="queued", operation_id=deferred.operation_id)
        return EndSessionResponse(session_id=session_id, status="ended")

    @app.get("/api/sessions/{session_id}/events")
    async def session_events(session_id: str):
        """Server-sent events for every message appended to the session."""
        tutoring = get_engine()
        if await tutoring.get_session(session_id) is None:
            raise HTTPException(status_code=404, detail="Session not found")

        queue: asyncio.Queue = asyncio.Queue()

        def on_message(event: MessageEvent):
            if event.session_id == session_id:
                queue.put_nowait(event.message.to_dict())

        subscription = tutoring.message_events.subscribe(on_message)

        async def generate():
            try:
                while True:
                    message = await queue.get()
                    yield f"data: {json.dumps(message)}\n\n"
                    metadata = message.get("metadata") or {}
                    if metadata.get("message_type") == "farewell":
                        break
            finally:
                subscription.unsubscribe()

        return StreamingResponse(generate(), media_type="text/event-stream")

    @app.get("/api/users/{user_id}/active-session")
    async def get_active_session(user_id: str):
        session = await get_engine().get_active_session(user_id)
        return {"session": session.to_dict() if session else None}

    @app.get("/api/users/{user_id}/sessions")
    async def get_session_history(user_id: str):
        sessions = await get_engine().get_session_history(user_id)
        return {"sessions": [s.to_dict() for s in sessions]}

    @app.put("/api/users/{user_id}/learning-style")
    async def set_learning_style(user_id: str, body: LearningStyleModel):
        style = await get_engine().set_learning_style(user_id, LearningStyle(**body.model_dump()))
        return style.to_dict()

    @app.post("/api/study-plans")
    async def create_study_plan(body: CreateStudyPlanRequest):
        logger.request("POST", "/api/study-plans", user_id=body.user_id)
        plan = await get_engine().create_study_plan(
            user_id=body.user_id,
            start_date=body.start_date,
            end_date=body.end_date,
            subject_distribution=body.subject_distribution,
            title=body.title,
            description=body.description,
        )
        return plan_to_response(plan)

    @app.get("/api/study-plans/{plan_id}")
    async def get_study_plan(plan_id: str):
        plan = await get_engine().get_study_plan(plan_id)
        if plan is None:
            raise HTTPException(status_code=404, detail="Study plan not found")
        return plan_to_response(plan)

    @app.patch("/api/study-plans/{plan_id}/sessions/{session_id}")
    async def update_session_completion(plan_id: str, session_id: str, body: SessionCompletionRequest):
        plan = await get_engine().update_session_completion(plan_id, session_id, body.is_completed)
        return plan_to_response(plan)

    @app.post("/api/practice-questions")
    async def generate_practice_questions(body: PracticeQuestionsRequest):
        questions = await get_engine().generate_practice_questions(
            subject=body.subject,
            topic=body.topic,
            difficulty=body.difficulty,
            count=body.count,
            grade_level=body.grade_level,
        )
        return {"questions": [q.to_dict() for q in questions]}

    @app.get("/api/sync/status")
    async def sync_status():
        return get_engine().get_sync_status()

    @app.post("/api/sync/drain")
    async def drain_queue():
        result = await get_engine().offline_sync.sync_now()
        logger.info("Manual drain finished", data={"replayed": result.replayed, "remaining": result.remaining})
        return {
            "replayed": result.replayed,
            "remaining": result.remaining,
            "failed_operation_id": result.failed_operation_id,
            "error": result.error,
        }

    @app.post("/api/connectivity")
    async def set_connectivity(body: ConnectivityRequest):
        """Flip connectivity by hand (manual connectivity mode only)."""
        tutoring = get_engine()
        if not isinstance(tutoring.connectivity, ManualConnectivity):
            raise HTTPException(status_code=409, detail="Connectivity is probed automatically")
        await tutoring.connectivity.set_online(body.online)
        return {"online": tutoring.connectivity.is_online()}

    @app.on_event("startup")
    async def startup_event():
        """Startup event - restore state and start offline sync."""
        await get_engine().start()
        logger.success("Tutoring engine started")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Shutdown event - stop offline sync."""
        await get_engine().stop()
        logger.info("🛑 Tutoring engine stopped")

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    def handle_exit(*args):
        """Handle graceful shutdown."""
        logger.section("SERVER SHUTDOWN", {"reason": "SIGTERM received"})
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_exit)
    signal.signal(signal.SIGTERM, handle_exit)

    try:
        uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
    except KeyboardInterrupt:
        logger.info("🛑 Server stopped.")
        sys.exit(0)
