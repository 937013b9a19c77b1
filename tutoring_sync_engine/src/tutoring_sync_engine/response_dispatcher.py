"""
Response Dispatcher

Routes a learner message to the handler for its RequestType and builds the
tutor reply:

1. the handler produces base text (leveled explanation template, generator
   call, or formatted practice questions)
2. the session personality's suffix is appended
3. the text is translated into the session language

A generator failure or timeout never escapes: the reply becomes the fixed
apology, which still counts as a tutor turn.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from tutoring_sync_engine.practice_questions import PracticeQuestionCache
from tutoring_sync_engine.request_classifier import (
    classify_request,
    extract_concept,
    extract_exam_type,
    extract_topic,
)
from tutoring_sync_engine.response_generation import ResponseGenerator
from tutoring_sync_engine.response_templates import (
    APOLOGY_TEXT,
    apply_personality,
    concept_explanation,
    subject_display_name,
)
from tutoring_sync_engine.session_state import (
    RequestType,
    TutoringMessage,
    TutoringSession,
    new_id,
)
from tutoring_sync_engine.translation import AnnotatingTranslator, Translator

logger = logging.getLogger(__name__)

PRACTICE_DIFFICULTY = "medium"
PRACTICE_COUNT = 3
RECENT_TURNS = 6

Handler = Callable[[TutoringSession, RequestType, Dict[str, Any]], Awaitable[str]]


class ResponseDispatcher:
    """Builds tutor replies for learner messages."""

    def __init__(
        self,
        generator: ResponseGenerator,
        practice_cache: PracticeQuestionCache,
        translator: Optional[Translator] = None,
        generation_timeout_seconds: Optional[float] = 30.0,
        grade_level: str = "primary_4_7",
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Args:
            generator: Response generation backend
            practice_cache: Cache used for practice question requests
            translator: Translation step (annotating translator by default)
            generation_timeout_seconds: Upper bound on a generator call (None or 0 disables)
            grade_level: Grade level passed to handlers
            clock: Returns the current time
        """
        self.generator = generator
        self.practice_cache = practice_cache
        self.translator = translator or AnnotatingTranslator()
        self.generation_timeout_seconds = generation_timeout_seconds or None
        self.grade_level = grade_level
        self.clock = clock

        self.routes: Dict[RequestType, Handler] = {
            RequestType.CONCEPT_EXPLANATION: self._handle_concept_explanation,
            RequestType.PRACTICE_QUESTIONS: self._handle_practice_questions,
        }
        for request_type in RequestType:
            self.routes.setdefault(request_type, self._handle_generated)

    def resolve_request_type(self, session: TutoringSession, message: TutoringMessage) -> RequestType:
        if message.request_type is not None:
            return message.request_type
        return classify_request(message.content, session.lesson_id, session.quiz_id)

    async def dispatch(self, session: TutoringSession, message: TutoringMessage) -> TutoringMessage:
        """
        Produce the tutor reply to a learner message.

        The reply is not appended to the session; the lifecycle manager does that.
        """
        request_type = self.resolve_request_type(session, message)
        metadata: Dict[str, Any] = {
            "response_type": request_type.value,
            "in_reply_to": message.id,
        }

        try:
            context = self.build_context(session, message)
            text = await self.routes[request_type](session, request_type, context)
            text = apply_personality(text, session.personality)
            text = await self.translator.translate(text, session.language)
        except Exception as e:
            logger.error(
                f"❌ [ResponseDispatcher] {request_type.value} reply failed for session {session.id}: {e!r}",
                exc_info=True,
            )
            text = APOLOGY_TEXT
            metadata["generation_failed"] = True
            metadata["error"] = str(e) or type(e).__name__

        return TutoringMessage(
            id=new_id(),
            is_from_tutor=True,
            content=text,
            timestamp=self.clock(),
            request_type=request_type,
            metadata=metadata,
        )

    def build_context(self, session: TutoringSession, message: TutoringMessage) -> Dict[str, Any]:
        recent = [
            {"role": "tutor" if m.is_from_tutor else "learner", "content": m.content}
            for m in session.messages[-RECENT_TURNS:]
            if m.id != message.id
        ]
        return {
            "subject": session.subject,
            "subject_name": subject_display_name(session.subject),
            "content": message.content,
            "concept": extract_concept(message.content),
            "topic": extract_topic(message.content),
            "exam_type": extract_exam_type(message.content),
            "lesson_id": session.lesson_id,
            "quiz_id": session.quiz_id,
            "complexity": session.learning_style.response_complexity().value,
            "grade_level": self.grade_level,
            "language": session.language,
            "personality": session.personality.value,
            "recent_messages": recent,
        }

    async def _generate(self, request_type: RequestType, context: Dict[str, Any]) -> str:
        call = self.generator.generate(request_type, context)
        if self.generation_timeout_seconds:
            return await asyncio.wait_for(call, timeout=self.generation_timeout_seconds)
        return await call

    async def _handle_concept_explanation(self, session, request_type, context) -> str:
        complexity = session.learning_style.response_complexity()
        context["reference_explanation"] = concept_explanation(
            session.subject, context["concept"], complexity
        )
        return await self._generate(request_type, context)

    async def _handle_practice_questions(self, session, request_type, context) -> str:
        topic = context["topic"]
        questions = await self.practice_cache.generate_practice_questions(
            subject=session.subject,
            topic=topic,
            difficulty=PRACTICE_DIFFICULTY,
            count=PRACTICE_COUNT,
            grade_level=self.grade_level,
        )

        lines = [f"Here are some practice questions on {topic}:", ""]
        for i, question in enumerate(questions, start=1):
            lines.append(f"{i}. {question.question}")
            for j, option in enumerate(question.options):
                lines.append(f"   {chr(ord('A') + j)}. {option}")
            lines.append("")
        lines.append("Let me know when you're ready for the answers and explanations!")
        return "\n".join(lines)

    async def _handle_generated(self, session, request_type, context) -> str:
        return await self._generate(request_type, context)
