"""
Response Generation Backends

A response generator turns a classified learner request plus a context dict
into reply text. It may be slow and it may fail; the dispatcher bounds it
with a timeout and converts any failure into an apology.

TemplateResponseGenerator returns canned tutoring text and needs no network.
OpenAIResponseGenerator asks a chat model, with one system prompt per request
type.

Context keys supplied by the dispatcher:
    subject, subject_name, content, concept, topic, exam_type, lesson_id,
    quiz_id, complexity, grade_level, language, reference_explanation,
    personality, recent_messages
"""

import json
import logging
import os
import random
from typing import Any, Dict, Optional

from tutoring_sync_engine.errors import GenerationFailure
from tutoring_sync_engine.session_state import RequestType

logger = logging.getLogger(__name__)


class ResponseGenerator:
    """Generation collaborator interface."""

    async def generate(self, request_type: RequestType, context: Dict[str, Any]) -> str:
        raise NotImplementedError


PROBLEM_SOLUTION_TEXT = (
    "To solve this problem, follow these steps:\n\n"
    "1. First, identify what the problem is asking for.\n"
    "2. Next, determine what information is provided.\n"
    "3. Apply the relevant formula or concept: [relevant formula].\n"
    "4. Work through the solution step by step: [detailed steps].\n"
    "5. Check your answer to make sure it makes sense.\n\n"
    "The final answer is [answer]."
)

EXAM_TIPS = [
    "Start studying early, at least 2 weeks before the exam.",
    "Create a study schedule that covers all topics.",
    "Focus on understanding concepts, not just memorizing.",
    "Practice with past exam questions if available.",
    "Take breaks and get enough sleep, especially the night before.",
    "Review your notes and highlight key points.",
    "Teach the material to someone else to reinforce your understanding.",
    "Stay positive and believe in yourself!",
]

MOTIVATIONAL_MESSAGES = [
    "You're making great progress! Remember, every step forward counts, no matter how small.",
    "Learning is a journey, not a destination. Embrace the challenges as opportunities to grow.",
    "Your hard work today is building the foundation for your success tomorrow.",
    "Don't compare your chapter 1 to someone else's chapter 20. Focus on your own growth.",
    "Mistakes are proof that you're trying. Learn from them and keep going!",
    "Your potential is endless. Keep believing in yourself and your abilities.",
    "Success comes from persistence. Keep going, even when it gets tough.",
    "You have the power to achieve amazing things. Believe in yourself as much as I believe in you!",
]

SUBJECT_OVERVIEWS = {
    "mathematics": [
        "Number Systems: Understanding whole numbers, fractions, decimals",
        "Algebra: Basic equations and expressions",
        "Geometry: Shapes, angles, and measurements",
        "Data Handling: Charts, graphs, and basic statistics",
    ],
    "english": [
        "Reading Comprehension: Understanding and analyzing texts",
        "Grammar: Parts of speech and sentence structure",
        "Writing: Essays, stories, and creative writing",
        "Literature: Stories, poems, and plays",
    ],
    "science": [
        "Life Science: Plants, animals, and ecosystems",
        "Physical Science: Matter, energy, and forces",
        "Earth Science: Weather, geology, and astronomy",
        "Scientific Method: Experiments and investigations",
    ],
}

STUDY_PLANNING_TEXT = (
    "I can help you create a study plan. To make it effective, I need to know:\n\n"
    "1. How many hours per week can you dedicate to studying?\n"
    "2. What subjects do you want to focus on?\n"
    "3. Do you have any upcoming exams or deadlines?\n"
    "4. What time of day do you prefer to study?\n\n"
    "Once you provide this information, I can generate a personalized study plan for you."
)


class TemplateResponseGenerator(ResponseGenerator):
    """
    Canned tutoring replies, one per request type.

    The only randomness (which motivational message to show) goes through the
    injected rng so tests can pin it.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    async def generate(self, request_type: RequestType, context: Dict[str, Any]) -> str:
        handler = {
            RequestType.CONCEPT_EXPLANATION: self._concept_explanation,
            RequestType.PROBLEM_SOLVING: self._problem_solving,
            RequestType.STUDY_PLANNING: self._study_planning,
            RequestType.MOTIVATION: self._motivation,
            RequestType.EXAM_PREPARATION: self._exam_preparation,
            RequestType.SUBJECT_OVERVIEW: self._subject_overview,
            RequestType.LESSON_HELP: self._lesson_help,
            RequestType.QUIZ_HELP: self._quiz_help,
        }.get(request_type, self._quick_question)
        return handler(context)

    def _concept_explanation(self, context: Dict[str, Any]) -> str:
        reference = context.get("reference_explanation")
        if not reference:
            raise GenerationFailure("No reference explanation supplied for concept request")
        return reference

    def _problem_solving(self, context: Dict[str, Any]) -> str:
        return PROBLEM_SOLUTION_TEXT

    def _study_planning(self, context: Dict[str, Any]) -> str:
        return STUDY_PLANNING_TEXT

    def _motivation(self, context: Dict[str, Any]) -> str:
        return self.rng.choice(MOTIVATIONAL_MESSAGES)

    def _exam_preparation(self, context: Dict[str, Any]) -> str:
        header = (
            f"Here are some tips for preparing for your {context.get('exam_type', 'upcoming')} "
            f"exam in {context['subject_name']}:\n\n"
        )
        tips = "\n".join(f"{i}. {tip}" for i, tip in enumerate(EXAM_TIPS, start=1))
        return header + tips

    def _subject_overview(self, context: Dict[str, Any]) -> str:
        response = f"Here's an overview of {context['subject_name']} for your grade level:\n\n"
        topics = SUBJECT_OVERVIEWS.get(context["subject"])
        if topics:
            response += "\n".join(f"{i}. {topic}" for i, topic in enumerate(topics, start=1)) + "\n\n"
        else:
            response += (
                "This subject covers several key topics that build your knowledge "
                "and skills progressively.\n\n"
            )
        return response + "Which topic would you like to explore first?"

    def _quick_question(self, context: Dict[str, Any]) -> str:
        question = context.get("content", "").lower()
        subject_name = context["subject_name"]

        if "what" in question and "learn" in question:
            return (
                f"In {subject_name}, you'll learn about key concepts, practical applications, "
                "and problem-solving techniques. The curriculum is designed to build your "
                "knowledge progressively."
            )
        if "how" in question and "study" in question:
            return (
                f"Effective study techniques for {subject_name} include: regular practice, "
                "connecting concepts to real-world examples, teaching others what you've "
                "learned, and using active recall instead of passive reading."
            )
        if "difficult" in question or "hard" in question:
            return (
                "It's normal to find some concepts challenging at first. Breaking down complex "
                "topics into smaller parts, practicing regularly, and connecting new information "
                "to what you already know can make learning easier."
            )
        if "thank" in question:
            return (
                "You're welcome! I'm here to help you learn and grow. Feel free to ask any "
                f"questions you have about {subject_name}."
            )
        return (
            f"That's an interesting question about {subject_name}. To give you the best answer, "
            "could you provide a bit more context or specify what aspect you'd like to learn about?"
        )

    def _lesson_help(self, context: Dict[str, Any]) -> str:
        if context.get("lesson_id"):
            return (
                "I see you're working on a lesson. To help you better, could you tell me which "
                "specific concept or part of the lesson you're finding challenging?"
            )
        return (
            "I'd be happy to help with your lesson. Could you share which lesson you're "
            "working on and what specific part you need help with?"
        )

    def _quiz_help(self, context: Dict[str, Any]) -> str:
        if context.get("quiz_id"):
            return (
                "I see you're working on a quiz. While I can't give you direct answers, I can "
                "help you understand the concepts better. Which question are you struggling with?"
            )
        return (
            "I'd be happy to help you prepare for your quiz. Could you tell me what topic the "
            "quiz covers and what specific concepts you're finding challenging?"
        )


SYSTEM_PROMPTS = {
    RequestType.CONCEPT_EXPLANATION: (
        "Explain the concept the learner asks about at the requested complexity level. "
        "Use the reference explanation as the outline and fill in the bracketed parts."
    ),
    RequestType.PROBLEM_SOLVING: (
        "Walk the learner through solving their problem step by step, then state the answer."
    ),
    RequestType.STUDY_PLANNING: (
        "Help the learner plan their studying. Ask for the information you need "
        "(weekly hours, subjects, deadlines, preferred time of day)."
    ),
    RequestType.MOTIVATION: (
        "Give the learner a short, sincere motivational message that fits what they said."
    ),
    RequestType.EXAM_PREPARATION: (
        "Give the learner practical, numbered tips for preparing for the named exam."
    ),
    RequestType.SUBJECT_OVERVIEW: (
        "Give a short numbered overview of the main topics of the subject for the grade level, "
        "then ask which topic to explore first."
    ),
    RequestType.LESSON_HELP: (
        "Help the learner with the lesson they are working on. Ask which part is challenging if unclear."
    ),
    RequestType.QUIZ_HELP: (
        "Help the learner with their quiz without giving away answers. Offer hints and explanations."
    ),
    RequestType.QUICK_QUESTION: "Answer the learner's question briefly and clearly.",
}

BASE_SYSTEM_PROMPT = (
    "You are a friendly tutor for school learners. Reply in English; translation happens "
    "afterwards. Keep replies under 200 words and do not add a closing sign-off."
)


class OpenAIResponseGenerator(ResponseGenerator):
    """
    Chat-model backed generator.

    Sends the request type's system prompt plus the context as a JSON user
    message and returns the model's text.
    """

    def __init__(
        self,
        client=None,
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 500,
    ):
        """
        Args:
            client: AsyncOpenAI-compatible client (created from OPENAI_API_KEY if None)
            model: Chat model name (OPENAI_MODEL env var, default gpt-4o-mini)
            temperature: Sampling temperature
            max_tokens: Reply length cap
        """
        if client is None:
            from openai import AsyncOpenAI

            api_key = os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ValueError("OPENAI_API_KEY not found in environment")
            client = AsyncOpenAI(api_key=api_key)

        self.client = client
        self.model = model or os.getenv("OPENAI_MODEL", "gpt-4o-mini")
        self.temperature = temperature
        self.max_tokens = max_tokens

    def build_messages(self, request_type: RequestType, context: Dict[str, Any]):
        payload = {k: v for k, v in context.items() if v is not None}
        return [
            {
                "role": "system",
                "content": f"{BASE_SYSTEM_PROMPT}\n\n{SYSTEM_PROMPTS.get(request_type, SYSTEM_PROMPTS[RequestType.QUICK_QUESTION])}",
            },
            {"role": "user", "content": json.dumps(payload, default=str)},
        ]

    async def generate(self, request_type: RequestType, context: Dict[str, Any]) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=self.build_messages(request_type, context),
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        if not response.choices:
            raise GenerationFailure("Model returned no choices")
        content = (response.choices[0].message.content or "").strip()
        if not content:
            raise GenerationFailure("Model returned an empty reply")
        logger.debug(f"🤖 [OpenAIResponseGenerator] {request_type.value} reply: {len(content)} chars")
        return content
