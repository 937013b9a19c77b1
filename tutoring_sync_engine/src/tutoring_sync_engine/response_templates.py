"""
Response Templates

Fixed text used around every tutor reply: welcome and farewell messages,
difficulty-leveled explanation templates, personality suffixes, and the
apology / offline placeholder texts.
"""

from typing import Optional

from tutoring_sync_engine.learning_style import ResponseComplexity
from tutoring_sync_engine.session_state import TutorPersonality

APOLOGY_TEXT = (
    "I'm sorry, I encountered an error while processing your request. "
    "Could you please try again or rephrase your question?"
)

OFFLINE_PLACEHOLDER_TEXT = "You are offline, message queued."
OFFLINE_DROPPED_TEXT = (
    "This message was not delivered because too many messages were waiting to sync. "
    "Please send it again."
)

SUBJECT_NAMES = {
    "mathematics": "Mathematics",
    "english": "English",
    "science": "Science",
    "history": "History",
    "geography": "Geography",
    "agriculture": "Agriculture",
}


def subject_display_name(subject: str) -> str:
    """Human-readable subject name ("mathematics" -> "Mathematics")."""
    if subject in SUBJECT_NAMES:
        return SUBJECT_NAMES[subject]
    if not subject:
        return subject
    return subject[0].upper() + subject[1:]


WELCOME_TEMPLATES = {
    TutorPersonality.ENCOURAGING: (
        "Hello! I'm your AI tutor for {subject}. I'm here to help you learn and grow. "
        "What would you like to explore today?"
    ),
    TutorPersonality.ANALYTICAL: (
        "Welcome to your {subject} tutoring session. I can help you understand concepts, "
        "solve problems, and analyze information. What topic shall we examine?"
    ),
    TutorPersonality.PATIENT: (
        "Hi there! I'm your patient {subject} tutor. We can take things at your own pace. "
        "What would you like to learn about today?"
    ),
    TutorPersonality.CHALLENGING: (
        "Welcome! I'm your {subject} tutor, ready to challenge your thinking and help you "
        "reach new heights. What challenging topic shall we tackle today?"
    ),
    TutorPersonality.CREATIVE: (
        "Hello! I'm your creative {subject} tutor. Let's explore ideas and concepts in fun "
        "and interesting ways. What would you like to discover today?"
    ),
    TutorPersonality.ADAPTABLE: (
        "Hi! I'm your adaptable {subject} tutor. I can adjust to your learning style and "
        "needs. How would you like to approach your learning today?"
    ),
}

LESSON_WELCOME_SUFFIX = (
    " I see you're working on a lesson. I can help you understand the concepts "
    "or answer any questions you have."
)
QUIZ_WELCOME_SUFFIX = (
    " I notice you're preparing for a quiz. I can help you review the material "
    "or practice with some questions."
)

FAREWELL_TEMPLATES = {
    TutorPersonality.ENCOURAGING: (
        "Great job today! You've made progress in {subject}. Remember, learning is a journey, "
        "and you're doing wonderfully. Come back anytime you need help!"
    ),
    TutorPersonality.ANALYTICAL: (
        "Session complete. We've covered several {subject} concepts today. Consider reviewing "
        "these topics to reinforce your understanding. Until next time."
    ),
    TutorPersonality.PATIENT: (
        "Thank you for learning with me today. You've taken good steps in understanding "
        "{subject}. Take your time to review, and I'll be here when you need more help."
    ),
    TutorPersonality.CHALLENGING: (
        "Good work tackling these challenging {subject} topics! Keep pushing yourself and "
        "questioning assumptions. That's how real learning happens. See you next time!"
    ),
    TutorPersonality.CREATIVE: (
        "What a creative exploration of {subject} we had! Keep that curiosity alive and "
        "continue making connections between ideas. Can't wait to see what we discover next time!"
    ),
    TutorPersonality.ADAPTABLE: (
        "Thanks for studying {subject} with me today. We've adapted to your needs and made "
        "progress. I look forward to our next session and continuing to tailor our approach "
        "to your learning style."
    ),
}

EXPLANATION_TEMPLATES = {
    ResponseComplexity.BASIC: (
        "The concept of {concept} in {subject} is about [basic explanation]. This is important "
        "because it helps you understand [fundamental application]."
    ),
    ResponseComplexity.INTERMEDIATE: (
        "In {subject}, {concept} refers to [intermediate explanation]. It works by "
        "[process explanation]. You can see this in everyday life when [example]."
    ),
    ResponseComplexity.ADVANCED: (
        "{concept} is a key concept in {subject} that involves [advanced explanation]. The "
        "underlying principles are [detailed principles]. This connects to other concepts "
        "like [related concepts]."
    ),
    ResponseComplexity.EXPERT: (
        "From an expert perspective, {concept} in {subject} encompasses [expert explanation]. "
        "The theoretical framework includes [theoretical details]. Current research in this "
        "area focuses on [research directions]."
    ),
}

PERSONALITY_SUFFIXES = {
    TutorPersonality.ENCOURAGING: " You're doing great with these questions!",
    TutorPersonality.ANALYTICAL: " Consider analyzing this further to deepen your understanding.",
    TutorPersonality.PATIENT: " Take your time to process this information. There's no rush.",
    TutorPersonality.CHALLENGING: " Now, can you think of how this applies in a different context?",
    TutorPersonality.CREATIVE: " Try visualizing this concept as a story or drawing to make it more memorable.",
    TutorPersonality.ADAPTABLE: " Let me know if you'd like this explained a different way.",
}


def welcome_message(
    subject: str,
    personality: TutorPersonality,
    lesson_id: Optional[str] = None,
    quiz_id: Optional[str] = None,
) -> str:
    """Opening message for a new session. Lesson context wins over quiz context."""
    text = WELCOME_TEMPLATES[personality].format(subject=subject_display_name(subject))
    if lesson_id:
        text += LESSON_WELCOME_SUFFIX
    elif quiz_id:
        text += QUIZ_WELCOME_SUFFIX
    return text


def farewell_message(
    subject: str,
    personality: TutorPersonality,
    duration_minutes: int,
    message_count: int,
) -> str:
    text = FAREWELL_TEMPLATES[personality].format(subject=subject_display_name(subject))
    return f"{text} We spent {duration_minutes} minutes together and exchanged {message_count} messages."


def concept_explanation(subject: str, concept: str, complexity: ResponseComplexity) -> str:
    return EXPLANATION_TEMPLATES[complexity].format(
        concept=concept, subject=subject_display_name(subject)
    )


def apply_personality(text: str, personality: TutorPersonality) -> str:
    return text + PERSONALITY_SUFFIXES[personality]
