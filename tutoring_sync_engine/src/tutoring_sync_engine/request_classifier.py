"""
Request Classifier

Deterministic phrase matching that tags a learner message with a RequestType.
Pattern groups are tried in order and the first hit wins. Nothing here is
random and nothing raises: an unmatched message is a quick question.

Also holds the small extractors that pull the concept, topic or exam name out
of a message for the response handlers.
"""

import re
from typing import List, Optional, Tuple

from tutoring_sync_engine.session_state import RequestType

# Order matters: "what is on the exam" is a concept question, "test me" is practice.
REQUEST_PATTERNS: List[Tuple[RequestType, List[str]]] = [
    (RequestType.CONCEPT_EXPLANATION, [
        r"\bexplain\b",
        r"\bwhat\s+(is|are)\b",
        r"\bhow\s+(does|do)\b",
        r"\btell\s+me\s+about\b",
    ]),
    (RequestType.PROBLEM_SOLVING, [
        r"\bsolve\b",
        r"\bcalculate\b",
        r"\bfind\s+the\b",
    ]),
    (RequestType.PRACTICE_QUESTIONS, [
        r"\bpractice\b",
        r"\bquiz\s+me\b",
        r"\btest\s+me\b",
    ]),
    (RequestType.STUDY_PLANNING, [
        r"\bstudy\s+plan\b",
        r"\bschedule\b",
        r"\btimetable\b",
    ]),
    (RequestType.MOTIVATION, [
        r"\bmotivat",
        r"\bencourag",
    ]),
    (RequestType.EXAM_PREPARATION, [
        r"\bexams?\b",
        r"\btest\s+prep",
    ]),
    (RequestType.SUBJECT_OVERVIEW, [
        r"\boverview\b",
        r"\bsummary\b",
        r"\bsummari[sz]e\b",
    ]),
    (RequestType.LESSON_HELP, [
        r"\b(this|the|my)\s+lesson\b",
    ]),
    (RequestType.QUIZ_HELP, [
        r"\b(this|the|my)\s+quiz\b",
    ]),
]

_COMPILED = [
    (request_type, [re.compile(p, re.IGNORECASE) for p in patterns])
    for request_type, patterns in REQUEST_PATTERNS
]


def classify_request(
    text: str,
    lesson_id: Optional[str] = None,
    quiz_id: Optional[str] = None,
) -> RequestType:
    """
    Tag a learner message with its intent.

    Args:
        text: The learner's message
        lesson_id: Lesson the session is attached to, if any
        quiz_id: Quiz the session is attached to, if any

    Returns:
        First matching RequestType. Without a phrase match, a session tied to a
        lesson gets LESSON_HELP, one tied to a quiz gets QUIZ_HELP, and
        everything else is QUICK_QUESTION.
    """
    text = text or ""
    for request_type, patterns in _COMPILED:
        for pattern in patterns:
            if pattern.search(text):
                return request_type

    if lesson_id:
        return RequestType.LESSON_HELP
    if quiz_id:
        return RequestType.QUIZ_HELP
    return RequestType.QUICK_QUESTION


CONCEPT_PATTERNS = [
    r"explain\s+(.+?)\s+to\s+me",
    r"what\s+(?:is|are)\s+(.+?)\?",
    r"how\s+(?:does|do)\s+(.+?)\s+work",
    r"tell\s+me\s+about\s+(.+)",
]

TOPIC_PATTERNS = [
    r"questions\s+on\s+(.+)",
    r"practice\s+(.+)",
    r"help\s+with\s+(.+)",
]

EXAM_TYPE_PATTERNS = [
    r"prepare\s+for\s+(.+?)\s+exam",
    r"(.+?)\s+exam\s+tips",
    r"study\s+for\s+(.+?)\s+test",
]


def _first_group(patterns: List[str], text: str) -> Optional[str]:
    for pattern in patterns:
        match = re.search(pattern, text, re.IGNORECASE)
        if match:
            value = match.group(1).strip().rstrip("?.!").strip()
            if value:
                return value
    return None


def extract_concept(text: str) -> str:
    """Concept the learner asks about; the whole message when no phrase matches."""
    return _first_group(CONCEPT_PATTERNS, text) or text.strip()


def extract_topic(text: str) -> str:
    return _first_group(TOPIC_PATTERNS, text) or "this topic"


def extract_exam_type(text: str) -> str:
    return _first_group(EXAM_TYPE_PATTERNS, text) or "upcoming"
