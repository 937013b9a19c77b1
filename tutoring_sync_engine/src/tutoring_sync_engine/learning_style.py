"""
Learning Style Model

Per-learner preferences that shape tutor replies. Only `preferred_depth`
drives behavior today (it picks the explanation complexity); the other
weights are stored so generation backends can use them.
"""

from dataclasses import dataclass, asdict, fields
from enum import Enum
from typing import Any, Dict

from tutoring_sync_engine.errors import ValidationError


class ResponseComplexity(Enum):
    """Explanation depth levels."""
    BASIC = "basic"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


# (threshold, level) checked top-down against preferred_depth
COMPLEXITY_THRESHOLDS = [
    (0.7, ResponseComplexity.EXPERT),
    (0.5, ResponseComplexity.ADVANCED),
    (0.3, ResponseComplexity.INTERMEDIATE),
]

_WEIGHT_FIELDS = (
    "visual",
    "auditory",
    "kinesthetic",
    "reading_writing",
    "preferred_depth",
    "complexity_preference",
    "learning_pace",
)


@dataclass
class LearningStyle:
    """Learning preferences for one learner. Weights are in [0, 1]."""
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

    def __post_init__(self):
        for name in _WEIGHT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValidationError(f"{name} must be a number, got {value!r}")
            if not 0.0 <= float(value) <= 1.0:
                raise ValidationError(f"{name} must be between 0 and 1, got {value}")
            setattr(self, name, float(value))

    def response_complexity(self) -> ResponseComplexity:
        """Map preferred_depth onto one of the four complexity levels."""
        for threshold, level in COMPLEXITY_THRESHOLDS:
            if self.preferred_depth >= threshold:
                return level
        return ResponseComplexity.BASIC

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LearningStyle":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})
