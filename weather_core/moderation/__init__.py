"""预检审核：内容得体性、话题范围与语气识别。"""

from weather_core.moderation.classifier import ClassifierResult, ContentClassifier, OpenAIModerationClassifier
from weather_core.moderation.gate import (
    INAPPROPRIATE_RESPONSE,
    OUT_OF_SCOPE_RESPONSE,
    ModerationGate,
    ModerationVerdict,
    tone_instructions,
)
from weather_core.moderation.rules import ToneAssessment, detect_tone, has_weather_content, is_within_scope

__all__ = [
    "ClassifierResult",
    "ContentClassifier",
    "INAPPROPRIATE_RESPONSE",
    "ModerationGate",
    "ModerationVerdict",
    "OUT_OF_SCOPE_RESPONSE",
    "OpenAIModerationClassifier",
    "ToneAssessment",
    "detect_tone",
    "has_weather_content",
    "is_within_scope",
    "tone_instructions",
]
