"""预检审核闸门。

ModerationGate.evaluate 组合三项检查：
1. 内容是否得体（外部分类器 + 本地阈值，分类器故障时放行）。
2. 是否在天气话题范围内（本地正则）。
3. 用户语气（本地启发式），用于给系统提示词追加语气指引。

只有在需要直接回复固定话术时，verdict.blocking_message 才会被设置。
"""

from dataclasses import dataclass, field
from typing import Optional

from weather_core.config.settings import settings
from weather_core.infrastructure.logging.logger import logger
from .classifier import ClassifierResult, ContentClassifier, OpenAIModerationClassifier
from .rules import ToneAssessment, detect_tone, has_weather_content, is_within_scope

INAPPROPRIATE_RESPONSE = (
    "I'm sorry, but I can't respond to that type of content. I'm here to provide helpful "
    "weather information. How can I assist you with weather conditions today?"
)
OUT_OF_SCOPE_RESPONSE = (
    "I specialize in weather information and can't help with that topic. However, if you "
    "have any weather-related questions, I'd be happy to assist!"
)

ANGRY_INSTRUCTIONS = (
    "The user appears frustrated or upset. Be extra empathetic and professional. "
    "Acknowledge their frustration, stay calm, and focus on being helpful. "
    'Example: "I understand this is frustrating. Let me provide you with the most accurate '
    'current information..."'
)
DISTRESSED_INSTRUCTIONS = (
    "The user seems concerned or anxious. Be reassuring and provide clear, helpful "
    "information. Stay calm and professional."
)


@dataclass
class ModerationVerdict:
    appropriate: bool = True
    in_scope: bool = True
    tone: ToneAssessment = field(default_factory=ToneAssessment)
    blocking_message: Optional[str] = None
    reason: Optional[str] = None
    flagged: bool = False
    primary_violation: Optional[str] = None
    classifier_error: Optional[str] = None

    @property
    def blocked(self) -> bool:
        return self.blocking_message is not None


def tone_instructions(tone: ToneAssessment) -> str:
    if tone.tone == "angry":
        return ANGRY_INSTRUCTIONS
    if tone.tone == "distressed":
        return DISTRESSED_INSTRUCTIONS
    return ""


class ModerationGate:
    def __init__(self, classifier: Optional[ContentClassifier] = None, cfg=None):
        self._settings = cfg or settings
        self._classifier = classifier or OpenAIModerationClassifier(self._settings)

    async def evaluate(self, text: str) -> ModerationVerdict:
        verdict = ModerationVerdict(tone=detect_tone(text), in_scope=is_within_scope(text))

        if self._settings.moderation_enabled:
            await self._check_content(text, verdict)

        if not verdict.appropriate:
            if has_weather_content(text):
                # 带脏话但确实在问天气：放行，由模型按系统提示词得体回应
                logger.info(
                    "moderation.tolerated",
                    extra={"extra": {"primary_violation": verdict.primary_violation}},
                )
            else:
                verdict.blocking_message = INAPPROPRIATE_RESPONSE
                verdict.reason = "inappropriate_content"
        if not verdict.blocked and not verdict.in_scope:
            verdict.blocking_message = OUT_OF_SCOPE_RESPONSE
            verdict.reason = "out_of_scope"

        logger.info(
            "moderation.verdict",
            extra={
                "extra": {
                    "blocked": verdict.blocked,
                    "reason": verdict.reason,
                    "tone": verdict.tone.tone,
                    "indicators": verdict.tone.indicators,
                }
            },
        )
        return verdict

    async def _check_content(self, text: str, verdict: ModerationVerdict) -> None:
        try:
            result: ClassifierResult = await self._classifier.classify(text)
        except Exception as exc:
            # 审核服务不可用时放行，保证可用性
            logger.warning("moderation.classifier_error", extra={"extra": {"error": str(exc)}})
            verdict.classifier_error = str(exc) or type(exc).__name__
            return

        threshold = self._settings.moderation_threshold
        scores = result.category_scores
        verdict.flagged = result.flagged
        verdict.appropriate = not any(score > threshold for score in scores.values())
        if (result.flagged or not verdict.appropriate) and scores:
            verdict.primary_violation = max(scores, key=scores.get)
