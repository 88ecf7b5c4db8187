"""确定性的范围与语气规则（纯函数，不依赖网络）。"""

import re
from dataclasses import dataclass, field
from typing import List, Literal

Tone = Literal["neutral", "angry", "distressed"]

# 明确与天气无关的话题；未命中的一律视为在范围内，交给模型处理
OUT_OF_SCOPE_PATTERNS = [
    re.compile(r"stock price|stock market|trading|investment|cryptocurrency|bitcoin", re.I),
    re.compile(r"recipe|cook|bake|ingredients", re.I),
    re.compile(r"hotel|booking|reservation|flight|airline|airport|ticket", re.I),
    re.compile(r"\d+\s*[+\-*/]\s*\d+"),
    re.compile(r"capital of [a-z]+|who invented|when was [a-z]+ (founded|created|invented)", re.I),
    re.compile(r"write (me )?a poem|write (me )?a story|write (me )?an essay", re.I),
    re.compile(r"how to (make|build|create|fix|repair) [a-z]", re.I),
]

WEATHER_VOCABULARY = re.compile(
    r"weather|temperature|forecast|rain|snow|wind|sunny|cloudy|storm|hot|cold|warm|cool|"
    r"humidity|precipitation|conditions|degrees|celsius|fahrenheit|wear|dress|clothing|"
    r"amman|london|paris|new york|tonight|today|tomorrow",
    re.I,
)

ANGRY_WORDS = re.compile(
    r"angry|furious|mad|frustrated|unacceptable|terrible|awful|worst|horrible|disaster|"
    r"ruined|wrong|useless|pathetic|ridiculous|stupid|idiot|dumb",
    re.I,
)
BLAME_PHRASES = re.compile(r"you said|you told|your fault|you promised|you were wrong", re.I)
DISTRESS_WORDS = re.compile(r"help|urgent|emergency|please|desperate|scared|worried|anxious", re.I)
REPEATED_PUNCTUATION = re.compile(r"[!?]{2,}")


@dataclass
class ToneAssessment:
    tone: Tone = "neutral"
    confidence: float = 0.7
    indicators: List[str] = field(default_factory=list)


def is_within_scope(text: str) -> bool:
    return not any(p.search(text) for p in OUT_OF_SCOPE_PATTERNS)


def has_weather_content(text: str) -> bool:
    return bool(WEATHER_VOCABULARY.search(text))


def detect_tone(text: str) -> ToneAssessment:
    """按大写比例、感叹号、愤怒/指责词与求助词判断用户语气。"""

    if not text:
        return ToneAssessment()

    upper_ratio = sum(1 for ch in text if "A" <= ch <= "Z") / len(text)
    exclamations = text.count("!")
    checks = [
        ("caps", upper_ratio > 0.5),
        ("exclamation", exclamations >= 3),
        ("multiple_punctuation", bool(REPEATED_PUNCTUATION.search(text))),
        ("angry_words", bool(ANGRY_WORDS.search(text))),
        ("blame_language", bool(BLAME_PHRASES.search(text))),
    ]
    indicators = [name for name, hit in checks if hit]
    if indicators:
        return ToneAssessment(tone="angry", confidence=0.8, indicators=indicators)
    if DISTRESS_WORDS.search(text):
        return ToneAssessment(tone="distressed", confidence=0.7, indicators=["urgent_language"])
    return ToneAssessment()
