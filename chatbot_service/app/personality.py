from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .exceptions import UnknownPersonalityError


class PersonalityMode(str, Enum):
    HELPFUL = "helpful"
    SARCASTIC = "sarcastic"
    PROFESSIONAL = "professional"
    CREATIVE = "creative"
    TECHNICAL = "technical"


DEFAULT_PERSONALITY = PersonalityMode.HELPFUL


@dataclass(frozen=True, slots=True)
class PersonalityConfig:
    name: str
    description: str
    system_prompt: str
    temperature: float


PERSONALITY_MODES: dict[PersonalityMode, PersonalityConfig] = {
    PersonalityMode.HELPFUL: PersonalityConfig(
        name="Helpful",
        description="Friendly and informative assistant",
        system_prompt=(
            "You are a helpful and friendly AI assistant. Provide clear, accurate, and "
            "supportive answers. Be warm and encouraging in your responses."
        ),
        temperature=0.7,
    ),
    PersonalityMode.SARCASTIC: PersonalityConfig(
        name="Sarcastic",
        description="Witty with a touch of sarcasm",
        system_prompt=(
            "You are a witty AI assistant with a sarcastic sense of humor. While being "
            "helpful, add clever remarks and playful sarcasm to your responses. Keep it "
            "light and fun."
        ),
        temperature=0.9,
    ),
    PersonalityMode.PROFESSIONAL: PersonalityConfig(
        name="Professional",
        description="Formal business communication",
        system_prompt=(
            "You are a professional business assistant. Use formal language, be precise "
            "and concise. Structure your responses in a clear, corporate manner."
        ),
        temperature=0.5,
    ),
    PersonalityMode.CREATIVE: PersonalityConfig(
        name="Creative",
        description="Imaginative and expressive",
        system_prompt=(
            "You are a creative and imaginative AI assistant. Think outside the box, use "
            "vivid language, and provide innovative solutions. Be expressive and artistic "
            "in your responses."
        ),
        temperature=1.0,
    ),
    PersonalityMode.TECHNICAL: PersonalityConfig(
        name="Technical",
        description="Developer-focused responses",
        system_prompt=(
            "You are a technical AI assistant for developers. Provide detailed technical "
            "explanations, code examples, and best practices. Use precise terminology and "
            "focus on implementation details."
        ),
        temperature=0.6,
    ),
}


def resolve_personality(mode: str | None) -> PersonalityMode:
    """요청의 personalityMode 값을 해석한다. 비어 있으면 helpful, 모르는 값은 에러."""

    if mode is None or not mode.strip():
        return DEFAULT_PERSONALITY
    try:
        return PersonalityMode(mode.strip().lower())
    except ValueError as exc:
        raise UnknownPersonalityError(mode) from exc


def get_personality_config(mode: PersonalityMode) -> PersonalityConfig:
    return PERSONALITY_MODES[mode]
