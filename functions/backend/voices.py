"""
Voice selection for persona speech synthesis.

A persona carries free-text French descriptors (gender, mentality, speaking
style and rhythm). Each descriptor is normalized and matched against a table
of keyword rules that boost a subset of the provider voices; the best scoring
voice wins, with ties broken by the canonical voice order.
"""

from __future__ import annotations

import unicodedata
from dataclasses import dataclass
from typing import Any, Mapping, Optional

# Canonical order, also used to break ties between equal scores.
VOICES = ("alloy", "nova", "shimmer", "echo", "fable", "onyx")
DEFAULT_VOICE = "alloy"


def normalize_text(value: Any) -> str:
    """Trim, lowercase and strip diacritics so "Sénior" matches "senior"."""
    if not isinstance(value, str):
        return ""
    decomposed = unicodedata.normalize("NFD", value.strip().lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_voice(value: Any) -> Optional[str]:
    """Return the voice token when ``value`` names a known voice, else None."""
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    return normalized if normalized in VOICES else None


def _optional_string(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


@dataclass(frozen=True)
class PersonaDescriptor:
    voice: Optional[str] = None
    gender: Optional[str] = None
    mentality: Optional[str] = None
    speaking_style: Optional[str] = None
    speaking_rhythm: Optional[str] = None

    @classmethod
    def from_profile(
        cls, profile: Optional[Mapping[str, Any]]
    ) -> Optional["PersonaDescriptor"]:
        """
        Build a descriptor from a stored persona document.

        The persona schema keeps the speaking style under ``voice`` (which may
        also hold an explicit voice token) and the gender under ``look``.
        """
        if not profile:
            return None
        look = profile.get("look")
        gender = look.get("gender") if isinstance(look, Mapping) else None
        voice = _optional_string(profile.get("voice"))
        return cls(
            voice=voice,
            gender=_optional_string(gender),
            mentality=_optional_string(profile.get("mentality")),
            speaking_style=voice,
            speaking_rhythm=_optional_string(profile.get("voiceRhythm")),
        )


@dataclass(frozen=True)
class VoiceRule:
    keywords: tuple[str, ...]
    voices: tuple[str, ...]
    weight: int

    def matches(self, text: str) -> bool:
        return any(keyword in text for keyword in self.keywords)


GENDER_RULES = (
    VoiceRule(("femme",), ("shimmer", "nova"), 3),
    VoiceRule(("homme",), ("onyx", "echo"), 3),
    VoiceRule(("neutre",), ("alloy", "fable"), 2),
)

MENTALITY_RULES = (
    VoiceRule(("coach", "motivant"), ("echo", "nova"), 2),
    VoiceRule(("amour",), ("shimmer", "nova"), 2),
    VoiceRule(("sarcast",), ("onyx", "echo"), 2),
    VoiceRule(("philo",), ("fable", "alloy"), 2),
    VoiceRule(("zen",), ("alloy", "fable"), 2),
    VoiceRule(("protect",), ("onyx", "alloy"), 2),
    VoiceRule(("ludi", "joueur", "fun"), ("nova", "shimmer"), 2),
)

STYLE_RULES = (
    VoiceRule(("calme", "pose"), ("alloy", "fable"), 2),
    VoiceRule(("energ", "rythm"), ("echo", "nova"), 2),
    VoiceRule(("chaleur",), ("shimmer", "nova"), 2),
    VoiceRule(("grave",), ("onyx", "alloy"), 2),
)

RHYTHM_RULES = (
    VoiceRule(("lent",), ("fable", "alloy"), 2),
    VoiceRule(("modere",), ("alloy", "fable"), 1),
    VoiceRule(("rapide",), ("echo", "nova"), 2),
    VoiceRule(("percut",), ("onyx", "echo"), 2),
    VoiceRule(("progress",), ("fable", "nova"), 1),
)

# (descriptor attribute, rules, stop after the first matching rule)
FIELD_RULES = (
    ("gender", GENDER_RULES, True),
    ("mentality", MENTALITY_RULES, False),
    ("speaking_style", STYLE_RULES, False),
    ("speaking_rhythm", RHYTHM_RULES, False),
)


def score_persona(persona: Optional[PersonaDescriptor]) -> dict[str, int]:
    scores = {voice: 0 for voice in VOICES}
    if persona is None:
        return scores
    for attribute, rules, first_match_only in FIELD_RULES:
        text = normalize_text(getattr(persona, attribute))
        if not text:
            continue
        for rule in rules:
            if not rule.matches(text):
                continue
            for voice in rule.voices:
                scores[voice] += rule.weight
            if first_match_only:
                break
    return scores


def pick_top_voice(scores: Mapping[str, int], fallback: str) -> str:
    best = max(scores.get(voice, 0) for voice in VOICES)
    if best <= 0:
        return fallback
    for voice in VOICES:
        if scores.get(voice, 0) == best:
            return voice
    return fallback


def resolve_voice(
    explicit_override: Optional[str],
    persona: Optional[PersonaDescriptor],
    fallback_voice: str,
) -> str:
    """
    Pick the provider voice for a synthesis request. Never raises.

    Resolution order: a valid explicit override, the persona's stored voice,
    the best scoring voice when its score is positive, then the fallback.
    """
    fallback = normalize_voice(fallback_voice) or DEFAULT_VOICE
    override = normalize_voice(explicit_override)
    if override:
        return override
    if persona is None:
        return fallback
    stored = normalize_voice(persona.voice)
    if stored:
        return stored
    return pick_top_voice(score_persona(persona), fallback)
