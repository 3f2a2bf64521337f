"""Content moderation for user-written text (annotations, bookmark notes, reviews).

Text is normalized before matching so the usual obfuscations are caught:
leetspeak digits/symbols, stretched letters ("fuuuck") and letters split by
spaces or punctuation ("f.u.c.k").
"""

from __future__ import annotations

import re
from typing import Iterable, Literal, Optional

from pydantic import BaseModel, Field

Severity = Literal["none", "low", "medium", "high"]

_SEVERITY_ORDER = {"none": 0, "low": 1, "medium": 2, "high": 3}

ARABIC_BAD_WORDS: tuple[str, ...] = (
    "كلب", "حمار", "غبي", "احمق", "تافه", "حقير", "وسخ", "قذر",
    "زبال", "منيوك", "شرموط", "عاهر", "قحب", "متخلف", "معوق",
    "ابن الكلب", "يلعن", "اللعنة", "جحش", "بهيم", "حيوان",
    "خنزير", "كس", "طيز", "زب", "نيك", "عرص", "مقرف", "قرف",
)

ENGLISH_BAD_WORDS: tuple[str, ...] = (
    "fuck", "shit", "ass", "bitch", "damn", "hell", "crap", "dick",
    "cock", "pussy", "bastard", "whore", "slut", "cunt", "nigger",
    "fag", "retard", "idiot", "stupid", "moron", "dumb", "jerk",
    "asshole", "bullshit", "motherfucker", "wtf", "stfu", "porn",
    "xxx", "nude", "naked", "sex", "penis", "vagina", "boobs",
)

LEET_MAP = {
    "0": "o",
    "1": "i",
    "3": "e",
    "4": "a",
    "5": "s",
    "7": "t",
    "@": "a",
    "$": "s",
    "!": "i",
}

_LEET_TABLE = str.maketrans(LEET_MAP)
_REPEATED_RE = re.compile(r"(.)\1{2,}")
_WHITESPACE_RE = re.compile(r"\s+")
_SEPARATORS_RE = re.compile(r"[._\-*#]")

_MESSAGES = {
    "none": "",
    "low": "Text contains inappropriate words",
    "medium": "Text contains offensive content",
    "high": "Text contains unacceptable content",
}


class ModerationResult(BaseModel):
    is_clean: bool = True
    flagged_words: list[str] = Field(default_factory=list)
    severity: Severity = "none"
    message: str = ""


def normalize_text(text: str) -> str:
    """Lowercase and strip obfuscation so word matching sees the intended spelling.

    Runs of three or more identical characters collapse to two, so "fuuuck"
    becomes "fuuck"; check_text additionally compares with all doubles
    squeezed out to catch that case.
    """
    normalized = text.lower().translate(_LEET_TABLE)
    normalized = _REPEATED_RE.sub(r"\1\1", normalized)
    normalized = _WHITESPACE_RE.sub("", normalized)
    return _SEPARATORS_RE.sub("", normalized)


def _collapse_doubles(text: str) -> str:
    return re.sub(r"(.)\1+", r"\1", text)


def _severity_for(count: int) -> Severity:
    if count >= 3:
        return "high"
    if count == 2:
        return "medium"
    if count == 1:
        return "low"
    return "none"


def check_text(text: Optional[str]) -> ModerationResult:
    """Check a single piece of text against the word lists."""
    if not text or not isinstance(text, str):
        return ModerationResult()

    normalized = normalize_text(text)
    squeezed = _collapse_doubles(normalized)
    original_lower = text.lower()
    flagged: list[str] = []

    for word in ARABIC_BAD_WORDS:
        if word in original_lower or word in normalized:
            flagged.append(word)

    for word in ENGLISH_BAD_WORDS:
        normalized_word = normalize_text(word)
        if normalized_word in normalized or word in original_lower:
            flagged.append(word)
        # Squeezed matching only for words without doubled letters ("ass" -> "as" would match everything)
        elif _collapse_doubles(normalized_word) == normalized_word and normalized_word in squeezed:
            flagged.append(word)

    flagged = list(dict.fromkeys(flagged))
    severity = _severity_for(len(flagged))
    return ModerationResult(
        is_clean=not flagged,
        flagged_words=flagged,
        severity=severity,
        message=_MESSAGES[severity],
    )


def merge_results(results: Iterable[ModerationResult], message: str) -> ModerationResult:
    """Combine per-field results: union of words, highest severity."""
    results = list(results)
    flagged = list(dict.fromkeys(w for r in results for w in r.flagged_words))
    dirty = [r for r in results if not r.is_clean]
    if not dirty:
        return ModerationResult()
    severity = max((r.severity for r in dirty), key=_SEVERITY_ORDER.__getitem__)
    return ModerationResult(
        is_clean=False,
        flagged_words=flagged,
        severity=severity,
        message=message,
    )


def validate_fields(fields: dict[str, Optional[str]]) -> ModerationResult:
    """Check several text fields (e.g. a bookmark's title and note) together."""
    return merge_results(
        (check_text(value) for value in fields.values() if value),
        "Content contains inappropriate words. Please review the text.",
    )
