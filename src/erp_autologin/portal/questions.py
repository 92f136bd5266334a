from __future__ import annotations

import logging
import re
from typing import Iterable, Mapping, Optional

from ..errors import NoMatchingSecurityAnswer
from ..models import SecurityQuestion


logger = logging.getLogger(__name__)

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")
_WORD_SPLIT_RE = re.compile(r"[^a-z0-9]+")

# Words every security question shares; they never count towards a keyword overlap.
_FILLER_WORDS = frozenset(
    {"what", "which", "who", "whom", "where", "when", "how", "was", "were", "are", "the", "your", "you", "did", "does", "for", "and", "with", "from", "that", "this", "have", "had"}
)

# Keyword seen in the live question -> phrasings a stored question may use instead.
QUESTION_VARIATIONS: Mapping[str, tuple[str, ...]] = {
    "color": ("colour", "favorite color", "favourite color", "fav color"),
    "colour": ("color", "favorite colour", "favourite colour", "fav colour"),
    "game": ("favorite game", "favourite game", "fav game"),
    "pet": ("first pet", "pet name", "favorite pet"),
    "mother": ("mothers maiden name", "mother maiden name", "mom maiden"),
    "father": ("fathers middle name", "father middle name", "dad middle"),
}


def normalize_question(text: str) -> str:
    return _NON_ALNUM_RE.sub("", (text or "").lower())


def _keywords(text: str) -> set[str]:
    words = _WORD_SPLIT_RE.split((text or "").lower())
    return {w for w in words if len(w) > 2 and w not in _FILLER_WORDS}


def build_question_map(questions: Iterable[SecurityQuestion]) -> dict[str, str]:
    """
    Build the question -> answer map for one login attempt.

    Keys keep the stored question text; when two stored questions normalize to the same text the
    first one wins. Entries without a question or an answer are skipped.
    """
    out: dict[str, str] = {}
    seen: set[str] = set()
    for qa in questions:
        if not qa.question or not qa.answer:
            continue
        norm = normalize_question(qa.question)
        if norm in seen:
            continue
        seen.add(norm)
        out[qa.question] = qa.answer
    return out


def find_security_answer(question: str, question_map: Mapping[str, str]) -> Optional[str]:
    if question in question_map:
        return question_map[question]

    asked = normalize_question(question)
    stored = [(q, normalize_question(q)) for q in question_map]
    stored = [(q, norm) for q, norm in stored if norm]

    # 1) Exact match ignoring case and punctuation
    for q, norm in stored:
        if asked == norm:
            return question_map[q]

    # 2) Containment either direction
    if asked:
        for q, norm in stored:
            if asked in norm or norm in asked:
                return question_map[q]

    # 3) At least two shared meaningful keywords
    asked_words = _keywords(question)
    for q, _norm in stored:
        if len(asked_words & _keywords(q)) >= 2:
            return question_map[q]

    # 4) Known phrasing variants
    for key, variations in QUESTION_VARIATIONS.items():
        if key not in asked:
            continue
        variants = [normalize_question(v) for v in variations]
        for q, norm in stored:
            if any(v in norm for v in variants):
                return question_map[q]

    return None


def resolve_security_answer(question: str, question_map: Mapping[str, str]) -> str:
    answer = find_security_answer(question, question_map)
    if answer is None:
        logger.warning("No stored answer matches security question %r (known=%d)", question, len(question_map))
        raise NoMatchingSecurityAnswer(question, question_map.keys())
    return answer
