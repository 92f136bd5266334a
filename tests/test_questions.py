from __future__ import annotations

import pytest

from erp_autologin.errors import NoMatchingSecurityAnswer
from erp_autologin.models import SecurityQuestion
from erp_autologin.portal.questions import (
    build_question_map,
    find_security_answer,
    normalize_question,
    resolve_security_answer,
)


def _qmap(*pairs: tuple[str, str]) -> dict[str, str]:
    return build_question_map([SecurityQuestion(question=q, answer=a) for q, a in pairs])


STORED = _qmap(
    ("What is the name of your first school?", "st-xaviers"),
    ("What is your mother's maiden name?", "sharma"),
    ("In which city were you born?", "kolkata"),
)


def test_normalize_question() -> None:
    assert normalize_question("What's your PET's name?") == "whatsyourpetsname"


@pytest.mark.parametrize(
    "asked,expected",
    [
        ("What is the name of your first school?", "st-xaviers"),
        ("WHAT IS THE NAME OF YOUR FIRST SCHOOL", "st-xaviers"),
        ("what is your mothers maiden name ?", "sharma"),
        ("  In which city, were you born?? ", "kolkata"),
    ],
)
def test_exact_match_ignores_case_and_punctuation(asked: str, expected: str) -> None:
    assert resolve_security_answer(asked, STORED) == expected


def test_substring_match_either_direction() -> None:
    qmap = _qmap(("first school", "st-xaviers"))
    assert resolve_security_answer("What is the name of your first school?", qmap) == "st-xaviers"

    qmap = _qmap(("Name of the town where your father was born?", "patna"))
    assert resolve_security_answer("town where your father was born", qmap) == "patna"


def test_keyword_overlap_picks_the_single_sharing_question() -> None:
    asked = "Which school did you first attend as a child?"
    assert resolve_security_answer(asked, STORED) == "st-xaviers"


def test_keyword_overlap_ignores_question_filler_words() -> None:
    qmap = _qmap(("What is your favourite food?", "biryani"))
    # Shares only "what"/"your" with the stored question
    assert find_security_answer("What was your childhood nickname?", qmap) is None


def test_synonym_table_handles_spelling_variants() -> None:
    qmap = _qmap(("What is your favourite colour?", "blue"), ("Name of your first pet?", "tommy"))
    assert resolve_security_answer("Favorite color?", qmap) == "blue"
    assert resolve_security_answer("Pet?", qmap) == "tommy"


def test_no_match_raises_with_known_questions() -> None:
    with pytest.raises(NoMatchingSecurityAnswer) as exc_info:
        resolve_security_answer("What is your car's registration number?", STORED)

    err = exc_info.value
    assert err.question == "What is your car's registration number?"
    assert "In which city were you born?" in err.known_questions
    assert "registration number" in str(err)
    assert err.category == "security_question"


def test_build_question_map_first_match_wins_and_skips_blanks() -> None:
    qmap = build_question_map(
        [
            SecurityQuestion(question="Pet name?", answer="tommy"),
            SecurityQuestion(question="pet name", answer="ignored"),
            SecurityQuestion(question="", answer="x"),
            SecurityQuestion(question="Unanswered?", answer=""),
        ]
    )
    assert qmap == {"Pet name?": "tommy"}


def test_empty_map_never_guesses() -> None:
    assert find_security_answer("Anything?", {}) is None
