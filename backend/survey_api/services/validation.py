# survey_api/services/validation.py
"""
Question validation rules.

Each rule returns None when the input is acceptable, otherwise the message
that goes back to the client with a 400.
"""
from typing import Iterable, List, Optional

MULTIPLE_CHOICE = "Multiple Choice"
LIKERT_SCALE = "Likert Scale"
TEXT = "Text"

# Minimum number of answer options per question type.
# Types not listed here (plain text, anything new) have no minimum.
MIN_ANSWERS = {
    MULTIPLE_CHOICE: 2,
    LIKERT_SCALE: 3,
}

_TYPE_MESSAGES = {
    MULTIPLE_CHOICE: "Failed to create survey, MC Question should have more than 1 answer",
    LIKERT_SCALE: "Failed to create survey, Likert Scale Question should have more than 2 answers",
}

MISSING_TITLE_OR_TYPE = "Invalid Question without title or type"


def validate_question_type(question_type: str, answers: Optional[List[str]]) -> Optional[str]:
    minimum = MIN_ANSWERS.get(question_type)
    if minimum is None:
        return None
    if len(answers or []) < minimum:
        return _TYPE_MESSAGES[question_type]
    return None


def validate_question(question_title: str, question_type: str, answers: Optional[List[str]]) -> Optional[str]:
    """Full check used when questions are replaced on update."""
    if not question_title or not question_type:
        return MISSING_TITLE_OR_TYPE
    return validate_question_type(question_type, answers)


def first_error(errors: Iterable[Optional[str]]) -> Optional[str]:
    """
    Consume every result (so all questions are checked) and return the
    first failure message, if any.
    """
    failures = [e for e in errors if e]
    return failures[0] if failures else None
