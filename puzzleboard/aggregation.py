from typing import Optional

from .config import DEFAULT_RESULT_LIMIT, MAX_RESULT_LIMIT
from .errors import ValidationError
from .fields import JOINED_QUIZ_SOURCES


def clamp_limit(raw, default: int = DEFAULT_RESULT_LIMIT) -> int:
    if raw is None or raw == "":
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        return default
    return max(1, min(MAX_RESULT_LIMIT, value))


def parse_difficulty(raw) -> Optional[int]:
    if raw is None or str(raw).strip() == "":
        return None
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ValidationError("difficulty must be a number", invalid=["difficulty"]) from None


def first_quiz_by_session(quizzes) -> dict:
    by_session = {}
    for quiz in sorted(quizzes, key=lambda row: row["id"]):
        by_session.setdefault(quiz["session_id"], quiz)
    return by_session


def attach_quiz(completion: dict, quiz: Optional[dict]) -> dict:
    row = dict(completion)
    for joined_column, quiz_column in JOINED_QUIZ_SOURCES.items():
        row[joined_column] = quiz.get(quiz_column) if quiz is not None else None
    return row


def left_join_quiz(completions, quizzes) -> list:
    """One row per completion, with its session's earliest quiz submission or null quiz columns."""
    by_session = first_quiz_by_session(quizzes)
    return [attach_quiz(completion, by_session.get(completion["session_id"])) for completion in completions]
