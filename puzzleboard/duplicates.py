import logging

logger = logging.getLogger(__name__)


def _clean(value) -> str:
    return str(value or "").strip()


def check_duplicate_quiz(store, email: str, name: str) -> dict:
    """A quiz submission is a duplicate if either the email or the name was used before."""
    email = _clean(email)
    name = _clean(name)
    if not email and not name:
        return {"isDuplicate": False, "existingCount": 0}

    existing_count = store.count_quiz_matching(email, name)
    if existing_count:
        logger.info("duplicate quiz submission detected existing_count=%s", existing_count)
    return {"isDuplicate": existing_count > 0, "existingCount": existing_count}


def check_duplicate_email(store, email: str) -> dict:
    email = _clean(email)
    if not email:
        return {"isDuplicate": False, "scoresCount": 0, "quizCount": 0, "totalCount": 0}

    scores_count = store.count_completions_by_email(email)
    quiz_count = store.count_quiz_by_email(email)
    total_count = scores_count + quiz_count
    return {
        "isDuplicate": total_count > 0,
        "scoresCount": scores_count,
        "quizCount": quiz_count,
        "totalCount": total_count,
    }
