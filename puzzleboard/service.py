import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import NamedTuple, Optional, Union

from .aggregation import clamp_limit, left_join_quiz, parse_difficulty
from .config import Settings
from .duplicates import check_duplicate_email, check_duplicate_quiz
from .errors import DuplicateSubmission, ValidationError
from .fields import COMPLETION_FIELDS, JOINED_FIELDS, LEADERBOARD_FIELDS, QUIZ_FIELDS
from .readiness import ReadinessState, ReadinessTracker
from .transformers import (
    CSV_CONTENT_TYPE,
    IQY_CONTENT_TYPE,
    XLSX_CONTENT_TYPE,
    export_filename,
    to_csv,
    to_formatted,
    to_raw,
    to_xlsx,
    utc_timestamp,
    web_query_descriptor,
)
from .validation import validate_completion, validate_quiz_submission

logger = logging.getLogger(__name__)

ROW_FORMATS = ("raw", "formatted")
COMBINED_FORMATS = ("csv", "xlsx", "json")
QUIZ_EXPORT_KIND = "quiz-answers"
COMBINED_EXPORT_KIND = "combined-results"


class ExportFile(NamedTuple):
    filename: str
    content: Union[str, bytes]
    content_type: str


def _choose_format(raw: Optional[str], allowed, default: str) -> str:
    value = (raw or default).strip().lower()
    if value not in allowed:
        raise ValidationError(
            f"format must be one of: {', '.join(allowed)}", invalid=["format"], required=list(allowed)
        )
    return value


class ResultsService:
    def __init__(self, store, tracker: ReadinessTracker, settings: Optional[Settings] = None):
        self.store = store
        self.tracker = tracker
        self.settings = settings or Settings()
        self._liveness_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="liveness")
        self._liveness_lock = threading.Lock()
        self._pending_count = None

    def close(self) -> None:
        self._liveness_executor.shutdown(wait=False)

    def submit_completion(self, payload) -> dict:
        record = validate_completion(payload).raise_for_failure()
        self.tracker.require_ready()

        completion_id = self.store.insert_completion(record)
        logger.info("score saved id=%s session_id=%s", completion_id, record["session_id"])
        return {
            "id": completion_id,
            "message": "Score saved successfully",
            "sessionId": record["session_id"],
        }

    def submit_quiz_answers(self, payload) -> dict:
        record = validate_quiz_submission(payload).raise_for_failure()
        self.tracker.require_ready()

        duplicate = check_duplicate_quiz(
            self.store, record["participant_email"], record["participant_name"]
        )
        if duplicate["isDuplicate"]:
            raise DuplicateSubmission(
                "Quiz answers were already submitted for this email or name",
                existing_count=duplicate["existingCount"],
            )

        quiz_id = self.store.insert_quiz_submission(record)
        logger.info("quiz answers saved id=%s session_id=%s", quiz_id, record["session_id"])
        return {
            "id": quiz_id,
            "message": "Quiz answers saved successfully",
            "sessionId": record["session_id"],
        }

    def check_duplicate_quiz(self, email: str, name: str) -> dict:
        self.tracker.require_ready()
        return check_duplicate_quiz(self.store, email, name)

    def check_duplicate_email(self, email: str) -> dict:
        self.tracker.require_ready()
        return check_duplicate_email(self.store, email)

    def get_leaderboard(self, limit=None, difficulty=None) -> list:
        limit = clamp_limit(limit)
        difficulty = parse_difficulty(difficulty)
        self.tracker.require_ready()

        rows = self.store.list_leaderboard(limit, difficulty)
        return to_raw(rows, LEADERBOARD_FIELDS)

    def joined_leaderboard_rows(self, limit=None, difficulty=None) -> list:
        limit = clamp_limit(limit)
        difficulty = parse_difficulty(difficulty)
        self.tracker.require_ready()

        completions = self.store.list_ranked_completions(limit, difficulty)
        quizzes = self.store.quiz_submissions_for_sessions(row["session_id"] for row in completions)
        return left_join_quiz(completions, quizzes)

    def get_joined_leaderboard(self, limit=None, difficulty=None, fmt: Optional[str] = None) -> list:
        fmt = _choose_format(fmt, ROW_FORMATS, "raw")
        rows = self.joined_leaderboard_rows(limit, difficulty)
        if fmt == "formatted":
            return to_formatted(rows, JOINED_FIELDS, joined=True)
        return to_raw(rows, JOINED_FIELDS)

    def export_completions(self) -> dict:
        self.tracker.require_ready()
        rows = self.store.list_completions_for_export()
        return {
            "total": len(rows),
            "exported_at": utc_timestamp(),
            "scores": to_raw(rows, COMPLETION_FIELDS),
        }

    def export_quiz_answers(self, fmt: Optional[str] = None) -> dict:
        fmt = _choose_format(fmt, ROW_FORMATS, "raw")
        self.tracker.require_ready()

        rows = self.store.list_quiz_submissions()
        quiz_answers = to_formatted(rows, QUIZ_FIELDS) if fmt == "formatted" else to_raw(rows, QUIZ_FIELDS)
        return {"total": len(rows), "exported_at": utc_timestamp(), "quiz_answers": quiz_answers}

    def export_quiz_csv(self) -> ExportFile:
        self.tracker.require_ready()
        rows = self.store.list_quiz_submissions()
        logger.info("quiz answers exported format=csv rows=%s", len(rows))
        return ExportFile(export_filename(QUIZ_EXPORT_KIND, "csv"), to_csv(rows, QUIZ_FIELDS), CSV_CONTENT_TYPE)

    def export_quiz_spreadsheet(self) -> ExportFile:
        self.tracker.require_ready()
        rows = self.store.list_quiz_submissions()
        content = to_xlsx(rows, QUIZ_FIELDS, sheet_title="Quiz Answers")
        logger.info("quiz answers exported format=xlsx rows=%s", len(rows))
        return ExportFile(export_filename(QUIZ_EXPORT_KIND, "xlsx"), content, XLSX_CONTENT_TYPE)

    def combined_export_rows(self) -> list:
        self.tracker.require_ready()
        completions = self.store.list_completions_for_export()
        quizzes = self.store.list_quiz_submissions()
        return left_join_quiz(completions, quizzes)

    def export_combined(self, fmt: Optional[str] = None):
        fmt = _choose_format(fmt, COMBINED_FORMATS, "csv")
        rows = self.combined_export_rows()
        logger.info("combined results exported format=%s rows=%s", fmt, len(rows))

        if fmt == "json":
            return {"total": len(rows), "exported_at": utc_timestamp(), "results": to_raw(rows, JOINED_FIELDS)}
        if fmt == "xlsx":
            content = to_xlsx(rows, JOINED_FIELDS, sheet_title="Combined Results")
            return ExportFile(export_filename(COMBINED_EXPORT_KIND, "xlsx"), content, XLSX_CONTENT_TYPE)
        return ExportFile(
            export_filename(COMBINED_EXPORT_KIND, "csv"), to_csv(rows, JOINED_FIELDS), CSV_CONTENT_TYPE
        )

    def generate_web_query(self, kind: str, base_url: str, token: Optional[str] = None) -> ExportFile:
        self.tracker.require_ready()
        descriptor = web_query_descriptor(kind, base_url, token)
        return ExportFile(f"{kind}-web-query.iqy", descriptor, IQY_CONTENT_TYPE)

    def get_stats(self) -> dict:
        self.tracker.require_ready()
        return self.store.completion_stats()

    def get_liveness(self) -> dict:
        state, error = self.tracker.snapshot()
        payload = {"state": state.value, "storeReady": False, "timestamp": utc_timestamp()}
        if state is not ReadinessState.READY:
            payload["database"] = "not_available"
            if error:
                payload["error"] = error
            return payload

        timeout = self.settings.liveness_timeout_seconds
        with self._liveness_lock:
            # at most one count is in flight; later checks wait on the same one
            future = self._pending_count
            if future is None or future.done():
                future = self._liveness_executor.submit(self.store.count_completions)
                self._pending_count = future
        try:
            scores_count = future.result(timeout=timeout)
        except FuturesTimeoutError:
            # a count already running keeps its worker until statement_timeout ends it
            future.cancel()
            logger.warning("health check timed out after %ss", timeout)
            payload["database"] = "timeout"
            payload["error"] = f"Database did not respond within {timeout}s"
            return payload
        except Exception as exc:
            # failures are reported in the payload, never raised
            logger.error("health check failed: %s", exc)
            payload["database"] = "error"
            payload["error"] = str(exc)
            return payload

        payload.update({"storeReady": True, "database": "connected", "scoresCount": scores_count})
        return payload
