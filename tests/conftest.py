import itertools

import pytest

from puzzleboard.config import Settings
from puzzleboard.fields import COMPLETION_FIELDS, LEADERBOARD_FIELDS, QUIZ_FIELDS, columns, insertable
from puzzleboard.readiness import ReadinessTracker
from puzzleboard.service import ResultsService

ADMIN_TOKEN = "s3cret-token"


class MemoryRecordStore:
    """Keeps both tables in lists; mirrors the ordering and matching rules of the SQL store."""

    def __init__(self):
        self.scores = []
        self.quiz_answers = []
        self.calls = []
        self._ids = itertools.count(1)
        self._quiz_ids = itertools.count(1)
        self.opened = False
        self.fail_on = set()

    def _record(self, name):
        self.calls.append(name)
        if name in self.fail_on:
            raise RuntimeError(f"{name} failed")

    def open(self):
        self._record("open")
        self.opened = True

    def close(self):
        self.opened = False

    def ensure_schema(self):
        self._record("ensure_schema")

    def tables_present(self):
        self._record("tables_present")
        return {"scores": True, "quiz_answers": True}

    def insert_completion(self, record):
        self._record("insert_completion")
        row = {column: record.get(column) for column in columns(insertable(COMPLETION_FIELDS))}
        row["id"] = next(self._ids)
        row["created_at"] = "2026-10-19T12:00:00.000Z"
        self.scores.append(row)
        return row["id"]

    def delete_completion(self, completion_id):
        self._record("delete_completion")
        before = len(self.scores)
        self.scores = [row for row in self.scores if row["id"] != completion_id]
        return before - len(self.scores)

    def insert_quiz_submission(self, record):
        self._record("insert_quiz_submission")
        row = {column: record.get(column) for column in columns(insertable(QUIZ_FIELDS))}
        row["id"] = next(self._quiz_ids)
        row["created_at"] = "2026-10-19T12:00:00.000Z"
        self.quiz_answers.append(row)
        return row["id"]

    def count_completions(self):
        self._record("count_completions")
        return len(self.scores)

    def _ranked(self, fields, limit, difficulty):
        rows = [row for row in self.scores if difficulty is None or row["difficulty"] == difficulty]
        rows.sort(key=lambda row: (row["completion_time"], row["id"]))
        return [{column: row[column] for column in columns(fields)} for row in rows[:limit]]

    def list_leaderboard(self, limit, difficulty=None):
        self._record("list_leaderboard")
        return self._ranked(LEADERBOARD_FIELDS, limit, difficulty)

    def list_ranked_completions(self, limit, difficulty=None):
        self._record("list_ranked_completions")
        return self._ranked(COMPLETION_FIELDS, limit, difficulty)

    def list_completions_for_export(self):
        self._record("list_completions_for_export")
        return sorted(self.scores, key=lambda row: (row["completed_at"], row["id"]), reverse=True)

    def list_quiz_submissions(self):
        self._record("list_quiz_submissions")
        return sorted(self.quiz_answers, key=lambda row: row["id"])

    def quiz_submissions_for_sessions(self, session_ids):
        self._record("quiz_submissions_for_sessions")
        wanted = set(session_ids)
        return [row for row in sorted(self.quiz_answers, key=lambda r: r["id"]) if row["session_id"] in wanted]

    def count_completions_by_email(self, email):
        self._record("count_completions_by_email")
        return sum(1 for row in self.scores if row["email"].lower() == email.lower())

    def count_quiz_by_email(self, email):
        self._record("count_quiz_by_email")
        return sum(1 for row in self.quiz_answers if row["participant_email"].lower() == email.lower())

    def count_quiz_matching(self, email, name):
        self._record("count_quiz_matching")
        return sum(
            1
            for row in self.quiz_answers
            if row["participant_email"].lower() == email.lower()
            or row["participant_name"].lower() == name.lower()
        )

    def completion_stats(self):
        self._record("completion_stats")
        if not self.scores:
            return {
                "total_completions": 0,
                "avg_time": None,
                "fastest_time": None,
                "slowest_time": None,
                "avg_accuracy": None,
                "avg_moves": None,
            }
        times = [row["completion_time"] for row in self.scores]
        count = len(self.scores)
        return {
            "total_completions": count,
            "avg_time": sum(times) / count,
            "fastest_time": min(times),
            "slowest_time": max(times),
            "avg_accuracy": sum(row["accuracy"] for row in self.scores) / count,
            "avg_moves": sum(row["move_count"] for row in self.scores) / count,
        }


def completion_payload(**overrides):
    payload = {
        "sessionId": "S1",
        "name": "Alice",
        "email": "alice@example.com",
        "completionTime": 95000,
        "timeString": "01:35:00",
        "difficulty": 4,
        "moveCount": 42,
        "accuracy": 88,
        "completedAt": "2026-10-19T10:00:00.000Z",
        "resultsCode": "RC-ALICE-1",
    }
    payload.update(overrides)
    return payload


def quiz_payload(**overrides):
    payload = {
        "sessionId": "S1",
        "participantName": "Alice",
        "participantEmail": "alice@example.com",
        "participantMobile": "+44 7700 900123",
        "q1Answer": "Sliding tiles",
        "q2Part1": "Corners first",
        "q2Part2": "",
        "recipientName": "Bob",
        "submittedAt": "2026-10-19T10:05:00.000Z",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def store():
    return MemoryRecordStore()


@pytest.fixture
def tracker():
    tracker = ReadinessTracker()
    tracker.begin()
    tracker.mark_ready()
    return tracker


@pytest.fixture
def settings():
    return Settings(admin_token=ADMIN_TOKEN, liveness_timeout_seconds=0.5)


@pytest.fixture
def service(store, tracker, settings):
    service = ResultsService(store, tracker, settings)
    yield service
    service.close()
