import json
import logging

import pytest

from puzzleboard.api import ApiRequest, ApiRouter
from puzzleboard.errors import StoreOperationError
from puzzleboard.guard import AccessGuard
from puzzleboard.readiness import ReadinessTracker
from puzzleboard.service import ResultsService

from conftest import ADMIN_TOKEN, completion_payload, quiz_payload

AUTH = {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture
def router(service):
    return ApiRouter(service, AccessGuard(ADMIN_TOKEN))


def _post(router, path, payload):
    body = json.dumps(payload).encode("utf-8")
    return router.handle(ApiRequest("POST", path, body=body))


def _get(router, path, query=None, headers=None, base_url="http://localhost:3001"):
    return router.handle(ApiRequest("GET", path, query=query or {}, headers=headers or {}, base_url=base_url))


class TestSubmissions:
    def test_post_score(self, router):
        response = _post(router, "/api/scores", completion_payload())
        assert response.status == 200
        assert response.json["message"] == "Score saved successfully"
        assert response.json["id"] == 1

    def test_validation_error_shape(self, router):
        payload = completion_payload()
        del payload["email"]
        response = _post(router, "/api/scores", payload)
        assert response.status == 400
        assert response.json["error"] == "validation_error"
        assert response.json["missing"] == ["email"]

    def test_oversized_count_is_bad_request(self, router, store):
        response = _post(router, "/api/scores", completion_payload(difficulty="9999999999"))
        assert response.status == 400
        assert response.json["error"] == "validation_error"
        assert response.json["invalid"] == ["difficulty must be <= 2147483647"]
        assert store.calls == []

    def test_invalid_json(self, router):
        response = router.handle(ApiRequest("POST", "/api/scores", body=b"{nope"))
        assert response.status == 400
        assert response.json["message"] == "Invalid JSON payload"

    def test_duplicate_quiz_is_conflict(self, router):
        assert _post(router, "/api/quiz", quiz_payload()).status == 200
        response = _post(router, "/api/quiz", quiz_payload(sessionId="S2"))
        assert response.status == 409
        assert response.json["existingCount"] == 1

    def test_duplicate_checks(self, router):
        _post(router, "/api/scores", completion_payload(email="a@b.com"))
        _post(router, "/api/quiz", quiz_payload(participantEmail="a@b.com", participantName="Alice"))

        email = _get(router, "/api/scores/check-email", {"email": ["a@b.com"]}).json
        assert email == {"isDuplicate": True, "scoresCount": 1, "quizCount": 1, "totalCount": 2}

        quiz = _get(router, "/api/quiz/check-duplicate", {"email": ["c@d.com"], "name": ["Carol"]}).json
        assert quiz == {"isDuplicate": False, "existingCount": 0}


class TestProtectedRoutes:
    @pytest.mark.parametrize(
        "headers, query",
        [
            (AUTH, {}),
            ({"X-API-Key": ADMIN_TOKEN}, {}),
            ({}, {"token": [ADMIN_TOKEN]}),
        ],
    )
    def test_each_carrier_gets_the_same_leaderboard(self, router, headers, query):
        _post(router, "/api/scores", completion_payload())
        response = _get(router, "/api/leaderboard", query, headers)
        assert response.status == 200
        assert [row["session_id"] for row in response.json] == ["S1"]

    def test_wrong_token(self, router, store):
        response = _get(router, "/api/leaderboard", headers={"Authorization": "Bearer guess"})
        assert response.status == 401
        assert response.json["error"] == "unauthorized"
        assert "X-API-Key" in response.json["hint"]
        assert store.calls == []

    def test_combined_leaderboard(self, router):
        _post(router, "/api/scores", completion_payload(sessionId="S1"))
        _post(router, "/api/scores", completion_payload(sessionId="S2", completionTime=10))
        _post(router, "/api/quiz", quiz_payload(sessionId="S1"))

        rows = _get(router, "/api/leaderboard/combined", {"format": ["raw"]}, AUTH).json
        assert rows[0]["session_id"] == "S2"
        assert rows[0]["quiz_id"] is None
        assert rows[1]["quiz_id"] == 1

    def test_quiz_csv_download(self, router):
        _post(router, "/api/quiz", quiz_payload())
        response = _get(router, "/api/quiz/export.csv", headers=AUTH)
        assert response.status == 200
        assert response.content_type.startswith("text/csv")
        disposition = response.headers["Content-Disposition"]
        assert disposition.startswith('attachment; filename="quiz-answers-')
        assert disposition.endswith('.csv"')

    def test_quiz_xlsx_download(self, router):
        response = _get(router, "/api/quiz/export.xlsx", headers=AUTH)
        assert response.status == 200
        assert response.body[:2] == b"PK"

    def test_combined_export_bad_format(self, router):
        response = _get(router, "/api/export/combined", {"format": ["pdf"]}, AUTH)
        assert response.status == 400
        assert response.json["required"] == ["csv", "xlsx", "json"]

    def test_web_query_descriptor(self, router):
        response = _get(
            router,
            "/api/export/webquery/quiz.iqy",
            {"token": [ADMIN_TOKEN]},
            base_url="https://puzzles.example.com",
        )
        assert response.status == 200
        assert response.headers["Cache-Control"] == "no-store"
        text = response.body.decode("utf-8")
        assert f"https://puzzles.example.com/api/quiz/export?format=raw&token={ADMIN_TOKEN}" in text

    def test_web_query_logs_without_the_token(self, router, caplog):
        with caplog.at_level(logging.WARNING, logger="puzzleboard.api"):
            response = _get(router, "/api/export/webquery/scores.iqy", headers=AUTH)
        assert response.status == 200
        assert "kind=scores with the access token embedded" in caplog.text
        assert ADMIN_TOKEN not in caplog.text

    def test_web_query_requires_token(self, router):
        assert _get(router, "/api/export/webquery/quiz.iqy").status == 401


class TestReadinessMapping:
    def test_store_unavailable_is_503(self, store, settings):
        tracker = ReadinessTracker()
        tracker.begin()
        router = ApiRouter(ResultsService(store, tracker, settings), AccessGuard(ADMIN_TOKEN))

        response = _post(router, "/api/scores", completion_payload())
        assert response.status == 503
        assert response.json == {
            "error": "store_unavailable",
            "message": "Database not available yet",
            "state": "initializing",
        }

        health = _get(router, "/api/health")
        assert health.status == 503
        assert health.json["state"] == "initializing"
        router.service.close()

    def test_health_when_ready(self, router):
        response = _get(router, "/api/health")
        assert response.status == 200
        assert response.json["database"] == "connected"

    def test_store_error_keeps_its_message(self, router, store):
        def broken_stats():
            raise StoreOperationError("Failed to fetch statistics: relation does not exist")

        store.completion_stats = broken_stats
        response = _get(router, "/api/stats")
        assert response.status == 500
        assert response.json == {
            "error": "store_error",
            "message": "Failed to fetch statistics: relation does not exist",
        }

    def test_unexpected_failure_is_generic(self, router, store):
        store.fail_on.add("completion_stats")
        response = _get(router, "/api/stats")
        assert response.status == 500
        assert response.json == {"error": "internal_error", "message": "Internal server error"}

    def test_unknown_route(self, router):
        assert _get(router, "/api/nothing").status == 404
