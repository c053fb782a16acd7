import json
import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Union

from .errors import PuzzleboardError, ValidationError
from .guard import AccessGuard, extract_token
from .service import ExportFile, ResultsService

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json; charset=utf-8"
WEB_QUERY_PATH = re.compile(r"^/api/export/webquery/(?P<kind>[a-z]+)\.iqy$")


@dataclass
class ApiRequest:
    method: str
    path: str
    query: dict = field(default_factory=dict)
    headers: dict = field(default_factory=dict)
    body: Optional[bytes] = None
    base_url: str = ""

    def param(self, name: str, default: Optional[str] = None) -> Optional[str]:
        value = self.query.get(name)
        if isinstance(value, (list, tuple)):
            value = value[0] if value else None
        return default if value is None else value


@dataclass
class ApiResponse:
    status: int
    body: bytes
    content_type: str = JSON_CONTENT_TYPE
    headers: dict = field(default_factory=dict)

    @property
    def json(self):
        return json.loads(self.body.decode("utf-8"))


def json_response(status: int, payload, headers: Optional[dict] = None) -> ApiResponse:
    return ApiResponse(status, json.dumps(payload).encode("utf-8"), JSON_CONTENT_TYPE, dict(headers or {}))


def file_response(export: ExportFile, headers: Optional[dict] = None) -> ApiResponse:
    content: Union[str, bytes] = export.content
    body = content.encode("utf-8") if isinstance(content, str) else content
    response_headers = {"Content-Disposition": f'attachment; filename="{export.filename}"'}
    response_headers.update(headers or {})
    return ApiResponse(200, body, export.content_type, response_headers)


def read_json_body(body: Optional[bytes]) -> dict:
    if not body:
        raise ValidationError("Request body is required")
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError("Invalid JSON payload") from exc

    if not isinstance(payload, dict):
        raise ValidationError("JSON body must be an object")
    return payload


class ApiRouter:
    """Maps API requests onto ResultsService operations."""

    def __init__(self, service: ResultsService, guard: AccessGuard):
        self.service = service
        self.guard = guard
        # (method, path) -> (handler, protected)
        self.routes = {
            ("GET", "/api/health"): (self.health, False),
            ("POST", "/api/scores"): (self.submit_score, False),
            ("GET", "/api/scores/check-email"): (self.check_email, False),
            ("GET", "/api/scores/export"): (self.export_scores, False),
            ("GET", "/api/stats"): (self.stats, False),
            ("POST", "/api/quiz"): (self.submit_quiz, False),
            ("GET", "/api/quiz/check-duplicate"): (self.check_quiz_duplicate, False),
            ("GET", "/api/leaderboard"): (self.leaderboard, True),
            ("GET", "/api/leaderboard/combined"): (self.combined_leaderboard, True),
            ("GET", "/api/quiz/export"): (self.export_quiz, True),
            ("GET", "/api/quiz/export.csv"): (self.export_quiz_csv, True),
            ("GET", "/api/quiz/export.xlsx"): (self.export_quiz_xlsx, True),
            ("GET", "/api/export/combined"): (self.export_combined, True),
        }

    def resolve(self, method: str, path: str):
        route = self.routes.get((method, path))
        if route is not None:
            return route, {}
        if method == "GET":
            match = WEB_QUERY_PATH.match(path)
            if match:
                return (self.web_query, True), match.groupdict()
        return None, {}

    def handle(self, request: ApiRequest) -> ApiResponse:
        route, path_params = self.resolve(request.method, request.path)
        if route is None:
            return json_response(404, {"error": "not_found", "message": "Not found"})

        handler, protected = route
        try:
            if protected:
                self.guard.check(request.headers, request.query)
            return handler(request, **path_params)
        except PuzzleboardError as exc:
            if exc.status_code >= 500:
                logger.error("%s %s failed category=%s: %s", request.method, request.path, exc.category, exc.message)
            else:
                logger.info("%s %s rejected category=%s", request.method, request.path, exc.category)
            return json_response(exc.status_code, exc.to_payload())
        except Exception:
            logger.exception("%s %s crashed", request.method, request.path)
            return json_response(500, {"error": "internal_error", "message": "Internal server error"})

    def health(self, request: ApiRequest) -> ApiResponse:
        payload = self.service.get_liveness()
        return json_response(200 if payload["storeReady"] else 503, payload, {"Cache-Control": "no-store"})

    def submit_score(self, request: ApiRequest) -> ApiResponse:
        return json_response(200, self.service.submit_completion(read_json_body(request.body)))

    def submit_quiz(self, request: ApiRequest) -> ApiResponse:
        return json_response(200, self.service.submit_quiz_answers(read_json_body(request.body)))

    def check_email(self, request: ApiRequest) -> ApiResponse:
        return json_response(200, self.service.check_duplicate_email(request.param("email", "")))

    def check_quiz_duplicate(self, request: ApiRequest) -> ApiResponse:
        result = self.service.check_duplicate_quiz(request.param("email", ""), request.param("name", ""))
        return json_response(200, result)

    def leaderboard(self, request: ApiRequest) -> ApiResponse:
        rows = self.service.get_leaderboard(request.param("limit"), request.param("difficulty"))
        return json_response(200, rows, {"Cache-Control": "no-store"})

    def combined_leaderboard(self, request: ApiRequest) -> ApiResponse:
        rows = self.service.get_joined_leaderboard(
            request.param("limit"), request.param("difficulty"), request.param("format")
        )
        return json_response(200, rows, {"Cache-Control": "no-store"})

    def export_scores(self, request: ApiRequest) -> ApiResponse:
        return json_response(200, self.service.export_completions())

    def export_quiz(self, request: ApiRequest) -> ApiResponse:
        return json_response(200, self.service.export_quiz_answers(request.param("format")))

    def export_quiz_csv(self, request: ApiRequest) -> ApiResponse:
        return file_response(self.service.export_quiz_csv())

    def export_quiz_xlsx(self, request: ApiRequest) -> ApiResponse:
        return file_response(self.service.export_quiz_spreadsheet())

    def export_combined(self, request: ApiRequest) -> ApiResponse:
        result = self.service.export_combined(request.param("format"))
        if isinstance(result, ExportFile):
            return file_response(result)
        return json_response(200, result)

    def web_query(self, request: ApiRequest, kind: str) -> ApiResponse:
        """Download an ``.iqy`` file for ``kind``.

        The file carries the caller's access token in its ``?token=`` query so
        Excel can refresh from a protected export. Anyone holding the file holds
        the credential; rotate ``LEADERBOARD_ADMIN_TOKEN`` if it leaks.
        """
        token = extract_token(request.headers, request.query)
        export = self.service.generate_web_query(kind, request.base_url, token)
        logger.warning("web query issued kind=%s with the access token embedded", kind)
        return file_response(export, {"Cache-Control": "no-store"})

    def stats(self, request: ApiRequest) -> ApiResponse:
        return json_response(200, self.service.get_stats())
