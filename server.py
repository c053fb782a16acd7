#!/usr/bin/env python3
import logging
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from urllib.parse import parse_qs, urlparse

from puzzleboard.api import ApiRequest, ApiResponse, ApiRouter
from puzzleboard.config import Settings
from puzzleboard.guard import API_KEY_HEADER, AccessGuard
from puzzleboard.readiness import ReadinessTracker, initialize_store
from puzzleboard.service import ResultsService
from puzzleboard.store import PostgresRecordStore

ROOT_DIR = Path(__file__).resolve().parent
MAX_BODY_BYTES = 1024 * 1024

logger = logging.getLogger("puzzleboard.server")


class PuzzleHandler(SimpleHTTPRequestHandler):
    router: ApiRouter = None
    settings: Settings = Settings()

    def __init__(self, *args, **kwargs):
        static_dir = Path(self.settings.static_dir)
        if not static_dir.is_absolute():
            static_dir = ROOT_DIR / static_dir
        super().__init__(*args, directory=str(static_dir), **kwargs)

    def resolve_allow_origin(self) -> str:
        allowed_origins = self.settings.allowed_origins
        if allowed_origins is None:
            return "*"
        request_origin = (self.headers.get("Origin") or "").strip()
        if request_origin and request_origin in allowed_origins:
            return request_origin
        return ""

    def end_headers(self):
        allow_origin = self.resolve_allow_origin()
        if allow_origin:
            self.send_header("Access-Control-Allow-Origin", allow_origin)
            if allow_origin != "*":
                self.send_header("Vary", "Origin")
        self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", f"Content-Type, Authorization, {API_KEY_HEADER}")
        super().end_headers()

    def do_OPTIONS(self):
        self.send_response(204)
        self.end_headers()

    def request_scheme(self) -> str:
        forwarded_proto = (self.headers.get("X-Forwarded-Proto") or "").split(",")[0].strip().lower()
        return forwarded_proto or "http"

    def base_url(self) -> str:
        host = (self.headers.get("Host") or "").strip()
        if not host:
            host = f"{self.server.server_address[0]}:{self.server.server_address[1]}"
        return f"{self.request_scheme()}://{host}"

    def redirect_to_https(self) -> bool:
        if not self.settings.force_https or self.request_scheme() == "https":
            return False
        host = (self.headers.get("Host") or "").strip()
        self.send_response(301)
        self.send_header("Location", f"https://{host}{self.path}")
        self.send_header("Content-Length", "0")
        self.end_headers()
        return True

    def read_body(self) -> bytes:
        raw_length = self.headers.get("Content-Length")
        if not raw_length:
            return b""
        try:
            length = int(raw_length)
        except ValueError:
            return b""
        return self.rfile.read(max(0, min(length, MAX_BODY_BYTES)))

    def dispatch_api(self, parsed, body=None):
        request = ApiRequest(
            method=self.command,
            path=parsed.path,
            query=parse_qs(parsed.query),
            headers=self.headers,
            body=body,
            base_url=self.base_url(),
        )
        self.send_api_response(self.router.handle(request))

    def do_GET(self):
        if self.redirect_to_https():
            return
        parsed = urlparse(self.path)
        if parsed.path.startswith("/api/"):
            self.dispatch_api(parsed)
            return
        if parsed.path == "/":
            self.path = "/index.html"
        super().do_GET()

    def do_POST(self):
        if self.redirect_to_https():
            return
        parsed = urlparse(self.path)
        if parsed.path.startswith("/api/"):
            self.dispatch_api(parsed, self.read_body())
            return
        self.send_api_response(ApiResponse(404, b'{"error": "not_found", "message": "Not found"}'))

    def send_api_response(self, response: ApiResponse):
        self.send_response(response.status)
        self.send_header("Content-Type", response.content_type)
        self.send_header("Content-Length", str(len(response.body)))
        for header_name, header_value in response.headers.items():
            self.send_header(header_name, str(header_value))
        self.end_headers()
        self.wfile.write(response.body)

    def log_message(self, format, *args):
        logger.info("%s - %s", self.address_string(), format % args)


class HighCapacityHTTPServer(ThreadingHTTPServer):
    daemon_threads = True
    request_queue_size = 256


def run_server():
    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    tracker = ReadinessTracker()
    store = PostgresRecordStore(settings)
    service = ResultsService(store, tracker, settings)
    PuzzleHandler.router = ApiRouter(service, AccessGuard(settings.admin_token))
    PuzzleHandler.settings = settings

    # runs to completion before the first request is accepted
    if initialize_store(store, tracker):
        logger.info("database ready")
    else:
        logger.error("database unavailable, serving health checks only: %s", tracker.error)
    if not settings.admin_token:
        logger.warning("LEADERBOARD_ADMIN_TOKEN is not set; protected endpoints will reject every request")

    server = HighCapacityHTTPServer((settings.host, settings.port), PuzzleHandler)
    logger.info("server running at http://localhost:%s", settings.port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("server stopped")
    finally:
        server.server_close()
        service.close()
        store.close()
        logger.info("database connection closed")


if __name__ == "__main__":
    run_server()
