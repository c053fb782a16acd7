import logging
from enum import Enum
from typing import Optional

from .errors import StoreUnavailable

logger = logging.getLogger(__name__)

SELF_TEST_COMPLETION = {
    "session_id": "TEST-SESSION-123",
    "name": "Test User",
    "email": "test@example.com",
    "completion_time": 60000,
    "time_string": "01:00:00",
    "difficulty": 8,
    "move_count": 100,
    "accuracy": 85,
    "completed_at": "1970-01-01T00:00:00.000Z",
    "results_code": "TEST-RESULT-CODE",
}


class ReadinessState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


class ReadinessTracker:
    """Lifecycle of the record store as seen by request handlers.

    Written only during the startup phase, read by every request afterwards.
    ``failed`` is terminal for the life of the process.
    """

    def __init__(self):
        self._state = ReadinessState.UNINITIALIZED
        self._error: Optional[str] = None

    @property
    def state(self) -> ReadinessState:
        return self._state

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def is_ready(self) -> bool:
        return self._state is ReadinessState.READY

    def snapshot(self):
        return self._state, self._error

    def _transition(self, expected: ReadinessState, target: ReadinessState) -> None:
        if self._state is not expected:
            raise RuntimeError(
                f"Cannot move store readiness from {self._state.value} to {target.value}"
            )
        self._state = target

    def begin(self) -> None:
        self._transition(ReadinessState.UNINITIALIZED, ReadinessState.INITIALIZING)

    def mark_ready(self) -> None:
        self._transition(ReadinessState.INITIALIZING, ReadinessState.READY)

    def mark_failed(self, reason: str) -> None:
        self._transition(ReadinessState.INITIALIZING, ReadinessState.FAILED)
        self._error = reason or "unknown error"

    def require_ready(self) -> None:
        if self._state is ReadinessState.READY:
            return
        if self._state is ReadinessState.FAILED:
            raise StoreUnavailable(
                f"Database not available: {self._error}", state=self._state.value
            )
        raise StoreUnavailable("Database not available yet", state=self._state.value)


def initialize_store(store, tracker: ReadinessTracker) -> bool:
    tracker.begin()
    try:
        store.open()
        logger.info("record store connection opened")
        store.ensure_schema()
        missing = [name for name, present in store.tables_present().items() if not present]
        if missing:
            raise RuntimeError(f"tables missing after creation: {', '.join(sorted(missing))}")
        logger.info("record store schema ready")

        test_id = store.insert_completion(SELF_TEST_COMPLETION)
        deleted = store.delete_completion(test_id)
        if deleted != 1:
            raise RuntimeError(f"self-test cleanup removed {deleted} rows for id={test_id}")
        logger.info("record store self-test passed id=%s", test_id)
    except Exception as exc:
        tracker.mark_failed(str(exc))
        logger.error("record store initialization failed: %s", exc)
        return False

    tracker.mark_ready()
    return True
