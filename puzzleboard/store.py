import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout

from .config import Settings
from .errors import StoreOperationError
from .fields import COMPLETION_FIELDS, LEADERBOARD_FIELDS, QUIZ_ANSWER_FIELDS, QUIZ_FIELDS, columns, insertable

logger = logging.getLogger(__name__)

DB_LOCK_RETRIES = 4
DB_RETRY_BASE_DELAY_SECONDS = 0.05
TRANSIENT_SQLSTATES = {
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
    "55P03",  # lock_not_available
    "53300",  # too_many_connections
    "57P03",  # cannot_connect_now
    "57014",  # query_canceled (e.g. statement timeout)
    "08000",  # connection_exception
    "08001",  # sqlclient_unable_to_establish_sqlconnection
    "08003",  # connection_does_not_exist
    "08006",  # connection_failure
}

SCORES_TABLE = "scores"
QUIZ_TABLE = "quiz_answers"

_ANSWER_COLUMNS_SQL = ",\n".join(f"{field.column} TEXT" for field in QUIZ_ANSWER_FIELDS)

SCHEMA_STATEMENTS = (
    f"""
    CREATE TABLE IF NOT EXISTS {SCORES_TABLE} (
        id BIGSERIAL PRIMARY KEY,
        session_id TEXT NOT NULL,
        name TEXT NOT NULL,
        email TEXT NOT NULL,
        completion_time INTEGER NOT NULL,
        time_string TEXT NOT NULL,
        difficulty INTEGER NOT NULL,
        move_count INTEGER NOT NULL,
        accuracy INTEGER NOT NULL,
        completed_at TEXT NOT NULL,
        results_code TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {QUIZ_TABLE} (
        id BIGSERIAL PRIMARY KEY,
        session_id TEXT NOT NULL,
        participant_name TEXT NOT NULL,
        participant_email TEXT NOT NULL,
        participant_mobile TEXT NOT NULL,
        {_ANSWER_COLUMNS_SQL},
        submitted_at TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    f"""
    CREATE INDEX IF NOT EXISTS idx_scores_rank
    ON {SCORES_TABLE}(completion_time ASC, id ASC)
    """,
    f"""
    CREATE INDEX IF NOT EXISTS idx_scores_difficulty
    ON {SCORES_TABLE}(difficulty)
    """,
    f"""
    CREATE INDEX IF NOT EXISTS idx_scores_email
    ON {SCORES_TABLE}(LOWER(email))
    """,
    f"""
    CREATE INDEX IF NOT EXISTS idx_quiz_answers_session_id
    ON {QUIZ_TABLE}(session_id, id)
    """,
    f"""
    CREATE INDEX IF NOT EXISTS idx_quiz_answers_email
    ON {QUIZ_TABLE}(LOWER(participant_email))
    """,
)


def is_transient_db_error(exc: Exception) -> bool:
    if isinstance(exc, PoolTimeout):
        return True

    if isinstance(exc, psycopg.OperationalError):
        return True

    sqlstate = getattr(exc, "sqlstate", None)
    if isinstance(sqlstate, str) and sqlstate in TRANSIENT_SQLSTATES:
        return True

    return False


def with_db_retry(operation, retries: int = DB_LOCK_RETRIES, sleep=time.sleep):
    delay = DB_RETRY_BASE_DELAY_SECONDS

    for attempt in range(retries):
        try:
            return operation()
        except Exception as exc:
            if not is_transient_db_error(exc) or attempt == retries - 1:
                raise
            logger.warning("transient database error, retrying attempt=%s: %s", attempt + 1, exc)
            sleep(delay)
            delay *= 2


def serialize_timestamp(value) -> Optional[str]:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return value


def serialize_row(row: Optional[dict]) -> Optional[dict]:
    if row is None:
        return None
    result = dict(row)
    if "id" in result and result["id"] is not None:
        result["id"] = int(result["id"])
    if "created_at" in result:
        result["created_at"] = serialize_timestamp(result["created_at"])
    return result


def _as_float(value) -> Optional[float]:
    # AVG() comes back as Decimal
    return None if value is None else float(value)


def _select_list(fields) -> str:
    return ", ".join(columns(fields))


class PostgresRecordStore:
    """Completions and quiz submissions kept in PostgreSQL.

    Every public method either returns plain JSON-ready dicts/ints or raises
    StoreOperationError. Writes are serialized through a single lock.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.pool: Optional[ConnectionPool] = None
        self._write_lock = threading.Lock()

    def open(self) -> None:
        if self.pool is not None:
            return
        if not self.settings.database_url:
            raise RuntimeError(
                "DATABASE_URL is not set. Configure a PostgreSQL connection string."
            )

        min_size = max(1, self.settings.db_pool_min_size)
        pool = ConnectionPool(
            conninfo=self.settings.database_url,
            min_size=min_size,
            max_size=max(min_size, self.settings.db_pool_max_size),
            timeout=max(1, self.settings.db_pool_timeout_seconds),
            kwargs={
                "row_factory": dict_row,
                "connect_timeout": self.settings.db_connect_timeout_seconds,
            },
            configure=self._configure_connection,
            open=False,
        )
        try:
            pool.open(wait=True, timeout=max(1, self.settings.db_pool_timeout_seconds))
        except Exception:
            pool.close()
            raise
        self.pool = pool

    def close(self) -> None:
        if self.pool is not None:
            self.pool.close()
            self.pool = None

    def _configure_connection(self, conn: psycopg.Connection) -> None:
        with conn.cursor() as cur:
            cur.execute(f"SET statement_timeout = '{int(self.settings.db_statement_timeout_ms)}ms'")
        conn.commit()

    @contextmanager
    def connection(self):
        if self.pool is None:
            raise RuntimeError("Record store is not open")
        with self.pool.connection() as conn:
            yield conn

    def _run(self, description: str, operation, write: bool = False):
        try:
            if write:
                with self._write_lock:
                    return with_db_retry(operation)
            return with_db_retry(operation)
        except (psycopg.Error, PoolTimeout, RuntimeError) as exc:
            logger.error("database operation failed op=%s: %s", description, exc)
            raise StoreOperationError(f"Failed to {description}: {exc}") from exc

    def _fetch_all(self, description: str, sql: str, params=()) -> list:
        def fetch():
            with self.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, params)
                    return cur.fetchall()

        return [serialize_row(row) for row in self._run(description, fetch)]

    def _fetch_one(self, description: str, sql: str, params=()) -> Optional[dict]:
        def fetch():
            with self.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, params)
                    return cur.fetchone()

        return self._run(description, fetch)

    def ensure_schema(self) -> None:
        def create():
            with self.connection() as conn:
                with conn.cursor() as cur:
                    for statement in SCHEMA_STATEMENTS:
                        cur.execute(statement)
                conn.commit()

        self._run("create tables", create, write=True)

    def tables_present(self) -> dict:
        row = self._fetch_one(
            "inspect tables",
            """
            SELECT
                to_regclass(%s) IS NOT NULL AS scores,
                to_regclass(%s) IS NOT NULL AS quiz_answers
            """,
            (f"public.{SCORES_TABLE}", f"public.{QUIZ_TABLE}"),
        )
        return {SCORES_TABLE: bool(row["scores"]), QUIZ_TABLE: bool(row["quiz_answers"])}

    def _insert(self, description: str, table: str, fields, record: dict) -> int:
        insert_columns = columns(fields)
        placeholders = ", ".join(["%s"] * len(insert_columns))
        sql = f"INSERT INTO {table} ({', '.join(insert_columns)}) VALUES ({placeholders}) RETURNING id"
        values = tuple(record.get(column) for column in insert_columns)

        def insert():
            with self.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, values)
                    row = cur.fetchone()
                conn.commit()
                return int(row["id"])

        return self._run(description, insert, write=True)

    def insert_completion(self, record: dict) -> int:
        return self._insert("save score", SCORES_TABLE, insertable(COMPLETION_FIELDS), record)

    def insert_quiz_submission(self, record: dict) -> int:
        return self._insert("save quiz answers", QUIZ_TABLE, insertable(QUIZ_FIELDS), record)

    def delete_completion(self, completion_id: int) -> int:
        def delete():
            with self.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(f"DELETE FROM {SCORES_TABLE} WHERE id = %s", (completion_id,))
                    deleted = cur.rowcount
                conn.commit()
                return deleted

        return self._run("delete score", delete, write=True)

    def count_completions(self) -> int:
        row = self._fetch_one("count scores", f"SELECT COUNT(*) AS count FROM {SCORES_TABLE}")
        return int(row["count"])

    def _ranked(self, description: str, fields, limit: int, difficulty: Optional[int]) -> list:
        sql = f"SELECT {_select_list(fields)} FROM {SCORES_TABLE}"
        params = []
        if difficulty is not None:
            sql += " WHERE difficulty = %s"
            params.append(difficulty)
        # id breaks ties so equal times keep insertion order
        sql += " ORDER BY completion_time ASC, id ASC LIMIT %s"
        params.append(limit)
        return self._fetch_all(description, sql, tuple(params))

    def list_leaderboard(self, limit: int, difficulty: Optional[int] = None) -> list:
        return self._ranked("fetch leaderboard", LEADERBOARD_FIELDS, limit, difficulty)

    def list_ranked_completions(self, limit: int, difficulty: Optional[int] = None) -> list:
        return self._ranked("fetch ranked scores", COMPLETION_FIELDS, limit, difficulty)

    def list_completions_for_export(self) -> list:
        return self._fetch_all(
            "export scores",
            f"SELECT {_select_list(COMPLETION_FIELDS)} FROM {SCORES_TABLE} "
            "ORDER BY completed_at DESC, id DESC",
        )

    def list_quiz_submissions(self) -> list:
        return self._fetch_all(
            "export quiz answers",
            f"SELECT {_select_list(QUIZ_FIELDS)} FROM {QUIZ_TABLE} ORDER BY id ASC",
        )

    def quiz_submissions_for_sessions(self, session_ids) -> list:
        session_ids = list(dict.fromkeys(session_ids))
        if not session_ids:
            return []
        return self._fetch_all(
            "fetch quiz answers for sessions",
            f"SELECT {_select_list(QUIZ_FIELDS)} FROM {QUIZ_TABLE} "
            "WHERE session_id = ANY(%s) ORDER BY id ASC",
            (session_ids,),
        )

    def count_completions_by_email(self, email: str) -> int:
        row = self._fetch_one(
            "check score emails",
            f"SELECT COUNT(*) AS count FROM {SCORES_TABLE} WHERE LOWER(email) = LOWER(%s)",
            (email,),
        )
        return int(row["count"])

    def count_quiz_by_email(self, email: str) -> int:
        row = self._fetch_one(
            "check quiz emails",
            f"SELECT COUNT(*) AS count FROM {QUIZ_TABLE} WHERE LOWER(participant_email) = LOWER(%s)",
            (email,),
        )
        return int(row["count"])

    def count_quiz_matching(self, email: str, name: str) -> int:
        row = self._fetch_one(
            "check quiz duplicates",
            f"""
            SELECT COUNT(*) AS count FROM {QUIZ_TABLE}
            WHERE LOWER(participant_email) = LOWER(%s)
               OR LOWER(participant_name) = LOWER(%s)
            """,
            (email, name),
        )
        return int(row["count"])

    def completion_stats(self) -> dict:
        row = self._fetch_one(
            "fetch statistics",
            f"""
            SELECT
                COUNT(*) AS total_completions,
                AVG(completion_time) AS avg_time,
                MIN(completion_time) AS fastest_time,
                MAX(completion_time) AS slowest_time,
                AVG(accuracy) AS avg_accuracy,
                AVG(move_count) AS avg_moves
            FROM {SCORES_TABLE}
            """,
        )
        return {
            "total_completions": int(row["total_completions"]),
            "avg_time": _as_float(row["avg_time"]),
            "fastest_time": row["fastest_time"],
            "slowest_time": row["slowest_time"],
            "avg_accuracy": _as_float(row["avg_accuracy"]),
            "avg_moves": _as_float(row["avg_moves"]),
        }
