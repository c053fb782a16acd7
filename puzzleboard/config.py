import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_RESULT_LIMIT = 10
MAX_RESULT_LIMIT = 1000
DEFAULT_PORT = 3001


def parse_allowed_origins(raw: str):
    if raw == "*" or not raw:
        return None
    parsed = frozenset(origin.strip() for origin in raw.split(",") if origin.strip())
    return parsed or None


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    database_url: str = ""
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    allowed_origins: Optional[frozenset] = None
    admin_token: str = ""
    force_https: bool = False
    static_dir: str = "public"
    db_connect_timeout_seconds: int = 12
    db_statement_timeout_ms: int = 7000
    db_pool_min_size: int = 1
    db_pool_max_size: int = 5
    db_pool_timeout_seconds: int = 10
    liveness_timeout_seconds: float = 3.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.environ.get("DATABASE_URL", "").strip(),
            host=os.environ.get("HOST", "0.0.0.0").strip() or "0.0.0.0",
            port=_env_int("PORT", DEFAULT_PORT),
            allowed_origins=parse_allowed_origins(os.environ.get("ALLOWED_ORIGINS", "*").strip()),
            admin_token=os.environ.get("LEADERBOARD_ADMIN_TOKEN", "").strip(),
            force_https=_env_flag("FORCE_HTTPS"),
            static_dir=os.environ.get("STATIC_DIR", "public").strip() or "public",
            db_connect_timeout_seconds=_env_int("DB_CONNECT_TIMEOUT_SECONDS", 12),
            db_statement_timeout_ms=_env_int("DB_STATEMENT_TIMEOUT_MS", 7000),
            db_pool_min_size=_env_int("DB_POOL_MIN_SIZE", 1),
            db_pool_max_size=_env_int("DB_POOL_MAX_SIZE", 5),
            db_pool_timeout_seconds=_env_int("DB_POOL_TIMEOUT_SECONDS", 10),
            liveness_timeout_seconds=_env_float("LIVENESS_TIMEOUT_SECONDS", 3.0),
            log_level=os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        )
