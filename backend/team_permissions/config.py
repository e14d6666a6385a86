import os
import threading
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, Field


load_dotenv()

ALLOWED_DATABASE_SCHEMES = {"postgresql+asyncpg", "sqlite+aiosqlite"}
ALLOWED_CACHE_BACKENDS = {"memory", "redis"}


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean value")


class Settings(BaseModel):
    app_name: str = Field(default="Team Permissions")
    debug: bool = Field(default=False)
    database_url: str = Field(default="")
    redis_url: str = Field(default="redis://localhost:6379/0")
    db_pool_size: int = Field(default=5)
    db_max_overflow: int = Field(default=10)
    db_pool_recycle: int = Field(default=1800)
    db_pool_pre_ping: bool = Field(default=True)
    permission_cache_backend: str = Field(default="memory")
    permission_cache_ttl_seconds: int = Field(default=300)
    audit_granted_checks: bool = Field(default=False)
    permission_check_timeout_seconds: float = Field(default=2.0)
    permission_seed_path: str | None = Field(default=None)

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @classmethod
    def from_env(cls) -> "Settings":
        database_url = os.getenv("DATABASE_URL", "").strip()
        if not database_url:
            raise ValueError("DATABASE_URL environment variable must be set")

        parsed_db = urlparse(database_url)
        if parsed_db.scheme not in ALLOWED_DATABASE_SCHEMES:
            raise ValueError(
                "DATABASE_URL must start with 'postgresql+asyncpg://' or 'sqlite+aiosqlite://'"
            )
        if parsed_db.scheme == "postgresql+asyncpg" and not parsed_db.hostname:
            raise ValueError("DATABASE_URL must include hostname")

        db_pool_size = int(os.getenv("DB_POOL_SIZE", cls.model_fields["db_pool_size"].default))
        if db_pool_size <= 0:
            raise ValueError("DB_POOL_SIZE must be greater than 0")

        db_max_overflow = int(
            os.getenv("DB_MAX_OVERFLOW", cls.model_fields["db_max_overflow"].default)
        )
        if db_max_overflow < 0:
            raise ValueError("DB_MAX_OVERFLOW must be greater than or equal to 0")

        db_pool_recycle = int(
            os.getenv("DB_POOL_RECYCLE", cls.model_fields["db_pool_recycle"].default)
        )
        if db_pool_recycle <= 0:
            raise ValueError("DB_POOL_RECYCLE must be greater than 0")

        db_pool_pre_ping = _parse_bool(
            "DB_POOL_PRE_PING",
            os.getenv("DB_POOL_PRE_PING", str(cls.model_fields["db_pool_pre_ping"].default)),
        )

        cache_backend = os.getenv(
            "PERMISSION_CACHE_BACKEND", cls.model_fields["permission_cache_backend"].default
        ).strip().lower()
        if cache_backend not in ALLOWED_CACHE_BACKENDS:
            raise ValueError(
                "PERMISSION_CACHE_BACKEND must be one of: "
                f"{', '.join(sorted(ALLOWED_CACHE_BACKENDS))}"
            )

        cache_ttl = int(
            os.getenv(
                "PERMISSION_CACHE_TTL_SECONDS",
                cls.model_fields["permission_cache_ttl_seconds"].default,
            )
        )
        if cache_ttl <= 0:
            raise ValueError("PERMISSION_CACHE_TTL_SECONDS must be greater than 0")

        check_timeout = float(
            os.getenv(
                "PERMISSION_CHECK_TIMEOUT_SECONDS",
                cls.model_fields["permission_check_timeout_seconds"].default,
            )
        )
        if check_timeout <= 0:
            raise ValueError("PERMISSION_CHECK_TIMEOUT_SECONDS must be greater than 0")

        audit_granted_checks = _parse_bool(
            "AUDIT_GRANTED_CHECKS", os.getenv("AUDIT_GRANTED_CHECKS", "false")
        )

        seed_path = os.getenv("PERMISSION_SEED_PATH", "").strip() or None

        redis_url = os.getenv("REDIS_URL", cls.model_fields["redis_url"].default).strip()

        return cls(
            app_name=os.getenv("APP_NAME", cls.model_fields["app_name"].default),
            debug=os.getenv("DEBUG", "false").lower() == "true",
            database_url=database_url,
            redis_url=redis_url,
            db_pool_size=db_pool_size,
            db_max_overflow=db_max_overflow,
            db_pool_recycle=db_pool_recycle,
            db_pool_pre_ping=db_pool_pre_ping,
            permission_cache_backend=cache_backend,
            permission_cache_ttl_seconds=cache_ttl,
            audit_granted_checks=audit_granted_checks,
            permission_check_timeout_seconds=check_timeout,
            permission_seed_path=seed_path,
        )


# Settings are built on first access so importing the package never requires
# a configured environment.
_settings_instance: Settings | None = None
_settings_lock = threading.Lock()


def get_settings() -> Settings:
    """Get settings instance, creating it on first access.

    Uses double-checked locking with threading.Lock, which works in both
    sync and async contexts.

    Raises:
        ValueError: If required environment variables are missing or invalid
    """
    global _settings_instance

    if _settings_instance is not None:
        return _settings_instance

    with _settings_lock:
        if _settings_instance is None:
            _settings_instance = Settings.from_env()

    return _settings_instance


def reset_settings() -> None:
    """Drop the cached settings so the next access re-reads the environment."""
    global _settings_instance
    with _settings_lock:
        _settings_instance = None


class _SettingsProxy:
    """Proxy to defer settings creation until first attribute access."""

    def __getattr__(self, name: str):
        return getattr(get_settings(), name)


settings = _SettingsProxy()  # type: ignore[assignment]
