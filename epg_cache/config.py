from pathlib import Path
import logging

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)


class EpgCacheSettings(BaseSettings):
    """Application settings loaded from environment variables.

    Validates configuration at startup to catch misconfiguration early.
    """

    tvh_url: str | None = None
    tvh_username: str = ""
    tvh_password: str = ""

    epg_refresh_interval: int = 3600  # Seconds between full refreshes
    epg_sqlite_path: str = "./data/epg-cache.db"
    picon_build_source_path: str | None = None

    epg_http_host: str = "0.0.0.0"
    epg_http_port: int = 3000

    upstream_page_size: int = 500
    upstream_timeout_sec: float = 30.0
    upstream_max_retries: int = 3
    upstream_backoff_factor: float = 2.0

    sqlite_journal_mode: str = "WAL"
    sqlite_cache_size_kb: int = 64000

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("tvh_url")
    @classmethod
    def validate_tvh_url(cls, value: str | None) -> str | None:
        """Validate the upstream URL is HTTP/HTTPS."""
        if value is None or not value.strip():
            return None
        value = value.strip()
        if not value.lower().startswith(("http://", "https://")):
            raise ValueError(f"TVH_URL must be HTTP/HTTPS: {value}")
        return value.rstrip("/")

    @field_validator("epg_sqlite_path")
    @classmethod
    def validate_sqlite_path(cls, value: str) -> str:
        """Validate database path is accessible."""
        if value == ":memory:":
            return value
        path = Path(value)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            return value
        except (OSError, PermissionError) as exc:
            raise ValueError(f"Cannot access database path '{value}': {exc}") from exc

    @field_validator("picon_build_source_path")
    @classmethod
    def validate_picon_path(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()

    @field_validator("epg_refresh_interval", "upstream_page_size", "upstream_max_retries")
    @classmethod
    def validate_positive_ints(cls, value: int, info) -> int:
        """Ensure integer settings are positive."""
        if value <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return value

    @field_validator("epg_http_port")
    @classmethod
    def validate_port(cls, value: int) -> int:
        if not 0 < value < 65536:
            raise ValueError("epg_http_port must be between 1 and 65535")
        return value

    @field_validator("upstream_timeout_sec")
    @classmethod
    def validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("upstream_timeout_sec must be > 0")
        return value

    @field_validator("upstream_backoff_factor")
    @classmethod
    def validate_backoff_factor(cls, value: float) -> float:
        """Ensure the backoff multiplier is at least 1."""
        if value < 1:
            raise ValueError("upstream_backoff_factor must be >= 1")
        return value

    @field_validator("sqlite_cache_size_kb")
    @classmethod
    def validate_cache_size(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("sqlite_cache_size_kb must be > 0")
        return value

    @field_validator("sqlite_journal_mode")
    @classmethod
    def validate_journal_mode(cls, value: str) -> str:
        """Validate SQLite journal mode."""
        normalized = value.upper()
        allowed = {"DELETE", "TRUNCATE", "PERSIST", "MEMORY", "WAL", "OFF"}
        if normalized not in allowed:
            raise ValueError(f"sqlite_journal_mode must be one of {sorted(allowed)}")
        return normalized

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        normalized = value.upper()
        allowed = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
        if normalized not in allowed:
            raise ValueError(f"log_level must be one of {sorted(allowed)}")
        return normalized

    @model_validator(mode="after")
    def validate_upstream_configuration(self):
        """Validate cross-field configuration."""
        if not self.tvh_url:
            logger.warning(
                "TVH_URL not configured - the service cannot refresh its cache"
            )
        return self

    def __init__(self, **data):
        """Initialize settings and log configuration."""
        super().__init__(**data)

        logger.info("Configuration loaded:")
        logger.info("  Upstream: %s", sanitize_url_for_logging(self.tvh_url or "not configured"))
        logger.info("  Upstream User: %s", "set" if self.tvh_username else "anonymous")
        logger.info("  Refresh Interval: %ss", self.epg_refresh_interval)
        logger.info("  Database: %s", self.epg_sqlite_path)
        logger.info("  Picons: %s", self.picon_build_source_path or "disabled")
        logger.info("  HTTP: %s:%s", self.epg_http_host, self.epg_http_port)
        logger.info(
            "  Upstream Paging: page_size=%s timeout=%.1fs retries=%s",
            self.upstream_page_size,
            self.upstream_timeout_sec,
            self.upstream_max_retries,
        )
        logger.info("  SQLite Journal Mode: %s", self.sqlite_journal_mode)
        logger.info("  SQLite Cache Size (KB): %s", self.sqlite_cache_size_kb)


def sanitize_url_for_logging(url: str) -> str:
    """Remove credentials from URL for safe logging."""
    if "://" not in url:
        return url
    try:
        protocol, rest = url.split("://", 1)
        if "@" in rest:
            rest = rest.split("@", 1)[1]
            return f"{protocol}://***:***@{rest}"
        return url
    except (ValueError, IndexError):
        return url


def get_settings() -> EpgCacheSettings:
    """Load settings from the environment."""
    return EpgCacheSettings()


def setup_logging(level: str = "INFO") -> None:
    """Configure application logging; later calls only adjust the level."""
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger().setLevel(numeric_level)
