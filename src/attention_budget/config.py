"""Runtime configuration for post analysis, screening and attention timing."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse


@dataclass(slots=True)
class StoreSettings:
    """Persistent store settings."""

    db_path: Path = Path(".attention_budget.db")
    busy_timeout_ms: int = 5_000


@dataclass(slots=True)
class OrchestratorSettings:
    """Per-post task orchestration settings."""

    enable_ocr: bool = False
    text_task_delay_seconds: float = 5.0
    max_duplicate_authoritative: int = 3


@dataclass(slots=True)
class RemoteSettings:
    """Authoritative remote analysis settings."""

    base_url: str = "https://api.resist-extension.org"
    request_timeout_seconds: float = 30.0
    max_attempts: int = 60
    max_total_wait_seconds: float = 600.0
    default_retry_seconds: float = 5.0
    max_retry_seconds: float = 60.0
    payload_max_chars: int = 1_000


@dataclass(slots=True)
class ScreeningSettings:
    """Budget screening settings."""

    score_threshold: float = 0.2


@dataclass(slots=True)
class LoggingSettings:
    """Logging settings."""

    level: str = "WARNING"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    store: StoreSettings = field(default_factory=StoreSettings)
    orchestrator: OrchestratorSettings = field(default_factory=OrchestratorSettings)
    remote: RemoteSettings = field(default_factory=RemoteSettings)
    screening: ScreeningSettings = field(default_factory=ScreeningSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            store=StoreSettings(
                db_path=db_path
                or Path(os.getenv("ATTENTION_BUDGET_DB_PATH", ".attention_budget.db")),
                busy_timeout_ms=int(os.getenv("ATTENTION_BUDGET_BUSY_TIMEOUT_MS", "5000")),
            ),
            orchestrator=OrchestratorSettings(
                enable_ocr=_env_bool("ATTENTION_BUDGET_ENABLE_OCR", default=False),
                text_task_delay_seconds=float(
                    os.getenv("ATTENTION_BUDGET_TEXT_TASK_DELAY_SECONDS", "5.0"),
                ),
                max_duplicate_authoritative=int(
                    os.getenv("ATTENTION_BUDGET_MAX_DUPLICATE_AUTHORITATIVE", "3"),
                ),
            ),
            remote=RemoteSettings(
                base_url=os.getenv(
                    "ATTENTION_BUDGET_REMOTE_BASE_URL",
                    "https://api.resist-extension.org",
                ).rstrip("/"),
                request_timeout_seconds=float(
                    os.getenv("ATTENTION_BUDGET_REMOTE_TIMEOUT_SECONDS", "30.0"),
                ),
                max_attempts=int(os.getenv("ATTENTION_BUDGET_REMOTE_MAX_ATTEMPTS", "60")),
                max_total_wait_seconds=float(
                    os.getenv("ATTENTION_BUDGET_REMOTE_MAX_TOTAL_WAIT_SECONDS", "600"),
                ),
                default_retry_seconds=float(
                    os.getenv("ATTENTION_BUDGET_REMOTE_DEFAULT_RETRY_SECONDS", "5"),
                ),
                max_retry_seconds=float(
                    os.getenv("ATTENTION_BUDGET_REMOTE_MAX_RETRY_SECONDS", "60"),
                ),
                payload_max_chars=int(
                    os.getenv("ATTENTION_BUDGET_REMOTE_PAYLOAD_MAX_CHARS", "1000"),
                ),
            ),
            screening=ScreeningSettings(
                score_threshold=float(os.getenv("ATTENTION_BUDGET_SCORE_THRESHOLD", "0.2")),
            ),
            logging=LoggingSettings(
                level=os.getenv("ATTENTION_BUDGET_LOG_LEVEL", "WARNING").strip().upper(),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if any setting is out of range."""

        if self.store.busy_timeout_ms <= 0:
            raise ValueError("ATTENTION_BUDGET_BUSY_TIMEOUT_MS must be > 0.")
        if self.orchestrator.text_task_delay_seconds < 0:
            raise ValueError("ATTENTION_BUDGET_TEXT_TASK_DELAY_SECONDS must be >= 0.")
        if self.orchestrator.max_duplicate_authoritative < 0:
            raise ValueError("ATTENTION_BUDGET_MAX_DUPLICATE_AUTHORITATIVE must be >= 0.")
        _validate_base_url(self.remote.base_url)
        if self.remote.request_timeout_seconds <= 0:
            raise ValueError("ATTENTION_BUDGET_REMOTE_TIMEOUT_SECONDS must be > 0.")
        if self.remote.max_attempts <= 0:
            raise ValueError("ATTENTION_BUDGET_REMOTE_MAX_ATTEMPTS must be a positive integer.")
        if self.remote.max_total_wait_seconds <= 0:
            raise ValueError("ATTENTION_BUDGET_REMOTE_MAX_TOTAL_WAIT_SECONDS must be > 0.")
        if self.remote.default_retry_seconds < 0:
            raise ValueError("ATTENTION_BUDGET_REMOTE_DEFAULT_RETRY_SECONDS must be >= 0.")
        if self.remote.max_retry_seconds < self.remote.default_retry_seconds:
            raise ValueError(
                "ATTENTION_BUDGET_REMOTE_MAX_RETRY_SECONDS must be >= "
                "ATTENTION_BUDGET_REMOTE_DEFAULT_RETRY_SECONDS.",
            )
        if self.remote.payload_max_chars <= 0:
            raise ValueError("ATTENTION_BUDGET_REMOTE_PAYLOAD_MAX_CHARS must be > 0.")
        if not 0 <= self.screening.score_threshold <= 1:
            raise ValueError("ATTENTION_BUDGET_SCORE_THRESHOLD must be within [0, 1].")
        if not isinstance(logging.getLevelName(self.logging.level), int):
            raise ValueError(f"Invalid ATTENTION_BUDGET_LOG_LEVEL: {self.logging.level!r}")


def _validate_base_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Invalid ATTENTION_BUDGET_REMOTE_BASE_URL: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
