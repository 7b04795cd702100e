"""Runtime configuration for the agent runner."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

SUPPORTED_MODEL_BACKENDS = ("http", "echo")
SUPPORTED_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass(slots=True)
class StorageSettings:
    """SQLite storage policy."""

    sqlite_busy_timeout_ms: int = 5_000


@dataclass(slots=True)
class RunnerSettings:
    """Claim, routing and loop settings."""

    runner_id: str | None = None
    lease_timeout_seconds: int = 300
    default_agent: str = "lead_qualifier"
    orchestrator_slug: str = "orchestrator"
    dedupe_window_seconds: int = 3_600
    max_chain_depth: int = 5
    poll_interval_seconds: float = 2.0


@dataclass(slots=True)
class ModelSettings:
    """Reasoning model endpoint settings."""

    backend: str = "http"
    url: str = "https://api.openai.com/v1/chat/completions"
    model: str = "gpt-4o-mini"
    api_key: str | None = None
    timeout_seconds: float = 60.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".agent_runner.db")
    log_level: str = "INFO"
    storage: StorageSettings = field(default_factory=StorageSettings)
    runner: RunnerSettings = field(default_factory=RunnerSettings)
    model: ModelSettings = field(default_factory=ModelSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("AGENT_RUNNER_DB_PATH", ".agent_runner.db")),
            log_level=os.getenv("AGENT_RUNNER_LOG_LEVEL", "INFO").strip().upper(),
            storage=StorageSettings(
                sqlite_busy_timeout_ms=int(
                    os.getenv("AGENT_RUNNER_SQLITE_BUSY_TIMEOUT_MS", "5000"),
                ),
            ),
            runner=RunnerSettings(
                runner_id=os.getenv("AGENT_RUNNER_RUNNER_ID") or None,
                lease_timeout_seconds=int(
                    os.getenv("AGENT_RUNNER_LEASE_TIMEOUT_SECONDS", "300"),
                ),
                default_agent=os.getenv("AGENT_RUNNER_DEFAULT_AGENT", "lead_qualifier").strip(),
                orchestrator_slug=os.getenv(
                    "AGENT_RUNNER_ORCHESTRATOR_SLUG",
                    "orchestrator",
                ).strip(),
                dedupe_window_seconds=int(
                    os.getenv("AGENT_RUNNER_DEDUPE_WINDOW_SECONDS", "3600"),
                ),
                max_chain_depth=int(os.getenv("AGENT_RUNNER_MAX_CHAIN_DEPTH", "5")),
                poll_interval_seconds=float(
                    os.getenv("AGENT_RUNNER_POLL_INTERVAL_SECONDS", "2.0"),
                ),
            ),
            model=ModelSettings(
                backend=os.getenv("AGENT_RUNNER_MODEL_BACKEND", "http").strip().lower(),
                url=os.getenv(
                    "AGENT_RUNNER_MODEL_URL",
                    "https://api.openai.com/v1/chat/completions",
                ).strip(),
                model=os.getenv("AGENT_RUNNER_MODEL", "gpt-4o-mini").strip(),
                api_key=os.getenv("AGENT_RUNNER_MODEL_API_KEY") or None,
                timeout_seconds=float(
                    os.getenv("AGENT_RUNNER_MODEL_TIMEOUT_SECONDS", "60.0"),
                ),
            ),
        )

    def validate_for_runner(self) -> None:
        """Raise configuration error if runner settings are inconsistent."""

        if self.runner.lease_timeout_seconds <= 0:
            raise ValueError("AGENT_RUNNER_LEASE_TIMEOUT_SECONDS must be > 0.")
        if self.runner.dedupe_window_seconds < 0:
            raise ValueError("AGENT_RUNNER_DEDUPE_WINDOW_SECONDS must be >= 0.")
        if self.runner.max_chain_depth < 0:
            raise ValueError("AGENT_RUNNER_MAX_CHAIN_DEPTH must be >= 0.")
        if self.runner.poll_interval_seconds < 0:
            raise ValueError("AGENT_RUNNER_POLL_INTERVAL_SECONDS must be >= 0.")
        if not self.runner.default_agent:
            raise ValueError("AGENT_RUNNER_DEFAULT_AGENT must not be empty.")
        if not self.runner.orchestrator_slug:
            raise ValueError("AGENT_RUNNER_ORCHESTRATOR_SLUG must not be empty.")
        if self.storage.sqlite_busy_timeout_ms <= 0:
            raise ValueError("AGENT_RUNNER_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.log_level not in SUPPORTED_LOG_LEVELS:
            raise ValueError(
                f"Invalid AGENT_RUNNER_LOG_LEVEL: {self.log_level!r}. "
                f"Use one of {SUPPORTED_LOG_LEVELS}.",
            )
        self.validate_for_model()

    def validate_for_model(self) -> None:
        """Raise configuration error if the model backend cannot be built."""

        if self.model.backend not in SUPPORTED_MODEL_BACKENDS:
            raise ValueError(
                f"Unsupported AGENT_RUNNER_MODEL_BACKEND: {self.model.backend!r}. "
                f"Use one of {SUPPORTED_MODEL_BACKENDS}.",
            )
        if self.model.timeout_seconds <= 0:
            raise ValueError("AGENT_RUNNER_MODEL_TIMEOUT_SECONDS must be > 0.")
        if self.model.backend != "http":
            return
        _validate_model_url(self.model.url)
        if not self.model.model:
            raise ValueError("AGENT_RUNNER_MODEL must not be empty.")


def _validate_model_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Invalid AGENT_RUNNER_MODEL_URL: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )
