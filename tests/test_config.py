from __future__ import annotations

import allure
import pytest

from agent_runner.config import ModelSettings, RunnerSettings, Settings

pytestmark = [
    allure.epic("Agent Runner"),
    allure.feature("Configuration"),
]


def test_from_env_reads_runner_and_model_settings(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("AGENT_RUNNER_LEASE_TIMEOUT_SECONDS", "120")
    monkeypatch.setenv("AGENT_RUNNER_DEFAULT_AGENT", "quote_agent")
    monkeypatch.setenv("AGENT_RUNNER_MAX_CHAIN_DEPTH", "2")
    monkeypatch.setenv("AGENT_RUNNER_MODEL_BACKEND", "ECHO")
    monkeypatch.setenv("AGENT_RUNNER_RUNNER_ID", "runner-7")

    settings = Settings.from_env(db_path=tmp_path / "cfg.db")

    assert settings.db_path == tmp_path / "cfg.db"
    assert settings.runner.lease_timeout_seconds == 120
    assert settings.runner.default_agent == "quote_agent"
    assert settings.runner.max_chain_depth == 2
    assert settings.runner.runner_id == "runner-7"
    assert settings.model.backend == "echo"
    settings.validate_for_runner()


def test_defaults_match_local_development_policy(monkeypatch) -> None:
    for name in (
        "AGENT_RUNNER_LEASE_TIMEOUT_SECONDS",
        "AGENT_RUNNER_DEDUPE_WINDOW_SECONDS",
        "AGENT_RUNNER_DEFAULT_AGENT",
        "AGENT_RUNNER_RUNNER_ID",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.runner.lease_timeout_seconds == 300
    assert settings.runner.dedupe_window_seconds == 3600
    assert settings.runner.default_agent == "lead_qualifier"
    assert settings.runner.runner_id is None


def test_validate_for_runner_rejects_non_positive_lease() -> None:
    settings = Settings(runner=RunnerSettings(lease_timeout_seconds=0))

    with pytest.raises(ValueError, match="AGENT_RUNNER_LEASE_TIMEOUT_SECONDS"):
        settings.validate_for_runner()


def test_validate_for_runner_rejects_unknown_model_backend() -> None:
    settings = Settings(model=ModelSettings(backend="grpc"))

    with pytest.raises(ValueError, match="Unsupported AGENT_RUNNER_MODEL_BACKEND"):
        settings.validate_for_runner()


def test_validate_for_runner_rejects_relative_model_url() -> None:
    settings = Settings(model=ModelSettings(url="api.example.com/v1"))

    with pytest.raises(ValueError, match="Invalid AGENT_RUNNER_MODEL_URL"):
        settings.validate_for_runner()


def test_echo_backend_skips_url_validation() -> None:
    settings = Settings(model=ModelSettings(backend="echo", url="not a url"))

    settings.validate_for_runner()
