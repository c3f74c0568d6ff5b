"""Settings and logging setup tests."""

import logging
import os

import pytest
from pydantic import ValidationError

from core.config import Settings, configure_logging

ENV_VARS = [
    "OBSERVER_ID",
    "MESH_HOST",
    "MESH_PORT",
    "OBSERVER_DB_PATH",
    "OBSERVER_LOG_FILE",
    "ALLOWED_ORIGINS",
    "RATE_LIMIT_WINDOW_MS",
    "RATE_LIMIT_MAX_REQUESTS",
    "NOTIFICATION_HISTORY",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    # Run from an empty directory so no stray .env file is picked up.
    monkeypatch.chdir(tmp_path)
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    settings = Settings.from_env()
    assert settings.observer_id == "consciousness-mcp"
    assert settings.mesh_port == 3028
    assert settings.db_path == "observer.db"
    assert settings.rate_limit_max_requests == 100
    assert settings.allowed_origins == ["http://localhost:3000"]


def test_environment_overrides(clean_env):
    clean_env.setenv("OBSERVER_ID", "observer-2")
    clean_env.setenv("MESH_PORT", "4000")
    clean_env.setenv("ALLOWED_ORIGINS", "http://a.test, http://b.test,")
    clean_env.setenv("NOTIFICATION_HISTORY", "50")
    settings = Settings.from_env()
    assert settings.observer_id == "observer-2"
    assert settings.mesh_port == 4000
    assert settings.allowed_origins == ["http://a.test", "http://b.test"]
    assert settings.notification_history == 50


def test_dotenv_file_is_loaded(clean_env, tmp_path):
    (tmp_path / ".env").write_text("OBSERVER_DB_PATH=from-dotenv.db\n")
    try:
        assert Settings.from_env().db_path == "from-dotenv.db"
    finally:
        # load_dotenv writes straight into os.environ
        os.environ.pop("OBSERVER_DB_PATH", None)


def test_environment_wins_over_dotenv(clean_env, tmp_path):
    (tmp_path / ".env").write_text("OBSERVER_ID=from-dotenv\n")
    clean_env.setenv("OBSERVER_ID", "from-env")
    assert Settings.from_env().observer_id == "from-env"


@pytest.mark.parametrize("var,value", [
    ("MESH_PORT", "not-a-port"),
    ("MESH_PORT", "70000"),
    ("RATE_LIMIT_MAX_REQUESTS", "0"),
])
def test_invalid_values_fail_fast(clean_env, var, value):
    clean_env.setenv(var, value)
    with pytest.raises(ValidationError):
        Settings.from_env()


def test_configure_logging_writes_file(tmp_path):
    log_file = tmp_path / "observer.log"
    root = logging.getLogger()
    before = list(root.handlers)
    try:
        configure_logging(str(log_file))
        logging.getLogger("observer.test").info("hello from the test")
        for handler in root.handlers:
            handler.flush()
        assert "hello from the test" in log_file.read_text()
    finally:
        for handler in root.handlers[len(before):]:
            handler.close()
        root.handlers[:] = before
