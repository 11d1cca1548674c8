"""Pytest configuration for devwebify tests."""

import sys
from pathlib import Path

import pytest
import structlog
from structlog._config import BoundLoggerLazyProxy

# Add src directory to sys.path for test imports
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate each test from the caller's environment and .env file.

    Runs each test from a temporary working directory and resets the
    global settings instance so DEVWEBIFY_* overrides take effect.
    """
    for name in (
        "DEVWEBIFY_LOG_LEVEL",
        "DEVWEBIFY_LOG_FORMAT",
        "DEVWEBIFY_OUTPUT_DIR",
        "DEVWEBIFY_THINK_TIME",
        "DEVWEBIFY_SCRIPT_LOG_LEVEL",
        "DEVWEBIFY_PAYLOAD_MIN_LENGTH",
        "DEVWEBIFY_RUNTIME_PREFIX",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)

    from devwebify.config import reset_settings

    reset_settings()
    yield tmp_path
    reset_settings()


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Reset structlog after each test to prevent closed file handle errors.

    CliRunner captures stderr with a temporary file. When configure_logging()
    runs inside CliRunner, structlog binds loggers to that temp file. After
    the test, CliRunner closes the file.
    """
    yield
    structlog.reset_defaults()
    for module in list(sys.modules.values()):
        for attr in getattr(module, "__dict__", {}).values():
            if isinstance(attr, BoundLoggerLazyProxy):
                attr.__dict__.pop("bind", None)


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES_DIR
