"""Unit tests for clawboard logging setup."""

import pytest
import structlog

from clawboard.logging_config import get_logger, setup_logging


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()


@pytest.mark.unit
def test_setup_logging_writes_key_value_lines_to_file(tmp_path):
    log_path = setup_logging("debug", tmp_path / "logs" / "clawboard.log")

    get_logger("clawboard.test").info("Poll failed: %s", "boom", attempt=2)

    content = log_path.read_text(encoding="utf-8")
    assert "level='info'" in content
    assert "module='clawboard.test'" in content
    assert "event='Poll failed: boom'" in content
    assert "attempt=2" in content


@pytest.mark.unit
def test_level_filters_lower_records(tmp_path):
    log_path = setup_logging("warning", tmp_path / "clawboard.log")

    logger = get_logger("clawboard.test")
    logger.info("hidden")
    logger.warning("shown")

    content = log_path.read_text(encoding="utf-8")
    assert "hidden" not in content
    assert "shown" in content


@pytest.mark.unit
def test_env_overrides_log_path(tmp_path, monkeypatch):
    target = tmp_path / "env.log"
    monkeypatch.setenv("CLAWBOARD_LOG_PATH", str(target))

    assert setup_logging("info") == target


@pytest.mark.unit
def test_unknown_level_is_rejected(tmp_path):
    with pytest.raises(ValueError, match="Unknown log level"):
        setup_logging("chatty", tmp_path / "clawboard.log")
