import io
import logging
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from hgtools.core.config import env_int, feature_enabled
from hgtools.core.logging_config import get_logger, setup_logging


@pytest.fixture(autouse=True)
def reset_state(monkeypatch):
    root_logger = logging.getLogger()
    saved_handlers, saved_level = root_logger.handlers[:], root_logger.level
    feature_enabled.cache_clear()
    monkeypatch.delenv("HGTOOLS_LOG_LEVEL", raising=False)
    yield
    for h in root_logger.handlers[:]:
        root_logger.removeHandler(h)
    for h in saved_handlers:
        root_logger.addHandler(h)
    root_logger.setLevel(saved_level)
    feature_enabled.cache_clear()


def test_feature_flag_values(monkeypatch):
    monkeypatch.setenv("HGTOOLS_FEATURE_DUMP_ATOMIC_WRITES", "On")
    assert feature_enabled("feature.dump.atomic_writes") is True
    assert feature_enabled("feature.dump.unset") is False
    assert feature_enabled("feature.dump.unset", True) is True


def test_env_int_falls_back_on_garbage(monkeypatch):
    monkeypatch.setenv("HGTOOLS_DUMP_MAX_WORKERS", "many")
    assert env_int("dump.max_workers", 4) == 4
    monkeypatch.setenv("HGTOOLS_DUMP_MAX_WORKERS", " 12 ")
    assert env_int("dump.max_workers", 4) == 12


def test_setup_logging_respects_env_level(monkeypatch):
    monkeypatch.setenv("HGTOOLS_LOG_LEVEL", "warning")
    stream = io.StringIO()
    setup_logging(stream=stream)
    setup_logging(stream=stream)

    assert len(logging.getLogger().handlers) == 1
    logger = get_logger("hgtools.test")
    logger.info("hidden")
    logger.warning("shown")
    output = stream.getvalue()
    assert "hidden" not in output
    assert "hgtools.test - WARNING - shown" in output
