import logging

from dnnbench import config
from dnnbench.utils.logging import get_logger, set_level


def test_get_logger_is_cached_and_isolated():
    logger = get_logger("dnnbench.test_cached")
    assert get_logger("dnnbench.test_cached") is logger
    assert logger.handlers
    assert logger.propagate is False


def test_default_level_follows_environment(monkeypatch):
    monkeypatch.setenv("DNNBENCH_LOG_LEVEL", "warning")
    logger = get_logger("dnnbench.test_env_level")
    assert logger.level == logging.WARNING


def test_set_level_lowers_handler_threshold_too():
    logger = get_logger("dnnbench.test_set_level")
    set_level("DEBUG", name="dnnbench.test_set_level")
    assert logger.level == logging.DEBUG
    assert all(h.level == logging.DEBUG for h in logger.handlers)
    assert config.overrides()["DNNBENCH_LOG_LEVEL"] == "DEBUG"
    assert config.get("DNNBENCH_LOG_LEVEL") == "DEBUG"
