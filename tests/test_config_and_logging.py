import logging

import pytest
import structlog

from celine.realmsync import config as config_module
from celine.realmsync.logs import configure_logging


def test_settings_singleton_exists_and_matches_get_settings():
    assert hasattr(config_module, "settings")
    assert config_module.get_settings() is config_module.settings


def test_settings_read_prefixed_environment(monkeypatch):
    monkeypatch.setenv("CELINE_REALMSYNC_PAGE_SIZE", "25")
    monkeypatch.setenv("CELINE_REALMSYNC_LOG_LEVEL", "DEBUG")

    settings = config_module.Settings()

    assert settings.page_size == 25
    assert settings.log_level == "DEBUG"


def _capture_levels(monkeypatch):
    captured = {}

    def fake_basicConfig(*, level=None, **kwargs):
        captured["level"] = level

    orig_make = structlog.make_filtering_bound_logger

    def fake_make_filtering_bound_logger(level):
        captured["structlog_level"] = level
        return orig_make(level)

    monkeypatch.setattr(logging, "basicConfig", fake_basicConfig)
    monkeypatch.setattr(structlog, "make_filtering_bound_logger", fake_make_filtering_bound_logger)
    return captured


def test_configure_logging_uses_settings_level(monkeypatch):
    # Default settings.log_level is INFO in config.py
    captured = _capture_levels(monkeypatch)

    configure_logging()

    assert captured["level"] == logging.INFO
    assert captured["structlog_level"] == logging.INFO


@pytest.mark.parametrize(
    "log_level, expected",
    [("debug", logging.DEBUG), ("WARNING", logging.WARNING), (20, logging.INFO)],
)
def test_configure_logging_level_names_and_numbers(monkeypatch, log_level, expected):
    captured = _capture_levels(monkeypatch)

    configure_logging(log_level=log_level, json_format=True)

    assert captured["level"] == expected
    assert captured["structlog_level"] == expected


def test_configure_logging_quiets_httpx(monkeypatch):
    _capture_levels(monkeypatch)

    configure_logging(log_level="DEBUG", json_format=False)

    assert logging.getLogger("httpx").level == logging.WARNING
