"""Tests for the package logger settings."""

from __future__ import annotations

import logging

import stockbot


def test_log_dir_from_environment(tmp_path):
    assert stockbot.resolve_log_dir({"STOCKBOT_LOG_DIR": str(tmp_path / "logs")}) == tmp_path / "logs"


def test_source_checkout_logs_next_to_the_project():
    assert stockbot.resolve_log_dir({}) == stockbot.SOURCE_ROOT / ".logs"


def test_installed_package_logs_under_working_directory(tmp_path, monkeypatch):
    monkeypatch.setattr(stockbot, "SOURCE_ROOT", tmp_path / "site-packages")

    assert stockbot.resolve_log_dir({}, cwd=tmp_path) == tmp_path / ".logs"


def test_log_level_from_environment():
    assert stockbot.resolve_log_level({"STOCKBOT_LOG_LEVEL": "debug"}) == logging.DEBUG
    assert stockbot.resolve_log_level({"STOCKBOT_LOG_LEVEL": "chatty"}) == logging.INFO
    assert stockbot.resolve_log_level({}) == logging.INFO


def test_package_logger_is_configured_once():
    handlers = list(stockbot.log.handlers)

    assert stockbot._configure_logging() is stockbot.log
    assert stockbot.log.handlers == handlers
    assert any(isinstance(h, logging.StreamHandler) for h in handlers)
