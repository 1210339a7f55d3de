"""Tests for structured logging helpers."""

from __future__ import annotations

import logging

import structlog

from compliance_emulator.telemetry import bind_tenant_context, clear_context, configure_logging


class TestContextBinding:
    def test_bind_tenant(self) -> None:
        bind_tenant_context("acme")
        assert structlog.contextvars.get_contextvars() == {"tenant_id": "acme"}

    def test_clear(self) -> None:
        bind_tenant_context("acme")
        clear_context()
        assert structlog.contextvars.get_contextvars() == {}


class TestConfigure:
    def test_json_logs_configure_json_renderer(self) -> None:
        configure_logging(json_logs=True, log_level="warning")
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)
        assert logging.getLogger().level == logging.WARNING

    def test_console_logs_in_dev(self) -> None:
        configure_logging(json_logs=False)
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)
        assert structlog.contextvars.merge_contextvars in processors

    def test_unknown_level_falls_back_to_info(self) -> None:
        configure_logging(log_level="chatty")
        assert logging.getLogger().level == logging.INFO

    def test_events_go_to_stderr(self, capsys) -> None:
        configure_logging(json_logs=True, log_level="INFO")
        structlog.get_logger("compliance_emulator.test").info("store.probe", table="x")
        captured = capsys.readouterr()
        assert captured.out == ""
        assert '"event": "store.probe"' in captured.err
