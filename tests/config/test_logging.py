"""Tests for structlog configuration."""

import json
import logging
from collections.abc import Generator
from pathlib import Path

import pytest
import structlog

from boxctl.config.logging import _reconcile_prefix, _stringify_paths, configure_logging


@pytest.fixture(autouse=True)
def _drop_handlers() -> Generator[None]:
    yield
    logging.getLogger().handlers.clear()
    structlog.contextvars.clear_contextvars()


class TestConfigureLogging:
    def test_default_level_is_warning(self) -> None:
        configure_logging()
        assert logging.getLogger("boxctl").level == logging.WARNING

    def test_verbose_enables_debug(self) -> None:
        configure_logging(verbose=True)
        assert logging.getLogger("boxctl").level == logging.DEBUG

    def test_single_stderr_handler(self) -> None:
        configure_logging(log_json=True)
        configure_logging(log_json=True)
        assert len(logging.getLogger().handlers) == 1

    def test_console_prefixes_project_and_step(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(verbose=True)
        with structlog.contextvars.bound_contextvars(project="shop", step="php"):
            logging.getLogger("boxctl.infrastructure.php").debug("wrote pool")
        err = capsys.readouterr().err
        assert "[shop/php] wrote pool" in err

    def test_json_keeps_context_keys(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(verbose=True, log_json=True)
        with structlog.contextvars.bound_contextvars(project="shop", step="vhosts"):
            logging.getLogger("boxctl.infrastructure.nginx").warning("stale vhost")
        line = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert line["event"] == "stale vhost"
        assert line["project"] == "shop"
        assert line["step"] == "vhosts"
        assert line["level"] == "warning"

    def test_warnings_only_by_default(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging()
        logging.getLogger("boxctl.services").info("Started shop")
        assert capsys.readouterr().err == ""


class TestProcessors:
    def test_prefix_without_context_leaves_event(self) -> None:
        event = _reconcile_prefix(None, "info", {"event": "hello"})
        assert event == {"event": "hello"}

    def test_prefix_project_only(self) -> None:
        event = _reconcile_prefix(None, "info", {"event": "checked", "project": "blog"})
        assert event == {"event": "[blog] checked"}

    def test_paths_become_strings(self) -> None:
        event = _stringify_paths(None, "info", {"event": "x", "pool": Path("/srv/pool.conf")})
        assert event["pool"] == "/srv/pool.conf"
