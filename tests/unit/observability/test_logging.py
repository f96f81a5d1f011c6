"""
siteplane — unit tests for run logging

File: tests/unit/observability/test_logging.py
Last updated: 2026-10-19

Purpose
- Check that a run's JSON-lines log carries structlog fields, correlation fields
  and tracebacks, with secrets masked.

What this test file should cover
- Redaction on and off.
- Correlation scopes, including nesting and threads.
- Handle replacement and repeated shutdown.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
import structlog

from siteplane.observability.logging import (
    correlation_scope,
    get_active_logging_handle,
    get_correlation_context,
    redact,
    setup_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()
    structlog.reset_defaults()


def _logger_name() -> str:
    return f"siteplane.tests.logging.{uuid4().hex}"


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_stdlib_records_are_redacted_and_carry_correlation(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_logging(session_id="run-redaction", log_dir=tmp_path, logger_name=logger_name)
    logger = logging.getLogger(logger_name)

    with correlation_scope(site_id="site-1", owner_id="alice"):
        logger.info(
            "applying limits password=hunter2 with Bearer abc.def",
            extra={"fields": {"db_password": "hunter2", "max_sites": 3}},
        )

    shutdown_logging(handle)

    assert handle.log_path == tmp_path / "run-redaction" / "siteplane.jsonl"
    (event,) = _read_json_lines(handle.log_path)
    assert event["level"] == "INFO"
    assert event["logger"] == logger_name
    assert event["session_id"] == "run-redaction"
    assert event["site_id"] == "site-1"
    assert event["owner_id"] == "alice"
    assert "hunter2" not in json.dumps(event)
    assert "abc.def" not in str(event["message"])
    assert event["fields"] == {"db_password": "***REDACTED***", "max_sites": 3}
    assert str(event["timestamp"]).endswith("Z")


def test_correlation_scope_nests_and_resets() -> None:
    assert get_correlation_context() == {}
    with correlation_scope(operation="create_site", site_id="site-1"):
        with correlation_scope(site_id=None, owner_id=" bob "):
            assert get_correlation_context() == {"operation": "create_site", "owner_id": "bob"}
        assert get_correlation_context() == {"operation": "create_site", "site_id": "site-1"}
    assert get_correlation_context() == {}


def test_structlog_events_land_in_the_run_log(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_logging(
        {"log_level": "DEBUG", "log_dir": str(tmp_path), "redact_secrets": True},
        session_id="run-structlog",
        logger_name=logger_name,
    )
    assert get_active_logging_handle() is handle

    log = structlog.get_logger(logger_name)
    log.debug("site_created", site_id="site-7", domain="example.test", api_token="t0k")
    log.warning("limits_partial", owner_id="carol", failed=["cpu"])

    shutdown_logging()

    created, partial = _read_json_lines(handle.log_path)
    assert created["message"] == "site_created"
    assert created["level"] == "DEBUG"
    assert created["site_id"] == "site-7"
    assert created["fields"] == {"api_token": "***REDACTED***", "domain": "example.test"}
    assert partial["level"] == "WARNING"
    assert partial["owner_id"] == "carol"
    assert partial["fields"] == {"failed": ["cpu"]}
    assert get_active_logging_handle() is None


def test_level_filter_and_disabled_redaction(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_logging(
        {"log_level": "WARNING", "redact_secrets": False},
        session_id="run-plain",
        log_dir=tmp_path,
        logger_name=logger_name,
    )
    logger = logging.getLogger(logger_name)
    logger.info("dropped by level")
    logger.warning("token=visible")

    shutdown_logging(handle)

    (event,) = _read_json_lines(handle.log_path)
    assert event["message"] == "token=visible"


def test_tracebacks_get_their_own_field(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_logging(session_id="run-exc", log_dir=tmp_path, logger_name=logger_name)
    logger = logging.getLogger(logger_name)
    try:
        raise RuntimeError("setquota failed")
    except RuntimeError:
        logger.exception("apply failed")

    shutdown_logging(handle)

    (event,) = _read_json_lines(handle.log_path)
    assert event["level"] == "ERROR"
    assert event["message"] == "apply failed"
    assert "RuntimeError: setquota failed" in str(event["exception"])


def test_threads_keep_their_own_correlation(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_logging(
        session_id="run-threads", log_dir=tmp_path, logger_name=logger_name, queue_size=10_000
    )
    logger = logging.getLogger(logger_name)

    def _worker(index: int) -> None:
        with correlation_scope(site_id=f"site-{index}"):
            for sequence in range(50):
                logger.info("tick", extra={"fields": {"sequence": sequence}})

    threads = [threading.Thread(target=_worker, args=(index,)) for index in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    shutdown_logging(handle)

    events = _read_json_lines(handle.log_path)
    assert len(events) == 8 * 50
    assert handle.dropped_records == 0
    per_site: dict[object, int] = {}
    for event in events:
        per_site[event["site_id"]] = per_site.get(event["site_id"], 0) + 1
    assert per_site == {f"site-{index}": 50 for index in range(8)}


def test_a_new_run_replaces_the_previous_handle(tmp_path: Path) -> None:
    first = setup_logging(session_id="run-a", log_dir=tmp_path, logger_name=_logger_name())
    second = setup_logging(session_id="run-b", log_dir=tmp_path, logger_name=_logger_name())

    assert first.is_shutdown
    assert get_active_logging_handle() is second
    shutdown_logging(second)
    shutdown_logging(second)
    assert second.is_shutdown
    assert get_active_logging_handle() is None


@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"session_id": "  "}, "session_id must not be empty"),
        ({"session_id": "run-x", "queue_size": 0}, "queue_size must be > 0"),
        ({"session_id": "run-x", "observability": {"log_level": "LOUD"}}, "unsupported logging level"),
    ],
)
def test_invalid_settings_are_rejected(
    tmp_path: Path, kwargs: dict[str, object], message: str
) -> None:
    with pytest.raises(ValueError, match=message):
        setup_logging(log_dir=tmp_path, **kwargs)  # type: ignore[arg-type]
    assert get_active_logging_handle() is None


def test_redact_scrubs_nested_values() -> None:
    redacted = redact({"outer": [{"private_key": "k", "note": "api_key: abc123"}], "plain": "ok"})
    assert redacted == {
        "outer": [{"private_key": "***REDACTED***", "note": "api_key:***REDACTED***"}],
        "plain": "ok",
    }
