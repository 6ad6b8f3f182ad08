"""Functional tests for the logger module."""

import asyncio
import json
import logging
import re
from typing import Any

import pytest
from pytest import LogCaptureFixture, MonkeyPatch

from deep_research.logging import (
    NOISY_LOGGERS,
    HumanReadableFormatter,
    clear_run_context,
    configure_structlog,
    current_run_id,
    get_logger,
    run_context,
    set_phase,
)

# ============================================================================
# Helpers
# ============================================================================


def parse_log_json(caplog: LogCaptureFixture, index: int = 0) -> dict[str, Any]:
    try:
        return json.loads(caplog.records[index].message)
    except (json.JSONDecodeError, IndexError) as e:
        records = [r.message for r in caplog.records]
        raise AssertionError(f"Failed to parse log {index}: {e}. Records: {records}")


@pytest.fixture(autouse=True)
def setup_logger():
    configure_structlog()
    yield
    clear_run_context()


# ============================================================================
# Run Context Tests
# ============================================================================


def test__outside_run__phase_placeholder_and_no_run_id(caplog: LogCaptureFixture):
    get_logger("deep_research.server").info("request.received")

    log_data = parse_log_json(caplog)
    assert {"timestamp", "level", "logger", "message", "phase"} <= log_data.keys()
    assert log_data["phase"] == "-"
    assert "run_id" not in log_data


def test__run_context__tags_records_with_run_and_topic(caplog: LogCaptureFixture):
    with run_context("renewable energy", run_id="3f2a9c1d") as run_id:
        get_logger("deep_research.workflow").info("workflow.started")

    log_data = parse_log_json(caplog)
    assert run_id == "3f2a9c1d"
    assert log_data["run_id"] == "3f2a9c1d"
    assert log_data["phase"] == "setup"
    assert log_data["extra"] == {"topic": "renewable energy"}


def test__run_context__generates_short_run_id():
    with run_context("topic") as run_id:
        assert current_run_id() == run_id
        assert len(run_id) == 8
    assert current_run_id() is None


def test__set_phase__changes_phase_of_later_records(caplog: LogCaptureFixture):
    with run_context("solar", run_id="run-1"):
        set_phase("decomposition")
        get_logger("deep_research.research.decomposer").info("decomposer.completed")
        set_phase("gathering")
        get_logger("deep_research.research.scheduler").info("scheduler.batch.completed", batch=1)

    assert [parse_log_json(caplog, i)["phase"] for i in range(2)] == ["decomposition", "gathering"]


def test__run_context__restored_after_block(caplog: LogCaptureFixture):
    with run_context("solar", run_id="run-1"):
        set_phase("synthesis")
    get_logger("deep_research.workflow").info("after run")

    log_data = parse_log_json(caplog)
    assert log_data["phase"] == "-"
    assert "run_id" not in log_data
    assert "extra" not in log_data


def test__nested_run_context__outer_values_come_back(caplog: LogCaptureFixture):
    with run_context("outer", run_id="outer-1"):
        with run_context("inner", run_id="inner-1"):
            pass
        get_logger("deep_research.workflow").info("outer again")

    log_data = parse_log_json(caplog)
    assert log_data["run_id"] == "outer-1"
    assert log_data["extra"]["topic"] == "outer"


@pytest.mark.asyncio
async def test__tasks__inherit_run_context(caplog: LogCaptureFixture):
    async def sub_query(index: int) -> None:
        get_logger("deep_research.research.client").info("client.sub_query.completed", sub_query_id=index)

    with run_context("wind", run_id="run-7"):
        set_phase("gathering")
        async with asyncio.TaskGroup() as tg:
            for index in (1, 2):
                tg.create_task(sub_query(index))

    records = [parse_log_json(caplog, i) for i in range(2)]
    assert {(r["run_id"], r["phase"]) for r in records} == {("run-7", "gathering")}


# ============================================================================
# Output Format Tests
# ============================================================================


def test__custom_fields__go_to_extra_section(caplog: LogCaptureFixture):
    get_logger("deep_research.research.client").warning(
        "client.call.failed", label="sub_query:3", attempt=2, retryable=True
    )

    log_data = parse_log_json(caplog)
    assert log_data["message"] == "client.call.failed"
    assert log_data["extra"] == {"label": "sub_query:3", "attempt": 2, "retryable": True}


@pytest.mark.parametrize("testing,should_be_json", [(False, True), (True, False)])
def test__output_format__changes_based_on_testing_flag(caplog: LogCaptureFixture, testing: bool, should_be_json: bool):
    configure_structlog(testing=testing)

    with run_context("format", run_id="format-test"):
        get_logger("deep_research.cli").info("Format test", field="value")

    if should_be_json:
        assert parse_log_json(caplog)["run_id"] == "format-test"
    else:
        message = caplog.records[0].message
        with pytest.raises(json.JSONDecodeError):
            json.loads(message)
        assert "field=value" in message
        assert "[run:format-t/setup]" in message


def test__human_readable_formatter__formats_complete_log(caplog: LogCaptureFixture):
    configure_structlog(testing=True)

    with run_context("a topic that is not repeated on every line", run_id="complete-test-789"):
        set_phase("synthesis")
        get_logger("deep_research.research.synthesizer").warning("synthesizer.part.incomplete", index=2, attempts=3)

    output = caplog.records[0].message
    assert "[WARNING]" in output
    assert "research.synthesizer:" in output
    assert "[index=2, attempts=3]" in output
    assert output.endswith("[run:complete/synthesis]")
    assert "topic=" not in output
    assert re.match(r"^\d{2}:\d{2}:\d{2}", output)


@pytest.mark.parametrize(
    "run_id,phase,expected",
    [("", "-", ""), ("", "synthesis", " [synthesis]"), ("abcdef123456", "gathering", " [run:abcdef12/gathering]")],
)
def test__format_run__header_variants(run_id: str, phase: str, expected: str):
    assert HumanReadableFormatter().format_run(run_id, phase) == expected


@pytest.mark.parametrize(
    "name,expected",
    [
        ("deep_research.research.scheduler", "research.scheduler"),
        ("deep_research.workflow", "workflow"),
        ("uvicorn.error", "uvicorn.error"),
    ],
)
def test__format_logger_name__shortens_package_loggers(name: str, expected: str):
    assert HumanReadableFormatter().format_logger_name(name) == expected


# ============================================================================
# Configuration Tests
# ============================================================================


def test__log_level__filters_messages(monkeypatch: MonkeyPatch, caplog: LogCaptureFixture):
    monkeypatch.setenv("LOGGING_LEVEL", "WARNING")
    configure_structlog()

    logger = get_logger("test")
    logger.debug("Should not appear")
    logger.info("Should not appear")
    logger.warning("Should appear")
    logger.error("Should appear")

    assert len(caplog.records) == 2


def test__invalid_log_level__defaults_to_info(monkeypatch: MonkeyPatch, caplog: LogCaptureFixture):
    monkeypatch.setenv("LOGGING_LEVEL", "INVALID")
    configure_structlog()

    logger = get_logger("test")
    logger.debug("Debug message")
    logger.info("Info message")

    assert len(caplog.records) == 1
    assert parse_log_json(caplog)["message"] == "Info message"


def test__noisy_loggers__raised_to_warning_by_default(monkeypatch: MonkeyPatch):
    monkeypatch.delenv("LOGGING_LEVEL", raising=False)
    monkeypatch.delenv("NOISY_LOGGING_LEVEL", raising=False)
    configure_structlog()

    for name in NOISY_LOGGERS:
        assert logging.getLogger(name).level == logging.WARNING


def test__noisy_logging_level__configurable(monkeypatch: MonkeyPatch):
    monkeypatch.setenv("LOGGING_LEVEL", "DEBUG")
    monkeypatch.setenv("NOISY_LOGGING_LEVEL", "ERROR")
    configure_structlog()

    assert logging.getLogger("httpx").level == logging.ERROR


# ============================================================================
# Edge Cases
# ============================================================================


def test__edge_case_values__are_handled_correctly(caplog: LogCaptureFixture):
    configure_structlog(testing=True)

    very_long_value = "x" * 100
    get_logger("test").info("Long value test", long_field=very_long_value)
    human_output = caplog.records[0].message
    assert "long_field=" in human_output
    assert "..." in human_output
    assert very_long_value not in human_output

    caplog.clear()
    configure_structlog(testing=False)

    get_logger("test").info("Edge case test", empty_string="", none_value=None, zero_value=0, false_value=False)

    extra = parse_log_json(caplog)["extra"]
    assert extra["empty_string"] == ""
    assert extra["none_value"] is None
    assert extra["zero_value"] == 0
    assert extra["false_value"] is False
