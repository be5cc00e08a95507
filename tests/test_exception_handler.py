"""
Tests for absorbed failures: the calendar mirror and queue listeners report
through `swallow_exception` with a stable context and the ids involved.
"""

from __future__ import annotations

import logging
from unittest.mock import MagicMock, patch

import pytest

from SellSchedule.calendar.google_calendar import CalendarConflictError, CalendarRequestError
from SellSchedule.calendar.mirror import CalendarMirror
from SellSchedule.delivery.task_queue import TaskQueue
from shared.observability import swallow_exception

from conftest import make_entry


@pytest.fixture
def swallowed():
    counter = MagicMock()
    with patch("SellSchedule.observability_metrics.swallowed_exceptions_total", counter):
        yield counter


def _swallowed_records(caplog):
    return [r for r in caplog.records if r.name == "sell_schedule.exceptions"]


def _mirror():
    client = MagicMock()
    return CalendarMirror(client, time_zone="UTC"), client


@pytest.mark.asyncio
async def test_insert_failure_is_reported(caplog, swallowed):
    mirror, client = _mirror()
    error = CalendarRequestError(status_code=500, message="backend error")
    client.insert_event.side_effect = error

    with caplog.at_level(logging.ERROR):
        assert not await mirror.upsert_event(make_entry("1"), "eu@group")

    (record,) = _swallowed_records(caplog)
    assert record.getMessage() == "Swallowed exception"
    assert record.context == "gcal_insert"
    assert record.exception_type == "CalendarRequestError"
    assert record.calendar_id == "eu@group"
    assert record.entry_id == "1"
    assert record.exc_info[1] is error
    swallowed.labels.assert_called_once_with(context="gcal_insert", exception_type="CalendarRequestError")
    swallowed.labels.return_value.inc.assert_called_once()


@pytest.mark.asyncio
async def test_update_after_conflict_failure_is_reported(caplog, swallowed):
    mirror, client = _mirror()
    client.insert_event.side_effect = CalendarConflictError(status_code=409, message="duplicate")
    client.update_event.side_effect = CalendarRequestError(status_code=503, message="unavailable")

    with caplog.at_level(logging.ERROR):
        assert not await mirror.upsert_event(make_entry("1"), "main@group")

    (record,) = _swallowed_records(caplog)
    assert record.context == "gcal_update"
    assert record.calendar_id == "main@group"
    swallowed.labels.assert_called_once_with(context="gcal_update", exception_type="CalendarRequestError")


@pytest.mark.asyncio
async def test_delete_failure_names_the_calendar(caplog, swallowed):
    mirror, client = _mirror()
    client.delete_event.side_effect = [None, CalendarRequestError(status_code=503, message="unavailable")]
    mirror._calendars = {"Rise Schedule": "main@group", "Rise Schedule - EU": "eu@group"}

    with caplog.at_level(logging.ERROR):
        assert not await mirror.remove_event("1")

    (record,) = _swallowed_records(caplog)
    assert record.context == "gcal_delete"
    assert record.calendar_id == "eu@group"
    assert record.entry_id == "1"


@pytest.mark.asyncio
async def test_setup_failures_are_reported(caplog, swallowed):
    mirror, client = _mirror()
    client.list_calendars.side_effect = OSError("connection reset")
    client.create_calendar.side_effect = CalendarRequestError(status_code=403, message="forbidden")

    with caplog.at_level(logging.ERROR):
        assert await mirror.setup(["EU"]) == {}

    records = _swallowed_records(caplog)
    assert [r.context for r in records] == ["gcal_list_calendars", "gcal_create_calendar", "gcal_create_calendar"]
    assert [r.calendar_name for r in records[1:]] == ["Rise Schedule", "Rise Schedule - EU"]
    assert swallowed.labels.call_args_list[0].kwargs == {"context": "gcal_list_calendars", "exception_type": "OSError"}


@pytest.mark.asyncio
async def test_drained_listener_failure_is_reported(caplog, swallowed):
    queue = TaskQueue("publish")

    def broken():
        raise ValueError("listener")

    async def noop():
        return None

    queue.on_drained(broken)
    with caplog.at_level(logging.ERROR):
        queue.start()
        await queue.push("publish_all", noop)
        await queue.join()
        await queue.stop()

    (record,) = _swallowed_records(caplog)
    assert record.context == "task_queue_drained_listener"
    assert record.queue == "publish"
    swallowed.labels.assert_called_once_with(context="task_queue_drained_listener", exception_type="ValueError")


def test_record_attribute_names_are_prefixed(caplog, swallowed):
    with caplog.at_level(logging.ERROR):
        swallow_exception(
            RuntimeError("quota"),
            context="gcal_create_calendar",
            extra={"name": "Rise Schedule - EU", "context": "shadowed"},
        )

    (record,) = _swallowed_records(caplog)
    assert record.extra_name == "Rise Schedule - EU"
    assert record.extra_context == "shadowed"
    assert record.context == "gcal_create_calendar"


@pytest.mark.asyncio
async def test_broken_metrics_do_not_escape_the_mirror():
    mirror, client = _mirror()
    client.insert_event.side_effect = CalendarRequestError(status_code=500, message="backend error")
    counter = MagicMock()
    counter.labels.side_effect = RuntimeError("registry closed")

    with patch("SellSchedule.observability_metrics.swallowed_exceptions_total", counter):
        assert not await mirror.upsert_event(make_entry("1"), "cal")
