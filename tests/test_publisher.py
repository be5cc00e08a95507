"""
Tests for destination publishing (fingerprint skip, rewrite, placeholder, personal view).
"""

import random

import pytest

from SellSchedule.delivery.formatting import EMPTY_SCHEDULE_COMMENTS, LOADING_PLACEHOLDER
from SellSchedule.delivery.publisher import (
    RESULT_FAILED,
    RESULT_PARTIAL,
    RESULT_PUBLISHED,
    RESULT_SKIPPED,
    SchedulePublisher,
)
from SellSchedule.schedule.store import ScheduleStore
from shared.exceptions import PermissionDeniedError, TransientServiceError

from conftest import ALL_DEST, EU_DEST, FakeGateway, make_entry


def _publisher(gateway, store=None, budget=1900):
    return SchedulePublisher(store=store or ScheduleStore(), gateway=gateway, page_budget=budget, rng=random.Random(1))


@pytest.mark.asyncio
async def test_publish_sends_pages_with_button_on_last_only(gateway):
    store = ScheduleStore()
    for i in range(1, 6):
        store.upsert(make_entry(str(i), date=i * 1000, text="Sell " + "z" * 60))
    publisher = _publisher(gateway, store, budget=250)

    result = await publisher.publish(EU_DEST)

    assert result == RESULT_PUBLISHED
    assert len(gateway.sent) > 1
    buttons = [button for _, _, button in gateway.sent]
    assert all(b is None for b in buttons[:-1])
    assert buttons[-1].custom_id == "my-schedule-EU"
    assert buttons[-1].label == "My Schedule"


@pytest.mark.asyncio
async def test_second_publish_over_unchanged_snapshot_writes_nothing(gateway):
    store = ScheduleStore()
    store.upsert(make_entry("1"))
    publisher = _publisher(gateway, store)

    assert await publisher.publish(EU_DEST) == RESULT_PUBLISHED
    writes = gateway.writes
    assert await publisher.publish(EU_DEST) == RESULT_SKIPPED
    assert gateway.writes == writes


@pytest.mark.asyncio
async def test_reactor_changes_do_not_change_fingerprint(gateway):
    store = ScheduleStore()
    store.upsert(make_entry("1"))
    publisher = _publisher(gateway, store)
    await publisher.publish(EU_DEST)

    store.upsert(make_entry("1", reactors=("7",)))
    assert await publisher.publish(EU_DEST) == RESULT_SKIPPED


@pytest.mark.asyncio
async def test_publish_replaces_previous_bot_messages(gateway):
    store = ScheduleStore()
    store.upsert(make_entry("1", text="Raid A"))
    publisher = _publisher(gateway, store)
    await publisher.publish(EU_DEST)
    first_ids = list(gateway.bot_messages[EU_DEST.channel_id])

    store.upsert(make_entry("1", text="Raid A moved"))
    assert await publisher.publish(EU_DEST) == RESULT_PUBLISHED

    assert [mid for _, mid in gateway.deleted] == first_ids
    remaining = gateway.bot_messages[EU_DEST.channel_id]
    assert len(remaining) == 1
    assert "Raid A moved" in gateway.contents[remaining[0]]


@pytest.mark.asyncio
async def test_publish_filters_destination_regions(gateway):
    store = ScheduleStore()
    store.upsert(make_entry("1", text="EU raid", region="EU"))
    store.upsert(make_entry("2", text="NA raid", region="NA"))
    publisher = _publisher(gateway, store)

    await publisher.publish(EU_DEST)
    await publisher.publish(ALL_DEST)

    eu_text = gateway.sent[0][1]
    all_text = gateway.sent[1][1]
    assert "EU raid" in eu_text and "NA raid" not in eu_text
    assert "EU raid" in all_text and "NA raid" in all_text
    assert gateway.sent[1][2].custom_id == "my-schedule-EU-NA"


@pytest.mark.asyncio
async def test_empty_schedule_sends_comment_without_button(gateway):
    publisher = _publisher(gateway)
    assert await publisher.publish(EU_DEST) == RESULT_PUBLISHED
    assert len(gateway.sent) == 1
    _, content, button = gateway.sent[0]
    assert content in EMPTY_SCHEDULE_COMMENTS
    assert button is None


@pytest.mark.asyncio
async def test_failed_send_does_not_record_fingerprint(gateway):
    store = ScheduleStore()
    store.upsert(make_entry("1"))
    publisher = _publisher(gateway, store)
    gateway.fail["send_message"] = TransientServiceError("rate limited")

    assert await publisher.publish(EU_DEST) == RESULT_FAILED
    assert publisher.published_fingerprint(EU_DEST) is None

    gateway.fail.clear()
    assert await publisher.publish(EU_DEST) == RESULT_PUBLISHED
    assert len(gateway.sent) == 1


@pytest.mark.asyncio
async def test_partial_publish_is_retried_on_next_cycle(gateway):
    store = ScheduleStore()
    for i in range(1, 6):
        store.upsert(make_entry(str(i), date=i * 1000, text="Sell " + "z" * 60))
    publisher = _publisher(gateway, store, budget=250)
    gateway.send_limit = 1

    assert await publisher.publish(EU_DEST) == RESULT_PARTIAL

    gateway.send_limit = None
    sent_before = len(gateway.sent)
    assert await publisher.publish(EU_DEST) == RESULT_PUBLISHED
    assert len(gateway.sent) > sent_before


@pytest.mark.asyncio
async def test_listing_failure_abandons_cycle(gateway):
    store = ScheduleStore()
    store.upsert(make_entry("1"))
    publisher = _publisher(gateway, store)
    gateway.fail["list_bot_messages"] = PermissionDeniedError("missing access")

    assert await publisher.publish(EU_DEST) == RESULT_FAILED
    assert gateway.writes == 0


@pytest.mark.asyncio
async def test_delete_failures_are_ignored(gateway):
    store = ScheduleStore()
    store.upsert(make_entry("1"))
    gateway.bot_messages[EU_DEST.channel_id] = ["1", "2"]
    publisher = _publisher(gateway, store)
    gateway.fail["delete_message"] = PermissionDeniedError("cannot delete")

    assert await publisher.publish(EU_DEST) == RESULT_PUBLISHED
    assert len(gateway.sent) == 1


@pytest.mark.asyncio
async def test_placeholder_sent_when_destination_has_no_bot_message(gateway):
    publisher = _publisher(gateway)
    await publisher.show_placeholder(EU_DEST)
    assert gateway.sent == [(EU_DEST.channel_id, LOADING_PLACEHOLDER, None)]


@pytest.mark.asyncio
async def test_placeholder_edits_newest_bot_message(gateway):
    gateway.bot_messages[EU_DEST.channel_id] = ["20", "10"]
    publisher = _publisher(gateway)
    await publisher.show_placeholder(EU_DEST)
    assert gateway.sent == []
    assert gateway.edited == [(EU_DEST.channel_id, "20", LOADING_PLACEHOLDER, None)]


@pytest.mark.asyncio
async def test_placeholder_forces_next_publish(gateway):
    store = ScheduleStore()
    store.upsert(make_entry("1"))
    publisher = _publisher(gateway, store)
    await publisher.publish(EU_DEST)
    await publisher.show_placeholder(EU_DEST)
    assert await publisher.publish(EU_DEST) == RESULT_PUBLISHED


def test_render_personal_only_includes_signups():
    store = ScheduleStore()
    store.upsert(make_entry("1", text="Mine", reactors=("7",)))
    store.upsert(make_entry("2", text="Not mine", reactors=("8",)))
    store.upsert(make_entry("3", text="Other region", region="NA", reactors=("7",)))
    publisher = _publisher(FakeGateway(), store)

    page = publisher.render_personal("7", ["EU"])
    assert [e.id for e in page.entries] == ["1"]
    assert publisher.render_personal("9", ["EU", "NA"]) is None
