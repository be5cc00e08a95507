"""
Tests for the in-memory schedule store.
"""

from SellSchedule.schedule.models import Reactor
from SellSchedule.schedule.store import ScheduleStore

from conftest import make_entry


def test_upsert_is_idempotent():
    store = ScheduleStore()
    entry = make_entry("1")
    store.upsert(entry)
    store.upsert(entry)
    assert len(store) == 1
    assert store.find("1") == entry


def test_upsert_replaces_whole_entry():
    store = ScheduleStore()
    store.upsert(make_entry("1", text="Raid A"))
    store.upsert(make_entry("1", text="Raid B"))
    assert store.find("1").text == "Raid B"
    assert len(store) == 1


def test_remove_missing_is_noop():
    store = ScheduleStore()
    store.upsert(make_entry("1"))
    assert store.remove("2") is None
    assert len(store) == 1


def test_remove_returns_entry_and_find_misses():
    store = ScheduleStore()
    entry = make_entry("1")
    store.upsert(entry)
    assert store.remove("1") == entry
    assert store.find("1") is None
    assert "1" not in store


def test_snapshot_orders_ids_numerically():
    store = ScheduleStore()
    for entry_id in ("100", "9", "1000", "25"):
        store.upsert(make_entry(entry_id))
    assert [e.id for e in store.snapshot()] == ["9", "25", "100", "1000"]


def test_snapshot_filters_regions():
    store = ScheduleStore()
    store.upsert(make_entry("1", region="EU"))
    store.upsert(make_entry("2", region="NA"))
    store.upsert(make_entry("3", region="EU"))
    assert [e.id for e in store.snapshot(["EU"])] == ["1", "3"]
    assert [e.id for e in store.snapshot(["NA", "EU"])] == ["1", "2", "3"]
    assert store.snapshot(["APAC"]) == ()


def test_snapshot_is_not_affected_by_later_mutations():
    store = ScheduleStore()
    store.upsert(make_entry("1", text="before"))
    snap = store.snapshot()
    store.upsert(make_entry("1", text="after"))
    store.upsert(make_entry("2"))
    assert [e.text for e in snap] == ["before"]


def test_entry_reactor_membership_stays_paired():
    entry = make_entry("1")
    entry = entry.with_reactor(Reactor(id="7", name="Alice"))
    entry = entry.with_reactor(Reactor(id="8", name="Bob"))
    entry = entry.with_reactor(Reactor(id="7", name="Alice again"))
    assert entry.reactor_ids == ("7", "8")
    assert entry.reactor_names == ("Alice", "Bob")

    entry = entry.without_reactor("7")
    assert entry.reactor_ids == ("8",)
    assert entry.reactor_names == ("Bob",)
    assert entry.without_reactor("7") is entry


def test_calendar_projection_follows_changes():
    entry = make_entry("1", date=1000, text="Raid A")
    assert entry.calendar_event.start == 1000
    assert entry.calendar_event.end == 1000 + 30 * 60

    updated = entry.with_content(date=5000, text="Raid B").with_reactor(Reactor(id="7", name="Alice"))
    assert updated.calendar_event.summary == "Raid B"
    assert updated.calendar_event.start == 5000
    assert updated.calendar_event.guests == ("Alice",)
    assert "Alice" in updated.calendar_event.description
    assert updated.calendar_event.location == "EU"
