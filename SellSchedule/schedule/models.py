from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional, Tuple


@dataclass(frozen=True)
class Reactor:
    """A user who signed up to an entry with the sign-up emoji."""

    id: str
    name: str


@dataclass(frozen=True)
class CalendarEvent:
    """Calendar projection of a schedule entry."""

    summary: str
    description: str
    location: str
    start: int
    end: int
    guests: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ScheduleEntry:
    """
    One tracked sell post.

    Instances are immutable; every change produces a new entry that replaces the
    old one in the store. `reactors` pairs ids and names so the two views can
    never drift apart.
    """

    id: str
    channel_id: str
    region: str
    date: int
    text: str
    url: str
    reactors: Tuple[Reactor, ...] = ()
    calendar_event: Optional[CalendarEvent] = field(default=None, compare=False)

    @property
    def reactor_ids(self) -> Tuple[str, ...]:
        return tuple(r.id for r in self.reactors)

    @property
    def reactor_names(self) -> Tuple[str, ...]:
        return tuple(r.name for r in self.reactors)

    def has_reactor(self, user_id: str) -> bool:
        return str(user_id) in self.reactor_ids

    def with_content(self, *, date: int, text: str) -> "ScheduleEntry":
        return _project(replace(self, date=int(date), text=text))

    def with_reactor(self, reactor: Reactor) -> "ScheduleEntry":
        if self.has_reactor(reactor.id):
            return self
        return _project(replace(self, reactors=self.reactors + (reactor,)))

    def without_reactor(self, user_id: str) -> "ScheduleEntry":
        if not self.has_reactor(user_id):
            return self
        kept = tuple(r for r in self.reactors if r.id != str(user_id))
        return _project(replace(self, reactors=kept))

    def fingerprint(self) -> str:
        return f"{self.id}{self.date}{self.text}"


def new_entry(
    *,
    id: str,
    channel_id: str,
    region: str,
    date: int,
    text: str,
    url: str,
    reactors: Tuple[Reactor, ...] = (),
) -> ScheduleEntry:
    """Build an entry with its calendar projection filled in."""
    unique: list[Reactor] = []
    for r in reactors:
        if r.id not in {u.id for u in unique}:
            unique.append(r)
    entry = ScheduleEntry(
        id=str(id),
        channel_id=str(channel_id),
        region=region,
        date=int(date),
        text=text,
        url=url,
        reactors=tuple(unique),
    )
    return _project(entry)


def _project(entry: ScheduleEntry) -> ScheduleEntry:
    # Local import: calendar_event depends on ScheduleEntry.
    from SellSchedule.schedule.calendar_event import build_calendar_event

    return replace(entry, calendar_event=build_calendar_event(entry))
