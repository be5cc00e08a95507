from __future__ import annotations

import random
from typing import Optional, Sequence

from SellSchedule.schedule.calendar_event import google_calendar_link
from SellSchedule.schedule.models import ScheduleEntry


DIVIDER = "-------------------------"
PAGE_SEPARATOR = "\r\n\r\n"
LOADING_PLACEHOLDER = "Loading History..."

BUTTON_LABEL = "My Schedule"
BUTTON_EMOJI = "📅"

STILL_STARTING_REPLY = "I'm still booting, please try again in at least 10 seconds."
NO_SIGNUPS_REPLY = "You didn't sign up to anything!"
PERSONAL_VIEW_ERROR_REPLY = "Oops, there was an error loading your schedule"

EMPTY_SCHEDULE_COMMENTS = (
    "No sells going, time to sign up as a hustler!",
    "Nothing to see here, move along.",
    "Khajit has no wares because buyers have no coin.",
    "One small step for man, one empty sell list for mankind.",
    "The sell list is as empty as a goblin's heart.",
    "Silence in the marketplace... eerie, isn't it?",
    "No transactions today. The vault sleeps.",
    "All quiet on the selling front.",
    "Not a single sell in sight. Must be a holiday.",
    "No sells today, just tumbleweeds.",
    "The sell list is on vacation. Please check back later.",
    "Even the buyer took the day off.",
    "The market is as still as a dragon's lair.",
    "Zero sells. Time to sharpen your blades instead.",
    "The sell list is a blank canvas today.",
    "Nothing here. Did we miss a memo?",
    "No sells yet. Maybe you can change that?",
)


def format_entry_line(
    entry: ScheduleEntry,
    *,
    include_aux_link: bool = False,
    aux_link_emoji_id: Optional[str] = None,
) -> str:
    line = f"<t:{entry.date}:F> {entry.text} {entry.url}"
    if include_aux_link and entry.calendar_event is not None:
        link = google_calendar_link(entry.calendar_event)
        label = f"<:google_calendar:{aux_link_emoji_id}>" if aux_link_emoji_id else BUTTON_EMOJI
        line = f"{line} [{label}](<{link}>)"
    return line


def overflow_notice(remaining: int) -> str:
    return f"⚠️ {int(remaining)} items not displayed ⚠️"


def render_lines(lines: Sequence[str]) -> str:
    return PAGE_SEPARATOR.join(lines)


def empty_schedule_comment(rng: Optional[random.Random] = None) -> str:
    return (rng or random).choice(EMPTY_SCHEDULE_COMMENTS)
