"""
Greedy bin-packing of schedule entries into chat-message-sized pages.

Page length is the sum of its line lengths (divider included). The blank-line
separators added by `RenderedPage.render()` are not counted, so the caller picks
`budget` with a safety margin below the platform limit that covers them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from SellSchedule.delivery.formatting import DIVIDER, PAGE_SEPARATOR, format_entry_line, overflow_notice, render_lines
from SellSchedule.schedule.models import ScheduleEntry


@dataclass(frozen=True)
class RenderedPage:
    lines: Tuple[str, ...]
    entries: Tuple[ScheduleEntry, ...]
    overflow_notice: Optional[str] = None

    @property
    def length(self) -> int:
        return sum(len(line) for line in self.lines)

    @property
    def separator_length(self) -> int:
        return len(PAGE_SEPARATOR) * max(len(self.lines) - 1, 0)

    def render(self) -> str:
        lines = list(self.lines)
        if self.overflow_notice:
            lines.append(self.overflow_notice)
        return render_lines(lines)


def paginate(
    entries: Sequence[ScheduleEntry],
    budget: int,
    *,
    add_subtext: bool = False,
    include_aux_link: bool = False,
    aux_link_emoji_id: Optional[str] = None,
) -> List[RenderedPage]:
    """
    Split `entries` (any order) into pages of at most `budget` characters.

    - Entries are stable-sorted by date; lines are never split or truncated.
    - Every page after the first starts with a divider when the divider fits
      next to the page's first line.
    - A single line longer than `budget` gets a page of its own.
    - With `add_subtext` only the first page is produced; when entries are left
      over, it carries an "N items not displayed" notice outside the budget.

    Separators are outside the budget too: for a page whose lines fit,
    `len(page.render())` is at most `budget + page.separator_length`, plus the
    notice and one more separator when a notice is set. Three 40-character
    lines with `budget=80` render as pages of 84 and 69 characters.
    """
    ordered = sorted(entries, key=lambda e: e.date)
    pages: List[RenderedPage] = []

    lines: List[str] = []
    page_entries: List[ScheduleEntry] = []
    length = 0

    for index, entry in enumerate(ordered):
        line = format_entry_line(entry, include_aux_link=include_aux_link, aux_link_emoji_id=aux_link_emoji_id)

        if page_entries and length + len(line) > budget:
            if add_subtext:
                pages.append(RenderedPage(tuple(lines), tuple(page_entries), overflow_notice(len(ordered) - index)))
                return pages
            pages.append(RenderedPage(tuple(lines), tuple(page_entries)))
            lines, page_entries, length = [], [], 0
            if len(DIVIDER) + len(line) <= budget:
                lines.append(DIVIDER)
                length = len(DIVIDER)

        lines.append(line)
        page_entries.append(entry)
        length += len(line)

    if page_entries:
        pages.append(RenderedPage(tuple(lines), tuple(page_entries)))
    return pages
