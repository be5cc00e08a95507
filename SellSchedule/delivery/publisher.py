from __future__ import annotations

import logging
import random
from typing import Dict, List, Optional, Sequence, Tuple

from SellSchedule.chat.outcomes import Outcome, call_safely
from SellSchedule.chat.types import ChatGateway, ScheduleButton
from SellSchedule.delivery.formatting import BUTTON_EMOJI, BUTTON_LABEL, LOADING_PLACEHOLDER, empty_schedule_comment
from SellSchedule.delivery.paginator import RenderedPage, paginate
from SellSchedule.logging_setup import bind_log_context, log_event, timed
from SellSchedule.observability_metrics import (
    publish_cycle_latency_seconds,
    publish_cycles_total,
    publish_messages_deleted_total,
    publish_pages_sent_total,
)
from SellSchedule.schedule.models import ScheduleEntry
from SellSchedule.schedule.store import ScheduleStore
from shared.config import Destination


logger = logging.getLogger("publisher")

Fingerprint = Tuple[str, ...]

RESULT_PUBLISHED = "published"
RESULT_SKIPPED = "skipped_unchanged"
RESULT_PARTIAL = "partial"
RESULT_FAILED = "failed"


def schedule_fingerprint(entries: Sequence[ScheduleEntry]) -> Fingerprint:
    return tuple(e.fingerprint() for e in entries)


def schedule_button(destination: Destination) -> ScheduleButton:
    return ScheduleButton(custom_id=destination.button_id, label=BUTTON_LABEL, emoji=BUTTON_EMOJI)


class SchedulePublisher:
    """
    Rewrites a destination channel with the current schedule.

    Only ever called from the publish queue's single worker, so cycles for one
    destination never interleave. The last fingerprint is tracked per
    destination and recorded only after every page went out.
    """

    def __init__(
        self,
        *,
        store: ScheduleStore,
        gateway: ChatGateway,
        page_budget: int,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.page_budget = int(page_budget)
        self._rng = rng
        self._fingerprints: Dict[str, Fingerprint] = {}

    def published_fingerprint(self, destination: Destination) -> Optional[Fingerprint]:
        return self._fingerprints.get(destination.channel_id)

    async def publish(self, destination: Destination) -> str:
        channel_id = destination.channel_id
        t0 = timed()
        with bind_log_context(destination=channel_id, step="publish"):
            entries = self.store.snapshot(destination.regions)
            fingerprint = schedule_fingerprint(entries)
            if self._fingerprints.get(channel_id) == fingerprint:
                logger.debug("publish_skipped_unchanged entries=%s", len(entries))
                _count_cycle(channel_id, RESULT_SKIPPED)
                return RESULT_SKIPPED

            # The destination is about to change; whatever was recorded no longer describes it.
            self._fingerprints.pop(channel_id, None)

            listing = await call_safely(
                lambda: self.gateway.list_bot_message_ids(channel_id),
                operation="list_bot_messages",
                channel_id=channel_id,
            )
            if not listing.ok:
                _count_cycle(channel_id, RESULT_FAILED)
                log_event(logger, logging.WARNING, "publish_abandoned", reason=listing.outcome.value, stage="list")
                return RESULT_FAILED

            await self._delete_messages(channel_id, listing.value or [])

            pages = paginate(entries, self.page_budget)
            contents = [p.render() for p in pages] or [empty_schedule_comment(self._rng)]
            button = schedule_button(destination) if pages else None

            sent = 0
            for index, content in enumerate(contents):
                is_last = index == len(contents) - 1
                result = await call_safely(
                    lambda content=content, is_last=is_last: self.gateway.send_message(
                        channel_id, content, button=button if is_last else None
                    ),
                    operation="send_message",
                    channel_id=channel_id,
                    page=index,
                )
                if not result.ok:
                    break
                sent += 1
                _count_page(channel_id)

            elapsed = timed() - t0
            _observe_latency(elapsed)
            if sent != len(contents):
                result_tag = RESULT_PARTIAL if sent else RESULT_FAILED
                _count_cycle(channel_id, result_tag)
                log_event(logger, logging.WARNING, "publish_incomplete", pages=len(contents), sent=sent, result=result_tag)
                return result_tag

            self._fingerprints[channel_id] = fingerprint
            _count_cycle(channel_id, RESULT_PUBLISHED)
            log_event(
                logger,
                logging.INFO,
                "publish_done",
                entries=len(entries),
                pages=len(contents),
                deleted=len(listing.value or []),
                elapsed_s=round(elapsed, 3),
            )
            return RESULT_PUBLISHED

    async def show_placeholder(self, destination: Destination) -> None:
        """Put a loading notice in the destination while the schedule is rebuilt."""
        channel_id = destination.channel_id
        with bind_log_context(destination=channel_id, step="placeholder"):
            self._fingerprints.pop(channel_id, None)
            listing = await call_safely(
                lambda: self.gateway.list_bot_message_ids(channel_id),
                operation="list_bot_messages",
                channel_id=channel_id,
            )
            if not listing.ok:
                return
            ids = listing.value or []
            if not ids:
                await call_safely(
                    lambda: self.gateway.send_message(channel_id, LOADING_PLACEHOLDER),
                    operation="send_message",
                    channel_id=channel_id,
                )
                return
            # Editing without a button also drops the controls from the old page.
            await call_safely(
                lambda: self.gateway.edit_message(channel_id, ids[0], LOADING_PLACEHOLDER),
                operation="edit_message",
                channel_id=channel_id,
                message_id=ids[0],
            )

    def render_personal(
        self,
        user_id: str,
        regions: Sequence[str],
        *,
        include_aux_link: bool = False,
        aux_link_emoji_id: Optional[str] = None,
    ) -> Optional[RenderedPage]:
        """First page of the entries `user_id` signed up to, or None when there are none."""
        mine = [e for e in self.store.snapshot(regions) if e.has_reactor(user_id)]
        if not mine:
            return None
        pages = paginate(
            mine,
            self.page_budget,
            add_subtext=True,
            include_aux_link=include_aux_link,
            aux_link_emoji_id=aux_link_emoji_id,
        )
        return pages[0]

    async def _delete_messages(self, channel_id: str, message_ids: List[str]) -> None:
        for message_id in message_ids:
            result = await call_safely(
                lambda message_id=message_id: self.gateway.delete_message(channel_id, message_id),
                operation="delete_message",
                channel_id=channel_id,
                message_id=message_id,
            )
            outcome = "ok" if result.settled else result.outcome.value
            try:
                publish_messages_deleted_total.labels(destination=channel_id, outcome=outcome).inc()
            except Exception:
                pass  # Metrics must never break runtime
            if result.outcome is Outcome.PERMISSION_DENIED:
                log_event(logger, logging.WARNING, "publish_delete_denied", message_id=message_id)


def _count_cycle(destination: str, result: str) -> None:
    try:
        publish_cycles_total.labels(destination=destination, result=result).inc()
    except Exception:
        pass  # Metrics must never break runtime


def _count_page(destination: str) -> None:
    try:
        publish_pages_sent_total.labels(destination=destination).inc()
    except Exception:
        pass  # Metrics must never break runtime


def _observe_latency(seconds: float) -> None:
    try:
        publish_cycle_latency_seconds.observe(seconds)
    except Exception:
        pass  # Metrics must never break runtime
