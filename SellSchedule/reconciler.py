"""
Keeps the schedule store consistent with the chat event stream.

Per source message the state is either absent or tracked:

    absent  -> tracked   create, or an edit that makes the text a sell post
    tracked -> tracked   edit (date/text re-parsed, sign-ups kept)
    tracked -> tracked   sign-up reaction added/removed
    tracked -> absent    single or bulk delete

Every store mutation queues one publish cycle per affected destination and,
with the calendar mirror enabled, one mirror task on the calendar queue.
Mutations are serialized by `_lock`, so read-modify-write of an entry is never
interleaved with another event for the same entry.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from SellSchedule.calendar.mirror import CalendarMirror
from SellSchedule.chat.outcomes import call_safely
from SellSchedule.chat.types import (
    ChatEvent,
    ChatGateway,
    ChatMessage,
    InteractionRequested,
    MessageCreated,
    MessageDeleted,
    MessageDeletedBulk,
    MessageUpdated,
    ReactionAdded,
    ReactionRemoved,
)
from SellSchedule.delivery.formatting import NO_SIGNUPS_REPLY, PERSONAL_VIEW_ERROR_REPLY, STILL_STARTING_REPLY
from SellSchedule.delivery.publisher import SchedulePublisher
from SellSchedule.delivery.task_queue import TaskQueue
from SellSchedule.logging_setup import bind_log_context, log_event
from SellSchedule.observability_metrics import (
    backfill_messages_total,
    personal_views_total,
    reconciler_events_total,
    sell_threads_started_total,
)
from SellSchedule.schedule.extractor import clean_title, extract_timestamp, is_schedule_entry, thread_title
from SellSchedule.schedule.models import Reactor, ScheduleEntry, new_entry
from SellSchedule.schedule.store import ScheduleStore
from shared.config import BotConfig, Destination
from shared.exceptions import InvariantViolation
from shared.observability import swallow_exception


logger = logging.getLogger("reconciler")

BUTTON_PREFIX = "my-schedule-"


@dataclass(frozen=True)
class ReconcilerSettings:
    source_regions: Dict[str, str]
    destinations: Tuple[Destination, ...]
    signup_emoji_id: Optional[str] = None
    calendar_emoji_id: Optional[str] = None
    title_max_chars: int = 150
    start_sell_threads: bool = True
    add_signups_to_thread: bool = True
    personal_view_calendar_links: bool = True
    # Mirror calendars to find or create at startup, one per region.
    regions: Tuple[str, ...] = ()

    @classmethod
    def from_config(cls, cfg: BotConfig) -> "ReconcilerSettings":
        return cls(
            source_regions=cfg.source_regions,
            destinations=tuple(cfg.destinations),
            signup_emoji_id=cfg.signup_emoji_id,
            calendar_emoji_id=cfg.calendar_emoji_id,
            title_max_chars=cfg.title_max_chars,
            start_sell_threads=cfg.start_sell_threads,
            add_signups_to_thread=cfg.add_signups_to_thread,
            personal_view_calendar_links=cfg.personal_view_calendar_links,
            regions=tuple(cfg.regions),
        )


def _count(event: str, outcome: str) -> None:
    try:
        reconciler_events_total.labels(event=event, outcome=outcome).inc()
    except Exception:
        pass  # Metrics must never break runtime


class Reconciler:
    def __init__(
        self,
        *,
        settings: ReconcilerSettings,
        store: ScheduleStore,
        gateway: ChatGateway,
        publisher: SchedulePublisher,
        publish_queue: TaskQueue,
        calendar_queue: Optional[TaskQueue] = None,
        mirror: Optional[CalendarMirror] = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.gateway = gateway
        self.publisher = publisher
        self.publish_queue = publish_queue
        self.calendar_queue = calendar_queue
        self.mirror = mirror
        self._lock = asyncio.Lock()
        self._starting = True
        self._followups: List[Tuple[Tuple[ScheduleEntry, ...], bool]] = []
        self._buttons = {d.button_id: d.regions for d in settings.destinations}
        self._handlers: Dict[type, Callable[..., Awaitable[None]]] = {
            MessageCreated: self._on_created,
            MessageUpdated: self._on_updated,
            MessageDeleted: self._on_deleted,
            MessageDeletedBulk: self._on_deleted_bulk,
            ReactionAdded: self._on_reaction_added,
            ReactionRemoved: self._on_reaction_removed,
        }

    @property
    def is_starting(self) -> bool:
        return self._starting

    @property
    def mirroring(self) -> bool:
        return self.mirror is not None and self.mirror.enabled and self.calendar_queue is not None

    # ------------------------------------------------------------------
    # Event entry point
    # ------------------------------------------------------------------

    async def dispatch(self, event: ChatEvent) -> None:
        if isinstance(event, InteractionRequested):
            await self.handle_interaction(event)
            return
        handler = self._handlers.get(type(event))
        if handler is None:
            raise InvariantViolation(f"No handler for event type {type(event).__name__}")
        async with self._lock:
            try:
                await handler(event)
            finally:
                followups, self._followups = self._followups, []
        # Queued outside the lock: a full publish queue must not stall the backfill task.
        for entries, removed in followups:
            await self._enqueue_followups(entries, removed=removed)

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def startup(self) -> None:
        """
        Queue the startup task (placeholders + backfill) ahead of everything
        else, then one publish per destination. The starting state ends the
        first time the publish queue drains.
        """
        self._starting = True
        self.publish_queue.on_drained(self._finish_starting, once=True)
        if self.mirroring:
            await self.calendar_queue.push("gcal_setup", functools.partial(self.mirror.setup, self.settings.regions))
        await self.publish_queue.push("startup", self._run_startup)
        for destination in self.settings.destinations:
            await self._push_publish(destination)

    def _finish_starting(self) -> None:
        if self._starting:
            self._starting = False
            log_event(logger, logging.INFO, "startup_complete", entries=len(self.store))

    async def _run_startup(self) -> None:
        for destination in self.settings.destinations:
            await self.publisher.show_placeholder(destination)
        for channel_id, region in self.settings.source_regions.items():
            await self.backfill_channel(channel_id, region)
        log_event(logger, logging.INFO, "startup_backfill_done", entries=len(self.store))

    async def backfill_channel(self, channel_id: str, region: str) -> int:
        """Track every sell post currently in `channel_id`; entries already tracked by live events win."""
        with bind_log_context(channel=channel_id, step="backfill"):
            listing = await call_safely(
                lambda: self.gateway.list_channel_messages(channel_id, with_reactions=True),
                operation="list_channel_messages",
                channel_id=channel_id,
            )
            if not listing.ok:
                log_event(logger, logging.WARNING, "backfill_channel_skipped", reason=listing.outcome.value)
                return 0

            added = 0
            for message in listing.value or []:
                if message.author_is_bot or message.is_system or not is_schedule_entry(message.content):
                    _count_backfill(channel_id, "ignored")
                    continue
                await self._maybe_start_thread(message)
                async with self._lock:
                    if message.id in self.store:
                        _count_backfill(channel_id, "already_tracked")
                        continue
                    entry = self._parse(message, region)
                    self.store.upsert(entry)
                added += 1
                _count_backfill(channel_id, "tracked")
                await self._push_calendar(entry, removed=False)
            log_event(logger, logging.INFO, "backfill_channel_done", scanned=len(listing.value or []), added=added)
            return added

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _on_created(self, event: MessageCreated) -> None:
        message = event.message
        region = self.settings.source_regions.get(message.channel_id)
        if region is None or message.author_is_bot or message.is_system:
            _count("created", "ignored")
            return
        with bind_log_context(message_id=message.id, channel=message.channel_id):
            if not is_schedule_entry(message.content):
                _count("created", "not_an_entry")
                return
            await self._maybe_start_thread(message)
            entry = self._parse(message, region)
            self.store.upsert(entry)
            _count("created", "tracked")
            log_event(logger, logging.INFO, "entry_upserted", date=entry.date, region=region, source="create")
            self._after_mutation([entry])

    async def _on_updated(self, event: MessageUpdated) -> None:
        region = self.settings.source_regions.get(event.channel_id)
        if region is None:
            _count("updated", "ignored")
            return
        with bind_log_context(message_id=event.message_id, channel=event.channel_id):
            current = self.store.find(event.message_id)
            message = event.message
            if message is None or current is None:
                # Partial update, or a first sighting that needs the current reactions.
                fetched = await call_safely(
                    lambda: self.gateway.fetch_message(event.channel_id, event.message_id, with_reactions=current is None),
                    operation="fetch_message",
                    message_id=event.message_id,
                )
                if not fetched.ok:
                    _count("updated", fetched.outcome.value)
                    return
                message = fetched.value
            if message.author_is_bot or message.is_system:
                _count("updated", "ignored")
                return

            if current is None:
                if not is_schedule_entry(message.content):
                    _count("updated", "not_an_entry")
                    return
                await self._maybe_start_thread(message)
                entry = self._parse(message, region)
                self.store.upsert(entry)
                _count("updated", "tracked")
                log_event(logger, logging.INFO, "entry_upserted", date=entry.date, region=region, source="update")
                self._after_mutation([entry])
                return

            if not is_schedule_entry(message.content):
                # Kept with its previous date/text until the post is deleted.
                _count("updated", "predicate_lost")
                log_event(logger, logging.WARNING, "entry_predicate_lost", date=current.date)
                return

            updated = current.with_content(
                date=int(extract_timestamp(message.content)),
                text=clean_title(message.content, max_chars=self.settings.title_max_chars),
            )
            if updated == current:
                _count("updated", "unchanged")
                return
            self.store.upsert(updated)
            _count("updated", "changed")
            log_event(logger, logging.INFO, "entry_updated", date=updated.date, previous_date=current.date)
            self._after_mutation([updated])

    async def _on_deleted(self, event: MessageDeleted) -> None:
        removed = self.store.remove(event.message_id)
        if removed is None:
            _count("deleted", "untracked")
            return
        _count("deleted", "removed")
        with bind_log_context(message_id=event.message_id, channel=event.channel_id):
            log_event(logger, logging.INFO, "entry_removed", source="delete")
        self._after_mutation([removed], removed=True)

    async def _on_deleted_bulk(self, event: MessageDeletedBulk) -> None:
        removed = [e for e in (self.store.remove(mid) for mid in event.message_ids) if e is not None]
        _count("deleted_bulk", "removed" if removed else "untracked")
        if not removed:
            return
        with bind_log_context(channel=event.channel_id):
            log_event(logger, logging.INFO, "entries_removed", source="bulk_delete", count=len(removed))
        self._after_mutation(removed, removed=True)

    async def _on_reaction_added(self, event: ReactionAdded) -> None:
        entry = self._signup_target(event.channel_id, event.message_id, event.emoji_id)
        if entry is None:
            _count("reaction_added", "ignored")
            return
        with bind_log_context(message_id=event.message_id, channel=event.channel_id):
            if entry.has_reactor(event.user_id):
                _count("reaction_added", "noop")
                return
            name = event.user_name or await self._resolve_name(event.user_id)
            updated = entry.with_reactor(Reactor(id=str(event.user_id), name=name))
            self.store.upsert(updated)
            _count("reaction_added", "signed_up")
            log_event(logger, logging.INFO, "signup_added", user_id=event.user_id, signups=len(updated.reactors))
            self._after_mutation([updated])
            if self.settings.add_signups_to_thread:
                await call_safely(
                    lambda: self.gateway.add_thread_member(event.channel_id, event.message_id, event.user_id),
                    operation="add_thread_member",
                    message_id=event.message_id,
                )

    async def _on_reaction_removed(self, event: ReactionRemoved) -> None:
        entry = self._signup_target(event.channel_id, event.message_id, event.emoji_id)
        if entry is None:
            _count("reaction_removed", "ignored")
            return
        with bind_log_context(message_id=event.message_id, channel=event.channel_id):
            if not entry.has_reactor(event.user_id):
                _count("reaction_removed", "noop")
                return
            updated = entry.without_reactor(event.user_id)
            self.store.upsert(updated)
            _count("reaction_removed", "signed_off")
            log_event(logger, logging.INFO, "signup_removed", user_id=event.user_id, signups=len(updated.reactors))
            self._after_mutation([updated])

    # ------------------------------------------------------------------
    # Personal view
    # ------------------------------------------------------------------

    async def handle_interaction(self, event: InteractionRequested) -> None:
        regions = self._regions_for_button(event.custom_id)
        if regions is None:
            return
        interaction = event.interaction
        if self._starting:
            _count_view("starting")
            await call_safely(lambda: interaction.reply(STILL_STARTING_REPLY), operation="interaction_reply")
            return
        try:
            await interaction.defer()
            page = self.publisher.render_personal(
                event.user_id,
                regions,
                include_aux_link=self.settings.personal_view_calendar_links,
                aux_link_emoji_id=self.settings.calendar_emoji_id,
            )
            await interaction.reply(page.render() if page is not None else NO_SIGNUPS_REPLY)
            _count_view("shown" if page is not None else "empty")
        except InvariantViolation:
            raise
        except Exception as e:
            _count_view("failed")
            swallow_exception(e, context="personal_view", extra={"user_id": event.user_id, "custom_id": event.custom_id})
            await call_safely(lambda: interaction.reply(PERSONAL_VIEW_ERROR_REPLY), operation="interaction_reply")

    def _regions_for_button(self, custom_id: str) -> Optional[Sequence[str]]:
        if custom_id in self._buttons:
            return self._buttons[custom_id]
        if custom_id.startswith(BUTTON_PREFIX):
            return [r for r in custom_id[len(BUTTON_PREFIX):].split("-") if r]
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _parse(self, message: ChatMessage, region: str) -> ScheduleEntry:
        return new_entry(
            id=message.id,
            channel_id=message.channel_id,
            region=region,
            date=int(extract_timestamp(message.content)),
            text=clean_title(message.content, max_chars=self.settings.title_max_chars),
            url=message.url,
            reactors=message.signup_reactors,
        )

    def _signup_target(self, channel_id: str, message_id: str, emoji_id: Optional[str]) -> Optional[ScheduleEntry]:
        if channel_id not in self.settings.source_regions:
            return None
        if not self.settings.signup_emoji_id or str(emoji_id) != str(self.settings.signup_emoji_id):
            return None
        return self.store.find(message_id)

    async def _resolve_name(self, user_id: str) -> str:
        result = await call_safely(lambda: self.gateway.resolve_user_name(user_id), operation="resolve_user_name")
        return str(result.value) if result.ok and result.value else str(user_id)

    async def _maybe_start_thread(self, message: ChatMessage) -> None:
        if not self.settings.start_sell_threads or message.has_thread:
            return
        title = thread_title(message.content)
        result = await call_safely(
            lambda: self.gateway.start_thread(message.channel_id, message.id, title),
            operation="start_thread",
            message_id=message.id,
        )
        try:
            sell_threads_started_total.labels(outcome=result.outcome.value).inc()
        except Exception:
            pass  # Metrics must never break runtime

    def _affected_destinations(self, regions: Iterable[str]) -> List[Destination]:
        wanted = set(regions)
        return [d for d in self.settings.destinations if wanted.intersection(d.regions)]

    def _after_mutation(self, entries: Sequence[ScheduleEntry], *, removed: bool = False) -> None:
        self._followups.append((tuple(entries), removed))

    async def _enqueue_followups(self, entries: Sequence[ScheduleEntry], *, removed: bool) -> None:
        for destination in self._affected_destinations(e.region for e in entries):
            await self._push_publish(destination)
        for entry in entries:
            await self._push_calendar(entry, removed=removed)

    async def _push_publish(self, destination: Destination) -> None:
        await self.publish_queue.push(
            f"publish:{destination.channel_id}",
            functools.partial(self.publisher.publish, destination),
            destination=destination.channel_id,
        )

    async def _push_calendar(self, entry: ScheduleEntry, *, removed: bool) -> None:
        if not self.mirroring:
            return
        if removed:
            await self.calendar_queue.push(f"gcal_remove:{entry.id}", functools.partial(self.mirror.remove_event, entry.id))
        else:
            await self.calendar_queue.push(f"gcal_upsert:{entry.id}", functools.partial(self.mirror.mirror_entry, entry))


def _count_backfill(channel: str, result: str) -> None:
    try:
        backfill_messages_total.labels(channel=channel, result=result).inc()
    except Exception:
        pass  # Metrics must never break runtime


def _count_view(outcome: str) -> None:
    try:
        personal_views_total.labels(outcome=outcome).inc()
    except Exception:
        pass  # Metrics must never break runtime
