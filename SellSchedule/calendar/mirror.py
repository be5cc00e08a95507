from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from SellSchedule.calendar.google_calendar import (
    CalendarConflictError,
    CalendarNotFoundError,
    GoogleCalendarClient,
    GoogleCalendarConfig,
    event_id_for,
)
from SellSchedule.logging_setup import bind_log_context, log_event, run_in_thread
from SellSchedule.observability_metrics import calendar_requests_total
from SellSchedule.schedule.models import ScheduleEntry
from shared.config import BotConfig
from shared.exceptions import InvariantViolation
from shared.observability import swallow_exception


logger = logging.getLogger("calendar_mirror")


def _rfc3339(epoch: int) -> str:
    return datetime.fromtimestamp(int(epoch), tz=timezone.utc).isoformat()


def _count(operation: str, outcome: str) -> None:
    try:
        calendar_requests_total.labels(operation=operation, outcome=outcome).inc()
    except Exception:
        pass  # Metrics must never break runtime


class CalendarMirror:
    """
    Best-effort projection of schedule entries into Google Calendar.

    Every public coroutine logs and absorbs provider failures; nothing here may
    block or fail a publish cycle. Event ids are derived from entry ids, so
    create/update/delete are idempotent.
    """

    def __init__(
        self,
        client: Optional[GoogleCalendarClient],
        *,
        prefix: str = "Rise Schedule",
        time_zone: str = "Europe/Amsterdam",
        duration_minutes: int = 30,
        now=None,
    ) -> None:
        self.client = client
        self.prefix = prefix
        self.time_zone = time_zone
        self.duration_minutes = int(duration_minutes)
        self._now = now or (lambda: datetime.now(timezone.utc))
        # calendar summary -> calendar id
        self._calendars: Dict[str, str] = {}

    @property
    def enabled(self) -> bool:
        return self.client is not None

    @property
    def known_calendar_ids(self) -> List[str]:
        return list(self._calendars.values())

    def calendar_name(self, region: Optional[str] = None) -> str:
        return f"{self.prefix} - {region}" if region else self.prefix

    def calendar_id_for(self, region: Optional[str] = None) -> Optional[str]:
        return self._calendars.get(self.calendar_name(region))

    async def list_calendars(self) -> List[Dict[str, Any]]:
        if not self.enabled:
            return []
        try:
            items = await run_in_thread(self.client.list_calendars)
        except InvariantViolation:
            raise
        except Exception as e:
            _count("list_calendars", "failed")
            swallow_exception(e, context="gcal_list_calendars")
            return []
        _count("list_calendars", "ok")
        return items

    async def setup(self, regions: Iterable[str]) -> Dict[str, str]:
        """Find or create the main calendar and one calendar per region."""
        if not self.enabled:
            return {}
        existing = {str(c.get("summary")): str(c.get("id")) for c in await self.list_calendars() if c.get("id")}
        wanted = [self.calendar_name()] + [self.calendar_name(r) for r in regions]
        for name in wanted:
            if name in existing:
                self._calendars[name] = existing[name]
                continue
            try:
                created = await run_in_thread(self.client.create_calendar, name, time_zone=self.time_zone)
            except InvariantViolation:
                raise
            except Exception as e:
                _count("create_calendar", "failed")
                swallow_exception(e, context="gcal_create_calendar", extra={"calendar_name": name})
                continue
            _count("create_calendar", "ok")
            if created.get("id"):
                self._calendars[name] = str(created["id"])
                log_event(logger, logging.INFO, "gcal_calendar_created", name=name)
        log_event(logger, logging.INFO, "gcal_setup_done", calendars=sorted(self._calendars))
        return dict(self._calendars)

    def event_body(self, entry: ScheduleEntry) -> Dict[str, Any]:
        event = entry.calendar_event
        description = event.description if event else entry.text
        generated_at = self._now().strftime("%Y-%m-%d %H:%M:%S %Z")
        start = int(entry.date)
        end = start + self.duration_minutes * 60
        return {
            "id": event_id_for(entry.id),
            "summary": entry.text,
            "description": f"{description}\n\n<i>Calendar event generated at {generated_at}</i>",
            "location": entry.region,
            "start": {"dateTime": _rfc3339(start), "timeZone": self.time_zone},
            "end": {"dateTime": _rfc3339(end), "timeZone": self.time_zone},
            "status": "confirmed",
            "source": {"title": "Sell post", "url": entry.url},
        }

    async def upsert_event(self, entry: ScheduleEntry, calendar_id: str) -> bool:
        if not self.enabled:
            return False
        body = self.event_body(entry)
        with bind_log_context(message_id=entry.id, step="gcal_upsert"):
            try:
                await run_in_thread(self.client.insert_event, calendar_id, body)
                _count("insert", "ok")
                return True
            except CalendarConflictError:
                # Event id already used (live or cancelled): overwrite it.
                pass
            except InvariantViolation:
                raise
            except Exception as e:
                _count("insert", "failed")
                swallow_exception(e, context="gcal_insert", extra={"calendar_id": calendar_id, "entry_id": entry.id})
                return False

            try:
                await run_in_thread(self.client.update_event, calendar_id, body["id"], body)
            except InvariantViolation:
                raise
            except Exception as e:
                _count("update", "failed")
                swallow_exception(e, context="gcal_update", extra={"calendar_id": calendar_id, "entry_id": entry.id})
                return False
            _count("update", "ok")
            return True

    async def remove_event(self, entry_id: str, calendar_id: Optional[str] = None) -> bool:
        """Delete the entry's event; without `calendar_id` from every known calendar."""
        if not self.enabled:
            return False
        targets = [calendar_id] if calendar_id else self.known_calendar_ids
        event_id = event_id_for(entry_id)
        ok = True
        with bind_log_context(message_id=entry_id, step="gcal_remove"):
            for target in targets:
                try:
                    await run_in_thread(self.client.delete_event, target, event_id)
                    _count("delete", "ok")
                except (CalendarNotFoundError, CalendarConflictError):
                    _count("delete", "absent")
                except InvariantViolation:
                    raise
                except Exception as e:
                    ok = False
                    _count("delete", "failed")
                    swallow_exception(e, context="gcal_delete", extra={"calendar_id": target, "entry_id": entry_id})
        return ok

    async def mirror_entry(self, entry: ScheduleEntry) -> bool:
        """Upsert into the main calendar and the entry's region calendar."""
        if not self.enabled:
            return False
        targets = [c for c in (self.calendar_id_for(None), self.calendar_id_for(entry.region)) if c]
        if not targets:
            log_event(logger, logging.WARNING, "gcal_mirror_skipped_no_calendar", entry_id=entry.id, region=entry.region)
            return False
        results = [await self.upsert_event(entry, c) for c in targets]
        return all(results)


def build_calendar_mirror(cfg: BotConfig) -> CalendarMirror:
    client = None
    if cfg.gcal_enabled:
        client = GoogleCalendarClient(
            GoogleCalendarConfig(
                client_id=str(cfg.gcal_client_id or ""),
                client_secret=str(cfg.gcal_client_secret or ""),
                refresh_token=str(cfg.gcal_refresh_token or ""),
                timeout=int(cfg.gcal_timeout_seconds),
                max_retries=int(cfg.gcal_max_retries),
            )
        )
    return CalendarMirror(
        client,
        prefix=cfg.gcal_calendar_prefix,
        time_zone=cfg.gcal_timezone,
        duration_minutes=cfg.gcal_event_duration_minutes,
    )
