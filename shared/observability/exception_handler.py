"""
Observable handling for failures the bot deliberately absorbs.

The Google Calendar mirror, the personal schedule view and queue listeners
keep the bot running when they fail. Their failures still have to show up
somewhere: each one goes through `swallow_exception`, which writes a single
ERROR record with the traceback and bumps
`swallowed_exceptions_total{context, exception_type}`.

Publish cycles and the schedule store never call this; they let errors
propagate.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger("sell_schedule.exceptions")

_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def _record_extra(context: str, exc_type: str, extra: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    fields: Dict[str, Any] = {"context": context, "exception_type": exc_type}
    for key, value in (extra or {}).items():
        # LogRecord attributes ("module", "name", ...) cannot be overwritten.
        clash = key in _RECORD_ATTRS or key in fields
        fields[f"extra_{key}" if clash else key] = value
    return fields


def swallow_exception(
    exc: Exception,
    *,
    context: str,
    extra: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Record an exception the caller has decided not to re-raise.

    `context` names the call site ("gcal_insert", "personal_view", ...) and
    becomes a metrics label, so keep it short and stable. `extra` carries
    ids (calendar, entry, user) into the log record.

        except Exception as e:
            _count("delete", "failed")
            swallow_exception(e, context="gcal_delete", extra={"calendar_id": target})
    """
    exc_type = type(exc).__name__
    logger.error(
        "Swallowed exception",
        exc_info=(type(exc), exc, exc.__traceback__),
        extra=_record_extra(context, exc_type, extra),
    )

    try:
        # Imported lazily: shared/ must stay importable without the bot package.
        from SellSchedule.observability_metrics import swallowed_exceptions_total

        swallowed_exceptions_total.labels(context=context, exception_type=exc_type).inc()
    except Exception:
        pass  # Metrics must never break runtime
