"""
Outcome classification for collaborator calls.

`call_safely` is the single place where collaborator exceptions become tagged
results; handlers branch on `CallResult.outcome` instead of catching.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from SellSchedule.logging_setup import log_event
from SellSchedule.observability_metrics import collaborator_calls_total
from shared.exceptions import InvariantViolation, NotFoundError, PermissionDeniedError


logger = logging.getLogger("outcomes")

T = TypeVar("T")


class Outcome(str, enum.Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    TRANSIENT_FAILURE = "transient_failure"


@dataclass(frozen=True)
class CallResult(Generic[T]):
    outcome: Outcome
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK

    @property
    def settled(self) -> bool:
        """OK or NOT_FOUND: the target is in the desired state (used for deletes)."""
        return self.outcome in (Outcome.OK, Outcome.NOT_FOUND)


def classify_error(exc: BaseException) -> Outcome:
    if isinstance(exc, NotFoundError):
        return Outcome.NOT_FOUND
    if isinstance(exc, PermissionDeniedError):
        return Outcome.PERMISSION_DENIED
    return Outcome.TRANSIENT_FAILURE


async def call_safely(
    factory: Callable[[], Awaitable[T]],
    *,
    operation: str,
    **log_fields: Any,
) -> CallResult[T]:
    try:
        value = await factory()
    except InvariantViolation:
        raise
    except Exception as e:
        outcome = classify_error(e)
        _count(operation, outcome)
        if outcome is Outcome.TRANSIENT_FAILURE:
            logger.warning(
                "collaborator_call_failed operation=%s outcome=%s error=%s",
                operation,
                outcome.value,
                e,
                exc_info=True,
                extra={"event": "collaborator_call_failed", "data": {"operation": operation, **log_fields}},
            )
        else:
            log_event(logger, logging.INFO, "collaborator_call_rejected", operation=operation, outcome=outcome.value, error=str(e), **log_fields)
        return CallResult(outcome=outcome, error=e)
    _count(operation, Outcome.OK)
    return CallResult(outcome=Outcome.OK, value=value)


def _count(operation: str, outcome: Outcome) -> None:
    try:
        collaborator_calls_total.labels(operation=operation, outcome=outcome.value).inc()
    except Exception:
        pass  # Metrics must never break runtime
