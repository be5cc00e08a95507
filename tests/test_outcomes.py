"""
Tests for collaborator call outcome classification.
"""

import logging

import pytest

from SellSchedule.chat.outcomes import Outcome, call_safely, classify_error
from shared.exceptions import (
    ClientNotInitializedError,
    InvariantViolation,
    NotFoundError,
    PermissionDeniedError,
    TransientServiceError,
)


@pytest.mark.parametrize(
    "exc, expected",
    [
        (NotFoundError("gone"), Outcome.NOT_FOUND),
        (PermissionDeniedError("no access"), Outcome.PERMISSION_DENIED),
        (TransientServiceError("429"), Outcome.TRANSIENT_FAILURE),
        (TimeoutError(), Outcome.TRANSIENT_FAILURE),
        (RuntimeError("anything else"), Outcome.TRANSIENT_FAILURE),
    ],
)
def test_classify_error(exc, expected):
    assert classify_error(exc) is expected


@pytest.mark.asyncio
async def test_call_safely_returns_value():
    async def ok():
        return 42

    result = await call_safely(ok, operation="test")
    assert result.ok
    assert result.settled
    assert result.value == 42
    assert result.error is None


@pytest.mark.asyncio
async def test_not_found_counts_as_settled():
    async def missing():
        raise NotFoundError("Unknown Message")

    result = await call_safely(missing, operation="delete_message")
    assert not result.ok
    assert result.settled
    assert result.outcome is Outcome.NOT_FOUND
    assert isinstance(result.error, NotFoundError)


@pytest.mark.asyncio
async def test_transient_failure_is_logged_with_traceback(caplog):
    async def flaky():
        raise TransientServiceError("503")

    with caplog.at_level(logging.WARNING):
        result = await call_safely(flaky, operation="send_message", channel_id="900")

    assert result.outcome is Outcome.TRANSIENT_FAILURE
    assert not result.settled
    record = next(r for r in caplog.records if r.getMessage().startswith("collaborator_call_failed"))
    assert record.exc_info is not None
    assert record.data["channel_id"] == "900"


@pytest.mark.asyncio
@pytest.mark.parametrize("exc", [InvariantViolation("bad wiring"), ClientNotInitializedError("not ready")])
async def test_invariant_violations_propagate(exc):
    async def broken():
        raise exc

    with pytest.raises(InvariantViolation):
        await call_safely(broken, operation="test")
