"""
Custom exception classes for SellSchedule.

Provides specific exception types for better error handling and debugging.
Collaborator adapters (chat platform, calendar provider) translate their
library errors into these so the engine never depends on library types.
"""

from __future__ import annotations

from typing import Optional


class SellScheduleError(Exception):
    """Base exception for all SellSchedule errors"""
    pass


class ConfigurationError(SellScheduleError):
    """Configuration or environment variable errors"""
    pass


class ExternalServiceError(SellScheduleError):
    """External API failures (chat platform, calendar provider)"""

    def __init__(self, message: str = "", *, operation: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code


class NotFoundError(ExternalServiceError):
    """The referenced message, channel, thread or event no longer exists"""
    pass


class PermissionDeniedError(ExternalServiceError):
    """The bot lacks the permission required for the operation"""
    pass


class TransientServiceError(ExternalServiceError):
    """Network failures, rate limits and 5xx responses"""
    pass


class InvariantViolation(SellScheduleError):
    """Programming or wiring errors; these are never swallowed"""
    pass


class ClientNotInitializedError(InvariantViolation):
    """A collaborator client was used before it was ready"""
    pass
