"""
Observability helpers shared by the bot and its scripts.

Provides exception handling utilities that log and count instead of hiding failures.
"""

from __future__ import annotations

from .exception_handler import swallow_exception

__all__ = ["swallow_exception"]
