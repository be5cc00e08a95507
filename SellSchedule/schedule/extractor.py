"""
Entry extraction from sell-post text.

A sell post is any message that carries a chat timestamp token (`<t:1700000000:F>`)
plus some descriptive text before or after it. Pure functions only; no I/O.
"""

from __future__ import annotations

import re
from typing import Optional


TIMESTAMP_RE = re.compile(r"(?P<before>.*)<t:(?P<timestamp>\d+):[dDtTfFR]>(?P<after>.*)")

THREAD_TITLE_FALLBACK = "Please put the thread title on first line of sell post"
THREAD_TITLE_MAX_CHARS = 100

_BROADCAST_MENTIONS_RE = re.compile(r"@(everyone|here)\b")
_WHITESPACE_RE = re.compile(r"\s+")
_TIMESTAMP_TOKEN_RE = re.compile(r"<t:\d+:[dDtTfFR]>")


def _first_match(content: str) -> Optional[re.Match]:
    for line in (content or "").splitlines():
        m = TIMESTAMP_RE.match(line)
        if m:
            return m
    return None


def is_schedule_entry(content: Optional[str]) -> bool:
    """True when the text has a timestamp token and something besides it on that line."""
    m = _first_match(content or "")
    if not m:
        return False
    return bool(m.group("before").strip() or m.group("after").strip())


def extract_timestamp(content: Optional[str]) -> Optional[int]:
    m = _first_match(content or "")
    if not m:
        return None
    return int(m.group("timestamp"))


def clean_title(content: Optional[str], *, max_chars: int = 150) -> str:
    """
    Title for the schedule line: the timestamp line without its token, with
    broadcast mentions and stray `@` removed, whitespace collapsed and capped.
    """
    m = _first_match(content or "")
    if m:
        raw = f"{m.group('before')} {m.group('after')}"
    else:
        raw = content or ""
    raw = _TIMESTAMP_TOKEN_RE.sub(" ", raw)
    raw = _BROADCAST_MENTIONS_RE.sub("", raw)
    raw = raw.replace("@", "")
    text = _WHITESPACE_RE.sub(" ", raw).strip()
    if max_chars > 0 and len(text) > max_chars:
        text = text[: max_chars - 1].rstrip() + "…"
    return text


def thread_title(content: Optional[str]) -> str:
    """Title for the discussion thread: the post's first non-empty line."""
    for line in (content or "").splitlines():
        title = _TIMESTAMP_TOKEN_RE.sub("", line)
        title = _WHITESPACE_RE.sub(" ", title.replace("@", "")).strip()
        if title:
            return title[:THREAD_TITLE_MAX_CHARS]
    return THREAD_TITLE_FALLBACK
