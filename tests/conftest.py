"""
Pytest configuration and fixtures for the sell schedule bot.

Provides an in-memory chat gateway and interaction so the engine can be
exercised without a Discord connection.
"""
import os
from collections import defaultdict
from typing import Dict, List, Optional

import pytest

# Set test environment variables before ANY imports
os.environ["LOG_TO_FILE"] = "false"
os.environ["GCAL_ENABLED"] = "false"
os.environ["METRICS_PORT"] = "0"

from SellSchedule.chat.types import ChatMessage, ScheduleButton
from SellSchedule.schedule.models import Reactor, ScheduleEntry, new_entry
from shared.config import Destination
from shared.exceptions import NotFoundError


class FakeGateway:
    """ChatGateway double that records every write."""

    bot_user_id = "999"

    def __init__(self):
        self.history: Dict[str, List[ChatMessage]] = defaultdict(list)
        self.messages: Dict[str, ChatMessage] = {}
        self.bot_messages: Dict[str, List[str]] = defaultdict(list)
        self.contents: Dict[str, str] = {}
        self.sent: List[tuple] = []
        self.edited: List[tuple] = []
        self.deleted: List[tuple] = []
        self.threads: List[tuple] = []
        self.thread_members: List[tuple] = []
        self.fetches: List[tuple] = []
        self.names: Dict[str, str] = {}
        self.fail: Dict[str, Exception] = {}
        self.send_limit: Optional[int] = None
        self._next_id = 5000

    @property
    def writes(self) -> int:
        return len(self.sent) + len(self.edited) + len(self.deleted)

    def add_source_message(self, message: ChatMessage) -> None:
        self.history[message.channel_id].insert(0, message)
        self.messages[message.id] = message

    def _maybe_fail(self, operation: str) -> None:
        exc = self.fail.get(operation)
        if exc is not None:
            raise exc

    async def list_bot_message_ids(self, channel_id):
        self._maybe_fail("list_bot_messages")
        return list(self.bot_messages[channel_id])

    async def list_channel_messages(self, channel_id, *, with_reactions=True):
        self._maybe_fail("list_channel_messages")
        return list(self.history[channel_id])

    async def fetch_message(self, channel_id, message_id, *, with_reactions=False):
        self._maybe_fail("fetch_message")
        self.fetches.append((channel_id, message_id, with_reactions))
        if message_id not in self.messages:
            raise NotFoundError(f"unknown message {message_id}")
        return self.messages[message_id]

    async def send_message(self, channel_id, content, *, button: Optional[ScheduleButton] = None):
        self._maybe_fail("send_message")
        if self.send_limit is not None and len(self.sent) >= self.send_limit:
            raise self.fail.get("send_limit") or RuntimeError("send limit reached")
        self._next_id += 1
        message_id = str(self._next_id)
        self.bot_messages[channel_id].insert(0, message_id)
        self.contents[message_id] = content
        self.sent.append((channel_id, content, button))
        return message_id

    async def edit_message(self, channel_id, message_id, content, *, button=None):
        self._maybe_fail("edit_message")
        self.contents[message_id] = content
        self.edited.append((channel_id, message_id, content, button))

    async def delete_message(self, channel_id, message_id):
        self._maybe_fail("delete_message")
        if message_id not in self.bot_messages[channel_id]:
            raise NotFoundError(f"unknown message {message_id}")
        self.bot_messages[channel_id].remove(message_id)
        self.deleted.append((channel_id, message_id))

    async def resolve_user_name(self, user_id):
        self._maybe_fail("resolve_user_name")
        return self.names.get(user_id, f"user-{user_id}")

    async def start_thread(self, channel_id, message_id, name):
        self._maybe_fail("start_thread")
        self.threads.append((channel_id, message_id, name))

    async def add_thread_member(self, channel_id, message_id, user_id):
        self._maybe_fail("add_thread_member")
        self.thread_members.append((channel_id, message_id, user_id))


class FakeInteraction:
    def __init__(self, fail_reply_times: int = 0):
        self.deferred = False
        self.replies: List[str] = []
        self._fail_reply_times = fail_reply_times

    async def defer(self):
        self.deferred = True

    async def reply(self, content):
        if self._fail_reply_times > 0:
            self._fail_reply_times -= 1
            raise RuntimeError("interaction expired")
        self.replies.append(content)


def make_entry(
    entry_id: str,
    *,
    date: int = 1000,
    text: str = "Raid A",
    region: str = "EU",
    reactors=(),
    url: Optional[str] = None,
) -> ScheduleEntry:
    return new_entry(
        id=entry_id,
        channel_id="100" if region == "EU" else "200",
        region=region,
        date=date,
        text=text,
        url=url if url is not None else f"https://discord.com/channels/1/100/{entry_id}",
        reactors=tuple(Reactor(id=r, name=f"user-{r}") for r in reactors),
    )


def make_message(
    message_id: str,
    content: str,
    *,
    channel_id: str = "100",
    author_is_bot: bool = False,
    reactors=(),
    has_thread: bool = False,
) -> ChatMessage:
    return ChatMessage(
        id=message_id,
        channel_id=channel_id,
        author_id="bot" if author_is_bot else "42",
        content=content,
        url=f"https://discord.com/channels/1/{channel_id}/{message_id}",
        author_is_bot=author_is_bot,
        has_thread=has_thread,
        signup_reactors=tuple(Reactor(id=r, name=f"user-{r}") for r in reactors),
    )


EU_DEST = Destination(channel_id="900", regions=("EU",))
NA_DEST = Destination(channel_id="901", regions=("NA",))
ALL_DEST = Destination(channel_id="902", regions=("EU", "NA"))


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()
