"""
Chat-platform boundary: the events the engine consumes and the gateway it writes through.

Adapters (see `discord_gateway.py`) translate library objects into these types
and library errors into `shared.exceptions` so the engine stays platform-free.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple, Union

from SellSchedule.schedule.models import Reactor


@dataclass(frozen=True)
class ScheduleButton:
    custom_id: str
    label: str
    emoji: str


@dataclass(frozen=True)
class ChatMessage:
    """Snapshot of a chat message as seen by the engine."""

    id: str
    channel_id: str
    author_id: str
    content: str
    url: str
    author_is_bot: bool = False
    is_system: bool = False
    has_thread: bool = False
    # Users who reacted with the sign-up emoji; filled only when requested.
    signup_reactors: Tuple[Reactor, ...] = ()


@dataclass(frozen=True)
class MessageCreated:
    message: ChatMessage


@dataclass(frozen=True)
class MessageUpdated:
    channel_id: str
    message_id: str
    # None when the platform delivered a partial update; fetch it.
    message: Optional[ChatMessage] = None


@dataclass(frozen=True)
class MessageDeleted:
    channel_id: str
    message_id: str


@dataclass(frozen=True)
class MessageDeletedBulk:
    channel_id: str
    message_ids: Tuple[str, ...]


@dataclass(frozen=True)
class ReactionAdded:
    channel_id: str
    message_id: str
    user_id: str
    emoji_id: Optional[str]
    user_name: Optional[str] = None


@dataclass(frozen=True)
class ReactionRemoved:
    channel_id: str
    message_id: str
    user_id: str
    emoji_id: Optional[str]


class Interaction(Protocol):
    async def defer(self) -> None: ...

    async def reply(self, content: str) -> None: ...


@dataclass(frozen=True)
class InteractionRequested:
    custom_id: str
    user_id: str
    interaction: Interaction


ChatEvent = Union[
    MessageCreated,
    MessageUpdated,
    MessageDeleted,
    MessageDeletedBulk,
    ReactionAdded,
    ReactionRemoved,
    InteractionRequested,
]


class ChatGateway(Protocol):
    """Outbound operations the engine needs from the chat platform."""

    @property
    def bot_user_id(self) -> str: ...

    async def list_bot_message_ids(self, channel_id: str) -> List[str]:
        """Ids of messages this bot authored in the channel, newest first."""
        ...

    async def list_channel_messages(self, channel_id: str, *, with_reactions: bool = True) -> List[ChatMessage]: ...

    async def fetch_message(self, channel_id: str, message_id: str, *, with_reactions: bool = False) -> ChatMessage: ...

    async def send_message(self, channel_id: str, content: str, *, button: Optional[ScheduleButton] = None) -> str: ...

    async def edit_message(self, channel_id: str, message_id: str, content: str, *, button: Optional[ScheduleButton] = None) -> None: ...

    async def delete_message(self, channel_id: str, message_id: str) -> None: ...

    async def resolve_user_name(self, user_id: str) -> str: ...

    async def start_thread(self, channel_id: str, message_id: str, name: str) -> None: ...

    async def add_thread_member(self, channel_id: str, message_id: str, user_id: str) -> None: ...
