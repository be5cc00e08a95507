"""
discord.py adapter.

Inbound: raw gateway events become `chat.types` events handed to a dispatcher
coroutine (the reconciler). Raw events are used so edits, deletes and
reactions on messages older than the client cache are still seen.

Outbound: `ChatGateway` operations. discord.py errors are translated into
`shared.exceptions` types; nothing library-specific leaves this module.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Iterator, List, Optional

import discord

from SellSchedule.chat.types import (
    ChatEvent,
    ChatMessage,
    InteractionRequested,
    MessageCreated,
    MessageDeleted,
    MessageDeletedBulk,
    MessageUpdated,
    ReactionAdded,
    ReactionRemoved,
    ScheduleButton,
)
from SellSchedule.logging_setup import log_event
from SellSchedule.schedule.models import Reactor
from shared.exceptions import NotFoundError, PermissionDeniedError, TransientServiceError


logger = logging.getLogger("discord_gateway")

Dispatcher = Callable[[ChatEvent], Awaitable[None]]
ReadyCallback = Callable[[], Awaitable[None]]


@contextlib.contextmanager
def translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except discord.NotFound as e:
        raise NotFoundError(str(e), operation=operation, status_code=e.status) from e
    except discord.Forbidden as e:
        raise PermissionDeniedError(str(e), operation=operation, status_code=e.status) from e
    except discord.HTTPException as e:
        raise TransientServiceError(str(e), operation=operation, status_code=e.status) from e
    except (discord.DiscordException, OSError, asyncio.TimeoutError) as e:
        raise TransientServiceError(str(e), operation=operation) from e


def build_intents() -> discord.Intents:
    intents = discord.Intents.default()
    intents.message_content = True
    intents.guild_messages = True
    intents.guild_reactions = True
    return intents


def schedule_view(button: Optional[ScheduleButton]) -> Optional[discord.ui.View]:
    if button is None:
        return None
    # No timeout: the button must keep working for as long as the page exists.
    view = discord.ui.View(timeout=None)
    view.add_item(
        discord.ui.Button(
            style=discord.ButtonStyle.primary,
            label=button.label,
            emoji=button.emoji,
            custom_id=button.custom_id,
        )
    )
    return view


class DiscordInteraction:
    """Ephemeral reply channel for one component interaction."""

    def __init__(self, interaction: discord.Interaction):
        self._interaction = interaction

    async def defer(self) -> None:
        with translate_errors("interaction_defer"):
            if not self._interaction.response.is_done():
                await self._interaction.response.defer(ephemeral=True, thinking=True)

    async def reply(self, content: str) -> None:
        with translate_errors("interaction_reply"):
            if self._interaction.response.is_done():
                await self._interaction.followup.send(content, ephemeral=True)
            else:
                await self._interaction.response.send_message(content, ephemeral=True)


class DiscordGateway:
    def __init__(
        self,
        *,
        signup_emoji_id: Optional[str],
        history_limit: int = 100,
        thread_auto_archive_minutes: int = 10080,
        client: Optional[discord.Client] = None,
    ) -> None:
        self.signup_emoji_id = str(signup_emoji_id) if signup_emoji_id else None
        self.history_limit = int(history_limit)
        self.thread_auto_archive_minutes = int(thread_auto_archive_minutes)
        self.client = client or discord.Client(intents=build_intents())
        self._dispatch: Optional[Dispatcher] = None
        self._on_first_ready: Optional[ReadyCallback] = None
        self._ready_seen = False
        self._register_events()

    # ------------------------------------------------------------------
    # Lifecycle / inbound
    # ------------------------------------------------------------------

    def bind(self, dispatch: Dispatcher, *, on_first_ready: Optional[ReadyCallback] = None) -> None:
        self._dispatch = dispatch
        self._on_first_ready = on_first_ready

    async def run(self, token: str) -> None:
        async with self.client:
            await self.client.start(token)

    async def _emit(self, event: ChatEvent) -> None:
        if self._dispatch is None:
            logger.warning("event_dropped_unbound type=%s", type(event).__name__)
            return
        await self._dispatch(event)

    def _register_events(self) -> None:
        client = self.client

        @client.event
        async def on_ready():
            log_event(logger, logging.INFO, "discord_ready", user=str(client.user), reconnect=self._ready_seen)
            # on_ready fires again after every resume; the engine starts once.
            if self._ready_seen:
                return
            self._ready_seen = True
            if self._on_first_ready is not None:
                await self._on_first_ready()

        @client.event
        async def on_message(message: discord.Message):
            await self._emit(MessageCreated(message=self._snapshot(message)))

        @client.event
        async def on_raw_message_edit(payload: discord.RawMessageUpdateEvent):
            # Always refetched: the cached copy predates the edit.
            await self._emit(MessageUpdated(channel_id=str(payload.channel_id), message_id=str(payload.message_id)))

        @client.event
        async def on_raw_message_delete(payload: discord.RawMessageDeleteEvent):
            await self._emit(MessageDeleted(channel_id=str(payload.channel_id), message_id=str(payload.message_id)))

        @client.event
        async def on_raw_bulk_message_delete(payload: discord.RawBulkMessageDeleteEvent):
            ids = tuple(str(i) for i in sorted(payload.message_ids))
            await self._emit(MessageDeletedBulk(channel_id=str(payload.channel_id), message_ids=ids))

        @client.event
        async def on_raw_reaction_add(payload: discord.RawReactionActionEvent):
            if client.user is not None and payload.user_id == client.user.id:
                return
            member = payload.member
            await self._emit(
                ReactionAdded(
                    channel_id=str(payload.channel_id),
                    message_id=str(payload.message_id),
                    user_id=str(payload.user_id),
                    emoji_id=str(payload.emoji.id) if payload.emoji.id else None,
                    user_name=member.display_name if member is not None else None,
                )
            )

        @client.event
        async def on_raw_reaction_remove(payload: discord.RawReactionActionEvent):
            await self._emit(
                ReactionRemoved(
                    channel_id=str(payload.channel_id),
                    message_id=str(payload.message_id),
                    user_id=str(payload.user_id),
                    emoji_id=str(payload.emoji.id) if payload.emoji.id else None,
                )
            )

        @client.event
        async def on_interaction(interaction: discord.Interaction):
            if interaction.type != discord.InteractionType.component:
                return
            custom_id = str((interaction.data or {}).get("custom_id") or "")
            if not custom_id:
                return
            await self._emit(
                InteractionRequested(
                    custom_id=custom_id,
                    user_id=str(interaction.user.id),
                    interaction=DiscordInteraction(interaction),
                )
            )

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def _snapshot(self, message: discord.Message, reactors=()) -> ChatMessage:
        return ChatMessage(
            id=str(message.id),
            channel_id=str(message.channel.id),
            author_id=str(message.author.id),
            content=message.content or "",
            url=message.jump_url,
            author_is_bot=bool(message.author.bot),
            is_system=message.is_system(),
            has_thread=getattr(message, "thread", None) is not None,
            signup_reactors=tuple(reactors),
        )

    async def _signup_reactors(self, message: discord.Message) -> List[Reactor]:
        if not self.signup_emoji_id:
            return []
        for reaction in message.reactions:
            emoji_id = getattr(reaction.emoji, "id", None)
            if emoji_id is None or str(emoji_id) != self.signup_emoji_id:
                continue
            return [Reactor(id=str(u.id), name=u.display_name) async for u in reaction.users() if not u.bot]
        return []

    async def _channel(self, channel_id: str):
        channel = self.client.get_channel(int(channel_id))
        if channel is None:
            channel = await self.client.fetch_channel(int(channel_id))
        return channel

    # ------------------------------------------------------------------
    # ChatGateway
    # ------------------------------------------------------------------

    @property
    def bot_user_id(self) -> str:
        return str(self.client.user.id) if self.client.user is not None else ""

    async def list_bot_message_ids(self, channel_id: str) -> List[str]:
        with translate_errors("list_bot_messages"):
            channel = await self._channel(channel_id)
            me = self.client.user
            return [str(m.id) async for m in channel.history(limit=self.history_limit) if me is not None and m.author.id == me.id]

    async def list_channel_messages(self, channel_id: str, *, with_reactions: bool = True) -> List[ChatMessage]:
        with translate_errors("list_channel_messages"):
            channel = await self._channel(channel_id)
            out: List[ChatMessage] = []
            async for message in channel.history(limit=self.history_limit):
                reactors = await self._signup_reactors(message) if with_reactions else []
                out.append(self._snapshot(message, reactors))
            return out

    async def fetch_message(self, channel_id: str, message_id: str, *, with_reactions: bool = False) -> ChatMessage:
        with translate_errors("fetch_message"):
            channel = await self._channel(channel_id)
            message = await channel.fetch_message(int(message_id))
            reactors = await self._signup_reactors(message) if with_reactions else []
            return self._snapshot(message, reactors)

    async def send_message(self, channel_id: str, content: str, *, button: Optional[ScheduleButton] = None) -> str:
        with translate_errors("send_message"):
            channel = await self._channel(channel_id)
            view = schedule_view(button)
            if view is None:
                sent = await channel.send(content)
            else:
                sent = await channel.send(content, view=view)
            return str(sent.id)

    async def edit_message(self, channel_id: str, message_id: str, content: str, *, button: Optional[ScheduleButton] = None) -> None:
        with translate_errors("edit_message"):
            channel = await self._channel(channel_id)
            await channel.get_partial_message(int(message_id)).edit(content=content, view=schedule_view(button))

    async def delete_message(self, channel_id: str, message_id: str) -> None:
        with translate_errors("delete_message"):
            channel = await self._channel(channel_id)
            await channel.get_partial_message(int(message_id)).delete()

    async def resolve_user_name(self, user_id: str) -> str:
        with translate_errors("resolve_user_name"):
            user = self.client.get_user(int(user_id))
            if user is None:
                user = await self.client.fetch_user(int(user_id))
            return user.display_name

    async def start_thread(self, channel_id: str, message_id: str, name: str) -> None:
        with translate_errors("start_thread"):
            channel = await self._channel(channel_id)
            await channel.get_partial_message(int(message_id)).create_thread(
                name=name,
                auto_archive_duration=self.thread_auto_archive_minutes,
            )
            log_event(logger, logging.INFO, "sell_thread_started", message_id=message_id, name=name)

    async def add_thread_member(self, channel_id: str, message_id: str, user_id: str) -> None:
        # Threads started from a message share the message's id.
        with translate_errors("add_thread_member"):
            thread = self.client.get_channel(int(message_id))
            if thread is None:
                thread = await self.client.fetch_channel(int(message_id))
            if not isinstance(thread, discord.Thread):
                raise NotFoundError(f"message {message_id} has no thread", operation="add_thread_member")
            await thread.add_user(discord.Object(id=int(user_id)))
