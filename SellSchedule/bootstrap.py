from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from SellSchedule.calendar.mirror import CalendarMirror, build_calendar_mirror
from SellSchedule.chat.types import ChatGateway
from SellSchedule.context import BotContext
from SellSchedule.delivery.publisher import SchedulePublisher
from SellSchedule.delivery.task_queue import TaskQueue
from SellSchedule.logging_setup import log_event, setup_logging
from SellSchedule.observability_http import start_observability_http_server
from SellSchedule.reconciler import Reconciler, ReconcilerSettings
from SellSchedule.schedule.store import ScheduleStore
from shared.config import BotConfig, load_bot_config


def build_context(
    cfg: BotConfig,
    *,
    gateway: ChatGateway,
    mirror: Optional[CalendarMirror] = None,
) -> BotContext:
    """Wire the engine around a gateway. No I/O; queues are started by the caller."""
    store = ScheduleStore()
    publisher = SchedulePublisher(store=store, gateway=gateway, page_budget=cfg.page_budget)
    publish_queue = TaskQueue("publish", maxsize=cfg.publish_queue_max_size)
    calendar_queue = TaskQueue("calendar", maxsize=cfg.calendar_queue_max_size)
    mirror = mirror if mirror is not None else build_calendar_mirror(cfg)
    reconciler = Reconciler(
        settings=ReconcilerSettings.from_config(cfg),
        store=store,
        gateway=gateway,
        publisher=publisher,
        publish_queue=publish_queue,
        calendar_queue=calendar_queue,
        mirror=mirror,
    )
    return BotContext(
        cfg=cfg,
        logger=logging.getLogger("sell_schedule"),
        gateway=gateway,
        store=store,
        publisher=publisher,
        publish_queue=publish_queue,
        calendar_queue=calendar_queue,
        mirror=mirror,
        reconciler=reconciler,
    )


def bot_health(ctx: BotContext) -> Tuple[bool, Dict[str, Any]]:
    return (
        ctx.publish_queue.running,
        {
            "starting": ctx.reconciler.is_starting,
            "entries": len(ctx.store),
            "publish_queue_depth": ctx.publish_queue.depth,
            "calendar_queue_depth": ctx.calendar_queue.depth,
            "calendar_enabled": ctx.mirror.enabled,
        },
    )


def bootstrap_bot(*, gateway: Optional[ChatGateway] = None) -> BotContext:
    cfg = load_bot_config()
    setup_logging(level=cfg.log_level, json_logs=cfg.log_json)
    if gateway is None:
        # Imported here so the `calendars` command works without the chat stack.
        from SellSchedule.chat.discord_gateway import DiscordGateway

        gateway = DiscordGateway(
            signup_emoji_id=cfg.signup_emoji_id,
            history_limit=cfg.history_fetch_limit,
            thread_auto_archive_minutes=cfg.thread_auto_archive_minutes,
        )
    ctx = build_context(cfg, gateway=gateway)
    log_event(ctx.logger, logging.INFO, "bot_configured", **cfg.summary())
    if cfg.metrics_port:
        start_observability_http_server(
            port=cfg.metrics_port,
            component="sell_schedule",
            health_handlers={"/health/bot": lambda: bot_health(ctx)},
        )
    return ctx
