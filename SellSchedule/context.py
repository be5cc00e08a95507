from __future__ import annotations

import logging
from dataclasses import dataclass

from SellSchedule.calendar.mirror import CalendarMirror
from SellSchedule.chat.types import ChatGateway
from SellSchedule.delivery.publisher import SchedulePublisher
from SellSchedule.delivery.task_queue import TaskQueue
from SellSchedule.reconciler import Reconciler
from SellSchedule.schedule.store import ScheduleStore
from shared.config import BotConfig


@dataclass(frozen=True)
class BotContext:
    cfg: BotConfig
    logger: logging.Logger
    gateway: ChatGateway
    store: ScheduleStore
    publisher: SchedulePublisher
    publish_queue: TaskQueue
    calendar_queue: TaskQueue
    mirror: CalendarMirror
    reconciler: Reconciler
