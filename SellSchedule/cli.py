from __future__ import annotations

import argparse
import asyncio
import logging

from SellSchedule.bootstrap import bootstrap_bot
from SellSchedule.calendar.mirror import CalendarMirror, build_calendar_mirror
from SellSchedule.context import BotContext
from SellSchedule.logging_setup import log_event, setup_logging
from shared.config import load_bot_config
from shared.exceptions import ConfigurationError


logger = logging.getLogger("sell_schedule.cli")


async def run_bot(ctx: BotContext) -> int:
    token = (ctx.cfg.discord_token or "").strip()
    if not token:
        raise ConfigurationError("DISCORD_TOKEN is not set")
    if not ctx.cfg.source_regions or not ctx.cfg.destinations:
        raise ConfigurationError("SOURCE_CHANNELS and DESTINATION_CHANNELS must both be configured")

    ctx.publish_queue.start()
    ctx.calendar_queue.start()
    ctx.gateway.bind(ctx.reconciler.dispatch, on_first_ready=ctx.reconciler.startup)
    try:
        await ctx.gateway.run(token)
    finally:
        await ctx.publish_queue.stop()
        await ctx.calendar_queue.stop()
        log_event(logger, logging.INFO, "bot_stopped", entries=len(ctx.store))
    return 0


async def run_calendars(mirror: CalendarMirror, args: argparse.Namespace) -> int:
    if not mirror.enabled:
        print("Google Calendar mirroring is disabled (set GCAL_ENABLED and credentials).")
        return 1
    if args.setup:
        regions = args.regions.split(",") if args.regions else load_bot_config().regions
        created = await mirror.setup([r.strip() for r in regions if r.strip()])
        for name, calendar_id in sorted(created.items()):
            print(f"{name}\t{calendar_id}")
        return 0
    for item in await mirror.list_calendars():
        print(f"{item.get('summary')}\t{item.get('id')}")
    return 0


def main() -> None:
    p = argparse.ArgumentParser(description="Sell schedule bot (aggregates sell posts into schedule channels).")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("run", help="Connect to Discord, backfill sell channels and keep the schedule published.")

    p_cal = sub.add_parser("calendars", help="List the Google calendars visible to the configured account.")
    p_cal.add_argument("--setup", action="store_true", help="Create the main and per-region schedule calendars if missing.")
    p_cal.add_argument("--regions", help="Comma-separated regions for --setup; defaults to the regions in SOURCE_CHANNELS.")

    args = p.parse_args()

    if args.cmd == "run":
        ctx = bootstrap_bot()
        try:
            raise SystemExit(asyncio.run(run_bot(ctx)))
        except ConfigurationError as e:
            raise SystemExit(f"Configuration error: {e}")
    if args.cmd == "calendars":
        cfg = load_bot_config()
        setup_logging(level=cfg.log_level, json_logs=cfg.log_json)
        raise SystemExit(asyncio.run(run_calendars(build_calendar_mirror(cfg), args)))
    raise SystemExit("Unknown command.")


if __name__ == "__main__":
    main()
