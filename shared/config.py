"""
Centralized configuration for the SellSchedule bot.

Goal:
- One typed source of truth for config (environment + optional `.env`).
- Channel topology (source channel -> region, destinations -> regions) is static
  and read once at startup.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.exceptions import ConfigurationError


_REPO_ROOT = Path(__file__).resolve().parents[1]


def _env_file_candidates(service_dir: str) -> list[Path]:
    # Order matters: service-local .env first, then repo-root .env (if any).
    return [
        _REPO_ROOT / service_dir / ".env",
        _REPO_ROOT / ".env",
    ]


@dataclass(frozen=True)
class Destination:
    """A summary channel and the regions whose entries it publishes."""

    channel_id: str
    regions: Tuple[str, ...]

    @property
    def button_id(self) -> str:
        return "my-schedule-" + "-".join(self.regions)


def parse_source_channels(raw: str) -> Dict[str, str]:
    """
    Parse `SOURCE_CHANNELS`.

    Accepts `{"<channel id>": "EU"}` or `{"<channel id>": {"region": "EU"}}`.
    """
    s = (raw or "").strip()
    if not s:
        return {}
    try:
        data = json.loads(s)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"SOURCE_CHANNELS is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError("SOURCE_CHANNELS must be a JSON object of channel id -> region")

    out: Dict[str, str] = {}
    for channel_id, value in data.items():
        region = value.get("region") if isinstance(value, dict) else value
        region = str(region or "").strip()
        if not region:
            raise ConfigurationError(f"SOURCE_CHANNELS entry {channel_id!r} has no region")
        out[str(channel_id).strip()] = region
    return out


def parse_destinations(raw: str) -> List[Destination]:
    """Parse `DESTINATION_CHANNELS`: `[{"id": "<channel id>", "regions": ["EU", "NA"]}]`."""
    s = (raw or "").strip()
    if not s:
        return []
    try:
        data = json.loads(s)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"DESTINATION_CHANNELS is not valid JSON: {e}") from e
    if not isinstance(data, list):
        raise ConfigurationError("DESTINATION_CHANNELS must be a JSON list")

    out: List[Destination] = []
    for item in data:
        if not isinstance(item, dict) or not item.get("id"):
            raise ConfigurationError(f"DESTINATION_CHANNELS entry without id: {item!r}")
        regions = item.get("regions") or []
        if isinstance(regions, str):
            regions = [regions]
        regions = tuple(str(r).strip() for r in regions if str(r).strip())
        if not regions:
            raise ConfigurationError(f"DESTINATION_CHANNELS entry {item.get('id')!r} lists no regions")
        out.append(Destination(channel_id=str(item["id"]).strip(), regions=regions))
    return out


class BotConfig(BaseSettings):
    """Configuration for the SellSchedule bot (chat gateway, publisher, calendar mirror)."""

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    # -------------------------
    # Chat platform
    # -------------------------
    discord_token: Optional[str] = Field(default=None, validation_alias=AliasChoices("DISCORD_TOKEN", "BOT_TOKEN", "TOKEN"))

    source_channels_json: str = Field(default="", validation_alias=AliasChoices("SOURCE_CHANNELS", "SELL_CHANNELS"))
    destination_channels_json: str = Field(default="", validation_alias=AliasChoices("DESTINATION_CHANNELS", "SCHEDULE_CHANNELS"))

    signup_emoji_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("SIGNUP_EMOJI_ID", "EMOJI_ID"))
    calendar_emoji_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("CALENDAR_EMOJI_ID", "GOOGLE_CALENDAR_EMOJI_ID"))

    # -------------------------
    # Rendering
    # -------------------------
    message_char_limit: int = Field(default=2000, validation_alias=AliasChoices("MESSAGE_CHAR_LIMIT"))
    message_safety_margin: int = Field(default=100, validation_alias=AliasChoices("MESSAGE_SAFETY_MARGIN"))
    title_max_chars: int = Field(default=150, validation_alias=AliasChoices("TITLE_MAX_CHARS"))
    history_fetch_limit: int = Field(default=100, validation_alias=AliasChoices("HISTORY_FETCH_LIMIT"))
    personal_view_calendar_links: bool = Field(default=True, validation_alias=AliasChoices("PERSONAL_VIEW_CALENDAR_LINKS"))

    # -------------------------
    # Sell threads
    # -------------------------
    start_sell_threads: bool = Field(default=True, validation_alias=AliasChoices("START_SELL_THREADS"))
    thread_auto_archive_minutes: int = Field(default=10080, validation_alias=AliasChoices("THREAD_AUTO_ARCHIVE_MINUTES"))
    add_signups_to_thread: bool = Field(default=True, validation_alias=AliasChoices("ADD_SIGNUPS_TO_THREAD"))

    # -------------------------
    # Queues
    # -------------------------
    publish_queue_max_size: int = Field(default=256, validation_alias=AliasChoices("PUBLISH_QUEUE_MAX_SIZE"))
    calendar_queue_max_size: int = Field(default=1024, validation_alias=AliasChoices("CALENDAR_QUEUE_MAX_SIZE"))

    # -------------------------
    # Google Calendar mirror
    # -------------------------
    gcal_enabled: bool = Field(default=False, validation_alias=AliasChoices("GCAL_ENABLED", "GOOGLE_CALENDAR_ENABLED"))
    gcal_client_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("GCAL_CLIENT_ID", "GOOGLE_CLIENT_ID"))
    gcal_client_secret: Optional[str] = Field(default=None, validation_alias=AliasChoices("GCAL_CLIENT_SECRET", "GOOGLE_CLIENT_SECRET"))
    gcal_refresh_token: Optional[str] = Field(default=None, validation_alias=AliasChoices("GCAL_REFRESH_TOKEN", "GOOGLE_REFRESH_TOKEN"))
    gcal_calendar_prefix: str = Field(default="Rise Schedule", validation_alias=AliasChoices("GCAL_CALENDAR_PREFIX"))
    gcal_timezone: str = Field(default="Europe/Amsterdam", validation_alias=AliasChoices("GCAL_TIMEZONE"))
    gcal_event_duration_minutes: int = Field(default=30, validation_alias=AliasChoices("GCAL_EVENT_DURATION_MINUTES"))
    gcal_timeout_seconds: int = Field(default=20, validation_alias=AliasChoices("GCAL_TIMEOUT_SECONDS"))
    gcal_max_retries: int = Field(default=2, validation_alias=AliasChoices("GCAL_MAX_RETRIES"))

    # -------------------------
    # Observability
    # -------------------------
    log_level: str = Field(default="INFO", validation_alias=AliasChoices("LOG_LEVEL"))
    log_json: bool = Field(default=False, validation_alias=AliasChoices("LOG_JSON"))
    metrics_port: int = Field(default=0, validation_alias=AliasChoices("METRICS_PORT", "SELL_SCHEDULE_METRICS_PORT"))

    @model_validator(mode="after")
    def _validate_topology(self) -> "BotConfig":
        # Surfaces malformed JSON at load time instead of on first event.
        try:
            parse_source_channels(self.source_channels_json)
            parse_destinations(self.destination_channels_json)
        except ConfigurationError as e:
            raise ValueError(str(e)) from e
        if self.message_safety_margin < 0 or self.page_budget <= 0:
            raise ValueError("MESSAGE_SAFETY_MARGIN must be >= 0 and smaller than MESSAGE_CHAR_LIMIT")
        return self

    @model_validator(mode="after")
    def _validate_gcal_required(self) -> "BotConfig":
        if not self.gcal_enabled:
            return self
        missing = [
            name
            for name, value in (
                ("GCAL_CLIENT_ID", self.gcal_client_id),
                ("GCAL_CLIENT_SECRET", self.gcal_client_secret),
                ("GCAL_REFRESH_TOKEN", self.gcal_refresh_token),
            )
            if not (value or "").strip()
        ]
        if missing:
            raise ValueError(f"GCAL_ENABLED is set but credentials are missing ({', '.join(missing)})")
        return self

    @property
    def source_regions(self) -> Dict[str, str]:
        return parse_source_channels(self.source_channels_json)

    @property
    def destinations(self) -> List[Destination]:
        return parse_destinations(self.destination_channels_json)

    @property
    def regions(self) -> List[str]:
        seen: List[str] = []
        for region in self.source_regions.values():
            if region not in seen:
                seen.append(region)
        return seen

    @property
    def page_budget(self) -> int:
        return int(self.message_char_limit) - int(self.message_safety_margin)

    def summary(self) -> Dict[str, Any]:
        """Non-secret view of the config for startup logs."""
        return {
            "sources": len(self.source_regions),
            "destinations": [d.channel_id for d in self.destinations],
            "regions": self.regions,
            "page_budget": self.page_budget,
            "gcal_enabled": self.gcal_enabled,
            "start_sell_threads": self.start_sell_threads,
        }


@lru_cache(maxsize=4)
def _cached_bot_config(env_file_str: Optional[str]) -> BotConfig:
    env_file = Path(env_file_str) if env_file_str else None
    candidates = [env_file] if env_file else _env_file_candidates("SellSchedule")
    existing = [p for p in candidates if p and p.exists()]
    return BotConfig(_env_file=existing or None, _env_file_encoding="utf-8")  # type: ignore[arg-type]


def load_bot_config(*, env_file: Optional[Path] = None) -> BotConfig:
    return _cached_bot_config(str(env_file) if env_file else None)
