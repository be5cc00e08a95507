"""
Google Calendar REST client.

Blocking (requests); callers on the event loop go through `run_in_thread`.
Handles:
- Refresh-token exchange and access-token caching
- Transport retries for 429/5xx (urllib3 Retry)
- Mapping of error statuses to `CalendarRequestError` subclasses
"""

from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from shared.exceptions import ClientNotInitializedError, ExternalServiceError, NotFoundError


logger = logging.getLogger(__name__)

GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"

_EVENT_ID_RE = re.compile(r"^[a-v0-9]{5,1024}$")


@dataclass
class GoogleCalendarConfig:
    """Configuration for the Google Calendar client."""
    client_id: str
    client_secret: str
    refresh_token: str
    timeout: int = 20
    max_retries: int = 2


class CalendarRequestError(ExternalServiceError):
    """Non-2xx response (or transport failure, status_code=0) from Google."""

    def __init__(self, *, status_code: int, message: str) -> None:
        super().__init__(f"Google Calendar API request failed ({status_code}): {message}", status_code=status_code)


class CalendarNotFoundError(CalendarRequestError, NotFoundError):
    """404/410: the calendar or event does not exist (or was already deleted)."""
    pass


class CalendarConflictError(CalendarRequestError):
    """409: an event with this id already exists."""
    pass


def event_id_for(entry_id: str) -> str:
    """
    Stable Google event id for a schedule entry.

    Google only accepts base32hex characters; snowflake ids already qualify,
    anything else is hex-encoded (hex is a subset of base32hex).
    """
    s = str(entry_id).strip().lower()
    if _EVENT_ID_RE.match(s):
        return s
    encoded = s.encode("utf-8").hex()
    return encoded if len(encoded) >= 5 else encoded.rjust(5, "0")


def _safe_error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            if isinstance(message, str) and message.strip():
                return " ".join(message.split())[:200]
        if isinstance(error_payload, str) and error_payload.strip():
            return " ".join(error_payload.split())[:200]
    raw_text = (response.text or "").strip()
    if raw_text:
        return " ".join(raw_text.split())[:200]
    return "Request failed without an error payload"


def _raise_for_status(response: requests.Response) -> None:
    status = response.status_code
    if 200 <= status < 300:
        return
    message = _safe_error_message(response)
    if status in (404, 410):
        raise CalendarNotFoundError(status_code=status, message=message)
    if status == 409:
        raise CalendarConflictError(status_code=status, message=message)
    raise CalendarRequestError(status_code=status, message=message)


class GoogleCalendarClient:
    def __init__(self, config: GoogleCalendarConfig, *, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()
        if session is None:
            retry_strategy = Retry(
                total=config.max_retries,
                backoff_factor=0.5,
                status_forcelist=[429, 500, 502, 503, 504],
                allowed_methods=["GET", "POST", "PUT", "DELETE"],
                raise_on_status=False,
            )
            adapter = HTTPAdapter(max_retries=retry_strategy)
            self.session.mount("https://", adapter)

        self._token_lock = threading.Lock()
        self._access_token: Optional[str] = None
        self._access_token_expires_at = 0.0

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    def _get_access_token(self, *, force_refresh: bool = False) -> str:
        if not (self.config.client_id and self.config.client_secret and self.config.refresh_token):
            raise ClientNotInitializedError("Google Calendar client used without OAuth credentials")
        with self._token_lock:
            if not force_refresh and self._access_token and time.monotonic() < self._access_token_expires_at:
                return self._access_token
            try:
                response = self.session.post(
                    GOOGLE_OAUTH_TOKEN_URL,
                    data={
                        "client_id": self.config.client_id,
                        "client_secret": self.config.client_secret,
                        "refresh_token": self.config.refresh_token,
                        "grant_type": "refresh_token",
                    },
                    headers={"Accept": "application/json"},
                    timeout=self.config.timeout,
                )
            except requests.RequestException as e:
                raise CalendarRequestError(status_code=0, message=f"token refresh failed: {e}") from e
            _raise_for_status(response)

            payload = response.json()
            access_token = payload.get("access_token") if isinstance(payload, dict) else None
            if not isinstance(access_token, str) or not access_token.strip():
                raise CalendarRequestError(status_code=response.status_code, message="token response is missing access_token")
            expires_in = payload.get("expires_in")
            expires_in = int(expires_in) if isinstance(expires_in, (int, float)) and expires_in > 0 else 3600
            # Refresh early to avoid edge-of-expiration failures.
            self._access_token = access_token.strip()
            self._access_token_expires_at = time.monotonic() + max(expires_in - 60, 30)
            logger.debug("gcal_token_refreshed expires_in=%s", expires_in)
            return self._access_token

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{GOOGLE_CALENDAR_API_BASE_URL}{path}"
        response = self._send(method, url, params=params, json_body=json_body, force_refresh=False)
        if response.status_code == 401:
            response = self._send(method, url, params=params, json_body=json_body, force_refresh=True)
        _raise_for_status(response)
        if response.status_code == 204 or not response.content:
            return {}
        payload = response.json()
        return payload if isinstance(payload, dict) else {}

    def _send(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]],
        json_body: Optional[Dict[str, Any]],
        force_refresh: bool,
    ) -> requests.Response:
        token = self._get_access_token(force_refresh=force_refresh)
        try:
            return self.session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
                timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            raise CalendarRequestError(status_code=0, message=str(e)) from e

    # ------------------------------------------------------------------
    # Calendars
    # ------------------------------------------------------------------

    def list_calendars(self) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        page_token: Optional[str] = None
        while True:
            params: Dict[str, Any] = {"maxResults": 250}
            if page_token:
                params["pageToken"] = page_token
            payload = self._request("GET", "/users/me/calendarList", params=params)
            items.extend(i for i in payload.get("items") or [] if isinstance(i, dict))
            page_token = payload.get("nextPageToken")
            if not page_token:
                return items

    def create_calendar(self, summary: str, *, time_zone: str) -> Dict[str, Any]:
        return self._request("POST", "/calendars", json_body={"summary": summary, "timeZone": time_zone})

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def insert_event(self, calendar_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", f"/calendars/{quote(calendar_id, safe='')}/events", json_body=body)

    def update_event(self, calendar_id: str, event_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        path = f"/calendars/{quote(calendar_id, safe='')}/events/{quote(event_id, safe='')}"
        return self._request("PUT", path, json_body=body)

    def delete_event(self, calendar_id: str, event_id: str) -> None:
        path = f"/calendars/{quote(calendar_id, safe='')}/events/{quote(event_id, safe='')}"
        self._request("DELETE", path)
