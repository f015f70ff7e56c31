import json
from datetime import UTC, datetime, timedelta
import logging
from typing import Any
from urllib import error, parse, request

logger = logging.getLogger(__name__)

GOOGLE_OAUTH_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_SCOPES = (
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
)


class GoogleCalendarError(Exception):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def build_consent_url(*, client_id: str, redirect_uri: str, state: str) -> str:
    query = parse.urlencode(
        {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(GOOGLE_CALENDAR_SCOPES),
            "state": state,
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
        },
    )
    return f"{GOOGLE_OAUTH_AUTHORIZE_URL}?{query}"


def exchange_authorization_code(
    *,
    code: str,
    client_id: str,
    client_secret: str,
    redirect_uri: str,
    timeout_seconds: float = 10.0,
    oauth_token_url: str = GOOGLE_OAUTH_TOKEN_URL,
) -> dict[str, Any]:
    payload = _post_token_form(
        oauth_token_url,
        {
            "code": code,
            "client_id": client_id,
            "client_secret": client_secret,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        },
        timeout_seconds=timeout_seconds,
        action="authorization code exchange",
    )
    access_token = payload.get("access_token")
    if not isinstance(access_token, str) or not access_token.strip():
        raise GoogleCalendarError("Google OAuth response did not include access_token.")
    return payload


def expires_at_from_token_payload(payload: dict[str, Any], now: datetime | None = None) -> datetime | None:
    raw_expires_in = payload.get("expires_in")
    try:
        expires_in = int(raw_expires_in)
    except (TypeError, ValueError):
        return None
    return (now or datetime.now(UTC)) + timedelta(seconds=expires_in)


class GoogleCalendarClient:
    """Thin Calendar v3 client bound to one user's OAuth tokens.

    A 401 triggers a single refresh-token exchange and retry; the new
    token is kept on the instance and ``token_refreshed`` is set so the
    caller can persist it.
    """

    def __init__(
        self,
        *,
        access_token: str,
        refresh_token: str = "",
        client_id: str = "",
        client_secret: str = "",
        calendar_id: str = "primary",
        timeout_seconds: float = 10.0,
        api_base_url: str = "https://www.googleapis.com/calendar/v3",
        oauth_token_url: str = GOOGLE_OAUTH_TOKEN_URL,
    ) -> None:
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.client_id = client_id
        self.client_secret = client_secret
        self.calendar_id = calendar_id
        self.timeout_seconds = timeout_seconds
        self.api_base_url = api_base_url.rstrip("/")
        self.oauth_token_url = oauth_token_url
        self.token_refreshed = False
        self.access_token_expires_at: datetime | None = None

    def list_events(
        self,
        *,
        time_min: datetime | None = None,
        time_max: datetime | None = None,
        max_results: int = 250,
    ) -> list[dict[str, Any]]:
        query: dict[str, str] = {
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": str(max_results),
        }
        if time_min is not None:
            query["timeMin"] = _rfc3339(time_min)
        if time_max is not None:
            query["timeMax"] = _rfc3339(time_max)
        response_payload = self._request_json(
            "GET",
            f"{self._events_path()}?{parse.urlencode(query)}",
        )
        items = response_payload.get("items")
        if not isinstance(items, list):
            return []
        return [item for item in items if isinstance(item, dict)]

    def insert_event(self, body: dict[str, Any]) -> dict[str, Any]:
        response_payload = self._request_json("POST", self._events_path(), payload=body)
        event_id = response_payload.get("id")
        if not isinstance(event_id, str) or not event_id.strip():
            raise GoogleCalendarError("Google Calendar create event response missing id.")
        return response_payload

    def update_event(self, event_id: str, body: dict[str, Any]) -> dict[str, Any]:
        return self._request_json("PATCH", self._event_path(event_id), payload=body)

    def delete_event(self, event_id: str) -> None:
        self._request_json("DELETE", self._event_path(event_id))

    def _events_path(self) -> str:
        return f"/calendars/{parse.quote(self.calendar_id, safe='')}/events"

    def _event_path(self, event_id: str) -> str:
        cleaned_event_id = event_id.strip()
        if not cleaned_event_id:
            raise GoogleCalendarError("Event id is required.", status_code=404)
        return f"{self._events_path()}/{parse.quote(cleaned_event_id, safe='')}"

    def _request_json(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        *,
        allow_refresh: bool = True,
    ) -> dict[str, Any]:
        if not self.access_token and self._can_refresh_access_token():
            self.refresh_access_token()

        raw_payload: bytes | None = None
        if payload is not None:
            raw_payload = json.dumps(payload).encode("utf-8")

        req = request.Request(
            f"{self.api_base_url}{path}",
            data=raw_payload,
            method=method,
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Content-Type": "application/json",
            },
        )

        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response_body = response.read()
        except TimeoutError as exc:
            raise GoogleCalendarError("Google Calendar API request timed out.") from exc
        except error.HTTPError as exc:
            if exc.code == 401 and allow_refresh and self._can_refresh_access_token():
                logger.info("Google Calendar access token rejected; refreshing")
                self.refresh_access_token()
                return self._request_json(method, path, payload, allow_refresh=False)
            body = exc.read().decode("utf-8", errors="ignore")
            raise GoogleCalendarError(
                f"Google Calendar API HTTP {exc.code}: {body or 'empty response body'}",
                status_code=exc.code,
            ) from exc
        except error.URLError as exc:
            raise GoogleCalendarError(
                f"Google Calendar API connection error: {exc.reason}",
            ) from exc

        if not response_body or not response_body.strip():
            return {}
        try:
            parsed_body = json.loads(response_body.decode("utf-8"))
        except json.JSONDecodeError as exc:
            raise GoogleCalendarError("Google Calendar API returned invalid JSON.") from exc

        if not isinstance(parsed_body, dict):
            raise GoogleCalendarError("Google Calendar API response is not a JSON object.")
        return parsed_body

    def _can_refresh_access_token(self) -> bool:
        return bool(
            self.refresh_token.strip()
            and self.client_id.strip()
            and self.client_secret.strip()
        )

    def refresh_access_token(self) -> None:
        if not self._can_refresh_access_token():
            raise GoogleCalendarError(
                "Google Calendar refresh token flow is not configured.",
                status_code=401,
            )
        payload = _post_token_form(
            self.oauth_token_url,
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": self.refresh_token,
                "grant_type": "refresh_token",
            },
            timeout_seconds=self.timeout_seconds,
            action="refresh",
        )
        new_access_token = payload.get("access_token")
        if not isinstance(new_access_token, str) or not new_access_token.strip():
            raise GoogleCalendarError(
                "Google OAuth refresh did not include access_token.",
                status_code=401,
            )
        self.access_token = new_access_token.strip()
        refreshed_refresh_token = payload.get("refresh_token")
        if isinstance(refreshed_refresh_token, str) and refreshed_refresh_token.strip():
            self.refresh_token = refreshed_refresh_token.strip()
        self.access_token_expires_at = expires_at_from_token_payload(payload)
        self.token_refreshed = True


def _post_token_form(
    url: str,
    fields: dict[str, str],
    *,
    timeout_seconds: float,
    action: str,
) -> dict[str, Any]:
    req = request.Request(
        url,
        data=parse.urlencode(fields).encode("utf-8"),
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        method="POST",
    )
    try:
        with request.urlopen(req, timeout=timeout_seconds) as response:
            response_body = response.read()
    except TimeoutError as exc:
        raise GoogleCalendarError(f"Google OAuth {action} request timed out.") from exc
    except error.HTTPError as exc:
        body_text = exc.read().decode("utf-8", errors="ignore")
        raise GoogleCalendarError(
            f"Google OAuth {action} HTTP {exc.code}: {body_text or 'empty response body'}",
            status_code=401 if exc.code in {400, 401} else exc.code,
        ) from exc
    except error.URLError as exc:
        raise GoogleCalendarError(
            f"Google OAuth {action} connection error: {exc.reason}",
        ) from exc

    try:
        payload = json.loads(response_body.decode("utf-8"))
    except json.JSONDecodeError as exc:
        raise GoogleCalendarError(f"Google OAuth {action} returned invalid JSON.") from exc
    if not isinstance(payload, dict):
        raise GoogleCalendarError(f"Google OAuth {action} response is not a JSON object.")
    return payload


def _rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.isoformat()
