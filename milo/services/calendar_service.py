from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
import logging
import secrets
from typing import Any

from fastapi import HTTPException, status

from milo.core.config import Settings, get_settings
from milo.schemas.auth import CurrentUserResponse, MessageResponse
from milo.schemas.calendar import (
    CalendarAuthUrlResponse,
    CalendarDeleteResponse,
    CalendarEventCreateRequest,
    CalendarEventResponse,
    CalendarEventTime,
    CalendarEventUpdateRequest,
)
from milo.services.google_calendar_client import (
    GoogleCalendarClient,
    GoogleCalendarError,
    build_consent_url,
    exchange_authorization_code,
    expires_at_from_token_payload,
)
from milo.services.security_utils import create_signed_token, decode_signed_token
from milo.services.time_resolver import NaturalTimeResolver, UnparseableTimeExpression
from milo.services.user_store import UserStore, create_user_store

logger = logging.getLogger(__name__)

OAUTH_STATE_TOKEN_TYPE = "google_calendar_state"
OAUTH_STATE_TTL_MINUTES = 10
DEFAULT_EVENT_SUMMARY = "Evento sin título"
DEGENERATE_EVENT_EXTENSION = timedelta(minutes=30)
SYNC_WINDOW = timedelta(days=30)

_NOT_CONNECTED_DETAIL = (
    "Tu cuenta de Google Calendar no está conectada. Por favor, ve a tu perfil y conecta "
    "tu cuenta de Google para poder crear eventos."
)


class CalendarService:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        user_store: UserStore | None = None,
        time_resolver: NaturalTimeResolver | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.user_store = user_store or create_user_store(self.settings)
        self.time_resolver = time_resolver or NaturalTimeResolver()
        self._clock = clock or (lambda: datetime.now(UTC))

    def build_authorization_url(self, current_user: CurrentUserResponse) -> CalendarAuthUrlResponse:
        self._assert_google_oauth_is_configured()
        state_token, _ = create_signed_token(
            claims={"sub": current_user.id, "nonce": secrets.token_urlsafe(16)},
            secret_key=self.settings.auth_secret_key,
            ttl_minutes=OAUTH_STATE_TTL_MINUTES,
            token_type=OAUTH_STATE_TOKEN_TYPE,
        )
        return CalendarAuthUrlResponse(
            url=build_consent_url(
                client_id=self.settings.google_client_id,
                redirect_uri=self.settings.google_calendar_redirect_uri,
                state=state_token,
            ),
        )

    def handle_callback(self, *, code: str, state: str) -> str:
        """Store the user's Calendar tokens and return the frontend redirect URL."""
        calendar_page = f"{self.settings.frontend_base_url}/panel/calendario"
        claims = decode_signed_token(
            state,
            self.settings.auth_secret_key,
            expected_type=OAUTH_STATE_TOKEN_TYPE,
        )
        user_id = claims.get("sub") if claims else None
        if not isinstance(user_id, str) or not self.user_store.get_user_by_id(user_id):
            logger.warning("Google Calendar callback with invalid state")
            return f"{calendar_page}?error=no_user"

        try:
            token_payload = exchange_authorization_code(
                code=code,
                client_id=self.settings.google_client_id,
                client_secret=self.settings.google_client_secret,
                redirect_uri=self.settings.google_calendar_redirect_uri,
                timeout_seconds=self.settings.google_calendar_api_timeout_seconds,
            )
        except GoogleCalendarError as exc:
            logger.error("Google Calendar code exchange failed for user id=%s: %s", user_id, exc)
            return f"{calendar_page}?error=token_failure"

        refresh_token = token_payload.get("refresh_token")
        self.user_store.update_google_calendar_tokens(
            user_id,
            access_token=str(token_payload["access_token"]).strip(),
            refresh_token=refresh_token if isinstance(refresh_token, str) else None,
            expires_at=expires_at_from_token_payload(token_payload, now=self._clock()),
        )
        logger.info("Google Calendar connected for user id=%s", user_id)
        return f"{calendar_page}?connected=true"

    def disconnect(self, current_user: CurrentUserResponse) -> MessageResponse:
        if not self.user_store.disconnect_google_calendar(current_user.id):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Usuario no encontrado",
            )
        return MessageResponse(message="Google Calendar desconectado.")

    def list_events(
        self,
        current_user: CurrentUserResponse,
        *,
        time_min: datetime | None = None,
        time_max: datetime | None = None,
    ) -> list[CalendarEventResponse]:
        client = self._client_for(current_user.id)
        try:
            raw_events = client.list_events(time_min=time_min, time_max=time_max)
        except GoogleCalendarError as exc:
            raise self._translate_error(exc, action="obteniendo eventos") from exc
        finally:
            self._persist_refreshed_tokens(current_user.id, client)
        return [to_event_response(raw_event) for raw_event in raw_events]

    def sync_events(self, current_user: CurrentUserResponse) -> list[CalendarEventResponse]:
        """Events from 30 days ago up to 30 days ahead."""
        now = self._clock()
        return self.list_events(
            current_user,
            time_min=now - SYNC_WINDOW,
            time_max=now + SYNC_WINDOW,
        )

    def create_event(
        self,
        current_user: CurrentUserResponse,
        payload: CalendarEventCreateRequest,
    ) -> CalendarEventResponse:
        body: dict[str, Any] = {
            "summary": payload.summary.strip() or DEFAULT_EVENT_SUMMARY,
            "description": payload.description or "",
        }
        if payload.location:
            body["location"] = payload.location
        body.update(self._resolve_event_window(payload))
        fix_degenerate_window(body)

        client = self._client_for(current_user.id)
        try:
            created = client.insert_event(body)
        except GoogleCalendarError as exc:
            raise self._translate_error(exc, action="creando evento") from exc
        finally:
            self._persist_refreshed_tokens(current_user.id, client)
        logger.info("Created Google Calendar event id=%s for user id=%s", created.get("id"), current_user.id)
        return to_event_response(created)

    def update_event(
        self,
        current_user: CurrentUserResponse,
        event_id: str,
        payload: CalendarEventUpdateRequest,
    ) -> CalendarEventResponse:
        body: dict[str, Any] = {}
        if payload.summary is not None:
            body["summary"] = payload.summary.strip() or "Sin título"
        if payload.description is not None:
            body["description"] = payload.description
        if payload.location is not None:
            body["location"] = payload.location
        if payload.start is not None:
            body["start"] = self._to_google_time(payload.start)
        if payload.end is not None:
            body["end"] = self._to_google_time(payload.end)
        if "start" in body and "end" in body:
            fix_degenerate_window(body)

        client = self._client_for(current_user.id)
        try:
            updated = client.update_event(event_id, body)
        except GoogleCalendarError as exc:
            raise self._translate_error(exc, action="actualizando evento") from exc
        finally:
            self._persist_refreshed_tokens(current_user.id, client)
        return to_event_response(updated)

    def delete_event(self, current_user: CurrentUserResponse, event_id: str) -> CalendarDeleteResponse:
        client = self._client_for(current_user.id)
        try:
            client.delete_event(event_id)
        except GoogleCalendarError as exc:
            raise self._translate_error(exc, action="eliminando evento") from exc
        finally:
            self._persist_refreshed_tokens(current_user.id, client)
        return CalendarDeleteResponse(success=True)

    def _resolve_event_window(self, payload: CalendarEventCreateRequest) -> dict[str, Any]:
        if payload.natural_time and payload.natural_time.strip():
            timezone = (payload.timezone or "").strip() or self.settings.google_calendar_event_timezone
            try:
                parsed_range = self.time_resolver.resolve(
                    payload.natural_time,
                    reference=self._clock(),
                    timezone=timezone,
                )
            except UnparseableTimeExpression as exc:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=(
                        f"No pude entender la fecha '{exc.phrase}'. Probá con algo como "
                        "'mañana a las 15' o 'el viernes a las 10'."
                    ),
                ) from exc
            except ValueError as exc:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=str(exc),
                ) from exc
            return parsed_range.to_calendar_payload()

        if payload.start is not None and payload.end is not None:
            return {
                "start": self._to_google_time(payload.start),
                "end": self._to_google_time(payload.end),
            }

        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                'El evento debe tener un campo "natural_time" (chat) o "start" y "end" '
                "válidos (modal)."
            ),
        )

    def _to_google_time(self, value: CalendarEventTime) -> dict[str, str]:
        if value.date_time is not None:
            return {
                "dateTime": value.date_time.isoformat(),
                "timeZone": value.time_zone or self.settings.google_calendar_event_timezone,
            }
        if value.day is not None:
            return {"date": value.day.isoformat()}
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Event start/end requires date_time or day.",
        )

    def _client_for(self, user_id: str) -> GoogleCalendarClient:
        user_record = self.user_store.get_user_by_id(user_id)
        if not user_record:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Usuario no encontrado")

        access_token = user_record.get("google_calendar_access_token")
        refresh_token = user_record.get("google_calendar_refresh_token")
        if not access_token or not refresh_token:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=_NOT_CONNECTED_DETAIL)

        client = GoogleCalendarClient(
            access_token=str(access_token),
            refresh_token=str(refresh_token),
            client_id=self.settings.google_client_id,
            client_secret=self.settings.google_client_secret,
            calendar_id=self.settings.google_calendar_id,
            timeout_seconds=self.settings.google_calendar_api_timeout_seconds,
        )

        expires_at = user_record.get("google_calendar_token_expires_at")
        if isinstance(expires_at, datetime) and _as_utc(expires_at) < self._clock():
            try:
                client.refresh_access_token()
            except GoogleCalendarError as exc:
                logger.warning("Google Calendar token refresh failed for user id=%s: %s", user_id, exc)
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="No se pudo refrescar el token de Google. Por favor, reconecta tu cuenta.",
                ) from exc
            self._persist_refreshed_tokens(user_id, client)
        return client

    def _persist_refreshed_tokens(self, user_id: str, client: GoogleCalendarClient) -> None:
        if not client.token_refreshed:
            return
        self.user_store.update_google_calendar_tokens(
            user_id,
            access_token=client.access_token,
            refresh_token=client.refresh_token,
            expires_at=client.access_token_expires_at,
        )
        client.token_refreshed = False

    def _translate_error(self, exc: GoogleCalendarError, *, action: str) -> HTTPException:
        logger.error("Google Calendar error %s: %s", action, exc)
        if exc.status_code == 404:
            return HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Evento no encontrado en Google Calendar.",
            )
        if exc.status_code in {401, 403}:
            return HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token de Google inválido o sin permisos.",
            )
        if exc.status_code == 400:
            return HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Solicitud inválida a Google Calendar: {exc}",
            )
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Error {action} en Google Calendar.",
        )

    def _assert_google_oauth_is_configured(self) -> None:
        if (
            not self.settings.google_client_id.strip()
            or not self.settings.google_client_secret.strip()
            or not self.settings.google_calendar_redirect_uri.strip()
        ):
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Google OAuth is not configured.",
            )


def fix_degenerate_window(body: dict[str, Any]) -> None:
    """Widen a zero-length window in place: timed gets 30 minutes, all-day one day."""
    start = body.get("start") or {}
    end = body.get("end") or {}
    if start.get("dateTime") and end.get("dateTime"):
        start_at = datetime.fromisoformat(start["dateTime"])
        end_at = datetime.fromisoformat(end["dateTime"])
        if start_at == end_at:
            end["dateTime"] = (start_at + DEGENERATE_EVENT_EXTENSION).isoformat()
    elif start.get("date") and end.get("date"):
        start_day = date.fromisoformat(start["date"][:10])
        if start["date"][:10] == end["date"][:10]:
            end["date"] = (start_day + timedelta(days=1)).isoformat()


def to_event_response(raw_event: dict[str, Any]) -> CalendarEventResponse:
    return CalendarEventResponse(
        id=str(raw_event.get("id", "")),
        summary=str(raw_event.get("summary") or ""),
        description=raw_event.get("description"),
        location=raw_event.get("location"),
        start=_from_google_time(raw_event.get("start")),
        end=_from_google_time(raw_event.get("end")),
        html_link=raw_event.get("htmlLink"),
    )


def _from_google_time(raw_value: Any) -> CalendarEventTime | None:
    if not isinstance(raw_value, dict):
        return None
    raw_date_time = raw_value.get("dateTime")
    raw_day = raw_value.get("date")
    try:
        return CalendarEventTime(
            date_time=datetime.fromisoformat(raw_date_time) if raw_date_time else None,
            day=date.fromisoformat(raw_day) if raw_day else None,
            time_zone=raw_value.get("timeZone"),
        )
    except ValueError:
        logger.warning("Ignoring unparseable Google Calendar time value=%r", raw_value)
        return None


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
