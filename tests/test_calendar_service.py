import io
import json
from datetime import UTC, date, datetime, timedelta
from urllib import error, parse

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from milo.core.config import Settings, get_settings
from milo.main import app
from milo.schemas.auth import CurrentUserResponse
from milo.schemas.calendar import (
    CalendarEventCreateRequest,
    CalendarEventTime,
    CalendarEventUpdateRequest,
)
from milo.services.auth_service import to_current_user_response
from milo.services.calendar_service import (
    OAUTH_STATE_TOKEN_TYPE,
    CalendarService,
    fix_degenerate_window,
)
from milo.services.security_utils import create_signed_token, decode_signed_token
from milo.services.user_store import InMemoryUserStore, clear_user_store_cache

BUENOS_AIRES = "America/Argentina/Buenos_Aires"
# Tuesday 2025-06-10 12:00 in Buenos Aires
NOW = datetime(2025, 6, 10, 15, 0, tzinfo=UTC)


class _MockResponse:
    def __init__(self, payload: dict[str, object] | None) -> None:
        self._payload = json.dumps(payload).encode("utf-8") if payload is not None else b""

    def __enter__(self) -> "_MockResponse":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # type: ignore[no-untyped-def]
        return False

    def read(self) -> bytes:
        return self._payload


class _FakeGoogle:
    def __init__(self) -> None:
        self.requests: list[dict[str, object]] = []
        self.fail_with: int | None = None

    def urlopen(self, req, timeout=10):  # type: ignore[no-untyped-def]
        body = req.data.decode("utf-8") if req.data else ""
        self.requests.append(
            {
                "method": req.get_method(),
                "url": req.full_url,
                "body": body,
                "authorization": req.headers.get("Authorization", ""),
            },
        )
        if "oauth2.googleapis.com/token" in req.full_url:
            form = parse.parse_qs(body)
            if form.get("code") == ["bad-code"]:
                raise error.HTTPError(
                    url=req.full_url,
                    code=400,
                    msg="error",
                    hdrs=None,
                    fp=io.BytesIO(b'{"error": "invalid_grant"}'),
                )
            return _MockResponse(
                {
                    "access_token": "access-2",
                    "refresh_token": "refresh-2",
                    "expires_in": 3600,
                },
            )
        if self.fail_with is not None:
            raise error.HTTPError(
                url=req.full_url,
                code=self.fail_with,
                msg="error",
                hdrs=None,
                fp=io.BytesIO(b'{"error": {"message": "failure"}}'),
            )
        if req.get_method() == "DELETE":
            return _MockResponse(None)
        if req.get_method() == "GET":
            return _MockResponse(
                {
                    "items": [
                        {
                            "id": "evt-1",
                            "summary": "Dentista",
                            "start": {"dateTime": "2025-06-11T15:00:00-03:00"},
                            "end": {"dateTime": "2025-06-11T16:00:00-03:00"},
                            "htmlLink": "https://calendar.google.com/event?eid=1",
                        },
                        {
                            "id": "evt-2",
                            "summary": "Feriado",
                            "start": {"date": "2025-06-20"},
                            "end": {"date": "2025-06-21"},
                        },
                    ],
                },
            )
        return _MockResponse({"id": "evt-new", **json.loads(body or "{}")})

    def last_event_body(self) -> dict[str, object]:
        for captured in reversed(self.requests):
            if "/calendar/v3/" in str(captured["url"]) and captured["body"]:
                return json.loads(str(captured["body"]))
        raise AssertionError("No Calendar request with a body was sent")


@pytest.fixture
def google(monkeypatch: pytest.MonkeyPatch) -> _FakeGoogle:
    fake = _FakeGoogle()
    monkeypatch.setattr("milo.services.google_calendar_client.request.urlopen", fake.urlopen)
    return fake


@pytest.fixture
def settings() -> Settings:
    return Settings(
        user_data_store="memory",
        google_client_id="google-client-id",
        google_client_secret="google-client-secret",
        google_calendar_redirect_uri="http://localhost:8000/api/calendar/callback",
        frontend_base_url="https://app.example.com/",
    )


@pytest.fixture
def store() -> InMemoryUserStore:
    return InMemoryUserStore()


@pytest.fixture
def service(settings: Settings, store: InMemoryUserStore) -> CalendarService:
    return CalendarService(settings, user_store=store, clock=lambda: NOW)


def _connected_user(
    store: InMemoryUserStore,
    *,
    expires_at: datetime | None = None,
) -> CurrentUserResponse:
    user = store.create_user(email="cal@example.com", full_name="Cal User", password_hash=None)
    store.update_google_calendar_tokens(
        str(user["_id"]),
        access_token="access-1",
        refresh_token="refresh-1",
        expires_at=expires_at or NOW + timedelta(hours=1),
    )
    return to_current_user_response(store.get_user_by_id(str(user["_id"])) or {})


def test_create_event_from_natural_time(
    service: CalendarService,
    store: InMemoryUserStore,
    google: _FakeGoogle,
) -> None:
    user = _connected_user(store)

    created = service.create_event(
        user,
        CalendarEventCreateRequest(summary="Dentista", natural_time="mañana a las 15"),
    )

    body = google.last_event_body()
    assert body["summary"] == "Dentista"
    assert body["start"] == {"dateTime": "2025-06-11T15:00:00-03:00", "timeZone": BUENOS_AIRES}
    assert body["end"] == {"dateTime": "2025-06-11T16:00:00-03:00", "timeZone": BUENOS_AIRES}
    assert created.id == "evt-new"
    assert created.start is not None
    assert created.start.date_time == datetime.fromisoformat("2025-06-11T15:00:00-03:00")
    assert google.requests[-1]["authorization"] == "Bearer access-1"


def test_create_event_defaults_summary_and_widens_zero_length_window(
    service: CalendarService,
    store: InMemoryUserStore,
    google: _FakeGoogle,
) -> None:
    user = _connected_user(store)
    moment = CalendarEventTime(date_time=datetime(2025, 6, 11, 10, 0), time_zone="UTC")

    service.create_event(user, CalendarEventCreateRequest(start=moment, end=moment))

    body = google.last_event_body()
    assert body["summary"] == "Evento sin título"
    assert body["start"]["dateTime"] == "2025-06-11T10:00:00"
    assert body["end"]["dateTime"] == "2025-06-11T10:30:00"


def test_create_all_day_event_with_same_day_end_spans_one_day(
    service: CalendarService,
    store: InMemoryUserStore,
    google: _FakeGoogle,
) -> None:
    user = _connected_user(store)
    day = CalendarEventTime(day=date(2025, 6, 20))

    service.create_event(user, CalendarEventCreateRequest(summary="Feriado", start=day, end=day))

    body = google.last_event_body()
    assert body["start"] == {"date": "2025-06-20"}
    assert body["end"] == {"date": "2025-06-21"}


def test_create_event_rejects_unparseable_phrase(
    service: CalendarService,
    store: InMemoryUserStore,
    google: _FakeGoogle,
) -> None:
    user = _connected_user(store)

    with pytest.raises(HTTPException) as exc_info:
        service.create_event(user, CalendarEventCreateRequest(natural_time="xyzzy plugh"))

    assert exc_info.value.status_code == 400
    assert "xyzzy plugh" in str(exc_info.value.detail)
    assert google.requests == []


def test_create_event_requires_a_time(
    service: CalendarService,
    store: InMemoryUserStore,
    google: _FakeGoogle,
) -> None:
    user = _connected_user(store)

    with pytest.raises(HTTPException) as exc_info:
        service.create_event(user, CalendarEventCreateRequest(summary="Sin hora"))

    assert exc_info.value.status_code == 400


def test_calendar_calls_require_connected_account(
    service: CalendarService,
    store: InMemoryUserStore,
    google: _FakeGoogle,
) -> None:
    user_record = store.create_user(email="plain@example.com", full_name="Plain", password_hash=None)

    with pytest.raises(HTTPException) as exc_info:
        service.list_events(to_current_user_response(user_record))

    assert exc_info.value.status_code == 401
    assert google.requests == []


def test_expired_access_token_is_refreshed_and_persisted(
    service: CalendarService,
    store: InMemoryUserStore,
    google: _FakeGoogle,
) -> None:
    user = _connected_user(store, expires_at=NOW - timedelta(minutes=5))

    events = service.list_events(user)

    assert [event.id for event in events] == ["evt-1", "evt-2"]
    assert events[1].start is not None
    assert events[1].start.day == date(2025, 6, 20)
    assert "oauth2.googleapis.com/token" in str(google.requests[0]["url"])
    assert google.requests[1]["authorization"] == "Bearer access-2"
    stored = store.get_user_by_id(user.id)
    assert stored is not None
    assert stored["google_calendar_access_token"] == "access-2"
    assert stored["google_calendar_refresh_token"] == "refresh-2"


def test_update_event_sends_only_given_fields(
    service: CalendarService,
    store: InMemoryUserStore,
    google: _FakeGoogle,
) -> None:
    user = _connected_user(store)

    service.update_event(user, "evt-1", CalendarEventUpdateRequest(location="Consultorio"))

    assert google.requests[-1]["method"] == "PATCH"
    assert google.last_event_body() == {"location": "Consultorio"}


def test_missing_event_maps_to_404(
    service: CalendarService,
    store: InMemoryUserStore,
    google: _FakeGoogle,
) -> None:
    user = _connected_user(store)
    google.fail_with = 404

    with pytest.raises(HTTPException) as exc_info:
        service.delete_event(user, "gone")

    assert exc_info.value.status_code == 404


def test_google_server_error_maps_to_502(
    service: CalendarService,
    store: InMemoryUserStore,
    google: _FakeGoogle,
) -> None:
    user = _connected_user(store)
    google.fail_with = 500

    with pytest.raises(HTTPException) as exc_info:
        service.list_events(user)

    assert exc_info.value.status_code == 502


def test_sync_events_lists_thirty_days_around_now(
    service: CalendarService,
    store: InMemoryUserStore,
    google: _FakeGoogle,
) -> None:
    user = _connected_user(store)

    events = service.sync_events(user)

    assert [event.id for event in events] == ["evt-1", "evt-2"]
    query = parse.parse_qs(parse.urlsplit(str(google.requests[-1]["url"])).query)
    assert query["timeMin"] == [(NOW - timedelta(days=30)).isoformat()]
    assert query["timeMax"] == [(NOW + timedelta(days=30)).isoformat()]


def test_delete_event_returns_success(
    service: CalendarService,
    store: InMemoryUserStore,
    google: _FakeGoogle,
) -> None:
    user = _connected_user(store)

    assert service.delete_event(user, "evt-1").success is True
    assert google.requests[-1]["method"] == "DELETE"


def test_authorization_url_carries_signed_state(
    service: CalendarService,
    settings: Settings,
    store: InMemoryUserStore,
) -> None:
    user = to_current_user_response(
        store.create_user(email="auth@example.com", full_name="Auth", password_hash=None),
    )

    response = service.build_authorization_url(user)

    query = parse.parse_qs(parse.urlsplit(response.url).query)
    claims = decode_signed_token(
        query["state"][0],
        settings.auth_secret_key,
        expected_type=OAUTH_STATE_TOKEN_TYPE,
    )
    assert claims is not None
    assert claims["sub"] == user.id
    assert query["redirect_uri"] == ["http://localhost:8000/api/calendar/callback"]


def test_authorization_url_requires_google_configuration(store: InMemoryUserStore) -> None:
    service = CalendarService(Settings(google_client_id="", google_client_secret=""), user_store=store)
    user = to_current_user_response(
        store.create_user(email="auth@example.com", full_name="Auth", password_hash=None),
    )

    with pytest.raises(HTTPException) as exc_info:
        service.build_authorization_url(user)

    assert exc_info.value.status_code == 503


def test_callback_stores_tokens_and_redirects(
    service: CalendarService,
    settings: Settings,
    store: InMemoryUserStore,
    google: _FakeGoogle,
) -> None:
    user_record = store.create_user(email="cb@example.com", full_name="Callback", password_hash=None)
    state, _ = create_signed_token(
        claims={"sub": str(user_record["_id"])},
        secret_key=settings.auth_secret_key,
        ttl_minutes=10,
        token_type=OAUTH_STATE_TOKEN_TYPE,
    )

    redirect_url = service.handle_callback(code="good-code", state=state)

    assert redirect_url == "https://app.example.com/panel/calendario?connected=true"
    stored = store.get_user_by_id(str(user_record["_id"]))
    assert stored is not None
    assert stored["google_connected"] is True
    assert stored["google_calendar_access_token"] == "access-2"
    assert stored["google_calendar_token_expires_at"] == NOW + timedelta(seconds=3600)


def test_callback_reports_failed_code_exchange(
    service: CalendarService,
    settings: Settings,
    store: InMemoryUserStore,
    google: _FakeGoogle,
) -> None:
    user_record = store.create_user(email="cb@example.com", full_name="Callback", password_hash=None)
    state, _ = create_signed_token(
        claims={"sub": str(user_record["_id"])},
        secret_key=settings.auth_secret_key,
        ttl_minutes=10,
        token_type=OAUTH_STATE_TOKEN_TYPE,
    )

    redirect_url = service.handle_callback(code="bad-code", state=state)

    assert redirect_url == "https://app.example.com/panel/calendario?error=token_failure"


def test_callback_route_rejects_unknown_state(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("USER_DATA_STORE", "memory")
    monkeypatch.setenv("FRONTEND_BASE_URL", "https://app.example.com")
    clear_user_store_cache()
    get_settings.cache_clear()
    client = TestClient(app)

    try:
        response = client.get(
            "/api/calendar/callback",
            params={"code": "any-code", "state": "not-a-state"},
            follow_redirects=False,
        )
    finally:
        clear_user_store_cache()
        get_settings.cache_clear()

    assert response.status_code == 302
    assert response.headers["location"] == "https://app.example.com/panel/calendario?error=no_user"


def test_fix_degenerate_window_leaves_valid_ranges_untouched() -> None:
    body = {
        "start": {"dateTime": "2025-06-11T10:00:00-03:00"},
        "end": {"dateTime": "2025-06-11T11:00:00-03:00"},
    }

    fix_degenerate_window(body)

    assert body["end"]["dateTime"] == "2025-06-11T11:00:00-03:00"
