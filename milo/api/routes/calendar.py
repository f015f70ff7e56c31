from datetime import datetime

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse

from milo.schemas.auth import CurrentUserResponse, MessageResponse
from milo.schemas.calendar import (
    CalendarAuthUrlResponse,
    CalendarDeleteResponse,
    CalendarEventCreateRequest,
    CalendarEventResponse,
    CalendarEventUpdateRequest,
)
from milo.services.auth_service import require_current_user
from milo.services.calendar_service import CalendarService

router = APIRouter(prefix="/calendar", tags=["calendar"])


@router.get("/auth", response_model=CalendarAuthUrlResponse)
def get_authorization_url(
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> CalendarAuthUrlResponse:
    service = CalendarService()
    return service.build_authorization_url(current_user)


@router.get("/callback")
def handle_google_callback(
    code: str = Query(..., min_length=1),
    state: str = Query(default=""),
) -> RedirectResponse:
    service = CalendarService()
    return RedirectResponse(url=service.handle_callback(code=code, state=state), status_code=302)


@router.delete("/connection", response_model=MessageResponse)
def disconnect_calendar(
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> MessageResponse:
    service = CalendarService()
    return service.disconnect(current_user)


@router.get("/events", response_model=list[CalendarEventResponse])
def list_events(
    time_min: datetime | None = Query(default=None, alias="timeMin"),
    time_max: datetime | None = Query(default=None, alias="timeMax"),
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> list[CalendarEventResponse]:
    service = CalendarService()
    return service.list_events(current_user, time_min=time_min, time_max=time_max)


@router.get("/sync", response_model=list[CalendarEventResponse])
def sync_events(
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> list[CalendarEventResponse]:
    service = CalendarService()
    return service.sync_events(current_user)


@router.post("/events", response_model=CalendarEventResponse)
def create_event(
    payload: CalendarEventCreateRequest,
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> CalendarEventResponse:
    service = CalendarService()
    return service.create_event(current_user, payload)


@router.patch("/events/{event_id}", response_model=CalendarEventResponse)
def update_event(
    event_id: str,
    payload: CalendarEventUpdateRequest,
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> CalendarEventResponse:
    service = CalendarService()
    return service.update_event(current_user, event_id, payload)


@router.delete("/events/{event_id}", response_model=CalendarDeleteResponse)
def delete_event(
    event_id: str,
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> CalendarDeleteResponse:
    service = CalendarService()
    return service.delete_event(current_user, event_id)
