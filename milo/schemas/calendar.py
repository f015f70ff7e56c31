from datetime import date, datetime

from pydantic import BaseModel, Field


class CalendarEventTime(BaseModel):
    date_time: datetime | None = None
    day: date | None = None
    time_zone: str | None = None


class CalendarEventCreateRequest(BaseModel):
    summary: str = Field(default="", max_length=500)
    description: str | None = None
    location: str | None = None
    natural_time: str | None = None
    timezone: str | None = None
    start: CalendarEventTime | None = None
    end: CalendarEventTime | None = None


class CalendarEventUpdateRequest(BaseModel):
    summary: str | None = Field(default=None, max_length=500)
    description: str | None = None
    location: str | None = None
    start: CalendarEventTime | None = None
    end: CalendarEventTime | None = None


class CalendarEventResponse(BaseModel):
    id: str
    summary: str = ""
    description: str | None = None
    location: str | None = None
    start: CalendarEventTime | None = None
    end: CalendarEventTime | None = None
    html_link: str | None = None


class CalendarAuthUrlResponse(BaseModel):
    url: str


class CalendarDeleteResponse(BaseModel):
    success: bool = True
