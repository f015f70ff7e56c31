from typing import Literal

from pydantic import BaseModel, Field


class ChatHistoryMessage(BaseModel):
    sender: Literal["user", "assistant", "model"]
    text: str


class AssistantChatRequest(BaseModel):
    message: str = Field(min_length=1)
    history: list[ChatHistoryMessage] = Field(default_factory=list)
    timezone: str | None = None
    local_time: str | None = None


class AssistantChatResponse(BaseModel):
    action: str
    reply: str
    title: str | None = None
    time: str | None = None
    location: str | None = None
    description: str | None = None
