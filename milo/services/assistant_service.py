from __future__ import annotations

import logging

from milo.core.config import Settings, get_settings
from milo.schemas.assistant import AssistantChatRequest, AssistantChatResponse, ChatHistoryMessage
from milo.schemas.auth import CurrentUserResponse
from milo.services.conversation_history import ConversationTurn
from milo.services.intent_classifier import IntentClassifier

logger = logging.getLogger(__name__)


class AssistantService:
    def __init__(
        self,
        settings: Settings | None = None,
        classifier: IntentClassifier | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.classifier = classifier or IntentClassifier(self.settings)

    def chat(
        self,
        current_user: CurrentUserResponse,
        payload: AssistantChatRequest,
    ) -> AssistantChatResponse:
        logger.info(
            "Assistant chat for user id=%s history_turns=%s",
            current_user.id,
            len(payload.history),
        )
        result = self.classifier.classify(
            payload.message,
            to_conversation_turns(payload.history),
            timezone=payload.timezone,
            local_time=payload.local_time,
        )
        return AssistantChatResponse(**result.to_dict())


def to_conversation_turns(history: list[ChatHistoryMessage]) -> list[ConversationTurn]:
    return [
        ConversationTurn(
            speaker="user" if message.sender == "user" else "assistant",
            text=message.text,
        )
        for message in history
        if message.text.strip()
    ]
