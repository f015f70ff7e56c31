from fastapi import APIRouter, Depends

from milo.schemas.assistant import AssistantChatRequest, AssistantChatResponse
from milo.schemas.auth import CurrentUserResponse
from milo.services.assistant_service import AssistantService
from milo.services.auth_service import require_current_user

router = APIRouter(prefix="/assistant", tags=["assistant"])


@router.post("/chat", response_model=AssistantChatResponse)
def chat(
    payload: AssistantChatRequest,
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> AssistantChatResponse:
    service = AssistantService()
    return service.chat(current_user, payload)
