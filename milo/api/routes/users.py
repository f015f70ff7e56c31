from fastapi import APIRouter, Depends

from milo.schemas.auth import CurrentUserResponse
from milo.schemas.user import (
    DeleteAccountResponse,
    UpdateAvatarRequest,
    UpdateProfileRequest,
    UserProfileResponse,
)
from milo.services.auth_service import require_current_user
from milo.services.users_service import UsersService

router = APIRouter(prefix="/users", tags=["users"])


@router.put("/me", response_model=UserProfileResponse)
def update_profile(
    payload: UpdateProfileRequest,
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> UserProfileResponse:
    service = UsersService()
    return service.update_profile(current_user, payload)


@router.put("/avatar", response_model=UserProfileResponse)
def update_avatar(
    payload: UpdateAvatarRequest,
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> UserProfileResponse:
    service = UsersService()
    return service.update_avatar(current_user, payload)


@router.delete("/me", response_model=DeleteAccountResponse)
def delete_account(
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> DeleteAccountResponse:
    service = UsersService()
    return service.delete_account(current_user)
