from pydantic import BaseModel, Field

from milo.schemas.auth import CurrentUserResponse


class UpdateProfileRequest(BaseModel):
    full_name: str | None = Field(default=None, min_length=2, max_length=50)
    password: str | None = None


class UpdateAvatarRequest(BaseModel):
    avatar: str | None = None


class UserProfileResponse(BaseModel):
    success: bool = True
    user: CurrentUserResponse


class DeleteAccountResponse(BaseModel):
    success: bool = True
    message: str
