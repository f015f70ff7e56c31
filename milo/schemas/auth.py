from pydantic import BaseModel


class CurrentUserResponse(BaseModel):
    id: str
    email: str
    full_name: str
    role: str
    google_avatar: str | None = None
    avatar: str | None = None
    google_connected: bool = False
    has_password: bool = True


class RegisterRequest(BaseModel):
    full_name: str
    email: str
    password: str


class LoginRequest(BaseModel):
    email: str
    password: str


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class GoogleLoginRequest(BaseModel):
    id_token: str


class AuthTokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in_seconds: int
    user: CurrentUserResponse


class ForgotPasswordRequest(BaseModel):
    email: str


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str


class SetPasswordRequest(BaseModel):
    new_password: str


class MessageResponse(BaseModel):
    message: str
