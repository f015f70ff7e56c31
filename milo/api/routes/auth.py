from fastapi import APIRouter, Depends

from milo.schemas.auth import (
    AuthTokenResponse,
    CurrentUserResponse,
    ForgotPasswordRequest,
    GoogleLoginRequest,
    LoginRequest,
    MessageResponse,
    RefreshTokenRequest,
    RegisterRequest,
    ResetPasswordRequest,
    SetPasswordRequest,
)
from milo.services.auth_service import AuthService, require_current_user

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=AuthTokenResponse)
def register(payload: RegisterRequest) -> AuthTokenResponse:
    service = AuthService()
    return service.register(payload)


@router.post("/login", response_model=AuthTokenResponse)
def login(payload: LoginRequest) -> AuthTokenResponse:
    service = AuthService()
    return service.login(payload)


@router.post("/refresh", response_model=AuthTokenResponse)
def refresh(payload: RefreshTokenRequest) -> AuthTokenResponse:
    service = AuthService()
    return service.refresh(payload)


@router.post("/google/login", response_model=AuthTokenResponse)
def login_with_google(payload: GoogleLoginRequest) -> AuthTokenResponse:
    service = AuthService()
    return service.login_with_google(payload)


@router.get("/me", response_model=CurrentUserResponse)
def get_me(
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> CurrentUserResponse:
    return current_user


@router.post("/logout", response_model=MessageResponse)
def logout(
    _: CurrentUserResponse = Depends(require_current_user),
) -> MessageResponse:
    service = AuthService()
    return service.logout()


@router.post("/forgot-password", response_model=MessageResponse)
def forgot_password(payload: ForgotPasswordRequest) -> MessageResponse:
    service = AuthService()
    return service.forgot_password(payload)


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(payload: ResetPasswordRequest) -> MessageResponse:
    service = AuthService()
    return service.reset_password(payload)


@router.post("/set-password", response_model=MessageResponse)
def set_password(
    payload: SetPasswordRequest,
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> MessageResponse:
    service = AuthService()
    return service.set_password(current_user, payload)
