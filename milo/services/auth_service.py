from __future__ import annotations

from datetime import UTC, datetime, timedelta
import json
import logging
from typing import Any
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from milo.core.config import Settings, get_settings
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
from milo.services.mail_channels import EmailAuthMisconfiguredError, MailDeliveryError
from milo.services.password_reset_notifier import PasswordResetNotifier
from milo.services.security_utils import (
    ACCESS_TOKEN_TYPE,
    REFRESH_TOKEN_TYPE,
    create_signed_token,
    decode_signed_token,
    generate_reset_token,
    hash_password,
    hash_reset_token,
    verify_password,
)
from milo.services.user_store import UserStore, create_user_store

logger = logging.getLogger(__name__)

_HTTP_BEARER = HTTPBearer(auto_error=False)
_GOOGLE_OAUTH_TOKEN_INFO_URL = "https://oauth2.googleapis.com/tokeninfo"

MIN_PASSWORD_LENGTH = 6
FORGOT_PASSWORD_UNKNOWN_EMAIL_MESSAGE = "Si el correo existe, recibirás un enlace de recuperación."
FORGOT_PASSWORD_SENT_MESSAGE = (
    "Si el correo electrónico está registrado, recibirás un enlace de recuperación. "
    "Por favor, revisa tu bandeja de entrada y carpeta de spam."
)
LOGOUT_MESSAGE = "Sesión cerrada correctamente (el token se borra en cliente)."


class AuthService:
    def __init__(
        self,
        settings: Settings | None = None,
        user_store: UserStore | None = None,
        notifier: PasswordResetNotifier | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.user_store = user_store or create_user_store(self.settings)
        self._notifier = notifier

    @property
    def notifier(self) -> PasswordResetNotifier:
        if self._notifier is None:
            self._notifier = PasswordResetNotifier(self.settings)
        return self._notifier

    def register(self, payload: RegisterRequest) -> AuthTokenResponse:
        full_name = payload.full_name.strip()
        email = str(payload.email).strip().lower()
        password = payload.password

        if len(full_name) < 2:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="full_name must contain at least 2 characters.",
            )
        if len(email) < 3 or "@" not in email:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="email must be a valid email address.",
            )
        validate_new_password(password)

        if self.user_store.get_user_by_email(email):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Este email ya está registrado.",
            )

        try:
            user_record = self.user_store.create_user(
                email=email,
                full_name=full_name,
                password_hash=hash_password(password),
                role="user",
            )
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Este email ya está registrado.",
            ) from exc
        logger.info("Registered user id=%s", user_record["_id"])
        return self._build_auth_token_response(user_record)

    def login(self, payload: LoginRequest) -> AuthTokenResponse:
        email = str(payload.email).strip().lower()
        user_record = self.user_store.get_user_by_email(email)
        if not user_record:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Credenciales inválidas",
            )

        stored_hash = user_record.get("password_hash")
        if not stored_hash:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=(
                    "Usuario registrado con Google. Puedes establecer una contraseña desde tu "
                    "perfil o usar el login con Google."
                ),
            )
        if not verify_password(payload.password, str(stored_hash)):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Credenciales inválidas",
            )

        return self._build_auth_token_response(user_record)

    def refresh(self, payload: RefreshTokenRequest) -> AuthTokenResponse:
        claims = decode_signed_token(
            payload.refresh_token,
            self.settings.auth_refresh_secret_key,
            expected_type=REFRESH_TOKEN_TYPE,
        )
        subject = claims.get("sub") if claims else None
        user_record = self.user_store.get_user_by_id(subject) if isinstance(subject, str) else None
        if not user_record:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Refresh token inválido",
            )
        return self._build_auth_token_response(user_record)

    def login_with_google(self, payload: GoogleLoginRequest) -> AuthTokenResponse:
        id_token = payload.id_token.strip()
        if not id_token:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token de Google no proporcionado",
            )
        if not self.settings.google_client_id.strip():
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Configuración de Google no disponible",
            )

        token_info = self._validate_google_id_token(id_token)
        email = str(token_info.get("email", "")).strip().lower()
        if not email:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Google no proporcionó un email válido.",
            )
        if str(token_info.get("email_verified", "true")).lower() not in {"true", "1"}:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="El email de Google no está verificado.",
            )

        picture = str(token_info.get("picture", "")).strip() or None
        user_record = self.user_store.get_user_by_email(email)
        if not user_record:
            user_record = self.user_store.create_user(
                email=email,
                full_name=str(token_info.get("name", "")).strip() or "Usuario",
                password_hash=None,
                role="user",
                google_avatar=picture,
            )
            logger.info("Created user id=%s from Google login", user_record["_id"])
        elif picture and user_record.get("google_avatar") != picture:
            user_record = self.user_store.update_user(
                str(user_record["_id"]),
                {"google_avatar": picture},
            ) or user_record

        return self._build_auth_token_response(user_record)

    def logout(self) -> MessageResponse:
        return MessageResponse(message=LOGOUT_MESSAGE)

    def forgot_password(self, payload: ForgotPasswordRequest) -> MessageResponse:
        email = str(payload.email).strip().lower()
        user_record = self.user_store.get_user_by_email(email)
        if not user_record:
            logger.info("Password reset requested for unknown email")
            return MessageResponse(message=FORGOT_PASSWORD_UNKNOWN_EMAIL_MESSAGE)

        user_id = str(user_record["_id"])
        reset_token, token_hash = generate_reset_token()
        self.user_store.save_reset_password_token(
            user_id,
            token_hash=token_hash,
            expires_at=datetime.now(UTC)
            + timedelta(minutes=self.settings.password_reset_token_ttl_minutes),
        )

        try:
            self.notifier.send_password_reset_email(
                recipient=email,
                reset_token=reset_token,
                is_first_time_password=not user_record.get("password_hash"),
            )
        except MailDeliveryError as exc:
            self.user_store.clear_reset_password_token(user_id)
            if isinstance(exc, EmailAuthMisconfiguredError):
                logger.error("Password reset email not sent, mail relay misconfigured: %s", exc)
                raise HTTPException(
                    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                    detail=(
                        "El servicio de email no está configurado correctamente. "
                        "Por favor, intenta más tarde."
                    ),
                ) from exc
            logger.error("Password reset email not sent: %s", exc)
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=(
                    "No se pudo enviar el email de recuperación. Por favor, verifica que tu "
                    "email esté registrado correctamente o intenta más tarde."
                ),
            ) from exc
        except Exception:
            self.user_store.clear_reset_password_token(user_id)
            logger.exception("Password reset email failed unexpectedly")
            raise

        return MessageResponse(message=FORGOT_PASSWORD_SENT_MESSAGE)

    def reset_password(self, payload: ResetPasswordRequest) -> MessageResponse:
        validate_new_password(payload.new_password)
        user_record = self.user_store.find_user_by_valid_reset_token(
            hash_reset_token(payload.token.strip()),
        )
        if not user_record:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Token inválido o expirado. Solicita un nuevo enlace de recuperación.",
            )

        self.user_store.update_password(
            str(user_record["_id"]),
            hash_password(payload.new_password),
        )
        logger.info("Password reset completed for user id=%s", user_record["_id"])
        return MessageResponse(message="Contraseña actualizada correctamente.")

    def set_password(
        self,
        current_user: CurrentUserResponse,
        payload: SetPasswordRequest,
    ) -> MessageResponse:
        validate_new_password(payload.new_password)
        user_record = self.user_store.get_user_by_id(current_user.id)
        if not user_record:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Usuario no encontrado.",
            )
        if user_record.get("password_hash"):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="La cuenta ya tiene una contraseña. Usa la recuperación de contraseña.",
            )

        self.user_store.update_password(current_user.id, hash_password(payload.new_password))
        return MessageResponse(
            message=(
                "Contraseña establecida correctamente. Ahora puedes iniciar sesión con "
                "email y contraseña."
            ),
        )

    def get_current_user_from_token(self, access_token: str) -> CurrentUserResponse:
        payload = decode_signed_token(
            access_token,
            self.settings.auth_secret_key,
            expected_type=ACCESS_TOKEN_TYPE,
        )
        if not payload:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or expired access token.",
            )

        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject.strip():
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid access token payload.",
            )

        user_record = self.user_store.get_user_by_id(subject)
        if not user_record:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="User not found for this access token.",
            )
        return to_current_user_response(user_record)

    def _build_auth_token_response(self, user_record: dict[str, Any]) -> AuthTokenResponse:
        current_user = to_current_user_response(user_record)
        claims = {"sub": current_user.id, "email": current_user.email}
        access_token, expires_in_seconds = create_signed_token(
            claims={**claims, "role": current_user.role},
            secret_key=self.settings.auth_secret_key,
            ttl_minutes=self.settings.auth_token_ttl_minutes,
            token_type=ACCESS_TOKEN_TYPE,
        )
        refresh_token, _ = create_signed_token(
            claims=claims,
            secret_key=self.settings.auth_refresh_secret_key,
            ttl_minutes=self.settings.auth_refresh_token_ttl_minutes,
            token_type=REFRESH_TOKEN_TYPE,
        )
        return AuthTokenResponse(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in_seconds=expires_in_seconds,
            user=current_user,
        )

    def _validate_google_id_token(self, id_token: str) -> dict[str, Any]:
        query = urlencode({"id_token": id_token})
        request = Request(f"{_GOOGLE_OAUTH_TOKEN_INFO_URL}?{query}", method="GET")
        try:
            with urlopen(request, timeout=15) as response:
                raw_payload = response.read().decode("utf-8")
        except Exception as exc:
            logger.warning("Google id_token validation failed: %s", exc)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token de Google inválido",
            ) from exc

        try:
            payload = json.loads(raw_payload)
        except json.JSONDecodeError as exc:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Invalid Google token validation response.",
            ) from exc
        if not isinstance(payload, dict):
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Invalid Google token validation payload.",
            )

        audience = str(payload.get("aud", "")).strip()
        if audience != self.settings.google_client_id.strip():
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Google token audience mismatch.",
            )
        return payload


def to_current_user_response(user_record: dict[str, Any]) -> CurrentUserResponse:
    return CurrentUserResponse(
        id=str(user_record.get("_id", "")),
        email=str(user_record.get("email", "")),
        full_name=str(user_record.get("full_name", "")),
        role=str(user_record.get("role", "user")),
        google_avatar=user_record.get("google_avatar") or None,
        avatar=user_record.get("avatar") or user_record.get("google_avatar") or None,
        google_connected=bool(user_record.get("google_connected")),
        has_password=bool(user_record.get("password_hash")),
    )


def validate_new_password(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"La contraseña debe tener al menos {MIN_PASSWORD_LENGTH} caracteres",
        )


def require_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_HTTP_BEARER),
) -> CurrentUserResponse:
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required.",
        )
    service = AuthService()
    return service.get_current_user_from_token(credentials.credentials)
