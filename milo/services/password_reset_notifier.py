from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from html import escape
import logging
from urllib.parse import quote

from milo.core.config import Settings, get_settings
from milo.services.mail_channels import (
    EmailAuthMisconfiguredError,
    EmailDeliveryUnavailableError,
    GmailApiMailChannel,
    MailChannel,
    MailDeliveryAttempt,
    MailMessage,
    MailSendResult,
    RetryingMailChannel,
    SendGridMailChannel,
)

logger = logging.getLogger(__name__)

_PROVIDER_LABELS = ("primary", "fallback")


def build_reset_url(frontend_base_url: str, token: str) -> str:
    return f"{frontend_base_url.rstrip('/')}/reset-password?token={quote(token, safe='')}"


def render_password_reset_message(
    *,
    recipient: str,
    reset_url: str,
    is_first_time_password: bool,
    expires_in_minutes: int,
) -> MailMessage:
    if is_first_time_password:
        title = "🔐 Establece tu contraseña"
        main_message = (
            "Te registraste con Google y ahora puedes establecer una contraseña para "
            "tener acceso dual a tu cuenta."
        )
        button_text = "Establecer contraseña"
        closing = (
            "Podrás seguir usando Google para iniciar sesión; esta contraseña es opcional "
            "y te da acceso dual."
        )
    else:
        title = "🔐 Recuperación de contraseña"
        main_message = "Has solicitado restablecer tu contraseña de Milo Assistant."
        button_text = "Restablecer contraseña"
        closing = "Si no solicitaste este cambio, puedes ignorar este email de forma segura."

    validity = f"Este enlace expirará en {_describe_minutes(expires_in_minutes)}."
    year = datetime.now(UTC).year
    safe_url = escape(reset_url, quote=True)

    html = f"""<!DOCTYPE html>
<html lang="es">
  <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background: #5469d4; color: #ffffff; padding: 30px; text-align: center; border-radius: 10px 10px 0 0;">
      <h1>{escape(title)}</h1>
    </div>
    <div style="background: #f9f9f9; padding: 30px; border-radius: 0 0 10px 10px;">
      <p>Hola,</p>
      <p>{escape(main_message)}</p>
      <div style="text-align: center;">
        <a href="{safe_url}" style="display: inline-block; padding: 12px 30px; background: #5469d4; color: #ffffff; text-decoration: none; border-radius: 5px;">{escape(button_text)}</a>
      </div>
      <p><strong>⚠️ Importante:</strong> {escape(validity)}</p>
      <p>{escape(closing)}</p>
      <p style="font-size: 12px; color: #666;">Si el botón no funciona, copia y pega este enlace en tu navegador:<br><a href="{safe_url}">{safe_url}</a></p>
    </div>
    <p style="text-align: center; font-size: 12px; color: #666;">© {year} Milo Assistant. Este es un email automático, por favor no respondas.</p>
  </body>
</html>
"""

    text = "\n".join(
        [
            f"{title} - Milo Assistant",
            "",
            "Hola,",
            "",
            main_message,
            "",
            f"Para continuar, visita el siguiente enlace:\n{reset_url}",
            "",
            f"⚠️ {validity}",
            "",
            closing,
            "",
            "---",
            f"© {year} Milo Assistant",
        ],
    )
    return MailMessage(to=recipient, subject=title, text=text, html=html)


class PasswordResetNotifier:
    """Delivers password-reset emails through an ordered list of mail channels."""

    def __init__(
        self,
        settings: Settings | None = None,
        channels: Sequence[MailChannel] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.channels = list(channels) if channels is not None else build_default_channels(self.settings)

    def send_password_reset_email(
        self,
        *,
        recipient: str,
        reset_token: str,
        is_first_time_password: bool = False,
    ) -> MailSendResult:
        message = render_password_reset_message(
            recipient=recipient,
            reset_url=build_reset_url(self.settings.frontend_base_url, reset_token),
            is_first_time_password=is_first_time_password,
            expires_in_minutes=self.settings.password_reset_token_ttl_minutes,
        )
        logger.info(
            "Sending %s email to %s",
            "password setup" if is_first_time_password else "password reset",
            recipient,
        )
        return self.deliver(message)

    def deliver(self, message: MailMessage) -> MailSendResult:
        attempts: list[MailDeliveryAttempt] = []
        errors: dict[str, str] = {}
        auth_failure: EmailAuthMisconfiguredError | None = None

        for index, channel in enumerate(self.channels):
            provider = _PROVIDER_LABELS[min(index, len(_PROVIDER_LABELS) - 1)]
            try:
                result = channel.send(message)
            except EmailAuthMisconfiguredError as exc:
                logger.error(
                    "Mail channel %s (%s) is misconfigured: %s",
                    channel.name,
                    provider,
                    exc,
                )
                attempts.append(
                    MailDeliveryAttempt(
                        provider=provider,
                        outcome="failure",
                        error_class=type(exc).__name__,
                    ),
                )
                errors[channel.name] = str(exc)
                auth_failure = exc
                continue

            if result.success:
                attempts.append(MailDeliveryAttempt(provider=provider, outcome="success"))
                logger.info("Email delivered via %s (%s)", channel.name, provider)
                result.provider = provider
                result.attempts = attempts
                return result

            attempts.append(
                MailDeliveryAttempt(
                    provider=provider,
                    outcome="failure",
                    error_class="MailSendFailure",
                ),
            )
            errors[channel.name] = result.error or "unknown error"
            logger.warning("Mail channel %s (%s) failed: %s", channel.name, provider, result.error)

        summary = ", ".join(f"{name}: {reason}" for name, reason in errors.items())
        if auth_failure is not None:
            raise EmailAuthMisconfiguredError(
                f"Email delivery failed and a mail relay is misconfigured. {summary}",
                errors=errors,
                attempts=attempts,
            ) from auth_failure
        raise EmailDeliveryUnavailableError(
            f"All mail channels failed. {summary or 'No mail channel configured.'}",
            errors=errors,
            attempts=attempts,
        )


def build_default_channels(settings: Settings) -> list[MailChannel]:
    primary = SendGridMailChannel(
        api_key=settings.sendgrid_api_key,
        sender=settings.sendgrid_sender,
        sender_name=settings.sendgrid_sender_name,
        timeout_seconds=settings.sendgrid_api_timeout_seconds,
    )
    fallback = GmailApiMailChannel(
        client_id=settings.gmail_client_id,
        client_secret=settings.gmail_client_secret,
        refresh_token=settings.gmail_refresh_token,
        sender=settings.gmail_sender,
        sender_name=settings.sendgrid_sender_name,
        timeout_seconds=settings.gmail_api_timeout_seconds,
    )
    return [
        RetryingMailChannel(
            channel,
            max_attempts=settings.mail_max_attempts_per_channel,
            base_delay_seconds=settings.mail_retry_base_delay_seconds,
        )
        for channel in (primary, fallback)
    ]


def _describe_minutes(minutes: int) -> str:
    if minutes % 60 == 0:
        hours = minutes // 60
        return "1 hora" if hours == 1 else f"{hours} horas"
    return f"{minutes} minutos"
