from __future__ import annotations

from abc import ABC, abstractmethod
import base64
from collections.abc import Callable
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import formataddr
import json
import logging
from time import sleep
from typing import Any
from urllib import error, parse, request

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


@dataclass(frozen=True)
class MailMessage:
    to: str
    subject: str
    text: str
    html: str


@dataclass(frozen=True)
class MailDeliveryAttempt:
    provider: str
    outcome: str
    error_class: str | None = None


@dataclass
class MailSendResult:
    success: bool
    message_id: str | None = None
    error: str | None = None
    provider: str | None = None
    retryable: bool = False
    attempts: list[MailDeliveryAttempt] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success}
        if self.message_id:
            payload["messageId"] = self.message_id
        if self.error:
            payload["error"] = self.error
        return payload


class MailDeliveryError(Exception):
    def __init__(
        self,
        message: str,
        *,
        errors: dict[str, str] | None = None,
        attempts: list[MailDeliveryAttempt] | None = None,
    ) -> None:
        super().__init__(message)
        self.errors = dict(errors or {})
        self.attempts = list(attempts or [])


class EmailDeliveryUnavailableError(MailDeliveryError):
    pass


class EmailAuthMisconfiguredError(MailDeliveryError):
    pass


class MailChannel(ABC):
    name: str = "mail"

    @abstractmethod
    def send(self, message: MailMessage) -> MailSendResult:
        raise NotImplementedError


class SendGridMailChannel(MailChannel):
    name = "sendgrid"

    def __init__(
        self,
        *,
        api_key: str,
        sender: str,
        sender_name: str = "Milo Assistant",
        timeout_seconds: float = 10.0,
        api_url: str = "https://api.sendgrid.com/v3/mail/send",
    ) -> None:
        self.api_key = api_key
        self.sender = sender
        self.sender_name = sender_name
        self.timeout_seconds = timeout_seconds
        self.api_url = api_url

    def send(self, message: MailMessage) -> MailSendResult:
        if not self.api_key.strip() or not self.sender.strip():
            return MailSendResult(success=False, error="SendGrid is not configured.")

        payload = {
            "personalizations": [{"to": [{"email": message.to}]}],
            "from": {"email": self.sender, "name": self.sender_name},
            "reply_to": {"email": self.sender},
            "subject": message.subject,
            "content": [
                {"type": "text/plain", "value": message.text},
                {"type": "text/html", "value": message.html or message.text},
            ],
            "tracking_settings": {
                "click_tracking": {"enable": False},
                "open_tracking": {"enable": False},
            },
        }
        req = request.Request(
            self.api_url,
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            method="POST",
        )
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                message_id = response.headers.get("X-Message-Id")
        except TimeoutError:
            return MailSendResult(success=False, error="SendGrid request timed out.", retryable=True)
        except error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="ignore")
            return MailSendResult(
                success=False,
                error=f"SendGrid HTTP {exc.code}: {_first_sendgrid_error(body)}",
                retryable=exc.code in _RETRYABLE_STATUS_CODES,
            )
        except error.URLError as exc:
            return MailSendResult(
                success=False,
                error=f"SendGrid connection error: {exc.reason}",
                retryable=True,
            )
        except OSError as exc:
            return MailSendResult(
                success=False,
                error=f"SendGrid connection dropped: {exc!r}",
                retryable=True,
            )
        return MailSendResult(success=True, message_id=message_id or None)


class GmailApiMailChannel(MailChannel):
    """Gmail API relay authenticated with an OAuth2 refresh token.

    A new access token is requested right before every send; access tokens
    are short-lived and never kept on the instance.
    """

    name = "gmail"

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        sender: str,
        sender_name: str = "Milo Assistant",
        timeout_seconds: float = 10.0,
        oauth_token_url: str = "https://oauth2.googleapis.com/token",
        api_base_url: str = "https://gmail.googleapis.com/gmail/v1",
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.sender = sender
        self.sender_name = sender_name
        self.timeout_seconds = timeout_seconds
        self.oauth_token_url = oauth_token_url
        self.api_base_url = api_base_url.rstrip("/")

    def is_configured(self) -> bool:
        return bool(
            self.client_id.strip()
            and self.client_secret.strip()
            and self.refresh_token.strip()
            and self.sender.strip()
        )

    def send(self, message: MailMessage) -> MailSendResult:
        if not self.is_configured():
            return MailSendResult(success=False, error="Gmail API relay is not configured.")

        access_token_or_failure = self._fetch_access_token()
        if isinstance(access_token_or_failure, MailSendResult):
            return access_token_or_failure

        raw_message = base64.urlsafe_b64encode(self._build_mime(message).as_bytes()).decode("ascii")
        req = request.Request(
            f"{self.api_base_url}/users/me/messages/send",
            data=json.dumps({"raw": raw_message}).encode("utf-8"),
            headers={
                "Authorization": f"Bearer {access_token_or_failure}",
                "Content-Type": "application/json",
            },
            method="POST",
        )
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response_body = response.read()
        except TimeoutError:
            return MailSendResult(success=False, error="Gmail API request timed out.", retryable=True)
        except error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="ignore")
            if exc.code in {401, 403}:
                raise EmailAuthMisconfiguredError(
                    f"Gmail API rejected the relay credentials (HTTP {exc.code}): {body or 'empty response body'}",
                ) from exc
            return MailSendResult(
                success=False,
                error=f"Gmail API HTTP {exc.code}: {body or 'empty response body'}",
                retryable=exc.code in _RETRYABLE_STATUS_CODES,
            )
        except error.URLError as exc:
            return MailSendResult(
                success=False,
                error=f"Gmail API connection error: {exc.reason}",
                retryable=True,
            )
        except OSError as exc:
            return MailSendResult(
                success=False,
                error=f"Gmail API connection dropped: {exc!r}",
                retryable=True,
            )

        message_id: str | None = None
        try:
            parsed_body = json.loads(response_body.decode("utf-8"))
        except json.JSONDecodeError:
            parsed_body = None
        if isinstance(parsed_body, dict) and isinstance(parsed_body.get("id"), str):
            message_id = parsed_body["id"]
        return MailSendResult(success=True, message_id=message_id or "gmail-api")

    def _fetch_access_token(self) -> str | MailSendResult:
        body = parse.urlencode(
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": self.refresh_token,
                "grant_type": "refresh_token",
            },
        ).encode("utf-8")
        req = request.Request(
            self.oauth_token_url,
            data=body,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            method="POST",
        )
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response_body = response.read()
        except TimeoutError:
            return MailSendResult(
                success=False,
                error="Gmail OAuth refresh request timed out.",
                retryable=True,
            )
        except error.HTTPError as exc:
            body_text = exc.read().decode("utf-8", errors="ignore")
            if exc.code in {400, 401, 403}:
                raise EmailAuthMisconfiguredError(
                    f"Gmail OAuth refresh HTTP {exc.code}: {body_text or 'empty response body'}",
                ) from exc
            return MailSendResult(
                success=False,
                error=f"Gmail OAuth refresh HTTP {exc.code}: {body_text or 'empty response body'}",
                retryable=exc.code in _RETRYABLE_STATUS_CODES,
            )
        except error.URLError as exc:
            return MailSendResult(
                success=False,
                error=f"Gmail OAuth refresh connection error: {exc.reason}",
                retryable=True,
            )
        except OSError as exc:
            return MailSendResult(
                success=False,
                error=f"Gmail OAuth refresh connection dropped: {exc!r}",
                retryable=True,
            )

        try:
            payload = json.loads(response_body.decode("utf-8"))
        except json.JSONDecodeError:
            return MailSendResult(success=False, error="Gmail OAuth refresh returned invalid JSON.")
        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token.strip():
            raise EmailAuthMisconfiguredError("Gmail OAuth refresh did not include access_token.")
        return access_token.strip()

    def _build_mime(self, message: MailMessage) -> EmailMessage:
        mime = EmailMessage()
        mime["To"] = message.to
        mime["From"] = formataddr((self.sender_name, self.sender))
        mime["Subject"] = message.subject
        mime.set_content(message.text)
        if message.html:
            mime.add_alternative(message.html, subtype="html")
        return mime


class RetryingMailChannel(MailChannel):
    """Retries transient failures of ``inner`` with exponential backoff.

    Non-retryable results are returned at once and
    ``EmailAuthMisconfiguredError`` is never retried.
    """

    def __init__(
        self,
        inner: MailChannel,
        *,
        max_attempts: int = 2,
        base_delay_seconds: float = 0.5,
        sleep_fn: Callable[[float], None] | None = None,
    ) -> None:
        self.inner = inner
        self.name = inner.name
        self.max_attempts = max(max_attempts, 1)
        self.base_delay_seconds = base_delay_seconds
        self._sleep = sleep_fn or sleep

    def send(self, message: MailMessage) -> MailSendResult:
        result = MailSendResult(success=False, error="No delivery attempt was made.")
        for attempt in range(1, self.max_attempts + 1):
            result = self.inner.send(message)
            if result.success or not result.retryable:
                return result
            if attempt >= self.max_attempts:
                break
            delay = self.base_delay_seconds * (2 ** (attempt - 1))
            logger.warning(
                "Mail channel %s attempt %s/%s failed: %s; retrying in %.2fs",
                self.name,
                attempt,
                self.max_attempts,
                result.error,
                delay,
            )
            self._sleep(delay)
        return result


def _first_sendgrid_error(body: str) -> str:
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        return body or "empty response body"
    errors = payload.get("errors") if isinstance(payload, dict) else None
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        message = errors[0].get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    return body or "empty response body"
