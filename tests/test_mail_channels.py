import base64
from http.client import RemoteDisconnected
import io
import json
from urllib import error

import pytest

from milo.services.mail_channels import (
    EmailAuthMisconfiguredError,
    GmailApiMailChannel,
    MailChannel,
    MailMessage,
    MailSendResult,
    RetryingMailChannel,
    SendGridMailChannel,
)

MESSAGE = MailMessage(
    to="user@example.com",
    subject="Recuperación de contraseña",
    text="Visita https://app.example.com/reset-password?token=abc",
    html="<p>token=abc</p>",
)


class _FakeResponse:
    def __init__(self, payload: object = None, headers: dict[str, str] | None = None) -> None:
        self._body = b"" if payload is None else json.dumps(payload).encode("utf-8")
        self.headers = headers or {}

    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False

    def read(self) -> bytes:
        return self._body


def _http_error(url: str, status_code: int, payload: object) -> error.HTTPError:
    return error.HTTPError(
        url=url,
        code=status_code,
        msg="error",
        hdrs=None,
        fp=io.BytesIO(json.dumps(payload).encode("utf-8")),
    )


def _gmail_channel() -> GmailApiMailChannel:
    return GmailApiMailChannel(
        client_id="gmail-client-id",
        client_secret="gmail-client-secret",
        refresh_token="gmail-refresh-token",
        sender="milo@example.com",
    )


def test_sendgrid_channel_returns_message_id(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        captured["authorization"] = req.headers.get("Authorization")
        captured["body"] = json.loads(req.data.decode("utf-8"))
        return _FakeResponse(headers={"X-Message-Id": "sg-123"})

    monkeypatch.setattr("milo.services.mail_channels.request.urlopen", fake_urlopen)

    channel = SendGridMailChannel(api_key="sg-key", sender="milo@example.com")
    result = channel.send(MESSAGE)

    assert result.success
    assert result.message_id == "sg-123"
    assert captured["authorization"] == "Bearer sg-key"
    body = captured["body"]
    assert isinstance(body, dict)
    assert body["personalizations"] == [{"to": [{"email": "user@example.com"}]}]


def test_sendgrid_channel_marks_server_errors_retryable(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        raise _http_error(req.full_url, 503, {"errors": [{"message": "Service unavailable"}]})

    monkeypatch.setattr("milo.services.mail_channels.request.urlopen", fake_urlopen)

    result = SendGridMailChannel(api_key="sg-key", sender="milo@example.com").send(MESSAGE)

    assert not result.success
    assert result.retryable
    assert result.error == "SendGrid HTTP 503: Service unavailable"


def test_sendgrid_channel_rejected_key_is_not_retryable(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        raise _http_error(req.full_url, 401, {"errors": [{"message": "Invalid API key"}]})

    monkeypatch.setattr("milo.services.mail_channels.request.urlopen", fake_urlopen)

    result = SendGridMailChannel(api_key="sg-key", sender="milo@example.com").send(MESSAGE)

    assert not result.success
    assert not result.retryable


def test_sendgrid_channel_without_configuration_fails_fast() -> None:
    result = SendGridMailChannel(api_key="", sender="").send(MESSAGE)

    assert not result.success
    assert result.error == "SendGrid is not configured."


def test_gmail_channel_refreshes_token_before_every_send(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[str] = []
    sent_raw: list[str] = []

    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        if "oauth2.googleapis.com/token" in req.full_url:
            calls.append("refresh")
            return _FakeResponse({"access_token": f"access-{len(calls)}"})
        calls.append(req.headers.get("Authorization"))
        sent_raw.append(json.loads(req.data.decode("utf-8"))["raw"])
        return _FakeResponse({"id": "gmail-msg-1"})

    monkeypatch.setattr("milo.services.mail_channels.request.urlopen", fake_urlopen)

    channel = _gmail_channel()
    first = channel.send(MESSAGE)
    second = channel.send(MESSAGE)

    assert first.success and second.success
    assert first.message_id == "gmail-msg-1"
    assert calls == ["refresh", "Bearer access-1", "refresh", "Bearer access-3"]
    mime = base64.urlsafe_b64decode(sent_raw[0].encode("ascii")).decode("utf-8")
    assert "To: user@example.com" in mime


def test_gmail_channel_rejected_refresh_raises_auth_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        raise _http_error(req.full_url, 400, {"error": "invalid_grant"})

    monkeypatch.setattr("milo.services.mail_channels.request.urlopen", fake_urlopen)

    with pytest.raises(EmailAuthMisconfiguredError, match="invalid_grant"):
        _gmail_channel().send(MESSAGE)


class _FlakyChannel(MailChannel):
    name = "flaky"

    def __init__(self, results: list[MailSendResult]) -> None:
        self._results = list(results)
        self.calls = 0

    def send(self, message: MailMessage) -> MailSendResult:
        self.calls += 1
        return self._results.pop(0)


def test_retrying_channel_backs_off_exponentially() -> None:
    delays: list[float] = []
    inner = _FlakyChannel(
        [
            MailSendResult(success=False, error="timeout", retryable=True),
            MailSendResult(success=False, error="timeout", retryable=True),
            MailSendResult(success=True, message_id="ok"),
        ],
    )

    channel = RetryingMailChannel(inner, max_attempts=3, base_delay_seconds=0.5, sleep_fn=delays.append)
    result = channel.send(MESSAGE)

    assert result.success
    assert inner.calls == 3
    assert delays == [0.5, 1.0]


def test_retrying_channel_does_not_retry_permanent_failures() -> None:
    delays: list[float] = []
    inner = _FlakyChannel([MailSendResult(success=False, error="bad request", retryable=False)])

    result = RetryingMailChannel(inner, max_attempts=3, sleep_fn=delays.append).send(MESSAGE)

    assert not result.success
    assert inner.calls == 1
    assert delays == []


def test_retrying_channel_stops_after_max_attempts() -> None:
    delays: list[float] = []
    inner = _FlakyChannel([MailSendResult(success=False, error="timeout", retryable=True)] * 2)

    result = RetryingMailChannel(inner, max_attempts=2, base_delay_seconds=0.5, sleep_fn=delays.append).send(
        MESSAGE,
    )

    assert not result.success
    assert inner.calls == 2
    assert delays == [0.5]


def test_sendgrid_channel_dropped_connection_is_retryable(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        raise RemoteDisconnected("Remote end closed connection without response")

    monkeypatch.setattr("milo.services.mail_channels.request.urlopen", fake_urlopen)

    result = SendGridMailChannel(api_key="sg-key", sender="milo@example.com").send(MESSAGE)

    assert not result.success
    assert result.retryable
    assert "SendGrid connection dropped" in result.error


def test_gmail_channel_reset_during_refresh_is_retryable(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        raise ConnectionResetError(104, "Connection reset by peer")

    monkeypatch.setattr("milo.services.mail_channels.request.urlopen", fake_urlopen)

    result = _gmail_channel().send(MESSAGE)

    assert not result.success
    assert result.retryable
    assert "Gmail OAuth refresh connection dropped" in result.error


def test_gmail_channel_reset_during_send_is_retryable(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        if "oauth2.googleapis.com/token" in req.full_url:
            return _FakeResponse({"access_token": "access-1"})
        raise RemoteDisconnected("Remote end closed connection without response")

    monkeypatch.setattr("milo.services.mail_channels.request.urlopen", fake_urlopen)

    result = _gmail_channel().send(MESSAGE)

    assert not result.success
    assert result.retryable
    assert "Gmail API connection dropped" in result.error


def test_retrying_channel_retries_dropped_connections(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[str] = []

    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        calls.append(req.full_url)
        if len(calls) == 1:
            raise RemoteDisconnected("Remote end closed connection without response")
        return _FakeResponse(headers={"X-Message-Id": "sg-2"})

    monkeypatch.setattr("milo.services.mail_channels.request.urlopen", fake_urlopen)
    delays: list[float] = []

    channel = RetryingMailChannel(
        SendGridMailChannel(api_key="sg-key", sender="milo@example.com"),
        max_attempts=3,
        base_delay_seconds=0.5,
        sleep_fn=delays.append,
    )
    result = channel.send(MESSAGE)

    assert result.success
    assert result.message_id == "sg-2"
    assert len(calls) == 2
    assert delays == [0.5]
