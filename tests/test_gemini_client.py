import io
import json
from urllib import error

import pytest

from milo.services.gemini_client import (
    GeminiClient,
    ModelPayloadTooLargeError,
    ModelQuotaExceededError,
    ModelResponseMalformedError,
    ModelUnavailableError,
)


class _FakeResponse:
    def __init__(self, payload: object) -> None:
        self._body = json.dumps(payload).encode("utf-8")

    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False

    def read(self) -> bytes:
        return self._body


def _http_error(status_code: int, body: str) -> error.HTTPError:
    return error.HTTPError(
        url="https://generativelanguage.googleapis.com/v1beta/models/gemini:generateContent",
        code=status_code,
        msg="error",
        hdrs=None,
        fp=io.BytesIO(body.encode("utf-8")),
    )


def _client() -> GeminiClient:
    return GeminiClient(api_key="fake-api-key", model="gemini-2.5-flash", timeout_seconds=0.1)


def test_generate_text_returns_first_text_part(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    def fake_urlopen(req, timeout=20):  # type: ignore[no-untyped-def]
        captured["url"] = req.full_url
        captured["body"] = json.loads(req.data.decode("utf-8"))
        return _FakeResponse(
            {"candidates": [{"content": {"parts": [{"text": '{"action":"general_response"}'}]}}]},
        )

    monkeypatch.setattr("milo.services.gemini_client.request.urlopen", fake_urlopen)

    text = _client().generate_text(
        system_instruction="Eres Milo",
        contents=[{"role": "user", "parts": [{"text": "hola"}]}],
    )

    assert text == '{"action":"general_response"}'
    assert "models/gemini-2.5-flash:generateContent" in str(captured["url"])
    body = captured["body"]
    assert isinstance(body, dict)
    assert body["system_instruction"] == {"parts": [{"text": "Eres Milo"}]}
    assert body["contents"][0]["role"] == "user"


@pytest.mark.parametrize(
    ("status_code", "body", "expected_error"),
    [
        (429, '{"error": {"status": "RESOURCE_EXHAUSTED"}}', ModelQuotaExceededError),
        (400, '{"error": {"message": "You exceeded your current quota"}}', ModelQuotaExceededError),
        (413, "", ModelPayloadTooLargeError),
        (400, '{"error": {"message": "Request payload size exceeds the limit"}}', ModelPayloadTooLargeError),
        (503, '{"error": {"message": "overloaded"}}', ModelUnavailableError),
    ],
)
def test_http_errors_are_classified(
    monkeypatch: pytest.MonkeyPatch,
    status_code: int,
    body: str,
    expected_error: type[Exception],
) -> None:
    def fake_urlopen(req, timeout=20):  # type: ignore[no-untyped-def]
        raise _http_error(status_code, body)

    monkeypatch.setattr("milo.services.gemini_client.request.urlopen", fake_urlopen)

    with pytest.raises(expected_error):
        _client().generate_text(system_instruction="x", contents=[])


def test_timeout_maps_to_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_urlopen(req, timeout=20):  # type: ignore[no-untyped-def]
        raise TimeoutError("timed out")

    monkeypatch.setattr("milo.services.gemini_client.request.urlopen", fake_urlopen)

    with pytest.raises(ModelUnavailableError, match="timed out"):
        _client().generate_text(system_instruction="x", contents=[])


def test_missing_candidates_is_malformed(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "milo.services.gemini_client.request.urlopen",
        lambda req, timeout=20: _FakeResponse({"promptFeedback": {}}),
    )

    with pytest.raises(ModelResponseMalformedError):
        _client().generate_text(system_instruction="x", contents=[])


def test_missing_api_key_is_unavailable() -> None:
    client = GeminiClient(api_key=" ", model="gemini-2.5-flash")

    with pytest.raises(ModelUnavailableError, match="not configured"):
        client.generate_text(system_instruction="x", contents=[])


def test_connection_reset_maps_to_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_urlopen(req, timeout=20):  # type: ignore[no-untyped-def]
        raise ConnectionResetError(104, "Connection reset by peer")

    monkeypatch.setattr("milo.services.gemini_client.request.urlopen", fake_urlopen)

    with pytest.raises(ModelUnavailableError, match="connection dropped"):
        _client().generate_text(system_instruction="x", contents=[])


def test_non_utf8_body_is_malformed(monkeypatch: pytest.MonkeyPatch) -> None:
    class _BinaryResponse(_FakeResponse):
        def read(self) -> bytes:
            return b"\xff\xfe\x00garbage"

    monkeypatch.setattr(
        "milo.services.gemini_client.request.urlopen",
        lambda req, timeout=20: _BinaryResponse({}),
    )

    with pytest.raises(ModelResponseMalformedError):
        _client().generate_text(system_instruction="x", contents=[])
