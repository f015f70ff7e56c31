import json
from collections.abc import Mapping, Sequence
from http.client import RemoteDisconnected
from typing import Any
from urllib import error, parse, request

_QUOTA_MARKERS = ("quota", "rate limit", "resource_exhausted", "resource has been exhausted")
_SIZE_MARKERS = ("too large", "payload size", "request size", "exceeds the maximum", "token count")


class GeminiError(Exception):
    pass


class ModelUnavailableError(GeminiError):
    pass


class ModelQuotaExceededError(GeminiError):
    pass


class ModelPayloadTooLargeError(GeminiError):
    pass


class ModelResponseMalformedError(GeminiError):
    pass


class GeminiClient:
    """Single request/response wrapper around ``models/{model}:generateContent``.

    Retries are owned by the caller; each call performs exactly one HTTP
    request and maps failures onto the ``GeminiError`` hierarchy.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout_seconds: float = 20.0,
        api_base_url: str = "https://generativelanguage.googleapis.com/v1beta",
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.api_base_url = api_base_url.rstrip("/")

    def generate_text(
        self,
        *,
        system_instruction: str,
        contents: Sequence[Mapping[str, Any]],
        temperature: float = 0.4,
    ) -> str:
        payload = {
            "system_instruction": {"parts": [{"text": system_instruction}]},
            "contents": list(contents),
            "generationConfig": {
                "temperature": temperature,
                "responseMimeType": "application/json",
            },
        }
        response_payload = self._generate(payload)
        return self._extract_text_response(response_payload)

    def _generate(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        if not self.api_key.strip():
            raise ModelUnavailableError("Gemini API key is not configured.")

        query = parse.urlencode({"key": self.api_key})
        endpoint = f"{self.api_base_url}/models/{self.model}:generateContent?{query}"
        req = request.Request(
            endpoint,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response_body = response.read()
        except TimeoutError as exc:
            raise ModelUnavailableError("Gemini API request timed out.") from exc
        except RemoteDisconnected as exc:
            raise ModelUnavailableError(
                "Gemini API connection was closed before sending a response.",
            ) from exc
        except error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="ignore")
            raise _classify_http_error(exc.code, body) from exc
        except error.URLError as exc:
            raise ModelUnavailableError(f"Gemini API connection error: {exc.reason}") from exc
        except OSError as exc:
            raise ModelUnavailableError(f"Gemini API connection dropped: {exc!r}") from exc

        try:
            parsed_body = json.loads(response_body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ModelResponseMalformedError("Gemini API returned invalid JSON.") from exc

        if not isinstance(parsed_body, dict):
            raise ModelResponseMalformedError("Gemini API response is not a JSON object.")
        return parsed_body

    def _extract_text_response(self, payload: Mapping[str, Any]) -> str:
        candidates = payload.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            raise ModelResponseMalformedError("Gemini API response missing candidates.")

        first_candidate = candidates[0]
        if not isinstance(first_candidate, Mapping):
            raise ModelResponseMalformedError("Gemini API response candidate is invalid.")

        content = first_candidate.get("content")
        if not isinstance(content, Mapping):
            raise ModelResponseMalformedError("Gemini API response missing content.")

        parts = content.get("parts")
        if not isinstance(parts, list):
            raise ModelResponseMalformedError("Gemini API response missing content parts.")

        for part in parts:
            if not isinstance(part, Mapping):
                continue
            text = part.get("text")
            if isinstance(text, str):
                return text
        raise ModelResponseMalformedError("Gemini API response did not include text output.")


def _classify_http_error(status_code: int, body: str) -> GeminiError:
    message = f"Gemini API HTTP {status_code}: {body or 'empty response body'}"
    lowered = body.lower()
    if status_code == 429 or any(marker in lowered for marker in _QUOTA_MARKERS):
        return ModelQuotaExceededError(message)
    if status_code == 413 or any(marker in lowered for marker in _SIZE_MARKERS):
        return ModelPayloadTooLargeError(message)
    return ModelUnavailableError(message)
