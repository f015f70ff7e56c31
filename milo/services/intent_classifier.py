from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
import json
import logging
import random
import re
from time import sleep
from typing import Any

from milo.core.config import Settings, get_settings
from milo.services.conversation_history import (
    ConversationTurn,
    optimize_history,
    truncate_text,
)
from milo.services.gemini_client import (
    GeminiClient,
    GeminiError,
    ModelPayloadTooLargeError,
    ModelQuotaExceededError,
    ModelResponseMalformedError,
)

logger = logging.getLogger(__name__)

MAX_USER_MESSAGE_LENGTH = 2000
_WEEKDAY_NAMES = ("lunes", "martes", "miércoles", "jueves", "viernes", "sábado", "domingo")
_MONTH_NAMES = (
    "enero",
    "febrero",
    "marzo",
    "abril",
    "mayo",
    "junio",
    "julio",
    "agosto",
    "septiembre",
    "octubre",
    "noviembre",
    "diciembre",
)
SIZE_RECOVERY_HISTORY_TURNS = 5

GENERIC_PARSE_FALLBACK_REPLY = "Lo siento, no pude procesar tu solicitud correctamente."
MISSING_REPLY_FALLBACK = "Entendido"
ASK_EVENT_DETAILS_REPLY = "📅 Perfecto, ¿cómo se va a llamar el evento y cuándo lo agendamos?"
QUOTA_EXCEEDED_REPLY = (
    "He alcanzado mi límite de uso por ahora y estoy temporalmente no disponible. "
    "Inténtalo en unos minutos."
)
FALLBACK_REPLIES: tuple[str, ...] = (
    "Disculpa, tuve un problema técnico. ¿Podrías repetir tu mensaje? 🤔",
    "Perdón, se me cruzaron los cables un momento. ¿Me lo decís de nuevo?",
    "Ups, no pude procesar eso ahora. Probemos otra vez en un ratito.",
)

_CODE_FENCE_OPEN = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_CODE_FENCE_CLOSE = re.compile(r"\s*```$")


class IntentAction(str, Enum):
    CREATE_EVENT = "create_event"
    CREATE_TASK = "create_task"
    CREATE_NOTE = "create_note"
    ASK_EVENT_DETAILS = "ask_event_details"
    GET_WEATHER = "get_weather"
    GET_WEATHER_LOCATION = "get_weather_location"
    GENERAL_RESPONSE = "general_response"


@dataclass
class IntentResult:
    action: IntentAction
    reply: str
    title: str | None = None
    time: str | None = None
    location: str | None = None
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"action": self.action.value, "reply": self.reply}
        for field_name in ("title", "time", "location", "description"):
            value = getattr(self, field_name)
            if value is not None:
                payload[field_name] = value
        return payload


# Retry states: one request moves Attempting(n) -> Succeeded | ExhaustedFallback.
@dataclass(frozen=True)
class Attempting:
    attempt: int


@dataclass(frozen=True)
class Succeeded:
    result: IntentResult


@dataclass(frozen=True)
class ExhaustedFallback:
    reply: str


ClassificationState = Attempting | Succeeded | ExhaustedFallback


def strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    cleaned = _CODE_FENCE_OPEN.sub("", cleaned)
    return _CODE_FENCE_CLOSE.sub("", cleaned).strip()


def interpret_model_output(raw_text: str) -> IntentResult:
    """Turn raw model text into a valid ``IntentResult``; never raises."""
    try:
        parsed = json.loads(strip_code_fences(raw_text))
    except json.JSONDecodeError:
        logger.error("Unparseable Gemini output text=%r", raw_text[:500])
        return IntentResult(
            action=IntentAction.GENERAL_RESPONSE,
            reply=raw_text.strip() or GENERIC_PARSE_FALLBACK_REPLY,
        )
    if not isinstance(parsed, dict):
        logger.error("Gemini output is not a JSON object text=%r", raw_text[:500])
        return IntentResult(
            action=IntentAction.GENERAL_RESPONSE,
            reply=raw_text.strip() or GENERIC_PARSE_FALLBACK_REPLY,
        )
    return repair_intent_payload(parsed)


def repair_intent_payload(payload: dict[str, Any]) -> IntentResult:
    title = _optional_text(payload.get("title"))
    time_text = _optional_text(payload.get("time"))
    reply = _optional_text(payload.get("reply"))

    action = _parse_action(payload.get("action"))
    if action is None:
        action = IntentAction.GENERAL_RESPONSE

    if action is IntentAction.CREATE_EVENT and not time_text:
        logger.warning("create_event without time; downgrading to ask_event_details")
        action = IntentAction.ASK_EVENT_DETAILS
        title = None
        time_text = None
        reply = ASK_EVENT_DETAILS_REPLY

    if not reply:
        logger.warning("Gemini output without reply; synthesizing one")
        reply = title or MISSING_REPLY_FALLBACK

    return IntentResult(
        action=action,
        reply=reply,
        title=title,
        time=time_text if action is IntentAction.CREATE_EVENT else None,
        location=_optional_text(payload.get("location")),
        description=_optional_text(payload.get("description")),
    )


class IntentClassifier:
    def __init__(
        self,
        settings: Settings | None = None,
        client: GeminiClient | None = None,
        *,
        choose_reply: Callable[[Sequence[str]], str] = random.choice,
    ) -> None:
        self.settings = settings or get_settings()
        self.client = client or GeminiClient(
            api_key=self.settings.gemini_api_key,
            model=self.settings.gemini_model,
            timeout_seconds=self.settings.gemini_api_timeout_seconds,
        )
        self.max_attempts = self.settings.gemini_max_attempts
        self.retry_delay_seconds = self.settings.gemini_retry_delay_seconds
        self._choose_reply = choose_reply

    def classify(
        self,
        message: str,
        history: Sequence[ConversationTurn] = (),
        *,
        timezone: str | None = None,
        local_time: str | None = None,
    ) -> IntentResult:
        return self._classify(
            message,
            history,
            timezone=timezone,
            local_time=local_time,
            allow_size_recovery=True,
        )

    def _classify(
        self,
        message: str,
        history: Sequence[ConversationTurn],
        *,
        timezone: str | None,
        local_time: str | None,
        allow_size_recovery: bool,
    ) -> IntentResult:
        optimization = optimize_history(history)
        logger.info(
            "Optimized history turns=%s chars=%s (original turns=%s)",
            len(optimization.turns),
            optimization.total_chars,
            len(history),
        )
        system_instruction = build_system_instruction(
            timezone=timezone,
            local_time=local_time or _default_local_time(),
        )
        contents = build_contents(optimization.turns, message)

        state: ClassificationState = Attempting(1)
        while isinstance(state, Attempting):
            try:
                raw_text = self.client.generate_text(
                    system_instruction=system_instruction,
                    contents=contents,
                )
            except ModelQuotaExceededError as exc:
                logger.error("Gemini quota exceeded: %s", exc)
                state = ExhaustedFallback(QUOTA_EXCEEDED_REPLY)
            except ModelPayloadTooLargeError as exc:
                logger.warning("Gemini payload too large: %s", exc)
                if allow_size_recovery and history:
                    return self._classify(
                        message,
                        history[-SIZE_RECOVERY_HISTORY_TURNS:],
                        timezone=timezone,
                        local_time=local_time,
                        allow_size_recovery=False,
                    )
                state = ExhaustedFallback(self._choose_reply(FALLBACK_REPLIES))
            except ModelResponseMalformedError as exc:
                logger.error("Gemini response malformed: %s", exc)
                state = Succeeded(interpret_model_output(""))
            except GeminiError as exc:
                state = self._next_after_failure(state, exc)
            else:
                state = Succeeded(interpret_model_output(raw_text))

        if isinstance(state, ExhaustedFallback):
            return IntentResult(action=IntentAction.GENERAL_RESPONSE, reply=state.reply)

        logger.info("Gemini intent classified action=%s", state.result.action.value)
        return state.result

    def _next_after_failure(self, state: Attempting, exc: GeminiError) -> ClassificationState:
        logger.warning(
            "Gemini attempt %s/%s failed: %s",
            state.attempt,
            self.max_attempts,
            exc,
        )
        if state.attempt >= self.max_attempts:
            return ExhaustedFallback(self._choose_reply(FALLBACK_REPLIES))
        sleep(self.retry_delay_seconds)
        return Attempting(state.attempt + 1)


def build_contents(
    turns: Sequence[ConversationTurn],
    message: str,
) -> list[dict[str, Any]]:
    contents = [
        {
            "role": "user" if turn.speaker == "user" else "model",
            "parts": [{"text": turn.text}],
        }
        for turn in turns
    ]
    contents.append(
        {
            "role": "user",
            "parts": [{"text": truncate_text(message, MAX_USER_MESSAGE_LENGTH)}],
        },
    )
    return contents


def build_system_instruction(*, timezone: str | None, local_time: str) -> str:
    return (
        "Eres **Milo**, un asistente personal inteligente, amable y organizado.\n"
        "Ayudas al usuario con notas, recordatorios, calendario, tareas, informacion "
        "general y conversacion natural, usando todo el contexto de la conversacion.\n\n"
        "CONTEXTO DEL USUARIO:\n"
        f"- Zona horaria del usuario: {timezone or 'Desconocida'}\n"
        f"- Fecha y hora actual del usuario: {local_time}\n\n"
        "ACCIONES DISPONIBLES (SIEMPRE RESPONDE EN JSON):\n"
        "{\n"
        '  "action": "create_event" | "create_task" | "create_note" | "ask_event_details" '
        '| "get_weather" | "get_weather_location" | "general_response",\n'
        '  "title": "Texto del evento/tarea/nota, claro y conciso",\n'
        '  "time": "Fecha y hora en texto natural, ej. \'mañana a las 9\' (solo create_event)",\n'
        '  "location": "Nombre de la ciudad (solo get_weather_location)",\n'
        '  "description": "Descripcion adicional opcional",\n'
        '  "reply": "Mensaje natural para mostrar al usuario"\n'
        "}\n\n"
        "REGLAS PARA EVENTOS:\n"
        "- Usa create_event solo si el usuario da un dia u hora claros "
        "(ej. 'mañana a las 9', 'el viernes a las 14', '20 de noviembre a las 10'). "
        "Si solo menciona el dia, el evento se agenda a las 9:00.\n"
        "- Si quiere agendar algo pero no dice cuando, usa ask_event_details y pregunta "
        "como se llama el evento y cuando es.\n\n"
        "REGLAS PARA CLIMA:\n"
        "- Si pregunta por el clima de una ciudad, usa get_weather_location con location "
        "igual SOLO al nombre de la ciudad.\n"
        "- Si no menciona ciudad, usa get_weather sin location.\n"
        "- Nunca uses palabras temporales como 'hoy', 'mañana', 'tarde' o 'noche' como "
        "ubicacion.\n\n"
        "Para saludos, preguntas generales o charla usa general_response.\n\n"
        "REGLAS CLAVE:\n"
        "- Genera siempre un JSON valido, sin texto ni comentarios fuera del JSON.\n"
        '- El campo "reply" es la UNICA respuesta que vera el usuario.\n'
        "- Se cordial, profesional, empatico y con un toque de humor."
    )


def format_local_time(moment: datetime) -> str:
    """``lunes 09 de junio de 2025, 18:30 UTC``, independent of the process locale."""
    return (
        f"{_WEEKDAY_NAMES[moment.weekday()]} {moment:%d} de {_MONTH_NAMES[moment.month - 1]} "
        f"de {moment:%Y}, {moment:%H:%M} {moment.tzname() or 'UTC'}"
    )


def _default_local_time() -> str:
    return format_local_time(datetime.now(UTC))


def _parse_action(raw_action: Any) -> IntentAction | None:
    if not isinstance(raw_action, str):
        return None
    try:
        return IntentAction(raw_action.strip().lower())
    except ValueError:
        return None


def _optional_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None
