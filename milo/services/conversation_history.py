from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import Literal

MAX_HISTORY_MESSAGES = 20
KEEP_RECENT = 10
MAX_TOTAL_CHARS = 30000
MAX_MESSAGE_LENGTH = 1000
ELLIPSIS = "..."

Speaker = Literal["user", "assistant"]

# Topic label -> substrings looked up in discarded user turns.
_TOPIC_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("event", ("event",)),
    ("task", ("task", "tarea")),
    ("note", ("note", "nota")),
    ("meeting", ("meeting", "reunión", "reunion")),
    ("reminder", ("reminder", "recordatorio")),
    ("calendar", ("calendar", "calendario")),
)
_NO_TOPICS = "various subjects"


@dataclass(frozen=True)
class ConversationTurn:
    speaker: Speaker
    text: str


@dataclass(frozen=True)
class HistoryOptimization:
    turns: list[ConversationTurn]
    total_chars: int


def truncate_text(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - len(ELLIPSIS)] + ELLIPSIS


def extract_topics(turns: Sequence[ConversationTurn]) -> str:
    user_text = " ".join(turn.text for turn in turns if turn.speaker == "user").lower()
    found = [
        label
        for label, keywords in _TOPIC_KEYWORDS
        if any(keyword in user_text for keyword in keywords)
    ]
    return ", ".join(found) if found else _NO_TOPICS


def summarize_old_turns(
    turns: Sequence[ConversationTurn],
    *,
    max_history_messages: int = MAX_HISTORY_MESSAGES,
    keep_recent: int = KEEP_RECENT,
) -> list[ConversationTurn]:
    if len(turns) <= max_history_messages:
        return list(turns)

    older = turns[:-keep_recent]
    recent = list(turns[-keep_recent:])
    summary = ConversationTurn(
        speaker="assistant",
        text=(
            f"[Summary of {len(older)} earlier messages: "
            f"conversation about {extract_topics(older)}]"
        ),
    )
    return [summary, *recent]


def optimize_history(
    turns: Sequence[ConversationTurn],
    *,
    max_history_messages: int = MAX_HISTORY_MESSAGES,
    keep_recent: int = KEEP_RECENT,
    max_total_chars: int = MAX_TOTAL_CHARS,
    max_message_length: int = MAX_MESSAGE_LENGTH,
) -> HistoryOptimization:
    """Bound the history sent to the model while keeping the latest turns.

    Older turns collapse into a single assistant summary, every turn is cut
    to ``max_message_length`` and, if the result still exceeds
    ``max_total_chars``, only the newest ``keep_recent // 2`` turns are kept.
    The input sequence is never modified.
    """
    optimized = summarize_old_turns(
        turns,
        max_history_messages=max_history_messages,
        keep_recent=keep_recent,
    )
    optimized = [
        replace(turn, text=truncate_text(turn.text, max_message_length)) for turn in optimized
    ]

    total_chars = sum(len(turn.text) for turn in optimized)
    if total_chars > max_total_chars:
        optimized = optimized[-(keep_recent // 2) :] if keep_recent // 2 else []
        total_chars = sum(len(turn.text) for turn in optimized)
    return HistoryOptimization(turns=optimized, total_chars=total_chars)
