"""Helpers for turning a session's message list into prompt text."""

from typing import List, Optional

from .state import ChatMessage

# Non-user messages whose content starts with this marker are bookkeeping, not dialogue
INTERNAL_MARKER = "["


def is_internal(message: ChatMessage) -> bool:
    # What the user typed is always dialogue
    return message.role != "user" and message.content.startswith(INTERNAL_MARKER)


def speaker_label(message: ChatMessage) -> str:
    return "User" if message.role == "user" else message.speaker


def format_transcript(
    messages: List[ChatMessage],
    max_chars: Optional[int] = None,
    include_internal: bool = False,
) -> str:
    """Render messages as "Speaker: text" lines, keeping the most recent `max_chars`."""
    lines = [
        f"{speaker_label(msg)}: {msg.content}"
        for msg in messages
        if include_internal or not is_internal(msg)
    ]
    text = "\n".join(lines)
    if max_chars is not None and len(text) > max_chars:
        text = "..." + text[-max_chars:]
    return text


def last_question(messages: List[ChatMessage]) -> str:
    """The most recent question put to the user, or "" if none was asked yet."""
    for msg in reversed(messages):
        if msg.role != "user" and not is_internal(msg):
            return msg.content
    return ""


def last_user_message(messages: List[ChatMessage]) -> Optional[ChatMessage]:
    for msg in reversed(messages):
        if msg.role == "user":
            return msg
    return None


def user_messages(messages: List[ChatMessage]) -> List[ChatMessage]:
    return [msg for msg in messages if msg.role == "user"]


def user_text(messages: List[ChatMessage]) -> str:
    return "\n".join(msg.content for msg in user_messages(messages))
