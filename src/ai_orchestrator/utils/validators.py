"""Input validation helpers applied before any I/O."""

from __future__ import annotations

from typing import Sequence

from ai_orchestrator.domain.exceptions import ValidationError
from ai_orchestrator.domain.models import Message, Role

MAX_CONTENT_LENGTH = 100_000


def validate_messages(messages: Sequence[Message]) -> None:
    if not messages:
        raise ValidationError("At least one message is required")
    for index, message in enumerate(messages):
        if not isinstance(message, Message):
            raise ValidationError(
                "Messages must be Message instances", context={"index": index}
            )
        if message.role is Role.SYSTEM and index != 0:
            raise ValidationError(
                "System message must be the first message", context={"index": index}
            )
        if len(message.content) > MAX_CONTENT_LENGTH:
            raise ValidationError(
                "Message content exceeds maximum supported length",
                context={"index": index},
            )
    if all(message.role is Role.SYSTEM for message in messages):
        raise ValidationError("Conversation must contain a non-system message")
