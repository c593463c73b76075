"""Conversation message log."""

import itertools
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional
import structlog


logger = structlog.get_logger()


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class MessageStatus(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class Message:
    """A single message in the conversation."""

    id: int
    role: Role
    text: str = ""
    status: MessageStatus = MessageStatus.COMPLETE
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "text": self.text,
            "status": self.status.value,
            "created_at": self.created_at,
        }


class ConversationState:
    """
    Ordered, append-only message log.

    Message ids are monotonic for the lifetime of the state object, including
    across clear() calls, so an id never refers to two different messages.
    """

    def __init__(self):
        self.messages: List[Message] = []
        self._ids = itertools.count(1)

    def add_user_message(self, text: str) -> Message:
        """Add a completed user message."""
        message = Message(id=next(self._ids), role=Role.USER, text=text)
        self.messages.append(message)
        return message

    def add_assistant_placeholder(self) -> Message:
        """Add an empty assistant message that a stream will fill in."""
        message = Message(
            id=next(self._ids), role=Role.ASSISTANT, status=MessageStatus.PENDING
        )
        self.messages.append(message)
        return message

    def get(self, message_id: int) -> Optional[Message]:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def remove(self, message_id: int) -> bool:
        """Remove a message wholesale. Returns False if it was not present."""
        message = self.get(message_id)
        if message is None:
            return False
        self.messages.remove(message)
        logger.debug("Removed message", message_id=message_id, role=message.role.value)
        return True

    def streaming_message(self) -> Optional[Message]:
        for message in self.messages:
            if message.status == MessageStatus.STREAMING:
                return message
        return None

    def clear(self) -> None:
        self.messages.clear()

    def to_list(self) -> List[Dict[str, Any]]:
        return [message.to_dict() for message in self.messages]

    def __len__(self) -> int:
        return len(self.messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.messages)
