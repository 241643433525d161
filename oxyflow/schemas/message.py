"""
Chat messages and the bounded short-term memory that holds them.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Union

from ..core.constants import DEFAULT_MEMORY_SIZE

logger = logging.getLogger(__name__)

ROLES = ("system", "user", "assistant")


@dataclass(frozen=True)
class Message:
    """
    One role-tagged chat message.

    Content is usually text but may be a list of multimodal parts.
    """
    role: str
    content: Any

    def __post_init__(self):
        """Validate message role."""
        if self.role not in ROLES:
            raise ValueError(
                f"Invalid role: '{self.role}'. Must be one of: {', '.join(ROLES)}"
            )

    @classmethod
    def system(cls, content: Any) -> 'Message':
        return cls("system", content)

    @classmethod
    def user(cls, content: Any) -> 'Message':
        return cls("user", content)

    @classmethod
    def assistant(cls, content: Any) -> 'Message':
        return cls("assistant", content)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Message':
        return cls(data["role"], data.get("content", ""))

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role, "content": self.content}


MessageLike = Union[Message, Dict[str, Any]]


@dataclass
class Memory:
    """
    Ordered message log bounded by ``max_messages``.

    Trimming keeps the first message (usually the system framing) and the
    newest messages. While at least three messages remain it evicts from
    position 1, otherwise from the tail.
    """
    max_messages: int = DEFAULT_MEMORY_SIZE
    messages: List[Message] = field(default_factory=list)

    def __post_init__(self):
        """Validate capacity and normalize initial messages."""
        if self.max_messages <= 0:
            raise ValueError(f"max_messages must be positive: {self.max_messages}")
        self.messages = [self._coerce(m) for m in self.messages]

    def __len__(self) -> int:
        return len(self.messages)

    def __iter__(self):
        return iter(self.messages)

    @staticmethod
    def _coerce(message: MessageLike) -> Message:
        if isinstance(message, Message):
            return message
        return Message.from_dict(message)

    def add_message(self, message: MessageLike) -> 'Memory':
        self.messages.append(self._coerce(message))
        return self

    def add_messages(self, messages: Iterable[MessageLike]) -> 'Memory':
        for message in messages:
            self.add_message(message)
        return self

    def clear(self) -> None:
        self.messages.clear()

    def set_max_messages(self, max_messages: int) -> None:
        if max_messages <= 0:
            raise ValueError(f"max_messages must be positive: {max_messages}")
        self.max_messages = max_messages
        self.trim()

    def trim(self) -> None:
        """Evict messages until the log fits ``max_messages``."""
        before = len(self.messages)
        while len(self.messages) > self.max_messages and len(self.messages) > 1:
            if len(self.messages) >= 3:
                self.messages.pop(1)
                if len(self.messages) > self.max_messages:
                    self.messages.pop(1)
            else:
                self.messages.pop()
        if len(self.messages) != before:
            logger.debug(f"Trimmed memory from {before} to {len(self.messages)} messages")

    def get_recent_messages(self, n: int) -> List[Message]:
        if n <= 0:
            return []
        return list(self.messages[-n:])

    def to_dict_list(self) -> List[Dict[str, Any]]:
        """Trim, then serialize for a language-model call."""
        self.trim()
        return [message.to_dict() for message in self.messages]

    def copy(self) -> 'Memory':
        return Memory(self.max_messages, list(self.messages))
