"""
Transcript model for a lesson conversation.

The transcript is an ordered list of messages. An assistant reply is shown as a
pending placeholder while it is being produced; the resolved message replaces the
placeholder in the same slot instead of being appended after it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Message:
    """A single transcript line."""

    text: str
    is_user: bool
    timestamp: datetime = field(default_factory=datetime.now)
    is_pending: bool = False

    @property
    def display_time(self) -> str:
        return self.timestamp.strftime("%H:%M")

    @property
    def speaker(self) -> str:
        return "user" if self.is_user else "assistant"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "is_user": self.is_user,
            "timestamp": self.timestamp.isoformat(),
            "is_pending": self.is_pending,
        }


TranscriptListener = Callable[[Tuple[Message, ...]], None]


class TranscriptStore:
    """
    Ordered message sequence with the pending-replacement merge rule.

    `append` is the only mutation. At most one pending message exists and it is
    always the last element.
    """

    def __init__(self) -> None:
        self._messages: List[Message] = []
        self._listeners: List[TranscriptListener] = []

    @property
    def messages(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def last(self) -> Optional[Message]:
        return self._messages[-1] if self._messages else None

    @property
    def pending(self) -> Optional[Message]:
        last = self.last
        if last is not None and last.is_pending:
            return last
        return None

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(tuple(self._messages))

    def subscribe(self, listener: TranscriptListener) -> None:
        self._listeners.append(listener)

    def append(self, message: Message) -> bool:
        """
        Add a message to the transcript.

        Returns True when the message replaced the pending placeholder, False when
        it was appended as a new last element.
        """
        replaced = False
        if self.pending is not None:
            if message.is_pending:
                raise ValueError("Transcript already has a pending message")
            self._messages[-1] = message
            replaced = True
        else:
            self._messages.append(message)

        logger.debug(
            "Transcript updated",
            speaker=message.speaker,
            is_pending=message.is_pending,
            replaced=replaced,
            length=len(self._messages),
        )
        self._notify()
        return replaced

    def _notify(self) -> None:
        snapshot = self.messages
        for listener in list(self._listeners):
            listener(snapshot)
