"""
Error taxonomy and user-facing notices.

Every failure that ends a turn maps to exactly one `Notice`. The notice text is
what the user sees; the exception message carries the technical detail for logs.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict


class NoticeKind(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    CAPTURE_FAILED = "capture_failed"
    TRANSCRIPTION_FAILED = "transcription_failed"
    COMPLETION_FAILED = "completion_failed"
    SYNTHESIS_FAILED = "synthesis_failed"
    PLAYBACK_FAILED = "playback_failed"


@dataclass(frozen=True)
class Notice:
    """A single user-visible message for a terminal failure."""

    kind: NoticeKind
    message: str
    detail: str = ""
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "detail": self.detail,
            "timestamp": self.timestamp,
        }


class VoiceTutorError(Exception):
    """
    Base class for failures that end the current turn or capture.

    Not raised directly: every subclass names the notice kind it reports.
    """

    kind: ClassVar[NoticeKind]
    notice_text: ClassVar[str] = "Something went wrong. Please try again."

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if not isinstance(getattr(cls, "kind", None), NoticeKind):
            raise TypeError(f"{cls.__name__} must set kind to a NoticeKind")

    def to_notice(self) -> Notice:
        return Notice(kind=self.kind, message=self.notice_text, detail=str(self))


class PermissionDenied(VoiceTutorError):
    """Microphone access was refused."""

    kind = NoticeKind.PERMISSION_DENIED
    notice_text = "Unable to access microphone. Please check your permissions."


class CaptureFailed(VoiceTutorError):
    """The recording device failed mid-session."""

    kind = NoticeKind.CAPTURE_FAILED
    notice_text = "Recording stopped unexpectedly. Please try again."


class TranscriptionFailed(VoiceTutorError):
    kind = NoticeKind.TRANSCRIPTION_FAILED
    notice_text = "Failed to process your speech. Please try again."


class ProcessingFailed(VoiceTutorError):
    """A failure after the user's speech was understood (reply or voice)."""

    kind = NoticeKind.COMPLETION_FAILED
    notice_text = "Failed to get a reply from your tutor. Please try again."


class CompletionFailed(ProcessingFailed):
    kind = NoticeKind.COMPLETION_FAILED


class SynthesisFailed(ProcessingFailed):
    kind = NoticeKind.SYNTHESIS_FAILED
    notice_text = "Your tutor replied, but the voice could not be generated."


class PlaybackFailed(VoiceTutorError):
    kind = NoticeKind.PLAYBACK_FAILED
    notice_text = "Unable to play the reply audio."


class SessionBusy(Exception):
    """Raised when a capture or turn is started while another is active."""
    pass


class LessonNotFound(Exception):
    """Raised when a lesson id does not resolve to a lesson."""

    def __init__(self, lesson_id: Any):
        super().__init__(f"Lesson not found: {lesson_id}")
        self.lesson_id = lesson_id
