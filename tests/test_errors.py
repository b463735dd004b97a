"""
Tests for the error taxonomy and notices.
"""

import pytest

from src.tutor.errors import (
    CaptureFailed,
    CompletionFailed,
    Notice,
    NoticeKind,
    PermissionDenied,
    PlaybackFailed,
    ProcessingFailed,
    SynthesisFailed,
    TranscriptionFailed,
    VoiceTutorError,
)


class TestNoticeKinds:
    @pytest.mark.parametrize(
        "error_class, kind",
        [
            (PermissionDenied, NoticeKind.PERMISSION_DENIED),
            (CaptureFailed, NoticeKind.CAPTURE_FAILED),
            (TranscriptionFailed, NoticeKind.TRANSCRIPTION_FAILED),
            (CompletionFailed, NoticeKind.COMPLETION_FAILED),
            (SynthesisFailed, NoticeKind.SYNTHESIS_FAILED),
            (PlaybackFailed, NoticeKind.PLAYBACK_FAILED),
        ],
    )
    def test_each_error_reports_its_own_kind(self, error_class, kind):
        notice = error_class("detail for logs").to_notice()

        assert notice.kind is kind
        assert notice.detail == "detail for logs"
        assert notice.message == error_class.notice_text

    def test_processing_failures_share_base(self):
        assert issubclass(CompletionFailed, ProcessingFailed)
        assert issubclass(SynthesisFailed, ProcessingFailed)
        assert SynthesisFailed.notice_text != CompletionFailed.notice_text

    def test_subclass_without_kind_is_rejected(self):
        with pytest.raises(TypeError, match="must set kind"):
            class UnlabelledFailure(VoiceTutorError):
                pass

    def test_subclass_with_non_kind_value_is_rejected(self):
        with pytest.raises(TypeError):
            class StringKindFailure(VoiceTutorError):
                kind = "capture_failed"

    def test_subclass_inherits_parent_kind(self):
        class MicrophoneUnplugged(CaptureFailed):
            pass

        assert MicrophoneUnplugged("gone").to_notice().kind is NoticeKind.CAPTURE_FAILED


class TestNotice:
    def test_to_dict(self):
        notice = Notice(kind=NoticeKind.PLAYBACK_FAILED, message="Unable to play the reply audio.", timestamp=12.5)

        assert notice.to_dict() == {
            "kind": "playback_failed",
            "message": "Unable to play the reply audio.",
            "detail": "",
            "timestamp": 12.5,
        }
