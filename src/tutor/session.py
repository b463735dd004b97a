"""
Lesson-level voice chat session.

Owns the transcript, the recording modal, the live capture session and the turn
orchestrator. At most one capture or turn is active at a time; extra start
requests are ignored.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Callable, List, Optional

import structlog

from src.tutor.capture import AudioCaptureSession, CaptureState
from src.tutor.config import get_config
from src.tutor.devices import AudioInputDevice, AudioOutputDevice, DrawSurface
from src.tutor.errors import CaptureFailed, Notice, PermissionDenied
from src.tutor.lessons import Lesson, LessonContextProvider
from src.tutor.llm import ChatCompletionService
from src.tutor.orchestrator import ConversationOrchestrator, TurnOutcome
from src.tutor.stt import SpeechToTextService
from src.tutor.transcript import TranscriptStore
from src.tutor.tts import TextToSpeechService, VoiceConfig

logger = structlog.get_logger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PROCESSING = "processing"


class VoiceChatSession:
    """
    One learner practising one lesson.

    The transcript lives as long as the session; it is not persisted.
    """

    def __init__(
        self,
        lesson: Lesson,
        *,
        input_device: AudioInputDevice,
        player: AudioOutputDevice,
        lessons: LessonContextProvider,
        stt: SpeechToTextService,
        llm: ChatCompletionService,
        tts: TextToSpeechService,
        surface: Optional[DrawSurface] = None,
        voice: Optional[VoiceConfig] = None,
        on_notice: Optional[Callable[[Notice], None]] = None,
        config: Optional[Any] = None,
    ):
        if config is None:
            config = get_config()

        self.config = config
        self.lesson = lesson
        self.transcript = TranscriptStore()
        self.notices: List[Notice] = []

        self._input_device = input_device
        self._surface = surface
        self._on_notice = on_notice

        self._state = SessionState.IDLE
        self._modal_open = False
        self._capture: Optional[AudioCaptureSession] = None
        self._turn_task: Optional[asyncio.Task] = None

        self._orchestrator = ConversationOrchestrator(
            lesson.id,
            lessons=lessons,
            stt=stt,
            llm=llm,
            tts=tts,
            player=player,
            emit=self.transcript.append,
            on_notice=self._notify,
            on_finished=self.close_modal,
            voice=voice,
            config=config,
        )

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def modal_open(self) -> bool:
        return self._modal_open

    @property
    def capture(self) -> Optional[AudioCaptureSession]:
        return self._capture

    @property
    def orchestrator(self) -> ConversationOrchestrator:
        return self._orchestrator

    def open_modal(self) -> None:
        self._modal_open = True

    def close_modal(self) -> None:
        self._modal_open = False

    def _notify(self, notice: Notice) -> None:
        self.notices.append(notice)
        logger.info("Notice", kind=notice.kind.value, message=notice.message, detail=notice.detail)
        if self._on_notice is not None:
            self._on_notice(notice)

    def _on_capture_failed(self, error: CaptureFailed) -> None:
        self._capture = None
        if self._state is SessionState.RECORDING:
            self._state = SessionState.IDLE
        self._notify(error.to_notice())

    async def start_recording(self) -> bool:
        """
        Start a new capture session.

        Returns False (and changes nothing) while a recording or turn is active,
        or when the microphone cannot be acquired.
        """
        if self._state is not SessionState.IDLE or self._orchestrator.is_busy:
            logger.warning("Start recording ignored", state=self._state.value)
            return False

        self.open_modal()
        capture = AudioCaptureSession(
            self._input_device,
            surface=self._surface,
            fft_size=self.config.analyser_fft_size,
            fps=self.config.waveform_fps,
            on_failure=self._on_capture_failed,
        )
        self._capture = capture
        self._state = SessionState.RECORDING

        try:
            await capture.start()
        except (PermissionDenied, CaptureFailed) as e:
            self._capture = None
            self._state = SessionState.IDLE
            self._notify(e.to_notice())
            return False

        if not self._modal_open:
            # Dismissed while the microphone was being acquired
            await capture.cancel()
            self._capture = None
            self._state = SessionState.IDLE
            return False

        return True

    async def stop_recording(self) -> Optional[TurnOutcome]:
        """
        Stop the capture and run the turn for the recording.

        Returns the turn outcome, or None when nothing was recorded.
        """
        capture = self._capture
        if self._state is not SessionState.RECORDING or capture is None:
            return None

        try:
            blob = await capture.stop()
        except CaptureFailed as e:
            self._state = SessionState.IDLE
            self._notify(e.to_notice())
            return None
        finally:
            self._capture = None

        if blob is None or not self._modal_open:
            # An aborted capture may still be releasing the microphone
            await capture.wait_released()
            self._state = SessionState.IDLE
            return None

        self._state = SessionState.PROCESSING
        self._turn_task = asyncio.create_task(self._orchestrator.run_turn(blob))
        try:
            return await self._turn_task
        except asyncio.CancelledError:
            logger.info("Turn cancelled")
            return None
        finally:
            self._turn_task = None
            self._state = SessionState.IDLE

    async def dismiss(self) -> None:
        """Close the modal, tearing down whatever is active."""
        self.close_modal()

        if self._state is SessionState.RECORDING and self._capture is not None:
            if self._capture.state is CaptureState.ACQUIRING:
                return
            capture, self._capture = self._capture, None
            try:
                await capture.cancel()
                await capture.wait_released()
            except Exception as e:
                logger.error("Capture teardown failed", error=str(e))
            self._state = SessionState.IDLE
        elif self._state is SessionState.PROCESSING:
            self._orchestrator.teardown()

    async def close(self) -> None:
        """Leave the lesson: tear down and cancel any in-flight turn."""
        await self.dismiss()
        task = self._turn_task
        if task and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        logger.info("Voice chat session closed", lesson_id=self.lesson.id, messages=len(self.transcript))
