"""Conversation turn orchestration.

One spoken turn runs through three remote stages:
finished recording -> STT -> (user line + "Thinking..." placeholder) ->
chat completion -> TTS -> final assistant line -> playback

Features:
- Explicit per-turn state machine (idle/transcribing/awaiting_reply/synthesizing/playing/errored)
- Fixed transcript emission order: user, pending placeholder, final assistant
- Exactly one notice per failed turn, no automatic retry
- Teardown lets an in-flight stage finish quietly without surfacing its result
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

import structlog

from src.tutor.config import get_config
from src.tutor.devices import AudioOutputDevice
from src.tutor.errors import (
    CompletionFailed,
    LessonNotFound,
    Notice,
    PlaybackFailed,
    SessionBusy,
    SynthesisFailed,
    TranscriptionFailed,
    VoiceTutorError,
)
from src.tutor.lessons import LessonContextProvider, LessonId
from src.tutor.llm import ChatCompletionService, build_system_prompt
from src.tutor.stt import SpeechToTextService
from src.tutor.transcript import Message
from src.tutor.tts import TextToSpeechService, VoiceConfig

logger = structlog.get_logger(__name__)


class TurnState(str, Enum):
    """Current state of the conversation turn."""
    IDLE = "idle"
    TRANSCRIBING = "transcribing"
    AWAITING_REPLY = "awaiting_reply"
    SYNTHESIZING = "synthesizing"
    PLAYING = "playing"
    ERRORED = "errored"


ACTIVE_STATES = frozenset(
    {
        TurnState.TRANSCRIBING,
        TurnState.AWAITING_REPLY,
        TurnState.SYNTHESIZING,
        TurnState.PLAYING,
    }
)


class Stage(str, Enum):
    TRANSCRIBE = "transcribe"
    RESPOND = "respond"


@dataclass(frozen=True)
class TurnRequest:
    """A single remote stage submitted for one turn."""
    lesson_id: LessonId
    stage: Stage
    audio_bytes: Optional[bytes] = None
    transcript_text: Optional[str] = None

    def __post_init__(self) -> None:
        if self.lesson_id is None or not str(self.lesson_id).strip():
            raise ValueError("Missing required fields: lesson_id")
        if self.stage is Stage.TRANSCRIBE and not self.audio_bytes:
            raise ValueError("Missing required fields: audio")
        if self.stage is Stage.RESPOND and not (self.transcript_text or "").strip():
            raise ValueError("Missing required fields: text")


@dataclass
class TurnMetrics:
    """Metrics for a single conversation turn."""
    turn_id: int = 0
    start_time: float = 0.0
    stt_ms: float = 0.0
    llm_ms: float = 0.0
    tts_ms: float = 0.0
    playback_ms: float = 0.0
    total_turn_ms: float = 0.0

    def finalize(self) -> None:
        """Calculate total turn time."""
        if self.start_time > 0:
            self.total_turn_ms = (time.time() - self.start_time) * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "turn_id": self.turn_id,
            "stt_ms": round(self.stt_ms, 2),
            "llm_ms": round(self.llm_ms, 2),
            "tts_ms": round(self.tts_ms, 2),
            "playback_ms": round(self.playback_ms, 2),
            "total_turn_ms": round(self.total_turn_ms, 2),
        }


@dataclass
class TurnOutcome:
    """What happened in one turn."""
    turn_id: int
    state: TurnState = TurnState.IDLE
    user_text: str = ""
    reply_text: str = ""
    audio_bytes: bytes = b""
    error: Optional[VoiceTutorError] = None
    discarded: bool = False
    metrics: TurnMetrics = field(default_factory=TurnMetrics)

    @property
    def succeeded(self) -> bool:
        return self.error is None and not self.discarded and self.state is TurnState.IDLE


class ConversationOrchestrator:
    """
    Drives one spoken turn at a time.

    The orchestrator never touches the transcript directly: it emits messages
    through `emit`, and the owner applies them (see TranscriptStore.append).
    """

    def __init__(
        self,
        lesson_id: LessonId,
        *,
        lessons: LessonContextProvider,
        stt: SpeechToTextService,
        llm: ChatCompletionService,
        tts: TextToSpeechService,
        player: AudioOutputDevice,
        emit: Callable[[Message], Any],
        on_notice: Optional[Callable[[Notice], None]] = None,
        on_finished: Optional[Callable[[], None]] = None,
        voice: Optional[VoiceConfig] = None,
        config: Optional[Any] = None,
    ):
        if config is None:
            config = get_config()

        self.config = config
        self.lesson_id = lesson_id
        self._lessons = lessons
        self._stt = stt
        self._llm = llm
        self._tts = tts
        self._player = player
        self._emit_callback = emit
        self._on_notice = on_notice
        self._on_finished = on_finished
        self._voice = voice or VoiceConfig.from_config(config)

        self._state = TurnState.IDLE
        self._current_turn = 0
        self._discarded_turn = 0
        self._placeholder_open = False

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def is_busy(self) -> bool:
        return self._state in ACTIVE_STATES

    @property
    def turn_count(self) -> int:
        return self._current_turn

    def teardown(self) -> None:
        """
        Detach the in-flight turn (modal dismissed).

        A stage already awaiting a response is allowed to finish; its result is
        not surfaced and no further stage starts.
        """
        if self.is_busy:
            self._discarded_turn = self._current_turn
            logger.info("Turn torn down", turn_id=self._current_turn, state=self._state.value)

    def _is_discarded(self, turn_id: int) -> bool:
        return self._discarded_turn == turn_id

    def _set_state(self, state: TurnState) -> None:
        if state is not self._state:
            logger.debug("Turn state", turn_id=self._current_turn, old=self._state.value, new=state.value)
        self._state = state

    def _emit(self, message: Message) -> None:
        if message.is_pending:
            if self._placeholder_open:
                raise RuntimeError("Placeholder already emitted for this turn")
            self._placeholder_open = True
        elif not message.is_user:
            self._placeholder_open = False
        self._emit_callback(message)

    def _resolve_placeholder(self, text: str) -> None:
        if self._placeholder_open:
            self._emit(Message(text=text, is_user=False))

    def _notify(self, turn_id: int, error: VoiceTutorError) -> None:
        if self._is_discarded(turn_id):
            logger.info("Notice suppressed for torn down turn", turn_id=turn_id, kind=error.kind.value)
            return
        if self._on_notice is not None:
            self._on_notice(error.to_notice())

    async def run_turn(self, audio_bytes: bytes) -> TurnOutcome:
        """
        Run a full turn for one finished recording.

        Raises:
            SessionBusy: if a turn is already in flight
        """
        if self.is_busy:
            raise SessionBusy(f"Turn {self._current_turn} is {self._state.value}")

        self._current_turn += 1
        turn_id = self._current_turn
        self._placeholder_open = False
        outcome = TurnOutcome(
            turn_id=turn_id,
            metrics=TurnMetrics(turn_id=turn_id, start_time=time.time()),
        )
        self._set_state(TurnState.TRANSCRIBING)

        try:
            await self._run(turn_id, audio_bytes, outcome)
        except VoiceTutorError as e:
            outcome.error = e
            self._set_state(TurnState.ERRORED)
            logger.warning("Turn failed", turn_id=turn_id, kind=e.kind.value, error=str(e))
            self._notify(turn_id, e)
        finally:
            # Never leave the transcript stuck on "Thinking..."
            if self._placeholder_open:
                self._resolve_placeholder(outcome.reply_text or self.config.completion_fallback_text)
            if self._state in ACTIVE_STATES:
                self._set_state(TurnState.IDLE)
            outcome.discarded = self._is_discarded(turn_id)
            outcome.state = self._state
            outcome.metrics.finalize()
            logger.info(
                "Turn completed",
                state=outcome.state.value,
                discarded=outcome.discarded,
                **outcome.metrics.to_dict(),
            )

        return outcome

    async def _run(self, turn_id: int, audio_bytes: bytes, outcome: TurnOutcome) -> None:
        metrics = outcome.metrics

        # Transcribing
        try:
            request = TurnRequest(lesson_id=self.lesson_id, stage=Stage.TRANSCRIBE, audio_bytes=audio_bytes)
        except ValueError as e:
            raise TranscriptionFailed(str(e)) from e
        stage_start = time.time()
        outcome.user_text = await self._transcribe(request)
        metrics.stt_ms = (time.time() - stage_start) * 1000

        if self._is_discarded(turn_id):
            return

        self._emit(Message(text=outcome.user_text, is_user=True))

        # Awaiting reply
        self._set_state(TurnState.AWAITING_REPLY)
        self._emit(Message(text=self.config.pending_text, is_user=False, is_pending=True))

        stage_start = time.time()
        outcome.reply_text = await self._respond(
            TurnRequest(lesson_id=self.lesson_id, stage=Stage.RESPOND, transcript_text=outcome.user_text)
        )
        metrics.llm_ms = (time.time() - stage_start) * 1000

        if self._is_discarded(turn_id):
            self._resolve_placeholder(outcome.reply_text)
            return

        # Synthesizing
        self._set_state(TurnState.SYNTHESIZING)
        stage_start = time.time()
        try:
            outcome.audio_bytes = await self._synthesize(outcome.reply_text)
        finally:
            metrics.tts_ms = (time.time() - stage_start) * 1000
            # Text-only reply when synthesis fails; the placeholder never lingers
            self._resolve_placeholder(outcome.reply_text)

        if self._is_discarded(turn_id):
            return

        # Playing
        self._set_state(TurnState.PLAYING)
        stage_start = time.time()
        try:
            await self._player.play(outcome.audio_bytes)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            failure = e if isinstance(e, PlaybackFailed) else PlaybackFailed(str(e))
            logger.warning("Playback failed", turn_id=turn_id, error=str(e))
            self._notify(turn_id, failure)
        metrics.playback_ms = (time.time() - stage_start) * 1000

        self._set_state(TurnState.IDLE)
        if not self._is_discarded(turn_id) and self._on_finished is not None:
            self._on_finished()

    async def _resolve_lesson_title(self, lesson_id: LessonId) -> str:
        lesson = await self._lessons.resolve(lesson_id)
        return lesson.title

    async def _transcribe(self, request: TurnRequest) -> str:
        try:
            await self._resolve_lesson_title(request.lesson_id)
            result = await self._stt.transcribe(
                request.audio_bytes,
                language_hint=self.config.elevenlabs_language_code,
            )
        except TranscriptionFailed:
            raise
        except LessonNotFound as e:
            raise TranscriptionFailed(str(e)) from e
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise TranscriptionFailed(f"Speech-to-text failed: {e}") from e

        text = (result.text or "").strip()
        if not text:
            raise TranscriptionFailed("No speech recognized")
        return text

    async def _respond(self, request: TurnRequest) -> str:
        try:
            title = await self._resolve_lesson_title(request.lesson_id)
            reply = await self._llm.complete(build_system_prompt(title), request.transcript_text)
        except CompletionFailed:
            raise
        except LessonNotFound as e:
            raise CompletionFailed(str(e)) from e
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise CompletionFailed(f"Chat completion failed: {e}") from e

        reply = (reply or "").strip()
        if not reply:
            raise CompletionFailed("Failed to generate AI response")
        return reply

    async def _synthesize(self, text: str) -> bytes:
        try:
            audio = await self._tts.synthesize(text, self._voice)
        except SynthesisFailed:
            raise
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise SynthesisFailed(f"Text-to-speech failed: {e}") from e

        if not audio:
            raise SynthesisFailed("TTS returned no audio")
        return audio
