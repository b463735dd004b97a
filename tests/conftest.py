"""
Pytest configuration and fixtures.
"""

import os
from typing import List, Sequence
from unittest.mock import AsyncMock, patch

import numpy as np
import pytest

from src.tutor.devices import AudioInputDevice, AudioOutputDevice, DrawSurface
from src.tutor.errors import PermissionDenied
from src.tutor.lessons import InMemoryLessonProvider, Lesson
from src.tutor.llm import ChatCompletionService
from src.tutor.stt import SpeechToTextService, TranscriptionResult
from src.tutor.tts import TextToSpeechService


@pytest.fixture(autouse=True)
def mock_env_vars():
    """Mock environment variables for tests."""
    env_vars = {
        "LOG_LEVEL": "DEBUG",
        "OPENAI_API_KEY": "test_openai_key",
        "OPENAI_MODEL": "gpt-4-turbo-preview",
        "ELEVENLABS_API_KEY": "test_elevenlabs_key",
        "ELEVENLABS_VOICE_ID": "pNInz6obpgDQGcFmaJgB",
        "SAMPLE_RATE": "16000",
        "ANALYSER_FFT_SIZE": "256",
        "WAVEFORM_FPS": "200",
    }

    with patch.dict(os.environ, env_vars):
        # Clear config cache
        from src.tutor.config import get_config
        get_config.cache_clear()
        yield
        get_config.cache_clear()


class FakeInputDevice(AudioInputDevice):
    """Microphone stand-in; tests push blocks and errors by hand."""

    def __init__(self, sample_rate: int = 16000, deny: bool = False):
        self.sample_rate = sample_rate
        self.deny = deny
        self.acquired = False
        self.acquire_count = 0
        self.release_count = 0
        self._on_block = None
        self._on_error = None

    def acquire(self, on_block, on_error):
        if self.deny:
            raise PermissionDenied("Permission denied by user")
        self.acquire_count += 1
        self.acquired = True
        self._on_block = on_block
        self._on_error = on_error
        return object()

    def release(self) -> None:
        if self.acquired:
            self.release_count += 1
        self.acquired = False

    def emit(self, block: np.ndarray) -> None:
        # Deliberately still delivers after release so tests can check the session drops it.
        if self._on_block is not None:
            self._on_block(block)

    def fail(self, error: BaseException) -> None:
        if self._on_error is not None:
            self._on_error(error)


class RecordingSurface(DrawSurface):
    def __init__(self, width: int = 400, height: int = 128):
        self.width = width
        self.height = height
        self.calls: List[str] = []
        self.polylines: List[Sequence] = []

    def clear(self) -> None:
        self.calls.append("clear")

    def stroke_polyline(self, points) -> None:
        self.calls.append("stroke")
        self.polylines.append(list(points))

    def end_frames(self) -> None:
        self.calls.append("end")


class FakePlayer(AudioOutputDevice):
    def __init__(self):
        self.played: List[bytes] = []
        self.error = None

    async def play(self, audio_bytes: bytes) -> None:
        if self.error is not None:
            raise self.error
        self.played.append(audio_bytes)


@pytest.fixture
def input_device():
    return FakeInputDevice()


@pytest.fixture
def denied_input_device():
    return FakeInputDevice(deny=True)


@pytest.fixture
def surface():
    return RecordingSurface()


@pytest.fixture
def player():
    return FakePlayer()


@pytest.fixture
def lesson():
    return Lesson(id=1, title="Greetings and small talk")


@pytest.fixture
def lessons(lesson):
    return InMemoryLessonProvider([lesson])


@pytest.fixture
def stt():
    service = AsyncMock(spec=SpeechToTextService)
    service.transcribe.return_value = TranscriptionResult(text="How are you?")
    return service


@pytest.fixture
def llm():
    service = AsyncMock(spec=ChatCompletionService)
    service.complete.return_value = "I'm doing well, thanks!"
    return service


@pytest.fixture
def tts():
    service = AsyncMock(spec=TextToSpeechService)
    service.synthesize.return_value = b"ID3-fake-mpeg-audio"
    return service


@pytest.fixture
def speech_block():
    """100ms of a 440Hz tone at 16kHz, float32."""
    t = np.arange(1600, dtype=np.float32) / 16000
    return (np.sin(2 * np.pi * 440 * t) * 0.5).astype(np.float32)
