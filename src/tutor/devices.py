"""
Device capabilities used by the capture session, renderer and orchestrator.

The core only sees the abstract interfaces. The concrete implementations use
sounddevice (PortAudio) for the microphone and speakers, soundfile to decode the
synthesized reply, and a character grid for the waveform in a terminal.
"""

from __future__ import annotations

import asyncio
import io
import sys
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Sequence, TextIO, Tuple

import numpy as np
import structlog

from src.tutor.errors import CaptureFailed, PermissionDenied, PlaybackFailed

logger = structlog.get_logger(__name__)

Point = Tuple[float, float]
BlockCallback = Callable[[np.ndarray], None]
ErrorCallback = Callable[[BaseException], None]


class AudioInputDevice(ABC):
    """Exclusive microphone access."""

    sample_rate: int

    @abstractmethod
    def acquire(self, on_block: BlockCallback, on_error: ErrorCallback) -> Any:
        """
        Open the microphone and start delivering float32 mono blocks.

        `on_block` and `on_error` may be called from a device thread. Raises
        PermissionDenied when access is refused.
        """
        raise NotImplementedError

    @abstractmethod
    def release(self) -> None:
        """Stop delivery and release the hardware. Safe to call more than once."""
        raise NotImplementedError


class AudioOutputDevice(ABC):
    @abstractmethod
    async def play(self, audio_bytes: bytes) -> None:
        """Play encoded audio once and return when playback ends."""
        raise NotImplementedError


class DrawSurface(ABC):
    width: int
    height: int

    @abstractmethod
    def clear(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def stroke_polyline(self, points: Sequence[Point]) -> None:
        raise NotImplementedError

    def end_frames(self) -> None:
        """Called when rendering stops; the next frame starts a new drawing."""
        pass


class SoundDeviceInput(AudioInputDevice):
    """
    Microphone input through a sounddevice InputStream.

    The PortAudio callback does the minimum: copy the block and hand it off.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        blocksize: int = 1024,
        device: Optional[Any] = None,
    ):
        self.sample_rate = sample_rate
        self.blocksize = blocksize
        self.device = device
        self._stream: Optional[Any] = None
        self._releasing = False
        self._lock = threading.Lock()

    def acquire(self, on_block: BlockCallback, on_error: ErrorCallback) -> Any:
        import sounddevice as sd  # Local import: needs the PortAudio library

        def _callback(indata, frames, time_info, status):
            if status and getattr(status, "input_overflow", False):
                logger.debug("Microphone input overflow", frames=frames)
            try:
                # Copy is required; PortAudio reuses the buffer
                on_block(indata[:, 0].copy())
            except Exception as e:
                on_error(e)
                raise sd.CallbackAbort from e

        def _finished() -> None:
            if not self._releasing:
                on_error(CaptureFailed("Microphone stream ended unexpectedly"))

        with self._lock:
            if self._stream is not None:
                raise CaptureFailed("Microphone already acquired")
            self._releasing = False
            try:
                stream = sd.InputStream(
                    samplerate=self.sample_rate,
                    channels=1,
                    dtype="float32",
                    blocksize=self.blocksize,
                    device=self.device,
                    callback=_callback,
                    finished_callback=_finished,
                )
            except sd.PortAudioError as e:
                raise PermissionDenied(str(e)) from e

            try:
                stream.start()
            except sd.PortAudioError as e:
                stream.close()
                raise PermissionDenied(str(e)) from e

            self._stream = stream

        logger.info("Microphone acquired", sample_rate=self.sample_rate, blocksize=self.blocksize)
        return stream

    def release(self) -> None:
        with self._lock:
            stream, self._stream = self._stream, None
            if stream is None:
                return
            self._releasing = True
            try:
                stream.stop()
            finally:
                stream.close()
        logger.info("Microphone released")


class SoundDevicePlayer(AudioOutputDevice):
    """Decode with soundfile and play once through the default output device."""

    def __init__(self, device: Optional[Any] = None):
        self.device = device

    def _play_blocking(self, audio_bytes: bytes) -> None:
        import sounddevice as sd  # Local import: needs the PortAudio library
        import soundfile as sf

        data, sample_rate = sf.read(io.BytesIO(audio_bytes), dtype="float32")
        sd.play(data, sample_rate, device=self.device)
        sd.wait()

    async def play(self, audio_bytes: bytes) -> None:
        if not audio_bytes:
            raise PlaybackFailed("No audio to play")
        try:
            await asyncio.to_thread(self._play_blocking, audio_bytes)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise PlaybackFailed(str(e)) from e


class TerminalSurface(DrawSurface):
    """
    Character-grid drawing surface.

    Each stroke rasterizes the polyline into the grid and redraws it in place.
    """

    def __init__(self, width: int = 72, height: int = 12, stream: Optional[TextIO] = None):
        self.width = width
        self.height = height
        self._stream = stream or sys.stderr
        self._grid: List[List[str]] = []
        self._drawn_once = False
        self.clear()

    def clear(self) -> None:
        self._grid = [[" "] * self.width for _ in range(self.height)]

    def _plot(self, x: float, y: float) -> None:
        col = min(self.width - 1, max(0, int(round(x))))
        row = min(self.height - 1, max(0, int(round(y))))
        self._grid[row][col] = "*"

    def stroke_polyline(self, points: Sequence[Point]) -> None:
        for (x0, y0), (x1, y1) in zip(points, points[1:]):
            steps = max(1, int(max(abs(x1 - x0), abs(y1 - y0))))
            for i in range(steps + 1):
                t = i / steps
                self._plot(x0 + (x1 - x0) * t, y0 + (y1 - y0) * t)
        if len(points) == 1:
            self._plot(*points[0])
        self._flush()

    def end_frames(self) -> None:
        # Lines printed after this point must not be drawn over
        self._drawn_once = False

    def render(self) -> str:
        return "\n".join("".join(row) for row in self._grid)

    def _flush(self) -> None:
        if self._drawn_once:
            # Move the cursor back to the top of the previous frame
            self._stream.write(f"\x1b[{self.height}F")
        self._stream.write(self.render() + "\n")
        self._stream.flush()
        self._drawn_once = True
