"""
Microphone capture session.

One session owns the microphone stream, the recorder buffer and the analysis tap
read by the waveform renderer. The device callback is the single writer; the
renderer is the single reader and is stopped before the tap is released.
"""

from __future__ import annotations

import asyncio
import threading
import time
from enum import Enum
from typing import Any, Callable, List, Optional

import numpy as np
import structlog

from src.tutor.audio import (
    concat_blocks,
    float_to_pcm16,
    to_time_domain_bytes,
    wav_duration_ms,
    write_wav_mono_pcm16,
)
from src.tutor.devices import AudioInputDevice, DrawSurface
from src.tutor.errors import CaptureFailed, PermissionDenied, SessionBusy
from src.tutor.waveform import WaveformRenderer

logger = structlog.get_logger(__name__)


class CaptureState(str, Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    RECORDING = "recording"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"


class TapClosed(RuntimeError):
    """Raised when the analysis tap is read after release."""
    pass


class AnalysisTap:
    """
    Ring buffer holding the latest `fft_size` samples for visualization.

    Mirrors an analyser node: readers get the current time-domain window as
    bytes (128 = silence).
    """

    def __init__(self, fft_size: int = 2048):
        self.fft_size = fft_size
        self._ring = np.zeros(fft_size, dtype=np.float32)
        self._write = 0
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, block: np.ndarray) -> None:
        b = block.reshape(-1).astype(np.float32)
        with self._lock:
            if self._closed:
                return
            size = self.fft_size
            n = b.size
            if n >= size:
                self._ring[:] = b[-size:]
                self._write = 0
                return
            w = self._write
            m = min(size - w, n)
            self._ring[w: w + m] = b[:m]
            r = n - m
            if r:
                self._ring[:r] = b[m:]
            self._write = (w + n) % size

    def read_float(self) -> np.ndarray:
        with self._lock:
            if self._closed:
                raise TapClosed("Analysis tap read after release")
            w = self._write
            if w == 0:
                return self._ring.copy()
            return np.concatenate((self._ring[w:], self._ring[:w]))

    def read_bytes(self) -> np.ndarray:
        return to_time_domain_bytes(self.read_float())

    def close(self) -> None:
        with self._lock:
            self._closed = True


class RecorderBuffer:
    """Accumulates captured blocks and encodes them as one WAV blob."""

    def __init__(self, sample_rate: int):
        self.sample_rate = sample_rate
        self._blocks: List[np.ndarray] = []
        self._lock = threading.Lock()
        self._finalized = False

    @property
    def block_count(self) -> int:
        return len(self._blocks)

    def append(self, block: np.ndarray) -> None:
        with self._lock:
            if not self._finalized:
                self._blocks.append(block)

    def finalize(self) -> bytes:
        with self._lock:
            self._finalized = True
            blocks, self._blocks = self._blocks, []
        pcm = float_to_pcm16(concat_blocks(blocks))
        return write_wav_mono_pcm16(pcm, self.sample_rate)

    def discard(self) -> None:
        with self._lock:
            self._finalized = True
            self._blocks = []


class AudioCaptureSession:
    """
    One recording, from microphone acquisition to the finalized WAV blob.

    A session is single-use: `start()` once, then `stop()` (or an abort on device
    error). Every exit path releases the microphone and closes the tap.
    """

    def __init__(
        self,
        device: AudioInputDevice,
        *,
        surface: Optional[DrawSurface] = None,
        fft_size: int = 2048,
        fps: int = 60,
        on_failure: Optional[Callable[[CaptureFailed], None]] = None,
    ):
        self._device = device
        self._surface = surface
        self._fft_size = fft_size
        self._fps = fps
        self._on_failure = on_failure

        self._state = CaptureState.IDLE
        self._stream: Optional[Any] = None
        self._tap: Optional[AnalysisTap] = None
        self._recorder: Optional[RecorderBuffer] = None
        self._renderer: Optional[WaveformRenderer] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._abort_task: Optional[asyncio.Task] = None
        self._started_at: float = 0.0

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def is_live(self) -> bool:
        return self._state in (CaptureState.ACQUIRING, CaptureState.RECORDING, CaptureState.STOPPING)

    @property
    def tap(self) -> Optional[AnalysisTap]:
        return self._tap

    @property
    def renderer(self) -> Optional[WaveformRenderer]:
        return self._renderer

    async def start(self) -> "AudioCaptureSession":
        """
        Acquire the microphone and begin recording.

        Raises:
            SessionBusy: if this session was already started
            PermissionDenied: if microphone access is refused
            CaptureFailed: on any other device error
        """
        if self._state is not CaptureState.IDLE:
            raise SessionBusy(f"Capture session is {self._state.value}")

        self._state = CaptureState.ACQUIRING
        self._loop = asyncio.get_running_loop()
        self._tap = AnalysisTap(self._fft_size)
        self._recorder = RecorderBuffer(self._device.sample_rate)

        try:
            self._stream = await asyncio.to_thread(
                self._device.acquire, self._on_block, self._on_device_error
            )
        except PermissionDenied:
            logger.warning("Microphone permission denied")
            self._state = CaptureState.FAILED
            self._release_local()
            await self._release_device()
            raise
        except Exception as e:
            logger.error("Microphone acquisition failed", error=str(e))
            self._state = CaptureState.FAILED
            self._release_local()
            await self._release_device()
            if isinstance(e, CaptureFailed):
                raise
            raise CaptureFailed(str(e)) from e

        if self._state is not CaptureState.ACQUIRING:
            # A device error arrived while acquiring. The abort may have run
            # before the stream existed, so release again now that it does.
            await self._release_device()
            raise CaptureFailed("Microphone failed while starting")

        self._state = CaptureState.RECORDING
        self._started_at = time.time()

        if self._surface is not None:
            self._renderer = WaveformRenderer(self._tap.read_bytes, self._surface, fps=self._fps)
            self._renderer.start()

        logger.info("Recording started", sample_rate=self._device.sample_rate)
        return self

    async def stop(self) -> Optional[bytes]:
        """
        Finish recording and release the microphone.

        Returns the WAV blob, or None if the session is not recording (already
        stopped, aborted, or never started).
        """
        if self._state is not CaptureState.RECORDING:
            return None
        self._state = CaptureState.STOPPING

        self._stop_renderer()
        try:
            await asyncio.to_thread(self._device.release)
        except Exception as e:
            logger.error("Microphone release failed", error=str(e))
            self._close_tap()
            if self._recorder:
                self._recorder.discard()
            self._state = CaptureState.FAILED
            raise CaptureFailed(str(e)) from e

        self._close_tap()
        self._stream = None
        blob = self._recorder.finalize() if self._recorder else b""
        self._state = CaptureState.STOPPED

        logger.info(
            "Recording stopped",
            blob_bytes=len(blob),
            duration_ms=round(wav_duration_ms(blob), 2),
            elapsed_ms=round((time.time() - self._started_at) * 1000, 2),
        )
        return blob

    async def cancel(self) -> None:
        """Tear down without producing a recording (modal dismissed)."""
        if self._state is not CaptureState.RECORDING:
            return
        self._state = CaptureState.STOPPING
        self._stop_renderer()
        try:
            await asyncio.to_thread(self._device.release)
        finally:
            self._close_tap()
            if self._recorder:
                self._recorder.discard()
            self._stream = None
            self._state = CaptureState.STOPPED
        logger.info("Recording cancelled")

    def _on_block(self, block: np.ndarray) -> None:
        # Device thread
        if self._state not in (CaptureState.ACQUIRING, CaptureState.RECORDING):
            return
        if self._tap:
            self._tap.write(block)
        if self._recorder:
            self._recorder.append(block)

    def _on_device_error(self, error: BaseException) -> None:
        # Device thread
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._abort, error)

    def _abort(self, error: BaseException) -> None:
        if self._state not in (CaptureState.ACQUIRING, CaptureState.RECORDING):
            return
        was_recording = self._state is CaptureState.RECORDING
        logger.error("Capture aborted", error=str(error), state=self._state.value)

        self._state = CaptureState.FAILED
        self._release_local()
        self._abort_task = asyncio.create_task(self._finish_abort(error, was_recording))

    async def _finish_abort(self, error: BaseException, was_recording: bool) -> None:
        await self._release_device()
        # Reported only once the microphone is free, so a retry can acquire it
        if was_recording and self._on_failure is not None:
            failure = error if isinstance(error, CaptureFailed) else CaptureFailed(str(error))
            self._on_failure(failure)

    async def wait_released(self) -> None:
        """Wait for a pending abort to finish releasing the microphone."""
        task = self._abort_task
        if task is not None and not task.done():
            await asyncio.shield(task)

    def _release_local(self) -> None:
        self._stop_renderer()
        self._close_tap()
        if self._recorder:
            self._recorder.discard()
        self._stream = None

    async def _release_device(self) -> None:
        try:
            await asyncio.to_thread(self._device.release)
        except Exception as e:
            logger.error("Microphone release failed", error=str(e))

    def _stop_renderer(self) -> None:
        if self._renderer is not None:
            self._renderer.stop()

    def _close_tap(self) -> None:
        if self._tap is not None:
            self._tap.close()
