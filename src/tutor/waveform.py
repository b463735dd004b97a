"""
Live waveform rendering for an active capture session.

The renderer is a cooperative asyncio task that redraws at a fixed frame rate.
It reads the analysis tap and draws on a surface; nothing else.
"""

from __future__ import annotations

import asyncio
from typing import Callable, List, Optional, Sequence

import numpy as np
import structlog

from src.tutor.audio import BYTE_CENTER
from src.tutor.devices import DrawSurface, Point

logger = structlog.get_logger(__name__)

SampleSource = Callable[[], np.ndarray]


def compute_waveform_points(samples: Sequence[int], width: float, height: float) -> List[Point]:
    """
    Map analyser bytes to polyline points across the surface.

    Sample i lands at x = i * (width / n) and y = (v / 128) * height / 2, so
    silence (128) sits on the horizontal midline. The trace always ends at the
    right edge on the midline.
    """
    n = len(samples)
    points: List[Point] = []
    if n:
        slice_width = float(width) / n
        x = 0.0
        for value in samples:
            v = float(value) / BYTE_CENTER
            points.append((x, v * height / 2))
            x += slice_width
    points.append((float(width), height / 2))
    return points


class WaveformRenderer:
    """
    Per-frame draw loop tied to one capture session.

    `stop()` is synchronous: once it returns the loop draws no further frame and
    never calls `read_samples` again.
    """

    def __init__(
        self,
        read_samples: SampleSource,
        surface: DrawSurface,
        *,
        fps: int = 60,
    ):
        self._read_samples = read_samples
        self._surface = surface
        self._frame_interval = 1.0 / max(1, fps)
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.frames_drawn = 0

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.debug("Waveform renderer started", frame_interval_ms=round(self._frame_interval * 1000, 2))

    def stop(self) -> None:
        if not self._running and self._task is None:
            return
        self._running = False
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
        self._surface.end_frames()
        logger.debug("Waveform renderer stopped", frames_drawn=self.frames_drawn)

    def draw_frame(self) -> None:
        """Draw one frame from the current sample window."""
        samples = self._read_samples()
        self._surface.clear()
        self._surface.stroke_polyline(
            compute_waveform_points(samples, self._surface.width, self._surface.height)
        )
        self.frames_drawn += 1

    async def _run(self) -> None:
        try:
            while self._running:
                self.draw_frame()
                await asyncio.sleep(self._frame_interval)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            self._running = False
            logger.error("Waveform renderer failed", error=str(e))
