"""
Voice tutor package.

Keep imports lightweight so modules like `src.tutor.transcript` can be used without
requiring the audio device stack (sounddevice/PortAudio) at import time.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from src.tutor.config import Config

__all__ = ["Config", "get_config"]


def __getattr__(name: str) -> Any:
    if name in __all__:
        from src.tutor.config import Config, get_config

        return {"Config": Config, "get_config": get_config}[name]
    raise AttributeError(name)
