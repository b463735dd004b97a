"""
ElevenLabs Speech-to-Text client.

One request per recording: the WAV blob is uploaded as multipart form data and the
full transcript comes back in a single JSON response.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
import structlog

from src.tutor.config import get_config
from src.tutor.errors import TranscriptionFailed

logger = structlog.get_logger(__name__)

STT_PATH = "/v1/speech-to-text"


@dataclass
class TranscriptionResult:
    """Result from STT."""
    text: str
    language_code: Optional[str] = None
    language_probability: Optional[float] = None
    timestamp: float = field(default_factory=time.time)
    latency_ms: float = 0.0


class SpeechToTextService(ABC):
    @abstractmethod
    async def transcribe(self, audio_bytes: bytes, language_hint: Optional[str] = None) -> TranscriptionResult:
        """Transcribe a finished recording or raise TranscriptionFailed."""
        raise NotImplementedError


class ElevenLabsSTT(SpeechToTextService):
    """
    ElevenLabs Scribe client using httpx.

    Pass `client` to reuse a connection pool (or a mock transport in tests).
    """

    def __init__(self, config: Optional[Any] = None, client: Optional[httpx.AsyncClient] = None):
        if config is None:
            config = get_config()

        self.config = config
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.elevenlabs_base_url,
                timeout=self.config.request_timeout_seconds,
            )
        return self._client

    async def transcribe(self, audio_bytes: bytes, language_hint: Optional[str] = None) -> TranscriptionResult:
        if not audio_bytes:
            raise TranscriptionFailed("Empty audio")

        language = language_hint or self.config.elevenlabs_language_code
        start_time = time.time()

        try:
            response = await self._get_client().post(
                f"{self.config.elevenlabs_base_url}{STT_PATH}",
                headers={"xi-api-key": self.config.elevenlabs_api_key},
                data={
                    "model_id": self.config.elevenlabs_stt_model,
                    "language_code": language,
                    "tag_audio_events": "false",
                    "diarize": "false",
                },
                files={"file": ("speech.wav", audio_bytes, "audio/wav")},
            )
        except httpx.HTTPError as e:
            logger.error("STT request failed", error=str(e))
            raise TranscriptionFailed(f"STT request failed: {e}") from e

        latency_ms = (time.time() - start_time) * 1000

        if response.status_code != 200:
            logger.error(
                "STT returned an error",
                status_code=response.status_code,
                response=response.text[:200],
            )
            raise TranscriptionFailed(f"STT returned status {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise TranscriptionFailed("STT returned invalid JSON") from e

        text = str(data.get("text") or "").strip()
        if not text:
            logger.warning("STT returned empty transcript", latency_ms=round(latency_ms, 2))
            raise TranscriptionFailed("No speech recognized")

        logger.info(
            "Transcription received",
            chars=len(text),
            language_code=data.get("language_code"),
            latency_ms=round(latency_ms, 2),
        )
        return TranscriptionResult(
            text=text,
            language_code=data.get("language_code"),
            language_probability=data.get("language_probability"),
            latency_ms=latency_ms,
        )

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
