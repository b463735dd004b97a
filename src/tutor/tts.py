from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import httpx
import structlog

from src.tutor.config import get_config
from src.tutor.errors import SynthesisFailed

logger = structlog.get_logger(__name__)

TTS_PATH = "/v1/text-to-speech"


@dataclass(frozen=True)
class VoiceConfig:
    """Fixed voice settings for tutor replies."""

    voice_id: str = "pNInz6obpgDQGcFmaJgB"
    model_id: str = "eleven_multilingual_v2"
    stability: float = 0.5
    similarity_boost: float = 0.75

    @classmethod
    def from_config(cls, config: Optional[Any] = None) -> "VoiceConfig":
        config = config or get_config()
        return cls(
            voice_id=config.elevenlabs_voice_id,
            model_id=config.elevenlabs_tts_model,
            stability=config.elevenlabs_stability,
            similarity_boost=config.elevenlabs_similarity_boost,
        )

    def to_payload(self, text: str) -> dict:
        return {
            "text": text,
            "model_id": self.model_id,
            "voice_settings": {
                "stability": self.stability,
                "similarity_boost": self.similarity_boost,
            },
        }


class TextToSpeechService(ABC):
    @abstractmethod
    async def synthesize(self, text: str, voice: VoiceConfig) -> bytes:
        """Return encoded audio for `text` or raise SynthesisFailed."""
        raise NotImplementedError


class ElevenLabsTTS(TextToSpeechService):
    """
    ElevenLabs text-to-speech (non-streaming).

    The whole reply is synthesized in one request and returned as MPEG audio.
    """

    def __init__(self, config: Optional[Any] = None, client: Optional[httpx.AsyncClient] = None):
        self.config = config or get_config()
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.elevenlabs_base_url,
                timeout=self.config.request_timeout_seconds,
            )
        return self._client

    async def synthesize(self, text: str, voice: VoiceConfig) -> bytes:
        if not text or not text.strip():
            raise SynthesisFailed("Nothing to synthesize")

        start_time = time.time()
        try:
            response = await self._get_client().post(
                f"{self.config.elevenlabs_base_url}{TTS_PATH}/{voice.voice_id}",
                headers={
                    "Accept": "audio/mpeg",
                    "Content-Type": "application/json",
                    "xi-api-key": self.config.elevenlabs_api_key,
                },
                json=voice.to_payload(text),
            )
        except httpx.HTTPError as e:
            logger.error("TTS request failed", error=str(e))
            raise SynthesisFailed(f"TTS request failed: {e}") from e

        if response.status_code != 200:
            logger.error(
                "TTS returned an error",
                status_code=response.status_code,
                response=response.text[:200],
            )
            raise SynthesisFailed(f"Failed to generate speech (status {response.status_code})")

        audio = response.content
        if not audio:
            raise SynthesisFailed("TTS returned no audio")

        logger.info(
            "Speech synthesized",
            characters=len(text),
            audio_bytes=len(audio),
            total_ms=round((time.time() - start_time) * 1000, 2),
        )
        return audio

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
