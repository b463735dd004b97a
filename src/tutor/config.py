"""
Configuration management for the voice tutor.

Loads environment variables and provides a strongly-typed configuration object.
Validates required keys at startup.
"""

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv
import structlog

load_dotenv()

logger = structlog.get_logger(__name__)


class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


@dataclass(frozen=True)
class Config:
    """Strongly-typed configuration object."""

    log_level: str = "INFO"

    # Lessons
    # - lessons_file points at a JSON list of {"id": ..., "title": ...}
    lessons_file: str = ""

    # OpenAI (chat completion)
    openai_api_key: str = ""
    openai_model: str = "gpt-4-turbo-preview"
    openai_base_url: str = ""

    # ElevenLabs (STT + TTS)
    elevenlabs_api_key: str = ""
    elevenlabs_base_url: str = "https://api.elevenlabs.io"
    elevenlabs_stt_model: str = "scribe_v1_experimental"
    elevenlabs_language_code: str = "eng"
    elevenlabs_voice_id: str = "pNInz6obpgDQGcFmaJgB"
    elevenlabs_tts_model: str = "eleven_multilingual_v2"
    elevenlabs_stability: float = 0.5
    elevenlabs_similarity_boost: float = 0.75
    request_timeout_seconds: float = 30.0

    # Capture
    sample_rate: int = 16000
    capture_blocksize: int = 1024
    analyser_fft_size: int = 2048

    # Waveform
    waveform_fps: int = 60
    waveform_width: int = 72
    waveform_height: int = 12

    # Transcript
    pending_text: str = "Thinking..."
    completion_fallback_text: str = (
        "Sorry, I couldn't come up with a reply. Please try again."
    )

    def validate(self) -> None:
        """Validate that all required configuration is present."""
        missing = []

        if not self.openai_api_key:
            missing.append("OPENAI_API_KEY")
        if not self.openai_model:
            missing.append("OPENAI_MODEL")
        if not self.elevenlabs_api_key:
            missing.append("ELEVENLABS_API_KEY")
        if not self.elevenlabs_voice_id:
            missing.append("ELEVENLABS_VOICE_ID")

        if missing:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing)}\n"
                "Please check your .env file."
            )

        if self.sample_rate <= 0:
            raise ConfigError(f"Invalid SAMPLE_RATE '{self.sample_rate}'. Expected a positive integer.")
        if self.analyser_fft_size <= 0:
            raise ConfigError(
                f"Invalid ANALYSER_FFT_SIZE '{self.analyser_fft_size}'. Expected a positive integer."
            )
        if self.waveform_fps <= 0:
            raise ConfigError(f"Invalid WAVEFORM_FPS '{self.waveform_fps}'. Expected a positive integer.")

    def log_config(self) -> None:
        """Log configuration (without secrets)."""
        logger.info(
            "Configuration loaded",
            log_level=self.log_level,
            lessons_file=self.lessons_file or "NOT SET",
            openai_model=self.openai_model,
            elevenlabs_stt_model=self.elevenlabs_stt_model,
            elevenlabs_tts_model=self.elevenlabs_tts_model,
            elevenlabs_voice_id=self.elevenlabs_voice_id,
            language_code=self.elevenlabs_language_code,
            sample_rate=self.sample_rate,
            analyser_fft_size=self.analyser_fft_size,
            waveform_fps=self.waveform_fps,
            openai_key_set=bool(self.openai_api_key),
            elevenlabs_key_set=bool(self.elevenlabs_api_key),
        )


def _get_int(key: str, default: int) -> int:
    """Get an integer from environment variable."""
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


def _get_float(key: str, default: float) -> float:
    """Get a float from environment variable."""
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


@lru_cache(maxsize=1)
def get_config() -> Config:
    """
    Get the application configuration.

    Uses lru_cache to ensure we only load config once.
    """
    return Config(
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),

        # Lessons
        lessons_file=os.getenv("LESSONS_FILE", ""),

        # OpenAI
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4-turbo-preview"),
        openai_base_url=os.getenv("OPENAI_BASE_URL", ""),

        # ElevenLabs
        elevenlabs_api_key=os.getenv("ELEVENLABS_API_KEY", ""),
        elevenlabs_base_url=os.getenv("ELEVENLABS_BASE_URL", "https://api.elevenlabs.io"),
        elevenlabs_stt_model=os.getenv("ELEVENLABS_STT_MODEL", "scribe_v1_experimental"),
        elevenlabs_language_code=os.getenv("ELEVENLABS_LANGUAGE_CODE", "eng"),
        elevenlabs_voice_id=os.getenv("ELEVENLABS_VOICE_ID", "pNInz6obpgDQGcFmaJgB"),
        elevenlabs_tts_model=os.getenv("ELEVENLABS_TTS_MODEL", "eleven_multilingual_v2"),
        elevenlabs_stability=_get_float("ELEVENLABS_STABILITY", 0.5),
        elevenlabs_similarity_boost=_get_float("ELEVENLABS_SIMILARITY_BOOST", 0.75),
        request_timeout_seconds=_get_float("REQUEST_TIMEOUT_SECONDS", 30.0),

        # Capture
        sample_rate=_get_int("SAMPLE_RATE", 16000),
        capture_blocksize=_get_int("CAPTURE_BLOCKSIZE", 1024),
        analyser_fft_size=_get_int("ANALYSER_FFT_SIZE", 2048),

        # Waveform
        waveform_fps=_get_int("WAVEFORM_FPS", 60),
        waveform_width=_get_int("WAVEFORM_WIDTH", 72),
        waveform_height=_get_int("WAVEFORM_HEIGHT", 12),

        # Transcript
        pending_text=os.getenv("PENDING_TEXT", "Thinking..."),
        completion_fallback_text=os.getenv(
            "COMPLETION_FALLBACK_TEXT",
            "Sorry, I couldn't come up with a reply. Please try again.",
        ),
    )


def init_config() -> Config:
    """
    Initialize and validate configuration.

    Call this at application startup to fail fast if config is invalid.
    """
    config = get_config()
    config.validate()
    config.log_config()
    return config
