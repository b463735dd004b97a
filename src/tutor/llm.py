"""
OpenAI chat completion wrapper for tutor replies.

Provides:
- System prompt built from the lesson title
- One non-streaming completion per user utterance (no history)
"""

from typing import Any, Optional
from abc import ABC, abstractmethod
import time

import structlog
from openai import AsyncOpenAI

from src.tutor.config import get_config
from src.tutor.errors import CompletionFailed

logger = structlog.get_logger(__name__)


def build_system_prompt(lesson_title: str) -> str:
    """
    Get the system prompt for the tutor.

    Keeps replies short because they are spoken back to the learner.
    """
    return f"""You are a language learning assistant helping with a lesson about "{lesson_title}".
Respond conversationally and naturally, but keep responses concise (max 2-3 sentences).
If you notice any language errors, provide gentle corrections.
Stay focused on the lesson topic."""


class ChatCompletionService(ABC):
    @abstractmethod
    async def complete(self, system_prompt: str, user_text: str) -> str:
        """Return the reply text or raise CompletionFailed."""
        raise NotImplementedError


class OpenAIChat(ChatCompletionService):
    """
    OpenAI chat completion client.

    Exactly one request per call; empty replies are treated as failures.
    """

    def __init__(self, config: Optional[Any] = None, client: Optional[AsyncOpenAI] = None):
        if config is None:
            config = get_config()

        self.config = config
        self.model = config.openai_model

        if client is None:
            kwargs = {"api_key": config.openai_api_key}
            if config.openai_base_url:
                kwargs["base_url"] = config.openai_base_url
            client = AsyncOpenAI(**kwargs)
        self._client = client

    async def complete(self, system_prompt: str, user_text: str) -> str:
        start_time = time.time()

        try:
            completion = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_text},
                ],
            )
        except Exception as e:
            logger.error("LLM completion failed", error=str(e), model=self.model)
            raise CompletionFailed(f"Completion request failed: {e}") from e

        total_ms = (time.time() - start_time) * 1000

        content = None
        if completion.choices:
            content = completion.choices[0].message.content

        reply = (content or "").strip()
        if not reply:
            logger.warning("LLM returned empty reply", model=self.model, total_ms=round(total_ms, 2))
            raise CompletionFailed("Failed to generate AI response")

        logger.info("LLM reply received", model=self.model, chars=len(reply), total_ms=round(total_ms, 2))
        return reply

    async def close(self) -> None:
        await self._client.close()
