"""Model-call service: system prompt + conversation in, freeform text out."""

import logging
from abc import ABC, abstractmethod
from typing import Any

import anthropic
from anthropic import AsyncAnthropic

from acf_coach.config import settings
from acf_coach.services.errors import (
    ContentBlockedError,
    EmptyResponseError,
    ModelTransportError,
    ResponseTruncatedError,
)
from acf_coach.schemas import ModelOptions, Turn

logger = logging.getLogger(__name__)

# Anthropic requires the first message to come from the user; stage
# transcripts open with the coach's question.
SESSION_OPENER = "Let's begin."


class ModelClient(ABC):
    """
    Vendor-neutral text completion.

    Implementations raise a ModelUnavailableError subclass for every
    failure; nothing is retried automatically.
    """

    @abstractmethod
    async def complete(
        self,
        system: str,
        conversation: list[Turn],
        options: ModelOptions | None = None,
    ) -> str:
        """Return the model's reply to the conversation under the system instruction."""


class AnthropicModelClient(ModelClient):
    """ModelClient backed by the Anthropic Messages API."""

    def __init__(self, model: str | None = None, client: AsyncAnthropic | None = None) -> None:
        self.model = model or settings.model_coach
        if client is not None:
            self.client = client
        else:
            api_key = settings.anthropic_api_key
            if not api_key:
                logger.error(f"[{self.__class__.__name__}] No ANTHROPIC_API_KEY found!")
                raise ValueError("ANTHROPIC_API_KEY is not set in environment variables")

            # Strip quotes if present (common .env issue)
            api_key = api_key.strip('"').strip("'")
            self.client = AsyncAnthropic(api_key=api_key, timeout=settings.model_timeout_seconds)
        logger.info(f"[{self.__class__.__name__}] Using model: {self.model}")

    @staticmethod
    def _to_messages(conversation: list[Turn]) -> list[dict[str, str]]:
        messages = [
            {"role": "assistant" if turn.role == "coach" else "user", "content": turn.text}
            for turn in conversation
        ]
        if not messages or messages[0]["role"] != "user":
            messages.insert(0, {"role": "user", "content": SESSION_OPENER})
        return messages

    async def complete(
        self,
        system: str,
        conversation: list[Turn],
        options: ModelOptions | None = None,
    ) -> str:
        options = options or ModelOptions()
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
            "system": system,
            "messages": self._to_messages(conversation),
        }

        try:
            response = await self.client.messages.create(**kwargs)
        except anthropic.APIError as e:
            logger.error(f"[{self.__class__.__name__}] Error calling Claude API: {e}")
            raise ModelTransportError(f"Model request failed: {e}") from e

        stop_reason = getattr(response, "stop_reason", None)
        if stop_reason == "refusal":
            logger.warning(f"[{self.__class__.__name__}] Response blocked by content filter")
            raise ContentBlockedError("Response filtered for safety reasons")

        text = "".join(
            block.text for block in response.content if isinstance(getattr(block, "text", None), str)
        ).strip()

        if not text:
            if stop_reason == "max_tokens":
                raise ResponseTruncatedError("Response too long; hit the token limit before any text")
            raise EmptyResponseError("Empty response from model")

        if stop_reason == "max_tokens":
            logger.warning(
                f"[{self.__class__.__name__}] Response truncated at {options.max_tokens} tokens"
            )
        return text
