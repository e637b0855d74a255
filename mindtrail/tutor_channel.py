"""Tutor channel: the opaque async function that produces tutor replies.

The engine only depends on the TutorChannel protocol. LLMClient is the
production implementation over OpenAI, Anthropic and xAI chat APIs.
"""

import asyncio
import logging
from typing import Optional, Protocol, Sequence

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from mindtrail.config import (
    ANTHROPIC_API_KEY,
    LLM_MAX_TOKENS,
    LLM_MODEL,
    LLM_PROVIDER,
    OPENAI_API_KEY,
    XAI_API_KEY,
)
from mindtrail.errors import EntityNotFoundError, TutorChannelError
from mindtrail.models import ChatMessage

# pylint: disable=broad-exception-caught

logger = logging.getLogger("mindtrail.tutor_channel")

# Backend message meaning the API key or model is not usable
ENTITY_NOT_FOUND_MESSAGE = "Requested entity was not found"

# Transcript roles mapped to chat-completion roles
_ROLE_MAP = {"learner": "user", "tutor": "assistant"}


class TutorChannel(Protocol):
    """Anything that can turn a transcript plus utterance into a tutor reply."""

    async def send_message(
        self,
        transcript: Sequence[ChatMessage],
        utterance: str,
        system_instruction: str,
        language: str,
    ) -> str: ...


def build_chat_messages(transcript: Sequence[ChatMessage], utterance: str) -> list[dict]:
    """Convert the transcript into provider chat messages, ending with the utterance.

    Consecutive messages with the same role are merged, since Anthropic
    rejects two user turns in a row.
    """
    messages: list[dict] = []
    for entry in list(transcript) + [ChatMessage(role="learner", text=utterance)]:
        role = _ROLE_MAP[entry.role]
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"] += "\n\n" + entry.text
        else:
            messages.append({"role": role, "content": entry.text})
    # Chat APIs expect the conversation to open with a user turn
    while messages and messages[0]["role"] == "assistant":
        messages.pop(0)
    return messages


# ============================================================================
# Multi-Provider LLM Client
# ============================================================================


class LLMClient:
    """Unified client for multiple LLM providers with retry logic."""

    def __init__(
        self,
        provider: str = LLM_PROVIDER,
        model: str = LLM_MODEL,
        max_tokens: int = LLM_MAX_TOKENS,
        max_retries: int = 3,
    ):
        self.provider = provider
        self.model = model
        self.max_tokens = max_tokens
        self.max_retries = max_retries
        self._client = None

    def _get_client(self):
        """Lazily initialize the appropriate LLM client."""
        if self._client is not None:
            return self._client

        if self.provider == "openai":
            self._client = AsyncOpenAI(api_key=OPENAI_API_KEY)
        elif self.provider == "anthropic":
            self._client = AsyncAnthropic(api_key=ANTHROPIC_API_KEY)
        elif self.provider == "xai":
            self._client = AsyncOpenAI(api_key=XAI_API_KEY, base_url="https://api.x.ai/v1")
        else:
            raise ValueError(f"Unknown LLM provider: {self.provider}")

        return self._client

    async def _complete(self, messages: list[dict], system_instruction: str) -> str:
        client = self._get_client()
        if self.provider == "anthropic":
            response = await client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system_instruction,
                messages=messages,
            )
            return response.content[0].text

        response = await client.chat.completions.create(
            model=self.model,
            messages=[{"role": "system", "content": system_instruction}] + messages,
            temperature=0.7,
            max_tokens=self.max_tokens,
        )
        return response.choices[0].message.content or ""

    async def send_message(
        self,
        transcript: Sequence[ChatMessage],
        utterance: str,
        system_instruction: str,
        language: str,
    ) -> str:
        """Send one utterance with a fresh system instruction.

        Raises:
            EntityNotFoundError: the backend rejected the key or model
            TutorChannelError: all retries failed
        """
        instruction = f"{system_instruction}\n\nAlways reply in language: {language}."
        messages = build_chat_messages(transcript, utterance)
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            try:
                return await self._complete(messages, instruction)
            except Exception as e:
                if ENTITY_NOT_FOUND_MESSAGE in str(e):
                    raise EntityNotFoundError(str(e)) from e
                last_error = e
                logger.warning(
                    "Tutor request failed (attempt %d/%d): %s", attempt + 1, self.max_retries, e
                )
                if attempt < self.max_retries - 1:
                    # Exponential backoff
                    await asyncio.sleep(2**attempt)

        raise TutorChannelError(
            f"LLM API failed after {self.max_retries} attempts: {last_error}"
        ) from last_error
