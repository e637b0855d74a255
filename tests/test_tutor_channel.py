"""Tests for transcript conversion and the multi-provider LLM client.

Tests use mocked provider clients to avoid real API calls.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from mindtrail.errors import EntityNotFoundError, TutorChannelError
from mindtrail.models import ChatMessage
from mindtrail.tutor_channel import LLMClient, build_chat_messages


def _openai_response(text):
    response = MagicMock()
    response.choices = [MagicMock(message=MagicMock(content=text))]
    return response


@pytest.fixture
def openai_client():
    client = LLMClient(provider="openai", model="test-model", max_tokens=200)
    client._client = MagicMock()
    client._client.chat.completions.create = AsyncMock(return_value=_openai_response("Hello!"))
    return client


def test_build_chat_messages_merges_and_trims():
    """Test role mapping, merging of consecutive roles and leading tutor removal."""
    transcript = [
        ChatMessage(role="tutor", text="Welcome"),
        ChatMessage(role="learner", text="a"),
        ChatMessage(role="learner", text="b"),
        ChatMessage(role="tutor", text="c"),
    ]

    messages = build_chat_messages(transcript, "d")

    assert messages == [
        {"role": "user", "content": "a\n\nb"},
        {"role": "assistant", "content": "c"},
        {"role": "user", "content": "d"},
    ]


def test_build_chat_messages_merges_utterance_into_last_learner_turn():
    """Test that the utterance joins a trailing learner message."""
    transcript = [ChatMessage(role="learner", text="I'm done")]

    assert build_chat_messages(transcript, "hidden note") == [
        {"role": "user", "content": "I'm done\n\nhidden note"}
    ]


def test_unknown_provider():
    """Test that an unknown provider is rejected."""
    with pytest.raises(ValueError):
        LLMClient(provider="bogus")._get_client()


@pytest.mark.asyncio
async def test_openai_send_message(openai_client):
    """Test the chat-completions request shape."""
    reply = await openai_client.send_message([], "Hi", "Be kind.", "zh")

    assert reply == "Hello!"
    kwargs = openai_client._client.chat.completions.create.await_args.kwargs
    assert kwargs["model"] == "test-model"
    assert kwargs["max_tokens"] == 200
    assert kwargs["messages"][0]["role"] == "system"
    assert kwargs["messages"][0]["content"].startswith("Be kind.")
    assert kwargs["messages"][0]["content"].endswith("Always reply in language: zh.")
    assert kwargs["messages"][1] == {"role": "user", "content": "Hi"}


@pytest.mark.asyncio
async def test_anthropic_send_message():
    """Test that Anthropic receives the instruction as the system prompt."""
    client = LLMClient(provider="anthropic", model="claude-test")
    client._client = MagicMock()
    client._client.messages.create = AsyncMock(return_value=MagicMock(content=[MagicMock(text="Hi there")]))

    reply = await client.send_message([], "Hello", "Be brief.", "en")

    assert reply == "Hi there"
    kwargs = client._client.messages.create.await_args.kwargs
    assert kwargs["system"].startswith("Be brief.")
    assert kwargs["messages"] == [{"role": "user", "content": "Hello"}]


@pytest.mark.asyncio
async def test_retry_then_success(openai_client):
    """Test exponential backoff after a transient failure."""
    openai_client._client.chat.completions.create.side_effect = [
        RuntimeError("timeout"),
        _openai_response("Recovered"),
    ]

    with patch("mindtrail.tutor_channel.asyncio.sleep", new=AsyncMock()) as sleep:
        reply = await openai_client.send_message([], "Hi", "Be kind.", "zh")

    assert reply == "Recovered"
    sleep.assert_awaited_once_with(1)


@pytest.mark.asyncio
async def test_all_retries_fail(openai_client):
    """Test that exhausting retries raises TutorChannelError."""
    openai_client._client.chat.completions.create.side_effect = RuntimeError("down")

    with patch("mindtrail.tutor_channel.asyncio.sleep", new=AsyncMock()) as sleep:
        with pytest.raises(TutorChannelError, match="after 3 attempts"):
            await openai_client.send_message([], "Hi", "Be kind.", "zh")

    assert openai_client._client.chat.completions.create.await_count == 3
    assert [c.args[0] for c in sleep.await_args_list] == [1, 2]


@pytest.mark.asyncio
async def test_entity_not_found_is_not_retried(openai_client):
    """Test that an invalid key or model fails immediately."""
    openai_client._client.chat.completions.create.side_effect = RuntimeError(
        "404: Requested entity was not found"
    )

    with patch("mindtrail.tutor_channel.asyncio.sleep", new=AsyncMock()) as sleep:
        with pytest.raises(EntityNotFoundError):
            await openai_client.send_message([], "Hi", "Be kind.", "zh")

    assert openai_client._client.chat.completions.create.await_count == 1
    sleep.assert_not_awaited()
