"""
Medlink Triage - Reply Generator Tests

Run with: pytest tests/test_reply_generator.py -v
"""

import pytest

from conftest import make_groq_client, make_messages

from medlink.core.exceptions import ReplyGeneratorError
from medlink.core.types import CollectedFacts, MessageRole
from medlink.services.reply_generator import (
    HISTORY_WINDOW,
    STATIC_REPLY_ADDRESS_NOTED,
    STATIC_REPLY_DEFAULT,
    SUMMARY_PLACEHOLDER,
    GroqReplyGenerator,
    ReplyGenerator,
    StaticReplyGenerator,
    static_reply,
    trim_summary,
)


class TestStaticReplies:
    """Tests for the no-network fallbacks."""

    def test_address_noted(self):
        assert static_reply("J'habite 10 avenue des Champs") == STATIC_REPLY_ADDRESS_NOTED

    def test_default(self):
        assert static_reply("Venez vite") == STATIC_REPLY_DEFAULT

    @pytest.mark.parametrize("raw,expected", [
        (None, SUMMARY_PLACEHOLDER),
        ("", SUMMARY_PLACEHOLDER),
        ("\n  \n", SUMMARY_PLACEHOLDER),
        ('"Patient 45 ans, malaise"\nDétails', "Patient 45 ans, malaise"),
    ])
    def test_trim_summary(self, raw, expected):
        assert trim_summary(raw) == expected

    def test_trim_summary_max_chars(self):
        assert trim_summary("x" * 150, max_chars=100) == "x" * 100

    @pytest.mark.asyncio
    async def test_static_generator(self, caller_history):
        generator = StaticReplyGenerator()

        assert isinstance(generator, ReplyGenerator)
        assert await generator.generate_reply(caller_history) == STATIC_REPLY_DEFAULT
        assert await generator.summarize(caller_history) == (
            "Mon père a une douleur thoracique depuis 2 heures"
        )


class TestGroqReplyGenerator:
    """Tests for the Groq generator against a fake client."""

    @pytest.mark.asyncio
    async def test_generate_reply(self, caller_history):
        client = make_groq_client(content="  Quel âge a votre père ?  ")
        generator = GroqReplyGenerator(api_key="gsk_test", model="test-model", client=client)
        facts = CollectedFacts(address="10 avenue des Champs", symptoms=["douleur thoracique"])

        reply = await generator.generate_reply(caller_history, facts)

        assert reply == "Quel âge a votre père ?"
        call = client.chat.completions.calls[0]
        assert call["model"] == "test-model"
        chat = call["messages"]
        assert chat[0]["role"] == "system"
        assert "10 avenue des Champs" in chat[0]["content"]
        assert "douleur thoracique" in chat[0]["content"]
        assert [m["role"] for m in chat[1:]] == ["user", "assistant"]

    @pytest.mark.asyncio
    async def test_history_window(self):
        client = make_groq_client(content="ok")
        generator = GroqReplyGenerator(api_key="gsk_test", client=client)
        messages = make_messages(*[(MessageRole.CALLER, f"message {i}") for i in range(15)])

        await generator.generate_reply(messages)

        chat = client.chat.completions.calls[0]["messages"]
        assert len(chat) == HISTORY_WINDOW + 1
        assert chat[-1]["content"] == "message 14"

    @pytest.mark.asyncio
    async def test_error_raises_reply_generator_error(self, caller_history):
        client = make_groq_client(error=RuntimeError("timeout"))
        generator = GroqReplyGenerator(api_key="gsk_test", model="test-model", client=client)

        with pytest.raises(ReplyGeneratorError) as exc_info:
            await generator.generate_reply(caller_history)
        assert exc_info.value.details["model"] == "test-model"

    @pytest.mark.asyncio
    async def test_empty_completion_raises(self, caller_history):
        generator = GroqReplyGenerator(api_key="gsk_test", client=make_groq_client(content="  "))

        with pytest.raises(ReplyGeneratorError):
            await generator.generate_reply(caller_history)

    @pytest.mark.asyncio
    async def test_summarize(self, caller_history):
        client = make_groq_client(content="Patient âgé, douleur thoracique depuis 2h, à domicile")
        generator = GroqReplyGenerator(
            api_key="gsk_test",
            model="chat-model",
            summary_model="summary-model",
            client=client,
        )

        summary = await generator.summarize(caller_history)

        assert summary == "Patient âgé, douleur thoracique depuis 2h, à domicile"
        call = client.chat.completions.calls[0]
        assert call["model"] == "summary-model"
        assert call["max_tokens"] == 100
        assert "Appelant: Mon père" in call["messages"][0]["content"]
        assert "ARM: Quelle est votre adresse" in call["messages"][0]["content"]
