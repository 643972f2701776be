"""
Medlink Triage - Reply Generator

Produces the dispatcher's spoken reply and the one-sentence call summary.

Implementations:
    - StaticReplyGenerator: fixed French replies, no network
    - GroqReplyGenerator: Groq chat completions

Collaborator failures surface as ReplyGeneratorError; the orchestrator
catches them and falls back to the static texts below.
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from groq import AsyncGroq

from medlink.core.exceptions import ReplyGeneratorError
from medlink.core.extraction import extract_street_address
from medlink.core.types import CollectedFacts, Message, MessageRole
from medlink.services.prompts import (
    DISPATCHER_SYSTEM_PROMPT,
    FACTS_MEMORY_TEMPLATE,
    SUMMARY_PROMPT,
)

logger = logging.getLogger(__name__)


STATIC_REPLY_ADDRESS_NOTED = (
    "D'accord, j'ai bien noté l'adresse. Les secours sont en route. "
    "Pouvez-vous me décrire la situation ?"
)
STATIC_REPLY_DEFAULT = (
    "Pouvez-vous me décrire la situation ? Et surtout, quelle est votre adresse exacte ?"
)
SUMMARY_PLACEHOLDER = "Résumé indisponible"
DEFAULT_SUMMARY_MAX_CHARS = 100
HISTORY_WINDOW = 10


def static_reply(utterance: str) -> str:
    """Fallback reply for the latest caller utterance."""
    if extract_street_address(utterance):
        return STATIC_REPLY_ADDRESS_NOTED
    return STATIC_REPLY_DEFAULT


def trim_summary(text: Optional[str], max_chars: int = DEFAULT_SUMMARY_MAX_CHARS) -> str:
    """Keep the first non-empty line, at most max_chars long."""
    if not text:
        return SUMMARY_PLACEHOLDER
    for line in text.strip().splitlines():
        line = line.strip().strip('"').strip()
        if line:
            return line[:max_chars].rstrip()
    return SUMMARY_PLACEHOLDER


def _last_caller_text(messages: Sequence[Message]) -> str:
    for message in reversed(messages):
        if message.role == MessageRole.CALLER:
            return message.text
    return ""


# =============================================================================
# Protocol
# =============================================================================

@runtime_checkable
class ReplyGenerator(Protocol):
    """
    Protocol for dispatcher reply generation.

    Implementations must raise ReplyGeneratorError on failure rather
    than returning partial text.
    """

    @abstractmethod
    async def generate_reply(
        self,
        messages: Sequence[Message],
        facts: Optional[CollectedFacts] = None,
    ) -> str:
        """Reply to the latest caller message given the full history."""
        ...

    @abstractmethod
    async def summarize(self, messages: Sequence[Message]) -> str:
        """One-sentence summary of the call (<= 100 chars)."""
        ...


# =============================================================================
# Static Implementation
# =============================================================================

class StaticReplyGenerator:
    """
    Deterministic replies with no external dependency.

    The summary is a trimmed concatenation of caller utterances.
    """

    def __init__(self, summary_max_chars: int = DEFAULT_SUMMARY_MAX_CHARS):
        self.summary_max_chars = summary_max_chars

    async def generate_reply(
        self,
        messages: Sequence[Message],
        facts: Optional[CollectedFacts] = None,
    ) -> str:
        return static_reply(_last_caller_text(messages))

    async def summarize(self, messages: Sequence[Message]) -> str:
        caller = [m.text for m in messages if m.role == MessageRole.CALLER]
        return trim_summary(" | ".join(caller), self.summary_max_chars)


# =============================================================================
# Groq Implementation
# =============================================================================

class GroqReplyGenerator:
    """
    Reply generation through Groq chat completions.

    Only the last HISTORY_WINDOW exchanged messages are sent; facts
    already collected are injected into the system prompt so the model
    does not ask for them again.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "llama-3.3-70b-versatile",
        summary_model: Optional[str] = None,
        temperature: float = 0.3,
        max_tokens: int = 150,
        summary_max_chars: int = DEFAULT_SUMMARY_MAX_CHARS,
        client: Optional[Any] = None,
    ):
        self.model = model
        self.summary_model = summary_model or model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.summary_max_chars = summary_max_chars
        self.client = client if client is not None else AsyncGroq(api_key=api_key)

        logger.info("GroqReplyGenerator initialized: model=%s", self.model)

    def _build_messages(
        self,
        messages: Sequence[Message],
        facts: Optional[CollectedFacts],
    ) -> List[Dict[str, str]]:
        system_content = DISPATCHER_SYSTEM_PROMPT
        if facts is not None:
            system_content += FACTS_MEMORY_TEMPLATE.format(
                address=facts.address or "inconnue",
                address_confirmed="oui" if facts.address_confirmed else "non",
                symptoms=", ".join(facts.symptoms) or "aucun",
                consciousness=facts.consciousness.value,
            )

        chat = [{"role": "system", "content": system_content}]
        history = [m for m in messages if m.role != MessageRole.SYSTEM]
        for message in history[-HISTORY_WINDOW:]:
            role = "user" if message.role == MessageRole.CALLER else "assistant"
            chat.append({"role": role, "content": message.text})
        return chat

    async def _complete(self, model: str, chat: List[Dict[str, str]], max_tokens: int) -> str:
        try:
            completion = await self.client.chat.completions.create(
                messages=chat,
                model=model,
                temperature=self.temperature,
                max_tokens=max_tokens,
            )
            content = completion.choices[0].message.content
        except Exception as e:
            raise ReplyGeneratorError(
                f"Groq completion failed: {e}",
                details={"model": model},
            ) from e

        if not content or not content.strip():
            raise ReplyGeneratorError("Groq returned an empty completion", details={"model": model})
        return content.strip()

    async def generate_reply(
        self,
        messages: Sequence[Message],
        facts: Optional[CollectedFacts] = None,
    ) -> str:
        chat = self._build_messages(messages, facts)
        return await self._complete(self.model, chat, self.max_tokens)

    async def summarize(self, messages: Sequence[Message]) -> str:
        conversation = "\n".join(
            f"{'Appelant' if m.role == MessageRole.CALLER else 'ARM'}: {m.text}"
            for m in messages
            if m.role != MessageRole.SYSTEM
        )
        chat = [{"role": "user", "content": SUMMARY_PROMPT.format(conversation=conversation)}]
        raw = await self._complete(self.summary_model, chat, 100)
        return trim_summary(raw, self.summary_max_chars)
