"""
Medlink Triage - Call Session Store

Owns the call-id -> ConversationContext map for every active call.

Serialization discipline:
    - Every handled utterance runs inside `serialize(call_id)`, which
      holds a per-call asyncio.Lock. Utterances of one call are processed
      strictly in arrival order; distinct calls never wait on each other.
    - Map insert/lookup/delete are plain dict operations on the event
      loop thread and need no extra lock.
    - delete() is synchronous. A handler resuming after an await must
      check `is_current(context)` before mutating; a retired context is
      never written to again.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional

from medlink.core.logging import mask_call_id
from medlink.core.types import CallId, ConversationContext

logger = logging.getLogger(__name__)


class CallSessionStore:
    """
    In-memory store for per-call conversational state.

    Usage:
        store = CallSessionStore()

        async with store.serialize(call_id):
            context = store.get_or_create(call_id)
            ...

        store.delete(call_id)
    """

    def __init__(self):
        self._contexts: Dict[str, ConversationContext] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    # -------------------------------------------------------------------------
    # Context lifecycle
    # -------------------------------------------------------------------------

    def get_or_create(self, call_id: str) -> ConversationContext:
        """Return the context for call_id, creating it on first use."""
        context = self._contexts.get(call_id)
        if context is None:
            context = ConversationContext(call_id=CallId(call_id))
            self._contexts[call_id] = context
            logger.info("Call context created: call=%s", mask_call_id(call_id))
        return context

    def get(self, call_id: str) -> Optional[ConversationContext]:
        return self._contexts.get(call_id)

    def delete(self, call_id: str) -> Optional[ConversationContext]:
        """Remove and return the context. Safe to call for unknown ids."""
        context = self._contexts.pop(call_id, None)
        if context is not None:
            logger.info(
                "Call context removed: call=%s, messages=%d",
                mask_call_id(call_id),
                len(context.messages),
            )
        return context

    def is_current(self, context: ConversationContext) -> bool:
        """True if context is still the live context for its call id."""
        return self._contexts.get(context.call_id) is context

    def active_call_ids(self) -> List[str]:
        return list(self._contexts)

    def active_count(self) -> int:
        return len(self._contexts)

    def clear(self) -> None:
        count = len(self._contexts)
        self._contexts.clear()
        logger.info("CallSessionStore cleared: %d contexts", count)

    # -------------------------------------------------------------------------
    # Per-call serialization
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def serialize(self, call_id: str) -> AsyncIterator[None]:
        """
        Hold the per-call lock for the duration of the block.

        Locks are created lazily and dropped once no coroutine holds or
        waits on them.
        """
        lock = self._locks.get(call_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[call_id] = lock
        self._waiters[call_id] = self._waiters.get(call_id, 0) + 1

        try:
            async with lock:
                yield
        finally:
            remaining = self._waiters[call_id] - 1
            if remaining:
                self._waiters[call_id] = remaining
            else:
                del self._waiters[call_id]
                del self._locks[call_id]
