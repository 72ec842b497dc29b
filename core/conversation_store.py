"""
Concierge Conversation Store

Holds the single pending state of each conversation. Starting a new flow
replaces whatever was pending before and deletes the old prompt's
messages, so stale buttons disappear from the chat.

All reads and writes are synchronous; the async methods only await the
message cleanup after the table has already been updated.

Usage:
    from core.conversation_store import ConversationStore

    store = ConversationStore(transport)
    await store.replace(chat_id, TidyPending(message_id=42, season=2))
    state = store.get(chat_id)
    store.clear(chat_id)
"""

import logging
from typing import Any

from core.pending import PendingState

logger = logging.getLogger("concierge.conversation_store")


class InMemoryStore:
    """Process-local key → record table."""

    def __init__(self):
        self._records: dict[Any, Any] = {}

    def get(self, key: Any) -> Any:
        return self._records.get(key)

    def set(self, key: Any, value: Any):
        self._records[key] = value

    def delete(self, key: Any) -> Any:
        return self._records.pop(key, None)

    def keys(self) -> list[Any]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)


class ConversationStore:
    """At-most-one PendingState per conversation id.

    Args:
        transport: Chat transport used to delete superseded prompts.
            May be None, in which case nothing is deleted.
        backend: Key → record table. Defaults to an InMemoryStore.
    """

    def __init__(self, transport=None, backend: InMemoryStore | None = None):
        self._transport = transport
        self._backend = backend if backend is not None else InMemoryStore()

    def get(self, conversation_id: Any) -> PendingState | None:
        return self._backend.get(conversation_id)

    async def replace(self, conversation_id: Any, state: PendingState):
        """Install state, then clean up the messages of the one it replaced."""
        previous = self._backend.get(conversation_id)
        self._backend.set(conversation_id, state)
        if previous is not None and previous is not state:
            logger.debug(
                "Conversation %s: %s superseded by %s",
                conversation_id, previous.mode, state.mode,
            )
            await self._delete_messages(conversation_id, previous, keep=set(state.message_ids()))

    async def evict(self, conversation_id: Any):
        """Drop the pending state and delete its messages."""
        previous = self._backend.delete(conversation_id)
        if previous is not None:
            await self._delete_messages(conversation_id, previous)

    def clear(self, conversation_id: Any):
        """Drop the pending state, leaving its messages in place. No-op if absent."""
        self._backend.delete(conversation_id)

    async def _delete_messages(self, conversation_id: Any, state: PendingState, keep: set[int] | None = None):
        if self._transport is None:
            return
        for message_id in state.message_ids():
            if keep and message_id in keep:
                continue
            try:
                await self._transport.delete(conversation_id, message_id)
            except Exception as e:
                logger.debug("Could not delete message %s: %s", message_id, e)
