"""Conversation memory: bounded, persisted chat history.

Entries are kept in insertion order and capped; appending past the cap
evicts the oldest entry. The whole history is stored as one JSON array under
the ``conversation_history`` key.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from typing import Literal

from pydantic import BaseModel, ConfigDict, TypeAdapter
from pydantic import ValidationError as SchemaError

from duckling.errors import PersistenceFailure
from duckling.storage.preferences import PreferenceStore

logger = logging.getLogger(__name__)

HISTORY_KEY = "conversation_history"
DEFAULT_LIMIT = 30

Role = Literal["user", "assistant", "system"]


class ConversationEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str


_ENTRIES = TypeAdapter(list[ConversationEntry])


class ConversationStore:
    """FIFO ring of the most recent conversation entries."""

    def __init__(self, store: PreferenceStore, limit: int = DEFAULT_LIMIT) -> None:
        self._store = store
        self.limit = limit
        self._entries: deque[ConversationEntry] = deque(maxlen=limit)
        self._generation = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get_history_length(self) -> int:
        return len(self._entries)

    @property
    def generation(self) -> int:
        """Bumped by every clear(); lets callers detect a wipe across an await."""
        return self._generation

    def entries(self) -> list[ConversationEntry]:
        return list(self._entries)

    def as_messages(self) -> list[dict[str, str]]:
        """Entries in chat-completion message form."""
        return [entry.model_dump() for entry in self._entries]

    def append(self, role: Role, content: str) -> ConversationEntry:
        entry = ConversationEntry(role=role, content=content)
        self._entries.append(entry)
        return entry

    def extend(self, entries: list[ConversationEntry]) -> None:
        self._entries.extend(entries)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def load(self) -> int:
        """Replace the in-memory history with the persisted one. Returns the entry count."""
        try:
            raw = await self._store.get_string(HISTORY_KEY)
        except PersistenceFailure:
            logger.warning("Could not load conversation history, starting empty")
            return len(self._entries)
        self._entries.clear()
        if not raw:
            return 0
        try:
            entries = _ENTRIES.validate_json(raw)
        except SchemaError:
            logger.warning("Discarding malformed conversation history")
            return 0
        # deque(maxlen) keeps only the newest entries of an over-long save
        self._entries.extend(entries)
        return len(self._entries)

    async def save(self) -> bool:
        payload = json.dumps(self.as_messages(), ensure_ascii=False)
        try:
            await self._store.set_string(HISTORY_KEY, payload)
        except PersistenceFailure:
            logger.warning("Could not persist conversation history", exc_info=True)
            return False
        return True

    async def clear(self) -> None:
        """Wipe the history in memory and in the store."""
        self._generation += 1
        self._entries.clear()
        try:
            await self._store.remove(HISTORY_KEY)
        except PersistenceFailure:
            logger.warning("Could not clear persisted conversation history", exc_info=True)
