"""Conversation records persisted as one JSON file.

Channel conversations are keyed by (instance id, external channel id);
direct chats are addressed by conversation id.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

from switchboard.shared.errors import NotFoundError
from switchboard.shared.types import Conversation, TranscriptEntry
from switchboard.shared.utils import setup_logging

logger = setup_logging("stores.conversations")


class JsonConversationStore:
    def __init__(self, path: str | Path | None = None):
        self.path = Path(path) if path else None
        self.conversations: dict[str, Conversation] = {}
        self._lock = asyncio.Lock()
        self._load()

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text()).get("conversations", {})
            self.conversations = {cid: Conversation(**c) for cid, c in raw.items()}
        except Exception as e:
            logger.warning(f"Failed to load conversations from {self.path}: {e}")

    def _save(self) -> None:
        if self.path is None:
            return
        data = {cid: c.model_dump(mode="json") for cid, c in self.conversations.items()}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({"conversations": data}, indent=2) + "\n")

    def find_by_channel(self, instance_id: str, channel_id: str) -> Conversation | None:
        for conversation in self.conversations.values():
            if conversation.instance_id == instance_id and conversation.channel_id == channel_id:
                return conversation
        return None

    async def get(self, conversation_id: str) -> Conversation | None:
        return self.conversations.get(conversation_id)

    async def append_channel_messages(
        self, instance_id: str, channel_id: str, entries: list[TranscriptEntry], title: str,
    ) -> Conversation:
        """Append to the channel's conversation, creating it with ``title`` if new."""
        async with self._lock:
            conversation = self.find_by_channel(instance_id, channel_id)
            if conversation is None:
                conversation = Conversation(
                    title=title, instance_id=instance_id, channel_id=channel_id,
                )
                self.conversations[conversation.id] = conversation
            conversation.messages.extend(entries)
            self._save()
            return conversation

    async def append_messages(
        self, conversation_id: str, entries: list[TranscriptEntry],
    ) -> Conversation:
        async with self._lock:
            conversation = self.conversations.get(conversation_id)
            if conversation is None:
                raise NotFoundError(f"Conversation not found: {conversation_id}")
            conversation.messages.extend(entries)
            self._save()
            return conversation

    async def create(self, title: str = "") -> Conversation:
        async with self._lock:
            conversation = Conversation(title=title)
            self.conversations[conversation.id] = conversation
            self._save()
            return conversation
