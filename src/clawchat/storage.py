import json
import logging
import os
import re
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from clawchat.models import Conversation

logger = logging.getLogger(__name__)

CONVERSATIONS_KEY = "clawchat-conversations"
PENDING_JOBS_KEY = "clawchat-pending-jobs"

_SAFE_KEY = re.compile(r"^[A-Za-z0-9._-]+$")


class StorageError(Exception):
    pass


class LocalStorage:
    """Whole-value key/value store, one JSON file per key."""

    def __init__(self, data_dir: str | Path):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise StorageError(f"Invalid storage key: {key!r}")
        return self.data_dir / f"{key}.json"

    def get_item(self, key: str) -> Any | None:
        path = self._path(key)
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring unreadable value for {key} at {path}: {e}")
            return None

    def set_item(self, key: str, value: Any) -> None:
        # Readers never see a partially written value.
        path = self._path(key)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(
            json.dumps(value, indent=2, sort_keys=True, ensure_ascii=False),
            encoding="utf-8",
        )
        os.replace(tmp_path, path)

    def remove_item(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()


class ConversationStore:
    def __init__(self, storage: LocalStorage, key: str = CONVERSATIONS_KEY):
        self.storage = storage
        self.key = key

    def load(self) -> list[Conversation]:
        data = self.storage.get_item(self.key)
        if not isinstance(data, list):
            return []

        conversations: list[Conversation] = []
        for item in data:
            try:
                conversations.append(Conversation.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping unreadable conversation record: {e}")
        return conversations

    def save(self, conversations: list[Conversation]) -> None:
        self.storage.set_item(
            self.key, [c.model_dump(mode="json") for c in conversations]
        )

    def list(self) -> list[Conversation]:
        return sorted(self.load(), key=lambda c: c.updated_at, reverse=True)

    def get(self, conversation_id: str) -> Conversation | None:
        for conversation in self.load():
            if conversation.id == conversation_id:
                return conversation
        return None

    def upsert(self, conversation: Conversation) -> None:
        others = [c for c in self.load() if c.id != conversation.id]
        self.save([conversation, *others])
        logger.debug(f"Saved conversation {conversation.id}")

    def delete(self, conversation_id: str) -> bool:
        conversations = self.load()
        remaining = [c for c in conversations if c.id != conversation_id]
        if len(remaining) == len(conversations):
            return False
        self.save(remaining)
        logger.info(f"Deleted conversation {conversation_id}")
        return True
