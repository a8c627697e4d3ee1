import logging

from clawchat.models import TITLE_MAX_CHARS, Conversation, Message, Role
from clawchat.storage import ConversationStore

logger = logging.getLogger(__name__)


class ConversationReconciler:
    """Sole writer of conversation message lists.

    Every append returns a new Conversation and persists it before returning.
    Existing messages are never edited, removed or reordered.
    """

    def __init__(self, store: ConversationStore):
        self.store = store

    def new_conversation(self) -> Conversation:
        return Conversation()

    def append_user_turn(self, conversation: Conversation, text: str) -> Conversation:
        updated = self._append(conversation, "user", text)
        if not updated.title:
            updated = updated.model_copy(update={"title": text[:TITLE_MAX_CHARS]})
        self.store.upsert(updated)
        return updated

    def append_assistant_turn(self, conversation: Conversation, text: str) -> Conversation:
        updated = self._append(conversation, "assistant", text)
        self.store.upsert(updated)
        return updated

    def _append(self, conversation: Conversation, role: Role, text: str) -> Conversation:
        message = Message(role=role, content=text)
        logger.debug(f"Appending {role} turn to {conversation.id}")
        return conversation.model_copy(
            update={
                "messages": [*conversation.messages, message],
                "updated_at": message.timestamp,
            }
        )
