"""Chat module — conversation memory and the AI gateway."""

from duckling.chat.gateway import AIGateway
from duckling.chat.history import ConversationEntry, ConversationStore

__all__ = ["AIGateway", "ConversationEntry", "ConversationStore"]
