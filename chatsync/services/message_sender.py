from chatsync.errors import ConversationNotFound, EmptyMessageError, SendFailure
from chatsync.models.message import MessageDocument
from chatsync.repositories.base import ConversationStore, MessageStore
from chatsync.utils.logger import get_logger


logger = get_logger(__name__)


class MessageSender:

    def __init__(self, conversations: ConversationStore, messages: MessageStore) -> None:
        self._conversations = conversations
        self._messages = messages

    async def send(self, conversation_id: str, sender_id: str, sender_name: str, text: str) -> MessageDocument:
        """Store a message, then refresh the conversation summary.

        The two writes are ordered but not atomic. When the summary update
        fails the message stays and SendFailure reports message_created=True.
        """
        content = (text or "").strip()
        if not content:
            raise EmptyMessageError("Message content cannot be empty")
        if not conversation_id:
            raise ValueError("conversation_id is required")

        try:
            message = await self._messages.create(conversation_id, sender_id, sender_name, content)
        except Exception as exc:
            logger.error("Failed to store message in %s: %s", conversation_id, exc)
            raise SendFailure("Failed to send message", text=text) from exc

        try:
            await self._conversations.update_summary(conversation_id, content)
        except ConversationNotFound as exc:
            # the conversation was purged under us; finish its cascade
            await self._discard(conversation_id, message["_id"])
            raise SendFailure("Conversation no longer exists", text=text) from exc
        except Exception as exc:
            logger.error("Message %s stored but summary of %s not updated: %s", message["_id"], conversation_id, exc)
            raise SendFailure(
                "Message sent but conversation summary was not updated",
                text=text,
                message_created=True,
                message=message,
            ) from exc
        return message

    async def _discard(self, conversation_id: str, message_id: str) -> None:
        try:
            await self._messages.delete(conversation_id, message_id)
        except Exception as exc:
            logger.warning("Orphaned message %s of deleted conversation %s not removed: %s", message_id, conversation_id, exc)
