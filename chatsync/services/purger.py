import asyncio
from typing import Any

from chatsync.repositories.base import UNCHECKED, ConversationStore, MessageStore
from chatsync.utils.logger import get_logger


logger = get_logger(__name__)


class DuplicatePurger:
    """Cascade delete of a losing duplicate conversation.

    Messages go first, the conversation record last. Every step is a
    delete-by-id, so racing purges of the same conversation are harmless.
    Failures are logged and swallowed: the record keeps losing on the next
    reconciliation pass and is retried then.
    """

    def __init__(self, conversations: ConversationStore, messages: MessageStore) -> None:
        self._conversations = conversations
        self._messages = messages

    async def purge(self, conversation_id: str, if_last_message_at: Any = UNCHECKED) -> bool:
        """Returns True once neither the conversation nor its listed messages remain.

        ``if_last_message_at`` is the summary timestamp seen when the record
        lost. The purge only proceeds while the record still matches it and
        holds no message newer than it, so a conversation that receives a
        message meanwhile is left untouched, messages included.
        """
        checked = if_last_message_at is not UNCHECKED
        try:
            if checked and not await self._unchanged(conversation_id, if_last_message_at):
                return False
            children = await self._messages.list_children(conversation_id)
            if checked:
                newer = [mid for mid, ts in children if _is_newer(ts, if_last_message_at)]
                if newer:
                    logger.info("Kept conversation %s: %d message(s) newer than its summary", conversation_id, len(newer))
                    return False
                if not await self._unchanged(conversation_id, if_last_message_at):
                    return False
        except Exception as exc:
            logger.warning("Purge of %s aborted before deleting: %s", conversation_id, exc)
            return False

        results = await asyncio.gather(
            *(self._messages.delete(conversation_id, message_id) for message_id, _ in children),
            return_exceptions=True,
        )
        failed = [r for r in results if isinstance(r, BaseException)]
        if failed:
            logger.warning(
                "Purge of %s incomplete: %d of %d message deletes failed (%s)",
                conversation_id, len(failed), len(children), failed[0],
            )
            return False

        try:
            deleted = await self._conversations.delete(conversation_id, if_last_message_at=if_last_message_at)
        except Exception as exc:
            logger.warning("Purge of %s incomplete, conversation delete failed: %s", conversation_id, exc)
            return False

        if deleted:
            logger.info("Deleted duplicate conversation %s (%d messages)", conversation_id, len(children))
            return True

        if not checked:
            # already gone
            return True
        try:
            remaining = await self._conversations.get(conversation_id)
        except Exception as exc:
            logger.warning("Purge of %s unconfirmed: %s", conversation_id, exc)
            return False
        if remaining is not None:
            logger.info("Kept conversation %s: it received a message while being purged", conversation_id)
            return False
        return True

    async def _unchanged(self, conversation_id: str, expected: Any) -> bool:
        doc = await self._conversations.get(conversation_id)
        if doc is None:
            # gone already; orphaned messages are still swept
            return True
        if doc.get("last_message_at") != expected:
            logger.info("Kept conversation %s: its summary changed since it lost", conversation_id)
            return False
        return True


def _is_newer(timestamp, expected) -> bool:
    if timestamp is None:
        return False
    if expected is None:
        return True
    return timestamp > expected
