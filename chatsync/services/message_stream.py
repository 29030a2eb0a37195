from typing import Callable, List, Optional

from chatsync.repositories.base import ErrorHandler, MessageStore, Subscription
from chatsync.schemas.message import MessagePublic
from chatsync.utils.logger import get_logger


logger = get_logger(__name__)

MessagesHandler = Callable[[Optional[str], List[MessagePublic]], None]


class MessageStreamController:
    """Live, ordered message feed for at most one conversation at a time."""

    def __init__(self, messages: MessageStore, on_messages: MessagesHandler, on_error: Optional[ErrorHandler] = None) -> None:
        self._messages = messages
        self._on_messages = on_messages
        self._on_error = on_error
        self._subscription: Optional[Subscription] = None
        self.conversation_id: Optional[str] = None
        self.items: List[MessagePublic] = []

    @property
    def active(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def select(self, conversation_id: Optional[str]) -> None:
        # the old feed is cancelled before anything else happens
        self._cancel()
        self.items = []
        self.conversation_id = conversation_id or None
        if self.conversation_id is None:
            self._on_messages(None, [])
            return

        selected = self.conversation_id
        self._subscription = self._messages.watch_conversation(
            selected,
            lambda snapshot: self._deliver(selected, snapshot),
            self._on_error,
        )
        logger.debug("Streaming messages of %s", selected)

    def clear(self) -> None:
        self.select(None)

    def _deliver(self, conversation_id: str, snapshot) -> None:
        if conversation_id != self.conversation_id:
            return
        self.items = [MessagePublic.from_document(doc) for doc in snapshot]
        self._on_messages(conversation_id, self.items)

    def _cancel(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
