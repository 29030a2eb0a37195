from typing import Optional

from chatsync.errors import MissingUserError
from chatsync.repositories.base import ConversationStore, ErrorHandler, SnapshotHandler, Subscription
from chatsync.utils.logger import get_logger


logger = get_logger(__name__)


class SubscriptionManager:
    """Owns the single live conversation query of a user."""

    def __init__(self, conversations: ConversationStore) -> None:
        self._conversations = conversations
        self._subscription: Optional[Subscription] = None
        self._user_id: Optional[str] = None

    @property
    def active(self) -> bool:
        return self._subscription is not None and self._subscription.active

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    def open(self, user_id: str, on_snapshot: SnapshotHandler, on_error: Optional[ErrorHandler] = None) -> Subscription:
        if not user_id or not isinstance(user_id, str) or not user_id.strip():
            raise MissingUserError("A user id is required to subscribe to conversations")
        self.cancel()
        self._subscription = self._conversations.watch_for_user(user_id, on_snapshot, on_error)
        self._user_id = user_id
        logger.debug("Opened conversation subscription for %s", user_id)
        return self._subscription

    def cancel(self) -> None:
        if self._subscription is None:
            return
        self._subscription.cancel()
        logger.debug("Cancelled conversation subscription for %s", self._user_id)
        self._subscription = None
        self._user_id = None
