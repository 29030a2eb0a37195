import asyncio
import json
import uuid
from typing import Any, Callable, Dict, List, Optional, Set

from chatsync.errors import ConversationNotFound, MissingUserError, NoConversationSelected, NotAParticipant
from chatsync.repositories.base import ConversationStore, MessageStore
from chatsync.schemas.conversation import ConversationSummary
from chatsync.schemas.message import MessagePublic
from chatsync.services.message_sender import MessageSender
from chatsync.services.message_stream import MessageStreamController
from chatsync.services.purger import DuplicatePurger
from chatsync.services.reconciler import ConversationReconciler, ProfileLookup
from chatsync.services.subscription_manager import SubscriptionManager
from chatsync.utils.logger import get_logger
from chatsync.utils.realtime_bus import NoopBus, user_channel


logger = get_logger(__name__)

DEFAULT_SENDER_NAME = "You"

EventHandler = Callable[[Dict[str, Any]], None]


async def require_participant(conversations: ConversationStore, conversation_id: str, user_id: str) -> None:
    convo = await conversations.get(conversation_id)
    if convo is None:
        raise ConversationNotFound("Conversation not found")
    if user_id not in (convo.get("participants") or []):
        raise NotAParticipant("Not a participant of this conversation")


class ChatService:
    """Live chat state of one signed-in user.

    Holds the reconciled conversation list, the messages of the selected
    conversation and the loading/stalled flags. Every state change is also
    reported to ``on_event`` as a JSON-ready dict.
    """

    def __init__(
        self,
        conversations: ConversationStore,
        messages: MessageStore,
        user_id: Optional[str],
        user_name: Optional[str] = None,
        lookup: Optional[ProfileLookup] = None,
        bus=None,
        on_event: Optional[EventHandler] = None,
    ) -> None:
        self._user_id = user_id
        self._sender_name = user_name or DEFAULT_SENDER_NAME
        self._lookup = lookup
        self._bus = bus or NoopBus()
        self._on_event = on_event
        self._conversations = conversations
        # tags bus events so a session can skip its own
        self.session_id = uuid.uuid4().hex

        self._reconciler = ConversationReconciler(DuplicatePurger(conversations, messages))
        self._subscriptions = SubscriptionManager(conversations)
        self._stream = MessageStreamController(messages, self._on_messages, self._on_message_feed_error)
        self._sender = MessageSender(conversations, messages)

        self.conversations: List[ConversationSummary] = []
        self.loading = True
        self.stalled: Optional[BaseException] = None

        self._revision = 0
        self._published_revision = 0
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def reconciler(self) -> ConversationReconciler:
        return self._reconciler

    @property
    def selected_conversation_id(self) -> Optional[str]:
        return self._stream.conversation_id

    @property
    def messages(self) -> List[MessagePublic]:
        return self._stream.items

    def start(self) -> None:
        if not self._user_id:
            raise MissingUserError("No signed-in user; chat is disabled")
        self._closed = False
        self._subscriptions.open(self._user_id, self._on_snapshot, self._on_subscription_error)

    async def close(self) -> None:
        self._closed = True
        self._subscriptions.cancel()
        self._stream.clear()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        await self._reconciler.wait_for_purges()

    def select_conversation(self, conversation_id: Optional[str]) -> None:
        self._stream.select(conversation_id)

    async def open_conversation(self, conversation_id: Optional[str]) -> None:
        """Select a conversation once the user is confirmed as one of its participants."""
        if conversation_id:
            await require_participant(self._conversations, conversation_id, self._user_id)
        self._stream.select(conversation_id)

    async def send_message(self, text: str) -> MessagePublic:
        conversation_id = self._stream.conversation_id
        if not conversation_id:
            raise NoConversationSelected("Select a conversation before sending")
        doc = await self._sender.send(conversation_id, self._user_id, self._sender_name, text)
        return MessagePublic.from_document(doc)

    async def wait_idle(self) -> None:
        """Wait until delivered snapshots are reconciled and their purges finished."""
        while True:
            for _ in range(3):
                await asyncio.sleep(0)
            if not self._tasks and not self._reconciler.pending_purges:
                return
            await asyncio.gather(*self._tasks, return_exceptions=True)
            await self._reconciler.wait_for_purges()

    def _on_snapshot(self, snapshot: List[Dict[str, Any]]) -> None:
        self._revision += 1
        task = asyncio.create_task(self._reconcile(self._revision, snapshot))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _reconcile(self, revision: int, snapshot: List[Dict[str, Any]]) -> None:
        try:
            items = await self._reconciler.reconcile(snapshot, self._user_id, self._lookup)
        except Exception:
            logger.exception("Reconciliation of revision %d failed", revision)
            return
        # a pass that finishes after a newer one was published is stale
        if self._closed or revision <= self._published_revision:
            return
        self._published_revision = revision
        self.conversations = items
        self.loading = False
        await self._publish({
            "type": "conversations",
            "loading": False,
            "items": [item.model_dump(mode="json") for item in items],
        })

    def _on_messages(self, conversation_id: Optional[str], items: List[MessagePublic]) -> None:
        self._emit({
            "type": "messages",
            "conversation_id": conversation_id,
            "items": [item.model_dump(mode="json") for item in items],
        })

    def _on_subscription_error(self, exc: BaseException) -> None:
        logger.error("Conversation subscription for %s stalled: %s", self._user_id, exc)
        self.stalled = exc
        self._emit({"type": "stalled", "scope": "conversations", "detail": str(exc)})

    def _on_message_feed_error(self, exc: BaseException) -> None:
        logger.error("Message feed of %s stalled: %s", self._stream.conversation_id, exc)
        self.stalled = exc
        self._emit({"type": "stalled", "scope": "messages", "detail": str(exc)})

    def _emit(self, event: Dict[str, Any]) -> None:
        if self._on_event is not None:
            self._on_event(event)

    async def _publish(self, event: Dict[str, Any]) -> None:
        self._emit(event)
        if not getattr(self._bus, "enabled", False):
            return
        try:
            await self._bus.publish(user_channel(self._user_id), json.dumps({**event, "origin": self.session_id}))
        except Exception as exc:
            logger.warning("Fan-out of conversation list for %s failed: %s", self._user_id, exc)
