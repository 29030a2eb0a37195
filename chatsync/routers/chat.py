import asyncio
import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from chatsync.errors import ChatSyncError, SendFailure
from chatsync.repositories.base import ConversationStore, MessageStore
from chatsync.services.chat_service import ChatService
from chatsync.services.reconciler import ProfileLookup
from chatsync.utils.dependencies import get_conversation_store, get_message_store, get_profile_lookup
from chatsync.utils.logger import get_logger
from chatsync.utils.realtime_bus import get_bus, user_channel


logger = get_logger(__name__)

router = APIRouter(prefix="/ws", tags=["chat"])


@router.websocket("/chat/{user_id}")
async def chat_socket(
    websocket: WebSocket,
    user_id: str,
    name: Optional[str] = None,
    conversations: ConversationStore = Depends(get_conversation_store),
    messages: MessageStore = Depends(get_message_store),
    lookup: ProfileLookup = Depends(get_profile_lookup),
    bus=Depends(get_bus),
):
    # identity comes from the same header the REST routes read
    caller = (websocket.headers.get("x-user-id") or "").strip()
    if not caller or not user_id.strip():
        await websocket.close(code=4401)
        return
    if caller != user_id:
        await websocket.close(code=4403)
        return
    await websocket.accept()

    outbox: asyncio.Queue = asyncio.Queue()
    service = ChatService(
        conversations,
        messages,
        user_id=user_id,
        user_name=name,
        lookup=lookup,
        bus=bus,
        on_event=outbox.put_nowait,
    )

    async def _pump() -> None:
        while True:
            event = await outbox.get()
            await websocket.send_json(event)

    # other sessions of this user, possibly in other processes, publish here
    subscriber = None
    sub_task = None
    if getattr(bus, "enabled", False):
        try:
            subscriber = await bus.subscribe(user_channel(user_id), relay_from_bus(service.session_id, outbox))
        except Exception as exc:
            logger.warning("Fan-out for %s unavailable: %s", user_id, exc)
        else:
            sub_task = asyncio.create_task(subscriber.run())

    service.start()
    pump_task = asyncio.create_task(_pump())
    try:
        while True:
            msg = await websocket.receive_json()
            # Expect {"type": "select", "conversation_id": str|None} or {"type": "send", "text": str}
            await _handle_command(service, msg, outbox)
    except WebSocketDisconnect:
        logger.debug("Chat socket for %s disconnected", user_id)
    finally:
        if subscriber is not None:
            await subscriber.cancel()
        tasks = [t for t in (pump_task, sub_task) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await service.close()


def relay_from_bus(session_id: str, outbox: asyncio.Queue):
    """Bus handler queueing events of other sessions; a session's own events are skipped."""

    async def _forward(data: str) -> None:
        try:
            event = json.loads(data)
        except ValueError:
            logger.warning("Dropped malformed bus event: %.200s", data)
            return
        if not isinstance(event, dict) or event.get("origin") == session_id:
            return
        outbox.put_nowait(event)

    return _forward


async def _handle_command(service: ChatService, msg: Dict[str, Any], outbox: asyncio.Queue) -> None:
    kind = msg.get("type") if isinstance(msg, dict) else None
    if kind == "select":
        conversation_id = msg.get("conversation_id")
        try:
            await service.open_conversation(conversation_id)
        except ChatSyncError as exc:
            outbox.put_nowait({"type": "error", "detail": str(exc), "conversation_id": conversation_id})
        return
    if kind == "send":
        text = msg.get("text") or ""
        try:
            await service.send_message(text)
        except SendFailure as exc:
            outbox.put_nowait({
                "type": "send_failed",
                "text": exc.text,
                "detail": str(exc),
                "message_created": exc.message_created,
            })
        except ChatSyncError as exc:
            outbox.put_nowait({"type": "error", "detail": str(exc), "text": text})
        return
    outbox.put_nowait({"type": "error", "detail": "Invalid command payload"})
