from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status

from chatsync.errors import ConversationNotFound, EmptyMessageError, NotAParticipant, SendFailure
from chatsync.repositories.base import ConversationStore, MessageStore
from chatsync.schemas.conversation import ConversationList
from chatsync.schemas.message import MessageCreate, MessageList, MessagePublic
from chatsync.services.chat_service import require_participant
from chatsync.services.message_sender import MessageSender
from chatsync.services.purger import DuplicatePurger
from chatsync.services.reconciler import ConversationReconciler, ProfileLookup
from chatsync.utils.dependencies import get_conversation_store, get_current_user, get_message_store, get_profile_lookup


router = APIRouter(prefix="/conversations", tags=["chat"])


async def _require_participant(conversations: ConversationStore, conversation_id: str, user_id: str) -> None:
    try:
        await require_participant(conversations, conversation_id, user_id)
    except ConversationNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except NotAParticipant as exc:
        raise HTTPException(status_code=403, detail=str(exc))


@router.get("", response_model=ConversationList)
async def list_conversations(
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    conversations: ConversationStore = Depends(get_conversation_store),
    messages: MessageStore = Depends(get_message_store),
    lookup: ProfileLookup = Depends(get_profile_lookup),
):
    reconciler = ConversationReconciler(DuplicatePurger(conversations, messages))
    snapshot = await conversations.list_for_user(current_user["_id"])
    items = await reconciler.reconcile(snapshot, current_user["_id"], lookup)
    # purges finish after the response is sent
    background_tasks.add_task(reconciler.wait_for_purges)
    return ConversationList(items=items)


@router.get("/{conversation_id}/messages", response_model=MessageList)
async def list_messages(
    conversation_id: str,
    current_user: dict = Depends(get_current_user),
    conversations: ConversationStore = Depends(get_conversation_store),
    messages: MessageStore = Depends(get_message_store),
):
    await _require_participant(conversations, conversation_id, current_user["_id"])
    docs = await messages.list_for_conversation(conversation_id)
    return MessageList(items=[MessagePublic.from_document(doc) for doc in docs])


@router.post("/{conversation_id}/messages", response_model=MessagePublic, status_code=status.HTTP_201_CREATED)
async def send_message(
    conversation_id: str,
    body: MessageCreate,
    current_user: dict = Depends(get_current_user),
    conversations: ConversationStore = Depends(get_conversation_store),
    messages: MessageStore = Depends(get_message_store),
):
    await _require_participant(conversations, conversation_id, current_user["_id"])
    sender = MessageSender(conversations, messages)
    try:
        doc = await sender.send(conversation_id, current_user["_id"], current_user.get("name") or "You", body.text)
    except EmptyMessageError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except SendFailure as exc:
        raise HTTPException(
            status_code=502,
            detail={"message": str(exc), "text": exc.text, "message_created": exc.message_created},
        )
    return MessagePublic.from_document(doc)
