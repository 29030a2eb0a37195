from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from chatsync.models.message import MessageDocument


class MessageCreate(BaseModel):

    text: str


class MessagePublic(BaseModel):

    id: str
    conversation_id: str
    sender_id: str
    sender_name: str = ""
    text: str
    timestamp: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: MessageDocument) -> "MessagePublic":
        return cls(
            id=str(doc["_id"]),
            conversation_id=str(doc.get("conversation_id", "")),
            sender_id=doc.get("sender_id", ""),
            sender_name=doc.get("sender_name") or "",
            text=doc.get("text", ""),
            timestamp=doc.get("timestamp"),
        )


class MessageList(BaseModel):

    items: List[MessagePublic] = Field(default_factory=list)
