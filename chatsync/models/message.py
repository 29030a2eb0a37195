from datetime import datetime
from typing import Optional, TypedDict


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    sender_id: str
    # sender display name at send time
    sender_name: str
    text: str
    # assigned by the store
    timestamp: Optional[datetime]
