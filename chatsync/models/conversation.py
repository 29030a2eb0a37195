from datetime import datetime
from typing import Dict, List, Optional, TypedDict


class ConversationDocument(TypedDict, total=False):
    _id: str
    # exactly two user ids
    participants: List[str]
    # user_id -> display name captured when the conversation was started
    participant_names: Dict[str, str]
    last_message: Optional[str]
    last_message_at: Optional[datetime]
    created_at: Optional[datetime]
