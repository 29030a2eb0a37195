from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


UNKNOWN_USER_NAME = "Unknown User"
DEFAULT_ROLE = "learner"


class ProfileSnapshot(BaseModel):

    id: str
    name: str = UNKNOWN_USER_NAME
    role: str = DEFAULT_ROLE
    photo_url: str = ""
    location: str = ""


class ConversationSummary(BaseModel):

    id: str
    other_participant: ProfileSnapshot
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None


class ConversationList(BaseModel):

    items: List[ConversationSummary] = Field(default_factory=list)
