from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel


class Notification(BaseModel):
    id: str
    userId: Optional[str] = None  # None means visible to everyone
    message: str
    kind: Literal["info", "success", "warning", "error"] = "info"
    createdAt: datetime
    read: bool = False


class UnreadCount(BaseModel):
    unread: int
