"""User, role and watch request bodies."""

from typing import List, Optional

from pydantic import BaseModel


class RoleChange(BaseModel):
    admin_fid: int
    user_fid: int
    role: str


class WatchCreate(BaseModel):
    watcher_fid: int
    watched_fid: int


class NotificationsSeen(BaseModel):
    fid: int
    notification_ids: Optional[List[int]] = None
