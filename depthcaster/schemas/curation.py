"""Curation, tagging and publishing request bodies."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class CurateRequest(BaseModel):
    cast_hash: str
    curator_fid: int
    cast_data: Optional[Dict[str, Any]] = None


class RefreshRepliesRequest(BaseModel):
    cast_hash: str


class TagCreate(BaseModel):
    cast_hash: str
    tag: str
    admin_fid: int


class PublishCastRequest(BaseModel):
    signer_uuid: str
    text: str = ""
    parent: Optional[str] = None
    embeds: Optional[List[Dict[str, Any]]] = None
    author_fid: Optional[int] = None
