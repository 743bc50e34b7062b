"""
Response schemas for the delivery API.

Field names are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class WorkItem(BaseModel):
    """One deliverable work with a currently valid retrieval URL."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    ordinal: int = Field(..., ge=1)
    mime_type: Optional[str] = Field(None, alias="mimeType")
    width: Optional[int] = None
    height: Optional[int] = None
    bytes: Optional[int] = None
    sha256: Optional[str] = None
    signed_url: str = Field(..., alias="signedUrl")
    created_at: datetime = Field(..., alias="createdAt")
    verified: bool = False


class WorkPage(BaseModel):
    """A page of works; ``next_cursor`` is None on the last page."""

    model_config = ConfigDict(populate_by_name=True)

    items: List[WorkItem] = Field(default_factory=list)
    next_cursor: Optional[str] = Field(None, alias="nextCursor")
