"""
Delivery service - keyset-paginated listing of an agent's public works.

Pages are ordered by (ordinal DESC, id DESC) and anchored on the last row a
client saw, so works added between requests never shift earlier pages.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from .config import get_settings
from .db.models import AgentModel, WorkModel
from .db.services import AgentService, WorkCatalogStore
from .pagination import Cursor, decode_cursor, encode_cursor
from .schemas import WorkItem, WorkPage
from .url_cache import SignedUrlCache


class AgentNotFoundError(Exception):
    """Raised when no agent has the requested handle."""

    def __init__(self, handle: str):
        self.handle = handle
        super().__init__(f"Agent not found: {handle}")


def clamp_limit(limit: Optional[int], default: int = 60, maximum: int = 200) -> int:
    """Clamp a client-supplied page size into [1, maximum]."""
    if limit is None:
        return default
    return max(1, min(limit, maximum))


class WorkDeliveryService:
    """Read-only access to the catalog for clients.

    Any signing or store failure propagates, so a caller either gets a
    complete page with every URL resolved or an exception.
    """

    def __init__(self, db: Session, url_cache: SignedUrlCache, ttl: Optional[int] = None):
        self.settings = get_settings()
        self.db = db
        self.store = WorkCatalogStore(db)
        self.url_cache = url_cache
        self.ttl = ttl or self.settings.signed_url_ttl_seconds

    def _agent(self, handle: str) -> AgentModel:
        agent = AgentService(self.db).get_by_handle(handle)
        if agent is None:
            raise AgentNotFoundError(handle)
        return agent

    def _to_item(self, work: WorkModel) -> WorkItem:
        return WorkItem(
            id=work.id,
            ordinal=work.ordinal,
            mime_type=work.mime_type,
            width=work.width,
            height=work.height,
            bytes=work.bytes,
            sha256=work.sha256,
            signed_url=self.url_cache.get_signed_url(
                work.storage_bucket, work.storage_path, self.ttl
            ),
            created_at=work.created_at,
            verified=work.verified,
        )

    def list_works(
        self, handle: str, cursor: Optional[str] = None, limit: Optional[int] = None
    ) -> WorkPage:
        """Return one page of active public works for ``handle``.

        Raises:
            AgentNotFoundError: Unknown handle
            InvalidCursorError: Cursor token could not be decoded
            SigningError: A URL could not be issued for a row on the page
        """
        limit = clamp_limit(
            limit,
            default=self.settings.delivery_default_limit,
            maximum=self.settings.delivery_max_limit,
        )
        position = decode_cursor(cursor) if cursor else None
        agent = self._agent(handle)

        rows = self.store.query_active_public_works(
            agent.id,
            after_ordinal=position.last_ordinal if position else None,
            after_id=position.last_id if position else None,
            limit=limit + 1,
        )

        next_cursor = None
        if len(rows) > limit:
            rows = rows[:limit]
            last = rows[-1]
            next_cursor = encode_cursor(Cursor(last_ordinal=last.ordinal, last_id=last.id))

        return WorkPage(items=[self._to_item(w) for w in rows], next_cursor=next_cursor)

    def get_work(self, handle: str, ordinal: int) -> Optional[WorkItem]:
        """Return one active public work by ordinal, or None."""
        agent = self._agent(handle)
        work = self.store.get_work_by_ordinal(agent.id, ordinal)
        if work is None:
            return None
        return self._to_item(work)
