"""
Database services for the Work Registry.

``WorkCatalogStore`` is the only component that writes the ``works`` table.
Every write is a single atomic statement keyed by ``(agent_id, ordinal)`` so
that reconciliation passes can be retried wholesale.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import DateTime, and_, func, literal, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from .models import AgentModel, ChecksumQueueModel, WorkModel, generate_id


class UnsupportedDialectError(Exception):
    """Raised when the bound database has no insert-or-update support here."""


@dataclass(frozen=True)
class UpsertResult:
    id: str
    ordinal: int
    inserted: bool


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AgentService:
    """Service for looking up and registering agents."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, agent_id: str) -> Optional[AgentModel]:
        return self.db.query(AgentModel).filter(AgentModel.id == agent_id).first()

    def get_by_handle(self, handle: str) -> Optional[AgentModel]:
        return self.db.query(AgentModel).filter(AgentModel.handle == handle).first()

    def resolve(self, id_or_handle: str) -> Optional[AgentModel]:
        """Find an agent by id, falling back to handle."""
        return self.get(id_or_handle) or self.get_by_handle(id_or_handle)

    def create(self, handle: str) -> AgentModel:
        """Register an agent. Returns the existing row if the handle is taken."""
        existing = self.get_by_handle(handle)
        if existing:
            return existing

        agent = AgentModel(id=generate_id(), handle=handle, created_at=utc_now())
        self.db.add(agent)
        self.db.commit()
        self.db.refresh(agent)
        return agent


class WorkCatalogStore:
    """Parameterized reads and idempotent writes against the works catalog."""

    def __init__(self, db: Session):
        self.db = db

    def _insert(self, table):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(table)
        if dialect == "sqlite":
            return sqlite.insert(table)
        raise UnsupportedDialectError(
            f"Insert-or-update is not supported for dialect '{dialect}'"
        )

    # ------------------------------------------------------------------
    # Write path (reconciliation only)
    # ------------------------------------------------------------------

    def upsert_work(
        self,
        agent_id: str,
        ordinal: int,
        bucket: str,
        path: str,
        bytes: Optional[int] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
        sha256: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> UpsertResult:
        """Insert a work or refresh the mutable fields of an existing one.

        Metadata fields only overwrite stored values when a new value is
        known; ``status`` is always forced to ``active``. Commits on success.
        """
        table = WorkModel.__table__
        now = utc_now()

        stmt = self._insert(table).values(
            id=generate_id(),
            agent_id=agent_id,
            ordinal=ordinal,
            storage_bucket=bucket,
            storage_path=path,
            mime_type=mime_type,
            width=width,
            height=height,
            bytes=bytes,
            sha256=sha256,
            status="active",
            visibility="public",
            created_at=now,
            updated_at=now,
        )
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.agent_id, table.c.ordinal],
            set_={
                "storage_bucket": excluded.storage_bucket,
                "storage_path": excluded.storage_path,
                "mime_type": func.coalesce(excluded.mime_type, table.c.mime_type),
                "width": func.coalesce(excluded.width, table.c.width),
                "height": func.coalesce(excluded.height, table.c.height),
                "bytes": func.coalesce(excluded.bytes, table.c.bytes),
                "sha256": func.coalesce(excluded.sha256, table.c.sha256),
                "status": "active",
                "updated_at": excluded.updated_at,
            },
        ).returning(table.c.id, table.c.ordinal, table.c.created_at, table.c.updated_at)

        row = self.db.execute(stmt).one()
        self.db.commit()

        # A fresh insert carries identical timestamps; an update moves updated_at only.
        return UpsertResult(
            id=row.id, ordinal=row.ordinal, inserted=row.created_at == row.updated_at
        )

    def insert_missing_if_absent(
        self, agent_id: str, ordinals: Iterable[int], bucket: str, path: str = ""
    ) -> int:
        """Insert ``missing`` placeholders for ordinals that have no row yet.

        Existing rows, active or missing, are left untouched. Returns the
        number of placeholders created.
        """
        now = utc_now()
        values = [
            {
                "id": generate_id(),
                "agent_id": agent_id,
                "ordinal": ordinal,
                "storage_bucket": bucket,
                "storage_path": path,
                "status": "missing",
                "visibility": "public",
                "created_at": now,
                "updated_at": now,
            }
            for ordinal in ordinals
        ]
        if not values:
            return 0

        table = WorkModel.__table__
        stmt = (
            self._insert(table)
            .values(values)
            .on_conflict_do_nothing(index_elements=[table.c.agent_id, table.c.ordinal])
        )
        result = self.db.execute(stmt)
        self.db.commit()
        return result.rowcount

    def enqueue_checksums(self, agent_id: str) -> int:
        """Queue an integrity check for every active work lacking a sha256.

        Works already queued are skipped. Returns the number of new requests.
        """
        works = WorkModel.__table__
        queue = ChecksumQueueModel.__table__

        pending = select(
            works.c.id,
            works.c.agent_id,
            literal(utc_now(), DateTime(timezone=True)),
        ).where(
            works.c.agent_id == agent_id,
            works.c.status == "active",
            works.c.sha256.is_(None),
        )
        stmt = (
            self._insert(queue)
            .from_select(["work_id", "agent_id", "enqueued_at"], pending)
            .on_conflict_do_nothing(index_elements=[queue.c.work_id])
        )
        result = self.db.execute(stmt)
        self.db.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def query_active_public_works(
        self,
        agent_id: str,
        after_ordinal: Optional[int] = None,
        after_id: Optional[str] = None,
        limit: int = 60,
    ) -> List[WorkModel]:
        """Active public works ordered by (ordinal DESC, id DESC).

        When a keyset position is given, only rows strictly after it in that
        order are returned.
        """
        query = self.db.query(WorkModel).filter(
            WorkModel.agent_id == agent_id,
            WorkModel.status == "active",
            WorkModel.visibility == "public",
        )

        if after_ordinal is not None:
            query = query.filter(
                or_(
                    WorkModel.ordinal < after_ordinal,
                    and_(
                        WorkModel.ordinal == after_ordinal,
                        WorkModel.id < (after_id or ""),
                    ),
                )
            )

        return (
            query.order_by(WorkModel.ordinal.desc(), WorkModel.id.desc())
            .limit(limit)
            .all()
        )

    def get_work_by_ordinal(self, agent_id: str, ordinal: int) -> Optional[WorkModel]:
        """Get one active public work by its ordinal."""
        return (
            self.db.query(WorkModel)
            .filter(
                WorkModel.agent_id == agent_id,
                WorkModel.ordinal == ordinal,
                WorkModel.status == "active",
                WorkModel.visibility == "public",
            )
            .first()
        )

    def count_active(self, agent_id: str) -> int:
        return (
            self.db.query(func.count(WorkModel.id))
            .filter(WorkModel.agent_id == agent_id, WorkModel.status == "active")
            .scalar()
        )

    def count_by_status(self, agent_id: str) -> Dict[str, int]:
        rows = (
            self.db.query(WorkModel.status, func.count(WorkModel.id))
            .filter(WorkModel.agent_id == agent_id)
            .group_by(WorkModel.status)
            .all()
        )
        counts = {"active": 0, "missing": 0}
        counts.update({status: count for status, count in rows})
        return counts

    def count_pending_checksums(self, agent_id: str) -> int:
        return (
            self.db.query(func.count(ChecksumQueueModel.work_id))
            .filter(ChecksumQueueModel.agent_id == agent_id)
            .scalar()
        )
