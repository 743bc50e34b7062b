"""
Reconciliation - align the works catalog with the object store for one agent.

Flow:
1. List: Drain every page of objects under the agent's prefix
2. Classify: Parse ordinals from filenames; out-of-pattern or out-of-range
   names are anomalies
3. Upsert: One atomic insert-or-update per ordinal, in batches
4. Gaps: Insert 'missing' placeholders for expected ordinals never seen
5. Enqueue: Queue integrity checks for active works without a sha256
6. Verify: Compare the final active count with what was expected

Every step is idempotent, so a failed or cancelled pass is fixed by running
it again.
"""
from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import get_settings
from .db.models import AgentModel
from .db.services import AgentService, WorkCatalogStore
from .storage import ObjectSource, ObjectSourceError, StoredObject

logger = logging.getLogger(__name__)

ORDINAL_PATTERN = re.compile(r"^(\d+)\.(png|jpe?g|webp|gif)$", re.IGNORECASE)

MIME_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "gif": "image/gif",
}


class ReconcileError(Exception):
    """Fatal reconciliation failure (source or store unavailable)."""

    def __init__(self, message: str, summary: Optional["ReconcileSummary"] = None):
        super().__init__(message)
        self.summary = summary


@dataclass(frozen=True)
class Anomaly:
    name: str
    reason: str


@dataclass
class ReconcileSummary:
    """Counters and findings for one reconciliation pass."""

    agent_id: str
    expected_count: int
    dry_run: bool = False
    scanned: int = 0
    inserted: int = 0
    updated: int = 0
    errors: int = 0
    enqueued: int = 0
    placeholders_created: int = 0
    final_active_count: int = 0
    duration_seconds: float = 0.0
    cancelled: bool = False
    anomalies: List[Anomaly] = field(default_factory=list)
    missing_ordinals: List[int] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def missing(self) -> int:
        return len(self.missing_ordinals)

    @property
    def expected_active(self) -> int:
        return self.expected_count - self.missing

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "expected_count": self.expected_count,
            "dry_run": self.dry_run,
            "scanned": self.scanned,
            "inserted": self.inserted,
            "updated": self.updated,
            "anomalies": len(self.anomalies),
            "missing": self.missing,
            "errors": self.errors,
            "enqueued": self.enqueued,
            "final_active_count": self.final_active_count,
            "duration_seconds": round(self.duration_seconds, 3),
            "cancelled": self.cancelled,
            "warnings": list(self.warnings),
        }


def parse_ordinal(name: str) -> Optional[int]:
    """Extract the ordinal from an object name like ``abraham/1234.png``.

    Only the final path segment is considered. Returns None when the name
    does not match the expected pattern.
    """
    match = ORDINAL_PATTERN.match(name.rsplit("/", 1)[-1])
    if match is None:
        return None
    return int(match.group(1))


def guess_mime_type(name: str) -> Optional[str]:
    extension = name.rsplit(".", 1)[-1].lower() if "." in name else ""
    return MIME_TYPES.get(extension)


class Reconciler:
    """Runs reconciliation passes for agents against one object source."""

    def __init__(
        self,
        db: Session,
        source: ObjectSource,
        batch_size: Optional[int] = None,
        page_size: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        """Initialize reconciler.

        Args:
            db: Database session used for every catalog statement
            source: Object source listing the bucket the works live in
            batch_size: Objects upserted between progress reports and cancel checks
            page_size: Page size requested from the object source
            cancel_event: When set, the pass stops before the next batch
        """
        self.settings = get_settings()
        self.db = db
        self.source = source
        self.store = WorkCatalogStore(db)
        self.batch_size = batch_size or self.settings.reconcile_batch_size
        self.page_size = page_size or self.settings.object_page_size
        self.cancel_event = cancel_event or threading.Event()

    def _resolve_agent(self, agent_ref: str) -> AgentModel:
        try:
            agent = AgentService(self.db).resolve(agent_ref)
        except SQLAlchemyError as e:
            raise ReconcileError(f"Work catalog unavailable: {e}") from e
        if agent is None:
            raise ReconcileError(f"Agent not found: {agent_ref}")
        return agent

    def reconcile(
        self, agent_ref: str, expected_count: int, dry_run: bool = False
    ) -> ReconcileSummary:
        """Run one full pass for an agent (by id or handle).

        Raises:
            ReconcileError: If the object source or catalog is unavailable
        """
        if expected_count < 0:
            raise ValueError(f"expected_count must be >= 0, got {expected_count}")

        started = time.monotonic()
        agent = self._resolve_agent(agent_ref)
        summary = ReconcileSummary(
            agent_id=agent.id, expected_count=expected_count, dry_run=dry_run
        )
        prefix = self.settings.prefix_for(agent.handle, agent.id)

        try:
            objects = self.source.list_all(prefix, self.page_size)
        except ObjectSourceError as e:
            raise ReconcileError(f"Object source unavailable: {e}", summary) from e

        objects.sort(key=lambda o: o.name)
        summary.scanned = len(objects)
        logger.info(
            f"Reconciling agent {agent.handle} ({agent.id}): "
            f"{len(objects)} objects under '{prefix}', expected={expected_count}"
        )

        found = set()
        total_batches = (len(objects) + self.batch_size - 1) // self.batch_size
        for index in range(total_batches):
            if self.cancel_event.is_set():
                summary.cancelled = True
                logger.warning(f"Reconciliation cancelled before batch {index + 1}")
                break

            batch = objects[index * self.batch_size : (index + 1) * self.batch_size]
            for obj in batch:
                self._process_object(agent, obj, found, summary)

            logger.info(
                f"Batch {index + 1}/{total_batches} done: "
                f"inserted={summary.inserted} updated={summary.updated} "
                f"anomalies={len(summary.anomalies)} errors={summary.errors}"
            )

        try:
            if not summary.cancelled:
                self._finish(agent, found, summary)
            summary.final_active_count = self.store.count_active(agent.id)
        except SQLAlchemyError as e:
            self.db.rollback()
            summary.duration_seconds = time.monotonic() - started
            raise ReconcileError(f"Work catalog unavailable: {e}", summary) from e

        converging = not (summary.cancelled or dry_run)
        if converging and summary.final_active_count != summary.expected_active:
            message = (
                f"Active count {summary.final_active_count} does not match "
                f"expected {summary.expected_active} "
                f"({expected_count} expected - {summary.missing} missing)"
            )
            summary.warnings.append(message)
            logger.warning(message)

        summary.duration_seconds = time.monotonic() - started
        logger.info(f"Reconciliation finished: {summary.to_dict()}")
        return summary

    def _process_object(
        self,
        agent: AgentModel,
        obj: StoredObject,
        found: set,
        summary: ReconcileSummary,
    ) -> None:
        ordinal = parse_ordinal(obj.name)
        if ordinal is None:
            self._anomaly(summary, obj, "unparseable_name")
            return
        if not 1 <= ordinal <= summary.expected_count:
            self._anomaly(summary, obj, "ordinal_out_of_range")
            return
        if ordinal in found:
            self._anomaly(summary, obj, "duplicate_ordinal")
            return

        found.add(ordinal)
        if summary.dry_run:
            return

        try:
            result = self.store.upsert_work(
                agent_id=agent.id,
                ordinal=ordinal,
                bucket=self.source.bucket,
                path=obj.name,
                bytes=obj.size,
                width=obj.width,
                height=obj.height,
                sha256=obj.sha256,
                mime_type=obj.content_type or guess_mime_type(obj.name),
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            summary.errors += 1
            logger.warning(f"Upsert failed for {obj.name} (ordinal {ordinal}): {e}")
            return

        if result.inserted:
            summary.inserted += 1
        else:
            summary.updated += 1

    def _anomaly(self, summary: ReconcileSummary, obj: StoredObject, reason: str) -> None:
        summary.anomalies.append(Anomaly(name=obj.name, reason=reason))
        logger.warning(f"Skipping {obj.name}: {reason}")

    def _finish(self, agent: AgentModel, found: set, summary: ReconcileSummary) -> None:
        expected = set(range(1, summary.expected_count + 1))
        summary.missing_ordinals = sorted(expected - found)

        if summary.dry_run:
            return

        for start in range(0, len(summary.missing_ordinals), self.batch_size):
            chunk = summary.missing_ordinals[start : start + self.batch_size]
            summary.placeholders_created += self.store.insert_missing_if_absent(
                agent.id, chunk, bucket=self.source.bucket
            )
        if summary.missing_ordinals:
            logger.info(
                f"{summary.missing} ordinals missing, "
                f"{summary.placeholders_created} new placeholders"
            )

        summary.enqueued = self.store.enqueue_checksums(agent.id)
        logger.info(f"Enqueued {summary.enqueued} checksum requests")


def run_reconcile(
    db: Session,
    source: ObjectSource,
    agent_ref: str,
    expected_count: int,
    batch_size: Optional[int] = None,
    dry_run: bool = False,
    cancel_event: Optional[threading.Event] = None,
) -> ReconcileSummary:
    """Convenience wrapper for one-off passes."""
    reconciler = Reconciler(
        db, source, batch_size=batch_size, cancel_event=cancel_event
    )
    return reconciler.reconcile(agent_ref, expected_count, dry_run=dry_run)
