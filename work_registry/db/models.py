"""
SQLAlchemy models for the Work Registry.
"""

import uuid
from typing import Any, Dict

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .base import Base


def generate_id() -> str:
    return str(uuid.uuid4())


work_status_enum = Enum("active", "missing", name="work_status")
work_visibility_enum = Enum("public", "private", name="work_visibility")


class AgentModel(Base):
    """An agent that owns a corpus of works."""

    __tablename__ = "agents"

    id = Column(String(36), primary_key=True, default=generate_id)
    handle = Column(String(100), nullable=False, unique=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    works = relationship("WorkModel", back_populates="agent")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "handle": self.handle,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class WorkModel(Base):
    """Canonical catalog row for one artifact, addressed by (agent_id, ordinal)."""

    __tablename__ = "works"

    id = Column(String(36), primary_key=True, default=generate_id)
    agent_id = Column(String(36), ForeignKey("agents.id"), nullable=False)
    ordinal = Column(Integer, nullable=False)

    # Location (mutable, corrected by re-reconciliation)
    storage_bucket = Column(String(100), nullable=False)
    storage_path = Column(String(1024), nullable=False)

    # Descriptive and integrity metadata
    mime_type = Column(String(100), nullable=True)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    bytes = Column(BigInteger, nullable=True)
    sha256 = Column(String(64), nullable=True)

    status = Column(work_status_enum, nullable=False, default="active")
    visibility = Column(work_visibility_enum, nullable=False, default="public")

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    checksum_verified_at = Column(DateTime(timezone=True), nullable=True)

    agent = relationship("AgentModel", back_populates="works")

    __table_args__ = (
        UniqueConstraint("agent_id", "ordinal", name="uq_works_agent_ordinal"),
        # Keyset pagination scans (agent, ordinal desc, id desc) filtered by status/visibility
        Index("ix_works_agent_status_ordinal", "agent_id", "status", "ordinal", "id"),
        Index("ix_works_agent_sha256", "agent_id", "sha256"),
    )

    @property
    def verified(self) -> bool:
        return self.checksum_verified_at is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "ordinal": self.ordinal,
            "storage_bucket": self.storage_bucket,
            "storage_path": self.storage_path,
            "mime_type": self.mime_type,
            "width": self.width,
            "height": self.height,
            "bytes": self.bytes,
            "sha256": self.sha256,
            "status": self.status,
            "visibility": self.visibility,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "checksum_verified_at": (
                self.checksum_verified_at.isoformat()
                if self.checksum_verified_at
                else None
            ),
        }


class ChecksumQueueModel(Base):
    """Pending integrity-check request; at most one per work."""

    __tablename__ = "work_checksum_queue"

    work_id = Column(String(36), ForeignKey("works.id"), primary_key=True)
    agent_id = Column(String(36), ForeignKey("agents.id"), nullable=False, index=True)
    enqueued_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "work_id": self.work_id,
            "agent_id": self.agent_id,
            "enqueued_at": self.enqueued_at.isoformat() if self.enqueued_at else None,
        }
