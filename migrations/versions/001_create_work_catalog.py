"""Create agents, works and work_checksum_queue tables

Revision ID: 001_work_catalog
Revises:
Create Date: 2026-10-17

"""
import sqlalchemy as sa
from alembic import op

# revision identifiers
revision = "001_work_catalog"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "agents",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("handle", sa.String(100), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_agents_handle", "agents", ["handle"], unique=True)

    op.create_table(
        "works",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("agent_id", sa.String(36), sa.ForeignKey("agents.id"), nullable=False),
        sa.Column("ordinal", sa.Integer, nullable=False),
        sa.Column("storage_bucket", sa.String(100), nullable=False),
        sa.Column("storage_path", sa.String(1024), nullable=False),
        sa.Column("mime_type", sa.String(100), nullable=True),
        sa.Column("width", sa.Integer, nullable=True),
        sa.Column("height", sa.Integer, nullable=True),
        sa.Column("bytes", sa.BigInteger, nullable=True),
        sa.Column("sha256", sa.String(64), nullable=True),
        sa.Column(
            "status",
            sa.Enum("active", "missing", name="work_status"),
            nullable=False,
            server_default="active",
        ),
        sa.Column(
            "visibility",
            sa.Enum("public", "private", name="work_visibility"),
            nullable=False,
            server_default="public",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("checksum_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("agent_id", "ordinal", name="uq_works_agent_ordinal"),
    )
    op.create_index(
        "ix_works_agent_status_ordinal",
        "works",
        ["agent_id", "status", "ordinal", "id"],
    )
    op.create_index("ix_works_agent_sha256", "works", ["agent_id", "sha256"])

    op.create_table(
        "work_checksum_queue",
        sa.Column("work_id", sa.String(36), sa.ForeignKey("works.id"), primary_key=True),
        sa.Column("agent_id", sa.String(36), sa.ForeignKey("agents.id"), nullable=False),
        sa.Column(
            "enqueued_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_work_checksum_queue_agent_id", "work_checksum_queue", ["agent_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_work_checksum_queue_agent_id", table_name="work_checksum_queue")
    op.drop_table("work_checksum_queue")
    op.drop_index("ix_works_agent_sha256", table_name="works")
    op.drop_index("ix_works_agent_status_ordinal", table_name="works")
    op.drop_table("works")
    op.drop_index("ix_agents_handle", table_name="agents")
    op.drop_table("agents")
    sa.Enum(name="work_visibility").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="work_status").drop(op.get_bind(), checkfirst=True)
