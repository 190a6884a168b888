"""Name index, scan progress and reconciliation checkpoint tables."""

from __future__ import annotations

from typing import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "20261019_01"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")
RECORD_ID_TYPE = sa.String(length=64)
TIMESTAMP = sa.DateTime(timezone=True)
NAME_KEY_TYPE = sa.Text().with_variant(sa.Text(collation="NOCASE"), "sqlite").with_variant(postgresql.CITEXT(), "postgresql")


def upgrade() -> None:
    """Create the duplicate-detection tables."""

    op.create_table(
        "name_index",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", NAME_KEY_TYPE, nullable=False),
        sa.Column("record_id", RECORD_ID_TYPE, nullable=False),
        sa.Column("created_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.UniqueConstraint("record_id", name="uq_name_index_record_id"),
    )
    op.create_index("idx_name_index_name", "name_index", ["name"], unique=False)

    op.create_table(
        "scan_progress",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("last_cursor", sa.Text(), nullable=True),
        sa.Column("total_indexed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("started_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("last_run_at", TIMESTAMP, nullable=True),
        sa.CheckConstraint("id = 1", name="ck_scan_progress_singleton"),
    )

    op.create_table(
        "reconcile_checkpoint",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("phase", sa.Text(), nullable=False),
        sa.Column("cursor", sa.Text(), nullable=True),
        sa.Column("snapshot", JSON_TYPE, nullable=True),
        sa.Column("processed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("counts", JSON_TYPE, nullable=True),
        sa.Column("updated_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.CheckConstraint("id = 1", name="ck_reconcile_checkpoint_singleton"),
    )

    op.create_table(
        "reconcile_records",
        sa.Column("seq", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("record_id", RECORD_ID_TYPE, nullable=False),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("tagged", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.UniqueConstraint("record_id", name="uq_reconcile_records_record_id"),
    )


def downgrade() -> None:
    """Drop the duplicate-detection tables."""

    op.drop_table("reconcile_records")
    op.drop_table("reconcile_checkpoint")
    op.drop_table("scan_progress")
    op.drop_index("idx_name_index_name", table_name="name_index")
    op.drop_table("name_index")
