"""create action_batches and action_items

Revision ID: MS00001aaA01
Revises:
Create Date: 2026-10-18 10:00:00.000000

Hey future me - THE ENFORCEMENT LEDGER!

action_batches: one row per submitted enforcement or rollback run.
action_items:   one row per remote mutation, with before/after state.

KEY DESIGN DECISIONS:
1. action_batches.idempotency_key is UNIQUE - this is what resolves two concurrent
   submissions of the same plan (the loser gets IntegrityError and loads the winner)
2. action_items.idempotency_key is UNIQUE too (batch:type:entity:verb[:playlist])
3. Items cascade with their batch (ondelete CASCADE + PRAGMA foreign_keys=ON)
4. options/summary/before_state/after_state are JSON - never queried inside
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "MS00001aaA01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create both enforcement tables."""
    op.create_table(
        "action_batches",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("idempotency_key", sa.String(255), nullable=False),
        sa.Column("dry_run", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(30), nullable=False, server_default="pending"),
        sa.Column("options", sa.JSON(), nullable=False),
        sa.Column("summary", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("idempotency_key", name="uq_action_batches_idempotency_key"),
    )
    op.create_index("ix_action_batches_user_id", "action_batches", ["user_id"])
    op.create_index("ix_action_batches_status", "action_batches", ["status"])
    op.create_index(
        "ix_action_batches_status_created", "action_batches", ["status", "created_at"]
    )

    op.create_table(
        "action_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "batch_id",
            sa.String(36),
            sa.ForeignKey("action_batches.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("entity_type", sa.String(30), nullable=False),
        sa.Column("entity_id", sa.String(255), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("idempotency_key", sa.String(512), nullable=False),
        sa.Column("before_state", sa.JSON(), nullable=True),
        sa.Column("after_state", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(30), nullable=False, server_default="pending"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_code", sa.String(50), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("idempotency_key", name="uq_action_items_idempotency_key"),
    )
    op.create_index("ix_action_items_batch_id", "action_items", ["batch_id"])
    op.create_index("ix_action_items_batch_status", "action_items", ["batch_id", "status"])


def downgrade() -> None:
    """Drop both tables (items first, they reference batches)."""
    op.drop_index("ix_action_items_batch_status", table_name="action_items")
    op.drop_index("ix_action_items_batch_id", table_name="action_items")
    op.drop_table("action_items")
    op.drop_index("ix_action_batches_status_created", table_name="action_batches")
    op.drop_index("ix_action_batches_status", table_name="action_batches")
    op.drop_index("ix_action_batches_user_id", table_name="action_batches")
    op.drop_table("action_batches")
