"""initial_schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 12:00:00.000000 UTC

Creates the three core tables:
  - founders             (registrant identity, unique lower-cased email)
  - onboarding_sessions  (authoritative wizard progress, JSONB step data)
  - reservations         (pre-registration payment claims, read + claimed here)
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- founders table ---
    op.create_table(
        "founders",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False, comment="Lower-cased email — the identity key for email resume"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index(op.f("ix_founders_email"), "founders", ["email"], unique=False)

    # --- onboarding_sessions table ---
    op.create_table(
        "onboarding_sessions",
        sa.Column("id", sa.String(length=36), nullable=False, comment="Session UUID — doubles as the resume token"),
        sa.Column("founder_id", sa.String(length=36), nullable=True, comment="Bound once the founder step is persisted"),
        sa.Column("current_step", sa.String(length=20), nullable=False, comment="Advisory only — the step index is always recomputed"),
        sa.Column("completed_steps", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("step_data", postgresql.JSONB(astext_type=sa.Text()), nullable=False, comment="Per-step opaque JSON objects, merged key by key"),
        sa.Column("is_complete", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["founder_id"], ["founders.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_onboarding_sessions_founder_id"), "onboarding_sessions", ["founder_id"], unique=False)

    # --- reservations table ---
    op.create_table(
        "reservations",
        sa.Column("token", sa.String(length=64), nullable=False, comment="Reservation token sent in the payment confirmation link"),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("status", sa.String(length=10), nullable=False),
        sa.Column("claimed_by_founder_id", sa.String(length=36), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["claimed_by_founder_id"], ["founders.id"]),
        sa.PrimaryKeyConstraint("token"),
    )
    op.create_index(op.f("ix_reservations_email"), "reservations", ["email"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_reservations_email"), table_name="reservations")
    op.drop_table("reservations")
    op.drop_index(op.f("ix_onboarding_sessions_founder_id"), table_name="onboarding_sessions")
    op.drop_table("onboarding_sessions")
    op.drop_index(op.f("ix_founders_email"), table_name="founders")
    op.drop_table("founders")
