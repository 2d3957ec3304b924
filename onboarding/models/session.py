"""
models/session.py — SQLAlchemy ORM model for onboarding wizard sessions.

Table: onboarding_sessions

Dual-store pattern:
  - Redis:       per-device cache slot 'wizard:{client_id}' (offline continuity, never authoritative)
  - PostgreSQL:  this table — the authoritative record used for resume links and email resume

step_data is an opaque JSONB blob per step; only the store's merge touches it.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from onboarding.database import Base


class OnboardingSessionORM(Base):
    """
    ORM model for one registrant's wizard progress.

    completed_steps: JSONB list of step keys, catalog order, no duplicates.
    is_complete:     set once, terminal.
    """
    __tablename__ = "onboarding_sessions"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Session UUID — doubles as the resume token",
    )
    founder_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("founders.id"),
        nullable=True,
        index=True,
        comment="Bound once the founder step is persisted",
    )
    current_step: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="founder",
        comment="Advisory only — the step index is always recomputed",
    )
    completed_steps: Mapped[list] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
    )
    step_data: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        comment="Per-step opaque JSON objects, merged key by key",
    )
    is_complete: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
