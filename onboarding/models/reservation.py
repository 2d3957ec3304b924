"""
models/reservation.py — SQLAlchemy ORM model for pre-registration payment reservations.

Table: reservations
Written by the payment collaborator; this service reads it during bootstrap
and binds claimed_by_founder_id when the founder step completes.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from onboarding.database import Base


class ReservationORM(Base):
    """
    status: 'pending' | 'completed' | 'claimed' — mirrors ReservationStatus.
    """
    __tablename__ = "reservations"

    token: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        comment="Reservation token sent in the payment confirmation link",
    )
    email: Mapped[str] = mapped_column(
        String(320),
        nullable=False,
        index=True,
    )
    status: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default="pending",
    )
    claimed_by_founder_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("founders.id"),
        nullable=True,
    )
    claimed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
