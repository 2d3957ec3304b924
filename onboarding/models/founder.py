"""
models/founder.py — SQLAlchemy ORM model for registrant identities.

Table: founders
One row per email (stored lower-cased). Created the first time a founder
step is persisted; later sessions for the same email bind to the same row,
which is what "continue where you left off" looks up.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from onboarding.database import Base


class FounderORM(Base):
    __tablename__ = "founders"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    email: Mapped[str] = mapped_column(
        String(320),
        nullable=False,
        unique=True,
        index=True,
        comment="Lower-cased email — the identity key for email resume",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
