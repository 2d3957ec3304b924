"""
models/__init__.py — imports all ORM models so Alembic's env.py
sees them via Base.metadata when generating migrations.

Import order matters: sessions and reservations reference founders.
"""
from onboarding.models.founder import FounderORM
from onboarding.models.session import OnboardingSessionORM
from onboarding.models.reservation import ReservationORM

__all__ = ["FounderORM", "OnboardingSessionORM", "ReservationORM"]
