"""Collaborator contracts consumed by the wizard core.

The core never talks to Redis or PostgreSQL directly. It sees one local
cache slot (LocalSessionStore) and the authoritative server records
(SessionBackend). Production adapters live in onboarding/cache.py and
onboarding/store.py; tests use in-memory fakes.

Contract shared by every method: NotFound is returned as None, and any
network or storage failure is raised as TransientIOError.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol

from onboarding.wizard.schemas import ProcessingResult, Reservation, Session


class LocalSessionStore(Protocol):
    """Single mutable cache slot for one browser profile.

    Every save fully replaces the previous document.
    """

    async def load(self) -> Optional[str]:
        """Raw serialized Session document, or None when the slot is empty."""
        ...

    async def save(self, document: str) -> None:
        ...

    async def save_if_latest(self, document: str, generation: int) -> bool:
        """Save only while generation is still the latest issued; compare and write are atomic.

        Returns False, without writing, when a newer bootstrap has started.
        """
        ...

    async def clear(self) -> None:
        ...

    async def begin_generation(self) -> int:
        """Start a bootstrap: return a number strictly greater than any issued before."""
        ...

    async def latest_generation(self) -> int:
        """Most recently issued bootstrap number for this slot."""
        ...


class SessionBackend(Protocol):
    """Authoritative server-side session records and their collaborators."""

    async def create_session(self) -> Session:
        ...

    async def get_session(self, session_id: str) -> Optional[Session]:
        ...

    async def find_session_by_identity(self, email: str) -> Optional[Session]:
        """Most recently created session bound to the founder with this email."""
        ...

    async def find_reservation(self, token: str) -> Optional[Reservation]:
        ...

    async def find_reservation_by_email(self, email: str) -> Optional[Reservation]:
        ...

    async def persist_step_update(
        self, session_id: str, step_key: str, partial: Mapping[str, Any]
    ) -> Session:
        """Durable merge mirroring MergeEngine; returns the updated server record.

        Raises:
            SessionNotFound: no record with session_id.
        """
        ...

    async def get_processing_result(self, session_id: str) -> Optional[ProcessingResult]:
        ...

    async def mark_complete(self, session_id: str) -> Session:
        ...

    async def claim_reservation(self, token: str, founder_id: str) -> bool:
        """Bind a completed reservation to a founder. False when it cannot be claimed."""
        ...
