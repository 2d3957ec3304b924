"""
Shared fixtures for the onboarding wizard tests.

No Redis or PostgreSQL is needed: the wizard core runs against the in-memory
collaborators in fakes.py, and the HTTP tests swap them in through
FastAPI dependency overrides.
"""
from __future__ import annotations

import pytest

from onboarding.tests.fakes import InMemoryLocalStore, InMemorySessionBackend
from onboarding.wizard.reconcile import ReconciliationProtocol
from onboarding.wizard.service import WizardService

# Scoring payload shaped like the scoring collaborator's output
VALID_SCORING = {"scoringResult": {"output": {"total_score": 72}}}
FAILED_SCORING = {"scoringResult": {"output": {"total_score": 0}}, "hasError": True}

FOUNDER_DATA = {"fullName": "Ada Lovelace", "email": "Ada@Example.com"}
VENTURE_DATA = {"name": "Acme"}
UPLOAD_DATA = {"fileName": "deck.pdf"}


@pytest.fixture
def local() -> InMemoryLocalStore:
    return InMemoryLocalStore()


@pytest.fixture
def backend() -> InMemorySessionBackend:
    return InMemorySessionBackend()


@pytest.fixture
def protocol(local: InMemoryLocalStore, backend: InMemorySessionBackend) -> ReconciliationProtocol:
    return ReconciliationProtocol(local, backend)


@pytest.fixture
def service(local: InMemoryLocalStore, backend: InMemorySessionBackend) -> WizardService:
    return WizardService(local, backend)
