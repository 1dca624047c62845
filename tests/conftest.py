"""
Pytest configuration and shared fixtures.

Every test gets its own in-memory SQLite database; no network or API key is
needed because the language model is always scripted.
"""

import os

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite://")

from machine_advisor.data.database import build_engine, init_db
from machine_advisor.data.repository import MachineRepository
from machine_advisor.observability.instrumentation import machine_var, run_id_var
from machine_advisor.observability.usage import clear_usage
from tests.fixtures.fleet import seed_fleet


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def fleet(engine):
    """Product id -> machine id for the three seeded machines."""
    return seed_fleet(engine)


@pytest.fixture
def repository(engine, fleet) -> MachineRepository:
    return MachineRepository(engine)


@pytest.fixture(autouse=True)
def _reset_run_context():
    yield
    run_id_var.set("")
    machine_var.set("")
    clear_usage()
