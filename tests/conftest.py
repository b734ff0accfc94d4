"""
Pytest configuration and shared fixtures.
"""

import os
import sys
from datetime import datetime

import pytest

sys.path.append(os.path.join(os.getcwd(), "src"))

from tetrix.scheduling.calendar import BusinessCalendar
from tetrix.scheduling.conflict_detector import ConflictDetector
from tetrix.scheduling.distribution import DistributionEngine
from tetrix.scheduling.ledger import InMemoryCapacityLedger
from tetrix.scheduling.models import Task, Translator
from tetrix.scheduling.resolution import ResolutionSuggester
from tetrix.scheduling.roster import InMemoryRoster, InMemoryTaskStore
from tetrix.scheduling.service import SchedulingService

# Monday 2026-01-12, before opening hours
NOW = datetime(2026, 1, 12, 8, 0)


def pytest_configure(config):
    config.addinivalue_line("markers", "sql: tests running against an in-memory SQLite database")


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment() -> None:
    """Set up test environment variables."""
    os.environ.setdefault("APP_ENV", "test")
    os.environ.setdefault("STORAGE_BACKEND", "memory")
    os.environ.setdefault("METRICS_ENABLED", "false")


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def translators():
    return [
        Translator(
            id="tr-alice",
            name="Alice Tremblay",
            divisions=["TR-A"],
            language_pairs=["EN>FR"],
            domains=["legal"],
        ),
        Translator(
            id="tr-bob",
            name="Bob Gagnon",
            divisions=["TR-A"],
            language_pairs=["EN>FR"],
            domains=["legal", "finance"],
            seeking_work=True,
        ),
        Translator(
            id="tr-carol",
            name="Carol Roy",
            divisions=["TR-B"],
            language_pairs=["EN>ES"],
            domains=["legal"],
        ),
        Translator(
            id="tr-dave",
            name="Dave Pelletier",
            divisions=["TR-A"],
            language_pairs=["EN>FR"],
            domains=["legal"],
            active=False,
        ),
    ]


@pytest.fixture
def calendar() -> BusinessCalendar:
    return BusinessCalendar()


@pytest.fixture
def roster(translators) -> InMemoryRoster:
    return InMemoryRoster(translators)


@pytest.fixture
def task_store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture
def ledger(roster) -> InMemoryCapacityLedger:
    return InMemoryCapacityLedger(roster)


@pytest.fixture
def engine(calendar) -> DistributionEngine:
    return DistributionEngine(calendar, clock=lambda: NOW)


@pytest.fixture
def detector(calendar, roster, task_store) -> ConflictDetector:
    return ConflictDetector(calendar, roster, task_store)


@pytest.fixture
def suggester(engine, detector, roster, task_store) -> ResolutionSuggester:
    return ResolutionSuggester(engine, detector, roster, task_store, workers=4)


@pytest.fixture
def service(roster, task_store, ledger, engine, detector, suggester) -> SchedulingService:
    return SchedulingService(roster, task_store, ledger, engine, detector, suggester, clock=lambda: NOW)


@pytest.fixture
def make_task():
    """Factory for tasks with sensible defaults."""

    def factory(task_id="task-1", hours=10.0, due=datetime(2026, 1, 15, 17, 0), **overrides) -> Task:
        values = dict(
            id=task_id,
            translator_id="tr-alice",
            total_hours=hours,
            due_at=due,
            project_number=f"PRJ-{task_id}",
        )
        values.update(overrides)
        return Task(**values)

    return factory
