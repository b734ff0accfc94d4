import json
from typing import Union

from tetrix.api.database import get_database_adapter, close_database_adapter
from tetrix.platform.config import settings
from tetrix.platform.logging import get_logger
from tetrix.scheduling.calendar import parse_schedule
from tetrix.scheduling.ledger import InMemoryCapacityLedger
from tetrix.scheduling.models import Translator
from tetrix.scheduling.roster import InMemoryRoster, InMemoryTaskStore
from tetrix.scheduling.service import SchedulingService
from tetrix.storage.sql_ledger import SqlCapacityLedger, SqlRoster, SqlTaskStore

logger = get_logger(__name__)

# Singletons
_scheduling_service: SchedulingService | None = None


def load_roster_file(path: str, roster: Union[InMemoryRoster, SqlRoster]) -> int:
    """Load translator profiles from a JSON list into the roster."""
    default = parse_schedule(settings.DEFAULT_SCHEDULE)
    with open(path, encoding="utf-8") as handle:
        profiles = json.load(handle)

    for profile in profiles:
        start, end = parse_schedule(profile.get("schedule"), default)
        roster.upsert(Translator(
            id=profile["id"],
            name=profile.get("name", profile["id"]),
            daily_capacity=float(profile.get("daily_capacity", settings.DEFAULT_DAILY_CAPACITY)),
            schedule_start=start,
            schedule_end=end,
            divisions=profile.get("divisions", []),
            language_pairs=profile.get("language_pairs", []),
            domains=profile.get("domains", []),
            active=profile.get("active", True),
            seeking_work=profile.get("seeking_work", False),
        ))
    logger.info("roster_loaded", path=path, translators=len(profiles))
    return len(profiles)


def build_scheduling_service() -> SchedulingService:
    """Wire the service on the configured storage backend."""
    if settings.STORAGE_BACKEND == "sql":
        adapter = get_database_adapter()
        adapter.connect()
        adapter.create_schema()
        roster = SqlRoster(adapter)
        task_store = SqlTaskStore(adapter)
        ledger = SqlCapacityLedger(adapter, roster)
    else:
        roster = InMemoryRoster()
        task_store = InMemoryTaskStore()
        ledger = InMemoryCapacityLedger(roster)

    if settings.ROSTER_FILE:
        load_roster_file(settings.ROSTER_FILE, roster)

    logger.info("scheduling_service_ready", backend=settings.STORAGE_BACKEND)
    return SchedulingService.build(roster, task_store, ledger, settings)


def get_scheduling_service() -> SchedulingService:
    global _scheduling_service
    if not _scheduling_service:
        _scheduling_service = build_scheduling_service()
    return _scheduling_service


async def init_resources() -> None:
    """Initialize storage and the scheduling service."""
    get_scheduling_service()


async def close_resources() -> None:
    """Close all resources."""
    global _scheduling_service
    close_database_adapter()
    _scheduling_service = None
