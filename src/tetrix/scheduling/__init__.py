"""
Tetrix Scheduling Engine

Capacity-aware distribution of translation work across business days:

- BusinessCalendar: business days, working windows, lunch handling
- CapacityLedger: per-translator, per-day committed hours
- DistributionEngine: JUST_IN_TIME, FIFO, BALANCED and MANUAL policies
- ConflictDetector: rule violations over a ledger range
- ResolutionSuggester: local repair, reassignment and impact scoring
- SchedulingService: atomic write-then-scan orchestration
"""

from .calendar import BusinessCalendar, parse_schedule
from .conflict_detector import ConflictDetector
from .distribution import DistributionEngine
from .errors import (
    CapacityExceededError,
    InfeasibleError,
    InvalidInputError,
    NotFoundError,
    SchedulingError,
    StaleVersionError,
)
from .ledger import CapacityLedger, InMemoryCapacityLedger, LedgerReader, OverlayLedger
from .resolution import ImpactWeights, ResolutionSuggester, score_impact
from .roster import InMemoryRoster, InMemoryTaskStore, Roster, TaskStore
from .service import SchedulingService

__all__ = [
    "BusinessCalendar",
    "parse_schedule",
    "CapacityLedger",
    "InMemoryCapacityLedger",
    "LedgerReader",
    "OverlayLedger",
    "DistributionEngine",
    "ConflictDetector",
    "ImpactWeights",
    "ResolutionSuggester",
    "score_impact",
    "Roster",
    "TaskStore",
    "InMemoryRoster",
    "InMemoryTaskStore",
    "SchedulingService",
    # Errors
    "SchedulingError",
    "InvalidInputError",
    "NotFoundError",
    "InfeasibleError",
    "CapacityExceededError",
    "StaleVersionError",
]
