"""
Domain types for the scheduling engine.

Time of day is carried as decimal hours (9.5 == 09:30). Hours are rounded
to four decimals so sums stay stable across repeated distributions.
"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional


HOURS_PRECISION = 4


def round_hours(value: float) -> float:
    return round(value + 0.0, HOURS_PRECISION)


def format_hour(value: float) -> str:
    """Format decimal hours as HH:MM (12.5 -> '12:30')."""
    total_minutes = int(round(value * 60))
    return f"{total_minutes // 60:02d}:{total_minutes % 60:02d}"


_HOUR_H = re.compile(r"^\s*(\d{1,2})h(\d{2})?\s*$")
_HOUR_COLON = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")


def parse_hour(text: str) -> float:
    """
    Parse '10h', '10h30' or '10:30' into decimal hours.

    Raises:
        ValueError: if the text is not a recognised time of day
    """
    match = _HOUR_H.match(text) or _HOUR_COLON.match(text)
    if not match:
        raise ValueError(f"Invalid time of day: {text!r}")
    hours = int(match.group(1))
    minutes = int(match.group(2) or 0)
    if hours > 24 or minutes >= 60:
        raise ValueError(f"Invalid time of day: {text!r}")
    return hours + minutes / 60


class EntryType(str, Enum):
    """Kinds of ledger rows."""
    TASK = "TASK"
    BLOCK = "BLOCK"


class Priority(str, Enum):
    REGULAR = "REGULAR"
    URGENT = "URGENT"


class DistributionMode(str, Enum):
    """Policies for spreading a task's hours over calendar days."""
    JUST_IN_TIME = "JUST_IN_TIME"
    FIFO = "FIFO"
    BALANCED = "BALANCED"
    MANUAL = "MANUAL"


class DistributionOutcome(str, Enum):
    OK = "OK"
    PAST_DATE_WARNING = "PAST_DATE_WARNING"
    INFEASIBLE = "INFEASIBLE"


class ConflictType(str, Enum):
    """Types of scheduling conflicts."""
    OVER_ALLOCATION = "OVER_ALLOCATION"
    TASK_OVERLAP = "TASK_OVERLAP"
    BLOCK_CONFLICT = "BLOCK_CONFLICT"
    OUTSIDE_WORKING_HOURS = "OUTSIDE_WORKING_HOURS"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    AFTER_DUE_DATE = "AFTER_DUE_DATE"
    LUNCH_BREAK = "LUNCH_BREAK"


class SuggestionType(str, Enum):
    LOCAL_REPAIR = "LOCAL_REPAIR"
    REASSIGNMENT = "REASSIGNMENT"
    IMPOSSIBLE = "IMPOSSIBLE"


class ImpactBand(str, Enum):
    """Qualitative band of an impact score."""
    LOW = "LOW"            # 0-33
    MODERATE = "MODERATE"  # 34-66
    HIGH = "HIGH"          # 67-100

    @classmethod
    def for_score(cls, score: float) -> "ImpactBand":
        if score <= 33:
            return cls.LOW
        if score <= 66:
            return cls.MODERATE
        return cls.HIGH


@dataclass(frozen=True)
class TimeRange:
    """A half-open [start, end) span of one day, in decimal hours."""
    start: float
    end: float

    @property
    def duration(self) -> float:
        return round_hours(self.end - self.start)

    def overlaps(self, other: "TimeRange") -> bool:
        return self.start < other.end and other.start < self.end

    def intersection(self, other: "TimeRange") -> float:
        return max(0.0, min(self.end, other.end) - max(self.start, other.start))

    def contains(self, other: "TimeRange") -> bool:
        return self.start <= other.start and other.end <= self.end

    def __str__(self) -> str:
        return f"{format_hour(self.start)}-{format_hour(self.end)}"


@dataclass
class Translator:
    """A translator of the roster, read-only to the engine."""
    id: str
    name: str
    daily_capacity: float = 7.0
    schedule_start: float = 9.0
    schedule_end: float = 17.0
    divisions: List[str] = field(default_factory=list)
    language_pairs: List[str] = field(default_factory=list)
    domains: List[str] = field(default_factory=list)
    active: bool = True
    seeking_work: bool = False

    @property
    def schedule(self) -> TimeRange:
        return TimeRange(self.schedule_start, self.schedule_end)

    def qualifies_for(
        self,
        language_pair: Optional[str] = None,
        domain: Optional[str] = None
    ) -> bool:
        """True when the translator covers the pair and domain (if any)."""
        if language_pair and language_pair not in self.language_pairs:
            return False
        if domain and domain not in self.domains:
            return False
        return True


@dataclass
class Task:
    """A translation or revision job to spread across days."""
    id: str
    translator_id: str
    total_hours: float
    due_at: datetime
    project_number: str = ""
    priority: Priority = Priority.REGULAR
    mode: DistributionMode = DistributionMode.JUST_IN_TIME
    window_start: Optional[date] = None
    window_end: Optional[date] = None
    language_pair: Optional[str] = None
    client: Optional[str] = None
    domain: Optional[str] = None
    morning_delivery: bool = False
    version: int = 1

    @property
    def due_date(self) -> date:
        return self.due_at.date()


@dataclass
class AllocationEntry:
    """One ledger row binding hours to a translator and a date."""
    date: date
    translator_id: str
    hours: float
    entry_type: EntryType = EntryType.TASK
    start: Optional[float] = None
    end: Optional[float] = None
    task_id: Optional[str] = None
    reason: Optional[str] = None
    forced: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    sequence: int = 0

    @property
    def time_range(self) -> Optional[TimeRange]:
        if self.start is None or self.end is None:
            return None
        return TimeRange(self.start, self.end)

    @property
    def is_task(self) -> bool:
        return self.entry_type == EntryType.TASK


@dataclass
class DistributionSlice:
    """One day of a proposed distribution."""
    date: date
    hours: float
    start: Optional[float] = None
    end: Optional[float] = None

    @property
    def time_range(self) -> Optional[TimeRange]:
        if self.start is None or self.end is None:
            return None
        return TimeRange(self.start, self.end)


@dataclass
class DistributionResult:
    """Outcome of a distribution run."""
    mode: DistributionMode
    requested_hours: float
    slices: List[DistributionSlice] = field(default_factory=list)
    outcome: DistributionOutcome = DistributionOutcome.OK
    unallocated_hours: float = 0.0
    exhausted_on: Optional[date] = None
    past_dates: List[date] = field(default_factory=list)
    overflow_dates: List[date] = field(default_factory=list)
    message: str = ""

    @property
    def allocated_hours(self) -> float:
        return round_hours(sum(s.hours for s in self.slices))

    @property
    def feasible(self) -> bool:
        return self.outcome != DistributionOutcome.INFEASIBLE

    @property
    def warning(self) -> Optional[str]:
        if self.outcome == DistributionOutcome.PAST_DATE_WARNING:
            return self.outcome.value
        return None


@dataclass
class Conflict:
    """A detected rule violation. Derived from the ledger, never stored."""
    id: str
    conflict_type: ConflictType
    translator_id: str
    date: date
    hours_involved: float
    explanation: str
    time_range: Optional[TimeRange] = None
    entry_id: Optional[str] = None
    task_id: Optional[str] = None
    related_entry_id: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ImpactScore:
    """Weighted disruption estimate of a suggestion."""
    total: int
    band: ImpactBand
    breakdown: Dict[str, float]
    justification: str


@dataclass
class ReassignmentCandidate:
    translator_id: str
    translator_name: str
    available_hours: float
    can_complete_before_due: bool
    score: float
    proposed_slices: List[DistributionSlice] = field(default_factory=list)


@dataclass
class Suggestion:
    """A proposed remediation for one task's conflicts."""
    suggestion_type: SuggestionType
    conflict_ids: List[str]
    task_id: str
    current_translator_id: str
    impact: ImpactScore
    description: str
    target_translator_id: Optional[str] = None
    proposed_slices: List[DistributionSlice] = field(default_factory=list)
    candidates: List[ReassignmentCandidate] = field(default_factory=list)
    displaced_hours: float = 0.0
    missing_hours: float = 0.0
    id: str = field(default_factory=lambda: f"sugg-{uuid.uuid4().hex[:12]}")
    created_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def proposed_hours(self) -> float:
        return round_hours(sum(s.hours for s in self.proposed_slices))
