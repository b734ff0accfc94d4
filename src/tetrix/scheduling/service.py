"""
Scheduling Service

Orchestrates the engine components into the operations exposed over HTTP:
preview, task writes, block insertion, conflict analysis and suggestion
application.

Each write for a translator is one atomic unit under that translator's
ledger lock: distribute, validate, write, then re-scan for conflicts.
Suggestions are computed after the lock is released.
"""

import time
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence

from tetrix.platform.logging import get_logger, log_context
from tetrix.platform.metrics import (
    CONFLICTS_DETECTED,
    DISTRIBUTIONS,
    LEDGER_WRITE_SECONDS,
    SUGGESTIONS_GENERATED,
)

from .calendar import BusinessCalendar, local_clock
from .conflict_detector import ConflictDetector
from .distribution import DistributionEngine
from .errors import CapacityExceededError, InfeasibleError, InvalidInputError, NotFoundError, StaleVersionError
from .ledger import EPSILON, CapacityLedger, OverlayLedger
from .models import (
    AllocationEntry,
    Conflict,
    DistributionMode,
    DistributionResult,
    DistributionSlice,
    EntryType,
    Suggestion,
    SuggestionType,
    Task,
    TimeRange,
    Translator,
    round_hours,
)
from .resolution import ResolutionSuggester
from .roster import Roster, TaskStore

logger = get_logger(__name__)


@dataclass
class TaskWriteResult:
    """Outcome of creating or updating a task."""
    task: Task
    distribution: DistributionResult
    entries: List[AllocationEntry] = field(default_factory=list)
    conflicts: List[Conflict] = field(default_factory=list)
    requires_confirmation: bool = False

    @property
    def status(self) -> str:
        if self.requires_confirmation:
            return "CONFIRMATION_REQUIRED"
        if self.conflicts:
            return "CONFLICT_DETECTED"
        return "OK"


@dataclass
class BlockReport:
    """A recorded block with the conflicts it caused and their remedies."""
    block: AllocationEntry
    conflicts: List[Conflict] = field(default_factory=list)
    suggestions: List[Suggestion] = field(default_factory=list)


@dataclass
class AllocationReport:
    entry: AllocationEntry
    conflicts: List[Conflict] = field(default_factory=list)
    suggestions: List[Suggestion] = field(default_factory=list)


@dataclass
class LedgerDay:
    date: date
    capacity: float
    booked: float
    available: float
    entries: List[AllocationEntry] = field(default_factory=list)


class _ConfirmationRequired(Exception):
    """Unwinds a write transaction that needs the caller's confirmation."""

    def __init__(self, result: DistributionResult):
        super().__init__(result.message)
        self.result = result


class SchedulingService:
    """Facade over the ledger, distribution engine, detector and suggester."""

    def __init__(
        self,
        roster: Roster,
        task_store: TaskStore,
        ledger: CapacityLedger,
        engine: DistributionEngine,
        detector: ConflictDetector,
        suggester: ResolutionSuggester,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.roster = roster
        self.task_store = task_store
        self.ledger = ledger
        self.engine = engine
        self.calendar: BusinessCalendar = engine.calendar
        self.detector = detector
        self.suggester = suggester
        self.clock = clock or engine.clock

    @classmethod
    def build(
        cls,
        roster: Roster,
        task_store: TaskStore,
        ledger: CapacityLedger,
        settings,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "SchedulingService":
        """Wire the engine components from settings."""
        clock = clock or local_clock(settings.TIMEZONE)
        calendar = BusinessCalendar.from_settings(settings)
        engine = DistributionEngine.from_settings(calendar, settings, clock=clock)
        detector = ConflictDetector(calendar, roster, task_store, tolerance=settings.HOURS_TOLERANCE)
        suggester = ResolutionSuggester.from_settings(engine, detector, roster, task_store, settings)
        return cls(roster, task_store, ledger, engine, detector, suggester, clock=clock)

    # ------------------------------------------------------------------
    # Distribution
    # ------------------------------------------------------------------

    def preview(
        self,
        task: Task,
        manual: Optional[Sequence[DistributionSlice]] = None,
    ) -> DistributionResult:
        """Compute a distribution without writing it."""
        translator = self._translator(task.translator_id)
        existing = [e.id for e in self.ledger.entries_for_task(task.id)]
        view = OverlayLedger(self.ledger, hidden_ids=existing)
        mode = DistributionMode.MANUAL if manual else task.mode
        result = self.engine.distribute(task, translator, view, mode=mode, manual=manual, now=self.clock())
        DISTRIBUTIONS.labels(mode=result.mode.value, outcome=result.outcome.value).inc()
        return result

    def submit_task(
        self,
        task: Task,
        manual: Optional[Sequence[DistributionSlice]] = None,
        force: bool = False,
        confirm_past_dates: bool = False,
    ) -> TaskWriteResult:
        """
        Distribute and record a new task.

        Args:
            task: Task header
            manual: Explicit allocation (MANUAL mode)
            force: Accept manual lines that overbook a day
            confirm_past_dates: Write even if slices land before today
                or after the due date

        Raises:
            InvalidInputError: malformed task or allocation
            InfeasibleError: the policy cannot place every hour
            CapacityExceededError: a manual line overbooks a day without force
        """
        with log_context(task_id=task.id, translator_id=task.translator_id):
            return self._write_task(task, manual, force, confirm_past_dates, previous=None)

    def update_task(
        self,
        task: Task,
        expected_version: int,
        manual: Optional[Sequence[DistributionSlice]] = None,
        force: bool = False,
        confirm_past_dates: bool = False,
    ) -> TaskWriteResult:
        """Replace a task and its allocation under optimistic locking."""
        previous = self.task_store.require(task.id)
        if previous.version != expected_version:
            raise StaleVersionError(
                f"Task {task.id} was modified concurrently",
                {"task_id": task.id, "expected": expected_version, "actual": previous.version},
            )
        task = replace(task, version=previous.version)
        with log_context(task_id=task.id, translator_id=task.translator_id):
            return self._write_task(task, manual, force, confirm_past_dates, previous=previous)

    def delete_task(self, task_id: str) -> int:
        """Remove a task and its ledger rows. Returns the number of rows removed."""
        task = self.task_store.require(task_id)
        with self.ledger.transaction(task.translator_id):
            entries = self.ledger.entries_for_task(task_id)
            for entry in entries:
                self.ledger.remove_allocation(entry.id)
            self.task_store.delete(task_id)
        logger.info("task_deleted", task_id=task_id, entries=len(entries))
        return len(entries)

    def _write_task(
        self,
        task: Task,
        manual: Optional[Sequence[DistributionSlice]],
        force: bool,
        confirm_past_dates: bool,
        previous: Optional[Task],
    ) -> TaskWriteResult:
        translator = self._translator(task.translator_id)
        mode = DistributionMode.MANUAL if manual else task.mode
        now = self.clock()
        locked = [task.translator_id] + ([previous.translator_id] if previous else [])

        started = time.perf_counter()
        try:
            with self.ledger.transaction(*locked):
                if previous is None and self.task_store.get(task.id) is not None:
                    raise InvalidInputError(f"Task {task.id} already exists", {"task_id": task.id})
                if previous is not None:
                    for entry in self.ledger.entries_for_task(previous.id):
                        self.ledger.remove_allocation(entry.id)

                result = self.engine.distribute(task, translator, self.ledger, mode=mode, manual=manual, now=now)
                DISTRIBUTIONS.labels(mode=result.mode.value, outcome=result.outcome.value).inc()
                if not result.feasible:
                    raise InfeasibleError(result.message, {
                        "task_id": task.id,
                        "unallocated_hours": result.unallocated_hours,
                        "exhausted_on": result.exhausted_on.isoformat() if result.exhausted_on else None,
                    })
                if result.warning and not confirm_past_dates:
                    raise _ConfirmationRequired(result)
                if mode == DistributionMode.MANUAL and not force:
                    self._check_capacity(translator, result.slices)

                entries = [
                    self.ledger.add_allocation(
                        AllocationEntry(
                            date=piece.date,
                            translator_id=translator.id,
                            hours=piece.hours,
                            start=piece.start,
                            end=piece.end,
                            task_id=task.id,
                        ),
                        force=force and mode == DistributionMode.MANUAL,
                    )
                    for piece in result.slices
                ]
                if previous is not None:
                    stored = self.task_store.update(task, previous.version)
                else:
                    stored = self.task_store.add(task)

                conflicts = self._scan(translator.id, [e.date for e in entries], [e.id for e in entries])
        except _ConfirmationRequired as pending:
            logger.info(
                "confirmation_required",
                task_id=task.id,
                past_dates=[d.isoformat() for d in pending.result.past_dates],
                overflow_dates=[d.isoformat() for d in pending.result.overflow_dates],
            )
            return TaskWriteResult(task=task, distribution=pending.result, requires_confirmation=True)
        finally:
            LEDGER_WRITE_SECONDS.observe(time.perf_counter() - started)

        logger.info(
            "task_written",
            task_id=stored.id,
            translator_id=translator.id,
            mode=mode.value,
            hours=result.allocated_hours,
            entries=len(entries),
            conflicts=len(conflicts),
            version=stored.version,
        )
        return TaskWriteResult(task=stored, distribution=result, entries=entries, conflicts=conflicts)

    def _check_capacity(self, translator: Translator, slices: Sequence[DistributionSlice]) -> None:
        requested: Dict[date, float] = {}
        for piece in slices:
            requested[piece.date] = round_hours(requested.get(piece.date, 0.0) + piece.hours)

        overbooked = []
        for day, hours in sorted(requested.items()):
            available = self.ledger.available_hours(translator.id, day)
            if hours > available + EPSILON:
                overbooked.append({
                    "date": day.isoformat(),
                    "requested": hours,
                    "available": available,
                })
        if overbooked:
            days = ", ".join(d["date"] for d in overbooked)
            raise CapacityExceededError(
                f"Insufficient availability for {translator.name} on {days}",
                {"translator_id": translator.id, "days": overbooked},
            )

    # ------------------------------------------------------------------
    # Blocks
    # ------------------------------------------------------------------

    def add_block(
        self,
        translator_id: str,
        day: date,
        start: float,
        end: float,
        reason: Optional[str] = None,
    ) -> BlockReport:
        """
        Block a time range for a translator.

        The block always lands; it charges only the part of the range that
        falls inside working hours, lunch excluded. Conflicts it causes are
        reported along with suggestions.
        """
        translator = self._translator(translator_id)
        if end <= start:
            raise InvalidInputError(
                "Block end must be after its start",
                {"start": start, "end": end},
            )
        span = TimeRange(start, end)
        window = self.calendar.working_window(translator, day)
        charged = 0.0
        if span.overlaps(window):
            charged = self.calendar.working_hours(
                TimeRange(max(span.start, window.start), min(span.end, window.end))
            )
        block = AllocationEntry(
            date=day,
            translator_id=translator_id,
            hours=round(charged, 2),
            entry_type=EntryType.BLOCK,
            start=start,
            end=end,
            reason=reason,
        )

        started = time.perf_counter()
        try:
            with self.ledger.transaction(translator_id):
                stored = self.ledger.add_allocation(block, force=True)
                conflicts = self._scan(translator_id, [day], [stored.id])
        finally:
            LEDGER_WRITE_SECONDS.observe(time.perf_counter() - started)

        suggestions = self.suggest(conflicts) if conflicts else []
        logger.info(
            "block_added",
            translator_id=translator_id,
            date=day.isoformat(),
            range=str(span),
            hours=stored.hours,
            conflicts=len(conflicts),
        )
        return BlockReport(block=stored, conflicts=conflicts, suggestions=suggestions)

    def remove_block(self, entry_id: str) -> AllocationEntry:
        entry = self.ledger.get_entry(entry_id)
        if entry is None or entry.entry_type != EntryType.BLOCK:
            raise NotFoundError(f"Block {entry_id} not found", {"entry_id": entry_id})
        with self.ledger.transaction(entry.translator_id):
            removed = self.ledger.remove_allocation(entry_id)
        logger.info("block_removed", entry_id=entry_id, translator_id=entry.translator_id)
        return removed

    # ------------------------------------------------------------------
    # Conflicts
    # ------------------------------------------------------------------

    def detect(self, translator_id: str, start: date, end: date) -> List[Conflict]:
        self._translator(translator_id)
        return self.detector.detect(translator_id, start, end, self.ledger)

    def detect_for_entry(self, entry_id: str) -> List[Conflict]:
        return self.detector.detect_for_entry(entry_id, self.ledger)

    def analyze_allocation(self, entry_id: str) -> AllocationReport:
        """Conflicts involving one ledger row, with suggestions."""
        entry = self.ledger.get_entry(entry_id)
        if entry is None:
            raise NotFoundError(f"Allocation {entry_id} not found", {"entry_id": entry_id})
        conflicts = self.detector.detect_for_entry(entry_id, self.ledger)
        suggestions = self.suggest(conflicts) if conflicts else []
        return AllocationReport(entry=entry, conflicts=conflicts, suggestions=suggestions)

    def suggest(
        self,
        conflicts: Sequence[Conflict],
        candidates: Optional[Sequence[Translator]] = None,
    ) -> List[Suggestion]:
        suggestions = self.suggester.suggest(conflicts, self.ledger, candidates=candidates, now=self.clock())
        for suggestion in suggestions:
            SUGGESTIONS_GENERATED.labels(suggestion_type=suggestion.suggestion_type.value).inc()
        return suggestions

    def apply_suggestion(
        self,
        suggestion: Suggestion,
        expected_version: Optional[int] = None,
        force: bool = False,
    ) -> TaskWriteResult:
        """
        Apply a LOCAL_REPAIR or REASSIGNMENT through the regular task-write
        path, using the proposed slices as a manual allocation.
        """
        if suggestion.suggestion_type == SuggestionType.IMPOSSIBLE:
            raise InvalidInputError(
                "An IMPOSSIBLE suggestion cannot be applied",
                {"suggestion_id": suggestion.id},
            )
        if not suggestion.proposed_slices:
            raise InvalidInputError("Suggestion has no allocation", {"suggestion_id": suggestion.id})

        task = self.task_store.require(suggestion.task_id)
        target = suggestion.target_translator_id or task.translator_id
        updated = replace(task, translator_id=target)
        version = task.version if expected_version is None else expected_version
        logger.info(
            "suggestion_applied",
            suggestion_id=suggestion.id,
            suggestion_type=suggestion.suggestion_type.value,
            task_id=task.id,
            target_translator_id=target,
        )
        return self.update_task(
            updated,
            expected_version=version,
            manual=suggestion.proposed_slices,
            force=force,
            confirm_past_dates=True,
        )

    # ------------------------------------------------------------------
    # Ledger view
    # ------------------------------------------------------------------

    def ledger_view(self, translator_id: str, start: date, end: date) -> List[LedgerDay]:
        """Per-day capacity, bookings and rows over an inclusive range."""
        self._translator(translator_id)
        if end < start:
            raise InvalidInputError("Range end is before its start", {"start": start.isoformat(), "end": end.isoformat()})
        entries = self.ledger.entries_for(translator_id, start, end)
        days = []
        current = start
        while current <= end:
            rows = [e for e in entries if e.date == current]
            capacity = self.ledger.capacity(translator_id, current)
            booked = round_hours(sum(e.hours for e in rows))
            days.append(LedgerDay(
                date=current,
                capacity=capacity,
                booked=booked,
                available=max(0.0, round_hours(capacity - booked)),
                entries=rows,
            ))
            current += timedelta(days=1)
        return days

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _translator(self, translator_id: str) -> Translator:
        translator = self.roster.get_translator(translator_id) if translator_id else None
        if translator is None:
            raise InvalidInputError(
                f"Unknown translator {translator_id!r}",
                {"translator_id": translator_id},
            )
        return translator

    def _scan(self, translator_id: str, dates: Sequence[date], triggers: Sequence[str]) -> List[Conflict]:
        if not dates:
            return []
        conflicts = self.detector.detect(
            translator_id, min(dates), max(dates), self.ledger, trigger_entry_ids=triggers,
        )
        for conflict in conflicts:
            CONFLICTS_DETECTED.labels(conflict_type=conflict.conflict_type.value).inc()
        return conflicts
