"""
Conflict Detector

Scans a translator's ledger rows over a date range and reports rule
violations.

Conflict Types:
- Capacity exceeded (sum of a day's hours above daily capacity)
- Over-allocation (same rule, attributed to the write that triggered it)
- Task overlap (two timed task entries sharing time)
- Block conflict (a task entry overlapping a blocked range)
- Outside working hours (a task range leaving the translator's window)
- Lunch break (a task range starting or ending during lunch, or holding
  more hours than its working time)
- After due date (a task entry placed after its task is due)

The per-entry checks, from working hours down, apply to TASK entries
only. A block may cover any time of day, such as an early appointment or a
leave running past closing; only its share inside working hours is charged
against capacity, and that share is checked by the capacity rule.

Detection is side-effect free: identical ledger state and arguments give
identical conflicts, with identical ids.

Usage:
    detector = ConflictDetector(calendar, roster, task_store)
    conflicts = detector.detect("tr-1", start, end, ledger)
"""

import logging
from collections import defaultdict
from datetime import date
from itertools import combinations
from typing import Dict, Iterable, List, Optional

from .calendar import BusinessCalendar
from .errors import NotFoundError
from .ledger import EPSILON, LedgerReader
from .models import AllocationEntry, Conflict, ConflictType, Task, TimeRange, round_hours
from .roster import Roster, TaskStore

logger = logging.getLogger(__name__)


class ConflictDetector:
    """
    Applies the scheduling rules to ledger rows.

    Capacity overruns are reported once per day. The conflict points at
    the task entry best placed to move: the triggering write if it is a
    task entry, otherwise the most recent task entry of that day.
    """

    def __init__(
        self,
        calendar: BusinessCalendar,
        roster: Roster,
        task_store: Optional[TaskStore] = None,
        tolerance: float = 0.01,
    ):
        self.calendar = calendar
        self.roster = roster
        self.task_store = task_store
        self.tolerance = tolerance
        self.logger = logging.getLogger(self.__class__.__name__)

    def detect(
        self,
        translator_id: str,
        start: date,
        end: date,
        ledger: LedgerReader,
        trigger_entry_ids: Iterable[str] = (),
    ) -> List[Conflict]:
        """
        Detect conflicts for one translator over an inclusive date range.

        Args:
            translator_id: Translator whose rows are scanned
            start: First date of the range
            end: Last date of the range
            ledger: Ledger (or overlay) to read
            trigger_entry_ids: Entries just written; capacity overruns on
                their days are reported as OVER_ALLOCATION

        Returns:
            Conflicts ordered by date, then type, then id
        """
        translator = self.roster.get_translator(translator_id)
        if translator is None:
            raise NotFoundError(f"Translator {translator_id} not found", {"translator_id": translator_id})

        triggers = set(trigger_entry_ids)
        by_day: Dict[date, List[AllocationEntry]] = defaultdict(list)
        for entry in ledger.entries_for(translator_id, start, end):
            by_day[entry.date].append(entry)

        conflicts: List[Conflict] = []
        for day in sorted(by_day):
            entries = sorted(by_day[day], key=lambda e: (e.sequence, e.id))
            capacity = ledger.capacity(translator_id, day)
            conflicts.extend(self._capacity(translator_id, day, entries, capacity, triggers))
            conflicts.extend(self._overlaps(translator_id, day, entries))
            conflicts.extend(self._blocks(translator_id, day, entries))
            window = self.calendar.working_window(translator, day)
            for entry in entries:
                if not entry.is_task:
                    continue
                conflicts.extend(self._outside_hours(entry, window))
                conflicts.extend(self._lunch(entry))
                conflicts.extend(self._after_due(entry))

        conflicts.sort(key=lambda c: (c.date, c.conflict_type.value, c.id))
        if conflicts:
            self.logger.info(
                f"Detected {len(conflicts)} conflicts for {translator_id} "
                f"between {start.isoformat()} and {end.isoformat()}"
            )
        return conflicts

    def detect_for_entry(self, entry_id: str, ledger: LedgerReader) -> List[Conflict]:
        """Conflicts on the entry's day that involve the entry."""
        entry = ledger.get_entry(entry_id)
        if entry is None:
            raise NotFoundError(f"Allocation {entry_id} not found", {"entry_id": entry_id})
        conflicts = self.detect(entry.translator_id, entry.date, entry.date, ledger, trigger_entry_ids=[entry_id])
        return [
            c for c in conflicts
            if entry_id in (c.entry_id, c.related_entry_id)
            or c.conflict_type in (ConflictType.OVER_ALLOCATION, ConflictType.CAPACITY_EXCEEDED)
        ]

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def _capacity(
        self,
        translator_id: str,
        day: date,
        entries: List[AllocationEntry],
        capacity: float,
        triggers: set,
    ) -> List[Conflict]:
        booked = round_hours(sum(e.hours for e in entries))
        if booked <= capacity + EPSILON:
            return []

        triggered = [e for e in entries if e.id in triggers]
        tasks = [e for e in entries if e.is_task]
        trigger = triggered[-1] if triggered else None
        if trigger is not None and trigger.is_task:
            primary = trigger
        else:
            primary = tasks[-1] if tasks else entries[-1]

        conflict_type = ConflictType.OVER_ALLOCATION if trigger else ConflictType.CAPACITY_EXCEEDED
        excess = round_hours(booked - capacity)
        if trigger:
            explanation = (
                f"Adding {trigger.hours}h on {day.isoformat()} brings {translator_id} to "
                f"{booked}h against a capacity of {capacity}h ({excess}h over)"
            )
        else:
            explanation = (
                f"{translator_id} is booked {booked}h on {day.isoformat()} against a capacity "
                f"of {capacity}h ({excess}h over)"
            )
        related = trigger.id if trigger is not None and trigger.id != primary.id else None
        return [Conflict(
            id=f"{conflict_type.value}:{translator_id}:{day.isoformat()}",
            conflict_type=conflict_type,
            translator_id=translator_id,
            date=day,
            hours_involved=booked,
            explanation=explanation,
            entry_id=primary.id,
            task_id=primary.task_id,
            related_entry_id=related,
            context={"capacity": capacity, "booked": booked, "excess": excess},
        )]

    def _overlaps(self, translator_id: str, day: date, entries: List[AllocationEntry]) -> List[Conflict]:
        timed = [e for e in entries if e.is_task and e.time_range]
        conflicts = []
        for earlier, later in combinations(timed, 2):
            if not earlier.time_range.overlaps(later.time_range):
                continue
            shared = self._shared(earlier, later)
            conflicts.append(Conflict(
                id=f"{ConflictType.TASK_OVERLAP.value}:{later.id}:{earlier.id}",
                conflict_type=ConflictType.TASK_OVERLAP,
                translator_id=translator_id,
                date=day,
                hours_involved=self.calendar.working_hours(shared),
                explanation=(
                    f"Task entries overlap on {day.isoformat()} between "
                    f"{shared}"
                ),
                time_range=shared,
                entry_id=later.id,
                task_id=later.task_id,
                related_entry_id=earlier.id,
            ))
        return conflicts

    def _blocks(self, translator_id: str, day: date, entries: List[AllocationEntry]) -> List[Conflict]:
        tasks = [e for e in entries if e.is_task and e.time_range]
        blocks = [e for e in entries if not e.is_task and e.time_range]
        conflicts = []
        for task_entry in tasks:
            for block in blocks:
                if not task_entry.time_range.overlaps(block.time_range):
                    continue
                shared = self._shared(task_entry, block)
                reason = f" ({block.reason})" if block.reason else ""
                conflicts.append(Conflict(
                    id=f"{ConflictType.BLOCK_CONFLICT.value}:{task_entry.id}:{block.id}",
                    conflict_type=ConflictType.BLOCK_CONFLICT,
                    translator_id=translator_id,
                    date=day,
                    hours_involved=self.calendar.working_hours(shared),
                    explanation=(
                        f"Task entry {task_entry.time_range} overlaps blocked time "
                        f"{block.time_range}{reason} on {day.isoformat()}"
                    ),
                    time_range=shared,
                    entry_id=task_entry.id,
                    task_id=task_entry.task_id,
                    related_entry_id=block.id,
                ))
        return conflicts

    def _outside_hours(self, entry: AllocationEntry, window: TimeRange) -> List[Conflict]:
        span = entry.time_range
        if span is None or window.contains(span):
            return []
        outside = round_hours(span.duration - span.intersection(window))
        return [Conflict(
            id=f"{ConflictType.OUTSIDE_WORKING_HOURS.value}:{entry.id}",
            conflict_type=ConflictType.OUTSIDE_WORKING_HOURS,
            translator_id=entry.translator_id,
            date=entry.date,
            hours_involved=outside,
            explanation=f"Entry {span} extends outside working hours {window}",
            time_range=span,
            entry_id=entry.id,
            task_id=entry.task_id,
        )]

    def _lunch(self, entry: AllocationEntry) -> List[Conflict]:
        span = entry.time_range
        if span is None:
            return []
        working = self.calendar.working_hours(span)
        crowded = entry.hours > working + self.tolerance
        if not self.calendar.touches_lunch_edge(span) and not crowded:
            return []
        if crowded:
            explanation = f"Entry {span} holds {entry.hours}h but only {working}h of it is outside lunch"
        else:
            explanation = f"Entry {span} starts or ends during the lunch break {self.calendar.lunch}"
        return [Conflict(
            id=f"{ConflictType.LUNCH_BREAK.value}:{entry.id}",
            conflict_type=ConflictType.LUNCH_BREAK,
            translator_id=entry.translator_id,
            date=entry.date,
            hours_involved=round_hours(max(entry.hours - working, span.intersection(self.calendar.lunch))),
            explanation=explanation,
            time_range=span,
            entry_id=entry.id,
            task_id=entry.task_id,
        )]

    def _after_due(self, entry: AllocationEntry) -> List[Conflict]:
        task = self._task(entry.task_id)
        if task is None:
            return []
        due = task.due_at
        late = entry.date > task.due_date
        if not late and entry.date == task.due_date and entry.end is not None:
            due_hour = due.hour + due.minute / 60
            late = due_hour > 0 and entry.end > due_hour + EPSILON
        if not late:
            return []
        return [Conflict(
            id=f"{ConflictType.AFTER_DUE_DATE.value}:{entry.id}",
            conflict_type=ConflictType.AFTER_DUE_DATE,
            translator_id=entry.translator_id,
            date=entry.date,
            hours_involved=entry.hours,
            explanation=f"Entry on {entry.date.isoformat()} is after the due date {due.isoformat(sep=' ', timespec='minutes')}",
            time_range=entry.time_range,
            entry_id=entry.id,
            task_id=entry.task_id,
        )]

    def _task(self, task_id: Optional[str]) -> Optional[Task]:
        if not task_id or self.task_store is None:
            return None
        return self.task_store.get(task_id)

    @staticmethod
    def _shared(a: AllocationEntry, b: AllocationEntry) -> TimeRange:
        return TimeRange(max(a.start, b.start), min(a.end, b.end))
