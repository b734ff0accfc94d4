"""
Distribution Engine

Spreads a task's hours across business days according to a policy:

- JUST_IN_TIME: fill backward from the due date, latest slots first
- FIFO: fill forward from the window start (or now), earliest slots first
- BALANCED: even split over the window, saturated days shifting their
  deficit onto the others
- MANUAL: validate a caller-supplied allocation

The engine only reads the ledger; writing the result is the caller's job.
Capacity or horizon exhaustion is returned as an INFEASIBLE result, not
raised.

Usage:
    engine = DistributionEngine(calendar)
    result = engine.distribute(task, translator, ledger, now=datetime.now())
    for piece in result.slices:
        ...
"""

import logging
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .calendar import BusinessCalendar
from .errors import InvalidInputError
from .ledger import EPSILON, LedgerReader
from .models import (
    DistributionMode,
    DistributionOutcome,
    DistributionResult,
    DistributionSlice,
    Task,
    TimeRange,
    Translator,
    round_hours,
)

logger = logging.getLogger(__name__)


def hour_of(moment: datetime) -> float:
    return moment.hour + moment.minute / 60 + moment.second / 3600


class DistributionEngine:
    """
    Pure distribution policies over a ledger snapshot.

    Per-day budget is the smaller of the ledger's remaining capacity and
    the free working time left in the translator's window once timed
    entries are carved out. On the due date the window closes at the due
    time.
    """

    def __init__(
        self,
        calendar: BusinessCalendar,
        max_lookback_days: int = 90,
        tolerance: float = 0.01,
        morning_delivery_max_hours: float = 2.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.calendar = calendar
        self.max_lookback_days = max_lookback_days
        self.tolerance = tolerance
        self.morning_delivery_max_hours = morning_delivery_max_hours
        self.clock = clock or datetime.now

    @classmethod
    def from_settings(
        cls,
        calendar: BusinessCalendar,
        settings,
        clock: Optional[Callable[[], datetime]] = None
    ) -> "DistributionEngine":
        return cls(
            calendar,
            max_lookback_days=settings.MAX_LOOKBACK_DAYS,
            tolerance=settings.HOURS_TOLERANCE,
            morning_delivery_max_hours=settings.MORNING_DELIVERY_MAX_HOURS,
            clock=clock,
        )

    def distribute(
        self,
        task: Task,
        translator: Optional[Translator],
        ledger: LedgerReader,
        mode: Optional[DistributionMode] = None,
        manual: Optional[Sequence[DistributionSlice]] = None,
        now: Optional[datetime] = None,
        not_before: Optional[date] = None,
    ) -> DistributionResult:
        """
        Compute a distribution for ``task`` without writing it.

        Args:
            task: Task to distribute (hours, due date, window)
            translator: Assigned translator profile
            ledger: Current (or hypothetical) ledger state
            mode: Policy override, defaults to the task's mode
            manual: Caller allocation, required for MANUAL
            now: Current local time, defaults to the engine clock
            not_before: Earliest date any slice may land on

        Returns:
            DistributionResult with slices, outcome and warnings

        Raises:
            InvalidInputError: malformed task or manual allocation
        """
        mode = DistributionMode(mode or task.mode)
        now = now or self.clock()
        self._validate(task, translator)

        if mode == DistributionMode.JUST_IN_TIME:
            result = self._just_in_time(task, translator, ledger, now, not_before)
        elif mode == DistributionMode.FIFO:
            result = self._fifo(task, translator, ledger, now, not_before)
        elif mode == DistributionMode.BALANCED:
            result = self._balanced(task, translator, ledger, now, not_before)
        else:
            if not manual:
                raise InvalidInputError(
                    "Manual distribution requires at least one allocation line",
                    {"task_id": task.id},
                )
            result = self._manual(task, translator, ledger, manual, now)

        logger.info(
            f"Distributed task {task.id} ({mode.value}): "
            f"{result.allocated_hours}/{task.total_hours}h over {len(result.slices)} slices, "
            f"outcome={result.outcome.value}"
        )
        return result

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    def _just_in_time(
        self,
        task: Task,
        translator: Translator,
        ledger: LedgerReader,
        now: datetime,
        not_before: Optional[date],
    ) -> DistributionResult:
        floor = task.due_date - timedelta(days=self.max_lookback_days)
        if not_before and not_before > floor:
            floor = not_before

        remaining = round_hours(task.total_hours)
        slices: List[DistributionSlice] = []
        last_seen = None
        day = task.due_date
        while remaining > EPSILON and day >= floor:
            if self.calendar.is_business_day(day):
                last_seen = day
                budget, segments = self._day_budget(task, translator, ledger, day)
                if budget > EPSILON:
                    pieces = self._place(day, min(budget, remaining), segments, backward=True)
                    slices.extend(pieces)
                    remaining = round_hours(remaining - sum(p.hours for p in pieces))
            day -= timedelta(days=1)

        return self._finish(
            DistributionMode.JUST_IN_TIME, task, slices, remaining, now.date(),
            exhausted_on=last_seen,
        )

    def _fifo(
        self,
        task: Task,
        translator: Translator,
        ledger: LedgerReader,
        now: datetime,
        not_before: Optional[date],
    ) -> DistributionResult:
        today = now.date()
        start_hour: Optional[float] = None
        if task.window_start:
            day = task.window_start
        else:
            day = today
            start_hour = hour_of(now)
            window = self.calendar.working_window(translator, today)
            if not self.calendar.is_business_day(today) or start_hour >= window.end:
                day = self.calendar.next_business_day(today)
                start_hour = None
        if not_before and day < not_before:
            day = not_before
            start_hour = None

        bound = task.window_end or task.due_date
        limit = max(bound, day) + timedelta(days=self.max_lookback_days)
        first_day = day
        remaining = round_hours(task.total_hours)
        slices: List[DistributionSlice] = []
        last_seen = None
        while remaining > EPSILON and day <= limit:
            if self.calendar.is_business_day(day):
                last_seen = day
                budget, segments = self._day_budget(
                    task, translator, ledger, day,
                    start_hour=start_hour if day == first_day else None,
                )
                if budget > EPSILON:
                    pieces = self._place(day, min(budget, remaining), segments, backward=False)
                    slices.extend(pieces)
                    remaining = round_hours(remaining - sum(p.hours for p in pieces))
            day += timedelta(days=1)

        return self._finish(
            DistributionMode.FIFO, task, slices, remaining, today,
            exhausted_on=last_seen, overflow_after=bound,
        )

    def _balanced(
        self,
        task: Task,
        translator: Translator,
        ledger: LedgerReader,
        now: datetime,
        not_before: Optional[date],
    ) -> DistributionResult:
        today = now.date()
        start = task.window_start or today
        end = task.window_end or task.due_date
        if not_before and start < not_before:
            start = not_before
        clip_today = task.window_start is None

        days = self.calendar.business_days(start, end)
        budgets: Dict[date, Tuple[float, List[TimeRange]]] = {}
        for day in days:
            budgets[day] = self._day_budget(
                task, translator, ledger, day,
                start_hour=hour_of(now) if clip_today and day == today else None,
            )

        shares = self._water_fill(
            round_hours(task.total_hours),
            [(day, budgets[day][0]) for day in days],
        )

        slices: List[DistributionSlice] = []
        for day in days:
            hours = shares.get(day, 0.0)
            if hours > EPSILON:
                slices.extend(self._place(day, hours, budgets[day][1], backward=False))

        remaining = round_hours(task.total_hours - sum(s.hours for s in slices))
        return self._finish(
            DistributionMode.BALANCED, task, slices, remaining, today,
            exhausted_on=end if days else start,
        )

    def _manual(
        self,
        task: Task,
        translator: Translator,
        ledger: LedgerReader,
        manual: Sequence[DistributionSlice],
        now: datetime,
    ) -> DistributionResult:
        total = round_hours(sum(line.hours for line in manual))
        if abs(total - task.total_hours) > self.tolerance:
            raise InvalidInputError(
                f"Manual allocation sums to {total}h but the task requires {task.total_hours}h",
                {"task_id": task.id, "allocated": total, "required": task.total_hours},
            )

        placed: Dict[date, List[TimeRange]] = defaultdict(list)
        slices: List[DistributionSlice] = []
        for line in sorted(manual, key=lambda s: (s.date, s.start is None, s.start or 0.0)):
            if line.hours < 0:
                raise InvalidInputError(
                    f"Negative hours on {line.date.isoformat()}",
                    {"date": line.date.isoformat(), "hours": line.hours},
                )
            if line.hours <= EPSILON:
                continue
            if not self.calendar.is_business_day(line.date):
                raise InvalidInputError(
                    f"{line.date.isoformat()} is not a business day",
                    {"date": line.date.isoformat()},
                )
            if (line.start is None) != (line.end is None):
                raise InvalidInputError(
                    "A time range needs both a start and an end",
                    {"date": line.date.isoformat()},
                )

            span = line.time_range
            if span is not None:
                self._check_manual_range(translator, line, span)
                slices.append(DistributionSlice(line.date, round_hours(line.hours), span.start, span.end))
                placed[line.date].append(span)
                continue

            segments = self._open_segments(task, translator, ledger, line.date, extra_busy=placed[line.date])
            free = sum(self.calendar.working_hours(s) for s in segments)
            if free + EPSILON >= line.hours:
                pieces = self._place(line.date, round_hours(line.hours), segments, backward=False)
                placed[line.date].extend(p.time_range for p in pieces)
                slices.extend(pieces)
            else:
                slices.append(DistributionSlice(line.date, round_hours(line.hours)))

        return self._finish(
            DistributionMode.MANUAL, task, slices, 0.0, now.date(),
            overflow_after=task.due_date,
        )

    def _check_manual_range(self, translator: Translator, line: DistributionSlice, span: TimeRange) -> None:
        window = self.calendar.working_window(translator, line.date)
        details = {"date": line.date.isoformat(), "range": str(span), "window": str(window)}
        if span.end <= span.start:
            raise InvalidInputError(f"Empty time range {span}", details)
        if not window.contains(span):
            raise InvalidInputError(f"Time range {span} is outside working hours {window}", details)
        if self.calendar.touches_lunch_edge(span):
            raise InvalidInputError(f"Time range {span} starts or ends during lunch", details)
        if self.calendar.working_hours(span) + self.tolerance < line.hours:
            raise InvalidInputError(
                f"Time range {span} holds {self.calendar.working_hours(span)}h, {line.hours}h requested",
                details,
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate(self, task: Task, translator: Optional[Translator]) -> None:
        if translator is None:
            raise InvalidInputError("A translator is required", {"task_id": task.id})
        if task.total_hours <= 0:
            raise InvalidInputError(
                "Total hours must be positive",
                {"task_id": task.id, "total_hours": task.total_hours},
            )
        if task.window_start and task.window_end and task.window_start > task.window_end:
            raise InvalidInputError(
                "Distribution window starts after it ends",
                {
                    "window_start": task.window_start.isoformat(),
                    "window_end": task.window_end.isoformat(),
                },
            )

    @staticmethod
    def _due_hour(task: Task) -> Optional[float]:
        # A midnight due time means "during that day"
        if task.due_at.hour == 0 and task.due_at.minute == 0:
            return None
        return hour_of(task.due_at)

    def _open_segments(
        self,
        task: Task,
        translator: Translator,
        ledger: LedgerReader,
        day: date,
        start_hour: Optional[float] = None,
        extra_busy: Sequence[TimeRange] = (),
    ) -> List[TimeRange]:
        """Free parts of the day's window once timed entries are removed."""
        window = self.calendar.working_window(translator, day)
        start, end = window.start, window.end
        due_hour = self._due_hour(task)
        if day == task.due_date and due_hour is not None:
            end = min(end, due_hour)
        if start_hour is not None:
            start = max(start, start_hour)
        if end <= start:
            return []

        busy = [e.time_range for e in ledger.entries_for(translator.id, day) if e.time_range]
        busy.extend(extra_busy)
        segments = []
        cursor = start
        for span in sorted(busy, key=lambda r: r.start):
            if span.end <= cursor:
                continue
            if span.start >= end:
                break
            if span.start > cursor:
                segments.append(TimeRange(cursor, span.start))
            cursor = max(cursor, span.end)
        if cursor < end:
            segments.append(TimeRange(cursor, end))
        return segments

    def _day_budget(
        self,
        task: Task,
        translator: Translator,
        ledger: LedgerReader,
        day: date,
        start_hour: Optional[float] = None,
    ) -> Tuple[float, List[TimeRange]]:
        segments = self._open_segments(task, translator, ledger, day, start_hour=start_hour)
        free = sum(self.calendar.working_hours(s) for s in segments)
        budget = min(ledger.available_hours(translator.id, day), free)
        if task.morning_delivery and day == task.due_date:
            budget = min(budget, self.morning_delivery_max_hours)
        return round_hours(max(0.0, budget)), segments

    def _place(
        self,
        day: date,
        hours: float,
        segments: Sequence[TimeRange],
        backward: bool,
    ) -> List[DistributionSlice]:
        """Lay ``hours`` into free segments, from the end of the day if backward."""
        pieces = []
        remaining = round_hours(hours)
        for segment in (reversed(segments) if backward else segments):
            if remaining <= EPSILON:
                break
            usable = self.calendar.working_hours(segment)
            if usable <= EPSILON:
                continue
            take = round_hours(min(usable, remaining))
            if backward:
                end = self.calendar.snap_end(segment.end)
                start = self.calendar.rewind(end, take)
            else:
                start = self.calendar.snap_start(segment.start)
                end = self.calendar.advance(start, take)
            pieces.append(DistributionSlice(day, take, start, end))
            remaining = round_hours(remaining - take)
        return sorted(pieces, key=lambda p: p.start)

    @staticmethod
    def _water_fill(total: float, budgets: Sequence[Tuple[date, float]]) -> Dict[date, float]:
        """
        Max-min fair split of ``total`` over day budgets, in hundredths.

        Days are served smallest budget first; each takes the lesser of its
        budget and an even share of what is left, so a saturated day's
        deficit flows to the roomier ones. Leftover hundredths go to the
        earliest days with room, and any fraction below a hundredth goes to
        the latest day that can still hold it.
        """
        total_cents = int(total * 100 + EPSILON)
        residual = round_hours(total - total_cents / 100)
        room = dict(budgets)
        caps = {day: int(budget * 100 + EPSILON) for day, budget in budgets}
        alloc = {day: 0 for day, _ in budgets}
        active = sorted((day for day, _ in budgets if caps[day] > 0), key=lambda d: (caps[d], d))

        remaining = total_cents
        for index, day in enumerate(active):
            give = min(caps[day], remaining // (len(active) - index))
            alloc[day] = give
            remaining -= give

        for day in sorted(active):
            if remaining <= 0:
                break
            extra = min(caps[day] - alloc[day], remaining)
            alloc[day] += extra
            remaining -= extra

        shares = {day: cents / 100 for day, cents in alloc.items()}
        if residual > EPSILON:
            for day in sorted(shares, reverse=True):
                if room[day] - shares[day] >= residual - EPSILON:
                    shares[day] = round_hours(shares[day] + residual)
                    break

        return {day: hours for day, hours in shares.items() if hours > EPSILON}

    def _finish(
        self,
        mode: DistributionMode,
        task: Task,
        slices: List[DistributionSlice],
        remaining: float,
        today: date,
        exhausted_on: Optional[date] = None,
        overflow_after: Optional[date] = None,
    ) -> DistributionResult:
        slices = sorted(slices, key=lambda s: (s.date, s.start if s.start is not None else -1.0))
        past = sorted({s.date for s in slices if s.date < today})
        overflow = sorted({s.date for s in slices if overflow_after and s.date > overflow_after})
        result = DistributionResult(
            mode=mode,
            requested_hours=round_hours(task.total_hours),
            slices=slices,
            past_dates=past,
            overflow_dates=overflow,
        )

        if remaining > EPSILON:
            result.outcome = DistributionOutcome.INFEASIBLE
            result.unallocated_hours = round_hours(remaining)
            result.exhausted_on = exhausted_on
            result.message = (
                f"Insufficient capacity: {result.unallocated_hours}h of task {task.id} "
                f"could not be placed"
            )
        elif past or overflow:
            result.outcome = DistributionOutcome.PAST_DATE_WARNING
            parts = []
            if past:
                parts.append(f"{len(past)} day(s) before today")
            if overflow:
                parts.append(f"{len(overflow)} day(s) after {overflow_after.isoformat()}")
            result.message = "Allocation lands on " + " and ".join(parts)
        return result
