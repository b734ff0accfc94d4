"""
Resolution Suggester

Turns detected conflicts into ranked remediation proposals, one group per
affected task.

Suggestion Types:
- LOCAL_REPAIR: move the task's conflicting hours to other days of the
  same translator, before the due date
- REASSIGNMENT: hand the whole task to another qualified translator
- IMPOSSIBLE: neither works; a human has to renegotiate

Impact Score:
```
impact = Σ(factor × weight) / Σ(weights) × 100

hours_displaced    = min(1, hours / 10)
tasks_touched      = min(1, (tasks - 1) / 4)
translator_change  = 1 if the task changes hands, else 0
due_date_risk      = 1 with no slack, 0.5 with 1-2 business days, ~0.17 beyond
fragmentation      = min(1, extra day blocks / 4)
```
Bands: <=33 LOW, <=66 MODERATE, else HIGH. IMPOSSIBLE is pinned to 100.

Usage:
    suggester = ResolutionSuggester(engine, detector, roster, task_store)
    suggestions = suggester.suggest(conflicts, ledger)
"""

import logging
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence

from .conflict_detector import ConflictDetector
from .distribution import DistributionEngine
from .ledger import LedgerReader, OverlayLedger
from .models import (
    AllocationEntry,
    Conflict,
    DistributionMode,
    DistributionOutcome,
    DistributionSlice,
    ImpactBand,
    ImpactScore,
    ReassignmentCandidate,
    Suggestion,
    SuggestionType,
    Task,
    Translator,
    round_hours,
)
from .roster import Roster, TaskStore

logger = logging.getLogger(__name__)

# Overlay rows sort after every real ledger row
_OVERLAY_SEQUENCE = 10 ** 9

_TYPE_ORDER = {
    SuggestionType.LOCAL_REPAIR: 0,
    SuggestionType.REASSIGNMENT: 1,
    SuggestionType.IMPOSSIBLE: 2,
}


@dataclass
class ImpactWeights:
    """Relative weights of the impact factors."""
    hours: float = 20.0
    tasks: float = 15.0
    translator_change: float = 15.0
    due_date_risk: float = 30.0
    fragmentation: float = 20.0

    @classmethod
    def from_settings(cls, settings) -> "ImpactWeights":
        return cls(
            hours=settings.IMPACT_WEIGHT_HOURS,
            tasks=settings.IMPACT_WEIGHT_TASKS,
            translator_change=settings.IMPACT_WEIGHT_TRANSLATOR_CHANGE,
            due_date_risk=settings.IMPACT_WEIGHT_DUE_DATE_RISK,
            fragmentation=settings.IMPACT_WEIGHT_FRAGMENTATION,
        )

    @property
    def total(self) -> float:
        return self.hours + self.tasks + self.translator_change + self.due_date_risk + self.fragmentation


def due_date_risk(slack_days: Optional[int]) -> float:
    if slack_days is None or slack_days <= 0:
        return 1.0
    if slack_days <= 2:
        return 0.5
    return 1 / 6


def score_impact(
    weights: ImpactWeights,
    hours_displaced: float,
    tasks_touched: int,
    translator_changed: bool,
    slack_days: Optional[int],
    fragmentation_increase: int,
) -> ImpactScore:
    """Weighted 0-100 disruption score with a per-factor breakdown."""
    factors = OrderedDict([
        ("hours_displaced", (weights.hours, min(1.0, hours_displaced / 10))),
        ("tasks_touched", (weights.tasks, min(1.0, max(0, tasks_touched - 1) / 4))),
        ("translator_change", (weights.translator_change, 1.0 if translator_changed else 0.0)),
        ("due_date_risk", (weights.due_date_risk, due_date_risk(slack_days))),
        ("fragmentation", (weights.fragmentation, min(1.0, max(0, fragmentation_increase) / 4))),
    ])
    total_weight = weights.total or 1.0
    breakdown = {
        name: round(weight * factor * 100 / total_weight, 1)
        for name, (weight, factor) in factors.items()
    }
    total = max(0, min(100, int(round(sum(breakdown.values())))))
    band = ImpactBand.for_score(total)

    reasons = [f"{round_hours(hours_displaced)}h moved"]
    if tasks_touched > 1:
        reasons.append(f"{tasks_touched} tasks involved")
    if translator_changed:
        reasons.append("translator changes")
    if slack_days is None or slack_days <= 0:
        reasons.append("no margin before the due date")
    elif slack_days <= 2:
        reasons.append(f"{slack_days} business day(s) of margin")
    if fragmentation_increase > 0:
        reasons.append(f"{fragmentation_increase} more working day(s)")
    justification = f"{band.value.capitalize()} impact ({total}/100): " + ", ".join(reasons)

    return ImpactScore(total=total, band=band, breakdown=breakdown, justification=justification)


class ResolutionSuggester:
    """
    Produces LOCAL_REPAIR, REASSIGNMENT and IMPOSSIBLE suggestions.

    Hypothetical moves are evaluated on overlay ledgers; nothing is written.
    """

    def __init__(
        self,
        engine: DistributionEngine,
        detector: ConflictDetector,
        roster: Roster,
        task_store: TaskStore,
        weights: Optional[ImpactWeights] = None,
        max_candidates: int = 3,
        always_offer_reassignment: bool = True,
        workers: int = 4,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.engine = engine
        self.detector = detector
        self.calendar = engine.calendar
        self.roster = roster
        self.task_store = task_store
        self.weights = weights or ImpactWeights()
        self.max_candidates = max_candidates
        self.always_offer_reassignment = always_offer_reassignment
        self.workers = max(1, workers)
        self.clock = clock or engine.clock
        self.logger = logging.getLogger(self.__class__.__name__)

    @classmethod
    def from_settings(
        cls,
        engine: DistributionEngine,
        detector: ConflictDetector,
        roster: Roster,
        task_store: TaskStore,
        settings,
    ) -> "ResolutionSuggester":
        return cls(
            engine,
            detector,
            roster,
            task_store,
            weights=ImpactWeights.from_settings(settings),
            max_candidates=settings.MAX_REASSIGNMENT_CANDIDATES,
            always_offer_reassignment=settings.ALWAYS_OFFER_REASSIGNMENT,
            workers=settings.CANDIDATE_WORKERS,
        )

    def suggest(
        self,
        conflicts: Sequence[Conflict],
        ledger: LedgerReader,
        candidates: Optional[Sequence[Translator]] = None,
        now: Optional[datetime] = None,
    ) -> List[Suggestion]:
        """
        Generate suggestions for a set of conflicts.

        Args:
            conflicts: Conflicts to resolve; those without a task are skipped
            ledger: Current ledger state
            candidates: Reassignment pool, defaults to the active roster
            now: Current local time

        Returns:
            Suggestions sorted by ascending impact score
        """
        now = now or self.clock()
        groups: Dict[str, List[Conflict]] = OrderedDict()
        for conflict in conflicts:
            if not conflict.task_id:
                continue
            groups.setdefault(conflict.task_id, []).append(conflict)

        suggestions: List[Suggestion] = []
        for task_id, group in groups.items():
            task = self.task_store.get(task_id)
            if task is None:
                self.logger.warning(f"Skipping conflicts of unknown task {task_id}")
                continue
            suggestions.extend(self._suggest_for_task(task, group, ledger, candidates, now))

        suggestions.sort(key=lambda s: (s.impact.total, _TYPE_ORDER[s.suggestion_type], s.task_id))
        self.logger.info(f"Generated {len(suggestions)} suggestions for {len(groups)} tasks")
        return suggestions

    def _suggest_for_task(
        self,
        task: Task,
        group: List[Conflict],
        ledger: LedgerReader,
        candidates: Optional[Sequence[Translator]],
        now: datetime,
    ) -> List[Suggestion]:
        conflict_ids = [c.id for c in group]
        touched = self._tasks_touched(task, group, ledger)
        results = []

        local = self._local_repair(task, group, ledger, now, touched)
        if local is not None:
            results.append(local)

        ranked: List[ReassignmentCandidate] = []
        if local is None or self.always_offer_reassignment:
            ranked = self._rank_candidates(task, ledger, candidates, now)
            reassignment = self._reassignment(task, conflict_ids, ranked, ledger, touched)
            if reassignment is not None:
                results.append(reassignment)

        if not results:
            results.append(self._impossible(task, conflict_ids, ranked, touched))
        return results

    # ------------------------------------------------------------------
    # Local repair
    # ------------------------------------------------------------------

    def _local_repair(
        self,
        task: Task,
        group: List[Conflict],
        ledger: LedgerReader,
        now: datetime,
        touched: int,
    ) -> Optional[Suggestion]:
        task_entries = self._task_entries(task, ledger)
        flagged = {c.entry_id for c in group}
        displaced = [e for e in task_entries if e.id in flagged]
        if not displaced:
            return None
        kept = [e for e in task_entries if e.id not in flagged]
        hours = round_hours(sum(e.hours for e in displaced))
        translator = self.roster.get_translator(task.translator_id)
        if translator is None or hours <= 0:
            return None

        today = now.date()
        view = OverlayLedger(ledger, hidden_ids=[e.id for e in displaced])
        mode = task.mode if task.mode != DistributionMode.MANUAL else DistributionMode.JUST_IN_TIME
        partial = replace(task, total_hours=hours, mode=mode, window_start=None, window_end=None)
        result = self.engine.distribute(partial, translator, view, now=now, not_before=today)
        if result.outcome != DistributionOutcome.OK:
            return None

        extra = self._as_entries(task, translator.id, result.slices)
        check = OverlayLedger(view, extra_entries=extra)
        dates = [s.date for s in result.slices]
        leftover = self.detector.detect(
            translator.id, min(dates), max(dates), check,
            trigger_entry_ids=[e.id for e in extra],
        )
        new_ids = {e.id for e in extra}
        if any(c.task_id == task.id or c.related_entry_id in new_ids for c in leftover):
            return None

        proposed = sorted(
            [DistributionSlice(e.date, e.hours, e.start, e.end) for e in kept] + result.slices,
            key=lambda s: (s.date, s.start if s.start is not None else -1.0),
        )
        impact = score_impact(
            self.weights,
            hours_displaced=hours,
            tasks_touched=touched,
            translator_changed=False,
            slack_days=self._slack(task, proposed),
            fragmentation_increase=self._fragmentation(task_entries, proposed),
        )
        moved_to = ", ".join(sorted({s.date.isoformat() for s in result.slices}))
        return Suggestion(
            suggestion_type=SuggestionType.LOCAL_REPAIR,
            conflict_ids=[c.id for c in group],
            task_id=task.id,
            current_translator_id=task.translator_id,
            target_translator_id=task.translator_id,
            impact=impact,
            description=f"Move {hours}h of task {task.project_number or task.id} to {moved_to}",
            proposed_slices=proposed,
            displaced_hours=hours,
        )

    # ------------------------------------------------------------------
    # Reassignment
    # ------------------------------------------------------------------

    def _rank_candidates(
        self,
        task: Task,
        ledger: LedgerReader,
        candidates: Optional[Sequence[Translator]],
        now: datetime,
    ) -> List[ReassignmentCandidate]:
        pool = list(candidates) if candidates is not None else self.roster.list_translators(active_only=True)
        eligible = [
            t for t in pool
            if t.active
            and t.id != task.translator_id
            and t.qualifies_for(task.language_pair, task.domain)
        ]
        if not eligible:
            return []

        current = self.roster.get_translator(task.translator_id)
        divisions = set(current.divisions) if current else set()

        def evaluate(translator: Translator) -> Optional[ReassignmentCandidate]:
            return self._evaluate_candidate(task, translator, ledger, now, divisions)

        if self.workers > 1 and len(eligible) > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as pool_executor:
                evaluated = list(pool_executor.map(evaluate, eligible))
        else:
            evaluated = [evaluate(t) for t in eligible]

        ranked = [c for c in evaluated if c is not None]
        ranked.sort(key=lambda c: (not c.can_complete_before_due, -c.available_hours, c.translator_id))
        return ranked

    def _evaluate_candidate(
        self,
        task: Task,
        translator: Translator,
        ledger: LedgerReader,
        now: datetime,
        divisions: set,
    ) -> Optional[ReassignmentCandidate]:
        today = now.date()
        available = round_hours(sum(
            ledger.available_hours(translator.id, day)
            for day in self.calendar.business_days(today, task.due_date)
        ))
        if available + self.engine.tolerance < task.total_hours:
            return None

        moved = replace(task, translator_id=translator.id)
        mode = task.mode if task.mode != DistributionMode.MANUAL else DistributionMode.JUST_IN_TIME
        result = self.engine.distribute(moved, translator, ledger, mode=mode, now=now, not_before=today)
        can_complete = result.outcome == DistributionOutcome.OK

        ratio = available / task.total_hours
        score = min(ratio, 2.0) / 2.0 * 70
        if translator.seeking_work:
            score += 20
        if divisions & set(translator.divisions):
            score += 10
        return ReassignmentCandidate(
            translator_id=translator.id,
            translator_name=translator.name,
            available_hours=available,
            can_complete_before_due=can_complete,
            score=round(score, 1),
            proposed_slices=result.slices if can_complete else [],
        )

    def _reassignment(
        self,
        task: Task,
        conflict_ids: List[str],
        ranked: List[ReassignmentCandidate],
        ledger: LedgerReader,
        touched: int,
    ) -> Optional[Suggestion]:
        completing = [c for c in ranked if c.can_complete_before_due]
        if not completing:
            return None
        best = completing[0]
        impact = score_impact(
            self.weights,
            hours_displaced=task.total_hours,
            tasks_touched=touched,
            translator_changed=True,
            slack_days=self._slack(task, best.proposed_slices),
            fragmentation_increase=self._fragmentation(self._task_entries(task, ledger), best.proposed_slices),
        )
        return Suggestion(
            suggestion_type=SuggestionType.REASSIGNMENT,
            conflict_ids=conflict_ids,
            task_id=task.id,
            current_translator_id=task.translator_id,
            target_translator_id=best.translator_id,
            impact=impact,
            description=(
                f"Reassign task {task.project_number or task.id} ({task.total_hours}h) "
                f"to {best.translator_name}, {best.available_hours}h available before the due date"
            ),
            proposed_slices=best.proposed_slices,
            candidates=ranked[:self.max_candidates],
            displaced_hours=round_hours(task.total_hours),
        )

    # ------------------------------------------------------------------
    # Impossible
    # ------------------------------------------------------------------

    def _impossible(
        self,
        task: Task,
        conflict_ids: List[str],
        ranked: List[ReassignmentCandidate],
        touched: int,
    ) -> Suggestion:
        best_available = max((c.available_hours for c in ranked), default=0.0)
        missing = round_hours(max(0.0, task.total_hours - best_available))
        score = score_impact(
            self.weights,
            hours_displaced=task.total_hours,
            tasks_touched=touched,
            translator_changed=False,
            slack_days=None,
            fragmentation_increase=0,
        )
        impact = ImpactScore(
            total=100,
            band=ImpactBand.HIGH,
            breakdown=score.breakdown,
            justification=(
                f"No translator can absorb {task.total_hours}h before "
                f"{task.due_at.isoformat(sep=' ', timespec='minutes')}; {missing}h short"
            ),
        )
        return Suggestion(
            suggestion_type=SuggestionType.IMPOSSIBLE,
            conflict_ids=conflict_ids,
            task_id=task.id,
            current_translator_id=task.translator_id,
            impact=impact,
            description=(
                f"Task {task.project_number or task.id} cannot be delivered on time; "
                f"renegotiate the due date or split the work"
            ),
            candidates=ranked[:self.max_candidates],
            displaced_hours=round_hours(task.total_hours),
            missing_hours=missing,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _task_entries(task: Task, ledger: LedgerReader) -> List[AllocationEntry]:
        return ledger.entries_for_task(task.id)

    @staticmethod
    def _tasks_touched(task: Task, group: List[Conflict], ledger: LedgerReader) -> int:
        tasks = {task.id}
        for conflict in group:
            if conflict.related_entry_id:
                related = ledger.get_entry(conflict.related_entry_id)
                if related is not None and related.task_id:
                    tasks.add(related.task_id)
        return len(tasks)

    @staticmethod
    def _as_entries(task: Task, translator_id: str, slices: Sequence[DistributionSlice]) -> List[AllocationEntry]:
        return [
            AllocationEntry(
                date=s.date,
                translator_id=translator_id,
                hours=s.hours,
                start=s.start,
                end=s.end,
                task_id=task.id,
                sequence=_OVERLAY_SEQUENCE + index,
            )
            for index, s in enumerate(slices)
        ]

    def _slack(self, task: Task, slices: Sequence[DistributionSlice]) -> Optional[int]:
        if not slices:
            return None
        last: date = max(s.date for s in slices)
        if last >= task.due_date:
            return 0
        return self.calendar.business_days_between(last + timedelta(days=1), task.due_date)

    @staticmethod
    def _fragmentation(before: Sequence[AllocationEntry], after: Sequence[DistributionSlice]) -> int:
        return max(0, len({s.date for s in after}) - len({e.date for e in before}))
