import pytest
from datetime import date, datetime

from tetrix.scheduling.models import (
    AllocationEntry,
    ConflictType,
    EntryType,
    ImpactBand,
    SuggestionType,
)
from tetrix.scheduling.resolution import ImpactWeights, ResolutionSuggester, due_date_risk, score_impact

NOW = datetime(2026, 1, 12, 8, 0)
MONDAY = date(2026, 1, 12)
TUESDAY = date(2026, 1, 13)
FRIDAY = date(2026, 1, 16)


def add(ledger, translator_id, day, hours, start=None, end=None, task_id=None, block=False):
    return ledger.add_allocation(
        AllocationEntry(
            date=day,
            translator_id=translator_id,
            hours=hours,
            entry_type=EntryType.BLOCK if block else EntryType.TASK,
            start=start,
            end=end,
            task_id=task_id,
        ),
        force=True,
    )


class TestImpactScore:

    def test_low_impact(self):
        impact = score_impact(ImpactWeights(), 5, 1, False, 5, 0)
        assert impact.total == 15
        assert impact.band == ImpactBand.LOW
        assert impact.breakdown == {
            "hours_displaced": 10.0,
            "tasks_touched": 0.0,
            "translator_change": 0.0,
            "due_date_risk": 5.0,
            "fragmentation": 0.0,
        }

    def test_every_factor_saturated(self):
        impact = score_impact(ImpactWeights(), 12, 5, True, 0, 4)
        assert impact.total == 100
        assert impact.band == ImpactBand.HIGH
        assert "translator changes" in impact.justification

    def test_custom_weights_are_normalized(self):
        weights = ImpactWeights(hours=1, tasks=0, translator_change=1, due_date_risk=0, fragmentation=0)
        impact = score_impact(weights, 10, 1, False, 10, 0)
        assert impact.total == 50
        assert impact.band == ImpactBand.MODERATE

    @pytest.mark.parametrize("slack, risk", [(None, 1.0), (0, 1.0), (1, 0.5), (2, 0.5), (5, 1 / 6)])
    def test_due_date_risk(self, slack, risk):
        assert due_date_risk(slack) == pytest.approx(risk)

    @pytest.mark.parametrize("score, band", [
        (0, ImpactBand.LOW), (33, ImpactBand.LOW), (34, ImpactBand.MODERATE),
        (66, ImpactBand.MODERATE), (67, ImpactBand.HIGH), (100, ImpactBand.HIGH),
    ])
    def test_bands(self, score, band):
        assert ImpactBand.for_score(score) == band


class TestSuggestions:

    def test_block_over_a_full_day_offers_repair_then_reassignment(
        self, suggester, detector, ledger, task_store, make_task
    ):
        task = task_store.add(make_task("task-1", hours=7, due=datetime(2026, 1, 16, 17, 0)))
        add(ledger, "tr-alice", FRIDAY, 7, 9, 17, task_id=task.id)
        block = add(ledger, "tr-alice", FRIDAY, 2, 9, 11, block=True)
        conflicts = detector.detect("tr-alice", FRIDAY, FRIDAY, ledger, trigger_entry_ids=[block.id])
        assert {c.conflict_type for c in conflicts} == {
            ConflictType.OVER_ALLOCATION, ConflictType.BLOCK_CONFLICT,
        }

        suggestions = suggester.suggest(conflicts, ledger, now=NOW)

        assert [s.suggestion_type for s in suggestions] == [
            SuggestionType.LOCAL_REPAIR, SuggestionType.REASSIGNMENT,
        ]
        local, reassignment = suggestions
        assert local.impact.total == 49
        assert local.impact.band == ImpactBand.MODERATE
        assert [(s.date, s.hours, s.start, s.end) for s in local.proposed_slices] == [
            (date(2026, 1, 15), 2.0, 15.0, 17.0),
            (FRIDAY, 5.0, 11.0, 17.0),
        ]
        assert sorted(local.conflict_ids) == sorted(c.id for c in conflicts)

        assert reassignment.target_translator_id == "tr-bob"
        assert reassignment.impact.total == 59
        assert reassignment.proposed_hours == 7.0
        assert [c.translator_id for c in reassignment.candidates] == ["tr-bob", "tr-carol"]
        assert [c.score for c in reassignment.candidates] == [100.0, 70.0]

    def test_nothing_is_written(self, suggester, detector, ledger, task_store, make_task):
        task = task_store.add(make_task("task-1", hours=7, due=datetime(2026, 1, 16, 17, 0)))
        add(ledger, "tr-alice", FRIDAY, 7, 9, 17, task_id=task.id)
        add(ledger, "tr-alice", FRIDAY, 2, 9, 11, block=True)
        before = ledger.entries_for("tr-alice", MONDAY, FRIDAY)

        suggester.suggest(detector.detect("tr-alice", FRIDAY, FRIDAY, ledger), ledger, now=NOW)

        assert ledger.entries_for("tr-alice", MONDAY, FRIDAY) == before
        assert ledger.entries_for("tr-bob", MONDAY, FRIDAY) == []

    def test_reassignment_when_no_local_capacity(self, suggester, detector, ledger, task_store, make_task):
        task = task_store.add(make_task(
            "task-1", hours=5, due=datetime(2026, 1, 13, 17, 0),
            language_pair="EN>FR", domain="legal",
        ))
        add(ledger, "tr-alice", MONDAY, 7, 9, 17, task_id="other")
        add(ledger, "tr-alice", TUESDAY, 5, 9, 15, task_id=task.id)
        add(ledger, "tr-alice", TUESDAY, 7, 9, 17, block=True)
        conflicts = detector.detect("tr-alice", TUESDAY, TUESDAY, ledger)

        suggestions = suggester.suggest(conflicts, ledger, now=NOW)

        assert len(suggestions) == 1
        suggestion = suggestions[0]
        assert suggestion.suggestion_type == SuggestionType.REASSIGNMENT
        assert suggestion.target_translator_id == "tr-bob"
        assert suggestion.proposed_hours == 5.0
        # Carol lacks the language pair, Dave is inactive
        assert [c.translator_id for c in suggestion.candidates] == ["tr-bob"]

    def test_impossible_when_nobody_can_absorb_the_task(
        self, suggester, detector, ledger, task_store, make_task
    ):
        task = task_store.add(make_task(
            "task-1", hours=5, due=datetime(2026, 1, 13, 17, 0),
            language_pair="EN>FR", domain="legal",
        ))
        add(ledger, "tr-alice", MONDAY, 7, 9, 17, task_id="other")
        add(ledger, "tr-alice", TUESDAY, 5, 9, 15, task_id=task.id)
        add(ledger, "tr-alice", TUESDAY, 7, 9, 17, block=True)
        add(ledger, "tr-bob", MONDAY, 7, task_id="bob-work")
        add(ledger, "tr-bob", TUESDAY, 7, task_id="bob-work")
        conflicts = detector.detect("tr-alice", TUESDAY, TUESDAY, ledger)

        suggestions = suggester.suggest(conflicts, ledger, now=NOW)

        assert len(suggestions) == 1
        impossible = suggestions[0]
        assert impossible.suggestion_type == SuggestionType.IMPOSSIBLE
        assert impossible.impact.total == 100
        assert impossible.impact.band == ImpactBand.HIGH
        assert impossible.proposed_slices == []
        assert impossible.missing_hours == 5.0

    def test_explicit_candidate_pool(self, suggester, detector, ledger, task_store, make_task):
        task = task_store.add(make_task("task-1", hours=5, due=datetime(2026, 1, 13, 17, 0)))
        add(ledger, "tr-alice", MONDAY, 7, 9, 17, task_id="other")
        add(ledger, "tr-alice", TUESDAY, 5, 9, 15, task_id=task.id)
        add(ledger, "tr-alice", TUESDAY, 7, 9, 17, block=True)
        conflicts = detector.detect("tr-alice", TUESDAY, TUESDAY, ledger)
        carol = suggester.roster.get_translator("tr-carol")

        suggestions = suggester.suggest(conflicts, ledger, candidates=[carol], now=NOW)

        assert [s.target_translator_id for s in suggestions] == ["tr-carol"]

    def test_candidate_list_is_truncated(self, engine, detector, roster, ledger, task_store, make_task):
        suggester = ResolutionSuggester(engine, detector, roster, task_store, max_candidates=1, workers=1)
        task = task_store.add(make_task("task-1", hours=5, due=datetime(2026, 1, 13, 17, 0)))
        add(ledger, "tr-alice", MONDAY, 7, 9, 17, task_id="other")
        add(ledger, "tr-alice", TUESDAY, 5, 9, 15, task_id=task.id)
        add(ledger, "tr-alice", TUESDAY, 7, 9, 17, block=True)

        suggestions = suggester.suggest(detector.detect("tr-alice", TUESDAY, TUESDAY, ledger), ledger, now=NOW)

        assert len(suggestions[0].candidates) == 1

    def test_conflicts_without_a_task_are_skipped(self, suggester, detector, ledger):
        add(ledger, "tr-alice", MONDAY, 5, 9, 15, block=True)
        add(ledger, "tr-alice", MONDAY, 4, 15, 17, block=True)
        conflicts = detector.detect("tr-alice", MONDAY, MONDAY, ledger)

        assert [c.conflict_type for c in conflicts] == [ConflictType.CAPACITY_EXCEEDED]
        assert suggester.suggest(conflicts, ledger, now=NOW) == []
