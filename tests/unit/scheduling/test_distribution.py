import pytest
from datetime import date, datetime

from tetrix.scheduling.distribution import DistributionEngine
from tetrix.scheduling.errors import InvalidInputError
from tetrix.scheduling.models import (
    AllocationEntry,
    DistributionMode,
    DistributionOutcome,
    DistributionSlice,
    EntryType,
)

NOW = datetime(2026, 1, 12, 8, 0)


def shape(result):
    """(date, hours, start, end) tuples for compact assertions."""
    return [(s.date, s.hours, s.start, s.end) for s in result.slices]


@pytest.fixture
def alice(roster):
    return roster.get_translator("tr-alice")


class TestJustInTime:

    def test_fills_backward_from_the_due_date(self, engine, ledger, alice, make_task):
        result = engine.distribute(make_task(hours=10), alice, ledger, now=NOW)

        assert result.outcome == DistributionOutcome.OK
        assert shape(result) == [
            (date(2026, 1, 14), 3.0, 14.0, 17.0),
            (date(2026, 1, 15), 7.0, 9.0, 17.0),
        ]
        assert result.allocated_hours == 10.0

    def test_is_deterministic(self, engine, ledger, alice, make_task):
        task = make_task(hours=12.5)
        assert shape(engine.distribute(task, alice, ledger, now=NOW)) == shape(
            engine.distribute(task, alice, ledger, now=NOW)
        )

    def test_works_around_blocked_time(self, engine, ledger, alice, make_task):
        ledger.add_allocation(AllocationEntry(
            date=date(2026, 1, 15), translator_id="tr-alice", hours=2,
            entry_type=EntryType.BLOCK, start=9, end=11, reason="Training",
        ))

        result = engine.distribute(make_task(hours=10), alice, ledger, now=NOW)

        assert shape(result) == [
            (date(2026, 1, 14), 5.0, 11.0, 17.0),
            (date(2026, 1, 15), 5.0, 11.0, 17.0),
        ]

    def test_clips_the_due_day_at_the_due_time(self, engine, ledger, alice, make_task):
        task = make_task(hours=3, due=datetime(2026, 1, 15, 14, 0))
        result = engine.distribute(task, alice, ledger, now=NOW)
        assert shape(result) == [(date(2026, 1, 15), 3.0, 10.0, 14.0)]

    def test_midnight_due_time_means_the_whole_day(self, engine, ledger, alice, make_task):
        task = make_task(hours=7, due=datetime(2026, 1, 15, 0, 0))
        result = engine.distribute(task, alice, ledger, now=NOW)
        assert shape(result) == [(date(2026, 1, 15), 7.0, 9.0, 17.0)]

    def test_morning_delivery_caps_the_due_day(self, engine, ledger, alice, make_task):
        task = make_task(hours=5, due=datetime(2026, 1, 15, 17, 0), morning_delivery=True)
        result = engine.distribute(task, alice, ledger, now=NOW)
        assert shape(result) == [
            (date(2026, 1, 14), 3.0, 14.0, 17.0),
            (date(2026, 1, 15), 2.0, 15.0, 17.0),
        ]

    def test_skips_weekends(self, engine, ledger, alice, make_task):
        task = make_task(hours=14, due=datetime(2026, 1, 12, 17, 0))
        result = engine.distribute(task, alice, ledger, now=datetime(2026, 1, 9, 8, 0))
        assert [s.date for s in result.slices] == [date(2026, 1, 9), date(2026, 1, 12)]

    def test_past_days_raise_a_warning(self, engine, ledger, alice, make_task):
        result = engine.distribute(make_task(hours=14), alice, ledger, now=datetime(2026, 1, 15, 8, 0))

        assert result.outcome == DistributionOutcome.PAST_DATE_WARNING
        assert result.warning == "PAST_DATE_WARNING"
        assert result.past_dates == [date(2026, 1, 14)]
        assert result.allocated_hours == 14.0

    def test_infeasible_when_not_before_cuts_the_horizon(self, engine, ledger, alice, make_task):
        task = make_task(hours=30, due=datetime(2026, 1, 14, 17, 0))
        result = engine.distribute(task, alice, ledger, now=NOW, not_before=date(2026, 1, 12))

        assert result.outcome == DistributionOutcome.INFEASIBLE
        assert not result.feasible
        assert result.allocated_hours == 21.0
        assert result.unallocated_hours == 9.0
        assert result.exhausted_on == date(2026, 1, 12)

    def test_infeasible_past_the_lookback_limit(self, calendar, ledger, alice, make_task):
        engine = DistributionEngine(calendar, max_lookback_days=2)
        task = make_task(hours=30, due=datetime(2026, 1, 14, 17, 0))
        result = engine.distribute(task, alice, ledger, now=NOW)
        assert result.unallocated_hours == 9.0


class TestFifo:

    def test_fills_forward_from_today(self, engine, ledger, alice, make_task):
        task = make_task(hours=10, mode=DistributionMode.FIFO)
        result = engine.distribute(task, alice, ledger, now=NOW)
        assert shape(result) == [
            (date(2026, 1, 12), 7.0, 9.0, 17.0),
            (date(2026, 1, 13), 3.0, 9.0, 12.0),
        ]

    def test_starts_at_the_current_time(self, engine, ledger, alice, make_task):
        task = make_task(hours=10, mode=DistributionMode.FIFO)
        result = engine.distribute(task, alice, ledger, now=datetime(2026, 1, 12, 14, 0))
        assert shape(result) == [
            (date(2026, 1, 12), 3.0, 14.0, 17.0),
            (date(2026, 1, 13), 7.0, 9.0, 17.0),
        ]

    def test_after_hours_starts_next_business_day(self, engine, ledger, alice, make_task):
        task = make_task(hours=2, mode=DistributionMode.FIFO)
        result = engine.distribute(task, alice, ledger, now=datetime(2026, 1, 9, 18, 0))
        assert shape(result) == [(date(2026, 1, 12), 2.0, 9.0, 11.0)]

    def test_window_start_overrides_today(self, engine, ledger, alice, make_task):
        task = make_task(hours=2, mode=DistributionMode.FIFO, window_start=date(2026, 1, 14))
        result = engine.distribute(task, alice, ledger, now=NOW)
        assert shape(result) == [(date(2026, 1, 14), 2.0, 9.0, 11.0)]

    def test_overflow_past_the_due_date_warns(self, engine, ledger, alice, make_task):
        task = make_task(hours=21, due=datetime(2026, 1, 13, 17, 0), mode=DistributionMode.FIFO)
        result = engine.distribute(task, alice, ledger, now=NOW)

        assert result.outcome == DistributionOutcome.PAST_DATE_WARNING
        assert result.overflow_dates == [date(2026, 1, 14)]
        assert result.allocated_hours == 21.0


class TestBalanced:

    def test_even_split(self, engine, ledger, alice, make_task):
        task = make_task(
            hours=10,
            mode=DistributionMode.BALANCED,
            window_start=date(2026, 1, 12),
            window_end=date(2026, 1, 16),
        )
        result = engine.distribute(task, alice, ledger, now=NOW)

        assert result.outcome == DistributionOutcome.OK
        assert [s.hours for s in result.slices] == [2.0] * 5
        assert all(s.start == 9.0 and s.end == 11.0 for s in result.slices)

    def test_saturated_day_shifts_its_deficit(self, engine, ledger, alice, make_task):
        ledger.add_allocation(AllocationEntry(
            date=date(2026, 1, 12), translator_id="tr-alice", hours=6, task_id="other",
        ))
        task = make_task(
            hours=10,
            mode=DistributionMode.BALANCED,
            window_start=date(2026, 1, 12),
            window_end=date(2026, 1, 16),
        )
        result = engine.distribute(task, alice, ledger, now=NOW)

        assert [(s.date, s.hours) for s in result.slices] == [
            (date(2026, 1, 12), 1.0),
            (date(2026, 1, 13), 2.25),
            (date(2026, 1, 14), 2.25),
            (date(2026, 1, 15), 2.25),
            (date(2026, 1, 16), 2.25),
        ]

    def test_uneven_hundredths_still_sum_to_total(self, engine, ledger, alice, make_task):
        task = make_task(
            hours=10,
            mode=DistributionMode.BALANCED,
            window_start=date(2026, 1, 12),
            window_end=date(2026, 1, 14),
        )
        result = engine.distribute(task, alice, ledger, now=NOW)
        assert sorted(s.hours for s in result.slices) == [3.33, 3.33, 3.34]
        assert result.allocated_hours == 10.0

    def test_shortfall_is_reported(self, engine, ledger, alice, make_task):
        task = make_task(
            hours=40,
            mode=DistributionMode.BALANCED,
            window_start=date(2026, 1, 12),
            window_end=date(2026, 1, 16),
        )
        result = engine.distribute(task, alice, ledger, now=NOW)

        assert result.outcome == DistributionOutcome.INFEASIBLE
        assert result.allocated_hours == 35.0
        assert result.unallocated_hours == 5.0

    def test_water_fill_serves_small_budgets_first(self):
        shares = DistributionEngine._water_fill(6.0, [
            (date(2026, 1, 12), 0.5),
            (date(2026, 1, 13), 7.0),
            (date(2026, 1, 14), 7.0),
        ])
        assert shares == {
            date(2026, 1, 12): 0.5,
            date(2026, 1, 13): 2.75,
            date(2026, 1, 14): 2.75,
        }


@pytest.mark.parametrize("mode", [
    DistributionMode.JUST_IN_TIME,
    DistributionMode.FIFO,
    DistributionMode.BALANCED,
])
@pytest.mark.parametrize("hours", [7.333, 10.005, 0.005])
def test_totals_below_a_hundredth_are_conserved(engine, ledger, alice, make_task, mode, hours):
    task = make_task(
        hours=hours,
        mode=mode,
        window_start=date(2026, 1, 12) if mode == DistributionMode.BALANCED else None,
        window_end=date(2026, 1, 16) if mode == DistributionMode.BALANCED else None,
    )
    result = engine.distribute(task, alice, ledger, now=NOW)

    assert result.outcome == DistributionOutcome.OK
    assert result.slices
    assert abs(sum(s.hours for s in result.slices) - hours) <= 0.01
    assert result.unallocated_hours == 0


def test_balanced_residual_lands_on_the_last_day(engine, ledger, alice, make_task):
    task = make_task(
        hours=7.333,
        mode=DistributionMode.BALANCED,
        window_start=date(2026, 1, 12),
        window_end=date(2026, 1, 16),
    )
    result = engine.distribute(task, alice, ledger, now=NOW)

    assert [s.hours for s in result.slices] == [1.46, 1.46, 1.47, 1.47, 1.473]
    assert result.allocated_hours == 7.333


class TestManual:

    def test_lines_without_times_are_placed(self, engine, ledger, alice, make_task):
        task = make_task(hours=6, mode=DistributionMode.MANUAL)
        manual = [
            DistributionSlice(date(2026, 1, 12), 4),
            DistributionSlice(date(2026, 1, 13), 2, 13.0, 15.0),
        ]
        result = engine.distribute(task, alice, ledger, manual=manual, now=NOW)

        assert result.outcome == DistributionOutcome.OK
        assert shape(result) == [
            (date(2026, 1, 12), 4.0, 9.0, 14.0),
            (date(2026, 1, 13), 2.0, 13.0, 15.0),
        ]

    def test_total_must_match(self, engine, ledger, alice, make_task):
        task = make_task(hours=6, mode=DistributionMode.MANUAL)
        with pytest.raises(InvalidInputError):
            engine.distribute(task, alice, ledger, manual=[DistributionSlice(date(2026, 1, 12), 4)], now=NOW)

    def test_tolerance_on_total(self, engine, ledger, alice, make_task):
        task = make_task(hours=6, mode=DistributionMode.MANUAL)
        manual = [DistributionSlice(date(2026, 1, 12), 3.005), DistributionSlice(date(2026, 1, 13), 3)]
        result = engine.distribute(task, alice, ledger, manual=manual, now=NOW)
        assert len(result.slices) == 2

    @pytest.mark.parametrize("line", [
        DistributionSlice(date(2026, 1, 10), 2),              # Saturday
        DistributionSlice(date(2026, 1, 12), 2, 16.0, 18.0),  # outside hours
        DistributionSlice(date(2026, 1, 12), 2, 12.5, 14.5),  # starts in lunch
        DistributionSlice(date(2026, 1, 12), 2, 10.0, 11.0),  # range too short
        DistributionSlice(date(2026, 1, 12), 2, 10.0),        # missing end
        DistributionSlice(date(2026, 1, 12), -2),
    ])
    def test_invalid_lines(self, engine, ledger, alice, make_task, line):
        task = make_task(hours=line.hours, mode=DistributionMode.MANUAL)
        with pytest.raises(InvalidInputError):
            engine.distribute(task, alice, ledger, manual=[line], now=NOW)

    def test_manual_requires_lines(self, engine, ledger, alice, make_task):
        task = make_task(hours=2, mode=DistributionMode.MANUAL)
        with pytest.raises(InvalidInputError):
            engine.distribute(task, alice, ledger, now=NOW)

    def test_line_after_due_date_warns(self, engine, ledger, alice, make_task):
        task = make_task(hours=2, due=datetime(2026, 1, 13, 17, 0), mode=DistributionMode.MANUAL)
        result = engine.distribute(task, alice, ledger, manual=[DistributionSlice(date(2026, 1, 14), 2)], now=NOW)
        assert result.outcome == DistributionOutcome.PAST_DATE_WARNING
        assert result.overflow_dates == [date(2026, 1, 14)]


class TestValidation:

    def test_non_positive_hours(self, engine, ledger, alice, make_task):
        with pytest.raises(InvalidInputError):
            engine.distribute(make_task(hours=0), alice, ledger, now=NOW)

    def test_missing_translator(self, engine, ledger, make_task):
        with pytest.raises(InvalidInputError):
            engine.distribute(make_task(), None, ledger, now=NOW)

    def test_inverted_window(self, engine, ledger, alice, make_task):
        task = make_task(
            mode=DistributionMode.BALANCED,
            window_start=date(2026, 1, 16),
            window_end=date(2026, 1, 12),
        )
        with pytest.raises(InvalidInputError):
            engine.distribute(task, alice, ledger, now=NOW)
