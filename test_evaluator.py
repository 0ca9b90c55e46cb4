"""Tests for the schedule tag evaluator."""

from datetime import datetime, timedelta, timezone

import pytest

from btagger.errors import ClockAdjustmentError, ScheduleParseError
from btagger.evaluator import (
    EvaluationContext,
    cron_next_occurrence,
    evaluate,
    evaluate_periods,
)
from btagger.periods import PeriodDefinition, build_periods
from btagger.tags import Tag

UTC = timezone.utc
LAG = 20 * 60


def utc(*args):
    return datetime(*args, tzinfo=UTC)


def keys(tag_set):
    return tag_set.keys


# ----------------------------------------------------------------------
# Calendar scenarios with the default catalog (04:30 daily, Saturday weekly)
# ----------------------------------------------------------------------

def test_nightly_boundary_matches_exactly(july_first):
    assert keys(evaluate(july_first, LAG, build_periods())) == ["standard", "nightly"]


def test_nightly_occurrence_equals_now(july_first):
    decisions = evaluate_periods(july_first, LAG, build_periods())
    nightly = decisions[0]

    assert nightly.period.name == "nightly"
    assert nightly.next_occurrence == july_first
    assert nightly.difference == timedelta(0)
    assert nightly.matched


def test_first_of_month_is_not_the_monthly_boundary(july_first):
    decisions = {d.period.name: d for d in evaluate_periods(july_first, LAG, build_periods())}

    # Monthly runs tag the last day of the month, not the first
    assert decisions["monthly"].next_occurrence == july_first
    assert decisions["monthly"].adjusted_occurrence == utc(2025, 6, 30, 4, 30)
    assert not decisions["monthly"].matched
    assert not decisions["quarterly"].matched


def test_saturday_adds_weekly():
    assert keys(evaluate(utc(2025, 7, 5, 4, 30), LAG, build_periods())) == [
        "standard", "nightly", "weekly",
    ]


def test_last_day_of_quarter_adds_monthly_and_quarterly():
    # Monday 2025-06-30
    assert keys(evaluate(utc(2025, 6, 30, 4, 30), LAG, build_periods())) == [
        "standard", "nightly", "monthly", "quarterly",
    ]


def test_last_day_of_month_outside_quarter_end():
    # Thursday 2025-07-31
    assert keys(evaluate(utc(2025, 7, 31, 4, 30), LAG, build_periods())) == [
        "standard", "nightly", "monthly",
    ]


def test_last_day_of_year_matches_every_period_end():
    # Wednesday 2025-12-31
    assert keys(evaluate(utc(2025, 12, 31, 4, 30), LAG, build_periods())) == [
        "standard", "nightly", "monthly", "quarterly", "yearly",
    ]


def test_early_trigger_within_window_matches():
    assert "nightly" in evaluate(utc(2025, 7, 1, 4, 20), LAG, build_periods())


def test_late_trigger_within_jitter_matches():
    # Looked up from 04:28, which still finds the 04:30 occurrence
    assert "nightly" in evaluate(utc(2025, 7, 1, 4, 33), LAG, build_periods())


def test_run_far_from_boundary_only_gets_standard():
    assert keys(evaluate(utc(2025, 7, 1, 12, 0), LAG, build_periods())) == ["standard"]


def test_custom_offsets_move_the_boundary():
    periods = build_periods(day_offset_hours=1, minute_offset=15, every_n_hours=2)
    assert keys(evaluate(utc(2025, 7, 1, 3, 15), LAG, periods)) == ["standard", "nightly"]
    assert keys(evaluate(utc(2025, 7, 1, 4, 30), LAG, periods)) == ["standard"]


# ----------------------------------------------------------------------
# Window arithmetic, with a controlled next-occurrence lookup
# ----------------------------------------------------------------------

def fixed_occurrence(instant):
    return lambda expression, start: instant


ONE_PERIOD = [PeriodDefinition("* * * * *", Tag("nightly"), False)]


def test_exact_occurrence_matches_for_any_positive_window(july_first):
    for lag in (1, 60, LAG, 86400):
        tags = evaluate(july_first, lag, ONE_PERIOD, next_occurrence=fixed_occurrence(july_first))
        assert "nightly" in tags


@pytest.mark.parametrize("offset, matched", [
    (LAG - 1, True),
    (LAG, False),
    (-(LAG - 1), True),
    (-LAG, False),
    (LAG + 3600, False),
])
def test_window_boundary_is_exclusive(july_first, offset, matched):
    occurrence = july_first + timedelta(seconds=offset)
    decisions = evaluate_periods(july_first, LAG, ONE_PERIOD,
                                 next_occurrence=fixed_occurrence(occurrence))
    assert decisions[0].matched is matched


def test_zero_window_matches_nothing(july_first):
    tags = evaluate(july_first, 0, ONE_PERIOD, next_occurrence=fixed_occurrence(july_first))
    assert keys(tags) == ["standard"]


def test_period_end_subtracts_one_day_before_comparing(july_first):
    period = [PeriodDefinition("* * * * *", Tag("monthly"), True)]
    tomorrow = july_first + timedelta(days=1)

    decision = evaluate_periods(july_first, LAG, period, next_occurrence=fixed_occurrence(tomorrow))[0]

    assert decision.next_occurrence == tomorrow
    assert decision.adjusted_occurrence == july_first
    assert decision.matched


def test_comparison_instant_is_shared_and_jittered(july_first):
    starts = []

    def lookup(expression, start):
        starts.append(start)
        return july_first

    evaluate(july_first, LAG, build_periods(), next_occurrence=lookup)

    assert starts == [july_first - timedelta(seconds=LAG // 4)] * 5


def test_jitter_uses_integer_division():
    context = EvaluationContext.create(utc(2025, 7, 1, 4, 30), 7)
    assert context.comparison_instant == utc(2025, 7, 1, 4, 29, 59)


def test_difference_is_measured_from_now_not_comparison_instant(july_first):
    jittered = july_first - timedelta(seconds=LAG // 4)
    decision = evaluate_periods(july_first, LAG, ONE_PERIOD,
                                next_occurrence=fixed_occurrence(jittered))[0]
    assert decision.difference == timedelta(seconds=-(LAG // 4))


# ----------------------------------------------------------------------
# Ordering, invalid expressions and clock errors
# ----------------------------------------------------------------------

def test_matches_keep_catalog_order(july_first):
    tags = evaluate(july_first, LAG, build_periods(), next_occurrence=fixed_occurrence(july_first))
    # Period-end periods land one day early and drop out
    assert keys(tags) == ["standard", "nightly", "weekly"]


def test_invalid_expression_is_skipped_silently(july_first):
    periods = [
        PeriodDefinition("30 4 * * *", Tag("nightly"), False),
        PeriodDefinition("not a cron", Tag("weekly"), False),
        PeriodDefinition("30 4 * * *", Tag("yearly"), False),
    ]
    assert keys(evaluate(july_first, LAG, periods)) == ["standard", "nightly", "yearly"]


def test_out_of_range_offsets_degrade_to_standard(july_first):
    periods = build_periods(day_offset_hours=22, minute_offset=30, every_n_hours=4)
    assert evaluate_periods(july_first, LAG, periods) == []
    assert keys(evaluate(july_first, LAG, periods)) == ["standard"]


def test_jitter_overflow_is_fatal():
    earliest = datetime.min.replace(tzinfo=UTC)
    with pytest.raises(ClockAdjustmentError):
        evaluate(earliest, LAG, build_periods())


def test_period_end_underflow_is_fatal_not_skipped(july_first):
    period = [PeriodDefinition("* * * * *", Tag("monthly"), True)]
    earliest = datetime.min.replace(tzinfo=UTC)
    with pytest.raises(ClockAdjustmentError):
        evaluate(july_first, LAG, period, next_occurrence=fixed_occurrence(earliest))


def test_observation_per_evaluated_period(july_first, sink):
    periods = build_periods() + [PeriodDefinition("bogus", Tag("broken"), False)]
    evaluate(july_first, LAG, periods, sink=sink)

    observed = sink.named("period_evaluated")
    assert [o["tag"] for o in observed] == ["nightly", "weekly", "monthly", "quarterly", "yearly"]
    assert observed[0] == {"tag": "nightly", "when": july_first, "match": True}
    assert [o["match"] for o in observed[1:]] == [False] * 4


# ----------------------------------------------------------------------
# croniter lookup
# ----------------------------------------------------------------------

def test_cron_lookup_includes_start_instant(july_first):
    assert cron_next_occurrence("30 4 * * *", july_first) == july_first


def test_cron_lookup_finds_following_occurrence(july_first):
    assert cron_next_occurrence("30 4 * * *", july_first + timedelta(minutes=1)) == utc(2025, 7, 2, 4, 30)


def test_cron_lookup_keeps_timezone(july_first):
    assert cron_next_occurrence("0 0 1 1 *", july_first).tzinfo is not None


@pytest.mark.parametrize("expression", ["", "61 4 * * *", "30 25 * * *", "a b c d e"])
def test_cron_lookup_rejects_invalid_expressions(july_first, expression):
    with pytest.raises(ScheduleParseError):
        cron_next_occurrence(expression, july_first)
