"""Decide which retention tags apply to the current run.

Each period in the catalog is a cron expression. The next occurrence of that
expression is looked up from a point slightly before ``now`` (a quarter of
the lag window earlier) so that a job fired a few minutes late still finds
the boundary it was meant for. The occurrence is then compared with ``now``
itself: the period matches when the two lie within the lag window.

Periods that mark the end of a calendar period (month, quarter, year) are
scheduled on the first day of the following period, so one day is
subtracted before comparing.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from croniter import croniter, CroniterBadCronError, CroniterBadDateError

from btagger.errors import ClockAdjustmentError, ScheduleParseError
from btagger.observability import NullSink, ObservabilitySink
from btagger.periods import PeriodDefinition
from btagger.tags import TagSet

logger = logging.getLogger(__name__)

NextOccurrence = Callable[[str, datetime], datetime]


def cron_next_occurrence(expression: str, start: datetime) -> datetime:
    """Return the first occurrence of ``expression`` at or after ``start``.

    croniter only yields occurrences strictly after its start time, so the
    search begins one second before ``start`` (truncated to whole seconds).

    Raises:
        ScheduleParseError: If croniter rejects the expression
        ClockAdjustmentError: If the search start leaves the datetime range
    """
    try:
        search_from = start.replace(microsecond=0) - timedelta(seconds=1)
    except OverflowError as e:
        raise ClockAdjustmentError(f"Cannot search for occurrences before {start}: {e}") from e

    try:
        return croniter(expression, search_from).get_next(datetime)
    except (CroniterBadCronError, CroniterBadDateError, ValueError, KeyError) as e:
        raise ScheduleParseError(expression, str(e)) from e


@dataclass(frozen=True)
class EvaluationContext:
    """The instants every period of one run is judged against."""
    now: datetime
    lag_window_seconds: int
    comparison_instant: datetime

    @classmethod
    def create(cls, now: datetime, lag_window_seconds: int) -> 'EvaluationContext':
        try:
            comparison_instant = now - timedelta(seconds=lag_window_seconds // 4)
        except OverflowError as e:
            raise ClockAdjustmentError(
                f"Cannot offset {now} by a quarter of a {lag_window_seconds}s lag window: {e}"
            ) from e
        return cls(now, lag_window_seconds, comparison_instant)


@dataclass(frozen=True)
class MatchDecision:
    """Outcome of evaluating one period."""
    period: PeriodDefinition
    next_occurrence: datetime
    adjusted_occurrence: datetime
    difference: timedelta
    matched: bool


def decide(period: PeriodDefinition, context: EvaluationContext,
           next_occurrence: NextOccurrence = cron_next_occurrence) -> MatchDecision:
    """Evaluate one period against a shared context.

    Raises:
        ScheduleParseError: If the period's expression cannot be evaluated
        ClockAdjustmentError: If the period-end adjustment underflows
    """
    occurrence = next_occurrence(period.schedule_expression, context.comparison_instant)

    adjusted = occurrence
    if period.marks_period_end:
        try:
            adjusted = occurrence - timedelta(days=1)
        except OverflowError as e:
            raise ClockAdjustmentError(
                f"Cannot move {period.name} occurrence {occurrence} back one day: {e}"
            ) from e

    difference = adjusted - context.now
    matched = abs(difference.total_seconds()) < context.lag_window_seconds
    return MatchDecision(period, occurrence, adjusted, difference, matched)


def evaluate_periods(now: datetime, lag_window_seconds: int,
                     periods: Sequence[PeriodDefinition],
                     sink: Optional[ObservabilitySink] = None,
                     next_occurrence: NextOccurrence = cron_next_occurrence) -> List[MatchDecision]:
    """Evaluate every period, skipping those whose expression is invalid.

    Args:
        now: Instant of the current run
        lag_window_seconds: Match tolerance in seconds
        periods: Period catalog, in the order tags should be emitted
        sink: Receives one ``period_evaluated`` event per evaluated period
        next_occurrence: Cron lookup, replaceable in tests

    Returns:
        One decision per evaluated period, in catalog order
    """
    sink = sink or NullSink()
    context = EvaluationContext.create(now, lag_window_seconds)

    decisions = []
    for period in periods:
        try:
            decision = decide(period, context, next_occurrence)
        except ScheduleParseError as e:
            logger.debug(f"Skipping {period.name}: {e}")
            continue

        sink.record('period_evaluated', {
            'tag': period.name,
            'when': decision.next_occurrence,
            'match': decision.matched,
        })
        decisions.append(decision)

    return decisions


def evaluate(now: datetime, lag_window_seconds: int,
             periods: Sequence[PeriodDefinition],
             sink: Optional[ObservabilitySink] = None,
             next_occurrence: NextOccurrence = cron_next_occurrence) -> TagSet:
    """Compute the tag set for a run at ``now``.

    The result always starts with the ``standard`` tag, followed by the tag
    of each matching period in catalog order.
    """
    tags = TagSet.standard()
    for decision in evaluate_periods(now, lag_window_seconds, periods, sink, next_occurrence):
        if decision.matched:
            tags = tags.with_tag(decision.period.tag)
    return tags
