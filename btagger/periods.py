"""Catalog of retention periods expressed as cron schedules."""

from dataclasses import dataclass
from typing import List

from btagger.tags import Tag

# Saturday
WEEKLY_DAY_OF_WEEK = 6


@dataclass(frozen=True)
class PeriodDefinition:
    """One retention period.

    Attributes:
        schedule_expression: Five-field cron expression for the period boundary
        tag: Tag applied when the boundary matches the current run
        marks_period_end: True when the computed occurrence starts the *next*
            period, so the boundary of interest is one day earlier
    """
    schedule_expression: str
    tag: Tag
    marks_period_end: bool = False

    @property
    def name(self) -> str:
        return self.tag.key


def build_periods(day_offset_hours: int = 0, minute_offset: int = 30,
                  every_n_hours: int = 4) -> List[PeriodDefinition]:
    """Build the nightly/weekly/monthly/quarterly/yearly catalog.

    Offsets are not range checked. An hour or minute outside the cron range
    yields an expression the evaluator skips.

    Args:
        day_offset_hours: Hours added to the hour field
        minute_offset: Minutes past the hour the backup job fires
        every_n_hours: Hour of the day the nightly run is matched against

    Returns:
        Period definitions in catalog order
    """
    minute = minute_offset
    hour = every_n_hours + day_offset_hours

    return [
        PeriodDefinition(f"{minute} {hour} * * *", Tag("nightly"), False),
        PeriodDefinition(f"{minute} {hour} * * {WEEKLY_DAY_OF_WEEK}", Tag("weekly"), False),
        PeriodDefinition(f"{minute} {hour} 1 * *", Tag("monthly"), True),
        PeriodDefinition(f"{minute} {hour} 1 */3 *", Tag("quarterly"), True),
        PeriodDefinition(f"{minute} {hour} 1 1 *", Tag("yearly"), True),
    ]
