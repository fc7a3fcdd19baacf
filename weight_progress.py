"""Weight progress against the reference curve, trend and goal forecast.

All functions take the raw observation list and look only at observations
that carry a weight. Too little data yields None rather than an exception.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from entry_store import Observation, to_utc
from reference_curves import (
    FOUR_WEEK_REFERENCE,
    WEEKLY_REFERENCE,
    ReferencePoint,
    first_week_at_or_below,
    horizon,
    nearest_point,
    scale_factor,
    scale_table,
)

logger = logging.getLogger(__name__)

SECONDS_PER_WEEK = 7 * 86400
DEFAULT_GOAL_FRACTION = 0.9  # 10% loss when no goal is set


class Performance(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    AVERAGE = "average"
    BELOW = "below"


# (lower bound in percentage points, label), checked top-down.
PERFORMANCE_BRACKETS = (
    (2.0, Performance.EXCELLENT),
    (0.5, Performance.GOOD),
    (-1.0, Performance.AVERAGE),
)


@dataclass(frozen=True)
class GoalSettings:
    target_weight: float
    start_weight: float

    @classmethod
    def for_observations(cls, target_weight: float, observations: Iterable[Observation]) -> "GoalSettings":
        weighed = weight_observations(observations)
        start = weighed[0].weight if weighed else target_weight + 10
        return cls(target_weight=target_weight, start_weight=start)


@dataclass(frozen=True)
class ComparisonResult:
    weeks_elapsed: int
    start_weight: float
    current_weight: float
    actual_loss_kg: float
    actual_loss_percent: float
    reference_point: ReferencePoint
    expected_weight: float
    expected_loss_kg: float
    expected_loss_percent: float
    loss_difference_kg: float   # actual - expected, positive means ahead
    percent_difference: float   # percentage points
    performance: Performance


@dataclass(frozen=True)
class WeightTrend:
    direction: str  # "down", "up" or "stable"
    amount: float


@dataclass(frozen=True)
class GoalProjection:
    target_week: int
    target_date: datetime
    days_to_goal: int
    weekly_loss: Optional[float]
    is_long_term: bool = False

    @property
    def already_reached(self) -> bool:
        return self.target_week == 0


@dataclass(frozen=True)
class ProgressSummary:
    entries: int
    start_weight: float
    current_weight: float
    total_loss: float
    average_loss: float
    progress_percent: float
    total_cost: float


def weight_observations(observations: Iterable[Observation]) -> List[Observation]:
    """Observations with a weight, oldest first (stable for equal timestamps)."""
    return sorted((o for o in observations if o.weight is not None), key=lambda o: o.timestamp)


def classify(percent_difference: float) -> Performance:
    for lower_bound, performance in PERFORMANCE_BRACKETS:
        if percent_difference >= lower_bound:
            return performance
    return Performance.BELOW


def compare(observations: Iterable[Observation],
            table: Sequence[ReferencePoint] = FOUR_WEEK_REFERENCE) -> Optional[ComparisonResult]:
    """Compare actual loss with the reference curve scaled to the first weight."""
    weighed = weight_observations(observations)
    if len(weighed) < 2:
        return None

    first, last = weighed[0], weighed[-1]
    weeks_elapsed = math.floor((last.timestamp - first.timestamp).total_seconds() / SECONDS_PER_WEEK)
    actual_loss = first.weight - last.weight
    actual_loss_percent = actual_loss / first.weight * 100

    reference = nearest_point(table, weeks_elapsed)
    expected_weight = reference.weight * scale_factor(first.weight)
    expected_loss = first.weight - expected_weight
    expected_loss_percent = expected_loss / first.weight * 100

    percent_difference = actual_loss_percent - expected_loss_percent
    logger.debug("Comparison: weeks=%d actual=%.2f%% expected=%.2f%% (reference week %d)",
                 weeks_elapsed, actual_loss_percent, expected_loss_percent, reference.week)

    return ComparisonResult(
        weeks_elapsed=weeks_elapsed,
        start_weight=first.weight,
        current_weight=last.weight,
        actual_loss_kg=actual_loss,
        actual_loss_percent=actual_loss_percent,
        reference_point=reference,
        expected_weight=expected_weight,
        expected_loss_kg=expected_loss,
        expected_loss_percent=expected_loss_percent,
        loss_difference_kg=actual_loss - expected_loss,
        percent_difference=percent_difference,
        performance=classify(percent_difference),
    )


def weight_trend(observations: Iterable[Observation]) -> Optional[WeightTrend]:
    weighed = weight_observations(observations)
    if len(weighed) < 2:
        return None
    diff = weighed[-1].weight - weighed[-2].weight
    if diff < 0:
        direction = "down"
    elif diff > 0:
        direction = "up"
    else:
        direction = "stable"
    return WeightTrend(direction=direction, amount=abs(diff))


def goal_projection(observations: Iterable[Observation], goal: Optional[GoalSettings],
                    table: Sequence[ReferencePoint] = WEEKLY_REFERENCE,
                    today: Optional[datetime] = None) -> Optional[GoalProjection]:
    """Forecast when the goal weight is reached along the scaled reference curve.

    If the scaled curve never gets down to the target, the table horizon is
    returned with `is_long_term` set; nothing is extrapolated past the table.
    """
    weighed = weight_observations(observations)
    if not weighed or goal is None:
        return None

    today = to_utc(today) if today is not None else datetime.now(timezone.utc)
    current_weight = weighed[-1].weight
    target_point = first_week_at_or_below(scale_table(table, current_weight), goal.target_weight)

    if target_point is None:
        week = horizon(table)
        is_long_term = True
    else:
        week = target_point.week
        is_long_term = False

    weekly_loss = None
    if week > 0:
        weekly_loss = (current_weight - goal.target_weight) / week

    logger.debug("Goal projection: current=%.1f target=%.1f week=%d long_term=%s",
                 current_weight, goal.target_weight, week, is_long_term)
    return GoalProjection(
        target_week=week,
        target_date=today + timedelta(days=week * 7),
        days_to_goal=week * 7,
        weekly_loss=weekly_loss,
        is_long_term=is_long_term,
    )


def progress_summary(observations: Sequence[Observation],
                     goal: Optional[GoalSettings] = None) -> Optional[ProgressSummary]:
    weighed = weight_observations(observations)
    if not weighed:
        return None

    start_weight = weighed[0].weight
    current_weight = weighed[-1].weight
    total_loss = start_weight - current_weight
    target_weight = goal.target_weight if goal else start_weight * DEFAULT_GOAL_FRACTION
    target_loss = start_weight - target_weight
    progress = min(total_loss / target_loss * 100, 100.0) if target_loss > 0 else 0.0

    return ProgressSummary(
        entries=len(weighed),
        start_weight=start_weight,
        current_weight=current_weight,
        total_loss=total_loss,
        average_loss=total_loss / len(weighed),
        progress_percent=progress,
        total_cost=sum(o.cost or 0.0 for o in observations),
    )
