"""Published reference weight-loss trajectories and their scaling.

Both tables give body weight at a 150 kg baseline. Scaling a table to a user
multiplies every weight by `start_weight / 150`. Nearest-week lookups take
the earliest row on an exact tie.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Sequence, Tuple

REFERENCE_BASELINE_KG = 150.0


@dataclass(frozen=True)
class ReferencePoint:
    week: int
    weight: float  # kg at the 150 kg baseline


# Weekly resolution, weeks 0-72.
WEEKLY_REFERENCE: Tuple[ReferencePoint, ...] = (
    ReferencePoint(0, 150.0),
    ReferencePoint(1, 148.8180298),
    ReferencePoint(2, 147.6360595),
    ReferencePoint(3, 146.4793556),
    ReferencePoint(4, 145.3226516),
    ReferencePoint(5, 144.3494539),
    ReferencePoint(6, 143.3762561),
    ReferencePoint(7, 142.4382032),
    ReferencePoint(8, 141.5001503),
    ReferencePoint(9, 140.634345),
    ReferencePoint(10, 139.7685397),
    ReferencePoint(11, 138.9325887),
    ReferencePoint(12, 138.0966377),
    ReferencePoint(13, 137.3478884),
    ReferencePoint(14, 136.5991391),
    ReferencePoint(15, 135.9258211),
    ReferencePoint(16, 135.2525031),
    ReferencePoint(17, 134.6229612),
    ReferencePoint(18, 133.9934193),
    ReferencePoint(19, 133.3969097),
    ReferencePoint(20, 132.8004),
    ReferencePoint(21, 132.2669293),
    ReferencePoint(22, 131.7334586),
    ReferencePoint(23, 131.2437163),
    ReferencePoint(24, 130.7539739),
    ReferencePoint(25, 130.3580553),
    ReferencePoint(26, 129.9621366),
    ReferencePoint(27, 129.5835799),
    ReferencePoint(28, 129.2050232),
    ReferencePoint(29, 128.8471359),
    ReferencePoint(30, 128.4892487),
    ReferencePoint(31, 128.1683409),
    ReferencePoint(32, 127.8474331),
    ReferencePoint(33, 127.5285283),
    ReferencePoint(34, 127.2096235),
    ReferencePoint(35, 126.9068896),
    ReferencePoint(36, 126.6041556),
    ReferencePoint(37, 126.3244091),
    ReferencePoint(38, 126.0446626),
    ReferencePoint(39, 125.7861233),
    ReferencePoint(40, 125.527584),
    ReferencePoint(41, 125.2886122),
    ReferencePoint(42, 125.0496405),
    ReferencePoint(43, 124.8287261),
    ReferencePoint(44, 124.6078116),
    ReferencePoint(45, 124.4035631),
    ReferencePoint(46, 124.1993146),
    ReferencePoint(47, 124.01045),
    ReferencePoint(48, 123.8215855),
    ReferencePoint(49, 123.6469234),
    ReferencePoint(50, 123.4722614),
    ReferencePoint(51, 123.3107131),
    ReferencePoint(52, 123.1491647),
    ReferencePoint(53, 122.9997264),
    ReferencePoint(54, 122.850288),
    ReferencePoint(55, 122.7120344),
    ReferencePoint(56, 122.5737807),
    ReferencePoint(57, 122.4458585),
    ReferencePoint(58, 122.3179363),
    ReferencePoint(59, 122.1995588),
    ReferencePoint(60, 122.0811813),
    ReferencePoint(61, 121.9716227),
    ReferencePoint(62, 121.8620641),
    ReferencePoint(63, 121.7606551),
    ReferencePoint(64, 121.6592461),
    ReferencePoint(65, 121.5653691),
    ReferencePoint(66, 121.471492),
    ReferencePoint(67, 121.384577),
    ReferencePoint(68, 121.2976621),
    ReferencePoint(69, 121.2171833),
    ReferencePoint(70, 121.1367045),
    ReferencePoint(71, 121.0621766),
    ReferencePoint(72, 120.9876486),
)

# SURMOUNT-1 trial averages at 4-week steps, weeks 0-52.
FOUR_WEEK_REFERENCE: Tuple[ReferencePoint, ...] = tuple(
    p for p in WEEKLY_REFERENCE if p.week % 4 == 0 and p.week <= 52
)


@dataclass(frozen=True)
class TrajectoryPoint:
    week: int
    date: datetime
    weight: float


def horizon(table: Sequence[ReferencePoint]) -> int:
    return table[-1].week


def scale_factor(start_weight: float) -> float:
    return start_weight / REFERENCE_BASELINE_KG


def scale_table(table: Sequence[ReferencePoint], start_weight: float) -> List[ReferencePoint]:
    factor = scale_factor(start_weight)
    return [ReferencePoint(p.week, p.weight * factor) for p in table]


def nearest_point(table: Sequence[ReferencePoint], weeks: float) -> ReferencePoint:
    """Row whose week is closest to `weeks`; the earlier row wins a tie."""
    return min(table, key=lambda p: abs(p.week - weeks))


def first_week_at_or_below(table: Sequence[ReferencePoint], weight: float):
    """First row whose weight is <= `weight`, or None within the table horizon."""
    for point in table:
        if point.weight <= weight:
            return point
    return None


def reference_trajectory(start_weight: float, start_date: datetime,
                         table: Sequence[ReferencePoint] = WEEKLY_REFERENCE) -> List[TrajectoryPoint]:
    """The scaled reference curve as dated points, starting at `start_date`."""
    return [
        TrajectoryPoint(week=p.week, date=start_date + timedelta(days=p.week * 7), weight=p.weight)
        for p in scale_table(table, start_weight)
    ]
