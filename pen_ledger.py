"""Pen inventory derived from the observation log.

Pens are never stored. `build_pens` folds the observation list into frozen
`Pen` values on every call, and the prediction helpers work on those values.
A pen holds `nominal_strength * PEN_CAPACITY_FACTOR` mg: four standard doses
plus the 1.5 dose residual left in the cartridge.
"""
import logging
import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from entry_store import Observation

logger = logging.getLogger(__name__)

PEN_CAPACITY_FACTOR = 5.5
DAYS_PER_APPLICATION = 7  # weekly injections
LOW_CONTENT_PERCENT = 80.0


@dataclass(frozen=True)
class Application:
    date: datetime
    dose_amount: float  # mg


@dataclass(frozen=True)
class Pen:
    id: str
    nominal_strength: float   # mg per standard dose
    start_date: datetime
    total_capacity: float     # mg, fixed when the pen is first seen
    cost: float = 0.0
    applications: Tuple[Application, ...] = ()
    total_used: float = 0.0

    @property
    def last_application_date(self) -> Optional[datetime]:
        if not self.applications:
            return None
        return self.applications[-1].date

    @property
    def remaining(self) -> float:
        return self.total_capacity - self.total_used

    @property
    def usage_percent(self) -> float:
        return self.total_used / self.total_capacity * 100

    @property
    def is_finished(self) -> bool:
        return self.total_used >= self.total_capacity

    @property
    def is_running_low(self) -> bool:
        return self.usage_percent > LOW_CONTENT_PERCENT

    @property
    def cost_per_application(self) -> Optional[float]:
        if not self.cost or not self.applications:
            return None
        return self.cost / len(self.applications)


@dataclass(frozen=True)
class PenLedger:
    active: List[Pen]
    finished: List[Pen]
    # Observations naming a pen id that no pen-forming observation introduced.
    orphaned: List[Observation]

    @property
    def pens(self) -> List[Pen]:
        return sorted(self.active + self.finished, key=lambda p: p.start_date, reverse=True)


def _open_pen(observation: Observation) -> Pen:
    strength = observation.pen_nominal_strength
    return Pen(
        id=observation.pen_id,
        nominal_strength=strength,
        start_date=observation.timestamp,
        total_capacity=strength * PEN_CAPACITY_FACTOR,
        cost=observation.cost or 0.0,
    )


def _apply(pen: Pen, observation: Observation) -> Pen:
    if observation.dose_amount is None:
        return pen
    application = Application(date=observation.timestamp, dose_amount=observation.dose_amount)
    return replace(
        pen,
        applications=pen.applications + (application,),
        total_used=pen.total_used + observation.dose_amount,
    )


def build_pens(observations: Iterable[Observation]) -> PenLedger:
    """Group observations into pens, in ingestion order.

    The first observation for a pen id must carry a nominal strength; later
    strengths are ignored. Observations for unknown pen ids end up in
    `PenLedger.orphaned` instead of forming a pen.
    """
    pens: Dict[str, Pen] = {}
    orphaned: List[Observation] = []

    for observation in observations:
        if not observation.pen_id:
            continue
        if observation.pen_id not in pens:
            if observation.pen_nominal_strength is None:
                orphaned.append(observation)
                continue
            pens[observation.pen_id] = _open_pen(observation)
        pens[observation.pen_id] = _apply(pens[observation.pen_id], observation)

    by_start = sorted(pens.values(), key=lambda p: p.start_date, reverse=True)
    active = [p for p in by_start if not p.is_finished]
    finished = [p for p in by_start if p.is_finished]
    logger.debug("Built %d pens (%d active, %d finished, %d orphaned observations)",
                 len(by_start), len(active), len(finished), len(orphaned))
    return PenLedger(active=active, finished=finished, orphaned=orphaned)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def average_interval_days(pen: Pen) -> Optional[float]:
    """Mean gap between consecutive applications, in days."""
    if len(pen.applications) < 2:
        return None
    dates = [a.date for a in pen.applications]
    gaps = [(later - earlier).total_seconds() / 86400 for earlier, later in zip(dates, dates[1:])]
    return sum(gaps) / len(gaps)


def predict_next_application(pen: Pen) -> Optional[datetime]:
    interval = average_interval_days(pen)
    if interval is None:
        return None
    return pen.last_application_date + timedelta(days=_round_half_up(interval))


def predict_exhaustion(pen: Pen) -> Optional[datetime]:
    """Estimate when the pen runs empty, assuming weekly applications."""
    if len(pen.applications) < 2:
        return None
    average_dose = pen.total_used / len(pen.applications)
    remaining_applications = math.floor(pen.remaining / average_dose)
    next_application = predict_next_application(pen)
    if next_application is None or remaining_applications <= 0:
        return None
    return next_application + timedelta(days=remaining_applications * DAYS_PER_APPLICATION)


def next_application_date(ledger: PenLedger) -> Optional[datetime]:
    """Next application predicted for the most recently used active pen."""
    used = [p for p in ledger.active if p.applications]
    if not used:
        return None
    recent = max(used, key=lambda p: p.last_application_date)
    return predict_next_application(recent)


# =============================================================================
# PEN DURABILITY
# =============================================================================

@dataclass(frozen=True)
class PenDurability:
    nominal_strength: float
    dose_amount: float
    total_applications: int
    weeks_of_use: int
    days_of_use: int
    cost_per_application: Optional[float] = None


def pen_durability(nominal_strength: float, dose_amount: float, cost: Optional[float] = None) -> PenDurability:
    """How many applications of `dose_amount` a fresh pen yields."""
    total_applications = math.floor(nominal_strength * PEN_CAPACITY_FACTOR / dose_amount)
    per_application = None
    if cost and total_applications > 0:
        per_application = cost / total_applications
    return PenDurability(
        nominal_strength=nominal_strength,
        dose_amount=dose_amount,
        total_applications=total_applications,
        weeks_of_use=total_applications,
        days_of_use=total_applications * DAYS_PER_APPLICATION,
        cost_per_application=per_application,
    )


@dataclass(frozen=True)
class DurabilityCombination:
    durability: PenDurability
    count: int
    average_cost: Optional[float]


def durability_by_combination(observations: Iterable[Observation]) -> List[DurabilityCombination]:
    """Summarize every (strength, dose) pairing seen on pen-forming observations."""
    counts: Dict[Tuple[float, float], int] = {}
    costs: Dict[Tuple[float, float], List[float]] = {}
    for observation in observations:
        if observation.pen_nominal_strength is None or observation.dose_amount is None:
            continue
        key = (observation.pen_nominal_strength, observation.dose_amount)
        counts[key] = counts.get(key, 0) + 1
        costs.setdefault(key, [])
        if observation.cost:
            costs[key].append(observation.cost)

    combinations = []
    for (strength, dose), count in counts.items():
        key_costs = costs[(strength, dose)]
        average_cost = sum(key_costs) / len(key_costs) if key_costs else None
        combinations.append(DurabilityCombination(
            durability=pen_durability(strength, dose, average_cost),
            count=count,
            average_cost=average_cost,
        ))
    return combinations
