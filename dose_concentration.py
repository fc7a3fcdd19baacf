"""Plasma concentration estimate from superposed first-order elimination.

Each dose decays as A * exp(-k * t) with k = ln(2) / HALF_LIFE_DAYS; the
concentration at any instant is the sum over every dose given at or before
it. This is a single-compartment toy model, not a pharmacological one.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Iterator, List, Optional

from entry_store import Observation, to_utc

logger = logging.getLogger(__name__)

HALF_LIFE_DAYS = 5.0
DECAY_CONSTANT = math.log(2) / HALF_LIFE_DAYS  # per day
DEFAULT_DISPLAY_WINDOW_DAYS = 30


@dataclass(frozen=True)
class Dose:
    date: datetime
    amount_mg: float

    def __post_init__(self):
        object.__setattr__(self, "date", to_utc(self.date))


@dataclass(frozen=True)
class ConcentrationPoint:
    date: datetime
    concentration: float  # mg


def doses_from_observations(observations: Iterable[Observation]) -> List[Dose]:
    return [Dose(date=o.timestamp, amount_mg=o.dose_amount) for o in observations if o.dose_amount is not None]


def dose_contribution(dose: Dose, at: datetime) -> float:
    """Amount of `dose` still present at `at`; zero before the dose is given."""
    elapsed_days = (to_utc(at) - dose.date).total_seconds() / 86400
    if elapsed_days < 0:
        return 0.0
    return dose.amount_mg * math.exp(-DECAY_CONSTANT * elapsed_days)


def concentration_at(doses: Iterable[Dose], at: datetime) -> float:
    at = to_utc(at)
    return sum(dose_contribution(dose, at) for dose in doses)


class ConcentrationSeries:
    """Daily concentration samples for charting.

    Runs from the first dose through the later of `today` and the last dose
    plus `display_window_days`. Iterating again recomputes from the doses.
    """

    def __init__(self, doses: Iterable[Dose], today: Optional[datetime] = None,
                 display_window_days: int = DEFAULT_DISPLAY_WINDOW_DAYS):
        self.doses = sorted(doses, key=lambda d: d.date)
        self.today = to_utc(today) if today is not None else datetime.now(timezone.utc)
        self.display_window_days = display_window_days

    @property
    def start(self) -> Optional[datetime]:
        return self.doses[0].date if self.doses else None

    @property
    def end(self) -> Optional[datetime]:
        if not self.doses:
            return None
        return max(self.today, self.doses[-1].date + timedelta(days=self.display_window_days))

    def __iter__(self) -> Iterator[ConcentrationPoint]:
        if not self.doses:
            return
        current, end = self.start, self.end
        while current <= end:
            yield ConcentrationPoint(date=current, concentration=concentration_at(self.doses, current))
            current += timedelta(days=1)

    def __len__(self) -> int:
        if not self.doses:
            return 0
        return (self.end - self.start) // timedelta(days=1) + 1


def current_concentration(doses: Iterable[Dose], now: Optional[datetime] = None) -> float:
    now = to_utc(now) if now is not None else datetime.now(timezone.utc)
    total = concentration_at(doses, now)
    logger.debug("Concentration at %s: %.3f mg", now.isoformat(), total)
    return total
