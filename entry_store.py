"""Observation records, boundary validation and snapshot persistence.

Everything that enters the analytic modules passes through this module first.
Raw user input (form strings, imported JSON) is parsed into `Observation`
values here; anything malformed or outside the dosage policy is rejected with
`InvalidObservationError` so that no NaN ever reaches the arithmetic in
`pen_ledger`, `dose_concentration` or `weight_progress`.
"""
import json
import logging
import math
import os
import tempfile
import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

MAX_DOSE_MG = 15.0


class InvalidObservationError(ValueError):
    """Raised when raw input cannot become an Observation."""


class DosageLimitError(InvalidObservationError):
    """Raised when a dose exceeds MAX_DOSE_MG."""


@dataclass(frozen=True)
class Observation:
    id: str
    timestamp: datetime               # always timezone-aware UTC
    weight: Optional[float] = None    # kg
    dose_amount: Optional[float] = None  # mg
    pen_id: Optional[str] = None
    pen_nominal_strength: Optional[float] = None  # mg per standard dose
    is_pen_start: bool = False
    cost: Optional[float] = None
    note: Optional[str] = None


def new_observation_id() -> str:
    return uuid.uuid4().hex


def to_utc(value: Any) -> datetime:
    """Normalize a date, datetime or ISO-8601 string to an aware UTC datetime.

    Naive values are taken to already be in UTC.
    """
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
        except ValueError as e:
            raise InvalidObservationError(
                f"Invalid timestamp {value!r}. Expected ISO 8601 format "
                f"(e.g. '2024-03-01T08:00:00Z'). Error: {e}"
            )
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    raise InvalidObservationError(f"Timestamp must be a date, datetime or string, got {type(value).__name__}")


def _parse_number(value: Any, field: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidObservationError(f"{field} must be numeric, got a boolean")
    if isinstance(value, str):
        text = value.strip().lower()
        if text.endswith('mg'):
            text = text[:-2].strip()
        if not text:
            return None
        # Accept a decimal comma ("2,5") as typed on Czech keyboards.
        text = text.replace(',', '.')
        try:
            number = float(text)
        except ValueError:
            raise InvalidObservationError(f"{field} must be numeric, got {value!r}")
    elif isinstance(value, (int, float)):
        number = float(value)
    else:
        raise InvalidObservationError(f"{field} must be numeric, got {type(value).__name__}")

    if not math.isfinite(number):
        raise InvalidObservationError(f"{field} must be a finite number, got {value!r}")
    return number


def parse_weight(value: Any) -> Optional[float]:
    weight = _parse_number(value, "weight")
    if weight is not None and weight <= 0:
        raise InvalidObservationError(f"weight must be positive, got {weight}")
    return weight


def parse_dose(value: Any) -> Optional[float]:
    """Parse a dose in mg, enforcing the MAX_DOSE_MG safety limit."""
    dose = _parse_number(value, "dosage")
    if dose is None:
        return None
    if dose <= 0:
        raise InvalidObservationError(f"dosage must be positive, got {dose}")
    if dose > MAX_DOSE_MG:
        raise DosageLimitError(f"dosage {dose} mg exceeds the maximum allowed dose of {MAX_DOSE_MG:g} mg")
    return dose


def parse_strength(value: Any) -> Optional[float]:
    strength = _parse_number(value, "pen strength")
    if strength is not None and strength <= 0:
        raise InvalidObservationError(f"pen strength must be positive, got {strength}")
    return strength


def parse_cost(value: Any) -> Optional[float]:
    cost = _parse_number(value, "pen cost")
    if cost is not None and cost < 0:
        raise InvalidObservationError(f"pen cost must be non-negative, got {cost}")
    return cost


def parse_flag(value: Any, label: str = "isNewPen") -> bool:
    """Accept only real booleans; a missing value reads as False."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    raise InvalidObservationError(f"{label} must be true or false, got {value!r}")


def create_observation(
    timestamp: Any,
    weight: Any = None,
    dosage: Any = None,
    pen_id: Optional[str] = None,
    pen_strength: Any = None,
    is_pen_start: bool = False,
    cost: Any = None,
    note: Optional[str] = None,
    observation_id: Optional[str] = None,
) -> Observation:
    """Validate raw field values and build an Observation.

    A fresh id is assigned unless `observation_id` is given (snapshot import).
    """
    parsed_weight = parse_weight(weight)
    parsed_dose = parse_dose(dosage)
    if parsed_weight is None and parsed_dose is None:
        raise InvalidObservationError("an observation needs a weight, a dosage, or both")

    pen_id = (pen_id or "").strip() or None
    note = (note or "").strip() or None

    return Observation(
        id=observation_id or new_observation_id(),
        timestamp=to_utc(timestamp),
        weight=parsed_weight,
        dose_amount=parsed_dose,
        pen_id=pen_id,
        pen_nominal_strength=parse_strength(pen_strength),
        is_pen_start=parse_flag(is_pen_start),
        cost=parse_cost(cost),
        note=note,
    )


def new_pen_id(strength: float, when: Optional[datetime] = None) -> str:
    when = to_utc(when or datetime.now(timezone.utc))
    return f"pen_{int(when.timestamp() * 1000)}_{strength:g}"


# =============================================================================
# SNAPSHOT CODEC
# =============================================================================

def observation_to_dict(observation: Observation) -> Dict[str, Any]:
    """Serialize to the snapshot record layout (camelCase keys, ISO date)."""
    record: Dict[str, Any] = {
        "id": observation.id,
        "date": observation.timestamp.isoformat(),
    }
    optional = {
        "weight": observation.weight,
        "dosage": observation.dose_amount,
        "penId": observation.pen_id,
        "penType": observation.pen_nominal_strength,
        "penCost": observation.cost,
        "notes": observation.note,
    }
    record.update({k: v for k, v in optional.items() if v is not None})
    if observation.is_pen_start:
        record["isNewPen"] = True
    return record


def observation_from_dict(entry: Dict[str, Any], index: int) -> Observation:
    """Parse one snapshot record, reporting `index` in any error message."""
    if not isinstance(entry, dict):
        raise InvalidObservationError(f"record {index}: expected an object, got {type(entry).__name__}")
    if "date" not in entry:
        raise InvalidObservationError(f"record {index}: missing required field 'date'")
    try:
        return create_observation(
            timestamp=entry["date"],
            weight=entry.get("weight"),
            dosage=entry.get("dosage"),
            pen_id=entry.get("penId"),
            pen_strength=entry.get("penType"),
            is_pen_start=entry.get("isNewPen"),
            cost=entry.get("penCost"),
            note=entry.get("notes"),
            observation_id=entry.get("id"),
        )
    except InvalidObservationError as e:
        raise type(e)(f"record {index}: {e}") from e


def dumps_snapshot(observations: Iterable[Observation]) -> str:
    return json.dumps([observation_to_dict(o) for o in observations], indent=2)


def loads_snapshot(text: str) -> List[Observation]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidObservationError(f"Invalid JSON in snapshot: {e}")
    if not isinstance(data, list):
        raise InvalidObservationError(f"Snapshot must be a JSON array, got {type(data).__name__}")
    return [observation_from_dict(entry, idx) for idx, entry in enumerate(data)]


class SnapshotRepository(Protocol):
    def load_snapshot(self) -> List[Observation]:
        ...

    def save_snapshot(self, observations: Iterable[Observation]) -> None:
        ...


class JsonFileRepository:
    """Snapshot repository backed by a single JSON file."""

    def __init__(self, path: str):
        self.path = path

    def load_snapshot(self) -> List[Observation]:
        if not os.path.exists(self.path):
            logger.info("No snapshot at %s, starting empty", self.path)
            return []
        with open(self.path, "r", encoding="utf-8") as fh:
            observations = loads_snapshot(fh.read())
        logger.info("Loaded %d observations from %s", len(observations), self.path)
        return observations

    def save_snapshot(self, observations: Iterable[Observation]) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        content = dumps_snapshot(observations)
        # The live file is only ever replaced whole, never truncated in place.
        fd, tmp_path = tempfile.mkstemp(dir=directory or ".", prefix=".entries-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(content)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        logger.info("Saved snapshot to %s", self.path)


# =============================================================================
# ENTRY STORE
# =============================================================================

class EntryStore:
    """Ordered, immutable collection of observations.

    Mutating operations return a new store; the analytic functions only ever
    see `observations`, a tuple snapshot in ingestion order.
    """

    def __init__(self, observations: Iterable[Observation] = ()):
        self._observations: Tuple[Observation, ...] = tuple(observations)
        ids = [o.id for o in self._observations]
        if len(set(ids)) != len(ids):
            raise InvalidObservationError("observation ids must be unique")

    @classmethod
    def from_repository(cls, repository: SnapshotRepository) -> "EntryStore":
        return cls(repository.load_snapshot())

    def save_to(self, repository: SnapshotRepository) -> None:
        repository.save_snapshot(self._observations)

    @property
    def observations(self) -> Tuple[Observation, ...]:
        return self._observations

    def __len__(self) -> int:
        return len(self._observations)

    def __iter__(self):
        return iter(self._observations)

    def get(self, observation_id: str) -> Optional[Observation]:
        for observation in self._observations:
            if observation.id == observation_id:
                return observation
        return None

    def add(self, observation: Observation) -> "EntryStore":
        if self.get(observation.id) is not None:
            # Re-imported records keep their id; give a colliding one a new id.
            observation = replace(observation, id=new_observation_id())
        logger.debug("Adding observation %s", observation.id)
        return EntryStore(self._observations + (observation,))

    def remove(self, observation_id: str) -> "EntryStore":
        remaining = tuple(o for o in self._observations if o.id != observation_id)
        if len(remaining) == len(self._observations):
            raise KeyError(f"No observation with id {observation_id!r}")
        logger.debug("Removed observation %s", observation_id)
        return EntryStore(remaining)

    def sorted_by_date(self, descending: bool = False) -> List[Observation]:
        return sorted(self._observations, key=lambda o: o.timestamp, reverse=descending)
