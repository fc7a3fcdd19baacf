import math
import os
import sys
from datetime import datetime, timedelta, timezone

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from dose_concentration import (
    DECAY_CONSTANT,
    ConcentrationSeries,
    Dose,
    concentration_at,
    current_concentration,
    dose_contribution,
    doses_from_observations,
)
from entry_store import Observation, create_observation

T0 = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)


def test_one_half_life_halves_the_dose():
    doses = [Dose(T0, 5.0)]
    assert math.isclose(concentration_at(doses, T0 + timedelta(days=5)), 2.5)
    assert math.isclose(concentration_at(doses, T0), 5.0)


def test_future_doses_do_not_contribute():
    dose = Dose(T0 + timedelta(days=1), 5.0)
    assert dose_contribution(dose, T0) == 0.0
    assert concentration_at([dose], T0 + timedelta(hours=23)) == 0.0


def test_superposition_at_arbitrary_instant():
    doses = [Dose(T0, 2.5), Dose(T0 + timedelta(days=7), 5.0), Dose(T0 + timedelta(days=14), 7.5)]
    at = T0 + timedelta(days=10, hours=5, minutes=17)
    expected = 0.0
    for dose in doses:
        elapsed = (at - dose.date).total_seconds() / 86400
        if elapsed >= 0:
            expected += dose.amount_mg * math.exp(-DECAY_CONSTANT * elapsed)
    assert math.isclose(concentration_at(doses, at), expected)


def test_non_increasing_between_doses():
    doses = [Dose(T0, 5.0), Dose(T0 + timedelta(days=7), 5.0)]
    samples = [concentration_at(doses, T0 + timedelta(days=7, hours=h)) for h in range(0, 7 * 24)]
    assert all(value >= 0 for value in samples)
    assert all(later <= earlier for earlier, later in zip(samples, samples[1:]))


def test_empty_dose_list_is_zero():
    assert concentration_at([], T0) == 0.0
    assert list(ConcentrationSeries([], today=T0)) == []
    assert len(ConcentrationSeries([], today=T0)) == 0


def test_series_extends_past_last_dose():
    doses = [Dose(T0, 5.0), Dose(T0 + timedelta(days=10), 5.0)]
    series = ConcentrationSeries(doses, today=T0 + timedelta(days=5), display_window_days=30)
    points = list(series)
    assert len(points) == 41 == len(series)
    assert points[0].date == T0
    assert points[-1].date == T0 + timedelta(days=40)
    assert math.isclose(points[5].concentration, 2.5)


def test_series_runs_until_today_when_later():
    doses = [Dose(T0, 5.0)]
    series = ConcentrationSeries(doses, today=T0 + timedelta(days=60), display_window_days=30)
    assert series.end == T0 + timedelta(days=60)
    assert len(list(series)) == 61


def test_series_is_restartable():
    series = ConcentrationSeries([Dose(T0 + timedelta(days=3), 5.0), Dose(T0, 2.5)], today=T0)
    first = list(series)
    assert first == list(series)
    assert first[0].date == T0


def test_doses_from_observations_skips_weight_only():
    observations = [
        Observation(id="a", timestamp=T0, weight=100.0),
        Observation(id="b", timestamp=T0, dose_amount=5.0),
    ]
    assert doses_from_observations(observations) == [Dose(T0, 5.0)]


def test_current_concentration_accepts_naive_now():
    doses = [Dose(T0, 5.0)]
    assert math.isclose(current_concentration(doses, datetime(2024, 1, 6, 8, 0)), 2.5)


def test_naive_instants_are_read_as_utc():
    doses = doses_from_observations([create_observation(datetime(2024, 1, 1, 8, 0), dosage=5)])
    assert math.isclose(concentration_at(doses, datetime(2024, 1, 6, 8, 0)), 2.5)
    assert math.isclose(dose_contribution(doses[0], datetime(2024, 1, 6, 8, 0)), 2.5)


def test_series_accepts_naive_dose_dates():
    dose = Dose(datetime(2024, 1, 1), 5.0)
    assert dose.date == datetime(2024, 1, 1, tzinfo=timezone.utc)
    points = list(ConcentrationSeries([dose], today=datetime(2024, 1, 2), display_window_days=1))
    assert len(points) == 2
    assert math.isclose(points[0].concentration, 5.0)
