import math
import os
import sys
from datetime import datetime, timedelta, timezone

# Ensure project root is on sys.path so tests can import local modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from entry_store import Observation
from pen_ledger import (
    average_interval_days,
    build_pens,
    durability_by_combination,
    next_application_date,
    pen_durability,
    predict_exhaustion,
    predict_next_application,
)

T0 = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)


def obs(day, dose=None, pen_id=None, strength=None, cost=None, weight=None, oid=None):
    return Observation(
        id=oid or f"o{day}-{pen_id}-{dose}",
        timestamp=T0 + timedelta(days=day),
        weight=weight,
        dose_amount=dose,
        pen_id=pen_id,
        pen_nominal_strength=strength,
        is_pen_start=strength is not None,
        cost=cost,
    )


def weekly_pen(doses, pen_id="pen_a", strength=5.0, start_day=0):
    observations = [obs(start_day, doses[0], pen_id, strength, cost=4000)]
    for i, dose in enumerate(doses[1:], start=1):
        observations.append(obs(start_day + 7 * i, dose, pen_id))
    return observations


def test_pen_created_with_fixed_capacity():
    ledger = build_pens(weekly_pen([5.0, 5.0]))
    assert len(ledger.active) == 1
    pen = ledger.active[0]
    assert math.isclose(pen.total_capacity, 27.5)
    assert math.isclose(pen.total_used, 10.0)
    assert pen.cost == 4000
    assert pen.start_date == T0
    assert pen.last_application_date == T0 + timedelta(days=7)


def test_total_used_matches_applications():
    ledger = build_pens(weekly_pen([2.5, 5.0, 7.5]))
    pen = ledger.active[0]
    assert math.isclose(pen.total_used, sum(a.dose_amount for a in pen.applications))
    assert [a.dose_amount for a in pen.applications] == [2.5, 5.0, 7.5]


def test_pen_finished_at_capacity():
    ledger = build_pens(weekly_pen([5.0, 5.0, 5.0, 5.0, 7.5]))
    assert ledger.active == []
    assert len(ledger.finished) == 1
    assert ledger.finished[0].is_finished


def test_pen_just_below_capacity_is_active():
    ledger = build_pens(weekly_pen([5.0, 5.0, 5.0, 5.0, 7.4]))
    assert len(ledger.active) == 1
    assert ledger.finished == []


def test_later_strength_does_not_change_capacity():
    observations = weekly_pen([5.0]) + [obs(7, 5.0, "pen_a", strength=10.0)]
    pen = build_pens(observations).active[0]
    assert math.isclose(pen.total_capacity, 27.5)
    assert len(pen.applications) == 2


def test_unknown_pen_id_without_strength_is_orphaned():
    stray = obs(0, 5.0, "ghost")
    ledger = build_pens([stray] + weekly_pen([5.0], pen_id="pen_b", start_day=1))
    assert ledger.orphaned == [stray]
    assert [p.id for p in ledger.pens] == ["pen_b"]


def test_orphan_before_pen_forming_observation_is_not_counted():
    stray = obs(0, 5.0, "pen_a")
    ledger = build_pens([stray] + weekly_pen([5.0], start_day=7))
    pen = ledger.active[0]
    assert ledger.orphaned == [stray]
    assert len(pen.applications) == 1
    assert pen.start_date == T0 + timedelta(days=7)


def test_observations_without_pen_are_ignored():
    ledger = build_pens([obs(0, 5.0), obs(1, weight=100.0)])
    assert ledger.pens == []
    assert ledger.orphaned == []


def test_weight_only_observation_adds_no_application():
    observations = weekly_pen([5.0]) + [obs(3, pen_id="pen_a", weight=101.0)]
    pen = build_pens(observations).active[0]
    assert len(pen.applications) == 1


def test_pens_sorted_by_start_date_descending():
    observations = weekly_pen([5.0], pen_id="old") + weekly_pen([5.0], pen_id="new", start_day=30)
    ledger = build_pens(observations)
    assert [p.id for p in ledger.active] == ["new", "old"]


def test_applications_keep_ingestion_order():
    observations = [obs(14, 5.0, "pen_a", 5.0), obs(0, 5.0, "pen_a"), obs(7, 5.0, "pen_a")]
    pen = build_pens(observations).active[0]
    assert [a.date for a in pen.applications] == [o.timestamp for o in observations]


def test_build_pens_is_idempotent():
    observations = weekly_pen([5.0, 5.0, 5.0]) + weekly_pen([7.5] * 5, pen_id="pen_b", start_day=21)
    assert build_pens(observations) == build_pens(observations)


def test_predictions_need_two_applications():
    pen = build_pens(weekly_pen([5.0])).active[0]
    assert average_interval_days(pen) is None
    assert predict_next_application(pen) is None
    assert predict_exhaustion(pen) is None


def test_next_application_and_exhaustion():
    pen = build_pens(weekly_pen([5.0, 5.0, 5.0])).active[0]
    assert math.isclose(average_interval_days(pen), 7.0)
    assert predict_next_application(pen) == T0 + timedelta(days=21)
    # 12.5 mg left at 5 mg per application -> 2 more weekly applications
    assert predict_exhaustion(pen) == T0 + timedelta(days=35)


def test_next_application_rounds_half_up():
    observations = [obs(0, 2.5, "pen_a", 5.0), obs(2, 2.5, "pen_a"), obs(5, 2.5, "pen_a")]
    pen = build_pens(observations).active[0]
    assert math.isclose(average_interval_days(pen), 2.5)
    assert predict_next_application(pen) == T0 + timedelta(days=8)


def test_no_exhaustion_when_less_than_one_dose_left():
    pen = build_pens(weekly_pen([7.5, 7.5, 7.5])).active[0]
    # 5 mg left, average dose 7.5 mg
    assert predict_next_application(pen) is not None
    assert predict_exhaustion(pen) is None


def test_next_application_date_uses_most_recent_pen():
    observations = weekly_pen([5.0, 5.0], pen_id="a") + weekly_pen([5.0, 5.0, 5.0], pen_id="b", start_day=1)
    ledger = build_pens(observations)
    assert next_application_date(ledger) == T0 + timedelta(days=22)
    assert next_application_date(build_pens([])) is None


def test_pen_durability():
    durability = pen_durability(10.0, 5.0, cost=5500)
    assert durability.total_applications == 11
    assert durability.weeks_of_use == 11
    assert durability.days_of_use == 77
    assert math.isclose(durability.cost_per_application, 500.0)
    assert pen_durability(5.0, 7.5).cost_per_application is None


def test_durability_by_combination():
    observations = [
        obs(0, 5.0, "a", 5.0, cost=4000),
        obs(7, 5.0, "a"),
        obs(40, 5.0, "b", 5.0, cost=5000),
        obs(80, 7.5, "c", 7.5),
    ]
    combos = {(c.durability.nominal_strength, c.durability.dose_amount): c
              for c in durability_by_combination(observations)}
    assert set(combos) == {(5.0, 5.0), (7.5, 7.5)}
    assert combos[(5.0, 5.0)].count == 2
    assert math.isclose(combos[(5.0, 5.0)].average_cost, 4500.0)
    assert combos[(7.5, 7.5)].average_cost is None
