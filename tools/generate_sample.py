import os
import sys
from datetime import datetime, timedelta, timezone

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from entry_store import EntryStore, JsonFileRepository, create_observation
from pen_ledger import build_pens, predict_exhaustion, predict_next_application
from weight_progress import compare
import tracker_app as app

# Twelve weekly entries across two pens: a 5 mg pen, then a 7.5 mg pen.
start = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)
store = EntryStore()
weight = 112.0
for week in range(12):
    when = start + timedelta(weeks=week)
    first_pen = week < 5
    pen_id = "pen_sample_5" if first_pen else "pen_sample_7.5"
    opens_pen = week in (0, 5)
    store = store.add(create_observation(
        timestamp=when,
        weight=round(weight, 1),
        dosage=5.0 if first_pen else 7.5,
        pen_id=pen_id,
        pen_strength=(5.0 if first_pen else 7.5) if opens_pen else None,
        is_pen_start=opens_pen,
        cost=4500 if opens_pen else None,
    ))
    weight -= 0.9

ledger = build_pens(store.observations)
for pen in ledger.pens:
    print(f"{pen.id}: {pen.total_used:g}/{pen.total_capacity:g} mg, "
          f"next {predict_next_application(pen)}, runs out {predict_exhaustion(pen)}")

result = compare(store.observations)
if result is not None:
    print(f"After {result.weeks_elapsed} weeks: {result.actual_loss_percent:.1f}% vs "
          f"{result.expected_loss_percent:.1f}% expected ({result.performance.value})")

snapshot_path = os.path.join("outputs", "sample_entries.json")
store.save_to(JsonFileRepository(snapshot_path))
print(f"Wrote sample snapshot to: {snapshot_path}")

summary = {
    "Title": "Sample run",
    "GeneratedAtUTC": datetime.now(timezone.utc).isoformat(),
    "Entries": len(store),
}
csv_content = app.format_csv(app.observation_rows(store.observations), summary=summary)
out_path = app.save_csv_to_disk(csv_content, filename="sample_entries.csv")
print(f"Wrote sample CSV to: {out_path}")
print("\nCSV head:\n")
print('\n'.join(csv_content.splitlines()[:20]))
