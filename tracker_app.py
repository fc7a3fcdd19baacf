"""Streamlit front-end for the pen and weight tracker.

The page only collects input and renders results; every derived number comes
from `pen_ledger`, `dose_concentration` and `weight_progress`. Entries are
validated by `entry_store` before they are admitted.
"""
# Standard library imports first
import csv
import json
import logging
import os
import re
from datetime import date, datetime, time, timezone
from io import StringIO
from typing import Iterable, List, Optional

# Third-party imports
import pandas as pd
import streamlit as st

# Local imports
from dose_concentration import ConcentrationSeries, current_concentration, doses_from_observations
from entry_store import (
    MAX_DOSE_MG,
    EntryStore,
    InvalidObservationError,
    JsonFileRepository,
    Observation,
    create_observation,
    dumps_snapshot,
    loads_snapshot,
    new_pen_id,
)
from pen_ledger import (
    build_pens,
    durability_by_combination,
    next_application_date,
    predict_exhaustion,
    predict_next_application,
)
from reference_curves import reference_trajectory
from tracker_config import TrackerSettings, setup_logging
from weight_progress import (
    GoalSettings,
    Performance,
    compare,
    goal_projection,
    progress_summary,
    weight_observations,
    weight_trend,
)

logger = logging.getLogger(__name__)

PERFORMANCE_MESSAGES = {
    Performance.EXCELLENT: "Excellent! You are losing weight faster than in the study.",
    Performance.GOOD: "Very good! Your results are better than the study average.",
    Performance.AVERAGE: "Your results match the SURMOUNT-1 study.",
    Performance.BELOW: "Your results are below the SURMOUNT-1 study average.",
}

PEN_STRENGTHS = (2.5, 5.0, 7.5, 10.0, 12.5, 15.0)


def observation_rows(observations: Iterable[Observation]) -> List[dict]:
    """Flatten observations into CSV/table rows, newest first."""
    rows = []
    for o in sorted(observations, key=lambda o: o.timestamp, reverse=True):
        rows.append({
            "id": o.id,
            "date": o.timestamp.strftime("%Y-%m-%d %H:%M"),
            "weight_kg": o.weight if o.weight is not None else "",
            "dose_mg": o.dose_amount if o.dose_amount is not None else "",
            "pen_id": o.pen_id or "",
            "pen_strength_mg": o.pen_nominal_strength if o.pen_nominal_strength is not None else "",
            "pen_cost": o.cost if o.cost is not None else "",
            "notes": o.note or "",
        })
    return rows


def format_csv(rows: List[dict], summary: Optional[dict] = None) -> str:
    """Return CSV string of rows with optional summary header lines.

    If summary is provided, key,value pairs are written at the top as comment-style lines,
    followed by a blank line and then the regular CSV table.
    """
    if not rows and not summary:
        return ""

    output = StringIO()
    if summary:
        for k, v in summary.items():
            output.write(f"# {k}: {v}\n")
        output.write("\n")

    if rows:
        writer = csv.DictWriter(output, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        writer.writerows(rows)

    return output.getvalue()


def coerce_arrow_friendly_dataframe(rows: List[dict]) -> "pd.DataFrame":
    """Return a DataFrame with column types coerced for Arrow compatibility.

    Optional numeric fields come through as empty strings mixed with floats,
    which Arrow refuses. Empty strings become NA, numeric-like columns become
    numeric dtypes and the rest become pandas' nullable string dtype.
    """
    if not rows:
        return pd.DataFrame()

    df = pd.DataFrame(rows)
    for col in df.columns:
        if df[col].dtype != object:
            continue

        series = df[col].replace("", pd.NA)
        non_na = series.dropna()
        if not non_na.empty:
            numeric_coerced = pd.to_numeric(non_na, errors="coerce")
            if not numeric_coerced.isna().any():
                df[col] = pd.to_numeric(series, errors="coerce")
                continue

        df[col] = series.astype("string")

    return df


def save_csv_to_disk(csv_content: str, filename: Optional[str] = None, directory: str = "outputs") -> str:
    """Save CSV content under `directory` and return the file path."""
    os.makedirs(directory, exist_ok=True)
    if not filename:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        filename = f"tracker_entries_{timestamp}.csv"
    path = os.path.join(directory, filename)
    with open(path, "w", encoding="utf-8", newline="") as fh:
        fh.write(csv_content)
    return path


def slugify(value: str) -> str:
    """Simple filename-safe slugifier: keep alphanum and underscores."""
    value = value.strip().lower()
    value = re.sub(r"[^a-z0-9 _-]", "", value)
    value = re.sub(r"[\s-]+", "_", value)
    return value


def export_filename(name: str, extension: str, when: Optional[datetime] = None) -> str:
    """Sanitized download name with a UTC date stamp, e.g. `my_export_20240101.csv`."""
    raw = (name or "").strip()
    if raw.lower().endswith(extension):
        raw = raw[:-len(extension)]
    base = slugify(raw) or "tracker_entries"
    stamp = (when or datetime.now(timezone.utc)).strftime("%Y%m%d")
    return f"{base}_{stamp}{extension}"


def goal_path(data_path: str) -> str:
    base, _ = os.path.splitext(data_path)
    return f"{base}_goal.json"


def load_goal(path: str) -> Optional[GoalSettings]:
    if not os.path.exists(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
        return GoalSettings(target_weight=float(data["targetWeight"]), start_weight=float(data["startWeight"]))
    except (ValueError, KeyError, TypeError) as e:
        logger.warning("Ignoring unreadable goal file %s: %s", path, e)
        return None


def save_goal(path: str, goal: GoalSettings) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        json.dump({"targetWeight": goal.target_weight, "startWeight": goal.start_weight}, fh, indent=2)


def fmt_date(value: Optional[datetime]) -> str:
    return value.strftime("%d.%m.%Y") if value else "-"


# =============================================================================
# PAGE SECTIONS
# =============================================================================

def entry_form(store: EntryStore) -> Optional[Observation]:
    """Render the new-entry form and return a validated observation on submit."""
    active_pens = build_pens(store.observations).active
    with st.form("entry_form", clear_on_submit=True):
        st.markdown("### New entry")
        c1, c2 = st.columns(2)
        with c1:
            entry_date = st.date_input("Date", value=date.today())
            weight = st.text_input("Weight (kg)")
        with c2:
            entry_time = st.time_input("Time", value=time(8, 0))
            dosage = st.text_input(f"Dose (mg, max {MAX_DOSE_MG:g})")

        new_pen = st.checkbox("Start a new pen")
        pen_options = ["(none)"] + [f"{p.id} ({p.remaining:.1f} mg left)" for p in active_pens]
        selected = st.selectbox("Pen", options=pen_options)
        pen_strength = st.selectbox("New pen strength (mg)", options=PEN_STRENGTHS)
        cost = st.text_input("Pen cost (new pens only)")
        notes = st.text_input("Notes")
        submitted = st.form_submit_button("Add entry")

    if not submitted:
        return None

    timestamp = datetime.combine(entry_date, entry_time)
    pen_id = None
    if new_pen:
        pen_id = new_pen_id(pen_strength, timestamp)
    elif selected != "(none)":
        pen_id = active_pens[pen_options.index(selected) - 1].id

    try:
        observation = create_observation(
            timestamp=timestamp,
            weight=weight or None,
            dosage=dosage or None,
            pen_id=pen_id,
            pen_strength=pen_strength if new_pen else None,
            is_pen_start=new_pen,
            cost=(cost or None) if new_pen else None,
            note=notes,
        )
    except InvalidObservationError as e:
        st.error(str(e))
        return None

    if pen_id and not new_pen and observation.dose_amount is not None:
        pen = next(p for p in active_pens if p.id == pen_id)
        if observation.dose_amount > pen.remaining:
            st.warning(f"Dose {observation.dose_amount:g} mg exceeds the pen's remaining content "
                       f"({pen.remaining:.1f} mg). The pen will be marked finished.")
    return observation


def goal_section(store: EntryStore, goal: Optional[GoalSettings]) -> Optional[GoalSettings]:
    st.markdown("### Goal")
    default = goal.target_weight if goal else 0.0
    target = st.number_input("Target weight (kg)", min_value=0.0, value=float(default), step=0.5)
    if st.button("Set goal") and target > 0:
        return GoalSettings.for_observations(target, store.observations)
    return None


def stats_section(store: EntryStore, goal: Optional[GoalSettings]) -> None:
    summary = progress_summary(store.observations, goal)
    if summary is None:
        st.info("No weight entries yet.")
        return
    trend = weight_trend(store.observations)
    c1, c2, c3, c4 = st.columns(4)
    delta = None
    if trend is not None:
        sign = {"down": "-", "up": "+", "stable": ""}[trend.direction]
        delta = f"{sign}{trend.amount:.1f} kg"
    c1.metric("Current weight", f"{summary.current_weight:.1f} kg", delta=delta, delta_color="inverse")
    c2.metric("Total loss", f"{summary.total_loss:.1f} kg")
    c3.metric("Total pen cost", f"{summary.total_cost:,.0f}")
    c4.metric("Next application", fmt_date(next_application_date(build_pens(store.observations))))
    st.progress(max(0.0, summary.progress_percent) / 100, text=f"Goal progress {summary.progress_percent:.0f}%")

    projection = goal_projection(store.observations, goal)
    if projection is not None:
        if projection.already_reached:
            st.success("Goal weight reached.")
        elif projection.is_long_term:
            st.info(f"Goal is beyond the reference curve; at least {projection.target_week} weeks "
                    f"(after {fmt_date(projection.target_date)}).")
        else:
            st.info(f"Expected to reach the goal around {fmt_date(projection.target_date)} "
                    f"(week {projection.target_week}, ~{projection.weekly_loss:.2f} kg/week).")


def pens_section(store: EntryStore) -> None:
    ledger = build_pens(store.observations)
    if ledger.orphaned:
        st.warning(f"{len(ledger.orphaned)} entries reference a pen that was never started; "
                   "they are not counted towards any pen.")
    if not ledger.pens:
        st.info("No pens yet. Start a new pen in the entry form.")
        return

    st.markdown(f"### Active pens ({len(ledger.active)})")
    for pen in ledger.active:
        with st.container(border=True):
            st.markdown(f"**{pen.nominal_strength:g} mg pen** since {fmt_date(pen.start_date)}"
                        + (" - running low!" if pen.is_running_low else ""))
            st.progress(min(pen.usage_percent, 100.0) / 100,
                        text=f"{pen.total_used:.1f} / {pen.total_capacity:g} mg used, {pen.remaining:.1f} mg left")
            c1, c2, c3 = st.columns(3)
            c1.metric("Last application", fmt_date(pen.last_application_date))
            c2.metric("Next application", fmt_date(predict_next_application(pen)))
            c3.metric("Pen runs out", fmt_date(predict_exhaustion(pen)))
            if pen.cost_per_application:
                st.caption(f"Pen cost {pen.cost:,.0f}, {pen.cost_per_application:,.0f} per application")

    if ledger.finished:
        st.markdown(f"### Finished pens ({len(ledger.finished)})")
        st.dataframe(coerce_arrow_friendly_dataframe([
            {"pen": p.id, "strength_mg": p.nominal_strength, "started": fmt_date(p.start_date),
             "applications": len(p.applications), "used_mg": round(p.total_used, 2)}
            for p in ledger.finished
        ]))

    combos = durability_by_combination(store.observations)
    if combos:
        st.markdown("### Pen durability")
        st.dataframe(coerce_arrow_friendly_dataframe([
            {"strength_mg": c.durability.nominal_strength, "dose_mg": c.durability.dose_amount,
             "applications": c.durability.total_applications, "weeks": c.durability.weeks_of_use,
             "pens": c.count,
             "cost_per_application": round(c.durability.cost_per_application, 2) if c.durability.cost_per_application else ""}
            for c in combos
        ]))


def concentration_section(store: EntryStore, window_days: int) -> None:
    doses = doses_from_observations(store.observations)
    if not doses:
        st.info("Log a dose to see the concentration estimate.")
        return
    st.metric("Current concentration (estimate)", f"{current_concentration(doses):.2f} mg")
    series = ConcentrationSeries(doses, display_window_days=window_days)
    df = pd.DataFrame([{"date": p.date, "concentration_mg": p.concentration} for p in series])
    st.line_chart(df, x="date", y="concentration_mg")
    st.caption("Single-compartment model with a 5 day half-life. Not medical advice.")


def comparison_section(store: EntryStore) -> None:
    result = compare(store.observations)
    if result is None:
        st.info("Add at least 2 weight entries to compare with the SURMOUNT-1 study.")
        return
    st.markdown(f"**{PERFORMANCE_MESSAGES[result.performance]}**")
    c1, c2 = st.columns(2)
    with c1:
        st.markdown("#### Your results")
        st.write(f"Period: {result.weeks_elapsed} weeks")
        st.write(f"Loss: {result.actual_loss_kg:.1f} kg ({result.actual_loss_percent:.1f}%)")
    with c2:
        st.markdown(f"#### Study at week {result.reference_point.week}")
        st.write(f"Expected weight: {result.expected_weight:.1f} kg")
        st.write(f"Expected loss: {result.expected_loss_kg:.1f} kg ({result.expected_loss_percent:.1f}%)")
    st.write(f"Difference: {result.loss_difference_kg:+.1f} kg ({result.percent_difference:+.1f} percentage points)")

    weighed = weight_observations(store.observations)
    if st.checkbox("Show reference curve", value=False):
        actual = pd.DataFrame({"date": [o.timestamp for o in weighed], "actual_kg": [o.weight for o in weighed]})
        reference = pd.DataFrame([
            {"date": p.date, "reference_kg": p.weight}
            for p in reference_trajectory(weighed[0].weight, weighed[0].timestamp)
        ])
        merged = pd.merge(actual, reference, on="date", how="outer").sort_values("date")
        st.line_chart(merged, x="date", y=["actual_kg", "reference_kg"])


def entries_section(store: EntryStore, settings: TrackerSettings) -> Optional[str]:
    """Render the history table; return the id of an entry to delete, if any."""
    st.markdown(f"### History ({len(store)})")
    rows = observation_rows(store.observations)
    if not rows:
        st.info("No entries yet.")
        return None
    st.dataframe(coerce_arrow_friendly_dataframe(rows))

    labels = {r["id"]: f"{r['date']} {r['weight_kg']} kg {r['dose_mg']} mg" for r in rows}
    to_delete = st.selectbox("Entry", options=list(labels), format_func=labels.get)
    delete = st.button("Delete entry")

    summary = {
        "Title": "Pen and weight tracker export",
        "GeneratedAtUTC": datetime.now(timezone.utc).isoformat(),
        "Entries": len(rows),
    }
    csv_content = format_csv(rows, summary=summary)
    download_name = st.text_input("Export file name", value="tracker_entries",
                                  help="Sanitized; the extension is added for you")
    csv_name = export_filename(download_name, ".csv")
    st.download_button("Download CSV", data=csv_content, file_name=csv_name, mime="text/csv")
    st.download_button("Export JSON snapshot", data=dumps_snapshot(store.observations),
                       file_name=export_filename(download_name, ".json"), mime="application/json")
    if st.button("Save CSV to server"):
        try:
            saved = save_csv_to_disk(csv_content, filename=csv_name, directory=settings.outputs_dir)
            st.success(f"Saved CSV to {saved}")
        except OSError as e:
            st.error(f"Error saving CSV: {e}")
    return to_delete if delete else None


def main():
    settings = TrackerSettings.from_env()
    setup_logging(settings.log_level)
    st.set_page_config(page_title="Pen & Weight Tracker", initial_sidebar_state="expanded")
    st.title("Pen & Weight Tracker")
    st.caption("Weight, dose and pen log with a toy concentration model. Not medical advice.")

    repository = JsonFileRepository(settings.data_path)
    if "store" not in st.session_state:
        try:
            st.session_state.store = EntryStore.from_repository(repository)
        except InvalidObservationError as e:
            st.error(f"Error loading entries: {e}")
            st.session_state.store = EntryStore()
        st.session_state.goal = load_goal(goal_path(settings.data_path))
    store: EntryStore = st.session_state.store

    with st.sidebar:
        observation = entry_form(store)
        if observation is not None:
            st.session_state.store = store.add(observation)
            st.session_state.store.save_to(repository)
            st.rerun()

        new_goal = goal_section(store, st.session_state.goal)
        if new_goal is not None:
            st.session_state.goal = new_goal
            save_goal(goal_path(settings.data_path), new_goal)
            st.rerun()

        st.markdown("### Import")
        uploaded = st.file_uploader("JSON snapshot", type=["json"])
        if uploaded is not None and st.button("Replace entries with import"):
            try:
                st.session_state.store = EntryStore(loads_snapshot(uploaded.getvalue().decode("utf-8")))
                st.session_state.store.save_to(repository)
                st.rerun()
            except InvalidObservationError as e:
                st.error(f"Import error: {e}")

    overview, pens, concentration, comparison, history = st.tabs(
        ["Overview", "Pens", "Concentration", "Study comparison", "History"])
    with overview:
        stats_section(store, st.session_state.goal)
    with pens:
        pens_section(store)
    with concentration:
        concentration_section(store, settings.display_window_days)
    with comparison:
        comparison_section(store)
    with history:
        deleted = entries_section(store, settings)
        if deleted:
            st.session_state.store = store.remove(deleted)
            st.session_state.store.save_to(repository)
            logger.info("Deleted entry %s", deleted)
            st.rerun()


if __name__ == "__main__":
    main()
