"""
Task Planner command line.
Loads tasks and resources from an Excel workbook or a JSON store directory,
estimates missing due dates, and writes the forecast, availability and Gantt
charts plus a text summary.
"""

import argparse
import io
import os
import sys
from datetime import datetime

from task_planner import (
    HORIZON_DAYS,
    PlannerError,
    Size,
    SIZE_VALUES,
    availability,
    find_dependency_cycle,
    forecast,
    norm_date,
    project_summary,
    schedule_tasks,
    task_capacity,
)
from planner_store import (
    JsonFileStore,
    PlannerStore,
    export_workbook,
    generate_template,
    load_workbook_data,
)
from planner_charts import render_availability, render_forecast, render_gantt


_DIR = os.path.dirname(os.path.abspath(__file__))
DEFAULT_INPUT = os.path.join(_DIR, "planner_data.xlsx")
CHART_CHOICES = ["all", "forecast", "availability", "gantt"]


class _TeeWriter:
    """Write to two streams simultaneously (for summary.txt capture)."""
    def __init__(self, a, b):
        self.a, self.b = a, b
    def write(self, data):
        self.a.write(data)
        self.b.write(data)
    def flush(self):
        self.a.flush()
        self.b.flush()


# ── Loading & Validation ─────────────────────────────────────────────────────

def load_input(path):
    """Load (tasks, resources, cost_map, holidays) from a workbook or a JSON store directory."""
    if os.path.isdir(path):
        return PlannerStore(JsonFileStore(path)).load_all()
    return load_workbook_data(path)


def validate_data(tasks, resources):
    """Check loaded records. Returns (errors, warnings) lists."""
    errors = []
    warnings = []

    task_ids = set()
    for t in tasks:
        label = t["name"] or t["id"] or "?"
        if not t["id"]:
            errors.append(f"Task '{label}' has no ID.")
        elif t["id"] in task_ids:
            errors.append(f"Task ID '{t['id']}' is used more than once.")
        task_ids.add(t["id"])
        if Size.parse(t["size"]) is Size.UNSPECIFIED:
            errors.append(f"Task '{label}': size '{t['size']}' not recognised. "
                          f"Valid: {', '.join(SIZE_VALUES)}")
        if t["startDate"] is None:
            errors.append(f"Task '{label}': start date is required.")
        if t["id"] in t["dependencies"]:
            errors.append(f"Task '{label}' cannot depend on itself.")

    resource_ids = {r["id"] for r in resources}
    for r in resources:
        if not r["id"]:
            errors.append(f"Resource '{r['name']}' has no ID.")

    for t in tasks:
        for dep in t["dependencies"]:
            if dep not in task_ids:
                warnings.append(f"Task '{t['name']}': dependency '{dep}' not found (ignored).")
        if t["resourceId"] and t["resourceId"] not in resource_ids:
            warnings.append(f"Task '{t['name']}': resource '{t['resourceId']}' not found "
                            f"(treated as unassigned).")
        if t["dueDate"] is not None and t["startDate"] is not None and t["dueDate"] < t["startDate"]:
            warnings.append(f"Task '{t['name']}': due date is before start date.")

    if not errors:
        cycle = find_dependency_cycle(tasks)
        if cycle:
            errors.append(f"Dependency cycle: {' -> '.join(cycle)}")

    return errors, warnings


# ── Summary ──────────────────────────────────────────────────────────────────

def print_summary(tasks, resources, forecast_rows, availability_map, capacity, today):
    """Print executive summary statistics to console."""
    summary = project_summary(tasks, resources, availability_map, today)

    print()
    print("=" * 60)
    print("  EXECUTIVE SUMMARY")
    print("=" * 60)
    print(f"  Tasks:         {summary['totalTasks']} total "
          f"({summary['tasksWithDependencies']} with dependencies, "
          f"{summary['totalDependencies']} links)")
    print(f"  Effort:        {summary['totalHours']:.4g} hours")
    print(f"  Cost:          ${summary['totalCost']:,.0f}")
    print(f"  Timeline:      {len(forecast_rows)} weeks with scheduled effort")
    if forecast_rows:
        peak = max(forecast_rows, key=lambda row: row["totalEffort"])
        print(f"  Peak week:     w/c {peak['period'].strftime('%d %b')} "
              f"({peak['totalEffort']}h, {peak['requiredResources']} resources)")

    print()
    print("  By size:")
    for size in SIZE_VALUES + ["Unspecified"]:
        count = summary["tasksBySize"].get(size)
        if count:
            print(f"    {size}: {count} task{'s' if count != 1 else ''}")

    print()
    print("  By resource:")
    for name, count in summary["tasksByResource"].items():
        hours = summary["hoursByResource"].get(name, 0)
        print(f"    {name}: {count} task{'s' if count != 1 else ''} ({hours:.4g}h)")

    print()
    print(f"  Availability ({today.strftime('%d %b')} + {HORIZON_DAYS} days):")
    if resources and not availability_map:
        print("    Availability unknown (calculation failed).")
    for r, row in zip(resources, summary["resourceUtilization"]):
        rec = availability_map.get(r["id"])
        if rec is None:
            continue
        print(f"    {row['name']}: {row['allocated']:.4g} / {rec['totalCapacity']:.0f}h "
              f"({row['utilization']}%), {row['available']:.4g}h free, "
              f"{rec['taskCount']} task{'s' if rec['taskCount'] != 1 else ''}")
        if rec["allocatedHours"] > rec["totalCapacity"]:
            over = rec["allocatedHours"] - rec["totalCapacity"]
            print(f"    WARNING: {row['name']} is over-allocated by {over:.4g}h")

    print()
    print("  Room for more work (4 weeks):")
    print("    " + ", ".join(f"{size}: {count}" for size, count in capacity.items()))

    if summary["upcomingDeadlines"]:
        print()
        print("  Upcoming deadlines:")
        for t in summary["upcomingDeadlines"]:
            print(f"    {t['dueDate'].strftime('%d %b %Y')}  {t['name']} ({t['size']})")

    print("=" * 60)
    print()


# ── Main ─────────────────────────────────────────────────────────────────────

def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Task Planner — estimate due dates and report resource forecast and availability"
    )
    parser.add_argument(
        "--template", action="store_true",
        help="Generate an Excel template with example data at --input"
    )
    parser.add_argument(
        "--input", default=DEFAULT_INPUT,
        help="Excel workbook or JSON store directory (default: planner_data.xlsx)"
    )
    parser.add_argument(
        "--outdir", default=None,
        help="Output directory for charts and summary.txt (default: output/)"
    )
    parser.add_argument(
        "--charts", default=["all"], nargs="+", choices=CHART_CHOICES,
        help="Which charts to generate (default: all)"
    )
    parser.add_argument(
        "--today", default=None,
        help="Start of the availability horizon (YYYY-MM-DD, default: today)"
    )
    parser.add_argument(
        "--export", default=None,
        help="Write the scheduled tasks and reports to this Excel workbook"
    )
    parser.add_argument(
        "--save", action="store_true",
        help="Write estimated due dates back to the JSON store (directory input only)"
    )
    args = parser.parse_args(argv)

    if args.template:
        generate_template(args.input)
        return

    if not os.path.exists(args.input):
        print(f"Error: Input not found: {args.input}")
        print("Run with --template first to create a template.")
        sys.exit(1)

    if args.today:
        try:
            today = datetime.strptime(args.today, "%Y-%m-%d")
        except ValueError:
            print(f"  ERROR: Invalid --today date '{args.today}'. Use YYYY-MM-DD format.")
            sys.exit(1)
    else:
        today = norm_date(datetime.now())

    out_dir = args.outdir or os.path.join(_DIR, "output")

    # Load
    print(f"Loading data from: {args.input}")
    tasks, resources, cost_map, holidays = load_input(args.input)
    resource_desc = ", ".join("%s (%.4gh/wk)" % (r["name"], r["capacity"]) for r in resources)
    print(f"  Resources: {resource_desc or 'none'}")
    print(f"  Tasks: {len(tasks)}")

    # Validate
    errors, warnings = validate_data(tasks, resources)
    for w in warnings:
        print(f"  WARNING: {w}")
    if errors:
        for e in errors:
            print(f"  ERROR: {e}")
        sys.exit(1)

    # Calculate
    estimated = sum(1 for t in tasks if t["dueDate"] is None)
    try:
        tasks = schedule_tasks(tasks, holidays)
    except PlannerError as e:
        print(f"  ERROR: {e}")
        sys.exit(1)
    if estimated:
        print(f"  Due dates estimated: {estimated}")

    forecast_rows = forecast(tasks)
    availability_map = availability(tasks, resources, today=today, holidays=holidays)
    capacity = task_capacity(tasks, resources)
    print(f"  Weeks covered: {len(forecast_rows)}")

    # Summary (captured for summary.txt)
    summary_capture = io.StringIO()
    _orig_stdout = sys.stdout
    sys.stdout = _TeeWriter(_orig_stdout, summary_capture)
    try:
        print_summary(tasks, resources, forecast_rows, availability_map, capacity, today)
    finally:
        sys.stdout = _orig_stdout
    summary_text = summary_capture.getvalue()

    charts = args.charts
    gen_all = "all" in charts
    output_files = []

    forecast_path = os.path.join(out_dir, "forecast.png")
    availability_path = os.path.join(out_dir, "availability.png")
    gantt_path = os.path.join(out_dir, "gantt.png")

    if (gen_all or "forecast" in charts) and forecast_rows:
        render_forecast(forecast_rows, forecast_path)
        output_files.append(forecast_path)
    if (gen_all or "availability" in charts) and availability_map:
        render_availability(availability_map, availability_path)
        output_files.append(availability_path)
    if (gen_all or "gantt" in charts) and tasks:
        render_gantt(tasks, resources, gantt_path, holidays=holidays, today=today)
        output_files.append(gantt_path)

    os.makedirs(out_dir, exist_ok=True)
    summary_path = os.path.join(out_dir, "summary.txt")
    with open(summary_path, "w", encoding="utf-8") as sf:
        sf.write(summary_text)
    output_files.append(summary_path)

    if args.export:
        export_workbook(args.export, tasks, resources, cost_map, holidays,
                        forecast_rows, availability_map)
        output_files.append(args.export)

    if args.save:
        if os.path.isdir(args.input):
            PlannerStore(JsonFileStore(args.input)).save_tasks(tasks)
            print(f"  Saved {len(tasks)} tasks to {args.input}")
        else:
            print("  NOTE: --save only applies to a JSON store directory; use --export for workbooks.")

    if output_files:
        print()
        print("  Output:")
        for f in output_files:
            print(f"    {os.path.abspath(f)}")
    print("\nDone.")


if __name__ == "__main__":
    main()
