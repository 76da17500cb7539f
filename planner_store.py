"""
Task Planner storage: JSON records over a key-value store, plus Excel I/O.

The planner keeps three independent records (tasks, resources, cost-per-size
configuration) and an optional holiday list. Each is stored as JSON text under
its own key; the store itself is opaque (a dict in memory or a directory of
.json files).
"""

import json
import os

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill, Alignment, Border, Side
from openpyxl.worksheet.datavalidation import DataValidation
from openpyxl.formatting.rule import CellIsRule

from task_planner import (
    DEFAULT_COST_MAP,
    DEFAULT_HOLIDAYS,
    SIZE_VALUES,
    clean_str,
    is_blank,
    normalize_holidays,
    normalize_resource,
    normalize_task,
    parse_date,
    validate_cost_map,
)


TASKS_KEY = "tasks"
RESOURCES_KEY = "resources"
COST_MAP_KEY = "costMap"
HOLIDAYS_KEY = "holidays"

DATE_FORMAT = "%Y-%m-%d"

TASK_COLUMNS = ["ID", "Task", "Owner", "Size", "Start Date", "Due Date",
                "Cost", "Hours", "Dependencies", "Resource ID"]
RESOURCE_COLUMNS = ["ID", "Name", "Capacity"]
HOLIDAY_COLUMNS = ["Date", "Name"]
COST_COLUMNS = ["Size", "Cost"]


# ── Key-Value Stores ─────────────────────────────────────────────────────────

class MemoryStore:
    """Dict-backed store; useful for tests and embedding."""

    def __init__(self, data=None):
        self.data = dict(data or {})

    def get(self, key):
        return self.data.get(key)

    def set(self, key, text):
        self.data[key] = text


class JsonFileStore:
    """One <key>.json file per key inside a directory."""

    def __init__(self, directory):
        self.directory = directory

    def _path(self, key):
        return os.path.join(self.directory, f"{key}.json")

    def get(self, key):
        path = self._path(key)
        if not os.path.exists(path):
            return None
        with open(path, encoding="utf-8") as f:
            return f.read()

    def set(self, key, text):
        os.makedirs(self.directory, exist_ok=True)
        with open(self._path(key), "w", encoding="utf-8") as f:
            f.write(text)


# ── Serialisation ────────────────────────────────────────────────────────────

def _format_date(d):
    return d.strftime(DATE_FORMAT) if d is not None else None


def serialize_task(task):
    """Canonical task -> JSON-compatible dict. Absent optional fields are omitted."""
    data = {
        "id": task["id"],
        "name": task["name"],
        "owner": task["owner"],
        "size": task["size"],
        "startDate": _format_date(task["startDate"]),
        "cost": task["cost"],
        "hours": task["hours"],
    }
    if task.get("dueDate") is not None:
        data["dueDate"] = _format_date(task["dueDate"])
    if task.get("dependencies"):
        data["dependencies"] = list(task["dependencies"])
    if task.get("resourceId"):
        data["resourceId"] = task["resourceId"]
    return data


def deserialize_task(data):
    return normalize_task(data)


def serialize_resource(resource):
    return {"id": resource["id"], "name": resource["name"], "capacity": resource["capacity"]}


def deserialize_resource(data):
    return normalize_resource(data)


def dumps_tasks(tasks):
    return json.dumps([serialize_task(t) for t in tasks], indent=2)


def loads_tasks(text):
    return [deserialize_task(d) for d in json.loads(text)]


def dumps_resources(resources):
    return json.dumps([serialize_resource(r) for r in resources], indent=2)


def loads_resources(text):
    return [deserialize_resource(d) for d in json.loads(text)]


class PlannerStore:
    """Reads and writes the planner records through a key-value store."""

    def __init__(self, kv):
        self.kv = kv

    def _load(self, key, loader, default):
        text = self.kv.get(key)
        if text is None:
            return default
        try:
            return loader(text)
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            print(f"  WARNING: Could not read '{key}' record: {e}")
            return default

    def load_tasks(self):
        return self._load(TASKS_KEY, loads_tasks, [])

    def save_tasks(self, tasks):
        self.kv.set(TASKS_KEY, dumps_tasks(tasks))

    def load_resources(self):
        return self._load(RESOURCES_KEY, loads_resources, [])

    def save_resources(self, resources):
        self.kv.set(RESOURCES_KEY, dumps_resources(resources))

    def load_cost_map(self):
        return self._load(COST_MAP_KEY,
                          lambda text: {**DEFAULT_COST_MAP, **validate_cost_map(json.loads(text))},
                          dict(DEFAULT_COST_MAP))

    def save_cost_map(self, cost_map):
        self.kv.set(COST_MAP_KEY, json.dumps(validate_cost_map(cost_map), indent=2))

    def load_holidays(self):
        return self._load(HOLIDAYS_KEY,
                          lambda text: sorted(normalize_holidays(json.loads(text))),
                          list(DEFAULT_HOLIDAYS))

    def save_holidays(self, holidays):
        self.kv.set(HOLIDAYS_KEY, json.dumps(
            [_format_date(h) for h in sorted(normalize_holidays(holidays))], indent=2))

    def load_all(self):
        """Return (tasks, resources, cost_map, holidays)."""
        return self.load_tasks(), self.load_resources(), self.load_cost_map(), self.load_holidays()


# ── Excel Template ───────────────────────────────────────────────────────────

_HEADER_FONT = Font(bold=True, color="FFFFFF", size=11)
_HEADER_FILL = PatternFill(start_color="2E3B4E", end_color="2E3B4E", fill_type="solid")
_THIN_BORDER = Border(
    left=Side(style="thin"), right=Side(style="thin"),
    top=Side(style="thin"), bottom=Side(style="thin"),
)


def _style_sheet(ws, widths):
    for cell in ws[1]:
        cell.font = _HEADER_FONT
        cell.fill = _HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center")
        cell.border = _THIN_BORDER
    for row in ws.iter_rows(min_row=2, max_row=ws.max_row):
        for cell in row:
            cell.border = _THIN_BORDER
            cell.alignment = Alignment(vertical="center")
    for col, width in widths.items():
        ws.column_dimensions[col].width = width
    ws.freeze_panes = "A2"


def _write_tasks_sheet(ws, rows):
    ws.append(TASK_COLUMNS)
    for row in rows:
        ws.append(row)
    _style_sheet(ws, {"A": 16, "B": 32, "C": 16, "D": 8, "E": 13, "F": 13,
                      "G": 10, "H": 8, "I": 22, "J": 18})


def generate_template(output_path):
    """Create an Excel template with Tasks, Resources, Holidays and Costs sheets,
    example data, and dropdowns for size and resource."""
    wb = Workbook()

    # ── Sheet 1: Tasks ──
    ws_tasks = wb.active
    ws_tasks.title = "Tasks"
    example_tasks = [
        ["T1", "Requirements Gathering", "Dana", "M", "2025-03-03", "", "", "", "", "resource-1"],
        ["T2", "API Design", "Dana", "L", "2025-03-03", "", "", "", "T1", "resource-1"],
        ["T3", "Data Model", "Sam", "S", "2025-03-05", "", "", "", "T1", "resource-2"],
        ["T4", "Integration Tests", "Sam", "XL", "2025-03-10", "", "", "", "T2, T3", "resource-2"],
        ["T5", "Release Notes", "", "XS", "2025-03-24", "", "", "", "", ""],
    ]
    _write_tasks_sheet(ws_tasks, example_tasks)

    dv_size = DataValidation(type="list", formula1=f'"{",".join(SIZE_VALUES)}"', allow_blank=False)
    dv_size.error = f"Please select one of {', '.join(SIZE_VALUES)}"
    dv_size.errorTitle = "Invalid Size"
    ws_tasks.add_data_validation(dv_size)
    dv_size.add("D2:D500")

    dv_resource = DataValidation(type="list", formula1="Resources!$A$2:$A$100", allow_blank=True)
    dv_resource.error = "Pick a resource ID from the Resources sheet"
    dv_resource.errorTitle = "Unknown Resource"
    ws_tasks.add_data_validation(dv_resource)
    dv_resource.add("J2:J500")

    ws_tasks.conditional_formatting.add(
        "D2:D500",
        CellIsRule(operator="equal", formula=['"XL"'],
                   font=Font(bold=True, color="C62828"), fill=PatternFill(bgColor="FFCDD2")))

    # ── Sheet 2: Resources ──
    ws_res = wb.create_sheet("Resources")
    ws_res.append(RESOURCE_COLUMNS)
    ws_res.append(["resource-1", "Dana", 40])
    ws_res.append(["resource-2", "Sam", 32])
    _style_sheet(ws_res, {"A": 18, "B": 24, "C": 12})

    dv_capacity = DataValidation(type="decimal", operator="greaterThan", formula1="0")
    dv_capacity.error = "Capacity must be greater than 0 (hours per week)"
    dv_capacity.errorTitle = "Invalid Capacity"
    ws_res.add_data_validation(dv_capacity)
    dv_capacity.add("C2:C100")

    # ── Sheet 3: Holidays ──
    ws_hol = wb.create_sheet("Holidays")
    ws_hol.append(HOLIDAY_COLUMNS)
    for h in DEFAULT_HOLIDAYS:
        ws_hol.append([h.strftime(DATE_FORMAT), ""])
    _style_sheet(ws_hol, {"A": 14, "B": 30})

    # ── Sheet 4: Costs ──
    ws_cost = wb.create_sheet("Costs")
    ws_cost.append(COST_COLUMNS)
    for size, cost in DEFAULT_COST_MAP.items():
        ws_cost.append([size, cost])
    _style_sheet(ws_cost, {"A": 10, "B": 12})

    d = os.path.dirname(output_path)
    if d:
        os.makedirs(d, exist_ok=True)
    wb.save(output_path)
    print(f"Template created: {output_path}")
    print("  - Sheets: Tasks, Resources, Holidays, Costs")
    print("  - Leave 'Due Date' blank to have it estimated from size and dependencies")
    print("  - Dependencies: comma-separated task IDs")


# ── Excel Loading ────────────────────────────────────────────────────────────

def normalize_columns(df, expected):
    """Rename columns to their canonical spelling (case/whitespace-insensitive).
    Returns the set of expected columns that are still missing."""
    lookup = {c.lower(): c for c in expected}
    renamed = {}
    for col in df.columns:
        key = str(col).strip().lower()
        if key in lookup:
            renamed[col] = lookup[key]
        else:
            renamed[col] = str(col).strip()
    df.rename(columns=renamed, inplace=True)
    return set(expected) - set(df.columns)


def _read_sheet(filepath, sheet_name, required, optional=()):
    """Read a sheet into a DataFrame, or None when it is missing or malformed."""
    try:
        df = pd.read_excel(filepath, sheet_name=sheet_name)
    except ValueError:
        return None
    if df.empty:
        return df
    missing = normalize_columns(df, set(required) | set(optional)) & set(required)
    if missing:
        print(f"  ERROR: {sheet_name} sheet is missing column(s): {', '.join(sorted(missing))}. "
              f"Found: {', '.join(str(c) for c in df.columns)}")
        return None
    return df


def _cell(row, column):
    return row[column] if column in row.index else None


def load_tasks(filepath, cost_map=None):
    """Load tasks from the 'Tasks' sheet."""
    df = _read_sheet(filepath, "Tasks", {"Task", "Size", "Start Date"},
                     set(TASK_COLUMNS))
    if df is None or df.empty:
        return []
    tasks = []
    for idx, row in df.iterrows():
        row_num = idx + 2
        name = clean_str(_cell(row, "Task"))
        if not name:
            continue  # skip blank rows
        try:
            tasks.append(normalize_task({
                "id": _cell(row, "ID"),
                "name": name,
                "owner": _cell(row, "Owner"),
                "size": _cell(row, "Size"),
                "startDate": parse_date(_cell(row, "Start Date"), context=f"Tasks row {row_num}, 'Start Date'"),
                "dueDate": _cell(row, "Due Date"),
                "cost": _cell(row, "Cost"),
                "dependencies": clean_str(_cell(row, "Dependencies")),
                "resourceId": _cell(row, "Resource ID"),
            }, cost_map))
        except ValueError as e:
            print(f"  WARNING: Could not parse Tasks row {row_num}: {e}")
    return tasks


def load_resources(filepath):
    """Load resources from the 'Resources' sheet."""
    df = _read_sheet(filepath, "Resources", {"Name", "Capacity"}, {"ID"})
    if df is None or df.empty:
        return []
    resources = []
    for idx, row in df.iterrows():
        row_num = idx + 2
        name = clean_str(_cell(row, "Name"))
        if not name:
            continue
        try:
            resource = normalize_resource({"id": _cell(row, "ID"), "name": name,
                                           "capacity": _cell(row, "Capacity")})
        except ValueError as e:
            print(f"  WARNING: Resources row {row_num}: {e}, skipping.")
            continue
        if resource["capacity"] is None or resource["capacity"] <= 0:
            print(f"  WARNING: Resources row {row_num}: '{name}' has no positive capacity, skipping.")
            continue
        resources.append(resource)
    return resources


def load_holidays(filepath):
    """Load holidays. Returns a sorted list, or DEFAULT_HOLIDAYS when the sheet is missing."""
    df = _read_sheet(filepath, "Holidays", {"Date"}, {"Name"})
    if df is None:
        return list(DEFAULT_HOLIDAYS)
    holidays = set()
    for idx, row in df.iterrows():
        if is_blank(row["Date"]):
            continue
        try:
            holidays.add(parse_date(row["Date"], context=f"Holidays row {idx + 2}, 'Date'"))
        except ValueError as e:
            print(f"  WARNING: Could not parse holiday row {idx + 2}: {e}")
    return sorted(holidays)


def load_cost_map(filepath):
    """Load per-size costs from the 'Costs' sheet, on top of the defaults."""
    cost_map = dict(DEFAULT_COST_MAP)
    df = _read_sheet(filepath, "Costs", {"Size", "Cost"})
    if df is None or df.empty:
        return cost_map
    for idx, row in df.iterrows():
        size = clean_str(row["Size"])
        if not size:
            continue
        try:
            cost_map.update(validate_cost_map({size: row["Cost"]}))
        except ValueError as e:
            print(f"  WARNING: Costs row {idx + 2}: {e}")
    return cost_map


def load_workbook_data(filepath):
    """Load all records from a workbook. Returns (tasks, resources, cost_map, holidays)."""
    cost_map = load_cost_map(filepath)
    tasks = load_tasks(filepath, cost_map)
    resources = load_resources(filepath)
    holidays = load_holidays(filepath)
    print(f"  Holidays: {len(holidays)}")
    return tasks, resources, cost_map, holidays


# ── Excel Export ─────────────────────────────────────────────────────────────

def export_workbook(output_path, tasks, resources, cost_map, holidays=None,
                    forecast_rows=None, availability_map=None):
    """Write the (scheduled) records back to a workbook, with optional report sheets."""
    wb = Workbook()

    ws_tasks = wb.active
    ws_tasks.title = "Tasks"
    _write_tasks_sheet(ws_tasks, [
        [t["id"], t["name"], t["owner"], t["size"], _format_date(t["startDate"]),
         _format_date(t.get("dueDate")), t["cost"], t["hours"],
         ", ".join(t.get("dependencies") or []), t.get("resourceId") or ""]
        for t in tasks
    ])

    ws_res = wb.create_sheet("Resources")
    ws_res.append(RESOURCE_COLUMNS)
    for r in resources:
        ws_res.append([r["id"], r["name"], r["capacity"]])
    _style_sheet(ws_res, {"A": 18, "B": 24, "C": 12})

    ws_hol = wb.create_sheet("Holidays")
    ws_hol.append(HOLIDAY_COLUMNS)
    for h in sorted(normalize_holidays(holidays)):
        ws_hol.append([_format_date(h), ""])
    _style_sheet(ws_hol, {"A": 14, "B": 30})

    ws_cost = wb.create_sheet("Costs")
    ws_cost.append(COST_COLUMNS)
    for size in SIZE_VALUES:
        ws_cost.append([size, cost_map.get(size, DEFAULT_COST_MAP[size])])
    _style_sheet(ws_cost, {"A": 10, "B": 12})

    if forecast_rows:
        ws_fc = wb.create_sheet("Forecast")
        ws_fc.append(["Week Of", "Total Effort (h)", "Required Resources"])
        for row in forecast_rows:
            ws_fc.append([_format_date(row["period"]), row["totalEffort"], row["requiredResources"]])
        _style_sheet(ws_fc, {"A": 14, "B": 16, "C": 20})

    if availability_map:
        ws_av = wb.create_sheet("Availability")
        ws_av.append(["Resource ID", "Name", "Week", "Capacity (h)", "Allocated (h)",
                      "Available (h)", "Utilisation %"])
        for rid, rec in availability_map.items():
            for week in rec["weeklyBreakdown"]:
                ws_av.append([rid, rec.get("name", ""), week["week"], week["capacity"],
                              round(week["allocated"], 2), round(week["available"], 2),
                              week["utilization"]])
        _style_sheet(ws_av, {"A": 18, "B": 20, "C": 10, "D": 13, "E": 14, "F": 14, "G": 14})

    d = os.path.dirname(output_path)
    if d:
        os.makedirs(d, exist_ok=True)
    wb.save(output_path)
    print(f"  Workbook exported: {output_path}")
