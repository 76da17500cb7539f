"""Test suite for planner_store: JSON records, key-value stores, Excel I/O."""

import json
import os
import tempfile
from datetime import datetime

import pandas as pd
import pytest
from openpyxl import Workbook, load_workbook

from task_planner import (
    DEFAULT_COST_MAP,
    DEFAULT_HOLIDAYS,
    availability,
    forecast,
    normalize_task,
    schedule_tasks,
)
from planner_store import (
    COST_MAP_KEY,
    HOLIDAYS_KEY,
    RESOURCES_KEY,
    TASKS_KEY,
    JsonFileStore,
    MemoryStore,
    PlannerStore,
    dumps_tasks,
    export_workbook,
    generate_template,
    load_cost_map,
    load_holidays,
    load_resources,
    load_tasks,
    load_workbook_data,
    loads_tasks,
    normalize_columns,
    serialize_task,
)


# ── Fixtures ────────────────────────────────────────────────────────────────


def create_test_excel(task_rows, task_header=None, resource_rows=None,
                      holiday_rows=None, cost_rows=None):
    """Create a temp Excel file with test data. Returns filepath."""
    wb = Workbook()

    ws_tasks = wb.active
    ws_tasks.title = "Tasks"
    ws_tasks.append(task_header or ["ID", "Task", "Owner", "Size", "Start Date",
                                    "Due Date", "Dependencies", "Resource ID"])
    for row in task_rows:
        ws_tasks.append(row)

    if resource_rows is not None:
        ws_res = wb.create_sheet("Resources")
        ws_res.append(["ID", "Name", "Capacity"])
        for row in resource_rows:
            ws_res.append(row)

    if holiday_rows is not None:
        ws_hol = wb.create_sheet("Holidays")
        ws_hol.append(["Date", "Name"])
        for row in holiday_rows:
            ws_hol.append(row)

    if cost_rows is not None:
        ws_cost = wb.create_sheet("Costs")
        ws_cost.append(["Size", "Cost"])
        for row in cost_rows:
            ws_cost.append(row)

    tmpdir = tempfile.mkdtemp()
    filepath = os.path.join(tmpdir, "test_data.xlsx")
    wb.save(filepath)
    return filepath


@pytest.fixture
def tasks():
    return [
        normalize_task({"id": "A", "name": "Design", "size": "M", "startDate": "2026-03-02",
                        "resourceId": "R1"}),
        normalize_task({"id": "B", "name": "Build", "owner": "Dana", "size": "L",
                        "startDate": "2026-03-02", "dueDate": "2026-03-12",
                        "dependencies": ["A"], "resourceId": "R1"}),
    ]


@pytest.fixture
def resources():
    return [{"id": "R1", "name": "Alice", "capacity": 40}]


# ── JSON Records ────────────────────────────────────────────────────────────


class TestSerialization:
    def test_optional_fields_omitted(self, tasks):
        data = serialize_task(tasks[0])
        assert "dueDate" not in data
        assert "dependencies" not in data
        assert data["resourceId"] == "R1"
        assert data["startDate"] == "2026-03-02"

    def test_full_record(self, tasks):
        data = serialize_task(tasks[1])
        assert data == {
            "id": "B", "name": "Build", "owner": "Dana", "size": "L",
            "startDate": "2026-03-02", "dueDate": "2026-03-12",
            "cost": 600, "hours": 24, "dependencies": ["A"], "resourceId": "R1",
        }

    def test_tasks_survive_json(self, tasks):
        assert loads_tasks(dumps_tasks(tasks)) == tasks

    def test_iso_timestamps_accepted(self):
        text = json.dumps([{"id": "1", "name": "Kickoff", "size": "S",
                            "startDate": "2025-01-06T00:00:00.000Z",
                            "dueDate": "2025-01-07T00:00:00.000Z"}])
        loaded = loads_tasks(text)[0]
        assert loaded["startDate"] == datetime(2025, 1, 6)
        assert loaded["dueDate"] == datetime(2025, 1, 7)
        assert loaded["owner"] == "Unassigned"
        assert loaded["dependencies"] == []
        assert loaded["resourceId"] is None


class TestPlannerStore:
    def test_empty_store_gives_defaults(self):
        tasks, resources, cost_map, holidays = PlannerStore(MemoryStore()).load_all()
        assert tasks == []
        assert resources == []
        assert cost_map == DEFAULT_COST_MAP
        assert holidays == DEFAULT_HOLIDAYS

    def test_records_are_independent_keys(self, tasks, resources):
        kv = MemoryStore()
        store = PlannerStore(kv)
        store.save_tasks(tasks)
        store.save_resources(resources)
        assert set(kv.data) == {TASKS_KEY, RESOURCES_KEY}
        assert store.load_tasks() == tasks
        assert store.load_resources() == resources

    def test_cost_map_merged_with_defaults(self):
        store = PlannerStore(MemoryStore())
        store.save_cost_map({"M": 450})
        assert store.load_cost_map() == {**DEFAULT_COST_MAP, "M": 450}

    def test_invalid_cost_map_not_saved(self):
        kv = MemoryStore()
        with pytest.raises(ValueError):
            PlannerStore(kv).save_cost_map({"M": -1})
        assert COST_MAP_KEY not in kv.data

    def test_holidays_round_trip(self):
        store = PlannerStore(MemoryStore())
        store.save_holidays(["2026-12-25", "2026-01-01"])
        assert json.loads(store.kv.get(HOLIDAYS_KEY)) == ["2026-01-01", "2026-12-25"]
        assert store.load_holidays() == [datetime(2026, 1, 1), datetime(2026, 12, 25)]

    def test_unreadable_record_falls_back(self, capsys):
        store = PlannerStore(MemoryStore({TASKS_KEY: "{not json", RESOURCES_KEY: "[]"}))
        assert store.load_tasks() == []
        assert "WARNING" in capsys.readouterr().out

    def test_bad_date_in_record_falls_back(self, capsys):
        text = json.dumps([{"id": "1", "name": "x", "size": "S", "startDate": "soon"}])
        assert PlannerStore(MemoryStore({TASKS_KEY: text})).load_tasks() == []
        assert "Could not read 'tasks'" in capsys.readouterr().out

    def test_json_file_store(self, tasks, resources, tmp_path):
        directory = str(tmp_path / "store")
        store = PlannerStore(JsonFileStore(directory))
        store.save_tasks(tasks)
        store.save_resources(resources)
        assert os.path.exists(os.path.join(directory, "tasks.json"))

        reloaded = PlannerStore(JsonFileStore(directory))
        loaded_tasks, loaded_resources, cost_map, _ = reloaded.load_all()
        assert loaded_tasks == tasks
        assert loaded_resources == resources
        assert cost_map == DEFAULT_COST_MAP

    def test_json_file_store_missing_key(self, tmp_path):
        assert JsonFileStore(str(tmp_path)).get("tasks") is None


# ── Excel Template & Loading ────────────────────────────────────────────────


class TestTemplate:
    @pytest.fixture
    def template_path(self, tmp_path):
        path = str(tmp_path / "planner_data.xlsx")
        generate_template(path)
        return path

    def test_sheets(self, template_path):
        wb = load_workbook(template_path)
        assert wb.sheetnames == ["Tasks", "Resources", "Holidays", "Costs"]

    def test_template_loads(self, template_path):
        tasks, resources, cost_map, holidays = load_workbook_data(template_path)
        assert [t["id"] for t in tasks] == ["T1", "T2", "T3", "T4", "T5"]
        by_id = {t["id"]: t for t in tasks}
        assert by_id["T1"]["startDate"] == datetime(2025, 3, 3)
        assert by_id["T1"]["dueDate"] is None
        assert by_id["T1"]["cost"] == 400
        assert by_id["T4"]["dependencies"] == ["T2", "T3"]
        assert by_id["T5"]["owner"] == "Unassigned"
        assert by_id["T5"]["resourceId"] is None
        assert [(r["id"], r["capacity"]) for r in resources] == [("resource-1", 40), ("resource-2", 32)]
        assert cost_map == DEFAULT_COST_MAP
        assert holidays == DEFAULT_HOLIDAYS

    def test_template_schedules(self, template_path):
        tasks, _, _, holidays = load_workbook_data(template_path)
        by_id = {t["id"]: t for t in schedule_tasks(tasks, holidays)}
        # T1 (M) Mon 3 Mar -> Wed 5 Mar; T2 (L) waits for T1 -> Mon 10 Mar
        assert by_id["T1"]["dueDate"] == datetime(2025, 3, 5)
        assert by_id["T2"]["dueDate"] == datetime(2025, 3, 10)
        assert by_id["T4"]["dueDate"] > by_id["T2"]["dueDate"]


class TestNormalizeColumns:
    def test_case_and_whitespace(self):
        df = pd.DataFrame(columns=["  task ", "SIZE", "Start date", "Extra"])
        missing = normalize_columns(df, {"Task", "Size", "Start Date"})
        assert missing == set()
        assert list(df.columns) == ["Task", "Size", "Start Date", "Extra"]

    def test_reports_missing(self):
        df = pd.DataFrame(columns=["Task"])
        assert normalize_columns(df, {"Task", "Size"}) == {"Size"}


class TestLoadTasks:
    def test_case_insensitive_headers(self):
        path = create_test_excel(
            [["x1", "Task X", "Dana", "m", "2026-03-02"]],
            task_header=["id", " TASK", "owner", "size", "start date"])
        tasks = load_tasks(path)
        assert len(tasks) == 1
        assert tasks[0]["size"] == "M"
        assert tasks[0]["hours"] == 16

    def test_excel_date_cells(self):
        path = create_test_excel([["x1", "Task X", "", "S", datetime(2026, 3, 2, 9, 30),
                                   datetime(2026, 3, 3), "", ""]])
        task = load_tasks(path)[0]
        assert task["startDate"] == datetime(2026, 3, 2)
        assert task["dueDate"] == datetime(2026, 3, 3)

    def test_numeric_ids_read_as_text(self):
        path = create_test_excel([[1, "First", "", "S", "2026-03-02", None, None, None],
                                  [2, "Second", "", "S", "2026-03-02", None, 1, None]])
        tasks = load_tasks(path)
        assert [t["id"] for t in tasks] == ["1", "2"]
        assert tasks[1]["dependencies"] == ["1"]

    def test_bad_row_skipped_with_warning(self, capsys):
        path = create_test_excel([
            ["ok", "Good", "", "S", "2026-03-02", None, None, None],
            ["bad", "Broken", "", "S", "someday", None, None, None],
            [None, None, None, None, None, None, None, None],
        ])
        tasks = load_tasks(path)
        assert [t["id"] for t in tasks] == ["ok"]
        out = capsys.readouterr().out
        assert "WARNING" in out
        assert "row 3" in out

    def test_missing_required_column(self, capsys):
        path = create_test_excel([["x", "Task X", "2026-03-02"]],
                                 task_header=["ID", "Task", "Start Date"])
        assert load_tasks(path) == []
        assert "missing column(s): Size" in capsys.readouterr().out

    def test_cost_map_applied(self):
        path = create_test_excel([["x", "Task X", "", "L", "2026-03-02", None, None, None]])
        assert load_tasks(path, {"L": 999})[0]["cost"] == 999


class TestLoadOtherSheets:
    def test_missing_sheets_use_defaults(self):
        path = create_test_excel([["x", "Task X", "", "S", "2026-03-02", None, None, None]])
        assert load_resources(path) == []
        assert load_holidays(path) == DEFAULT_HOLIDAYS
        assert load_cost_map(path) == DEFAULT_COST_MAP

    def test_non_positive_capacity_skipped(self, capsys):
        path = create_test_excel([], resource_rows=[["R1", "Alice", 40], ["R2", "Bob", 0]])
        assert [r["id"] for r in load_resources(path)] == ["R1"]
        assert "no positive capacity" in capsys.readouterr().out

    def test_holidays_sorted_and_deduplicated(self):
        path = create_test_excel([], holiday_rows=[["2026-12-25", "Christmas"],
                                                   ["2026-01-01", "New Year"],
                                                   ["2026-12-25", "Again"]])
        assert load_holidays(path) == [datetime(2026, 1, 1), datetime(2026, 12, 25)]

    def test_empty_holiday_sheet_means_no_holidays(self):
        path = create_test_excel([], holiday_rows=[])
        assert load_holidays(path) == []

    def test_costs_sheet_overrides(self, capsys):
        path = create_test_excel([], cost_rows=[["m", 450], ["XXL", 10]])
        cost_map = load_cost_map(path)
        assert cost_map["M"] == 450
        assert cost_map["XL"] == 800
        assert "WARNING" in capsys.readouterr().out


# ── Excel Export ────────────────────────────────────────────────────────────


class TestExportWorkbook:
    def test_export_then_load(self, tasks, resources, tmp_path):
        scheduled = schedule_tasks(tasks)
        rows = forecast(scheduled)
        avail = availability(scheduled, resources, today=datetime(2026, 3, 2))
        path = str(tmp_path / "out" / "export.xlsx")
        export_workbook(path, scheduled, resources, {"M": 450}, ["2026-04-03"], rows, avail)

        wb = load_workbook(path)
        assert wb.sheetnames == ["Tasks", "Resources", "Holidays", "Costs", "Forecast", "Availability"]
        assert wb["Availability"].max_row == 1 + 4

        loaded_tasks, loaded_resources, cost_map, holidays = load_workbook_data(path)
        assert loaded_tasks == scheduled
        assert loaded_resources == resources
        assert cost_map["M"] == 450
        assert holidays == [datetime(2026, 4, 3)]

    def test_report_sheets_optional(self, tasks, resources, tmp_path):
        path = str(tmp_path / "export.xlsx")
        export_workbook(path, tasks, resources, DEFAULT_COST_MAP)
        assert load_workbook(path).sheetnames == ["Tasks", "Resources", "Holidays", "Costs"]
