"""
Task Planning Engine
Schedules T-shirt-sized tasks around weekends and holidays, follows dependency
chains, and aggregates weekly effort and per-resource availability.

Features:
  - Working-day calendar with configurable holidays
  - Size-based effort/cost model (XS-XL) with per-task overrides
  - Due date estimation seeded from the latest dependency
  - Dependency cycle detection and referential-integrity checks on delete
  - Weekly resource forecast and 3-week availability horizon
"""

import math
import time
from datetime import date, datetime, timedelta
from enum import Enum

import pandas as pd


# ── Constants ────────────────────────────────────────────────────────────────

HOURS_PER_DAY = 8
HOURS_PER_RESOURCE_WEEK = 40
HORIZON_DAYS = 21
CAPACITY_WEEKS_AHEAD = 4
UPCOMING_DEADLINES_LIMIT = 5
DEFAULT_OWNER = "Unassigned"

# Default holiday list (US federal holidays 2025). Callers may pass their own.
DEFAULT_HOLIDAYS = [
    datetime(2025, 1, 1),    # New Year's Day
    datetime(2025, 1, 20),   # Martin Luther King Jr. Day
    datetime(2025, 2, 17),   # Presidents' Day
    datetime(2025, 5, 26),   # Memorial Day
    datetime(2025, 7, 4),    # Independence Day
    datetime(2025, 9, 1),    # Labor Day
    datetime(2025, 11, 11),  # Veterans Day
    datetime(2025, 11, 27),  # Thanksgiving
    datetime(2025, 12, 25),  # Christmas
]


class Size(Enum):
    """T-shirt size categories: (label, hours, default cost)."""
    XS = ("XS", 4, 100)
    S = ("S", 8, 200)
    M = ("M", 16, 400)
    L = ("L", 24, 600)
    XL = ("XL", 32, 800)
    UNSPECIFIED = ("", 0, 0)

    def __init__(self, label, hours, default_cost):
        self.label = label
        self.hours = hours
        self.default_cost = default_cost

    @classmethod
    def parse(cls, value):
        """Map 'M', 'm', Size.M to Size.M. Blank or unknown values give UNSPECIFIED."""
        if isinstance(value, Size):
            return value
        key = clean_str(value).upper()
        for size in cls:
            if size is not cls.UNSPECIFIED and size.label == key:
                return size
        return cls.UNSPECIFIED


SIZE_VALUES = [s.label for s in Size if s is not Size.UNSPECIFIED]
DEFAULT_COST_MAP = {s.label: s.default_cost for s in Size if s is not Size.UNSPECIFIED}


# ── Errors ───────────────────────────────────────────────────────────────────

class PlannerError(Exception):
    """Base class for errors reported back to the caller."""


class ValidationError(PlannerError, ValueError):
    """A record or edit was rejected. Collections are left unchanged."""


class IntegrityError(PlannerError):
    """A deletion was refused because other records still reference the target."""

    def __init__(self, message, blockers=None):
        super().__init__(message)
        self.blockers = list(blockers or [])


# ── Helpers ──────────────────────────────────────────────────────────────────

def norm_date(d):
    """Normalise to midnight datetime for safe set membership checks."""
    if isinstance(d, pd.Timestamp):
        d = d.to_pydatetime()
    if isinstance(d, datetime):
        return datetime(d.year, d.month, d.day)
    if isinstance(d, date):
        return datetime(d.year, d.month, d.day)
    raise TypeError(f"norm_date expected datetime, got {type(d).__name__}: {d!r}")


def is_blank(val):
    """True for None, NaN/NaT and whitespace-only strings."""
    if val is None:
        return True
    if isinstance(val, str):
        return not val.strip()
    try:
        return bool(pd.isna(val))
    except (TypeError, ValueError):
        return False


def clean_str(val):
    """Return stripped string or empty string for NaN/None."""
    if is_blank(val):
        return ""
    if isinstance(val, float) and val.is_integer():
        # Excel hands numeric ids back as floats
        return str(int(val))
    return str(val).strip()


def parse_date(val, context=""):
    """Parse a date from a record field: datetime, date, Timestamp, or string."""
    ctx = f" ({context})" if context else ""
    if isinstance(val, (datetime, date, pd.Timestamp)) and not is_blank(val):
        return norm_date(val)
    if is_blank(val):
        raise ValueError(f"Date is blank{ctx}")
    if isinstance(val, str):
        val = val.strip()
        if "T" in val:
            # ISO timestamp as written by JSON serialisers, e.g. 2025-01-08T00:00:00.000Z
            val = val.split("T", 1)[0]
        for fmt in ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y"):
            try:
                return norm_date(datetime.strptime(val, fmt))
            except ValueError:
                pass
        raise ValueError(f"Cannot parse date{ctx}: {val!r}. Expected YYYY-MM-DD or DD/MM/YYYY")
    raise ValueError(f"Cannot parse date{ctx}: {val!r}")


def parse_optional_date(val, context=""):
    """Like parse_date, but blank values give None."""
    if is_blank(val):
        return None
    return parse_date(val, context)


def round_half_up(value):
    """Round to the nearest integer, halves away from zero for positives."""
    return int(math.floor(value + 0.5))


def new_id(prefix="", existing=()):
    """Generate a time-based id not already in `existing`."""
    token = time.time_ns() // 1000
    while f"{prefix}{token}" in existing:
        token += 1
    return f"{prefix}{token}"


def get_week_start(d):
    """Get the Monday of the week containing the given date."""
    d = norm_date(d)
    return d - timedelta(days=d.weekday())


def week_label(d):
    """Short chart label for a week start, e.g. 'Mar 2'."""
    return f"{d.strftime('%b')} {d.day}"


# ── Calendar ─────────────────────────────────────────────────────────────────

def normalize_holidays(holidays):
    """Turn any iterable of dates/strings into a frozenset of midnight datetimes."""
    if isinstance(holidays, frozenset):
        return holidays
    if not holidays:
        return frozenset()
    return frozenset(parse_date(h, context="holiday") for h in holidays)


def is_working_day(d, holidays=None):
    """Check if a date is a working day (not weekend, not a holiday)."""
    d = norm_date(d)
    if d.weekday() >= 5:
        return False
    if holidays and d in normalize_holidays(holidays):
        return False
    return True


def count_working_days(start, end, holidays=None):
    """Count working days between start and end (inclusive)."""
    holidays = normalize_holidays(holidays)
    d, end_d = norm_date(start), norm_date(end)
    count = 0
    while d <= end_d:
        if is_working_day(d, holidays):
            count += 1
        d += timedelta(days=1)
    return count


# ── Effort Model ─────────────────────────────────────────────────────────────

def hours_for(size):
    """Canonical effort in hours for a size (0 when unspecified)."""
    return Size.parse(size).hours


def cost_for(size, cost_map=None):
    """Configured cost for a size, falling back to the size's default cost."""
    s = Size.parse(size)
    if s is Size.UNSPECIFIED:
        return 0
    if cost_map and s.label in cost_map:
        return cost_map[s.label]
    return s.default_cost


def task_hours(task):
    """Effort for a task, always derived from its size."""
    return hours_for(task.get("size"))


def total_hours(tasks):
    """Total effort across all tasks."""
    return sum(task_hours(t) for t in tasks)


def validate_cost_map(cost_map):
    """Check a size -> cost mapping. Returns a cleaned copy or raises ValidationError."""
    if not isinstance(cost_map, dict):
        raise ValidationError("Cost configuration must be a mapping of size to cost")
    cleaned = {}
    for key, cost in cost_map.items():
        size = Size.parse(key)
        if size is Size.UNSPECIFIED:
            raise ValidationError(f"Unknown T-shirt size {key!r}. Valid: {', '.join(SIZE_VALUES)}")
        try:
            value = float(cost)
        except (TypeError, ValueError):
            raise ValidationError(f"Cost for {size.label} must be a number, got {cost!r}")
        if math.isnan(value) or value < 0:
            raise ValidationError(f"Cost for {size.label} must be zero or positive, got {cost!r}")
        cleaned[size.label] = int(value) if value.is_integer() else value
    return cleaned


def task_span(task):
    """(start, end) for a task; end falls back to start when there is no due date."""
    start = parse_date(task.get("startDate"), context=f"task {task.get('id', '?')} startDate")
    end = parse_optional_date(task.get("dueDate"), context=f"task {task.get('id', '?')} dueDate")
    return start, end or start


# ── ETA Calculation ──────────────────────────────────────────────────────────

def effective_start_date(start_date, tasks=None, dependencies=None):
    """Latest dependency end (due date, else start) if after start_date, else start_date."""
    start = parse_date(start_date, context="startDate")
    if not dependencies or not tasks:
        return start
    wanted = set(dependencies)
    ends = []
    for t in tasks:
        if t.get("id") not in wanted:
            continue
        try:
            ends.append(task_span(t)[1])
        except ValueError:
            continue  # undated dependency, treated like a missing one
    if ends and max(ends) > start:
        return max(ends)
    return start


def compute_due_date(start_date, size, holidays=None, tasks=None, dependencies=None):
    """Estimate a due date by walking forward over working days.

    Each step moves one calendar day ahead and counts it when it is a working
    day, so the effective start itself is never consumed. A task with zero
    effort ends on its effective start.
    """
    holidays = normalize_holidays(holidays)
    effort = hours_for(size)
    days_needed = math.ceil(effort / HOURS_PER_DAY)

    current = effective_start_date(start_date, tasks, dependencies)
    days_added = 0
    while days_added < days_needed:
        current += timedelta(days=1)
        if is_working_day(current, holidays):
            days_added += 1
    return current


def schedule_tasks(tasks, holidays=None):
    """Return copies of the tasks with missing due dates filled in.

    Tasks are processed dependencies-first so a dependent sees the computed
    due dates of the tasks it waits on.
    """
    cycle = find_dependency_cycle(tasks)
    if cycle:
        raise ValidationError(f"Dependency cycle: {_describe_path(tasks, cycle)}")
    holidays = normalize_holidays(holidays)
    scheduled = {t["id"]: dict(t) for t in tasks}

    for task_id in _dependency_order(tasks):
        task = scheduled[task_id]
        if is_blank(task.get("dueDate")):
            task["dueDate"] = compute_due_date(
                task["startDate"], task.get("size"), holidays,
                list(scheduled.values()), task.get("dependencies"))
    return [scheduled[t["id"]] for t in tasks]


def _dependency_order(tasks):
    """Task ids ordered so every task follows the tasks it depends on."""
    by_id = {t["id"]: t for t in tasks}
    ordered = []
    done = set()

    def visit(task_id):
        if task_id in done:
            return
        done.add(task_id)
        for dep in by_id[task_id].get("dependencies") or []:
            if dep in by_id:
                visit(dep)
        ordered.append(task_id)

    for t in tasks:
        visit(t["id"])
    return ordered


# ── Dependency Validation ────────────────────────────────────────────────────

def find_dependency_cycle(tasks, task_id=None, dependencies=None):
    """Return the first dependency cycle as a path like [a, b, a], or None.

    When task_id is given, its dependency list is replaced by `dependencies`
    first, so a proposed edit can be checked before it is applied.
    """
    graph = {t["id"]: list(t.get("dependencies") or []) for t in tasks}
    if task_id is not None:
        graph[task_id] = list(dependencies or [])

    visited = set()
    stack = []

    def dfs(node):
        if node in stack:
            return stack[stack.index(node):] + [node]
        if node in visited or node not in graph:
            return None
        visited.add(node)
        stack.append(node)
        for neighbour in graph[node]:
            found = dfs(neighbour)
            if found:
                return found
        stack.pop()
        return None

    for node in list(graph):
        if node not in visited:
            found = dfs(node)
            if found:
                return found
    return None


def _describe_path(tasks, path):
    names = {t["id"]: clean_str(t.get("name")) or t["id"] for t in tasks}
    return " -> ".join(names.get(node, node) for node in path)


def validate_dependencies(tasks, task_id, dependencies):
    """Reject self-dependencies and edits that would introduce a cycle."""
    dependencies = list(dependencies or [])
    if task_id is not None and task_id in dependencies:
        raise ValidationError("A task cannot depend on itself")
    cycle = find_dependency_cycle(tasks, task_id, dependencies)
    if cycle:
        raise ValidationError(f"Dependency would create a cycle: {_describe_path(tasks, cycle)}")


def task_dependents(tasks, task_id):
    """Tasks that list task_id as a dependency."""
    return [t for t in tasks if task_id in (t.get("dependencies") or [])]


def resource_assignments(tasks, resource_id):
    """Tasks assigned to resource_id."""
    return [t for t in tasks if t.get("resourceId") == resource_id]


def delete_task(tasks, task_id):
    """Return tasks without task_id. Refused while another task depends on it."""
    dependents = task_dependents(tasks, task_id)
    if dependents:
        names = ", ".join(clean_str(t.get("name")) or t["id"] for t in dependents)
        raise IntegrityError(
            f"Cannot delete this task as it is a dependency for: {names}", dependents)
    return [t for t in tasks if t["id"] != task_id]


def delete_resource(resources, tasks, resource_id):
    """Return resources without resource_id. Refused while tasks are assigned to it."""
    assigned = resource_assignments(tasks, resource_id)
    if assigned:
        names = ", ".join(clean_str(t.get("name")) or t["id"] for t in assigned)
        raise IntegrityError(
            f"Cannot delete this resource as it is assigned to {len(assigned)} "
            f"task{'s' if len(assigned) != 1 else ''}: {names}. "
            f"Please reassign these tasks first.", assigned)
    return [r for r in resources if r["id"] != resource_id]


# ── Records ──────────────────────────────────────────────────────────────────

def _unique(values):
    seen = []
    for v in values:
        if v not in seen:
            seen.append(v)
    return seen


def _number_or_none(val, field):
    if is_blank(val):
        return None
    try:
        value = float(val)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number, got {val!r}")
    return int(value) if value.is_integer() else value


def normalize_task(task, cost_map=None):
    """Coerce a raw task record into the canonical shape.

    Dates become midnight datetimes; owner and cost get their defaults, hours
    always follow the size; dependencies become a de-duplicated list in insertion order.
    """
    size = Size.parse(task.get("size"))
    deps = task.get("dependencies") or []
    if isinstance(deps, str):
        deps = deps.split(",")
    task_id = clean_str(task.get("id"))
    start = task.get("startDate")
    cost = _number_or_none(task.get("cost"), "Cost")
    return {
        "id": task_id,
        "name": clean_str(task.get("name")),
        "owner": clean_str(task.get("owner")) or DEFAULT_OWNER,
        "size": size.label or clean_str(task.get("size")),
        "startDate": None if is_blank(start) else parse_date(start, context=f"task {task_id} startDate"),
        "dueDate": parse_optional_date(task.get("dueDate"), context=f"task {task_id} dueDate"),
        "cost": cost if cost is not None else cost_for(size, cost_map),
        "hours": size.hours,
        "dependencies": _unique(clean_str(d) for d in deps if clean_str(d)),
        "resourceId": clean_str(task.get("resourceId")) or None,
    }


def validate_task(task, tasks):
    """Raise ValidationError when a normalised task cannot be saved."""
    if not task.get("name"):
        raise ValidationError("Task name is required")
    if not clean_str(task.get("size")):
        raise ValidationError("T-shirt size is required")
    if Size.parse(task["size"]) is Size.UNSPECIFIED:
        raise ValidationError(f"Unknown T-shirt size {task['size']!r}. Valid: {', '.join(SIZE_VALUES)}")
    if task.get("startDate") is None:
        raise ValidationError("Start date is required")
    others = [t for t in tasks if t["id"] != task.get("id")]
    validate_dependencies(others + [task], task.get("id"), task.get("dependencies"))


def save_task(tasks, task, holidays=None, cost_map=None):
    """Validate and insert or replace a task. Returns (new_tasks, saved_task).

    A missing id is generated, and a missing due date is estimated from the
    start date, size and dependencies.
    """
    try:
        record = normalize_task(task, cost_map)
    except ValueError as e:
        raise ValidationError(str(e)) from e
    if not record["id"]:
        record["id"] = new_id(existing={t["id"] for t in tasks})
    validate_task(record, tasks)

    if record["dueDate"] is None:
        record["dueDate"] = compute_due_date(
            record["startDate"], record["size"], holidays, tasks,
            record["dependencies"])

    if any(t["id"] == record["id"] for t in tasks):
        new_tasks = [record if t["id"] == record["id"] else t for t in tasks]
    else:
        new_tasks = list(tasks) + [record]
    return new_tasks, record


def normalize_resource(resource):
    """Coerce a raw resource record into the canonical shape."""
    return {
        "id": clean_str(resource.get("id")),
        "name": clean_str(resource.get("name")),
        "capacity": _number_or_none(resource.get("capacity"), "Capacity"),
    }


def validate_resource(resource):
    """Raise ValidationError when a normalised resource cannot be saved."""
    if not resource.get("name"):
        raise ValidationError("Resource name is required")
    capacity = resource.get("capacity")
    if capacity is None or capacity <= 0:
        raise ValidationError("Capacity must be greater than 0")


def save_resource(resources, resource):
    """Validate and insert or replace a resource. Returns (new_resources, saved_resource)."""
    record = normalize_resource(resource)
    validate_resource(record)
    if not record["id"]:
        record["id"] = new_id("resource-", existing={r["id"] for r in resources})
    if any(r["id"] == record["id"] for r in resources):
        new_resources = [record if r["id"] == record["id"] else r for r in resources]
    else:
        new_resources = list(resources) + [record]
    return new_resources, record


def update_costs(tasks, cost_map):
    """Re-price tasks from a new cost map. Sizes with no (or zero) cost keep the task's cost."""
    cost_map = validate_cost_map(cost_map)
    updated = []
    for t in tasks:
        new_cost = cost_map.get(Size.parse(t.get("size")).label)
        updated.append({**t, "cost": new_cost if new_cost else t.get("cost")})
    return updated


# ── Forecast ─────────────────────────────────────────────────────────────────

def forecast(tasks):
    """Weekly effort and headcount across all tasks, sorted by week.

    Each task's hours are spread evenly over its calendar days; weekend days
    take a share of the denominator but attribute nothing.
    """
    week_hours = {}
    for task in tasks:
        start, end = task_span(task)
        duration = max(1, (end - start).days + 1)
        per_day = task_hours(task) / duration
        d = start
        while d <= end:
            if d.weekday() < 5:
                ws = get_week_start(d)
                week_hours[ws] = week_hours.get(ws, 0.0) + per_day
            d += timedelta(days=1)

    rows = []
    for ws in sorted(week_hours):
        total = round_half_up(week_hours[ws])
        rows.append({
            "period": ws,
            "label": week_label(ws),
            "totalEffort": total,
            "requiredResources": math.ceil(total / HOURS_PER_RESOURCE_WEEK),
        })
    return rows


def task_capacity(tasks, resources=None, weeks_ahead=CAPACITY_WEEKS_AHEAD):
    """How many more tasks of each size fit in the remaining capacity."""
    if resources:
        weekly = sum(float(r.get("capacity") or 0) for r in resources)
    else:
        weekly = HOURS_PER_RESOURCE_WEEK
    remaining = max(0, weekly * weeks_ahead - total_hours(tasks))
    return {s.label: int(remaining // s.hours) for s in Size if s is not Size.UNSPECIFIED}


# ── Availability ─────────────────────────────────────────────────────────────

def _utilization(allocated, capacity):
    if capacity <= 0:
        return 0
    return max(0, min(100, round_half_up(allocated / capacity * 100)))


def _horizon_weeks(start, end, holidays):
    """Split [start, end] into 7-day buckets (the last may be shorter) with their capacity."""
    weeks = []
    week_start = start
    while week_start <= end:
        week_end = min(week_start + timedelta(days=6), end)
        capacity = count_working_days(week_start, week_end, holidays) * HOURS_PER_DAY
        weeks.append({
            "week": f"Week {len(weeks) + 1}",
            "start": week_start,
            "end": week_end,
            "capacity": capacity,
            "allocated": 0.0,
            "available": capacity,
            "utilization": 0,
        })
        week_start = week_end + timedelta(days=1)
    return weeks, sum(w["capacity"] for w in weeks)


def _calculate_availability(tasks, resources, today, holidays):
    start = norm_date(today or datetime.now())
    end = start + timedelta(days=HORIZON_DAYS)
    holidays = normalize_holidays(holidays)
    weeks, total_capacity = _horizon_weeks(start, end, holidays)

    result = {}
    for r in resources:
        result[r["id"]] = {
            "name": r.get("name", ""),
            "weeklyCapacity": r.get("capacity"),
            "totalCapacity": total_capacity,
            "allocatedHours": 0.0,
            "availableHours": total_capacity,
            "utilizationPercentage": 0,
            "taskCount": 0,
            "weeklyBreakdown": [dict(w) for w in weeks],
        }

    for task in tasks:
        record = result.get(task.get("resourceId"))
        if record is None:
            continue  # unassigned, or assigned to a resource that no longer exists
        t_start, t_end = task_span(task)
        if t_start > end or t_end < start:
            continue
        hours = task_hours(task)
        record["allocatedHours"] += hours
        record["taskCount"] += 1

        per_day = hours / max(1, (t_end - t_start).days + 1)
        d = max(t_start, start)
        stop = min(t_end, end)
        breakdown = record["weeklyBreakdown"]
        while d <= stop:
            if is_working_day(d, holidays):
                idx = (d - start).days // 7
                if idx < len(breakdown):
                    breakdown[idx]["allocated"] += per_day
            d += timedelta(days=1)

    for record in result.values():
        record["availableHours"] = max(0, record["totalCapacity"] - record["allocatedHours"])
        record["utilizationPercentage"] = _utilization(record["allocatedHours"], record["totalCapacity"])
        for week in record["weeklyBreakdown"]:
            week["available"] = max(0, week["capacity"] - week["allocated"])
            week["utilization"] = _utilization(week["allocated"], week["capacity"])
    return result


def availability(tasks, resources, today=None, holidays=None):
    """Per-resource capacity, allocation and weekly breakdown over the next 3 weeks.

    Returns {} when the calculation fails; callers should read an empty
    result as "availability unknown".
    """
    try:
        return _calculate_availability(tasks, resources, today, holidays)
    except Exception as e:
        print(f"  WARNING: Could not calculate resource availability: {e}")
        return {}


# ── Reporting ────────────────────────────────────────────────────────────────

def project_summary(tasks, resources, availability_map=None, today=None):
    """Aggregate totals for the project report."""
    today = norm_date(today or datetime.now())
    names = {r["id"]: r.get("name", r["id"]) for r in resources}
    availability_map = availability_map or {}

    tasks_by_size = {}
    tasks_by_resource = {}
    hours_by_resource = {}
    for t in tasks:
        size = clean_str(t.get("size")) or "Unspecified"
        tasks_by_size[size] = tasks_by_size.get(size, 0) + 1
        owner = names.get(t.get("resourceId"), DEFAULT_OWNER)
        tasks_by_resource[owner] = tasks_by_resource.get(owner, 0) + 1
        hours_by_resource[owner] = hours_by_resource.get(owner, 0) + task_hours(t)

    upcoming = []
    for t in tasks:
        due = parse_optional_date(t.get("dueDate"))
        if due is not None and due >= today:
            upcoming.append((due, t))
    upcoming.sort(key=lambda item: item[0])

    utilization = []
    for r in resources:
        rec = availability_map.get(r["id"], {})
        utilization.append({
            "name": r.get("name", r["id"]),
            "utilization": rec.get("utilizationPercentage", 0),
            "allocated": rec.get("allocatedHours", 0),
            "available": rec.get("availableHours", 0),
        })

    return {
        "totalTasks": len(tasks),
        "totalHours": total_hours(tasks),
        "totalCost": sum(float(t.get("cost") or 0) for t in tasks),
        "tasksBySize": tasks_by_size,
        "tasksByResource": tasks_by_resource,
        "hoursByResource": hours_by_resource,
        "upcomingDeadlines": [t for _, t in upcoming[:UPCOMING_DEADLINES_LIMIT]],
        "resourceUtilization": utilization,
        "tasksWithDependencies": sum(1 for t in tasks if t.get("dependencies")),
        "totalDependencies": sum(len(t.get("dependencies") or []) for t in tasks),
    }
