"""
Task Planner charts: weekly forecast, resource availability, and Gantt PNGs.
"""

import os
from datetime import datetime, timedelta

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import matplotlib.patches as mpatches
import matplotlib.dates as mdates
from matplotlib.patches import FancyBboxPatch
import numpy as np

from task_planner import (
    HOURS_PER_RESOURCE_WEEK,
    norm_date,
    normalize_holidays,
    task_span,
)


STYLE = {
    "font_family": "DejaVu Sans",
    "title_size": 18,
    "subtitle_size": 13,
    "label_size": 9.5,
    "tick_size": 8.5,
    "small_size": 7.5,
    "bg_color": "#FAFAFA",
    "panel_bg": "#FFFFFF",
    "text_primary": "#1A1A2E",
    "text_secondary": "#555555",
    "text_muted": "#999999",
    "grid_color": "#E0E0E0",
    "today_color": "#D32F2F",
    "over_capacity_color": "#E53935",
    "resource_colors": ["#43A047", "#1E88E5", "#8E24AA", "#FB8C00", "#00ACC1", "#6D4C41"],
    "unassigned_color": "#90A4AE",
    "effort_color": "#1E88E5",
    "capacity_line_color": "#1A1A2E",
    "row_shade_even": "#F5F5F5",
    "row_shade_odd": "#FFFFFF",
    "dependency_color": "#546E7A",
    "holiday_color": "#E1BEE7",        # Pale purple for holiday shading
    "holiday_edge_color": "#7B1FA2",
    "bar_height": 0.6,
    "dpi": 180,
    "fig_width": 16,
}


# ── Style Helpers ────────────────────────────────────────────────────────────

def new_figure(height):
    """A styled figure at the standard chart width."""
    plt.rcParams.update({
        "font.family": STYLE["font_family"],
        "font.size": STYLE["label_size"],
        "text.color": STYLE["text_primary"],
        "xtick.color": STYLE["text_secondary"],
        "ytick.color": STYLE["text_secondary"],
        "axes.edgecolor": STYLE["grid_color"],
    })
    return plt.figure(figsize=(STYLE["fig_width"], height), facecolor=STYLE["bg_color"])


def finish_axes(ax, grid_axis, title="", ylabel=""):
    """Hide the top/right frame and draw a faint grid along grid_axis ("x" or "y")."""
    ax.set_facecolor(STYLE["panel_bg"])
    for side, spine in ax.spines.items():
        spine.set_visible(side in ("left", "bottom"))
        spine.set_linewidth(0.6)
    ax.grid(axis=grid_axis, alpha=0.15, linewidth=0.5, color=STYLE["grid_color"])
    ax.set_axisbelow(True)
    if title:
        ax.set_title(title, loc="left", pad=12, fontsize=STYLE["subtitle_size"],
                     fontweight="bold", color=STYLE["text_primary"])
    if ylabel:
        ax.set_ylabel(ylabel, fontsize=STYLE["label_size"], color=STYLE["text_secondary"])


def add_header_footer(fig, title, subtitle=""):
    """Add a title block and generation timestamp footer."""
    fig.suptitle(title, fontsize=STYLE["title_size"], fontweight="bold",
                 color=STYLE["text_primary"], y=0.98, x=0.04, ha="left")
    if subtitle:
        fig.text(0.04, 0.935, subtitle, fontsize=STYLE["small_size"] + 1,
                 color=STYLE["text_muted"], ha="left")
    fig.text(0.98, 0.008, f"Generated {datetime.now().strftime('%d %b %Y %H:%M')}",
             ha="right", fontsize=STYLE["small_size"], color=STYLE["text_muted"])
    fig.text(0.04, 0.008, "Task Planner",
             ha="left", fontsize=STYLE["small_size"], color=STYLE["text_muted"])


def resource_color(index):
    colors = STYLE["resource_colors"]
    return colors[index % len(colors)]


def _save(fig, output_path, label):
    d = os.path.dirname(output_path)
    if d:
        os.makedirs(d, exist_ok=True)
    fig.savefig(output_path, dpi=STYLE["dpi"], bbox_inches="tight", facecolor=STYLE["bg_color"])
    plt.close(fig)
    print(f"  {label} saved: {output_path}")


# ── Chart: Resource Forecast ─────────────────────────────────────────────────

def render_forecast(forecast_rows, output_path):
    """Weekly effort bars with the headcount each week needs."""
    if not forecast_rows:
        print("  No forecast data. Check: tasks have a valid Start Date and a known Size.")
        return

    x_positions = np.arange(len(forecast_rows))
    effort = np.array([row["totalEffort"] for row in forecast_rows], dtype=float)
    heads = [row["requiredResources"] for row in forecast_rows]

    fig = new_figure(6.5)
    ax = fig.add_axes([0.07, 0.16, 0.90, 0.68])

    ax.bar(x_positions, effort, 0.65, color=STYLE["effort_color"], alpha=0.85,
           edgecolor="white", linewidth=0.5, zorder=3, label="Total effort (h)")

    # Capacity steps: what the required headcount can absorb
    ax.step(x_positions, np.array(heads) * HOURS_PER_RESOURCE_WEEK, where="mid",
            color=STYLE["capacity_line_color"], linewidth=1.2, linestyle="--",
            alpha=0.6, zorder=4, label=f"Headcount x {HOURS_PER_RESOURCE_WEEK}h")

    for i, (hours, n) in enumerate(zip(effort, heads)):
        ax.text(x_positions[i], hours + max(effort.max(), 1) * 0.02,
                f"{hours:.0f}h\n{n} res", ha="center", va="bottom",
                fontsize=STYLE["small_size"], color=STYLE["text_secondary"], zorder=5)

    ax.set_xticks(x_positions)
    ax.set_xticklabels([row["label"] for row in forecast_rows], rotation=45, ha="right",
                       fontsize=STYLE["tick_size"])
    ax.set_ylim(0, max(effort.max(), max(heads) * HOURS_PER_RESOURCE_WEEK, 1) * 1.25)
    ax.legend(loc="upper right", fontsize=STYLE["small_size"], framealpha=0.9,
              edgecolor=STYLE["grid_color"], fancybox=True)
    finish_axes(ax, "y", title="Weekly Effort and Required Resources", ylabel="Hours")

    first, last = forecast_rows[0]["period"], forecast_rows[-1]["period"]
    add_header_footer(fig, "Resource Forecast",
                      f"Weeks of {first.strftime('%d %b %Y')} — {last.strftime('%d %b %Y')}")
    _save(fig, output_path, "Forecast chart")


# ── Chart: Resource Availability ─────────────────────────────────────────────

def render_availability(availability_map, output_path):
    """Per-resource weekly allocation against capacity over the horizon."""
    if not availability_map:
        print("  No availability data. Check: at least one resource is defined.")
        return

    resource_ids = list(availability_map)
    first = availability_map[resource_ids[0]]
    weeks = first["weeklyBreakdown"]
    n_res = len(resource_ids)
    x_positions = np.arange(len(weeks))
    group_width = 0.8
    bar_width = group_width / n_res

    fig_height = max(6, n_res * 0.8 + 4)
    fig = new_figure(fig_height)
    ax = fig.add_axes([0.07, 0.14, 0.90, 0.70])

    legend_handles = []
    max_y = 1.0
    for ridx, rid in enumerate(resource_ids):
        rec = availability_map[rid]
        bar_x = x_positions - group_width / 2 + bar_width * ridx + bar_width / 2
        allocated = np.array([w["allocated"] for w in rec["weeklyBreakdown"]], dtype=float)
        capacity = np.array([w["capacity"] for w in rec["weeklyBreakdown"]], dtype=float)
        color = resource_color(ridx)
        colors = [STYLE["over_capacity_color"] if allocated[i] > capacity[i] else color
                  for i in range(len(allocated))]

        ax.bar(bar_x, allocated, bar_width * 0.9, color=colors, alpha=0.85,
               edgecolor="white", linewidth=0.5, zorder=3)
        ax.plot(bar_x, capacity, color=color, linewidth=1.5, linestyle="--",
                alpha=0.6, zorder=4, marker=".", markersize=3)

        for i, week in enumerate(rec["weeklyBreakdown"]):
            if allocated[i] > 0.1:
                over = allocated[i] > capacity[i]
                ax.text(bar_x[i], allocated[i] + 0.5, f"{week['utilization']}%",
                        ha="center", fontsize=5.5, zorder=5,
                        color=STYLE["over_capacity_color"] if over else STYLE["text_secondary"],
                        fontweight="bold" if over else "normal")
        max_y = max(max_y, allocated.max(initial=0), capacity.max(initial=0))
        legend_handles.append(mpatches.Patch(
            facecolor=color, edgecolor="white", alpha=0.85,
            label=f"{rec.get('name') or rid} ({rec['utilizationPercentage']}%, "
                  f"{rec['allocatedHours']:.0f}/{rec['totalCapacity']:.0f}h)"))

    legend_handles.append(mpatches.Patch(
        facecolor=STYLE["over_capacity_color"], edgecolor="white", alpha=0.85,
        label="Over capacity"))
    ax.legend(handles=legend_handles, loc="upper right", fontsize=STYLE["small_size"],
              framealpha=0.9, edgecolor=STYLE["grid_color"], fancybox=True)

    ax.set_xticks(x_positions)
    ax.set_xticklabels([f"{w['week']}\n{w['start'].strftime('%d %b')}" for w in weeks],
                       fontsize=STYLE["tick_size"])
    ax.set_ylim(0, max_y * 1.3)
    finish_axes(ax, "y", title="Weekly Allocation vs Capacity", ylabel="Hours")

    start, end = weeks[0]["start"], weeks[-1]["end"]
    add_header_footer(fig, "Resource Availability",
                      f"{start.strftime('%d %b %Y')} — {end.strftime('%d %b %Y')}")
    _save(fig, output_path, "Availability chart")


# ── Chart: Gantt ─────────────────────────────────────────────────────────────

def _draw_nonworking_shading(ax, date_min, date_max, holidays):
    d = norm_date(date_min)
    while d <= date_max:
        if d.weekday() >= 5:
            ax.axvspan(mdates.date2num(d), mdates.date2num(d) + 1,
                       color="#EEEEEE", alpha=0.5, zorder=0)
        elif d in holidays:
            ax.axvspan(mdates.date2num(d), mdates.date2num(d) + 1,
                       color=STYLE["holiday_color"], alpha=0.5, zorder=0)
        d += timedelta(days=1)


def render_gantt(tasks, resources, output_path, holidays=None, today=None):
    """Task bars coloured by resource, with dependency connectors."""
    if not tasks:
        print("  No Gantt data. Check: at least one task is defined.")
        return
    holidays = normalize_holidays(holidays)

    spans = {t["id"]: task_span(t) for t in tasks}
    ordered = sorted(tasks, key=lambda t: (spans[t["id"]][0], spans[t["id"]][1], t["name"]))
    res_index = {r["id"]: i for i, r in enumerate(resources)}
    res_names = {r["id"]: r["name"] for r in resources}

    n = len(ordered)
    fig = new_figure(max(5, n * 0.45 + 2.5))
    ax = fig.add_axes([0.22, 0.10, 0.74, 0.78])

    date_min = min(s for s, _ in spans.values()) - timedelta(days=2)
    date_max = max(e for _, e in spans.values()) + timedelta(days=3)

    for i in range(n):
        shade = STYLE["row_shade_even"] if i % 2 == 0 else STYLE["row_shade_odd"]
        ax.axhspan(i - 0.5, i + 0.5, color=shade, alpha=0.6, zorder=0)
    _draw_nonworking_shading(ax, date_min, date_max, holidays)

    rows = {}
    y_labels = []
    for i, task in enumerate(ordered):
        y = n - 1 - i
        rows[task["id"]] = y
        start, end = spans[task["id"]]
        rid = task.get("resourceId")
        color = resource_color(res_index[rid]) if rid in res_index else STYLE["unassigned_color"]
        x = mdates.date2num(start)
        width = mdates.date2num(end) - x + 1
        height = STYLE["bar_height"]
        rounding = min(0.12, height * 0.3, width * 0.05)
        ax.add_patch(FancyBboxPatch(
            (x, y - height / 2), width, height,
            boxstyle=f"round,pad=0,rounding_size={rounding}",
            facecolor=color, alpha=0.85, edgecolor=color, linewidth=1.0, zorder=3))
        ax.text(x + width + 0.3, y, f"{task['size']}  {res_names.get(rid, '')}".rstrip(),
                va="center", fontsize=STYLE["small_size"], color=STYLE["text_secondary"], zorder=4)
        y_labels.append(task["name"])

    # Dependency connectors: end of prerequisite -> start of dependent
    for task in ordered:
        for dep in task.get("dependencies") or []:
            if dep not in rows:
                continue
            x0 = mdates.date2num(spans[dep][1]) + 1
            x1 = mdates.date2num(spans[task["id"]][0])
            ax.annotate("", xy=(x1, rows[task["id"]]), xytext=(x0, rows[dep]),
                        arrowprops=dict(arrowstyle="->", color=STYLE["dependency_color"],
                                        linewidth=0.8, alpha=0.7,
                                        connectionstyle="angle,angleA=0,angleB=90,rad=4"),
                        zorder=5)

    today = norm_date(today or datetime.now())
    if date_min <= today <= date_max:
        t_num = mdates.date2num(today)
        ax.axvline(t_num, color=STYLE["today_color"], linewidth=2, alpha=0.7, zorder=10)
        ax.text(t_num + 0.3, n - 0.4, "Today", fontsize=STYLE["small_size"] + 0.5,
                color=STYLE["today_color"], fontweight="bold", style="italic", va="bottom")

    ax.set_yticks(list(range(n - 1, -1, -1)))
    ax.set_yticklabels(y_labels, fontsize=STYLE["tick_size"])
    ax.set_ylim(-0.7, n - 0.3)
    ax.set_xlim(mdates.date2num(date_min), mdates.date2num(date_max))
    ax.xaxis_date()
    ax.xaxis.set_major_formatter(mdates.DateFormatter("%d %b"))
    ax.xaxis.set_major_locator(mdates.WeekdayLocator(byweekday=mdates.MO))
    finish_axes(ax, "x")

    legend_handles = [mpatches.Patch(facecolor=resource_color(i), label=r["name"])
                      for i, r in enumerate(resources)]
    legend_handles.append(mpatches.Patch(facecolor=STYLE["unassigned_color"], label="Unassigned"))
    if holidays:
        legend_handles.append(mpatches.Patch(facecolor=STYLE["holiday_color"],
                                             edgecolor=STYLE["holiday_edge_color"], label="Holiday"))
    ax.legend(handles=legend_handles, loc="lower right", fontsize=STYLE["small_size"],
              framealpha=0.9, edgecolor=STYLE["grid_color"], fancybox=True)

    add_header_footer(fig, "Task Schedule",
                      f"{len(tasks)} tasks · {date_min.strftime('%d %b %Y')} — "
                      f"{date_max.strftime('%d %b %Y')}")
    _save(fig, output_path, "Gantt chart")
