"""Aggregation engine: pure transformations of decoded record collections.

Nothing in this module performs I/O or keeps state between calls. Inputs are
finite collections in any order plus explicit ``now``/``today`` values, so the
same snapshot always yields the same view model.
"""
from __future__ import annotations

import math
from collections import OrderedDict
from dataclasses import replace
from datetime import date, datetime, time, tzinfo
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .errors import ValidationError
from .models import (
    AttendanceEntry,
    AttendanceSession,
    Match,
    MonthlyBucket,
    Payment,
    ProgressRecord,
    Student,
    Trainer,
)

MONTH_ABBR = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
CHART_COLORS = ("#10B981", "#6366F1", "#F59E0B", "#EF4444", "#8B5CF6", "#EC4899")
DATE_RANGE_MODES = ("all", "thisMonth", "lastMonth", "custom")
END_OF_DAY = time(23, 59, 59, 999000)


# Field guards -----------------------------------------------------------
def _amount(payment: Payment) -> float:
    value = payment.amount
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValidationError(
            f"Payment {payment.id} has a non-numeric amount: {value!r}", field="amount", key=payment.id
        )
    return float(value)


def _created_at(record: Any) -> int:
    value = getattr(record, "created_at", None)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(
            f"Record {getattr(record, 'id', '?')} has an invalid createdAt: {value!r}",
            field="created_at",
            key=getattr(record, "id", None),
        )
    return value


def _is_income(payment: Payment) -> bool:
    if payment.type == "income":
        return True
    if payment.type == "expense":
        return False
    raise ValidationError(f"Payment {payment.id} has an unknown type: {payment.type!r}", field="type", key=payment.id)


def _to_ms(moment: datetime) -> int:
    return round(moment.timestamp() * 1000)


def local_datetime(timestamp_ms: int, tz: Optional[tzinfo] = None) -> datetime:
    """Convert epoch milliseconds to a datetime in ``tz`` (local time when ``None``)."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz)


def month_label(year: int, month: int) -> str:
    return f"{MONTH_ABBR[month - 1]} {year}"


# Monthly bucketing -----------------------------------------------------
def _month_key(payment: Payment, tz: Optional[tzinfo]) -> Tuple[int, int]:
    moment = local_datetime(_created_at(payment), tz)
    return moment.year, moment.month


def monthly_buckets(payments: Iterable[Payment], tz: Optional[tzinfo] = None) -> List[MonthlyBucket]:
    """Group income and expenses by calendar month, oldest month first."""
    buckets: "OrderedDict[Tuple[int, int], MonthlyBucket]" = OrderedDict()
    for payment in payments:
        amount = _amount(payment)
        key = _month_key(payment, tz)
        bucket = buckets.get(key)
        if bucket is None:
            bucket = buckets[key] = MonthlyBucket(month=month_label(*key))
        if _is_income(payment):
            bucket.income += amount
        else:
            bucket.expenses += amount
    return [buckets[key] for key in sorted(buckets)]


def monthly_totals(
    payments: Iterable[Payment], tz: Optional[tzinfo] = None
) -> Tuple[Dict[str, float], Dict[str, float]]:
    """Return ``(income_by_month, expenses_by_month)`` keyed by month label."""
    income: Dict[str, float] = {}
    expenses: Dict[str, float] = {}
    for bucket in monthly_buckets(payments, tz):
        if bucket.income:
            income[bucket.month] = bucket.income
        if bucket.expenses:
            expenses[bucket.month] = bucket.expenses
    return income, expenses


# Category breakdown ----------------------------------------------------
def category_breakdown(payments: Iterable[Payment]) -> Dict[str, Dict[str, float]]:
    """Sum and count per category; categories without records are left out."""
    breakdown: Dict[str, Dict[str, float]] = {}
    for payment in payments:
        amount = _amount(payment)
        stats = breakdown.setdefault(payment.category, {"total": 0.0, "count": 0})
        stats["total"] += amount
        stats["count"] += 1
    return breakdown


def category_chart(
    payments: Iterable[Payment], palette: Sequence[str] = CHART_COLORS
) -> List[Dict[str, Any]]:
    """Chart series ``{name, value, count, color}`` in first-seen category order."""
    chart = []
    for index, (name, stats) in enumerate(category_breakdown(payments).items()):
        chart.append(
            {
                "name": name,
                "value": stats["total"],
                "count": stats["count"],
                "color": palette[index % len(palette)],
            }
        )
    return chart


def income_expense_by_category(payments: Iterable[Payment]) -> Dict[str, Dict[str, float]]:
    breakdown: Dict[str, Dict[str, float]] = {}
    for payment in payments:
        amount = _amount(payment)
        stats = breakdown.setdefault(payment.category, {"income": 0.0, "expenses": 0.0})
        if _is_income(payment):
            stats["income"] += amount
        else:
            stats["expenses"] += amount
    return breakdown


# Filtering -------------------------------------------------------------
def month_start(moment: datetime) -> datetime:
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def previous_month_start(moment: datetime) -> datetime:
    start = month_start(moment)
    if start.month == 1:
        return start.replace(year=start.year - 1, month=12)
    return start.replace(month=start.month - 1)


def date_range_bounds(
    mode: str,
    now: datetime,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> Tuple[Optional[int], Optional[int], bool]:
    """Return ``(lower_ms, upper_ms, upper_inclusive)``; ``None`` means unbounded."""
    if mode not in DATE_RANGE_MODES:
        raise ValidationError(f"Unknown date range {mode!r}", field="date_range")
    if mode == "thisMonth":
        return _to_ms(month_start(now)), None, False
    if mode == "lastMonth":
        return _to_ms(previous_month_start(now)), _to_ms(month_start(now)), False
    if mode == "custom" and start_date and end_date:
        lower = datetime.combine(start_date, time.min, tzinfo=now.tzinfo)
        upper = datetime.combine(end_date, END_OF_DAY, tzinfo=now.tzinfo)
        return _to_ms(lower), _to_ms(upper), True
    return None, None, False


def filter_by_date_range(
    records: Iterable[Any],
    mode: str,
    now: datetime,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> List[Any]:
    """Keep records whose ``created_at`` falls inside the selected range."""
    lower, upper, inclusive = date_range_bounds(mode, now, start_date, end_date)
    selected = []
    for record in records:
        created = _created_at(record)
        if lower is not None and created < lower:
            continue
        if upper is not None and (created > upper if inclusive else created >= upper):
            continue
        selected.append(record)
    return selected


def _active(value: Optional[str]) -> bool:
    return bool(value) and value != "all"


def filter_payments(
    payments: Iterable[Payment],
    *,
    payment_type: Optional[str] = None,
    category: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
) -> List[Payment]:
    """Apply type, category, status and free-text filters as one AND predicate."""
    term = search.strip().lower() if search else ""
    selected = []
    for payment in payments:
        if _active(payment_type) and payment.type != payment_type:
            continue
        if _active(category) and payment.category != category:
            continue
        if _active(status) and payment.status != status:
            continue
        if term and term not in (payment.description or "").lower() and term not in payment.category.lower():
            continue
        selected.append(payment)
    return selected


# Pending payments ------------------------------------------------------
def is_overdue(payment: Payment, now: datetime) -> bool:
    if payment.status != "pending" or payment.due_date is None:
        return False
    return datetime.combine(payment.due_date, time.min, tzinfo=now.tzinfo) < now


def _pending_sort_key(payment: Payment) -> Tuple[bool, date, int]:
    return payment.due_date is None, payment.due_date or date.min, -_created_at(payment)


def partition_pending(payments: Iterable[Payment], now: datetime) -> Tuple[List[Payment], List[Payment]]:
    """Split pending payments into ``(overdue, upcoming)``, each sorted by due date."""
    pending = sorted((p for p in payments if p.status == "pending"), key=_pending_sort_key)
    overdue = [payment for payment in pending if is_overdue(payment, now)]
    upcoming = [payment for payment in pending if not is_overdue(payment, now)]
    return overdue, upcoming


# Totals and metrics ----------------------------------------------------
def payment_totals(payments: Iterable[Payment]) -> Dict[str, float]:
    income = expenses = 0.0
    for payment in payments:
        amount = _amount(payment)
        if _is_income(payment):
            income += amount
        else:
            expenses += amount
    return {"income": income, "expenses": expenses, "net": income - expenses}


def payment_stats(payments: Sequence[Payment], tz: Optional[tzinfo] = None) -> Dict[str, Any]:
    totals = payment_totals(payments)
    monthly_income, monthly_expenses = monthly_totals(payments, tz)
    return {
        "total_income": totals["income"],
        "total_expenses": totals["expenses"],
        "pending_payments": sum(1 for payment in payments if payment.status == "pending"),
        "monthly_income": monthly_income,
        "monthly_expenses": monthly_expenses,
    }


def percent_change(current: float, previous: float) -> Optional[float]:
    """Relative change in percent, or ``None`` when there is no prior data."""
    for value in (current, previous):
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise ValidationError(f"percent_change expects numbers (got {value!r})")
    if previous == 0:
        return None
    return (current - previous) / previous * 100


def trend(current: float, previous: float, *, lower_is_better: bool = False) -> str:
    if current == previous:
        return "neutral"
    improved = current < previous if lower_is_better else current > previous
    return "up" if improved else "down"


def finance_metrics(payments: Sequence[Payment], now: datetime) -> List[Dict[str, Any]]:
    """Headline income, expense and net figures with month-over-month change."""
    overall = payment_totals(payments)
    current = payment_totals(filter_by_date_range(payments, "thisMonth", now))
    previous = payment_totals(filter_by_date_range(payments, "lastMonth", now))
    metrics = []
    for key, name, lower_is_better in (
        ("income", "Total Income", False),
        ("expenses", "Total Expenses", True),
        ("net", "Net Income", False),
    ):
        metrics.append(
            {
                "id": key,
                "name": name,
                "value": overall[key],
                "current_month": current[key],
                "previous_month": previous[key],
                "change": percent_change(current[key], previous[key]),
                "trend": trend(current[key], previous[key], lower_is_better=lower_is_better),
                "period": "vs. last month",
            }
        )
    return metrics


def financial_report(payments: Sequence[Payment], tz: Optional[tzinfo] = None) -> Dict[str, Any]:
    """Totals, per-category income/expenses and the monthly trend of ``payments``."""
    trend_rows = [
        {"month": bucket.month, "income": bucket.income, "expenses": bucket.expenses, "net": bucket.profit}
        for bucket in monthly_buckets(payments, tz)
    ]
    return {
        "totals": payment_totals(payments),
        "category_breakdown": income_expense_by_category(payments),
        "monthly_trend": trend_rows,
    }


# Attendance ------------------------------------------------------------
def attendance_summary(entries: Iterable[AttendanceEntry]) -> Dict[str, int]:
    present = absent = 0
    for entry in entries:
        if getattr(entry, "present", False) is True:
            present += 1
        else:
            absent += 1
    return {"present_count": present, "absent_count": absent}


def attendance_sessions(
    sessions: Mapping[str, Mapping[str, List[AttendanceEntry]]],
    start_day: str,
    end_day: str,
    *,
    sort_key: str = "date",
    direction: str = "desc",
) -> List[AttendanceSession]:
    """Flatten ``{YYYYMMDD: {HH_MM: entries}}`` between two days (inclusive)."""
    start = start_day.replace("-", "")
    end = end_day.replace("-", "")
    flattened = []
    for day, slots in sessions.items():
        if not start <= day <= end:
            continue
        for slot, entries in slots.items():
            flattened.append(AttendanceSession(date=day, time_slot=slot.replace("_", ":"), records=list(entries)))
    if sort_key in ("date", "time_slot"):
        flattened.sort(key=lambda session: getattr(session, sort_key), reverse=direction == "desc")
    return flattened


# Progress --------------------------------------------------------------
PROGRESS_METRICS = ("height", "weight", "vertical_jump", "speed_test", "academic_score")


def _metric(record: ProgressRecord, name: str) -> float:
    value = getattr(record, name)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValidationError(
            f"Progress record {record.id} has a non-numeric {name}: {value!r}", field=name, key=record.id
        )
    return float(value)


def progress_trend(records: Iterable[ProgressRecord]) -> List[Dict[str, Any]]:
    """Per metric: the date series, the latest value and its share of the best value.

    Fewer than two records have no trend and yield an empty list. A metric
    whose best value is not positive reports a ratio of 0.
    """
    ordered = sorted(records, key=lambda record: (record.date, _created_at(record)))
    if len(ordered) < 2:
        return []
    trend_rows = []
    for name in PROGRESS_METRICS:
        values = [_metric(record, name) for record in ordered]
        best = max(values)
        latest = values[-1]
        trend_rows.append(
            {
                "metric": name,
                "latest": latest,
                "max": best,
                "ratio": latest / best if best > 0 else 0.0,
                "series": [
                    {"date": record.date.isoformat(), "value": value} for record, value in zip(ordered, values)
                ],
            }
        )
    return trend_rows


# Matches ---------------------------------------------------------------
def complete_past_matches(matches: Iterable[Match], today: date) -> Tuple[List[Match], List[str]]:
    """Move ``upcoming`` matches dated before ``today`` to ``completed``.

    Returns the updated collection and the ids that changed, so the caller can
    write the new status back. Other statuses are never touched.
    """
    updated: List[Match] = []
    changed: List[str] = []
    for match in matches:
        if match.status == "upcoming" and match.date < today:
            match = replace(match, status="completed")
            changed.append(match.id)
        updated.append(match)
    return updated, changed


def sort_matches(matches: Iterable[Match]) -> List[Match]:
    return sorted(matches, key=lambda match: (match.date, match.time or ""))


def filter_matches(
    matches: Iterable[Match], *, status: Optional[str] = None, search: Optional[str] = None
) -> List[Match]:
    term = search.strip().lower() if search else ""
    selected = []
    for match in matches:
        if _active(status) and match.status != status:
            continue
        if term and term not in match.opponent.lower() and term not in (match.location or "").lower():
            continue
        selected.append(match)
    return selected


def match_summary(matches: Sequence[Match], today: date) -> Dict[str, Any]:
    """Counts by status, win/loss record of completed games, next fixture."""
    counts = {"upcoming": 0, "in_progress": 0, "completed": 0}
    wins = losses = draws = 0
    for match in matches:
        counts[match.status] = counts.get(match.status, 0) + 1
        if match.status != "completed" or not match.score:
            continue
        ours, theirs = match.score.get("home", 0), match.score.get("away", 0)
        if not match.home_team:
            ours, theirs = theirs, ours
        if ours > theirs:
            wins += 1
        elif ours < theirs:
            losses += 1
        else:
            draws += 1
    upcoming = [match for match in sort_matches(matches) if match.status == "upcoming" and match.date >= today]
    return {
        "counts": counts,
        "record": {"wins": wins, "losses": losses, "draws": draws},
        "next_match": upcoming[0].id if upcoming else None,
    }


# Roster ----------------------------------------------------------------
def group_stats(
    group_ids: Iterable[str],
    students_by_group: Mapping[str, Sequence[Student]],
    trainers: Iterable[Trainer],
) -> Dict[str, Dict[str, int]]:
    trainer_list = list(trainers)
    stats = {}
    for group_id in group_ids:
        stats[group_id] = {
            "student_count": len(students_by_group.get(group_id, ())),
            "trainer_count": sum(1 for trainer in trainer_list if group_id in trainer.groups),
        }
    return stats


def dashboard_stats(
    *,
    students_by_group: Mapping[str, Sequence[Student]],
    groups_by_branch: Mapping[str, Sequence[Any]],
    trainers: Sequence[Trainer],
    payments: Sequence[Payment],
    tz: Optional[tzinfo] = None,
) -> Dict[str, Any]:
    totals = payment_totals(payments)
    return {
        "total_students": sum(len(students) for students in students_by_group.values()),
        "total_groups": sum(len(groups) for groups in groups_by_branch.values()),
        "total_trainers": len(trainers),
        "total_income": totals["income"],
        "total_expenses": totals["expenses"],
        "pending_payments": sum(1 for payment in payments if payment.status == "pending"),
        "monthly_stats": [bucket.to_dict() for bucket in monthly_buckets(payments, tz)],
    }


def sort_by_created_desc(records: Iterable[Any]) -> List[Any]:
    return sorted(records, key=lambda record: _created_at(record), reverse=True)
