"""CSV and JSON exports of payment history and financial reports."""
from __future__ import annotations

import json
from datetime import date, tzinfo
from typing import Any, Dict, Iterable, Optional

from .aggregation import local_datetime
from .models import Payment

CSV_HEADER = "Date,Type,Category,Amount,Status,Description"


def _number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else repr(float(value))


def _quote(text: str) -> str:
    return '"' + text.replace('"', '""') + '"'


def payments_csv(payments: Iterable[Payment], tz: Optional[tzinfo] = None) -> str:
    """One row per payment; the description column is always quoted."""
    lines = [CSV_HEADER]
    for payment in payments:
        created = local_datetime(payment.created_at, tz).date().isoformat()
        lines.append(
            ",".join(
                (
                    created,
                    payment.type,
                    payment.category,
                    _number(payment.amount),
                    payment.status,
                    _quote(payment.description or ""),
                )
            )
        )
    return "\n".join(lines)


def date_range_label(mode: str, start: Optional[date] = None, end: Optional[date] = None) -> str:
    if mode == "custom" and start and end:
        return f"{start.isoformat()} to {end.isoformat()}"
    return mode


def report_document(report: Dict[str, Any]) -> Dict[str, Any]:
    """Wire shape of a financial report, as offered for download."""
    totals = report["totals"]
    mode = report.get("date_range", "all")
    return {
        "title": "Financial Report",
        "dateRange": mode,
        "summary": {"income": totals["income"], "expenses": totals["expenses"], "net": totals["net"]},
        "categoryBreakdown": report["category_breakdown"],
        "monthlyTrend": report["monthly_trend"],
    }


def report_json(report: Dict[str, Any]) -> str:
    return json.dumps(report_document(report), indent=2, ensure_ascii=False)
