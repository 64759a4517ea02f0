"""Read-only aggregation over tickets and feedback for a date range."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from clock import Clock, add_days
from models import CLOSED_STATUSES, Store

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DAY_SECONDS = 24 * 3600


def _clean_date(value: Optional[str]) -> Optional[str]:
    value = (value or "")[:10]
    return value if _ISO_DATE.match(value) else None


def resolve_range(clock: Clock, range_name: str = "today", date_from: Optional[str] = None,
                  date_to: Optional[str] = None) -> Tuple[str, str]:
    """Turn a named range (or custom from/to) into inclusive business dates."""
    today = clock.business_date()
    name = (range_name or "today").lower()
    if name == "today":
        return today, today
    if name == "week":
        return add_days(today, -6), today
    if name == "month":
        return add_days(today, -29), today
    start = _clean_date(date_from) or today
    end = _clean_date(date_to) or start
    if end < start:
        start, end = end, start
    return start, end


def _seconds(start: Optional[datetime], end: Optional[datetime]) -> Optional[float]:
    if start is None or end is None:
        return None
    value = (end - start).total_seconds()
    return value if 0 <= value < _DAY_SECONDS else None


def _avg(total: float, count: int) -> Optional[float]:
    return round(total / count, 1) if count else None


def compute_report(store: Store, clock: Clock, range_name: str = "today",
                   date_from: Optional[str] = None, date_to: Optional[str] = None) -> Dict[str, Any]:
    """Summaries of tickets created and feedback submitted in the range."""
    start, end = resolve_range(clock, range_name, date_from, date_to)

    def in_range(moment: datetime) -> bool:
        return start <= clock.local_date_of(moment) <= end

    tickets = [t for t in store.tickets if in_range(t.created_at)]
    feedback = [f for f in store.feedback if in_range(f.created_at)]
    counters = {c.id: c for c in store.counters}
    services = {s.id: s for s in store.services}
    users = {u.id: u for u in store.users}

    status_counts: Dict[str, int] = {}
    per_service: Dict[int, Dict[str, Any]] = {}
    per_counter: Dict[Optional[int], Dict[str, Any]] = {}
    per_employee: Dict[int, Dict[str, Any]] = {}

    def employee_row(user_id: int) -> Dict[str, Any]:
        if user_id not in per_employee:
            user = users.get(user_id)
            per_employee[user_id] = {
                "user_id": user_id,
                "employee_name": user.full_name if user else f"ID {user_id}",
                "served": 0, "closed": 0, "rating_sum": 0, "rating_n": 0,
            }
        return per_employee[user_id]

    for t in tickets:
        closed = t.status in CLOSED_STATUSES
        status_counts[t.status.value] = status_counts.get(t.status.value, 0) + 1

        service = services.get(t.service_id)
        row = per_service.setdefault(t.service_id, {
            "service_id": t.service_id,
            "service_name": t.service_name_ar or (service.name_ar if service else "-"),
            "total": 0, "closed": 0, "wait_sum": 0.0, "wait_n": 0, "serve_sum": 0.0, "serve_n": 0,
        })
        row["total"] += 1
        row["closed"] += closed
        wait = _seconds(t.created_at, t.called_at)
        if wait is not None:
            row["wait_sum"] += wait
            row["wait_n"] += 1
        serve = _seconds(t.in_service_at, t.closed_at)
        if serve is not None:
            row["serve_sum"] += serve
            row["serve_n"] += 1

        counter = counters.get(t.assigned_counter_id)
        crow = per_counter.setdefault(t.assigned_counter_id, {
            "counter_id": t.assigned_counter_id,
            "counter_name": counter.name if counter else "Unassigned",
            "total": 0, "closed": 0,
        })
        crow["total"] += 1
        crow["closed"] += closed

        if t.served_by_user_id is not None:
            erow = employee_row(t.served_by_user_id)
            erow["served"] += 1
            erow["closed"] += closed

    for f in feedback:
        erow = employee_row(f.user_id)
        erow["rating_sum"] += f.employee_rating
        erow["rating_n"] += 1

    services_out = []
    for row in per_service.values():
        services_out.append({
            "service_id": row["service_id"],
            "service_name": row["service_name"],
            "total": row["total"],
            "closed": row["closed"],
            "avg_wait_seconds": _avg(row["wait_sum"], row["wait_n"]),
            "avg_service_seconds": _avg(row["serve_sum"], row["serve_n"]),
        })

    employees_out = []
    for row in per_employee.values():
        employees_out.append({
            "user_id": row["user_id"],
            "employee_name": row["employee_name"],
            "served": row["served"],
            "closed": row["closed"],
            "avg_rating": _avg(row["rating_sum"], row["rating_n"]),
        })

    ratings = [f.employee_rating for f in feedback]
    closed_total = sum(1 for t in tickets if t.status in CLOSED_STATUSES)
    return {
        "from": start,
        "to": end,
        "totals": {
            "tickets": len(tickets),
            "closed": closed_total,
            "feedback": len(feedback),
            "solved_yes": sum(1 for f in feedback if f.solved_yes_no is True),
            "solved_no": sum(1 for f in feedback if f.solved_yes_no is False),
            "avg_rating": _avg(sum(ratings), len(ratings)),
        },
        "status_counts": status_counts,
        "services": sorted(services_out, key=lambda r: r["service_id"]),
        "counters": sorted(per_counter.values(), key=lambda r: (r["counter_id"] is None, r["counter_id"] or 0)),
        "employees": sorted(employees_out, key=lambda r: r["user_id"]),
    }
