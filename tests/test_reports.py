"""Tests for report ranges and aggregation."""

from reports import compute_report, resolve_range
from schemas import CloseRequest, FeedbackSubmitRequest


def test_named_ranges(clock):
    assert resolve_range(clock, "today") == ("2026-10-18", "2026-10-18")
    assert resolve_range(clock, "month") == ("2026-09-19", "2026-10-18")


def test_custom_range_is_ordered_and_defaulted(clock):
    assert resolve_range(clock, "custom", "2026-10-10", "2026-10-01") == ("2026-10-01", "2026-10-10")
    assert resolve_range(clock, "custom", "2026-10-05") == ("2026-10-05", "2026-10-05")
    assert resolve_range(clock, "custom", "garbage", None) == ("2026-10-18", "2026-10-18")


def test_report_aggregates_waits_services_and_employees(office, clock, login, issue):
    session_id = login()
    ticket = issue()
    issue(service_id=2)
    clock.advance(60)
    office.call_next(session_id)
    office.start_service(session_id, ticket["id"])
    clock.advance(300)
    office.close_ticket(CloseRequest(session_id=session_id, ticket_id=ticket["id"], summary="Answered"))
    office.submit_feedback(FeedbackSubmitRequest(ticket_id=ticket["id"], employee_rating=4, solved_yes_no=True))

    report = compute_report(office.store.data, clock)
    assert report["totals"] == {
        "tickets": 2, "closed": 1, "feedback": 1, "solved_yes": 1, "solved_no": 0, "avg_rating": 4.0,
    }
    assert report["status_counts"] == {"CLOSED_RESOLVED": 1, "NEW": 1}

    inquiry = report["services"][0]
    assert inquiry["service_id"] == 1
    assert inquiry["avg_wait_seconds"] == 60.0
    assert inquiry["avg_service_seconds"] == 300.0
    assert report["services"][1]["avg_wait_seconds"] is None

    assert [c["counter_id"] for c in report["counters"]] == [1, None]
    assert report["employees"] == [
        {"user_id": 2, "employee_name": "Employee 1", "served": 1, "closed": 1, "avg_rating": 4.0},
    ]


def test_report_excludes_other_days(office, clock, issue):
    issue()
    clock.advance(24 * 3600)
    assert compute_report(office.store.data, clock)["totals"]["tickets"] == 0
    assert compute_report(office.store.data, clock, "week")["totals"]["tickets"] == 1
