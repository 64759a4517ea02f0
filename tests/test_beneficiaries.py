"""Tests for beneficiary search, recent list and history."""

import pytest

from beneficiaries import beneficiary_key, matches_key, normalize_digits
from conftest import START
from models import Beneficiary, Ticket
from schemas import CloseRequest, FeedbackSubmitRequest

OMAR = {"full_name": "Omar Khalid Alharbi", "national_id": "2087654321", "phone": "0509876543"}


@pytest.fixture
def visits(office, clock, login, issue):
    """Sara visits twice (the first visit closed and rated), Omar once in between."""
    session_id = login()
    first = issue()
    clock.advance(60)
    other = issue(**OMAR)
    clock.advance(60)
    second = issue(service_id=2)

    office.call_next(session_id)
    office.start_service(session_id, first["id"])
    clock.advance(60)
    office.close_ticket(CloseRequest(session_id=session_id, ticket_id=first["id"], summary="Asked about renewal"))
    office.submit_feedback(FeedbackSubmitRequest(ticket_id=first["id"], employee_rating=4))
    return {"first": first, "other": other, "second": second}


def _ticket(**beneficiary):
    person = {"full_name": "", "national_id": "", "phone": "", "beneficiary_type": "citizen", **beneficiary}
    return Ticket(id="t-1", ticket_code="A-009", service_id=1, beneficiary=Beneficiary(**person), created_at=START)


def test_normalize_digits():
    assert normalize_digits("+966 55-123") == "96655123"
    assert normalize_digits(None) == ""


def test_key_falls_back_from_national_id_to_phone_name_and_code():
    assert beneficiary_key(_ticket(national_id="10-98", phone="055")) == "1098"
    assert beneficiary_key(_ticket(phone="055 123")) == "055123"
    assert beneficiary_key(_ticket(full_name=" Sara Ahmed ")) == "name:Sara Ahmed"
    assert beneficiary_key(_ticket()) == "ticket:A-009"


def test_key_matching():
    ticket = _ticket(full_name="Sara Ahmed", national_id="1098765432", phone="0551234567")
    assert matches_key(ticket, "1098765432")
    assert matches_key(ticket, "0551234567")
    assert matches_key(ticket, "name:Sara Ahmed")
    assert not matches_key(ticket, "name:")
    assert not matches_key(ticket, "name:Sara")
    assert matches_key(ticket, "ticket:A-009")
    assert not matches_key(ticket, "abc")


def test_search_by_national_id_groups_visits(office, visits):
    results = office.beneficiary_search("1098765432")["results"]
    assert len(results) == 1
    row = results[0]
    assert row["key"] == "1098765432"
    assert row["full_name"] == "Sara Ahmed Alqahtani"
    assert row["count"] == 2
    # the first visit closed after the second one was issued
    assert row["last_status"] == "CLOSED_RESOLVED"
    assert row["last_summary"] == "Asked about renewal"
    assert row["last_date"] == row["last_updated_at"]


def test_search_modes(office, visits):
    def keys(query, mode="auto"):
        return [r["key"] for r in office.beneficiary_search(query, mode)["results"]]

    assert keys("1234567", "phone") == ["1098765432"]
    assert keys("55123", "nid") == []
    # fewer than eight digits in auto mode is a ticket code
    assert keys("002") == ["2087654321"]
    assert keys("c-001", "ticket") == ["1098765432"]
    assert keys("khalid") == ["2087654321"]
    assert keys("AHMED", "name") == ["1098765432"]
    assert keys("ahmed", "bogus") == ["1098765432"]
    assert keys("   ") == []


def test_search_orders_most_recent_first(office, visits):
    results = office.beneficiary_search("al", "name")["results"]
    assert [r["key"] for r in results] == ["1098765432", "2087654321"]


def test_recent_list_uses_range(office, clock, visits):
    assert len(office.beneficiary_list("day")["results"]) == 2
    clock.advance(2 * 24 * 3600)
    assert office.beneficiary_list("day")["results"] == []
    assert len(office.beneficiary_list("week")["results"]) == 2
    assert len(office.beneficiary_list("unknown")["results"]) == 2


def test_history_lists_tickets_newest_first_with_summary(office, visits):
    result = office.beneficiary_history("1098765432")
    assert result.ok
    data = result.data
    assert data["profile"] == {
        "full_name": "Sara Ahmed Alqahtani", "national_id": "1098765432", "phone": "0551234567",
    }
    assert [t["id"] for t in data["tickets"]] == [visits["second"]["id"], visits["first"]["id"]]

    closed = data["tickets"][1]
    assert closed["counter_name"] == "Counter 1"
    assert closed["employee_name"] == "Employee 1"
    assert closed["case_summary"] == "Asked about renewal"
    assert closed["case_outcome"] == "CLOSED_RESOLVED"
    assert closed["feedback"]["employee_rating"] == 4

    waiting = data["tickets"][0]
    assert waiting["case_summary"] == ""
    assert waiting["case_outcome"] == waiting["status"]
    assert waiting["feedback"] is None

    assert data["summary"] == {
        "total_tickets": 2,
        "closed_tickets": 1,
        "last_counter": "Counter 1",
        "last_employee": "Employee 1",
        "avg_rating": 4.0,
        "ratings_count": 1,
    }


def test_history_by_name_key(office, visits):
    result = office.beneficiary_history("name:Omar Khalid Alharbi")
    assert [t["id"] for t in result.data["tickets"]] == [visits["other"]["id"]]


def test_history_for_unknown_key(office, visits):
    assert office.beneficiary_history("5550000000").code == "beneficiary_not_found"
