"""Tests for start, skip, recall, transfer and close of a ticket."""

from models import SlotStatus, TicketStatus
from schemas import AppointmentBookRequest, CaseSaveRequest, CloseRequest, RoutingUpdate, UserUpdate


def _called(office, login, issue, **kwargs):
    session_id = login()
    ticket = issue(**kwargs)
    office.call_next(session_id)
    return session_id, ticket["id"]


def test_assigned_counter_survives_call_and_start(office, login, issue):
    session_id, ticket_id = _called(office, login, issue)
    assert office.store.ticket(ticket_id).assigned_counter_id == 1

    result = office.start_service(session_id, ticket_id)
    assert result.ok
    assert result.data["ticket"]["status"] == TicketStatus.IN_SERVICE.value
    assert result.data["ticket"]["assigned_counter_id"] == 1
    assert result.data["ticket"]["served_by_user_id"] == 2


def test_start_rejects_ticket_on_another_counter(office, login, second_user, issue):
    _, ticket_id = _called(office, login, issue)
    s2 = login("emp02")
    result = office.start_service(s2, ticket_id)
    assert result.code == "wrong_counter"
    assert office.store.ticket(ticket_id).status == TicketStatus.CALLED


def test_start_unknown_ticket(office, login):
    session_id = login()
    assert office.start_service(session_id, "missing").code == "ticket_not_found"


def test_closed_ticket_cannot_be_started_again(office, login, issue):
    session_id, ticket_id = _called(office, login, issue)
    office.start_service(session_id, ticket_id)
    office.close_ticket(CloseRequest(session_id=session_id, ticket_id=ticket_id, summary="Answered"))

    result = office.start_service(session_id, ticket_id)
    assert result.code == "bad_status"
    assert result.data["status"] == TicketStatus.CLOSED_RESOLVED.value


def test_close_defaults_to_resolved_and_creates_case(office, clock, login, issue):
    session_id, ticket_id = _called(office, login, issue)
    office.start_service(session_id, ticket_id)
    clock.advance(120)

    result = office.close_ticket(
        CloseRequest(session_id=session_id, ticket_id=ticket_id, summary="Answered", category="general"),
    )
    assert result.ok
    ticket = office.store.ticket(ticket_id)
    assert ticket.status == TicketStatus.CLOSED_RESOLVED
    assert ticket.closed_at == clock.now()
    assert ticket.closed_by_user_id == 2
    case = office.store.case_for(ticket_id)
    assert case.summary == "Answered"
    assert case.category == "general"
    assert case.outcome_code == TicketStatus.CLOSED_RESOLVED.value
    assert case.phone == "0551234567"


def test_close_requires_summary(office, login, issue):
    session_id, ticket_id = _called(office, login, issue)
    result = office.close_ticket(CloseRequest(session_id=session_id, ticket_id=ticket_id, summary="  "))
    assert result.code == "validation_error"
    assert result.fields == ["summary"]


def test_not_resolved_close_requires_reason_and_changes_nothing(office, login, issue):
    session_id, ticket_id = _called(office, login, issue)
    office.start_service(session_id, ticket_id)

    result = office.close_ticket(
        CloseRequest(
            session_id=session_id,
            ticket_id=ticket_id,
            summary="Could not help",
            outcome_status=TicketStatus.CLOSED_NOT_RESOLVED.value,
        )
    )
    assert result.code == "validation_error"
    assert "not_resolved_reason" in result.fields
    assert office.store.ticket(ticket_id).status == TicketStatus.IN_SERVICE
    assert office.store.case_for(ticket_id) is None
    assert office.store.data.feedback_windows == []


def test_awaiting_close_requires_due_date(office, login, issue):
    session_id, ticket_id = _called(office, login, issue)
    result = office.close_ticket(
        CloseRequest(
            session_id=session_id, ticket_id=ticket_id, summary="Waiting on records",
            outcome_status=TicketStatus.CLOSED_AWAITING.value,
        )
    )
    assert result.fields == ["due_date"]


def test_unknown_outcome_is_rejected(office, login, issue):
    session_id, ticket_id = _called(office, login, issue)
    result = office.close_ticket(
        CloseRequest(session_id=session_id, ticket_id=ticket_id, summary="x", outcome_status="DONE"),
    )
    assert result.code == "validation_error"
    assert result.fields == ["outcome_status"]


def test_skip_records_reason_and_call_log(office, login, issue):
    session_id, ticket_id = _called(office, login, issue)
    result = office.skip(session_id, ticket_id, reason="Not present")
    assert result.ok
    ticket = office.store.ticket(ticket_id)
    assert ticket.status == TicketStatus.SKIPPED
    assert ticket.skip_reason == "Not present"
    assert office.store.data.ticket_calls[-1].result.value == "skipped"


def test_skipped_ticket_can_be_recalled(office, login, issue):
    session_id, ticket_id = _called(office, login, issue)
    office.skip(session_id, ticket_id)
    result = office.recall(session_id, ticket_id)
    assert result.ok
    assert result.data["call_round"] == 2
    assert office.store.ticket(ticket_id).status == TicketStatus.CALLED


def test_assigned_ticket_cannot_be_recalled(office, login, issue):
    # the routing map hands counter 1 a service its user may not serve
    office.run(office.admin.update_user, UserUpdate(user_id=2, service_ids=[1]))
    session_id = login()
    office.run(office.admin.set_routing, RoutingUpdate(service_id=2, counter_id=1))
    ticket = issue(service_id=2)
    assert ticket["status"] == TicketStatus.ASSIGNED.value

    result = office.recall(session_id, ticket["id"])
    assert result.code == "bad_status"
    stored = office.store.ticket(ticket["id"])
    assert stored.status == TicketStatus.ASSIGNED
    assert stored.called_at is None
    assert office.store.data.ticket_calls == []


def test_transfer_moves_ticket_and_logs_it(office, login, second_user, issue):
    s1, ticket_id = _called(office, login, issue)
    login("emp02")
    office.start_service(s1, ticket_id)

    result = office.transfer(s1, ticket_id, 2, note="Needs complaints desk")
    assert result.ok
    ticket = office.store.ticket(ticket_id)
    assert ticket.status == TicketStatus.ASSIGNED
    assert ticket.assigned_counter_id == 2
    assert ticket.transferred_from_counter_id == 1
    assert ticket.served_by_user_id is None
    transfer = office.store.data.ticket_transfers[-1]
    assert (transfer.from_counter_id, transfer.to_counter_id) == (1, 2)
    assert transfer.note == "Needs complaints desk"


def test_transfer_to_same_counter_is_rejected(office, login, issue):
    session_id, ticket_id = _called(office, login, issue)
    result = office.transfer(session_id, ticket_id, 1)
    assert result.code == "validation_error"
    assert result.fields == ["target_counter_id"]


def test_transfer_to_unknown_counter(office, login, issue):
    session_id, ticket_id = _called(office, login, issue)
    assert office.transfer(session_id, ticket_id, 99).code == "counter_not_found"
    assert office.store.ticket(ticket_id).assigned_counter_id == 1


def test_save_case_and_ticket_details(office, login, issue):
    session_id, ticket_id = _called(office, login, issue)
    saved = office.save_case(
        CaseSaveRequest(session_id=session_id, ticket_id=ticket_id, priority="high", internal_notes="VIP"),
    )
    assert saved.ok
    assert saved.data["case"]["priority"] == "high"

    details = office.ticket_details(session_id, ticket_id)
    assert details.data["case"]["internal_notes"] == "VIP"
    assert details.data["appointment"] is None


def test_close_with_appointment_slot_books_it(office, login, issue):
    session_id, ticket_id = _called(office, login, issue)
    listing = office.appointment_slots(session_id).data["appointment"]
    # next Thursday after Sunday 2026-10-18
    assert listing["date"] == "2026-10-22"
    slot_id = listing["slots"][0]["id"]

    result = office.close_ticket(
        CloseRequest(session_id=session_id, ticket_id=ticket_id, summary="Booked", appointment_slot_id=slot_id),
    )
    assert result.data["ticket"]["status"] == TicketStatus.CLOSED_APPOINTMENT_BOOKED.value
    assert result.data["case"]["appointment_id"] == slot_id
    slot = office.appointments.slot(slot_id)
    assert slot.status == SlotStatus.booked
    assert slot.booked_ticket_id == ticket_id
    assert slot.booked_national_id == "1098765432"


def test_booked_slot_cannot_be_booked_twice(office, login, issue):
    session_id, first = _called(office, login, issue)
    slot_id = office.appointment_slots(session_id).data["appointment"]["slots"][0]["id"]
    assert office.book_appointment(
        AppointmentBookRequest(session_id=session_id, ticket_id=first, slot_id=slot_id),
    ).ok

    second = issue()
    office.call_next(session_id)
    result = office.book_appointment(
        AppointmentBookRequest(session_id=session_id, ticket_id=second["id"], slot_id=slot_id),
    )
    assert result.code == "slot_unavailable"


def test_requested_date_moves_to_appointment_weekday(office, login):
    session_id = login()
    listing = office.appointment_slots(session_id, "2026-10-25").data["appointment"]
    assert listing["adjusted"] is True
    assert listing["date"] == "2026-10-29"
    assert len(listing["slots"]) == 8


def test_counter_view_lists_current_and_skipped(office, login, issue):
    session_id, ticket_id = _called(office, login, issue)
    view = office.counter_view(session_id).data
    assert view["standby"] is False
    assert view["current_called"]["id"] == ticket_id
    assert [t["id"] for t in view["queue"]] == [ticket_id]

    office.skip(session_id, ticket_id)
    view = office.counter_view(session_id).data
    assert view["current_called"] is None
    assert [t["id"] for t in view["skipped"]] == [ticket_id]


def test_close_succeeds_when_feedback_window_fails(office, monkeypatch, login, issue):
    session_id, ticket_id = _called(office, login, issue)

    def broken(*args, **kwargs):
        raise RuntimeError("feedback store unavailable")

    monkeypatch.setattr(office.feedback, "open_window", broken)
    result = office.close_ticket(CloseRequest(session_id=session_id, ticket_id=ticket_id, summary="Answered"))
    assert result.ok
    assert office.store.ticket(ticket_id).status == TicketStatus.CLOSED_RESOLVED
    assert office.store.case_for(ticket_id).summary == "Answered"
    assert office.store.data.feedback_windows == []


def test_close_succeeds_when_auto_call_scheduling_fails(office, monkeypatch, login, issue):
    session_id, ticket_id = _called(office, login, issue)

    def broken(counter_id):
        raise RuntimeError("no event loop")

    monkeypatch.setattr(office.timers, "reschedule", broken)
    result = office.close_ticket(CloseRequest(session_id=session_id, ticket_id=ticket_id, summary="Answered"))
    assert result.ok
    assert office.store.ticket(ticket_id).status == TicketStatus.CLOSED_RESOLVED
    assert len(office.store.data.feedback_windows) == 1


def test_impossible_appointment_date_is_rejected(office, login):
    session_id = login()
    result = office.appointment_slots(session_id, "2026-02-30")
    assert result.code == "validation_error"
    assert result.fields == ["date"]
    assert office.store.data.appointments == []


def test_malformed_appointment_date_lists_next_day(office, login):
    session_id = login()
    listing = office.appointment_slots(session_id, "next week").data["appointment"]
    assert listing["date"] == "2026-10-22"
    assert listing["adjusted"] is False
