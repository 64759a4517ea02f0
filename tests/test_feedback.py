"""Tests for feedback windows and submissions."""

import pytest

from schemas import CloseRequest, FeedbackSubmitRequest, SettingsUpdate


@pytest.fixture
def closed(office, login, issue):
    """Serve and close one ticket on counter 1; returns its id."""
    session_id = login()
    ticket = issue()
    office.call_next(session_id)
    office.start_service(session_id, ticket["id"])
    office.close_ticket(CloseRequest(session_id=session_id, ticket_id=ticket["id"], summary="Answered"))
    return ticket["id"]


def _submit(office, ticket_id, rating=5, **kwargs):
    return office.submit_feedback(FeedbackSubmitRequest(ticket_id=ticket_id, employee_rating=rating, **kwargs))


def test_close_opens_window(office, closed):
    payload = office.current_feedback()
    assert payload["window"]["ticket_id"] == closed
    assert payload["window"]["counter_id"] == 1
    assert payload["q1"] and payload["q2"]


def test_window_expires(office, clock, closed):
    clock.advance(121)
    assert office.current_feedback() == {"window": None}
    assert _submit(office, closed).code == "no_window"


def test_submit_stores_feedback_once(office, closed):
    first = _submit(office, closed, rating=4, solved_yes_no=True)
    assert first.ok
    assert first.data["duplicate"] is False
    stored = office.store.data.feedback
    assert len(stored) == 1
    assert stored[0].employee_rating == 4
    assert stored[0].user_id == 2
    assert stored[0].solved_yes_no is True

    # the window is consumed by the first submission
    assert _submit(office, closed).code == "no_window"
    assert len(office.store.data.feedback) == 1


def test_resubmit_into_reopened_window_is_not_duplicated(office, closed):
    _submit(office, closed)
    office.feedback.open_window(office.store.ticket(closed), 1, 2)

    second = _submit(office, closed, rating=1)
    assert second.ok
    assert second.data["duplicate"] is True
    assert [f.employee_rating for f in office.store.data.feedback] == [5]


@pytest.mark.parametrize("rating", [0, 6, 3.5, None])
def test_rating_must_be_whole_number_one_to_five(office, closed, rating):
    result = _submit(office, closed, rating=rating)
    assert result.code == "validation_error"
    assert result.fields == ["employee_rating"]
    # the window stays open after a rejected rating
    assert office.current_feedback()["window"]["ticket_id"] == closed


def test_wrong_ticket_is_rejected(office, closed):
    assert _submit(office, "other-ticket").code == "no_window"


def test_per_counter_mode_filters_by_counter(office, closed):
    office.run(office.admin.update_settings, SettingsUpdate(feedback_mode="per_counter"))
    assert office.current_feedback(counter_id=2) == {"window": None}
    assert office.current_feedback(counter_id=1)["window"]["ticket_id"] == closed
    assert _submit(office, closed, counter_id=2).code == "no_window"
    assert _submit(office, closed, counter_id=1).ok

