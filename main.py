"""FastAPI application for the counter queue office.

The app exposes the kiosk, counter, display, feedback and admin endpoints.
All handlers are ``async def`` so they run on the event loop together with
the idle-rest auto-call timers; the office state therefore only ever has
one writer.  Configuration comes from environment variables (see
``config.py``).  Redis is optional and used only for event publishing and
board caching.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from clock import Clock
from config import ADMIN_PASS, PORT, UPDATES_CHANNEL, configure_logging
from reports import compute_report
from schemas import (
    ActionResult,
    AppointmentBookRequest,
    CaseSaveRequest,
    CloseRequest,
    CounterCreate,
    CounterToggle,
    CounterUpdate,
    FeedbackSubmitRequest,
    IssueTicketRequest,
    LoginRequest,
    RoutingUpdate,
    ServiceCreate,
    ServiceUpdate,
    SessionRequest,
    SettingsUpdate,
    SkipRequest,
    TicketActionRequest,
    TransferRequest,
    UserCreate,
    UserUpdate,
)
from services import QueueOffice, get_redis
from store import DirectoryStore

logger = logging.getLogger(__name__)

# HTTP status for each failure code; anything unlisted is a 400.
STATUS_BY_CODE = {
    "validation_error": 422,
    "invalid_credentials": 401,
    "no_session": 401,
    "session_ended": 401,
    "ticket_not_found": 404,
    "counter_not_found": 404,
    "service_not_found": 404,
    "user_not_found": 404,
    "beneficiary_not_found": 404,
    "wrong_counter": 409,
    "bad_status": 409,
    "counter_disabled": 409,
    "service_unavailable": 409,
    "slot_unavailable": 409,
    "username_taken": 409,
    "no_window": 409,
    "outside_work_hours": 403,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    clock = Clock()
    store = DirectoryStore(clock)
    office = QueueOffice(store, clock, call_later=asyncio.get_running_loop().call_later)
    if ADMIN_PASS:
        office.run(office.admin.set_passcode, ADMIN_PASS)
    app.state.office = office
    logger.info("Queue office ready (%s)", store.db_path)
    yield
    office.timers.cancel_all()
    store.close()


app = FastAPI(title="Counter Queue Office", lifespan=lifespan)

# Kiosk, display and feedback screens are served from other origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_office(request: Request) -> QueueOffice:
    return request.app.state.office


def respond(result: ActionResult) -> Dict[str, Any]:
    """Translate an operation result into a JSON body or an HTTP error."""
    if result.ok:
        return {"ok": True, **result.data}
    if result.code == "no_ticket":
        # nothing to call is a normal outcome, not an error
        return {"ok": False, "code": result.code, "message": result.message, **result.data}
    raise HTTPException(
        status_code=STATUS_BY_CODE.get(result.code, 400),
        detail={"code": result.code, "message": result.message, "fields": result.fields, **result.data},
    )


def require_admin(office: QueueOffice, passcode: Optional[str]) -> None:
    if not office.admin.check_passcode(passcode):
        raise HTTPException(status_code=401, detail="Invalid passcode")


@app.get("/health")
async def health(office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    return {
        "status": "ok",
        "business_date": office.clock.business_date(),
        "redis": get_redis() is not None,
    }


# ---------------------------------------------------------------------------
# Kiosk
# ---------------------------------------------------------------------------


@app.get("/kiosk/services")
async def kiosk_services(lang: str = "ar", office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    return office.kiosk_services(lang)


@app.post("/kiosk/issue")
async def kiosk_issue(body: IssueTicketRequest, office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    """Issue a ticket for a walk-in beneficiary.

    Rejected with 403 outside work hours and 422 with the offending
    ``fields`` when beneficiary details are incomplete.
    """
    return respond(office.issue_ticket(body))


# ---------------------------------------------------------------------------
# Counter
# ---------------------------------------------------------------------------


@app.post("/counter/login")
async def counter_login(body: LoginRequest, office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    return respond(office.login(body.username, body.password))


@app.post("/counter/logout")
async def counter_logout(body: SessionRequest, office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    return respond(office.logout(body.session_id))


@app.post("/counter/heartbeat")
async def counter_heartbeat(body: SessionRequest, office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    return respond(office.heartbeat(body.session_id))


@app.get("/counter")
async def counter_view(session_id: int, office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    return respond(office.counter_view(session_id))


@app.post("/counter/next")
async def counter_next(body: SessionRequest, office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    """Call the next ticket for the session's counter.

    Returns ``ok=false`` with ``code=no_ticket`` and a ``reason`` of
    ``queue_empty`` or ``none_eligible`` when there is nothing to call.
    """
    return respond(office.call_next(body.session_id))


@app.post("/counter/start")
async def counter_start(body: TicketActionRequest, office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    return respond(office.start_service(body.session_id, body.ticket_id))


@app.post("/counter/no_show")
async def counter_no_show(body: TicketActionRequest, office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    # manual re-call; ``warn`` is set once the round reaches the configured maximum
    return respond(office.recall(body.session_id, body.ticket_id))


@app.post("/counter/skip")
async def counter_skip(body: SkipRequest, office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    return respond(office.skip(body.session_id, body.ticket_id, body.reason))


@app.post("/counter/transfer")
async def counter_transfer(body: TransferRequest, office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    return respond(office.transfer(body.session_id, body.ticket_id, body.target_counter_id, body.note))


@app.post("/counter/close")
async def counter_close(body: CloseRequest, office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    return respond(office.close_ticket(body))


@app.get("/api/ticket/{ticket_id}")
async def ticket_details(ticket_id: str, session_id: int, office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    return respond(office.ticket_details(session_id, ticket_id))


@app.post("/counter/case/save")
async def case_save(body: CaseSaveRequest, office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    return respond(office.save_case(body))


@app.get("/api/appointments/slots")
async def appointment_slots(session_id: int, date: Optional[str] = None,
                            office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    return respond(office.appointment_slots(session_id, date))


@app.post("/counter/appointments/book")
async def appointment_book(body: AppointmentBookRequest, office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    return respond(office.book_appointment(body))


# ---------------------------------------------------------------------------
# Display and feedback
# ---------------------------------------------------------------------------


@app.get("/api/display/board")
async def display_board(office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    return {"ok": True, **office.display_board()}


@app.get("/api/display/counter/{counter_id}")
async def display_counter(counter_id: int, office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    return {"ok": True, **office.display_counter(counter_id)}


@app.get("/display/events")
async def display_events(office: QueueOffice = Depends(get_office)):
    """Server-Sent Events stream of call announcements for display screens."""

    async def event_stream():
        redis_client = get_redis()
        if not redis_client:
            # No Redis: push the board every few seconds instead
            while True:
                board = office.display_board(use_cache=False)
                yield f"data: {json.dumps({'type': 'board_update', 'data': board})}\n\n"
                await asyncio.sleep(5)
        else:
            pubsub = redis_client.pubsub()
            pubsub.subscribe(UPDATES_CHANNEL)
            try:
                while True:
                    message = pubsub.get_message(timeout=0.1)
                    if message and message["type"] == "message":
                        yield f"data: {message['data']}\n\n"
                    else:
                        await asyncio.sleep(1)
            finally:
                pubsub.close()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@app.get("/api/feedback/current")
async def feedback_current(counter_id: Optional[int] = None,
                           office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    return {"ok": True, **office.current_feedback(counter_id)}


@app.post("/feedback/submit")
async def feedback_submit(body: FeedbackSubmitRequest, office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    return respond(office.submit_feedback(body))


# ---------------------------------------------------------------------------
# Beneficiary lookup (counter session or admin passcode)
# ---------------------------------------------------------------------------


def require_staff(office: QueueOffice, session_id: Optional[int], passcode: Optional[str]) -> None:
    if passcode and office.admin.check_passcode(passcode):
        return
    _, failure = office.sessions.resolve(session_id, require_counter=False)
    if failure is not None:
        respond(failure)


@app.get("/api/beneficiaries/search")
async def beneficiaries_search(q: str = "", mode: str = "auto", session_id: Optional[int] = None,
                               passcode: Optional[str] = None,
                               office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    """Find beneficiaries by national id, phone, ticket code or name (``mode=auto`` guesses)."""
    require_staff(office, session_id, passcode)
    return {"ok": True, **office.beneficiary_search(q, mode)}


@app.get("/api/beneficiaries/list")
async def beneficiaries_list(range_name: str = Query("week", alias="range"), session_id: Optional[int] = None,
                             passcode: Optional[str] = None,
                             office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    require_staff(office, session_id, passcode)
    return {"ok": True, **office.beneficiary_list(range_name)}


@app.get("/api/beneficiaries/{key}")
async def beneficiary_history(key: str, session_id: Optional[int] = None, passcode: Optional[str] = None,
                              office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    require_staff(office, session_id, passcode)
    return respond(office.beneficiary_history(key))


# ---------------------------------------------------------------------------
# Admin (passcode gated)
# ---------------------------------------------------------------------------


@app.get("/admin/overview")
async def admin_overview(passcode: str, office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    require_admin(office, passcode)
    return office.admin.overview()


@app.post("/admin/counters/add")
async def admin_counter_add(body: CounterCreate, passcode: str,
                            office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    require_admin(office, passcode)
    return respond(office.run(office.admin.add_counter, body))


@app.post("/admin/counters/update")
async def admin_counter_update(body: CounterUpdate, passcode: str,
                               office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    require_admin(office, passcode)
    return respond(office.run(office.admin.update_counter, body))


@app.post("/admin/counters/toggle")
async def admin_counter_toggle(body: CounterToggle, passcode: str,
                               office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    require_admin(office, passcode)
    return respond(office.run(office.admin.toggle_counter, body))


@app.post("/admin/services/add")
async def admin_service_add(body: ServiceCreate, passcode: str,
                            office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    require_admin(office, passcode)
    return respond(office.run(office.admin.add_service, body))


@app.post("/admin/services/update")
async def admin_service_update(body: ServiceUpdate, passcode: str,
                               office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    require_admin(office, passcode)
    return respond(office.run(office.admin.update_service, body))


@app.post("/admin/services/delete")
async def admin_service_delete(service_id: int, passcode: str,
                               office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    require_admin(office, passcode)
    return respond(office.run(office.admin.delete_service, service_id))


@app.post("/admin/service-routing/update")
async def admin_routing_update(body: RoutingUpdate, passcode: str,
                               office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    require_admin(office, passcode)
    return respond(office.run(office.admin.set_routing, body))


@app.post("/admin/settings/update")
async def admin_settings_update(body: SettingsUpdate, passcode: str,
                                office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    require_admin(office, passcode)
    return respond(office.run(office.admin.update_settings, body))


@app.post("/admin/users/add")
async def admin_user_add(body: UserCreate, passcode: str,
                         office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    require_admin(office, passcode)
    return respond(office.run(office.admin.add_user, body))


@app.post("/admin/users/update")
async def admin_user_update(body: UserUpdate, passcode: str,
                            office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    require_admin(office, passcode)
    return respond(office.run(office.admin.update_user, body))


@app.get("/admin/reports")
async def admin_reports(passcode: Optional[str] = None, range_name: str = Query("today", alias="range"),
                        date_from: Optional[str] = None, date_to: Optional[str] = None,
                        x_username: Optional[str] = Header(None, alias="X-Username"),
                        x_password: Optional[str] = Header(None, alias="X-Password"),
                        office: QueueOffice = Depends(get_office)) -> Dict[str, Any]:
    """Ticket and feedback summaries for ``today``, ``week``, ``month`` or a custom range.

    Open to the admin passcode or to admin and supervisor users sending
    their credentials in the ``X-Username`` and ``X-Password`` headers.
    """
    if not office.admin.check_reports_access(passcode, x_username, x_password):
        raise HTTPException(status_code=401, detail="Reports access denied")
    return compute_report(office.store.data, office.clock, range_name, date_from, date_to)



if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", PORT))
    uvicorn.run(app, host="0.0.0.0", port=port)
