"""Queue office operations.

``QueueOffice`` wires the directory store, session registry, routing
engine, call scheduler and feedback windows together and exposes the
operations the HTTP layer calls.  Every mutating operation runs through
``QueueOffice.run`` so it is applied all-or-nothing and persisted once.

Redis is optional and used only for event publishing and a short-lived
display board cache.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

import redis

from admin import OfficeAdmin
from appointments import AppointmentBook
from beneficiaries import BeneficiaryDirectory
from clock import Clock, weekday_sun0
from config import BOARD_CACHE_KEY, BOARD_CACHE_SECONDS, REDIS_URL, UPDATES_CHANNEL
from feedback import FeedbackWindowManager
from models import (
    CLOSED_STATUSES,
    AvailabilityMode,
    Beneficiary,
    CallResult,
    Case,
    CounterSession,
    OfficeSettings,
    Service,
    SessionStatus,
    Ticket,
    TicketStatus,
    TicketTransfer,
)
from routing import RoutingEngine
from scheduler import CallLater, CallScheduler, IdleRestTimers
from schemas import (
    ActionResult,
    AppointmentBookRequest,
    CaseSaveRequest,
    CloseRequest,
    FeedbackSubmitRequest,
    IssueTicketRequest,
)
from sessions import SessionRegistry
from store import DirectoryStore

logger = logging.getLogger(__name__)

# Service groups that are gated by beneficiary type and listed apart.
GROUP_BENEFICIARY = {"teacher": "teacher", "staff": "staff", "student": "parent_student"}

NOTE_MAX = 200

# Redis connection
_redis_client = None


def get_redis() -> Optional[redis.Redis]:
    """Get Redis client if configured."""
    global _redis_client
    if not REDIS_URL:
        return None

    if _redis_client is None:
        try:
            _redis_client = redis.from_url(REDIS_URL, decode_responses=True)
            _redis_client.ping()
        except redis.RedisError as e:
            logger.warning("Redis connection failed: %s", e)
            _redis_client = None

    return _redis_client


def _dump(model) -> Optional[Dict[str, Any]]:
    return model.model_dump(mode="json") if model is not None else None


def service_available_today(service: Service, work_date: str, settings: OfficeSettings) -> bool:
    if not service.is_active or not service.kiosk_visible:
        return False
    if service.availability_mode == AvailabilityMode.weekly_day:
        weekday = service.availability_weekday
        if weekday is None:
            weekday = settings.appointments.weekday
        return weekday_sun0(work_date) == weekday
    return True


class QueueOffice:
    def __init__(self, store: DirectoryStore, clock: Clock, call_later: Optional[CallLater] = None) -> None:
        self.store = store
        self.clock = clock
        self.sessions = SessionRegistry(store, clock)
        self.routing = RoutingEngine(store, clock, self.sessions)
        self.scheduler = CallScheduler(store, clock, self.sessions)
        self.feedback = FeedbackWindowManager(store, clock)
        self.appointments = AppointmentBook(store, clock)
        self.beneficiaries = BeneficiaryDirectory(store, clock)
        self.timers = IdleRestTimers(store, call_later, self._on_timer)
        self.admin = OfficeAdmin(store, clock, self.timers)

    def run(self, operation: Callable[..., ActionResult], *args: Any, **kwargs: Any) -> ActionResult:
        """Apply ``operation`` as one all-or-nothing store mutation.

        A failed result rolls the store back; a successful one is saved and
        invalidates the cached display board.
        """
        with self.store.mutation() as m:
            result = operation(*args, **kwargs)
            if not result.ok:
                m.rollback()
        if result.ok:
            invalidate_board_cache()
        else:
            logger.info("%s rejected: %s", getattr(operation, "__name__", "operation"), result.code)
        return result

    # ------------------------------------------------------------------
    # Kiosk
    # ------------------------------------------------------------------

    def _service_entry(self, service: Service, lang: str) -> Dict[str, Any]:
        name = service.name_en if lang == "en" and service.name_en else service.name_ar
        return {
            "id": service.id,
            "name": name,
            "type": service.type.value,
            "code_prefix": service.code_prefix or "T",
            "requires_previous_ref": service.requires_previous_ref,
        }

    def kiosk_services(self, lang: str = "ar") -> Dict[str, Any]:
        settings = self.store.data.settings
        if not self.clock.is_within_work_hours(settings.work_hours):
            return {"open": False, "work_hours": _dump(settings.work_hours), "services": [], "groups": {}}
        work_date = self.clock.business_date()
        services = self.store.data.services
        listed = [
            s for s in services
            if s.group.strip() not in GROUP_BENEFICIARY and service_available_today(s, work_date, settings)
        ]
        groups = {
            group: [self._service_entry(s, lang) for s in services if s.group.strip() == group and s.is_active]
            for group in GROUP_BENEFICIARY
        }
        return {
            "open": True,
            "office_name": settings.office_name,
            "services": [self._service_entry(s, lang) for s in listed],
            "groups": groups,
        }

    def issue_ticket(self, request: IssueTicketRequest) -> ActionResult:
        return self.run(self._issue_ticket, request)

    def _issue_ticket(self, request: IssueTicketRequest) -> ActionResult:
        settings = self.store.data.settings
        if not self.clock.is_within_work_hours(settings.work_hours):
            return ActionResult.failure(
                "outside_work_hours", "The office is closed now.", work_hours=_dump(settings.work_hours),
            )
        service = self.store.service(request.service_id)
        if service is None:
            return ActionResult.failure("service_not_found", "Service not found.")

        full_name = request.full_name.strip()
        national_id = request.national_id.strip()
        phone = request.phone.strip()
        beneficiary_type = request.beneficiary_type.strip()
        previous_ref = request.previous_ref.strip()

        missing = []
        if len(full_name.split()) < 3:
            missing.append("full_name")
        if len(national_id) < 8:
            missing.append("national_id")
        if len(re.sub(r"\D", "", phone)) < 8:
            missing.append("phone")
        if not beneficiary_type:
            missing.append("beneficiary_type")
        if missing:
            return ActionResult.failure("validation_error", "Check the required fields.", fields=missing)

        group = service.group.strip()
        if group in GROUP_BENEFICIARY:
            allowed = beneficiary_type == GROUP_BENEFICIARY[group]
            if group == "student":
                allowed = allowed and request.student_track.strip() == "general"
            if not allowed:
                return ActionResult.failure(
                    "validation_error", "This service is not offered to this beneficiary type.",
                    fields=["beneficiary_type"],
                )
            if not service.is_active:
                return ActionResult.failure("service_unavailable", "Service is not available.")
        elif not service_available_today(service, self.clock.business_date(), settings):
            return ActionResult.failure("service_unavailable", "Service is not available today.")

        if (request.has_previous or service.requires_previous_ref) and not previous_ref:
            return ActionResult.failure(
                "validation_error", "Previous request number is required.", fields=["previous_ref"],
            )

        counter = self.routing.eager_counter_for(service.id)
        seq = self.store.next_sequence(self.clock.business_date(), service.id)
        code = f"{service.code_prefix or 'T'}-{seq:03d}"
        ticket_id = str(uuid.uuid4())
        now = self.clock.now()
        ticket = Ticket(
            id=ticket_id,
            ticket_code=code,
            service_id=service.id,
            service_name_ar=service.name_ar,
            service_name_en=service.name_en or service.name_ar,
            lang=request.lang,
            beneficiary=Beneficiary(
                full_name=full_name,
                national_id=national_id,
                phone=phone,
                beneficiary_type=beneficiary_type,
                has_previous=request.has_previous,
                previous_ref=previous_ref,
            ),
            assigned_counter_id=counter.id if counter else None,
            status=TicketStatus.ASSIGNED if counter else TicketStatus.NEW,
            created_at=now,
            assigned_at=now if counter else None,
            barcode_value=f"{code}|{ticket_id[:8]}",
            qr_value=f"TICKET:{ticket_id}",
        )
        self.store.data.tickets.append(ticket)
        logger.info("Issued %s for service %s (counter %s)", code, service.id, ticket.assigned_counter_id)
        return ActionResult.success(ticket=_dump(ticket))

    # ------------------------------------------------------------------
    # Counter sessions
    # ------------------------------------------------------------------

    def login(self, username: str, password: str) -> ActionResult:
        return self.run(self._login, username, password)

    def _login(self, username: str, password: str) -> ActionResult:
        result = self.sessions.login(username, password)
        if result.ok:
            self.routing.assign_unassigned_tickets()
        return result

    def logout(self, session_id: int) -> ActionResult:
        result = self.run(self.sessions.logout, session_id)
        if result.ok and result.data.get("counter_id") is not None:
            self.timers.cancel(result.data["counter_id"])
        return result

    def heartbeat(self, session_id: int) -> ActionResult:
        return self.run(self.sessions.heartbeat, session_id)

    def counter_view(self, session_id: int) -> ActionResult:
        return self.run(self._counter_view, session_id)

    def _counter_view(self, session_id: int) -> ActionResult:
        session = self.store.session(session_id)
        if session is None:
            return ActionResult.failure("no_session", "Unknown session.")
        if session.status != SessionStatus.active:
            return ActionResult.failure("session_ended", "Counter session has ended; log in again.")
        user = self.store.user(session.user_id)
        user_info = {"id": user.id, "username": user.username, "full_name": user.full_name} if user else None
        if session.counter_id is None:
            return ActionResult.success(standby=True, user=user_info)

        self.routing.assign_unassigned_tickets()
        counter_id = session.counter_id
        mine = [t for t in self.store.data.tickets if t.assigned_counter_id == counter_id]
        called = [t for t in mine if t.status == TicketStatus.CALLED]
        serving = [t for t in mine if t.status == TicketStatus.IN_SERVICE]
        queue = sorted(
            (t for t in mine if t.status in (TicketStatus.ASSIGNED, TicketStatus.CALLED, TicketStatus.IN_SERVICE)),
            key=lambda t: t.created_at,
        )
        skipped = sorted(
            (t for t in mine if t.status == TicketStatus.SKIPPED),
            key=lambda t: t.skipped_at or t.called_at or t.created_at,
            reverse=True,
        )
        return ActionResult.success(
            standby=False,
            user=user_info,
            counter=_dump(self.store.counter(counter_id)),
            current_called=_dump(max(called, key=lambda t: t.called_at, default=None)),
            current_in_service=_dump(max(serving, key=lambda t: t.in_service_at, default=None)),
            queue=[_dump(t) for t in queue],
            skipped=[_dump(t) for t in skipped],
            counters=[{"id": c.id, "name": c.name} for c in self.store.data.counters if c.is_active],
            no_show_max_rounds=self.store.data.settings.no_show_max_rounds,
            auto_call_pending=self.timers.pending(counter_id),
        )

    # ------------------------------------------------------------------
    # Ticket actions
    # ------------------------------------------------------------------

    def _session_ticket(self, session_id: int, ticket_id: str) -> Tuple[Optional[CounterSession], Optional[Ticket], Optional[ActionResult]]:
        session, failure = self.sessions.resolve(session_id)
        if failure is not None:
            return None, None, failure
        ticket = self.store.ticket(ticket_id)
        if ticket is None:
            return session, None, ActionResult.failure("ticket_not_found", "Ticket not found.")
        return session, ticket, None

    @staticmethod
    def _wrong_counter() -> ActionResult:
        return ActionResult.failure("wrong_counter", "This ticket is not on your counter.")

    @staticmethod
    def _bad_status(ticket: Ticket) -> ActionResult:
        return ActionResult.failure(
            "bad_status", f"Not allowed while the ticket is {ticket.status.value}.", status=ticket.status.value,
        )

    def call_next(self, session_id: int) -> ActionResult:
        return self.run(self._call_next, session_id)

    def _call_next(self, session_id: int) -> ActionResult:
        session, failure = self.sessions.resolve(session_id)
        if failure is not None:
            return failure
        result = self.scheduler.call_next(session.counter_id, session.user_id, auto=False)
        if result.ok:
            publish_update("ticket_called", result.data)
        self.timers.reschedule(session.counter_id)
        return result

    def _on_timer(self, counter_id: int) -> None:
        self.run(self._auto_call, counter_id)

    def _auto_call(self, counter_id: int) -> ActionResult:
        if not self.timers.auto_enabled_for(counter_id) or not self.timers.is_idle(counter_id):
            return ActionResult.failure("not_idle", "Counter is busy or auto-call is off.")
        session = self.sessions.live_session_for_counter(counter_id)
        if session is None:
            return ActionResult.failure("no_session", "No live session on this counter.")
        result = self.scheduler.call_next(counter_id, session.user_id, auto=True)
        if result.ok:
            publish_update("ticket_called", result.data)
        return result

    def start_service(self, session_id: int, ticket_id: str) -> ActionResult:
        return self.run(self._start_service, session_id, ticket_id)

    def _start_service(self, session_id: int, ticket_id: str) -> ActionResult:
        session, ticket, failure = self._session_ticket(session_id, ticket_id)
        if failure is not None:
            return failure
        if ticket.assigned_counter_id != session.counter_id:
            return self._wrong_counter()
        if ticket.status not in (TicketStatus.CALLED, TicketStatus.ASSIGNED):
            return self._bad_status(ticket)
        ticket.status = TicketStatus.IN_SERVICE
        ticket.in_service_at = self.clock.now()
        ticket.served_by_user_id = session.user_id
        self.timers.reschedule(session.counter_id)
        logger.info("Counter %s started serving %s", session.counter_id, ticket.ticket_code)
        return ActionResult.success(ticket=_dump(ticket))

    def recall(self, session_id: int, ticket_id: str) -> ActionResult:
        return self.run(self._recall, session_id, ticket_id)

    def _recall(self, session_id: int, ticket_id: str) -> ActionResult:
        session, ticket, failure = self._session_ticket(session_id, ticket_id)
        if failure is not None:
            return failure
        if ticket.assigned_counter_id != session.counter_id:
            return self._wrong_counter()
        if ticket.status not in (TicketStatus.CALLED, TicketStatus.SKIPPED):
            return self._bad_status(ticket)
        call_round = self.scheduler.call_round_for(ticket.id, session.counter_id) + 1
        ticket.status = TicketStatus.CALLED
        ticket.called_at = self.clock.now()
        ticket.call_round = call_round
        self.scheduler.log_call(ticket, session.counter_id, session.user_id, call_round)
        warn = call_round >= self.store.data.settings.no_show_max_rounds
        if warn:
            logger.warning("%s recalled %s times at counter %s", ticket.ticket_code, call_round, session.counter_id)
        publish_update(
            "ticket_called",
            {"ticket_id": ticket.id, "ticket_code": ticket.ticket_code,
             "counter_id": session.counter_id, "call_round": call_round, "auto": False},
        )
        self.timers.reschedule(session.counter_id)
        return ActionResult.success(
            ticket_id=ticket.id, ticket_code=ticket.ticket_code, status=ticket.status.value,
            call_round=call_round, warn=warn,
        )

    def skip(self, session_id: int, ticket_id: str, reason: str = "") -> ActionResult:
        return self.run(self._skip, session_id, ticket_id, reason)

    def _skip(self, session_id: int, ticket_id: str, reason: str) -> ActionResult:
        session, ticket, failure = self._session_ticket(session_id, ticket_id)
        if failure is not None:
            return failure
        if ticket.assigned_counter_id != session.counter_id:
            return self._wrong_counter()
        if ticket.status not in (TicketStatus.CALLED, TicketStatus.ASSIGNED, TicketStatus.IN_SERVICE):
            return self._bad_status(ticket)
        ticket.status = TicketStatus.SKIPPED
        ticket.skipped_at = self.clock.now()
        ticket.skip_reason = (reason or "").strip()[:NOTE_MAX]
        self.scheduler.log_call(
            ticket, session.counter_id, session.user_id, ticket.call_round, result=CallResult.skipped,
        )
        self.timers.reschedule(session.counter_id)
        logger.info("Counter %s skipped %s", session.counter_id, ticket.ticket_code)
        return ActionResult.success(ticket_id=ticket.id, status=ticket.status.value)

    def _may_act_on(self, session: CounterSession, ticket: Ticket) -> bool:
        same_counter = ticket.assigned_counter_id == session.counter_id
        same_user = ticket.served_by_user_id is not None and ticket.served_by_user_id == session.user_id
        return same_counter or same_user

    def transfer(self, session_id: int, ticket_id: str, target_counter_id: int, note: str = "") -> ActionResult:
        return self.run(self._transfer, session_id, ticket_id, target_counter_id, note)

    def _transfer(self, session_id: int, ticket_id: str, target_counter_id: int, note: str) -> ActionResult:
        session, ticket, failure = self._session_ticket(session_id, ticket_id)
        if failure is not None:
            return failure
        if not self._may_act_on(session, ticket):
            return self._wrong_counter()
        if ticket.status not in (TicketStatus.ASSIGNED, TicketStatus.CALLED, TicketStatus.IN_SERVICE):
            return self._bad_status(ticket)
        source_id = ticket.assigned_counter_id
        if target_counter_id == source_id:
            return ActionResult.failure(
                "validation_error", "Choose a different counter.", fields=["target_counter_id"],
            )
        target = self.store.counter(target_counter_id)
        if target is None or not target.is_active:
            return ActionResult.failure("counter_not_found", "Target counter not found.")

        now = self.clock.now()
        ticket.assigned_counter_id = target.id
        ticket.status = TicketStatus.ASSIGNED
        ticket.assigned_at = now
        ticket.called_at = None
        ticket.in_service_at = None
        ticket.served_by_user_id = None
        ticket.transferred_at = now
        ticket.transferred_from_counter_id = source_id
        ticket.transfer_note = (note or "").strip()[:NOTE_MAX]
        transfers = self.store.data.ticket_transfers
        transfers.append(
            TicketTransfer(
                id=self.store.next_id(transfers),
                ticket_id=ticket.id,
                ticket_code=ticket.ticket_code,
                from_counter_id=source_id,
                to_counter_id=target.id,
                user_id=session.user_id,
                note=ticket.transfer_note,
                at=now,
            )
        )
        self.timers.reschedule(source_id)
        self.timers.reschedule(target.id)
        logger.info("%s transferred from counter %s to %s", ticket.ticket_code, source_id, target.id)
        return ActionResult.success(ticket=_dump(ticket))

    def _ensure_case(self, ticket_id: str) -> Case:
        case = self.store.case_for(ticket_id)
        if case is None:
            now = self.clock.now()
            cases = self.store.data.cases
            case = Case(id=self.store.next_id(cases), ticket_id=ticket_id, created_at=now, updated_at=now)
            cases.append(case)
        return case

    @staticmethod
    def _apply_case_fields(case: Case, request) -> None:
        for name in ("category", "priority", "channel", "internal_notes", "transfer_to", "awaiting_from", "due_date"):
            value = getattr(request, name)
            if value is not None:
                setattr(case, name, str(value))

    def close_ticket(self, request: CloseRequest) -> ActionResult:
        return self.run(self._close_ticket, request)

    def _close_ticket(self, request: CloseRequest) -> ActionResult:
        session, ticket, failure = self._session_ticket(request.session_id, request.ticket_id)
        if failure is not None:
            return failure
        if not self._may_act_on(session, ticket):
            return self._wrong_counter()
        if ticket.status not in (TicketStatus.IN_SERVICE, TicketStatus.CALLED):
            return self._bad_status(ticket)

        outcome = (request.outcome_status or "").strip() or TicketStatus.CLOSED_RESOLVED.value
        if outcome not in {s.value for s in CLOSED_STATUSES}:
            return ActionResult.failure("validation_error", "Unknown outcome.", fields=["outcome_status"])
        missing = []
        if not request.summary.strip():
            missing.append("summary")
        if outcome == TicketStatus.CLOSED_NOT_RESOLVED.value and not request.not_resolved_reason.strip():
            missing.append("not_resolved_reason")
        if outcome == TicketStatus.CLOSED_AWAITING.value and not (request.due_date or "").strip():
            missing.append("due_date")
        if missing:
            return ActionResult.failure("validation_error", "Check the required fields.", fields=missing)

        now = self.clock.now()
        ticket.status = TicketStatus(outcome)
        ticket.closed_at = now
        ticket.closed_by_user_id = session.user_id

        case = self._ensure_case(ticket.id)
        case.summary = request.summary.strip()
        case.details = request.details or ""
        case.phone = request.phone or ticket.beneficiary.phone
        case.outcome_code = outcome
        case.not_resolved_reason = request.not_resolved_reason or ""
        self._apply_case_fields(case, request)
        case.updated_at = now

        if request.appointment_slot_id is not None:
            slot = self.appointments.book(request.appointment_slot_id, ticket, session.user_id, case.phone)
            if slot is not None:
                case.appointment_id = slot.id
                ticket.status = TicketStatus.CLOSED_APPOINTMENT_BOOKED
                case.outcome_code = ticket.status.value

        counter_id = ticket.assigned_counter_id or session.counter_id
        logger.info("Counter %s closed %s as %s", counter_id, ticket.ticket_code, ticket.status.value)

        try:
            self.feedback.open_window(ticket, counter_id, session.user_id)
        except Exception:
            logger.exception("Could not open feedback window for %s", ticket.ticket_code)
        try:
            self.timers.reschedule(counter_id)
            if session.counter_id != counter_id:
                self.timers.reschedule(session.counter_id)
        except Exception:
            logger.exception("Could not schedule auto-call for counter %s", counter_id)

        return ActionResult.success(ticket=_dump(ticket), case=_dump(case))

    # ------------------------------------------------------------------
    # Case details and appointments
    # ------------------------------------------------------------------

    def _appointment_payload(self, listing: Dict[str, Any]) -> Dict[str, Any]:
        return {**listing, "slots": [_dump(s) for s in listing["slots"]]}

    def ticket_details(self, session_id: int, ticket_id: str) -> ActionResult:
        return self.run(self._ticket_details, session_id, ticket_id)

    def _ticket_details(self, session_id: int, ticket_id: str) -> ActionResult:
        session, ticket, failure = self._session_ticket(session_id, ticket_id)
        if failure is not None:
            return failure
        if ticket.assigned_counter_id != session.counter_id:
            return self._wrong_counter()
        case = self._ensure_case(ticket.id)
        service = self.store.service(ticket.service_id)
        appointment = None
        if service is not None and service.type.value == "appointment" and self.appointments.enabled:
            appointment = self._appointment_payload(self.appointments.next_slots())
        return ActionResult.success(ticket=_dump(ticket), case=_dump(case), appointment=appointment)

    def save_case(self, request: CaseSaveRequest) -> ActionResult:
        return self.run(self._save_case, request)

    def _save_case(self, request: CaseSaveRequest) -> ActionResult:
        session, ticket, failure = self._session_ticket(request.session_id, request.ticket_id)
        if failure is not None:
            return failure
        if ticket.assigned_counter_id != session.counter_id:
            return self._wrong_counter()
        case = self._ensure_case(ticket.id)
        self._apply_case_fields(case, request)
        if request.phone is not None:
            case.phone = request.phone
        case.updated_at = self.clock.now()
        return ActionResult.success(case=_dump(case))

    def appointment_slots(self, session_id: int, date: Optional[str] = None) -> ActionResult:
        return self.run(self._appointment_slots, session_id, date)

    def _appointment_slots(self, session_id: int, date: Optional[str]) -> ActionResult:
        _, failure = self.sessions.resolve(session_id)
        if failure is not None:
            return failure
        if not self.appointments.enabled:
            return ActionResult.success(appointment=None)
        try:
            listing = self.appointments.slots_for(date)
        except ValueError:
            return ActionResult.failure("validation_error", "Invalid date.", fields=["date"])
        return ActionResult.success(appointment=self._appointment_payload(listing))

    def book_appointment(self, request: AppointmentBookRequest) -> ActionResult:
        return self.run(self._book_appointment, request)

    def _book_appointment(self, request: AppointmentBookRequest) -> ActionResult:
        session, ticket, failure = self._session_ticket(request.session_id, request.ticket_id)
        if failure is not None:
            return failure
        if ticket.assigned_counter_id != session.counter_id:
            return self._wrong_counter()
        case = self._ensure_case(ticket.id)
        if request.phone:
            case.phone = request.phone
        slot = self.appointments.book(request.slot_id, ticket, session.user_id, case.phone)
        if slot is None:
            return ActionResult.failure("slot_unavailable", "Appointment slot is not available.")
        case.appointment_id = slot.id
        case.updated_at = self.clock.now()
        return ActionResult.success(slot=_dump(slot))

    # ------------------------------------------------------------------
    # Beneficiaries
    # ------------------------------------------------------------------

    def beneficiary_search(self, query: str, mode: str = "auto") -> Dict[str, Any]:
        return {"results": self.beneficiaries.search(query, mode)}

    def beneficiary_list(self, range_name: str = "week") -> Dict[str, Any]:
        return {"results": self.beneficiaries.recent(range_name)}

    def beneficiary_history(self, key: str) -> ActionResult:
        history = self.beneficiaries.history(key)
        if history is None:
            return ActionResult.failure("beneficiary_not_found", "No tickets for this beneficiary.")
        return ActionResult.success(**history)

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def _current_for(self, counter_id: int) -> Optional[Dict[str, Any]]:
        serving = self.store.tickets_for_counter(counter_id, {TicketStatus.IN_SERVICE})
        if serving:
            ticket = max(serving, key=lambda t: t.in_service_at or t.created_at)
            return {"ticket_code": ticket.ticket_code, "state": TicketStatus.IN_SERVICE.value}
        called = self.store.tickets_for_counter(counter_id, {TicketStatus.CALLED})
        if called:
            ticket = max(called, key=lambda t: t.called_at or t.created_at)
            return {"ticket_code": ticket.ticket_code, "state": TicketStatus.CALLED.value}
        return None

    def _displayed_counters(self):
        daily = self.store.counter_daily_map(self.clock.business_date())
        return sorted(
            (c for c in self.store.data.counters if c.is_active and daily.get(c.id) is True),
            key=lambda c: c.priority_order,
        )

    def display_board(self, use_cache: bool = True) -> Dict[str, Any]:
        if use_cache:
            cached = get_cached_board()
            if cached:
                return cached

        counters = {c.id: c for c in self.store.data.counters}
        tickets = {t.id: t for t in self.store.data.tickets}
        calls = sorted(
            (c for c in self.store.data.ticket_calls if c.result == CallResult.called),
            key=lambda c: c.called_at,
            reverse=True,
        )[:10]
        board = {
            "office_name": self.store.data.settings.office_name,
            "counters": [
                {"id": c.id, "name": c.name, "current": self._current_for(c.id)}
                for c in self._displayed_counters()
            ],
            "recent_calls": [
                {
                    "id": call.id,
                    "ticket_code": tickets[call.ticket_id].ticket_code if call.ticket_id in tickets else "-",
                    "counter_name": counters[call.counter_id].name if call.counter_id in counters else f"Counter {call.counter_id}",
                    "called_at": call.called_at.isoformat(),
                    "round": call.call_round,
                }
                for call in calls
            ],
        }
        cache_board_data(board)
        return board

    def display_counter(self, counter_id: int) -> Dict[str, Any]:
        counter = next((c for c in self._displayed_counters() if c.id == counter_id), None)
        if counter is None:
            return {"counter": None, "current": None}
        return {"counter": {"id": counter.id, "name": counter.name}, "current": self._current_for(counter.id)}

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def current_feedback(self, counter_id: Optional[int] = None) -> Dict[str, Any]:
        return self.feedback.current_payload(counter_id)

    def submit_feedback(self, request: FeedbackSubmitRequest) -> ActionResult:
        return self.run(
            self.feedback.submit,
            request.ticket_id,
            request.employee_rating,
            solved_yes_no=request.solved_yes_no,
            reason_code=request.reason_code,
            counter_id=request.counter_id,
        )


# ===== REDIS HELPER FUNCTIONS =====

def cache_board_data(board_data: Dict[str, Any]) -> None:
    """Cache display board data in Redis for a few seconds."""
    redis_client = get_redis()
    if redis_client:
        try:
            redis_client.setex(BOARD_CACHE_KEY, BOARD_CACHE_SECONDS, json.dumps(board_data))
        except redis.RedisError as e:
            logger.warning("Redis cache error: %s", e)


def get_cached_board() -> Optional[Dict[str, Any]]:
    """Get cached display board data from Redis."""
    redis_client = get_redis()
    if redis_client:
        try:
            cached = redis_client.get(BOARD_CACHE_KEY)
            if cached:
                return json.loads(cached)
        except redis.RedisError as e:
            logger.warning("Redis get error: %s", e)
    return None


def invalidate_board_cache() -> None:
    redis_client = get_redis()
    if redis_client:
        try:
            redis_client.delete(BOARD_CACHE_KEY)
        except redis.RedisError as e:
            logger.warning("Redis delete error: %s", e)


def publish_update(event_type: str, data: Dict[str, Any]) -> None:
    """Publish an office event to the Redis channel for real-time displays."""
    redis_client = get_redis()
    if redis_client:
        try:
            redis_client.publish(UPDATES_CHANNEL, json.dumps({
                "type": event_type,
                "data": data,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }))
        except redis.RedisError as e:
            logger.warning("Redis publish error: %s", e)
