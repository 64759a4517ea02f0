"""Pydantic schemas for requests and operation results.

Core operations never raise across the HTTP boundary; they return an
``ActionResult`` which ``main.py`` translates into a response.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ActionResult(BaseModel):
    ok: bool = True
    code: str = "ok"
    message: str = ""
    fields: List[str] = Field(default_factory=list)
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def success(cls, message: str = "", **data: Any) -> "ActionResult":
        return cls(ok=True, code="ok", message=message, data=data)

    @classmethod
    def failure(cls, code: str, message: str, fields: Optional[List[str]] = None, **data: Any) -> "ActionResult":
        return cls(ok=False, code=code, message=message, fields=fields or [], data=data)


# -- kiosk -----------------------------------------------------------------


class IssueTicketRequest(BaseModel):
    service_id: int
    full_name: str = ""
    national_id: str = ""
    phone: str = ""
    beneficiary_type: str = ""
    has_previous: bool = False
    previous_ref: str = ""
    student_track: str = ""
    lang: str = "ar"


# -- counter ---------------------------------------------------------------


class LoginRequest(BaseModel):
    username: str
    password: str


class SessionRequest(BaseModel):
    session_id: int


class TicketActionRequest(BaseModel):
    session_id: int
    ticket_id: str


class SkipRequest(TicketActionRequest):
    reason: str = ""


class TransferRequest(TicketActionRequest):
    target_counter_id: int
    note: str = ""


class CloseRequest(TicketActionRequest):
    outcome_status: Optional[str] = None
    summary: str = ""
    details: str = ""
    phone: Optional[str] = None
    not_resolved_reason: str = ""
    appointment_slot_id: Optional[int] = None
    category: Optional[str] = None
    priority: Optional[str] = None
    channel: Optional[str] = None
    internal_notes: Optional[str] = None
    transfer_to: Optional[str] = None
    awaiting_from: Optional[str] = None
    due_date: Optional[str] = None


class CaseSaveRequest(TicketActionRequest):
    phone: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[str] = None
    channel: Optional[str] = None
    internal_notes: Optional[str] = None
    transfer_to: Optional[str] = None
    awaiting_from: Optional[str] = None
    due_date: Optional[str] = None


class AppointmentBookRequest(TicketActionRequest):
    slot_id: int
    phone: Optional[str] = None


# -- feedback --------------------------------------------------------------


class FeedbackSubmitRequest(BaseModel):
    ticket_id: str
    employee_rating: Optional[float] = None
    solved_yes_no: Optional[bool] = None
    reason_code: Optional[str] = None
    counter_id: Optional[int] = None


# -- admin -----------------------------------------------------------------


class CounterCreate(BaseModel):
    name: Optional[str] = None
    priority_order: Optional[int] = None


class CounterUpdate(BaseModel):
    counter_id: int
    name: Optional[str] = None
    priority_order: Optional[int] = None
    is_active: Optional[bool] = None


class CounterToggle(BaseModel):
    counter_id: int
    enabled_today: bool


class ServiceCreate(BaseModel):
    name_ar: Optional[str] = None
    name_en: Optional[str] = None
    type: str = "walkin"
    code_prefix: Optional[str] = None
    kiosk_visible: bool = True
    availability_mode: str = "always"
    availability_weekday: Optional[int] = None
    group: str = ""
    requires_previous_ref: bool = False


class ServiceUpdate(ServiceCreate):
    service_id: int
    is_active: bool = True


class RoutingUpdate(BaseModel):
    service_id: int
    counter_id: Optional[int] = None


class CounterOverrideUpdate(BaseModel):
    counter_id: int
    rest_seconds: Optional[int] = None
    auto_call_enabled: Optional[bool] = None


class SettingsUpdate(BaseModel):
    rest_seconds_default: Optional[int] = None
    auto_call_enabled: Optional[bool] = None
    no_show_max_rounds: Optional[int] = None
    feedback_window_seconds: Optional[int] = None
    feedback_mode: Optional[str] = None
    work_hours_enabled: Optional[bool] = None
    work_start_time: Optional[str] = None
    work_end_time: Optional[str] = None
    work_days: Optional[List[int]] = None
    appointments_weekday: Optional[int] = None
    appointments_slot_minutes: Optional[int] = None
    counter_overrides: List[CounterOverrideUpdate] = Field(default_factory=list)


class UserCreate(BaseModel):
    username: str
    password: str = "1234"
    full_name: str = ""
    role: str = "counter"
    is_active: bool = True
    fixed_counter_id: Optional[int] = None
    service_ids: Optional[List[int]] = None


class UserUpdate(BaseModel):
    user_id: int
    username: Optional[str] = None
    password: Optional[str] = None
    full_name: Optional[str] = None
    role: Optional[str] = None
    is_active: Optional[bool] = None
    fixed_counter_id: Optional[int] = None
    service_ids: Optional[List[int]] = None
