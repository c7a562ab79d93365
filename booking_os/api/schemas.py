"""Response schemas shared by the API routers."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from booking_os.scheduling.models import Appointment, ChangeRequest


class AppointmentResponse(BaseModel):
    id: str
    business_id: str
    specialist_id: str
    client_id: str | None = None
    client_name: str | None = None
    client_phone: str | None = None
    start_time: datetime
    end_time: datetime
    status: str
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ChangeRequestResponse(BaseModel):
    id: str
    appointment_id: str
    specialist_id: str
    type: str
    status: str
    requested_start_time: datetime | None = None
    requested_end_time: datetime | None = None
    client_note: str | None = None
    decision_note: str | None = None
    decided_by: str | None = None
    created_at: datetime | None = None
    decided_at: datetime | None = None


def appointment_response(appt: Appointment) -> AppointmentResponse:
    return AppointmentResponse(
        id=str(appt.id),
        business_id=str(appt.business_id),
        specialist_id=str(appt.specialist_id),
        client_id=appt.client_id,
        client_name=appt.client_name,
        client_phone=appt.client_phone,
        start_time=appt.start_time,
        end_time=appt.end_time,
        status=appt.status.value,
        notes=appt.notes,
        created_at=appt.created_at,
        updated_at=appt.updated_at,
    )


def change_request_response(req: Optional[ChangeRequest]) -> Optional[ChangeRequestResponse]:
    if req is None:
        return None
    return ChangeRequestResponse(
        id=str(req.id),
        appointment_id=str(req.appointment_id),
        specialist_id=str(req.specialist_id),
        type=req.type.value,
        status=req.status.value,
        requested_start_time=req.requested_start_time,
        requested_end_time=req.requested_end_time,
        client_note=req.client_note,
        decision_note=req.decision_note,
        decided_by=req.decided_by,
        created_at=req.created_at,
        decided_at=req.decided_at,
    )
