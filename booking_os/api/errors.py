"""Mapping from booking outcomes to HTTP errors."""

import uuid
from typing import Optional

from fastapi import HTTPException

from booking_os.scheduling.models import BookingErrorCode

ERROR_STATUS: dict[BookingErrorCode, int] = {
    BookingErrorCode.NOT_FOUND: 404,
    BookingErrorCode.SLOT_TAKEN: 409,
    BookingErrorCode.SLOT_NO_LONGER_AVAILABLE: 409,
    BookingErrorCode.PENDING_REQUEST_EXISTS: 409,
    BookingErrorCode.ALREADY_DECIDED: 409,
    BookingErrorCode.APPOINTMENT_NOT_ACTIVE: 409,
    BookingErrorCode.INVALID_TRANSITION: 409,
    BookingErrorCode.TOO_LATE: 409,
    BookingErrorCode.DISABLED: 403,
    BookingErrorCode.INVALID_RANGE: 400,
    BookingErrorCode.SPECIALIST_UNAVAILABLE: 400,
}


def outcome_error(code: BookingErrorCode, message: Optional[str] = None) -> HTTPException:
    return HTTPException(
        status_code=ERROR_STATUS.get(code, 400),
        detail={"code": code.value, "message": message or code.value},
    )


def parse_uuid(value: str, name: str = "ID") -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {value}")
