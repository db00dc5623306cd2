import logging
import traceback
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, TypeVar

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, StrictInt

from slotbook.auth import get_caller, require_caller, restrict_to
from slotbook.booking import book_slot
from slotbook.config import configure_logging, settings
from slotbook.database import InMemoryKeyValueDatabase, SlotStore
from slotbook.directory import find_slots, get_slot, slot_key
from slotbook.errors import (
    InvalidInput,
    NotFound,
    SchedulingError,
    to_scheduling_error,
)
from slotbook.models import CalendarId, CallerIdentity, EventData, Role, Slot
from slotbook.reassignment import reassign_worker
from slotbook.reschedule import reschedule_booking
from slotbook.slots import generate_month_slots
from slotbook.timeutil import parse_timestamp

logger = logging.getLogger(__name__)

router = APIRouter()

T = TypeVar("T")


class GenerateSlotsRequest(BaseModel):
    year: StrictInt
    month: StrictInt


class AppointmentUpdateRequest(BaseModel):
    event_data: EventData | None = Field(default=None, alias="eventData")


class ReassignRequest(BaseModel):
    sick_worker_id: str | None = Field(default=None, alias="sickWorkerId")


def _db(request: Request) -> SlotStore:
    return request.app.state.database


def _dump(slot: Slot) -> dict:
    return slot.model_dump(by_alias=True, mode="json")


def run_core(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Call into the core, converting any failure to a SchedulingError."""
    try:
        return fn(*args, **kwargs)
    except SchedulingError:
        raise
    except Exception as exc:
        logger.exception("Unexpected error in %s", getattr(fn, "__name__", fn))
        raise to_scheduling_error(exc) from exc


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/appointments")
async def list_appointments(
    request: Request,
    calendar_id: CalendarId | None = Query(default=None, alias="calendarId"),
    owner_id: str | None = Query(default=None, alias="ownerId"),
    from_: str | None = Query(default=None, alias="from"),
    to: str | None = Query(default=None),
    _caller: CallerIdentity = Depends(require_caller),
) -> dict:
    lower = parse_timestamp(from_) if from_ else None
    upper = parse_timestamp(to) if to else None

    def matches(slot: Slot) -> bool:
        if calendar_id is not None and slot.calendar_id != calendar_id:
            return False
        if owner_id is not None and all(
            b.owner_id != owner_id for b in slot.bookings
        ):
            return False
        if lower is not None and slot.end_at <= lower:
            return False
        if upper is not None and slot.start_at >= upper:
            return False
        return True

    appointments = find_slots(_db(request), matches)
    return {
        "status": "success",
        "results": len(appointments),
        "data": {"appointments": [_dump(s) for s in appointments]},
    }


@router.get("/appointments/{slot_id}")
async def get_appointment(slot_id: str, request: Request) -> dict:
    slot = get_slot(_db(request), slot_id)
    if slot is None:
        raise NotFound("No appointment found with that id")
    return {"status": "success", "data": {"appointment": _dump(slot)}}


@router.post("/appointments", status_code=201)
async def create_month_slots(
    payload: GenerateSlotsRequest, request: Request, response: Response
) -> dict:
    slots, created = run_core(
        generate_month_slots, _db(request), payload.year, payload.month
    )
    if not created:
        response.status_code = 200
        return {
            "status": "success",
            "message": (
                "Slots already exist for this month. No new slots generated."
            ),
            "results": 0,
            "data": {"appointments": [_dump(s) for s in slots]},
        }
    return {
        "status": "success",
        "message": f"{len(slots)} new slots created.",
        "results": len(slots),
        "data": {"appointments": [_dump(s) for s in slots]},
    }


@router.post("/appointments/reassign")
async def reassign_appointments(
    payload: ReassignRequest,
    request: Request,
    _caller: CallerIdentity = Depends(restrict_to(Role.ADMIN, Role.WORKER)),
) -> dict:
    outcome = run_core(
        reassign_worker,
        _db(request),
        payload.sick_worker_id,
        not_before=parse_timestamp(request.app.state.now_fn()),
    )

    if outcome.reassigned_count == 0:
        message = "No appointments were reassigned."
    else:
        message = f"{outcome.reassigned_count} appointments reassigned."
    if outcome.unresolved_count:
        message += f" {outcome.unresolved_count} could not be placed."

    return {
        "status": "success",
        "message": message,
        "reassignedCount": outcome.reassigned_count,
        "updatedEvents": [
            r.model_dump(by_alias=True, mode="json") for r in outcome.resolved
        ],
        "unresolvedCount": outcome.unresolved_count,
        "unresolved": [
            u.model_dump(by_alias=True, mode="json")
            for u in outcome.unresolved
        ],
    }


@router.patch("/appointments/{appointment_id}")
async def update_appointment(
    appointment_id: str,
    payload: AppointmentUpdateRequest,
    request: Request,
    response: Response,
    caller: CallerIdentity | None = Depends(get_caller),
) -> dict:
    event = payload.event_data
    if event is None or event.calendar_id is None:
        raise InvalidInput("Missing calendarId in eventData.")

    db = _db(request)
    if event.calendar_id == CalendarId.AVAILABLE:
        slot = run_core(book_slot, db, event, caller)
        response.status_code = 201
        return {
            "status": "success",
            "message": "Appointment booked.",
            "appointment": _dump(slot),
        }

    slot = run_core(reschedule_booking, db, event, appointment_id, caller)
    return {"status": "success", "appointment": _dump(slot)}


@router.delete("/appointments/{slot_id}", status_code=204)
async def delete_appointment(
    slot_id: str,
    request: Request,
    _caller: CallerIdentity = Depends(restrict_to(Role.ADMIN, Role.WORKER)),
) -> Response:
    if not _db(request).delete(slot_key(slot_id)):
        raise NotFound("No appointment found with that id")
    logger.info("Deleted slot %s", slot_id)
    return Response(status_code=204)


def _error_body(request: Request, error: SchedulingError) -> dict:
    body = error.to_dict()
    if request.app.state.environment == "development":
        cause = error.__cause__ or error
        body["stack"] = "".join(traceback.format_exception(cause))
        body["error"] = repr(cause)
    elif not error.is_operational:
        # don't leak internals
        body["message"] = "Something went very wrong!"
    return body


async def scheduling_error_handler(
    request: Request, exc: SchedulingError
) -> JSONResponse:
    if not exc.is_operational:
        logger.error("Unexpected error: %s", exc.message)
    return JSONResponse(
        status_code=exc.status_code, content=_error_body(request, exc)
    )


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    messages = "; ".join(str(e.get("msg")) for e in exc.errors())
    error = InvalidInput(f"Validation failed. {messages}")
    return JSONResponse(status_code=400, content=error.to_dict())


async def unexpected_error_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    logger.exception(
        "Unhandled error on %s %s", request.method, request.url.path
    )
    error = to_scheduling_error(exc)
    return JSONResponse(status_code=500, content=_error_body(request, error))


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(title="slotbook")
    db: SlotStore = InMemoryKeyValueDatabase()
    app.state.database = db

    app.state.now_fn = lambda: datetime.now(UTC)
    app.state.environment = settings.environment

    app.add_exception_handler(SchedulingError, scheduling_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)

    app.include_router(router)
    return app
