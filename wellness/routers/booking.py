import logging
from datetime import date

from fastapi import APIRouter, Depends, Form, HTTPException, Query, Request
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.ext.asyncio import AsyncSession

from wellness.config import TEMPLATES_DIR
from wellness.database import get_db
from wellness.deps import get_current_user, parse_day
from wellness.errors import AppointmentNotFound, DataUnavailable, InvalidTime, SlotUnavailable
from wellness.models import REQUESTER_TYPES, Appointment, Service, Specialist, User
from wellness.services import (
    active_services,
    create_appointment_atomic,
    filtered_appointments,
    get_bookable_slots,
    reschedule_appointment_atomic,
    specialists_for_service,
)
from wellness.slots import LatestRequestGate, display_time

logger = logging.getLogger(__name__)

router = APIRouter(tags=["booking"])
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
templates.env.filters["display_time"] = display_time

NO_SLOTS_MESSAGE = "No hay horarios disponibles para esta fecha"
LOAD_ERROR_MESSAGE = "Error al cargar los horarios disponibles"

# Keyed by (user id, specialist id).
_gates: dict[tuple[int, int], LatestRequestGate] = {}


async def load_slots(db: AsyncSession, specialist_id: int, day: date, exclude_appointment_id: int | None = None):
    """Bookable slots plus the message to show when there are none."""
    try:
        slots = await get_bookable_slots(db, specialist_id, day, exclude_appointment_id)
    except DataUnavailable:
        logger.exception("Error loading available time slots for specialist %s on %s", specialist_id, day)
        return [], LOAD_ERROR_MESSAGE
    return slots, None if slots else NO_SLOTS_MESSAGE


async def _own_appointment(db: AsyncSession, appointment_id: int, user: User) -> Appointment:
    appointment = await db.get(Appointment, appointment_id)
    if not appointment:
        raise HTTPException(status_code=404)
    if user.role != "admin" and appointment.user_id != user.id:
        raise HTTPException(status_code=403, detail="Forbidden")
    return appointment


@router.get("/api/slots")
async def slots_json(
    specialist_id: int,
    date_str: str = Query(..., alias="date"),
    exclude: int | None = None,
    seq: int | None = None,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    day = parse_day(date_str)
    if exclude is not None:
        appointment = await db.get(Appointment, exclude)
        if not appointment or (user.role != "admin" and appointment.user_id != user.id):
            exclude = None
    gate = _gates.setdefault((user.id, specialist_id), LatestRequestGate())
    result = await gate.run(lambda: load_slots(db, specialist_id, day, exclude))
    if result is None:
        return {"seq": seq, "stale": True, "slots": [], "message": None}
    slots, message = result
    return {"seq": seq, "stale": False, "slots": slots, "message": message}


@router.get("/api/services/{service_id}/specialists")
async def service_specialists_json(service_id: int, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    return [{"id": s.id, "name": s.name} for s in await specialists_for_service(db, service_id)]


@router.get("/citas")
async def my_appointments(request: Request, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    appointments = await filtered_appointments(db, user_id=user.id)
    return templates.TemplateResponse(request, "booking/list.html", {"user": user, "appointments": appointments})


@router.get("/citas/nueva")
async def new_appointment_form(
    request: Request,
    service_id: int | None = None,
    specialist_id: int | None = None,
    date_str: str | None = Query(None, alias="date"),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    services = await active_services(db)
    specialists = await specialists_for_service(db, service_id) if service_id else []
    day = parse_day(date_str) if date_str else None
    slots, message = [], None
    if specialist_id and day:
        slots, message = await load_slots(db, specialist_id, day)
    return templates.TemplateResponse(
        request,
        "booking/new.html",
        {
            "user": user,
            "services": services,
            "specialists": specialists,
            "service_id": service_id,
            "specialist_id": specialist_id,
            "day": day,
            "slots": slots,
            "message": message,
            "requester_types": REQUESTER_TYPES,
        },
    )


@router.post("/citas/nueva")
async def create_appointment(
    service_id: int = Form(...),
    specialist_id: int = Form(...),
    day: str = Form(...),
    time: str = Form(...),
    reason: str = Form(""),
    is_first_time: str | None = Form(None),
    disability: str | None = Form(None),
    requester_name: str = Form(""),
    requester_type: str = Form(""),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    service = await db.get(Service, service_id)
    specialist = await db.get(Specialist, specialist_id)
    if not service or not service.is_active or not specialist or not specialist.is_active:
        raise HTTPException(status_code=400, detail="Servicio o especialista no disponible")
    if specialist not in service.specialists:
        raise HTTPException(status_code=400, detail="El especialista no atiende este servicio")
    if user.role == "admin" and requester_name.strip():
        # Admins book on behalf of someone else.
        if requester_type not in REQUESTER_TYPES:
            raise HTTPException(status_code=400, detail="Tipo de solicitante inválido")
        requester = (requester_name.strip(), requester_type)
    else:
        requester = (user.full_name or user.email, user.requester_type)
    payload = {
        "date": parse_day(day),
        "time": time,
        "user_id": user.id,
        "requester_name": requester[0],
        "requester_type": requester[1],
        "service_id": service_id,
        "specialist_id": specialist_id,
        "status": "pendiente",
        "is_first_time": is_first_time == "on",
        "disability": disability == "on",
        "reason": reason or None,
    }
    try:
        appointment = await create_appointment_atomic(db, payload)
    except InvalidTime as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except SlotUnavailable as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return RedirectResponse(f"/citas#cita-{appointment.id}", status_code=303)


@router.get("/citas/{appointment_id}/reprogramar")
async def reschedule_form(
    request: Request,
    appointment_id: int,
    date_str: str | None = Query(None, alias="date"),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    appointment = await _own_appointment(db, appointment_id, user)
    day = parse_day(date_str) if date_str else appointment.date
    slots, message = await load_slots(db, appointment.specialist_id, day, exclude_appointment_id=appointment.id)
    return templates.TemplateResponse(
        request,
        "booking/reschedule.html",
        {"user": user, "appointment": appointment, "day": day, "slots": slots, "message": message},
    )


@router.post("/citas/{appointment_id}/reprogramar")
async def reschedule(
    appointment_id: int,
    day: str = Form(...),
    time: str = Form(...),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    await _own_appointment(db, appointment_id, user)
    try:
        await reschedule_appointment_atomic(db, appointment_id, parse_day(day), time)
    except InvalidTime as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except AppointmentNotFound:
        raise HTTPException(status_code=404)
    except SlotUnavailable as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return RedirectResponse("/admin/citas" if user.role == "admin" else "/citas", status_code=303)
