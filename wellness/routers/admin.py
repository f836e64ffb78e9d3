import logging

from fastapi import APIRouter, Depends, Form, HTTPException, Query, Request
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wellness.config import TEMPLATES_DIR
from wellness.database import get_db
from wellness.deps import parse_day, require_role
from wellness.errors import AppointmentNotFound, InvalidTime, MalformedWindow, SlotUnavailable
from wellness.models import APPOINTMENT_STATUSES, REQUESTER_TYPES, USER_ROLES, Appointment, Schedule, Service, Specialist, User
from wellness.security import hash_password
from wellness.services import filtered_appointments, update_appointment_status
from wellness.slots import WorkingWindow, display_time, normalize_time

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
templates.env.filters["display_time"] = display_time


def _validated_window(specialist_id: int, day: str, start_time: str, end_time: str, window_id=None) -> WorkingWindow:
    try:
        window = WorkingWindow(window_id, specialist_id, parse_day(day), normalize_time(start_time), normalize_time(end_time))
        window.bounds()
    except (InvalidTime, MalformedWindow) as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return window


async def _specialists_by_ids(db: AsyncSession, ids: list[int]) -> list[Specialist]:
    if not ids:
        return []
    return list((await db.scalars(select(Specialist).where(Specialist.id.in_(ids)))).all())


async def _services_by_ids(db: AsyncSession, ids: list[int]) -> list[Service]:
    if not ids:
        return []
    return list((await db.scalars(select(Service).where(Service.id.in_(ids)))).all())


# Appointments


@router.get("/citas")
async def appointments_page(
    request: Request,
    specialist_id: int | None = None,
    service_id: int | None = None,
    status: str | None = None,
    start: str | None = None,
    end: str | None = None,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_role("admin")),
):
    appointments = await filtered_appointments(
        db,
        specialist_id=specialist_id,
        service_id=service_id,
        status=status or None,
        start_date=parse_day(start) if start else None,
        end_date=parse_day(end) if end else None,
    )
    specialists = (await db.scalars(select(Specialist).order_by(Specialist.name))).all()
    services = (await db.scalars(select(Service).order_by(Service.title))).all()
    return templates.TemplateResponse(
        request,
        "admin/appointments.html",
        {
            "user": user,
            "appointments": appointments,
            "specialists": specialists,
            "services": services,
            "statuses": APPOINTMENT_STATUSES,
            "filters": {"specialist_id": specialist_id, "service_id": service_id, "status": status, "start": start, "end": end},
        },
    )


@router.post("/citas/{appointment_id}/estado")
async def change_status(
    appointment_id: int,
    status_value: str = Form(...),
    recommendations: str = Form(""),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_role("admin")),
):
    try:
        await update_appointment_status(db, appointment_id, status_value, recommendations or None)
    except AppointmentNotFound:
        raise HTTPException(status_code=404)
    except SlotUnavailable as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    logger.info("Admin %s set appointment %s to %s", user.id, appointment_id, status_value)
    return RedirectResponse("/admin/citas", status_code=303)


@router.post("/citas/{appointment_id}/eliminar")
async def delete_appointment(appointment_id: int, db: AsyncSession = Depends(get_db), user: User = Depends(require_role("admin"))):
    appointment = await db.get(Appointment, appointment_id)
    if not appointment:
        raise HTTPException(status_code=404)
    await db.delete(appointment)
    await db.commit()
    logger.info("Admin %s deleted appointment %s", user.id, appointment_id)
    return RedirectResponse("/admin/citas", status_code=303)


# Services


@router.get("/servicios")
async def services_page(request: Request, db: AsyncSession = Depends(get_db), user: User = Depends(require_role("admin"))):
    services = (await db.scalars(select(Service).order_by(Service.title))).all()
    specialists = (await db.scalars(select(Specialist).order_by(Specialist.name))).all()
    return templates.TemplateResponse(request, "admin/services.html", {"user": user, "services": services, "specialists": specialists})


@router.post("/servicios")
async def create_service(
    title: str = Form(...),
    description: str = Form(""),
    specialist_ids: list[int] = Form([]),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_role("admin")),
):
    if await db.scalar(select(Service).where(Service.title == title.strip())):
        raise HTTPException(status_code=400, detail="Ya existe un servicio con ese nombre")
    service = Service(title=title.strip(), description=description, is_active=True)
    service.specialists = await _specialists_by_ids(db, specialist_ids)
    db.add(service)
    await db.commit()
    return RedirectResponse("/admin/servicios", status_code=303)


@router.post("/servicios/{service_id}")
async def update_service(
    service_id: int,
    title: str = Form(...),
    description: str = Form(""),
    specialist_ids: list[int] = Form([]),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_role("admin")),
):
    service = await db.get(Service, service_id)
    if not service:
        raise HTTPException(status_code=404)
    service.title = title.strip()
    service.description = description
    service.specialists = await _specialists_by_ids(db, specialist_ids)
    await db.commit()
    return RedirectResponse("/admin/servicios", status_code=303)


@router.post("/servicios/{service_id}/toggle")
async def toggle_service(service_id: int, db: AsyncSession = Depends(get_db), user: User = Depends(require_role("admin"))):
    service = await db.get(Service, service_id)
    if not service:
        raise HTTPException(status_code=404)
    service.is_active = not service.is_active
    await db.commit()
    return RedirectResponse("/admin/servicios", status_code=303)


@router.post("/servicios/{service_id}/eliminar")
async def delete_service(service_id: int, db: AsyncSession = Depends(get_db), user: User = Depends(require_role("admin"))):
    service = await db.get(Service, service_id)
    if not service:
        raise HTTPException(status_code=404)
    if await db.scalar(select(Appointment.id).where(Appointment.service_id == service_id).limit(1)):
        raise HTTPException(status_code=400, detail="El servicio tiene citas registradas; desactívelo en su lugar")
    await db.delete(service)
    await db.commit()
    return RedirectResponse("/admin/servicios", status_code=303)


# Specialists


@router.get("/especialistas")
async def specialists_page(request: Request, db: AsyncSession = Depends(get_db), user: User = Depends(require_role("admin"))):
    specialists = (await db.scalars(select(Specialist).order_by(Specialist.name))).all()
    services = (await db.scalars(select(Service).order_by(Service.title))).all()
    return templates.TemplateResponse(request, "admin/specialists.html", {"user": user, "specialists": specialists, "services": services})


@router.post("/especialistas")
async def create_specialist(
    name: str = Form(...),
    email: str = Form(""),
    phone: str = Form(""),
    service_ids: list[int] = Form([]),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_role("admin")),
):
    specialist = Specialist(name=name.strip(), email=email.strip().lower(), phone=phone.strip(), is_active=True)
    specialist.services = await _services_by_ids(db, service_ids)
    db.add(specialist)
    await db.commit()
    return RedirectResponse("/admin/especialistas", status_code=303)


@router.post("/especialistas/{specialist_id}")
async def update_specialist(
    specialist_id: int,
    name: str = Form(...),
    email: str = Form(""),
    phone: str = Form(""),
    service_ids: list[int] = Form([]),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_role("admin")),
):
    specialist = await db.get(Specialist, specialist_id)
    if not specialist:
        raise HTTPException(status_code=404)
    specialist.name = name.strip()
    specialist.email = email.strip().lower()
    specialist.phone = phone.strip()
    specialist.services = await _services_by_ids(db, service_ids)
    await db.commit()
    return RedirectResponse("/admin/especialistas", status_code=303)


@router.post("/especialistas/{specialist_id}/toggle")
async def toggle_specialist(specialist_id: int, db: AsyncSession = Depends(get_db), user: User = Depends(require_role("admin"))):
    specialist = await db.get(Specialist, specialist_id)
    if not specialist:
        raise HTTPException(status_code=404)
    specialist.is_active = not specialist.is_active
    await db.commit()
    return RedirectResponse("/admin/especialistas", status_code=303)


# Schedules


@router.get("/horarios")
async def schedules_page(
    request: Request,
    specialist_id: int | None = Query(None),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_role("admin")),
):
    query = select(Schedule)
    if specialist_id:
        query = query.where(Schedule.specialist_id == specialist_id)
    schedules = (await db.scalars(query.order_by(Schedule.date, Schedule.start_time))).all()
    specialists = (await db.scalars(select(Specialist).order_by(Specialist.name))).all()
    return templates.TemplateResponse(
        request,
        "admin/schedules.html",
        {"user": user, "schedules": schedules, "specialists": specialists, "specialist_id": specialist_id},
    )


@router.post("/horarios")
async def create_schedule(
    specialist_id: int = Form(...),
    day: str = Form(...),
    start_time: str = Form(...),
    end_time: str = Form(...),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_role("admin")),
):
    if not await db.get(Specialist, specialist_id):
        raise HTTPException(status_code=400, detail="Especialista desconocido")
    window = _validated_window(specialist_id, day, start_time, end_time)
    db.add(Schedule(specialist_id=specialist_id, date=window.date, start_time=window.start_time, end_time=window.end_time))
    await db.commit()
    logger.info("Admin %s added window %s %s-%s for specialist %s", user.id, window.date, window.start_time, window.end_time, specialist_id)
    return RedirectResponse(f"/admin/horarios?specialist_id={specialist_id}", status_code=303)


@router.post("/horarios/{schedule_id}")
async def update_schedule(
    schedule_id: int,
    day: str = Form(...),
    start_time: str = Form(...),
    end_time: str = Form(...),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_role("admin")),
):
    schedule = await db.get(Schedule, schedule_id)
    if not schedule:
        raise HTTPException(status_code=404)
    window = _validated_window(schedule.specialist_id, day, start_time, end_time, schedule_id)
    schedule.date = window.date
    schedule.start_time = window.start_time
    schedule.end_time = window.end_time
    await db.commit()
    return RedirectResponse(f"/admin/horarios?specialist_id={schedule.specialist_id}", status_code=303)


@router.post("/horarios/{schedule_id}/eliminar")
async def delete_schedule(schedule_id: int, db: AsyncSession = Depends(get_db), user: User = Depends(require_role("admin"))):
    schedule = await db.get(Schedule, schedule_id)
    if not schedule:
        raise HTTPException(status_code=404)
    specialist_id = schedule.specialist_id
    await db.delete(schedule)
    await db.commit()
    return RedirectResponse(f"/admin/horarios?specialist_id={specialist_id}", status_code=303)


# Users


@router.get("/usuarios")
async def users_page(request: Request, db: AsyncSession = Depends(get_db), user: User = Depends(require_role("admin"))):
    users = (await db.scalars(select(User).order_by(User.full_name, User.email))).all()
    return templates.TemplateResponse(
        request,
        "admin/users.html",
        {"user": user, "users": users, "requester_types": REQUESTER_TYPES, "roles": USER_ROLES},
    )


@router.post("/usuarios")
async def create_user(
    email: str = Form(...),
    full_name: str = Form(...),
    password: str = Form(...),
    requester_type: str = Form("Estudiante"),
    role: str = Form("user"),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_role("admin")),
):
    email = email.strip().lower()
    if requester_type not in REQUESTER_TYPES or role not in USER_ROLES:
        raise HTTPException(status_code=400, detail="Tipo de usuario o rol inválido")
    if await db.scalar(select(User).where(User.email == email)):
        raise HTTPException(status_code=400, detail="Ya existe un usuario con ese correo")
    try:
        password_hash = hash_password(password)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    db.add(User(email=email, full_name=full_name.strip(), requester_type=requester_type, role=role, password_hash=password_hash))
    await db.commit()
    logger.info("Admin %s created %s account %s", user.id, role, email)
    return RedirectResponse("/admin/usuarios", status_code=303)


@router.post("/usuarios/{user_id}/toggle")
async def toggle_user(user_id: int, db: AsyncSession = Depends(get_db), user: User = Depends(require_role("admin"))):
    target = await db.get(User, user_id)
    if not target:
        raise HTTPException(status_code=404)
    if target.id == user.id:
        raise HTTPException(status_code=400, detail="No puede desactivar su propia cuenta")
    target.is_active = not target.is_active
    await db.commit()
    return RedirectResponse("/admin/usuarios", status_code=303)
