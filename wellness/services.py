import logging
from datetime import date, datetime

from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from wellness.config import get_settings
from wellness.errors import AppointmentNotFound, DataUnavailable, InvalidTime, SlotUnavailable
from wellness.models import APPOINTMENT_STATUSES, Appointment, Schedule, Service, Specialist
from wellness.slots import BookedTime, WorkingWindow, aggregate_slots, calendar_day, filter_available, normalize_time

logger = logging.getLogger(__name__)


def _increment(increment: int | None) -> int:
    return increment or get_settings().slot_minutes


async def get_windows_for_date(db: AsyncSession, specialist_id: int, day: date | datetime) -> list[WorkingWindow]:
    try:
        rows = (
            await db.scalars(
                select(Schedule).where(Schedule.specialist_id == specialist_id, Schedule.date == calendar_day(day))
            )
        ).all()
    except SQLAlchemyError as exc:
        raise DataUnavailable("No se pudieron cargar los horarios") from exc
    return [WorkingWindow(s.id, s.specialist_id, s.date, s.start_time, s.end_time) for s in rows]


async def get_booked_times(db: AsyncSession, specialist_id: int, day: date | datetime) -> list[BookedTime]:
    try:
        rows = (
            await db.execute(
                select(Appointment.id, Appointment.time).where(
                    Appointment.specialist_id == specialist_id,
                    Appointment.date == calendar_day(day),
                    Appointment.status != "cancelado",
                )
            )
        ).all()
    except SQLAlchemyError as exc:
        raise DataUnavailable("No se pudieron cargar las citas") from exc

    booked = []
    for appointment_id, raw_time in rows:
        try:
            booked.append(BookedTime(appointment_id, specialist_id, calendar_day(day), normalize_time(raw_time)))
        except InvalidTime:
            logger.warning("Appointment %s has unreadable time %r, ignoring it for occupancy", appointment_id, raw_time)
    return booked


async def get_available_slots_for_date(
    db: AsyncSession, specialist_id: int, day: date | datetime, increment: int | None = None
) -> list[str]:
    windows = await get_windows_for_date(db, specialist_id, day)
    return aggregate_slots(windows, specialist_id, day, _increment(increment))


async def get_bookable_slots(
    db: AsyncSession,
    specialist_id: int,
    day: date | datetime,
    exclude_appointment_id: int | None = None,
    increment: int | None = None,
) -> list[str]:
    candidates = await get_available_slots_for_date(db, specialist_id, day, increment)
    if not candidates:
        return []
    booked = await get_booked_times(db, specialist_id, day)
    return filter_available(candidates, booked, exclude_appointment_id)


async def _lock_for_write(db: AsyncSession):
    if db.get_bind().dialect.name == "sqlite":
        await db.execute(text("BEGIN IMMEDIATE"))


async def create_appointment_atomic(db: AsyncSession, payload: dict) -> Appointment:
    payload = {**payload, "time": normalize_time(payload["time"])}
    await _lock_for_write(db)
    bookable = await get_bookable_slots(db, payload["specialist_id"], payload["date"])
    if payload["time"] not in bookable:
        await db.rollback()
        raise SlotUnavailable(f"El horario {payload['time']} ya no está disponible")
    appointment = Appointment(**payload)
    db.add(appointment)
    await db.commit()
    await db.refresh(appointment)
    logger.info("Appointment %s booked: specialist=%s %s %s", appointment.id, appointment.specialist_id, appointment.date, appointment.time)
    return appointment


async def reschedule_appointment_atomic(db: AsyncSession, appointment_id: int, new_day: date, new_time: str) -> Appointment:
    new_time = normalize_time(new_time)
    await _lock_for_write(db)
    appointment = await db.get(Appointment, appointment_id)
    if not appointment:
        await db.rollback()
        raise AppointmentNotFound(f"Cita {appointment_id} no encontrada")
    bookable = await get_bookable_slots(db, appointment.specialist_id, new_day, exclude_appointment_id=appointment_id)
    if new_time not in bookable:
        await db.rollback()
        raise SlotUnavailable(f"El horario {new_time} ya no está disponible")
    old = (appointment.date, appointment.time)
    appointment.date = new_day
    appointment.time = new_time
    await db.commit()
    await db.refresh(appointment)
    logger.info("Appointment %s moved from %s %s to %s %s", appointment_id, old[0], old[1], new_day, new_time)
    return appointment


async def update_appointment_status(
    db: AsyncSession, appointment_id: int, status: str, recommendations: str | None = None
) -> Appointment:
    if status not in APPOINTMENT_STATUSES:
        raise ValueError(f"Estado desconocido: {status}")
    appointment = await db.get(Appointment, appointment_id)
    if not appointment:
        raise AppointmentNotFound(f"Cita {appointment_id} no encontrada")
    if appointment.status == "cancelado" and status != "cancelado":
        # A reactivated appointment occupies its slot again.
        await _lock_for_write(db)
        try:
            time = normalize_time(appointment.time)
        except InvalidTime:
            await db.rollback()
            raise SlotUnavailable(f"La cita {appointment_id} tiene una hora ilegible: {appointment.time!r}")
        bookable = await get_bookable_slots(db, appointment.specialist_id, appointment.date, exclude_appointment_id=appointment.id)
        if time not in bookable:
            await db.rollback()
            raise SlotUnavailable(f"El horario {time} ya fue asignado a otra cita")
    appointment.status = status
    if recommendations:
        appointment.recommendations = recommendations
    await db.commit()
    await db.refresh(appointment)
    return appointment


async def filtered_appointments(
    db: AsyncSession,
    specialist_id: int | None = None,
    service_id: int | None = None,
    status: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    user_id: int | None = None,
) -> list[Appointment]:
    query = select(Appointment)
    if specialist_id:
        query = query.where(Appointment.specialist_id == specialist_id)
    if service_id:
        query = query.where(Appointment.service_id == service_id)
    if status:
        query = query.where(Appointment.status == status)
    if start_date:
        query = query.where(Appointment.date >= start_date)
    if end_date:
        query = query.where(Appointment.date <= end_date)
    if user_id:
        query = query.where(Appointment.user_id == user_id)
    return list((await db.scalars(query.order_by(Appointment.date.desc(), Appointment.time))).unique().all())


async def active_services(db: AsyncSession) -> list[Service]:
    return list((await db.scalars(select(Service).where(Service.is_active.is_(True)).order_by(Service.title))).all())


async def specialists_for_service(db: AsyncSession, service_id: int) -> list[Specialist]:
    service = await db.get(Service, service_id)
    if not service:
        return []
    return sorted((s for s in service.specialists if s.is_active), key=lambda s: s.name)
