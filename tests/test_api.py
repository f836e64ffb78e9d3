"""
HTTP tests for the booking and admin routers.
"""

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from wellness.errors import DataUnavailable
from wellness.models import Appointment, Schedule, User
from wellness.routers import booking


@pytest.mark.asyncio
async def test_slots_require_login(client, seed):
    resp = await client.get("/api/slots", params={"specialist_id": seed.specialist.id, "date": "2024-06-10"})
    assert resp.status_code == 302
    assert resp.headers["location"] == "/login"


@pytest.mark.asyncio
async def test_wrong_password_rejected(client, seed):
    resp = await client.post("/login", data={"email": "student@u.edu", "password": "nope"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_slots_json(client, seed, login):
    await login("student@u.edu")

    resp = await client.get("/api/slots", params={"specialist_id": seed.specialist.id, "date": "2024-06-10", "seq": 4})

    assert resp.status_code == 200
    assert resp.json() == {"seq": 4, "stale": False, "slots": ["08:00", "08:30", "09:00", "09:30"], "message": None}


@pytest.mark.asyncio
async def test_slots_json_empty_day(client, seed, login):
    await login("student@u.edu")

    resp = await client.get("/api/slots", params={"specialist_id": seed.specialist.id, "date": "2024-06-12"})

    body = resp.json()
    assert body["slots"] == []
    assert body["message"] == "No hay horarios disponibles para esta fecha"


@pytest.mark.asyncio
async def test_slots_json_bad_date(client, seed, login):
    await login("student@u.edu")

    resp = await client.get("/api/slots", params={"specialist_id": seed.specialist.id, "date": "10/06/2024"})

    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_store_failure_degrades_to_empty_list(client, seed, login):
    await login("student@u.edu")

    with patch("wellness.routers.booking.get_bookable_slots", AsyncMock(side_effect=DataUnavailable("down"))):
        resp = await client.get("/api/slots", params={"specialist_id": seed.specialist.id, "date": "2024-06-10"})

    assert resp.status_code == 200
    assert resp.json()["slots"] == []
    assert resp.json()["message"] == "Error al cargar los horarios disponibles"


@pytest.mark.asyncio
async def test_specialists_for_service_json(client, seed, login):
    await login("student@u.edu")

    resp = await client.get(f"/api/services/{seed.service.id}/specialists")

    assert [s["name"] for s in resp.json()] == ["Ana Ruiz", "Luis Peña"]


@pytest.mark.asyncio
async def test_booking_form_lists_slots(client, seed, login):
    await login("student@u.edu")

    resp = await client.get(
        "/citas/nueva", params={"service_id": seed.service.id, "specialist_id": seed.specialist.id, "date": "2024-06-10"}
    )

    assert resp.status_code == 200
    assert 'value="08:30"' in resp.text
    assert "8:30 AM" in resp.text


@pytest.mark.asyncio
async def test_book_then_conflict(client, seed, login, db):
    await login("student@u.edu")
    form = {"service_id": seed.service.id, "specialist_id": seed.specialist.id, "day": "2024-06-10", "time": "09:00"}

    first = await client.post("/citas/nueva", data=form)
    second = await client.post("/citas/nueva", data=form)

    assert first.status_code == 303
    assert second.status_code == 409
    appointments = (await db.scalars(select(Appointment))).all()
    assert [(a.time, a.status, a.requester_name) for a in appointments] == [("09:00", "pendiente", "Sofía Gómez")]

    slots = await client.get("/api/slots", params={"specialist_id": seed.specialist.id, "date": "2024-06-10"})
    assert slots.json()["slots"] == ["08:00", "08:30", "09:30"]


@pytest.mark.asyncio
async def test_booking_rejects_specialist_outside_service(client, seed, login, db):
    seed.service.specialists = [seed.specialist]
    await db.commit()
    await login("student@u.edu")

    resp = await client.post(
        "/citas/nueva", data={"service_id": seed.service.id, "specialist_id": seed.other.id, "day": "2024-06-10", "time": "14:00"}
    )

    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_reschedule_own_appointment(client, seed, login, db):
    await login("student@u.edu")
    await client.post(
        "/citas/nueva", data={"service_id": seed.service.id, "specialist_id": seed.specialist.id, "day": "2024-06-10", "time": "08:00"}
    )
    appointment = await db.scalar(select(Appointment))

    page = await client.get(f"/citas/{appointment.id}/reprogramar")
    resp = await client.post(f"/citas/{appointment.id}/reprogramar", data={"day": "2024-06-10", "time": "09:30"})

    assert page.status_code == 200
    assert 'value="08:00"' in page.text
    assert resp.status_code == 303
    await db.refresh(appointment)
    assert appointment.time == "09:30"


@pytest.mark.asyncio
async def test_cannot_reschedule_someone_elses_appointment(client, seed, login, db):
    db.add(
        Appointment(
            date=seed.day,
            time="08:00",
            user_id=seed.admin.id,
            requester_name="Admin",
            requester_type="Administrativo",
            service_id=seed.service.id,
            specialist_id=seed.specialist.id,
        )
    )
    await db.commit()
    appointment = await db.scalar(select(Appointment))
    await login("student@u.edu")

    resp = await client.post(f"/citas/{appointment.id}/reprogramar", data={"day": "2024-06-10", "time": "09:30"})

    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_admin_pages_forbidden_for_students(client, seed, login):
    await login("student@u.edu")

    resp = await client.get("/admin/citas")

    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_admin_creates_schedule(client, seed, login, db):
    await login("admin@u.edu")

    resp = await client.post(
        "/admin/horarios", data={"specialist_id": seed.specialist.id, "day": "2024-06-11", "start_time": "10:00", "end_time": "11:00"}
    )

    assert resp.status_code == 303
    slots = await client.get("/api/slots", params={"specialist_id": seed.specialist.id, "date": "2024-06-11"})
    assert slots.json()["slots"] == ["10:00", "10:30"]


@pytest.mark.asyncio
async def test_admin_rejects_inverted_schedule(client, seed, login, db):
    await login("admin@u.edu")

    resp = await client.post(
        "/admin/horarios", data={"specialist_id": seed.specialist.id, "day": "2024-06-11", "start_time": "11:00", "end_time": "10:00"}
    )

    assert resp.status_code == 400
    assert (await db.scalars(select(Schedule).where(Schedule.date == seed.day.replace(day=11)))).all() == []


@pytest.mark.asyncio
async def test_admin_rejects_unparseable_schedule(client, seed, login):
    await login("admin@u.edu")

    resp = await client.post(
        "/admin/horarios", data={"specialist_id": seed.specialist.id, "day": "2024-06-11", "start_time": "mañana", "end_time": "10:00"}
    )

    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_admin_updates_status(client, seed, login, db):
    appointment = Appointment(
        date=seed.day,
        time="08:00",
        user_id=seed.student.id,
        requester_name="Sofía Gómez",
        requester_type="Estudiante",
        service_id=seed.service.id,
        specialist_id=seed.specialist.id,
    )
    db.add(appointment)
    await db.commit()
    await login("admin@u.edu")

    resp = await client.post(f"/admin/citas/{appointment.id}/estado", data={"status_value": "cancelado", "recommendations": ""})

    assert resp.status_code == 303
    await db.refresh(appointment)
    assert appointment.status == "cancelado"
    slots = await client.get("/api/slots", params={"specialist_id": seed.specialist.id, "date": "2024-06-10"})
    assert "08:00" in slots.json()["slots"]


@pytest.mark.asyncio
async def test_admin_lists_appointments_page(client, seed, login):
    await login("admin@u.edu")

    for path in ("/admin/citas", "/admin/servicios", "/admin/especialistas", "/admin/horarios", "/admin/usuarios"):
        resp = await client.get(path)
        assert resp.status_code == 200, path


def _booked(seed, time, owner, status="pendiente"):
    return Appointment(
        date=seed.day,
        time=time,
        user_id=owner.id,
        requester_name=owner.full_name,
        requester_type=owner.requester_type,
        service_id=seed.service.id,
        specialist_id=seed.specialist.id,
        status=status,
    )


@pytest.mark.asyncio
async def test_admin_cannot_reactivate_into_rebooked_slot(client, seed, login, db):
    cancelled = _booked(seed, "09:00", seed.student, status="cancelado")
    db.add_all([cancelled, _booked(seed, "09:00", seed.admin)])
    await db.commit()
    await login("admin@u.edu")

    resp = await client.post(f"/admin/citas/{cancelled.id}/estado", data={"status_value": "pendiente", "recommendations": ""})

    assert resp.status_code == 409
    await db.refresh(cancelled)
    assert cancelled.status == "cancelado"


@pytest.mark.asyncio
async def test_exclude_ignored_for_someone_elses_appointment(client, seed, login, db):
    theirs = _booked(seed, "09:00", seed.admin)
    db.add(theirs)
    await db.commit()
    await login("student@u.edu")

    resp = await client.get(
        "/api/slots", params={"specialist_id": seed.specialist.id, "date": "2024-06-10", "exclude": theirs.id}
    )

    assert "09:00" not in resp.json()["slots"]


@pytest.mark.asyncio
async def test_exclude_frees_own_appointment(client, seed, login, db):
    mine = _booked(seed, "09:00", seed.student)
    db.add(mine)
    await db.commit()
    await login("student@u.edu")

    resp = await client.get("/api/slots", params={"specialist_id": seed.specialist.id, "date": "2024-06-10", "exclude": mine.id})

    assert resp.json()["slots"] == ["08:00", "08:30", "09:00", "09:30"]


@pytest.mark.asyncio
async def test_exclude_of_missing_appointment_is_ignored(client, seed, login):
    await login("student@u.edu")

    resp = await client.get("/api/slots", params={"specialist_id": seed.specialist.id, "date": "2024-06-10", "exclude": 999})

    assert resp.status_code == 200
    assert resp.json()["slots"] == ["08:00", "08:30", "09:00", "09:30"]


@pytest.mark.asyncio
async def test_lookup_for_another_specialist_does_not_stale_the_first(client, seed, login):
    first_id, other_id = seed.specialist.id, seed.other.id
    real_lookup = booking.get_bookable_slots

    async def lookup_other_meanwhile(db, specialist_id, day, exclude=None):
        if specialist_id == first_id:
            await client.get("/api/slots", params={"specialist_id": other_id, "date": "2024-06-10"})
        return await real_lookup(db, specialist_id, day, exclude)

    await login("student@u.edu")
    with patch.dict(booking._gates, clear=True), patch("wellness.routers.booking.get_bookable_slots", lookup_other_meanwhile):
        resp = await client.get("/api/slots", params={"specialist_id": first_id, "date": "2024-06-10"})

    assert resp.json()["stale"] is False
    assert resp.json()["slots"] == ["08:00", "08:30", "09:00", "09:30"]


@pytest.mark.asyncio
async def test_admin_books_on_behalf_of_requester(client, seed, login, db):
    await login("admin@u.edu")

    resp = await client.post(
        "/citas/nueva",
        data={
            "service_id": seed.service.id,
            "specialist_id": seed.specialist.id,
            "day": "2024-06-10",
            "time": "08:30",
            "requester_name": "Carlos Díaz",
            "requester_type": "Docente",
        },
    )

    assert resp.status_code == 303
    appointment = await db.scalar(select(Appointment))
    assert (appointment.requester_name, appointment.requester_type) == ("Carlos Díaz", "Docente")


@pytest.mark.asyncio
async def test_admin_booking_rejects_unknown_requester_type(client, seed, login):
    await login("admin@u.edu")

    resp = await client.post(
        "/citas/nueva",
        data={
            "service_id": seed.service.id,
            "specialist_id": seed.specialist.id,
            "day": "2024-06-10",
            "time": "08:30",
            "requester_name": "Carlos Díaz",
            "requester_type": "Visitante",
        },
    )

    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_student_cannot_book_under_another_name(client, seed, login, db):
    await login("student@u.edu")

    await client.post(
        "/citas/nueva",
        data={
            "service_id": seed.service.id,
            "specialist_id": seed.specialist.id,
            "day": "2024-06-10",
            "time": "08:30",
            "requester_name": "Otra Persona",
            "requester_type": "Docente",
        },
    )

    appointment = await db.scalar(select(Appointment))
    assert (appointment.requester_name, appointment.requester_type) == ("Sofía Gómez", "Estudiante")


@pytest.mark.asyncio
async def test_admin_creates_user_who_can_book(client, seed, login, db):
    await login("admin@u.edu")

    resp = await client.post(
        "/admin/usuarios",
        data={"email": "Docente@U.edu", "full_name": "Marta León", "password": "clave", "requester_type": "Docente", "role": "user"},
    )

    assert resp.status_code == 303
    created = await db.scalar(select(User).where(User.email == "docente@u.edu"))
    assert (created.full_name, created.requester_type, created.role) == ("Marta León", "Docente", "user")

    await login("docente@u.edu", "clave")
    booked = await client.post(
        "/citas/nueva", data={"service_id": seed.service.id, "specialist_id": seed.specialist.id, "day": "2024-06-10", "time": "08:00"}
    )
    assert booked.status_code == 303
    appointment = await db.scalar(select(Appointment))
    assert (appointment.user_id, appointment.requester_type) == (created.id, "Docente")


@pytest.mark.asyncio
async def test_admin_user_creation_rejects_duplicates_and_bad_roles(client, seed, login):
    await login("admin@u.edu")

    duplicate = await client.post(
        "/admin/usuarios", data={"email": "student@u.edu", "full_name": "Otra", "password": "x", "requester_type": "Estudiante"}
    )
    bad_role = await client.post(
        "/admin/usuarios", data={"email": "nuevo@u.edu", "full_name": "Nuevo", "password": "x", "role": "root"}
    )

    assert duplicate.status_code == 400
    assert bad_role.status_code == 400


@pytest.mark.asyncio
async def test_deactivated_user_cannot_log_in(client, seed, login):
    await login("admin@u.edu")

    resp = await client.post(f"/admin/usuarios/{seed.student.id}/toggle")
    denied = await client.post("/login", data={"email": "student@u.edu", "password": "secret"})

    assert resp.status_code == 303
    assert denied.status_code == 401


@pytest.mark.asyncio
async def test_user_admin_forbidden_for_students(client, seed, login):
    await login("student@u.edu")

    resp = await client.get("/admin/usuarios")

    assert resp.status_code == 403
