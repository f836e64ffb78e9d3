import logging

from fastapi import FastAPI
from starlette.middleware.sessions import SessionMiddleware
from sqlalchemy import select

from wellness.config import configure_logging, get_settings
from wellness.database import AsyncSessionLocal, Base, engine
from wellness.models import Service, User
from wellness.routers import admin, auth, booking
from wellness.security import hash_password

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

DEFAULT_SERVICES = [
    ("Odontología", "Atención odontológica general y preventiva."),
    ("Psicología", "Orientación y acompañamiento psicológico."),
    ("Acompañamiento espiritual", "Escucha y acompañamiento espiritual."),
]

app = FastAPI(title="Bienestar Universitario")
app.add_middleware(SessionMiddleware, secret_key=settings.secret_key, same_site="lax")

app.include_router(auth.router)
app.include_router(booking.router)
app.include_router(admin.router)


@app.get("/")
async def root():
    return {"ok": True, "login": "/login"}


@app.on_event("startup")
async def startup():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        admin_email = settings.admin_email.strip().lower()
        if not await db.scalar(select(User).where(User.email == admin_email)):
            db.add(
                User(
                    email=admin_email,
                    full_name="Administrador",
                    requester_type="Administrativo",
                    role="admin",
                    password_hash=hash_password(settings.admin_password),
                )
            )
            logger.info("Created bootstrap administrator %s", admin_email)

        for title, description in DEFAULT_SERVICES:
            exists = await db.scalar(select(Service).where(Service.title == title))
            if not exists:
                db.add(Service(title=title, description=description, is_active=True))

        await db.commit()
