import logging

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wellness.config import TEMPLATES_DIR
from wellness.database import get_db
from wellness.models import User
from wellness.security import verify_password

logger = logging.getLogger(__name__)

router = APIRouter()
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


@router.get("/login")
async def login_page(request: Request):
    return templates.TemplateResponse(request, "login.html", {"error": None})


@router.post("/login")
async def login(request: Request, email: str = Form(...), password: str = Form(...), db: AsyncSession = Depends(get_db)):
    user = await db.scalar(select(User).where(User.email == email.strip().lower()))
    if not user or not user.is_active or not verify_password(password, user.password_hash):
        logger.info("Failed login for %s", email)
        return templates.TemplateResponse(request, "login.html", {"error": "Correo o contraseña incorrectos"}, status_code=401)

    request.session["user_id"] = user.id
    if user.role == "admin":
        return RedirectResponse("/admin/citas", status_code=303)
    return RedirectResponse("/citas", status_code=303)


@router.get("/logout")
async def logout(request: Request):
    request.session.clear()
    return RedirectResponse("/login", status_code=303)
