import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import (
    academic_years,
    activities,
    auth,
    chat,
    classes,
    departments,
    establishments,
    exams,
    health,
    homework,
    permissions,
    roles,
    rooms,
    students,
    subjects,
    teachers,
    timetable,
    users,
)
from app.core.config import get_settings
from app.core.exceptions import AppError, InvalidArgumentError
from app.core.logging import configure_logging
from app.db.bootstrap import ensure_schema

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging(settings.log_level)
    ensure_schema()
    logger.info("%s started", settings.project_name)
    yield


async def app_error_handler(request: Request, exc: AppError):
    if isinstance(exc, InvalidArgumentError):
        # Decision functions only raise this on caller contract violations.
        logger.warning("Unexpected invalid argument on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_content(),
    )


app = FastAPI(title=settings.project_name, lifespan=lifespan)
app.add_exception_handler(AppError, app_error_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix=settings.api_prefix, tags=["health"])
app.include_router(auth.router, prefix=f"{settings.api_prefix}/auth", tags=["auth"])
app.include_router(establishments.router, prefix=f"{settings.api_prefix}/establishments", tags=["establishments"])
app.include_router(roles.router, prefix=f"{settings.api_prefix}/roles", tags=["roles"])
app.include_router(permissions.router, prefix=f"{settings.api_prefix}/permissions", tags=["permissions"])
app.include_router(users.router, prefix=f"{settings.api_prefix}/users", tags=["users"])
app.include_router(academic_years.router, prefix=f"{settings.api_prefix}/academic-years", tags=["academic-years"])
app.include_router(classes.router, prefix=f"{settings.api_prefix}/classes", tags=["classes"])
app.include_router(subjects.router, prefix=f"{settings.api_prefix}/subjects", tags=["subjects"])
app.include_router(departments.router, prefix=f"{settings.api_prefix}/departments", tags=["departments"])
app.include_router(teachers.router, prefix=f"{settings.api_prefix}/teachers", tags=["teachers"])
app.include_router(rooms.router, prefix=f"{settings.api_prefix}/rooms", tags=["rooms"])
app.include_router(timetable.router, prefix=f"{settings.api_prefix}/timetable", tags=["timetable"])
app.include_router(chat.router, prefix=f"{settings.api_prefix}/chat", tags=["chat"])
app.include_router(exams.router, prefix=f"{settings.api_prefix}/exams", tags=["exams"])
app.include_router(homework.router, prefix=f"{settings.api_prefix}/homework", tags=["homework"])
app.include_router(activities.router, prefix=f"{settings.api_prefix}/activities", tags=["activities"])
app.include_router(students.router, prefix=settings.api_prefix, tags=["students"])
