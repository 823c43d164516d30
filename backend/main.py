import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.config import (
    CORS_ALLOW_CREDENTIALS,
    CORS_ALLOW_HEADERS,
    CORS_ALLOW_METHODS,
    CORS_ALLOW_ORIGINS,
    FACES_DIR,
    LOG_DIR,
    LOG_LEVEL,
)
from backend.errors import RollcallError
from backend.logging_config import setup_logging
from backend.routers import admin, attendance, core, schedules, students, teachers, training
from backend.services.session import shutdown_attendance_session
from database.db import create_tables

logger = logging.getLogger(__name__)


# -----------------------------
# Startup / shutdown
# -----------------------------
@asynccontextmanager
async def lifespan(_app: FastAPI):
    setup_logging(LOG_LEVEL, LOG_DIR)
    create_tables()
    FACES_DIR.mkdir(parents=True, exist_ok=True)
    logger.info("Rollcall API ready")
    yield
    # a running scan owns the camera; release it before the process exits
    shutdown_attendance_session()
    logger.info("Rollcall API stopped")


app = FastAPI(title="Rollcall API", lifespan=lifespan)


# -----------------------------
# CORS (React dev server)
# -----------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=CORS_ALLOW_CREDENTIALS,
    allow_methods=CORS_ALLOW_METHODS,
    allow_headers=CORS_ALLOW_HEADERS,
)


@app.exception_handler(RollcallError)
async def rollcall_error_handler(_request: Request, exc: RollcallError):
    if exc.status_code >= 500:
        logger.error("%s: %s", type(exc).__name__, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


app.include_router(core.router)
app.include_router(students.router)
app.include_router(teachers.router)
app.include_router(schedules.router)
app.include_router(training.router)
app.include_router(attendance.router)
app.include_router(admin.router)
