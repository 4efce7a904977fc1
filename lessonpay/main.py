# lessonpay/main.py
from __future__ import annotations
from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lessonpay.core.errors import register_exception_handlers
from lessonpay.core.logger import setup_logging
from lessonpay.core.middleware import RequestContextMiddleware
from lessonpay.core.settings import settings
from lessonpay.api import (
    config,
    customers,
    lessons,
    reports,
)

setup_logging()


def _csv_or_any(value: str) -> List[str]:
    return ["*"] if value == "*" else [v for v in value.split(",") if v]


app = FastAPI(title=settings.APP_NAME, version="1.0.0")

# --- CORS (the lessons front end is served from another origin) ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=_csv_or_any(settings.CORS_ORIGINS),
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=_csv_or_any(settings.CORS_ALLOW_METHODS),
    allow_headers=_csv_or_any(settings.CORS_ALLOW_HEADERS),
    expose_headers=["X-Request-Id"],
)

# --- Request context (request_id in every log line) ---
app.add_middleware(RequestContextMiddleware)

# --- Errors: {"error": {"code", "message"}} for everything ---
register_exception_handlers(app)

# --- Routers ---
app.include_router(config.router)
app.include_router(customers.router)
app.include_router(lessons.router)
app.include_router(reports.router)
