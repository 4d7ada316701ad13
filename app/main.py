# File: app/main.py

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi.errors import RateLimitExceeded
from slowapi import _rate_limit_exceeded_handler

from app.core.config import cors_origins_list, settings
from app.core.logging import configure_logging
from app.core.ratelimit import limiter
from app.routers import ai, issues, issues_stats, users

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Civic Issues API")
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins_list(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    body = {"detail": "Internal server error"}
    if settings.is_development:
        body["error"] = str(exc)
    return JSONResponse(status_code=500, content=body)


@app.get("/health")
def health():
    return {"ok": True}

# Locally stored images; unused when Supabase storage is configured.
app.mount("/uploads", StaticFiles(directory=settings.upload_dir, check_dir=False), name="uploads")

# stats before issues so /issues/stats is not taken as an issue id
app.include_router(issues_stats.router)
app.include_router(issues.router)
app.include_router(ai.router)
app.include_router(users.router)
