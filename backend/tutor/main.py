"""Lesson tutor: FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tutor.config import settings
from tutor.database import create_tables
from tutor.errors import TutorError
from tutor.routers import analytics, chat, citations, threads
from tutor.services.ai_client import ai_provider_name
from tutor.services.trace import RequestTrace

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and log the configured model provider."""
    create_tables()

    provider = ai_provider_name()
    if provider == "none":
        logger.warning(
            "AI not configured: set OCI_CONFIG_FILE, OCI_CONFIG_PROFILE, "
            "ORACLE_GENAI_COMPARTMENT_ID and ORACLE_GENAI_MODEL (or ANTHROPIC_API_KEY) in backend/.env"
        )
    else:
        logger.info("AI provider: %s", provider)
    yield


# ── CORS origins from env ────────────────────────────────────────────────────
_cors_origins = [o.strip() for o in settings.ALLOWED_ORIGINS.split(",") if o.strip()]

app = FastAPI(
    title="Lesson Tutor",
    description="Retrieval-grounded AI tutor for course lessons.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def attach_trace(request: Request, call_next):
    request.state.trace = RequestTrace.start(request.headers.get("x-request-id"))
    return await call_next(request)


def _request_trace(request: Request) -> RequestTrace:
    return getattr(request.state, "trace", None) or RequestTrace.start()


@app.exception_handler(TutorError)
async def tutor_error_handler(request: Request, exc: TutorError):
    trace = _request_trace(request)
    return JSONResponse(status_code=exc.status, content=exc.to_dict(trace.request_id))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    trace = _request_trace(request).at("unhandled")
    trace.error(message=str(exc))
    logger.exception("Unhandled error")
    return JSONResponse(
        status_code=500,
        content={
            "ok": False,
            "stage": "unhandled",
            "code": "unexpected",
            "message": "Unhandled error.",
            "detail": str(exc),
            "requestId": trace.request_id,
        },
    )


# Routers
app.include_router(chat.router)
app.include_router(threads.router)
app.include_router(citations.router)
app.include_router(analytics.router)


@app.get("/health")
def health():
    return {"status": "ok", "ai_provider": ai_provider_name()}
