import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

import requests
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from examai.config import settings
from examai.database import engine, get_db
from examai.exceptions import DocumentNotFoundError, UnsupportedFormatError
import examai.models  # noqa: F401
from examai.routers import exams
from examai.seed.exam_type_seed import seed_exam_types

logger = logging.getLogger(__name__)


def _assert_database_at_head() -> None:
    project_root = Path(__file__).resolve().parent.parent
    alembic_cfg = Config(str(project_root / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(project_root / "alembic"))
    script = ScriptDirectory.from_config(alembic_cfg)
    expected_heads = set(script.get_heads())

    with engine.connect() as connection:
        context = MigrationContext.configure(connection)
        current_heads = set(context.get_current_heads())

    if current_heads != expected_heads:
        raise RuntimeError(
            "Database schema is not at Alembic head. "
            "Run `alembic upgrade head` before starting the API. "
            f"Current revisions: {sorted(current_heads) or ['<none>']}, "
            f"expected: {sorted(expected_heads)}."
        )


@asynccontextmanager
async def lifespan(_: FastAPI):
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _assert_database_at_head()
    inserted = seed_exam_types()
    logger.info("Exam type seed complete (%d new rows)", inserted)
    yield


app = FastAPI(title="Medical Exam Extraction API", version="0.1.0", lifespan=lifespan)

allowed_origins = [origin.strip() for origin in settings.allowed_origins.split(",") if origin.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health():
    return {
        "status": "ok",
        "service": "examai",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/health/database")
def database_health(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.exception("Database health check failed")
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "error": str(exc) or "Cannot connect to database"},
        )
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/health/ollama")
def ollama_health():
    url = settings.ollama_url.rstrip("/")
    logger.info("Testing Ollama connection at %s", url)
    try:
        response = requests.get(f"{url}/api/tags", timeout=5)
    except requests.RequestException as exc:
        logger.exception("Ollama connection failed")
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "error": "Cannot connect to Ollama service. Is Ollama running?",
                "details": str(exc),
            },
        )

    if not response.ok:
        logger.warning("Ollama returned status code: %s", response.status_code)
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "error": f"Ollama returned status code: {response.status_code}"},
        )
    return {
        "status": "ok",
        "service": "ollama",
        "url": url,
        "model": settings.ollama_model,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def _error_name(status_code: int) -> str:
    if status_code == 400:
        return "BadRequest"
    if status_code == 404:
        return "NotFound"
    if status_code == 415:
        return "UnsupportedMediaType"
    if status_code == 422:
        return "ValidationError"
    if status_code >= 500:
        return "InternalServerError"
    return "HTTPError"


@app.exception_handler(HTTPException)
async def http_exception_handler(_: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "statusCode": exc.status_code,
            "message": str(exc.detail) if exc.detail else "Request failed",
            "error": _error_name(exc.status_code),
        },
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "statusCode": 422,
            "message": "Invalid request payload",
            "error": "ValidationError",
            "details": {"errors": exc.errors()},
        },
    )


@app.exception_handler(UnsupportedFormatError)
async def unsupported_format_handler(_: Request, exc: UnsupportedFormatError):
    return JSONResponse(
        status_code=415,
        content={
            "statusCode": 415,
            "message": str(exc),
            "error": _error_name(415),
            "details": {"supported_formats": exc.supported_formats},
        },
    )


@app.exception_handler(DocumentNotFoundError)
async def document_not_found_handler(_: Request, exc: DocumentNotFoundError):
    return JSONResponse(
        status_code=404,
        content={"statusCode": 404, "message": str(exc), "error": _error_name(404)},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(_: Request, exc: Exception):
    logger.exception("Unhandled server error: %s", exc)
    return JSONResponse(
        status_code=500,
        content={
            "statusCode": 500,
            "message": str(exc) or "An unexpected error occurred",
            "error": "InternalServerError",
        },
    )


app.include_router(exams.router)
