from contextlib import asynccontextmanager
from typing import Optional
import json
import logging
import traceback

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from hallway.auth.identity import read_participant_id
from hallway.database import Base, SessionLocal, engine
import hallway.models  # noqa: F401  # Ensure all SQLAlchemy models are registered
from hallway.routers import cohorts as cohorts_router
from hallway.routers import meetings as meetings_router
from hallway.routers import realtime as realtime_router
from hallway.routers import topics as topics_router
from hallway.services.errors import InvalidBallot, RankingError
from hallway.services.meeting_locks import meeting_locks
from hallway.utils.logging_config import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    Base.metadata.create_all(bind=engine)
    logging.getLogger("hallway").info("Database initialized.")
    yield
    logging.getLogger("hallway").info("Application shutdown.")


app = FastAPI(
    title="Hallway",
    description="Small-group topic ranking for meetings",
    lifespan=lifespan,
)


async def audit_action_middleware(
    request: Request, call_next: RequestResponseEndpoint
) -> Response:
    method = request.method.upper()
    if method not in {"POST", "PUT", "PATCH", "DELETE"}:
        return await call_next(request)

    path = request.url.path
    if not path.startswith("/api/"):
        return await call_next(request)

    payload_summary: Optional[str] = None
    if request.headers.get("content-type", "").lower().startswith("application/json"):
        try:
            body = await request.body()
            if body:
                parsed = json.loads(body.decode("utf-8"))
                if isinstance(parsed, dict):
                    payload_summary = json.dumps(
                        {
                            key: value
                            if isinstance(value, (str, int, float, bool, type(None)))
                            else type(value).__name__
                            for key, value in parsed.items()
                        },
                        ensure_ascii=True,
                    )
                else:
                    payload_summary = type(parsed).__name__
        except (UnicodeDecodeError, ValueError):
            payload_summary = "unavailable"

    response = await call_next(request)

    logger = logging.getLogger("audit")
    details = {
        "method": method,
        "path": path,
        "status": response.status_code,
        "participant": read_participant_id(request) or "unknown",
    }
    if payload_summary:
        details["payload"] = payload_summary
    logger.info("Audit action: %s", details)
    return response


app.add_middleware(BaseHTTPMiddleware, dispatch=audit_action_middleware)

# Include routers
app.include_router(meetings_router.router)
app.include_router(topics_router.router)
app.include_router(cohorts_router.router)
app.include_router(realtime_router.router)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger = logging.getLogger("hallway")
    logger.error(f"Global exception: {str(exc)}\n{traceback.format_exc()}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal Server Error. Please check logs."},
    )


@app.exception_handler(RankingError)
async def ranking_error_handler(request: Request, exc: RankingError):
    logger = logging.getLogger("hallway")
    logger.info(f"{exc.kind} ({exc.status_code}) on {request.url.path}: {exc.detail}")
    content = {"detail": exc.detail, "error": exc.kind}
    if isinstance(exc, InvalidBallot):
        content["missing"] = list(exc.missing)
        content["duplicated"] = list(exc.duplicated)
        content["unknown"] = list(exc.unknown)
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    logger = logging.getLogger("hallway")
    if exc.status_code >= 500:
        logger.error(
            f"HTTP {exc.status_code} error: {exc.detail}\n{traceback.format_exc()}"
        )
    else:
        logger.info(f"HTTP {exc.status_code}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger = logging.getLogger("hallway")
    # Messages only, so the response is always serializable.
    error_messages = [err["msg"] for err in exc.errors()]
    logger.warning(f"Validation error: {error_messages}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": error_messages},
    )


@app.get("/health", tags=["healthcheck"])
async def health_check():
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "database": "connected",
            "active_meeting_locks": len(await meeting_locks.snapshot()),
        }
    except Exception as e:
        logging.getLogger("hallway").error(f"Health check database connection error: {e}")
        raise HTTPException(
            status_code=503, detail=f"Database connection failed: {str(e)}"
        )
    finally:
        db.close()
