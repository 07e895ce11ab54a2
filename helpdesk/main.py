import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from helpdesk.core.config import settings
from helpdesk.core.database import SessionLocal
from helpdesk.core.errors import HelpdeskError, ValidationFailed
from helpdesk.core.logging import configure_logging
from helpdesk.api.routes.tickets import router as tickets_router
from helpdesk.api.routes.categories import router as categories_router
from helpdesk.api.routes.audit_logs import router as audit_logs_router

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# 1) Create the app FIRST
app = FastAPI(title="Student Helpdesk Triage")

# 2) Add CORS Middleware BEFORE routes
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# 3) Map engine errors to HTTP
@app.exception_handler(ValidationFailed)
async def validation_failed_handler(request: Request, exc: ValidationFailed):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "errors": exc.field_errors})


@app.exception_handler(HelpdeskError)
async def helpdesk_error_handler(request: Request, exc: HelpdeskError):
    # 5xx details stay in the logs
    detail = exc.public_message if exc.status_code >= 500 else exc.message
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": detail})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.setdefault(".".join(loc) or "body", []).append(err.get("msg", "Invalid value"))
    return JSONResponse(
        status_code=422,
        content={"detail": ValidationFailed.public_message, "errors": errors},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": HelpdeskError.public_message})


# 4) Include routers AFTER app is created
app.include_router(tickets_router)
app.include_router(categories_router)
app.include_router(audit_logs_router)


# 5) Health check endpoints
@app.get("/health")
def health():
    return {"ok": True, "service": "helpdesk"}


@app.get("/db-health")
def db_health():
    db = SessionLocal()
    try:
        db.execute(text("select 1"))
        return {"ok": True, "db": "connected"}
    finally:
        db.close()
