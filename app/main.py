import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.core import exceptions
from app.core.responses import ERROR_RESPONSES
from app.routers.assistant import router as assistant_router
from app.routers.compliance import router as compliance_router
from app.services.audit_service import AuditService

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json"
)

# CORS must be added before other middleware
configured_origins = [str(origin).rstrip("/") for origin in settings.BACKEND_CORS_ORIGINS]
default_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
allow_origins = configured_origins if settings.APP_ENV == "production" else list(dict.fromkeys([*default_origins, *configured_origins]))

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)


@app.middleware("http")
async def attach_request_id(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response

# Exception Handlers
app.add_exception_handler(RequestValidationError, exceptions.validation_exception_handler)  # type: ignore
app.add_exception_handler(exceptions.ComplianceError, exceptions.compliance_exception_handler)  # type: ignore

# Routers
app.include_router(
    compliance_router,
    prefix=f"{settings.API_V1_STR}/compliance",
    tags=["Compliance"],
    responses=ERROR_RESPONSES,
)
app.include_router(
    assistant_router,
    prefix=f"{settings.API_V1_STR}/assistant",
    tags=["Assistant"],
    responses=ERROR_RESPONSES,
)

@app.get("/health")
async def health_check():
    return {
        "status": "ok",
        "management_api_configured": bool(settings.SUPABASE_MANAGEMENT_TOKEN),
        "assistant_configured": bool(settings.OPENAI_API_KEY),
    }

@app.get("/")
async def root():
    return {"message": "Welcome to the Supabase Compliance Checker API", "docs": "/docs"}


@app.on_event("startup")
async def startup_evidence_log() -> None:
    AuditService.verify_sink()
    AuditService.log_evidence("info", f"{settings.PROJECT_NAME} {settings.VERSION} started")
