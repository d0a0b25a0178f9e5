from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError


class ComplianceError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "COMPLIANCE_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(ComplianceError):
    """A required field is missing or malformed. Raised before any network I/O."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_INPUT"


class UpstreamFailure(ComplianceError):
    """An external API answered with a non-success status or could not be reached."""

    code = "UPSTREAM_FAILURE"

    def __init__(self, message: str, upstream_status: int | None = None):
        super().__init__(message)
        self.upstream_status = upstream_status


class NotConfigured(ComplianceError):
    code = "NOT_CONFIGURED"


class PreconditionFailed(ComplianceError):
    code = "PRECONDITION_FAILED"


class ConnectionFailure(ComplianceError):
    code = "CONNECTION_FAILURE"


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": jsonable_encoder(exc.errors(), exclude={"input"}),
            "error": InvalidInput.code,
            "message": "Validation Error",
            "request_id": request_id,
        },
    )

async def compliance_exception_handler(request: Request, exc: ComplianceError):
    request_id = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.code, "request_id": request_id},
    )
