from typing import Annotated, Any

from fastapi import APIRouter, Depends
from pydantic import AliasChoices, BaseModel, Field

from app.compliance.credentials import ProjectCredentials, display_url, validate_credentials
from app.compliance.dependencies import get_assistant_service
from app.core.exceptions import ComplianceError, InvalidInput
from app.core.responses import StandardResponse
from app.services.assistant_service import AssistantService
from app.services.audit_service import AuditService

router = APIRouter()


class AssistantRequest(ProjectCredentials):
    question: str | None = Field(default=None, validation_alias=AliasChoices("question", "issue"))
    context: Any = None


class AssistantAnswer(BaseModel):
    message: str
    timestamp: str


@router.post("/ask", response_model=StandardResponse[AssistantAnswer])
async def ask_assistant(
    body: AssistantRequest,
    assistant: Annotated[AssistantService, Depends(get_assistant_service)],
):
    """Forward a question plus the caller's compliance context to the language model."""
    try:
        project_url, _ = validate_credentials(body)
        if not body.question or not body.question.strip():
            raise InvalidInput("Project URL, Service Key, and Issue description are required.")
    except InvalidInput:
        AuditService.log_evidence("error", "Missing parameters for AI assistance.")
        raise

    project = display_url(project_url)
    try:
        answer = await assistant.ask(body.question, body.context)
    except ComplianceError as exc:
        AuditService.log_evidence(
            "error",
            "AI compliance analysis failed",
            {"project": project, "error": exc.message},
            secrets=body.secrets(),
        )
        raise

    AuditService.log_evidence(
        "info",
        "AI compliance analysis provided",
        {"project": project, "analysisType": body.question[:100]},
    )
    return StandardResponse(data=AssistantAnswer(**answer))
