import logging
from contextlib import contextmanager
from typing import Annotated, Iterator

from fastapi import APIRouter, Depends
from pydantic import AliasChoices, Field

from app.clients.supabase_admin import SupabaseManagementClient
from app.compliance.checks import DataStoreFactory, collect_compliance_report
from app.compliance.credentials import (
    ProjectCredentials,
    connection_string_of,
    display_url,
    project_ref,
    redact,
    validate_credentials,
)
from app.compliance.dependencies import (
    AdminClientFactory,
    get_admin_client_factory,
    get_datastore_factory,
    get_management_client,
)
from app.compliance.models import ComplianceReport, MfaFixResult, PitrFixResult, RlsFixResult
from app.compliance import remediation
from app.core.exceptions import ComplianceError, InvalidInput
from app.core.responses import StandardResponse
from app.services.audit_service import AuditService

logger = logging.getLogger(__name__)

router = APIRouter()


class RlsFixRequest(ProjectCredentials):
    table_name: str | None = Field(default=None, validation_alias=AliasChoices("table_name", "tableName"))


class MfaFixRequest(ProjectCredentials):
    user_id: str | None = Field(default=None, validation_alias=AliasChoices("user_id", "userId"))


class PitrFixRequest(ProjectCredentials):
    project_ref: str | None = Field(default=None, validation_alias=AliasChoices("project_ref", "projectRef"))


def _validated(body: ProjectCredentials, action: str) -> tuple[str, str]:
    try:
        return validate_credentials(body)
    except InvalidInput:
        AuditService.log_evidence("error", f"Missing parameters for {action}.")
        raise


@contextmanager
def _audit_failures(message: str, project: str | None, secrets: tuple[str, ...], **data) -> Iterator[None]:
    try:
        yield
    except ComplianceError as exc:
        exc.message = redact(exc.message, *secrets)
        AuditService.log_evidence("error", message, {"project": project, "error": exc.message, **data}, secrets=secrets)
        raise
    except Exception as exc:
        logger.exception("%s", message)
        detail = redact(str(getattr(exc, "orig", None) or exc), *secrets)
        AuditService.log_evidence("error", message, {"project": project, "error": detail, **data}, secrets=secrets)
        raise ComplianceError(f"{message}: {detail}") from exc


@router.post("/checks", response_model=StandardResponse[ComplianceReport])
async def run_checks(
    body: ProjectCredentials,
    admin_factory: Annotated[AdminClientFactory, Depends(get_admin_client_factory)],
    datastore_factory: Annotated[DataStoreFactory, Depends(get_datastore_factory)],
    management: Annotated[SupabaseManagementClient | None, Depends(get_management_client)],
):
    """Run the MFA, RLS and PITR checks concurrently and return the merged report."""
    project_url, service_key = _validated(body, "check execution")
    project = display_url(project_url)
    AuditService.log_evidence("info", f"Initiating compliance checks for project: {project}")

    report = await collect_compliance_report(
        admin_factory(project_url, service_key),
        datastore_factory,
        connection_string_of(body),
        management,
        project=project,
        secrets=body.secrets(),
    )
    return StandardResponse(data=report)


@router.post("/fixes/rls", response_model=StandardResponse[RlsFixResult])
async def fix_rls(
    body: RlsFixRequest,
    datastore_factory: Annotated[DataStoreFactory, Depends(get_datastore_factory)],
):
    """Enable RLS on one table."""
    project_url, _ = _validated(body, "RLS fix")
    project = display_url(project_url)
    with _audit_failures(f"Failed to enable RLS for table: {body.table_name}", project, body.secrets(), tableName=body.table_name):
        result = await remediation.enable_rls(
            datastore_factory,
            connection_string_of(body),
            body.table_name,
            project=project,
        )
    return StandardResponse(data=result, message=result.message)


@router.post("/fixes/mfa", response_model=StandardResponse[MfaFixResult])
async def fix_mfa(
    body: MfaFixRequest,
    admin_factory: Annotated[AdminClientFactory, Depends(get_admin_client_factory)],
):
    """Start the MFA enrollment flow for one user."""
    project_url, service_key = _validated(body, "MFA fix")
    project = display_url(project_url)
    with _audit_failures(f"Failed to enable MFA for user {body.user_id}", project, body.secrets(), userId=body.user_id):
        result = await remediation.trigger_mfa_enrollment(
            admin_factory(project_url, service_key),
            body.user_id,
            project=project,
        )
    return StandardResponse(data=result, message=result.message)


@router.post("/fixes/pitr", response_model=StandardResponse[PitrFixResult])
async def fix_pitr(
    body: PitrFixRequest,
    management: Annotated[SupabaseManagementClient | None, Depends(get_management_client)],
):
    """Enable point-in-time recovery for a hosted project (defaults to the project of the URL)."""
    project_url, _ = _validated(body, "PITR fix")
    project = display_url(project_url)
    ref = (body.project_ref or "").strip() or project_ref(project_url)
    with _audit_failures(f"Failed to enable PITR for project {ref}", project, body.secrets(), projectRef=ref):
        result = await remediation.enable_pitr(management, ref, project=project)
    return StandardResponse(data=result, message=result.message)
