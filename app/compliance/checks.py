from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable

from app.clients.datastore import PostgresDataStore
from app.clients.supabase_admin import SupabaseAdminClient, SupabaseManagementClient
from app.compliance.credentials import redact
from app.compliance.models import (
    CheckStatus,
    ComplianceCheckResult,
    ComplianceReport,
    MfaCheckResult,
    MfaUserStatus,
    PitrCheckResult,
    POLICY_COMMANDS,
    ProjectPitrStatus,
    RlsCheckResult,
    TablePolicy,
    TableRlsStatus,
)
from app.core.exceptions import ComplianceError
from app.services.audit_service import AuditService

logger = logging.getLogger(__name__)

DataStoreFactory = Callable[[str], PostgresDataStore]

RLS_RECOMMENDATION = "Enable RLS for this table to restrict access."
MISSING_CONNECTION_STRING = (
    "Database connection string is required to check Row Level Security. "
    "Provide the project's direct Postgres connection string."
)
MANAGEMENT_TOKEN_MISSING = (
    "Management API token (SUPABASE_PAT) is not configured; "
    "check Point-in-Time Recovery manually in the Supabase dashboard."
)


def _error_message(exc: BaseException, secrets: tuple[str, ...]) -> str:
    if isinstance(exc, ComplianceError):
        message = exc.message
    else:
        message = str(exc) or exc.__class__.__name__
    return redact(message, *secrets)


def is_mfa_enabled(user: dict[str, Any]) -> bool:
    return any(factor.get("status") == "verified" for factor in user.get("factors") or [])


def tally_policies(policies: list[TablePolicy]) -> dict[str, int]:
    counts = {command: 0 for command in POLICY_COMMANDS}
    for policy in policies:
        command = (policy.command or "").upper()
        if command in counts:
            counts[command] += 1
    return counts


def policy_from_row(row: dict[str, Any], *, enabled: bool = False) -> TablePolicy:
    permissive = row.get("permissive")
    return TablePolicy(
        name=row.get("policyname") or "",
        command=(row.get("cmd") or "").upper(),
        roles=tuple(row.get("roles") or ()),
        using_expr=row.get("qual"),
        check_expr=row.get("with_check"),
        permissive=str(permissive).upper() != "RESTRICTIVE" if permissive is not None else True,
        enabled=enabled,
    )


def find_pitr_addon(project: dict[str, Any]) -> dict[str, Any] | None:
    for addon in project.get("addons") or []:
        if isinstance(addon, dict) and "pitr" in str(addon.get("type") or "").lower():
            return addon
    return None


async def check_mfa(
    admin: SupabaseAdminClient,
    *,
    project: str | None = None,
    secrets: tuple[str, ...] = (),
) -> MfaCheckResult:
    try:
        users = await admin.list_users()
    except Exception as exc:
        error = _error_message(exc, secrets)
        if not isinstance(exc, ComplianceError):
            logger.exception("MFA check failed unexpectedly")
        AuditService.log_evidence(
            "error", "MFA check processing failed.", {"project": project, "error": error}, secrets=secrets
        )
        return MfaCheckResult(overall_status=CheckStatus.ERROR, error=error)

    if not users:
        AuditService.log_evidence("info", "MFA check completed.", {"project": project, "status": "N/A", "count": 0})
        return MfaCheckResult(overall_status=CheckStatus.NOT_APPLICABLE, message="No users found in the project.")

    statuses = [
        MfaUserStatus(
            id=str(user.get("id")),
            email=user.get("email"),
            phone=user.get("phone"),
            mfa_enabled=is_mfa_enabled(user),
        )
        for user in users
    ]
    status = CheckStatus.PASSING if all(user.mfa_enabled for user in statuses) else CheckStatus.FAILING
    AuditService.log_evidence(
        "info",
        "MFA check completed.",
        {"project": project, "status": status.value, "count": len(statuses)},
    )
    return MfaCheckResult(overall_status=status, users=statuses)


async def _collect_table_statuses(store: PostgresDataStore) -> list[TableRlsStatus]:
    tables: list[TableRlsStatus] = []
    for table_name in await store.list_tables():
        rls_enabled = await store.is_rls_enabled(table_name)
        policies = [policy_from_row(row, enabled=rls_enabled) for row in await store.list_policies(table_name)]
        tables.append(
            TableRlsStatus(
                table_name=table_name,
                rls_enabled=rls_enabled,
                recommendation=None if rls_enabled else RLS_RECOMMENDATION,
                policy_counts=tally_policies(policies),
                current_policies=policies,
            )
        )
    return tables


async def check_rls(
    datastore_factory: DataStoreFactory,
    connection_string: str | None,
    *,
    project: str | None = None,
    secrets: tuple[str, ...] = (),
) -> RlsCheckResult:
    if not connection_string:
        AuditService.log_evidence("error", "RLS check skipped: missing connection string.", {"project": project})
        return RlsCheckResult(overall_status=CheckStatus.ERROR, error=MISSING_CONNECTION_STRING)

    try:
        async with datastore_factory(connection_string) as store:
            tables = await _collect_table_statuses(store)
    except Exception as exc:
        error = _error_message(exc, secrets)
        if not isinstance(exc, ComplianceError):
            logger.exception("RLS check failed unexpectedly")
        AuditService.log_evidence(
            "error", "RLS check processing failed.", {"project": project, "error": error}, secrets=secrets
        )
        return RlsCheckResult(overall_status=CheckStatus.ERROR, error=error)

    if not tables:
        AuditService.log_evidence("info", "RLS check completed.", {"project": project, "status": "N/A", "count": 0})
        return RlsCheckResult(overall_status=CheckStatus.NOT_APPLICABLE, message="No tables found in public schema.")

    status = CheckStatus.PASSING if all(table.rls_enabled for table in tables) else CheckStatus.FAILING
    AuditService.log_evidence(
        "info",
        "RLS check completed.",
        {
            "project": project,
            "status": status.value,
            "count": len(tables),
            "without_rls": [table.table_name for table in tables if not table.rls_enabled],
        },
    )
    return RlsCheckResult(overall_status=status, tables=tables)


async def check_pitr(
    management: SupabaseManagementClient | None,
    *,
    project: str | None = None,
) -> PitrCheckResult:
    if management is None:
        return PitrCheckResult(
            overall_status=CheckStatus.MANUAL_CHECK_REQUIRED,
            message=MANAGEMENT_TOKEN_MISSING,
        )

    try:
        projects = await management.list_projects()
    except Exception as exc:
        error = _error_message(exc, ())
        if not isinstance(exc, ComplianceError):
            logger.exception("PITR check failed unexpectedly")
        AuditService.log_evidence("error", "PITR check failed", {"project": project, "error": error})
        return PitrCheckResult(overall_status=CheckStatus.ERROR, message=error, error=error)

    statuses = []
    for hosted in projects:
        addon = find_pitr_addon(hosted)
        statuses.append(
            ProjectPitrStatus(
                project_name=hosted.get("name"),
                project_ref=str(hosted.get("ref") or hosted.get("id") or ""),
                pitr_enabled=addon is not None,
                addon_status=(addon or {}).get("status") or ("enabled" if addon else "not_enabled"),
                addon_metadata=(addon or {}).get("metadata") or {},
            )
        )

    if all(status.pitr_enabled for status in statuses):
        result = PitrCheckResult(
            overall_status=CheckStatus.PASSING,
            message="PITR status checked for all projects.",
            projects=statuses,
        )
    else:
        result = PitrCheckResult(
            overall_status=CheckStatus.FAILING,
            message="Some projects do not have PITR enabled.",
            projects=statuses,
        )
    AuditService.log_evidence(
        "info",
        "PITR check completed",
        {
            "project": project,
            "status": result.overall_status.value,
            "projects": [
                {"name": status.project_name, "ref": status.project_ref, "pitrEnabled": status.pitr_enabled}
                for status in statuses
            ],
        },
    )
    return result


def _settle(
    outcome: ComplianceCheckResult | BaseException,
    model: type[ComplianceCheckResult],
    secrets: tuple[str, ...],
) -> Any:
    if isinstance(outcome, BaseException):
        logger.error("%s escaped its fault boundary: %s", model.__name__, outcome.__class__.__name__)
        return model(overall_status=CheckStatus.ERROR, error=_error_message(outcome, secrets))
    return outcome


async def collect_compliance_report(
    admin: SupabaseAdminClient,
    datastore_factory: DataStoreFactory,
    connection_string: str | None,
    management: SupabaseManagementClient | None,
    *,
    project: str | None = None,
    secrets: tuple[str, ...] = (),
) -> ComplianceReport:
    """Run the three checks concurrently; one failing check never hides the others."""
    mfa, rls, pitr = await asyncio.gather(
        check_mfa(admin, project=project, secrets=secrets),
        check_rls(datastore_factory, connection_string, project=project, secrets=secrets),
        check_pitr(management, project=project),
        return_exceptions=True,
    )
    return ComplianceReport(
        mfa=_settle(mfa, MfaCheckResult, secrets),
        rls=_settle(rls, RlsCheckResult, secrets),
        pitr=_settle(pitr, PitrCheckResult, secrets),
        generated_at=datetime.now(timezone.utc),
    )
