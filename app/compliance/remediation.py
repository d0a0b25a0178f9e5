from __future__ import annotations

from app.clients.supabase_admin import SupabaseAdminClient, SupabaseManagementClient
from app.compliance.checks import DataStoreFactory, find_pitr_addon
from app.compliance.models import MfaFixResult, PitrFixResult, RlsFixResult
from app.config import settings
from app.core.exceptions import InvalidInput, NotConfigured, PreconditionFailed
from app.services.audit_service import AuditService


async def enable_rls(
    datastore_factory: DataStoreFactory,
    connection_string: str | None,
    table_name: str | None,
    *,
    project: str | None = None,
) -> RlsFixResult:
    """Enable RLS on a public table, adding a select-only placeholder policy when it has none.

    Both statements run in one transaction. The ALTER is a no-op on an enabled
    table and the placeholder is skipped once any policy exists.
    """
    if not table_name or not table_name.strip():
        raise InvalidInput("Table Name is required.")
    if not connection_string:
        raise InvalidInput("Database connection string is required to enable RLS.")
    table_name = table_name.strip()

    async with datastore_factory(connection_string) as store:
        if not await store.table_exists(table_name):
            raise PreconditionFailed(f'Table "{table_name}" was not found in the public schema.')
        async with store.transaction():
            await store.enable_rls(table_name)
            existing_policies = await store.list_policies(table_name)
            placeholder_created = not existing_policies
            if placeholder_created:
                await store.create_placeholder_policy(table_name)

    if placeholder_created:
        message = (
            f'RLS successfully enabled for table: "{table_name}". A placeholder policy was added. '
            "Use the chat to generate more policies tailored to your needs!"
        )
    else:
        message = (
            f'RLS successfully enabled for table: "{table_name}". '
            f"Its {len(existing_policies)} existing policies were kept."
        )
    AuditService.log_evidence(
        "info",
        message,
        {"project": project, "tableName": table_name, "placeholderPolicyCreated": placeholder_created},
    )
    return RlsFixResult(message=message, table_name=table_name, placeholder_policy_created=placeholder_created)


def mfa_setup_redirect(project_url: str) -> str:
    return f"{project_url.rstrip('/')}/auth/reset-password?mfa_setup=true"


async def trigger_mfa_enrollment(
    admin: SupabaseAdminClient,
    user_id: str | None,
    *,
    project: str | None = None,
) -> MfaFixResult:
    """Send the user a password reset email that resumes at MFA setup.

    This only starts a user-facing flow; the MFA check keeps failing until the
    user enrolls a factor.
    """
    if not user_id or not user_id.strip():
        raise InvalidInput("User ID is required.")
    user_id = user_id.strip()

    user = await admin.get_user(user_id)
    email = user.get("email")
    if not email:
        AuditService.log_evidence(
            "error",
            "Failed to enable MFA: user has no email address.",
            {"project": project, "userId": user_id},
        )
        raise PreconditionFailed("User email not found. Cannot enroll MFA without an email address.")

    await admin.send_password_recovery(email, mfa_setup_redirect(admin.project_url))

    message = (
        f"A password reset email has been sent to {email}. "
        "When resetting the password, the user will be prompted to set up MFA."
    )
    AuditService.log_evidence("info", message, {"project": project, "userId": user_id})
    return MfaFixResult(message=message, user_id=user_id, email=email)


async def enable_pitr(
    management: SupabaseManagementClient | None,
    project_ref: str,
    *,
    project: str | None = None,
) -> PitrFixResult:
    if management is None:
        AuditService.log_evidence("error", "Management API token not configured", {"project": project})
        raise NotConfigured(
            "Management API token (SUPABASE_PAT) is not configured. Please set it in your environment variables."
        )

    hosted = await management.get_project(project_ref)
    if find_pitr_addon(hosted) is not None:
        message = f"PITR is already enabled for project: {project_ref}."
        AuditService.log_evidence("info", message, {"project": project, "projectRef": project_ref})
        return PitrFixResult(message=message, project_ref=project_ref, already_enabled=True)

    retention = settings.PITR_RETENTION_DAYS
    await management.update_addons(
        project_ref,
        [{"type": "pitr", "options": {"retention_period_days": retention}}],
    )
    message = (
        f"PITR has been enabled for project: {project_ref} with {retention} days retention period. "
        "The changes may take a few minutes to take effect."
    )
    AuditService.log_evidence("info", message, {"project": project, "projectRef": project_ref})
    return PitrFixResult(message=message, project_ref=project_ref)
