import pytest

from app.compliance import remediation
from app.core.exceptions import InvalidInput, NotConfigured, PreconditionFailed, UpstreamFailure
from conftest import FakeAdminClient, FakeDatabase, FakeManagementClient, policy_row


@pytest.mark.asyncio
async def test_enable_rls_keeps_existing_policies():
    database = FakeDatabase(
        {"orders": {"rls": False, "policies": [policy_row("read own", "SELECT"), policy_row("read team", "SELECT")]}}
    )
    result = await remediation.enable_rls(database.factory, "postgresql://db", "orders")

    assert database.statements == ['ALTER TABLE public."orders" ENABLE ROW LEVEL SECURITY']
    assert result.placeholder_policy_created is False
    assert result.table_name == "orders"
    assert database.tables["orders"]["rls"] is True
    assert database.opened == database.closed == 1


@pytest.mark.asyncio
async def test_enable_rls_adds_placeholder_once_when_repeated():
    database = FakeDatabase({"invoices": {"rls": False}})

    first = await remediation.enable_rls(database.factory, "postgresql://db", "invoices")
    second = await remediation.enable_rls(database.factory, "postgresql://db", "invoices")

    assert first.placeholder_policy_created is True
    assert "placeholder policy was added" in first.message
    assert second.placeholder_policy_created is False
    assert database.tables["invoices"]["rls"] is True
    placeholders = [p for p in database.tables["invoices"]["policies"] if p["policyname"] == "placeholder_policy"]
    assert len(placeholders) == 1
    assert database.transactions == 2


@pytest.mark.asyncio
async def test_enable_rls_rejects_unknown_table():
    database = FakeDatabase({"orders": {"rls": False}})
    with pytest.raises(PreconditionFailed):
        await remediation.enable_rls(database.factory, "postgresql://db", "missing")
    assert database.statements == []
    assert database.closed == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(("connection_string", "table_name"), [(None, "orders"), ("postgresql://db", ""), ("postgresql://db", None)])
async def test_enable_rls_requires_table_and_connection_string(connection_string, table_name):
    database = FakeDatabase({"orders": {"rls": False}})
    with pytest.raises(InvalidInput):
        await remediation.enable_rls(database.factory, connection_string, table_name)
    assert database.opened == 0


@pytest.mark.asyncio
async def test_mfa_enrollment_sends_reset_email_with_setup_redirect():
    admin = FakeAdminClient(user={"id": "u1", "email": "dev@example.com"})
    admin.project_url = "https://abcd.supabase.co/"

    result = await remediation.trigger_mfa_enrollment(admin, "u1")

    assert admin.recovery_emails == [
        ("dev@example.com", "https://abcd.supabase.co/auth/reset-password?mfa_setup=true")
    ]
    assert (result.user_id, result.email) == ("u1", "dev@example.com")
    assert "dev@example.com" in result.message


@pytest.mark.asyncio
async def test_mfa_enrollment_requires_an_email():
    admin = FakeAdminClient(user={"id": "u1", "email": None, "phone": "+15550100"})
    with pytest.raises(PreconditionFailed) as exc_info:
        await remediation.trigger_mfa_enrollment(admin, "u1")
    assert "without an email" in exc_info.value.message
    assert admin.recovery_emails == []


@pytest.mark.asyncio
async def test_mfa_enrollment_propagates_lookup_failure():
    with pytest.raises(UpstreamFailure) as exc_info:
        await remediation.trigger_mfa_enrollment(FakeAdminClient(), "missing-user")
    assert exc_info.value.upstream_status == 404


@pytest.mark.asyncio
async def test_enable_pitr_is_noop_when_addon_present():
    management = FakeManagementClient([{"id": "abcd", "addons": [{"type": "pitr_14"}]}])
    result = await remediation.enable_pitr(management, "abcd")

    assert result.already_enabled is True
    assert result.message == "PITR is already enabled for project: abcd."
    assert management.addon_updates == []


@pytest.mark.asyncio
async def test_enable_pitr_submits_default_retention():
    management = FakeManagementClient([{"id": "abcd", "addons": []}])
    result = await remediation.enable_pitr(management, "abcd")

    assert management.addon_updates == [("abcd", [{"type": "pitr", "options": {"retention_period_days": 7}}])]
    assert result.project_ref == "abcd"
    assert "7 days retention" in result.message
    assert "few minutes" in result.message


@pytest.mark.asyncio
async def test_enable_pitr_requires_management_token():
    with pytest.raises(NotConfigured):
        await remediation.enable_pitr(None, "abcd")
