from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path

from app.compliance.checks import collect_compliance_report
from app.compliance.credentials import ProjectCredentials, connection_string_of, display_url, validate_credentials
from app.compliance.dependencies import get_datastore_factory, get_management_client
from app.compliance.models import CheckStatus, ComplianceReport
from app.clients.supabase_admin import SupabaseAdminClient
from app.core.exceptions import InvalidInput


async def run_once(credentials: ProjectCredentials) -> ComplianceReport:
    project_url, service_key = validate_credentials(credentials)
    return await collect_compliance_report(
        SupabaseAdminClient(project_url, service_key),
        get_datastore_factory(),
        connection_string_of(credentials),
        get_management_client(),
        project=display_url(project_url),
        secrets=credentials.secrets(),
    )


def main() -> int:
    credentials = ProjectCredentials(
        project_url=os.getenv("COMPLIANCE_PROJECT_URL"),
        service_key=os.getenv("COMPLIANCE_SERVICE_KEY"),
        db_connection_string=os.getenv("COMPLIANCE_DB_CONNECTION_STRING"),
    )
    try:
        report = asyncio.run(run_once(credentials))
    except InvalidInput as exc:
        print(exc.message)
        return 2
    output_path = Path("reports") / "compliance-report.json"
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(report.model_dump_json(indent=2), encoding="utf-8")
    print(json.dumps(report.model_dump(mode="json"), indent=2))
    strict = os.getenv("COMPLIANCE_STRICT", "0") == "1"
    failing = {CheckStatus.FAILING, CheckStatus.ERROR}
    blocked = any(result.overall_status in failing for result in (report.mfa, report.rls, report.pitr))
    return 1 if strict and blocked else 0


if __name__ == "__main__":
    raise SystemExit(main())
