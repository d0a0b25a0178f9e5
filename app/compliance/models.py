from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CheckStatus(str, Enum):
    PASSING = "PASSING"
    FAILING = "FAILING"
    NOT_APPLICABLE = "N/A"
    ERROR = "ERROR"
    MANUAL_CHECK_REQUIRED = "MANUAL_CHECK_REQUIRED"


POLICY_COMMANDS = ("SELECT", "INSERT", "UPDATE", "DELETE")

MFA_CHECK_NAME = "Multi-Factor Authentication (MFA)"
RLS_CHECK_NAME = "Row Level Security (RLS)"
PITR_CHECK_NAME = "Point-in-Time Recovery (PITR)"


class ComplianceCheckResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    check_name: str
    overall_status: CheckStatus
    message: str | None = None
    error: str | None = None

    @model_validator(mode="after")
    def _error_matches_status(self):
        if (self.overall_status == CheckStatus.ERROR) != (self.error is not None):
            raise ValueError("error must be set exactly when overall_status is ERROR")
        return self


class MfaUserStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str | None = None
    phone: str | None = None
    mfa_enabled: bool


class MfaCheckResult(ComplianceCheckResult):
    check_name: str = MFA_CHECK_NAME
    users: tuple[MfaUserStatus, ...] = ()


class TablePolicy(BaseModel):
    """One row of pg_policies. `enabled` mirrors the table's RLS flag; policies are not enforced without it."""

    model_config = ConfigDict(frozen=True)

    name: str
    command: str
    roles: tuple[str, ...] = ()
    using_expr: str | None = None
    check_expr: str | None = None
    permissive: bool = True
    enabled: bool = False


class TableRlsStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    table_name: str
    rls_enabled: bool
    recommendation: str | None = None
    policy_counts: dict[str, int] = Field(default_factory=lambda: {command: 0 for command in POLICY_COMMANDS})
    current_policies: tuple[TablePolicy, ...] = ()


class RlsCheckResult(ComplianceCheckResult):
    check_name: str = RLS_CHECK_NAME
    tables: tuple[TableRlsStatus, ...] = ()


class ProjectPitrStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    project_name: str | None = None
    project_ref: str
    pitr_enabled: bool
    addon_status: str = "not_enabled"
    addon_metadata: dict[str, Any] = Field(default_factory=dict)


class PitrCheckResult(ComplianceCheckResult):
    check_name: str = PITR_CHECK_NAME
    projects: tuple[ProjectPitrStatus, ...] = ()


class ComplianceReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    mfa: MfaCheckResult
    rls: RlsCheckResult
    pitr: PitrCheckResult
    generated_at: datetime


class RlsFixResult(BaseModel):
    message: str
    table_name: str
    placeholder_policy_created: bool


class MfaFixResult(BaseModel):
    message: str
    user_id: str
    email: str


class PitrFixResult(BaseModel):
    message: str
    project_ref: str
    already_enabled: bool = False
