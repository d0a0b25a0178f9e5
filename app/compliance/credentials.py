from __future__ import annotations

import re
from urllib.parse import urlsplit

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, SecretStr

from app.core.exceptions import InvalidInput


_SCHEME_RE = re.compile(r"^https?://")
REDACTED = "***"


class ProjectCredentials(BaseModel):
    """Per-request project credentials. Never persisted and never logged."""

    model_config = ConfigDict(populate_by_name=True)

    project_url: str | None = Field(default=None, validation_alias=AliasChoices("project_url", "projectUrl"))
    service_key: SecretStr | None = Field(default=None, validation_alias=AliasChoices("service_key", "serviceKey"))
    db_connection_string: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("db_connection_string", "dbConnectionString"),
    )

    def secrets(self) -> tuple[str, ...]:
        values = []
        for secret in (self.service_key, self.db_connection_string):
            if secret is not None and secret.get_secret_value():
                values.append(secret.get_secret_value())
        password, username = _credentials_of(connection_string_of(self))
        # a password equal to the login name would mask the user everywhere it appears
        if password and password != username:
            values.append(password)
        return tuple(values)


def validate_credentials(credentials: ProjectCredentials) -> tuple[str, str]:
    """Return the stripped (project_url, service_key) pair or raise InvalidInput."""
    project_url = (credentials.project_url or "").strip()
    service_key = credentials.service_key.get_secret_value().strip() if credentials.service_key else ""
    if not project_url or not service_key:
        raise InvalidInput("Supabase Project URL and Service Key are required.")
    if not _SCHEME_RE.match(project_url):
        raise InvalidInput("Invalid Supabase project URL format. It should start with http:// or https://")
    return project_url, service_key


def connection_string_of(credentials: ProjectCredentials) -> str | None:
    if credentials.db_connection_string is None:
        return None
    value = credentials.db_connection_string.get_secret_value().strip()
    return value or None


def project_ref(project_url: str) -> str:
    """`https://abcd.supabase.co` -> `abcd`."""
    return _SCHEME_RE.sub("", project_url.strip()).split(".")[0].split("/")[0]


def display_url(project_url: str | None) -> str | None:
    if not project_url:
        return project_url
    if "supabase.co" in project_url:
        return f"{project_url[:project_url.index('.')]}.supabase.co"
    return project_url


def redact(text: str, *secrets: str) -> str:
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


def _credentials_of(connection_string: str | None) -> tuple[str | None, str | None]:
    if not connection_string:
        return None, None
    try:
        parts = urlsplit(connection_string)
        return parts.password, parts.username
    except ValueError:
        return None, None
