from typing import Callable

from app.clients.datastore import PostgresDataStore
from app.clients.supabase_admin import SupabaseAdminClient, SupabaseManagementClient
from app.compliance.checks import DataStoreFactory
from app.config import settings
from app.services.assistant_service import AssistantService

AdminClientFactory = Callable[[str, str], SupabaseAdminClient]


def get_admin_client_factory() -> AdminClientFactory:
    return SupabaseAdminClient


def get_datastore_factory() -> DataStoreFactory:
    return PostgresDataStore


def get_management_client() -> SupabaseManagementClient | None:
    """None when no management token is configured; callers treat that as 'check manually'."""
    if not settings.SUPABASE_MANAGEMENT_TOKEN:
        return None
    return SupabaseManagementClient(settings.SUPABASE_MANAGEMENT_TOKEN)


def get_assistant_service() -> AssistantService:
    return AssistantService()
