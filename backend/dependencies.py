"""
FastAPI dependencies shared by the routers.

Configuration, the storage adapter and the license service are built once per
process. Tests replace them through app.dependency_overrides.
"""

from functools import lru_cache

from fastapi import Depends

from gitops.push_processor import ProviderFactory, PushEventProcessor
from gitops.sheet_sync import SheetSyncService
from gitops.sql_review import SQLReviewService
from models.config_models import Config
from storage.supabase_client import SupabaseStore
from utils.config_loader import load_config
from utils.license import LicenseService
from utils.logger import setup_logger
from vcs.registry import get_provider


@lru_cache()
def get_config() -> Config:
    config = load_config()
    setup_logger(config.log_level)
    return config


@lru_cache()
def get_store() -> SupabaseStore:
    config = get_config()
    return SupabaseStore(config.credentials.supabase_url, config.credentials.supabase_key)


@lru_cache()
def get_license_service() -> LicenseService:
    return LicenseService(get_config().server.license_plan)


def get_provider_factory(config: Config = Depends(get_config)) -> ProviderFactory:
    timeout = config.server.vcs_request_timeout
    return lambda vcs_type: get_provider(vcs_type, timeout)


def get_push_processor(
    config: Config = Depends(get_config),
    store=Depends(get_store),
    license_service: LicenseService = Depends(get_license_service),
    provider_factory: ProviderFactory = Depends(get_provider_factory),
) -> PushEventProcessor:
    return PushEventProcessor(store, config.server, license_service, provider_factory)


def get_sql_review_service(
    config: Config = Depends(get_config),
    store=Depends(get_store),
    provider_factory: ProviderFactory = Depends(get_provider_factory),
) -> SQLReviewService:
    return SQLReviewService(store, config.server, provider_factory)


def get_sheet_sync_service(
    config: Config = Depends(get_config),
    store=Depends(get_store),
    provider_factory: ProviderFactory = Depends(get_provider_factory),
) -> SheetSyncService:
    return SheetSyncService(store, config.server, provider_factory)
