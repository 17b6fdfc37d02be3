from functools import lru_cache

from connections.meshy_connection_provider import MeshyAPIGenerator
from connections.openrouter_connection_provider import OpenRouterChatProvider
from connections.s3_storage_provider import S3StsUploader

# Implementations
from connections.tripo_connection_provider import TripoAPIGenerator
from core.config import settings
from core.exceptions import ConfigurationError
from domain.interfaces import ChatCompletionProvider, GenerationProvider, ObjectUploader
from services.catalog_service import CatalogService
from services.relay_service import GenerationRelay

PROVIDERS = (TripoAPIGenerator, MeshyAPIGenerator)


def verify_provider_tables() -> None:
    """Run at startup: every backend must map every status it documents."""
    for provider_cls in PROVIDERS:
        provider_cls.verify_status_map()


@lru_cache()
def get_object_uploader() -> ObjectUploader:
    return S3StsUploader(region=settings.STS_REGION)


@lru_cache()
def get_generation_provider() -> GenerationProvider:
    """
    Dependency Factory: Returns the backend chosen for this deployment.
    Raises ConfigurationError (not cached) while its credential is missing.
    """
    if settings.GENERATION_PROVIDER == "tripo":
        return TripoAPIGenerator(settings, uploader=get_object_uploader())
    if settings.GENERATION_PROVIDER == "meshy":
        return MeshyAPIGenerator(settings)
    raise ConfigurationError(f"Unknown generation provider: {settings.GENERATION_PROVIDER}")


@lru_cache()
def get_relay() -> GenerationRelay:
    return GenerationRelay(get_generation_provider(), settings)


@lru_cache()
def get_chat_provider() -> ChatCompletionProvider:
    return OpenRouterChatProvider(settings)


@lru_cache()
def get_catalog() -> CatalogService:
    return CatalogService()
