"""
DevIntel Common Module

Shared infrastructure for the retriever: configuration, errors, LLM and
embedding clients, the content store and the platform client.
"""

from .config import DevIntelConfig, load_config
from .content_store import ContentStore, DataApiContentStore
from .embedding_service import EmbeddingService, ModelClass
from .errors import (
    ConfigurationError,
    DevIntelError,
    EmbeddingUnavailableError,
    PlatformError,
    SearchBranchError,
    StoreError,
)
from .llm_client import LLMClient
from .platform_client import PlatformClient

__all__ = [
    "DevIntelConfig",
    "load_config",
    "ContentStore",
    "DataApiContentStore",
    "EmbeddingService",
    "ModelClass",
    "ConfigurationError",
    "DevIntelError",
    "EmbeddingUnavailableError",
    "PlatformError",
    "SearchBranchError",
    "StoreError",
    "LLMClient",
    "PlatformClient",
]
