"""
Configuration Management for devintel

Loads configuration from ~/.devintel/config.json and environment variables
and resolves it once into an immutable DevIntelConfig.
"""

import os
import json
import logging
from enum import Enum
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .errors import ConfigurationError

logger = logging.getLogger("devintel.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".devintel"
CONFIG_PATH = CONFIG_DIR / "config.json"

# Project paths (relative to this file)
PACKAGE_ROOT = Path(__file__).parent.parent  # devintel/
GUIDES_DIR = PACKAGE_ROOT / "retriever" / "guides"


class ChunkerType(str, Enum):
    """Fragmenter strategies whose chunks can be searched."""
    DEFAULT_1024T = "DEFAULT-1024T"
    READ_CONTENT_PARA = "READ-CONTENT-PARA"
    READ_CONTENT_PARA_LLM = "READ-CONTENT-PARA-LLM"
    READ_CONTENT_SHORT = "READ-CONTENT-SHORT"
    READ_CONTENT_SHORT_LLM = "READ-CONTENT-SHORT-LLM"


LEGACY_CHUNKER = ChunkerType.DEFAULT_1024T.value
LEGACY_COLLECTION = "pocEmbeddings"
CHUNK_COLLECTION = "chunks"

DEFAULT_PAGE_SIZE_LIMIT = 20
PAGE_SIZE_LIMITS = {
    ChunkerType.DEFAULT_1024T.value: 20,
    ChunkerType.READ_CONTENT_PARA.value: 160,
    ChunkerType.READ_CONTENT_PARA_LLM.value: 160,
    ChunkerType.READ_CONTENT_SHORT.value: 160,
    ChunkerType.READ_CONTENT_SHORT_LLM.value: 160,
}

# Legacy chunks are ~1024 tokens, so a handful per document is enough
LEGACY_CHUNKS_PER_DOCUMENT = 3
CHUNKS_PER_DOCUMENT = 24


def is_legacy_chunker(chunker: Optional[str]) -> bool:
    return chunker == LEGACY_CHUNKER


def page_size_limit(chunker: Optional[str]) -> int:
    """Default page size for a chunker; unknown or missing chunkers get the default."""
    if not chunker:
        return DEFAULT_PAGE_SIZE_LIMIT
    return PAGE_SIZE_LIMITS.get(chunker, DEFAULT_PAGE_SIZE_LIMIT)


def max_chunks_per_document(chunker: Optional[str]) -> int:
    if not chunker or is_legacy_chunker(chunker):
        return LEGACY_CHUNKS_PER_DOCUMENT
    return CHUNKS_PER_DOCUMENT


def collection_for(chunker: Optional[str]) -> str:
    return LEGACY_COLLECTION if is_legacy_chunker(chunker) else CHUNK_COLLECTION


@dataclass(frozen=True)
class LLMConfig:
    """Chat-completion provider configuration"""
    provider: str = "openai"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"
    openai_api_key: str = ""
    openai_model: str = "gpt-4.1-mini"
    openai_base_url: str = ""
    google_api_key: str = ""
    google_model: str = "gemini-2.0-flash"
    max_tokens: int = 2000
    temperature: float = 0.0
    timeout: float = 60.0


@dataclass(frozen=True)
class EmbeddingConfig:
    """Embedding deployments. An empty large_model disables 3072-d chunk search."""
    api_key: str = ""
    base_url: str = ""
    small_model: str = "text-embedding-ada-002"
    large_model: str = ""


@dataclass(frozen=True)
class SearchConfig:
    """Retrieval thresholds and index names"""
    vector_index: str = "embedded"
    lexical_index: str = "retrieval"
    default_page_size: int = DEFAULT_PAGE_SIZE_LIMIT
    keyword_cutoff: float = 23.0
    embedding_cutoff: float = 0.693
    candidates_multiplier: int = 3
    max_candidates: int = 150
    reorder_window: int = 12
    max_repair_rounds: int = 2


@dataclass(frozen=True)
class StoreConfig:
    """Content store (MongoDB Atlas Data API) configuration"""
    data_api_url: str = ""
    api_key: str = ""
    data_source: str = "Cluster0"
    database: str = "content"
    timeout: float = 30.0


@dataclass(frozen=True)
class PlatformConfig:
    """Platform collaborator endpoints (users, catalog, courses)"""
    user_endpoint: str = ""
    catalog_endpoint: str = ""
    course_endpoint: str = ""
    api_token: str = ""
    timeout: float = 10.0


@dataclass(frozen=True)
class ServerConfig:
    """HTTP entry point configuration"""
    host: str = "0.0.0.0"
    port: int = 8090
    app: str = "entwickler"


@dataclass(frozen=True)
class DevIntelConfig:
    """Main devintel configuration"""
    llm: LLMConfig = field(default_factory=LLMConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    platform: PlatformConfig = field(default_factory=PlatformConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    env_sourced_keys: frozenset = field(default_factory=frozenset, repr=False)


# env var -> (section, key)
_ENV_MAP = {
    "DEVINTEL_LLM_PROVIDER": ("llm", "provider"),
    "ANTHROPIC_API_KEY": ("llm", "anthropic_api_key"),
    "ANTHROPIC_MODEL": ("llm", "anthropic_model"),
    "OPENAI_API_KEY": ("llm", "openai_api_key"),
    "OPENAI_MODEL": ("llm", "openai_model"),
    "OPENAI_BASE_URL": ("llm", "openai_base_url"),
    "GOOGLE_API_KEY": ("llm", "google_api_key"),
    "GEMINI_API_KEY": ("llm", "google_api_key"),
    "GOOGLE_MODEL": ("llm", "google_model"),
    "RAG_LLM_MAX_TOKENS": ("llm", "max_tokens"),
    "RAG_LLM_TEMPERATURE": ("llm", "temperature"),
    "EMBEDDINGS_API_KEY": ("embedding", "api_key"),
    "EMBEDDINGS_BASE_URL": ("embedding", "base_url"),
    "EMBEDDING_SMALL_MODEL": ("embedding", "small_model"),
    "EMBEDDING_LARGE_MODEL": ("embedding", "large_model"),
    "VECTOR_SEARCH_INDEX": ("search", "vector_index"),
    "RETRIEVAL_SEARCH_INDEX": ("search", "lexical_index"),
    "PAGE_SIZE_LIMIT": ("search", "default_page_size"),
    "RAG_KEYWORD_CUTOFF": ("search", "keyword_cutoff"),
    "RAG_EMBEDDING_CUTOFF": ("search", "embedding_cutoff"),
    "RAG_MAX_REPAIR_ROUNDS": ("search", "max_repair_rounds"),
    "DATA_API_URL": ("store", "data_api_url"),
    "DATA_API_KEY": ("store", "api_key"),
    "DATA_API_SOURCE": ("store", "data_source"),
    "DATA_API_DATABASE": ("store", "database"),
    "PLATFORM_USER_ENDPOINT": ("platform", "user_endpoint"),
    "PLATFORM_CATALOG_ENDPOINT": ("platform", "catalog_endpoint"),
    "PLATFORM_COURSE_ENDPOINT": ("platform", "course_endpoint"),
    "PLATFORM_API_TOKEN": ("platform", "api_token"),
    "DEVINTEL_HOST": ("server", "host"),
    "DEVINTEL_PORT": ("server", "port"),
    "DEVINTEL_APP": ("server", "app"),
}

# numeric settings, converted when read from the environment
_ENV_TYPES = {
    ("llm", "max_tokens"): int,
    ("llm", "temperature"): float,
    ("search", "default_page_size"): int,
    ("search", "keyword_cutoff"): float,
    ("search", "embedding_cutoff"): float,
    ("search", "max_repair_rounds"): int,
    ("server", "port"): int,
}

_SECRET_KEYS = {
    ("llm", "anthropic_api_key"),
    ("llm", "openai_api_key"),
    ("llm", "google_api_key"),
    ("embedding", "api_key"),
    ("store", "api_key"),
    ("platform", "api_token"),
}


def _parse_llm_config(data: dict) -> LLMConfig:
    """Parse llm section from config dict"""
    llm_data = data.get("llm", {})
    return LLMConfig(
        provider=str(llm_data.get("provider", "openai")).lower(),
        anthropic_api_key=llm_data.get("anthropic_api_key", ""),
        anthropic_model=llm_data.get("anthropic_model", "claude-sonnet-4-20250514"),
        openai_api_key=llm_data.get("openai_api_key", ""),
        openai_model=llm_data.get("openai_model", "gpt-4.1-mini"),
        openai_base_url=llm_data.get("openai_base_url", ""),
        google_api_key=llm_data.get("google_api_key", ""),
        google_model=llm_data.get("google_model", "gemini-2.0-flash"),
        max_tokens=int(llm_data.get("max_tokens", 2000)),
        temperature=float(llm_data.get("temperature", 0.0)),
        timeout=float(llm_data.get("timeout", 60.0)),
    )


def _parse_embedding_config(data: dict) -> EmbeddingConfig:
    """Parse embedding section from config dict"""
    embedding_data = data.get("embedding", {})
    return EmbeddingConfig(
        api_key=embedding_data.get("api_key", ""),
        base_url=embedding_data.get("base_url", ""),
        small_model=embedding_data.get("small_model", "text-embedding-ada-002"),
        large_model=embedding_data.get("large_model", ""),
    )


def _parse_search_config(data: dict) -> SearchConfig:
    """Parse search section from config dict"""
    search_data = data.get("search", {})
    return SearchConfig(
        vector_index=search_data.get("vector_index", "embedded"),
        lexical_index=search_data.get("lexical_index", "retrieval"),
        default_page_size=int(search_data.get("default_page_size", DEFAULT_PAGE_SIZE_LIMIT)),
        keyword_cutoff=float(search_data.get("keyword_cutoff", 23.0)),
        embedding_cutoff=float(search_data.get("embedding_cutoff", 0.693)),
        candidates_multiplier=int(search_data.get("candidates_multiplier", 3)),
        max_candidates=int(search_data.get("max_candidates", 150)),
        reorder_window=int(search_data.get("reorder_window", 12)),
        max_repair_rounds=int(search_data.get("max_repair_rounds", 2)),
    )


def _parse_store_config(data: dict) -> StoreConfig:
    store_data = data.get("store", {})
    return StoreConfig(
        data_api_url=store_data.get("data_api_url", ""),
        api_key=store_data.get("api_key", ""),
        data_source=store_data.get("data_source", "Cluster0"),
        database=store_data.get("database", "content"),
        timeout=float(store_data.get("timeout", 30.0)),
    )


def _parse_platform_config(data: dict) -> PlatformConfig:
    platform_data = data.get("platform", {})
    return PlatformConfig(
        user_endpoint=platform_data.get("user_endpoint", ""),
        catalog_endpoint=platform_data.get("catalog_endpoint", ""),
        course_endpoint=platform_data.get("course_endpoint", ""),
        api_token=platform_data.get("api_token", ""),
        timeout=float(platform_data.get("timeout", 10.0)),
    )


def _parse_server_config(data: dict) -> ServerConfig:
    server_data = data.get("server", {})
    return ServerConfig(
        host=server_data.get("host", "0.0.0.0"),
        port=int(server_data.get("port", 8090)),
        app=server_data.get("app", "entwickler"),
    )


def _merge_sections(base: dict, extra: dict) -> dict:
    merged = {section: dict(values) for section, values in base.items() if isinstance(values, dict)}
    for section, values in extra.items():
        merged.setdefault(section, {}).update(values)
    return merged


def _read_config_file() -> dict:
    if not CONFIG_PATH.exists():
        return {}
    try:
        with open(CONFIG_PATH) as f:
            return json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        logger.warning("Failed to load config file %s: %s", CONFIG_PATH, e)
        return {}


def load_config(overrides: Optional[Dict[str, Dict[str, Any]]] = None) -> DevIntelConfig:
    """
    Resolve configuration once.

    Priority (highest to lowest):
    1. Explicit overrides ({"search": {"keyword_cutoff": 30}, ...})
    2. Environment variables
    3. Config file (~/.devintel/config.json)
    4. Default values
    """
    data = _read_config_file()

    env_data: Dict[str, Dict[str, Any]] = {}
    env_sourced = set()
    for env_var, (section, key) in _ENV_MAP.items():
        val = os.getenv(env_var)
        if val:
            convert = _ENV_TYPES.get((section, key))
            if convert is not None:
                try:
                    val = convert(val)
                except ValueError:
                    raise ConfigurationError(
                        f"{env_var}={val!r} is not a valid {convert.__name__}"
                    ) from None
            env_data.setdefault(section, {})[key] = val
            if (section, key) in _SECRET_KEYS:
                env_sourced.add(f"{section}.{key}")

    data = _merge_sections(data, env_data)
    if overrides:
        data = _merge_sections(data, overrides)

    return DevIntelConfig(
        llm=_parse_llm_config(data),
        embedding=_parse_embedding_config(data),
        search=_parse_search_config(data),
        store=_parse_store_config(data),
        platform=_parse_platform_config(data),
        server=_parse_server_config(data),
        env_sourced_keys=frozenset(env_sourced),
    )


def save_config(config: DevIntelConfig) -> None:
    """Save configuration to file.

    Secrets that were sourced from environment variables are written as
    empty strings so they are not persisted to disk.
    """
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    sections = {
        "llm": config.llm,
        "embedding": config.embedding,
        "search": config.search,
        "store": config.store,
        "platform": config.platform,
        "server": config.server,
    }
    data = {}
    for name, section in sections.items():
        values = dict(section.__dict__)
        for key in values:
            if f"{name}.{key}" in config.env_sourced_keys:
                values[key] = ""
        data[name] = values

    with open(CONFIG_PATH, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    CONFIG_PATH.chmod(0o600)
