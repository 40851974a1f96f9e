"""
Embedding Service

Generates query embeddings through an OpenAI-compatible embeddings API.
Two model classes exist because chunks were embedded with two different
models: legacy chunks with a 1536-d model, newer chunks with a 3072-d model.
"""

import logging
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

import numpy as np
from openai import AsyncOpenAI

from .config import is_legacy_chunker
from .errors import EmbeddingUnavailableError

logger = logging.getLogger("devintel.common.embedding_service")


class ModelClass(str, Enum):
    SMALL = "small"  # 1536-d, legacy chunks
    LARGE = "large"  # 3072-d, paragraph/short chunkers


MODEL_DIMENSIONS = {
    ModelClass.SMALL: 1536,
    ModelClass.LARGE: 3072,
}


def model_class_for(chunker: Optional[str]) -> ModelClass:
    """Chunks without a chunker tag predate the large model."""
    if not chunker or is_legacy_chunker(chunker):
        return ModelClass.SMALL
    return ModelClass.LARGE


class EmbeddingService:
    """
    Query embedding client.

    Args:
        api_key: Embeddings API key; without it no model class is supported
        base_url: Optional OpenAI-compatible endpoint
        small_model: Deployment name for the 1536-d model
        large_model: Deployment name for the 3072-d model (empty disables it)
        client: Pre-built AsyncOpenAI client (tests)
    """

    def __init__(
        self,
        api_key: str = "",
        base_url: str = "",
        small_model: str = "text-embedding-ada-002",
        large_model: str = "",
        client=None,
    ):
        self._client = client
        self._models: Dict[ModelClass, str] = {}

        if self._client is None:
            if not api_key:
                logger.info("Embeddings API key not provided, embedding service unavailable")
                return
            self._client = AsyncOpenAI(api_key=api_key, base_url=base_url or None)

        if small_model:
            self._models[ModelClass.SMALL] = small_model
        if large_model:
            self._models[ModelClass.LARGE] = large_model

    @classmethod
    def from_config(cls, config) -> "EmbeddingService":
        return cls(
            api_key=config.embedding.api_key or config.llm.openai_api_key,
            base_url=config.embedding.base_url,
            small_model=config.embedding.small_model,
            large_model=config.embedding.large_model,
        )

    @property
    def is_available(self) -> bool:
        return self._client is not None and bool(self._models)

    @property
    def supported_classes(self) -> FrozenSet[ModelClass]:
        if self._client is None:
            return frozenset()
        return frozenset(self._models)

    def supports(self, model_class: ModelClass) -> bool:
        return model_class in self.supported_classes

    async def embed(self, text: str, model_class: ModelClass) -> List[float]:
        """
        Embed a single query text.

        Raises:
            ValueError: Empty text
            EmbeddingUnavailableError: No deployment for the requested class
        """
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")

        if not self.supports(model_class):
            raise EmbeddingUnavailableError(
                f"No embedding deployment configured for model class '{model_class.value}' "
                f"({MODEL_DIMENSIONS[model_class]} dimensions)"
            )

        response = await self._client.embeddings.create(
            model=self._models[model_class],
            input=text.strip(),
        )
        vector = np.asarray(response.data[0].embedding, dtype=float)

        expected = MODEL_DIMENSIONS[model_class]
        if vector.shape[0] != expected:
            logger.warning(
                "Embedding dimension mismatch for %s: got %d, expected %d",
                model_class.value, vector.shape[0], expected,
            )
        return vector.tolist()
