"""Embedding generation service for product and knowledge-base text."""

import asyncio
import logging
from typing import List, Optional

import numpy as np
from openai import AsyncOpenAI
from sentence_transformers import SentenceTransformer

from catalog_pipeline.config import settings
from catalog_pipeline.errors import ConfigurationError, ExtractionError

logger = logging.getLogger(__name__)


class EmbeddingService:
    """
    Service for generating text embeddings.

    Supports two providers:
    - openai: hosted embeddings (text-embedding-3-small by default)
    - sentence-transformers: local model, loaded on first use

    Input is truncated to settings.embedding_max_chars before embedding.
    """

    def __init__(self, provider: Optional[str] = None):
        self.provider = provider or settings.embedding_provider
        self._client: Optional[AsyncOpenAI] = None
        self._local_model: Optional[SentenceTransformer] = None

    def _get_client(self) -> AsyncOpenAI:
        """Get or create OpenAI client."""
        if self._client is None:
            if not settings.openai_api_key:
                raise ConfigurationError("OpenAI API key not configured")
            self._client = AsyncOpenAI(api_key=settings.openai_api_key)
        return self._client

    def _get_local_model(self) -> SentenceTransformer:
        """Load the sentence transformer model once."""
        if self._local_model is None:
            logger.info(f"Loading embedding model: {settings.local_embedding_model}")
            self._local_model = SentenceTransformer(settings.local_embedding_model)
            logger.info(f"Successfully loaded model: {settings.local_embedding_model}")
        return self._local_model

    def _prepare(self, text: str) -> str:
        if not text or not text.strip():
            raise ValueError("Text cannot be empty")
        return text[: settings.embedding_max_chars]

    async def _embed_openai(self, texts: List[str]) -> List[List[float]]:
        client = self._get_client()
        try:
            response = await client.embeddings.create(
                model=settings.embedding_model,
                input=texts,
                timeout=settings.embedding_timeout_seconds,
            )
        except Exception as e:
            logger.error(f"Embedding API call failed: {e}")
            raise ExtractionError(f"Embedding call failed: {e}") from e
        ordered = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in ordered]

    async def _embed_local(self, texts: List[str]) -> List[List[float]]:
        model = self._get_local_model()
        vectors = await asyncio.to_thread(
            model.encode,
            texts,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return [np.asarray(vector, dtype=float).tolist() for vector in vectors]

    async def embed(self, text: str) -> List[float]:
        """
        Generate an embedding for a single text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector as a list of floats
        """
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for several texts in one call.

        Args:
            texts: Non-empty texts to embed

        Returns:
            One vector per input, in input order
        """
        if not texts:
            return []
        prepared = [self._prepare(text) for text in texts]

        if self.provider == "sentence-transformers":
            return await self._embed_local(prepared)
        if self.provider == "openai":
            return await self._embed_openai(prepared)
        raise ConfigurationError(f"Unknown embedding provider: {self.provider}")

    async def close(self):
        """Close connections."""
        if self._client:
            await self._client.close()
            self._client = None


# Global embedding service instance
embedding_service = EmbeddingService()
