"""
Embedding Providers for Semantic Search

One capability interface, several backends:
- SentenceTransformerProvider: local sentence-transformers model, no API calls
- OllamaEmbeddingProvider: local Ollama server over HTTP
- OpenAIEmbeddingProvider: OpenAI embeddings API
- HashingEmbeddingProvider: deterministic bag-of-words hashing, fully offline

Every provider exposes:
    embed(texts)       -> one vector per text, same order
    embed_query(text)  -> a single vector

Output dimensionality is constant for a given provider configuration.
Failures surface as EmbeddingFailure with a `retryable` hint.

Usage:
    from search.embeddings import create_provider, ProviderType

    provider = create_provider(ProviderType.OLLAMA, {"model": "nomic-embed-text"})
    vectors = provider.embed(["first chunk", "second chunk"])
"""

import hashlib
import logging
import os
import re
import threading
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np

from core.config import EmbeddingConfig
from core.errors import EmbeddingFailure, EmbeddingRateLimited

logger = logging.getLogger(__name__)

Vector = List[float]


class ProviderType(Enum):
    """Supported embedding providers."""
    SENTENCE_TRANSFORMERS = "sentence_transformers"
    OLLAMA = "ollama"
    OPENAI = "openai"
    HASHING = "hashing"


# =============================================================================
# Abstract Provider Base Class
# =============================================================================

class EmbeddingProvider(ABC):
    """
    Abstract base class for embedding providers.

    Subclasses implement `_embed`; the public methods add call
    accounting and turn unexpected exceptions into EmbeddingFailure.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self._lock = threading.Lock()
        self._call_count = 0
        self._error_count = 0
        self._texts_embedded = 0
        self._total_latency = 0.0

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name for logging/metrics."""
        pass

    @property
    @abstractmethod
    def provider_type(self) -> ProviderType:
        pass

    @abstractmethod
    def _embed(self, texts: List[str]) -> List[Vector]:
        """Embed a batch of texts. May raise EmbeddingFailure."""
        pass

    def embed(self, texts: List[str]) -> List[Vector]:
        """
        Embed a batch of texts in one provider call.

        Args:
            texts: Texts to embed

        Returns:
            One vector per text, in input order

        Raises:
            EmbeddingFailure: Provider call failed or returned a malformed batch
        """
        texts = list(texts)
        if not texts:
            return []

        start_time = time.time()
        try:
            vectors = self._embed(texts)
            if len(vectors) != len(texts):
                raise EmbeddingFailure(
                    f"{self.name} returned {len(vectors)} vectors for {len(texts)} texts",
                    provider=self.name,
                    retryable=False
                )
        except EmbeddingFailure:
            self._record_call((time.time() - start_time) * 1000, len(texts), success=False)
            raise
        except Exception as e:
            self._record_call((time.time() - start_time) * 1000, len(texts), success=False)
            raise EmbeddingFailure(
                f"{self.name} embedding failed: {e}",
                provider=self.name,
                retryable=True,
                original_error=e
            ) from e

        self._record_call((time.time() - start_time) * 1000, len(texts), success=True)
        return [[float(x) for x in vector] for vector in vectors]

    def embed_query(self, text: str) -> Vector:
        """Embed a single query string."""
        return self.embed([text])[0]

    def _record_call(self, latency_ms: float, text_count: int, success: bool):
        """Record call metrics."""
        with self._lock:
            self._call_count += 1
            self._total_latency += latency_ms
            if success:
                self._texts_embedded += text_count
            else:
                self._error_count += 1

    def get_stats(self) -> Dict[str, Any]:
        """Get call statistics."""
        with self._lock:
            return {
                "provider": self.name,
                "calls": self._call_count,
                "errors": self._error_count,
                "texts_embedded": self._texts_embedded,
                "avg_latency_ms": (
                    self._total_latency / self._call_count
                    if self._call_count > 0 else 0.0
                ),
            }


# =============================================================================
# Sentence Transformers Provider
# =============================================================================

class SentenceTransformerProvider(EmbeddingProvider):
    """
    Generate embeddings locally with sentence-transformers.

    Runs entirely locally. No API calls, no cost.
    """

    DEFAULT_MODEL = 'all-MiniLM-L6-v2'

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Args:
            config: Optional keys:
                model: sentence-transformers model name.
                       'all-MiniLM-L6-v2' (fast, good quality) by default,
                       'all-mpnet-base-v2' for higher quality.
                batch_size: Encoding batch size (default 32)
        """
        super().__init__(config)
        self.model_name = self.config.get("model") or self.DEFAULT_MODEL
        self.batch_size = self.config.get("batch_size", 32)
        self._model = None
        self._model_lock = threading.Lock()

    @property
    def name(self) -> str:
        return "sentence_transformers"

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.SENTENCE_TRANSFORMERS

    @property
    def model(self):
        """Lazy load the model."""
        with self._model_lock:
            if self._model is None:
                try:
                    from sentence_transformers import SentenceTransformer
                except ImportError as e:
                    raise EmbeddingFailure(
                        "sentence-transformers not installed. "
                        "Install with: pip install sentence-transformers",
                        provider=self.name,
                        retryable=False,
                        original_error=e
                    ) from e
                logger.info(f"Loading embedding model: {self.model_name}")
                self._model = SentenceTransformer(self.model_name)
            return self._model

    @property
    def dimension(self) -> int:
        return self.model.get_sentence_embedding_dimension()

    def _embed(self, texts: List[str]) -> List[Vector]:
        embeddings = self.model.encode(
            texts,
            batch_size=self.batch_size,
            show_progress_bar=False,
            convert_to_numpy=True
        )
        return embeddings.tolist()


# =============================================================================
# Ollama Provider
# =============================================================================

class OllamaEmbeddingProvider(EmbeddingProvider):
    """
    Embeddings from a local Ollama server.

    Uses the batch endpoint POST /api/embed, one request per batch.
    """

    DEFAULT_MODEL = "nomic-embed-text"

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self._base_url = self.config.get("base_url", "http://localhost:11434").rstrip("/")
        self._timeout = self.config.get("timeout", 60)
        self.model_name = self.config.get("model") or self.DEFAULT_MODEL

    @property
    def name(self) -> str:
        return "ollama"

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.OLLAMA

    def _embed(self, texts: List[str]) -> List[Vector]:
        import requests

        try:
            response = requests.post(
                f"{self._base_url}/api/embed",
                json={"model": self.model_name, "input": texts},
                timeout=self._timeout
            )
            response.raise_for_status()
        except (requests.ConnectionError, requests.Timeout) as e:
            raise EmbeddingFailure(
                f"Ollama server not reachable at {self._base_url}: {e}",
                provider=self.name,
                retryable=True,
                original_error=e
            ) from e
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else 0
            if status == 429:
                raise EmbeddingRateLimited(str(e), self.name, original_error=e) from e
            raise EmbeddingFailure(
                f"Ollama returned HTTP {status}: {e}",
                provider=self.name,
                retryable=status >= 500,
                original_error=e
            ) from e

        data = response.json()
        embeddings = data.get("embeddings")
        if embeddings is None:
            raise EmbeddingFailure(
                "Ollama response missing 'embeddings'",
                provider=self.name,
                retryable=False
            )
        return embeddings


# =============================================================================
# OpenAI Provider
# =============================================================================

class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI embeddings API provider (text-embedding-3-small by default)."""

    DEFAULT_MODEL = "text-embedding-3-small"

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self._client = None
        self._api_key = self.config.get("api_key")
        self._timeout = self.config.get("timeout", 60)
        self.model_name = self.config.get("model") or self.DEFAULT_MODEL

    @property
    def name(self) -> str:
        return "openai"

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.OPENAI

    def _get_client(self):
        """Lazy initialization of OpenAI client."""
        if self._client is None:
            try:
                from openai import OpenAI
            except ImportError as e:
                raise EmbeddingFailure(
                    "openai package not installed. Run: pip install openai",
                    provider=self.name,
                    retryable=False,
                    original_error=e
                ) from e
            self._client = OpenAI(api_key=self._api_key, timeout=self._timeout)
        return self._client

    def _embed(self, texts: List[str]) -> List[Vector]:
        import openai

        client = self._get_client()
        try:
            response = client.embeddings.create(model=self.model_name, input=texts)
        except openai.RateLimitError as e:
            raise EmbeddingRateLimited(str(e), self.name, original_error=e) from e
        except openai.AuthenticationError as e:
            raise EmbeddingFailure(
                f"OpenAI authentication failed: {e}",
                provider=self.name,
                retryable=False,
                original_error=e
            ) from e
        except (openai.APIConnectionError, openai.APITimeoutError) as e:
            raise EmbeddingFailure(
                f"OpenAI not reachable: {e}",
                provider=self.name,
                retryable=True,
                original_error=e
            ) from e
        except openai.APIStatusError as e:
            raise EmbeddingFailure(
                f"OpenAI returned HTTP {e.status_code}: {e}",
                provider=self.name,
                retryable=e.status_code >= 500,
                original_error=e
            ) from e

        items = sorted(response.data, key=lambda item: item.index)
        return [item.embedding for item in items]


# =============================================================================
# Hashing Provider
# =============================================================================

class HashingEmbeddingProvider(EmbeddingProvider):
    """
    Deterministic bag-of-words embedding via feature hashing.

    Each lowercase word token increments one bucket chosen by its MD5
    digest. Texts sharing words point in similar directions, so cosine
    similarity tracks lexical overlap. Reproducible across processes and
    needs no model download, which makes it suitable for tests and demos.
    """

    TOKEN_PATTERN = re.compile(r"\w+", re.UNICODE)

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.dimension = int(self.config.get("dimension", 256))
        if self.dimension < 1:
            raise ValueError("dimension must be >= 1")

    @property
    def name(self) -> str:
        return "hashing"

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.HASHING

    def _bucket(self, token: str) -> int:
        digest = hashlib.md5(token.encode("utf-8")).digest()
        return int.from_bytes(digest[:4], "little") % self.dimension

    def embed_text(self, text: str) -> Vector:
        vector = np.zeros(self.dimension)
        for token in self.TOKEN_PATTERN.findall(text.lower()):
            vector[self._bucket(token)] += 1.0
        return vector.tolist()

    def _embed(self, texts: List[str]) -> List[Vector]:
        return [self.embed_text(text) for text in texts]


# =============================================================================
# Factory Functions
# =============================================================================

def create_provider(
    provider_type: ProviderType,
    config: Optional[Dict[str, Any]] = None
) -> EmbeddingProvider:
    """
    Create a provider instance.

    Args:
        provider_type: Type of provider to create
        config: Provider-specific configuration

    Returns:
        Configured provider instance
    """
    providers = {
        ProviderType.SENTENCE_TRANSFORMERS: SentenceTransformerProvider,
        ProviderType.OLLAMA: OllamaEmbeddingProvider,
        ProviderType.OPENAI: OpenAIEmbeddingProvider,
        ProviderType.HASHING: HashingEmbeddingProvider,
    }

    provider_class = providers.get(provider_type)
    if not provider_class:
        raise ValueError(f"Unknown provider type: {provider_type}")

    return provider_class(config or {})


def provider_from_config(config: EmbeddingConfig) -> EmbeddingProvider:
    """Create the provider described by an EmbeddingConfig."""
    provider_type = ProviderType(config.provider)
    options: Dict[str, Any] = {
        "timeout": config.timeout,
        "batch_size": config.batch_size,
        "dimension": config.dimension,
        "base_url": config.base_url,
    }
    if config.model_name:
        options["model"] = config.model_name
    if provider_type == ProviderType.OPENAI:
        options["api_key"] = config.api_key or os.getenv("OPENAI_API_KEY")

    return create_provider(provider_type, options)
