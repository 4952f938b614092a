"""
In-Memory Vector Store

Brute-force cosine similarity over an ordered, append-only document set.

Features:
- One embedding call per ingestion batch, all-or-nothing commit
- Retry of embedding fetches before anything is appended
- Cancellation/deadline for the ingestion embedding call
- Filtered search on document metadata
- Maximal marginal relevance (MMR) re-ranking for diverse results
- Concurrent readers; writers only block for the append itself

Usage:
    from search.vector_store import VectorStore
    from search.embeddings import HashingEmbeddingProvider

    store = VectorStore(HashingEmbeddingProvider())
    store.add_documents(chunks)
    results = store.similarity_search("vector databases", k=3)
"""

import logging
from typing import Callable, Iterable, List, Optional, Sequence

import numpy as np
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.stop import stop_base

from core.cancellation import CancellationToken, run_with_cancellation
from core.config import EmbeddingConfig, SearchConfig
from core.errors import (
    DimensionMismatch,
    DuplicateDocumentError,
    EmbeddingCancelled,
    EmbeddingFailure,
    InvalidQuery,
)
from core.locks import ReadWriteLock
from .documents import (
    Chunk,
    Document,
    MetadataPredicate,
    Provenance,
    SearchResult,
)
from .embeddings import EmbeddingProvider
from .similarity import as_vector, cosine_scores, top_k_indices, to_unit_interval

logger = logging.getLogger(__name__)


class stop_when_cancelled(stop_base):
    """Stop retrying once the cancellation token fires."""

    def __init__(self, token: Optional[CancellationToken]):
        self.token = token

    def __call__(self, retry_state) -> bool:
        return self.token is not None and self.token.cancelled


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, EmbeddingFailure) and error.retryable


def validate_k(k: int) -> int:
    if isinstance(k, bool) or not isinstance(k, (int, np.integer)):
        raise InvalidQuery(f"k must be an integer, got {k!r}", k=k)
    if k < 0:
        raise InvalidQuery(f"k must be >= 0, got {k}", k=k)
    return int(k)


def validate_unit(name: str, value: float) -> float:
    if not 0.0 <= value <= 1.0:
        raise InvalidQuery(f"{name} must be within [0, 1], got {value}", **{name: value})
    return float(value)


def coerce_chunk(chunk) -> Chunk:
    """Accept Chunk/Document objects or {id, text, metadata} mappings."""
    if isinstance(chunk, (Chunk, Document)):
        return Chunk(id=chunk.id, text=chunk.text, metadata=chunk.metadata)
    if isinstance(chunk, dict):
        try:
            return Chunk.create(
                chunk["id"],
                chunk["text"],
                chunk.get("metadata", chunk.get("meta"))
            )
        except KeyError as e:
            raise ValueError(f"Chunk mapping is missing {e}") from e
    raise TypeError(f"Unsupported chunk type: {type(chunk).__name__}")


class VectorStore:
    """
    Ordered in-memory collection of embedded documents.

    Documents are immutable once added; the only mutation besides
    appending is clear(). The vector dimensionality is fixed by the
    first inserted batch.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        embedding_config: Optional[EmbeddingConfig] = None,
        search_config: Optional[SearchConfig] = None
    ):
        """
        Initialize the vector store.

        Args:
            provider: Embedding provider used for documents and queries
            embedding_config: Retry policy for embedding calls
            search_config: Query defaults (k, MMR lambda, pool multiplier)
        """
        self.provider = provider
        self.embedding_config = embedding_config or EmbeddingConfig()
        self.search_config = search_config or SearchConfig()

        self._lock = ReadWriteLock()
        self._documents: List[Document] = []
        self._ids = set()
        self._matrix: Optional[np.ndarray] = None
        self._dimension: Optional[int] = None

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._documents)

    @property
    def document_count(self) -> int:
        return len(self)

    @property
    def dimension(self) -> Optional[int]:
        """Vector dimensionality, None until the first insert."""
        with self._lock.read_locked():
            return self._dimension

    def documents(self) -> List[Document]:
        """Snapshot of stored documents in insertion order."""
        with self._lock.read_locked():
            return list(self._documents)

    def get_document(self, doc_id: str) -> Optional[Document]:
        with self._lock.read_locked():
            for doc in self._documents:
                if doc.id == doc_id:
                    return doc
        return None

    # -------------------------------------------------------------------------
    # Ingestion
    # -------------------------------------------------------------------------

    def add_documents(
        self,
        chunks: Iterable,
        cancel_token: Optional[CancellationToken] = None
    ) -> List[Document]:
        """
        Embed and append a batch of chunks.

        The provider is called once for the whole batch, before the write
        lock is taken. Nothing from the batch is stored unless every step
        succeeds.

        Args:
            chunks: Chunk objects or {id, text, metadata} mappings
            cancel_token: Optional cancellation/deadline for the embedding call

        Returns:
            The stored Document records, in batch order

        Raises:
            EmbeddingFailure: Provider failed after retries, or was cancelled
            DimensionMismatch: Returned vectors do not match the store
            DuplicateDocumentError: An id repeats within the batch or the store
        """
        batch = [coerce_chunk(c) for c in chunks]
        if not batch:
            return []

        self._check_ids(batch)

        logger.info(f"Embedding {len(batch)} chunks with {self.provider.name}")
        vectors = self._fetch_embeddings([c.text for c in batch], cancel_token)

        if len(vectors) != len(batch):
            raise EmbeddingFailure(
                f"Provider returned {len(vectors)} vectors for {len(batch)} chunks",
                provider=self.provider.name,
                retryable=False
            )

        documents = [
            Document(id=c.id, text=c.text, vector=v, metadata=c.metadata)
            for c, v in zip(batch, vectors)
        ]

        batch_dim = documents[0].dimension
        for doc in documents:
            if doc.dimension != batch_dim:
                raise DimensionMismatch(batch_dim, doc.dimension)

        if cancel_token is not None:
            cancel_token.raise_if_cancelled(self.provider.name)

        with self._lock.write_locked():
            if self._dimension is not None and batch_dim != self._dimension:
                raise DimensionMismatch(self._dimension, batch_dim)
            self._check_ids_locked(batch)

            new_rows = np.vstack([doc.vector for doc in documents])
            self._matrix = new_rows if self._matrix is None else np.vstack([self._matrix, new_rows])
            self._documents.extend(documents)
            self._ids.update(doc.id for doc in documents)
            self._dimension = batch_dim
            total = len(self._documents)

        logger.info(f"Stored {len(documents)} documents ({total} total, dim={batch_dim})")
        return documents

    def _check_ids(self, batch: Sequence[Chunk]):
        seen = set()
        for chunk in batch:
            if not chunk.id:
                raise ValueError("Chunk id must be a non-empty string")
            if chunk.id in seen:
                raise DuplicateDocumentError(f"Duplicate id in batch: {chunk.id}", id=chunk.id)
            seen.add(chunk.id)
        with self._lock.read_locked():
            self._check_ids_locked(batch)

    def _check_ids_locked(self, batch: Sequence[Chunk]):
        for chunk in batch:
            if chunk.id in self._ids:
                raise DuplicateDocumentError(f"Document already stored: {chunk.id}", id=chunk.id)

    def _retrying(self, cancel_token: Optional[CancellationToken]) -> Retrying:
        cfg = self.embedding_config
        return Retrying(
            stop=stop_after_attempt(cfg.max_attempts) | stop_when_cancelled(cancel_token),
            wait=wait_exponential(
                multiplier=cfg.retry_multiplier,
                min=cfg.retry_min_wait,
                max=cfg.retry_max_wait
            ),
            retry=retry_if_exception(_is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    def _call_provider(self, call: Callable):
        try:
            return call()
        except EmbeddingFailure:
            raise
        except Exception as e:
            raise EmbeddingFailure(
                f"Embedding call failed: {e}",
                provider=self.provider.name,
                retryable=True,
                original_error=e
            ) from e

    def _with_retries(
        self,
        call: Callable,
        cancel_token: Optional[CancellationToken] = None
    ):
        """Call the provider with retries; no store state is touched here."""
        try:
            for attempt in self._retrying(cancel_token):
                with attempt:
                    return run_with_cancellation(
                        lambda: self._call_provider(call),
                        cancel_token,
                        provider=self.provider.name
                    )
        except EmbeddingCancelled:
            raise
        except EmbeddingFailure as e:
            if cancel_token is not None and cancel_token.cancelled:
                raise EmbeddingCancelled(
                    f"Embedding cancelled after failure: {e}",
                    self.provider.name
                ) from e
            raise

    def _fetch_embeddings(
        self,
        texts: List[str],
        cancel_token: Optional[CancellationToken] = None
    ) -> List[List[float]]:
        return self._with_retries(lambda: self.provider.embed(texts), cancel_token)

    def _embed_query(self, query_text: str) -> np.ndarray:
        vector = self._with_retries(lambda: self.provider.embed_query(query_text))
        try:
            return as_vector(vector)
        except ValueError as e:
            raise EmbeddingFailure(
                f"Provider returned an unusable query vector: {e}",
                provider=self.provider.name,
                retryable=False
            ) from e

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    def similarity_search(self, query_text: str, k: Optional[int] = None) -> List[SearchResult]:
        """
        Cosine similarity search.

        Args:
            query_text: Query text (an empty string is embedded as-is)
            k: Maximum results (default: search_config.default_k)

        Returns:
            Up to k results, descending by similarity; ties keep insertion order
        """
        return self.similarity_search_with_filter(query_text, k, None)

    def similarity_search_with_filter(
        self,
        query_text: str,
        k: Optional[int] = None,
        predicate: Optional[MetadataPredicate] = None
    ) -> List[SearchResult]:
        """
        Cosine similarity search restricted to documents matching `predicate`.

        The predicate is applied before scoring. A predicate that matches
        nothing yields an empty list.
        """
        k = validate_k(self.search_config.default_k if k is None else k)
        if k == 0:
            return []
        query_vec = self._embed_query(query_text)
        return self.similarity_search_by_vector(query_vec, k, predicate)

    def similarity_search_by_vector(
        self,
        query_vec,
        k: Optional[int] = None,
        predicate: Optional[MetadataPredicate] = None
    ) -> List[SearchResult]:
        """Score an already-embedded query vector against the store."""
        k = validate_k(self.search_config.default_k if k is None else k)
        query_vec = as_vector(query_vec)

        with self._lock.read_locked():
            hits = self._search_locked(query_vec, k, predicate)

        return [self._to_result(doc, cosine) for doc, cosine in hits]

    def _search_locked(
        self,
        query_vec: np.ndarray,
        k: int,
        predicate: Optional[MetadataPredicate]
    ) -> List[tuple]:
        """Top-k (document, cosine) pairs. Caller holds the read lock."""
        if k == 0 or not self._documents:
            return []
        if query_vec.shape[0] != self._dimension:
            raise DimensionMismatch(self._dimension, query_vec.shape[0])

        candidates = self._candidate_indices(self._documents, predicate)
        if candidates.size == 0:
            return []

        scores = cosine_scores(query_vec, self._matrix[candidates])
        order = top_k_indices(scores, k)
        return [(self._documents[candidates[i]], float(scores[i])) for i in order]

    def max_marginal_relevance_search(
        self,
        query_text: str,
        k: Optional[int] = None,
        lambda_mult: Optional[float] = None
    ) -> List[SearchResult]:
        """
        Maximal marginal relevance search.

        Fetches a pool of `mmr_fetch_multiplier * k` candidates by plain
        similarity, then repeatedly selects the candidate maximizing

            lambda * relevance - (1 - lambda) * max_similarity_to_selected

        lambda=1 reproduces plain similarity order; lambda=0 picks the
        candidate least similar to what was already chosen.

        Args:
            query_text: Query text
            k: Number of results (default: search_config.default_k)
            lambda_mult: Relevance/diversity balance in [0, 1]
                         (default: search_config.mmr_lambda)

        Returns:
            Up to k results in selection order, scored by query similarity
        """
        k = validate_k(self.search_config.default_k if k is None else k)
        lam = validate_unit(
            "lambda_mult",
            self.search_config.mmr_lambda if lambda_mult is None else lambda_mult
        )
        if k == 0:
            return []

        query_vec = self._embed_query(query_text)
        with self._lock.read_locked():
            pool = self._search_locked(
                query_vec, k * self.search_config.mmr_fetch_multiplier, None
            )
        if not pool:
            return []

        selected = mmr_select(
            relevance=[cosine for _, cosine in pool],
            vectors=[doc.vector for doc, _ in pool],
            k=k,
            lambda_mult=lam,
        )
        logger.debug(f"MMR selected {len(selected)} of {len(pool)} candidates (lambda={lam})")
        return [self._to_result(*pool[i]) for i in selected]

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def clear(self):
        """Remove every document and reset the fixed dimension."""
        with self._lock.write_locked():
            self._documents = []
            self._ids = set()
            self._matrix = None
            self._dimension = None
        logger.info("Vector store cleared")

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _candidate_indices(
        documents: Sequence[Document],
        predicate: Optional[MetadataPredicate]
    ) -> np.ndarray:
        if predicate is None:
            return np.arange(len(documents))
        return np.array(
            [i for i, doc in enumerate(documents) if predicate(doc.metadata)],
            dtype=int
        )

    @staticmethod
    def _to_result(doc: Document, cosine: float) -> SearchResult:
        return SearchResult(
            document_id=doc.id,
            text=doc.text,
            metadata=doc.metadata,
            score=to_unit_interval(cosine),
            provenance=Provenance.VECTOR,
            raw_score=cosine,
            vector_score=cosine,
        )


def mmr_select(
    relevance: Sequence[float],
    vectors: Sequence[np.ndarray],
    k: int,
    lambda_mult: float
) -> List[int]:
    """
    Greedy MMR selection over a candidate pool.

    Args:
        relevance: Query similarity per candidate
        vectors: Candidate vectors, aligned with `relevance`
        k: Number of picks
        lambda_mult: Relevance/diversity balance in [0, 1]

    Returns:
        Pool indices in selection order. Ties go to the earlier pool position.
    """
    if not relevance or k <= 0:
        return []

    matrix = np.vstack([as_vector(v) for v in vectors])
    norms = np.linalg.norm(matrix, axis=1)
    unit = np.zeros_like(matrix)
    np.divide(matrix, norms[:, None], out=unit, where=norms[:, None] > 0)
    pairwise = np.clip(unit @ unit.T, -1.0, 1.0)

    relevance = np.asarray(relevance, dtype=np.float64)
    remaining = list(range(len(relevance)))
    selected: List[int] = []

    while remaining and len(selected) < k:
        best_idx = remaining[0]
        best_score = -np.inf

        for idx in remaining:
            if selected:
                max_similarity = float(np.max(pairwise[idx, selected]))
            else:
                max_similarity = 0.0
            mmr_score = lambda_mult * relevance[idx] - (1 - lambda_mult) * max_similarity
            if mmr_score > best_score:
                best_score = mmr_score
                best_idx = idx

        selected.append(best_idx)
        remaining.remove(best_idx)

    return selected
