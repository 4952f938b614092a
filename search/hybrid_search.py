"""
Hybrid Search

Combines cosine similarity (vector store) and literal term frequency
(keyword index) with weighted score fusion.

Features:
- Both sub-searches run as one fan-out group with a shared deadline
- Min-max normalization of each list before fusion
- Merge by document id, with provenance tagging
- Degrades to the surviving list when one sub-search fails
- Optional highlighted snippets

Fusion:
    combined = vector_weight * vector_norm + (1 - vector_weight) * keyword_norm

A document found by only one list gets only that list's weighted share.
At vector_weight=1.0 keyword-only hits are dropped (and vice versa at 0.0),
so the boundaries reproduce the plain vector or keyword ordering.

Usage:
    from search.hybrid_search import create_search_engine

    engine = create_search_engine(config)
    engine.add_documents(chunks)
    results = engine.hybrid_search("react hooks error", k=5, vector_weight=0.6)

    for result in results:
        print(f"{result.score:.2f} [{result.provenance.value}] {result.document_id}")
"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from core.cancellation import CancellationToken
from core.config import RetrievalConfig, SearchConfig
from core.errors import HybridSearchError, RetrievalError
from core.fanout import run_parallel
from core.logging_config import log_performance
from .documents import Document, Provenance, SearchResult
from .embeddings import EmbeddingProvider, provider_from_config
from .keyword_index import KeywordIndex, highlight as highlight_text
from .similarity import min_max_normalize
from .vector_store import VectorStore, validate_k, validate_unit

logger = logging.getLogger(__name__)


@dataclass
class _Candidate:
    """A document's standing in both ranked lists during fusion."""
    result: SearchResult
    vector_norm: Optional[float] = None
    vector_rank: Optional[int] = None
    keyword_norm: Optional[float] = None
    keyword_rank: Optional[int] = None

    @property
    def provenance(self) -> Provenance:
        if self.vector_norm is not None and self.keyword_norm is not None:
            return Provenance.BOTH
        if self.vector_norm is not None:
            return Provenance.VECTOR
        return Provenance.KEYWORD


def fuse_results(
    vector_results: List[SearchResult],
    keyword_results: List[SearchResult],
    k: int,
    vector_weight: float
) -> List[SearchResult]:
    """
    Weighted score fusion of two ranked lists.

    Args:
        vector_results: Vector hits, best first
        keyword_results: Keyword hits, best first
        k: Maximum results
        vector_weight: Weight of the vector list in [0, 1]

    Returns:
        Up to k fused results. Equal combined scores are ordered by rank in
        the dominant list (vector when vector_weight >= 0.5), then by rank
        in the other list.
    """
    keyword_weight = 1.0 - vector_weight
    candidates: Dict[str, _Candidate] = {}

    vector_norms = min_max_normalize([r.raw_score for r in vector_results])
    for rank, (result, norm) in enumerate(zip(vector_results, vector_norms)):
        if result.document_id not in candidates:
            candidates[result.document_id] = _Candidate(
                result=result, vector_norm=norm, vector_rank=rank
            )

    keyword_norms = min_max_normalize([r.raw_score for r in keyword_results])
    for rank, (result, norm) in enumerate(zip(keyword_results, keyword_norms)):
        candidate = candidates.setdefault(result.document_id, _Candidate(result=result))
        if candidate.keyword_rank is None:
            candidate.keyword_norm = norm
            candidate.keyword_rank = rank

    if vector_weight == 1.0:
        pool = [c for c in candidates.values() if c.vector_norm is not None]
    elif vector_weight == 0.0:
        pool = [c for c in candidates.values() if c.keyword_norm is not None]
    else:
        pool = list(candidates.values())

    missing_rank = len(vector_results) + len(keyword_results)
    vector_dominant = vector_weight >= 0.5

    def combined(c: _Candidate) -> float:
        return (
            vector_weight * (c.vector_norm or 0.0)
            + keyword_weight * (c.keyword_norm or 0.0)
        )

    def sort_key(c: _Candidate) -> Tuple[float, int, int]:
        v_rank = missing_rank if c.vector_rank is None else c.vector_rank
        kw_rank = missing_rank if c.keyword_rank is None else c.keyword_rank
        if vector_dominant:
            return (-combined(c), v_rank, kw_rank)
        return (-combined(c), kw_rank, v_rank)

    pool.sort(key=sort_key)

    fused = []
    for c in pool[:k]:
        score = combined(c)
        fused.append(SearchResult(
            document_id=c.result.document_id,
            text=c.result.text,
            metadata=c.result.metadata,
            score=score,
            provenance=c.provenance,
            raw_score=score,
            vector_score=c.vector_norm,
            keyword_score=c.keyword_norm,
        ))
    return fused


class HybridSearcher:
    """
    Hybrid search over a vector store and a keyword index.

    Both components hold the same documents; add_documents keeps them in
    step by indexing keywords only after the vector commit succeeded.
    """

    def __init__(
        self,
        vector_store: VectorStore,
        keyword_index: Optional[KeywordIndex] = None,
        search_config: Optional[SearchConfig] = None
    ):
        """
        Initialize hybrid searcher.

        Args:
            vector_store: Store used for the semantic side
            keyword_index: Index used for the lexical side (created if None)
            search_config: Defaults for k, vector weight, fetch multiplier
                           and sub-search scheduling
        """
        self.vector_store = vector_store
        self.search_config = search_config or vector_store.search_config
        self.keyword_index = keyword_index if keyword_index is not None else KeywordIndex(
            default_k=self.search_config.default_k
        )
        self._write_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self.vector_store)

    def add_documents(
        self,
        chunks: Iterable,
        cancel_token: Optional[CancellationToken] = None
    ) -> List[Document]:
        """
        Embed and index a batch in both components.

        Raises whatever VectorStore.add_documents raises; on failure the
        keyword index is left untouched.
        """
        with self._write_lock:
            documents = self.vector_store.add_documents(chunks, cancel_token)
            self.keyword_index.add_documents(documents)
        return documents

    def clear(self):
        """Empty both components together."""
        with self._write_lock:
            self.vector_store.clear()
            self.keyword_index.clear()

    # =========================================================================
    # Search
    # =========================================================================

    @log_performance()
    def hybrid_search(
        self,
        query_text: str,
        k: Optional[int] = None,
        vector_weight: Optional[float] = None
    ) -> List[SearchResult]:
        """
        Search both components and fuse the results.

        Args:
            query_text: Search query
            k: Maximum results (default: search_config.default_k)
            vector_weight: Vector share in [0, 1] (default: search_config.vector_weight)

        Returns:
            Up to k results sorted by fused score

        Raises:
            InvalidQuery: k < 0 or vector_weight outside [0, 1]
            HybridSearchError: Both sub-searches failed
        """
        cfg = self.search_config
        k = validate_k(cfg.default_k if k is None else k)
        weight = validate_unit(
            "vector_weight",
            cfg.vector_weight if vector_weight is None else vector_weight
        )
        if k == 0:
            return []

        fetch_k = k * cfg.hybrid_fetch_multiplier
        vector_results, vector_error, keyword_results, keyword_error = \
            self._run_subsearches(query_text, fetch_k)

        if vector_error is not None and keyword_error is not None:
            raise HybridSearchError(
                vector_error=str(vector_error),
                keyword_error=str(keyword_error),
            ) from vector_error

        if vector_error is not None:
            logger.warning(f"Vector search failed, using keyword results only: {vector_error}")
            vector_results, weight = [], 0.0
        elif keyword_error is not None:
            logger.warning(f"Keyword search failed, using vector results only: {keyword_error}")
            keyword_results, weight = [], 1.0

        results = fuse_results(vector_results, keyword_results, k, weight)
        logger.debug(
            f"Hybrid search fused {len(vector_results)} vector and "
            f"{len(keyword_results)} keyword hits into {len(results)} (w={weight})"
        )
        return results

    def search(
        self,
        query_text: str,
        k: Optional[int] = None,
        vector_weight: Optional[float] = None,
        highlight: bool = True
    ) -> List[SearchResult]:
        """
        Hybrid search with highlighted snippets.

        Unlike hybrid_search, a failure of both sub-searches is logged and
        yields an empty list. Invalid parameters still raise InvalidQuery.

        Args:
            query_text: Search query
            k: Maximum results
            vector_weight: Vector share in [0, 1]
            highlight: Fill SearchResult.highlight with marked-up text

        Returns:
            Fused results
        """
        try:
            results = self.hybrid_search(query_text, k, vector_weight)
        except HybridSearchError as e:
            logger.error(
                f"Search degraded to no results: {e} ({e.details})",
                extra={"error_type": e.error_type}
            )
            return []

        if highlight:
            for result in results:
                result.highlight = highlight_text(result.text, query_text)
        return results

    def _run_subsearches(
        self,
        query_text: str,
        fetch_k: int
    ) -> Tuple[List[SearchResult], Optional[RetrievalError], List[SearchResult], Optional[RetrievalError]]:
        """
        Run vector and keyword searches, capturing retrieval failures.

        Any other exception is a programming error and propagates.
        """
        tasks = {
            'vector': lambda: self.vector_store.similarity_search(query_text, fetch_k),
            'keyword': lambda: self.keyword_index.search(query_text, fetch_k),
        }

        if self.search_config.parallel_subsearch:
            outcomes = run_parallel(tasks, timeout=self.search_config.subsearch_timeout)
            captured = {}
            for name, outcome in outcomes.items():
                if outcome.error is not None and not isinstance(outcome.error, RetrievalError):
                    raise outcome.error
                captured[name] = (outcome.value or [], outcome.error)
        else:
            captured = {}
            for name, task in tasks.items():
                try:
                    captured[name] = (task(), None)
                except RetrievalError as e:
                    captured[name] = ([], e)

        vector_results, vector_error = captured['vector']
        keyword_results, keyword_error = captured['keyword']
        return vector_results, vector_error, keyword_results, keyword_error


def create_search_engine(
    config: Optional[RetrievalConfig] = None,
    provider: Optional[EmbeddingProvider] = None
) -> HybridSearcher:
    """
    Build a ready-to-use hybrid searcher from configuration.

    Args:
        config: Retrieval configuration (defaults if None)
        provider: Embedding provider (built from config.embedding if None)

    Returns:
        HybridSearcher with an empty vector store and keyword index
    """
    config = config or RetrievalConfig()
    provider = provider or provider_from_config(config.embedding)

    store = VectorStore(provider, config.embedding, config.search)
    index = KeywordIndex(default_k=config.search.default_k)

    logger.info(f"Created search engine with provider {provider.name}")
    return HybridSearcher(store, index, config.search)
