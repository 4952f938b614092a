"""
Keyword Index

Lexical scorer over the same documents as the vector store. A document's
score is the sum, over each whitespace-separated query term, of the number
of literal non-overlapping occurrences of that term in the lowercased text.

Terms are plain substrings: characters such as '+', '(' or '.' match
themselves and never raise.

Known limitation: every query scans every document once per term, so a
query costs O(documents x terms). There is no inverted index.

Usage:
    from search.keyword_index import KeywordIndex, highlight

    index = KeywordIndex()
    index.add_documents(chunks)
    results = index.search("vector database", k=5)
    print(highlight(results[0].text, "vector database"))
"""

import logging
import re
from typing import Iterable, List, Optional

from core.locks import ReadWriteLock
from .documents import Chunk, Provenance, SearchResult
from .vector_store import coerce_chunk, validate_k

logger = logging.getLogger(__name__)


def tokenize_query(query_text: str) -> List[str]:
    """Lowercase and split on whitespace. Repeated terms are kept."""
    return [term for term in query_text.lower().split() if term]


def highlight(
    text: str,
    query_text: str,
    open_mark: str = '【',
    close_mark: str = '】'
) -> str:
    """
    Wrap every case-insensitive occurrence of each query term in markers.

    Longer terms win when terms overlap, and a span is never wrapped twice.

    Args:
        text: Text to mark up
        query_text: Query whose terms are highlighted
        open_mark: Marker inserted before a hit
        close_mark: Marker inserted after a hit

    Returns:
        Highlighted text (unchanged if no term occurs)
    """
    terms = sorted(set(tokenize_query(query_text)), key=len, reverse=True)
    if not terms:
        return text

    pattern = re.compile('|'.join(re.escape(t) for t in terms), re.IGNORECASE)
    return pattern.sub(lambda m: f"{open_mark}{m.group(0)}{close_mark}", text)


class KeywordIndex:
    """Term-frequency keyword search over an append-only document list."""

    def __init__(self, default_k: int = 5):
        self.default_k = default_k
        self._lock = ReadWriteLock()
        self._documents: List[Chunk] = []
        # Lowercased once at insert time
        self._lowered: List[str] = []

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._documents)

    def add_documents(self, docs: Iterable) -> int:
        """
        Append documents (Document, Chunk or {id, text, metadata} mappings).

        Returns:
            Number of documents appended
        """
        batch = [coerce_chunk(d) for d in docs]
        if not batch:
            return 0

        with self._lock.write_locked():
            self._documents.extend(batch)
            self._lowered.extend(c.text.lower() for c in batch)
            total = len(self._documents)

        logger.info(f"Indexed {len(batch)} documents for keyword search ({total} total)")
        return len(batch)

    def search(self, query_text: str, k: Optional[int] = None) -> List[SearchResult]:
        """
        Rank documents by literal term frequency.

        Args:
            query_text: Query text; an empty or all-whitespace query returns []
            k: Maximum results (default: default_k)

        Returns:
            Up to k results with a positive count, descending; ties keep
            insertion order. `raw_score` is the count and `score` is the
            count relative to the best hit.
        """
        k = validate_k(self.default_k if k is None else k)
        terms = tokenize_query(query_text)
        if k == 0 or not terms:
            return []

        with self._lock.read_locked():
            scored = []
            for position, text in enumerate(self._lowered):
                count = sum(text.count(term) for term in terms)
                if count > 0:
                    scored.append((count, position, self._documents[position]))

        # Sorting on (-count, position) keeps equal counts in insertion order
        scored.sort(key=lambda item: (-item[0], item[1]))
        top = scored[:k]
        if not top:
            return []

        best = top[0][0]
        return [
            SearchResult(
                document_id=chunk.id,
                text=chunk.text,
                metadata=chunk.metadata,
                score=count / best,
                provenance=Provenance.KEYWORD,
                raw_score=float(count),
                keyword_score=float(count),
            )
            for count, _, chunk in top
        ]

    def clear(self):
        with self._lock.write_locked():
            self._documents = []
            self._lowered = []
        logger.info("Keyword index cleared")
