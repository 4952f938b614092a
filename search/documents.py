"""
Document and result models for the retrieval engine.

- DocumentMetadata: typed metadata with a few known filter fields and a
  schema-less `extra` map of scalar values
- Chunk: an un-embedded {id, text, metadata} record from the chunker
- Document: an embedded, immutable record owned by the vector store
- SearchResult: ranked evidence returned to callers (never the raw vector)
- MetadataFilter: composable metadata predicate
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

import numpy as np

Scalar = Union[str, int, float, bool, None]
_SCALAR_TYPES = (str, int, float, bool, type(None))


# =============================================================================
# Metadata
# =============================================================================

@dataclass(frozen=True)
class DocumentMetadata:
    """
    Metadata attached to a document.

    Known fields are typed and usable in MetadataFilter; anything else
    goes into `extra`, which only accepts scalar values.
    """
    source: Optional[str] = None
    doc_type: Optional[str] = None
    title: Optional[str] = None
    parent_id: Optional[str] = None
    chunk_index: Optional[int] = None
    total_chunks: Optional[int] = None
    extra: Dict[str, Scalar] = field(default_factory=dict)

    def __post_init__(self):
        for key, value in self.extra.items():
            if not isinstance(key, str):
                raise TypeError(f"Metadata keys must be strings, got {key!r}")
            if not isinstance(value, _SCALAR_TYPES):
                raise TypeError(
                    f"Metadata value for '{key}' must be a scalar, got {type(value).__name__}"
                )
        for name in ('chunk_index', 'total_chunks'):
            value = getattr(self, name)
            if value is not None and (not isinstance(value, int) or isinstance(value, bool)):
                raise TypeError(f"Metadata '{name}' must be an int")

    @classmethod
    def known_fields(cls) -> List[str]:
        return [f.name for f in fields(cls) if f.name != 'extra']

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'DocumentMetadata':
        """Split a plain mapping into known fields and extras."""
        data = dict(data or {})
        extra = dict(data.pop('extra', None) or {})
        known = {}
        for name in cls.known_fields():
            if name in data:
                known[name] = data.pop(name)
        extra.update(data)
        return cls(extra=extra, **known)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            name: getattr(self, name)
            for name in self.known_fields()
            if getattr(self, name) is not None
        }
        result.update(self.extra)
        return result

    def get(self, key: str, default: Any = None) -> Any:
        """Read a known field or an extra key."""
        if key in self.known_fields():
            value = getattr(self, key)
            return default if value is None else value
        return self.extra.get(key, default)

    def with_updates(self, **updates) -> 'DocumentMetadata':
        """Return a copy with known fields or extras replaced."""
        merged = self.to_dict()
        merged.update(updates)
        return DocumentMetadata.from_dict(merged)


MetadataLike = Union[DocumentMetadata, Dict[str, Any], None]


def as_metadata(value: MetadataLike) -> DocumentMetadata:
    if isinstance(value, DocumentMetadata):
        return value
    return DocumentMetadata.from_dict(value)


# =============================================================================
# Records
# =============================================================================

@dataclass(frozen=True)
class Chunk:
    """A text span ready for ingestion."""
    id: str
    text: str
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)

    @classmethod
    def create(cls, id: str, text: str, metadata: MetadataLike = None) -> 'Chunk':
        return cls(id=id, text=text, metadata=as_metadata(metadata))


@dataclass(frozen=True, eq=False)
class Document:
    """An embedded document. The vector is stored read-only."""
    id: str
    text: str
    vector: np.ndarray
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)

    def __post_init__(self):
        vector = np.array(self.vector, dtype=np.float64)
        if vector.ndim != 1:
            raise ValueError(f"Document vector must be 1-dimensional, got shape {vector.shape}")
        vector.setflags(write=False)
        object.__setattr__(self, 'vector', vector)

    @property
    def dimension(self) -> int:
        return int(self.vector.shape[0])


class Provenance(Enum):
    """Which sub-search produced a result."""
    VECTOR = "vector"
    KEYWORD = "keyword"
    BOTH = "both"


@dataclass
class SearchResult:
    """A ranked search hit."""
    document_id: str
    text: str
    metadata: DocumentMetadata
    score: float  # normalized to [0, 1]
    provenance: Provenance
    raw_score: float = 0.0
    vector_score: Optional[float] = None
    keyword_score: Optional[float] = None
    highlight: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'document_id': self.document_id,
            'text': self.text,
            'metadata': self.metadata.to_dict(),
            'score': self.score,
            'provenance': self.provenance.value,
            'raw_score': self.raw_score,
            'vector_score': self.vector_score,
            'keyword_score': self.keyword_score,
            'highlight': self.highlight,
        }


# =============================================================================
# Filters
# =============================================================================

MetadataPredicate = Callable[[DocumentMetadata], bool]


class MetadataFilter:
    """
    Equality filter over document metadata.

    parent_prefix matches the start of metadata.parent_id, so it selects
    every chunk of the documents whose ids share that prefix.

    Usage:
        only_guides = MetadataFilter(doc_type="markdown", parent_prefix="guide-")
        store.similarity_search_with_filter(query, 5, only_guides)

        # Combine with any other predicate
        recent = only_guides & (lambda meta: meta.get("year", 0) >= 2024)
    """

    def __init__(
        self,
        source: Optional[str] = None,
        doc_type: Optional[str] = None,
        title: Optional[str] = None,
        parent_id: Optional[str] = None,
        parent_prefix: Optional[str] = None,
        extra: Optional[Dict[str, Scalar]] = None
    ):
        self.equals = {
            name: value
            for name, value in (
                ('source', source),
                ('doc_type', doc_type),
                ('title', title),
                ('parent_id', parent_id),
            )
            if value is not None
        }
        self.parent_prefix = parent_prefix
        self.extra = dict(extra or {})

    def __call__(self, metadata: DocumentMetadata) -> bool:
        for name, expected in self.equals.items():
            if getattr(metadata, name) != expected:
                return False

        if self.parent_prefix is not None:
            parent = metadata.parent_id or ''
            if not parent.startswith(self.parent_prefix):
                return False

        for key, expected in self.extra.items():
            if key not in metadata.extra or metadata.extra[key] != expected:
                return False

        return True

    def __and__(self, other: MetadataPredicate) -> MetadataPredicate:
        def combined(metadata: DocumentMetadata) -> bool:
            return self(metadata) and other(metadata)
        return combined

    def __repr__(self):
        parts = [f"{k}={v!r}" for k, v in self.equals.items()]
        if self.parent_prefix is not None:
            parts.append(f"parent_prefix={self.parent_prefix!r}")
        if self.extra:
            parts.append(f"extra={self.extra!r}")
        return f"MetadataFilter({', '.join(parts)})"
