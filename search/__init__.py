"""
Hybrid Document Retrieval

Provides:
- In-memory vector store with filtered and MMR search
- Literal term-frequency keyword index
- Weighted hybrid fusion of both, with provenance
- Pluggable embedding providers
- Chunking and document loaders for ingestion

Usage:
    from search import create_search_engine, make_chunks, create_docs_from_texts

    engine = create_search_engine()
    engine.add_documents(make_chunks(create_docs_from_texts(texts)))
    results = engine.hybrid_search("vector databases", k=5, vector_weight=0.7)
"""

from .chunking import clean, make_chunks, split_by_sentence, split_into_chunks
from .documents import (
    Chunk,
    Document,
    DocumentMetadata,
    MetadataFilter,
    Provenance,
    SearchResult,
)
from .embeddings import (
    EmbeddingProvider,
    HashingEmbeddingProvider,
    OllamaEmbeddingProvider,
    OpenAIEmbeddingProvider,
    ProviderType,
    SentenceTransformerProvider,
    create_provider,
    provider_from_config,
)
from .hybrid_search import HybridSearcher, create_search_engine, fuse_results
from .keyword_index import KeywordIndex, highlight
from .loaders import RawDocument, create_docs_from_texts, load_markdown_dir, load_text_file
from .vector_store import VectorStore

__all__ = [
    'Chunk',
    'Document',
    'DocumentMetadata',
    'MetadataFilter',
    'Provenance',
    'SearchResult',
    'EmbeddingProvider',
    'HashingEmbeddingProvider',
    'OllamaEmbeddingProvider',
    'OpenAIEmbeddingProvider',
    'ProviderType',
    'SentenceTransformerProvider',
    'create_provider',
    'provider_from_config',
    'VectorStore',
    'KeywordIndex',
    'highlight',
    'HybridSearcher',
    'create_search_engine',
    'fuse_results',
    'RawDocument',
    'load_markdown_dir',
    'load_text_file',
    'create_docs_from_texts',
    'clean',
    'split_into_chunks',
    'split_by_sentence',
    'make_chunks',
]
