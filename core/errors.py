"""
Retrieval Error Hierarchy

Provides:
- A common base class carrying an error type, message and details
- Embedding provider failures with retry hints
- Contract violations (dimension mismatch, duplicate ids, bad queries)
- Hybrid search and fan-out failures

Usage:
    from core.errors import EmbeddingFailure, DimensionMismatch

    try:
        store.add_documents(chunks)
    except EmbeddingFailure as e:
        logger.error(f"Ingestion failed: {e}", extra={"error_type": e.error_type})
"""

from typing import Optional


class RetrievalError(Exception):
    """Base exception for retrieval errors."""

    error_type = 'retrieval_error'
    message = 'Retrieval operation failed'

    def __init__(self, message: Optional[str] = None, **kwargs):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = kwargs

    def to_dict(self) -> dict:
        return {
            'error': self.error_type,
            'message': self.message,
            'details': self.details,
        }


# =============================================================================
# Embedding Provider Errors
# =============================================================================

class EmbeddingFailure(RetrievalError):
    """The embedding provider call failed."""

    error_type = 'embedding_failure'
    message = 'Embedding provider call failed'

    def __init__(
        self,
        message: Optional[str] = None,
        provider: str = 'unknown',
        retryable: bool = True,
        original_error: Optional[Exception] = None,
        **kwargs
    ):
        super().__init__(message, provider=provider, **kwargs)
        self.provider = provider
        self.retryable = retryable
        self.original_error = original_error


class EmbeddingRateLimited(EmbeddingFailure):
    """Provider rate limit exceeded."""

    error_type = 'embedding_rate_limited'
    message = 'Embedding provider rate limit exceeded'

    def __init__(
        self,
        message: Optional[str] = None,
        provider: str = 'unknown',
        retry_after: Optional[float] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message, provider, retryable=True, original_error=original_error)
        self.retry_after = retry_after


class EmbeddingCancelled(EmbeddingFailure):
    """Embedding call cancelled by the caller or past its deadline."""

    error_type = 'embedding_cancelled'
    message = 'Embedding call cancelled'

    def __init__(self, message: Optional[str] = None, provider: str = 'unknown'):
        super().__init__(message, provider, retryable=False)


# =============================================================================
# Contract Violations
# =============================================================================

class DimensionMismatch(RetrievalError, ValueError):
    """A vector does not have the store's dimensionality."""

    error_type = 'dimension_mismatch'
    message = 'Vector dimension mismatch'

    def __init__(self, expected: int, actual: int, message: Optional[str] = None):
        super().__init__(
            message or f"Expected vector of dimension {expected}, got {actual}",
            expected=expected,
            actual=actual,
        )
        self.expected = expected
        self.actual = actual


class InvalidQuery(RetrievalError, ValueError):
    """Query parameters out of range."""

    error_type = 'invalid_query'
    message = 'Invalid query parameters'


class DuplicateDocumentError(RetrievalError, ValueError):
    """A document id is already present."""

    error_type = 'duplicate_document'
    message = 'Duplicate document id'


class ConfigurationError(RetrievalError):
    """Configuration issue."""

    error_type = 'configuration_error'
    message = 'Invalid retrieval configuration'


# =============================================================================
# Search Errors
# =============================================================================

class SubtaskTimeout(RetrievalError):
    """A fan-out task did not finish before the shared deadline."""

    error_type = 'subtask_timeout'
    message = 'Sub-task timed out'


class HybridSearchError(RetrievalError):
    """Both hybrid sub-searches failed."""

    error_type = 'hybrid_search_error'
    message = 'Vector and keyword searches both failed'
