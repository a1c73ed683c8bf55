"""Typed errors for search configuration, backend and embedding failures."""

from typing import Optional


class SearchIndexDisabledError(RuntimeError):
    """Raised when lexical search is requested but no search backend is configured."""


class VectorSearchDisabledError(RuntimeError):
    """Raised when hybrid retrieval is requested but vector search is disabled."""


class SearchConfigurationError(RuntimeError):
    """Raised for operator-facing misconfiguration (missing embedder, dimension drift, empty index)."""


class SearchBackendError(RuntimeError):
    """Raised when the search backend returns an error or a malformed response."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ):
        self.status_code = status_code
        self.code = code
        super().__init__(message)


class IndexNotFoundError(SearchBackendError):
    """Raised when the requested index does not exist."""


class TaskTimeoutError(SearchBackendError):
    """Raised when a backend task does not finish within its wait budget."""


class EmbeddingBackendError(RuntimeError):
    """Raised when the embedding backend fails or returns unusable vectors."""


class EmptyQueryError(ValueError):
    """Raised when a semantic search is requested with blank query text."""
