"""HTTP access to the document-search backend."""

from card_search.search_backend.client import SearchBackendClient, task_uid_of

__all__ = ["SearchBackendClient", "task_uid_of"]
