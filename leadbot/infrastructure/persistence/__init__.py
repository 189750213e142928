from .log_store import LogStore, MessageLogStore, CatalogLogStore

__all__ = ["LogStore", "MessageLogStore", "CatalogLogStore"]
