"""Document and blob storage."""

from pathlib import Path

from ..config import StoreConfig
from ..utils.exceptions import ConfigurationError
from .base import DocumentStore, Filter
from .blobs import BlobStore, DirectoryBlobStore, MemoryBlobStore
from .json_store import JsonFileStore
from .memory import InMemoryStore
from .repository import dump_fields, load, query_models, save


def create_store(config: StoreConfig) -> DocumentStore:
    """Build the document store named by the configuration."""
    if config.backend == "memory":
        return InMemoryStore()
    if config.backend == "json":
        if not config.path:
            raise ConfigurationError("store.path is required for the json backend")
        return JsonFileStore(Path(config.path))
    raise ConfigurationError(f"Unknown store backend: {config.backend}")


def create_blob_store(config: StoreConfig) -> BlobStore:
    if config.blob_directory:
        return DirectoryBlobStore(Path(config.blob_directory))
    return MemoryBlobStore()


__all__ = [
    "DocumentStore",
    "Filter",
    "InMemoryStore",
    "JsonFileStore",
    "BlobStore",
    "MemoryBlobStore",
    "DirectoryBlobStore",
    "create_store",
    "create_blob_store",
    "load",
    "save",
    "query_models",
    "dump_fields",
]
