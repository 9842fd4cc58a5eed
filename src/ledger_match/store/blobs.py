"""Storage for downloaded file contents."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional


class BlobStore(ABC):
    """Write-once storage for file bytes."""

    @abstractmethod
    def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        """Store bytes under a path and return the stored path."""
        pass

    @abstractmethod
    def get(self, path: str) -> Optional[bytes]:
        pass


class MemoryBlobStore(BlobStore):
    def __init__(self):
        self.blobs: dict[str, bytes] = {}

    def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        self.blobs[path] = data
        return path

    def get(self, path: str) -> Optional[bytes]:
        return self.blobs.get(path)


class DirectoryBlobStore(BlobStore):
    """Stores blobs as files below a root directory."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        target = self.root / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return path

    def get(self, path: str) -> Optional[bytes]:
        target = self.root / path
        return target.read_bytes() if target.exists() else None
