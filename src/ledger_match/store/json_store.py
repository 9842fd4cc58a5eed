"""Document store persisted to a single JSON file."""

from pathlib import Path
from typing import Any
import json
import logging

from ..utils.exceptions import StoreError
from .memory import InMemoryStore

logger = logging.getLogger(__name__)


class JsonFileStore(InMemoryStore):
    """
    In-memory store that rewrites a JSON file after every change.

    The file holds ``{collection: {doc_id: document}}``.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        data: dict[str, Any] = {}
        if self.path.exists():
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    data = json.load(f) or {}
            except json.JSONDecodeError as e:
                raise StoreError(f"Invalid store file {self.path}: {e}") from e
            logger.info(f"Loaded store from {self.path}")
        super().__init__(data)

    def _changed(self) -> None:
        self.flush()

    def flush(self) -> None:
        """Write all collections to disk atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self.dump(), f, indent=2, sort_keys=True)
        tmp_path.replace(self.path)
