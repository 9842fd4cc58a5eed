"""In-process document store."""

from typing import Any, Iterable, Optional
import copy
import logging
import uuid

from ..utils.exceptions import DocumentNotFoundError, StoreError
from .base import DocumentStore, Filter

logger = logging.getLogger(__name__)


def _compare(op: str, actual: Any, expected: Any) -> bool:
    if op == "==":
        return actual == expected
    if op == "!=":
        return actual != expected
    if op == "in":
        return actual in expected
    if op == "array_contains":
        return isinstance(actual, list) and expected in actual
    if actual is None or expected is None:
        return False
    try:
        if op == "<":
            return actual < expected
        if op == "<=":
            return actual <= expected
        if op == ">":
            return actual > expected
        if op == ">=":
            return actual >= expected
    except TypeError:
        return False
    raise StoreError(f"Unsupported filter operator: {op}")


def _sort_key(value: Any) -> tuple:
    # None sorts first; mixed types sort by type name
    if value is None:
        return (0, "", "")
    return (1, type(value).__name__, value)


class InMemoryStore(DocumentStore):
    """Dict-backed store used by tests and the CLI."""

    def __init__(self, data: Optional[dict[str, dict[str, dict[str, Any]]]] = None):
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        if data:
            for collection, docs in data.items():
                for doc_id, doc in docs.items():
                    self._collection(collection)[doc_id] = copy.deepcopy(doc)

    def _collection(self, name: str) -> dict[str, dict[str, Any]]:
        return self._collections.setdefault(name, {})

    def _changed(self) -> None:
        """Hook called after every write."""
        pass

    def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        doc = self._collection(collection).get(doc_id)
        if doc is None:
            return None
        return {**copy.deepcopy(doc), "id": doc_id}

    def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        self.set(collection, doc_id, data)
        return doc_id

    def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        body = {k: v for k, v in copy.deepcopy(data).items() if k != "id"}
        self._collection(collection)[doc_id] = body
        self._changed()

    def update(self, collection: str, doc_id: str, changes: dict[str, Any]) -> None:
        docs = self._collection(collection)
        if doc_id not in docs:
            raise DocumentNotFoundError(f"{collection}/{doc_id} not found")
        docs[doc_id].update({k: copy.deepcopy(v) for k, v in changes.items() if k != "id"})
        self._changed()

    def delete(self, collection: str, doc_id: str) -> None:
        if self._collection(collection).pop(doc_id, None) is not None:
            self._changed()

    def query(
        self,
        collection: str,
        filters: Iterable[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        start_after: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        docs = self._collection(collection)
        filters = list(filters)

        def key(doc_id: str) -> tuple:
            value = docs[doc_id].get(order_by) if order_by else None
            return (_sort_key(value), doc_id)

        ordered = sorted(docs, key=key, reverse=descending)

        if start_after is not None:
            if start_after not in docs:
                raise DocumentNotFoundError(f"Cursor {collection}/{start_after} not found")
            cursor = key(start_after)
            ordered = [
                doc_id
                for doc_id in ordered
                if (key(doc_id) < cursor if descending else key(doc_id) > cursor)
            ]

        results = []
        for doc_id in ordered:
            doc = docs[doc_id]
            if all(_compare(op, doc.get(field), value) for field, op, value in filters):
                results.append({**copy.deepcopy(doc), "id": doc_id})
                if limit is not None and len(results) >= limit:
                    break
        return results

    def dump(self) -> dict[str, dict[str, dict[str, Any]]]:
        """Snapshot of all collections."""
        return copy.deepcopy(self._collections)
