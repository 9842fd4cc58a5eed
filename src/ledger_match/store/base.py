"""Document store contract used by the matching core."""

from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional

# (field, operator, value); operators: == != < <= > >= in array_contains
Filter = tuple[str, str, Any]

# Collection names
TRANSACTIONS = "transactions"
PARTNERS = "partners"
FILES = "files"
CATEGORIES = "categories"
SEARCH_QUEUE = "search_queue"
TRANSACTION_SEARCHES = "transaction_searches"
EMAIL_INTEGRATIONS = "email_integrations"
EMAIL_TOKENS = "email_tokens"

MAX_BATCH_SIZE = 500


class DocumentStore(ABC):
    """
    Document-oriented persistence keyed by id.

    Documents are JSON-compatible dicts. Reads return copies that include
    the document ``id``; writes never rely on multi-document transactions.
    """

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        """Return a document or None."""
        pass

    @abstractmethod
    def add(self, collection: str, data: dict[str, Any]) -> str:
        """Insert a document with a generated id and return the id."""
        pass

    @abstractmethod
    def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Create or replace a document."""
        pass

    @abstractmethod
    def update(self, collection: str, doc_id: str, changes: dict[str, Any]) -> None:
        """
        Merge top-level fields into an existing document.

        Raises:
            DocumentNotFoundError: If the document does not exist
        """
        pass

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document if present."""
        pass

    @abstractmethod
    def query(
        self,
        collection: str,
        filters: Iterable[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        start_after: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """
        Filter, order and page through a collection.

        Args:
            collection: Collection name
            filters: Conditions that must all hold
            order_by: Field to sort on; ties are broken by id
            descending: Sort direction
            limit: Maximum number of documents
            start_after: Id of a cursor document; results resume strictly
                after its position in the sort order, even if the cursor
                document no longer matches the filters

        Returns:
            Matching documents
        """
        pass

    def batch_update(self, collection: str, updates: dict[str, dict[str, Any]]) -> None:
        """Apply several single-document updates, at most MAX_BATCH_SIZE."""
        if len(updates) > MAX_BATCH_SIZE:
            raise ValueError(f"Batch of {len(updates)} exceeds limit of {MAX_BATCH_SIZE}")
        for doc_id, changes in updates.items():
            self.update(collection, doc_id, changes)
