"""Shared base for persisted documents."""

from datetime import datetime, timezone
from typing import Any, TypeVar

from pydantic import BaseModel

DocumentT = TypeVar("DocumentT", bound="Document")


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class Document(BaseModel):
    """
    A record stored in the document store.

    The store keeps JSON-compatible dicts; ``id`` is the store key and is
    not written into the body.
    """

    id: str = ""

    def to_document(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict without the id."""
        return self.model_dump(mode="json", exclude={"id"})

    @classmethod
    def from_document(cls: type[DocumentT], data: dict[str, Any]) -> DocumentT:
        """Build a model from a stored dict (which carries ``id``)."""
        return cls.model_validate(data)
