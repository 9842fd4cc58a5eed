"""Typed helpers mapping store documents to models."""

from typing import Any, Iterable, Optional, TypeVar

from ..models.base import Document
from .base import DocumentStore, Filter

ModelT = TypeVar("ModelT", bound=Document)


def load(
    store: DocumentStore, collection: str, model_cls: type[ModelT], doc_id: Optional[str]
) -> Optional[ModelT]:
    """Fetch one document as a model, or None."""
    if not doc_id:
        return None
    data = store.get(collection, doc_id)
    return model_cls.from_document(data) if data is not None else None


def save(store: DocumentStore, collection: str, model: ModelT) -> ModelT:
    """Insert or replace a model; new models get their generated id."""
    if model.id:
        store.set(collection, model.id, model.to_document())
    else:
        model.id = store.add(collection, model.to_document())
    return model


def query_models(
    store: DocumentStore,
    collection: str,
    model_cls: type[ModelT],
    filters: Iterable[Filter] = (),
    **kwargs: Any,
) -> list[ModelT]:
    """Run a store query and wrap the results."""
    return [model_cls.from_document(d) for d in store.query(collection, filters, **kwargs)]


def dump_fields(model: Document, *fields: str) -> dict[str, Any]:
    """JSON-compatible values of selected fields, for partial updates."""
    return model.model_dump(mode="json", include=set(fields))
