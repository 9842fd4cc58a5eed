"""Precision search: queue, strategies and query generation."""

from .collaborators import (
    HtmlRenderer,
    HtmlSnapshotRenderer,
    InvoiceAnalysis,
    InvoiceAnalyzer,
    KeywordInvoiceAnalyzer,
    RenderedDocument,
)
from .files import FileRegistry
from .orchestrator import SearchQueueProcessor
from .queries import AssistedQueryGenerator, QueryGenerator
from .queue import SearchQueue
from .strategies import (
    SearchContext,
    SearchServices,
    SearchStrategy,
    StrategyDescriptor,
    build_pipeline,
)

__all__ = [
    "HtmlRenderer",
    "HtmlSnapshotRenderer",
    "InvoiceAnalysis",
    "InvoiceAnalyzer",
    "KeywordInvoiceAnalyzer",
    "RenderedDocument",
    "FileRegistry",
    "SearchQueueProcessor",
    "AssistedQueryGenerator",
    "QueryGenerator",
    "SearchQueue",
    "SearchContext",
    "SearchServices",
    "SearchStrategy",
    "StrategyDescriptor",
    "build_pipeline",
]
