"""Report generators."""

from .search_history import SearchHistoryReport

__all__ = ["SearchHistoryReport"]
