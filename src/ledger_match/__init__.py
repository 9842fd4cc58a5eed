"""
Ledger matching core.

Links bank transactions to partners, receipt files and no-receipt
categories, and runs resumable precision searches for missing receipts.
"""

__version__ = "0.1.0"

from .config import MatchConfig, load_config
from .matching.engine import MatchingEngine
from .search.orchestrator import SearchQueueProcessor
from .search.queue import SearchQueue

__all__ = [
    "__version__",
    "MatchConfig",
    "load_config",
    "MatchingEngine",
    "SearchQueueProcessor",
    "SearchQueue",
]
