"""核心业务逻辑."""

from newsagent.core.fetch_runner import FeedScheduler, FetchBatchStatus, FetchOutcome
from newsagent.core.processor import EnrichmentEngine, EnrichmentResult
from newsagent.core.store import Store

__all__ = [
    "EnrichmentEngine",
    "EnrichmentResult",
    "FeedScheduler",
    "FetchBatchStatus",
    "FetchOutcome",
    "Store",
]
