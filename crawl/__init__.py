"""Crawl orchestration, sessions and progress polling."""

from .orchestrator import CrawlOrchestrator
from .poller import PollOutcome, PollSnapshot, ProgressPoller, is_crawl_complete
from .service import CrawlService, CrawlValidationError, SessionConflictError

__all__ = [
    "CrawlOrchestrator",
    "PollOutcome",
    "PollSnapshot",
    "ProgressPoller",
    "is_crawl_complete",
    "CrawlService",
    "CrawlValidationError",
    "SessionConflictError",
]
