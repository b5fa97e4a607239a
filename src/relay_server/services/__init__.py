"""Business logic services for relay-server.

This package contains the context window manager, the rate limiter and the
transactional file store used by the orchestration engine.
"""

from relay_server.services.allow_list import AllowListStore
from relay_server.services.context_window import (
    CompressionPolicy,
    CompressionResult,
    ContextUsage,
    ContextWindowService,
)
from relay_server.services.rate_limiter import PreflightResult, RateLimiter, RateWindow
from relay_server.services.transactions import (
    FileSnapshot,
    Transaction,
    TransactionError,
    TransactionManager,
)

__all__ = [
    "AllowListStore",
    "CompressionPolicy",
    "CompressionResult",
    "ContextUsage",
    "ContextWindowService",
    "PreflightResult",
    "RateLimiter",
    "RateWindow",
    "FileSnapshot",
    "Transaction",
    "TransactionError",
    "TransactionManager",
]
