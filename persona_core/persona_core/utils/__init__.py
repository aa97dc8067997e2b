from .buffers import BoundedHistory, TTLCache
from .retry import RetryPolicy, async_exponential_backoff_retry, COLLABORATOR_RETRY_POLICY, NO_RETRY_POLICY

__all__ = [
    "BoundedHistory",
    "TTLCache",
    "RetryPolicy",
    "async_exponential_backoff_retry",
    "COLLABORATOR_RETRY_POLICY",
    "NO_RETRY_POLICY",
]
