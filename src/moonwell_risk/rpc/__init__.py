"""RPC layer with provider management and retry logic."""

from moonwell_risk.rpc.retry import RetryConfig, call_with_retry, with_retry

__all__ = [
    "RetryConfig",
    "call_with_retry",
    "with_retry",
]
