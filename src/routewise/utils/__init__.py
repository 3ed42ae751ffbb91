"""Utility modules for Routewise."""

from routewise.utils.logging import RequestLogger, setup_logging
from routewise.utils.metrics import RouterMetrics
from routewise.utils.retry import RetryConfig, call_with_retry, with_retry

__all__ = [
    "setup_logging",
    "RequestLogger",
    "RouterMetrics",
    "RetryConfig",
    "call_with_retry",
    "with_retry",
]
