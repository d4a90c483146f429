"""
Retry framework for transient broker and storage failures.
"""

from bucketsyncd.core.retry.manager import BackoffRetrier
from bucketsyncd.core.retry.policy import DEFAULT_RETRY_POLICY, RetryPolicy

__all__ = [
    "BackoffRetrier",
    "DEFAULT_RETRY_POLICY",
    "RetryPolicy",
]
