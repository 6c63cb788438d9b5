"""Async primitives shared by the log store and the upload pipeline."""

from replay_uploader.async_utils.deferred import (
    Deferred,
    DeferredStatus,
    create_settled_deferred,
)
from replay_uploader.async_utils.retry import (
    retry_with_exponential_backoff,
    retry_with_linear_backoff,
)
from replay_uploader.async_utils.timeout import race_with_timeout, timeout_after
from replay_uploader.async_utils.work_queue import WorkGroup, WorkQueue

__all__ = [
    "Deferred",
    "DeferredStatus",
    "WorkGroup",
    "WorkQueue",
    "create_settled_deferred",
    "race_with_timeout",
    "retry_with_exponential_backoff",
    "retry_with_linear_backoff",
    "timeout_after",
]
