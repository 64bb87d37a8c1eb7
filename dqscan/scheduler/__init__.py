"""Scheduled execution core for data-quality scans.

Error classification, retry with backoff, the result cache, the
schedule resolver and the job queue live here; the driver that ties
them to the schedule repository is in :mod:`dqscan.scheduler.driver`.
"""

from dqscan.scheduler.cache import CacheTTL, ResultCache, generate_cache_key
from dqscan.scheduler.errors import ErrorCode, ScanError, classify, is_retryable_error
from dqscan.scheduler.resolver import CronPresets, ScheduleResolver
from dqscan.scheduler.retry import RetryPolicy, retry_with_backoff

__all__ = [
    "CacheTTL",
    "CronPresets",
    "ErrorCode",
    "ResultCache",
    "RetryPolicy",
    "ScanError",
    "ScheduleResolver",
    "classify",
    "generate_cache_key",
    "is_retryable_error",
    "retry_with_backoff",
]
