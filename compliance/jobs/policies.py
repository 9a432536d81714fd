"""Per-job-type retry, discard and timeout policies."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from ..config import settings

JOB_CUSTOMERS_DATA_REQUEST = "customers_data_request"
JOB_CUSTOMERS_REDACT = "customers_redact"
JOB_SHOP_REDACT = "shop_redact"
JOB_SUBSCRIPTION_RETRY = "subscription_retry"


class PayloadDecodeError(Exception):
    """Job payload cannot be decoded; retrying will never help."""


class HookNotFound(LookupError):
    """The integration hook a job refers to no longer exists."""


def exponential_backoff(attempts: int) -> float:
    # 3s, 6s, 12s, ... cap at 1h
    return float(min(3600, 3 * (2 ** max(0, attempts))))


def polynomial_backoff(attempts: int) -> float:
    # attempts**4 + 2: 3s, 18s, 83s, ...
    return float(min(3600, max(0, attempts) ** 4 + 2))


@dataclass(frozen=True)
class JobPolicy:
    max_attempts: int
    backoff: Callable[[int], float]
    timeout_seconds: float
    non_retryable: tuple[type[BaseException], ...] = field(default=(PayloadDecodeError,))

    def is_retryable(self, exc: BaseException) -> bool:
        return not isinstance(exc, self.non_retryable)


def policy_for(job_type: str) -> JobPolicy:
    """Policies are built on demand so tests can adjust ``settings``."""
    if job_type == JOB_CUSTOMERS_DATA_REQUEST:
        return JobPolicy(3, exponential_backoff, settings.data_request_timeout_seconds)
    if job_type == JOB_CUSTOMERS_REDACT:
        return JobPolicy(3, exponential_backoff, settings.customer_redact_timeout_seconds)
    if job_type == JOB_SHOP_REDACT:
        return JobPolicy(3, polynomial_backoff, settings.shop_redact_timeout_seconds)
    if job_type == JOB_SUBSCRIPTION_RETRY:
        return JobPolicy(
            5,
            exponential_backoff,
            settings.subscription_retry_timeout_seconds,
            non_retryable=(PayloadDecodeError, HookNotFound),
        )
    raise KeyError(f"Unknown job type: {job_type}")
