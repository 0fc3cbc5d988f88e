# backend/proxy/policy.py
"""
Retry policy and the state machine driving ResilientFetcher.

The fetch loop only performs I/O; deciding what happens after each attempt
is done by `advance()`, which is pure and therefore easy to test.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    per_attempt_timeout: float = 5.0  # seconds
    backoff_delay: float = 1.0  # seconds, fixed between attempts

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.per_attempt_timeout <= 0:
            raise ValueError(f"per_attempt_timeout must be > 0, got {self.per_attempt_timeout}")
        if self.backoff_delay < 0:
            raise ValueError(f"backoff_delay must be >= 0, got {self.backoff_delay}")

    def worst_case_latency(self) -> float:
        """Upper bound on time spent before FetchExhausted is raised."""
        return (self.max_attempts * self.per_attempt_timeout
                + (self.max_attempts - 1) * self.backoff_delay)


class FailureKind(Enum):
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"


@dataclass(frozen=True)
class Success:
    response: Any


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    cause: BaseException


AttemptResult = Union[Success, Failure]


@dataclass(frozen=True)
class Attempt:
    index: int = 1  # 1-based
    prior_cause: Optional[Failure] = None


@dataclass(frozen=True)
class Deliver:
    response: Any


@dataclass(frozen=True)
class Retry:
    attempt: Attempt
    delay: float


@dataclass(frozen=True)
class GiveUp:
    attempts: int
    last_failure: Failure


Step = Union[Deliver, Retry, GiveUp]


def advance(attempt: Attempt, result: AttemptResult, policy: RetryPolicy) -> Step:
    """
    Decide the next step after `attempt` produced `result`.

    Any response counts as success regardless of its status code; only
    failures are retried, and the backoff is only ever placed between two
    attempts.
    """
    if isinstance(result, Success):
        return Deliver(result.response)
    if attempt.index >= policy.max_attempts:
        return GiveUp(attempts=attempt.index, last_failure=result)
    return Retry(attempt=Attempt(index=attempt.index + 1, prior_cause=result),
                 delay=policy.backoff_delay)
