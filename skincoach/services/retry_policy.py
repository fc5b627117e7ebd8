from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from skincoach.errors import (
    AnalysisError,
    ConfigurationError,
    ParseError,
    RecommendationError,
    SchemaError,
    UpstreamTimeoutError,
    ValidationError,
)


class Backoff(str, Enum):
    NONE = "none"
    FIXED = "fixed"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class RetryRule:
    error: type[BaseException]
    retryable: bool
    max_attempts: int
    backoff: Backoff = Backoff.NONE
    delay_s: float = 0.0

    @property
    def key(self) -> str:
        return self.error.__name__

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""

        if self.backoff is Backoff.FIXED:
            return self.delay_s
        if self.backoff is Backoff.EXPONENTIAL:
            return self.delay_s * (2 ** max(0, attempt - 1))
        return 0.0


# Most specific first: UpstreamTimeoutError is an AnalysisError.
RETRY_POLICY: tuple[RetryRule, ...] = (
    RetryRule(ValidationError, retryable=False, max_attempts=1),
    RetryRule(ParseError, retryable=False, max_attempts=1),
    RetryRule(SchemaError, retryable=False, max_attempts=1),
    RetryRule(ConfigurationError, retryable=False, max_attempts=1),
    RetryRule(UpstreamTimeoutError, retryable=True, max_attempts=2, backoff=Backoff.FIXED, delay_s=10.0),
    RetryRule(AnalysisError, retryable=True, max_attempts=3, backoff=Backoff.EXPONENTIAL, delay_s=2.0),
    RetryRule(RecommendationError, retryable=True, max_attempts=2, backoff=Backoff.FIXED, delay_s=5.0),
)

TERMINAL_RULE = RetryRule(Exception, retryable=False, max_attempts=1)


def classify(exc: BaseException, policy: Sequence[RetryRule] = RETRY_POLICY) -> RetryRule:
    for rule in policy:
        if isinstance(exc, rule.error):
            return rule
    return TERMINAL_RULE


class RetryBudget:
    """Per-error-class attempt counter for one pipeline run."""

    def __init__(self, policy: Sequence[RetryRule] = RETRY_POLICY) -> None:
        self._policy = tuple(policy)
        self._attempts: dict[str, int] = {}

    def record(self, exc: BaseException) -> tuple[RetryRule, int, Optional[float]]:
        """Count a failure and return ``(rule, attempts, delay)``.

        ``delay`` is ``None`` when the failure is terminal or the class has
        used up its attempts.
        """

        rule = classify(exc, self._policy)
        attempts = self._attempts.get(rule.key, 0) + 1
        self._attempts[rule.key] = attempts
        if not rule.retryable or attempts >= rule.max_attempts:
            return rule, attempts, None
        return rule, attempts, rule.delay_for(attempts)
