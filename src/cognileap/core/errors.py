"""Error taxonomy and upstream failure classification.

The upstream generation service reports failures as free-form messages
(HTTP status lines, gRPC status names, SDK wrapper text). Classification is
a best-effort substring match over the case-folded message, evaluated as an
ordered rule table where the first matching rule wins.

Failures that no retry can fix are checked first and come back
non-retryable:

  auth          "status 401", "status 403", "api key", "permission_denied", ...
  invalid       "status 400", "invalid_argument", "bad request"
  not found     "status 404", "not_found", "not found"
  safety        "safety", "content filter", "blocked", "policy violation"

Everything else is sorted into a retryable category:

  overloaded    "overloaded", "busy", "capacity", "unavailable"
  rate_limited  "rate limit", "quota", "resource exhausted"
  internal      "internal", "status 13", "status 500"
  timeout       "timeout", "deadline", "status 4"
  network       "network", "connection", "fetch"
  unknown       anything else (not retryable)

Order matters: "status 4" also matches "status 429" and "status 400", which
is why the rate-limit rule and the non-retryable rules sit earlier.

Usage
-----
    classification = classify_error(exc)
    if not classification.retryable:
        ...
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Sequence


class ErrorCategory(str, Enum):
    OVERLOADED = "overloaded"
    RATE_LIMITED = "rate_limited"
    INTERNAL = "internal"
    TIMEOUT = "timeout"
    NETWORK = "network"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ClassificationRule:
    """One row of the classification table."""

    category: ErrorCategory
    needles: tuple[str, ...]
    reason: str
    retryable: bool = True

    def matches(self, message: str) -> bool:
        return any(needle in message for needle in self.needles)


NON_RETRYABLE_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(
        ErrorCategory.UNKNOWN,
        ("status 401", "status 403", "unauthorized", "forbidden", "api key",
         "authentication", "permission_denied", "unauthenticated"),
        "AI service authentication error",
        retryable=False,
    ),
    ClassificationRule(
        ErrorCategory.UNKNOWN,
        ("status 400", "invalid_argument", "bad request"),
        "AI service rejected the request",
        retryable=False,
    ),
    ClassificationRule(
        ErrorCategory.UNKNOWN,
        ("status 404", "not_found", "not found"),
        "AI model or resource not found",
        retryable=False,
    ),
    ClassificationRule(
        ErrorCategory.UNKNOWN,
        ("safety", "content filter", "blocked", "policy violation"),
        "AI service blocked the content",
        retryable=False,
    ),
)

CATEGORY_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(
        ErrorCategory.OVERLOADED,
        ("overloaded", "busy", "capacity", "unavailable"),
        "AI service overloaded",
    ),
    ClassificationRule(
        ErrorCategory.RATE_LIMITED,
        ("rate limit", "quota", "resource exhausted", "resource_exhausted"),
        "AI service rate limited",
    ),
    ClassificationRule(
        ErrorCategory.INTERNAL,
        ("internal", "status 13", "status 500"),
        "AI service internal error",
    ),
    ClassificationRule(
        ErrorCategory.TIMEOUT,
        ("timeout", "deadline", "status 4"),
        "AI service timeout",
    ),
    ClassificationRule(
        ErrorCategory.NETWORK,
        ("network", "connection", "fetch"),
        "Network error",
    ),
)

DEFAULT_RULES: tuple[ClassificationRule, ...] = NON_RETRYABLE_RULES + CATEGORY_RULES


@dataclass(frozen=True)
class ErrorClassification:
    category: ErrorCategory
    retryable: bool
    reason: str


def classify_message(
    message: str,
    rules: Sequence[ClassificationRule] = DEFAULT_RULES,
) -> ErrorClassification:
    """Classify a raw failure message. Pure and total."""
    folded = message.lower()
    for rule in rules:
        if rule.matches(folded):
            return ErrorClassification(
                category=rule.category,
                retryable=rule.retryable,
                reason=rule.reason,
            )
    return ErrorClassification(
        category=ErrorCategory.UNKNOWN,
        retryable=False,
        reason="unrecognized error",
    )


def classify_error(
    exc: BaseException,
    rules: Sequence[ClassificationRule] = DEFAULT_RULES,
) -> ErrorClassification:
    """Classify a raised exception by its message text."""
    return classify_message(str(exc) or type(exc).__name__, rules)


# ─────────────────────────────────────────────────────────────────────────────
# Exceptions
# ─────────────────────────────────────────────────────────────────────────────

class CogniLeapError(Exception):
    """Root exception for all CogniLeap domain errors."""


class GenerationClientError(CogniLeapError):
    """The upstream generation call failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ContentTooShortError(CogniLeapError):
    """A completion came back shorter than the minimum usable length."""

    def __init__(self, length: int) -> None:
        self.length = length
        super().__init__(
            f"Generated content too short ({length} chars) - likely generation failure"
        )


class ExhaustedError(CogniLeapError):
    """Every tier in the fallback chain failed."""

    def __init__(
        self,
        last_error: BaseException | None,
        classification: ErrorClassification,
        retry_after_ms: int | None,
        tiers_tried: list[str],
    ) -> None:
        self.last_error = last_error
        self.classification = classification
        self.retry_after_ms = retry_after_ms
        self.tiers_tried = tiers_tried
        detail = str(last_error) if last_error else "no tier could accept the prompt"
        super().__init__(f"All fallback models failed: {detail}")

    @property
    def retryable(self) -> bool:
        return self.classification.retryable

    @property
    def reason(self) -> str:
        return self.classification.reason


class InvalidRequestError(CogniLeapError):
    """A request is malformed or references something unusable.

    Raised before any generation attempt; never retried.
    """

    def __init__(self, message: str, status_code: int = 400, **details: Any) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class SessionNotFoundError(CogniLeapError):
    """The upstream no longer recognizes a session id."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class FlashcardFormatError(CogniLeapError):
    """Generated flashcards could not be parsed into the expected shape."""


class RetrievalError(CogniLeapError):
    """The retrieval collaborator could not assemble a context."""
