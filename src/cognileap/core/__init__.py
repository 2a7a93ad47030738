"""CogniLeap core: error taxonomy and token estimation."""

from cognileap.core.errors import (
    CogniLeapError,
    ErrorCategory,
    ErrorClassification,
    ExhaustedError,
    classify_error,
)
from cognileap.core.tokens import estimate_tokens

__all__ = [
    "CogniLeapError",
    "ErrorCategory",
    "ErrorClassification",
    "ExhaustedError",
    "classify_error",
    "estimate_tokens",
]
