"""Fit request validation for pywelltest.

Provides structured validation of observed data, parameter lists and fit
settings before a Levenberg-Marquardt fit is started.

Usage:
    from pywelltest.validation import (
        ValidationResult,
        ValidationIssue,
        IssueSeverity,
        IssueCategory,
        FitRequestValidator,
    )

    result = FitRequestValidator().validate(observed, fit_parameters, weight=0.5)
    if result.has_errors:
        print(result)
"""

from .result import (
    IssueSeverity,
    IssueCategory,
    ValidationIssue,
    ValidationResult,
    merge_results,
)
from .fit_validator import FitRequestValidator

__all__ = [
    # Result types
    "IssueSeverity",
    "IssueCategory",
    "ValidationIssue",
    "ValidationResult",
    "merge_results",
    # Validators
    "FitRequestValidator",
]
