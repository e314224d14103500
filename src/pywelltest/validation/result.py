"""Validation result types for observed data and fit request checks.

Provides structured validation results with categorized issues,
severity levels, and actionable guidance.
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any


class IssueSeverity(Enum):
    """Severity level of a validation issue."""
    ERROR = auto()    # Cannot proceed - request is unusable
    WARNING = auto()  # Can proceed with caution - review recommended
    INFO = auto()     # Informational - no action required


class IssueCategory(Enum):
    """Category of validation issue for grouping and filtering."""
    OBSERVED_DATA = auto()  # Empty, misaligned or non-physical field data
    PARAMETERS = auto()     # Parameter values and bounds
    FIT_REQUEST = auto()    # Request-level problems (weight, nothing to fit, busy)


@dataclass
class ValidationIssue:
    """A single validation issue with context and guidance.

    Attributes:
        code: Unique identifier (e.g., "FV001")
        category: Issue category for grouping
        severity: Issue severity level
        message: User-friendly description of the issue
        guidance: Actionable next step for resolution
        details: Context data (indices, values, thresholds, etc.)
    """
    code: str
    category: IssueCategory
    severity: IssueSeverity
    message: str
    guidance: str
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format issue as string for display."""
        severity_str = self.severity.name
        return f"[{self.code}] {severity_str}: {self.message}"

    # --- Factory methods for common issue patterns ---

    @staticmethod
    def empty_dataset() -> "ValidationIssue":
        """Create FV001: No observed data issue."""
        return ValidationIssue(
            code="FV001",
            category=IssueCategory.OBSERVED_DATA,
            severity=IssueSeverity.ERROR,
            message="No observed data loaded",
            guidance="Load a pressure test file before starting a fit",
        )

    @staticmethod
    def non_positive_times(count: int, indices: list, values: list) -> "ValidationIssue":
        """Create FV002: Non-positive observed times issue."""
        return ValidationIssue(
            code="FV002",
            category=IssueCategory.OBSERVED_DATA,
            severity=IssueSeverity.ERROR,
            message=f"Found {count} observed times <= 0",
            guidance="Log-time fitting needs strictly positive elapsed times; drop the shut-in row",
            details={"count": count, "indices": indices[:10], "values": values[:10]},
        )

    @staticmethod
    def length_mismatch(time_len: int, pressure_len: int, derivative_len: int) -> "ValidationIssue":
        """Create FV003: Observed series length mismatch issue."""
        return ValidationIssue(
            code="FV003",
            category=IssueCategory.OBSERVED_DATA,
            severity=IssueSeverity.WARNING,
            message=(
                f"Observed series lengths differ (time={time_len}, "
                f"pressure={pressure_len}, derivative={derivative_len})"
            ),
            guidance="Residuals are computed over the shorter series only",
            details={"time": time_len, "pressure": pressure_len, "derivative": derivative_len},
        )

    @staticmethod
    def no_active_parameters() -> "ValidationIssue":
        """Create FV004: Nothing to fit issue."""
        return ValidationIssue(
            code="FV004",
            category=IssueCategory.FIT_REQUEST,
            severity=IssueSeverity.ERROR,
            message="No parameters are selected for fitting",
            guidance="Mark at least one parameter as fitted",
        )

    @staticmethod
    def weight_out_of_range(weight: float) -> "ValidationIssue":
        """Create FV005: Pressure weight outside [0, 1] issue."""
        return ValidationIssue(
            code="FV005",
            category=IssueCategory.FIT_REQUEST,
            severity=IssueSeverity.ERROR,
            message=f"Pressure weight {weight} is outside [0, 1]",
            guidance="Use 1 to fit pressure only, 0 to fit the derivative only",
            details={"weight": weight},
        )

    @staticmethod
    def non_positive_physical(name: str, value: float) -> "ValidationIssue":
        """Create FV006: Non-positive physical property issue."""
        return ValidationIssue(
            code="FV006",
            category=IssueCategory.PARAMETERS,
            severity=IssueSeverity.ERROR,
            message=f"Physical property {name}={value} must be greater than 0",
            guidance="Check reservoir and fluid properties; they scale time and pressure",
            details={"name": name, "value": value},
        )

    @staticmethod
    def value_outside_bounds(name: str, value: float, min_value: float, max_value: float) -> "ValidationIssue":
        """Create FV007: Initial value outside bounds issue."""
        return ValidationIssue(
            code="FV007",
            category=IssueCategory.PARAMETERS,
            severity=IssueSeverity.WARNING,
            message=f"Initial {name}={value:g} is outside [{min_value:g}, {max_value:g}]",
            guidance="The value is clamped into its bounds before fitting starts",
            details={"name": name, "value": value, "min": min_value, "max": max_value},
        )

    @staticmethod
    def inverted_bounds(name: str, min_value: float, max_value: float) -> "ValidationIssue":
        """Create FV008: Lower bound above upper bound issue."""
        return ValidationIssue(
            code="FV008",
            category=IssueCategory.PARAMETERS,
            severity=IssueSeverity.ERROR,
            message=f"Bounds of {name} are inverted: min {min_value:g} > max {max_value:g}",
            guidance="Swap or correct the parameter bounds",
            details={"name": name, "min": min_value, "max": max_value},
        )

    @staticmethod
    def fit_already_running() -> "ValidationIssue":
        """Create FV009: Fit already in progress issue."""
        return ValidationIssue(
            code="FV009",
            category=IssueCategory.FIT_REQUEST,
            severity=IssueSeverity.INFO,
            message="A fit is already running; request ignored",
            guidance="Wait for the current fit to finish or cancel it first",
        )


@dataclass
class ValidationResult:
    """Collection of validation issues for a fit request or dataset.

    Attributes:
        subject: What was validated (e.g. a file name or model variant)
        issues: List of validation issues found
    """
    subject: str | None = None
    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Check if any ERROR-severity issues exist."""
        return any(i.severity == IssueSeverity.ERROR for i in self.issues)

    @property
    def has_warnings(self) -> bool:
        """Check if any WARNING-severity issues exist."""
        return any(i.severity == IssueSeverity.WARNING for i in self.issues)

    @property
    def is_valid(self) -> bool:
        """Check if no ERROR-severity issues exist."""
        return not self.has_errors

    @property
    def error_count(self) -> int:
        """Count of ERROR-severity issues."""
        return sum(1 for i in self.issues if i.severity == IssueSeverity.ERROR)

    @property
    def warning_count(self) -> int:
        """Count of WARNING-severity issues."""
        return sum(1 for i in self.issues if i.severity == IssueSeverity.WARNING)

    @property
    def info_count(self) -> int:
        """Count of INFO-severity issues."""
        return sum(1 for i in self.issues if i.severity == IssueSeverity.INFO)

    @property
    def codes(self) -> list[str]:
        """Issue codes in the order they were found."""
        return [i.code for i in self.issues]

    def add_issue(self, issue: ValidationIssue) -> None:
        """Add an issue to the result."""
        self.issues.append(issue)

    def by_category(self, category: IssueCategory) -> list[ValidationIssue]:
        """Filter issues by category."""
        return [i for i in self.issues if i.category == category]

    def by_severity(self, severity: IssueSeverity) -> list[ValidationIssue]:
        """Filter issues by severity."""
        return [i for i in self.issues if i.severity == severity]

    def errors(self) -> list[ValidationIssue]:
        """Get all ERROR-severity issues."""
        return self.by_severity(IssueSeverity.ERROR)

    def warnings(self) -> list[ValidationIssue]:
        """Get all WARNING-severity issues."""
        return self.by_severity(IssueSeverity.WARNING)

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        """Merge another validation result into this one.

        Args:
            other: Another ValidationResult to merge

        Returns:
            New ValidationResult with combined issues
        """
        return ValidationResult(
            subject=self.subject or other.subject,
            issues=self.issues + other.issues,
        )

    def __str__(self) -> str:
        """Format result as summary string."""
        if not self.issues:
            return f"Validation OK for {self.subject or 'fit request'}"

        lines = [f"Validation for {self.subject or 'fit request'}: "
                 f"{self.error_count} errors, {self.warning_count} warnings"]
        for issue in self.issues:
            lines.append(f"  {issue}")
        return "\n".join(lines)


def merge_results(results: list[ValidationResult]) -> ValidationResult:
    """Merge multiple validation results into one.

    Args:
        results: List of ValidationResults to merge

    Returns:
        Combined ValidationResult with all issues
    """
    if not results:
        return ValidationResult()

    combined = results[0]
    for result in results[1:]:
        combined = combined.merge(result)
    return combined
