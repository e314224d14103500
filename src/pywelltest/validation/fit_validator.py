"""Fit request validation.

Checks that observed data and the parameter list are usable before a
Levenberg-Marquardt fit is started, so that invalid requests are rejected
without touching the fitter or the session state.
"""

from typing import TYPE_CHECKING

import numpy as np

from .result import ValidationResult, ValidationIssue

if TYPE_CHECKING:
    from ..core.models import FitParameter, ObservedDataset


class FitRequestValidator:
    """Validates a fit request.

    Error codes:
        FV001: Empty observed dataset
        FV002: Non-positive observed times
        FV003: Observed series length mismatch (warning)
        FV004: No parameters selected for fitting
        FV005: Pressure weight outside [0, 1]
        FV006: Non-positive physical property
        FV007: Initial value outside its bounds (warning)
        FV008: Inverted parameter bounds
    """

    def validate_observed(self, observed: "ObservedDataset | None") -> ValidationResult:
        """Validate observed data.

        Args:
            observed: Dataset to check (None counts as empty)

        Returns:
            ValidationResult with FV001-FV003 issues
        """
        result = ValidationResult(subject="observed data")

        if observed is None or observed.is_empty:
            result.add_issue(ValidationIssue.empty_dataset())
            return result

        bad = np.flatnonzero(~(observed.time > 0))
        if len(bad) > 0:
            result.add_issue(ValidationIssue.non_positive_times(
                count=len(bad),
                indices=bad.tolist(),
                values=observed.time[bad].tolist(),
            ))

        n_time = len(observed.time)
        n_pressure = len(observed.pressure)
        n_derivative = len(observed.derivative)
        if n_pressure != n_time or n_derivative != n_time:
            result.add_issue(ValidationIssue.length_mismatch(n_time, n_pressure, n_derivative))

        return result

    def validate_parameters(self, fit_parameters: list["FitParameter"]) -> ValidationResult:
        """Validate the parameter list.

        Args:
            fit_parameters: Parameters with bounds and fit flags

        Returns:
            ValidationResult with FV004 and FV006-FV008 issues
        """
        from ..core.models import PHYSICAL_PARAMETERS

        result = ValidationResult(subject="parameters")

        if not any(p.is_fit for p in fit_parameters):
            result.add_issue(ValidationIssue.no_active_parameters())

        for param in fit_parameters:
            if param.name in PHYSICAL_PARAMETERS and not param.value > 0:
                result.add_issue(ValidationIssue.non_positive_physical(param.name, param.value))

            if param.min_value > param.max_value:
                result.add_issue(ValidationIssue.inverted_bounds(
                    param.name, param.min_value, param.max_value
                ))
            elif param.is_fit and not param.min_value <= param.value <= param.max_value:
                result.add_issue(ValidationIssue.value_outside_bounds(
                    param.name, param.value, param.min_value, param.max_value
                ))

        return result

    def validate(
        self,
        observed: "ObservedDataset | None",
        fit_parameters: list["FitParameter"],
        weight: float,
        subject: str | None = None,
    ) -> ValidationResult:
        """Run every fit request check.

        Args:
            observed: Observed dataset
            fit_parameters: Parameters with bounds and fit flags
            weight: Pressure weight in [0, 1]
            subject: Label for the result (e.g. the model variant)

        Returns:
            Combined ValidationResult
        """
        result = ValidationResult(subject=subject)
        if not 0.0 <= weight <= 1.0:
            result.add_issue(ValidationIssue.weight_out_of_range(weight))

        result = result.merge(self.validate_observed(observed))
        result = result.merge(self.validate_parameters(fit_parameters))
        return result
