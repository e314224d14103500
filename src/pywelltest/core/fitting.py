"""Levenberg-Marquardt matching of model curves to observed well-test data.

Features:
- Log-space residuals on pressure and derivative with a user weight
- Central-difference Jacobian, log10 steps for scale parameters
- Damped normal equations with Marquardt diagonal scaling
- Bounds enforced on every trial, LfD kept in sync with Lf / L
- Iteration, progress and cancellation hooks for background use
"""

from dataclasses import dataclass, field
from enum import Enum
import logging
import math
import threading
from typing import TYPE_CHECKING, Any, Callable

import numpy as np
from scipy import linalg

from .forward import CompositeWellModel
from .models import (
    FitParameter,
    ModelCurveData,
    ModelVariant,
    ObservedDataset,
    ParameterSet,
    default_parameters,
    sync_dependent_parameters,
)

if TYPE_CHECKING:
    from ..config import WellTestConfig
    from ..validation import ValidationResult

logger = logging.getLogger(__name__)

# Parameters always stepped linearly (can be zero or negative, or are counts)
LINEAR_PARAMETERS = frozenset({"S", "nf"})

# Observed or model values at or below this are excluded from residuals
MIN_LOG_VALUE = 1e-10


class FitOutcome(str, Enum):
    """Why a fit stopped."""
    CONVERGED = "converged"
    CANCELLED = "cancelled"
    STALLED_AT_MAX_DAMPING = "stalled_at_max_damping"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    NO_ACTIVE_PARAMETERS = "no_active_parameters"


class FitRequestError(ValueError):
    """Raised when a fit request fails validation.

    Attributes:
        validation: ValidationResult listing the problems
    """

    def __init__(self, validation: "ValidationResult"):
        self.validation = validation
        super().__init__(str(validation))


@dataclass
class FittingConfig:
    """Configuration for Levenberg-Marquardt fitting.

    Attributes:
        max_iterations: Outer iteration cap (default 50)
        max_damping_tries: Damping retries per iteration (default 5)
        initial_lambda: Starting damping factor (default 0.01)
        max_lambda: Damping above which a failed iteration stops the fit (default 1e10)
        convergence_mse: Mean squared residual that counts as converged (default 3e-3)
        weight: Default pressure weight; the derivative gets 1 - weight (default 0.5)
        log_step: Central-difference step in log10 space (default 0.01)
        linear_step: Central-difference step in linear space (default 1e-4)
        curve_points: Points of the display curve sent with iteration updates (default 100)
    """
    max_iterations: int = 50
    max_damping_tries: int = 5
    initial_lambda: float = 0.01
    max_lambda: float = 1e10
    convergence_mse: float = 3e-3
    weight: float = 0.5
    log_step: float = 0.01
    linear_step: float = 1e-4
    curve_points: int = 100

    @classmethod
    def from_welltest_config(cls, config: "WellTestConfig") -> "FittingConfig":
        """Create FittingConfig from the fitting section of a WellTestConfig.

        Args:
            config: WellTestConfig instance

        Returns:
            FittingConfig with the configured controls
        """
        fitting = config.fitting
        return cls(
            max_iterations=fitting.max_iterations,
            max_damping_tries=fitting.max_damping_tries,
            initial_lambda=fitting.initial_lambda,
            max_lambda=fitting.max_lambda,
            convergence_mse=fitting.convergence_mse,
            weight=fitting.weight,
            log_step=fitting.log_step,
            linear_step=fitting.linear_step,
            curve_points=fitting.curve_points,
        )


@dataclass
class FitState:
    """Current best point of a running fit.

    Attributes:
        values: Full parameter set at the best point
        residuals: Residual vector at values
        sse: Sum of squared residuals
        damping: Current damping factor lambda
        iteration: Outer iterations started so far
    """
    values: ParameterSet
    residuals: np.ndarray
    sse: float
    damping: float
    iteration: int = 0

    @property
    def mse(self) -> float:
        """Mean squared residual."""
        return self.sse / max(len(self.residuals), 1)


@dataclass
class IterationUpdate:
    """Emitted for the initial state, every accepted step and the final result.

    Attributes:
        iteration: Outer iteration the update belongs to (0 for the initial state)
        mse: Mean squared residual at parameters
        parameters: Full parameter set (a copy)
        curve: Model curve for display
        is_final: True for the last update of a fit (full precision curve)
    """
    iteration: int
    mse: float
    parameters: ParameterSet
    curve: ModelCurveData
    is_final: bool = False


@dataclass
class FitProgress:
    """Emitted at the start of each outer iteration.

    Attributes:
        iteration: Zero-based outer iteration
        max_iterations: Iteration cap
        mse: Mean squared residual before the iteration
        damping: Damping factor before the iteration
    """
    iteration: int
    max_iterations: int
    mse: float
    damping: float

    @property
    def percent(self) -> int:
        """Progress as an integer percentage of the iteration cap."""
        return self.iteration * 100 // max(self.max_iterations, 1)


@dataclass
class FitResult:
    """Outcome of a Levenberg-Marquardt fit.

    Attributes:
        variant: Model variant that was fitted
        outcome: Why the fit stopped
        parameters: Input parameter list with fitted values written back
        values: Full synced parameter set at the best point
        mse: Mean squared residual at the best point (nan if never evaluated)
        iterations: Outer iterations performed
        curve: Full precision model curve at the best point (None if not computed)
        validation: Warnings collected while validating the request
    """
    variant: ModelVariant
    outcome: FitOutcome
    parameters: list[FitParameter]
    values: ParameterSet
    mse: float = float("nan")
    iterations: int = 0
    curve: ModelCurveData | None = None
    validation: "ValidationResult | None" = None

    @property
    def converged(self) -> bool:
        """Whether the convergence threshold was reached."""
        return self.outcome == FitOutcome.CONVERGED

    @property
    def fitted_values(self) -> dict[str, float]:
        """Values of the parameters that were adjusted."""
        return {p.name: p.value for p in self.parameters if p.is_fit}


FitEvent = IterationUpdate | FitProgress
EventCallback = Callable[[Any], None]


def _log_residual(observed: np.ndarray, model: np.ndarray) -> np.ndarray:
    """ln(observed) - ln(model), zero where either value is not positive."""
    out = np.zeros(len(observed))
    valid = (observed > MIN_LOG_VALUE) & (model > MIN_LOG_VALUE)
    out[valid] = np.log(observed[valid]) - np.log(model[valid])
    return out


def compute_residuals(
    observed: ObservedDataset,
    curve: ModelCurveData,
    weight: float,
) -> np.ndarray:
    """Weighted log residuals of a model curve against observed data.

    The pressure block covers min(len(observed), len(model)) points and the
    derivative block the shorter of the derivative series and that count.

    Args:
        observed: Observed dataset
        curve: Model curve evaluated at the observed times
        weight: Pressure weight; the derivative block gets 1 - weight

    Returns:
        Residual vector (never NaN)
    """
    count = min(len(observed.pressure), len(curve.pressure))
    pressure_block = weight * _log_residual(observed.pressure[:count], curve.pressure[:count])

    d_count = min(len(observed.derivative), len(curve.derivative), count)
    derivative_block = (1.0 - weight) * _log_residual(
        observed.derivative[:d_count], curve.derivative[:d_count]
    )
    return np.concatenate([pressure_block, derivative_block])


def is_log_sensitive(name: str, value: float) -> bool:
    """Whether a parameter is stepped in log10 space."""
    return value > 1e-12 and name not in LINEAR_PARAMETERS


class LevenbergMarquardtFitter:
    """Fits model parameters to observed pressure and derivative data."""

    def __init__(
        self,
        model: CompositeWellModel | None = None,
        config: FittingConfig | None = None,
    ):
        """Initialize fitter.

        Args:
            model: Forward model, uses default solver settings if None
            config: Fitting configuration, uses defaults if None
        """
        self.model = model or CompositeWellModel()
        self.config = config or FittingConfig()

    def validate_request(
        self,
        variant: ModelVariant,
        fit_parameters: list[FitParameter],
        observed: ObservedDataset | None,
        weight: float,
    ):
        """Validate a fit request without running it.

        Returns:
            ValidationResult with FV001-FV008 issues
        """
        from ..validation import FitRequestValidator

        return FitRequestValidator().validate(
            observed, fit_parameters, weight, subject=ModelVariant.parse(variant).display_name
        )

    def residuals(
        self,
        variant: ModelVariant,
        values: ParameterSet,
        observed: ObservedDataset,
        weight: float,
    ) -> np.ndarray:
        """Residual vector for a parameter set, model in fast precision."""
        curve = self.model.compute_curve(variant, values, observed.time, high_precision=False)
        return compute_residuals(observed, curve, weight)

    def jacobian(
        self,
        variant: ModelVariant,
        values: ParameterSet,
        names: list[str],
        observed: ObservedDataset,
        weight: float,
        n_residuals: int,
    ) -> np.ndarray:
        """Central-difference Jacobian of the residuals.

        Columns of log-sensitive parameters are derivatives with respect to
        log10 of the value.

        Args:
            variant: Model variant
            values: Parameter set at the expansion point
            names: Fitted parameter names (column order)
            observed: Observed dataset
            weight: Pressure weight
            n_residuals: Length of the residual vector

        Returns:
            Matrix of shape (n_residuals, len(names))
        """
        jac = np.zeros((n_residuals, len(names)))
        for j, name in enumerate(names):
            value = values[name]
            plus = dict(values)
            minus = dict(values)
            if is_log_sensitive(name, value):
                step = self.config.log_step
                log_value = math.log10(value)
                plus[name] = 10.0 ** (log_value + step)
                minus[name] = 10.0 ** (log_value - step)
            else:
                step = self.config.linear_step
                plus[name] = value + step
                minus[name] = value - step

            if name in ("L", "Lf"):
                plus = sync_dependent_parameters(plus)
                minus = sync_dependent_parameters(minus)

            r_plus = self.residuals(variant, plus, observed, weight)
            r_minus = self.residuals(variant, minus, observed, weight)
            if len(r_plus) == n_residuals and len(r_minus) == n_residuals:
                jac[:, j] = (r_plus - r_minus) / (2.0 * step)
        return jac

    def _trial_values(
        self,
        values: ParameterSet,
        fitted: list[FitParameter],
        delta: np.ndarray,
    ) -> ParameterSet:
        """Apply a step to the fitted parameters, clamp and sync LfD."""
        trial = dict(values)
        with np.errstate(over="ignore"):
            for param, step in zip(fitted, delta):
                old = values[param.name]
                if is_log_sensitive(param.name, old):
                    new = float(np.power(10.0, math.log10(old) + step))
                else:
                    new = old + step
                trial[param.name] = param.clamp(new)
        return sync_dependent_parameters(trial)

    def _emit(self, on_event: EventCallback | None, event: FitEvent) -> None:
        if on_event is not None:
            on_event(event)

    def _display_curve(self, variant: ModelVariant, values: ParameterSet) -> ModelCurveData:
        times = self.model.default_times(self.config.curve_points)
        return self.model.compute_curve(variant, values, times, high_precision=False)

    def fit(
        self,
        variant: ModelVariant,
        fit_parameters: list[FitParameter],
        observed: ObservedDataset,
        weight: float | None = None,
        on_event: EventCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> FitResult:
        """Fit the selected parameters to observed data.

        Parameters not present in fit_parameters take the variant defaults.
        Fitted parameters start clamped into their bounds and stay there.

        Args:
            variant: Model variant
            fit_parameters: Parameter list with bounds and fit flags
            observed: Observed dataset (times > 0)
            weight: Pressure weight in [0, 1] (config default if None)
            on_event: Called with IterationUpdate and FitProgress events
            cancel_event: Checked once per outer iteration

        Returns:
            FitResult with the best parameters found

        Raises:
            FitRequestError: If the request has validation errors other than
                an empty fit selection
        """
        variant = ModelVariant.parse(variant)
        if weight is None:
            weight = self.config.weight

        validation = self.validate_request(variant, fit_parameters, observed, weight)
        blocking = [i for i in validation.errors() if i.code != "FV004"]
        if blocking:
            raise FitRequestError(validation)

        fitted = [p for p in fit_parameters if p.is_fit]
        base = default_parameters(variant)
        base.update({p.name: p.value for p in fit_parameters})

        if not fitted:
            logger.info(f"{variant.value}: no parameters selected, nothing to fit")
            return FitResult(
                variant=variant,
                outcome=FitOutcome.NO_ACTIVE_PARAMETERS,
                parameters=list(fit_parameters),
                values=sync_dependent_parameters(base),
                validation=validation,
            )

        for param in fitted:
            base[param.name] = param.clamp(param.value)
        values = sync_dependent_parameters(base)
        names = [p.name for p in fitted]
        cfg = self.config

        logger.info(
            f"Fitting {variant.display_name}: {', '.join(names)} "
            f"on {len(observed)} points, weight={weight}"
        )

        residuals = self.residuals(variant, values, observed, weight)
        state = FitState(
            values=values,
            residuals=residuals,
            sse=float(np.dot(residuals, residuals)),
            damping=cfg.initial_lambda,
        )
        self._emit(on_event, IterationUpdate(
            iteration=0,
            mse=state.mse,
            parameters=dict(state.values),
            curve=self._display_curve(variant, state.values),
        ))

        outcome = FitOutcome.MAX_ITERATIONS_REACHED
        for iteration in range(cfg.max_iterations):
            if cancel_event is not None and cancel_event.is_set():
                outcome = FitOutcome.CANCELLED
                break
            if len(state.residuals) > 0 and state.mse < cfg.convergence_mse:
                outcome = FitOutcome.CONVERGED
                break

            state.iteration = iteration + 1
            self._emit(on_event, FitProgress(
                iteration=iteration,
                max_iterations=cfg.max_iterations,
                mse=state.mse,
                damping=state.damping,
            ))

            n_res = len(state.residuals)
            jac = self.jacobian(variant, state.values, names, observed, weight, n_res)

            n_params = len(names)
            hessian = np.zeros((n_params, n_params))
            for i in range(n_params):
                for j in range(i + 1):
                    hessian[i, j] = np.dot(jac[:, i], jac[:, j])
            hessian = np.tril(hessian) + np.tril(hessian, -1).T
            gradient = jac.T @ state.residuals

            accepted = False
            for _ in range(cfg.max_damping_tries):
                damped = hessian.copy()
                damped[np.diag_indices(n_params)] += state.damping * (1.0 + np.abs(np.diag(hessian)))

                try:
                    delta = linalg.solve(damped, -gradient, assume_a="sym")
                except (linalg.LinAlgError, ValueError):
                    delta = None
                if delta is None or not np.all(np.isfinite(delta)):
                    logger.debug(f"Iteration {iteration}: singular damped system, lambda={state.damping:.3g}")
                    state.damping *= 10.0
                    continue

                trial = self._trial_values(state.values, fitted, delta)
                trial_residuals = self.residuals(variant, trial, observed, weight)
                trial_sse = float(np.dot(trial_residuals, trial_residuals))

                if trial_sse < state.sse:
                    state.values = trial
                    state.residuals = trial_residuals
                    state.sse = trial_sse
                    state.damping /= 10.0
                    accepted = True
                    logger.debug(
                        f"Iteration {iteration}: accepted, mse={state.mse:.4g}, "
                        f"lambda={state.damping:.3g}"
                    )
                    self._emit(on_event, IterationUpdate(
                        iteration=state.iteration,
                        mse=state.mse,
                        parameters=dict(state.values),
                        curve=self._display_curve(variant, state.values),
                    ))
                    break

                state.damping *= 10.0

            if not accepted and state.damping > cfg.max_lambda:
                outcome = FitOutcome.STALLED_AT_MAX_DAMPING
                break
        else:
            if len(state.residuals) > 0 and state.mse < cfg.convergence_mse:
                outcome = FitOutcome.CONVERGED

        state.values = sync_dependent_parameters(state.values)
        final_curve = self.model.compute_curve(variant, state.values, high_precision=True)
        self._emit(on_event, IterationUpdate(
            iteration=state.iteration,
            mse=state.mse,
            parameters=dict(state.values),
            curve=final_curve,
            is_final=True,
        ))

        logger.info(
            f"Fit finished: {outcome.value} after {state.iteration} iterations, "
            f"mse={state.mse:.4g}"
        )

        return FitResult(
            variant=variant,
            outcome=outcome,
            parameters=[
                p.with_value(state.values[p.name]) if p.name in state.values else p
                for p in fit_parameters
            ],
            values=dict(state.values),
            mse=state.mse,
            iterations=state.iteration,
            curve=final_curve,
            validation=validation,
        )
