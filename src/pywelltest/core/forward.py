"""Forward model: theoretical pressure and derivative curves in field units.

Converts physical times to dimensionless time, inverts the composite
Laplace solution and rescales the result to MPa:

    tD = 14.4 * kf * t / (phi * mu * Ct * L^2)
    P  = 1.842e-3 * q * mu * B / (kf * h) * pD
"""

import logging

import numpy as np

from ..config import SolverConfig
from .inversion import pressure_and_derivative
from .laplace import CompositeLaplaceSolver, LaplaceParameters
from .models import ModelCurveData, ModelVariant, ParameterSet, sync_dependent_parameters

logger = logging.getLogger(__name__)

# Used when a parameter set omits a physical property
FALLBACK_VALUES: dict[str, float] = {
    "phi": 0.05,
    "mu": 0.5,
    "B": 1.05,
    "Ct": 5e-4,
    "q": 5.0,
    "h": 20.0,
    "kf": 1e-3,
    "L": 1000.0,
}


def generate_log_time_steps(count: int, start_exp: float, end_exp: float) -> np.ndarray:
    """Log-spaced times from 10^start_exp to 10^end_exp (inclusive).

    Args:
        count: Number of points
        start_exp: Exponent of the first time
        end_exp: Exponent of the last time

    Returns:
        Time array in hours
    """
    if count <= 0:
        return np.empty(0)
    if count == 1:
        return np.array([10.0 ** start_exp])
    return np.logspace(start_exp, end_exp, count)


def dimensionless_time(t: np.ndarray, params: ParameterSet) -> np.ndarray:
    """Convert times in hours to dimensionless time tD."""
    value = _with_fallback(params)
    scale = 14.4 * value["kf"] / (value["phi"] * value["mu"] * value["Ct"] * value["L"] ** 2)
    return scale * np.asarray(t, dtype=float)


def pressure_factor(params: ParameterSet) -> float:
    """MPa per unit of dimensionless pressure."""
    value = _with_fallback(params)
    return 1.842e-3 * value["q"] * value["mu"] * value["B"] / (value["kf"] * value["h"])


def _with_fallback(params: ParameterSet) -> dict[str, float]:
    return {name: params.get(name, default) for name, default in FALLBACK_VALUES.items()}


class CompositeWellModel:
    """Theoretical curve generator for all model variants.

    Holds only read-only solver settings; every call works on its own
    copies, so one instance can be shared between threads.
    """

    def __init__(self, solver_config: SolverConfig | None = None):
        """Initialize model.

        Args:
            solver_config: Solver settings, uses defaults if None
        """
        self.config = solver_config or SolverConfig()

    def default_times(self, count: int | None = None) -> np.ndarray:
        """Default log-spaced time grid from the solver settings."""
        return generate_log_time_steps(
            count if count is not None else self.config.time_points,
            self.config.start_exp,
            self.config.end_exp,
        )

    def compute_curve(
        self,
        variant: ModelVariant,
        params: ParameterSet,
        times: np.ndarray | None = None,
        high_precision: bool = True,
    ) -> ModelCurveData:
        """Compute pressure and derivative at the given times.

        Args:
            variant: Model variant
            params: Parameter set (not modified)
            times: Times in hours; the default grid is used when None or empty
            high_precision: Use stehfest_n_high terms instead of stehfest_n_fast

        Returns:
            ModelCurveData aligned to the requested times
        """
        variant = ModelVariant.parse(variant)
        if times is None or len(times) == 0:
            t = self.default_times()
        else:
            t = np.array(times, dtype=float)

        if "LfD" not in params:
            params = sync_dependent_parameters(params)

        n_terms = self.config.stehfest_n_high if high_precision else self.config.stehfest_n_fast
        solver = CompositeLaplaceSolver(
            variant,
            LaplaceParameters.from_parameter_set(params),
            self.config.quadrature_tol,
            self.config.quadrature_max_depth,
        )

        td = dimensionless_time(t, params)
        with np.errstate(all="ignore"):
            pd, dpd = pressure_and_derivative(
                td,
                solver,
                n_terms,
                params.get("gamaD", 0.0),
                self.config.derivative_l_spacing,
            )
            factor = pressure_factor(params)
            pressure = factor * pd
            derivative = factor * dpd

        pressure[~np.isfinite(pressure)] = 0.0
        derivative[~np.isfinite(derivative)] = 0.0

        logger.debug(
            f"{variant.value}: {len(t)} points, N={n_terms}, "
            f"P range [{pressure.min() if len(pressure) else 0:.4g}, "
            f"{pressure.max() if len(pressure) else 0:.4g}] MPa"
        )
        return ModelCurveData(time=t, pressure=pressure, derivative=derivative)


def compute_curve(
    variant: ModelVariant,
    params: ParameterSet,
    times: np.ndarray | None = None,
    high_precision: bool = True,
    solver_config: SolverConfig | None = None,
) -> ModelCurveData:
    """Convenience wrapper around CompositeWellModel.compute_curve."""
    return CompositeWellModel(solver_config).compute_curve(
        variant, params, times, high_precision
    )
