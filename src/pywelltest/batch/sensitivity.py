"""Sensitivity analysis: one parameter swept over several values.

Each value yields an independent forward curve, so the sweep runs in
parallel worker processes.
"""

from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
import logging
import math

import numpy as np
from tqdm import tqdm

from ..config import SolverConfig
from ..core.forward import CompositeWellModel, generate_log_time_steps
from ..core.models import (
    ModelCurveData,
    ModelVariant,
    ParameterSet,
    default_parameters,
    sync_dependent_parameters,
)

logger = logging.getLogger(__name__)


@dataclass
class SensitivityConfig:
    """Configuration for a sensitivity sweep.

    Attributes:
        points: Curve points per value (at least 5 are used)
        max_time: Last time of the grid in hours (< 1e-3 falls back to 1000)
        workers: Number of parallel workers (None = auto, 1 = run in-process)
        high_precision: Use the high precision Stehfest setting
    """
    points: int = 100
    max_time: float = 1000.0
    workers: int | None = None
    high_precision: bool = True

    def time_grid(self) -> np.ndarray:
        """Log-spaced grid from 1e-3 h to max_time."""
        max_time = self.max_time if self.max_time >= 1e-3 else 1000.0
        return generate_log_time_steps(max(self.points, 5), -3.0, math.log10(max_time))


@dataclass
class SensitivityResult:
    """Curves of a sensitivity sweep.

    Attributes:
        variant: Model variant
        parameter: Name of the swept parameter
        values: Swept values in request order
        curves: Curve per value, aligned with values (None where it failed)
        errors: List of (value, error message) tuples
    """
    variant: ModelVariant
    parameter: str
    values: list[float]
    curves: list[ModelCurveData | None]
    errors: list[tuple[float, str]] = field(default_factory=list)

    @property
    def successful(self) -> int:
        """Count of curves computed."""
        return sum(1 for c in self.curves if c is not None)

    def label(self, index: int) -> str:
        """Legend label for one curve, e.g. 'kf = 0.001'."""
        return f"{self.parameter} = {self.values[index]:g}"


def _compute_single_curve(
    variant: ModelVariant,
    params: ParameterSet,
    times: np.ndarray,
    solver_config: SolverConfig,
    high_precision: bool,
) -> ModelCurveData:
    """Compute one curve of the sweep (worker function)."""
    model = CompositeWellModel(solver_config)
    return model.compute_curve(variant, params, times, high_precision=high_precision)


class SensitivityAnalyzer:
    """Computes forward curves for several values of one parameter."""

    def __init__(
        self,
        config: SensitivityConfig | None = None,
        solver_config: SolverConfig | None = None,
    ):
        """Initialize analyzer.

        Args:
            config: Sweep configuration
            solver_config: Forward solver settings
        """
        self.config = config or SensitivityConfig()
        self.solver_config = solver_config or SolverConfig()

    def build_parameter_sets(
        self,
        base: ParameterSet,
        parameter: str,
        values: list[float],
    ) -> list[ParameterSet]:
        """One parameter set per value, with LfD re-synced when L or Lf varies."""
        sets = []
        for value in values:
            params = dict(base)
            params[parameter] = float(value)
            if parameter in ("L", "Lf"):
                params = sync_dependent_parameters(params)
            sets.append(params)
        return sets

    def run(
        self,
        variant: ModelVariant,
        parameter: str,
        values: list[float],
        base: ParameterSet | None = None,
        show_progress: bool = True,
    ) -> SensitivityResult:
        """Sweep one parameter.

        Args:
            variant: Model variant
            parameter: Parameter name to vary
            values: Values to evaluate
            base: Base parameter set (variant defaults if None)
            show_progress: Whether to show a progress bar

        Returns:
            SensitivityResult with one curve per value

        Raises:
            ValueError: If values is empty
        """
        variant = ModelVariant.parse(variant)
        if not values:
            raise ValueError("Sensitivity analysis needs at least one value")

        if base is None:
            base = default_parameters(variant)
        base = sync_dependent_parameters(base) if "LfD" not in base else dict(base)

        times = self.config.time_grid()
        param_sets = self.build_parameter_sets(base, parameter, values)
        curves: list[ModelCurveData | None] = [None] * len(values)
        errors: list[tuple[float, str]] = []

        workers = self.config.workers
        if workers is None:
            import os
            workers = min(os.cpu_count() or 4, len(values))

        logger.info(
            f"Sensitivity of {variant.value} to {parameter}: "
            f"{len(values)} values, {len(times)} points, {workers} worker(s)"
        )

        if workers <= 1:
            iterator = enumerate(param_sets)
            if show_progress:
                iterator = tqdm(iterator, total=len(param_sets), desc=f"Varying {parameter}")
            for i, params in iterator:
                try:
                    curves[i] = _compute_single_curve(
                        variant, params, times, self.solver_config, self.config.high_precision
                    )
                except ValueError as e:
                    errors.append((float(values[i]), str(e)))
                    logger.error(f"{parameter}={values[i]:g} failed: {e}")
        else:
            with ProcessPoolExecutor(max_workers=workers) as executor:
                futures = {
                    executor.submit(
                        _compute_single_curve,
                        variant,
                        params,
                        times,
                        self.solver_config,
                        self.config.high_precision,
                    ): i
                    for i, params in enumerate(param_sets)
                }

                iterator = as_completed(futures)
                if show_progress:
                    iterator = tqdm(iterator, total=len(futures), desc=f"Varying {parameter}")

                for future in iterator:
                    i = futures[future]
                    try:
                        curves[i] = future.result()
                    except Exception as e:
                        errors.append((float(values[i]), str(e)))
                        logger.error(f"{parameter}={values[i]:g} failed: {e}")

        return SensitivityResult(
            variant=variant,
            parameter=parameter,
            values=[float(v) for v in values],
            curves=curves,
            errors=errors,
        )
