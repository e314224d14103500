"""Configuration file support for pywelltest.

Supports YAML config files with reservoir properties, solver precision and
fitting controls. CLI flags override config file values.
"""

from dataclasses import asdict, dataclass, field, fields as dataclass_fields
import logging
from pathlib import Path
from typing import ClassVar, Literal

import yaml

logger = logging.getLogger(__name__)


@dataclass
class ReservoirConfig:
    """Shared reservoir and fluid properties for a project.

    These seed every model's default parameter set.

    Attributes:
        phi: Porosity (fraction, default 0.05)
        h: Net thickness (m, default 20)
        mu: Oil viscosity (mPa.s, default 0.5)
        B: Formation volume factor (m3/m3, default 1.05)
        Ct: Total compressibility (1/MPa, default 5e-4)
        q: Production rate (m3/d, default 5)
    """
    phi: float = 0.05
    h: float = 20.0
    mu: float = 0.5
    B: float = 1.05
    Ct: float = 5e-4
    q: float = 5.0


@dataclass
class SolverConfig:
    """Forward solver settings.

    Attributes:
        stehfest_n_high: Stehfest terms in accurate mode (default 8)
        stehfest_n_fast: Stehfest terms in fast mode, used while fitting (default 4)
        time_points: Default number of log-spaced time points (default 100)
        start_exp: Default grid start exponent, 10^start_exp hours (default -3)
        end_exp: Default grid end exponent, 10^end_exp hours (default 3)
        derivative_l_spacing: Bourdet L-spacing for model curves (default 0.1)
        quadrature_tol: Absolute tolerance of fracture influence integrals (default 1e-5)
        quadrature_max_depth: Bisection depth limit of the quadrature (default 10)
    """
    stehfest_n_high: int = 8
    stehfest_n_fast: int = 4
    time_points: int = 100
    start_exp: float = -3.0
    end_exp: float = 3.0
    derivative_l_spacing: float = 0.1
    quadrature_tol: float = 1e-5
    quadrature_max_depth: int = 10


@dataclass
class FittingDefaults:
    """Levenberg-Marquardt controls.

    Attributes:
        max_iterations: Outer iteration cap (default 50)
        max_damping_tries: Damping retries per iteration (default 5)
        initial_lambda: Starting damping factor (default 0.01)
        max_lambda: Damping above which a failed iteration stops the fit (default 1e10)
        convergence_mse: Mean squared residual that counts as converged (default 3e-3)
        weight: Pressure weight; derivative gets 1 - weight (default 0.5)
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


@dataclass
class ObservedDataConfig:
    """Observed data loading options.

    Attributes:
        l_spacing: Bourdet L-spacing for derivatives computed from field data (default 0.15)
        skip_rows: Header rows to skip before the data (default 0)
        test_type: 'drawdown' (delta P = |Pi - p|) or 'buildup' (delta P = |p - p0|)
        initial_pressure: Initial reservoir pressure Pi for drawdown tests (MPa)
        smoothing_span: Moving-average window applied to the derivative, 0 or 1 disables (default 0)
    """
    l_spacing: float = 0.15
    skip_rows: int = 0
    test_type: Literal["drawdown", "buildup"] = "drawdown"
    initial_pressure: float | None = None
    smoothing_span: int = 0


@dataclass
class WellTestConfig:
    """Complete pywelltest configuration.

    Attributes:
        reservoir: Shared reservoir/fluid properties
        solver: Forward solver settings
        fitting: Levenberg-Marquardt controls
        observed: Observed data loading options
    """
    reservoir: ReservoirConfig = field(default_factory=ReservoirConfig)
    solver: SolverConfig = field(default_factory=SolverConfig)
    fitting: FittingDefaults = field(default_factory=FittingDefaults)
    observed: ObservedDataConfig = field(default_factory=ObservedDataConfig)

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValueError: If any configuration value is invalid
        """
        errors = []

        for name in ("phi", "h", "mu", "B", "Ct", "q"):
            value = getattr(self.reservoir, name)
            if value <= 0:
                errors.append(f"reservoir.{name} ({value}) must be greater than 0")

        for name in ("stehfest_n_high", "stehfest_n_fast"):
            n = getattr(self.solver, name)
            if n <= 0 or n % 2 != 0:
                errors.append(f"solver.{name} ({n}) must be a positive even number")
        if self.solver.time_points < 2:
            errors.append(f"solver.time_points ({self.solver.time_points}) must be at least 2")
        if self.solver.start_exp >= self.solver.end_exp:
            errors.append(
                f"solver.start_exp ({self.solver.start_exp}) must be less than "
                f"solver.end_exp ({self.solver.end_exp})"
            )
        if self.solver.quadrature_max_depth < 0:
            errors.append(
                f"solver.quadrature_max_depth ({self.solver.quadrature_max_depth}) must be at least 0"
            )

        if self.fitting.max_iterations < 1:
            errors.append(f"fitting.max_iterations ({self.fitting.max_iterations}) must be at least 1")
        if self.fitting.max_damping_tries < 1:
            errors.append(
                f"fitting.max_damping_tries ({self.fitting.max_damping_tries}) must be at least 1"
            )
        if self.fitting.initial_lambda <= 0:
            errors.append(
                f"fitting.initial_lambda ({self.fitting.initial_lambda}) must be greater than 0"
            )
        if not 0.0 <= self.fitting.weight <= 1.0:
            errors.append(f"fitting.weight ({self.fitting.weight}) must be between 0 and 1")

        if self.observed.test_type not in ("drawdown", "buildup"):
            errors.append(
                f"observed.test_type ({self.observed.test_type}) must be 'drawdown' or 'buildup'"
            )
        if self.observed.l_spacing <= 0:
            errors.append(f"observed.l_spacing ({self.observed.l_spacing}) must be greater than 0")
        if self.observed.smoothing_span < 0:
            errors.append(
                f"observed.smoothing_span ({self.observed.smoothing_span}) must be at least 0"
            )

        if errors:
            raise ValueError("Invalid configuration:\n  - " + "\n  - ".join(errors))

    @classmethod
    def from_yaml(cls, filepath: Path | str) -> "WellTestConfig":
        """Load configuration from YAML file.

        Args:
            filepath: Path to YAML config file

        Returns:
            WellTestConfig instance

        Raises:
            ValueError: If configuration values are invalid
        """
        filepath = Path(filepath)
        with open(filepath) as f:
            data = yaml.safe_load(f) or {}

        config = cls.from_dict(data)
        config.validate()
        return config

    @staticmethod
    def _filter_unknown_keys(
        section_data: dict,
        dataclass_type: type,
        section_name: str,
    ) -> dict:
        """Filter unknown keys from a config section and warn about them."""
        known_keys = {f.name for f in dataclass_fields(dataclass_type)}
        unknown_keys = set(section_data) - known_keys
        if unknown_keys:
            logger.warning(
                f"Unknown key(s) in '{section_name}' config section: "
                f"{', '.join(sorted(unknown_keys))}. "
                f"Valid keys: {', '.join(sorted(known_keys))}"
            )
        return {k: v for k, v in section_data.items() if k in known_keys}

    _SECTION_TYPES: ClassVar[dict[str, type]] = {
        "reservoir": ReservoirConfig,
        "solver": SolverConfig,
        "fitting": FittingDefaults,
        "observed": ObservedDataConfig,
    }

    @classmethod
    def from_dict(cls, data: dict) -> "WellTestConfig":
        """Create configuration from dictionary.

        Unknown sections and keys are logged as warnings and ignored.

        Args:
            data: Configuration dictionary

        Returns:
            WellTestConfig instance
        """
        config = cls()

        unknown_sections = set(data) - set(cls._SECTION_TYPES)
        if unknown_sections:
            logger.warning(
                f"Unknown top-level config section(s): {', '.join(sorted(unknown_sections))}. "
                f"Valid sections: {', '.join(sorted(cls._SECTION_TYPES))}"
            )

        for section, dtype in cls._SECTION_TYPES.items():
            if section in data:
                section_data = cls._filter_unknown_keys(data[section] or {}, dtype, section)
                setattr(config, section, dtype(**section_data))

        return config

    def to_dict(self) -> dict:
        """Convert configuration to dictionary."""
        return asdict(self)

    def to_yaml(self, filepath: Path | str) -> None:
        """Save configuration to YAML file."""
        filepath = Path(filepath)
        with open(filepath, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)


def generate_default_config(filepath: Path | str) -> Path:
    """Generate a commented default configuration file.

    Args:
        filepath: Output file path

    Returns:
        Path to created file
    """
    filepath = Path(filepath)

    content = """# pywelltest Configuration File
# Composite shale-oil fractured horizontal well test analysis

# Shared reservoir and fluid properties (seed every model's defaults)
reservoir:
  phi: 0.05       # Porosity (fraction)
  h: 20.0         # Net thickness (m)
  mu: 0.5         # Oil viscosity (mPa.s)
  B: 1.05         # Formation volume factor (m3/m3)
  Ct: 0.0005      # Total compressibility (1/MPa)
  q: 5.0          # Production rate (m3/d)

# Forward solver
solver:
  stehfest_n_high: 8          # Stehfest terms for final curves (even)
  stehfest_n_fast: 4          # Stehfest terms while fitting (even)
  time_points: 100            # Default number of log-spaced time points
  start_exp: -3.0             # Grid starts at 10^start_exp hours
  end_exp: 3.0                # Grid ends at 10^end_exp hours
  derivative_l_spacing: 0.1   # Bourdet L-spacing for model curves
  quadrature_tol: 0.00001     # Fracture influence integral tolerance
  quadrature_max_depth: 10    # Quadrature bisection limit

# Levenberg-Marquardt fitting
fitting:
  max_iterations: 50          # Outer iteration cap
  max_damping_tries: 5        # Damping retries per iteration
  initial_lambda: 0.01        # Starting damping factor
  max_lambda: 10000000000.0   # Stop when a failed iteration pushes lambda above this
  convergence_mse: 0.003      # Mean squared log residual counted as converged
  weight: 0.5                 # Pressure weight (derivative weight = 1 - weight)
  log_step: 0.01              # Jacobian step in log10 space
  linear_step: 0.0001         # Jacobian step for S, nf and zero values
  curve_points: 100           # Points in the curve reported each iteration

# Observed data loading
observed:
  l_spacing: 0.15             # Bourdet L-spacing for field derivatives
  skip_rows: 0                # Header rows to skip
  test_type: drawdown         # drawdown or buildup
  initial_pressure: null      # Pi (MPa), required for drawdown tests
  smoothing_span: 0           # Derivative moving-average window (0 = off)
"""

    with open(filepath, "w") as f:
        f.write(content)

    return filepath
