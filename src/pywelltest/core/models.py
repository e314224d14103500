"""Data model for the composite shale-oil well-test model.

Model Variants
--------------

Six variants combine an outer boundary condition with a wellbore storage
treatment:

    Variant   Outer boundary       Wellbore storage
    -------   ------------------   -------------------------------
    MODEL_1   infinite             variable (cD and skin active)
    MODEL_2   infinite             constant
    MODEL_3   closed (no-flow)     variable
    MODEL_4   closed (no-flow)     constant
    MODEL_5   constant pressure    variable
    MODEL_6   constant pressure    constant

Parameters
----------

A parameter set is a plain ``dict[str, float]``:

    Physical:  phi (fraction), h (m), mu (mPa.s), B (m3/m3), Ct (1/MPa),
               q (m3/d)
    Model:     nf (fracture count), kf, km (mD), L (well length, m),
               Lf (fracture half-length, m), LfD = Lf / L, rmD (inner
               region radius), omega1, omega2 (storativity ratios),
               lambda1 (interporosity flow coefficient), gamaD (stress
               sensitivity), cD (wellbore storage), S (skin), reD (outer
               boundary radius)

LfD is a dependent parameter and is kept equal to Lf / L by
``sync_dependent_parameters``.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Iterator

import numpy as np

if TYPE_CHECKING:
    from ..config import ReservoirConfig


ParameterSet = dict[str, float]

PHYSICAL_PARAMETERS = ("phi", "h", "mu", "B", "Ct", "q")


class OuterBoundary(str, Enum):
    """Outer boundary condition of the composite reservoir."""
    INFINITE = "infinite"
    CLOSED = "closed"
    CONSTANT_PRESSURE = "constant_pressure"


class ModelVariant(str, Enum):
    """Boundary / wellbore-storage combination selecting the solver branch."""
    MODEL_1 = "model_1"
    MODEL_2 = "model_2"
    MODEL_3 = "model_3"
    MODEL_4 = "model_4"
    MODEL_5 = "model_5"
    MODEL_6 = "model_6"

    @property
    def boundary(self) -> OuterBoundary:
        """Outer boundary condition for this variant."""
        return _VARIANT_TRAITS[self][0]

    @property
    def has_variable_storage(self) -> bool:
        """Whether wellbore storage and skin are convolved into the solution."""
        return _VARIANT_TRAITS[self][1]

    @property
    def display_name(self) -> str:
        """Human readable description."""
        storage = "variable storage" if self.has_variable_storage else "constant storage"
        boundary = self.boundary.value.replace("_", " ")
        return f"Model {self.number}: {storage} + {boundary} boundary"

    @property
    def number(self) -> int:
        """1-based variant number."""
        return int(self.value.split("_")[1])

    @property
    def active_parameters(self) -> tuple[str, ...]:
        """Names of parameters that are meaningful for this variant."""
        names = list(PHYSICAL_PARAMETERS) + [
            "nf", "kf", "km", "L", "Lf", "LfD", "rmD",
            "omega1", "omega2", "lambda1", "gamaD",
        ]
        if self.has_variable_storage:
            names += ["cD", "S"]
        if self.boundary != OuterBoundary.INFINITE:
            names.append("reD")
        return tuple(names)

    @classmethod
    def parse(cls, value: "str | int | ModelVariant") -> "ModelVariant":
        """Parse a variant from 'model_2', 'Model_2', '2' or 2.

        Raises:
            ValueError: If value does not name a variant
        """
        if isinstance(value, ModelVariant):
            return value
        text = str(value).strip().lower()
        if text.isdigit():
            text = f"model_{text}"
        try:
            return cls(text)
        except ValueError:
            valid = ", ".join(v.value for v in cls)
            raise ValueError(f"Unknown model variant: {value!r}. Valid: {valid}") from None


_VARIANT_TRAITS: dict[ModelVariant, tuple[OuterBoundary, bool]] = {
    ModelVariant.MODEL_1: (OuterBoundary.INFINITE, True),
    ModelVariant.MODEL_2: (OuterBoundary.INFINITE, False),
    ModelVariant.MODEL_3: (OuterBoundary.CLOSED, True),
    ModelVariant.MODEL_4: (OuterBoundary.CLOSED, False),
    ModelVariant.MODEL_5: (OuterBoundary.CONSTANT_PRESSURE, True),
    ModelVariant.MODEL_6: (OuterBoundary.CONSTANT_PRESSURE, False),
}


def sync_dependent_parameters(params: ParameterSet) -> ParameterSet:
    """Return a copy of params with LfD recomputed from Lf / L.

    A zero or missing well length forces LfD = 0.
    """
    synced = dict(params)
    length = synced.get("L", 0.0)
    if length > 1e-9:
        synced["LfD"] = synced.get("Lf", 0.0) / length
    else:
        synced["LfD"] = 0.0
    return synced


@dataclass
class FitParameter:
    """A model parameter as seen by the fitting engine.

    Attributes:
        name: Parameter key in the ParameterSet
        value: Current value
        min_value: Lower bound (inclusive)
        max_value: Upper bound (inclusive)
        is_fit: Whether the parameter is adjusted by the optimizer
        is_visible: Whether the parameter is shown to the user
        label: Display label
        unit: Display unit
    """
    name: str
    value: float
    min_value: float
    max_value: float
    is_fit: bool = False
    is_visible: bool = True
    label: str = ""
    unit: str = ""

    def clamp(self, value: float) -> float:
        """Clamp a candidate value into [min_value, max_value]."""
        return max(self.min_value, min(value, self.max_value))

    def with_value(self, value: float) -> "FitParameter":
        """Copy of this parameter with a new value; bounds and flags unchanged."""
        return replace(self, value=value)


@dataclass
class ObservedDataset:
    """Field-observed pressure transient data.

    Attributes:
        time: Elapsed time (h), strictly positive
        pressure: Pressure difference delta P (MPa)
        derivative: Bourdet derivative of delta P w.r.t. ln(t) (MPa)
    """
    time: np.ndarray = field(default_factory=lambda: np.empty(0))
    pressure: np.ndarray = field(default_factory=lambda: np.empty(0))
    derivative: np.ndarray = field(default_factory=lambda: np.empty(0))

    def __post_init__(self) -> None:
        self.time = np.asarray(self.time, dtype=float)
        self.pressure = np.asarray(self.pressure, dtype=float)
        self.derivative = np.asarray(self.derivative, dtype=float)

    @classmethod
    def from_arrays(cls, time, pressure, derivative) -> "ObservedDataset":
        """Build a dataset from any array-like sequences."""
        return cls(time=time, pressure=pressure, derivative=derivative)

    @property
    def is_empty(self) -> bool:
        """True when there are no time samples."""
        return len(self.time) == 0

    def __len__(self) -> int:
        return len(self.time)


@dataclass
class ModelCurveData:
    """Theoretical curve produced by one forward evaluation.

    Attributes:
        time: Time points (h), in the order requested
        pressure: Pressure difference (MPa)
        derivative: Log-time pressure derivative (MPa)
    """
    time: np.ndarray
    pressure: np.ndarray
    derivative: np.ndarray

    def __iter__(self) -> Iterator[np.ndarray]:
        return iter((self.time, self.pressure, self.derivative))

    def __len__(self) -> int:
        return len(self.time)


# name -> (min, max, fit by default, label, unit)
_PARAMETER_TABLE: dict[str, tuple[float, float, bool, str, str]] = {
    "kf": (1e-6, 10.0, True, "Inner region permeability", "mD"),
    "km": (1e-8, 1.0, True, "Outer region permeability", "mD"),
    "L": (10.0, 1e4, False, "Horizontal well length", "m"),
    "Lf": (1.0, 1000.0, False, "Fracture half-length", "m"),
    "nf": (1.0, 50.0, False, "Number of fractures", ""),
    "rmD": (1.0, 100.0, False, "Inner region radius (dimensionless)", ""),
    "omega1": (1e-4, 1.0, True, "Fracture storativity ratio", ""),
    "omega2": (1e-4, 1.0, True, "Matrix storativity ratio", ""),
    "lambda1": (1e-9, 1.0, True, "Interporosity flow coefficient", ""),
    "gamaD": (0.0, 1.0, False, "Stress sensitivity coefficient", ""),
    "cD": (0.0, 100.0, True, "Wellbore storage (dimensionless)", ""),
    "S": (-5.0, 50.0, True, "Skin factor", ""),
    "reD": (1.0, 1000.0, False, "Outer boundary radius (dimensionless)", ""),
    "phi": (1e-3, 1.0, False, "Porosity", "fraction"),
    "h": (0.1, 1000.0, False, "Net thickness", "m"),
    "mu": (1e-3, 1000.0, False, "Oil viscosity", "mPa.s"),
    "B": (0.5, 5.0, False, "Formation volume factor", "m3/m3"),
    "Ct": (1e-7, 1e-1, False, "Total compressibility", "1/MPa"),
    "q": (1e-3, 1e5, False, "Production rate", "m3/d"),
}


def default_parameters(
    variant: ModelVariant,
    reservoir: "ReservoirConfig | None" = None,
) -> ParameterSet:
    """Default parameter set for a model variant.

    Shared reservoir/fluid properties come from the injected reservoir
    configuration; storage/skin defaults are only present for variable
    storage variants and reD only for bounded variants.

    Args:
        variant: Model variant
        reservoir: Project reservoir settings (uses ReservoirConfig defaults if None)

    Returns:
        New ParameterSet
    """
    if reservoir is None:
        from ..config import ReservoirConfig
        reservoir = ReservoirConfig()

    params: ParameterSet = {
        "phi": reservoir.phi,
        "h": reservoir.h,
        "mu": reservoir.mu,
        "B": reservoir.B,
        "Ct": reservoir.Ct,
        "q": reservoir.q,
        "nf": 4.0,
        "kf": 1e-3,
        "km": 1e-4,
        "L": 1000.0,
        "Lf": 100.0,
        "LfD": 0.1,
        "rmD": 4.0,
        "omega1": 0.4,
        "omega2": 0.08,
        "lambda1": 1e-3,
        "gamaD": 0.02,
    }

    if variant.has_variable_storage:
        params["cD"] = 0.01
        params["S"] = 1.0

    if variant.boundary != OuterBoundary.INFINITE:
        params["reD"] = 10.0

    return sync_dependent_parameters(params)


def default_fit_parameters(
    variant: ModelVariant,
    reservoir: "ReservoirConfig | None" = None,
) -> list[FitParameter]:
    """Fit parameter list for a variant, seeded from default_parameters.

    LfD is omitted because it is always derived from Lf and L.
    """
    values = default_parameters(variant, reservoir)
    fit_params = []
    for name, value in values.items():
        if name == "LfD":
            continue
        lo, hi, is_fit, label, unit = _PARAMETER_TABLE[name]
        fit_params.append(FitParameter(
            name=name,
            value=value,
            min_value=lo,
            max_value=hi,
            is_fit=is_fit,
            is_visible=name not in PHYSICAL_PARAMETERS,
            label=label,
            unit=unit,
        ))
    return fit_params


def parameters_from_fit_list(fit_parameters: list[FitParameter]) -> ParameterSet:
    """Collapse a FitParameter list into a synced ParameterSet."""
    return sync_dependent_parameters({p.name: p.value for p in fit_parameters})
