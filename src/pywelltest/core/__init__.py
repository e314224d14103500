"""Core composite well-test models, forward solver and fitting."""

from .models import (
    FitParameter,
    ModelCurveData,
    ModelVariant,
    ObservedDataset,
    OuterBoundary,
    default_fit_parameters,
    default_parameters,
    sync_dependent_parameters,
)
from .forward import CompositeWellModel, compute_curve, generate_log_time_steps
from .fitting import (
    FitOutcome,
    FitProgress,
    FitRequestError,
    FitResult,
    FittingConfig,
    IterationUpdate,
    LevenbergMarquardtFitter,
)
from .session import FitCompleted, FitSession

__all__ = [
    "FitParameter",
    "ModelCurveData",
    "ModelVariant",
    "ObservedDataset",
    "OuterBoundary",
    "default_fit_parameters",
    "default_parameters",
    "sync_dependent_parameters",
    "CompositeWellModel",
    "compute_curve",
    "generate_log_time_steps",
    "FitOutcome",
    "FitProgress",
    "FitRequestError",
    "FitResult",
    "FittingConfig",
    "IterationUpdate",
    "LevenbergMarquardtFitter",
    "FitCompleted",
    "FitSession",
]
