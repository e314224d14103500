"""Batch forward computations.

- SensitivityAnalyzer: Sweep one parameter and compute a curve per value
"""

from .sensitivity import SensitivityAnalyzer, SensitivityConfig, SensitivityResult

__all__ = [
    "SensitivityAnalyzer",
    "SensitivityConfig",
    "SensitivityResult",
]
