"""Export modules for fitted parameters, curves and fit results."""

from .results import FitResultJsonExporter, ParameterExporter, curves_to_dataframe, save_curves

__all__ = ["FitResultJsonExporter", "ParameterExporter", "curves_to_dataframe", "save_curves"]
