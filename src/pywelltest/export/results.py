"""Export fitted parameters, model curves and fit results."""

import json
import math
from datetime import datetime
from pathlib import Path
from typing import Any

import pandas as pd

from ..config import WellTestConfig
from ..core.fitting import FitResult
from ..core.models import FitParameter, ModelCurveData
from ..validation import ValidationResult


class ParameterExporter:
    """Export a parameter list as CSV or plain text.

    CSV files get one row per parameter (label, name, value, unit); any
    other suffix produces lines like ``Skin factor (S): 1.5``.
    """

    def to_dataframe(self, parameters: list[FitParameter]) -> pd.DataFrame:
        """Tabulate parameters."""
        return pd.DataFrame(
            [
                {
                    "label": p.label or p.name,
                    "name": p.name,
                    "value": p.value,
                    "unit": p.unit,
                }
                for p in parameters
            ],
            columns=["label", "name", "value", "unit"],
        )

    def to_text(self, parameters: list[FitParameter]) -> str:
        """Format parameters as one line each."""
        lines = []
        for p in parameters:
            line = f"{p.label or p.name} ({p.name}): {p.value:.10g} {p.unit}"
            lines.append(line.strip())
        return "\n".join(lines) + "\n"

    def save(self, parameters: list[FitParameter], output_path: Path | str) -> Path:
        """Write parameters to a file.

        Args:
            parameters: Parameters to export
            output_path: Output file path (.csv for CSV, anything else for text)

        Returns:
            Path to saved file
        """
        output_path = Path(output_path)
        if output_path.suffix.lower() == ".csv":
            self.to_dataframe(parameters).to_csv(output_path, index=False)
        else:
            output_path.write_text(self.to_text(parameters))
        return output_path


def curves_to_dataframe(curves: dict[str, ModelCurveData]) -> pd.DataFrame:
    """Stack labelled curves into one long table.

    Args:
        curves: Label -> curve

    Returns:
        DataFrame with columns label, time_h, pressure_mpa, derivative_mpa
    """
    frames = [
        pd.DataFrame({
            "label": label,
            "time_h": curve.time,
            "pressure_mpa": curve.pressure,
            "derivative_mpa": curve.derivative,
        })
        for label, curve in curves.items()
    ]
    if not frames:
        return pd.DataFrame(columns=["label", "time_h", "pressure_mpa", "derivative_mpa"])
    return pd.concat(frames, ignore_index=True)


def save_curves(curves: dict[str, ModelCurveData], output_path: Path | str) -> Path:
    """Write labelled curves to CSV."""
    output_path = Path(output_path)
    curves_to_dataframe(curves).to_csv(output_path, index=False)
    return output_path


class FitResultJsonExporter:
    """Export a fit result in JSON format.

    Produces a structured JSON file containing configuration, the fit
    outcome, parameters, the final curve and validation issues.
    """

    def __init__(self, config: WellTestConfig | None = None, include_curve: bool = True):
        """Initialize exporter.

        Args:
            config: Configuration (included in export)
            include_curve: Whether to include the final curve arrays
        """
        self.config = config or WellTestConfig()
        self.include_curve = include_curve

    def _export_validation(self, validation: ValidationResult | None) -> dict[str, Any]:
        """Export validation results."""
        if validation is None:
            return {"errors": 0, "warnings": 0, "issues": []}

        issues = []
        for issue in validation.issues:
            issues.append({
                "code": issue.code,
                "severity": issue.severity.name.lower(),
                "message": issue.message,
                "guidance": issue.guidance,
            })

        return {
            "errors": validation.error_count,
            "warnings": validation.warning_count,
            "issues": issues,
        }

    def export_result(self, result: FitResult) -> dict[str, Any]:
        """Export a fit result to a JSON-compatible dict."""
        data: dict[str, Any] = {
            "generated": datetime.now().isoformat(timespec="seconds"),
            "config": self.config.to_dict(),
            "variant": result.variant.value,
            "model": result.variant.display_name,
            "outcome": result.outcome.value,
            "iterations": result.iterations,
            "mse": None if math.isnan(result.mse) else result.mse,
            "parameters": [
                {
                    "name": p.name,
                    "label": p.label,
                    "value": p.value,
                    "unit": p.unit,
                    "min": p.min_value,
                    "max": p.max_value,
                    "fitted": p.is_fit,
                }
                for p in result.parameters
            ],
            "values": {k: float(v) for k, v in result.values.items()},
            "validation": self._export_validation(result.validation),
        }

        if self.include_curve and result.curve is not None:
            data["curve"] = {
                "time_h": result.curve.time.tolist(),
                "pressure_mpa": result.curve.pressure.tolist(),
                "derivative_mpa": result.curve.derivative.tolist(),
            }
        return data

    def save(self, result: FitResult, output_path: Path | str) -> Path:
        """Export a fit result and save it to a JSON file.

        Returns:
            Path to saved file
        """
        output_path = Path(output_path)
        with open(output_path, "w") as f:
            json.dump(self.export_result(result), f, indent=2)
        return output_path
