"""Tests for parameter, curve and fit result export."""

import json

import numpy as np
import pandas as pd
import pytest

from pywelltest.config import WellTestConfig
from pywelltest.core.fitting import FitOutcome, FitResult
from pywelltest.core.models import FitParameter, ModelCurveData, ModelVariant
from pywelltest.export import (
    FitResultJsonExporter,
    ParameterExporter,
    curves_to_dataframe,
    save_curves,
)
from pywelltest.validation import ValidationIssue, ValidationResult


@pytest.fixture
def parameters():
    return [
        FitParameter("kf", 0.002, 1e-6, 10.0, is_fit=True, label="Inner region permeability", unit="mD"),
        FitParameter("S", 1.5, -5.0, 50.0, is_fit=False, label="Skin factor"),
    ]


@pytest.fixture
def curve():
    return ModelCurveData(
        time=np.array([0.1, 1.0, 10.0]),
        pressure=np.array([0.5, 1.0, 1.5]),
        derivative=np.array([0.2, 0.25, 0.3]),
    )


@pytest.fixture
def fit_result(parameters, curve):
    validation = ValidationResult(subject="Model 2")
    validation.add_issue(ValidationIssue.value_outside_bounds("kf", 20.0, 1e-6, 10.0))
    return FitResult(
        variant=ModelVariant.MODEL_2,
        outcome=FitOutcome.CONVERGED,
        parameters=parameters,
        values={"kf": 0.002, "S": 1.5},
        mse=1e-3,
        iterations=4,
        curve=curve,
        validation=validation,
    )


class TestParameterExporter:
    """Tests for ParameterExporter."""

    def test_dataframe(self, parameters):
        """One row per parameter."""
        df = ParameterExporter().to_dataframe(parameters)
        assert list(df.columns) == ["label", "name", "value", "unit"]
        assert df["name"].tolist() == ["kf", "S"]

    def test_text(self, parameters):
        """Text lines read 'label (name): value unit'."""
        text = ParameterExporter().to_text(parameters)
        lines = text.strip().split("\n")
        assert lines[0] == "Inner region permeability (kf): 0.002 mD"
        assert lines[1] == "Skin factor (S): 1.5"

    def test_save_csv(self, parameters, tmp_path):
        """A .csv suffix writes CSV."""
        path = ParameterExporter().save(parameters, tmp_path / "params.csv")
        df = pd.read_csv(path)
        assert df["value"].tolist() == [0.002, 1.5]

    def test_save_text(self, parameters, tmp_path):
        """Other suffixes write text."""
        path = ParameterExporter().save(parameters, tmp_path / "params.txt")
        assert "Skin factor (S): 1.5" in path.read_text()

    def test_label_falls_back_to_name(self):
        """Parameters without labels use their names."""
        text = ParameterExporter().to_text([FitParameter("nf", 4.0, 1.0, 50.0)])
        assert text == "nf (nf): 4\n"


class TestCurveExport:
    """Tests for curve tables."""

    def test_long_format(self, curve):
        """Labelled curves are stacked."""
        df = curves_to_dataframe({"kf = 0.001": curve, "kf = 0.01": curve})
        assert len(df) == 6
        assert df["label"].unique().tolist() == ["kf = 0.001", "kf = 0.01"]
        assert list(df.columns) == ["label", "time_h", "pressure_mpa", "derivative_mpa"]

    def test_empty(self):
        """No curves gives an empty table with the standard columns."""
        df = curves_to_dataframe({})
        assert df.empty
        assert "pressure_mpa" in df.columns

    def test_save(self, curve, tmp_path):
        """Curves round-trip through CSV."""
        path = save_curves({"model": curve}, tmp_path / "curve.csv")
        df = pd.read_csv(path)
        np.testing.assert_allclose(df["derivative_mpa"], curve.derivative)


class TestFitResultJsonExporter:
    """Tests for FitResultJsonExporter."""

    def test_structure(self, fit_result):
        """Exported dict carries the outcome, parameters and validation."""
        data = FitResultJsonExporter(WellTestConfig()).export_result(fit_result)

        assert data["variant"] == "model_2"
        assert data["outcome"] == "converged"
        assert data["iterations"] == 4
        assert data["mse"] == 1e-3
        assert data["parameters"][0]["name"] == "kf"
        assert data["parameters"][0]["fitted"] is True
        assert data["values"]["S"] == 1.5
        assert data["validation"]["warnings"] == 1
        assert data["validation"]["issues"][0]["code"] == "FV007"
        assert data["validation"]["issues"][0]["severity"] == "warning"
        assert data["curve"]["time_h"] == [0.1, 1.0, 10.0]
        assert data["config"]["fitting"]["weight"] == 0.5

    def test_without_curve(self, fit_result):
        """Curve arrays can be omitted."""
        data = FitResultJsonExporter(include_curve=False).export_result(fit_result)
        assert "curve" not in data

    def test_nan_mse_becomes_null(self, fit_result):
        """A fit that never evaluated exports mse as null."""
        fit_result.mse = float("nan")
        fit_result.validation = None
        data = FitResultJsonExporter().export_result(fit_result)
        assert data["mse"] is None
        assert data["validation"] == {"errors": 0, "warnings": 0, "issues": []}

    def test_save(self, fit_result, tmp_path):
        """The saved file is valid JSON."""
        path = FitResultJsonExporter().save(fit_result, tmp_path / "fit.json")
        with open(path) as f:
            data = json.load(f)
        assert data["model"] == "Model 2: constant storage + infinite boundary"
