"""Tests for CLI commands."""

import json
import tempfile
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
import yaml
from typer.testing import CliRunner

from pywelltest.cli.commands import app
from pywelltest.config import SolverConfig
from pywelltest.core.forward import CompositeWellModel
from pywelltest.core.models import ModelVariant, default_parameters

runner = CliRunner()

FAST_CONFIG = {
    "solver": {"time_points": 10},
    "fitting": {"max_iterations": 15, "curve_points": 10},
}


@pytest.fixture
def workdir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config_file(workdir):
    path = workdir / "fast.yaml"
    path.write_text(yaml.dump(FAST_CONFIG))
    return path


@pytest.fixture
def drawdown_file(workdir):
    """Gauge pressures of a Model 2 drawdown with kf = 2e-3 and Pi = 30 MPa."""
    params = default_parameters(ModelVariant.MODEL_2)
    params["kf"] = 2e-3
    model = CompositeWellModel(SolverConfig())
    curve = model.compute_curve(ModelVariant.MODEL_2, params, np.logspace(-1, 2, 5), high_precision=False)

    path = workdir / "drawdown.csv"
    pd.DataFrame({"time": curve.time, "pressure": 30.0 - curve.pressure}).to_csv(path, index=False)
    return path


class TestInitCommand:
    """Tests for the init command."""

    def test_creates_config(self, workdir):
        """init writes a loadable config file."""
        output = workdir / "pywelltest.yaml"
        result = runner.invoke(app, ["init", "-o", str(output)])

        assert result.exit_code == 0
        assert "Config file created" in result.output
        assert output.exists()
        assert "stehfest_n_high" in output.read_text()

    def test_existing_file_not_overwritten(self, workdir):
        """Declining the prompt keeps the existing file."""
        output = workdir / "pywelltest.yaml"
        output.write_text("keep me\n")
        result = runner.invoke(app, ["init", "-o", str(output)], input="n\n")

        assert result.exit_code == 0
        assert output.read_text() == "keep me\n"


class TestModelsCommand:
    """Tests for the models command."""

    def test_lists_variants(self):
        """Every variant and its parameters are listed."""
        result = runner.invoke(app, ["models"])

        assert result.exit_code == 0
        for variant in ModelVariant:
            assert f"{variant.value}: {variant.display_name}" in result.output
        assert "kf" in result.output
        assert "* = fitted by default" in result.output


class TestCurveCommand:
    """Tests for the curve command."""

    def test_single_curve(self):
        """A fast curve prints a table with one row per point."""
        result = runner.invoke(app, ["curve", "model_2", "-n", "5", "--max-time", "100", "--fast"])

        assert result.exit_code == 0
        assert "Model 2" in result.output
        assert "t(h)\t\tDp(MPa)\t\tdDp(MPa)" in result.output
        rows = [line for line in result.output.splitlines() if line.count("\t") == 2]
        assert len(rows) == 5

    def test_overrides_and_csv(self, workdir):
        """--set overrides apply and -o writes a CSV."""
        output = workdir / "curve.csv"
        result = runner.invoke(
            app,
            ["curve", "2", "--set", "kf=0.005", "-n", "5", "--max-time", "100", "--fast", "-o", str(output)],
        )

        assert result.exit_code == 0
        df = pd.read_csv(output)
        assert len(df) == 5
        assert df["label"].unique().tolist() == ["model"]

    def test_sensitivity_sweep(self, workdir):
        """--vary writes one labelled curve per value."""
        output = workdir / "sweep.csv"
        result = runner.invoke(
            app,
            [
                "curve", "model_4",
                "--vary", "reD=5,20",
                "-n", "5",
                "--max-time", "100",
                "--fast",
                "-w", "1",
                "-o", str(output),
            ],
        )

        assert result.exit_code == 0
        assert "Sensitivity parameter: reD" in result.output
        df = pd.read_csv(output)
        assert df["label"].unique().tolist() == ["reD = 5", "reD = 20"]

    def test_invalid_variant(self):
        """Unknown variants exit with an error."""
        result = runner.invoke(app, ["curve", "model_9"])
        assert result.exit_code == 1
        assert "Unknown model variant" in result.output

    def test_parameter_not_in_variant(self):
        """reD is rejected for infinite-boundary variants."""
        result = runner.invoke(app, ["curve", "model_2", "--set", "reD=10"])
        assert result.exit_code == 1
        assert "Unknown parameter(s)" in result.output

    def test_malformed_assignment(self):
        """--set without '=' is a usage error."""
        result = runner.invoke(app, ["curve", "model_2", "--set", "kf"])
        assert result.exit_code == 2

    def test_invalid_config(self, workdir):
        """A config with invalid values exits with an error."""
        path = workdir / "bad.yaml"
        path.write_text(yaml.dump({"fitting": {"weight": 3.0}}))
        result = runner.invoke(app, ["curve", "model_2", "-c", str(path)])
        assert result.exit_code == 1
        assert "fitting.weight" in result.output


class TestFitCommand:
    """Tests for the fit command."""

    def test_drawdown_fit(self, workdir, config_file, drawdown_file):
        """Fitting kf to a synthetic drawdown converges and writes outputs."""
        json_out = workdir / "fit.json"
        params_out = workdir / "params.csv"
        result = runner.invoke(
            app,
            [
                "fit", str(drawdown_file), "model_2",
                "-c", str(config_file),
                "--pi", "30",
                "--fit", "kf",
                "-o", str(json_out),
                "--params-out", str(params_out),
            ],
        )

        assert result.exit_code == 0, result.output
        assert "5 points" in result.output
        assert "Outcome: converged" in result.output

        with open(json_out) as f:
            data = json.load(f)
        assert data["outcome"] == "converged"
        assert data["values"]["kf"] == pytest.approx(2e-3, rel=0.25)

        df = pd.read_csv(params_out)
        assert "kf" in df["name"].tolist()

    def test_drawdown_without_initial_pressure(self, drawdown_file):
        """Drawdown data without Pi cannot be loaded."""
        result = runner.invoke(app, ["fit", str(drawdown_file), "model_2", "--fit", "kf"])
        assert result.exit_code == 1
        assert "initial_pressure" in result.output

    def test_invalid_test_type(self, drawdown_file):
        """Only drawdown and buildup are accepted."""
        result = runner.invoke(
            app, ["fit", str(drawdown_file), "model_2", "--test-type", "injection"]
        )
        assert result.exit_code == 1
        assert "Invalid test type" in result.output

    def test_invalid_weight_rejected(self, config_file, drawdown_file):
        """An out-of-range weight fails validation before fitting."""
        result = runner.invoke(
            app,
            [
                "fit", str(drawdown_file), "model_2",
                "-c", str(config_file),
                "--pi", "30",
                "--fit", "kf",
                "--weight", "1.5",
            ],
        )
        assert result.exit_code == 1
        assert "FV005" in result.output
