"""Tests for Levenberg-Marquardt fitting."""

import threading

import numpy as np
import pytest

from pywelltest.config import FittingDefaults, SolverConfig, WellTestConfig
from pywelltest.core.fitting import (
    FitOutcome,
    FitProgress,
    FitRequestError,
    FitResult,
    FittingConfig,
    IterationUpdate,
    LevenbergMarquardtFitter,
    compute_residuals,
    is_log_sensitive,
)
from pywelltest.core.forward import CompositeWellModel
from pywelltest.core.models import (
    FitParameter,
    ModelCurveData,
    ModelVariant,
    ObservedDataset,
    default_fit_parameters,
    default_parameters,
)
from pywelltest.validation import ValidationResult

TRUE_KF = 2e-3


@pytest.fixture(scope="module")
def model():
    """Small default grid keeps the final full precision curve cheap."""
    return CompositeWellModel(SolverConfig(time_points=10))


@pytest.fixture(scope="module")
def synthetic(model):
    """Model 2 curve with kf = 2e-3, as observed data."""
    params = default_parameters(ModelVariant.MODEL_2)
    params["kf"] = TRUE_KF
    times = np.logspace(-1, 2, 5)
    curve = model.compute_curve(ModelVariant.MODEL_2, params, times, high_precision=False)
    return ObservedDataset(time=curve.time, pressure=curve.pressure, derivative=curve.derivative)


def kf_only(**overrides) -> list[FitParameter]:
    """Model 2 defaults with only kf selected for fitting."""
    params = []
    for param in default_fit_parameters(ModelVariant.MODEL_2):
        param.is_fit = param.name == "kf"
        if param.name in overrides:
            param = param.with_value(overrides[param.name])
        params.append(param)
    return params


class TestFittingConfig:
    """Tests for FittingConfig class."""

    def test_default_values(self):
        """Test default configuration values."""
        config = FittingConfig()
        assert config.max_iterations == 50
        assert config.max_damping_tries == 5
        assert config.initial_lambda == 0.01
        assert config.max_lambda == 1e10
        assert config.convergence_mse == 3e-3
        assert config.weight == 0.5

    def test_from_welltest_config(self):
        """Test creation from the fitting section of a project config."""
        wt_config = WellTestConfig(fitting=FittingDefaults(max_iterations=7, weight=0.8, curve_points=20))
        config = FittingConfig.from_welltest_config(wt_config)
        assert config.max_iterations == 7
        assert config.weight == 0.8
        assert config.curve_points == 20


class TestResiduals:
    """Tests for compute_residuals() and step selection."""

    def _curve(self, pressure, derivative):
        time = np.arange(1, len(pressure) + 1, dtype=float)
        return ModelCurveData(time, np.asarray(pressure, float), np.asarray(derivative, float))

    def test_perfect_match_is_zero(self):
        """Identical curves give zero residuals."""
        observed = ObservedDataset(time=[1, 2, 3], pressure=[1, 2, 3], derivative=[0.5, 0.5, 0.5])
        curve = self._curve([1, 2, 3], [0.5, 0.5, 0.5])
        residuals = compute_residuals(observed, curve, 0.5)
        assert len(residuals) == 6
        np.testing.assert_allclose(residuals, 0.0)

    def test_log_difference_weighted(self):
        """Residuals are weighted ln(observed) - ln(model)."""
        observed = ObservedDataset(time=[1], pressure=[np.e], derivative=[1.0])
        curve = self._curve([1.0], [np.e])
        residuals = compute_residuals(observed, curve, 0.3)
        assert residuals[0] == pytest.approx(0.3)
        assert residuals[1] == pytest.approx(-0.7)

    def test_pressure_only_weight(self):
        """weight = 1 zeroes the derivative block."""
        observed = ObservedDataset(time=[1, 2], pressure=[1, 2], derivative=[1, 1])
        curve = self._curve([2, 4], [3, 3])
        residuals = compute_residuals(observed, curve, 1.0)
        assert np.all(residuals[:2] != 0)
        np.testing.assert_array_equal(residuals[2:], 0.0)

    def test_non_positive_values_excluded(self):
        """Points with non-positive data contribute zero."""
        observed = ObservedDataset(time=[1, 2], pressure=[0.0, 2.0], derivative=[-1.0, 1.0])
        curve = self._curve([1.0, 1.0], [1.0, 0.0])
        residuals = compute_residuals(observed, curve, 0.5)
        assert residuals[0] == 0.0
        assert residuals[2] == 0.0
        assert residuals[3] == 0.0
        assert np.all(np.isfinite(residuals))

    def test_short_derivative_series(self):
        """The derivative block uses the shorter series."""
        observed = ObservedDataset(time=[1, 2, 3], pressure=[1, 2, 3], derivative=[1.0])
        curve = self._curve([1, 2, 3], [1, 1, 1])
        assert len(compute_residuals(observed, curve, 0.5)) == 4

    def test_log_sensitivity(self):
        """Skin and fracture count step linearly, as do zero values."""
        assert is_log_sensitive("kf", 1e-3)
        assert not is_log_sensitive("S", 2.0)
        assert not is_log_sensitive("nf", 4.0)
        assert not is_log_sensitive("cD", 0.0)


class TestLevenbergMarquardtFitter:
    """Tests for LevenbergMarquardtFitter."""

    def test_recovers_permeability(self, model, synthetic):
        """Fitting kf from a wrong start converges near the true value."""
        fitter = LevenbergMarquardtFitter(model, FittingConfig(max_iterations=15, curve_points=10))
        result = fitter.fit(ModelVariant.MODEL_2, kf_only(), synthetic)

        assert isinstance(result, FitResult)
        assert result.outcome == FitOutcome.CONVERGED
        assert result.converged
        assert result.values["kf"] == pytest.approx(TRUE_KF, rel=0.25)
        assert result.fitted_values["kf"] == result.values["kf"]
        assert result.mse < 3e-3
        assert result.curve is not None
        assert len(result.curve) == 10

    def test_bounds_respected(self, model, synthetic):
        """Fitted values never leave their bounds."""
        params = []
        for param in kf_only():
            if param.name == "kf":
                param = FitParameter("kf", 1e-3, 1e-3, 1.2e-3, is_fit=True)
            params.append(param)

        fitter = LevenbergMarquardtFitter(model, FittingConfig(max_iterations=4, curve_points=10))
        updates = []
        result = fitter.fit(ModelVariant.MODEL_2, params, synthetic, on_event=updates.append)

        assert 1e-3 <= result.values["kf"] <= 1.2e-3
        for event in updates:
            if isinstance(event, IterationUpdate):
                assert 1e-3 <= event.parameters["kf"] <= 1.2e-3

    def test_initial_value_clamped(self, model, synthetic):
        """A start outside the bounds is pulled inside before fitting."""
        fitter = LevenbergMarquardtFitter(model, FittingConfig(max_iterations=1, curve_points=10))
        updates = []
        params = kf_only(kf=50.0)
        fitter.fit(ModelVariant.MODEL_2, params, synthetic, on_event=updates.append)

        assert updates[0].iteration == 0
        assert updates[0].parameters["kf"] == 10.0

    def test_event_order(self, model, synthetic):
        """Initial update first, progress per iteration, final update last."""
        fitter = LevenbergMarquardtFitter(model, FittingConfig(max_iterations=2, curve_points=10))
        events = []
        fitter.fit(ModelVariant.MODEL_2, kf_only(), synthetic, on_event=events.append)

        assert isinstance(events[0], IterationUpdate)
        assert events[0].iteration == 0
        assert not events[0].is_final
        assert len(events[0].curve) == 10
        assert isinstance(events[1], FitProgress)
        assert events[1].iteration == 0
        assert isinstance(events[-1], IterationUpdate)
        assert events[-1].is_final
        assert sum(1 for e in events if isinstance(e, IterationUpdate) and e.is_final) == 1

    def test_mse_never_increases(self, model, synthetic):
        """Accepted steps only lower the misfit."""
        fitter = LevenbergMarquardtFitter(model, FittingConfig(max_iterations=5, curve_points=10))
        events = []
        fitter.fit(ModelVariant.MODEL_2, kf_only(), synthetic, on_event=events.append)

        mses = [e.mse for e in events if isinstance(e, IterationUpdate)]
        assert all(b <= a for a, b in zip(mses, mses[1:]))

    def test_cancel_before_first_iteration(self, model, synthetic):
        """A set cancel flag stops the fit at the first boundary."""
        cancel = threading.Event()
        cancel.set()
        fitter = LevenbergMarquardtFitter(model, FittingConfig(curve_points=10))
        events = []
        result = fitter.fit(
            ModelVariant.MODEL_2, kf_only(), synthetic, on_event=events.append, cancel_event=cancel
        )

        assert result.outcome == FitOutcome.CANCELLED
        assert result.iterations == 0
        assert result.values["kf"] == 1e-3
        assert [type(e) for e in events] == [IterationUpdate, IterationUpdate]
        assert events[-1].is_final

    def test_max_iterations_reached(self, model, synthetic):
        """An unreachable threshold ends at the iteration cap."""
        config = FittingConfig(max_iterations=1, convergence_mse=0.0, curve_points=10)
        result = LevenbergMarquardtFitter(model, config).fit(ModelVariant.MODEL_2, kf_only(), synthetic)

        assert result.outcome == FitOutcome.MAX_ITERATIONS_REACHED
        assert result.iterations == 1

    def test_stalls_when_no_step_improves(self, model, synthetic):
        """Starting at the exact answer no trial is better, so damping runs away."""
        config = FittingConfig(convergence_mse=0.0, max_lambda=1.0, curve_points=10)
        fitter = LevenbergMarquardtFitter(model, config)
        result = fitter.fit(ModelVariant.MODEL_2, kf_only(kf=TRUE_KF), synthetic)

        assert result.outcome == FitOutcome.STALLED_AT_MAX_DAMPING
        assert result.iterations == 1
        assert result.values["kf"] == TRUE_KF

    def test_no_active_parameters(self, model, synthetic):
        """Nothing selected returns immediately without events."""
        params = kf_only()
        for param in params:
            param.is_fit = False
        events = []
        result = LevenbergMarquardtFitter(model).fit(
            ModelVariant.MODEL_2, params, synthetic, on_event=events.append
        )

        assert result.outcome == FitOutcome.NO_ACTIVE_PARAMETERS
        assert result.iterations == 0
        assert events == []
        assert "FV004" in result.validation.codes

    def test_empty_observed_rejected(self, model):
        """An empty dataset raises FitRequestError carrying FV001."""
        fitter = LevenbergMarquardtFitter(model)
        with pytest.raises(FitRequestError) as exc_info:
            fitter.fit(ModelVariant.MODEL_2, kf_only(), ObservedDataset())
        assert isinstance(exc_info.value.validation, ValidationResult)
        assert "FV001" in exc_info.value.validation.codes

    def test_weight_out_of_range_rejected(self, model, synthetic):
        """Weights outside [0, 1] raise FitRequestError carrying FV005."""
        fitter = LevenbergMarquardtFitter(model)
        with pytest.raises(FitRequestError) as exc_info:
            fitter.fit(ModelVariant.MODEL_2, kf_only(), synthetic, weight=1.5)
        assert "FV005" in exc_info.value.validation.codes

    def test_jacobian_sign(self, model, synthetic):
        """Raising kf lowers model pressure, so pressure residuals rise."""
        fitter = LevenbergMarquardtFitter(model)
        values = default_parameters(ModelVariant.MODEL_2)
        n_res = len(fitter.residuals(ModelVariant.MODEL_2, values, synthetic, 0.5))
        jac = fitter.jacobian(ModelVariant.MODEL_2, values, ["kf"], synthetic, 0.5, n_res)

        assert jac.shape == (n_res, 1)
        assert np.all(jac[: len(synthetic), 0] > 0)

    def test_unfitted_parameters_unchanged(self, model, synthetic):
        """Only selected parameters move."""
        fitter = LevenbergMarquardtFitter(model, FittingConfig(max_iterations=2, curve_points=10))
        result = fitter.fit(ModelVariant.MODEL_2, kf_only(), synthetic)
        defaults = default_parameters(ModelVariant.MODEL_2)
        for name in ("km", "omega1", "lambda1", "nf"):
            assert result.values[name] == defaults[name]


class TestFieldDataMatch:
    """Matching a short field record that no model reproduces exactly."""

    @pytest.fixture
    def field_data(self):
        return ObservedDataset(
            time=np.array([0.1, 1.0, 10.0, 100.0, 1000.0]),
            pressure=np.array([0.5, 1.0, 1.8, 2.5, 3.0]),
            derivative=np.array([0.2, 0.3, 0.4, 0.45, 0.46]),
        )

    def test_permeability_match(self, model, field_data):
        """MSE falls monotonically and kf stays within [1e-6, 1]."""
        params = []
        for param in kf_only():
            if param.name == "kf":
                param = FitParameter("kf", 1e-3, 1e-6, 1.0, is_fit=True)
            params.append(param)

        fitter = LevenbergMarquardtFitter(model, FittingConfig(curve_points=10))
        events = []
        result = fitter.fit(ModelVariant.MODEL_2, params, field_data, weight=0.5, on_event=events.append)

        assert result.outcome in (
            FitOutcome.CONVERGED,
            FitOutcome.STALLED_AT_MAX_DAMPING,
            FitOutcome.MAX_ITERATIONS_REACHED,
        )
        assert 1e-6 <= result.values["kf"] <= 1.0

        updates = [e for e in events if isinstance(e, IterationUpdate)]
        mses = [u.mse for u in updates]
        assert all(b <= a for a, b in zip(mses, mses[1:]))
        assert result.mse < mses[0]
        for update in updates:
            assert 1e-6 <= update.parameters["kf"] <= 1.0
