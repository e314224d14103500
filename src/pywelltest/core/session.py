"""Background fitting session.

A FitSession owns the observed dataset and runs at most one fit at a time
on a single worker thread. Events produced by the fitter are delivered
through a thread-safe queue in emission order, followed by exactly one
FitCompleted per started fit.

Usage:
    session = FitSession()
    session.set_observed_data(dataset)
    validation = session.start_fit(ModelVariant.MODEL_2, params, weight=0.5)
    if validation.is_valid:
        result = session.wait()
        for event in session.drain_events():
            ...
"""

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
import logging
import queue
import threading

from .fitting import (
    FitOutcome,
    FitResult,
    FittingConfig,
    IterationUpdate,
    LevenbergMarquardtFitter,
)
from .forward import CompositeWellModel
from .models import (
    FitParameter,
    ModelVariant,
    ObservedDataset,
    default_parameters,
    sync_dependent_parameters,
)
from ..validation import ValidationIssue, ValidationResult

logger = logging.getLogger(__name__)


@dataclass
class FitCompleted:
    """Final event of a fit.

    Attributes:
        result: FitResult, or None when the fit raised
        error: Error message when the fit raised
    """
    result: FitResult | None
    error: str | None = None

    @property
    def outcome(self) -> FitOutcome | None:
        """Outcome of the finished fit."""
        return self.result.outcome if self.result is not None else None


class FitSession:
    """Observed data plus one background Levenberg-Marquardt fit."""

    def __init__(
        self,
        model: CompositeWellModel | None = None,
        config: FittingConfig | None = None,
    ):
        """Initialize session.

        Args:
            model: Forward model shared by all fits
            config: Fitting configuration
        """
        self.model = model or CompositeWellModel()
        self.config = config or FittingConfig()
        self._observed: ObservedDataset | None = None
        self._events: queue.Queue = queue.Queue()
        self._cancel = threading.Event()
        self._lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None
        self._future: Future | None = None
        self._last_result: FitResult | None = None

    # --- Observed data ---

    def set_observed_data(self, observed: ObservedDataset) -> None:
        """Replace the observed dataset used by subsequent fits."""
        self._observed = observed

    def get_observed_data(self) -> ObservedDataset | None:
        """Current observed dataset, or None."""
        return self._observed

    def clear_observed_data(self) -> None:
        """Drop the observed dataset."""
        self._observed = None

    def has_observed_data(self) -> bool:
        """Whether a non-empty dataset is loaded."""
        return self._observed is not None and not self._observed.is_empty

    # --- Fit lifecycle ---

    @property
    def is_running(self) -> bool:
        """Whether a fit is in progress."""
        return self._future is not None and not self._future.done()

    @property
    def last_result(self) -> FitResult | None:
        """Result of the most recently finished fit."""
        return self._last_result

    def start_fit(
        self,
        variant: ModelVariant,
        fit_parameters: list[FitParameter],
        weight: float | None = None,
    ) -> ValidationResult:
        """Validate a fit request and start it in the background.

        Nothing is started when validation finds errors. A request with no
        fitted parameters completes immediately with NO_ACTIVE_PARAMETERS.

        Args:
            variant: Model variant
            fit_parameters: Parameter list with bounds and fit flags
            weight: Pressure weight in [0, 1] (config default if None)

        Returns:
            ValidationResult describing the request
        """
        variant = ModelVariant.parse(variant)
        if weight is None:
            weight = self.config.weight

        with self._lock:
            if self.is_running:
                result = ValidationResult(subject=variant.display_name)
                result.add_issue(ValidationIssue.fit_already_running())
                logger.info("Fit already running, start request ignored")
                return result

            fitter = LevenbergMarquardtFitter(self.model, self.config)
            validation = fitter.validate_request(variant, fit_parameters, self._observed, weight)

            nothing_to_fit = not any(p.is_fit for p in fit_parameters)
            blocking = [i for i in validation.errors() if i.code != "FV004"]
            if blocking:
                logger.warning(f"Fit request rejected:\n{validation}")
                return validation

            if nothing_to_fit:
                values = default_parameters(variant)
                values.update({p.name: p.value for p in fit_parameters})
                result = FitResult(
                    variant=variant,
                    outcome=FitOutcome.NO_ACTIVE_PARAMETERS,
                    parameters=list(fit_parameters),
                    values=sync_dependent_parameters(values),
                    validation=validation,
                )
                self._last_result = result
                self._events.put(FitCompleted(result=result))
                return validation

            self._cancel.clear()
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pywelltest-fit")
            self._future = self._executor.submit(
                self._run, fitter, variant, list(fit_parameters), self._observed, weight
            )
            return validation

    def _run(
        self,
        fitter: LevenbergMarquardtFitter,
        variant: ModelVariant,
        fit_parameters: list[FitParameter],
        observed: ObservedDataset,
        weight: float,
    ) -> FitResult:
        try:
            result = fitter.fit(
                variant,
                fit_parameters,
                observed,
                weight,
                on_event=self._events.put,
                cancel_event=self._cancel,
            )
        except Exception as e:
            logger.exception("Fit failed")
            self._events.put(FitCompleted(result=None, error=str(e)))
            raise
        self._last_result = result
        self._events.put(FitCompleted(result=result))
        return result

    def cancel(self) -> None:
        """Ask the running fit to stop at its next iteration boundary."""
        self._cancel.set()

    def wait(self, timeout: float | None = None) -> FitResult | None:
        """Block until the current fit finishes.

        Args:
            timeout: Seconds to wait (None waits forever)

        Returns:
            FitResult of the fit, or the last result when none is running

        Raises:
            TimeoutError: If the fit does not finish within timeout
        """
        if self._future is None:
            return self._last_result
        return self._future.result(timeout=timeout)

    # --- Events ---

    def drain_events(self) -> list:
        """Remove and return all pending events in emission order."""
        events = []
        while True:
            try:
                events.append(self._events.get_nowait())
            except queue.Empty:
                return events

    def next_event(self, timeout: float | None = None):
        """Block for the next event.

        Raises:
            queue.Empty: If no event arrives within timeout
        """
        return self._events.get(timeout=timeout)

    def latest_update(self) -> IterationUpdate | None:
        """Drain the queue and return the newest IterationUpdate, if any.

        Other events drained along the way are discarded.
        """
        latest = None
        for event in self.drain_events():
            if isinstance(event, IterationUpdate):
                latest = event
        return latest

    def shutdown(self) -> None:
        """Cancel any running fit and stop the worker thread."""
        self.cancel()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
