"""Observed pressure test data loading.

Reads time / pressure (and optionally derivative) columns from a CSV or
whitespace-delimited text file, converts raw gauge pressure to a pressure
difference and computes a Bourdet derivative when the file has none.
"""

from pathlib import Path
import logging

import numpy as np
import pandas as pd

from ..config import ObservedDataConfig
from ..core.inversion import bourdet_derivative
from ..core.models import ObservedDataset

logger = logging.getLogger(__name__)


class ObservedDataLoader:
    """Loads field pressure test data into an ObservedDataset."""

    # Lowercase header -> standard column name
    COLUMN_MAPPINGS: dict[str, str] = {
        "time": "time",
        "t": "time",
        "dt": "time",
        "delta t": "time",
        "elapsed time": "time",
        "time (h)": "time",
        "time_h": "time",
        "time(h)": "time",
        "hours": "time",
        "pressure": "pressure",
        "p": "pressure",
        "pwf": "pressure",
        "bhp": "pressure",
        "pressure (mpa)": "pressure",
        "pressure(mpa)": "pressure",
        "pressure_mpa": "pressure",
        "derivative": "derivative",
        "deriv": "derivative",
        "dp'": "derivative",
        "pressure derivative": "derivative",
        "derivative (mpa)": "derivative",
    }

    def __init__(self, config: ObservedDataConfig | None = None):
        """Initialize loader.

        Args:
            config: Loading options, uses defaults if None
        """
        self.config = config or ObservedDataConfig()

    def read_table(self, filepath: Path | str) -> pd.DataFrame:
        """Read a CSV or whitespace-delimited text file.

        Files whose first line is numeric are read without a header.

        Raises:
            ValueError: If the file does not exist or holds no rows
        """
        filepath = Path(filepath)
        if not filepath.exists():
            raise ValueError(f"Observed data file not found: {filepath}")

        sep = "," if filepath.suffix.lower() == ".csv" else r"\s+"
        df = pd.read_csv(filepath, sep=sep, skiprows=self.config.skip_rows)
        if _is_numeric_header(df.columns):
            df = pd.read_csv(filepath, sep=sep, skiprows=self.config.skip_rows, header=None)

        if df.empty:
            raise ValueError(f"No data rows in {filepath}")
        return df

    def detect_columns(self, df: pd.DataFrame) -> dict[str, object]:
        """Map DataFrame columns to time / pressure / derivative.

        Headers are matched against COLUMN_MAPPINGS; without a match the
        first two columns are time and pressure and a third is the derivative.

        Returns:
            Dictionary mapping standard name -> actual column label
        """
        mapping: dict[str, object] = {}
        for col in df.columns:
            standard = self.COLUMN_MAPPINGS.get(str(col).lower().strip())
            if standard is not None and standard not in mapping:
                mapping[standard] = col

        if "time" not in mapping or "pressure" not in mapping:
            columns = list(df.columns)
            if len(columns) < 2:
                raise ValueError(
                    f"Could not detect time and pressure columns. Columns found: {columns}"
                )
            mapping = {"time": columns[0], "pressure": columns[1]}
            if len(columns) > 2:
                mapping["derivative"] = columns[2]
            logger.warning(f"No recognised headers, using positional columns: {mapping}")

        return mapping

    def parse(
        self,
        df: pd.DataFrame,
        time_column: object | None = None,
        pressure_column: object | None = None,
        derivative_column: object | None = None,
    ) -> ObservedDataset:
        """Convert a raw table into an ObservedDataset.

        Rows with non-numeric time or pressure, or time <= 0, are dropped.

        Args:
            df: Raw table
            time_column: Explicit time column (auto-detected if None)
            pressure_column: Explicit pressure column (auto-detected if None)
            derivative_column: Explicit derivative column; when neither given
                nor detected, the derivative is computed

        Returns:
            ObservedDataset with delta P and derivative

        Raises:
            ValueError: If no valid rows remain or a drawdown test lacks Pi
        """
        if time_column is None or pressure_column is None:
            detected = self.detect_columns(df)
            time_column = time_column if time_column is not None else detected["time"]
            pressure_column = pressure_column if pressure_column is not None else detected["pressure"]
            if derivative_column is None:
                derivative_column = detected.get("derivative")

        for col in (time_column, pressure_column, derivative_column):
            if col is not None and col not in df.columns:
                raise ValueError(f"Column not found: {col!r}. Columns found: {list(df.columns)}")

        t = pd.to_numeric(df[time_column], errors="coerce")
        p = pd.to_numeric(df[pressure_column], errors="coerce")
        keep = t.notna() & p.notna() & (t > 0)

        dropped = int((~keep).sum())
        if dropped:
            logger.warning(f"Dropped {dropped} rows with missing values or time <= 0")

        time = t[keep].to_numpy(dtype=float)
        pressure = p[keep].to_numpy(dtype=float)
        if len(time) == 0:
            raise ValueError("No valid observed data rows (need numeric time > 0 and pressure)")

        delta_p = self.pressure_difference(pressure)

        if derivative_column is not None:
            derivative = (
                pd.to_numeric(df[derivative_column], errors="coerce")[keep]
                .fillna(0.0)
                .to_numpy(dtype=float)
            )
        else:
            derivative = bourdet_derivative(time, delta_p, self.config.l_spacing)

        if self.config.smoothing_span > 1:
            derivative = smooth(derivative, self.config.smoothing_span)

        logger.info(f"Loaded {len(time)} observed points ({self.config.test_type})")
        return ObservedDataset(time=time, pressure=delta_p, derivative=derivative)

    def pressure_difference(self, pressure: np.ndarray) -> np.ndarray:
        """Convert gauge pressure to delta P for the configured test type.

        Drawdown: |Pi - p|. Buildup: |p - p(first sample)|.

        Raises:
            ValueError: If a drawdown test has no initial pressure
        """
        if self.config.test_type == "buildup":
            return np.abs(pressure - pressure[0])

        if self.config.initial_pressure is None:
            raise ValueError("Drawdown tests need observed.initial_pressure (Pi)")
        return np.abs(self.config.initial_pressure - pressure)

    def load(self, filepath: Path | str, **columns) -> ObservedDataset:
        """Read and parse a file. Keyword arguments are passed to parse()."""
        return self.parse(self.read_table(filepath), **columns)


def _is_numeric_header(columns: pd.Index) -> bool:
    """True when every header label parses as a number."""
    try:
        [float(c) for c in columns]
    except (TypeError, ValueError):
        return False
    return True


def smooth(values: np.ndarray, span: int) -> np.ndarray:
    """Centered moving average with a window of `span` points."""
    series = pd.Series(values)
    return series.rolling(window=span, center=True, min_periods=1).mean().to_numpy()


def load_observed_data(
    filepath: Path | str,
    config: ObservedDataConfig | None = None,
    time_column: object | None = None,
    pressure_column: object | None = None,
    derivative_column: object | None = None,
) -> ObservedDataset:
    """Load observed data from a file.

    Args:
        filepath: CSV or whitespace-delimited text file
        config: Loading options
        time_column: Explicit time column
        pressure_column: Explicit pressure column
        derivative_column: Explicit derivative column

    Returns:
        ObservedDataset

    Raises:
        ValueError: If the file cannot be read or holds no valid rows
    """
    return ObservedDataLoader(config).load(
        filepath,
        time_column=time_column,
        pressure_column=pressure_column,
        derivative_column=derivative_column,
    )
