"""Numerical inversion from Laplace space and log-time derivatives.

Stehfest Algorithm
------------------

A Laplace-space function F(z) is inverted at time t as

    f(t) ~ ln2 / t * sum_{i=1..N} V_i * F(i * ln2 / t)

with the classic weights

    V_i = (-1)^(i + N/2) * sum_k  k^(N/2) (2k)! /
          ((N/2 - k)! k! (k - 1)! (i - k)! (2k - i)!)

where k runs from floor((i + 1) / 2) to min(i, N/2). Within these bounds
every factorial argument is non-negative.

Stress Sensitivity
------------------

Permeability that declines with effective stress is handled with the
Pedrosa substitution applied to the inverted dimensionless pressure:

    pD' = -ln(1 - gamaD * pD) / gamaD
"""

from functools import lru_cache
import math
from typing import Callable

import numpy as np

# Times at or below this value are treated as t = 0
MIN_TIME = 1e-12


def stehfest_coefficient(i: int, n: int) -> float:
    """Stehfest weight V_i for an N-term expansion (1 <= i <= n)."""
    if i < 1 or i > n:
        return 0.0
    half = n // 2
    total = 0.0
    for k in range((i + 1) // 2, min(i, half) + 1):
        numerator = k ** half * math.factorial(2 * k)
        denominator = (
            math.factorial(half - k)
            * math.factorial(k)
            * math.factorial(k - 1)
            * math.factorial(i - k)
            * math.factorial(2 * k - i)
        )
        total += numerator / denominator
    sign = -1.0 if (i + half) % 2 else 1.0
    return sign * total


@lru_cache(maxsize=None)
def _coefficients(n: int) -> tuple[float, ...]:
    return tuple(stehfest_coefficient(i, n) for i in range(1, n + 1))


def stehfest_coefficients(n: int) -> np.ndarray:
    """All N Stehfest weights V_1..V_N.

    Raises:
        ValueError: If n is not a positive even number
    """
    if n <= 0 or n % 2 != 0:
        raise ValueError(f"Stehfest term count must be a positive even number, got {n}")
    return np.array(_coefficients(n))


def invert_stehfest(
    td: float,
    laplace_fn: Callable[[float], float],
    n: int,
) -> float:
    """Invert a Laplace-space function at one dimensionless time.

    Non-finite Laplace values contribute nothing to the sum.

    Args:
        td: Dimensionless time
        laplace_fn: F(z)
        n: Number of Stehfest terms (even)

    Returns:
        f(td), or 0 for td <= 1e-12
    """
    weights = stehfest_coefficients(n)
    if td <= MIN_TIME:
        return 0.0

    ln2_t = math.log(2.0) / td
    total = 0.0
    for i, weight in enumerate(weights, start=1):
        value = laplace_fn(i * ln2_t)
        if np.isfinite(value):
            total += weight * value
    return ln2_t * total


def apply_stress_sensitivity(pd: np.ndarray, gama_d: float) -> np.ndarray:
    """Apply the stress-sensitive permeability correction.

    Points where 1 - gamaD * pD <= 1e-12 are left unchanged.
    """
    pd = np.asarray(pd, dtype=float)
    if abs(gama_d) <= 1e-9:
        return pd.copy()

    argument = 1.0 - gama_d * pd
    valid = argument > 1e-12
    corrected = pd.copy()
    corrected[valid] = -np.log(argument[valid]) / gama_d
    return corrected


def bourdet_derivative(
    t: np.ndarray,
    p: np.ndarray,
    l_spacing: float = 0.1,
) -> np.ndarray:
    """Bourdet pressure derivative dP/d(ln t) with L-spacing smoothing.

    For each point the nearest neighbours at least `l_spacing` away in ln(t)
    are chosen on both sides (or the end points when none is far enough),
    and the two one-sided slopes are averaged with weights given by the
    opposite spacing. The first and last points use a one-sided slope.

    Args:
        t: Times, increasing
        p: Pressures aligned to t
        l_spacing: Minimum ln(t) distance to a neighbour

    Returns:
        Derivative array, zeros where it cannot be computed
    """
    t = np.asarray(t, dtype=float)
    p = np.asarray(p, dtype=float)
    n = min(len(t), len(p))
    result = np.zeros(len(t))
    if n < 3:
        return result

    valid = np.flatnonzero(t[:n] > 0)
    if len(valid) < 3:
        return result

    x = np.log(t[valid])
    y = p[valid]
    count = len(x)
    deriv = np.zeros(count)

    for i in range(count):
        left = i - 1
        while left > 0 and x[i] - x[left] < l_spacing:
            left -= 1
        right = i + 1
        while right < count - 1 and x[right] - x[i] < l_spacing:
            right += 1

        if i == 0:
            dx = x[right] - x[i]
            deriv[i] = (y[right] - y[i]) / dx if dx > 0 else 0.0
        elif i == count - 1:
            dx = x[i] - x[left]
            deriv[i] = (y[i] - y[left]) / dx if dx > 0 else 0.0
        else:
            dx1 = x[i] - x[left]
            dx2 = x[right] - x[i]
            if dx1 <= 0 or dx2 <= 0:
                continue
            slope1 = (y[i] - y[left]) / dx1
            slope2 = (y[right] - y[i]) / dx2
            deriv[i] = (slope1 * dx2 + slope2 * dx1) / (dx1 + dx2)

    deriv[~np.isfinite(deriv)] = 0.0
    result[valid] = deriv
    return result


def pressure_and_derivative(
    td: np.ndarray,
    laplace_fn: Callable[[float], float],
    n: int,
    gama_d: float = 0.0,
    l_spacing: float = 0.1,
) -> tuple[np.ndarray, np.ndarray]:
    """Dimensionless pressure and its log-time derivative on a time grid.

    Args:
        td: Dimensionless times
        laplace_fn: Laplace-space wellbore pressure
        n: Number of Stehfest terms
        gama_d: Stress sensitivity coefficient
        l_spacing: Bourdet L-spacing

    Returns:
        Tuple of (pD, dpD/dln tD) arrays
    """
    td = np.asarray(td, dtype=float)
    pd = np.array([invert_stehfest(t, laplace_fn, n) for t in td])
    pd[~np.isfinite(pd)] = 0.0
    pd = apply_stress_sensitivity(pd, gama_d)
    dpd = bourdet_derivative(td, pd, l_spacing)
    dpd[td <= MIN_TIME] = 0.0
    return pd, dpd
