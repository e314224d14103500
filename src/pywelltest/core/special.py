"""Special functions and quadrature used by the Laplace-domain solver.

The composite reservoir solution is built from modified Bessel functions of
orders 0 and 1. Products such as K(x) * I(y) overflow long before their
value does, so the first kind is always used in its exponentially scaled
form:

    I_scaled(n, x) = exp(-x) * I_n(x)

and the caller re-applies exp(x_near - x_far) explicitly.

Influence integrals along each fracture are evaluated with a fixed
15-point Gauss-Legendre rule wrapped in bounded recursive bisection.
"""

from typing import Callable

import numpy as np
from numpy.polynomial.legendre import leggauss
from scipy import special

# Beyond this argument the asymptotic form replaces the library call
SCALED_I_ASYMPTOTIC_ARG = 600.0

_GAUSS15_NODES, _GAUSS15_WEIGHTS = leggauss(15)


def scaled_bessel_i(order: int, x: np.ndarray | float) -> np.ndarray | float:
    """Exponentially scaled modified Bessel function of the first kind.

    Returns exp(-x) * I_order(x). For x > 600 the large-argument limit
    1 / sqrt(2*pi*x) is returned instead.

    Negative arguments are replaced by |x|; callers only pass x >= 0, so the
    parity of I_1 is deliberately not restored.

    Args:
        order: Bessel order (0 or 1)
        x: Argument (scalar or array)

    Returns:
        Scaled Bessel value with the same shape as x
    """
    x = np.abs(x)
    if np.ndim(x) == 0:
        if x > SCALED_I_ASYMPTOTIC_ARG:
            return 1.0 / np.sqrt(2.0 * np.pi * x)
        return float(special.ive(order, x))

    x = np.asarray(x, dtype=float)
    out = np.empty_like(x)
    large = x > SCALED_I_ASYMPTOTIC_ARG
    out[large] = 1.0 / np.sqrt(2.0 * np.pi * x[large])
    out[~large] = special.ive(order, x[~large])
    return out


def bessel_k(order: int, x: np.ndarray | float) -> np.ndarray | float:
    """Modified Bessel function of the second kind, K_order(x)."""
    result = special.kv(order, x)
    if np.ndim(result) == 0:
        return float(result)
    return result


def gauss15(f: Callable[[np.ndarray], np.ndarray], a: float, b: float) -> float:
    """Integrate f over [a, b] with the 15-point Gauss-Legendre rule.

    Args:
        f: Integrand, evaluated once on the array of all 15 nodes
        a: Lower limit
        b: Upper limit

    Returns:
        Quadrature estimate
    """
    half = 0.5 * (b - a)
    center = 0.5 * (a + b)
    values = f(center + half * _GAUSS15_NODES)
    return float(half * np.dot(_GAUSS15_WEIGHTS, values))


def adaptive_gauss(
    f: Callable[[np.ndarray], np.ndarray],
    a: float,
    b: float,
    tol: float = 1e-5,
    depth: int = 0,
    max_depth: int = 10,
) -> float:
    """Adaptive Gauss-Legendre quadrature by interval bisection.

    Compares the single-panel estimate with the two-panel estimate and
    accepts the finer one when

        |coarse - fine| < 1e-10 * |fine| + tol

    Otherwise both halves are refined with tol / 2. Recursion stops at
    max_depth whatever the error, which bounds the cost of integrands with
    a logarithmic singularity (K0 at zero distance).

    Args:
        f: Vectorized integrand
        a: Lower limit
        b: Upper limit
        tol: Absolute tolerance for this interval
        depth: Current recursion depth
        max_depth: Hard recursion limit

    Returns:
        Integral estimate
    """
    mid = 0.5 * (a + b)
    coarse = gauss15(f, a, b)
    fine = gauss15(f, a, mid) + gauss15(f, mid, b)

    if depth >= max_depth or abs(coarse - fine) < 1e-10 * abs(fine) + tol:
        return fine

    return (
        adaptive_gauss(f, a, mid, tol / 2, depth + 1, max_depth)
        + adaptive_gauss(f, mid, b, tol / 2, depth + 1, max_depth)
    )
