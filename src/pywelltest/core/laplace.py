"""Laplace-domain solution for a fractured horizontal well in a composite reservoir.

The inner region (radius rmD) is dual-porosity, the outer region is a
single-porosity medium with mobility ratio M12 = kf / km. In Laplace space
with variable z:

    fs1 = omega1 + lambda1 * omega2 / (lambda1 + z * omega2)
    fs2 = M12 * omega2
    gama1 = sqrt(z * fs1),  gama2 = sqrt(z * fs2)

The nf fractures are uniform-flux line sources of half-length LfD spaced
along the wellbore. Each fracture's pressure is the superposition of all
fracture fluxes through the influence kernel

    G(d) = K0(gama1 * d) + Ac * I0(gama1 * d)

where Ac couples the inner solution to the outer region and its boundary
(infinite, closed or constant pressure). Fracture pressures must all equal
the wellbore pressure and the fluxes must sum to the unit rate, giving an
(nf + 1) x (nf + 1) linear system whose last unknown is the wellbore
pressure pwD(z).

Wellbore storage and skin are applied afterwards for variable storage
variants:

    pwD' = (z * pwD + S) / (z + cD * z^2 * (z * pwD + S))
"""

from dataclasses import dataclass
import logging

import numpy as np
from scipy import linalg

from .models import ModelVariant, OuterBoundary, ParameterSet
from .special import adaptive_gauss, bessel_k, scaled_bessel_i

logger = logging.getLogger(__name__)

# Floor for near-singular denominators
DENOMINATOR_FLOOR = 1e-100


@dataclass(frozen=True)
class LaplaceParameters:
    """Dimensionless inputs of the composite Laplace solution.

    Attributes:
        kf: Inner region permeability
        km: Outer region permeability
        lfd: Dimensionless fracture half-length Lf / L
        rmd: Dimensionless inner region radius
        red: Dimensionless outer boundary radius (ignored for infinite variants)
        omega1: Fracture storativity ratio
        omega2: Matrix storativity ratio
        lambda1: Interporosity flow coefficient
        nf: Number of fractures (>= 1)
        cd: Dimensionless wellbore storage
        skin: Skin factor
    """
    kf: float
    km: float
    lfd: float
    rmd: float
    red: float
    omega1: float
    omega2: float
    lambda1: float
    nf: int
    cd: float = 0.0
    skin: float = 0.0

    @property
    def mobility_ratio(self) -> float:
        """M12 = kf / km."""
        return self.kf / self.km

    @classmethod
    def from_parameter_set(cls, params: ParameterSet) -> "LaplaceParameters":
        """Extract the dimensionless bundle from a parameter set."""
        return cls(
            kf=params.get("kf", 1e-3),
            km=params.get("km", 1e-4),
            lfd=params.get("LfD", 0.0),
            rmd=params.get("rmD", 4.0),
            red=params.get("reD", 0.0),
            omega1=params.get("omega1", 0.4),
            omega2=params.get("omega2", 0.08),
            lambda1=params.get("lambda1", 1e-3),
            nf=max(1, int(params.get("nf", 4))),
            cd=params.get("cD", 0.0),
            skin=params.get("S", 0.0),
        )


def fracture_positions(nf: int) -> np.ndarray:
    """Dimensionless fracture centers along the wellbore.

    A single fracture sits at the heel (0); otherwise fractures are evenly
    spaced over [-0.9, 0.9].
    """
    if nf == 1:
        return np.zeros(1)
    return np.linspace(-0.9, 0.9, nf)


def _boundary_terms(
    boundary: OuterBoundary,
    gama2: float,
    rmd: float,
    red: float,
) -> tuple[float, float]:
    """Outer boundary correction terms multiplying I0 and I1 at rmD.

    Returns (0, 0) for an infinite outer region.
    """
    if boundary == OuterBoundary.INFINITE:
        return 0.0, 0.0

    arg_rm = gama2 * rmd
    arg_re = gama2 * red
    # exp(arg_rm - arg_re) undoes the scaling of both I functions at once
    shift = np.exp(arg_rm - arg_re)
    i0_rm = scaled_bessel_i(0, arg_rm)
    i1_rm = scaled_bessel_i(1, arg_rm)

    if boundary == OuterBoundary.CLOSED:
        denominator = scaled_bessel_i(1, arg_re)
        if denominator <= DENOMINATOR_FLOOR:
            return 0.0, 0.0
        ratio = bessel_k(1, arg_re) / denominator
    else:
        denominator = scaled_bessel_i(0, arg_re)
        if denominator <= DENOMINATOR_FLOOR:
            return 0.0, 0.0
        ratio = -bessel_k(0, arg_re) / denominator

    return ratio * i0_rm * shift, ratio * i1_rm * shift


def composite_wellbore_pressure(
    z: float,
    lp: LaplaceParameters,
    boundary: OuterBoundary,
    quadrature_tol: float = 1e-5,
    quadrature_max_depth: int = 10,
) -> float:
    """Dimensionless wellbore pressure in Laplace space without storage/skin.

    Args:
        z: Laplace variable (> 0)
        lp: Dimensionless parameters
        boundary: Outer boundary condition
        quadrature_tol: Tolerance of each influence integral
        quadrature_max_depth: Quadrature bisection limit

    Returns:
        pwD(z), or NaN when the fracture system is singular
    """
    z = np.float64(z)
    m12 = np.float64(lp.kf) / lp.km
    fs1 = lp.omega1 + lp.lambda1 * lp.omega2 / (lp.lambda1 + z * lp.omega2)
    fs2 = m12 * lp.omega2
    gama1 = np.sqrt(z * fs1)
    gama2 = np.sqrt(z * fs2)

    arg_g1_rm = gama1 * lp.rmd
    arg_g2_rm = gama2 * lp.rmd
    k0_g2 = bessel_k(0, arg_g2_rm)
    k1_g2 = bessel_k(1, arg_g2_rm)
    k0_g1 = bessel_k(0, arg_g1_rm)
    k1_g1 = bessel_k(1, arg_g1_rm)

    term_i0, term_i1 = _boundary_terms(boundary, gama2, lp.rmd, lp.red)
    outer_0 = term_i0 + k0_g2
    outer_1 = term_i1 - k1_g2

    ac_up = m12 * gama1 * k1_g1 * outer_0 + gama2 * k0_g1 * outer_1
    ac_down = (
        m12 * gama1 * scaled_bessel_i(1, arg_g1_rm) * outer_0
        - gama2 * scaled_bessel_i(0, arg_g1_rm) * outer_1
    )
    if abs(ac_down) < DENOMINATOR_FLOOR:
        ac_down = DENOMINATOR_FLOOR
    ac = ac_up / ac_down

    positions = fracture_positions(lp.nf)
    nf = lp.nf

    def influence(offset: float) -> float:
        """Integral of the kernel over a fracture seen from `offset` away."""
        def kernel(a: np.ndarray) -> np.ndarray:
            arg = np.maximum(gama1 * np.abs(offset - a), 1e-10)
            exponent = arg - arg_g1_rm
            image = np.zeros_like(arg)
            keep = exponent > -700.0
            image[keep] = ac * scaled_bessel_i(0, arg[keep]) * np.exp(exponent[keep])
            return bessel_k(0, arg) + image

        value = adaptive_gauss(kernel, -lp.lfd, lp.lfd, quadrature_tol, 0, quadrature_max_depth)
        return value / (2.0 * m12 * lp.lfd)

    # The kernel is even in `a` over a symmetric interval, so the influence
    # only depends on the fracture separation.
    cache: dict[float, float] = {}
    matrix = np.zeros((nf + 1, nf + 1))
    for i in range(nf):
        for j in range(nf):
            separation = round(abs(positions[i] - positions[j]), 12)
            if separation not in cache:
                cache[separation] = influence(separation)
            matrix[i, j] = cache[separation]
    matrix[:nf, nf] = -1.0
    matrix[nf, :nf] = z

    rhs = np.zeros(nf + 1)
    rhs[nf] = 1.0

    if not np.all(np.isfinite(matrix)):
        return float("nan")
    try:
        solution = linalg.solve(matrix, rhs)
    except (linalg.LinAlgError, ValueError):
        logger.debug(f"Singular fracture system at z={z:.4g}")
        return float("nan")
    return float(solution[nf])


def apply_storage_and_skin(z: float, pwd: float, cd: float, skin: float) -> float:
    """Convolve wellbore storage and skin into a Laplace-space pressure."""
    if cd > 1e-12 or abs(skin) > 1e-12:
        numerator = z * pwd + skin
        return numerator / (z + cd * z * z * numerator)
    return pwd


class CompositeLaplaceSolver:
    """Laplace-space wellbore pressure for one variant and parameter set.

    Instances are immutable callables z -> pwD(z) and hold no shared state,
    so they are safe to use from several threads.
    """

    def __init__(
        self,
        variant: ModelVariant,
        params: LaplaceParameters,
        quadrature_tol: float = 1e-5,
        quadrature_max_depth: int = 10,
    ):
        """Initialize solver.

        Args:
            variant: Model variant (boundary and storage treatment)
            params: Dimensionless parameters
            quadrature_tol: Tolerance of the influence integrals
            quadrature_max_depth: Quadrature bisection limit
        """
        self.variant = variant
        self.params = params
        self.quadrature_tol = quadrature_tol
        self.quadrature_max_depth = quadrature_max_depth

    def __call__(self, z: float) -> float:
        with np.errstate(all="ignore"):
            pwd = composite_wellbore_pressure(
                z,
                self.params,
                self.variant.boundary,
                self.quadrature_tol,
                self.quadrature_max_depth,
            )
            if self.variant.has_variable_storage:
                pwd = apply_storage_and_skin(z, pwd, self.params.cd, self.params.skin)
        return pwd
