"""Occultation of a limb-darkened star in the Green's basis.

A spherical star of unit radius is occulted by an opaque disk of radius
``r`` whose center lies at projected distance ``b`` from the star's
center.  The stellar intensity is expanded in the Green's basis

``g_0 = 1``, ``g_1 = μ``, ``g_n = (n + 2) μ^n - n μ^(n-2)`` for ``n >= 2``,

where ``μ = sqrt(1 - ρ²)``.  For each basis term this module computes the
visible flux ``s_n(b, r)`` together with ``∂s_n/∂b`` and ``∂s_n/∂r``.  A
light curve for coefficients ``c`` is then ``sT · c``.

Every term reduces to the primitive integrals

``M_n = ∫ μ^n dψ``

along the part of the occultor's limb that lies on the stellar disk
(``ψ`` is the position angle on the occultor, measured from the
direction of the star's center).  ``M_0 ... M_3`` have closed forms in
complete elliptic integrals; higher orders follow from a four-term
recursion, run upward when the lens is wide and downward from a series
seed when it is narrow.  ``g_1`` needs one extra Bulirsch ``cel`` term
because its Green's function is not a power of ``μ``.

Derivatives come from differentiating the occulted area under the moving
boundary: ``∂/∂r`` integrates ``g_n`` along the occultor arc and
``∂/∂b`` integrates ``g_n cos ψ``, with ``cos ψ = (μ² - A) / (2 b r)``.

References:
    1. E. Agol, R. Luger and D. Foreman-Mackey, *Analytic planetary
       transit light curves and derivatives for stars with polynomial
       limb darkening*, AJ 159, 123, 2020.
    2. R. Luger et al., *starry: Analytic occultation light curves*,
       AJ 157, 64, 2019.
"""

from __future__ import annotations

import functools
import logging
import math
from typing import NamedTuple

import jax
import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from transitjax.config import get_dtype
from transitjax.errors import InvalidArgumentError
from transitjax.limbdark._elliptic import cel
from transitjax.parallel import ExecutionStrategy, get_default_strategy
from transitjax.utils import FlatView

logger = logging.getLogger(__name__)


class GreensSolution(NamedTuple):
    """Visible flux of each Green's basis term and its derivatives.

    For a single geometry each field has shape ``(lmax + 1,)``; for a
    batch, ``(N_b, lmax + 1)``.
    """

    sT: Array
    dsTdb: Array
    dsTdr: Array


# ──────────────────────────────────────────────
# Primitive integrals
# ──────────────────────────────────────────────


def _series_t0(n: int) -> float:
    """Leading coefficient of the small-``k`` series for ``M_n``."""
    return 0.5 * math.exp(
        0.5 * math.log(math.pi) + math.lgamma(0.5 * (n + 2)) - math.lgamma(0.5 * (n + 3))
    )


def _series_terms(dtype) -> int:
    """Series length that reaches machine precision for ``k² <= 1/2``."""
    eps = float(jnp.finfo(dtype).eps)
    return int(math.ceil(math.log(eps) / math.log(0.5))) + 4


def _m_series(n: int, k2: Array, omb: Array, n_terms: int) -> Array:
    """``M_n`` from its hypergeometric series; valid for ``k² <= 1/2``.

    ``M_n = 4 k (1 - (b - r)²)^(n/2) Σ_j t_j`` with
    ``t_{j+1} / t_j = k² (j + 1/2)² / ((j + 1)(j + (n + 3)/2))``.
    """
    t0 = jnp.full_like(k2, _series_t0(n))
    half_n3 = 0.5 * (n + 3)

    def body(j, carry):
        term, total = carry
        jf = jnp.asarray(j, dtype=k2.dtype)
        term = term * k2 * (jf + 0.5) ** 2 / ((jf + 1.0) * (jf + half_n3))
        return term, total + term

    _, total = jax.lax.fori_loop(0, n_terms, body, (t0, t0))
    return 4.0 * jnp.sqrt(k2) * omb ** (0.5 * n) * total


def _sin2_series(m: int, A: Array, x2: Array, n_terms: int) -> Array:
    """``∫ (A + B cos ψ)^(m/2) sin²ψ dψ`` over the full circle, ``x² = (B/A)² <= 1/4``.

    ``π A^(m/2) Σ_j t_j`` with ``t_0 = 1`` and
    ``t_{j+1} / t_j = x² (m/2 - 2j)(m/2 - 2j - 1) / (4 (j + 1)(j + 2))``.
    """
    a = 0.5 * m
    one = jnp.ones_like(x2)

    def body(j, carry):
        term, total = carry
        jf = jnp.asarray(j, dtype=x2.dtype)
        term = term * x2 * (a - 2.0 * jf) * (a - 2.0 * jf - 1.0) / (4.0 * (jf + 1.0) * (jf + 2.0))
        return term, total + term

    _, total = jax.lax.fori_loop(0, n_terms, body, (one, one))
    return jnp.pi * A**a * total


def _greens_solution(b: Array, r: Array, *, lmax: int) -> tuple[Array, Array, Array]:
    """Per-sample kernel: ``(sT, dsTdb, dsTdr)`` for one ``(b, r)``.

    *lmax* is static; the returned arrays have ``lmax + 1`` entries.
    The sign of ``b`` and ``r`` is ignored; derivatives are with respect
    to ``|b|`` and ``|r|``.
    """
    pi = jnp.pi
    nmax = max(lmax + 2, 3)
    n_out = lmax + 1

    b = jnp.abs(b)
    r = jnp.abs(r)
    zero = jnp.zeros_like(b)

    no_overlap = b >= 1.0 + r
    total = (b <= r - 1.0) & ~no_overlap
    inside = (b + r <= 1.0) & ~total & ~no_overlap
    partial = ~(no_overlap | total | inside)
    occulted = inside | partial

    # Park non-occulting geometries on a benign configuration
    b = jnp.where(occulted, b, 0.5)
    r = jnp.where(occulted, r, 0.25)

    br = b * r
    A = (1.0 - b * b) - r * r
    omb = (1.0 - b + r) * (1.0 + b - r)  # 1 - (b - r)²
    bpr = (b + r - 1.0) * (b + r + 1.0)  # (b + r)² - 1
    D = omb * bpr  # B² - A²

    # Lens geometry; kap0 is the half-angle of the occultor arc on the disk
    sqarea = jnp.where(partial, jnp.sqrt(jnp.maximum(D, 0.0)), 0.0)
    kap0 = jnp.where(partial, jnp.arctan2(sqarea, (r - 1.0) * (r + 1.0) + b * b), pi)
    kap1 = jnp.arctan2(sqarea, (1.0 - r) * (1.0 + r) + b * b)

    # Elliptic parameter: k² in the partial regime, 1/k² when fully inside
    four_br = 4.0 * br
    k2 = omb / jnp.where(partial, four_br, 1.0)
    q2 = four_br / jnp.where(partial | (omb <= 0.0), 1.0, omb)
    m = jnp.clip(jnp.where(partial, k2, q2), 0.0, 1.0)
    kc = jnp.sqrt(1.0 - m)
    one = jnp.ones_like(kc)
    K = cel(kc, one, one, one)
    E = cel(kc, one, one, kc * kc)

    # M_0 ... M_3
    M = [zero] * (nmax + 1)
    M[0] = 2.0 * kap0
    M[2] = 2.0 * A * kap0 + 2.0 * sqarea
    sqrt_omb = jnp.sqrt(jnp.maximum(omb, 0.0))
    M[1] = jnp.where(
        partial,
        8.0 * jnp.sqrt(br) * (E - (1.0 - m) * K),
        4.0 * sqrt_omb * E,
    )
    M[3] = jnp.where(
        partial,
        (4.0 / 3.0) * four_br * jnp.sqrt(four_br) * (2.0 * (2.0 * m - 1.0) * E + (1.0 - m) * (2.0 - 3.0 * m) * K),
        (4.0 / 3.0) * omb * sqrt_omb * (2.0 * (2.0 - m) * E - (1.0 - m) * K),
    )

    # Upward: n M_n = 2 (n - 1) A M_{n-2} + (n - 2) D M_{n-4}
    for n in range(4, nmax + 1):
        M[n] = (2.0 * (n - 1) * A * M[n - 2] + (n - 2) * D * M[n - 4]) / n

    # Downward from series seeds where the upward recursion loses precision
    if nmax >= 7:
        use_down = partial & (A < 0.0)
        k2s = jnp.clip(k2, 0.0, 0.5)
        n_terms = _series_terms(b.dtype)
        Md = list(M)
        for n in range(nmax - 3, nmax + 1):
            Md[n] = _m_series(n, k2s, omb, n_terms)
        D_safe = jnp.where(D > 0.0, D, 1.0)
        for n in range(nmax, 7, -1):
            Md[n - 4] = (n * Md[n] - 2.0 * (n - 1) * A * Md[n - 2]) / ((n - 2) * D_safe)
        for n in range(4, nmax + 1):
            M[n] = jnp.where(use_down, Md[n], M[n])

    # g_0: uniform disk
    s0 = jnp.where(partial, pi - kap1 - r * r * kap0 + 0.5 * sqarea, pi * (1.0 - r * r))

    # g_1: the occultor-arc term that is not a power of μ
    rmb = r - b
    rmb_safe = jnp.where(rmb == 0.0, 1.0, rmb)
    p = jnp.where(partial, 1.0, (b + r) ** 2) / (rmb_safe * rmb_safe)
    pref = jnp.where(
        partial,
        omb * (r + b) / (jnp.sqrt(jnp.where(partial, br, 1.0)) * rmb_safe),
        2.0 * (r + b) * sqrt_omb / rmb_safe,
    )
    T = pref * cel(kc, p, one, jnp.where(partial, 0.0, kc * kc))
    H = jnp.where(b > r, 1.0, 0.0)
    Q = jnp.where(rmb == 0.0, pi / 3.0, (2.0 * pi / 3.0) * H + T / 3.0)
    s1 = Q + (M[3] - (r * r - b * b) * M[1]) / 6.0

    inv_2b = jnp.where(b > 0.0, 0.5 / jnp.where(b > 0.0, b, 1.0), 0.0)
    s = [s0, s1]
    dsdb = [(M[2] - A * M[0]) * inv_2b, (M[3] - A * M[1]) * inv_2b]
    dsdr = [-r * M[0], -r * M[1]]
    c_n = 1.0 + r * r - b * b
    for n in range(2, n_out):
        arc = (n + 2) * M[n] - n * M[n - 2]
        s.append(-0.5 * (c_n * M[n] - M[n + 2]))
        dsdb.append(((n + 2) * M[n + 2] - n * M[n] - A * arc) * inv_2b)
        dsdr.append(-r * arc)

    # Fully inside with a thin ring (2br < A/2): the differences above
    # cancel as b -> 0.  Use ∫ μ^n cos ψ dψ = n b r ∫ μ^(n-2) sin²ψ dψ.
    A_safe = jnp.where(A > 0.0, A, 1.0)
    x = 2.0 * br / A_safe
    ring = inside & (x < 0.5)
    x2 = jnp.square(jnp.minimum(x, 0.5))
    n_terms = _series_terms(b.dtype)
    N = [zero] * max(n_out, 2)
    for n in range(1, n_out):
        N[n] = n * br * _sin2_series(n - 2, A_safe, x2, n_terms)
    dsdb_ring = [zero, r * N[1]] + [r * ((n + 2) * N[n] - n * N[n - 2]) for n in range(2, n_out)]
    dsdb = [jnp.where(ring, d_ring, d) for d_ring, d in zip(dsdb_ring, dsdb)]
    dsdb[0] = jnp.where(inside, 0.0, dsdb[0])

    s = jnp.stack(s[:n_out])
    dsdb = jnp.stack(dsdb[:n_out])
    dsdr = jnp.stack(dsdr[:n_out])

    unocculted = jnp.zeros(n_out, dtype=s.dtype).at[0].set(pi)
    if n_out > 1:
        unocculted = unocculted.at[1].set(2.0 * pi / 3.0)
    s = jnp.where(no_overlap, unocculted, jnp.where(total, 0.0, s))
    dsdb = jnp.where(occulted, dsdb, 0.0)
    dsdr = jnp.where(occulted, dsdr, 0.0)
    return s, dsdb, dsdr


# ──────────────────────────────────────────────
# Engine
# ──────────────────────────────────────────────


class GreensLimbDark:
    """Compiled Green's-basis occultation engine for one degree.

    The engine owns a per-sample kernel specialised to ``lmax`` and the
    dtype active at construction.  Compiled programs are cached against
    that kernel, so reusing an engine for many batches pays the tracing
    and compilation cost once.

    Args:
        lmax: Highest basis degree; ``lmax + 1`` coefficients.
        strategy: Batch evaluator for :meth:`compute_batch`.  ``None``
            uses :func:`~transitjax.parallel.get_default_strategy` at
            call time.

    Raises:
        InvalidArgumentError: If ``lmax < 0``.

    Examples:
        ```python
        from transitjax.limbdark import GreensLimbDark
        engine = GreensLimbDark(2)
        sT, dsTdb, dsTdr = engine.compute(0.3, 0.1)
        ```
    """

    def __init__(self, lmax: int, strategy: ExecutionStrategy | None = None) -> None:
        if lmax < 0:
            raise InvalidArgumentError(f"lmax must be non-negative, got {lmax}")
        self.lmax = int(lmax)
        self.dtype = get_dtype()
        self.strategy = strategy
        self.kernel = functools.partial(_greens_solution, lmax=self.lmax)
        self._single = jax.jit(self.kernel)
        logger.info(
            "Built Green's limb-darkening engine: lmax=%d dtype=%s",
            self.lmax, jnp.dtype(self.dtype).name,
        )

    @property
    def num_coeffs(self) -> int:
        """Number of basis coefficients this engine evaluates."""
        return self.lmax + 1

    def matches(self, lmax: int) -> bool:
        """Whether the engine can serve degree *lmax* under the current dtype."""
        return self.lmax == lmax and self.dtype == get_dtype()

    def compute(self, b: ArrayLike, r: ArrayLike) -> GreensSolution:
        """Evaluate one geometry.

        Args:
            b: Impact parameter in stellar radii.
            r: Occultor radius in stellar radii.

        Returns:
            GreensSolution: Arrays of shape ``(lmax + 1,)``.
        """
        b = jnp.asarray(b, dtype=self.dtype)
        r = jnp.asarray(r, dtype=self.dtype)
        if b.ndim or r.ndim:
            raise InvalidArgumentError("compute expects scalar b and r; use compute_batch")
        return GreensSolution(*self._single(b, r))

    def compute_batch(self, b: ArrayLike, r: ArrayLike) -> GreensSolution:
        """Evaluate a flat batch of geometries.

        Args:
            b: Impact parameters, ``N_b`` elements.
            r: Occultor radii, ``N_b`` elements.

        Returns:
            GreensSolution: Arrays of shape ``(N_b, lmax + 1)``.

        Raises:
            InvalidArgumentError: If ``b`` and ``r`` differ in size.
        """
        b_view = FlatView(b, "b")
        r_view = FlatView(r, "r").require_size(b_view.size, "one radius per impact parameter")
        if b_view.size == 0:
            empty = jnp.zeros((0, self.num_coeffs), dtype=self.dtype)
            return GreensSolution(empty, empty, empty)
        strategy = self.strategy or get_default_strategy()
        return GreensSolution(*strategy.evaluate_batch(self.kernel, (b_view.read(), r_view.read())))
