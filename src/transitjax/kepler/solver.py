"""Kepler equation solver.

Converts mean anomaly to eccentric anomaly by solving
``M = E - e * sin(E)``, and eccentric anomaly to the sine and cosine of
the true anomaly.

The solver reduces ``M`` into ``[0, pi]``, starts from Markley's cubic
approximation and polishes it with a fourth-order Householder-type step
inside ``jax.lax.while_loop``.  Iteration stops when the residual drops
below the tolerance, when the step no longer changes ``E`` at working
precision, or when the iteration budget is exhausted.  Running out of
budget is not an error: the best current estimate is returned.

The underscore kernels accept traced values and are compatible with
``jax.jit`` and ``jax.vmap``.  The public wrappers validate concrete
inputs first and raise :class:`~transitjax.errors.InvalidArgumentError`.

References:
    1. F. L. Markley, *Kepler Equation Solver*, Celestial Mechanics and
       Dynamical Astronomy 63, 101-111, 1995.
    2. A. W. Odell and R. H. Gooding, *Procedures for solving Kepler's
       equation*, Celestial Mechanics 38, 307-334, 1986.
"""

from __future__ import annotations

import logging
import math

import jax
import jax.numpy as jnp
import numpy as np
from jax import Array
from jax.typing import ArrayLike

from transitjax.config import get_dtype, get_tolerance_floor
from transitjax.errors import InvalidArgumentError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITER: int = 2000
"""Iteration budget used when the caller does not supply one."""

_FACTOR1 = 3.0 * math.pi / (math.pi - 6.0 / math.pi)
_FACTOR2 = 1.6 / (math.pi - 6.0 / math.pi)


# ──────────────────────────────────────────────
# Kernels
# ──────────────────────────────────────────────


def _markley_starter(M: Array, e: Array, ome: Array) -> Array:
    """Markley's starting estimate for ``E``; ``M`` must lie in ``[0, pi]``."""
    M2 = M * M
    alpha = _FACTOR1 + _FACTOR2 * (jnp.pi - M) / (1.0 + e)
    d = 3.0 * ome + alpha * e
    alphad = alpha * d
    r = (3.0 * alphad * (d - ome) + M2) * M
    q = 2.0 * alphad * ome - M2
    q2 = q * q
    w = (jnp.abs(r) + jnp.sqrt(q2 * q + r * r)) ** (2.0 / 3.0)
    denom = w * w + w * q + q2
    denom = jnp.where(denom == 0.0, 1.0, denom)
    return (2.0 * r * w / denom + M) / d


def _refine(M: Array, e: Array, ome: Array, E: Array) -> Array:
    """One fourth-order correction of ``E``.

    ``E - sin(E)`` and ``1 - cos(E)`` are carried explicitly so the
    residual keeps its precision for small ``E`` at high eccentricity.
    """
    sE = E - jnp.sin(E)
    cE = 1.0 - jnp.cos(E)

    f_0 = e * sE + E * ome - M
    f_1 = e * cE + ome
    f_2 = e * (E - sE)
    f_3 = 1.0 - f_1

    d_3 = -f_0 / (f_1 - 0.5 * f_0 * f_2 / f_1)
    d_4 = -f_0 / (f_1 + 0.5 * d_3 * f_2 + d_3 * d_3 * f_3 / 6.0)
    d_42 = d_4 * d_4
    dE = -f_0 / (f_1 + 0.5 * d_4 * f_2 + d_42 * f_3 / 6.0 - d_42 * d_4 * f_2 / 24.0)
    return E + dE


def _solve_kepler(M: Array, e: Array, max_iter, tol) -> Array:
    """Solve Kepler's equation for the eccentric anomaly.

    Args:
        M: Mean anomaly [rad].
        e: Eccentricity, ``0 <= e < 1``.
        max_iter: Maximum number of refinement steps (may be traced).
        tol: Residual tolerance, already clamped to the precision floor.

    Returns:
        Eccentric anomaly [rad], consistent with the unreduced ``M``.
    """
    two_pi = 2.0 * jnp.pi
    eps = jnp.finfo(M.dtype).eps

    # Range reduction: M -> [0, 2pi) -> [0, pi]
    turns = jnp.floor(M / two_pi)
    Mr = M - two_pi * turns
    high = Mr > jnp.pi
    Mr = jnp.where(high, two_pi - Mr, Mr)

    ome = 1.0 - e
    E0 = _markley_starter(Mr, e, ome)

    def residual(E):
        return e * (E - jnp.sin(E)) + E * ome - Mr

    def cond(state):
        E, step, i = state
        unconverged = jnp.abs(residual(E)) >= tol
        moving = jnp.abs(step) > eps * jnp.maximum(1.0, jnp.abs(E))
        return jnp.any((i < max_iter) & unconverged & moving)

    def body(state):
        E, step, i = state
        active = (i < max_iter) & (jnp.abs(residual(E)) >= tol)
        active = active & (jnp.abs(step) > eps * jnp.maximum(1.0, jnp.abs(E)))
        E_new = jnp.where(active, _refine(Mr, e, ome, E), E)
        step = jnp.where(active, E_new - E, 0.0)
        return E_new, step, i + 1

    init_state = (E0, jnp.full_like(E0, jnp.inf), jnp.int32(0))
    E, _, _ = jax.lax.while_loop(cond, body, init_state)

    E = jnp.where(high, two_pi - E, E)
    E = E + two_pi * turns

    # Circular orbits are exact
    return jnp.where(e == 0.0, M, E)


def _true_anomaly_trig(E: Array, e: Array) -> tuple[Array, Array]:
    """Sine and cosine of the true anomaly from the eccentric anomaly.

    Uses ``1 - e cos E = (1 - e) + 2 e sin^2(E/2)`` and
    ``cos E - e = (1 - e) - 2 sin^2(E/2)``, which stay accurate for
    ``e -> 1`` near periapsis and have no singularity at ``E = pi``.
    """
    s2 = jnp.sin(0.5 * E)
    s2 = 2.0 * s2 * s2
    ome = 1.0 - e
    denom = ome + e * s2
    sinf = jnp.sqrt((1.0 - e) * (1.0 + e)) * jnp.sin(E) / denom
    cosf = (ome - s2) / denom
    return sinf, cosf


# ──────────────────────────────────────────────
# Validation helpers
# ──────────────────────────────────────────────


def resolve_tolerance(tol: float) -> float:
    """Clamp a requested tolerance to what the configured dtype can reach.

    Tolerances below machine epsilon (including the ``-1`` default) are
    replaced by ``2 * eps``.

    Args:
        tol: Requested residual tolerance.

    Returns:
        float: The tolerance actually used.
    """
    floor = get_tolerance_floor()
    if tol < 0.5 * floor:
        logger.debug("Kepler tolerance %g below machine precision; using %g", tol, floor)
        return floor
    return float(tol)


def check_max_iter(max_iter: int) -> int:
    """Reject negative iteration budgets.

    Raises:
        InvalidArgumentError: If ``max_iter < 0``.
    """
    if max_iter < 0:
        raise InvalidArgumentError(f"Need max_iter >= 0, got {max_iter}")
    return int(max_iter)


def check_eccentricity(e: ArrayLike, bound: bool = True) -> None:
    """Validate concrete eccentricities at the configured precision.

    Values are cast to the module dtype first, so an eccentricity that
    only rounds to 1 under float32 is rejected rather than reaching the
    kernel.

    Args:
        e: Eccentricity values.
        bound: If ``True``, require ``0 <= e < 1``; otherwise only ``e >= 0``.

    Raises:
        InvalidArgumentError: If any value is out of range.
    """
    e = np.asarray(jnp.asarray(e, dtype=get_dtype()))
    if bound:
        if np.any(~((e >= 0.0) & (e < 1.0))):
            raise InvalidArgumentError("eccentricity must be in the range [0, 1)")
    elif np.any(~(e >= 0.0)):
        raise InvalidArgumentError("eccentricity must be non-negative")


# ──────────────────────────────────────────────
# Public API
# ──────────────────────────────────────────────


def solve_kepler(
    M: ArrayLike,
    e: ArrayLike,
    max_iter: int = DEFAULT_MAX_ITER,
    tol: float = -1.0,
) -> Array:
    """Solve Kepler's equation ``M = E - e sin(E)`` for ``E``.

    Inputs broadcast element-wise.  If the iteration budget is exhausted
    before the residual drops below *tol*, the best estimate is returned
    without raising; callers that need guaranteed convergence should set
    *max_iter* and *tol* accordingly.

    Args:
        M: Mean anomaly. Units: *rad*
        e: Eccentricity, ``e >= 0``. Dimensionless.
        max_iter: Maximum number of refinement steps, ``>= 0``.
        tol: Residual tolerance.  Values below machine epsilon (the
            default ``-1``) select ``2 * eps`` of the configured dtype.

    Returns:
        Eccentric anomaly. Units: *rad*

    Raises:
        InvalidArgumentError: If ``max_iter < 0`` or any ``e < 0``.

    Examples:
        ```python
        from transitjax.kepler import solve_kepler
        E = solve_kepler(1.2, 0.3, max_iter=50, tol=1e-12)
        ```
    """
    max_iter = check_max_iter(max_iter)
    check_eccentricity(e, bound=False)
    tol = resolve_tolerance(tol)

    M = jnp.asarray(M, dtype=get_dtype())
    e = jnp.asarray(e, dtype=get_dtype())
    M, e = jnp.broadcast_arrays(M, e)
    return _solve_kepler(M, e, max_iter, tol)


def solve_kepler_trig(M: ArrayLike, e: ArrayLike) -> tuple[Array, Array]:
    """Solve Kepler's equation and return ``(sin f, cos f)``.

    The true anomaly ``f`` is never formed explicitly; its sine and
    cosine come straight from ``E`` and ``e``.

    Args:
        M: Mean anomaly. Units: *rad*
        e: Eccentricity, ``0 <= e < 1``. Dimensionless.

    Returns:
        tuple: ``(sin f, cos f)``.

    Raises:
        InvalidArgumentError: If any ``e`` is outside ``[0, 1)``.

    Examples:
        ```python
        from transitjax.kepler import solve_kepler_trig
        sinf, cosf = solve_kepler_trig(0.5, 0.1)
        ```
    """
    check_eccentricity(e, bound=True)
    tol = resolve_tolerance(-1.0)

    M = jnp.asarray(M, dtype=get_dtype())
    e = jnp.asarray(e, dtype=get_dtype())
    M, e = jnp.broadcast_arrays(M, e)
    E = _solve_kepler(M, e, DEFAULT_MAX_ITER, tol)
    return _true_anomaly_trig(E, e)
