"""Batch Kepler solves over caller-owned buffers.

These entry points mirror :func:`~transitjax.kepler.solve_kepler` and
:func:`~transitjax.kepler.solve_kepler_trig` for flat batches of samples.
All shapes, attributes and per-sample eccentricities are validated before
any output buffer is touched, then the per-sample kernel is evaluated by
an :class:`~transitjax.parallel.ExecutionStrategy`.
"""

from __future__ import annotations

import numpy as np
from jax.typing import ArrayLike

from transitjax.kepler.solver import (
    DEFAULT_MAX_ITER,
    _solve_kepler,
    _true_anomaly_trig,
    check_eccentricity,
    check_max_iter,
    resolve_tolerance,
)
from transitjax.parallel import ExecutionStrategy, get_default_strategy
from transitjax.utils import FlatView, output_view, require_common_dtype


def _eccentric_anomaly_sample(M, e, max_iter, tol):
    return _solve_kepler(M, e, max_iter, tol)


def _true_anomaly_sample(M, e, tol):
    E = _solve_kepler(M, e, DEFAULT_MAX_ITER, tol)
    return _true_anomaly_trig(E, e)


def _read_inputs(M: ArrayLike, e: ArrayLike) -> tuple[FlatView, FlatView]:
    M_view = FlatView(M, "M")
    e_view = FlatView(e, "e")
    e_view.require_size(M_view.size, "one eccentricity per mean anomaly")
    return M_view, e_view


def kepler(
    M: ArrayLike,
    e: ArrayLike,
    max_iter: int = DEFAULT_MAX_ITER,
    tol: float = -1.0,
    E: np.ndarray | None = None,
    strategy: ExecutionStrategy | None = None,
) -> np.ndarray:
    """Solve Kepler's equation for a batch of samples.

    Args:
        M: Mean anomalies. Units: *rad*
        e: Eccentricities, ``e >= 0``, one per mean anomaly.
        max_iter: Maximum refinement steps per sample, ``>= 0``.
        tol: Residual tolerance; values below machine epsilon select
            ``2 * eps``.
        E: Optional output buffer with as many elements as ``M``.
        strategy: Batch evaluator.  Defaults to
            :func:`~transitjax.parallel.get_default_strategy`.

    Returns:
        np.ndarray: Eccentric anomalies, shaped like ``M`` unless *E* was
        supplied, in which case *E* itself is returned.

    Raises:
        InvalidArgumentError: On mismatched sizes, a bad output buffer,
            ``max_iter < 0`` or any ``e < 0``.
    """
    M_view, e_view = _read_inputs(M, e)
    max_iter = check_max_iter(max_iter)
    tol = resolve_tolerance(tol)
    E_view = output_view(E, "E", M_view.shape)
    check_eccentricity(e_view.read(), bound=False)

    if M_view.size == 0:
        return E_view.data

    strategy = strategy or get_default_strategy()
    result = strategy.evaluate_batch(
        _eccentric_anomaly_sample,
        (M_view.read(), e_view.read()),
        (max_iter, tol),
    )
    E_view.write(result)
    return E_view.data


def kepler_trig(
    M: ArrayLike,
    e: ArrayLike,
    sinf: np.ndarray | None = None,
    cosf: np.ndarray | None = None,
    strategy: ExecutionStrategy | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """Compute ``(sin f, cos f)`` of the true anomaly for a batch.

    Args:
        M: Mean anomalies. Units: *rad*
        e: Eccentricities in ``[0, 1)``, one per mean anomaly.
        sinf: Optional output buffer for ``sin f``.
        cosf: Optional output buffer for ``cos f``.
        strategy: Batch evaluator.

    Returns:
        tuple: ``(sinf, cosf)`` arrays shaped like ``M`` (or the supplied
        buffers).

    Raises:
        InvalidArgumentError: On mismatched sizes, bad output buffers or
            any ``e`` outside ``[0, 1)``.
    """
    M_view, e_view = _read_inputs(M, e)
    sinf_view = output_view(sinf, "sinf", M_view.shape)
    cosf_view = output_view(cosf, "cosf", M_view.shape)
    require_common_dtype(sinf_view, cosf_view)
    check_eccentricity(e_view.read(), bound=True)

    if M_view.size == 0:
        return sinf_view.data, cosf_view.data

    tol = resolve_tolerance(-1.0)
    strategy = strategy or get_default_strategy()
    s, c = strategy.evaluate_batch(
        _true_anomaly_sample,
        (M_view.read(), e_view.read()),
        (tol,),
    )
    sinf_view.write(s)
    cosf_view.write(c)
    return sinf_view.data, cosf_view.data
