"""Limb-darkening coefficient transforms.

Converts the coefficients ``u`` of the intensity profile

``I(μ) = 1 - Σ_{i>=1} u_i (1 - μ)^i``

into coefficients ``c`` of the Green's basis used by the occultation
engine, and provides the exact transpose of that linear map for
propagating gradients from ``c`` back to ``u``.

``u[0]`` never enters the transform: the degree-zero term is fixed by
normalization, and callers conventionally pass ``-1`` in that slot.

Both transforms loop over the static coefficient count with plain Python
``for`` loops traced by JAX, so each length compiles to a fixed graph.
"""

from __future__ import annotations

import jax.numpy as jnp
import numpy as np
from jax import Array
from jax.typing import ArrayLike

from transitjax.errors import InvalidArgumentError
from transitjax.utils import FlatView, output_view


def _check_length(view: FlatView) -> int:
    n = view.size
    if n < 1:
        raise InvalidArgumentError(f"dimension mismatch: {view.name} must have at least one element")
    return n


def _cl_forward(u: Array) -> Array:
    """Forward transform ``u -> c`` on a flat array."""
    N = u.shape[0]
    zero = jnp.zeros((), dtype=u.dtype)

    # Coefficients of the intensity polynomial in μ
    a = [zero + 1.0] + [zero] * (N - 1)
    for i in range(1, N):
        bcoeff = 1.0
        sign = 1.0
        for j in range(i + 1):
            a[j] = a[j] - u[i] * bcoeff * sign
            sign = -sign
            bcoeff *= (i - j) / (j + 1)

    # Green's basis coefficients, from the top down
    c = [zero] * N
    for j in range(N - 1, max(2, N - 2) - 1, -1):
        c[j] = a[j] / (j + 2)
    for j in range(N - 3, 1, -1):
        c[j] = a[j] / (j + 2) + c[j + 2]
    if N >= 2:
        c[1] = a[1] + 3.0 * c[3] if N >= 4 else a[1]
    c[0] = a[0] + 2.0 * c[2] if N >= 3 else a[0]

    return jnp.stack(c)


def _cl_reverse(bc: Array) -> Array:
    """Transpose of :func:`_cl_forward` applied to ``∂L/∂c``."""
    N = bc.shape[0]
    zero = jnp.zeros((), dtype=bc.dtype)
    bc = [bc[i] for i in range(N)]
    ba = [zero] * N

    # c[0] = a[0] + 2 c[2]
    ba[0] = bc[0]
    if N >= 3:
        bc[2] = bc[2] + 2.0 * bc[0]

    # c[1] = a[1] + 3 c[3]
    if N >= 2:
        ba[1] = bc[1]
        if N >= 4:
            bc[3] = bc[3] + 3.0 * bc[1]

    # c[j] = a[j] / (j + 2) + c[j + 2]
    for j in range(2, N - 2):
        ba[j] = bc[j] / (j + 2)
        bc[j + 2] = bc[j + 2] + bc[j]
    # c[j] = a[j] / (j + 2)
    for j in range(max(2, N - 2), N):
        ba[j] = bc[j] / (j + 2)

    bu = [zero] * N
    for i in range(1, N):
        bcoeff = 1.0
        sign = 1.0
        for j in range(i + 1):
            bu[i] = bu[i] - ba[j] * bcoeff * sign
            sign = -sign
            bcoeff *= (i - j) / (j + 1)

    return jnp.stack(bu)


def get_cl(u: ArrayLike, c: np.ndarray | None = None):
    """Convert limb-darkening coefficients to Green's basis coefficients.

    Args:
        u: Intensity-profile coefficients, length ``N >= 1``.  ``u[0]``
            is ignored.
        c: Optional caller-owned output buffer with ``N`` elements.  It is
            validated before anything is computed and filled in place.

    Returns:
        The Green's basis coefficients: ``c`` itself when supplied,
        otherwise a new array of length ``N``.

    Raises:
        InvalidArgumentError: If ``N < 1`` or the output buffer has the
            wrong size, is read-only or is not floating point.

    Examples:
        ```python
        import jax.numpy as jnp
        from transitjax.limbdark import get_cl
        c = get_cl(jnp.array([-1.0, 0.4, 0.26]))
        ```
    """
    u_view = FlatView(u, "u")
    n = _check_length(u_view)
    out = None if c is None else output_view(c, "c", (n,))

    result = _cl_forward(u_view.read())
    if out is None:
        return result
    out.write(result)
    return out.data


def get_cl_rev(bc: ArrayLike, bu: np.ndarray | None = None):
    """Back-propagate gradients through :func:`get_cl`.

    Applies the transpose of the forward linear map: given ``∂L/∂c``
    returns ``∂L/∂u``.  This is an adjoint, not an inverse.  The entry
    for ``u[0]`` is always zero.

    Args:
        bc: Gradient with respect to the Green's coefficients, length
            ``N >= 1``.
        bu: Optional caller-owned output buffer with ``N`` elements.

    Returns:
        The gradient with respect to ``u``: ``bu`` itself when supplied,
        otherwise a new array of length ``N``.

    Raises:
        InvalidArgumentError: If ``N < 1`` or the output buffer has the
            wrong size, is read-only or is not floating point.
    """
    bc_view = FlatView(bc, "bc")
    n = _check_length(bc_view)
    out = None if bu is None else output_view(bu, "bu", (n,))

    result = _cl_reverse(bc_view.read())
    if out is None:
        return result
    out.write(result)
    return out.data


def normalize_cl(c: ArrayLike) -> Array:
    """Scale Green's coefficients so an unocculted star has unit flux.

    The total flux of the disk is ``π (c[0] + 2 c[1] / 3)``; higher
    Green's basis terms integrate to zero over the full disk.

    Args:
        c: Green's basis coefficients, length ``N >= 1``.

    Returns:
        The normalized coefficients.

    Raises:
        InvalidArgumentError: If ``c`` is empty.
    """
    view = FlatView(c, "c")
    _check_length(view)
    c = view.read()
    c1 = c[1] if c.shape[0] > 1 else 0.0
    return c / (jnp.pi * (c[0] + 2.0 * c1 / 3.0))
