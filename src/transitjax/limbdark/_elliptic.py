"""Complete elliptic integrals for the occultation kernels.

Implements Bulirsch's general complete elliptic integral ``cel`` with
``jax.lax.while_loop`` so it can be traced, vectorized and compiled.
The Legendre forms ``K(k)`` and ``E(k)`` are special cases of ``cel``.

References:
    1. R. Bulirsch, *Numerical calculation of elliptic integrals and
       elliptic functions. III*, Numerische Mathematik 13, 305-315, 1969.
"""

from __future__ import annotations

import jax
import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

_MAX_ITER = 50


def cel(kc: ArrayLike, p: ArrayLike, a: ArrayLike, b: ArrayLike) -> Array:
    """Bulirsch's general complete elliptic integral.

    Evaluates

    ``∫_0^{π/2} (a cos²φ + b sin²φ) / ((cos²φ + p sin²φ) sqrt(cos²φ + kc² sin²φ)) dφ``

    for ``p > 0``.  The complementary modulus is floored at machine
    epsilon so that the ``k -> 1`` limit stays finite; terms of the form
    ``kc² K`` then vanish to working precision.

    Args:
        kc: Complementary modulus ``sqrt(1 - k²)``.
        p: Characteristic, ``p > 0``.
        a: Weight of ``cos²φ`` in the numerator.
        b: Weight of ``sin²φ`` in the numerator.

    Returns:
        The integral, broadcast over the inputs.
    """
    kc, p, a, b = jnp.broadcast_arrays(
        *(jnp.asarray(x) for x in (kc, p, a, b))
    )
    dtype = jnp.result_type(kc, p, a, b)
    kc, p, a, b = (x.astype(dtype) for x in (kc, p, a, b))

    finfo = jnp.finfo(dtype)
    ca = jnp.sqrt(finfo.eps)

    qc = jnp.maximum(jnp.abs(kc), finfo.eps)
    e = qc
    em = jnp.ones_like(qc)
    p = jnp.sqrt(p)
    b = b / p

    def cond(state):
        *_, done, i = state
        return jnp.any(~done) & (i < _MAX_ITER)

    def body(state):
        a, b, p, qc, e, em, done, i = state
        f = a
        a_new = a + b / p
        g = e / p
        b_new = 2.0 * (b + f * g)
        p_new = g + p
        g = em
        em_new = qc + em
        converged = jnp.abs(g - qc) <= g * ca
        qc_new = 2.0 * jnp.sqrt(e)
        e_new = qc_new * em_new

        live = ~done
        step = live & ~converged
        a = jnp.where(live, a_new, a)
        b = jnp.where(live, b_new, b)
        p = jnp.where(live, p_new, p)
        em = jnp.where(live, em_new, em)
        qc = jnp.where(step, qc_new, qc)
        e = jnp.where(step, e_new, e)
        return a, b, p, qc, e, em, done | converged, i + 1

    init_state = (a, b, p, qc, e, em, jnp.zeros(qc.shape, dtype=bool), jnp.int32(0))
    a, b, p, _, _, em, _, _ = jax.lax.while_loop(cond, body, init_state)
    return 0.5 * jnp.pi * (b + a * em) / (em * (em + p))


def ellipk_ellipe(m: ArrayLike) -> tuple[Array, Array]:
    """Complete elliptic integrals of the first and second kind.

    Args:
        m: Parameter ``m = k²`` in ``[0, 1]``.

    Returns:
        tuple: ``(K(m), E(m))``.
    """
    m = jnp.asarray(m)
    kc = jnp.sqrt(jnp.clip(1.0 - m, 0.0, 1.0))
    one = jnp.ones_like(kc)
    K = cel(kc, one, one, one)
    E = cel(kc, one, one, kc * kc)
    return K, E
