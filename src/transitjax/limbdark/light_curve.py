"""Limb-darkened transit light curves over caller-owned buffers.

:class:`LimbDark` evaluates the relative flux ``f = sT · c - 1`` and its
gradients for a batch of ``(b, r, los)`` samples, holding on to one
compiled :class:`~transitjax.limbdark.greens.GreensLimbDark` engine and
rebuilding it only when the number of coefficients (or the configured
dtype) changes.

Samples that are behind the star (``los <= 0``) or that do not overlap it
(``|b| >= 1 + |r|``) contribute zero flux change and zero gradients.

A :class:`LimbDark` instance is not safe to share between threads that
may request different degrees; give each thread its own instance.
"""

from __future__ import annotations

import functools
import logging
from typing import NamedTuple

import jax.numpy as jnp
import numpy as np
from jax.typing import ArrayLike

from transitjax.errors import InvalidArgumentError
from transitjax.limbdark.coefficients import get_cl, normalize_cl
from transitjax.limbdark.greens import GreensLimbDark
from transitjax.parallel import ExecutionStrategy, get_default_strategy
from transitjax.utils import FlatView, output_view, require_common_dtype

logger = logging.getLogger(__name__)


class LimbDarkResult(NamedTuple):
    """Outputs of :meth:`LimbDark.apply`.

    ``f``, ``dfdb`` and ``dfdr`` are shaped like ``b``; ``dfdcl`` has the
    coefficient axis first, ``(N, *b.shape)``.
    """

    f: np.ndarray
    dfdcl: np.ndarray
    dfdb: np.ndarray
    dfdr: np.ndarray


def _flux_sample(b, r, los, cl, *, solution):
    """Per-sample flux and gradients for one geometry."""
    sT, dsTdb, dsTdr = solution(b, r)
    visible = (los > 0.0) & (jnp.abs(b) < 1.0 + jnp.abs(r))
    f = jnp.where(visible, jnp.dot(sT, cl) - 1.0, 0.0)
    dfdcl = jnp.where(visible, sT, 0.0)
    dfdb = jnp.where(visible, jnp.sign(b) * jnp.dot(dsTdb, cl), 0.0)
    dfdr = jnp.where(visible, jnp.sign(r) * jnp.dot(dsTdr, cl), 0.0)
    return f, dfdcl, dfdb, dfdr


class LimbDark:
    """Batch evaluator for limb-darkened occultations.

    Args:
        strategy: Batch evaluator.  ``None`` uses
            :func:`~transitjax.parallel.get_default_strategy` at call time.

    Examples:
        ```python
        import numpy as np
        from transitjax.limbdark import LimbDark, get_cl, normalize_cl

        c = normalize_cl(get_cl(np.array([-1.0, 0.4, 0.26])))
        b = np.linspace(-1.2, 1.2, 500)
        res = LimbDark().apply(c, b, np.full_like(b, 0.1), np.ones_like(b))
        ```
    """

    def __init__(self, strategy: ExecutionStrategy | None = None) -> None:
        self.strategy = strategy
        self._engine: GreensLimbDark | None = None
        self._flux_kernel = None

    @property
    def engine(self) -> GreensLimbDark | None:
        """The cached engine, or ``None`` before the first call."""
        return self._engine

    def _ensure_engine(self, num_cl: int) -> GreensLimbDark:
        lmax = num_cl - 1
        if self._engine is None or not self._engine.matches(lmax):
            if self._engine is not None:
                logger.debug("Replacing engine lmax=%d with lmax=%d", self._engine.lmax, lmax)
            self._engine = GreensLimbDark(lmax, strategy=self.strategy)
            self._flux_kernel = functools.partial(_flux_sample, solution=self._engine.kernel)
        return self._engine

    def apply(
        self,
        cl: ArrayLike,
        b: ArrayLike,
        r: ArrayLike,
        los: ArrayLike,
        f: np.ndarray | None = None,
        dfdcl: np.ndarray | None = None,
        dfdb: np.ndarray | None = None,
        dfdr: np.ndarray | None = None,
    ) -> LimbDarkResult:
        """Relative flux and gradients for a batch of samples.

        All shapes and buffers are checked before any output is written.

        Args:
            cl: Normalized Green's basis coefficients, ``N >= 1``.
            b: Impact parameters, ``N_b`` elements, any shape.
            r: Occultor radii, ``N_b`` elements.
            los: Line-of-sight coordinate; only its sign matters.
            f: Optional output buffer for the flux, ``N_b`` elements.
            dfdcl: Optional output buffer, at least 2-D with leading
                dimension ``N`` and ``N * N_b`` elements.
            dfdb: Optional output buffer for ``∂f/∂b``.
            dfdr: Optional output buffer for ``∂f/∂r``.

        Returns:
            LimbDarkResult: The (possibly caller-owned) output buffers.

        Raises:
            InvalidArgumentError: On mismatched sizes, a malformed
                ``dfdcl`` buffer or non-writable / mixed-precision outputs.
        """
        cl_view = FlatView(cl, "cl")
        num_cl = cl_view.size
        if num_cl < 1:
            raise InvalidArgumentError("dimension mismatch: cl must have at least one element")

        b_view = FlatView(b, "b")
        n = b_view.size
        r_view = FlatView(r, "r").require_size(n, "one radius per impact parameter")
        los_view = FlatView(los, "los").require_size(n, "one los value per impact parameter")

        f_view = output_view(f, "f", b_view.shape)
        dfdb_view = output_view(dfdb, "dfdb", b_view.shape)
        dfdr_view = output_view(dfdr, "dfdr", b_view.shape)
        if dfdcl is not None:
            shape = np.shape(dfdcl)
            if len(shape) <= 1 or shape[0] != num_cl:
                raise InvalidArgumentError(
                    f"dimension mismatch: dfdcl must have shape ({num_cl}, ...), got {shape}"
                )
        dfdcl_view = output_view(dfdcl, "dfdcl", (num_cl,) + b_view.shape)
        require_common_dtype(f_view, dfdcl_view, dfdb_view, dfdr_view)

        engine = self._ensure_engine(num_cl)
        if n == 0:
            return LimbDarkResult(f_view.data, dfdcl_view.data, dfdb_view.data, dfdr_view.data)

        strategy = self.strategy or get_default_strategy()
        flux, grad_cl, grad_b, grad_r = strategy.evaluate_batch(
            self._flux_kernel,
            (b_view.read(), r_view.read(), los_view.read()),
            (cl_view.read().astype(engine.dtype),),
        )
        f_view.write(flux)
        dfdcl_view.write(grad_cl.T)
        dfdb_view.write(grad_b)
        dfdr_view.write(grad_r)
        return LimbDarkResult(f_view.data, dfdcl_view.data, dfdb_view.data, dfdr_view.data)


_default_limb_dark = LimbDark()


def limb_dark_light_curve(
    u: ArrayLike,
    b: ArrayLike,
    r: ArrayLike,
    los: ArrayLike | None = None,
) -> np.ndarray:
    """Relative flux for limb-darkening coefficients ``u``.

    Converts ``u`` to normalized Green's coefficients and evaluates the
    flux with a process-wide :class:`LimbDark` instance.

    Args:
        u: Limb-darkening coefficients; ``u[0]`` is ignored.
        b: Impact parameters.
        r: Occultor radii, same size as ``b``.
        los: Line-of-sight coordinates; defaults to all in front.

    Returns:
        np.ndarray: Relative flux, shaped like ``b``.

    Examples:
        ```python
        import numpy as np
        from transitjax.limbdark import limb_dark_light_curve
        b = np.linspace(0.0, 1.2, 100)
        flux = limb_dark_light_curve([-1.0, 0.5, 0.2], b, np.full_like(b, 0.1))
        ```
    """
    cl = normalize_cl(get_cl(u))
    if los is None:
        los = np.ones(np.shape(b))
    return _default_limb_dark.apply(cl, b, r, los).f
