"""Shape-aware views over caller-owned array buffers.

Batch entry points accept plain array-likes as inputs and, optionally,
pre-allocated NumPy arrays as outputs.  :class:`FlatView` wraps either and
validates size, dimensionality and writability once, at the boundary,
so the numeric kernels never see a malformed buffer.  All checks raise
:class:`~transitjax.errors.InvalidArgumentError` and happen before any
buffer is written.
"""

from __future__ import annotations

import jax.numpy as jnp
import numpy as np
from jax import Array
from jax.typing import ArrayLike

from transitjax.config import get_dtype
from transitjax.errors import InvalidArgumentError


class FlatView:
    """Bounds-checked view over an input or output buffer.

    Args:
        data: The wrapped array.  Output views require a writable
            floating-point :class:`numpy.ndarray`.
        name: Argument name used in error messages.
        writable: If ``True``, the view is an output and is validated as
            such.

    Raises:
        InvalidArgumentError: If an output buffer is not a writable float
            ``numpy.ndarray``.
    """

    def __init__(self, data: ArrayLike, name: str, writable: bool = False) -> None:
        self.name = name
        self.writable = writable
        if writable:
            if not isinstance(data, np.ndarray):
                raise InvalidArgumentError(
                    f"{name} must be a writeable numpy.ndarray, "
                    f"got {type(data).__name__}"
                )
            if not data.flags.writeable:
                raise InvalidArgumentError(f"{name} must be writeable")
            if data.dtype.kind != "f":
                raise InvalidArgumentError(
                    f"{name} must have a floating-point dtype, got {data.dtype}"
                )
            self._data = data
        else:
            self._data = data if hasattr(data, "shape") else np.asarray(data)

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(self._data.shape)

    @property
    def ndim(self) -> int:
        return len(self.shape)

    @property
    def size(self) -> int:
        return int(np.prod(self.shape, dtype=np.int64))

    @property
    def dtype(self):
        return self._data.dtype

    @property
    def data(self):
        """The wrapped buffer itself."""
        return self._data

    def require_size(self, n: int, what: str = "") -> FlatView:
        """Check that the buffer holds exactly *n* elements.

        Args:
            n: Required element count.
            what: Optional description of where *n* comes from.

        Returns:
            FlatView: ``self``, for chaining.

        Raises:
            InvalidArgumentError: On a size mismatch.
        """
        if self.size != n:
            suffix = f" ({what})" if what else ""
            raise InvalidArgumentError(
                f"dimension mismatch: {self.name} has {self.size} elements, "
                f"expected {n}{suffix}"
            )
        return self

    def read(self) -> Array:
        """Return the buffer contents as a flat array of the configured dtype."""
        return jnp.ravel(jnp.asarray(self._data, dtype=get_dtype()))

    def write(self, values: ArrayLike) -> None:
        """Copy *values* into the wrapped buffer in place.

        *values* must hold exactly as many elements as the buffer; it is
        reshaped to the buffer's shape and cast to the buffer's dtype.
        """
        if not self.writable:
            raise InvalidArgumentError(f"{self.name} is not an output buffer")
        values = np.asarray(values)
        if values.size != self.size:
            raise InvalidArgumentError(
                f"dimension mismatch: cannot write {values.size} values "
                f"into {self.name} of size {self.size}"
            )
        self._data[...] = values.reshape(self.shape).astype(self._data.dtype, copy=False)


def output_view(
    data: np.ndarray | None,
    name: str,
    shape: tuple[int, ...],
) -> FlatView:
    """Wrap a caller-supplied output buffer, or allocate a zeroed one.

    Args:
        data: Caller-owned output buffer, or ``None`` to allocate.
        name: Argument name used in error messages.
        shape: Shape of a freshly allocated buffer.  Caller buffers are
            only required to match its element count.

    Returns:
        FlatView: A writable view.
    """
    if data is None:
        data = np.zeros(shape, dtype=np.dtype(get_dtype()))
    n = int(np.prod(shape, dtype=np.int64))
    return FlatView(data, name, writable=True).require_size(n)


def require_common_dtype(*views: FlatView) -> None:
    """Reject output buffers that mix floating-point precisions.

    Raises:
        InvalidArgumentError: If the views do not share one dtype.
    """
    dtypes = {np.dtype(v.dtype) for v in views}
    if len(dtypes) > 1:
        names = ", ".join(f"{v.name}={v.dtype}" for v in views)
        raise InvalidArgumentError(f"mixed precision output buffers: {names}")
