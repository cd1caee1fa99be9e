"""Batch execution strategies.

Every batch entry point evaluates a per-sample kernel over a batch of
independent samples.  How the batch is spread over hardware is decided by
an :class:`ExecutionStrategy`:

- :class:`VmapStrategy` compiles ``jax.jit(jax.vmap(kernel))`` and runs it
  on a single device.
- :class:`ShardedStrategy` splits the batch across devices with
  ``jax.pmap`` over ``jax.vmap``, padding the batch to a multiple of the
  shard count.  Small batches whose estimated cost does not justify a
  split fall back to a single device.

A kernel takes one scalar (or small array) per batched argument plus any
number of shared arguments, and returns an array or a tuple of arrays.
Results are identical regardless of strategy because samples never
interact.

Kernels should be long-lived callables (module-level functions or
attributes of a cached engine): compiled programs are cached per kernel
object, so a fresh closure per call compiles every time.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Callable, Sequence
from typing import Any, Protocol, runtime_checkable

import jax
import jax.numpy as jnp

logger = logging.getLogger(__name__)

_CACHE_SIZE = 32


@runtime_checkable
class ExecutionStrategy(Protocol):
    """Protocol for batch evaluators."""

    def evaluate_batch(
        self,
        kernel: Callable[..., Any],
        batched: Sequence[jax.Array],
        shared: Sequence[Any] = (),
    ) -> Any:
        """Evaluate *kernel* for every sample along the leading axis.

        Args:
            kernel: Per-sample function ``kernel(*batched_i, *shared)``.
            batched: Arrays with a common leading batch axis.
            shared: Arguments passed unchanged to every sample.

        Returns:
            The kernel outputs stacked along a new leading axis.
        """
        ...


class _CompiledCache:
    """Small LRU of compiled programs keyed on the kernel and arity."""

    def __init__(self, build: Callable[..., Callable]) -> None:
        self._build = build
        self._entries: OrderedDict = OrderedDict()

    def get(self, kernel, n_batched: int, n_shared: int, *extra):
        key = (kernel, n_batched, n_shared, *extra)
        fn = self._entries.get(key)
        if fn is None:
            fn = self._build(kernel, n_batched, n_shared, *extra)
            self._entries[key] = fn
            if len(self._entries) > _CACHE_SIZE:
                self._entries.popitem(last=False)
        else:
            self._entries.move_to_end(key)
        return fn


def _in_axes(n_batched: int, n_shared: int) -> tuple:
    return (0,) * n_batched + (None,) * n_shared


def _build_vmap(kernel, n_batched: int, n_shared: int):
    return jax.jit(jax.vmap(kernel, in_axes=_in_axes(n_batched, n_shared)))


def _build_pmap(kernel, n_batched: int, n_shared: int, devices: tuple):
    in_axes = _in_axes(n_batched, n_shared)
    return jax.pmap(jax.vmap(kernel, in_axes=in_axes), in_axes=in_axes, devices=devices)


def _batch_size(batched: Sequence[jax.Array]) -> int:
    if not batched:
        raise ValueError("evaluate_batch needs at least one batched argument")
    sizes = {x.shape[0] for x in batched}
    if len(sizes) != 1:
        raise ValueError(f"batched arguments disagree on the batch size: {sorted(sizes)}")
    return sizes.pop()


class VmapStrategy:
    """Vectorize the kernel with ``jax.vmap`` on one device.

    Args:
        device: Device to run on.  ``None`` uses JAX's default placement.
    """

    def __init__(self, device: jax.Device | None = None) -> None:
        self.device = device
        self._cache = _CompiledCache(_build_vmap)

    def evaluate_batch(self, kernel, batched, shared=()):
        batched = tuple(jnp.asarray(x) for x in batched)
        _batch_size(batched)
        if self.device is not None:
            batched = jax.device_put(batched, self.device)
        fn = self._cache.get(kernel, len(batched), len(shared))
        return fn(*batched, *shared)


class ShardedStrategy:
    """Split a batch across devices with ``jax.pmap``.

    The number of shards is the device count, reduced so that each shard
    carries at least ``min_cost_per_shard`` units of estimated work.  The
    batch is padded by repeating its last sample; padded results are
    dropped before returning.

    Args:
        devices: Devices to shard over.  ``None`` uses ``jax.devices()``.
        cost_per_element: Estimated work units per sample.
        min_cost_per_shard: Minimum work units that justify a shard.
    """

    def __init__(
        self,
        devices: Sequence[jax.Device] | None = None,
        cost_per_element: int = 5,
        min_cost_per_shard: int = 10_000,
    ) -> None:
        if cost_per_element <= 0:
            raise ValueError(f"cost_per_element must be positive, got {cost_per_element}")
        if min_cost_per_shard <= 0:
            raise ValueError(f"min_cost_per_shard must be positive, got {min_cost_per_shard}")
        self.devices = tuple(devices) if devices is not None else None
        self.cost_per_element = cost_per_element
        self.min_cost_per_shard = min_cost_per_shard
        self._cache = _CompiledCache(_build_pmap)
        self._single: VmapStrategy | None = None

    def num_shards(self, n: int) -> int:
        """Number of shards used for a batch of *n* samples."""
        devices = self.devices or tuple(jax.devices())
        by_cost = (n * self.cost_per_element) // self.min_cost_per_shard
        return max(1, min(len(devices), by_cost, n))

    def evaluate_batch(self, kernel, batched, shared=()):
        batched = tuple(jnp.asarray(x) for x in batched)
        n = _batch_size(batched)
        devices = self.devices or tuple(jax.devices())
        n_shards = self.num_shards(n)

        if n_shards <= 1:
            logger.debug("Batch of %d samples runs on a single device", n)
            if self._single is None:
                self._single = VmapStrategy(devices[0])
            return self._single.evaluate_batch(kernel, batched, shared)

        per_shard = -(-n // n_shards)
        n_padded = per_shard * n_shards
        logger.debug(
            "Sharding %d samples over %d devices (%d per shard, %d padded)",
            n, n_shards, per_shard, n_padded - n,
        )

        def shard(x):
            pad = [(0, n_padded - n)] + [(0, 0)] * (x.ndim - 1)
            x = jnp.pad(x, pad, mode="edge")
            return x.reshape((n_shards, per_shard) + x.shape[1:])

        fn = self._cache.get(kernel, len(batched), len(shared), devices[:n_shards])
        out = fn(*(shard(x) for x in batched), *shared)

        def unshard(y):
            return y.reshape((n_padded,) + y.shape[2:])[:n]

        return jax.tree_util.tree_map(unshard, out)


_default_strategy: ExecutionStrategy = VmapStrategy()


def get_default_strategy() -> ExecutionStrategy:
    """Return the strategy used when a batch call does not pass one."""
    return _default_strategy


def set_default_strategy(strategy: ExecutionStrategy) -> None:
    """Replace the process-wide default strategy.

    Args:
        strategy: Any object implementing :class:`ExecutionStrategy`.

    Raises:
        TypeError: If *strategy* has no ``evaluate_batch`` method.
    """
    global _default_strategy
    if not isinstance(strategy, ExecutionStrategy):
        raise TypeError(f"Expected an ExecutionStrategy, got {type(strategy).__name__}")
    _default_strategy = strategy
