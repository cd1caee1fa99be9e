# /// script
# requires-python = ">=3.11"
# dependencies = ["typer>=0.9.0", "transitjax"]
#
# [tool.uv.sources]
# transitjax = { path = ".." }
# ///
"""Compute a limb-darkened transit light curve for an eccentric orbit.

Solves Kepler's equation for a grid of times, projects the planet onto the
sky plane, and evaluates the flux and its gradients for quadratic (or
higher-order) limb darkening on every available JAX device.

Requires transitjax to be installed (``uv pip install -e .`` from the repo root).

Usage:
    uv run examples/light_curve.py [OPTIONS]

Examples:
    # Hot Jupiter with quadratic limb darkening
    uv run examples/light_curve.py --period 3.5 --ror 0.1 --u1 0.4 --u2 0.26

    # Eccentric orbit, many samples, sharded across devices
    uv run examples/light_curve.py --ecc 0.3 --omega 1.2 --n-samples 2000000 --sharded
"""

import time
from typing import Annotated

import jax
import jax.numpy as jnp
import numpy as np
import typer

from transitjax import (
    LimbDark,
    ShardedStrategy,
    VmapStrategy,
    get_cl,
    kepler_trig,
    normalize_cl,
    set_dtype,
)

set_dtype(jnp.float64)  # Must be before any JIT compilation


def main(
    period: Annotated[float, typer.Option(help="Orbital period in days")] = 3.5,
    a_rs: Annotated[float, typer.Option(help="Semi-major axis in stellar radii")] = 10.0,
    inc: Annotated[float, typer.Option(help="Inclination in degrees")] = 89.0,
    ecc: Annotated[float, typer.Option(help="Eccentricity")] = 0.0,
    omega: Annotated[float, typer.Option(help="Argument of periastron in radians")] = 0.0,
    ror: Annotated[float, typer.Option(help="Planet-to-star radius ratio")] = 0.1,
    u1: Annotated[float, typer.Option(help="Linear limb-darkening coefficient")] = 0.4,
    u2: Annotated[float, typer.Option(help="Quadratic limb-darkening coefficient")] = 0.26,
    window: Annotated[float, typer.Option(help="Half-width of the time window in days")] = 0.2,
    n_samples: Annotated[int, typer.Option(help="Number of time samples")] = 1000,
    sharded: Annotated[bool, typer.Option(help="Shard the batch across devices")] = False,
) -> None:
    """Evaluate a transit light curve and report depth and timing."""
    devices = jax.devices()
    print(f"JAX devices: {len(devices)} x {devices[0].platform.upper()}")

    # ── Orbit ────────────────────────────────────────────────────────────
    t = np.linspace(-window, window, n_samples)
    # Time of transit corresponds to true anomaly f = pi/2 - omega
    f0 = 0.5 * np.pi - omega
    E0 = 2.0 * np.arctan(np.sqrt((1.0 - ecc) / (1.0 + ecc)) * np.tan(0.5 * f0))
    M0 = E0 - ecc * np.sin(E0)
    M = M0 + 2.0 * np.pi * t / period
    e = np.full_like(M, ecc)

    t0 = time.perf_counter()
    sinf, cosf = kepler_trig(M, e)
    print(f"Solved Kepler's equation for {n_samples} samples in {time.perf_counter() - t0:.3f}s")

    # Sky-plane separation and line-of-sight coordinate
    cosw, sinw = np.cos(omega), np.sin(omega)
    cosi, sini = np.cos(np.radians(inc)), np.sin(np.radians(inc))
    dist = a_rs * (1.0 - ecc**2) / (1.0 + ecc * cosf)
    cos_wf = cosw * cosf - sinw * sinf
    sin_wf = sinw * cosf + cosw * sinf
    x = -dist * cos_wf
    y = -dist * sin_wf * cosi
    los = dist * sin_wf * sini
    b = np.sqrt(x**2 + y**2)
    r = np.full_like(b, ror)

    # ── Light curve ──────────────────────────────────────────────────────
    cl = normalize_cl(get_cl(np.array([-1.0, u1, u2])))
    strategy = ShardedStrategy() if sharded else VmapStrategy()
    ld = LimbDark(strategy=strategy)

    t0 = time.perf_counter()
    result = ld.apply(cl, b, r, los)
    print(f"Compiled and evaluated light curve in {time.perf_counter() - t0:.3f}s")

    t0 = time.perf_counter()
    result = ld.apply(cl, b, r, los)
    elapsed = time.perf_counter() - t0
    print(f"Re-evaluated light curve in {elapsed:.3f}s")
    if elapsed > 0:
        print(f"  Throughput: {n_samples / elapsed:,.0f} samples/s")

    in_transit = result.f < 0.0
    depth = -float(np.min(result.f))
    print(f"\nTransit depth: {depth * 1e6:.1f} ppm")
    if np.any(in_transit):
        t_in = t[in_transit]
        print(f"Transit duration: {(t_in[-1] - t_in[0]) * 24.0:.3f} h")
        i_mid = int(np.argmin(result.f))
        print(f"df/dr at mid-transit: {result.dfdr[i_mid]:.6f}")
        print(f"df/dc at mid-transit: {np.array2string(result.dfdcl[:, i_mid], precision=5)}")
    else:
        print("No transit in the sampled window.")


if __name__ == "__main__":
    typer.run(main)
