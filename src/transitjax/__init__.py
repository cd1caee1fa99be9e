"""
transitjax computes exoplanet transit observables in JAX: Kepler's equation
and analytic light curves for polynomially limb-darkened stars.
"""

from .config import set_dtype, get_dtype, get_tolerance_floor

from .errors import InvalidArgumentError

from .kepler import (
    solve_kepler,
    solve_kepler_trig,
    kepler,
    kepler_trig,
)

from .limbdark import (
    get_cl,
    get_cl_rev,
    normalize_cl,
    GreensLimbDark,
    LimbDark,
    limb_dark_light_curve,
)

from .parallel import (
    ExecutionStrategy,
    VmapStrategy,
    ShardedStrategy,
    get_default_strategy,
    set_default_strategy,
)

__all__ = [
    "set_dtype",
    "get_dtype",
    "get_tolerance_floor",
    "InvalidArgumentError",
    "solve_kepler",
    "solve_kepler_trig",
    "kepler",
    "kepler_trig",
    "get_cl",
    "get_cl_rev",
    "normalize_cl",
    "GreensLimbDark",
    "LimbDark",
    "limb_dark_light_curve",
    "ExecutionStrategy",
    "VmapStrategy",
    "ShardedStrategy",
    "get_default_strategy",
    "set_default_strategy",
]
