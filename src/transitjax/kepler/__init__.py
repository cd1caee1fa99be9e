"""Kepler's equation: scalar/broadcast solvers and batch evaluators."""

from transitjax.kepler.batch import kepler, kepler_trig
from transitjax.kepler.solver import DEFAULT_MAX_ITER, solve_kepler, solve_kepler_trig

__all__ = [
    "DEFAULT_MAX_ITER",
    "kepler",
    "kepler_trig",
    "solve_kepler",
    "solve_kepler_trig",
]
