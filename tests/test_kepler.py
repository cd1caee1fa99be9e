import jax
import jax.numpy as jnp
import numpy as np
import pytest

from transitjax.config import get_tolerance_floor
from transitjax.errors import InvalidArgumentError
from transitjax.kepler import (
    DEFAULT_MAX_ITER,
    kepler,
    kepler_trig,
    solve_kepler,
    solve_kepler_trig,
)
from transitjax.kepler.solver import _solve_kepler, resolve_tolerance

# Tolerances for float64 arithmetic
_RESIDUAL_TOL = 1e-10  # radians
_TRIG_TOL = 1e-10
_STARTER_TOL = 0.05    # radians, starter estimate without refinement

_ECCENTRICITIES = [0.0, 0.01, 0.1, 0.3, 0.5, 0.7, 0.9, 0.95, 0.98]


def _mean_anomaly_grid(n=401):
    return jnp.linspace(-4.0 * jnp.pi, 4.0 * jnp.pi, n)


def _true_anomaly_reference(E, e):
    f = 2.0 * np.arctan2(np.sqrt(1.0 + e) * np.sin(0.5 * E), np.sqrt(1.0 - e) * np.cos(0.5 * E))
    return np.sin(f), np.cos(f)


# ──────────────────────────────────────────────
# Eccentric anomaly
# ──────────────────────────────────────────────

class TestSolveKepler:
    @pytest.mark.parametrize("e", _ECCENTRICITIES)
    def test_residual(self, e):
        """E - e sin(E) reproduces M for any real M."""
        M = _mean_anomaly_grid()
        E = solve_kepler(M, e, max_iter=50, tol=1e-12)
        residual = E - e * jnp.sin(E) - M
        assert jnp.max(jnp.abs(residual)) < _RESIDUAL_TOL

    def test_circular_orbit_is_exact(self):
        """e = 0 returns E == M bit for bit."""
        M = _mean_anomaly_grid()
        E = solve_kepler(M, 0.0)
        assert jnp.array_equal(E, M)

    def test_monotonic_in_mean_anomaly(self):
        """E(M) is strictly increasing."""
        M = jnp.linspace(0.0, 2.0 * jnp.pi, 1000)
        E = solve_kepler(M, 0.9)
        assert jnp.all(jnp.diff(E) > 0.0)

    def test_apsides(self):
        """M = 0 and M = pi map to themselves for any eccentricity."""
        for e in (0.2, 0.6, 0.95):
            assert jnp.abs(solve_kepler(0.0, e)) < _RESIDUAL_TOL
            assert jnp.abs(solve_kepler(jnp.pi, e) - jnp.pi) < _RESIDUAL_TOL

    def test_known_value(self):
        """E = pi/2 at e = 0.1 corresponds to M = pi/2 - 0.1."""
        E = solve_kepler(jnp.pi / 2.0 - 0.1, 0.1)
        assert jnp.abs(E - jnp.pi / 2.0) < _RESIDUAL_TOL

    def test_broadcasting(self):
        """Scalar eccentricity broadcasts against an array of M."""
        M = jnp.array([[0.1, 0.2], [0.3, 0.4]])
        E = solve_kepler(M, 0.5)
        assert E.shape == (2, 2)

    @pytest.mark.parametrize("e", [0.1, 0.5, 0.9])
    def test_zero_iterations_returns_starter(self, e):
        """max_iter = 0 returns the starter, already close to the root."""
        M = jnp.linspace(0.0, 2.0 * jnp.pi, 101)
        E0 = solve_kepler(M, e, max_iter=0)
        E = solve_kepler(M, e)
        assert jnp.all(jnp.isfinite(E0))
        assert jnp.max(jnp.abs(E0 - E)) < _STARTER_TOL

    @pytest.mark.parametrize("e", [0.99, 0.999999])
    @pytest.mark.parametrize("max_iter", [0, 1])
    def test_tiny_budget_near_parabolic(self, e, max_iter):
        """An exhausted budget returns a finite estimate without raising."""
        M = jnp.concatenate([jnp.logspace(-8.0, 0.0, 50), jnp.linspace(1.0, 2.0 * jnp.pi, 50)])
        E = solve_kepler(M, e, max_iter=max_iter)
        residual = E - e * jnp.sin(E) - M
        assert jnp.all(jnp.isfinite(E))
        assert jnp.max(jnp.abs(residual)) < _STARTER_TOL
        if max_iter == 1:
            assert jnp.max(jnp.abs(residual)) < 1e-6

    def test_loose_tolerance_is_honoured(self):
        """A loose tolerance still yields a residual below that tolerance."""
        M = jnp.linspace(0.0, 2.0 * jnp.pi, 101)
        E = solve_kepler(M, 0.7, tol=1e-3)
        residual = E - 0.7 * jnp.sin(E) - M
        assert jnp.max(jnp.abs(residual)) < 1e-3

    def test_kernel_is_jittable(self):
        """The traced kernel runs under jit with a traced budget and tolerance."""
        M = jnp.linspace(0.0, 6.0, 20)
        e = jnp.full_like(M, 0.4)
        E = jax.jit(_solve_kepler)(M, e, 50, 1e-12)
        assert jnp.max(jnp.abs(E - 0.4 * jnp.sin(E) - M)) < _RESIDUAL_TOL

    def test_negative_max_iter_raises(self):
        with pytest.raises(InvalidArgumentError, match="max_iter"):
            solve_kepler(0.5, 0.1, max_iter=-1)

    def test_negative_eccentricity_raises(self):
        with pytest.raises(InvalidArgumentError, match="eccentricity"):
            solve_kepler(0.5, -0.1)


class TestResolveTolerance:
    def test_default_uses_floor(self):
        assert resolve_tolerance(-1.0) == get_tolerance_floor()

    def test_below_eps_uses_floor(self):
        assert resolve_tolerance(1e-300) == get_tolerance_floor()

    def test_reachable_tolerance_kept(self):
        assert resolve_tolerance(1e-8) == 1e-8


# ──────────────────────────────────────────────
# True anomaly
# ──────────────────────────────────────────────

class TestSolveKeplerTrig:
    @pytest.mark.parametrize("e", _ECCENTRICITIES)
    def test_matches_atan2_reference(self, e):
        """sin f and cos f agree with the half-angle atan2 construction."""
        M = _mean_anomaly_grid()
        sinf, cosf = solve_kepler_trig(M, e)
        E = np.asarray(solve_kepler(M, e))
        sin_ref, cos_ref = _true_anomaly_reference(E, e)
        np.testing.assert_allclose(sinf, sin_ref, atol=_TRIG_TOL)
        np.testing.assert_allclose(cosf, cos_ref, atol=_TRIG_TOL)

    def test_unit_circle(self):
        M = _mean_anomaly_grid()
        sinf, cosf = solve_kepler_trig(M, 0.8)
        assert jnp.max(jnp.abs(sinf**2 + cosf**2 - 1.0)) < _TRIG_TOL

    def test_periapsis_and_apoapsis(self):
        """f = 0 at M = 0 and f = pi at M = pi."""
        sinf, cosf = solve_kepler_trig(0.0, 0.6)
        assert jnp.abs(sinf) < _TRIG_TOL
        assert jnp.abs(cosf - 1.0) < _TRIG_TOL
        sinf, cosf = solve_kepler_trig(jnp.pi, 0.6)
        assert jnp.abs(sinf) < 1e-8
        assert jnp.abs(cosf + 1.0) < _TRIG_TOL

    def test_circular_orbit(self):
        """For e = 0 the true anomaly equals the mean anomaly."""
        M = jnp.linspace(-3.0, 3.0, 25)
        sinf, cosf = solve_kepler_trig(M, 0.0)
        np.testing.assert_allclose(sinf, np.sin(M), atol=_TRIG_TOL)
        np.testing.assert_allclose(cosf, np.cos(M), atol=_TRIG_TOL)

    @pytest.mark.parametrize("e", [-0.1, 1.0, 1.5, float("nan")])
    def test_invalid_eccentricity_raises(self, e):
        with pytest.raises(InvalidArgumentError, match="eccentricity"):
            solve_kepler_trig(0.5, e)


# ──────────────────────────────────────────────
# Batch evaluation
# ──────────────────────────────────────────────

class TestKeplerBatch:
    def test_matches_broadcast_solver(self):
        rng = np.random.default_rng(42)
        M = rng.uniform(-10.0, 10.0, 257)
        e = rng.uniform(0.0, 0.95, 257)
        E = kepler(M, e)
        E_ref = solve_kepler(M, e)
        np.testing.assert_allclose(E, E_ref, atol=1e-12)

    def test_preserves_input_shape(self):
        M = np.linspace(0.0, 6.0, 12).reshape(3, 4)
        E = kepler(M, np.full(12, 0.2))
        assert E.shape == (3, 4)

    def test_writes_into_caller_buffer(self):
        M = np.array([0.5, 1.0, 1.5])
        e = np.array([0.1, 0.2, 0.3])
        out = np.zeros(3)
        E = kepler(M, e, E=out)
        assert E is out
        np.testing.assert_allclose(out - e * np.sin(out), M, atol=_RESIDUAL_TOL)

    def test_max_iter_respected(self):
        M = np.linspace(0.1, 3.0, 10)
        e = np.full(10, 0.5)
        np.testing.assert_allclose(
            kepler(M, e, max_iter=0),
            solve_kepler(M, e, max_iter=0),
            atol=1e-12,
        )

    def test_empty_batch(self):
        E = kepler(np.zeros(0), np.zeros(0))
        assert E.shape == (0,)

    def test_size_mismatch_raises_before_writing(self):
        out = np.full(3, -7.0)
        with pytest.raises(InvalidArgumentError, match="dimension mismatch"):
            kepler(np.zeros(3), np.zeros(2), E=out)
        assert np.all(out == -7.0)

    def test_output_size_mismatch_raises(self):
        with pytest.raises(InvalidArgumentError, match="dimension mismatch"):
            kepler(np.zeros(3), np.zeros(3), E=np.zeros(4))

    def test_negative_eccentricity_raises_before_writing(self):
        out = np.full(3, -7.0)
        with pytest.raises(InvalidArgumentError, match="eccentricity"):
            kepler(np.zeros(3), np.array([0.1, -0.2, 0.3]), E=out)
        assert np.all(out == -7.0)

    def test_negative_max_iter_raises(self):
        with pytest.raises(InvalidArgumentError, match="max_iter"):
            kepler(np.zeros(3), np.zeros(3), max_iter=-5)

    def test_default_budget(self):
        assert DEFAULT_MAX_ITER == 2000


class TestKeplerTrigBatch:
    def test_matches_broadcast_solver(self):
        rng = np.random.default_rng(7)
        M = rng.uniform(-10.0, 10.0, 129)
        e = rng.uniform(0.0, 0.99, 129)
        sinf, cosf = kepler_trig(M, e)
        sin_ref, cos_ref = solve_kepler_trig(M, e)
        np.testing.assert_allclose(sinf, sin_ref, atol=1e-12)
        np.testing.assert_allclose(cosf, cos_ref, atol=1e-12)

    def test_writes_into_caller_buffers(self):
        M = np.array([0.5, 1.0])
        e = np.array([0.1, 0.2])
        sinf = np.zeros(2)
        cosf = np.zeros(2)
        out_s, out_c = kepler_trig(M, e, sinf=sinf, cosf=cosf)
        assert out_s is sinf
        assert out_c is cosf
        np.testing.assert_allclose(sinf**2 + cosf**2, 1.0, atol=_TRIG_TOL)

    def test_eccentricity_of_one_raises_before_writing(self):
        sinf = np.full(3, -7.0)
        cosf = np.full(3, -7.0)
        with pytest.raises(InvalidArgumentError, match="eccentricity"):
            kepler_trig(np.zeros(3), np.array([0.1, 1.0, 0.3]), sinf=sinf, cosf=cosf)
        assert np.all(sinf == -7.0)
        assert np.all(cosf == -7.0)

    def test_read_only_buffer_raises(self):
        sinf = np.zeros(2)
        sinf.flags.writeable = False
        with pytest.raises(InvalidArgumentError, match="writeable"):
            kepler_trig(np.zeros(2), np.zeros(2), sinf=sinf)

    def test_integer_buffer_raises(self):
        with pytest.raises(InvalidArgumentError, match="floating-point"):
            kepler_trig(np.zeros(2), np.zeros(2), cosf=np.zeros(2, dtype=np.int64))

    def test_mixed_precision_raises(self):
        with pytest.raises(InvalidArgumentError, match="mixed precision"):
            kepler_trig(
                np.zeros(2),
                np.zeros(2),
                sinf=np.zeros(2, dtype=np.float32),
                cosf=np.zeros(2, dtype=np.float64),
            )
