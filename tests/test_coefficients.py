import jax
import jax.numpy as jnp
import numpy as np
import pytest

from transitjax.errors import InvalidArgumentError
from transitjax.limbdark import get_cl, get_cl_rev, normalize_cl

_TOL = 1e-12


def _intensity(u, mu):
    """I(mu) = 1 - sum_{i>=1} u_i (1 - mu)^i."""
    return 1.0 - sum(u[i] * (1.0 - mu) ** i for i in range(1, len(u)))


def _greens_basis_intensity(c, mu):
    """Evaluate sum_n c_n g_n(mu) in the Green's basis."""
    total = np.zeros_like(mu)
    for n, cn in enumerate(c):
        if n == 0:
            g = np.ones_like(mu)
        elif n == 1:
            g = mu
        else:
            g = (n + 2) * mu**n - n * mu ** (n - 2)
        total = total + cn * g
    return total


# ──────────────────────────────────────────────
# Forward transform
# ──────────────────────────────────────────────

class TestGetCl:
    def test_quadratic_closed_form(self):
        """Quadratic law: c = (1 - u1 - 1.5 u2, u1 + 2 u2, -u2 / 4)."""
        u1, u2 = 0.4, 0.26
        c = get_cl(jnp.array([-1.0, u1, u2]))
        expected = jnp.array([1.0 - u1 - 1.5 * u2, u1 + 2.0 * u2, -0.25 * u2])
        assert jnp.max(jnp.abs(c - expected)) < _TOL

    def test_uniform(self):
        """A single coefficient is the uniform disk."""
        c = get_cl(jnp.array([-1.0]))
        assert c.shape == (1,)
        assert jnp.abs(c[0] - 1.0) < _TOL

    def test_linear(self):
        c = get_cl(jnp.array([-1.0, 0.6]))
        assert jnp.max(jnp.abs(c - jnp.array([0.4, 0.6]))) < _TOL

    @pytest.mark.parametrize("N", [1, 2, 3, 4, 5, 6, 8])
    def test_reproduces_intensity_profile(self, N):
        """The Green's basis expansion reproduces I(mu) at every mu."""
        rng = np.random.default_rng(N)
        u = rng.uniform(-0.5, 0.5, N)
        c = np.asarray(get_cl(u))
        mu = np.linspace(0.0, 1.0, 51)
        np.testing.assert_allclose(_greens_basis_intensity(c, mu), _intensity(u, mu), atol=1e-10)

    def test_first_coefficient_ignored(self):
        c1 = get_cl(jnp.array([-1.0, 0.3, 0.1]))
        c2 = get_cl(jnp.array([42.0, 0.3, 0.1]))
        assert jnp.array_equal(c1, c2)

    def test_accepts_lists(self):
        c = get_cl([-1.0, 0.4, 0.26])
        assert c.shape == (3,)

    def test_writes_into_caller_buffer(self):
        out = np.zeros(3)
        c = get_cl(np.array([-1.0, 0.4, 0.26]), c=out)
        assert c is out
        np.testing.assert_allclose(out, get_cl(np.array([-1.0, 0.4, 0.26])), atol=_TOL)

    def test_wrong_output_size_raises_before_writing(self):
        out = np.full(4, -7.0)
        with pytest.raises(InvalidArgumentError, match="dimension mismatch"):
            get_cl(np.array([-1.0, 0.4, 0.26]), c=out)
        assert np.all(out == -7.0)

    def test_read_only_output_raises(self):
        out = np.zeros(3)
        out.flags.writeable = False
        with pytest.raises(InvalidArgumentError, match="writeable"):
            get_cl(np.array([-1.0, 0.4, 0.26]), c=out)

    def test_empty_raises(self):
        with pytest.raises(InvalidArgumentError, match="at least one"):
            get_cl(np.zeros(0))


# ──────────────────────────────────────────────
# Reverse transform
# ──────────────────────────────────────────────

class TestGetClRev:
    @pytest.mark.parametrize("N", [1, 2, 3, 4, 5, 6, 7])
    def test_adjoint_matches_jacobian(self, N):
        """get_cl_rev(e_k) equals row k of d c / d u (column k of the transpose)."""
        u = jnp.linspace(-0.3, 0.5, N)
        J = jax.jacfwd(get_cl)(u)
        for k in range(N):
            bc = jnp.zeros(N).at[k].set(1.0)
            bu = get_cl_rev(bc)
            assert jnp.max(jnp.abs(bu - J[k])) < _TOL

    @pytest.mark.parametrize("N", [2, 3, 6])
    def test_dot_product_identity(self, N):
        """<get_cl(u), v> == <u, get_cl_rev(v)> up to the ignored u[0]."""
        rng = np.random.default_rng(100 + N)
        u = rng.normal(size=N)
        v = rng.normal(size=N)
        u[0] = 0.0
        zero = np.asarray(get_cl(np.zeros(N)))
        lhs = np.dot(np.asarray(get_cl(u)) - zero, v)
        rhs = np.dot(u, np.asarray(get_cl_rev(v)))
        assert abs(lhs - rhs) < 1e-10

    def test_first_entry_is_zero(self):
        bu = get_cl_rev(jnp.array([1.0, 2.0, 3.0, 4.0]))
        assert bu[0] == 0.0

    def test_single_coefficient(self):
        bu = get_cl_rev(jnp.array([5.0]))
        assert bu.shape == (1,)
        assert bu[0] == 0.0

    def test_writes_into_caller_buffer(self):
        out = np.full(3, -7.0)
        bu = get_cl_rev(np.array([1.0, 0.5, 0.25]), bu=out)
        assert bu is out
        np.testing.assert_allclose(out, get_cl_rev(np.array([1.0, 0.5, 0.25])), atol=_TOL)

    def test_wrong_output_size_raises(self):
        with pytest.raises(InvalidArgumentError, match="dimension mismatch"):
            get_cl_rev(np.ones(3), bu=np.zeros(2))

    def test_empty_raises(self):
        with pytest.raises(InvalidArgumentError):
            get_cl_rev(np.zeros(0))


# ──────────────────────────────────────────────
# Normalization
# ──────────────────────────────────────────────

class TestNormalizeCl:
    @pytest.mark.parametrize("u", [[-1.0], [-1.0, 0.6], [-1.0, 0.4, 0.26], [-1.0, 0.1, 0.2, -0.1, 0.05]])
    def test_unit_total_flux(self, u):
        """pi * (c0 + 2 c1 / 3) == 1 after normalization."""
        c = normalize_cl(get_cl(jnp.array(u)))
        c1 = c[1] if c.shape[0] > 1 else 0.0
        assert jnp.abs(jnp.pi * (c[0] + 2.0 * c1 / 3.0) - 1.0) < _TOL

    def test_uniform(self):
        c = normalize_cl(jnp.array([1.0]))
        assert jnp.abs(c[0] - 1.0 / jnp.pi) < _TOL

    def test_empty_raises(self):
        with pytest.raises(InvalidArgumentError):
            normalize_cl(np.zeros(0))
