import os

# Expose several host devices so the sharded strategy runs jax.pmap on CPU.
# Must happen before jax is imported.
os.environ["XLA_FLAGS"] = (
    os.environ.get("XLA_FLAGS", "") + " --xla_force_host_platform_device_count=4"
).strip()

import jax.numpy as jnp  # noqa: E402
import pytest  # noqa: E402

from transitjax.config import set_dtype  # noqa: E402


@pytest.fixture(autouse=True)
def _ensure_float64():
    """Set float64 precision before every test.

    The library default is float32.  Tests run in float64 unless they
    explicitly override it (test_config.py resets to float32 with its own
    autouse fixture).
    """
    set_dtype(jnp.float64)
