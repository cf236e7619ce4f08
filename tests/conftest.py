import matplotlib

matplotlib.use("Agg")

import numpy as np  # noqa: E402
import pytest  # noqa: E402

from pitchplunge_gp.experiments.config import make_rng  # noqa: E402


@pytest.fixture
def rng() -> np.random.Generator:
    return make_rng(42)


def random_spd(rng: np.random.Generator, n: int, jitter: float = 1e-3) -> np.ndarray:
    """Random symmetric positive definite matrix."""
    A = rng.standard_normal((n, n))
    return A @ A.T + jitter * np.eye(n)
