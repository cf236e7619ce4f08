import numpy as np
import pytest

from pitchplunge_gp.gp import sonig as sonig_module
from pitchplunge_gp.gp.distributions import DegenerateUpdateError, GaussianDistribution
from pitchplunge_gp.gp.exact_gp import ExactGP
from pitchplunge_gp.gp.sonig import SONIG, SONIGHyperparameters
from pitchplunge_gp.gp.sparse_gp import SparseGP


@pytest.fixture
def noiseless_input_hyp() -> SONIGHyperparameters:
    return SONIGHyperparameters(lx=1.0, ly=1.0, sx=0.0, sy=0.1)


@pytest.fixture
def measurements(rng):
    X = rng.uniform(-5, 5, (40, 1))
    y = np.sin(X[:, 0]) + 0.1 * rng.standard_normal(40)
    return X, y


def test_hyperparameter_validation() -> None:
    hyp = SONIGHyperparameters(lx=[1.0, 2.0], ly=1.0, sx=0.3, sy=0.1)
    np.testing.assert_allclose(hyp.sx, [0.3, 0.3])
    assert hyp.input_dim == 2
    with pytest.raises(ValueError):
        SONIGHyperparameters(lx=-1.0)
    with pytest.raises(ValueError):
        SONIGHyperparameters(lx=1.0, sy=-0.1)


def test_initial_belief_is_prior(noiseless_input_hyp) -> None:
    Xu = np.linspace(-5, 5, 11)
    sonig = SONIG(noiseless_input_hyp, Xu)
    np.testing.assert_allclose(sonig.fu.mean, 0.0)
    np.testing.assert_allclose(sonig.fu.cov, noiseless_input_hyp.kernel()(Xu[:, None]))


def test_zero_input_noise_equals_fitc(noiseless_input_hyp, measurements) -> None:
    X, y = measurements
    Xu = np.linspace(-5, 5, 11)[:, None]
    sonig = SONIG(noiseless_input_hyp, Xu).implement_measurements(X, y)

    fitc = SparseGP(noiseless_input_hyp.kernel(), Xu, noise_variance=0.1**2).fit(X, y)
    expected = fitc.inducing_distribution
    np.testing.assert_allclose(sonig.fu.mean, expected.mean, atol=1e-6)
    np.testing.assert_allclose(sonig.fu.cov, expected.cov, atol=1e-6)

    Xs = np.linspace(-5, 5, 21)[:, None]
    np.testing.assert_allclose(sonig.predict(Xs).mean, fitc.predict(Xs).mean, atol=1e-6)
    np.testing.assert_allclose(sonig.predict(Xs).variance, fitc.predict(Xs).variance, atol=1e-6)


def test_zero_input_noise_with_full_inducing_set_equals_exact_gp(noiseless_input_hyp) -> None:
    X = np.array([-4.0, -2.0, 0.0, 2.0, 4.0])[:, None]
    y = np.array([0.3, -0.8, 0.1, 0.9, -0.4])
    Xs = np.array([-3.0, -1.0, 1.0, 3.0])[:, None]

    sonig = SONIG(noiseless_input_hyp, np.vstack([X, Xs])).implement_measurements(X, y)
    exact = ExactGP(noiseless_input_hyp.kernel(), noise_variance=0.1**2).fit(X, y)

    sonig_pred = sonig.predict(Xs)
    exact_pred = exact.predict(Xs, return_cov=True)
    np.testing.assert_allclose(sonig_pred.mean, exact_pred.mean, atol=1e-6)
    np.testing.assert_allclose(sonig_pred.cov, exact_pred.cov, atol=1e-6)


def test_order_invariance_without_input_noise(noiseless_input_hyp, measurements, rng) -> None:
    X, y = measurements
    Xu = np.linspace(-5, 5, 11)
    forward = SONIG(noiseless_input_hyp, Xu).implement_measurements(X, y)
    order = rng.permutation(len(y))
    shuffled = SONIG(noiseless_input_hyp, Xu).implement_measurements(X[order], y[order])

    np.testing.assert_allclose(forward.fu.mean, shuffled.fu.mean, atol=1e-8)
    np.testing.assert_allclose(forward.fu.cov, shuffled.fu.cov, atol=1e-8)


@pytest.mark.parametrize("sx", [0.1, 0.4, 1.0])
def test_covariance_stays_psd_under_noisy_updates(measurements, rng, sx: float) -> None:
    X, y = measurements
    hyp = SONIGHyperparameters(lx=1.0, ly=1.0, sx=sx, sy=0.1)
    sonig = SONIG(hyp, np.linspace(-5, 5, 21))

    for x_i, y_i in zip(X + sx * rng.standard_normal(X.shape), y):
        input_post, output_post = sonig.implement_measurement(
            hyp.input_distribution(x_i), hyp.output_distribution(y_i)
        )
        assert sonig.fu.is_valid()
        np.testing.assert_allclose(sonig.fu.cov, sonig.fu.cov.T)
        assert input_post.is_valid() and output_post.is_valid()
        # Conditioning on an output never increases the input uncertainty
        assert input_post.cov[0, 0] <= sx**2 + 1e-12

    assert sonig.valid
    assert sonig.n_measurements == len(y)


def test_uncertainty_shrinks_and_mean_converges(noiseless_input_hyp, rng) -> None:
    Xs = np.linspace(-4, 4, 17)[:, None]
    truth = np.sin(Xs[:, 0])
    Xu = np.linspace(-5, 5, 21)

    variances = []
    errors = []
    for n in (10, 100, 1000):
        X = rng.uniform(-5, 5, (n, 1))
        y = np.sin(X[:, 0]) + 0.1 * rng.standard_normal(n)
        pred = SONIG(noiseless_input_hyp, Xu).implement_measurements(X, y).predict(Xs)
        variances.append(np.mean(pred.variance))
        errors.append(np.mean((pred.mean - truth) ** 2))

    assert variances[0] > variances[1] > variances[2]
    assert errors[-1] < 1e-3


def test_degenerate_update_marks_object_invalid(noiseless_input_hyp) -> None:
    sonig = SONIG(noiseless_input_hyp, np.linspace(-5, 5, 11))
    sonig.implement_measurements([0.0], [1.0])
    before = GaussianDistribution(sonig.fu.mean.copy(), sonig.fu.cov.copy())

    with pytest.raises(DegenerateUpdateError):
        sonig.implement_measurement(GaussianDistribution(1.0, 0.0), GaussianDistribution(0.5, -10.0))

    assert not sonig.valid
    np.testing.assert_array_equal(sonig.fu.mean, before.mean)
    np.testing.assert_array_equal(sonig.fu.cov, before.cov)
    with pytest.raises(DegenerateUpdateError):
        sonig.implement_measurements([1.0], [0.0])
    with pytest.raises(DegenerateUpdateError):
        sonig.predict([0.0])


def test_indefinite_posterior_marks_object_invalid(noiseless_input_hyp, monkeypatch) -> None:
    sonig = SONIG(noiseless_input_hyp, np.linspace(-5, 5, 11))
    sonig.implement_measurements([0.0], [1.0])
    before = GaussianDistribution(sonig.fu.mean.copy(), sonig.fu.cov.copy())
    condition = sonig_module.condition_gaussian

    def indefinite(*args, **kwargs):
        mean, cov = condition(*args, **kwargs)
        # Input and output occupy the first and last rows; the rest is fu
        cov = cov.copy()
        cov[1:-1, 1:-1] -= 10.0 * np.eye(len(cov) - 2)
        return mean, cov

    monkeypatch.setattr(sonig_module, "condition_gaussian", indefinite)
    with pytest.raises(DegenerateUpdateError, match="semi-definiteness"):
        sonig.implement_measurement(GaussianDistribution(1.0, 0.0), GaussianDistribution(0.5, 0.01))

    assert not sonig.valid
    assert sonig.n_measurements == 1
    np.testing.assert_array_equal(sonig.fu.mean, before.mean)
    np.testing.assert_array_equal(sonig.fu.cov, before.cov)
    with pytest.raises(DegenerateUpdateError):
        sonig.predict([0.0])


def test_added_inducing_points_keep_predictions(noiseless_input_hyp, measurements) -> None:
    X, y = measurements
    sonig = SONIG(noiseless_input_hyp, np.linspace(-5, 5, 11)).implement_measurements(X, y)
    X_new = np.array([[-0.25], [0.25]])
    before = sonig.predict(X_new)

    sonig.add_inducing_points(X_new)
    assert sonig.n_inducing == 13
    np.testing.assert_allclose(sonig.fu.mean[-2:], before.mean, atol=1e-8)
    np.testing.assert_allclose(sonig.fu.cov[-2:, -2:], before.cov, atol=1e-8)


def test_set_inducing_distribution(noiseless_input_hyp) -> None:
    sonig = SONIG(noiseless_input_hyp, np.linspace(-1, 1, 3))
    sonig.set_inducing_distribution(GaussianDistribution(np.ones(3), 0.1 * np.eye(3)))
    assert sonig.valid
    np.testing.assert_allclose(sonig.predict(np.linspace(-1, 1, 3)).mean, 1.0, atol=1e-6)

    with pytest.raises(ValueError):
        sonig.set_inducing_distribution(GaussianDistribution(np.zeros(2), np.eye(2)))

    sonig.set_inducing_distribution(GaussianDistribution(np.zeros(3), -np.eye(3)))
    assert not sonig.valid


def test_measurement_before_inducing_points_raises(noiseless_input_hyp) -> None:
    sonig = SONIG(noiseless_input_hyp)
    with pytest.raises(RuntimeError):
        sonig.implement_measurements([0.0], [0.0])
