import numpy as np
import pytest
from scipy.special import i0, i1

from vmmix.core import VonMisesMixture
from vmmix.estimation import (GAMMA_FLOOR, compute_gamma, compute_likelihood,
                              estimate_parameters, fit_em, kappa_from_resultant,
                              log_likelihood)

############################
#  Fixtures and Utilities  #
############################

@pytest.fixture
def two_component_params():
    weights = np.array([0.5, 0.5])
    mu = np.array([-np.pi / 2, np.pi / 2])
    kappa = np.array([5.0, 10.0])
    return weights, mu, kappa


@pytest.fixture
def two_component_samples(two_component_params):
    weights, mu, kappa = two_component_params
    model = VonMisesMixture(weights, mu, kappa)
    return model.random(5000, random_state=1234)


def _circular_error(a, b):
    return np.abs(np.arctan2(np.sin(a - b), np.cos(a - b)))


############################
#  Likelihood              #
############################

def test_likelihood_matches_closed_form():
    angles = np.array([-3.0, -1.0, 0.0, 0.5, 3.0])
    mu, kappa = 0.3, 2.5
    total, component = compute_likelihood(angles, [1.0], [mu], [kappa])
    expected = np.exp(kappa * np.cos(angles - mu)) / (2 * np.pi * i0(kappa))
    np.testing.assert_allclose(component[:, 0], expected, rtol=1e-12)
    np.testing.assert_allclose(total, expected, rtol=1e-12)


def test_likelihood_shapes_and_weighting(two_component_params):
    weights, mu, kappa = two_component_params
    angles = np.linspace(-np.pi, np.pi, 17)
    total, component = compute_likelihood(angles, weights, mu, kappa)
    assert component.shape == (17, 2)
    assert total.shape == (17,)
    np.testing.assert_allclose(total, component @ weights)


def test_likelihood_stable_for_large_kappa():
    angles = np.array([0.0, 0.01, 1.0, np.pi])
    total, component = compute_likelihood(angles, [1.0], [0.0], [1000.0])
    assert np.all(np.isfinite(component))
    # peak height of a von Mises with large kappa is about sqrt(kappa / (2 pi))
    assert total[0] == pytest.approx(np.sqrt(1000.0 / (2 * np.pi)), rel=1e-3)
    assert total[3] == 0.0


def test_uniform_component():
    angles = np.linspace(-np.pi, np.pi, 11)
    total, _ = compute_likelihood(angles, [1.0], [2.0], [0.0])
    np.testing.assert_allclose(total, 1 / (2 * np.pi))


def test_log_likelihood_does_not_underflow():
    angles = np.array([np.pi])
    total, _ = compute_likelihood(angles, [1.0], [0.0], [2000.0])
    assert total[0] == 0.0
    ll = log_likelihood(angles, [1.0], [0.0], [2000.0])
    assert np.isfinite(ll[0])
    assert ll[0] < -3000


def test_log_likelihood_matches_likelihood(two_component_params):
    weights, mu, kappa = two_component_params
    angles = np.linspace(-3, 3, 31)
    total, _ = compute_likelihood(angles, weights, mu, kappa)
    np.testing.assert_allclose(log_likelihood(angles, weights, mu, kappa), np.log(total))


############################
#  E-step                  #
############################

def test_gamma_rows_sum_to_one(two_component_params, two_component_samples):
    weights, mu, kappa = two_component_params
    gamma = compute_gamma(two_component_samples, weights, mu, kappa)
    assert gamma.shape == (two_component_samples.size, 2)
    np.testing.assert_allclose(gamma.sum(axis=1), 1.0, atol=1e-12)
    assert np.all(gamma > 0)


def test_gamma_floor_keeps_underflowing_components_positive():
    # both components underflow at the antipode: responsibilities fall back to uniform
    gamma = compute_gamma([np.pi], [0.5, 0.5], [0.0, 0.0], [2000.0, 3000.0])
    np.testing.assert_allclose(gamma, [[0.5, 0.5]])

    gamma = compute_gamma([0.0], [0.5, 0.5], [0.0, np.pi], [50.0, 50.0])
    assert gamma[0, 1] > 0
    assert gamma[0, 1] < GAMMA_FLOOR


############################
#  M-step                  #
############################

@pytest.mark.parametrize("d", [0.0, 0.1, 0.3, 0.529, 0.53, 0.7, 0.8499, 0.85, 0.9, 0.99])
def test_kappa_from_resultant_branches(d):
    if d < 0.53:
        expected = 2 * d + d**3 + 5 * d**5 / 6
    elif d < 0.85:
        expected = -0.4 + 1.39 * d + 0.43 / (1 - d)
    else:
        expected = 1 / (d**3 - 4 * d**2 + 3 * d)
    assert kappa_from_resultant(d) == pytest.approx(expected, rel=1e-12)


def test_kappa_from_resultant_near_continuity():
    first = lambda d: 2 * d + d**3 + 5 * d**5 / 6
    second = lambda d: -0.4 + 1.39 * d + 0.43 / (1 - d)
    third = lambda d: 1 / (d**3 - 4 * d**2 + 3 * d)
    assert first(0.53) == pytest.approx(second(0.53), rel=1e-2)
    assert second(0.85) == pytest.approx(third(0.85), rel=1e-4)
    # boundaries belong to the upper branch
    assert kappa_from_resultant(0.53) == pytest.approx(second(0.53))
    assert kappa_from_resultant(0.85) == pytest.approx(third(0.85))


def test_kappa_from_resultant_inverts_bessel_ratio():
    for kappa in [0.5, 2.0, 5.0, 10.0, 50.0]:
        d = i1(kappa) / i0(kappa)
        assert kappa_from_resultant(d) == pytest.approx(kappa, rel=0.05)


def test_kappa_from_resultant_vectorized_and_degenerate():
    d = np.array([0.0, 0.6, 0.95, 1.0])
    kappa = kappa_from_resultant(d)
    assert kappa.shape == (4,)
    assert kappa[0] == 0.0
    assert np.all(np.isfinite(kappa))
    assert kappa[3] > 1e10


@pytest.mark.parametrize("d", [1.0, 1.0 - 2.2e-16, 1.0 - 1e-12, 1.0 + 2.2e-16])
def test_kappa_from_resultant_finite_near_one(d):
    kappa = kappa_from_resultant(d)
    assert np.isfinite(kappa)
    assert kappa > 1e10


def test_estimate_parameters_one_hot():
    angles = np.array([0.1, -0.1, 0.05, 3.0, -3.0, 3.1])
    gamma = np.zeros((6, 2))
    gamma[:3, 0] = 1.0
    gamma[3:, 1] = 1.0
    mu, kappa, weights = estimate_parameters(angles, gamma)
    np.testing.assert_allclose(weights, [0.5, 0.5])
    assert abs(mu[0]) < 0.05
    # the second group straddles +/-pi
    assert _circular_error(mu[1], np.pi) < 0.1
    assert np.all(kappa > 0)


def test_estimate_parameters_floors_empty_component():
    angles = np.array([0.1, 0.2, 0.3])
    gamma = np.column_stack([np.ones(3), np.full(3, 1e-300)])
    _, _, weights = estimate_parameters(angles, gamma)
    assert weights[1] > 0
    assert weights.sum() == pytest.approx(1.0, abs=1e-15)


def test_estimate_parameters_rejects_bad_gamma():
    with pytest.raises(ValueError):
        estimate_parameters(np.zeros(3), np.ones((4, 2)))
    with pytest.raises(ValueError):
        estimate_parameters(np.zeros(3), np.ones(3))


############################
#  EM                      #
############################

def test_fit_em_recovers_parameters(two_component_params, two_component_samples):
    weights, mu, kappa = two_component_params
    model = fit_em(two_component_samples, 2, random_state=0)

    assert model.converged
    assert model.n_iter <= 100
    order = np.argsort(model.mu_)
    assert np.all(_circular_error(model.mu_[order], mu) < 0.1)
    np.testing.assert_allclose(model.kappa_[order], kappa, rtol=0.2)
    np.testing.assert_allclose(model.weights_[order], weights, atol=0.05)

    expected_ll = log_likelihood(two_component_samples, model.weights_, model.mu_, model.kappa_).sum()
    assert model.log_likelihood == pytest.approx(expected_ll)


def test_fit_em_hits_max_iter(two_component_samples):
    model = fit_em(two_component_samples, 3, max_iter=2, tol=0.0, random_state=0)
    assert not model.converged
    assert model.n_iter == 2


def test_fit_em_is_reproducible(two_component_samples):
    a = fit_em(two_component_samples, 2, random_state=7)
    b = fit_em(two_component_samples, 2, random_state=7)
    np.testing.assert_array_equal(a.mu_, b.mu_)
    np.testing.assert_array_equal(a.kappa_, b.kappa_)
    assert a.log_likelihood == b.log_likelihood


def test_fit_em_single_component():
    angles = VonMisesMixture([1.0], [1.0], [3.0]).random(2000, random_state=3)
    model = fit_em(angles, 1, random_state=0)
    assert model.converged
    assert model.weights_[0] == pytest.approx(1.0)
    assert _circular_error(model.mu_[0], 1.0) < 0.1
    assert model.kappa_[0] == pytest.approx(3.0, rel=0.2)


def test_fit_em_logs_terminal_state(two_component_samples, caplog):
    with caplog.at_level("DEBUG", logger="vmmix"):
        fit_em(two_component_samples, 2, random_state=0)
    assert any("EM converged" in record.getMessage() for record in caplog.records)
