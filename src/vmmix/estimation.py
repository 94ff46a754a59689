"""
Expectation-Maximization for a mixture of von Mises distributions.

The building blocks are plain functions on numpy arrays:

- `compute_likelihood`: per-component and total mixture densities.
- `compute_gamma`: E-step, responsibilities of each component for each angle.
- `estimate_parameters`: M-step, closed-form re-estimation of the weights,
  circular means and (approximate) concentrations.
- `fit_em`: k-means seeded EM loop returning a `VonMisesMixture`.
"""
import logging

import numpy as np
from scipy.special import i0e, logsumexp

from .kmeans import circular_kmeans
from .utils import check_positive_int, verbose_logging

logger = logging.getLogger(__name__)

EPS = np.finfo(float).eps
# floor added to the responsibilities before normalisation
GAMMA_FLOOR = np.sqrt(EPS)


def _as_params(weights, mu, kappa):
    return (np.asarray(weights, dtype=float).reshape(-1),
            np.asarray(mu, dtype=float).reshape(-1),
            np.asarray(kappa, dtype=float).reshape(-1))


def _log_vonmises_pdf(angles, mu, kappa):
    """
    Compute log pdf of von Mises for each angle, given mu, kappa.
    angles: shape (N,)
    mu, kappa: shape (K,)
    Returns: shape (N, K)
    """
    x = angles[:, None]
    mu = mu[None, :]
    kappa = kappa[None, :]
    # I0(kappa) = i0e(kappa) * exp(kappa); the exp(kappa) cancels against the exponent
    log_norm = np.log(2 * np.pi * i0e(kappa))
    return kappa * (np.cos(x - mu) - 1.0) - log_norm


def compute_likelihood(angles, weights, mu, kappa):
    """
    Mixture and per-component von Mises densities.

    Parameters
    ----------
    angles : array-like, shape (n_samples,)
        Angles in radians.
    weights : array-like, shape (n_components,)
        Mixing weights.
    mu : array-like, shape (n_components,)
        Circular means in [-pi, pi].
    kappa : array-like, shape (n_components,)
        Non-negative concentrations.

    Returns
    -------
    total : numpy.ndarray, shape (n_samples,)
        Mixture density, `component @ weights`.
    component : numpy.ndarray, shape (n_samples, n_components)
        Density of every angle under every component.
    """
    angles = np.asarray(angles, dtype=float).reshape(-1)
    weights, mu, kappa = _as_params(weights, mu, kappa)
    component = np.exp(_log_vonmises_pdf(angles, mu, kappa))
    return component @ weights, component


def log_likelihood(angles, weights, mu, kappa):
    """Log of the mixture density of every angle, shape (n_samples,)."""
    angles = np.asarray(angles, dtype=float).reshape(-1)
    weights, mu, kappa = _as_params(weights, mu, kappa)
    with np.errstate(divide="ignore"):
        log_weights = np.log(weights)[None, :]
    return logsumexp(_log_vonmises_pdf(angles, mu, kappa) + log_weights, axis=1)


def compute_gamma(angles, weights, mu, kappa):
    """
    E-step: responsibilities of the components for every angle.

    The weighted component densities get a floor of sqrt(eps) before the rows
    are normalised, so every entry is strictly positive even where a density
    underflows.

    Returns
    -------
    gamma : numpy.ndarray, shape (n_samples, n_components)
        Rows sum to one.
    """
    weights = np.asarray(weights, dtype=float).reshape(-1)
    _, component = compute_likelihood(angles, weights, mu, kappa)
    gamma = component * weights[None, :] + GAMMA_FLOOR
    return gamma / gamma.sum(axis=1, keepdims=True)


def kappa_from_resultant(d):
    """
    Approximate inverse of A1(kappa) = I1(kappa)/I0(kappa) (Best & Fisher).

        d < 0.53:         2d + d^3 + 5d^5/6
        0.53 <= d < 0.85: -0.4 + 1.39d + 0.43/(1 - d)
        d >= 0.85:        1/(d^3 - 4d^2 + 3d)

    Parameters
    ----------
    d : float or array-like
        Mean resultant length(s) in [0, 1].

    Returns
    -------
    kappa : float or numpy.ndarray
        Concentration estimate(s), same shape as `d`.
    """
    d = np.asarray(d, dtype=float)
    scalar = d.ndim == 0
    d = np.atleast_1d(d)
    kappa = np.empty_like(d)

    low = d < 0.53
    high = d >= 0.85
    mid = ~low & ~high

    kappa[low] = 2 * d[low] + d[low]**3 + (5 * d[low]**5) / 6.0
    kappa[mid] = -0.4 + 1.39 * d[mid] + 0.43 / (1 - d[mid])
    # factored so that d close to 1 does not cancel to zero; d == 1 is clipped
    dh = np.minimum(d[high], 1.0 - EPS)
    kappa[high] = 1.0 / (dh * (dh - 1.0) * (dh - 3.0))

    return float(kappa[0]) if scalar else kappa


def estimate_parameters(angles, gamma):
    """
    M-step: re-estimate the mixture parameters from responsibilities.

    Parameters
    ----------
    angles : array-like, shape (n_samples,)
        Angles in radians.
    gamma : array-like, shape (n_samples, n_components)
        Responsibilities.

    Returns
    -------
    mu : numpy.ndarray, shape (n_components,)
        Weighted circular means.
    kappa : numpy.ndarray, shape (n_components,)
        Concentrations from the weighted mean resultant lengths.
    weights : numpy.ndarray, shape (n_components,)
        Mixing weights, floored by eps and summing to one.
    """
    angles = np.asarray(angles, dtype=float).reshape(-1)
    gamma = np.asarray(gamma, dtype=float)
    if gamma.ndim != 2 or gamma.shape[0] != angles.shape[0]:
        raise ValueError(
            f"`gamma` must have shape ({angles.shape[0]}, n_components), got {gamma.shape}."
        )
    n_samples = angles.shape[0]

    # Effective counts
    nk = gamma.sum(axis=0)

    weights = nk / n_samples + EPS
    weights = weights / weights.sum()

    # Weighted mean resultant vector per component
    x = (gamma.T @ np.cos(angles)) / nk
    y = (gamma.T @ np.sin(angles)) / nk

    mu = np.arctan2(y, x)
    d = np.sqrt(x**2 + y**2)
    kappa = kappa_from_resultant(d)
    return mu, kappa, weights


def _initial_gamma(labels, n_components):
    gamma = np.zeros((labels.shape[0], n_components))
    gamma[np.arange(labels.shape[0]), labels] = 1.0
    gamma += EPS
    return gamma / gamma.sum(axis=1, keepdims=True)


def fit_em(angles, n_components, max_iter=100, tol=1e-4, random_state=None, verbose=False):
    """
    Fit a mixture of von Mises distributions by Expectation-Maximization.

    The responsibilities are seeded by a single circular k-means run; EM then
    alternates E- and M-steps until the total log-likelihood changes by less
    than `tol` or `max_iter` rounds have been run. Hitting `max_iter` is not
    an error: the returned model reports `converged=False`.

    Parameters
    ----------
    angles : array-like, shape (n_samples,)
        Angles in radians, within [-pi, pi].
    n_components : int
        Number of mixture components.
    max_iter : int, default=100
        Maximum number of EM rounds.
    tol : float, default=1e-4
        Convergence threshold on the absolute change of the log-likelihood.
    random_state : None, int, SeedSequence or Generator
        Seed of the k-means initialisation.
    verbose : bool, default=False
        If True, log the log-likelihood and weights at each iteration.

    Returns
    -------
    VonMisesMixture
        Fitted model with `log_likelihood`, `n_iter` and `converged` set.
    """
    from .core import VonMisesMixture

    max_iter = check_positive_int(max_iter, "max_iter")
    angles = np.asarray(angles, dtype=float).reshape(-1)
    labels, _ = circular_kmeans(angles, n_components, n_replicates=1, random_state=random_state)
    mu, kappa, weights = estimate_parameters(angles, _initial_gamma(labels, n_components))

    old_ll = -np.finfo(float).max
    converged = False
    with verbose_logging(verbose):
        for n_iter in range(1, max_iter + 1):
            gamma = compute_gamma(angles, weights, mu, kappa)
            mu, kappa, weights = estimate_parameters(angles, gamma)
            ll = log_likelihood(angles, weights, mu, kappa).sum()
            logger.debug("iteration %d: log-likelihood %.6f, weights %s", n_iter, ll, weights)

            if abs(old_ll - ll) < tol:
                converged = True
                break
            old_ll = ll

        if converged:
            logger.info("EM converged after %d iterations, log-likelihood %.6f", n_iter, ll)
        else:
            logger.info("EM stopped at max_iter=%d without converging, log-likelihood %.6f",
                        max_iter, ll)

    return VonMisesMixture._from_fit(weights, mu, kappa,
                                     log_likelihood=float(ll), n_iter=n_iter, converged=converged)
