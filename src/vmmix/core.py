import numpy as np
import torch

from .estimation import compute_gamma, compute_likelihood, log_likelihood
from .sampling import sample_components, sample_von_mises
from .utils import (check_angles, check_n_jobs, check_nonnegative_int,
                    check_nonnegative_real, check_parameters, check_positive_int,
                    fit_with_replicates)


def _read_only(values):
    values = np.array(values, dtype=float)
    values.setflags(write=False)
    return values


class VonMisesMixture:
    """
    Mixture of von Mises distributions on [-pi, pi].

    Instances are immutable: fitting returns a new model. A model is either
    built from user-supplied parameters, in which case the fit diagnostics
    (`log_likelihood`, `n_iter`, `converged`) are None, or returned by
    :func:`fit`.

    Parameters
    ----------
    weights : array-like, shape (n_components,), default=(1.0,)
        Mixing weights in [0, 1] summing to one.
    mu : array-like, shape (n_components,), default=(0.0,)
        Circular means in [-pi, pi].
    kappa : array-like, shape (n_components,), default=(1.0,)
        Non-negative concentration parameters.

    Attributes
    ----------
    weights_ : numpy.ndarray, shape (n_components,)
    mu_ : numpy.ndarray, shape (n_components,)
    kappa_ : numpy.ndarray, shape (n_components,)
    n_components : int
    log_likelihood : float or None
        Total log-likelihood of the training data at the returned parameters.
    n_iter : int or None
        EM iteration at which fitting stopped.
    converged : bool or None
        Whether EM met the tolerance before `max_iter`.

    Example
    -------
    >>> model = VonMisesMixture([0.5, 0.5], [-np.pi / 2, np.pi / 2], [5.0, 10.0])
    >>> angles = model.random(5000, random_state=0)
    >>> fitted = VonMisesMixture.fit(angles, 2, random_state=0)
    >>> labels, nll, gamma = fitted.cluster(angles)
    """

    __slots__ = ("_weights", "_mu", "_kappa", "_log_likelihood", "_n_iter", "_converged")

    def __init__(self, weights=(1.0,), mu=(0.0,), kappa=(1.0,)):
        weights, mu, kappa = check_parameters(weights, mu, kappa)
        self._set_state(weights, mu, kappa, None, None, None)

    def _set_state(self, weights, mu, kappa, log_likelihood, n_iter, converged):
        object.__setattr__(self, "_weights", _read_only(weights))
        object.__setattr__(self, "_mu", _read_only(mu))
        object.__setattr__(self, "_kappa", _read_only(kappa))
        object.__setattr__(self, "_log_likelihood", log_likelihood)
        object.__setattr__(self, "_n_iter", n_iter)
        object.__setattr__(self, "_converged", converged)

    @classmethod
    def _from_fit(cls, weights, mu, kappa, log_likelihood, n_iter, converged):
        model = cls(weights, mu, kappa)
        model._set_state(model._weights, model._mu, model._kappa,
                         log_likelihood, int(n_iter), bool(converged))
        return model

    def __setattr__(self, name, value):
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __delattr__(self, name):
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __reduce__(self):
        return (_restore, (self._weights, self._mu, self._kappa,
                           self._log_likelihood, self._n_iter, self._converged))

    def __repr__(self):
        return (f"{type(self).__name__}(weights={self._weights.tolist()}, "
                f"mu={self._mu.tolist()}, kappa={self._kappa.tolist()})")

    # ---------- parameters ----------

    @property
    def weights_(self):
        return self._weights

    @property
    def mu_(self):
        return self._mu

    @property
    def kappa_(self):
        return self._kappa

    @property
    def n_components(self):
        return self._weights.size

    @property
    def log_likelihood(self):
        return self._log_likelihood

    @property
    def n_iter(self):
        return self._n_iter

    @property
    def converged(self):
        return self._converged

    def to_dict(self):
        """Parameters and fit diagnostics as plain Python values."""
        return {
            "weights": self._weights.tolist(),
            "mu": self._mu.tolist(),
            "kappa": self._kappa.tolist(),
            "log_likelihood": self._log_likelihood,
            "n_iter": self._n_iter,
            "converged": self._converged,
        }

    def sort_components(self):
        """
        Return a copy with the components ordered by descending weight.
        Fit diagnostics are carried over.
        """
        order = np.argsort(-self._weights, kind="stable")
        model = object.__new__(type(self))
        model._set_state(self._weights[order], self._mu[order], self._kappa[order],
                         self._log_likelihood, self._n_iter, self._converged)
        return model

    # ---------- fitting ----------

    @classmethod
    def fit(cls, angles, n_components, max_iter=100, tol=1e-4, n_replicates=1,
            n_jobs=1, random_state=None, verbose=False):
        """See :func:`vmmix.fit`."""
        return fit(angles, n_components, max_iter=max_iter, tol=tol,
                   n_replicates=n_replicates, n_jobs=n_jobs,
                   random_state=random_state, verbose=verbose)

    # ---------- evaluation ----------

    def pdf(self, angles):
        """Mixture density of every angle."""
        angles = check_angles(angles, allow_empty=True)
        return compute_likelihood(angles, self._weights, self._mu, self._kappa)[0]

    def log_pdf(self, angles):
        """Log mixture density of every angle."""
        angles = check_angles(angles, allow_empty=True)
        return log_likelihood(angles, self._weights, self._mu, self._kappa)

    def score(self, angles):
        """Mean log-likelihood per angle."""
        return float(np.mean(self.log_pdf(angles)))

    def predict_proba(self, angles):
        """Posterior responsibilities P(component | angle)."""
        angles = check_angles(angles, allow_empty=True)
        return compute_gamma(angles, self._weights, self._mu, self._kappa)

    def predict(self, angles):
        """Hard assignments: argmax over responsibilities."""
        return np.argmax(self.predict_proba(angles), axis=1)

    def cluster(self, angles):
        """
        Assign angles to the components of this model.

        No parameters are re-estimated.

        Parameters
        ----------
        angles : array-like, shape (n_samples,)
            Angles in radians within [-pi, pi].

        Returns
        -------
        labels : numpy.ndarray of int, shape (n_samples,)
            Index of the most responsible component, in [0, n_components).
        neg_log_likelihood : float
            Negative total log-likelihood of the angles.
        gamma : numpy.ndarray, shape (n_samples, n_components)
            Responsibilities; `labels` is their row-wise argmax.
        """
        angles = check_angles(angles, allow_empty=True)
        neg_ll = -float(log_likelihood(angles, self._weights, self._mu, self._kappa).sum())
        gamma = compute_gamma(angles, self._weights, self._mu, self._kappa)
        return np.argmax(gamma, axis=1), neg_ll, gamma

    # ---------- sampling ----------

    def random(self, n_samples=1, backend="numpy", random_state=None,
               device=None, dtype=torch.float64):
        """
        Draw samples from the mixture.

        A component is drawn for every sample from the mixing weights, then
        each component's samples are drawn with :func:`sample_von_mises`.

        Parameters
        ----------
        n_samples : int, default=1
            Number of samples; 0 gives an empty array.
        backend : {"numpy", "torch"}, default="numpy"
            Rejection-sampling implementation; both draw from the same
            distribution.
        random_state : None, int, SeedSequence or Generator
            Source of randomness.
        device, dtype
            Torch device and precision for the torch backend.

        Returns
        -------
        numpy.ndarray, shape (n_samples,)
            Angles in [-pi, pi].
        """
        n_samples = check_nonnegative_int(n_samples, "n_samples")
        rng = np.random.default_rng(random_state)
        # Choose components according to weights
        comp = sample_components(self._weights, n_samples, random_state=rng)

        samples = np.empty(n_samples)
        for k in range(self.n_components):
            mask = comp == k
            n_k = int(np.sum(mask))
            if n_k > 0:
                samples[mask] = sample_von_mises(self._mu[k], self._kappa[k], n_k,
                                                 backend=backend, random_state=rng,
                                                 device=device, dtype=dtype)
        return samples


def _restore(weights, mu, kappa, log_likelihood, n_iter, converged):
    model = object.__new__(VonMisesMixture)
    model._set_state(weights, mu, kappa, log_likelihood, n_iter, converged)
    return model


def fit(angles, n_components, max_iter=100, tol=1e-4, n_replicates=1, n_jobs=1,
        random_state=None, verbose=False):
    """
    Fit a mixture of von Mises distributions to angular data.

    Runs `n_replicates` independent k-means seeded EM fits and returns the
    one with the highest log-likelihood.

    Parameters
    ----------
    angles : array-like, shape (n_samples,)
        Angles in radians within [-pi, pi].
    n_components : int
        Number of mixture components, at most n_samples.
    max_iter : int, default=100
        Maximum number of EM iterations per replicate.
    tol : float, default=1e-4
        Convergence threshold on the change of the total log-likelihood.
    n_replicates : int, default=1
        Number of independent fits; 0 behaves like 1.
    n_jobs : int, default=1
        Number of parallel joblib workers for the replicates.
    random_state : None, int, SeedSequence or Generator
        Seed for reproducible initialisation.
    verbose : bool, default=False
        If True, log EM progress and replicate log-likelihoods.

    Returns
    -------
    VonMisesMixture

    Raises
    ------
    ValueError
        On invalid arguments, before any computation.
    """
    angles = check_angles(angles)
    n_components = check_positive_int(n_components, "n_components")
    if n_components > angles.size:
        raise ValueError(
            f"`n_components` ({n_components}) cannot exceed the number of "
            f"observations ({angles.size})."
        )
    max_iter = check_positive_int(max_iter, "max_iter")
    tol = check_nonnegative_real(tol, "tol")
    n_replicates = check_nonnegative_int(n_replicates, "n_replicates")
    n_jobs = check_n_jobs(n_jobs)
    return fit_with_replicates(angles, n_components, n_replicates=n_replicates,
                               n_jobs=n_jobs, random_state=random_state,
                               verbose=verbose, max_iter=max_iter, tol=tol)
