import contextlib
import logging
import numbers

import numpy as np

logger = logging.getLogger(__name__)

# tolerance on the sum of the mixing weights
WEIGHT_TOL = np.sqrt(np.finfo(float).eps)


def check_angles(angles, name="angles", allow_empty=False):
    """
    Validate a set of angles and return them as a flat float64 array.

    Parameters
    ----------
    angles : array-like
        Angles in radians. Scalars are promoted to a length-one array; row or
        column vectors are flattened.
    name : str
        Name of the argument, used in error messages.
    allow_empty : bool, default=False
        Whether an empty set of angles is acceptable.

    Returns
    -------
    angles : numpy.ndarray, shape (n_samples,)

    Raises
    ------
    ValueError
        If the input is not a vector, contains non-finite values or values
        outside [-pi, pi].
    """
    try:
        angles = np.asarray(angles, dtype=float)
    except (TypeError, ValueError) as err:
        raise ValueError(f"`{name}` must be an array of real numbers.") from err
    if angles.ndim > 1 and angles.size != max(angles.shape):
        raise ValueError(f"`{name}` must be a vector, got shape {angles.shape}.")
    angles = angles.reshape(-1)
    if angles.size == 0 and not allow_empty:
        raise ValueError(f"`{name}` must contain at least one observation.")
    if not np.all(np.isfinite(angles)):
        raise ValueError(f"`{name}` must be finite.")
    if np.any(angles < -np.pi) or np.any(angles > np.pi):
        raise ValueError(
            f"`{name}` must lie in [-pi, pi]. Ensure that the data is provided in radians."
        )
    return angles


def check_positive_int(value, name):
    if isinstance(value, bool) or not isinstance(value, numbers.Integral) or value < 1:
        raise ValueError(f"`{name}` must be a positive integer, got {value!r}.")
    return int(value)


def check_nonnegative_int(value, name):
    if isinstance(value, bool) or not isinstance(value, numbers.Integral) or value < 0:
        raise ValueError(f"`{name}` must be a non-negative integer, got {value!r}.")
    return int(value)


def check_n_jobs(value):
    # joblib counts negative values back from the number of CPUs
    if isinstance(value, bool) or not isinstance(value, numbers.Integral) or value == 0:
        raise ValueError(f"`n_jobs` must be a non-zero integer, got {value!r}.")
    return int(value)


def check_nonnegative_real(value, name):
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise ValueError(f"`{name}` must be a real number, got {value!r}.")
    if not np.isfinite(value) or value < 0:
        raise ValueError(f"`{name}` must be finite and non-negative, got {value!r}.")
    return float(value)


def _as_vector(values, name):
    try:
        values = np.asarray(values, dtype=float)
    except (TypeError, ValueError) as err:
        raise ValueError(f"`{name}` must be a vector of real numbers.") from err
    if values.ndim > 1 and values.size != max(values.shape):
        raise ValueError(f"`{name}` must be a vector, got shape {values.shape}.")
    values = values.reshape(-1)
    if not np.all(np.isfinite(values)):
        raise ValueError(f"`{name}` must be finite.")
    return values


def check_parameters(weights, mu, kappa):
    """
    Validate a parameter triple of a von Mises mixture.

    Returns copies of the three vectors as float64 arrays, with the weights
    renormalised to sum exactly to one.
    """
    weights = _as_vector(weights, "weights")
    mu = _as_vector(mu, "mu")
    kappa = _as_vector(kappa, "kappa")
    if weights.size == 0:
        raise ValueError("A mixture needs at least one component.")
    if not (weights.size == mu.size == kappa.size):
        raise ValueError(
            "`weights`, `mu` and `kappa` must have the same length, got "
            f"{weights.size}, {mu.size} and {kappa.size}."
        )
    if np.any(mu < -np.pi) or np.any(mu > np.pi):
        raise ValueError("`mu` must lie in [-pi, pi].")
    if np.any(kappa < 0):
        raise ValueError("`kappa` must be non-negative.")
    if np.any(weights < 0) or np.any(weights > 1 + WEIGHT_TOL):
        raise ValueError("`weights` must lie in [0, 1].")
    if abs(weights.sum() - 1.0) > WEIGHT_TOL:
        raise ValueError("Component proportions must sum to one.")
    return weights / weights.sum(), mu.copy(), kappa.copy()


@contextlib.contextmanager
def verbose_logging(verbose):
    """Temporarily echo DEBUG-level messages of the package logger to stderr."""
    if not verbose:
        yield
        return
    package_logger = logging.getLogger(__name__.rpartition(".")[0])
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    old_level = package_logger.level
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG)
    try:
        yield
    finally:
        package_logger.removeHandler(handler)
        package_logger.setLevel(old_level)


def fit_with_replicates(angles, n_components, n_replicates=1, n_jobs=1,
                        random_state=None, verbose=False, **kwargs):
    """
    Run several independent EM fits and keep the one with the highest
    log-likelihood.

    Each replicate gets its own child random stream spawned from
    `random_state`, so the replicates are independent of each other and of
    the order in which they are executed.

    Parameters
    ----------
    angles : numpy.ndarray, shape (n_samples,)
        Angles in radians, already validated.
    n_components : int
        Number of mixture components.
    n_replicates : int, default=1
        Number of independent fits. Zero is treated as a single fit.
    n_jobs : int, default=1
        Number of parallel workers handed to `joblib.Parallel`.
    random_state : None, int, SeedSequence or Generator
        Seed of the parent random stream.
    verbose : bool, default=False
        If True, report the log-likelihood of every replicate.
    **kwargs
        Forwarded to `vmmix.estimation.fit_em` (`max_iter`, `tol`).

    Returns
    -------
    VonMisesMixture
        The replicate with the highest log-likelihood (first one on ties).
    """
    from joblib import Parallel, delayed

    from .estimation import fit_em

    n_jobs = check_n_jobs(n_jobs)
    rng = np.random.default_rng(random_state)
    streams = rng.spawn(max(n_replicates, 1))
    models = Parallel(n_jobs=n_jobs)(
        delayed(fit_em)(angles, n_components, random_state=stream, verbose=verbose, **kwargs)
        for stream in streams
    )
    ll = np.array([model.log_likelihood for model in models])
    with verbose_logging(verbose):
        for i, model in enumerate(models):
            logger.info("replicate %d: log-likelihood %.6f, converged=%s after %d iterations",
                        i + 1, ll[i], model.converged, model.n_iter)
    return models[int(np.nanargmax(ll))]
