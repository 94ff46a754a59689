"""
Random variates from von Mises distributions.

Single components are drawn with the ratio-of-uniforms rejection scheme of
Best & Fisher (1979) in the form given by Barabesi (1995). Two backends run
the same algorithm:

- ``"numpy"``: portable, one sample at a time from a numpy Generator.
- ``"torch"``: vectorised, proposes for all pending samples at once on a
  torch device.
"""
import math
import warnings

import numpy as np
import torch

from .utils import check_nonnegative_int, check_positive_int

# proposal rounds per sample before the last in-range candidate is accepted
MAX_TRIES = 10_000
BACKENDS = ("numpy", "torch")


def _sampling_scale(kappa):
    if kappa > 1.3:
        return 1.0 / math.sqrt(kappa)
    return math.pi * math.exp(-kappa)


def _draw_numpy(mu, kappa, n_samples, rng, max_tries):
    r = _sampling_scale(kappa)
    angles = np.empty(n_samples)
    exhausted = 0
    for idx in range(n_samples):
        fallback = 0.0
        for _ in range(max_tries):
            u1, u2 = rng.random(2)
            if u1 == 0.0:
                continue
            z = r * (2 * u2 - 1) / u1
            if abs(z) > math.pi:
                continue
            fallback = z
            if kappa * z * z < 4 - 4 * u1:
                break
            if kappa * math.cos(z) >= 2 * math.log(u1) + kappa:
                break
        else:
            exhausted += 1
            z = fallback
        angles[idx] = math.atan2(math.sin(z + mu), math.cos(z + mu))
    return angles, exhausted


def _draw_torch(mu, kappa, n_samples, rng, max_tries, device, dtype):
    # seed torch from the numpy stream so one seed drives both backends
    generator = torch.Generator(device=device)
    generator.manual_seed(int(rng.integers(2**63 - 1)))
    r = _sampling_scale(kappa)

    z = torch.zeros(n_samples, device=device, dtype=dtype)
    pending = torch.ones(n_samples, device=device, dtype=torch.bool)
    with torch.no_grad():
        for _ in range(max_tries):
            idx = pending.nonzero(as_tuple=True)[0]
            if idx.numel() == 0:
                break
            u1, u2 = torch.rand((2, idx.numel()), generator=generator, device=device, dtype=dtype)
            candidate = r * (2 * u2 - 1) / u1
            in_range = (u1 > 0) & (candidate.abs() <= math.pi)
            accept = in_range & ((kappa * candidate**2 < 4 - 4 * u1) |
                                 (kappa * torch.cos(candidate) >= 2 * torch.log(u1) + kappa))
            # in-range candidates double as the fallback if a sample never gets accepted
            z[idx[in_range]] = candidate[in_range]
            pending[idx[accept]] = False
        exhausted = int(pending.sum())
        angles = torch.atan2(torch.sin(z + mu), torch.cos(z + mu))
    return angles.cpu().numpy().astype(float), exhausted


def sample_von_mises(mu, kappa, n_samples=None, backend="numpy", random_state=None,
                     max_tries=MAX_TRIES, device=None, dtype=torch.float64):
    """
    Draw variates from a single von Mises distribution.

    Parameters
    ----------
    mu : float
        Mean direction in [-pi, pi].
    kappa : float
        Non-negative concentration. kappa=0 gives the uniform distribution.
    n_samples : int or None, default=None
        Number of samples. None returns a single float.
    backend : {"numpy", "torch"}, default="numpy"
        Implementation of the rejection loop.
    random_state : None, int, SeedSequence or Generator
        Source of the uniform variates. The torch backend seeds its own
        generator from this stream.
    max_tries : int, default=MAX_TRIES
        Maximum number of proposals per sample. A sample that exhausts them is
        set to its last in-range proposal (or `mu`) and a RuntimeWarning is
        issued.
    device : str, optional
        Torch device; defaults to 'cuda' when available, else 'cpu'.
    dtype : torch.dtype, default=torch.float64
        Torch precision.

    Returns
    -------
    float or numpy.ndarray of shape (n_samples,)
        Angles in [-pi, pi].
    """
    mu = float(mu)
    kappa = float(kappa)
    if not (math.isfinite(mu) and -math.pi <= mu <= math.pi):
        raise ValueError("`mu` must be a finite angle in [-pi, pi].")
    if not math.isfinite(kappa) or kappa < 0:
        raise ValueError("`kappa` must be finite and non-negative.")
    if backend not in BACKENDS:
        raise ValueError(f"`backend` must be one of {BACKENDS}, got {backend!r}.")
    max_tries = check_positive_int(max_tries, "max_tries")
    single = n_samples is None
    n = 1 if single else check_nonnegative_int(n_samples, "n_samples")

    rng = np.random.default_rng(random_state)
    if n == 0:
        return np.empty(0)
    if backend == "torch":
        device = device or ('cuda' if torch.cuda.is_available() else 'cpu')
        angles, exhausted = _draw_torch(mu, kappa, n, rng, max_tries, device, dtype)
    else:
        angles, exhausted = _draw_numpy(mu, kappa, n, rng, max_tries)

    if exhausted:
        warnings.warn(
            f"{exhausted} von Mises sample(s) (mu={mu}, kappa={kappa}) were not accepted "
            f"within {max_tries} proposals; the last in-range proposal was used.",
            RuntimeWarning,
            stacklevel=2,
        )
    return float(angles[0]) if single else angles


def sample_components(weights, n_samples, random_state=None):
    """
    Draw component indices from the mixing weights.

    Index k is chosen for a uniform u when k is the smallest index with
    cumsum(weights)[k] > u.

    Returns
    -------
    numpy.ndarray of int, shape (n_samples,)
    """
    weights = np.asarray(weights, dtype=float).reshape(-1)
    rng = np.random.default_rng(random_state)
    cum_probs = np.cumsum(weights / weights.sum())
    u = rng.random(check_nonnegative_int(n_samples, "n_samples"))
    labels = np.searchsorted(cum_probs, u, side="right")
    return np.minimum(labels, weights.size - 1)
