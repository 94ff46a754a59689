import logging

import numpy as np

from .utils import check_positive_int

logger = logging.getLogger(__name__)


def circular_dissimilarity(angles, centers):
    """
    Dissimilarity 1 - cos(theta - c) between every angle and every center.

    Ranges from 0 (same direction) to 2 (opposite directions), so angles on
    either side of +/-pi are close to each other.

    Returns
    -------
    numpy.ndarray, shape (n_samples, n_centers)
    """
    angles = np.asarray(angles, dtype=float).reshape(-1)
    centers = np.asarray(centers, dtype=float).reshape(-1)
    return 1.0 - np.cos(angles[:, None] - centers[None, :])


def _circular_mean(angles):
    return np.arctan2(np.sin(angles).mean(), np.cos(angles).mean())


def _fill_empty_clusters(labels, cost, n_clusters):
    """Move the worst-served points into empty clusters (in place)."""
    counts = np.bincount(labels, minlength=n_clusters)
    for c in np.flatnonzero(counts == 0):
        # never take the last member away from another cluster
        candidates = np.where(counts[labels] > 1, cost, -np.inf)
        far = int(np.argmax(candidates))
        counts[labels[far]] -= 1
        labels[far] = c
        counts[c] += 1
        cost[far] = 0.0
    return labels


def _init_centers(angles, n_clusters, rng):
    """Greedy k-means++ seeding under the circular dissimilarity."""
    n_samples = angles.shape[0]
    n_local_trials = 2 + int(np.log(n_clusters))
    centers = np.empty(n_clusters)
    centers[0] = angles[rng.integers(n_samples)]
    closest = circular_dissimilarity(angles, centers[:1])[:, 0]
    for c in range(1, n_clusters):
        potential = closest.sum()
        if potential > 0:
            candidates = rng.choice(n_samples, size=n_local_trials, p=closest / potential)
        else:
            # all points coincide with a center
            candidates = rng.choice(n_samples, size=n_local_trials)
        dist = np.minimum(closest[:, None], circular_dissimilarity(angles, angles[candidates]))
        best = int(np.argmin(dist.sum(axis=0)))
        centers[c] = angles[candidates[best]]
        closest = dist[:, best]
    return centers


def _kmeans_single(angles, n_clusters, max_iter, rng):
    n_samples = angles.shape[0]
    centers = _init_centers(angles, n_clusters, rng)
    labels = None
    for n_iter in range(1, max_iter + 1):
        dist = circular_dissimilarity(angles, centers)
        new_labels = dist.argmin(axis=1)
        cost = dist[np.arange(n_samples), new_labels]
        new_labels = _fill_empty_clusters(new_labels, cost, n_clusters)
        if labels is not None and np.array_equal(new_labels, labels):
            break
        labels = new_labels
        centers = np.array([_circular_mean(angles[labels == c]) for c in range(n_clusters)])
    inertia = circular_dissimilarity(angles, centers)[np.arange(n_samples), labels].sum()
    logger.debug("k-means stopped after %d iterations, dispersion %.6f", n_iter, inertia)
    return labels, centers, inertia


def circular_kmeans(angles, n_clusters, n_replicates=1, max_iter=100, random_state=None):
    """
    K-means clustering of angles with a circular dissimilarity.

    Each replicate picks its initial centers among the data points with
    greedy k-means++ seeding, then alternates assignment (closest center
    under 1 - cos) and update (circular mean of the members) until the
    assignments stop changing or `max_iter` rounds have passed. Clusters
    that run empty are reseeded with the point farthest from its current
    center.

    Parameters
    ----------
    angles : array-like, shape (n_samples,)
        Angles in radians.
    n_clusters : int
        Number of clusters, 1 <= n_clusters <= n_samples.
    n_replicates : int, default=1
        Number of random restarts. The replicate with the lowest total
        dissimilarity to the assigned centers is returned.
    max_iter : int, default=100
        Maximum number of assignment/update rounds per replicate.
    random_state : None, int, SeedSequence or Generator
        Source of the random initial centers.

    Returns
    -------
    labels : numpy.ndarray of int, shape (n_samples,)
        Cluster index in [0, n_clusters) of every angle.
    centers : numpy.ndarray, shape (n_clusters,)
        Cluster centers in [-pi, pi].
    """
    angles = np.asarray(angles, dtype=float).reshape(-1)
    n_clusters = check_positive_int(n_clusters, "n_clusters")
    n_replicates = check_positive_int(n_replicates, "n_replicates")
    max_iter = check_positive_int(max_iter, "max_iter")
    if n_clusters > angles.shape[0]:
        raise ValueError(
            f"Number of clusters ({n_clusters}) cannot exceed the number of "
            f"observations ({angles.shape[0]})."
        )
    rng = np.random.default_rng(random_state)

    best = None
    for _ in range(n_replicates):
        labels, centers, inertia = _kmeans_single(angles, n_clusters, max_iter, rng)
        if best is None or inertia < best[2]:
            best = (labels, centers, inertia)
    return best[0], best[1]
