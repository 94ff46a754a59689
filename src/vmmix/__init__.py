"""
von Mises Mixture Model (vMMM)

Provides:
- VonMisesMixture: Immutable mixture of von Mises distributions with pdf, sampling and clustering.
- fit: k-means seeded EM fitting with optional parallel replicates.
- sample_von_mises: Ratio-of-uniforms sampler with numpy and torch backends.
"""
import logging

from .core import VonMisesMixture, fit
from .estimation import (compute_gamma, compute_likelihood, estimate_parameters,
                         fit_em, kappa_from_resultant, log_likelihood)
from .kmeans import circular_kmeans
from .sampling import sample_components, sample_von_mises
from .utils import fit_with_replicates

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "VonMisesMixture",
    "fit",
    "fit_em",
    "fit_with_replicates",
    "compute_likelihood",
    "log_likelihood",
    "compute_gamma",
    "estimate_parameters",
    "kappa_from_resultant",
    "circular_kmeans",
    "sample_von_mises",
    "sample_components",
]
