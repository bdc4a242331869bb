#!/usr/bin/env python
# coding: utf-8


"""
Synthetic bulk methylation data with a known cell mixture.

Generates ``Y = clip(Mu · Omegaᵀ + ε, 0, 1)`` where

- Mu (CpGs × K) is drawn from Beta(a, a) (``a = 0.5`` gives the bimodal
  shape typical of purified cell types),
- Omega (samples × K) rows are drawn from a flat Dirichlet, and
- ε is Gaussian noise with standard deviation ``noise``.

Useful for checking that the fitting and bootstrap pipeline recovers the
true number of components.
"""

from typing import Optional, Tuple

import numpy as np
import pandas as pd

from cellmix.core.errors import InvalidParameter
from cellmix.core.validation import check_positive_int


def simulate_mixture(
    n_features: int,
    n_samples: int,
    k: int,
    noise: float = 0.01,
    seed: Optional[int] = None,
    beta_shape: float = 0.5,
    as_frame: bool = False,
) -> Tuple:
    """
    Draw a synthetic beta-value matrix from a K-component mixture.

    Parameters
    ----------
    n_features, n_samples, k : int
        Number of CpGs, samples and latent components.
    noise : float, default 0.01
        Standard deviation of the additive Gaussian noise.
    seed : int, optional
        Seed for ``numpy.random.default_rng``.
    beta_shape : float, default 0.5
        Shape of the symmetric Beta distribution for Mu.
    as_frame : bool, default False
        Return labelled DataFrames (``cg…`` CpG ids, ``S…`` sample ids).

    Returns
    -------
    tuple
        ``(Y, mu_true, omega_true)``.
    """
    n_features = check_positive_int(n_features, "n_features")
    n_samples = check_positive_int(n_samples, "n_samples")
    k = check_positive_int(k, "K")
    if noise < 0:
        raise InvalidParameter(f"noise must be non-negative, got {noise}")

    rng = np.random.default_rng(seed)
    mu = rng.beta(beta_shape, beta_shape, size=(n_features, k))
    omega = rng.dirichlet(np.ones(k), size=n_samples)
    Y = mu @ omega.T + rng.normal(0.0, noise, size=(n_features, n_samples))
    Y = np.clip(Y, 0.0, 1.0)

    if not as_frame:
        return Y, mu, omega

    cpgs = [f"cg{i:08d}" for i in range(1, n_features + 1)]
    samples = [f"S{j}" for j in range(1, n_samples + 1)]
    components = [f"component_{c}" for c in range(1, k + 1)]
    return (
        pd.DataFrame(Y, index=cpgs, columns=samples),
        pd.DataFrame(mu, index=cpgs, columns=components),
        pd.DataFrame(omega, index=samples, columns=components),
    )
