#!/usr/bin/env python
# coding: utf-8


"""
End-to-end reference-free deconvolution workflow.

Chains the numerical stages on a pre-screened beta-value matrix:

1. :func:`~cellmix.core.mixture.factorization.fit_array`: one mixture per
   candidate K.
2. :func:`~cellmix.core.mixture.bootstrap.bootstrap_deviance`: bootstrap
   deviance of every candidate.
3. :func:`~cellmix.core.mixture.selection.select_k`: K with the smallest
   trimmed-mean deviance.
4. :func:`~cellmix.core.mixture.projection.project`: signatures of the
   chosen model over the complete CpG set, when one is supplied.

Any parameter not passed explicitly is taken from the global configuration
(:func:`cellmix.config.config_manager.get_config`), so defaults loaded once
apply to every run.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import pandas as pd

from cellmix.config.config_manager import get_config
from cellmix.core.mixture.bootstrap import bootstrap_deviance
from cellmix.core.mixture.factorization import CellMixModel, fit_array
from cellmix.core.mixture.projection import project
from cellmix.core.mixture.selection import select_k, summarize_deviance
from cellmix.utils.logger import logger


@dataclass
class CellMixResult:
    """
    Outcome of :func:`run_cell_mix`.

    Attributes
    ----------
    models : dict
        ``K -> CellMixModel`` for every candidate.
    deviance : pd.DataFrame
        Bootstrap deviance table (replicate × K).
    deviance_summary : pd.DataFrame
        Per-K summary with the ``selected`` flag.
    k : int
        Selected number of components.
    mu_full : np.ndarray or pd.DataFrame or None
        Signatures of the selected model projected onto ``y_full``.
    """

    models: Dict[int, CellMixModel]
    deviance: pd.DataFrame
    deviance_summary: pd.DataFrame
    k: int
    mu_full: Optional[Any] = None

    @property
    def model(self) -> CellMixModel:
        """The selected candidate model."""
        return self.models[self.k]


def _resolve(value, section: Dict[str, Any], key: str):
    return section[key] if value is None else value


def run_cell_mix(
    Y,
    ks=None,
    y_full=None,
    max_iterations: Optional[int] = None,
    init: Optional[str] = None,
    replicates: Optional[int] = None,
    refit_iterations: Optional[int] = None,
    seed: Optional[int] = None,
    epsilon: Optional[float] = None,
    trim_fraction: Optional[float] = None,
    n_jobs: Optional[int] = None,
) -> CellMixResult:
    """
    Fit candidate mixtures, choose K by bootstrap deviance and project.

    Parameters
    ----------
    Y : np.ndarray or pd.DataFrame
        Pre-screened beta-value matrix (CpGs × samples).
    ks : iterable of int, optional
        Candidate component counts.
    y_full : np.ndarray or pd.DataFrame, optional
        Complete beta-value matrix over the same samples, in the same order.
    max_iterations, init : optional
        Factorisation settings.
    replicates, refit_iterations, seed, epsilon : optional
        Bootstrap settings.
    trim_fraction : float, optional
        Selection setting.
    n_jobs : int, optional
        joblib workers used by every stage.

    Returns
    -------
    CellMixResult
    """
    cfg = get_config()
    fact = cfg.get("factorization")
    boot = cfg.get("bootstrap")
    sel = cfg.get("selection")
    n_jobs = _resolve(n_jobs, cfg.get("execution"), "n_jobs")

    models = fit_array(
        Y,
        ks=_resolve(ks, fact, "ks"),
        max_iterations=_resolve(max_iterations, fact, "max_iterations"),
        init=_resolve(init, fact, "init"),
        tol=fact["tol"],
        metric=fact["linkage_metric"],
        large_ok=fact["large_ok"],
        n_jobs=n_jobs,
    )
    table = bootstrap_deviance(
        models,
        Y,
        replicates=_resolve(replicates, boot, "replicates"),
        refit_iterations=_resolve(refit_iterations, boot, "refit_iterations"),
        seed=_resolve(seed, boot, "seed"),
        epsilon=_resolve(epsilon, boot, "epsilon"),
        n_jobs=n_jobs,
    )
    trim_fraction = _resolve(trim_fraction, sel, "trim_fraction")
    k = select_k(table, trim_fraction=trim_fraction)
    summary = summarize_deviance(table, trim_fraction=trim_fraction)

    mu_full = None
    if y_full is not None:
        mu_full = project(y_full, models[k].omega, n_jobs=n_jobs)

    logger.info(f"Reference-free deconvolution complete: K={k}")
    return CellMixResult(
        models=models,
        deviance=table,
        deviance_summary=summary,
        k=k,
        mu_full=mu_full,
    )
