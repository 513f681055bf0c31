"""
Bayesian logistic regression of member summit success, fitted with PyMC.

Every coefficient (intercept included) gets an independent Normal prior.
The posterior is approximated by MCMC; convergence is judged by R-hat per
coefficient and a fit whose chains disagree is reported, never silently
accepted.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

import arviz as az
import numpy as np
import pandas as pd
import pymc as pm
import pytensor.tensor as pt

from .config import TOTAL_MEMBERS, PipelineConfig
from .design import DesignSpec
from .errors import ConvergenceError

COEFFICIENTS = "beta"


@dataclass(frozen=True)
class ConvergenceDiagnostics:
    """Per-coefficient R-hat and bulk ESS, plus divergence count."""

    rhat: Dict[str, float]
    ess_bulk: Dict[str, float]
    divergences: int
    rhat_threshold: float
    ess_threshold: float

    @property
    def failing_terms(self) -> List[str]:
        """Terms whose R-hat is above threshold or could not be computed."""
        return [
            term
            for term, value in self.rhat.items()
            if not np.isfinite(value) or value > self.rhat_threshold
        ]

    @property
    def low_ess_terms(self) -> List[str]:
        return [
            term
            for term, value in self.ess_bulk.items()
            if not np.isfinite(value) or value < self.ess_threshold
        ]

    @property
    def converged(self) -> bool:
        return not self.failing_terms

    @property
    def max_rhat(self) -> float:
        return float(np.nanmax(list(self.rhat.values()))) if self.rhat else float("nan")

    def to_frame(self) -> pd.DataFrame:
        frame = pd.DataFrame(
            {
                "term": list(self.rhat),
                "r_hat": list(self.rhat.values()),
                "ess_bulk": [self.ess_bulk.get(term, np.nan) for term in self.rhat],
            }
        )
        frame["rhat_ok"] = frame["term"].map(lambda term: term not in self.failing_terms)
        return frame


def check_convergence(
    idata: az.InferenceData, config: Optional[PipelineConfig] = None
) -> ConvergenceDiagnostics:
    """Compute R-hat, bulk ESS and divergences for the coefficient vector."""
    config = config or PipelineConfig()
    logger = logging.getLogger("ConvergenceCheck")

    terms = [str(term) for term in idata.posterior[COEFFICIENTS].coords["term"].values]
    rhat = az.rhat(idata, var_names=[COEFFICIENTS])[COEFFICIENTS].values
    ess = az.ess(idata, var_names=[COEFFICIENTS], method="bulk")[COEFFICIENTS].values

    divergences = 0
    sample_stats = getattr(idata, "sample_stats", None)
    if sample_stats is not None and "diverging" in sample_stats:
        divergences = int(sample_stats["diverging"].sum().values)

    diagnostics = ConvergenceDiagnostics(
        rhat={term: float(value) for term, value in zip(terms, rhat)},
        ess_bulk={term: float(value) for term, value in zip(terms, ess)},
        divergences=divergences,
        rhat_threshold=config.RHAT_THRESHOLD,
        ess_threshold=config.ESS_THRESHOLD,
    )

    for term in terms:
        status = "OK" if term not in diagnostics.failing_terms else "WARNING"
        logger.debug(
            f"  {term}: R-hat {diagnostics.rhat[term]:.4f}, "
            f"ESS {diagnostics.ess_bulk[term]:.0f}  {status}"
        )
    if diagnostics.low_ess_terms:
        logger.warning(f"Low bulk ESS for {diagnostics.low_ess_terms}")
    if divergences:
        logger.warning(f"{divergences} divergent transitions")
    if diagnostics.converged:
        logger.info(f"Convergence OK (max R-hat {diagnostics.max_rhat:.4f})")
    else:
        logger.error(
            f"Chains did not converge: R-hat above {config.RHAT_THRESHOLD} "
            f"for {diagnostics.failing_terms}"
        )
    return diagnostics


@dataclass(frozen=True)
class FittedModel:
    """Posterior draws plus everything needed to predict from them."""

    idata: az.InferenceData
    design: DesignSpec
    n_obs: int
    member_median: float
    diagnostics: ConvergenceDiagnostics

    @property
    def terms(self) -> List[str]:
        return self.design.terms

    @property
    def reliable(self) -> bool:
        return self.diagnostics.converged

    def draws(self) -> np.ndarray:
        """All posterior draws, shape ``(chains * draws, n_terms)``."""
        stacked = self.idata.posterior[COEFFICIENTS].stack(sample=("chain", "draw"))
        return stacked.transpose("sample", "term").values

    def chain_draws(self) -> np.ndarray:
        """Draws kept per chain, shape ``(chains, draws, n_terms)``."""
        return self.idata.posterior[COEFFICIENTS].transpose("chain", "draw", "term").values

    def require_convergence(self) -> "FittedModel":
        if not self.reliable:
            raise ConvergenceError(
                f"R-hat above {self.diagnostics.rhat_threshold} for "
                f"{self.diagnostics.failing_terms} (max {self.diagnostics.max_rhat:.3f})",
                failing_terms=self.diagnostics.failing_terms,
                diagnostics=self.diagnostics,
                fitted=self,
            )
        return self


class BayesianModelBuilder:
    """Builds and samples the PyMC logistic regression."""

    def __init__(self, config: PipelineConfig, design: Optional[DesignSpec] = None):
        self.config = config
        self.design = design or DesignSpec.from_config(config)
        self.logger = logging.getLogger(self.__class__.__name__)

    def build_model(self, X: np.ndarray, y: np.ndarray) -> pm.Model:
        """Logistic regression with Normal(mu, sigma) priors on every coefficient."""
        coords = {"term": self.design.terms, "obs_id": np.arange(len(y))}
        with pm.Model(coords=coords) as model:
            beta = pm.Normal(
                COEFFICIENTS,
                mu=self.config.PRIOR_MU,
                sigma=self.config.PRIOR_SIGMA,
                dims="term",
            )
            pm.Bernoulli(
                self.design.outcome,
                logit_p=pt.dot(X, beta),
                observed=y,
                dims="obs_id",
            )
        return model

    def _sample_kwargs(self) -> Dict:
        kwargs = {
            "draws": self.config.NUM_SAMPLES,
            "tune": self.config.NUM_TUNE,
            "chains": self.config.NUM_CHAINS,
            "cores": self.config.NUM_CORES,
            "random_seed": self.config.RANDOM_SEED,
            "progressbar": False,
            "return_inferencedata": True,
        }
        if self.config.STEP_METHOD == "metropolis":
            kwargs["step"] = pm.Metropolis()
        else:
            kwargs["target_accept"] = self.config.TARGET_ACCEPT
        return kwargs

    def fit(self, records: pd.DataFrame, raise_on_failure: bool = False) -> FittedModel:
        """Sample the posterior for ``records`` and check convergence.

        A non-convergent fit is still returned (marked unreliable) unless
        ``raise_on_failure`` is set.
        """
        if records.empty:
            raise ValueError("Cannot fit a model on an empty table")

        X = self.design.build(records)
        y = self.design.outcome_vector(records)
        self.logger.info(
            f"Building PyMC model: {len(y)} observations, {len(self.design.terms)} coefficients"
        )

        with self.build_model(X, y):
            self.logger.info(
                f"Starting MCMC sampling ({self.config.STEP_METHOD}): "
                f"{self.config.NUM_SAMPLES} samples, {self.config.NUM_TUNE} tune, "
                f"{self.config.NUM_CHAINS} chains"
            )
            start_time = time.time()
            idata = pm.sample(**self._sample_kwargs())
            sampling_time = time.time() - start_time

        self.logger.info(f"MCMC sampling completed in {sampling_time:.2f} seconds")

        member_median = float(np.median(records[TOTAL_MEMBERS].to_numpy(dtype="float64")))
        idata.posterior.attrs.update(
            {
                "design_spec": json.dumps(self.design.to_dict()),
                "config": json.dumps(self.config.snapshot()),
                "n_obs": int(len(y)),
                "member_median": member_median,
                "sampling_time": float(sampling_time),
            }
        )

        fitted = FittedModel(
            idata=idata,
            design=self.design,
            n_obs=len(y),
            member_median=member_median,
            diagnostics=check_convergence(idata, self.config),
        )
        if raise_on_failure:
            fitted.require_convergence()
        return fitted


def save_model(fitted: FittedModel, path: Union[str, Path]) -> Path:
    """Write the posterior and its metadata to a NetCDF file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fitted.idata.to_netcdf(str(path))
    logging.getLogger("BayesianModelBuilder").info(f"Saved fitted model to {path}")
    return path


def load_model(path: Union[str, Path], config: Optional[PipelineConfig] = None) -> FittedModel:
    """Read a model written by ``save_model`` and recompute its diagnostics."""
    idata = az.from_netcdf(str(path))
    attrs = idata.posterior.attrs
    if "design_spec" not in attrs:
        raise ValueError(f"{path} is not a fitted expedition model (no design_spec)")

    if config is None:
        snapshot = json.loads(attrs.get("config", "{}"))
        config = PipelineConfig(RHAT_THRESHOLD=snapshot.get("RHAT_THRESHOLD", 1.05))

    return FittedModel(
        idata=idata,
        design=DesignSpec.from_dict(json.loads(attrs["design_spec"])),
        n_obs=int(attrs["n_obs"]),
        member_median=float(attrs["member_median"]),
        diagnostics=check_convergence(idata, config),
    )
