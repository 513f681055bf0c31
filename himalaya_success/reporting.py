"""
Posterior summaries, posterior-predictive tables and report figures.

Everything here works on the full set of posterior draws. Outputs produced
from a fit that failed its convergence check carry ``reliable = False`` and
are written under an ``UNRELIABLE_`` file prefix.
"""

from __future__ import annotations

import itertools
import logging
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Sequence, Union

import matplotlib

matplotlib.use("Agg")

import arviz as az
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from scipy.special import expit

from .config import (
    HEIGHT_RANGE,
    OXYGEN_STATUS,
    ROLE_CATEGORY,
    SEASON,
    SUCCESS,
    TOTAL_MEMBERS,
    PipelineConfig,
)
from .design import CATEGORICAL
from .model import COEFFICIENTS, FittedModel


def _interval_bounds(mass: float):
    tail = (1.0 - mass) / 2.0
    return tail, 1.0 - tail


def coefficient_summary(fitted: FittedModel, mass: float = 0.95) -> pd.DataFrame:
    """Posterior mean, SD and equal-tailed credible interval per coefficient."""
    draws = fitted.draws()
    lower, upper = _interval_bounds(mass)
    summary = pd.DataFrame(
        {
            "term": fitted.terms,
            "estimate": draws.mean(axis=0),
            "std_error": draws.std(axis=0, ddof=1),
            "ci_lower": np.quantile(draws, lower, axis=0),
            "ci_upper": np.quantile(draws, upper, axis=0),
        }
    )
    summary["r_hat"] = summary["term"].map(fitted.diagnostics.rhat)
    summary["ess_bulk"] = summary["term"].map(fitted.diagnostics.ess_bulk)
    summary["reliable"] = fitted.reliable
    return summary


def trace_summary(fitted: FittedModel) -> pd.DataFrame:
    """Per chain and coefficient: mean, SD and first-to-second-half drift.

    Drift is the difference between the means of the second and first half
    of a chain, in units of the pooled posterior SD.
    """
    chains = fitted.chain_draws()
    pooled_sd = fitted.draws().std(axis=0, ddof=1)
    half = chains.shape[1] // 2
    rows = []
    for chain in range(chains.shape[0]):
        values = chains[chain]
        first = values[:half].mean(axis=0) if half else values.mean(axis=0)
        second = values[half:].mean(axis=0)
        for index, term in enumerate(fitted.terms):
            scale = pooled_sd[index] if pooled_sd[index] > 0 else np.nan
            rows.append(
                {
                    "term": term,
                    "chain": chain,
                    "mean": values[:, index].mean(),
                    "sd": values[:, index].std(ddof=1) if len(values) > 1 else np.nan,
                    "drift": (second[index] - first[index]) / scale,
                }
            )
    return pd.DataFrame(rows)


def build_prediction_grid(
    levels: Mapping[str, Sequence],
    fixed: Optional[Mapping[str, object]] = None,
) -> pd.DataFrame:
    """Cartesian product of ``levels`` with the ``fixed`` columns held constant."""
    fixed = dict(fixed or {})
    overlap = set(levels) & set(fixed)
    if overlap:
        raise ValueError(f"Columns both varied and fixed: {sorted(overlap)}")

    names = list(levels)
    grid = pd.DataFrame(
        list(itertools.product(*(levels[name] for name in names))), columns=names
    )
    for name, value in fixed.items():
        grid[name] = value
    return grid


def _fixed_levels(fitted: FittedModel, config: PipelineConfig, varied: Iterable[str]):
    fixed = {
        name: value
        for name, value in config.GRID_DEFAULTS.items()
        if name not in varied and name in fitted.design.names
    }
    fixed[TOTAL_MEMBERS] = fitted.member_median
    return fixed


def height_season_grid(fitted: FittedModel, config: Optional[PipelineConfig] = None) -> pd.DataFrame:
    """Height range x season, other predictors at their grid defaults."""
    config = config or PipelineConfig()
    varied = {
        HEIGHT_RANGE: fitted.design.predictor(HEIGHT_RANGE).levels,
        SEASON: fitted.design.predictor(SEASON).levels,
    }
    return build_prediction_grid(varied, _fixed_levels(fitted, config, varied))


def role_oxygen_grid(fitted: FittedModel, config: Optional[PipelineConfig] = None) -> pd.DataFrame:
    """Role x oxygen status, other predictors at their grid defaults."""
    config = config or PipelineConfig()
    varied = {
        ROLE_CATEGORY: fitted.design.predictor(ROLE_CATEGORY).levels,
        OXYGEN_STATUS: fitted.design.predictor(OXYGEN_STATUS).levels,
    }
    return build_prediction_grid(varied, _fixed_levels(fitted, config, varied))


def posterior_predict(
    fitted: FittedModel,
    grid: pd.DataFrame,
    seed: Optional[int] = None,
    mass: float = 0.95,
) -> pd.DataFrame:
    """Posterior-predictive success probabilities for every grid row.

    For each posterior draw the success probability at each grid point is
    computed and one outcome is simulated from it. ``success_prob`` is the
    mean of the simulated outcomes; ``p_mean``, ``p_lower`` and ``p_upper``
    summarize the probability itself across draws.
    """
    X = fitted.design.build(grid)
    draws = fitted.draws()
    p = expit(draws @ X.T)  # (n_draws, n_grid)
    rng = np.random.default_rng(seed)
    simulated = rng.binomial(1, p)
    lower, upper = _interval_bounds(mass)

    predictions = grid.copy()
    predictions["success_prob"] = simulated.mean(axis=0)
    predictions["p_mean"] = p.mean(axis=0)
    predictions["p_lower"] = np.quantile(p, lower, axis=0)
    predictions["p_upper"] = np.quantile(p, upper, axis=0)
    predictions["n_draws"] = draws.shape[0]
    predictions["reliable"] = fitted.reliable
    return predictions


def success_rate_table(records: pd.DataFrame, by: Union[str, Sequence[str]]) -> pd.DataFrame:
    """Observed member count, successes and success rate per category."""
    by = [by] if isinstance(by, str) else list(by)
    grouped = records.groupby(by, observed=True)[SUCCESS]
    table = pd.DataFrame(
        {
            "members": grouped.size(),
            "successes": grouped.sum().astype("int64"),
        }
    ).reset_index()
    table["success_rate"] = table["successes"] / table["members"]
    return table


class ResultsManager:
    """Writes tables and figures for the report."""

    def __init__(self, config: PipelineConfig, output_dir: Union[str, Path]):
        self.config = config
        self.output_dir = Path(output_dir)
        self.logger = logging.getLogger(self.__class__.__name__)

    def _path(self, name: str, reliable: bool) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        return self.output_dir / (name if reliable else f"UNRELIABLE_{name}")

    def write_table(self, table: pd.DataFrame, name: str, reliable: bool = True) -> Path:
        """Write a table to CSV."""
        path = self._path(f"{name}.csv", reliable)
        table.to_csv(path, index=False)
        self.logger.info(f"Wrote {len(table)} rows to {path}")
        return path

    def print_results(self, summary: pd.DataFrame, reliable: bool = True):
        """Print the coefficient table."""
        if not reliable:
            print("WARNING: chains did not converge; estimates are unreliable")
        columns = ["term", "estimate", "std_error", "ci_lower", "ci_upper", "r_hat"]
        print(summary[columns].to_string(index=False, float_format=lambda v: f"{v:.3f}"))

    def plot_trace(self, fitted: FittedModel) -> Path:
        path = self._path("trace.png", fitted.reliable)
        az.plot_trace(fitted.idata, var_names=[COEFFICIENTS], compact=False)
        plt.tight_layout()
        plt.savefig(path, dpi=120)
        plt.close("all")
        return path

    def plot_forest(self, fitted: FittedModel) -> Path:
        path = self._path("forest.png", fitted.reliable)
        az.plot_forest(
            fitted.idata,
            var_names=[COEFFICIENTS],
            combined=True,
            hdi_prob=self.config.CREDIBLE_MASS,
            r_hat=True,
        )
        plt.axvline(0, color="grey", linestyle="--", linewidth=0.8)
        plt.tight_layout()
        plt.savefig(path, dpi=120)
        plt.close("all")
        return path

    def plot_predictions(
        self,
        predictions: pd.DataFrame,
        x: str,
        hue: str,
        name: str,
        reliable: bool = True,
    ) -> Path:
        """Point-range plot of predicted success probability."""
        path = self._path(f"{name}.png", reliable)
        fig, ax = plt.subplots(figsize=(8, 5))
        hues = list(pd.unique(predictions[hue]))
        x_levels = list(pd.unique(predictions[x]))
        offsets = np.linspace(-0.2, 0.2, len(hues)) if len(hues) > 1 else [0.0]
        palette = sns.color_palette("colorblind", len(hues))

        for offset, level, color in zip(offsets, hues, palette):
            subset = predictions[predictions[hue] == level]
            positions = [x_levels.index(value) + offset for value in subset[x]]
            yerr = [
                np.clip(subset["p_mean"] - subset["p_lower"], 0, None),
                np.clip(subset["p_upper"] - subset["p_mean"], 0, None),
            ]
            ax.errorbar(
                positions, subset["p_mean"], yerr=yerr, fmt="o", capsize=3,
                color=color, label=str(level),
            )
        ax.set_xticks(range(len(x_levels)))
        ax.set_xticklabels([str(level) for level in x_levels])
        ax.set_xlabel(x)
        ax.legend(title=hue)
        ax.set_ylim(0, 1)
        ax.set_ylabel("P(success)")
        if not reliable:
            ax.set_title("UNRELIABLE: chains did not converge")
        fig.tight_layout()
        fig.savefig(path, dpi=120)
        plt.close(fig)
        return path

    def write_report(
        self,
        fitted: FittedModel,
        records: Optional[pd.DataFrame] = None,
        seed: Optional[int] = None,
    ) -> Dict[str, Path]:
        """Write every table and figure the report uses."""
        reliable = fitted.reliable
        if not reliable:
            self.logger.error("Writing report for a non-convergent fit; outputs marked UNRELIABLE")
        outputs: Dict[str, Path] = {}

        summary = coefficient_summary(fitted, self.config.CREDIBLE_MASS)
        self.print_results(summary, reliable)
        outputs["coefficients"] = self.write_table(summary, "coefficients", reliable)
        outputs["diagnostics"] = self.write_table(
            fitted.diagnostics.to_frame(), "diagnostics", reliable
        )
        outputs["trace_summary"] = self.write_table(trace_summary(fitted), "trace_summary", reliable)

        grids = {
            "predictions_height_season": (height_season_grid(fitted, self.config), HEIGHT_RANGE, SEASON),
            "predictions_role_oxygen": (role_oxygen_grid(fitted, self.config), ROLE_CATEGORY, OXYGEN_STATUS),
        }
        for name, (grid, x, hue) in grids.items():
            predictions = posterior_predict(fitted, grid, seed, self.config.CREDIBLE_MASS)
            outputs[name] = self.write_table(predictions, name, reliable)
            outputs[f"{name}_plot"] = self.plot_predictions(predictions, x, hue, name, reliable)

        if records is not None:
            for predictor in fitted.design.predictors:
                if predictor.kind == CATEGORICAL:
                    name = f"success_rates_{predictor.name}"
                    outputs[name] = self.write_table(
                        success_rate_table(records, predictor.name), name
                    )

        outputs["trace"] = self.plot_trace(fitted)
        outputs["forest"] = self.plot_forest(fitted)
        return outputs
