"""
Pipeline stages and command-line entry point.

Stages run in order, each reading the previous stage's output:

    prepare  load -> join -> derive features -> clean -> analysis_records.csv
    fit      analysis_records.csv -> model.nc
    report   model.nc (+ analysis_records.csv) -> tables and figures

``all`` runs the three in sequence. A failing stage aborts the run with a
message naming the stage; a non-convergent fit exits non-zero after writing
its outputs (marked unreliable) for inspection.
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, TypeVar, Union

import pandas as pd

from .cleaning import Cleaner, CleaningResult, ValidationRule
from .config import (
    ANALYSIS_COLUMNS,
    DEATH,
    SUCCESS,
    TOTAL_MEMBERS,
    PipelineConfig,
    setup_logging,
)
from .errors import ConvergenceError, LoadError, PipelineError
from .features import FeatureDeriver
from .joiner import join_tables
from .loader import DatasetLoader, coerce_column
from .model import BayesianModelBuilder, FittedModel, load_model, save_model
from .reporting import ResultsManager

RECORDS_FILE = "analysis_records.csv"
MODEL_FILE = "model.nc"

T = TypeVar("T")
logger = logging.getLogger("Pipeline")


def run_stage(stage: str, func: Callable[..., T], *args, **kwargs) -> T:
    """Run one stage, tagging any failure with the stage name."""
    logger.info(f"Stage '{stage}' starting")
    try:
        result = func(*args, **kwargs)
    except PipelineError:
        raise
    except (ValueError, KeyError, OSError) as e:
        raise PipelineError(f"{type(e).__name__}: {e}", stage=stage) from e
    logger.info(f"Stage '{stage}' finished")
    return result


def prepare_records(
    data_dir: Union[str, Path],
    config: PipelineConfig,
    rules: Sequence[ValidationRule] = (),
) -> CleaningResult:
    """Loader -> Joiner -> Feature Deriver -> Cleaner."""
    tables = run_stage("load", DatasetLoader(config).load, data_dir)
    joined, _ = run_stage("join", join_tables, tables, config)
    records = run_stage("derive", FeatureDeriver(config).derive, joined)
    return run_stage("clean", Cleaner(config, rules).clean, records)


def write_records(records: pd.DataFrame, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    records.to_csv(path, index=False)
    logger.info(f"Wrote {len(records)} analysis records to {path}")
    return path


def read_records(
    path: Union[str, Path], config: PipelineConfig, stage: str = "fit"
) -> pd.DataFrame:
    """Read a modeling table written by ``write_records``, restoring dtypes."""
    path = Path(path)
    if not path.exists():
        raise LoadError(f"analysis records not found: {path}", stage=stage)
    df = pd.read_csv(path)
    missing = [column for column in ANALYSIS_COLUMNS if column not in df.columns]
    if missing:
        raise LoadError(f"analysis records missing columns {missing}", stage=stage)

    for name, levels in config.LEVEL_ORDER.items():
        if name in df.columns:
            df[name] = pd.Categorical(df[name], categories=list(levels))
    for column in (SUCCESS, DEATH):
        df[column] = coerce_column(df[column], "boolean", "analysis_records")
    df[TOTAL_MEMBERS] = coerce_column(df[TOTAL_MEMBERS], "integer", "analysis_records")
    return df


def fit_records(records: pd.DataFrame, config: PipelineConfig, output_dir: Path) -> FittedModel:
    """Fit, save the artifact, then insist on convergence."""
    fitted = run_stage("fit", BayesianModelBuilder(config).fit, records)
    if fitted.reliable or config.REPORT_UNCONVERGED:
        save_model(fitted, output_dir / MODEL_FILE)
    return fitted.require_convergence()


def report(
    fitted: FittedModel,
    config: PipelineConfig,
    output_dir: Path,
    records: Optional[pd.DataFrame] = None,
) -> Dict[str, Path]:
    manager = ResultsManager(config, output_dir)
    return run_stage("report", manager.write_report, fitted, records, config.RANDOM_SEED)


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="himalaya-success",
        description="Bayesian logistic regression of Himalayan expedition member success.",
    )
    parser.add_argument("stage", choices=["prepare", "fit", "report", "all"])
    parser.add_argument("--data-dir", type=Path, default=Path("data"))
    parser.add_argument("--output-dir", type=Path, default=Path("outputs"))
    parser.add_argument("--draws", type=int, default=None)
    parser.add_argument("--tune", type=int, default=None)
    parser.add_argument("--chains", type=int, default=None)
    parser.add_argument("--cores", type=int, default=None)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--step", choices=PipelineConfig.STEP_METHODS, default=None)
    parser.add_argument("--strict-join", action="store_true")
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args(argv)


def config_from_args(args: argparse.Namespace) -> PipelineConfig:
    overrides = {
        "NUM_SAMPLES": args.draws,
        "NUM_TUNE": args.tune,
        "NUM_CHAINS": args.chains,
        "NUM_CORES": args.cores,
        "RANDOM_SEED": args.seed,
        "STEP_METHOD": args.step,
    }
    overrides = {key: value for key, value in overrides.items() if value is not None}
    if args.strict_join:
        overrides["STRICT_JOIN"] = True
    return replace(PipelineConfig(), **overrides)


def main(argv: Optional[List[str]] = None) -> int:
    """Main execution function."""
    args = _parse_args(argv)
    setup_logging(args.log_level)
    config = config_from_args(args)
    output_dir = args.output_dir
    records_path = output_dir / RECORDS_FILE

    logger.info(f"Running stage '{args.stage}'")
    try:
        records = None
        if args.stage in ("prepare", "all"):
            result = prepare_records(args.data_dir, config)
            records = result.records
            write_records(records, records_path)
            if args.stage == "prepare":
                return 0

        if args.stage in ("fit", "all"):
            if records is None:
                records = run_stage("fit", read_records, records_path, config)
            fitted = fit_records(records, config, output_dir)
            if args.stage == "fit":
                return 0
        else:
            fitted = run_stage("report", load_model, output_dir / MODEL_FILE, config)
            if records_path.exists():
                records = run_stage("report", read_records, records_path, config, "report")

        report(fitted, config, output_dir, records)
        if not fitted.reliable:
            logger.error("Report written from a non-convergent fit")
            return 1
    except ConvergenceError as e:
        logger.error(f"Stage '{e.stage}' failed: {e.args[0]}")
        if args.stage == "all" and config.REPORT_UNCONVERGED and e.fitted is not None:
            report(e.fitted, config, output_dir, records)
        return 1
    except PipelineError as e:
        logger.error(f"Stage '{e.stage}' failed: {e.args[0]}")
        return 1

    logger.info("Analysis completed successfully")
    return 0
