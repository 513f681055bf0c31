"""
Loading of the three source tables (peaks, expeditions, members).

Rows and columns are kept verbatim. Only the columns declared in the
configured schemas are coerced, and only to their declared type.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Union

import numpy as np
import pandas as pd

from .config import PipelineConfig
from .errors import LoadError


BOOLEAN_TOKENS = {
    "true": True,
    "t": True,
    "yes": True,
    "y": True,
    "1": True,
    "1.0": True,
    "false": False,
    "f": False,
    "no": False,
    "n": False,
    "0": False,
    "0.0": False,
}


@dataclass(frozen=True)
class SourceTables:
    """The three raw tables as read from disk."""

    peaks: pd.DataFrame
    expeditions: pd.DataFrame
    members: pd.DataFrame


def _coerce_boolean(series: pd.Series, table: str) -> pd.Series:
    if pd.api.types.is_bool_dtype(series):
        return series.astype("boolean")
    tokens = series.astype("string").str.strip().str.lower()
    mapped = tokens.map(BOOLEAN_TOKENS, na_action="ignore")
    bad = tokens.notna() & (tokens != "") & mapped.isna()
    if bad.any():
        sample = series[bad].unique()[:3].tolist()
        raise LoadError(
            f"{table}: column {series.name!r} has non-boolean values {sample}"
        )
    return mapped.astype("boolean")


def _coerce_numeric(series: pd.Series, table: str) -> pd.Series:
    numeric = pd.to_numeric(series, errors="coerce")
    bad = series.notna() & numeric.isna()
    if bad.any():
        sample = series[bad].unique()[:3].tolist()
        raise LoadError(f"{table}: column {series.name!r} has non-numeric values {sample}")
    return numeric


def _coerce_integer(series: pd.Series, table: str) -> pd.Series:
    numeric = _coerce_numeric(series, table)
    finite = numeric.dropna()
    if not np.all(np.equal(np.mod(finite, 1), 0)):
        raise LoadError(f"{table}: column {series.name!r} has non-integer values")
    return numeric.astype("Int64")


def coerce_column(series: pd.Series, declared: str, table: str) -> pd.Series:
    """Coerce one column to its declared type, raising LoadError if malformed."""
    if declared == "string":
        return series.astype("string")
    if declared == "float":
        return _coerce_numeric(series, table).astype("float64")
    if declared == "integer":
        return _coerce_integer(series, table)
    if declared == "boolean":
        return _coerce_boolean(series, table)
    raise ValueError(f"Unknown declared type {declared!r} for column {series.name!r}")


def load_table(
    path: Union[str, Path],
    schema: Dict[str, str],
    name: str,
    optional: Optional[Dict[str, str]] = None,
) -> pd.DataFrame:
    """Read one CSV table and coerce its declared columns.

    Columns in ``optional`` are coerced when the file has them and are not
    required otherwise.
    """
    logger = logging.getLogger("DatasetLoader")
    path = Path(path)
    if not path.exists():
        raise LoadError(f"{name}: file not found: {path}")

    try:
        df = pd.read_csv(path, low_memory=False)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise LoadError(f"{name}: could not parse {path}: {e}") from e

    missing = [column for column in schema if column not in df.columns]
    if missing:
        raise LoadError(f"{name}: missing required columns {missing} in {path}")

    declared = dict(schema)
    declared.update({c: t for c, t in (optional or {}).items() if c in df.columns})
    for column, kind in declared.items():
        df[column] = coerce_column(df[column], kind, name)

    logger.info(f"Loaded {name}: {len(df)} rows, {len(df.columns)} columns from {path}")
    return df


class DatasetLoader:
    """Reads the peaks, expeditions and members tables from a directory."""

    def __init__(self, config: PipelineConfig):
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)

    def load(self, data_dir: Union[str, Path]) -> SourceTables:
        """Load all three tables from ``data_dir``."""
        data_dir = Path(data_dir)
        count_column = {self.config.MEMBER_COUNT_COLUMN: "integer"}
        self.logger.info(f"Loading source tables from {data_dir}")
        tables = SourceTables(
            peaks=load_table(data_dir / self.config.PEAKS_FILE, self.config.PEAKS_SCHEMA, "peaks"),
            expeditions=load_table(
                data_dir / self.config.EXPEDITIONS_FILE,
                self.config.EXPEDITIONS_SCHEMA,
                "expeditions",
                optional=count_column,
            ),
            members=load_table(
                data_dir / self.config.MEMBERS_FILE,
                self.config.MEMBERS_SCHEMA,
                "members",
                optional=count_column,
            ),
        )

        column = self.config.MEMBER_COUNT_COLUMN
        if column not in tables.members.columns and column not in tables.expeditions.columns:
            raise LoadError(f"members/expeditions: neither table has a {column!r} column")
        return tables
