"""
Feature derivation: joined member rows -> analysis records.

Each categorical feature is assigned by first-matching-rule precedence, so a
row always receives exactly one level (or null where the rules allow it).
The mapping is row-wise and pure; the input frame is never modified.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from .config import (
    ANALYSIS_COLUMNS,
    DEATH,
    HEIGHT_RANGE,
    OXYGEN_STATUS,
    ROLE_CATEGORY,
    SEASON,
    SUCCESS,
    TOTAL_MEMBERS,
    PipelineConfig,
)


LEADER = "Leader"
SHERPA = "Sherpa"
HIRED_STAFF = "Hired Staff"
MEMBER = "Member"

USED_OXYGEN = "Used Oxygen"
NO_OXYGEN = "No Oxygen"
UNKNOWN_OXYGEN = "Unknown"


def _is_true(value) -> bool:
    return not pd.isna(value) and bool(value)


def bin_heights(heights, edges: Sequence[float], labels: Sequence[str]) -> np.ndarray:
    """Half-open ``[lower, upper)`` height bins; the top bin is unbounded above.

    Heights below the first edge, or missing, get None.
    """
    numeric = pd.to_numeric(pd.Series(heights), errors="coerce")
    binned = pd.cut(
        numeric.to_numpy(dtype="float64", na_value=np.nan),
        bins=list(edges) + [np.inf],
        labels=list(labels),
        right=False,
    )
    values = np.asarray(binned, dtype=object)
    values[pd.isna(values)] = None
    return values


def height_range_for(
    height: Optional[float],
    edges: Sequence[float] = PipelineConfig.HEIGHT_EDGES,
    labels: Sequence[str] = PipelineConfig.HEIGHT_LABELS,
) -> Optional[str]:
    """Bucket a single height into its range label."""
    return bin_heights([height], edges, labels)[0]


def role_category_for(leader, sherpa, hired) -> str:
    """Leader > Sherpa > Hired Staff > Member."""
    if _is_true(leader):
        return LEADER
    if _is_true(sherpa):
        return SHERPA
    if _is_true(hired):
        return HIRED_STAFF
    return MEMBER


def oxygen_status_for(used, none) -> str:
    """Used Oxygen > No Oxygen > Unknown."""
    if _is_true(used):
        return USED_OXYGEN
    if _is_true(none):
        return NO_OXYGEN
    return UNKNOWN_OXYGEN


def season_for(code, labels=None) -> Optional[str]:
    """Map a season code (1-4) to its name; anything else is None."""
    labels = PipelineConfig.SEASON_LABELS if labels is None else labels
    if code is None or pd.isna(code):
        return None
    return labels.get(int(code)) if float(code).is_integer() else None


class FeatureDeriver:
    """Derives the analysis record columns from the joined table."""

    def __init__(self, config: PipelineConfig):
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)

    def _flag(self, df: pd.DataFrame, column: str) -> np.ndarray:
        # Missing flags count as false
        return df[column].astype("boolean").fillna(False).to_numpy(dtype=bool)

    def _categorical(self, values, name: str) -> pd.Categorical:
        return pd.Categorical(values, categories=list(self.config.LEVEL_ORDER[name]))

    def height_range(self, df: pd.DataFrame) -> pd.Categorical:
        binned = bin_heights(df["HEIGHTM"], self.config.HEIGHT_EDGES, self.config.HEIGHT_LABELS)
        return self._categorical(binned, HEIGHT_RANGE)

    def role_category(self, df: pd.DataFrame) -> pd.Categorical:
        choices = np.select(
            [self._flag(df, "LEADER"), self._flag(df, "SHERPA"), self._flag(df, "HIRED")],
            [LEADER, SHERPA, HIRED_STAFF],
            default=MEMBER,
        )
        return self._categorical(choices, ROLE_CATEGORY)

    def oxygen_status(self, df: pd.DataFrame) -> pd.Categorical:
        choices = np.select(
            [self._flag(df, "MO2USED"), self._flag(df, "MO2NONE")],
            [USED_OXYGEN, NO_OXYGEN],
            default=UNKNOWN_OXYGEN,
        )
        return self._categorical(choices, OXYGEN_STATUS)

    def season(self, df: pd.DataFrame) -> pd.Categorical:
        codes = pd.to_numeric(df["SEASON"], errors="coerce").astype("float64")
        labels = {float(code): label for code, label in self.config.SEASON_LABELS.items()}
        return self._categorical(codes.map(labels).to_numpy(dtype=object), SEASON)

    def total_members(self, df: pd.DataFrame) -> pd.arrays.IntegerArray:
        """Member-level count where present, else the expedition's."""
        column = self.config.MEMBER_COUNT_COLUMN
        counts = pd.Series(pd.NA, index=df.index, dtype="Int64")
        for source in (column, f"{column}_exped"):
            if source in df.columns:
                counts = counts.fillna(df[source].astype("Int64"))
        return counts.array

    def derive(self, joined: pd.DataFrame) -> pd.DataFrame:
        """Build one analysis record per joined row, in the same order."""
        self.logger.info(f"Deriving features for {len(joined)} rows")
        records = pd.DataFrame(
            {
                HEIGHT_RANGE: self.height_range(joined),
                ROLE_CATEGORY: self.role_category(joined),
                OXYGEN_STATUS: self.oxygen_status(joined),
                SEASON: self.season(joined),
                SUCCESS: pd.array(joined["MSUCCESS"], dtype="boolean"),
                DEATH: pd.array(joined["DEATH"], dtype="boolean"),
                TOTAL_MEMBERS: self.total_members(joined),
            },
            columns=list(ANALYSIS_COLUMNS),
        )

        for column in (HEIGHT_RANGE, SEASON):
            missing = int(records[column].isna().sum())
            if missing:
                self.logger.debug(f"{missing} rows without a {column} category")
        return records
