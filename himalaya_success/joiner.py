"""Left joins of members onto expeditions and peaks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import pandas as pd

from .config import PipelineConfig
from .errors import JoinKeyError
from .loader import SourceTables


logger = logging.getLogger("Joiner")

_EXPED_FLAG = "_merge_exped"
_PEAK_FLAG = "_merge_peak"


@dataclass(frozen=True)
class JoinReport:
    """Row accounting for one join run."""

    member_rows: int
    output_rows: int
    unmatched_expedition: int
    unmatched_peak: int

    @property
    def fan_out(self) -> int:
        """Extra rows created by non-unique keys on the right-hand tables."""
        return self.output_rows - self.member_rows


def _left_join(
    left: pd.DataFrame,
    right: pd.DataFrame,
    keys: Tuple[str, ...],
    suffix: str,
    indicator: str,
) -> pd.DataFrame:
    return left.merge(
        right,
        how="left",
        on=list(keys),
        suffixes=("", suffix),
        sort=False,
        indicator=indicator,
    )


def join_tables(
    tables: SourceTables,
    config: Optional[PipelineConfig] = None,
    strict: Optional[bool] = None,
) -> Tuple[pd.DataFrame, JoinReport]:
    """Join members -> expeditions -> peaks, keeping every member row.

    Right-hand keys are not deduplicated, so a member whose expedition (or
    peak) key appears twice yields two output rows. Unmatched members keep
    null expedition/peak fields unless ``strict`` is set, in which case a
    JoinKeyError is raised.

    Returns:
        Tuple of (joined frame, JoinReport)
    """
    config = config or PipelineConfig()
    strict = config.STRICT_JOIN if strict is None else strict

    joined = _left_join(
        tables.members, tables.expeditions, config.EXPEDITION_KEYS, "_exped", _EXPED_FLAG
    )
    joined = _left_join(joined, tables.peaks, config.PEAK_KEYS, "_peak", _PEAK_FLAG)

    no_exped = joined[_EXPED_FLAG] == "left_only"
    no_peak = joined[_PEAK_FLAG] == "left_only"
    report = JoinReport(
        member_rows=len(tables.members),
        output_rows=len(joined),
        unmatched_expedition=int(no_exped.sum()),
        unmatched_peak=int(no_peak.sum()),
    )
    joined = joined.drop(columns=[_EXPED_FLAG, _PEAK_FLAG])

    logger.info(
        f"Joined {report.member_rows} members -> {report.output_rows} rows "
        f"(fan-out {report.fan_out}, no expedition {report.unmatched_expedition}, "
        f"no peak {report.unmatched_peak})"
    )

    if strict and (report.unmatched_expedition or report.unmatched_peak):
        raise JoinKeyError(
            f"{report.unmatched_expedition} rows without a matching expedition and "
            f"{report.unmatched_peak} rows without a matching peak"
        )

    return joined, report
