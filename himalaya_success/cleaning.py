"""
Row exclusion before model fitting.

Rows missing any modeling field are dropped. Further validation is a rule
set supplied by the caller; no extra rules are active by default. Excluded
rows are counted per reason and logged, never raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Sequence

import pandas as pd

from .config import MODELING_FIELDS, PipelineConfig
from .errors import ValidationError


@dataclass(frozen=True)
class ValidationRule:
    """Keep rows for which ``predicate(df[column])`` is true."""

    name: str
    column: str
    predicate: Callable[[pd.Series], pd.Series]

    def passes(self, df: pd.DataFrame) -> pd.Series:
        mask = self.predicate(df[self.column])
        return pd.Series(mask, index=df.index).astype("boolean").fillna(False).astype(bool)


def range_rule(
    column: str, minimum: Optional[float] = None, maximum: Optional[float] = None
) -> ValidationRule:
    """Rule keeping rows whose ``column`` lies in ``[minimum, maximum]``."""

    def predicate(values: pd.Series) -> pd.Series:
        mask = pd.Series(True, index=values.index)
        if minimum is not None:
            mask &= values >= minimum
        if maximum is not None:
            mask &= values <= maximum
        return mask

    return ValidationRule(
        name=f"{column}_in_[{minimum},{maximum}]", column=column, predicate=predicate
    )


@dataclass
class CleaningResult:
    """The modeling table plus a count of excluded rows per reason."""

    records: pd.DataFrame
    input_rows: int
    excluded: Dict[str, int] = field(default_factory=dict)

    @property
    def total_excluded(self) -> int:
        return self.input_rows - len(self.records)


class Cleaner:
    """Drops incomplete and invalid analysis records."""

    def __init__(
        self,
        config: PipelineConfig,
        rules: Sequence[ValidationRule] = (),
        fields: Sequence[str] = MODELING_FIELDS,
    ):
        self.config = config
        self.rules = tuple(rules)
        self.fields = tuple(fields)
        self.logger = logging.getLogger(self.__class__.__name__)

    def clean(self, records: pd.DataFrame, strict: bool = False) -> CleaningResult:
        """Return the rows that are complete and pass every rule.

        A row with several problems is counted once, under the first field
        (then rule) that excludes it. With ``strict`` any exclusion raises
        ValidationError instead.
        """
        keep = pd.Series(True, index=records.index)
        excluded: Dict[str, int] = {}

        for column in self.fields:
            missing = records[column].isna().to_numpy(dtype=bool) & keep.to_numpy()
            if missing.any():
                excluded[f"missing_{column}"] = int(missing.sum())
            keep &= ~missing

        for rule in self.rules:
            failing = ~rule.passes(records) & keep
            if failing.any():
                excluded[rule.name] = int(failing.sum())
            keep &= ~failing

        cleaned = records.loc[keep].reset_index(drop=True)
        result = CleaningResult(records=cleaned, input_rows=len(records), excluded=excluded)

        self.logger.info(
            f"Cleaning kept {len(cleaned)} of {len(records)} rows "
            f"({result.total_excluded} excluded)"
        )
        for reason, count in excluded.items():
            self.logger.debug(f"  excluded {count} rows: {reason}")

        if strict and excluded:
            raise ValidationError(
                f"{result.total_excluded} rows failed validation: {excluded}", excluded=excluded
            )
        return result
