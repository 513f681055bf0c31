"""
Explicit design-matrix construction for the logistic regression.

Each predictor is either categorical, treatment-coded against its first
declared level, or numeric and passed through unchanged. The matrix always
starts with an intercept column.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

import numpy as np
import pandas as pd

from .config import PipelineConfig

INTERCEPT = "Intercept"
CATEGORICAL = "categorical"
NUMERIC = "numeric"


@dataclass(frozen=True)
class Predictor:
    name: str
    kind: str
    levels: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.kind not in (CATEGORICAL, NUMERIC):
            raise ValueError(f"Unknown predictor kind {self.kind!r} for {self.name!r}")
        if self.kind == CATEGORICAL and len(self.levels) < 2:
            raise ValueError(f"Categorical predictor {self.name!r} needs at least two levels")

    @property
    def reference(self) -> str:
        return self.levels[0]

    @property
    def terms(self) -> List[str]:
        if self.kind == NUMERIC:
            return [self.name]
        return [f"{self.name}[{level}]" for level in self.levels[1:]]

    def encode(self, values: pd.Series) -> np.ndarray:
        """Columns for this predictor, shape ``(n_rows, len(terms))``."""
        if values.isna().any():
            raise ValueError(f"Predictor {self.name!r} has missing values")
        if self.kind == NUMERIC:
            return values.to_numpy(dtype="float64").reshape(-1, 1)

        observed = values.astype(object).to_numpy()
        unknown = sorted(set(observed) - set(self.levels))
        if unknown:
            raise ValueError(f"Predictor {self.name!r} has undeclared levels {unknown}")
        return np.column_stack(
            [(observed == level).astype("float64") for level in self.levels[1:]]
        )


@dataclass(frozen=True)
class DesignSpec:
    """Ordered predictors plus the outcome column."""

    predictors: Tuple[Predictor, ...]
    outcome: str

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "DesignSpec":
        predictors = tuple(
            Predictor(name, CATEGORICAL, tuple(config.LEVEL_ORDER[name]))
            for name in config.CATEGORICAL_PREDICTORS
        ) + tuple(Predictor(name, NUMERIC) for name in config.NUMERIC_PREDICTORS)
        return cls(predictors=predictors, outcome=config.OUTCOME)

    @property
    def terms(self) -> List[str]:
        terms = [INTERCEPT]
        for predictor in self.predictors:
            terms.extend(predictor.terms)
        return terms

    @property
    def names(self) -> List[str]:
        return [predictor.name for predictor in self.predictors]

    def predictor(self, name: str) -> Predictor:
        for predictor in self.predictors:
            if predictor.name == name:
                return predictor
        raise KeyError(name)

    def build(self, df: pd.DataFrame) -> np.ndarray:
        """Design matrix for ``df``, intercept column first."""
        missing = [name for name in self.names if name not in df.columns]
        if missing:
            raise ValueError(f"Design columns missing from frame: {missing}")
        blocks = [np.ones((len(df), 1))]
        blocks.extend(predictor.encode(df[predictor.name]) for predictor in self.predictors)
        return np.hstack(blocks)

    def outcome_vector(self, df: pd.DataFrame) -> np.ndarray:
        values = df[self.outcome]
        if values.isna().any():
            raise ValueError(f"Outcome {self.outcome!r} has missing values")
        return values.astype("int64").to_numpy()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome,
            "predictors": [
                {"name": p.name, "kind": p.kind, "levels": list(p.levels)}
                for p in self.predictors
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DesignSpec":
        predictors = tuple(
            Predictor(p["name"], p["kind"], tuple(p.get("levels", ())))
            for p in data["predictors"]
        )
        return cls(predictors=predictors, outcome=data["outcome"])
