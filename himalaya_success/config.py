"""
Configuration for the expedition success pipeline.

All tunables live on ``PipelineConfig``: source schemas, feature bins, the
explicit level order of every categorical predictor (the first level is the
reference category of its dummy coding), priors, sampler settings and
convergence thresholds.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Dict, Tuple


HEIGHT_RANGE = "height_range"
SEASON = "season"
ROLE_CATEGORY = "role_category"
OXYGEN_STATUS = "oxygen_status"
TOTAL_MEMBERS = "total_members"
SUCCESS = "success"
DEATH = "death"

ANALYSIS_COLUMNS = (
    HEIGHT_RANGE,
    ROLE_CATEGORY,
    OXYGEN_STATUS,
    SEASON,
    SUCCESS,
    DEATH,
    TOTAL_MEMBERS,
)

# Rows missing any of these never reach the model
MODELING_FIELDS = (
    HEIGHT_RANGE,
    ROLE_CATEGORY,
    OXYGEN_STATUS,
    SEASON,
    SUCCESS,
    TOTAL_MEMBERS,
)


def _default_level_order() -> Dict[str, Tuple[str, ...]]:
    # Alphabetical, matching the factor ordering of the published analysis
    return {
        HEIGHT_RANGE: ("5400-6000m", "6000-7000m", "7000-8000m", "8000m+"),
        SEASON: ("Autumn", "Spring", "Summer", "Winter"),
        ROLE_CATEGORY: ("Hired Staff", "Leader", "Member", "Sherpa"),
        OXYGEN_STATUS: ("No Oxygen", "Unknown", "Used Oxygen"),
    }


def _default_grid_levels() -> Dict[str, str]:
    return {
        HEIGHT_RANGE: "8000m+",
        SEASON: "Spring",
        ROLE_CATEGORY: "Member",
        OXYGEN_STATUS: "Used Oxygen",
    }


@dataclass(frozen=True)
class PipelineConfig:
    """Configuration parameters for the pipeline and the Bayesian model."""

    # Source files
    PEAKS_FILE: str = "peaks.csv"
    EXPEDITIONS_FILE: str = "expeditions.csv"
    MEMBERS_FILE: str = "members.csv"

    # Declared column types; undeclared columns are read as-is
    PEAKS_SCHEMA: ClassVar[Dict[str, str]] = {
        "PEAKID": "string",
        "PKNAME": "string",
        "HEIGHTM": "float",
    }
    EXPEDITIONS_SCHEMA: ClassVar[Dict[str, str]] = {
        "EXPID": "string",
        "PEAKID": "string",
        "YEAR": "integer",
        "SEASON": "integer",
    }
    MEMBERS_SCHEMA: ClassVar[Dict[str, str]] = {
        "EXPID": "string",
        "PEAKID": "string",
        "LEADER": "boolean",
        "SHERPA": "boolean",
        "HIRED": "boolean",
        "MO2USED": "boolean",
        "MO2NONE": "boolean",
        "MSUCCESS": "boolean",
        "DEATH": "boolean",
    }

    # Optional integer column of members and/or expeditions; at least one
    # table must carry it, and a member-level value wins
    MEMBER_COUNT_COLUMN: ClassVar[str] = "TOTMEMBERS"

    # Join keys
    EXPEDITION_KEYS: Tuple[str, ...] = ("PEAKID", "EXPID")
    PEAK_KEYS: Tuple[str, ...] = ("PEAKID",)
    STRICT_JOIN: bool = False

    # Feature derivation
    HEIGHT_EDGES: Tuple[float, ...] = (5400.0, 6000.0, 7000.0, 8000.0)
    HEIGHT_LABELS: Tuple[str, ...] = ("5400-6000m", "6000-7000m", "7000-8000m", "8000m+")
    SEASON_LABELS: ClassVar[Dict[int, str]] = {
        1: "Spring",
        2: "Summer",
        3: "Autumn",
        4: "Winter",
    }
    LEVEL_ORDER: Dict[str, Tuple[str, ...]] = field(default_factory=_default_level_order)

    # Model specification
    CATEGORICAL_PREDICTORS: Tuple[str, ...] = (
        HEIGHT_RANGE,
        SEASON,
        ROLE_CATEGORY,
        OXYGEN_STATUS,
    )
    NUMERIC_PREDICTORS: Tuple[str, ...] = (TOTAL_MEMBERS,)
    OUTCOME: str = SUCCESS

    # Prior parameters
    PRIOR_MU: float = 0.0
    PRIOR_SIGMA: float = 2.5

    # Sampling parameters
    NUM_SAMPLES: int = 2000
    NUM_TUNE: int = 1000
    NUM_CHAINS: int = 4
    NUM_CORES: int = 4
    TARGET_ACCEPT: float = 0.9
    STEP_METHOD: str = "nuts"
    RANDOM_SEED: int = 42

    # Diagnostics
    RHAT_THRESHOLD: float = 1.05
    ESS_THRESHOLD: float = 400.0
    CREDIBLE_MASS: float = 0.95
    REPORT_UNCONVERGED: bool = True

    # Fixed levels for the illustrative prediction grids
    GRID_DEFAULTS: Dict[str, str] = field(default_factory=_default_grid_levels)

    STEP_METHODS: ClassVar[Tuple[str, ...]] = ("nuts", "metropolis")

    def __post_init__(self):
        if len(self.HEIGHT_EDGES) != len(self.HEIGHT_LABELS):
            raise ValueError("HEIGHT_EDGES and HEIGHT_LABELS must have the same length")
        if any(lower >= upper for lower, upper in zip(self.HEIGHT_EDGES, self.HEIGHT_EDGES[1:])):
            raise ValueError(f"HEIGHT_EDGES must be strictly increasing: {self.HEIGHT_EDGES}")
        if self.STEP_METHOD not in self.STEP_METHODS:
            raise ValueError(
                f"Unknown step method {self.STEP_METHOD!r}; expected one of {self.STEP_METHODS}"
            )
        for name in self.CATEGORICAL_PREDICTORS:
            if name not in self.LEVEL_ORDER:
                raise ValueError(f"No level order configured for {name!r}")

    @property
    def predictors(self) -> Tuple[str, ...]:
        """Model predictors in design-matrix order."""
        return self.CATEGORICAL_PREDICTORS + self.NUMERIC_PREDICTORS

    def reference_level(self, predictor: str) -> str:
        """Return the reference (omitted) level of a categorical predictor."""
        return self.LEVEL_ORDER[predictor][0]

    def snapshot(self) -> Dict[str, Any]:
        """Plain-dict view of the sampling-relevant settings, for artifacts."""
        values = asdict(self)
        keep = (
            "PRIOR_MU",
            "PRIOR_SIGMA",
            "NUM_SAMPLES",
            "NUM_TUNE",
            "NUM_CHAINS",
            "TARGET_ACCEPT",
            "STEP_METHOD",
            "RANDOM_SEED",
            "RHAT_THRESHOLD",
        )
        return {key: values[key] for key in keep}


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Set up logging configuration."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    return logging.getLogger("himalaya_success")
