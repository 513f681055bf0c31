"""
Himalayan expedition member success: data preparation and a Bayesian
logistic regression fitted with PyMC.
"""

from .cleaning import Cleaner, CleaningResult, ValidationRule, range_rule
from .config import PipelineConfig, setup_logging
from .design import DesignSpec, Predictor
from .errors import ConvergenceError, JoinKeyError, LoadError, PipelineError, ValidationError
from .features import FeatureDeriver
from .joiner import JoinReport, join_tables
from .loader import DatasetLoader, SourceTables
from .model import BayesianModelBuilder, FittedModel, check_convergence, load_model, save_model
from .reporting import (
    ResultsManager,
    build_prediction_grid,
    coefficient_summary,
    posterior_predict,
)

__version__ = "0.1.0"
