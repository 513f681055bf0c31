from dataclasses import replace

import arviz as az
import numpy as np
import pandas as pd
import pytest
from scipy.special import expit

from himalaya_success.config import (
    ANALYSIS_COLUMNS,
    DEATH,
    OXYGEN_STATUS,
    HEIGHT_RANGE,
    SUCCESS,
    TOTAL_MEMBERS,
    PipelineConfig,
)
from himalaya_success.design import DesignSpec
from himalaya_success.loader import DatasetLoader
from himalaya_success.model import FittedModel, check_convergence


PEAKS = pd.DataFrame(
    {
        "PEAKID": ["EVER", "AMAD", "LOBE", "BARU", "PK60"],
        "PKNAME": ["Everest", "Ama Dablam", "Lobuje East", "Baruntse", "Sixty"],
        "HEIGHTM": [8849, 6814, 5351, 7129, 6000],
        "REGION": ["Khumbu", "Khumbu", "Khumbu", "Barun", "Test"],
    }
)

EXPEDITIONS = pd.DataFrame(
    {
        "EXPID": ["EVER19101", "AMAD20301", "LOBE21101", "BARU22301", "PK6022101", "BARU23101"],
        "PEAKID": ["EVER", "AMAD", "LOBE", "BARU", "PK60", "BARU"],
        "YEAR": [2019, 2020, 2021, 2022, 2022, 2023],
        "SEASON": [1, 3, 1, 0, 4, 5],
        "TOTMEMBERS": [12, 6, 4, 5, 3, 7],
    }
)

# Rows kept after cleaning: 0, 1, 2, 3, 6
MEMBERS = pd.DataFrame(
    {
        "EXPID": [
            "EVER19101", "EVER19101", "AMAD20301", "AMAD20301", "LOBE21101",
            "BARU22301", "PK6022101", "BARU23101", "XXXX99101", "EVER19101",
        ],
        "PEAKID": ["EVER", "EVER", "AMAD", "AMAD", "LOBE", "BARU", "PK60", "BARU", "XXXX", "EVER"],
        "MEMBID": list(range(1, 11)),
        "LEADER": ["TRUE", "FALSE", "FALSE", "FALSE", "FALSE", "TRUE", "FALSE", "FALSE", "FALSE", "FALSE"],
        "SHERPA": ["TRUE", "TRUE", "FALSE", "FALSE", "FALSE", "FALSE", "FALSE", "FALSE", "FALSE", "TRUE"],
        "HIRED": ["FALSE", "TRUE", "TRUE", "FALSE", "FALSE", "FALSE", "FALSE", "FALSE", "FALSE", "TRUE"],
        "MO2USED": ["TRUE", "FALSE", "FALSE", "TRUE", "FALSE", "FALSE", "FALSE", "TRUE", "FALSE", "TRUE"],
        "MO2NONE": ["FALSE", "TRUE", "FALSE", "TRUE", "TRUE", "TRUE", "FALSE", "FALSE", "FALSE", "FALSE"],
        "MSUCCESS": ["TRUE", "TRUE", "FALSE", "TRUE", "TRUE", "FALSE", "TRUE", "TRUE", "FALSE", ""],
        "DEATH": ["FALSE"] * 9 + ["TRUE"],
    }
)


@pytest.fixture
def config():
    return PipelineConfig(NUM_CORES=1)


@pytest.fixture
def data_dir(tmp_path, config):
    directory = tmp_path / "data"
    directory.mkdir()
    PEAKS.to_csv(directory / config.PEAKS_FILE, index=False)
    EXPEDITIONS.to_csv(directory / config.EXPEDITIONS_FILE, index=False)
    MEMBERS.to_csv(directory / config.MEMBERS_FILE, index=False)
    return directory


@pytest.fixture
def source_tables(data_dir, config):
    return DatasetLoader(config).load(data_dir)


def simulate_records(config, n=1200, oxygen_effect=2.5, seed=7):
    """Analysis records with a planted positive effect of using oxygen."""
    rng = np.random.default_rng(seed)
    df = pd.DataFrame(
        {
            name: pd.Categorical(
                rng.choice(config.LEVEL_ORDER[name], size=n),
                categories=list(config.LEVEL_ORDER[name]),
            )
            for name in config.CATEGORICAL_PREDICTORS
        }
    )
    members = rng.integers(1, 20, size=n)
    eta = (
        -1.0
        + oxygen_effect * (df[OXYGEN_STATUS] == "Used Oxygen").to_numpy()
        - 0.5 * (df[HEIGHT_RANGE] == "8000m+").to_numpy()
        + 0.02 * members
    )
    df[SUCCESS] = pd.array(rng.random(n) < expit(eta), dtype="boolean")
    df[DEATH] = pd.array(np.zeros(n, dtype=bool), dtype="boolean")
    df[TOTAL_MEMBERS] = pd.array(members, dtype="Int64")
    return df[list(ANALYSIS_COLUMNS)]


@pytest.fixture
def synthetic_records(config):
    return simulate_records(config)


def make_fitted(config, means=None, sd=0.05, chains=4, draws=500, seed=0, diagnostics=None):
    """A FittedModel built from known draws, without running a sampler."""
    design = DesignSpec.from_config(config)
    terms = design.terms
    means = np.zeros(len(terms)) if means is None else np.asarray(means, dtype=float)
    rng = np.random.default_rng(seed)
    values = rng.normal(loc=means, scale=sd, size=(chains, draws, len(terms)))
    idata = az.from_dict(
        posterior={"beta": values}, coords={"term": terms}, dims={"beta": ["term"]}
    )
    return FittedModel(
        idata=idata,
        design=design,
        n_obs=100,
        member_median=6.0,
        diagnostics=diagnostics or check_convergence(idata, config),
    )


@pytest.fixture
def fitted(config):
    means = np.zeros(len(DesignSpec.from_config(config).terms))
    means[0] = -1.0
    return make_fitted(config, means)


@pytest.fixture
def fast_config(config):
    return replace(config, NUM_SAMPLES=500, NUM_TUNE=500, NUM_CHAINS=2, NUM_CORES=1)
