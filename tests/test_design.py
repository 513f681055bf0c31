from dataclasses import replace

import numpy as np
import pandas as pd
import pytest

from himalaya_success.design import CATEGORICAL, INTERCEPT, DesignSpec, Predictor


@pytest.fixture
def design(config):
    return DesignSpec.from_config(config)


def test_terms_omit_reference_levels(design, config):
    assert design.terms[0] == INTERCEPT
    assert design.terms[-1] == "total_members"
    assert len(design.terms) == 13
    for name in config.CATEGORICAL_PREDICTORS:
        assert f"{name}[{config.reference_level(name)}]" not in design.terms
    assert "oxygen_status[Used Oxygen]" in design.terms


def test_build_treatment_codes_rows(design):
    frame = pd.DataFrame(
        {
            "height_range": ["5400-6000m", "8000m+"],
            "season": ["Autumn", "Spring"],
            "role_category": ["Hired Staff", "Leader"],
            "oxygen_status": ["No Oxygen", "Used Oxygen"],
            "total_members": [4, 10],
        }
    )
    X = design.build(frame)
    assert X.shape == (2, 13)
    # All reference levels: intercept and members only
    assert X[0].sum() == 1 + 4
    row = dict(zip(design.terms, X[1]))
    assert row["height_range[8000m+]"] == 1
    assert row["season[Spring]"] == 1
    assert row["role_category[Leader]"] == 1
    assert row["oxygen_status[Used Oxygen]"] == 1
    assert row["oxygen_status[Unknown]"] == 0
    assert row["total_members"] == 10


def test_undeclared_level_raises(design):
    frame = pd.DataFrame(
        {
            "height_range": ["9000m+"],
            "season": ["Autumn"],
            "role_category": ["Leader"],
            "oxygen_status": ["Unknown"],
            "total_members": [3],
        }
    )
    with pytest.raises(ValueError, match="height_range"):
        design.build(frame)


def test_missing_value_raises(design):
    predictor = design.predictor("season")
    with pytest.raises(ValueError, match="missing"):
        predictor.encode(pd.Series(["Spring", None]))


def test_categorical_needs_two_levels():
    with pytest.raises(ValueError):
        Predictor("season", CATEGORICAL, ("Spring",))


def test_reordering_levels_changes_reference(config):
    levels = dict(config.LEVEL_ORDER)
    levels["role_category"] = ("Member", "Hired Staff", "Leader", "Sherpa")
    design = DesignSpec.from_config(replace(config, LEVEL_ORDER=levels))
    assert "role_category[Member]" not in design.terms
    assert "role_category[Hired Staff]" in design.terms


def test_spec_survives_serialization(design):
    restored = DesignSpec.from_dict(design.to_dict())
    assert restored == design


def test_outcome_vector(design):
    frame = pd.DataFrame({"success": pd.array([True, False, True], dtype="boolean")})
    np.testing.assert_array_equal(design.outcome_vector(frame), [1, 0, 1])
