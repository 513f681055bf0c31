from dataclasses import replace

import pytest

from himalaya_success.config import PipelineConfig


def test_defaults_are_valid():
    config = PipelineConfig()
    assert config.reference_level("oxygen_status") == "No Oxygen"
    assert config.predictors[-1] == "total_members"


@pytest.mark.parametrize(
    "edges",
    [
        (5400.0, 6000.0, 6000.0, 8000.0),
        (5400.0, 7000.0, 6000.0, 8000.0),
    ],
)
def test_height_edges_must_strictly_increase(edges):
    with pytest.raises(ValueError, match="strictly increasing"):
        PipelineConfig(HEIGHT_EDGES=edges)


def test_edges_and_labels_must_match():
    with pytest.raises(ValueError):
        PipelineConfig(HEIGHT_EDGES=(5400.0, 6000.0))


def test_unknown_step_method():
    with pytest.raises(ValueError, match="step method"):
        replace(PipelineConfig(), STEP_METHOD="gibbs")
