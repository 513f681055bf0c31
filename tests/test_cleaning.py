import pandas as pd
import pytest

from himalaya_success.cleaning import Cleaner, ValidationRule, range_rule
from himalaya_success.config import MODELING_FIELDS
from himalaya_success.errors import ValidationError
from himalaya_success.features import FeatureDeriver
from himalaya_success.joiner import join_tables


@pytest.fixture
def records(source_tables, config):
    joined, _ = join_tables(source_tables, config)
    return FeatureDeriver(config).derive(joined)


def test_cleaned_table_has_no_missing_modeling_fields(records, config):
    result = Cleaner(config).clean(records)
    for column in MODELING_FIELDS:
        assert result.records[column].notna().all()


def test_exclusions_are_counted_not_raised(records, config):
    result = Cleaner(config).clean(records)
    assert len(result.records) == 5
    assert result.input_rows == 10
    assert result.total_excluded == 5
    assert result.excluded == {
        "missing_height_range": 2,
        "missing_season": 2,
        "missing_success": 1,
    }


def test_invalid_season_codes_are_excluded(records, config):
    result = Cleaner(config).clean(records)
    assert set(result.records["season"]) == {"Spring", "Autumn", "Winter"}


def test_cleaning_keeps_categories_and_resets_index(records, config):
    result = Cleaner(config).clean(records)
    assert list(result.records.index) == list(range(5))
    assert list(result.records["season"].cat.categories) == list(config.LEVEL_ORDER["season"])


def test_range_rule_excludes_out_of_range_rows(records, config):
    result = Cleaner(config, rules=[range_rule("total_members", minimum=1, maximum=10)]).clean(records)
    assert result.records["total_members"].max() <= 10
    assert result.excluded["total_members_in_[1,10]"] == 2


def test_custom_rule(records, config):
    no_deaths = ValidationRule("no_deaths", "death", lambda values: ~values)
    result = Cleaner(config, rules=[no_deaths]).clean(records)
    assert not result.records["death"].any()


def test_strict_cleaning_raises_validation_error(records, config):
    with pytest.raises(ValidationError) as excinfo:
        Cleaner(config).clean(records, strict=True)
    assert excinfo.value.excluded["missing_season"] == 2


def test_clean_table_passes_strict(records, config):
    cleaned = Cleaner(config).clean(records).records
    assert len(Cleaner(config).clean(cleaned, strict=True).records) == len(cleaned)


def test_missing_total_members_is_its_own_reason(records, config):
    complete = Cleaner(config).clean(records).records.copy()
    complete.loc[1, "total_members"] = pd.NA
    result = Cleaner(config).clean(complete)
    assert result.excluded == {"missing_total_members": 1}
    assert len(result.records) == len(complete) - 1
