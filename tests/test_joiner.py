import pandas as pd
import pytest

from himalaya_success.errors import JoinKeyError
from himalaya_success.joiner import join_tables
from himalaya_success.loader import SourceTables


def test_every_member_row_survives(source_tables, config):
    joined, report = join_tables(source_tables, config)
    assert len(joined) == len(source_tables.members)
    assert report.member_rows == report.output_rows == 10
    assert report.fan_out == 0
    assert joined["MEMBID"].tolist() == source_tables.members["MEMBID"].tolist()


def test_unmatched_member_keeps_null_fields(source_tables, config):
    joined, report = join_tables(source_tables, config)
    orphan = joined[joined["EXPID"] == "XXXX99101"].iloc[0]
    assert pd.isna(orphan["SEASON"])
    assert pd.isna(orphan["HEIGHTM"])
    assert report.unmatched_expedition == 1
    assert report.unmatched_peak == 1


def test_joined_carries_expedition_and_peak_fields(source_tables, config):
    joined, _ = join_tables(source_tables, config)
    first = joined.iloc[0]
    assert first["HEIGHTM"] == 8849
    assert first["SEASON"] == 1
    assert first["TOTMEMBERS"] == 12
    assert first["PKNAME"] == "Everest"


def test_duplicate_expedition_keys_fan_out(source_tables, config):
    duplicated = pd.concat(
        [source_tables.expeditions, source_tables.expeditions.iloc[[0]]], ignore_index=True
    )
    tables = SourceTables(
        peaks=source_tables.peaks,
        expeditions=duplicated,
        members=source_tables.members,
    )
    joined, report = join_tables(tables, config)
    # Three members reference EVER19101, each now matches twice
    assert len(joined) == len(source_tables.members) + 3
    assert report.fan_out == 3


def test_duplicate_peak_keys_fan_out_multiplicatively(source_tables, config):
    tripled = pd.concat([source_tables.peaks] + [source_tables.peaks.iloc[[1]]] * 2, ignore_index=True)
    tables = SourceTables(
        peaks=tripled, expeditions=source_tables.expeditions, members=source_tables.members
    )
    joined, _ = join_tables(tables, config)
    amad_members = (source_tables.members["PEAKID"] == "AMAD").sum()
    assert (joined["PEAKID"] == "AMAD").sum() == 3 * amad_members


def test_overlapping_columns_get_suffix(source_tables, config):
    expeditions = source_tables.expeditions.assign(MEMBID=0)
    tables = SourceTables(
        peaks=source_tables.peaks, expeditions=expeditions, members=source_tables.members
    )
    joined, _ = join_tables(tables, config)
    assert "MEMBID_exped" in joined.columns
    assert joined["MEMBID"].tolist() == source_tables.members["MEMBID"].tolist()


def test_strict_join_raises_on_unmatched(source_tables, config):
    with pytest.raises(JoinKeyError):
        join_tables(source_tables, config, strict=True)
