from __future__ import annotations

import logging
import math
from pathlib import Path

import pytest

from localitymap.errors import DataValidationError
from localitymap.localities import load_localities, load_localities_csv, write_localities_csv
from localitymap.models import WGS84, LocalityDataset, LocalityRecord


def test_load_from_tuples_tags_wgs84():
    dataset = load_localities([(9.11, 33.08, "1", "A"), (15.13, 39.96, "2", "A")])
    assert len(dataset) == 2
    assert dataset.crs == WGS84
    assert dataset.labels == ("1", "2")
    assert dataset.records[0] == LocalityRecord(x=9.11, y=33.08, label="1", category="A")


def test_numeric_strings_are_accepted():
    dataset = load_localities([(" 9.5 ", "33", 1, "A")])
    assert dataset.records[0].coords == (9.5, 33.0)
    assert dataset.records[0].label == "1"


@pytest.mark.parametrize(
    "row, fragment",
    [
        (("abc", 10.0, "x", "A"), "non-numeric longitude"),
        ((10.0, None, "x", "A"), "latitude"),
        ((10.0, "", "x", "A"), "missing latitude"),
        ((181.0, 10.0, "x", "A"), "outside [-180, 180]"),
        ((10.0, -90.5, "x", "A"), "outside [-90, 90]"),
        ((math.nan, 10.0, "x", "A"), "finite"),
        ((10.0, math.inf, "x", "A"), "finite"),
        ((True, 10.0, "x", "A"), "longitude"),
    ],
)
def test_invalid_rows_identify_the_offending_row(row, fragment):
    with pytest.raises(DataValidationError) as excinfo:
        load_localities([(1.0, 1.0, "ok", "A"), row])
    assert excinfo.value.row == 2
    assert fragment in str(excinfo.value)
    assert str(excinfo.value).startswith("Row 2:")


def test_wrong_tuple_shape_is_rejected():
    with pytest.raises(DataValidationError):
        load_localities([(1.0, 2.0, "only-three")])


def test_boundary_coordinates_are_valid():
    dataset = load_localities([(-180.0, -90.0, "sw", "A"), (180.0, 90.0, "ne", "A")])
    assert len(dataset) == 2


def test_repeated_labels_warn_but_load(caplog):
    with caplog.at_level(logging.WARNING, logger="localitymap.localities"):
        dataset = load_localities([(1.0, 1.0, "dup", "A"), (2.0, 2.0, "dup", "B")])
    assert len(dataset) == 2
    assert dataset.duplicate_labels() == ("dup",)
    assert "Repeated locality labels" in caplog.text


def test_csv_infers_category_column(localities_csv: Path):
    dataset = load_localities_csv(localities_csv)
    assert len(dataset) == 4
    assert dataset.categories() == ("A", "B")
    assert dataset.records[0].coords == (9.11, 33.08)


def test_csv_header_is_case_insensitive_with_spaces(tmp_path: Path):
    path = tmp_path / "pts.csv"
    path.write_text("Longitude, Latitude, Name, Species\n1.5, 2.5, p1, X\n", encoding="utf-8")
    dataset = load_localities_csv(path, category_column="species")
    assert dataset.records[0] == LocalityRecord(x=1.5, y=2.5, label="p1", category="X")


def test_csv_bad_row_reports_file_line(tmp_path: Path):
    path = tmp_path / "bad.csv"
    path.write_text("lon,lat,label,species\n9.11,33.08,1,A\nabc,39.96,2,A\n", encoding="utf-8")
    with pytest.raises(DataValidationError) as excinfo:
        load_localities_csv(path)
    assert excinfo.value.row == 3


def test_csv_missing_coordinate_is_rejected(tmp_path: Path):
    path = tmp_path / "gap.csv"
    path.write_text("lon,lat,label,species\n9.11,,1,A\n", encoding="utf-8")
    with pytest.raises(DataValidationError, match="missing latitude"):
        load_localities_csv(path)


def test_csv_requires_coordinate_columns(tmp_path: Path):
    path = tmp_path / "nolat.csv"
    path.write_text("lon,height,label,species\n1,2,a,A\n", encoding="utf-8")
    with pytest.raises(DataValidationError, match="header must name"):
        load_localities_csv(path)


def test_csv_ambiguous_category_needs_explicit_column(tmp_path: Path):
    path = tmp_path / "wide.csv"
    path.write_text("lon,lat,label,species,year\n1,2,a,A,1990\n", encoding="utf-8")
    with pytest.raises(DataValidationError, match="cannot infer category"):
        load_localities_csv(path)
    dataset = load_localities_csv(path, category_column="year")
    assert dataset.records[0].category == "1990"


def test_csv_custom_delimiter(tmp_path: Path):
    path = tmp_path / "semi.csv"
    path.write_text("lon;lat;label;group\n4.9;52.4;ams;NL\n", encoding="utf-8")
    dataset = load_localities_csv(path, delimiter=";")
    assert dataset.records[0].category == "NL"


def test_csv_missing_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_localities_csv(tmp_path / "absent.csv")


def test_write_uses_lon_lat_for_geodetic_and_xy_for_projected(tmp_path: Path):
    geodetic = load_localities([(9.11, 33.08, "1", "A")])
    geo_path = write_localities_csv(geodetic, tmp_path / "geo.csv")
    assert geo_path.read_text(encoding="utf-8").splitlines()[0] == "lon,lat,label,category"
    assert load_localities_csv(geo_path) == geodetic

    projected = LocalityDataset(
        records=(LocalityRecord(x=4321000.0, y=3210000.0, label="1", category="A"),),
        crs="EPSG:3035",
    )
    xy_path = write_localities_csv(projected, tmp_path / "out" / "xy.csv")
    assert xy_path.read_text(encoding="utf-8").splitlines()[0] == "x,y,label,category"


def test_csv_extra_field_on_every_row_is_rejected(tmp_path: Path):
    path = tmp_path / "shifted.csv"
    path.write_text(
        "lon,lat,label,species\n9.11,33.08,1,A,x\n15.13,39.96,2,A,y\n",
        encoding="utf-8",
    )
    with pytest.raises(DataValidationError, match="expected 4 fields, found 5") as excinfo:
        load_localities_csv(path)
    assert excinfo.value.row == 2


def test_csv_single_long_row_is_a_validation_error(tmp_path: Path):
    path = tmp_path / "long.csv"
    path.write_text(
        "lon,lat,label,species\n9.11,33.08,1,A\n15.13,39.96,2,A,extra\n",
        encoding="utf-8",
    )
    with pytest.raises(DataValidationError) as excinfo:
        load_localities_csv(path)
    assert excinfo.value.row == 3
    assert str(excinfo.value).startswith("Row 3:")


def test_csv_short_row_is_rejected(tmp_path: Path):
    path = tmp_path / "short.csv"
    path.write_text("lon,lat,label,species\n9.11,33.08,1\n", encoding="utf-8")
    with pytest.raises(DataValidationError, match="expected 4 fields, found 3") as excinfo:
        load_localities_csv(path)
    assert excinfo.value.row == 2


def test_csv_blank_lines_keep_file_line_numbers(tmp_path: Path):
    path = tmp_path / "gaps.csv"
    path.write_text("lon,lat,label,species\n\n9.11,33.08,1,A\nabc,1,2,A\n", encoding="utf-8")
    with pytest.raises(DataValidationError, match="non-numeric longitude") as excinfo:
        load_localities_csv(path)
    assert excinfo.value.row == 4


def test_csv_blank_lines_are_skipped(tmp_path: Path):
    path = tmp_path / "spaced.csv"
    path.write_text("lon,lat,label,species\n\n9.11,33.08,1,A\n\n15.13,39.96,2,A\n", encoding="utf-8")
    assert load_localities_csv(path).labels == ("1", "2")


def test_csv_empty_file(tmp_path: Path):
    path = tmp_path / "empty.csv"
    path.write_text("", encoding="utf-8")
    with pytest.raises(DataValidationError, match="empty"):
        load_localities_csv(path)
