from __future__ import annotations

from pathlib import Path

from localitymap.config import load_config
from localitymap.validate import Validator, format_report_lines


def _run(write_config, overrides=None, *, strict=False):
    cfg = load_config(write_config(overrides))
    return Validator(cfg).run(strict_data_files=strict)


def test_valid_config_passes(write_config):
    report = _run(write_config)
    assert report.ok, report.errors
    assert "Loaded 4 localities in 2 categories" in report.infos
    assert "Target CRS resolved: EPSG:3035" in report.infos
    assert "Region 'Europe' matched 3 countries" in report.infos
    assert format_report_lines(report)[-1] == "[OK] Validation passed."


def test_corner_only_viewport_warns(write_config):
    report = _run(write_config, {"projection": {"densify_points": 0}})
    assert report.ok
    assert any("corner-only" in msg for msg in report.warnings)


def test_missing_localities_file(write_config, tmp_path: Path):
    report = _run(write_config, {"localities": {"path": str(tmp_path / "nope.csv")}})
    assert not report.ok
    assert any("Missing localities file" in msg for msg in report.errors)
    assert format_report_lines(report)[-1].startswith("[ERROR]")


def test_invalid_locality_row(write_config):
    report = _run(
        write_config,
        {"localities": {"path": None, "records": [[1.0, 95.0, "bad", "A"]]}},
    )
    assert any("Row 1" in msg for msg in report.errors)


def test_unresolvable_target_crs(write_config):
    report = _run(write_config, {"projection": {"target_crs": "EPSG:999999"}})
    assert any("EPSG:999999" in msg for msg in report.errors)


def test_locality_outside_viewport_warns(write_config):
    report = _run(
        write_config,
        {"localities": {"path": None, "records": [[10.0, 50.0, "in", "A"], [10.0, 20.0, "far", "A"]]}},
    )
    assert report.ok
    assert "Localities outside the viewport: far" in report.warnings


def test_unknown_region(write_config):
    report = _run(write_config, {"region": {"selector": "Atlantis"}})
    assert any("Unknown region selector 'Atlantis'" in msg for msg in report.errors)


def test_missing_natural_earth_file(write_config, tmp_path: Path):
    missing = {"paths": {"natural_earth_admin0": str(tmp_path / "none.zip")}}
    assert any("Missing Natural Earth file" in msg for msg in _run(write_config, missing).warnings)
    strict = _run(write_config, missing, strict=True)
    assert any("Missing Natural Earth file" in msg for msg in strict.errors)

    downloadable = {**missing, "region": {"allow_download": True}}
    report = _run(write_config, downloadable, strict=True)
    assert report.ok
    assert any("will be downloaded" in msg for msg in report.infos)
