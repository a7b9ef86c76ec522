from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
import yaml
from shapely.geometry import box

gpd = pytest.importorskip("geopandas")


def _admin0_frame() -> Any:
    rows = [
        # Two adjacent units sharing the lon=5 edge.
        ("Westland", "WST", "Europe", "Western Europe", "Western Europe", box(0.0, 45.0, 5.0, 50.0)),
        ("Eastland", "EST", "Europe", "Western Europe", "Western Europe", box(5.0, 45.0, 10.0, 50.0)),
        ("Islandia", "ISL", "Europe", "Northern Europe", "Northern Europe", box(-20.0, 62.0, -15.0, 65.0)),
        ("Dunes", "DUN", "Africa", "Africa", "Northern Africa", box(0.0, 20.0, 10.0, 25.0)),
    ]
    return gpd.GeoDataFrame(
        {
            "ADMIN": [row[0] for row in rows],
            "ISO_A3": [row[1] for row in rows],
            "CONTINENT": [row[2] for row in rows],
            "REGION_UN": [row[3] for row in rows],
            "SUBREGION": [row[4] for row in rows],
        },
        geometry=[row[5] for row in rows],
        crs="EPSG:4326",
    )


@pytest.fixture()
def admin0_frame() -> Any:
    return _admin0_frame()


@pytest.fixture()
def admin0_path(tmp_path: Path) -> Path:
    path = tmp_path / "natural_earth" / "admin0.geojson"
    path.parent.mkdir(parents=True, exist_ok=True)
    _admin0_frame().to_file(path, driver="GeoJSON")
    return path


@pytest.fixture()
def localities_csv(tmp_path: Path) -> Path:
    path = tmp_path / "localities.csv"
    path.write_text(
        "lon,lat,label,species\n"
        "9.11,33.08,1,A\n"
        "15.13,39.96,2,A\n"
        "2.35,48.86,3,B\n"
        "7.50,47.00,4,B\n",
        encoding="utf-8",
    )
    return path


def _deep_update(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_update(base[key], value)
        else:
            base[key] = value
    return base


@pytest.fixture()
def write_config(tmp_path: Path, admin0_path: Path, localities_csv: Path):
    """Factory writing a config.yaml into tmp_path; overrides are merged per section."""

    def _write(overrides: dict[str, Any] | None = None) -> Path:
        raw: dict[str, Any] = {
            "project": {"name": "test-map", "title": "Test map"},
            "paths": {
                "natural_earth_dir": "natural_earth",
                "natural_earth_admin0": str(admin0_path),
                "output_figure": "build/figure.png",
                "output_localities": "build/localities.csv",
                "output_samples": "build/samples.csv",
                "manifests_dir": "build/manifests",
                "logs_dir": "build/logs",
            },
            "localities": {"path": str(localities_csv), "category_column": "species"},
            "region": {"selector": "Europe", "resolution": "medium", "union": True},
            "sampling": {"sample_count": 25, "random_seed": 7},
            "projection": {"target_crs": "EPSG:3035"},
            "render": {"image": {"width_px": 400, "height_px": 360, "dpi": 80}},
        }
        _deep_update(raw, overrides or {})
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(raw, sort_keys=False), encoding="utf-8")
        return path

    return _write
