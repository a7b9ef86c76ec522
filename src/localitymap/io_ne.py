"""Natural Earth admin-0 loading, region selection and landmass union."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Sequence

import requests
import shapely

from .errors import GeometryDegenerateError, RegionLookupError
from .models import WGS84, RegionGeometry, RegionUnit

NATURAL_EARTH_URL = "https://naciscdn.org/naturalearth/{scale}/cultural/ne_{scale}_admin_0_countries.zip"

RESOLUTION_ALIASES = {
    "10m": "10m",
    "large": "10m",
    "50m": "50m",
    "medium": "50m",
    "110m": "110m",
    "small": "110m",
}
WORLD_SELECTOR = "world"

_LOGGER = logging.getLogger("localitymap.io_ne")


def normalize_resolution(value: str) -> str:
    key = str(value).strip().casefold()
    scale = RESOLUTION_ALIASES.get(key)
    if scale is None:
        allowed = ", ".join(sorted(RESOLUTION_ALIASES))
        raise ValueError(f"Unknown Natural Earth resolution '{value}'. Expected one of: {allowed}")
    return scale


def _first_existing_column(columns: Iterable[str], candidates: Sequence[str]) -> str | None:
    existing = {str(col).lower(): str(col) for col in columns}
    for candidate in candidates:
        match = existing.get(candidate.lower())
        if match:
            return match
    return None


class NaturalEarthRepository:
    """Access to one Natural Earth admin-0 countries file.

    `admin0_path` may point at a shapefile, a zip archive, GeoJSON or GPKG.
    When it does not exist and downloads are allowed, the Natural Earth zip for
    `resolution` is fetched into that location first.
    """

    # Selector columns, tried in order; the first column with a match wins.
    REGION_COLUMNS = (
        ("CONTINENT",),
        ("REGION_UN",),
        ("SUBREGION",),
        ("REGION_WB",),
        ("ADMIN", "NAME_LONG", "NAME", "SOVEREIGNT"),
        ("ISO_A3", "ADM0_A3", "ISO_A3_EH"),
    )
    UNIT_NAME_COLUMNS = ("ADMIN", "NAME", "NAME_LONG", "SOVEREIGNT")

    def __init__(
        self,
        admin0_path: Path,
        *,
        resolution: str = "medium",
        allow_download: bool = False,
        download_timeout_s: float = 60.0,
    ) -> None:
        self.admin0_path = admin0_path
        self.resolution = normalize_resolution(resolution)
        self.allow_download = allow_download
        self.download_timeout_s = download_timeout_s

    @property
    def download_url(self) -> str:
        return NATURAL_EARTH_URL.format(scale=self.resolution)

    def ensure_available(self) -> Path:
        if self.admin0_path.exists():
            return self.admin0_path
        if not self.allow_download:
            raise FileNotFoundError(
                f"Natural Earth admin0 file not found: {self.admin0_path} (downloads disabled)"
            )
        return download_file(self.download_url, self.admin0_path, timeout_s=self.download_timeout_s)

    def load_admin0(self) -> Any:
        """Load admin-0 country polygons via GeoPandas, reprojected to WGS84 if needed."""
        gpd = self._require_geopandas()
        path = self.ensure_available()
        frame = gpd.read_file(path)
        if frame.crs is None:
            frame = frame.set_crs(WGS84)
        elif frame.crs.to_epsg() != 4326:
            frame = frame.to_crs(WGS84)
        _LOGGER.debug("Loaded %d admin0 rows from %s", len(frame), path)
        return frame

    def load_region(self, selector: str) -> RegionGeometry:
        return select_region(self.load_admin0(), selector, resolution=self.resolution)

    @staticmethod
    def _require_geopandas() -> Any:
        try:
            import geopandas as gpd
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError("geopandas is required for Natural Earth data loading") from exc
        return gpd


def select_region(admin0_df: Any, selector: str, *, resolution: str = "50m") -> RegionGeometry:
    """Pick the admin-0 units matching `selector`; `world` selects everything."""
    if not isinstance(selector, str) or not selector.strip():
        raise RegionLookupError("Region selector must be a non-empty string")
    wanted = selector.strip().casefold()

    if wanted == WORLD_SELECTOR:
        subset = admin0_df
        matched_column = None
    else:
        subset = None
        matched_column = None
        for group in NaturalEarthRepository.REGION_COLUMNS:
            for column in _existing_columns(admin0_df.columns, group):
                values = admin0_df[column].astype(str).str.strip().str.casefold()
                mask = values == wanted
                if bool(mask.any()):
                    subset = admin0_df[mask]
                    matched_column = column
                    break
            if subset is not None:
                break
        if subset is None:
            raise RegionLookupError(f"Unknown region selector '{selector}'")

    name_col = _first_existing_column(admin0_df.columns, NaturalEarthRepository.UNIT_NAME_COLUMNS)
    units: list[RegionUnit] = []
    for idx, row in enumerate(subset.itertuples(index=False)):
        row_dict = row._asdict()
        geometry = row_dict.get("geometry")
        if geometry is None or geometry.is_empty:
            continue
        name = str(row_dict.get(name_col)) if name_col else f"unit-{idx}"
        units.append(RegionUnit(name=name, geometry=geometry))
    if not units:
        raise RegionLookupError(f"Region selector '{selector}' matched no usable geometry")

    _LOGGER.info(
        "Region '%s' matched %d units%s",
        selector,
        len(units),
        f" via {matched_column}" if matched_column else "",
    )
    return RegionGeometry(
        selector=selector.strip(),
        resolution=resolution,
        units=tuple(units),
        crs=WGS84,
    )


def union_region(region: RegionGeometry) -> Any:
    """Merge all units into one seamless polygon or multipolygon."""
    geometries = [shapely.make_valid(geometry) for geometry in region.geometries]
    merged = shapely.union_all(geometries)
    polygonal = _polygonal_part(merged)
    if polygonal is None or polygonal.is_empty or polygonal.area <= 0.0:
        raise GeometryDegenerateError(f"Union of region '{region.selector}' is empty")
    if not polygonal.is_valid:
        polygonal = shapely.make_valid(polygonal)
    return polygonal


def download_file(url: str, destination: Path, *, timeout_s: float) -> Path:
    """Stream `url` into `destination`; partial files are removed on failure."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    partial = destination.with_name(destination.name + ".part")
    _LOGGER.info("Downloading %s -> %s", url, destination)
    try:
        with requests.get(url, stream=True, timeout=timeout_s) as response:
            response.raise_for_status()
            with partial.open("wb") as fh:
                for chunk in response.iter_content(chunk_size=1024 * 1024):
                    if chunk:
                        fh.write(chunk)
        partial.replace(destination)
    finally:
        if partial.exists():
            partial.unlink()
    return destination


def _existing_columns(columns: Iterable[str], candidates: Sequence[str]) -> list[str]:
    by_lower = {str(col).lower(): str(col) for col in columns}
    return [by_lower[name.lower()] for name in candidates if name.lower() in by_lower]


def _polygonal_part(geometry: Any) -> Any | None:
    geom_type = geometry.geom_type
    if geom_type in {"Polygon", "MultiPolygon"}:
        return geometry
    if geom_type == "GeometryCollection":
        parts = [part for part in geometry.geoms if part.geom_type in {"Polygon", "MultiPolygon"}]
        if not parts:
            return None
        return shapely.union_all(parts)
    return None
