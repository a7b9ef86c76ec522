"""CRS resolution and reprojection of localities, geometry and bounding boxes."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any

import numpy as np
import shapely
from pyproj import CRS, Transformer
from pyproj.exceptions import CRSError, ProjError
from shapely.ops import transform as shapely_transform

from .errors import GeometryDegenerateError, ProjectionConfigError, ProjectionDomainError
from .models import BoundingBox, LocalityDataset, LocalityRecord

DEFAULT_TARGET_CRS = "EPSG:3035"
DEFAULT_DENSIFY_POINTS = 21

_LOGGER = logging.getLogger("localitymap.projection")


def resolve_crs(value: Any) -> CRS:
    """Resolve an EPSG code, authority string, PROJ string or WKT into a pyproj CRS."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ProjectionConfigError("CRS identifier must be a non-empty value")
    if isinstance(value, bool):
        raise ProjectionConfigError(f"Unsupported CRS identifier: {value!r}")
    try:
        return CRS.from_user_input(value.strip() if isinstance(value, str) else value)
    except CRSError as exc:
        raise ProjectionConfigError(f"Unsupported or malformed CRS '{value}': {exc}") from exc


def crs_tag(value: Any) -> str:
    """Normalized string tag for a CRS; equal tags mean comparable coordinates."""
    crs = resolve_crs(value)
    authority = crs.to_authority()
    if authority is not None:
        return f"{authority[0]}:{authority[1]}"
    return crs.to_string()


def is_geographic(value: Any) -> bool:
    return bool(resolve_crs(value).is_geographic)


@lru_cache(maxsize=32)
def _transformer(source_tag: str, target_tag: str) -> Transformer:
    return Transformer.from_crs(resolve_crs(source_tag), resolve_crs(target_tag), always_xy=True)


def get_transformer(source: Any, target: Any) -> Transformer:
    return _transformer(crs_tag(source), crs_tag(target))


def transform_dataset(dataset: LocalityDataset, target: Any) -> LocalityDataset:
    """Return a new dataset with every record reprojected and the CRS tag updated."""
    target_tag = crs_tag(target)
    source_tag = crs_tag(dataset.crs)
    if not dataset.records:
        return LocalityDataset(records=(), crs=target_tag)
    if source_tag == target_tag:
        return LocalityDataset(records=dataset.records, crs=target_tag)

    xs, ys = _transform_arrays(
        source_tag,
        target_tag,
        np.asarray(dataset.xs, dtype=float),
        np.asarray(dataset.ys, dtype=float),
    )
    bad = np.flatnonzero(~(np.isfinite(xs) & np.isfinite(ys)))
    if bad.size:
        record = dataset.records[int(bad[0])]
        raise ProjectionDomainError(
            f"Locality '{record.label}' at ({record.x}, {record.y}) lies outside the "
            f"domain of {target_tag} ({bad.size} record(s) affected)"
        )
    records = tuple(
        LocalityRecord(x=float(x), y=float(y), label=record.label, category=record.category)
        for record, x, y in zip(dataset.records, xs, ys)
    )
    _LOGGER.debug("Reprojected %d localities %s -> %s", len(records), source_tag, target_tag)
    return dataset.with_records(records, target_tag)


def transform_geometry(
    geometry: Any,
    source: Any,
    target: Any,
    *,
    max_segment: float | None = None,
) -> Any:
    """Reproject every vertex of a shapely geometry.

    With `max_segment`, edges are first split so that no segment is longer than
    that many source units, keeping reprojected edges close to the true curves.
    """
    if geometry is None or geometry.is_empty:
        raise GeometryDegenerateError("Cannot reproject empty geometry")
    source_tag = crs_tag(source)
    target_tag = crs_tag(target)
    if source_tag == target_tag:
        return geometry

    if max_segment is not None:
        if max_segment <= 0:
            raise ValueError("max_segment must be > 0")
        geometry = shapely.segmentize(geometry, max_segment)

    def _apply(x: Any, y: Any, z: Any = None) -> tuple[Any, Any]:
        out_x, out_y = _transform_arrays(source_tag, target_tag, np.asarray(x), np.asarray(y))
        if not (np.isfinite(out_x).all() and np.isfinite(out_y).all()):
            raise ProjectionDomainError(
                f"Geometry has vertices outside the domain of {target_tag}"
            )
        return out_x, out_y

    return shapely_transform(_apply, geometry)


def transform_bbox(
    bbox: BoundingBox,
    target: Any,
    *,
    densify_points: int = DEFAULT_DENSIFY_POINTS,
) -> BoundingBox:
    """Envelope of the reprojected box boundary.

    `densify_points` extra points are sampled along each edge before taking the
    envelope. With `densify_points=0` only the corners are reprojected, which
    can clip content on curved projections.
    """
    if densify_points < 0:
        raise ValueError("densify_points must be >= 0")
    source_tag = crs_tag(bbox.crs)
    target_tag = crs_tag(target)
    if source_tag == target_tag:
        return BoundingBox.from_bounds(bbox.as_tuple(), target_tag)
    transformer = _transformer(source_tag, target_tag)
    try:
        bounds = transformer.transform_bounds(*bbox.as_tuple(), densify_pts=densify_points)
    except ProjError as exc:
        raise ProjectionDomainError(
            f"Bounding box {bbox.as_tuple()} cannot be reprojected to {target_tag}: {exc}"
        ) from exc
    if not np.isfinite(np.asarray(bounds, dtype=float)).all():
        raise ProjectionDomainError(
            f"Bounding box {bbox.as_tuple()} extends outside the domain of {target_tag}"
        )
    if bounds[0] > bounds[2]:
        raise ProjectionDomainError(
            f"Bounding box {bbox.as_tuple()} crosses the antimeridian of {target_tag}"
        )
    return BoundingBox.from_bounds(bounds, target_tag)


def geometry_bbox(geometry: Any, crs: Any) -> BoundingBox:
    if geometry is None or geometry.is_empty:
        raise GeometryDegenerateError("Cannot compute a bounding box for empty geometry")
    return BoundingBox.from_bounds(geometry.bounds, crs_tag(crs))


def bbox_polygon(bbox: BoundingBox) -> Any:
    return shapely.box(bbox.xmin, bbox.ymin, bbox.xmax, bbox.ymax)


def _transform_arrays(
    source_tag: str,
    target_tag: str,
    xs: np.ndarray,
    ys: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    transformer = _transformer(source_tag, target_tag)
    try:
        out_x, out_y = transformer.transform(xs, ys)
    except ProjError as exc:
        raise ProjectionDomainError(
            f"Coordinates cannot be reprojected {source_tag} -> {target_tag}: {exc}"
        ) from exc
    return (np.asarray(out_x, dtype=float), np.asarray(out_y, dtype=float))
