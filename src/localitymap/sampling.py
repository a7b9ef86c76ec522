"""Uniform random points inside a polygon."""

from __future__ import annotations

import logging
import math
from typing import Any, Sequence

import numpy as np
import shapely

from .errors import GeometryDegenerateError
from .models import WGS84, LocalityDataset, LocalityRecord
from .projection import crs_tag

DEFAULT_CATEGORY = "random"
_MIN_BATCH = 64
_BATCH_HEADROOM = 1.25

_LOGGER = logging.getLogger("localitymap.sampling")


def sample_points(
    geometry: Any,
    count: int,
    *,
    seed: int | None = None,
    crs: str = WGS84,
    category: str = DEFAULT_CATEGORY,
    categories: Sequence[str] | None = None,
) -> LocalityDataset:
    """Draw `count` points uniformly over the area of `geometry`.

    Candidates are drawn in the geometry's bounding box and kept when they
    intersect it, so points on the boundary count as inside. Batch sizes depend
    only on the remaining count and the area fill ratio, which keeps the
    generator consumption order (and the output) fixed for a given seed.
    When `categories` is given, each point's category is drawn from it after
    all coordinates.
    """
    _check_polygonal(geometry)
    if isinstance(count, bool) or not isinstance(count, (int, np.integer)):
        raise ValueError(f"Sample count must be an integer, got {count!r}")
    if count < 0:
        raise ValueError(f"Sample count must be >= 0, got {count}")
    if categories is not None and len(categories) == 0:
        raise ValueError("categories must not be empty when provided")

    tag = crs_tag(crs)
    if count == 0:
        return LocalityDataset(records=(), crs=tag)

    rng = np.random.default_rng(seed)
    min_x, min_y, max_x, max_y = (float(value) for value in geometry.bounds)
    fill_ratio = geometry.area / ((max_x - min_x) * (max_y - min_y))

    accepted_x: list[np.ndarray] = []
    accepted_y: list[np.ndarray] = []
    remaining = int(count)
    drawn = 0
    while remaining > 0:
        batch = max(int(math.ceil(remaining / fill_ratio * _BATCH_HEADROOM)), _MIN_BATCH)
        xs = rng.uniform(min_x, max_x, batch)
        ys = rng.uniform(min_y, max_y, batch)
        drawn += batch
        inside = shapely.intersects_xy(geometry, xs, ys)
        keep_x = xs[inside][:remaining]
        keep_y = ys[inside][:remaining]
        accepted_x.append(keep_x)
        accepted_y.append(keep_y)
        remaining -= keep_x.size

    xs_out = np.concatenate(accepted_x)
    ys_out = np.concatenate(accepted_y)
    if categories is not None:
        picks = rng.integers(0, len(categories), size=count)
        point_categories = [str(categories[int(idx)]) for idx in picks]
    else:
        point_categories = [category] * count

    records = tuple(
        LocalityRecord(x=float(x), y=float(y), label=str(idx), category=cat)
        for idx, (x, y, cat) in enumerate(zip(xs_out, ys_out, point_categories), start=1)
    )
    _LOGGER.debug(
        "Sampled %d points from %d candidates (fill ratio %.3f, seed=%s)",
        count,
        drawn,
        fill_ratio,
        seed,
    )
    return LocalityDataset(records=records, crs=tag)


def _check_polygonal(geometry: Any) -> None:
    if geometry is None or geometry.is_empty:
        raise GeometryDegenerateError("Cannot sample points from empty geometry")
    if geometry.geom_type not in {"Polygon", "MultiPolygon"}:
        raise GeometryDegenerateError(
            f"Cannot sample points from {geometry.geom_type}; expected Polygon or MultiPolygon"
        )
    if not geometry.area > 0.0:
        raise GeometryDegenerateError("Cannot sample points from a zero-area polygon")
