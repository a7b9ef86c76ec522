"""Domain models shared across pipeline modules."""

from __future__ import annotations

import hashlib
import math
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Sequence

from .errors import CrsMismatchError, GeometryDegenerateError

WGS84 = "EPSG:4326"


def _require_str(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Expected non-empty string for '{field_name}'")
    return value.strip()


def _require_finite(value: float, field_name: str) -> float:
    out = float(value)
    if not math.isfinite(out):
        raise ValueError(f"Expected finite value for '{field_name}', got {value!r}")
    return out


@dataclass(frozen=True, slots=True)
class LocalityRecord:
    """One labeled point.

    `x`/`y` are longitude/latitude while the owning dataset is geodetic and
    easting/northing once it has been reprojected.
    """

    x: float
    y: float
    label: str
    category: str

    @property
    def coords(self) -> tuple[float, float]:
        return (self.x, self.y)


@dataclass(frozen=True, slots=True)
class BoundingBox:
    """Axis-aligned envelope that always remembers the CRS it was computed in."""

    xmin: float
    ymin: float
    xmax: float
    ymax: float
    crs: str

    def __post_init__(self) -> None:
        for name in ("xmin", "ymin", "xmax", "ymax"):
            object.__setattr__(self, name, _require_finite(getattr(self, name), name))
        _require_str(self.crs, "crs")
        if self.xmin > self.xmax:
            raise ValueError(f"Bounding box xmin {self.xmin} exceeds xmax {self.xmax}")
        if self.ymin > self.ymax:
            raise ValueError(f"Bounding box ymin {self.ymin} exceeds ymax {self.ymax}")

    @classmethod
    def from_bounds(cls, bounds: Sequence[float], crs: str) -> BoundingBox:
        if len(bounds) != 4:
            raise ValueError(f"Expected 4 bounds values (xmin, ymin, xmax, ymax), got {len(bounds)}")
        xmin, ymin, xmax, ymax = (float(value) for value in bounds)
        return cls(xmin=xmin, ymin=ymin, xmax=xmax, ymax=ymax, crs=crs)

    @property
    def width(self) -> float:
        return self.xmax - self.xmin

    @property
    def height(self) -> float:
        return self.ymax - self.ymin

    @property
    def center(self) -> tuple[float, float]:
        return ((self.xmin + self.xmax) / 2.0, (self.ymin + self.ymax) / 2.0)

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (self.xmin, self.ymin, self.xmax, self.ymax)

    def contains(self, x: float, y: float) -> bool:
        return self.xmin <= x <= self.xmax and self.ymin <= y <= self.ymax

    def contains_box(self, other: BoundingBox) -> bool:
        self._check_same_crs(other)
        return (
            self.xmin <= other.xmin
            and self.ymin <= other.ymin
            and self.xmax >= other.xmax
            and self.ymax >= other.ymax
        )

    def union(self, other: BoundingBox) -> BoundingBox:
        self._check_same_crs(other)
        return BoundingBox(
            xmin=min(self.xmin, other.xmin),
            ymin=min(self.ymin, other.ymin),
            xmax=max(self.xmax, other.xmax),
            ymax=max(self.ymax, other.ymax),
            crs=self.crs,
        )

    def padded(self, ratio: float) -> BoundingBox:
        if ratio < 0:
            raise ValueError("Padding ratio must be >= 0")
        pad_x = self.width * ratio
        pad_y = self.height * ratio
        return BoundingBox(
            xmin=self.xmin - pad_x,
            ymin=self.ymin - pad_y,
            xmax=self.xmax + pad_x,
            ymax=self.ymax + pad_y,
            crs=self.crs,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "xmin": self.xmin,
            "ymin": self.ymin,
            "xmax": self.xmax,
            "ymax": self.ymax,
            "crs": self.crs,
        }

    def _check_same_crs(self, other: BoundingBox) -> None:
        if other.crs != self.crs:
            raise CrsMismatchError(
                f"Cannot combine bounding boxes in different CRS: {self.crs} vs {other.crs}"
            )


@dataclass(frozen=True, slots=True)
class LocalityDataset:
    """Ordered, immutable collection of localities sharing one CRS tag."""

    records: tuple[LocalityRecord, ...] = ()
    crs: str = WGS84

    def __post_init__(self) -> None:
        object.__setattr__(self, "records", tuple(self.records))
        _require_str(self.crs, "crs")

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[LocalityRecord]:
        return iter(self.records)

    @property
    def labels(self) -> tuple[str, ...]:
        return tuple(record.label for record in self.records)

    @property
    def xs(self) -> list[float]:
        return [record.x for record in self.records]

    @property
    def ys(self) -> list[float]:
        return [record.y for record in self.records]

    def categories(self) -> tuple[str, ...]:
        """Distinct categories in first-seen order."""
        seen: dict[str, None] = {}
        for record in self.records:
            seen.setdefault(record.category, None)
        return tuple(seen)

    def duplicate_labels(self) -> tuple[str, ...]:
        counts: dict[str, int] = {}
        for record in self.records:
            counts[record.label] = counts.get(record.label, 0) + 1
        return tuple(label for label, count in counts.items() if count > 1)

    def with_records(self, records: Iterable[LocalityRecord], crs: str) -> LocalityDataset:
        return LocalityDataset(records=tuple(records), crs=crs)

    def concat(self, other: LocalityDataset) -> LocalityDataset:
        if other.crs != self.crs:
            raise CrsMismatchError(
                f"Cannot concatenate datasets in different CRS: {self.crs} vs {other.crs}"
            )
        return LocalityDataset(records=(*self.records, *other.records), crs=self.crs)

    def bbox(self) -> BoundingBox:
        if not self.records:
            raise GeometryDegenerateError("Cannot compute a bounding box for an empty dataset")
        xs = self.xs
        ys = self.ys
        return BoundingBox(xmin=min(xs), ymin=min(ys), xmax=max(xs), ymax=max(ys), crs=self.crs)


@dataclass(frozen=True, slots=True)
class RegionUnit:
    """One administrative unit (admin-0 country) of a region."""

    name: str
    geometry: Any


@dataclass(frozen=True, slots=True)
class RegionGeometry:
    """Country polygons selected for one region, in the CRS they were loaded in."""

    selector: str
    resolution: str
    units: tuple[RegionUnit, ...]
    crs: str = WGS84

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(unit.name for unit in self.units)

    @property
    def geometries(self) -> tuple[Any, ...]:
        return tuple(unit.geometry for unit in self.units)


@dataclass(frozen=True, slots=True)
class BuildManifest:
    """Build metadata written next to the rendered figure."""

    generated_at_utc: str
    config_hash_sha256: str
    git_commit: str | None
    target_crs: str
    region: str
    counts: Mapping[str, int]
    viewport: Mapping[str, Any]
    artifacts: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        *,
        config_hash_sha256: str,
        git_commit: str | None,
        target_crs: str,
        region: str,
        counts: Mapping[str, int],
        viewport: BoundingBox,
        artifacts: Mapping[str, str],
    ) -> BuildManifest:
        return cls(
            generated_at_utc=datetime.now(timezone.utc).isoformat(),
            config_hash_sha256=config_hash_sha256,
            git_commit=git_commit,
            target_crs=target_crs,
            region=region,
            counts=counts,
            viewport=viewport.to_dict(),
            artifacts=artifacts,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at_utc": self.generated_at_utc,
            "config_hash_sha256": self.config_hash_sha256,
            "git_commit": self.git_commit,
            "target_crs": self.target_crs,
            "region": self.region,
            "counts": dict(self.counts),
            "viewport": dict(self.viewport),
            "artifacts": dict(self.artifacts),
        }

    @classmethod
    def for_config(cls, config_path: Path, **fields: Any) -> BuildManifest:
        """`create` with provenance taken from the config file and its git checkout."""
        return cls.create(
            config_hash_sha256=_file_digest(config_path),
            git_commit=_git_head(config_path.parent),
            **fields,
        )


def _file_digest(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(1 << 16), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _git_head(cwd: Path) -> str | None:
    try:
        proc = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            cwd=str(cwd),
            capture_output=True,
            text=True,
            check=True,
        )
    except (FileNotFoundError, subprocess.CalledProcessError):
        return None
    return proc.stdout.strip() or None
