from __future__ import annotations

import dataclasses
import hashlib
import math

import pytest

from localitymap.errors import CrsMismatchError, GeometryDegenerateError
from localitymap.models import (
    WGS84,
    BoundingBox,
    BuildManifest,
    LocalityDataset,
    LocalityRecord,
)


def _dataset(*rows, crs=WGS84):
    return LocalityDataset(
        records=tuple(LocalityRecord(x=x, y=y, label=label, category=cat) for x, y, label, cat in rows),
        crs=crs,
    )


def test_bbox_rejects_inverted_or_non_finite_bounds():
    with pytest.raises(ValueError):
        BoundingBox(5.0, 0.0, 1.0, 1.0, WGS84)
    with pytest.raises(ValueError):
        BoundingBox(0.0, 2.0, 1.0, 1.0, WGS84)
    with pytest.raises(ValueError):
        BoundingBox(0.0, 0.0, math.inf, 1.0, WGS84)
    with pytest.raises(ValueError):
        BoundingBox.from_bounds((0.0, 0.0, 1.0), WGS84)


def test_bbox_geometry_helpers():
    bbox = BoundingBox.from_bounds([0, 0, 4, 2], "EPSG:3035")
    assert bbox.width == 4.0
    assert bbox.height == 2.0
    assert bbox.center == (2.0, 1.0)
    assert bbox.contains(4.0, 2.0)
    assert not bbox.contains(4.1, 1.0)
    padded = bbox.padded(0.5)
    assert padded.as_tuple() == (-2.0, -1.0, 6.0, 3.0)
    assert padded.contains_box(bbox)
    assert bbox.to_dict()["crs"] == "EPSG:3035"


def test_bbox_operations_refuse_mixed_crs():
    geodetic = BoundingBox(0.0, 0.0, 1.0, 1.0, WGS84)
    projected = BoundingBox(0.0, 0.0, 1.0, 1.0, "EPSG:3035")
    with pytest.raises(CrsMismatchError):
        geodetic.union(projected)
    with pytest.raises(CrsMismatchError):
        geodetic.contains_box(projected)


def test_bbox_union():
    left = BoundingBox(0.0, 0.0, 1.0, 1.0, WGS84)
    right = BoundingBox(2.0, -1.0, 3.0, 0.5, WGS84)
    assert left.union(right).as_tuple() == (0.0, -1.0, 3.0, 1.0)


def test_dataset_is_immutable():
    dataset = _dataset((1.0, 2.0, "a", "A"))
    with pytest.raises(dataclasses.FrozenInstanceError):
        dataset.crs = "EPSG:3035"  # type: ignore[misc]
    with pytest.raises(dataclasses.FrozenInstanceError):
        dataset.records[0].x = 5.0  # type: ignore[misc]


def test_dataset_categories_keep_first_seen_order():
    dataset = _dataset((0, 0, "1", "B"), (0, 0, "2", "A"), (0, 0, "3", "B"))
    assert dataset.categories() == ("B", "A")
    assert dataset.labels == ("1", "2", "3")


def test_duplicate_labels():
    dataset = _dataset((0, 0, "x", "A"), (1, 1, "y", "A"), (2, 2, "x", "A"))
    assert dataset.duplicate_labels() == ("x",)


def test_concat_requires_same_crs():
    left = _dataset((0, 0, "1", "A"))
    assert len(left.concat(_dataset((1, 1, "2", "A")))) == 2
    with pytest.raises(CrsMismatchError):
        left.concat(_dataset((1, 1, "2", "A"), crs="EPSG:3035"))


def test_dataset_bbox():
    dataset = _dataset((1, 5, "a", "A"), (-2, 3, "b", "A"))
    assert dataset.bbox().as_tuple() == (-2.0, 3.0, 1.0, 5.0)
    with pytest.raises(GeometryDegenerateError):
        LocalityDataset().bbox()


def test_manifest_serializes_viewport_and_counts():
    manifest = BuildManifest.create(
        config_hash_sha256="abc",
        git_commit=None,
        target_crs="EPSG:3035",
        region="Europe",
        counts={"localities": 2},
        viewport=BoundingBox(0.0, 0.0, 1.0, 1.0, "EPSG:3035"),
        artifacts={"figure": "out.png"},
    )
    payload = manifest.to_dict()
    assert payload["viewport"]["crs"] == "EPSG:3035"
    assert payload["counts"] == {"localities": 2}
    assert payload["git_commit"] is None
    assert payload["generated_at_utc"].endswith("+00:00")


def test_manifest_for_config_hashes_the_config_file(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_bytes(b"project: {}\n")
    manifest = BuildManifest.for_config(
        config_path,
        target_crs="EPSG:3035",
        region="Europe",
        counts={},
        viewport=BoundingBox(0.0, 0.0, 1.0, 1.0, "EPSG:3035"),
        artifacts={},
    )
    assert manifest.config_hash_sha256 == hashlib.sha256(b"project: {}\n").hexdigest()
    assert manifest.git_commit is None or len(manifest.git_commit) == 40
