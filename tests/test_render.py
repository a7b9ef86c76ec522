from __future__ import annotations

from pathlib import Path

import pytest
from shapely.geometry import box

from localitymap.config import RenderConfig
from localitymap.errors import CrsMismatchError
from localitymap.localities import load_localities
from localitymap.models import WGS84, BoundingBox
from localitymap.projection import transform_bbox, transform_dataset, transform_geometry
from localitymap.render import (
    MapFigure,
    MapRenderer,
    NorthArrow,
    PointLayer,
    PolygonLayer,
    ScaleBar,
    category_styles,
    nice_scale_length,
    north_bearing,
)

pytest.importorskip("matplotlib")

TARGET = "EPSG:3035"


def _viewport() -> BoundingBox:
    return transform_bbox(BoundingBox(-25.0, 33.0, 45.0, 72.0, WGS84), TARGET)


def _points():
    return transform_dataset(
        load_localities([(9.11, 33.08, "1", "A"), (15.13, 39.96, "2", "B"), (2.35, 48.86, "3", "A")]),
        TARGET,
    )


def test_with_layer_returns_new_figure():
    base = MapFigure(crs=TARGET, viewport=_viewport())
    layer = PolygonLayer(geometries=(), crs=TARGET)
    extended = base.with_layer(layer)
    assert base.layers == ()
    assert extended.layers == (layer,)
    titled = extended.with_title("Map").with_annotation(ScaleBar())
    assert extended.title is None
    assert titled.title == "Map"
    assert titled.annotations == (ScaleBar(),)


def test_layer_in_other_crs_is_rejected():
    figure = MapFigure(crs=TARGET, viewport=_viewport())
    geodetic_points = load_localities([(1.0, 1.0, "a", "A")])
    with pytest.raises(CrsMismatchError):
        figure.with_layer(PointLayer(dataset=geodetic_points, styles={}))
    with pytest.raises(CrsMismatchError):
        figure.with_layer(PolygonLayer(geometries=(), crs=WGS84))


def test_viewport_in_other_crs_is_rejected():
    with pytest.raises(CrsMismatchError):
        MapFigure(crs=TARGET, viewport=BoundingBox(-25.0, 33.0, 45.0, 72.0, WGS84))


def test_category_styles_cycle_palette():
    style = RenderConfig.default().style
    categories = [f"c{idx}" for idx in range(len(style.palette) + 1)]
    styles = category_styles(categories, style)
    assert styles["c0"].color == style.palette[0]
    assert styles[categories[-1]].color == style.palette[0]
    assert styles["c1"].marker == style.markers[1]


@pytest.mark.parametrize(
    "target, expected",
    [(1234.0, 1000.0), (4999.0, 2000.0), (5000.0, 5000.0), (0.7, 0.5), (987654.0, 500000.0)],
)
def test_nice_scale_length(target, expected):
    assert nice_scale_length(target) == pytest.approx(expected)


def test_nice_scale_length_rejects_non_positive():
    with pytest.raises(ValueError):
        nice_scale_length(0.0)


def test_north_is_up_on_central_meridian():
    points = transform_dataset(load_localities([(10.0, 45.0, "c", "A")]), TARGET)
    record = points.records[0]
    assert north_bearing(TARGET, record.x, record.y) == pytest.approx(0.0, abs=1e-6)


def test_north_leans_towards_centre_off_meridian():
    points = transform_dataset(load_localities([(35.0, 45.0, "e", "A")]), TARGET)
    record = points.records[0]
    # East of the central meridian, true north points up and to the left.
    assert north_bearing(TARGET, record.x, record.y) < -1.0


def test_render_writes_image(tmp_path: Path):
    cfg = RenderConfig.from_mapping({"image": {"width_px": 400, "height_px": 320, "dpi": 80}})
    land = transform_geometry(box(0.0, 40.0, 20.0, 50.0), WGS84, TARGET)
    points = _points()
    figure = (
        MapFigure(crs=TARGET, viewport=_viewport(), title="Test")
        .with_layer(PolygonLayer(geometries=(land,), crs=TARGET, fill="tan", name="land"))
        .with_layer(PointLayer(dataset=points, styles=category_styles(points.categories(), cfg.style)))
        .with_annotation(ScaleBar())
        .with_annotation(NorthArrow())
    )
    renderer = MapRenderer(cfg)
    out = renderer.render(figure, tmp_path / "figures" / "map.png")
    assert out.exists()
    assert out.read_bytes()[:8] == b"\x89PNG\r\n\x1a\n"
    assert renderer.labels_placed + len(renderer.dropped_labels) == 3
    assert renderer.basemap_warning is None


def test_coincident_points_drop_labels_instead_of_overlapping(tmp_path: Path):
    cfg = RenderConfig.from_mapping(
        {
            "image": {"width_px": 300, "height_px": 300, "dpi": 72},
            "labels": {"offsets_px": [[10, 10]]},
            "legend": False,
        }
    )
    points = transform_dataset(
        load_localities([(10.0, 50.0, "first", "A"), (10.0, 50.0, "second", "A")]),
        TARGET,
    )
    figure = MapFigure(crs=TARGET, viewport=_viewport()).with_layer(
        PointLayer(dataset=points, styles=category_styles(points.categories(), cfg.style))
    )
    renderer = MapRenderer(cfg)
    renderer.render(figure, tmp_path / "map.png")
    assert renderer.labels_placed == 1
    assert renderer.dropped_labels == ("second",)


def test_render_refuses_mixed_crs_layers(tmp_path: Path):
    figure = MapFigure(crs=TARGET, viewport=_viewport())
    # Bypass with_layer to simulate a hand-built figure.
    broken = MapFigure(
        crs=figure.crs,
        viewport=figure.viewport,
        layers=(PolygonLayer(geometries=(), crs=WGS84),),
    )
    with pytest.raises(CrsMismatchError):
        MapRenderer(RenderConfig.default()).render(broken, tmp_path / "map.png")
    assert not (tmp_path / "map.png").exists()


def test_labels_avoid_markers_of_unlabelled_layers(tmp_path: Path):
    cfg = RenderConfig.from_mapping(
        {
            "image": {"width_px": 300, "height_px": 300, "dpi": 72},
            "labels": {"offsets_px": [[10, 10]]},
            "legend": False,
        }
    )
    samples = transform_dataset(load_localities([(10.0, 50.0, "s1", "sample")]), TARGET)
    points = transform_dataset(load_localities([(10.0, 50.0, "loc", "A")]), TARGET)
    figure = (
        MapFigure(crs=TARGET, viewport=_viewport())
        .with_layer(
            PointLayer(
                dataset=samples,
                styles=category_styles(samples.categories(), cfg.style),
                size=2000.0,
                show_labels=False,
                name="samples",
            )
        )
        .with_layer(PointLayer(dataset=points, styles=category_styles(points.categories(), cfg.style)))
    )
    renderer = MapRenderer(cfg)
    renderer.render(figure, tmp_path / "map.png")
    assert renderer.labels_placed == 0
    assert renderer.dropped_labels == ("loc",)
