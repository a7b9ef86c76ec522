"""Figure rendering for projected locality maps."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping, Sequence

from .config import RenderConfig, RenderStyleConfig
from .errors import CrsMismatchError
from .models import WGS84, BoundingBox, LocalityDataset, LocalityRecord
from .projection import get_transformer, is_geographic

_LOGGER = logging.getLogger("localitymap.render")

# Annotation anchors in axes fraction, keyed by config location code.
_ANCHORS = {
    "bl": (0.05, 0.05),
    "br": (0.70, 0.05),
    "tl": (0.06, 0.82),
    "tr": (0.90, 0.82),
}
_SCALE_BAR_TARGET_FRACTION = 0.22
_SCALE_BAR_SEGMENTS = 4
_NORTH_ARROW_LENGTH = 0.08


@dataclass(frozen=True, slots=True)
class CategoryStyle:
    color: str
    marker: str


@dataclass(frozen=True, slots=True)
class PolygonLayer:
    geometries: tuple[Any, ...]
    crs: str
    fill: str = "none"
    edge: str = "#333333"
    line_width: float = 0.5
    alpha: float = 1.0
    name: str = "polygons"


@dataclass(frozen=True, slots=True)
class PointLayer:
    dataset: LocalityDataset
    styles: Mapping[str, CategoryStyle]
    size: float = 28.0
    show_labels: bool = True
    name: str = "points"

    @property
    def crs(self) -> str:
        return self.dataset.crs


@dataclass(frozen=True, slots=True)
class ScaleBar:
    location: str = "bl"
    length_m: float | None = None


@dataclass(frozen=True, slots=True)
class NorthArrow:
    location: str = "tl"


@dataclass(frozen=True, slots=True)
class MapFigure:
    """Immutable description of one map; each `with_*` call returns a new figure."""

    crs: str
    viewport: BoundingBox
    layers: tuple[PolygonLayer | PointLayer, ...] = ()
    annotations: tuple[ScaleBar | NorthArrow, ...] = ()
    title: str | None = None

    def __post_init__(self) -> None:
        if self.viewport.crs != self.crs:
            raise CrsMismatchError(
                f"Viewport is in {self.viewport.crs} but the figure is drawn in {self.crs}"
            )

    def with_layer(self, layer: PolygonLayer | PointLayer) -> MapFigure:
        if layer.crs != self.crs:
            raise CrsMismatchError(
                f"Layer '{layer.name}' is in {layer.crs} but the figure is drawn in {self.crs}"
            )
        return replace(self, layers=(*self.layers, layer))

    def with_annotation(self, annotation: ScaleBar | NorthArrow) -> MapFigure:
        return replace(self, annotations=(*self.annotations, annotation))

    def with_title(self, title: str | None) -> MapFigure:
        return replace(self, title=title)

    @property
    def point_layers(self) -> tuple[PointLayer, ...]:
        return tuple(layer for layer in self.layers if isinstance(layer, PointLayer))


def category_styles(
    categories: Sequence[str],
    style: RenderStyleConfig,
) -> dict[str, CategoryStyle]:
    """Assign palette colors and markers to categories in order, cycling when exhausted."""
    out: dict[str, CategoryStyle] = {}
    for idx, category in enumerate(categories):
        out[category] = CategoryStyle(
            color=style.palette[idx % len(style.palette)],
            marker=style.markers[idx % len(style.markers)],
        )
    return out


_PixelBBox = tuple[float, float, float, float]


@dataclass(frozen=True, slots=True)
class _LabelCandidate:
    record: LocalityRecord
    text: str


@dataclass(slots=True)
class _LabelStats:
    placed: int = 0
    dropped: list[str] = field(default_factory=list)


class MapRenderer:
    """Draws a finished `MapFigure` into an image file."""

    def __init__(self, cfg: RenderConfig) -> None:
        self.cfg = cfg
        self._basemap_source = _resolve_basemap_source(cfg.background.mode)
        self._basemap_failure: str | None = None
        self._label_stats = _LabelStats()

    @property
    def basemap_warning(self) -> str | None:
        return self._basemap_failure

    @property
    def labels_placed(self) -> int:
        return self._label_stats.placed

    @property
    def dropped_labels(self) -> tuple[str, ...]:
        return tuple(self._label_stats.dropped)

    def render(self, figure: MapFigure, output_path: Path) -> Path:
        plt, transforms, patches = _require_matplotlib()
        _check_figure_crs(figure)
        self._label_stats = _LabelStats()
        image = self.cfg.image
        fig, ax = plt.subplots(
            figsize=(image.width_px / image.dpi, image.height_px / image.dpi),
            dpi=image.dpi,
        )
        try:
            self._configure_axes(fig=fig, ax=ax, viewport=figure.viewport)
            self._draw_basemap(ax=ax, crs=figure.crs)
            for zorder, layer in enumerate(figure.layers, start=1):
                if isinstance(layer, PolygonLayer):
                    _draw_polygon_layer(ax=ax, layer=layer, zorder=zorder)
                else:
                    _draw_point_layer(ax=ax, layer=layer, zorder=10 + zorder)
            if self.cfg.labels.enabled:
                self._label_layers(ax=ax, fig=fig, transforms=transforms, figure=figure)
            for annotation in figure.annotations:
                if isinstance(annotation, ScaleBar):
                    _draw_scale_bar(ax=ax, patches=patches, figure=figure, annotation=annotation)
                else:
                    _draw_north_arrow(ax=ax, figure=figure, annotation=annotation)
            if self.cfg.legend and figure.point_layers:
                ax.legend(loc="lower right", fontsize=self.cfg.style.font_size, frameon=True)
            if figure.title:
                ax.set_title(figure.title, fontsize=self.cfg.style.font_size * 1.6)

            output_path.parent.mkdir(parents=True, exist_ok=True)
            fig.savefig(
                output_path,
                dpi=image.dpi,
                format=image.format,
                transparent=image.background.casefold() == "transparent",
            )
        finally:
            plt.close(fig)
        _LOGGER.info(
            "Rendered %s (%d layers, %d labels placed, %d dropped)",
            output_path,
            len(figure.layers),
            self._label_stats.placed,
            len(self._label_stats.dropped),
        )
        return output_path

    def _configure_axes(self, *, fig: Any, ax: Any, viewport: BoundingBox) -> None:
        background = self.cfg.image.background
        if background.casefold() == "transparent":
            fig.patch.set_alpha(0.0)
        else:
            fig.patch.set_facecolor(background)
        ax.set_facecolor(self.cfg.style.sea_color)
        ax.set_xlim(viewport.xmin, viewport.xmax)
        ax.set_ylim(viewport.ymin, viewport.ymax)
        ax.set_aspect("equal", adjustable="box")
        ax.set_xticks([])
        ax.set_yticks([])

    def _draw_basemap(self, *, ax: Any, crs: str) -> None:
        if self._basemap_source is None or self._basemap_failure is not None:
            return
        contextily = _require_contextily()
        x0, x1 = ax.get_xlim()
        y0, y1 = ax.get_ylim()
        try:
            contextily.add_basemap(
                ax,
                crs=crs,
                source=self._basemap_source,
                attribution=False,
                zorder=0,
            )
        except Exception as exc:
            self._basemap_failure = f"Basemap loading failed and was skipped: {exc}"
            _LOGGER.warning(self._basemap_failure)
        ax.set_xlim(x0, x1)
        ax.set_ylim(y0, y1)

    def _label_layers(self, *, ax: Any, fig: Any, transforms: Any, figure: MapFigure) -> None:
        labelled = [layer for layer in figure.point_layers if layer.show_labels]
        if not labelled:
            return
        fig.canvas.draw()
        # Markers of every point layer block labels, labelled or not.
        occupied: list[_PixelBBox] = [
            _marker_bbox(ax=ax, record=record, padding_px=_marker_radius_px(layer.size, fig.dpi))
            for layer in figure.point_layers
            for record in layer.dataset
        ]
        for layer in labelled:
            self._place_labels(ax=ax, fig=fig, transforms=transforms, layer=layer, occupied=occupied)

    def _place_labels(
        self,
        *,
        ax: Any,
        fig: Any,
        transforms: Any,
        layer: PointLayer,
        occupied: list[_PixelBBox],
    ) -> None:
        viewport_x = ax.get_xlim()
        viewport_y = ax.get_ylim()
        candidates = tuple(
            _LabelCandidate(record=record, text=record.label)
            for record in layer.dataset
            if record.label
            and viewport_x[0] <= record.x <= viewport_x[1]
            and viewport_y[0] <= record.y <= viewport_y[1]
        )
        if not candidates:
            return
        renderer = fig.canvas.get_renderer()
        for candidate in candidates:
            placement = self._place_label_candidate(
                ax=ax,
                fig=fig,
                renderer=renderer,
                transforms=transforms,
                candidate=candidate,
                occupied=occupied,
            )
            if placement is None:
                self._label_stats.dropped.append(candidate.text)
                continue
            occupied.append(placement)
            self._label_stats.placed += 1

    def _place_label_candidate(
        self,
        *,
        ax: Any,
        fig: Any,
        renderer: Any,
        transforms: Any,
        candidate: _LabelCandidate,
        occupied: Sequence[_PixelBBox],
    ) -> _PixelBBox | None:
        for dx_px, dy_px in self.cfg.labels.offsets_px:
            artist = self._create_label_artist(
                ax=ax,
                fig=fig,
                transforms=transforms,
                candidate=candidate,
                dx_px=dx_px,
                dy_px=dy_px,
            )
            bbox = _expanded_text_bbox(
                artist=artist,
                renderer=renderer,
                padding_px=self.cfg.labels.collision_padding_px,
            )
            if _total_overlap_area(bbox, occupied) <= 0.0:
                return bbox
            artist.remove()
        return None

    def _create_label_artist(
        self,
        *,
        ax: Any,
        fig: Any,
        transforms: Any,
        candidate: _LabelCandidate,
        dx_px: int,
        dy_px: int,
    ) -> Any:
        ha = "left" if dx_px > 0 else "right" if dx_px < 0 else "center"
        va = "bottom" if dy_px > 0 else "top" if dy_px < 0 else "center"
        shift = transforms.ScaledTranslation(dx_px / fig.dpi, dy_px / fig.dpi, fig.dpi_scale_trans)
        record = candidate.record
        return ax.text(
            record.x,
            record.y,
            candidate.text,
            transform=ax.transData + shift,
            color=self.cfg.style.label_color,
            fontsize=self.cfg.style.font_size,
            family=self.cfg.style.font_family,
            ha=ha,
            va=va,
            clip_on=True,
            zorder=30,
        )


def _check_figure_crs(figure: MapFigure) -> None:
    if figure.viewport.crs != figure.crs:
        raise CrsMismatchError(
            f"Viewport is in {figure.viewport.crs} but the figure is drawn in {figure.crs}"
        )
    for layer in figure.layers:
        if layer.crs != figure.crs:
            raise CrsMismatchError(
                f"Layer '{layer.name}' is in {layer.crs} but the figure is drawn in {figure.crs}"
            )


def _draw_polygon_layer(*, ax: Any, layer: PolygonLayer, zorder: int) -> None:
    geometries = [
        geometry
        for geometry in layer.geometries
        if geometry is not None and not geometry.is_empty
    ]
    if not geometries:
        return
    gpd = _require_geopandas()
    gpd.GeoSeries(geometries, crs=layer.crs).plot(
        ax=ax,
        facecolor=layer.fill,
        edgecolor=layer.edge,
        linewidth=layer.line_width,
        alpha=layer.alpha,
        zorder=zorder,
    )


def _draw_point_layer(*, ax: Any, layer: PointLayer, zorder: int) -> None:
    for category in layer.dataset.categories():
        style = layer.styles.get(category, CategoryStyle(color="#000000", marker="o"))
        members = [record for record in layer.dataset if record.category == category]
        ax.scatter(
            [record.x for record in members],
            [record.y for record in members],
            s=layer.size,
            c=style.color,
            marker=style.marker,
            edgecolors="#222222",
            linewidths=0.4,
            label=category or layer.name,
            zorder=zorder,
        )


def _marker_radius_px(size_pt2: float, dpi: float) -> float:
    # scatter sizes are marker areas in points^2
    return math.sqrt(max(size_pt2, 0.0)) / 2.0 * dpi / 72.0


def _marker_bbox(*, ax: Any, record: LocalityRecord, padding_px: float) -> _PixelBBox:
    x, y = ax.transData.transform((record.x, record.y))
    return (
        float(x) - padding_px,
        float(y) - padding_px,
        float(x) + padding_px,
        float(y) + padding_px,
    )


def _expanded_text_bbox(*, artist: Any, renderer: Any, padding_px: int) -> _PixelBBox:
    bbox = artist.get_window_extent(renderer=renderer)
    return (
        float(bbox.x0) - padding_px,
        float(bbox.y0) - padding_px,
        float(bbox.x1) + padding_px,
        float(bbox.y1) + padding_px,
    )


def _total_overlap_area(bbox: _PixelBBox, occupied: Sequence[_PixelBBox]) -> float:
    return sum(_intersection_area(bbox, current) for current in occupied)


def _intersection_area(left: _PixelBBox, right: _PixelBBox) -> float:
    x0 = max(left[0], right[0])
    y0 = max(left[1], right[1])
    x1 = min(left[2], right[2])
    y1 = min(left[3], right[3])
    if x1 <= x0 or y1 <= y0:
        return 0.0
    return (x1 - x0) * (y1 - y0)


def nice_scale_length(target: float) -> float:
    """Largest 1/2/5 x 10^k value not exceeding `target`."""
    if target <= 0 or not math.isfinite(target):
        raise ValueError(f"Scale bar target length must be positive, got {target}")
    exponent = math.floor(math.log10(target))
    base = 10.0**exponent
    for step in (5.0, 2.0, 1.0):
        if step * base <= target:
            return step * base
    return base


def _format_distance(length_m: float) -> str:
    if length_m >= 1000.0:
        return f"{length_m / 1000.0:g} km"
    return f"{length_m:g} m"


def _draw_scale_bar(*, ax: Any, patches: Any, figure: MapFigure, annotation: ScaleBar) -> None:
    if is_geographic(figure.crs):
        _LOGGER.warning("Scale bar skipped: %s has angular units", figure.crs)
        return
    viewport = figure.viewport
    length = annotation.length_m or nice_scale_length(viewport.width * _SCALE_BAR_TARGET_FRACTION)
    fx, fy = _ANCHORS[annotation.location]
    x0 = viewport.xmin + fx * viewport.width
    y0 = viewport.ymin + fy * viewport.height
    bar_height = viewport.height * 0.012
    segment = length / _SCALE_BAR_SEGMENTS
    for idx in range(_SCALE_BAR_SEGMENTS):
        ax.add_patch(
            patches.Rectangle(
                (x0 + idx * segment, y0),
                segment,
                bar_height,
                facecolor="#222222" if idx % 2 == 0 else "white",
                edgecolor="#222222",
                linewidth=0.6,
                zorder=40,
            )
        )
    ax.text(
        x0 + length / 2.0,
        y0 + bar_height * 1.8,
        _format_distance(length),
        ha="center",
        va="bottom",
        fontsize=7,
        zorder=41,
    )


def north_bearing(figure_crs: str, x: float, y: float) -> float:
    """Angle in degrees, clockwise from grid up, of true north at projected (x, y)."""
    if is_geographic(figure_crs):
        return 0.0
    lon, lat = get_transformer(figure_crs, WGS84).transform(x, y)
    if not (math.isfinite(lon) and math.isfinite(lat)):
        return 0.0
    step = 0.5 if lat < 89.5 else -0.5
    nx, ny = get_transformer(WGS84, figure_crs).transform(lon, lat + step)
    if not (math.isfinite(nx) and math.isfinite(ny)):
        return 0.0
    dx, dy = (nx - x, ny - y) if step > 0 else (x - nx, y - ny)
    return math.degrees(math.atan2(dx, dy))


def _draw_north_arrow(*, ax: Any, figure: MapFigure, annotation: NorthArrow) -> None:
    fx, fy = _ANCHORS[annotation.location]
    viewport = figure.viewport
    x = viewport.xmin + fx * viewport.width
    y = viewport.ymin + fy * viewport.height
    bearing = math.radians(north_bearing(figure.crs, x, y))
    tip = (
        fx + _NORTH_ARROW_LENGTH * math.sin(bearing),
        fy + _NORTH_ARROW_LENGTH * math.cos(bearing),
    )
    ax.annotate(
        "",
        xy=tip,
        xytext=(fx, fy),
        xycoords="axes fraction",
        textcoords="axes fraction",
        arrowprops={"arrowstyle": "-|>", "color": "#222222", "linewidth": 1.4},
        zorder=40,
    )
    ax.text(
        tip[0],
        tip[1] + 0.01,
        "N",
        transform=ax.transAxes,
        ha="center",
        va="bottom",
        fontsize=9,
        fontweight="bold",
        zorder=41,
    )


def _resolve_basemap_source(mode: str) -> Any | None:
    chosen = mode.casefold()
    if chosen == "none":
        return None
    providers = _require_xyzservices_providers()
    if chosen == "satellite":
        return providers.Esri.WorldImagery
    return providers.CartoDB.PositronNoLabels


def _require_matplotlib() -> tuple[Any, Any, Any]:
    try:
        import matplotlib

        matplotlib.use("Agg", force=False)
        import matplotlib.patches as patches
        import matplotlib.pyplot as plt
        import matplotlib.transforms as transforms
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("matplotlib is required for map rendering") from exc
    return (plt, transforms, patches)


@lru_cache(maxsize=1)
def _require_geopandas() -> Any:
    try:
        import geopandas as gpd
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("geopandas is required for polygon layer rendering") from exc
    return gpd


@lru_cache(maxsize=1)
def _require_contextily() -> Any:
    try:
        import contextily as ctx
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("contextily is required for tile backgrounds") from exc
    return ctx


@lru_cache(maxsize=1)
def _require_xyzservices_providers() -> Any:
    try:
        from xyzservices import providers
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("xyzservices is required for basemap source definitions") from exc
    return providers
