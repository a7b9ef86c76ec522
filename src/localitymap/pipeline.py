"""Load -> region -> sample -> reproject -> render orchestration."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

from .config import AppConfig, RenderConfig
from .io_ne import NaturalEarthRepository, union_region
from .localities import load_localities, load_localities_csv, write_localities_csv
from .models import WGS84, BoundingBox, BuildManifest, LocalityDataset, RegionGeometry
from .projection import (
    crs_tag,
    is_geographic,
    transform_bbox,
    transform_dataset,
    transform_geometry,
)
from .render import (
    MapFigure,
    MapRenderer,
    NorthArrow,
    PointLayer,
    PolygonLayer,
    ScaleBar,
    category_styles,
)
from .sampling import sample_points

_LOGGER = logging.getLogger("localitymap.pipeline")

# Longest edge, in degrees, kept straight when projecting geodetic polygons.
GEODETIC_MAX_SEGMENT = 0.1


@dataclass(frozen=True, slots=True)
class PipelineResult:
    """Everything the renderer needs, already in `target_crs`."""

    target_crs: str
    localities: LocalityDataset
    samples: LocalityDataset
    region: RegionGeometry
    country_geometries: tuple[Any, ...]
    landmass: Any | None
    viewport: BoundingBox


@dataclass(slots=True)
class BuildReport:
    infos: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    artifacts: dict[str, str] = field(default_factory=dict)

    def add_info(self, msg: str) -> None:
        self.infos.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def load_configured_localities(cfg: AppConfig) -> LocalityDataset:
    """Localities from the configured CSV or inline records; empty when neither is set."""
    if cfg.localities.path is not None:
        return load_localities_csv(
            cfg.localities.path,
            category_column=cfg.localities.category_column,
            delimiter=cfg.localities.delimiter,
        )
    if cfg.localities.records:
        return load_localities(cfg.localities.records)
    return LocalityDataset(records=(), crs=WGS84)


def build_repository(cfg: AppConfig) -> NaturalEarthRepository:
    return NaturalEarthRepository(
        cfg.admin0_path,
        resolution=cfg.region.resolution,
        allow_download=cfg.region.allow_download,
        download_timeout_s=cfg.region.download_timeout_s,
    )


def run_pipeline(
    cfg: AppConfig,
    *,
    repository: NaturalEarthRepository | None = None,
    localities: LocalityDataset | None = None,
) -> PipelineResult:
    """Run every data stage; any stage error propagates to the caller unchanged."""
    target = crs_tag(cfg.projection.target_crs)
    viewport = transform_bbox(
        BoundingBox.from_bounds(cfg.projection.viewport_bounds, WGS84),
        target,
        densify_points=cfg.projection.densify_points,
    )

    geodetic = localities if localities is not None else load_configured_localities(cfg)
    repo = repository or build_repository(cfg)
    region = repo.load_region(cfg.region.selector)

    needs_union = cfg.region.union or cfg.sampling.sample_count > 0
    landmass_geodetic = union_region(region) if needs_union else None
    landmass = (
        transform_geometry(
            landmass_geodetic, region.crs, target, max_segment=_max_segment(region.crs)
        )
        if landmass_geodetic is not None
        else None
    )
    countries = tuple(
        transform_geometry(geometry, region.crs, target, max_segment=_max_segment(region.crs))
        for geometry in region.geometries
    )

    samples = LocalityDataset(records=(), crs=target)
    if cfg.sampling.sample_count > 0 and landmass is not None:
        samples = sample_points(
            landmass,
            cfg.sampling.sample_count,
            seed=cfg.sampling.random_seed,
            crs=target,
            category=cfg.sampling.category,
            categories=cfg.sampling.categories,
        )

    projected = transform_dataset(geodetic, target)
    _LOGGER.info(
        "Pipeline ready: %d localities, %d samples, %d countries in %s",
        len(projected),
        len(samples),
        len(countries),
        target,
    )
    return PipelineResult(
        target_crs=target,
        localities=projected,
        samples=samples,
        region=region,
        country_geometries=countries,
        landmass=landmass if cfg.region.union else None,
        viewport=viewport,
    )


def build_figure(
    result: PipelineResult,
    render_cfg: RenderConfig,
    *,
    title: str | None = None,
) -> MapFigure:
    style = render_cfg.style
    figure = MapFigure(crs=result.target_crs, viewport=result.viewport, title=title)
    figure = figure.with_layer(
        PolygonLayer(
            geometries=result.country_geometries,
            crs=result.target_crs,
            fill=style.land_fill,
            edge=style.land_edge,
            line_width=style.land_edge_width,
            name="countries",
        )
    )
    if result.landmass is not None:
        figure = figure.with_layer(
            PolygonLayer(
                geometries=(result.landmass,),
                crs=result.target_crs,
                fill="none",
                edge=style.landmass_edge,
                line_width=style.landmass_edge_width,
                name="landmass",
            )
        )

    categories = _ordered_union(result.localities.categories(), result.samples.categories())
    styles = category_styles(categories, style)
    if len(result.samples):
        figure = figure.with_layer(
            PointLayer(
                dataset=result.samples,
                styles=styles,
                size=style.point_size * 0.6,
                show_labels=False,
                name="samples",
            )
        )
    if len(result.localities):
        figure = figure.with_layer(
            PointLayer(
                dataset=result.localities,
                styles=styles,
                size=style.point_size,
                show_labels=True,
                name="localities",
            )
        )

    annotations = render_cfg.annotations
    if annotations.scale_bar and not is_geographic(result.target_crs):
        figure = figure.with_annotation(ScaleBar(location=annotations.scale_bar_location))
    if annotations.north_arrow:
        figure = figure.with_annotation(NorthArrow(location=annotations.north_arrow_location))
    return figure


def run_build(cfg: AppConfig, *, repository: NaturalEarthRepository | None = None) -> BuildReport:
    """Full build: pipeline, figure, projected CSV exports and manifest."""
    report = BuildReport()
    result = run_pipeline(cfg, repository=repository)
    report.add_info(
        f"Region '{result.region.selector}' ({result.region.resolution}): "
        f"{len(result.region.units)} countries"
    )
    report.add_info(f"Target CRS: {result.target_crs}")
    report.add_info(
        "Viewport: "
        + ", ".join(f"{value:.1f}" for value in result.viewport.as_tuple())
    )
    duplicates = result.localities.duplicate_labels()
    if duplicates:
        report.add_warning("Repeated locality labels: " + ", ".join(duplicates))

    outside = [
        record.label
        for record in result.localities
        if not result.viewport.contains(record.x, record.y)
    ]
    if outside:
        report.add_warning(
            f"{len(outside)} localities fall outside the viewport: " + ", ".join(outside)
        )

    figure = build_figure(result, cfg.render, title=cfg.project.title)
    renderer = MapRenderer(cfg.render)
    figure_path = renderer.render(figure, cfg.paths.output_figure)
    report.artifacts["figure"] = str(figure_path)
    report.add_info(f"Figure written to {figure_path}")
    if renderer.dropped_labels:
        report.add_warning("Labels dropped to avoid overlap: " + ", ".join(renderer.dropped_labels))
    if renderer.basemap_warning is not None:
        report.add_warning(renderer.basemap_warning)

    if cfg.build.write_localities:
        if len(result.localities):
            report.artifacts["localities"] = str(
                write_localities_csv(result.localities, cfg.paths.output_localities)
            )
        if len(result.samples):
            report.artifacts["samples"] = str(
                write_localities_csv(result.samples, cfg.paths.output_samples)
            )

    if cfg.build.write_manifest:
        manifest = BuildManifest.for_config(
            cfg.source_path,
            target_crs=result.target_crs,
            region=result.region.selector,
            counts={
                "localities": len(result.localities),
                "samples": len(result.samples),
                "countries": len(result.country_geometries),
            },
            viewport=result.viewport,
            artifacts=dict(report.artifacts),
        )
        manifest_path = cfg.paths.manifests_dir / "build_manifest.json"
        _write_json(manifest_path, manifest.to_dict())
        report.artifacts["manifest"] = str(manifest_path)
        report.add_info(f"Build manifest written to {manifest_path}")
    return report


def sample_geodetic(
    cfg: AppConfig,
    *,
    repository: NaturalEarthRepository | None = None,
) -> LocalityDataset:
    """Sample the configured landmass in the target CRS, returned as WGS84 points."""
    target = crs_tag(cfg.projection.target_crs)
    repo = repository or build_repository(cfg)
    region = repo.load_region(cfg.region.selector)
    landmass = transform_geometry(
        union_region(region), region.crs, target, max_segment=_max_segment(region.crs)
    )
    samples = sample_points(
        landmass,
        cfg.sampling.sample_count,
        seed=cfg.sampling.random_seed,
        crs=target,
        category=cfg.sampling.category,
        categories=cfg.sampling.categories,
    )
    return transform_dataset(samples, WGS84)


def write_projection_outputs(
    result: PipelineResult,
    *,
    localities_path: Path,
    viewport_path: Path,
) -> None:
    write_localities_csv(result.localities, localities_path)
    _write_json(viewport_path, result.viewport.to_dict())


def format_build_lines(report: BuildReport) -> Sequence[str]:
    lines: list[str] = []
    lines.extend(f"[INFO] {msg}" for msg in report.infos)
    lines.extend(f"[WARN] {msg}" for msg in report.warnings)
    lines.append("[OK] Build completed.")
    return lines


def _ordered_union(*groups: Sequence[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for group in groups:
        for item in group:
            seen.setdefault(item, None)
    return tuple(seen)


def _write_json(path: Path, payload: dict[str, Any]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    return path


def _max_segment(crs: str) -> float | None:
    return GEODETIC_MAX_SEGMENT if is_geographic(crs) else None
