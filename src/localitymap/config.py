"""Typed configuration loader for `config.yaml`."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, cast

import yaml

from .io_ne import normalize_resolution
from .projection import DEFAULT_DENSIFY_POINTS, DEFAULT_TARGET_CRS

DEFAULT_VIEWPORT_BOUNDS = (-25.0, 33.0, 45.0, 72.0)


def _mapping(value: Any, field_name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ValueError(f"Expected mapping for '{field_name}'")
    return cast(Mapping[str, Any], value)


def _optional_mapping(value: Any, field_name: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    return _mapping(value, field_name)


def _str(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Expected non-empty string for '{field_name}'")
    return value.strip()


def _optional_str(value: Any, field_name: str) -> str | None:
    if value is None:
        return None
    return _str(value, field_name)


def _int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Expected integer for '{field_name}'")
    return value


def _float(value: Any, field_name: str) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    raise ValueError(f"Expected float for '{field_name}'")


def _bool(value: Any, field_name: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"Expected bool for '{field_name}'")
    return value


def _str_list(value: Any, field_name: str) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise ValueError(f"Expected list for '{field_name}'")
    return tuple(_str(item, f"{field_name}[{idx}]") for idx, item in enumerate(value))


def _path_from_cfg(value: Any, field_name: str, root_dir: Path) -> Path:
    p = Path(_str(value, field_name))
    return p if p.is_absolute() else root_dir / p


def _optional_path(value: Any, field_name: str, root_dir: Path) -> Path | None:
    if value is None:
        return None
    return _path_from_cfg(value, field_name, root_dir)


@dataclass(frozen=True, slots=True)
class ProjectConfig:
    name: str
    title: str | None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ProjectConfig:
        return cls(
            name=_str(raw.get("name"), "project.name"),
            title=_optional_str(raw.get("title"), "project.title"),
        )


@dataclass(frozen=True, slots=True)
class PathsConfig:
    natural_earth_dir: Path
    natural_earth_admin0: Path | None
    output_figure: Path
    output_localities: Path
    output_samples: Path
    manifests_dir: Path
    logs_dir: Path

    @property
    def build_directories(self) -> tuple[Path, ...]:
        return (
            self.natural_earth_dir,
            self.output_figure.parent,
            self.output_localities.parent,
            self.output_samples.parent,
            self.manifests_dir,
            self.logs_dir,
        )

    def admin0_path(self, resolution: str) -> Path:
        """Explicit admin-0 file, else the Natural Earth zip name for `resolution`."""
        if self.natural_earth_admin0 is not None:
            return self.natural_earth_admin0
        scale = normalize_resolution(resolution)
        return self.natural_earth_dir / f"ne_{scale}_admin_0_countries.zip"

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path) -> PathsConfig:
        return cls(
            natural_earth_dir=_path_from_cfg(
                raw.get("natural_earth_dir"), "paths.natural_earth_dir", root_dir
            ),
            natural_earth_admin0=_optional_path(
                raw.get("natural_earth_admin0"), "paths.natural_earth_admin0", root_dir
            ),
            output_figure=_path_from_cfg(raw.get("output_figure"), "paths.output_figure", root_dir),
            output_localities=_path_from_cfg(
                raw.get("output_localities"), "paths.output_localities", root_dir
            ),
            output_samples=_path_from_cfg(raw.get("output_samples"), "paths.output_samples", root_dir),
            manifests_dir=_path_from_cfg(raw.get("manifests_dir"), "paths.manifests_dir", root_dir),
            logs_dir=_path_from_cfg(raw.get("logs_dir"), "paths.logs_dir", root_dir),
        )


@dataclass(frozen=True, slots=True)
class LocalitiesConfig:
    path: Path | None
    records: tuple[tuple[Any, ...], ...]
    category_column: str | None
    delimiter: str

    @property
    def has_source(self) -> bool:
        return self.path is not None or bool(self.records)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path) -> LocalitiesConfig:
        path = _optional_path(raw.get("path"), "localities.path", root_dir)
        records_raw = raw.get("records")
        records: list[tuple[Any, ...]] = []
        if records_raw is not None:
            if not isinstance(records_raw, list):
                raise ValueError("Expected list for 'localities.records'")
            for idx, item in enumerate(records_raw):
                if not isinstance(item, list) or len(item) != 4:
                    raise ValueError(
                        f"Expected [lon, lat, label, category] for 'localities.records[{idx}]'"
                    )
                records.append(tuple(item))
        if path is not None and records:
            raise ValueError("Use only one of 'localities.path' or 'localities.records'")
        delimiter = raw.get("delimiter", ",")
        if not isinstance(delimiter, str) or len(delimiter) != 1:
            raise ValueError("Expected single character for 'localities.delimiter'")
        return cls(
            path=path,
            records=tuple(records),
            category_column=_optional_str(raw.get("category_column"), "localities.category_column"),
            delimiter=delimiter,
        )


@dataclass(frozen=True, slots=True)
class RegionConfig:
    selector: str
    resolution: str
    union: bool
    allow_download: bool
    download_timeout_s: float

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> RegionConfig:
        resolution = _str(raw.get("resolution", "medium"), "region.resolution")
        normalize_resolution(resolution)
        timeout = _float(raw.get("download_timeout_s", 60.0), "region.download_timeout_s")
        if timeout <= 0:
            raise ValueError("region.download_timeout_s must be > 0")
        return cls(
            selector=_str(raw.get("selector"), "region.selector"),
            resolution=resolution,
            union=_bool(raw.get("union", True), "region.union"),
            allow_download=_bool(raw.get("allow_download", False), "region.allow_download"),
            download_timeout_s=timeout,
        )


@dataclass(frozen=True, slots=True)
class SamplingConfig:
    sample_count: int
    random_seed: int | None
    category: str
    categories: tuple[str, ...] | None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> SamplingConfig:
        sample_count = _int(raw.get("sample_count", 0), "sampling.sample_count")
        if sample_count < 0:
            raise ValueError("sampling.sample_count must be >= 0")
        seed_raw = raw.get("random_seed")
        categories_raw = raw.get("categories")
        categories = (
            _str_list(categories_raw, "sampling.categories") if categories_raw is not None else None
        )
        if categories is not None and not categories:
            raise ValueError("sampling.categories must not be empty when provided")
        return cls(
            sample_count=sample_count,
            random_seed=_int(seed_raw, "sampling.random_seed") if seed_raw is not None else None,
            category=_str(raw.get("category", "random"), "sampling.category"),
            categories=categories,
        )


@dataclass(frozen=True, slots=True)
class ProjectionConfig:
    target_crs: str
    viewport_bounds: tuple[float, float, float, float]
    densify_points: int

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ProjectionConfig:
        bounds_raw = raw.get("viewport_bounds", list(DEFAULT_VIEWPORT_BOUNDS))
        if not isinstance(bounds_raw, list) or len(bounds_raw) != 4:
            raise ValueError("Expected [xmin, ymin, xmax, ymax] for 'projection.viewport_bounds'")
        xmin, ymin, xmax, ymax = (
            _float(item, f"projection.viewport_bounds[{idx}]") for idx, item in enumerate(bounds_raw)
        )
        if xmin >= xmax or ymin >= ymax:
            raise ValueError("projection.viewport_bounds must satisfy xmin < xmax and ymin < ymax")
        if xmin < -180.0 or xmax > 180.0 or ymin < -90.0 or ymax > 90.0:
            raise ValueError("projection.viewport_bounds must be geodetic degrees")
        densify = _int(raw.get("densify_points", DEFAULT_DENSIFY_POINTS), "projection.densify_points")
        if densify < 0:
            raise ValueError("projection.densify_points must be >= 0")
        return cls(
            target_crs=_str(raw.get("target_crs", DEFAULT_TARGET_CRS), "projection.target_crs"),
            viewport_bounds=(xmin, ymin, xmax, ymax),
            densify_points=densify,
        )


@dataclass(frozen=True, slots=True)
class RenderImageConfig:
    width_px: int
    height_px: int
    dpi: int
    background: str
    format: str

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> RenderImageConfig:
        return cls(
            width_px=_int(raw.get("width_px", 1600), "render.image.width_px"),
            height_px=_int(raw.get("height_px", 1400), "render.image.height_px"),
            dpi=_int(raw.get("dpi", 200), "render.image.dpi"),
            background=_str(raw.get("background", "white"), "render.image.background"),
            format=_str(raw.get("format", "png"), "render.image.format"),
        )


@dataclass(frozen=True, slots=True)
class RenderBackgroundConfig:
    mode: str

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> RenderBackgroundConfig:
        mode = _str(raw.get("mode", "none"), "render.background.mode").casefold()
        allowed = {"none", "flat", "satellite"}
        if mode not in allowed:
            raise ValueError("render.background.mode must be one of: " + ", ".join(sorted(allowed)))
        return cls(mode=mode)


@dataclass(frozen=True, slots=True)
class RenderStyleConfig:
    sea_color: str
    land_fill: str
    land_edge: str
    land_edge_width: float
    landmass_edge: str
    landmass_edge_width: float
    point_size: float
    palette: tuple[str, ...]
    markers: tuple[str, ...]
    label_color: str
    font_family: str
    font_size: float

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> RenderStyleConfig:
        palette = _str_list(
            raw.get("palette", ["#1b9e77", "#d95f02", "#7570b3", "#e7298a", "#66a61e"]),
            "render.style.palette",
        )
        markers = _str_list(raw.get("markers", ["o", "^", "s", "D", "v"]), "render.style.markers")
        if not palette:
            raise ValueError("render.style.palette must not be empty")
        if not markers:
            raise ValueError("render.style.markers must not be empty")
        return cls(
            sea_color=_str(raw.get("sea_color", "aliceblue"), "render.style.sea_color"),
            land_fill=_str(raw.get("land_fill", "antiquewhite"), "render.style.land_fill"),
            land_edge=_str(raw.get("land_edge", "#8c8c8c"), "render.style.land_edge"),
            land_edge_width=_float(raw.get("land_edge_width", 0.4), "render.style.land_edge_width"),
            landmass_edge=_str(raw.get("landmass_edge", "#333333"), "render.style.landmass_edge"),
            landmass_edge_width=_float(
                raw.get("landmass_edge_width", 0.8), "render.style.landmass_edge_width"
            ),
            point_size=_float(raw.get("point_size", 28.0), "render.style.point_size"),
            palette=palette,
            markers=markers,
            label_color=_str(raw.get("label_color", "#222222"), "render.style.label_color"),
            font_family=_str(raw.get("font_family", "DejaVu Sans"), "render.style.font_family"),
            font_size=_float(raw.get("font_size", 7.0), "render.style.font_size"),
        )


@dataclass(frozen=True, slots=True)
class LabelsConfig:
    enabled: bool
    offsets_px: tuple[tuple[int, int], ...]
    collision_padding_px: int

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> LabelsConfig:
        offsets_raw = raw.get(
            "offsets_px", [[12, 10], [12, -10], [-12, 10], [-12, -10], [0, 18], [0, -18]]
        )
        if not isinstance(offsets_raw, list) or not offsets_raw:
            raise ValueError("Expected non-empty list for 'render.labels.offsets_px'")
        offsets: list[tuple[int, int]] = []
        for idx, item in enumerate(offsets_raw):
            if not isinstance(item, list) or len(item) != 2:
                raise ValueError(f"Invalid render.labels.offsets_px[{idx}]")
            offsets.append(
                (
                    _int(item[0], f"render.labels.offsets_px[{idx}][0]"),
                    _int(item[1], f"render.labels.offsets_px[{idx}][1]"),
                )
            )
        return cls(
            enabled=_bool(raw.get("enabled", True), "render.labels.enabled"),
            offsets_px=tuple(offsets),
            collision_padding_px=_int(
                raw.get("collision_padding_px", 2), "render.labels.collision_padding_px"
            ),
        )


@dataclass(frozen=True, slots=True)
class AnnotationsConfig:
    scale_bar: bool
    scale_bar_location: str
    north_arrow: bool
    north_arrow_location: str

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> AnnotationsConfig:
        allowed = {"bl", "br", "tl", "tr"}
        scale_loc = _str(raw.get("scale_bar_location", "bl"), "render.annotations.scale_bar_location")
        arrow_loc = _str(
            raw.get("north_arrow_location", "tl"), "render.annotations.north_arrow_location"
        )
        for name, value in (("scale_bar_location", scale_loc), ("north_arrow_location", arrow_loc)):
            if value not in allowed:
                raise ValueError(
                    f"render.annotations.{name} must be one of: " + ", ".join(sorted(allowed))
                )
        return cls(
            scale_bar=_bool(raw.get("scale_bar", True), "render.annotations.scale_bar"),
            scale_bar_location=scale_loc,
            north_arrow=_bool(raw.get("north_arrow", True), "render.annotations.north_arrow"),
            north_arrow_location=arrow_loc,
        )


@dataclass(frozen=True, slots=True)
class RenderConfig:
    image: RenderImageConfig
    background: RenderBackgroundConfig
    style: RenderStyleConfig
    labels: LabelsConfig
    annotations: AnnotationsConfig
    legend: bool

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> RenderConfig:
        return cls(
            image=RenderImageConfig.from_mapping(_optional_mapping(raw.get("image"), "render.image")),
            background=RenderBackgroundConfig.from_mapping(
                _optional_mapping(raw.get("background"), "render.background")
            ),
            style=RenderStyleConfig.from_mapping(_optional_mapping(raw.get("style"), "render.style")),
            labels=LabelsConfig.from_mapping(_optional_mapping(raw.get("labels"), "render.labels")),
            annotations=AnnotationsConfig.from_mapping(
                _optional_mapping(raw.get("annotations"), "render.annotations")
            ),
            legend=_bool(raw.get("legend", True), "render.legend"),
        )

    @classmethod
    def default(cls) -> RenderConfig:
        return cls.from_mapping({})


@dataclass(frozen=True, slots=True)
class BuildConfig:
    write_manifest: bool
    write_localities: bool

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> BuildConfig:
        return cls(
            write_manifest=_bool(raw.get("write_manifest", True), "build.write_manifest"),
            write_localities=_bool(raw.get("write_localities", True), "build.write_localities"),
        )


@dataclass(frozen=True, slots=True)
class AppConfig:
    source_path: Path
    project: ProjectConfig
    paths: PathsConfig
    localities: LocalitiesConfig
    region: RegionConfig
    sampling: SamplingConfig
    projection: ProjectionConfig
    render: RenderConfig
    build: BuildConfig

    @property
    def admin0_path(self) -> Path:
        return self.paths.admin0_path(self.region.resolution)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], source_path: Path) -> AppConfig:
        root_dir = source_path.parent.resolve()
        return cls(
            source_path=source_path.resolve(),
            project=ProjectConfig.from_mapping(_mapping(raw.get("project"), "project")),
            paths=PathsConfig.from_mapping(_mapping(raw.get("paths"), "paths"), root_dir),
            localities=LocalitiesConfig.from_mapping(
                _optional_mapping(raw.get("localities"), "localities"), root_dir
            ),
            region=RegionConfig.from_mapping(_mapping(raw.get("region"), "region")),
            sampling=SamplingConfig.from_mapping(_optional_mapping(raw.get("sampling"), "sampling")),
            projection=ProjectionConfig.from_mapping(
                _optional_mapping(raw.get("projection"), "projection")
            ),
            render=RenderConfig.from_mapping(_optional_mapping(raw.get("render"), "render")),
            build=BuildConfig.from_mapping(_optional_mapping(raw.get("build"), "build")),
        )


def load_config(path: str | Path) -> AppConfig:
    """Load and validate the YAML config file into typed settings."""
    cfg_path = Path(path).resolve()
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file not found: {cfg_path}")
    with cfg_path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)
    if not isinstance(raw, Mapping):
        raise ValueError("Top-level config must be a YAML mapping")
    return AppConfig.from_mapping(cast(Mapping[str, Any], raw), cfg_path)
