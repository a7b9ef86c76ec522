"""Validation layer for config and input datasets."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from .config import AppConfig
from .errors import LocalityMapError
from .io_ne import NaturalEarthRepository, union_region
from .models import WGS84, BoundingBox, LocalityDataset
from .pipeline import load_configured_localities
from .projection import crs_tag, transform_bbox, transform_dataset


@dataclass(slots=True)
class ValidationReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    infos: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)

    def add_info(self, msg: str) -> None:
        self.infos.append(msg)


class Validator:
    """Checks config, inputs and projection settings without rendering."""

    def __init__(self, cfg: AppConfig) -> None:
        self.cfg = cfg

    def run(self, *, strict_data_files: bool = False) -> ValidationReport:
        report = ValidationReport()
        localities = self._validate_localities(report)
        target = self._validate_target_crs(report)
        if target is not None:
            viewport = self._validate_viewport(report, target=target)
            if localities is not None:
                self._validate_locality_projection(
                    report,
                    localities=localities,
                    target=target,
                    viewport=viewport,
                )
        self._validate_natural_earth(report, strict_data_files=strict_data_files)
        return report

    def _validate_localities(self, report: ValidationReport) -> LocalityDataset | None:
        cfg = self.cfg.localities
        if cfg.path is not None and not cfg.path.exists():
            report.add_error(f"Missing localities file: {cfg.path}")
            return None
        try:
            dataset = load_configured_localities(self.cfg)
        except (LocalityMapError, ValueError) as exc:
            report.add_error(f"Failed parsing localities: {exc}")
            return None
        if not cfg.has_source:
            if self.cfg.sampling.sample_count == 0:
                report.add_warning(
                    "No localities configured and sample_count is 0; the map has no points."
                )
            return dataset
        report.add_info(f"Loaded {len(dataset)} localities in {len(dataset.categories())} categories")
        duplicates = dataset.duplicate_labels()
        if duplicates:
            report.add_warning("Repeated locality labels: " + ", ".join(duplicates))
        return dataset

    def _validate_target_crs(self, report: ValidationReport) -> str | None:
        try:
            target = crs_tag(self.cfg.projection.target_crs)
        except LocalityMapError as exc:
            report.add_error(str(exc))
            return None
        report.add_info(f"Target CRS resolved: {target}")
        return target

    def _validate_viewport(self, report: ValidationReport, *, target: str) -> BoundingBox | None:
        try:
            viewport = transform_bbox(
                BoundingBox.from_bounds(self.cfg.projection.viewport_bounds, WGS84),
                target,
                densify_points=self.cfg.projection.densify_points,
            )
        except LocalityMapError as exc:
            report.add_error(f"Viewport cannot be projected: {exc}")
            return None
        if self.cfg.projection.densify_points == 0:
            report.add_warning(
                "densify_points=0 uses corner-only viewport projection, which can clip content."
            )
        report.add_info(
            "Projected viewport: " + ", ".join(f"{value:.1f}" for value in viewport.as_tuple())
        )
        return viewport

    def _validate_locality_projection(
        self,
        report: ValidationReport,
        *,
        localities: LocalityDataset,
        target: str,
        viewport: BoundingBox | None,
    ) -> None:
        try:
            projected = transform_dataset(localities, target)
        except LocalityMapError as exc:
            report.add_error(f"Localities cannot be projected: {exc}")
            return
        if viewport is None:
            return
        outside = [record.label for record in projected if not viewport.contains(record.x, record.y)]
        if outside:
            report.add_warning(f"Localities outside the viewport: {_format_list(outside)}")

    def _validate_natural_earth(self, report: ValidationReport, *, strict_data_files: bool) -> None:
        path = self.cfg.admin0_path
        if not path.exists():
            if self.cfg.region.allow_download:
                report.add_info(f"Natural Earth file {path} will be downloaded on first build.")
            elif strict_data_files:
                report.add_error(f"Missing Natural Earth file: {path}")
            else:
                report.add_warning(f"Missing Natural Earth file: {path}")
            return

        repo = NaturalEarthRepository(path, resolution=self.cfg.region.resolution)
        try:
            region = repo.load_region(self.cfg.region.selector)
            landmass = union_region(region) if self.cfg.region.union else None
        except LocalityMapError as exc:
            report.add_error(f"Region check failed: {exc}")
            return
        except Exception as exc:
            report.add_error(f"Failed loading Natural Earth file '{path}': {exc}")
            return
        report.add_info(f"Region '{region.selector}' matched {len(region.units)} countries")
        if landmass is not None:
            report.add_info(f"Unioned landmass: {landmass.geom_type}")


def format_report_lines(report: ValidationReport) -> Sequence[str]:
    lines: list[str] = []
    lines.extend(f"[INFO] {msg}" for msg in report.infos)
    lines.extend(f"[WARN] {msg}" for msg in report.warnings)
    lines.extend(f"[ERROR] {msg}" for msg in report.errors)
    if report.ok:
        lines.append("[OK] Validation passed.")
    return lines


def _format_list(values: list[str], limit: int = 12) -> str:
    if len(values) <= limit:
        return ", ".join(values)
    shown = ", ".join(values[:limit])
    return f"{shown}, ... (+{len(values) - limit} more)"
