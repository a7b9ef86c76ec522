"""CLI entrypoint for locality-maps."""

from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from pathlib import Path
from typing import Sequence

import requests

from .config import AppConfig, load_config
from .errors import LocalityMapError
from .io_ne import NaturalEarthRepository
from .localities import write_localities_csv
from .pipeline import (
    format_build_lines,
    run_build,
    run_pipeline,
    sample_geodetic,
    write_projection_outputs,
)
from .validate import Validator, format_report_lines

LOGGER = logging.getLogger("localitymap.cli")

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Dependencies that are chatty at DEBUG level.
_QUIET_LOGGERS = ("matplotlib", "fiona", "pyogrio", "urllib3", "rasterio")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="localitymap",
        description="Project point localities onto an equal-area map of a region.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", default="config.yaml", help="Path to YAML config.")
        p.add_argument("--verbose", action="store_true", help="Enable debug logs.")

    build_p = subparsers.add_parser("build", help="Run the full pipeline and render the figure.")
    add_common(build_p)

    validate_p = subparsers.add_parser("validate", help="Validate config and input files.")
    add_common(validate_p)
    validate_p.add_argument(
        "--strict-data-files",
        action="store_true",
        help="Treat a missing Natural Earth file as an error.",
    )

    sample_p = subparsers.add_parser("sample", help="Write random landmass points as lon/lat CSV.")
    add_common(sample_p)
    sample_p.add_argument("--count", type=int, default=None, help="Override sampling.sample_count.")
    sample_p.add_argument("--seed", type=int, default=None, help="Override sampling.random_seed.")
    sample_p.add_argument("--output", type=Path, default=None, help="Override paths.output_samples.")

    project_p = subparsers.add_parser(
        "project",
        help="Write projected localities CSV and the projected viewport JSON.",
    )
    add_common(project_p)
    project_p.add_argument(
        "--viewport-json",
        type=Path,
        default=None,
        help="Viewport JSON path (default: next to the projected localities CSV).",
    )

    fetch_p = subparsers.add_parser("fetch-data", help="Download the Natural Earth admin-0 file.")
    add_common(fetch_p)

    return parser


def _configure_logging(log_file: Path, *, verbose: bool) -> None:
    """Console plus one log file per subcommand, replacing earlier handlers."""
    handlers: list[logging.Handler] = [
        logging.StreamHandler(),
        logging.FileHandler(log_file, encoding="utf-8"),
    ]
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _load_and_setup(args: argparse.Namespace) -> AppConfig:
    cfg = load_config(args.config)
    for directory in cfg.paths.build_directories:
        directory.mkdir(parents=True, exist_ok=True)
    _configure_logging(cfg.paths.logs_dir / f"{args.command}.log", verbose=args.verbose)
    return cfg


def _run_build(cfg: AppConfig) -> int:
    LOGGER.info("Starting build pipeline.")
    report = run_build(cfg)
    for line in format_build_lines(report):
        LOGGER.info(line)
    return 0


def _run_validate(cfg: AppConfig, *, strict_data_files: bool) -> int:
    report = Validator(cfg).run(strict_data_files=strict_data_files)
    for line in format_report_lines(report):
        LOGGER.info(line)
    return 0 if report.ok else 1


def _run_sample(cfg: AppConfig, *, count: int | None, seed: int | None, output: Path | None) -> int:
    if count is not None and count < 0:
        LOGGER.error("--count must be >= 0")
        return 2
    sampling = replace(
        cfg.sampling,
        sample_count=count if count is not None else cfg.sampling.sample_count,
        random_seed=seed if seed is not None else cfg.sampling.random_seed,
    )
    samples = sample_geodetic(replace(cfg, sampling=sampling))
    path = write_localities_csv(samples, output or cfg.paths.output_samples)
    LOGGER.info("[OK] Wrote %d sampled points to %s", len(samples), path)
    return 0


def _run_project(cfg: AppConfig, *, viewport_json: Path | None) -> int:
    result = run_pipeline(cfg)
    viewport_path = viewport_json or cfg.paths.output_localities.with_name("viewport.json")
    write_projection_outputs(
        result,
        localities_path=cfg.paths.output_localities,
        viewport_path=viewport_path,
    )
    LOGGER.info(
        "[OK] Projected %d localities to %s; viewport written to %s",
        len(result.localities),
        result.target_crs,
        viewport_path,
    )
    return 0


def _run_fetch_data(cfg: AppConfig) -> int:
    # An explicit fetch-data request downloads even when region.allow_download is false.
    repo = NaturalEarthRepository(
        cfg.admin0_path,
        resolution=cfg.region.resolution,
        allow_download=True,
        download_timeout_s=cfg.region.download_timeout_s,
    )
    if repo.admin0_path.exists():
        LOGGER.info("[OK] Natural Earth file already present: %s", repo.admin0_path)
        return 0
    try:
        path = repo.ensure_available()
    except requests.RequestException as exc:
        LOGGER.error("[ERROR] Download of %s failed: %s", repo.download_url, exc)
        return 1
    LOGGER.info("[OK] Natural Earth file downloaded to %s", path)
    return 0


def _dispatch(args: argparse.Namespace) -> int:
    cfg = _load_and_setup(args)
    command = str(args.command)
    try:
        if command == "build":
            return _run_build(cfg)
        if command == "validate":
            return _run_validate(cfg, strict_data_files=bool(args.strict_data_files))
        if command == "sample":
            return _run_sample(cfg, count=args.count, seed=args.seed, output=args.output)
        if command == "project":
            return _run_project(cfg, viewport_json=args.viewport_json)
        if command == "fetch-data":
            return _run_fetch_data(cfg)
    except (LocalityMapError, FileNotFoundError, requests.RequestException) as exc:
        LOGGER.error("[ERROR] %s failed: %s", command, exc)
        return 1
    raise ValueError(f"Unknown command: {command}")


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    return _dispatch(args)


if __name__ == "__main__":
    raise SystemExit(main())
