"""Locality ingestion from in-memory tuples or delimited text, and CSV export."""

from __future__ import annotations

import logging
import math
import re
from pathlib import Path
from typing import Any, Iterable, Sequence

import pandas as pd

from .errors import DataValidationError
from .models import WGS84, LocalityDataset, LocalityRecord
from .projection import crs_tag, is_geographic

_LOGGER = logging.getLogger("localitymap.localities")

LON_COLUMNS = ("lon", "longitude", "long", "x")
LAT_COLUMNS = ("lat", "latitude", "y")
LABEL_COLUMNS = ("label", "name", "id")

_TOO_MANY_FIELDS = "\x00too-many-fields"
_PARSER_LINE = re.compile(r"line (\d+)")


def _first_existing_column(columns: Iterable[str], candidates: Sequence[str]) -> str | None:
    existing = {col.strip().lower(): col for col in columns}
    for candidate in candidates:
        match = existing.get(candidate.lower())
        if match is not None:
            return match
    return None


def _parse_coordinate(value: Any, field_name: str, *, row: int) -> float:
    if value is None or isinstance(value, bool):
        raise DataValidationError(f"missing or non-numeric {field_name}: {value!r}", row=row)
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise DataValidationError(f"missing {field_name}", row=row)
    try:
        out = float(value)
    except (TypeError, ValueError) as exc:
        raise DataValidationError(f"non-numeric {field_name}: {value!r}", row=row) from exc
    if not math.isfinite(out):
        raise DataValidationError(f"{field_name} must be finite, got {value!r}", row=row)
    return out


def make_record(
    longitude: Any,
    latitude: Any,
    label: Any,
    category: Any,
    *,
    row: int,
) -> LocalityRecord:
    """Validate one geodetic locality."""
    lon = _parse_coordinate(longitude, "longitude", row=row)
    lat = _parse_coordinate(latitude, "latitude", row=row)
    if lon < -180.0 or lon > 180.0:
        raise DataValidationError(f"longitude {lon} outside [-180, 180]", row=row)
    if lat < -90.0 or lat > 90.0:
        raise DataValidationError(f"latitude {lat} outside [-90, 90]", row=row)
    if label is None or not str(label).strip():
        raise DataValidationError("missing label", row=row)
    category_text = "" if category is None else str(category).strip()
    return LocalityRecord(x=lon, y=lat, label=str(label).strip(), category=category_text)


def load_localities(records: Iterable[Sequence[Any]]) -> LocalityDataset:
    """Build a WGS84 dataset from `(longitude, latitude, label, category)` tuples.

    Rows are numbered from 1 in error messages.
    """
    out: list[LocalityRecord] = []
    for idx, item in enumerate(records, start=1):
        if isinstance(item, (str, bytes)) or not isinstance(item, Sequence) or len(item) != 4:
            raise DataValidationError(
                "expected (longitude, latitude, label, category)",
                row=idx,
            )
        lon, lat, label, category = item
        out.append(make_record(lon, lat, label, category, row=idx))
    return _finish(out, source="in-memory records")


def load_localities_csv(
    path: Path,
    *,
    category_column: str | None = None,
    delimiter: str = ",",
) -> LocalityDataset:
    """Load a delimited-text file with a `lon, lat, label, <category>` header.

    Row numbers in errors are file line numbers (the header is line 1). Blank
    lines are skipped; any other row must have exactly as many fields as the
    header.
    """
    if not path.exists():
        raise FileNotFoundError(f"Localities file not found: {path}")
    rows = _read_rows(path, delimiter)
    if not rows or _field_count(rows[0]) == 0:
        raise DataValidationError(f"{path}: missing header line")
    columns = [str(cell).strip() for cell in rows[0][: _field_count(rows[0])]]
    width = len(columns)
    lon_col = _first_existing_column(columns, LON_COLUMNS)
    lat_col = _first_existing_column(columns, LAT_COLUMNS)
    label_col = _first_existing_column(columns, LABEL_COLUMNS)
    if lon_col is None or lat_col is None or label_col is None:
        raise DataValidationError(
            f"{path}: header must name lon, lat and label columns; found {', '.join(columns)}"
        )
    cat_col = _resolve_category_column(
        columns,
        requested=category_column,
        taken=(lon_col, lat_col, label_col),
        path=path,
    )
    lon_idx, lat_idx, label_idx, cat_idx = (
        columns.index(name) for name in (lon_col, lat_col, label_col, cat_col)
    )

    out: list[LocalityRecord] = []
    for line_no, row in enumerate(rows[1:], start=2):
        if isinstance(row[0], str) and row[0] == _TOO_MANY_FIELDS:
            found = row[1] if len(row) > 1 and not pd.isna(row[1]) else "more"
            raise DataValidationError(f"expected {width} fields, found {found}", row=line_no)
        fields = _field_count(row)
        if fields == 0 or (fields == 1 and not str(row[0]).strip()):
            continue
        if fields != width:
            raise DataValidationError(f"expected {width} fields, found {fields}", row=line_no)
        out.append(
            make_record(
                row[lon_idx],
                row[lat_idx],
                row[label_idx],
                row[cat_idx],
                row=line_no,
            )
        )
    return _finish(out, source=str(path))


def _mark_long_row(bad_line: list[str]) -> list[str]:
    return [_TOO_MANY_FIELDS, str(len(bad_line))]


def _read_rows(path: Path, delimiter: str) -> list[list[Any]]:
    """Every physical line as a list of cells; the header stays in row 0.

    Rows shorter than the header are padded with NA, rows longer than it are
    replaced by a `_TOO_MANY_FIELDS` marker carrying the field count.
    """
    try:
        frame = pd.read_csv(
            path,
            sep=delimiter,
            header=None,
            dtype=object,
            keep_default_na=False,
            skipinitialspace=True,
            skip_blank_lines=False,
            engine="python",
            on_bad_lines=_mark_long_row,
        )
    except pd.errors.EmptyDataError as exc:
        raise DataValidationError(f"{path}: file is empty") from exc
    except pd.errors.ParserError as exc:
        match = _PARSER_LINE.search(str(exc))
        raise DataValidationError(
            f"{path}: {exc}".strip(),
            row=int(match.group(1)) if match else None,
        ) from exc
    return frame.to_numpy(dtype=object).tolist()


def _field_count(row: Sequence[Any]) -> int:
    # Padding from the parser is trailing, so present cells form a prefix.
    count = 0
    for cell in row:
        if pd.isna(cell):
            break
        count += 1
    return count


def write_localities_csv(dataset: LocalityDataset, path: Path) -> Path:
    """Write a dataset as CSV; geodetic datasets use lon/lat headers, projected ones x/y."""
    x_name, y_name = ("lon", "lat") if is_geographic(dataset.crs) else ("x", "y")
    frame = pd.DataFrame(
        {
            x_name: dataset.xs,
            y_name: dataset.ys,
            "label": list(dataset.labels),
            "category": [record.category for record in dataset.records],
        },
        columns=[x_name, y_name, "label", "category"],
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(path, index=False)
    _LOGGER.info("Wrote %d localities (%s) to %s", len(dataset), crs_tag(dataset.crs), path)
    return path


def _resolve_category_column(
    columns: Sequence[str],
    *,
    requested: str | None,
    taken: Sequence[str],
    path: Path,
) -> str:
    if requested is not None:
        match = _first_existing_column(columns, [requested])
        if match is None:
            raise DataValidationError(f"{path}: category column '{requested}' not found in header")
        return match
    remaining = [col for col in columns if col not in taken]
    if len(remaining) != 1:
        raise DataValidationError(
            f"{path}: cannot infer category column from {remaining}; set it explicitly"
        )
    return remaining[0]


def _finish(records: list[LocalityRecord], *, source: str) -> LocalityDataset:
    dataset = LocalityDataset(records=tuple(records), crs=WGS84)
    duplicates = dataset.duplicate_labels()
    if duplicates:
        _LOGGER.warning(
            "Repeated locality labels in %s: %s",
            source,
            ", ".join(duplicates),
        )
    _LOGGER.info("Loaded %d localities from %s", len(dataset), source)
    return dataset
