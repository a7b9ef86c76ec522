"""Error kinds raised by pipeline stages."""

from __future__ import annotations


class LocalityMapError(Exception):
    """Base class for pipeline failures reported by the CLI driver."""


class DataValidationError(LocalityMapError, ValueError):
    """Raised when an input locality record is malformed or out of range."""

    def __init__(self, message: str, *, row: int | None = None) -> None:
        self.row = row
        if row is not None:
            message = f"Row {row}: {message}"
        super().__init__(message)


class RegionLookupError(LocalityMapError, LookupError):
    """Raised when a region selector matches no Natural Earth unit."""


class GeometryDegenerateError(LocalityMapError, ValueError):
    """Raised for empty or zero-area geometry."""


class ProjectionConfigError(LocalityMapError, ValueError):
    """Raised for unsupported or malformed CRS identifiers."""


class ProjectionDomainError(LocalityMapError, ValueError):
    """Raised when coordinates fall outside the target projection's domain."""


class CrsMismatchError(LocalityMapError, ValueError):
    """Raised when values tagged with different CRS are combined."""
