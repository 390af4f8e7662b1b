"""
Exception hierarchy for the rank histogram pipeline.

Every failure is unrecoverable at the point of detection; each exception carries a
`kind` tag (io, parse, validation, render, internal) so the CLI can report it uniformly.
"""


class HistogramError(Exception):
    """Base exception for rank histogram errors."""

    kind = "error"

    def __str__(self) -> str:
        return f"{self.kind}: {super().__str__()}"


class FileAccessError(HistogramError):
    """Raised when an input or output stream cannot be opened, read or written."""

    kind = "io"


class RecordParseError(HistogramError):
    """Raised when a delimited record is malformed."""

    kind = "parse"


class GeometryParseError(HistogramError):
    """Raised when a geometry string is not WIDTHxHEIGHT with positive integers."""

    kind = "parse"


class DataValidationError(HistogramError):
    """Raised when otherwise well-formed data cannot be used."""

    kind = "validation"


class ConfigurationError(DataValidationError):
    """Raised for invalid configuration values (key index, delimiter)."""

    pass


class ColumnNotFoundError(DataValidationError):
    """Raised when a record has fewer fields than the requested key column."""

    def __init__(self, column: int, field_count: int, line: int = 0) -> None:
        self.column = column
        self.field_count = field_count
        self.line = line
        where = f" on line {line}" if line else ""
        super().__init__(
            f"column {column} not found{where} (record has {field_count} fields)"
        )


class EmptyDatasetError(DataValidationError):
    """Raised when no records were counted."""

    pass


class RenderError(HistogramError):
    """Raised when a chart cannot be drawn or written."""

    kind = "render"


class InvariantError(HistogramError):
    """Raised when an internal pipeline invariant does not hold."""

    kind = "internal"
