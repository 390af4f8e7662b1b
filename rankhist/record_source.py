#!/usr/bin/env python3
"""
Delimited Record Source
Reads delimiter-separated records from a byte stream and extracts the key column,
with strict parsing and kind-tagged error reporting.
"""

import csv
import io
import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Iterator, List, Optional, Union

try:
    from .errors import (
        ColumnNotFoundError,
        ConfigurationError,
        FileAccessError,
        RecordParseError,
    )
except ImportError:
    from errors import (  # type: ignore
        ColumnNotFoundError,
        ConfigurationError,
        FileAccessError,
        RecordParseError,
    )

logger = logging.getLogger(__name__)

# Named delimiter aliases. Lookup is case-insensitive; any other non-empty string
# resolves to its first byte.
DELIMITER_ALIASES: dict[str, int] = {
    "tab": ord("\t"),
    "\\t": ord("\t"),
    "\t": ord("\t"),
    "comma": ord(","),
    "space": ord(" "),
    "semicolon": ord(";"),
}

# Bytes that can never separate fields within a line.
_FORBIDDEN_DELIMITERS = {ord("\n"), ord("\r")}

# Fields are not length-limited; the csv module caps them at 128 KiB by default.
# field_size_limit takes a C long, which is 32 bits on Windows.
_FIELD_SIZE_LIMIT = min(sys.maxsize, 2**31 - 1)

Record = List[str]


def resolve_delimiter(spec: str) -> int:
    """
    Resolve a delimiter specifier to a single byte value.

    Args:
        spec: alias ("tab", "\\t", "comma", "space", "semicolon") or a literal string
            whose first byte is used.

    Returns:
        int: the delimiter byte (0-255)

    Raises:
        ConfigurationError: if the specifier is empty or resolves to a line terminator
    """
    if spec is None or spec == "":
        raise ConfigurationError("delimiter must not be empty")
    alias = DELIMITER_ALIASES.get(spec.lower())
    if alias is not None:
        return alias
    byte = spec.encode("utf-8")[0]
    if byte in _FORBIDDEN_DELIMITERS:
        raise ConfigurationError(f"delimiter cannot be a line terminator: {spec!r}")
    return byte


def extract_key(record: Record, column: int, line: int = 0) -> str:
    """
    Return the field at the 1-indexed `column` of `record`.

    Raises:
        ConfigurationError: if column < 1
        ColumnNotFoundError: if the record has fewer than `column` fields
    """
    if column < 1:
        raise ConfigurationError(f"key column must be >= 1, got: {column}")
    if len(record) < column:
        raise ColumnNotFoundError(column, len(record), line)
    return record[column - 1]


class RecordSource:
    """
    Iterates the records of a delimited byte stream.

    Fields are split on the raw delimiter byte and decoded as UTF-8 afterwards, so any
    single byte works as a delimiter. Quoting follows standard CSV rules and is parsed
    strictly. Blank lines are not records. The stream is borrowed, never closed.
    """

    def __init__(
        self, stream: BinaryIO, delimiter: int, has_header: bool = False
    ) -> None:
        if not 0 <= delimiter <= 255:
            raise ConfigurationError(f"delimiter must be a single byte, got: {delimiter}")
        self.stream = stream
        self.delimiter = delimiter
        self.has_header = has_header
        self.line_num = 0
        self.records_read = 0

    def _reader(self, text: io.TextIOBase):
        # latin-1 maps every byte to exactly one character
        quoting = csv.QUOTE_NONE if self.delimiter == ord('"') else csv.QUOTE_MINIMAL
        if csv.field_size_limit() < _FIELD_SIZE_LIMIT:
            csv.field_size_limit(_FIELD_SIZE_LIMIT)
        try:
            return csv.reader(
                text, delimiter=chr(self.delimiter), quoting=quoting, strict=True
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"unusable delimiter {chr(self.delimiter)!r}: {e}"
            ) from e

    def _decode(self, row: List[str]) -> Record:
        try:
            return [field.encode("latin-1").decode("utf-8") for field in row]
        except UnicodeDecodeError as e:
            raise RecordParseError(
                f"invalid UTF-8 in record on line {self.line_num}: {e}"
            ) from e

    def __iter__(self) -> Iterator[Record]:
        text = io.TextIOWrapper(self.stream, encoding="latin-1", newline="")
        try:
            reader = self._reader(text)
            skip_header = self.has_header
            try:
                for row in reader:
                    self.line_num = reader.line_num
                    if not row:
                        continue
                    if skip_header:
                        skip_header = False
                        logger.debug("Skipped header record on line %d", self.line_num)
                        continue
                    self.records_read += 1
                    yield self._decode(row)
            except csv.Error as e:
                raise RecordParseError(
                    f"malformed record on line {reader.line_num}: {e}"
                ) from e
            except OSError as e:
                raise FileAccessError(f"error reading input: {e}") from e
        finally:
            try:
                text.detach()
            except ValueError:
                # underlying stream was already closed by its owner
                pass

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        logger.debug("Record source finished after %d records", self.records_read)


@contextmanager
def open_input(path: Optional[Union[str, Path]]) -> Iterator[BinaryIO]:
    """
    Open the input as a byte stream: the file at `path`, or standard input when
    `path` is None or "-".

    Raises:
        FileAccessError: if the file cannot be opened
    """
    if path is None or str(path) == "-":
        yield sys.stdin.buffer
        return
    file_path = Path(path)
    try:
        fh = open(file_path, "rb")
    except OSError as e:
        raise FileAccessError(f"cannot open input {file_path}: {e}") from e
    with fh:
        yield fh
