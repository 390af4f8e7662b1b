#!/usr/bin/env python3
"""
Rank Histogram - count a column's values and plot the counts against their rank.

This module exposes the pipeline as small functional units:
- count_keys() / build_frequency_table()
- build_rank_series()
- axis_upper_bound()
- render_rank_plot() / render_text_plot()
- save_counts() / load_counts()

run_histogram() wires them together from a HistogramParams object; main() is the CLI.
Each unit takes explicit inputs and returns explicit outputs. Failures are raised as
kind-tagged HistogramError subclasses and are never recovered from.
"""

import logging
import math
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

# Select the non-interactive backend before pyplot is imported so rendering works
# in headless environments.
import matplotlib

matplotlib.use("Agg", force=True)
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import plotext as textplt
from matplotlib.ticker import MaxNLocator

# Support both package and script execution modes
try:
    # When run as a package: python -m rankhist.main
    from .errors import (
        ConfigurationError,
        DataValidationError,
        EmptyDatasetError,
        FileAccessError,
        GeometryParseError,
        HistogramError,
        InvariantError,
        RecordParseError,
        RenderError,
    )
    from .record_source import (
        Record,
        RecordSource,
        extract_key,
        open_input,
        resolve_delimiter,
    )
    from .utils import normalize_abs_posix
except ImportError:
    # When run directly: python rankhist/main.py
    from errors import (  # type: ignore
        ConfigurationError,
        DataValidationError,
        EmptyDatasetError,
        FileAccessError,
        GeometryParseError,
        HistogramError,
        InvariantError,
        RecordParseError,
        RenderError,
    )
    from record_source import (  # type: ignore
        Record,
        RecordSource,
        extract_key,
        open_input,
        resolve_delimiter,
    )
    from utils import normalize_abs_posix  # type: ignore

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Destination value that routes raw counts to standard output.
STDOUT_SENTINEL: str = "-"


@dataclass(frozen=True)
class PlotStyle:
    """
    Fixed rendering defaults shared by the raster and text renderers.

    Font sizes are in points; at the default 100 dpi one point is ~1.39 pixels.
    """

    bar_color: str = "#2a71b0"
    background_color: str = "white"
    mesh_color: str = "#b0b0b0"
    mesh_alpha: float = 0.3
    caption_font_size: float = 28.0
    label_font_size: float = 14.0
    axis_desc_font_size: float = 17.0
    font_family: str = "sans-serif"
    dpi: int = 100
    # Fraction of the canvas reserved around the axes (left, bottom, right, top)
    margins: Tuple[float, float, float, float] = (0.1, 0.1, 0.97, 0.9)
    text_width: int = 160
    text_height: int = 80
    # Extra rank cells beyond the data, in tenths (11 -> 10% padding)
    x_padding_tenths: int = 11


@dataclass(frozen=True)
class PlotConfig:
    """Read-only rendering parameters for one raster chart."""

    title: str
    xdesc: str
    ydesc: str
    width: int
    height: int
    destination: Path
    style: PlotStyle = field(default_factory=PlotStyle)


@dataclass
class HistogramParams:
    """
    Parameters for one pipeline run.

    Attributes:
        input_path: Path of the delimited input, or None to read standard input.
        delimiter: Delimiter specifier; an alias (tab, comma, space, semicolon, "\\t")
            or any string whose first byte is used.
        key: 1-indexed column whose values are counted.
        output: Path of the raster image to write.
        no_output: Skip the raster image.
        has_header: Discard the first record.
        textplot: Also draw a text chart on standard output.
        save: Raw counts destination; "-" writes to standard output, None disables.
        title: Chart title.
        geometry: Raster size as WIDTHxHEIGHT pixels.
        xdesc: x-axis label.
        ydesc: y-axis label.
    """

    input_path: Optional[Path] = None
    delimiter: str = "\\t"
    key: int = 1
    output: Path = Path("histogram.png")
    no_output: bool = False
    has_header: bool = False
    textplot: bool = False
    save: Optional[str] = None
    title: str = "Counts distribution"
    geometry: str = "1280x960"
    xdesc: str = "Rank"
    ydesc: str = "Counts"


class FrequencyTable(Mapping):
    """
    Immutable mapping of key value -> occurrence count (always >= 1).

    Iteration yields keys in sorted order so every consumer sees the same sequence
    for the same input, independent of first-seen order.
    """

    def __init__(self, counts: Dict[str, int]) -> None:
        bad = {k: v for k, v in counts.items() if int(v) < 1}
        if bad:
            raise DataValidationError(f"counts must be >= 1, got: {bad}")
        # keys are written one per line by save_counts
        broken = [k for k in counts if "\n" in k or "\r" in k]
        if broken:
            raise DataValidationError(f"keys must not contain line breaks: {broken}")
        self._counts: Dict[str, int] = {k: int(v) for k, v in counts.items()}

    def __getitem__(self, key: str) -> int:
        return self._counts[key]

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._counts))

    def __len__(self) -> int:
        return len(self._counts)

    def __repr__(self) -> str:
        return f"FrequencyTable({dict(self.items())!r})"

    def total(self) -> int:
        """Number of records that were counted."""
        return sum(self._counts.values())

    def to_frame(self) -> pd.DataFrame:
        """
        Return a (count, key) DataFrame ordered by ascending count, ties by key.
        """
        df = pd.DataFrame(
            {
                "count": pd.Series(list(self._counts.values()), dtype="int64"),
                "key": pd.Series(list(self._counts.keys()), dtype="object"),
            }
        )
        return df.sort_values(["count", "key"], ignore_index=True)


@dataclass
class HistogramOutputs:
    table: FrequencyTable
    rank_series: np.ndarray
    axis_bound: int
    image_path: Optional[Path] = None


# -------------------------
# Aggregation and ranking
# -------------------------
def count_keys(records: Iterable[Record], column: int) -> FrequencyTable:
    """
    Tally the value of the 1-indexed `column` over every record.

    A record lacking the column aborts the count. When `records` exposes a
    `line_num` attribute (RecordSource does) it is used in error messages.

    Raises:
        ConfigurationError: if column < 1
        ColumnNotFoundError: if any record is too short
        DataValidationError: if a key contains a line break (a quoted field)
        EmptyDatasetError: if no record was seen
    """
    if column < 1:
        raise ConfigurationError(f"key column must be >= 1, got: {column}")

    counts: Dict[str, int] = {}
    for index, record in enumerate(records, start=1):
        line = getattr(records, "line_num", index)
        key = extract_key(record, column, line)
        if "\n" in key or "\r" in key:
            raise DataValidationError(
                f"key in column {column} on line {line} contains a line break: {key!r}"
            )
        counts[key] = counts.get(key, 0) + 1

    if not counts:
        raise EmptyDatasetError("no data to plot")

    table = FrequencyTable(counts)
    logger.info(
        "Counted %d records into %d distinct keys", table.total(), len(table)
    )
    return table


def build_frequency_table(
    input_path: Optional[Union[str, Path]],
    delimiter: int,
    column: int,
    has_header: bool = False,
) -> FrequencyTable:
    """Read the input (file or stdin) and count its key column."""
    if column < 1:
        raise ConfigurationError(f"key column must be >= 1, got: {column}")
    source_name = "<stdin>" if input_path is None else normalize_abs_posix(input_path)
    logger.info(
        "Reading %s (delimiter=%r, key=%d, header=%s)",
        source_name,
        chr(delimiter),
        column,
        has_header,
    )
    with open_input(input_path) as stream:
        with RecordSource(stream, delimiter, has_header=has_header) as source:
            return count_keys(source, column)


def build_rank_series(table: FrequencyTable) -> np.ndarray:
    """
    Return the table's counts sorted ascending. Reading it back to front gives
    rank 1 (highest count) first. Key identity is discarded.
    """
    values = np.fromiter(table.values(), dtype=np.int64, count=len(table))
    return np.sort(values, kind="stable")


def axis_upper_bound(max_count: int) -> int:
    """
    Upper bound of the count axis: max_count rounded up on a grid of ten
    logarithmic steps per decade, truncated to an integer.

    Raises:
        InvariantError: if max_count < 1
    """
    if max_count < 1:
        raise InvariantError(f"axis bound needs a positive maximum, got: {max_count}")
    bound = int(10 ** (math.ceil(math.log10(max_count) * 10) / 10))
    # float rounding guard; the formula is >= max_count in exact arithmetic
    return max(bound, int(max_count))


def padded_rank_extent(n: int, padding_tenths: int = 11) -> int:
    """ceil(n * padding_tenths / 10) without float rounding."""
    return -(-n * padding_tenths // 10)


# -------------------------
# Configuration helpers
# -------------------------
def parse_geometry(geometry: str) -> Tuple[int, int]:
    """
    Parse "WIDTHxHEIGHT" into positive integers.

    Raises:
        GeometryParseError: unless there is exactly one 'x' and both parts are
            positive decimal integers
    """
    parts = str(geometry).split("x")
    if len(parts) != 2:
        raise GeometryParseError(
            f"geometry must be WIDTHxHEIGHT, got: {geometry!r}"
        )
    dims = []
    for name, part in zip(("width", "height"), parts):
        if not (part.isascii() and part.isdigit()):
            raise GeometryParseError(
                f"geometry {name} is not an integer: {part!r} in {geometry!r}"
            )
        value = int(part)
        if value <= 0:
            raise GeometryParseError(
                f"geometry {name} must be positive, got: {value}"
            )
        dims.append(value)
    return dims[0], dims[1]


def build_plot_config(
    params: HistogramParams, style: Optional[PlotStyle] = None
) -> PlotConfig:
    width, height = parse_geometry(params.geometry)
    return PlotConfig(
        title=params.title,
        xdesc=params.xdesc,
        ydesc=params.ydesc,
        width=width,
        height=height,
        destination=Path(params.output),
        style=style if style is not None else PlotStyle(),
    )


# -------------------------
# Renderers
# -------------------------
def render_rank_plot(
    rank_series: np.ndarray, axis_bound: int, config: PlotConfig
) -> Path:
    """
    Draw the rank histogram as a bar chart and write it to config.destination.

    Bars are read from the ascending series back to front: bar x (0-based) covers
    [x, x+1) with the x-th highest count. The x-axis spans the padded rank extent,
    the y-axis 0..axis_bound, with horizontal gridlines only.

    Returns:
        Path of the written image.

    Raises:
        RenderError: if the figure cannot be built or saved
    """
    style = config.style
    n = len(rank_series)
    if n == 0:
        raise EmptyDatasetError("no data to plot")
    x_dim = padded_rank_extent(n, style.x_padding_tenths)
    descending = np.asarray(rank_series)[::-1]

    fig = None
    try:
        fig, ax = plt.subplots(
            figsize=(config.width / style.dpi, config.height / style.dpi),
            dpi=style.dpi,
        )
        fig.patch.set_facecolor(style.background_color)
        ax.set_facecolor(style.background_color)
        left, bottom, right, top = style.margins
        fig.subplots_adjust(left=left, bottom=bottom, right=right, top=top)

        ax.bar(
            np.arange(n),
            descending,
            width=1.0,
            align="edge",
            color=style.bar_color,
            linewidth=0,
        )
        ax.set_xlim(0, x_dim)
        ax.set_ylim(0, axis_bound)
        ax.xaxis.set_major_locator(MaxNLocator(integer=True))

        ax.set_axisbelow(True)
        ax.yaxis.grid(True, color=style.mesh_color, alpha=style.mesh_alpha)
        ax.xaxis.grid(False)

        ax.set_title(
            config.title,
            fontsize=style.caption_font_size,
            fontfamily=style.font_family,
            parse_math=False,
        )
        ax.set_xlabel(
            config.xdesc,
            fontsize=style.axis_desc_font_size,
            fontfamily=style.font_family,
            parse_math=False,
        )
        ax.set_ylabel(
            config.ydesc,
            fontsize=style.axis_desc_font_size,
            fontfamily=style.font_family,
            parse_math=False,
        )
        ax.tick_params(labelsize=style.label_font_size)

        fig.savefig(
            config.destination, dpi=style.dpi, facecolor=style.background_color
        )
    except (OSError, ValueError, RuntimeError) as e:
        raise RenderError(f"cannot render {config.destination}: {e}") from e
    finally:
        if fig is not None:
            plt.close(fig)

    logger.info(
        "Wrote rank histogram: %s (%dx%d, %d bars, y<=%d)",
        str(config.destination),
        config.width,
        config.height,
        n,
        axis_bound,
    )
    return Path(config.destination)


def build_text_plot(
    rank_series: np.ndarray, width: int, height: int, xmin: float, xmax: float
) -> str:
    """
    Build the rank histogram as a character-cell bar chart and return the canvas.

    Points are (rank, count) with rank 1 for the highest count; the y-range is
    0..axis_upper_bound(max count).
    """
    n = len(rank_series)
    if n == 0:
        raise EmptyDatasetError("no data to plot")
    descending = [int(c) for c in np.asarray(rank_series)[::-1]]
    ranks = list(range(1, n + 1))
    y_dim = axis_upper_bound(descending[0])

    try:
        textplt.clear_figure()
        textplt.plotsize(width, height)
        textplt.theme("clear")
        textplt.bar(ranks, descending, width=1)
        textplt.xlim(xmin, xmax)
        textplt.ylim(0, y_dim)
        return textplt.build()
    except (AttributeError, ValueError, TypeError, IndexError) as e:
        raise RenderError(f"cannot build text plot: {e}") from e


def render_text_plot(
    rank_series: np.ndarray, width: int, height: int, xmin: float, xmax: float
) -> None:
    """Draw the text chart on standard output."""
    canvas = build_text_plot(rank_series, width, height, xmin, xmax)
    try:
        sys.stdout.write(canvas)
        if not canvas.endswith("\n"):
            sys.stdout.write("\n")
        sys.stdout.flush()
    except OSError as e:
        raise RenderError(f"cannot write text plot: {e}") from e


# -------------------------
# Raw counts
# -------------------------
def format_counts(table: FrequencyTable) -> str:
    """Render the table as `<count>\\t<key>` lines, ascending by count."""
    frame = table.to_frame()
    return "".join(
        f"{count}\t{key}\n" for count, key in frame.itertuples(index=False, name=None)
    )


def save_counts(table: FrequencyTable, destination: Union[str, Path]) -> None:
    """
    Write raw counts to `destination`, or to standard output when it is "-".

    Raises:
        FileAccessError: if the destination cannot be written
    """
    text = format_counts(table)
    if str(destination) == STDOUT_SENTINEL:
        try:
            sys.stdout.write(text)
            sys.stdout.flush()
        except OSError as e:
            raise FileAccessError(f"cannot write counts to stdout: {e}") from e
        return

    path = Path(destination)
    try:
        with open(path, "w", encoding="utf-8", newline="\n") as fh:
            fh.write(text)
    except OSError as e:
        raise FileAccessError(f"cannot write counts to {path}: {e}") from e
    logger.info("Saved %d counts to %s", len(table), str(path))


def load_counts(path: Union[str, Path]) -> FrequencyTable:
    """
    Read a file written by save_counts() back into a FrequencyTable.

    Raises:
        FileAccessError: if the file cannot be read
        RecordParseError: on a line that is not `<count>\\t<key>`
        DataValidationError: on a repeated key or a count below 1
    """
    path = Path(path)
    counts: Dict[str, int] = {}
    try:
        with open(path, "r", encoding="utf-8", newline="") as fh:
            for line_no, line in enumerate(fh, start=1):
                if line.endswith("\n"):
                    line = line[:-1]
                parts = line.split("\t", 1)
                if len(parts) != 2:
                    raise RecordParseError(
                        f"{path}:{line_no}: expected <count>\\t<key>, got: {line!r}"
                    )
                count_str, key = parts
                try:
                    count = int(count_str)
                except ValueError as e:
                    raise RecordParseError(
                        f"{path}:{line_no}: count is not an integer: {count_str!r}"
                    ) from e
                if key in counts:
                    raise DataValidationError(
                        f"{path}:{line_no}: duplicate key {key!r}"
                    )
                counts[key] = count
    except OSError as e:
        raise FileAccessError(f"cannot read counts from {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise RecordParseError(f"invalid UTF-8 in {path}: {e}") from e
    return FrequencyTable(counts)


# -------------------------
# Orchestration
# -------------------------
def get_default_params() -> HistogramParams:
    """Build the policy-level default parameters."""
    return HistogramParams()


def run_histogram(
    params: HistogramParams, style: Optional[PlotStyle] = None
) -> HistogramOutputs:
    """
    Run the full pipeline: count, optionally save raw counts, rank, then draw the
    requested charts. Configuration is validated before any input is read.
    """
    if params.key < 1:
        raise ConfigurationError(f"key column must be >= 1, got: {params.key}")
    delimiter = resolve_delimiter(params.delimiter)
    plot_config = build_plot_config(params, style)

    table = build_frequency_table(
        params.input_path, delimiter, params.key, has_header=params.has_header
    )

    if params.save:
        save_counts(table, params.save)

    rank_series = build_rank_series(table)
    axis_bound = axis_upper_bound(int(rank_series[-1]))
    logger.info(
        "Rank series: %d ranks, max count %d, axis bound %d",
        len(rank_series),
        int(rank_series[-1]),
        axis_bound,
    )

    if params.textplot:
        x_dim = padded_rank_extent(
            len(rank_series), plot_config.style.x_padding_tenths
        )
        render_text_plot(
            rank_series,
            plot_config.style.text_width,
            plot_config.style.text_height,
            0.0,
            float(x_dim),
        )

    image_path = None
    if not params.no_output:
        image_path = render_rank_plot(rank_series, axis_bound, plot_config)

    return HistogramOutputs(
        table=table,
        rank_series=rank_series,
        axis_bound=axis_bound,
        image_path=image_path,
    )


# -------------------------
# CLI
# -------------------------
def _build_cli_parser():
    import argparse

    d = get_default_params()
    parser = argparse.ArgumentParser(
        prog="rankhist",
        description="Plot the rank histogram (counts sorted descending) of a column's values.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "input",
        nargs="?",
        default=None,
        help="Delimited input file with one record per line [default: STDIN].",
    )
    parser.add_argument(
        "-d",
        "--delimiter",
        default=d.delimiter,
        help="Column delimiter: tab, comma, space, semicolon, \\t, or a literal character.",
    )
    parser.add_argument(
        "-k", "--key", type=int, default=d.key, help="Key column (1-indexed)."
    )
    parser.add_argument(
        "-o", "--output", default=str(d.output), help="File to save the PNG plot to."
    )
    parser.add_argument(
        "-n",
        "--nooutput",
        action="store_true",
        help="Do not save a PNG plot to a file.",
    )
    parser.add_argument(
        "-H", "--header", action="store_true", help="Input has a header record."
    )
    parser.add_argument(
        "-t",
        "--textplot",
        action="store_true",
        help="Also plot a text chart to STDOUT.",
    )
    parser.add_argument(
        "-s",
        "--save",
        default=None,
        help="Save counts as TSV (<count>\\t<key>); use - for STDOUT.",
    )
    parser.add_argument("-T", "--title", default=d.title, help="Title above the plot.")
    parser.add_argument(
        "-g",
        "--geometry",
        default=d.geometry,
        help="Plot size in pixels as WIDTHxHEIGHT.",
    )
    parser.add_argument("--xdesc", default=d.xdesc, help="x-axis label.")
    parser.add_argument("--ydesc", default=d.ydesc, help="y-axis label.")
    parser.add_argument(
        "--print-defaults",
        action="store_true",
        help="Print default parameter values and exit.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Show full tracebacks for debugging (also RANKHIST_DEBUG=1).",
    )
    return parser


def _args_to_params(args) -> HistogramParams:
    """
    Merge CLI args over defaults and validate them before anything is read.
    """
    d = get_default_params()

    key = getattr(args, "key", None)
    key = d.key if key is None else int(key)
    if key < 1:
        raise ConfigurationError(f"Invalid --key: must be >= 1, got: {key}")

    delimiter = getattr(args, "delimiter", None)
    delimiter = d.delimiter if delimiter is None else delimiter
    resolve_delimiter(delimiter)

    geometry = getattr(args, "geometry", None) or d.geometry
    parse_geometry(geometry)

    input_arg = getattr(args, "input", None)
    input_path = None if input_arg in (None, "-") else Path(input_arg)

    output = getattr(args, "output", None)
    return HistogramParams(
        input_path=input_path,
        delimiter=delimiter,
        key=key,
        output=Path(output) if output else d.output,
        no_output=bool(getattr(args, "nooutput", False)),
        has_header=bool(getattr(args, "header", False)),
        textplot=bool(getattr(args, "textplot", False)),
        save=getattr(args, "save", None) or None,
        title=d.title if getattr(args, "title", None) is None else args.title,
        geometry=geometry,
        xdesc=d.xdesc if getattr(args, "xdesc", None) is None else args.xdesc,
        ydesc=d.ydesc if getattr(args, "ydesc", None) is None else args.ydesc,
    )


def _defaults_payload() -> Dict[str, Any]:
    d = get_default_params()
    style = PlotStyle()
    return {
        "HistogramParams": {
            "input_path": None if d.input_path is None else str(d.input_path),
            "delimiter": d.delimiter,
            "key": d.key,
            "output": str(d.output),
            "no_output": d.no_output,
            "has_header": d.has_header,
            "textplot": d.textplot,
            "save": d.save,
            "title": d.title,
            "geometry": d.geometry,
            "xdesc": d.xdesc,
            "ydesc": d.ydesc,
        },
        "PlotStyle": {
            "bar_color": style.bar_color,
            "dpi": style.dpi,
            "text_width": style.text_width,
            "text_height": style.text_height,
            "x_padding_tenths": style.x_padding_tenths,
        },
    }


def main(argv: Optional[List[str]] = None) -> None:
    """
    CLI entry point. Parses arguments, validates them into HistogramParams, then runs.
    """
    argv = sys.argv[1:] if argv is None else argv
    parser = _build_cli_parser()
    args = parser.parse_args(argv)

    if args.print_defaults:
        import json

        print(json.dumps(_defaults_payload(), indent=2))
        return

    debug_mode = bool(args.debug or os.getenv("RANKHIST_DEBUG", "") == "1")
    if debug_mode:
        logger.setLevel(logging.DEBUG)
        logging.getLogger("rankhist").setLevel(logging.DEBUG)

    try:
        params = _args_to_params(args)
        run_histogram(params)
    except (HistogramError, FileNotFoundError) as e:
        # Concise, user-facing errors for input and configuration problems.
        logger.info("User-facing error: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except Exception as e:
        logger.exception("Unhandled exception during execution")
        if debug_mode:
            import traceback

            traceback.print_exc()
        else:
            print(f"Unexpected error: {e}", file=sys.stderr)
            print(
                "Run with --debug or set RANKHIST_DEBUG=1 to see the full traceback.",
                file=sys.stderr,
            )
        sys.exit(1)


if __name__ == "__main__":
    main()
