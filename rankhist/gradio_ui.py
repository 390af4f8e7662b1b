"""Gradio UI wrapper for the rank histogram pipeline.

Upload a delimited file, pick the key column, and get the PNG chart, the counts
table, a text chart and a downloadable counts TSV.
"""

import logging
import os
import shutil
import time
import traceback
from pathlib import Path
from typing import Optional

# The Matplotlib backend is selected once in rankhist.main at import time.
try:
    from .errors import HistogramError
    from .main import (
        HistogramParams,
        PlotStyle,
        build_text_plot,
        get_default_params,
        padded_rank_extent,
        run_histogram,
    )
    from .utils import ensure_run_dir
except ImportError:
    from errors import HistogramError  # type: ignore
    from main import (  # type: ignore
        HistogramParams,
        PlotStyle,
        build_text_plot,
        get_default_params,
        padded_rank_extent,
        run_histogram,
    )
    from utils import ensure_run_dir  # type: ignore

import gradio as gr
import pandas as pd

logger = logging.getLogger(__name__)

RUN_ROOT = Path("output_gradio")
DELIMITER_CHOICES = ["tab", "comma", "space", "semicolon"]
# Text chart size inside the UI textbox (the CLI uses PlotStyle.text_width/height)
UI_TEXT_WIDTH = 100
UI_TEXT_HEIGHT = 30


def _parse_optional_int(val) -> Optional[int]:
    if val is None:
        return None
    try:
        s = val
        if isinstance(val, str):
            s = val.strip()
            if s == "":
                return None
        # Gradio numbers may arrive as floats
        return int(float(s))
    except (TypeError, ValueError):
        return None


def _uploaded_path(file_obj) -> Optional[str]:
    # gr.File returns a dict with "name"/"tmp_path" in some versions, a str or a tempfile in others
    if file_obj is None:
        return None
    if isinstance(file_obj, dict):
        return file_obj.get("name") or file_obj.get("tmp_path")
    if isinstance(file_obj, str):
        return file_obj
    return getattr(file_obj, "name", None)


def _prune_old_runs(run_root: Path, keep: Optional[int] = None) -> None:
    """
    Keep only the newest `keep` subdirectories under `run_root`.

    `keep` defaults to RANKHIST_GRADIO_RETENTION_KEEP (20); 0 or less disables pruning.
    Timestamp-named directories are ordered by name, anything else by mtime.
    Deletion failures are logged and retried on a later run.
    """
    if keep is None:
        try:
            keep = int(os.getenv("RANKHIST_GRADIO_RETENTION_KEEP", "20"))
        except ValueError:
            keep = 20
    if keep <= 0:
        logger.debug(f"retention keep <=0 ({keep}) -> skipping prune")
        return
    if not run_root.is_dir():
        return

    subdirs = [p for p in run_root.iterdir() if p.is_dir() and not p.is_symlink()]

    def _looks_like_run_ts(name: str) -> bool:
        return (
            len(name) >= 15
            and name[0:8].isdigit()
            and name[8] == "T"
            and name[9:15].isdigit()
        )

    if all(_looks_like_run_ts(p.name) for p in subdirs):
        subdirs.sort(key=lambda p: p.name, reverse=True)
    else:
        subdirs.sort(key=lambda p: p.stat().st_mtime, reverse=True)

    root_resolved = run_root.resolve()
    for d in subdirs[keep:]:
        try:
            if os.path.commonpath([str(root_resolved), str(d.resolve())]) != str(
                root_resolved
            ):
                logger.warning(f"Skipping prune of {d} - resolved outside run_root")
                continue
            shutil.rmtree(d)
            logger.info(f"Pruned old run dir: {d}")
        except OSError as e:
            logger.warning(f"Failed to prune {d}: {e}")


def _run_pipeline(
    uploaded_file_path: Optional[str],
    delimiter: Optional[str],
    key,
    has_header: bool,
    title: Optional[str],
    geometry: Optional[str],
    xdesc: Optional[str],
    ydesc: Optional[str],
    run_root: Path = RUN_ROOT,
):
    """
    Execute the pipeline and return (image_path, counts_frame, text_chart, counts_path, status).
    On failure every artifact is None and status carries the error.
    """
    t0 = time.time()
    logger.info(f"_run_pipeline START - uploaded_file_path={uploaded_file_path!r}")

    if not uploaded_file_path:
        return None, None, "", None, "Error: No input file uploaded."

    d = get_default_params()
    column = _parse_optional_int(key)

    try:
        run_dir = ensure_run_dir(run_root.parent, run_root.name)
        params = HistogramParams(
            input_path=Path(uploaded_file_path).resolve(),
            delimiter=delimiter or d.delimiter,
            key=d.key if column is None else column,
            output=run_dir / "histogram.png",
            no_output=False,
            has_header=bool(has_header),
            textplot=False,
            save=str(run_dir / "counts.tsv"),
            title=title if title else d.title,
            geometry=geometry.strip() if geometry else d.geometry,
            xdesc=xdesc if xdesc else d.xdesc,
            ydesc=ydesc if ydesc else d.ydesc,
        )
        logger.debug(f"Built HistogramParams -> {params}")

        outputs = run_histogram(params)

        style = PlotStyle()
        x_dim = padded_rank_extent(len(outputs.rank_series), style.x_padding_tenths)
        text_chart = build_text_plot(
            outputs.rank_series, UI_TEXT_WIDTH, UI_TEXT_HEIGHT, 0.0, float(x_dim)
        )

        # Highest counts first for display
        frame: pd.DataFrame = outputs.table.to_frame().iloc[::-1].reset_index(
            drop=True
        )
    except HistogramError as e:
        logger.info("User-facing error: %s", e)
        return None, None, "", None, f"Error: {e}"
    except Exception as e:
        tb = traceback.format_exc()
        logger.exception("Unhandled exception in _run_pipeline")
        return None, None, "", None, f"Error running pipeline\n{e}\n{tb}"

    _prune_old_runs(run_root)

    status = (
        f"{outputs.table.total()} records, {len(outputs.table)} distinct keys, "
        f"max count {int(outputs.rank_series[-1])}, axis bound {outputs.axis_bound}"
    )
    logger.info(
        f"_run_pipeline COMPLETE (duration_ms={(time.time() - t0) * 1000:.1f})"
    )
    return str(outputs.image_path), frame, text_chart, params.save, status


def _build_ui():
    d = get_default_params()
    with gr.Blocks() as demo:
        gr.Markdown("### Rank Histogram")
        gr.HTML("""
<style>
  #text_chart textarea {
    font-family: "SF Mono", "Menlo", "Monaco", "Consolas", "Liberation Mono", "Courier New", monospace;
    font-size: 11px;
    line-height: 1.0;
  }
</style>
""")
        with gr.Row():
            file_input = gr.File(label="Upload delimited file")
        with gr.Row():
            delimiter = gr.Dropdown(
                choices=DELIMITER_CHOICES,
                value="tab",
                allow_custom_value=True,
                label="delimiter",
            )
            key = gr.Number(value=d.key, precision=0, label="key column (1-indexed)")
            has_header = gr.Checkbox(value=d.has_header, label="input has header")
        with gr.Row():
            title = gr.Textbox(value=d.title, label="title")
            geometry = gr.Textbox(value=d.geometry, label="geometry (WIDTHxHEIGHT)")
            xdesc = gr.Textbox(value=d.xdesc, label="x-axis label")
            ydesc = gr.Textbox(value=d.ydesc, label="y-axis label")

        run_button = gr.Button("Run")
        status = gr.Textbox(label="Status", interactive=False)
        output_image = gr.Image(label="Rank histogram", type="filepath")
        output_text = gr.Textbox(
            label="Text chart", lines=UI_TEXT_HEIGHT, interactive=False, elem_id="text_chart"
        )
        output_table = gr.Dataframe(label="Counts")
        output_counts = gr.File(label="Download counts TSV")

        def _click(file_obj, delim_v, key_v, header_v, title_v, geom_v, xdesc_v, ydesc_v):
            image, frame, text_chart, counts_path, status_text = _run_pipeline(
                _uploaded_path(file_obj),
                delim_v,
                key_v,
                header_v,
                title_v,
                geom_v,
                xdesc_v,
                ydesc_v,
            )
            return status_text, image, text_chart, frame, counts_path

        run_button.click(
            _click,
            inputs=[file_input, delimiter, key, has_header, title, geometry, xdesc, ydesc],
            outputs=[status, output_image, output_text, output_table, output_counts],
        )

    return demo


if __name__ == "__main__":
    demo = _build_ui()
    demo.launch()
