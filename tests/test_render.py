import types
from pathlib import Path

import matplotlib.image as mpimg
import numpy as np
import pytest
from matplotlib.axes import Axes

from rankhist import main
from rankhist.errors import EmptyDatasetError, RenderError
from rankhist.main import (
    PlotConfig,
    PlotStyle,
    axis_upper_bound,
    build_text_plot,
    render_rank_plot,
    render_text_plot,
)


class CallCounter:
    def __init__(self, result=None):
        self.calls = []
        self.result = result

    def __call__(self, *args, **kwargs):
        self.calls.append({"args": args, "kwargs": kwargs})
        return self.result if self.result is not None else types.SimpleNamespace()


def _config(tmp_path: Path, width=800, height=600, name="histogram.png") -> PlotConfig:
    return PlotConfig(
        title="My title",
        xdesc="Rank of key",
        ydesc="Occurrences",
        width=width,
        height=height,
        destination=tmp_path / name,
    )


def test_raster_written_with_requested_geometry(tmp_path: Path):
    series = np.array([1, 2, 2, 5, 9])
    path = render_rank_plot(series, axis_upper_bound(9), _config(tmp_path))
    assert path.exists()
    assert path.read_bytes()[:8] == b"\x89PNG\r\n\x1a\n"
    image = mpimg.imread(path)
    assert image.shape[:2] == (600, 800)


def test_raster_overwrites_existing_file(tmp_path: Path):
    config = _config(tmp_path)
    config.destination.write_bytes(b"stale")
    render_rank_plot(np.array([3]), 3, config)
    assert config.destination.read_bytes()[:4] == b"\x89PNG"


def test_bars_descending_flush_from_zero(tmp_path: Path, monkeypatch):
    calls = []
    original_bar = Axes.bar

    def recording_bar(self, x, height, *args, **kwargs):
        calls.append((list(x), list(height), kwargs))
        return original_bar(self, x, height, *args, **kwargs)

    monkeypatch.setattr(Axes, "bar", recording_bar)

    figures = []
    original_close = main.plt.close

    def recording_close(fig=None):
        figures.append(fig)
        return original_close(fig)

    monkeypatch.setattr(main.plt, "close", recording_close)

    series = np.array([1, 3, 5])
    render_rank_plot(series, 5, _config(tmp_path))

    assert len(calls) == 1
    xs, heights, kwargs = calls[0]
    assert xs == [0, 1, 2]
    assert heights == [5, 3, 1]
    assert kwargs["width"] == 1.0
    assert kwargs["align"] == "edge"
    assert kwargs["linewidth"] == 0
    assert kwargs["color"] == PlotStyle().bar_color

    ax = figures[0].axes[0]
    # ceil(3 * 1.1) == 4 rank cells
    assert ax.get_xlim() == (0.0, 4.0)
    assert ax.get_ylim() == (0.0, 5.0)
    assert ax.get_title() == "My title"
    assert ax.get_xlabel() == "Rank of key"
    assert ax.get_ylabel() == "Occurrences"
    # horizontal mesh only
    assert any(line.get_visible() for line in ax.get_ygridlines())
    assert not any(line.get_visible() for line in ax.get_xgridlines())


def test_raster_unwritable_destination_is_render_error(tmp_path: Path):
    config = _config(tmp_path, name="missing_dir/histogram.png")
    with pytest.raises(RenderError) as excinfo:
        render_rank_plot(np.array([1, 2]), 2, config)
    assert excinfo.value.kind == "render"


def test_raster_rejects_empty_series(tmp_path: Path):
    with pytest.raises(EmptyDatasetError):
        render_rank_plot(np.array([], dtype=np.int64), 1, _config(tmp_path))


def test_text_plot_feeds_rank_count_pairs(monkeypatch):
    bar = CallCounter()
    xlim = CallCounter()
    ylim = CallCounter()
    size = CallCounter()
    monkeypatch.setattr(main.textplt, "bar", bar)
    monkeypatch.setattr(main.textplt, "xlim", xlim)
    monkeypatch.setattr(main.textplt, "ylim", ylim)
    monkeypatch.setattr(main.textplt, "plotsize", size)
    monkeypatch.setattr(main.textplt, "build", lambda: "CANVAS")

    out = build_text_plot(np.array([1, 3, 11]), 160, 80, 0.0, 4.0)

    assert out == "CANVAS"
    assert list(bar.calls[0]["args"][0]) == [1, 2, 3]
    assert list(bar.calls[0]["args"][1]) == [11, 3, 1]
    assert xlim.calls[0]["args"] == (0.0, 4.0)
    # axis bound of 11 is 12
    assert ylim.calls[0]["args"] == (0, 12)
    assert size.calls[0]["args"] == (160, 80)


def test_text_plot_builds_real_canvas():
    out = build_text_plot(np.array([1, 2, 5]), 60, 20, 0.0, 4.0)
    assert isinstance(out, str)
    assert out.strip()


def test_render_text_plot_writes_stdout(monkeypatch, capsys):
    monkeypatch.setattr(main.textplt, "build", lambda: "CANVAS")
    render_text_plot(np.array([2, 4]), 40, 10, 0.0, 3.0)
    assert capsys.readouterr().out == "CANVAS\n"


def test_text_plot_rejects_empty_series():
    with pytest.raises(EmptyDatasetError):
        build_text_plot(np.array([], dtype=np.int64), 40, 10, 0.0, 1.0)


def test_dollar_signs_in_text_are_drawn_verbatim(tmp_path: Path, monkeypatch):
    figures = []
    original_close = main.plt.close

    def recording_close(fig=None):
        figures.append(fig)
        return original_close(fig)

    monkeypatch.setattr(main.plt, "close", recording_close)

    config = PlotConfig(
        title="cost $a^$ total",
        xdesc="from $5 to $10",
        ydesc="$count$",
        width=400,
        height=300,
        destination=tmp_path / "dollars.png",
    )
    path = render_rank_plot(np.array([1, 2]), 2, config)

    assert path.exists()
    ax = figures[0].axes[0]
    assert ax.get_title() == "cost $a^$ total"
    assert ax.get_xlabel() == "from $5 to $10"
    assert ax.get_ylabel() == "$count$"
    assert ax.title.get_parse_math() is False
    assert ax.xaxis.label.get_parse_math() is False
    assert ax.yaxis.label.get_parse_math() is False


def test_text_backend_missing_api_is_render_error(monkeypatch):
    def missing(*args, **kwargs):
        raise AttributeError("module 'plotext' has no attribute 'clear_figure'")

    monkeypatch.setattr(main.textplt, "clear_figure", missing)
    with pytest.raises(RenderError) as excinfo:
        build_text_plot(np.array([1, 2]), 40, 10, 0.0, 3.0)
    assert excinfo.value.kind == "render"
