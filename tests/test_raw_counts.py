from pathlib import Path

import pytest

from rankhist.errors import DataValidationError, FileAccessError, RecordParseError
from rankhist.main import (
    FrequencyTable,
    count_keys,
    format_counts,
    load_counts,
    save_counts,
)


def test_raw_counts_scenario(tmp_path: Path):
    table = count_keys([["a"], ["a"], ["b"]], 1)
    out = tmp_path / "counts.tsv"
    save_counts(table, out)
    assert out.read_bytes() == b"1\tb\n2\ta\n"


def test_raw_counts_ties_are_ordered_by_key():
    table = FrequencyTable({"q": 2, "c": 1, "a": 1, "x": 5})
    assert format_counts(table) == "1\ta\n1\tc\n2\tq\n5\tx\n"


def test_save_counts_dash_writes_stdout(capsys):
    table = FrequencyTable({"a": 2, "b": 1})
    save_counts(table, "-")
    captured = capsys.readouterr()
    assert captured.out == "1\tb\n2\ta\n"


def test_save_counts_does_not_create_dash_file(tmp_path: Path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    save_counts(FrequencyTable({"a": 1}), "-")
    assert not (tmp_path / "-").exists()


def test_round_trip_recovers_table(tmp_path: Path):
    table = FrequencyTable(
        {"plain": 3, "with space": 1, "comma,inside": 2, "ünïcode": 7, "": 1}
    )
    out = tmp_path / "counts.tsv"
    save_counts(table, out)
    loaded = load_counts(out)
    assert dict(loaded) == dict(table)


def test_round_trip_key_containing_tab(tmp_path: Path):
    table = FrequencyTable({"a\tb": 4})
    out = tmp_path / "counts.tsv"
    save_counts(table, out)
    assert dict(load_counts(out)) == {"a\tb": 4}


def test_save_counts_unwritable_destination(tmp_path: Path):
    with pytest.raises(FileAccessError) as excinfo:
        save_counts(FrequencyTable({"a": 1}), tmp_path / "no_dir" / "counts.tsv")
    assert excinfo.value.kind == "io"


def test_load_counts_rejects_malformed_line(tmp_path: Path):
    path = tmp_path / "bad.tsv"
    path.write_text("1\ta\nnot-a-row\n", encoding="utf-8")
    with pytest.raises(RecordParseError) as excinfo:
        load_counts(path)
    assert ":2:" in str(excinfo.value)


def test_load_counts_rejects_non_integer_count(tmp_path: Path):
    path = tmp_path / "bad.tsv"
    path.write_text("one\ta\n", encoding="utf-8")
    with pytest.raises(RecordParseError):
        load_counts(path)


def test_load_counts_rejects_duplicate_key(tmp_path: Path):
    path = tmp_path / "dup.tsv"
    path.write_text("1\ta\n2\ta\n", encoding="utf-8")
    with pytest.raises(DataValidationError) as excinfo:
        load_counts(path)
    assert "duplicate" in str(excinfo.value)


def test_load_counts_rejects_zero_count(tmp_path: Path):
    path = tmp_path / "zero.tsv"
    path.write_text("0\ta\n", encoding="utf-8")
    with pytest.raises(DataValidationError):
        load_counts(path)


def test_load_counts_missing_file(tmp_path: Path):
    with pytest.raises(FileAccessError):
        load_counts(tmp_path / "missing.tsv")


def test_key_with_line_break_is_rejected_when_counting():
    import io

    from rankhist.record_source import RecordSource

    source = RecordSource(io.BytesIO(b'"a\nb",x\nc,y\n'), ord(","))
    with pytest.raises(DataValidationError) as excinfo:
        count_keys(source, 1)
    assert "line break" in str(excinfo.value)


def test_table_with_line_break_key_cannot_be_built():
    with pytest.raises(DataValidationError):
        FrequencyTable({"a\nb": 1, "c": 1})
    with pytest.raises(DataValidationError):
        FrequencyTable({"a\rb": 1})


def test_quoted_keys_round_trip(tmp_path: Path):
    import io

    from rankhist.record_source import RecordSource

    source = RecordSource(io.BytesIO(b'"a,b",1\n"a,b",2\nc,3\n'), ord(","))
    table = count_keys(source, 1)
    out = tmp_path / "counts.tsv"
    save_counts(table, out)
    assert dict(load_counts(out)) == {"a,b": 2, "c": 1}
