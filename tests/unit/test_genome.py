"""Tests for genome partitioning."""

import pytest

from varflow.genome import make_windows, read_contig_lengths, window_sort_key, write_windows
from varflow.models import GenomicWindow


def test_windows_cover_contig():
    """A 250 kb contig with 100 kb windows yields three windows."""
    windows = make_windows([("chr1", 250000)], 100000)
    assert [w.region for w in windows] == [
        "chr1:1-100000",
        "chr1:100001-200000",
        "chr1:200001-250000",
    ]


def test_window_count_is_ceiling():
    """Each contig yields ceil(length / window) windows, covering it without overlap."""
    windows = make_windows([("chr1", 150000), ("chr2", 100000), ("chrM", 16569)], 100000)
    per_contig = {}
    for w in windows:
        per_contig.setdefault(w.contig, []).append(w)
    assert {c: len(ws) for c, ws in per_contig.items()} == {"chr1": 2, "chr2": 1, "chrM": 1}
    for contig_windows in per_contig.values():
        assert contig_windows[0].start == 1
        for prev, cur in zip(contig_windows, contig_windows[1:]):
            assert cur.start == prev.end + 1
    assert per_contig["chrM"][0].end == 16569


def test_windows_follow_genome_order():
    """Windows keep contig order of the index."""
    windows = make_windows([("chr2", 10), ("chr1", 10)], 5)
    assert [w.contig for w in windows] == ["chr2", "chr2", "chr1", "chr1"]


@pytest.mark.parametrize("size", [0, -5])
def test_invalid_window_size(size):
    """A non-positive window size is rejected."""
    with pytest.raises(ValueError):
        make_windows([("chr1", 100)], size)


def test_read_contig_lengths(tmp_path):
    """Contig names and lengths come from the first two .fai columns."""
    fai = tmp_path / "genome.fa.fai"
    fai.write_text("chr1\t150000\t6\t60\t61\n1\t500\t152506\t60\t61\n")
    assert read_contig_lengths(fai) == [("chr1", 150000), ("1", 500)]


def test_write_windows(tmp_path):
    """One region per line."""
    out = write_windows(make_windows([("chr1", 15)], 10), tmp_path / "windows.txt")
    assert out.read_text().splitlines() == ["chr1:1-10", "chr1:11-15"]


def test_window_sort_key():
    """Windows sort by contig order, then start."""
    order = ["chr2", "chr1"]
    windows = [
        GenomicWindow("chr1", 1, 10),
        GenomicWindow("chr2", 11, 20),
        GenomicWindow("chr2", 1, 10),
    ]
    ordered = sorted(windows, key=lambda w: window_sort_key(w, order))
    assert [w.region for w in ordered] == ["chr2:1-10", "chr2:11-20", "chr1:1-10"]
