"""Tests for percentile derivation and gdalinfo statistics parsing."""

from __future__ import annotations

import pytest

from tileserver.services import statistics

GDALINFO_STATS_OUTPUT = """\
Driver: GTiff/GeoTIFF
Files: sample.tif
Size is 400, 200
Band 1 Block=400x5 Type=Float32, ColorInterp=Gray
  Minimum=0.000, Maximum=512.250, Mean=0.431, StdDev=3.875
  NoData Value=-inf
  Metadata:
    STATISTICS_MAXIMUM=512.25
    STATISTICS_MEAN=0.43121
    STATISTICS_MINIMUM=0
    STATISTICS_STDDEV=3.8751
"""


def test_heavy_tailed_percentiles() -> None:
    """max > 100 and mean < 1 uses the capped mean + k*sd heuristic."""
    raw = statistics.RawStatistics(min=0, max=500, mean=0.5, std_dev=2)

    stats = statistics.derive_statistics(raw)

    assert statistics.is_heavy_tailed(raw)
    assert stats.p95 == pytest.approx(5.0)
    assert stats.p98 == pytest.approx(8.5)
    assert stats.p99 == pytest.approx(10.5)
    assert stats.p99_9 == pytest.approx(12.5)
    assert stats.p95 <= stats.p98 <= stats.p99 <= stats.p99_9


def test_heavy_tailed_percentiles_capped_by_max_fraction() -> None:
    raw = statistics.RawStatistics(min=0, max=200, mean=0.9, std_dev=40)

    stats = statistics.derive_statistics(raw)

    assert stats.p95 == pytest.approx(2.0)
    assert stats.p98 == pytest.approx(10.0)
    assert stats.p99 == pytest.approx(20.0)
    assert stats.p99_9 == pytest.approx(40.0)


def test_linear_percentiles() -> None:
    raw = statistics.RawStatistics(min=0, max=200, mean=100, std_dev=30)

    stats = statistics.derive_statistics(raw)

    assert not statistics.is_heavy_tailed(raw)
    assert stats.p95 == pytest.approx(190.0)
    assert stats.p98 == pytest.approx(196.0)
    assert stats.p99 == pytest.approx(198.0)
    assert stats.p99_9 == pytest.approx(199.8)


def test_linear_percentiles_with_offset_minimum() -> None:
    raw = statistics.RawStatistics(min=-10, max=10, mean=0, std_dev=5)
    assert statistics.derive_statistics(raw).p95 == pytest.approx(9.0)


def test_boundary_max_exactly_100_is_linear() -> None:
    raw = statistics.RawStatistics(min=0, max=100, mean=0.2, std_dev=1)
    assert statistics.derive_statistics(raw).p95 == pytest.approx(95.0)


def test_derived_statistics_keep_raw_values() -> None:
    raw = statistics.RawStatistics(min=1, max=9, mean=4, std_dev=2)

    record = statistics.derive_statistics(raw).as_dict()

    assert record["min"] == 1
    assert record["max"] == 9
    assert record["mean"] == 4
    assert record["std_dev"] == 2


def test_parse_statistics_from_gdalinfo() -> None:
    raw = statistics.parse_statistics(GDALINFO_STATS_OUTPUT)

    assert raw == statistics.RawStatistics(
        min=0.0,
        max=512.25,
        mean=0.431,
        std_dev=3.875,
    )


def test_parse_statistics_scientific_notation() -> None:
    raw = statistics.parse_statistics(
        "Minimum=-1.5e-03, Maximum=2.5E+04, Mean=.5, StdDev=1e2",
    )
    assert raw.min == pytest.approx(-0.0015)
    assert raw.max == pytest.approx(25000.0)
    assert raw.mean == pytest.approx(0.5)
    assert raw.std_dev == pytest.approx(100.0)


def test_parse_statistics_defaults_missing_fields(
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Unparsable output never fails; each missing field is defaulted."""
    with caplog.at_level("WARNING", logger="tileserver"):
        raw = statistics.parse_statistics("Minimum=3.0\nno other statistics")

    assert raw == statistics.RawStatistics(
        min=3.0,
        max=255.0,
        mean=128.0,
        std_dev=50.0,
    )
    assert "Statistic max not found" in caplog.text


def test_parse_statistics_empty_output() -> None:
    assert statistics.parse_statistics("") == statistics.RawStatistics()
