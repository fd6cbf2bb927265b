"""Raster statistics and percentile thresholds for normalization.

Night-light style rasters are sparse and heavy-tailed: a handful of very
bright pixels sit orders of magnitude above a near-zero mean. For such
rasters (``max > 100`` and ``mean < 1``) the percentile thresholds are
estimated from the mean and standard deviation, capped by a fraction of the
maximum. Every other raster uses linear interpolation between its minimum
and maximum.

Only the 95th percentile feeds the normalization stage; the others are
reported alongside it.

Example:
    >>> from tileserver.services import statistics
    >>> raw = statistics.RawStatistics(min=0, max=500, mean=0.5, std_dev=2)
    >>> statistics.derive_statistics(raw).p95
    5.0
"""

from __future__ import annotations

import dataclasses
import logging
import re

logger = logging.getLogger(__name__)

DEFAULT_MIN = 0.0
DEFAULT_MAX = 255.0
DEFAULT_MEAN = 128.0
DEFAULT_STD_DEV = 50.0

_NUMBER = r"([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)"
_FIELD_PATTERNS: dict[str, re.Pattern[str]] = {
    "min": re.compile(rf"Minimum={_NUMBER}"),
    "max": re.compile(rf"Maximum={_NUMBER}"),
    "mean": re.compile(rf"Mean={_NUMBER}"),
    "std_dev": re.compile(rf"StdDev={_NUMBER}"),
}
_FIELD_DEFAULTS: dict[str, float] = {
    "min": DEFAULT_MIN,
    "max": DEFAULT_MAX,
    "mean": DEFAULT_MEAN,
    "std_dev": DEFAULT_STD_DEV,
}


@dataclasses.dataclass(frozen=True)
class RawStatistics:
    """Band statistics as reported by the raster engine."""

    min: float = DEFAULT_MIN
    max: float = DEFAULT_MAX
    mean: float = DEFAULT_MEAN
    std_dev: float = DEFAULT_STD_DEV


@dataclasses.dataclass(frozen=True)
class RasterStatistics:
    """Raw statistics plus the derived percentile thresholds."""

    min: float
    max: float
    mean: float
    std_dev: float
    p95: float
    p98: float
    p99: float
    p99_9: float

    def as_dict(self) -> dict[str, float]:
        return dataclasses.asdict(self)


def is_heavy_tailed(raw: RawStatistics) -> bool:
    """Whether the tail-aware percentile heuristic applies."""
    return raw.max > 100 and raw.mean < 1


def derive_statistics(raw: RawStatistics) -> RasterStatistics:
    """Derive the 95th, 98th, 99th and 99.9th percentile thresholds.

    Args:
        raw: Minimum, maximum, mean and standard deviation of the raster.

    Returns:
        RasterStatistics with thresholds ordered p95 <= p98 <= p99 <= p99.9
        (for non-negative standard deviations).
    """
    if is_heavy_tailed(raw):
        p95 = min(raw.max * 0.01, raw.mean + 3 * raw.std_dev)
        p98 = min(raw.max * 0.05, raw.mean + 4 * raw.std_dev)
        p99 = min(raw.max * 0.10, raw.mean + 5 * raw.std_dev)
        p99_9 = min(raw.max * 0.20, raw.mean + 6 * raw.std_dev)
    else:
        span = raw.max - raw.min
        p95 = raw.min + span * 0.95
        p98 = raw.min + span * 0.98
        p99 = raw.min + span * 0.99
        p99_9 = raw.min + span * 0.999
    return RasterStatistics(
        min=raw.min,
        max=raw.max,
        mean=raw.mean,
        std_dev=raw.std_dev,
        p95=p95,
        p98=p98,
        p99=p99,
        p99_9=p99_9,
    )


def parse_statistics(text: str) -> RawStatistics:
    """Read band statistics from ``gdalinfo -stats`` output.

    The first occurrence of each of ``Minimum=``, ``Maximum=``, ``Mean=``
    and ``StdDev=`` is used. A field that is missing or unparsable falls
    back to its default (0, 255, 128, 50) with a warning; this never fails.

    Args:
        text: Captured gdalinfo standard output.

    Returns:
        RawStatistics with every field populated.
    """
    values: dict[str, float] = {}
    for name, pattern in _FIELD_PATTERNS.items():
        match = pattern.search(text)
        value: float | None = None
        if match:
            try:
                value = float(match.group(1))
            except ValueError:
                value = None
        if value is None:
            logger.warning(
                "Statistic %s not found in engine output, using %s",
                name,
                _FIELD_DEFAULTS[name],
            )
            value = _FIELD_DEFAULTS[name]
        values[name] = value
    return RawStatistics(**values)
