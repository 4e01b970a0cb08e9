"""
Spike detection for keyword interest series.

This is a threshold/windowing heuristic, not a statistical test. A keyword
"spikes" when it was quiet before the recent window (baseline at or below
``baseline_max_allowed``) and reached ``min_spike_value`` inside it. False
positives and negatives are expected; the thresholds are tuned for Google
Trends' 0-100 relative interest scale.
"""

from datetime import datetime, timedelta

from trend_scout.models.tasks import SeriesPoint, SpikeAnalysis, SpikePriority
from trend_scout.utils.time import ensure_utc


def analyze_spike(
    series: list[SeriesPoint],
    now: datetime,
    window_hours: float,
    baseline_max_allowed: float,
    min_spike_value: float,
    hot_window_hours: float,
) -> SpikeAnalysis:
    """
    Classify whether ``series`` shows a new spike.

    Points older than ``now - window_hours`` form the baseline, the rest are
    recent. Failure reasons, checked in order: ``missing_series``,
    ``no_recent_points``, ``baseline_too_high``, ``spike_too_low``.

    Priority is ``24h`` when the first qualifying point lies within
    ``hot_window_hours`` of ``now``, otherwise ``72h``.
    """
    if not series:
        return SpikeAnalysis(qualifies=False, reason="missing_series")

    now = ensure_utc(now)
    window_start = now - timedelta(hours=window_hours)
    hot_window_start = now - timedelta(hours=hot_window_hours)

    baseline = [point for point in series if point.timestamp < window_start]
    recent = [point for point in series if point.timestamp >= window_start]

    if not recent:
        return SpikeAnalysis(qualifies=False, reason="no_recent_points")

    baseline_max = max((point.value for point in baseline), default=0.0)
    if baseline and baseline_max > baseline_max_allowed:
        return SpikeAnalysis(qualifies=False, baseline_max=baseline_max, reason="baseline_too_high")

    recent_max = max(point.value for point in recent)
    if recent_max < min_spike_value:
        return SpikeAnalysis(
            qualifies=False,
            baseline_max=baseline_max,
            recent_max=recent_max,
            reason="spike_too_low",
        )

    significant = [point for point in recent if point.value >= min_spike_value]
    first = significant[0] if significant else recent[0]
    last = significant[-1] if significant else recent[-1]

    return SpikeAnalysis(
        qualifies=True,
        first_seen_at=first.timestamp,
        last_seen_at=last.timestamp,
        priority=SpikePriority.HOT if first.timestamp >= hot_window_start else SpikePriority.RECENT,
        spike_score=round(recent_max, 2),
        baseline_max=baseline_max,
        recent_max=recent_max,
    )


def has_decayed(
    series: list[SeriesPoint],
    now: datetime,
    decay_window_hours: float,
    decay_max_value: float,
) -> bool:
    """Check whether interest has faded back to ``decay_max_value`` or below."""
    if not series:
        return False

    latest = series[-1]
    if latest.value > decay_max_value:
        return False

    window_start = ensure_utc(now) - timedelta(hours=decay_window_hours)
    trailing = [point.value for point in series if point.timestamp >= window_start]
    if not trailing:
        return latest.value <= decay_max_value

    return max(trailing) <= decay_max_value


def is_within_new_keyword_window(
    first_seen: datetime | None,
    now: datetime,
    max_age_hours: float,
) -> bool:
    """
    Check whether a keyword first seen at ``first_seen`` still counts as new.

    Unknown or future first-seen timestamps count as new.
    """
    if first_seen is None:
        return True

    age = ensure_utc(now) - ensure_utc(first_seen)
    if age < timedelta(0):
        return True
    return age <= timedelta(hours=max_age_hours)
