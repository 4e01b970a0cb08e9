"""Pure analysis over Explore results: series, rising entries and spikes."""

from trend_scout.analysis.series import (
    decode_metadata_tag,
    extract_rising,
    extract_series,
    normalize_keyword,
    normalize_timeframe,
    timeframe_key,
)
from trend_scout.analysis.spike import analyze_spike, has_decayed, is_within_new_keyword_window

__all__ = [
    "decode_metadata_tag",
    "extract_rising",
    "extract_series",
    "normalize_keyword",
    "normalize_timeframe",
    "timeframe_key",
    "analyze_spike",
    "has_decayed",
    "is_within_new_keyword_window",
]
