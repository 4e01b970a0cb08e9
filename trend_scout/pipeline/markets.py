"""Market table and market ranking from Explore map data."""

from typing import Any, NamedTuple

from trend_scout.models.explore import MapItem, iter_items

GLOBAL_LOCALES = {"global", "worldwide"}


class MarketInfo(NamedTuple):
    code: int
    name: str
    language_name: str


MARKETS: dict[str, MarketInfo] = {
    "us": MarketInfo(2840, "United States", "English"),
    "gb": MarketInfo(2826, "United Kingdom", "English"),
    "de": MarketInfo(2276, "Germany", "German"),
    "fr": MarketInfo(2250, "France", "French"),
    "ca": MarketInfo(2124, "Canada", "English"),
    "au": MarketInfo(2036, "Australia", "English"),
    "nz": MarketInfo(2248, "New Zealand", "English"),
    "se": MarketInfo(2608, "Sweden", "English"),
    "sg": MarketInfo(2706, "Singapore", "English"),
    "jp": MarketInfo(2392, "Japan", "Japanese"),
    "kr": MarketInfo(2417, "South Korea", "Korean"),
}

_MARKET_BY_NAME = {info.name.lower(): code for code, info in MARKETS.items()}


def is_global(locale: str | None) -> bool:
    return (locale or "").strip().lower() in GLOBAL_LOCALES


def resolve_market_info(locale: str, fallback: str = "us") -> MarketInfo:
    """Market descriptors for ``locale``, else for ``fallback``, else for the US."""
    return MARKETS.get(locale.strip().lower()) or MARKETS.get(fallback) or MARKETS["us"]


def _normalize_geo_id(value: str | None) -> str | None:
    """``US-CA`` -> ``us``; global ids are ignored."""
    if not value or not value.strip():
        return None
    primary = value.strip().lower().replace("_", "-").split("-")[0]
    if not primary or primary in GLOBAL_LOCALES:
        return None
    return primary


def _normalize_geo_name(value: str | None) -> str | None:
    if not value or not value.strip():
        return None
    name = value.strip().lower()
    if name in GLOBAL_LOCALES:
        return None
    return _MARKET_BY_NAME.get(name, name)


def extract_top_markets(result: Any, limit: int = 3) -> list[str]:
    """Rank markets in a result's map data by interest, highest first."""
    candidates: list[tuple[str, float]] = []
    for item in iter_items(result):
        if not isinstance(item, MapItem):
            continue
        for entry in item.data:
            key = _normalize_geo_id(entry.geo_id) or _normalize_geo_name(entry.geo_name)
            if key:
                candidates.append((key, entry.value or 0.0))

    # Stable sort keeps payload order among equal values
    candidates.sort(key=lambda candidate: candidate[1], reverse=True)

    top: list[str] = []
    for key, _ in candidates:
        if key not in top:
            top.append(key)
        if len(top) >= limit:
            break
    return top


def match_configured_market(result: Any, markets: list[str]) -> tuple[list[str], str | None]:
    """Top-ranked market of ``result`` if it is one of ``markets``."""
    top = extract_top_markets(result, limit=1)
    matched = top[0] if top and top[0] in markets else None
    return top, matched
