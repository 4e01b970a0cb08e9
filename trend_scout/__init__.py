"""Trend Scout: Google Trends discovery and keyword spike detection."""

__version__ = "0.1.0"
