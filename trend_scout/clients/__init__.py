"""API clients for external services."""

from trend_scout.clients.base import APIError, AuthenticationError, BaseAPIClient, RateLimitError
from trend_scout.clients.dataforseo import DataForSEOClient
from trend_scout.clients.demand_classifier import (
    ClassifierCache,
    DemandAssessment,
    DemandClassifierClient,
    DemandRequest,
    is_tool_demand,
)

__all__ = [
    "APIError",
    "AuthenticationError",
    "BaseAPIClient",
    "RateLimitError",
    "DataForSEOClient",
    "ClassifierCache",
    "DemandAssessment",
    "DemandClassifierClient",
    "DemandRequest",
    "is_tool_demand",
]
