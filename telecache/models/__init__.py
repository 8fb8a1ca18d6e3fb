from telecache.models.cache import CachedResponse, CacheStats, RateLimitResult
from telecache.models.enums import RecommendationSource, ServiceType
from telecache.models.usage import (
    CostOptimization,
    Recommendation,
    RecommendationSet,
    ServiceUsage,
    Subscription,
    SubscriptionUtilization,
    UsageRecord,
    UsageSummary,
)

__all__ = [
    "CacheStats",
    "CachedResponse",
    "CostOptimization",
    "RateLimitResult",
    "Recommendation",
    "RecommendationSet",
    "RecommendationSource",
    "ServiceType",
    "ServiceUsage",
    "Subscription",
    "SubscriptionUtilization",
    "UsageRecord",
    "UsageSummary",
]
