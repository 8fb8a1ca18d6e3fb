from datetime import date

from pydantic import BaseModel, ConfigDict, Field

from telecache.models.enums import RecommendationSource, ServiceType


class UsageRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    service_type: ServiceType
    amount: float = Field(ge=0)
    unit: str  # "minutes", "MB", "messages"
    usage_date: date
    cost: float = 0.0


class ServiceUsage(BaseModel):
    service_type: ServiceType
    unit: str
    total: float
    daily_average: float
    peak_day: date | None = None
    peak_amount: float = 0.0
    total_cost: float = 0.0


class UsageSummary(BaseModel):
    customer_id: int
    period_days: int
    services: list[ServiceUsage] = []
    total_cost: float = 0.0


class Recommendation(BaseModel):
    title: str
    service_type: ServiceType = ServiceType.OTHER
    reason: str
    estimated_monthly_savings: float | None = None


class RecommendationSet(BaseModel):
    customer_id: int
    source: RecommendationSource
    recommendations: list[Recommendation] = []


class Subscription(BaseModel):
    """An active service subscription of a customer."""

    subscription_id: int
    service_type: ServiceType
    service_name: str
    monthly_cost: float = Field(ge=0)
    # Included amount per month, in the unit of the matching usage records
    monthly_allowance: float | None = Field(default=None, gt=0)


class SubscriptionUtilization(BaseModel):
    subscription_id: int
    service_name: str
    service_type: ServiceType
    monthly_cost: float
    monthly_usage: float
    utilization_percent: float | None = None


class CostOptimization(BaseModel):
    customer_id: int
    utilization: list[SubscriptionUtilization] = []
    recommendations: list[Recommendation] = []
    total_potential_savings: float = 0.0
