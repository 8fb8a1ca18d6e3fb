"""Usage analysis and service recommendations, memoized per customer and input."""

import json
import logging
from collections import defaultdict
from datetime import date

from pydantic import ValidationError

from telecache.cache.memo import Memoizer
from telecache.clients.gemini import GeminiClient, parse_gemini_response
from telecache.clients.resilience import SchemaChangeError
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

logger = logging.getLogger(__name__)

USAGE_PATTERNS_PREFIX = "patterns"
RECOMMENDATIONS_PREFIX = "recommendations"
OPTIMIZATION_PREFIX = "optimization"

# Daily averages above which a bigger bundle pays off
_HEAVY_USE_PER_DAY: dict[ServiceType, float] = {
    ServiceType.DATA: 1000.0,  # MB
    ServiceType.INTERNET: 5000.0,  # MB
    ServiceType.VOICE: 60.0,  # minutes
    ServiceType.SMS: 50.0,  # messages
}
# Paid services used less than this per day are downgrade candidates
_LIGHT_USE_PER_DAY = 1.0


def _summarize(customer_id: int, records: list[UsageRecord], period_days: int) -> UsageSummary:
    by_type: dict[ServiceType, list[UsageRecord]] = defaultdict(list)
    for record in records:
        by_type[record.service_type].append(record)

    services: list[ServiceUsage] = []
    for service_type in sorted(by_type):
        items = by_type[service_type]
        per_day: dict[date, float] = defaultdict(float)
        for item in items:
            per_day[item.usage_date] += item.amount
        peak_day, peak_amount = max(per_day.items(), key=lambda kv: (kv[1], kv[0]))
        total = sum(item.amount for item in items)
        services.append(
            ServiceUsage(
                service_type=service_type,
                unit=items[0].unit,
                total=total,
                daily_average=total / period_days,
                peak_day=peak_day,
                peak_amount=peak_amount,
                total_cost=round(sum(item.cost for item in items), 2),
            )
        )

    return UsageSummary(
        customer_id=customer_id,
        period_days=period_days,
        services=services,
        total_cost=round(sum(s.total_cost for s in services), 2),
    )


def rule_based_recommendations(summary: UsageSummary) -> list[Recommendation]:
    """Derive bundle upgrades and downgrades from usage averages."""
    recommendations: list[Recommendation] = []
    for usage in summary.services:
        heavy = _HEAVY_USE_PER_DAY.get(usage.service_type)
        if heavy is not None and usage.daily_average > heavy:
            recommendations.append(
                Recommendation(
                    title=f"Larger {usage.service_type.value} bundle",
                    service_type=usage.service_type,
                    reason=(
                        f"Average of {usage.daily_average:.0f} {usage.unit}/day exceeds "
                        f"{heavy:.0f} {usage.unit}/day; a bundle avoids per-unit charges."
                    ),
                )
            )
        elif usage.total_cost > 0 and usage.daily_average < _LIGHT_USE_PER_DAY:
            recommendations.append(
                Recommendation(
                    title=f"Downgrade {usage.service_type.value} plan",
                    service_type=usage.service_type,
                    reason=(
                        f"Only {usage.total:.0f} {usage.unit} used in {summary.period_days} days."
                    ),
                    estimated_monthly_savings=round(
                        usage.total_cost * 30 / summary.period_days, 2
                    ),
                )
            )
    return recommendations


def _optimize_costs(
    customer_id: int,
    subscriptions: list[Subscription],
    records: list[UsageRecord],
    period_days: int,
    threshold_percent: float,
) -> CostOptimization:
    # Usage of a service type counts toward every subscription of that type.
    used: dict[ServiceType, float] = defaultdict(float)
    for record in records:
        used[record.service_type] += record.amount

    utilization: list[SubscriptionUtilization] = []
    recommendations: list[Recommendation] = []
    by_type: dict[ServiceType, list[Subscription]] = defaultdict(list)
    for sub in sorted(subscriptions, key=lambda s: s.subscription_id):
        by_type[sub.service_type].append(sub)
        monthly_usage = used[sub.service_type] * 30 / period_days
        percent = None
        if sub.monthly_allowance is not None:
            percent = round(monthly_usage / sub.monthly_allowance * 100, 1)
        utilization.append(
            SubscriptionUtilization(
                subscription_id=sub.subscription_id,
                service_name=sub.service_name,
                service_type=sub.service_type,
                monthly_cost=sub.monthly_cost,
                monthly_usage=round(monthly_usage, 2),
                utilization_percent=percent,
            )
        )
        if percent is not None and percent < threshold_percent and sub.monthly_cost > 0:
            recommendations.append(
                Recommendation(
                    title=f"Downgrade {sub.service_name}",
                    service_type=sub.service_type,
                    reason=(
                        f"Only {percent:g}% of the monthly allowance is used "
                        f"(threshold {threshold_percent:g}%)."
                    ),
                    estimated_monthly_savings=round(sub.monthly_cost * (1 - percent / 100), 2),
                )
            )

    for service_type, subs in by_type.items():
        if len(subs) > 1:
            names = ", ".join(s.service_name for s in subs)
            combined = sum(s.monthly_cost for s in subs)
            recommendations.append(
                Recommendation(
                    title=f"Consolidate {service_type.value} subscriptions",
                    service_type=service_type,
                    reason=f"{len(subs)} subscriptions ({names}) cost {combined:.2f}/month together.",
                )
            )

    return CostOptimization(
        customer_id=customer_id,
        utilization=utilization,
        recommendations=recommendations,
        total_potential_savings=round(
            sum(r.estimated_monthly_savings or 0.0 for r in recommendations), 2
        ),
    )


def build_recommendation_prompt(summary: UsageSummary) -> str:
    """Prompt asking Gemini for JSON recommendations for one customer."""
    usage = json.dumps(summary.model_dump(mode="json"), sort_keys=True)
    service_types = ", ".join(t.value for t in ServiceType)
    return (
        "You are an advisor for a telecom provider serving small businesses.\n"
        f"Customer usage over the last {summary.period_days} days:\n{usage}\n\n"
        "Suggest up to 3 service changes that lower cost or fit usage better. "
        'Reply with JSON only: {"recommendations": [{"title": str, '
        f'"service_type": one of [{service_types}], "reason": str, '
        '"estimated_monthly_savings": number or null}]}'
    )


def _parse_ai_recommendations(text: str) -> list[Recommendation]:
    data = parse_gemini_response(text, "json")
    if not isinstance(data, dict) or data.get("parse_failed"):
        raise SchemaChangeError("Gemini reply did not contain recommendation JSON")
    items = data.get("recommendations", [])
    if not isinstance(items, list):
        raise SchemaChangeError("Gemini recommendations field is not a list")
    try:
        return [Recommendation.model_validate(item) for item in items]
    except ValidationError as exc:
        raise SchemaChangeError(f"Gemini recommendation has unexpected shape: {exc}") from exc


class RecommendationService:
    """Customer usage analysis, plan recommendations and cost optimization.

    Every operation goes through the memoizer, so repeating a request with the
    same customer and inputs inside the TTL window reuses the earlier result.

    Args:
        memoizer: Memoizer over the recommendations cache.
        gemini: Optional Gemini client; without one only rule-based
            recommendations are produced.
        usage_ttl_seconds: Lifetime of usage summaries.
        recommendation_ttl_seconds: Lifetime of recommendation sets.
        optimization_ttl_seconds: Lifetime of cost optimization reports.
    """

    def __init__(
        self,
        memoizer: Memoizer,
        gemini: GeminiClient | None = None,
        usage_ttl_seconds: float = 1800,
        recommendation_ttl_seconds: float = 3600,
        optimization_ttl_seconds: float = 3600,
    ) -> None:
        self.memoizer = memoizer
        self.gemini = gemini
        self.usage_ttl_seconds = usage_ttl_seconds
        self.recommendation_ttl_seconds = recommendation_ttl_seconds
        self.optimization_ttl_seconds = optimization_ttl_seconds

    async def summarize_usage(
        self, customer_id: int, records: list[UsageRecord], period_days: int = 30
    ) -> UsageSummary:
        """Aggregate *records* per service type.

        Raises:
            ValueError: If *period_days* is not positive.
        """
        if period_days < 1:
            raise ValueError("period_days must be at least 1")
        descriptor = {
            "customer_id": customer_id,
            "period_days": period_days,
            "records": [r.model_dump(mode="json") for r in records],
        }
        return await self.memoizer.get_or_compute(
            USAGE_PATTERNS_PREFIX,
            descriptor,
            self.usage_ttl_seconds,
            lambda: _summarize(customer_id, records, period_days),
        )

    async def recommend_services(
        self,
        customer_id: int,
        records: list[UsageRecord],
        period_days: int = 30,
        use_ai: bool = True,
    ) -> RecommendationSet:
        """Recommend plan changes from usage.

        Uses Gemini when configured and *use_ai* is set, otherwise rules.
        AI failures propagate and are not cached.
        """
        summary = await self.summarize_usage(customer_id, records, period_days)
        use_ai = use_ai and self.gemini is not None
        descriptor = {
            "customer_id": customer_id,
            "summary": summary.model_dump(mode="json"),
            "use_ai": use_ai,
        }

        async def compute() -> RecommendationSet:
            if use_ai:
                reply = await self.gemini.generate(build_recommendation_prompt(summary))  # type: ignore[union-attr]
                return RecommendationSet(
                    customer_id=customer_id,
                    source=RecommendationSource.AI,
                    recommendations=_parse_ai_recommendations(reply.text),
                )
            return RecommendationSet(
                customer_id=customer_id,
                source=RecommendationSource.RULES,
                recommendations=rule_based_recommendations(summary),
            )

        return await self.memoizer.get_or_compute(
            RECOMMENDATIONS_PREFIX, descriptor, self.recommendation_ttl_seconds, compute
        )

    async def optimize_costs(
        self,
        customer_id: int,
        subscriptions: list[Subscription],
        records: list[UsageRecord],
        period_days: int = 30,
        threshold_percent: float = 50.0,
    ) -> CostOptimization:
        """Find under-used and duplicated subscriptions.

        Raises:
            ValueError: If *period_days* is not positive or *threshold_percent*
                is outside (0, 100].
        """
        if period_days < 1:
            raise ValueError("period_days must be at least 1")
        if not 0 < threshold_percent <= 100:
            raise ValueError("threshold_percent must be in (0, 100]")
        descriptor = {
            "customer_id": customer_id,
            "period_days": period_days,
            "threshold_percent": threshold_percent,
            "subscriptions": [s.model_dump(mode="json") for s in subscriptions],
            "records": [r.model_dump(mode="json") for r in records],
        }
        return await self.memoizer.get_or_compute(
            OPTIMIZATION_PREFIX,
            descriptor,
            self.optimization_ttl_seconds,
            lambda: _optimize_costs(
                customer_id, subscriptions, records, period_days, threshold_percent
            ),
        )
