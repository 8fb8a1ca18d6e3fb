"""Tests for telecache.services.recommendations."""

import json
from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from telecache.cache.keys import build_payload_key
from telecache.clients.gemini import GeminiClient, GeminiResponse
from telecache.clients.resilience import SchemaChangeError, TransientAPIError
from telecache.models.enums import RecommendationSource, ServiceType
from telecache.models.usage import Subscription
from telecache.services.recommendations import (
    OPTIMIZATION_PREFIX,
    RECOMMENDATIONS_PREFIX,
    USAGE_PATTERNS_PREFIX,
    RecommendationService,
    build_recommendation_prompt,
    rule_based_recommendations,
)
from tests.factories import make_usage_record


def _records():
    return [
        make_usage_record(amount=20000, usage_date=date(2026, 9, 1), cost=10.0),
        make_usage_record(amount=25000, usage_date=date(2026, 9, 2), cost=12.0),
        make_usage_record(
            service_type=ServiceType.VOICE,
            amount=10,
            unit="minutes",
            usage_date=date(2026, 9, 3),
            cost=20.0,
        ),
    ]


def _gemini(reply: str) -> MagicMock:
    gemini = MagicMock(spec=GeminiClient)
    gemini.generate = AsyncMock(return_value=GeminiResponse(text=reply, model="gemini-pro"))
    return gemini


AI_REPLY = json.dumps(
    {
        "recommendations": [
            {
                "title": "Business fiber 500",
                "service_type": "internet",
                "reason": "Heavy data use",
                "estimated_monthly_savings": 15.5,
            }
        ]
    }
)


class TestSummarizeUsage:
    async def test_aggregates_by_service(self, memoizer):
        service = RecommendationService(memoizer)
        summary = await service.summarize_usage(1, _records())

        assert summary.customer_id == 1
        assert summary.period_days == 30
        assert [s.service_type for s in summary.services] == [ServiceType.DATA, ServiceType.VOICE]
        data = summary.services[0]
        assert data.total == 45000
        assert data.daily_average == 1500
        assert data.peak_day == date(2026, 9, 2)
        assert data.peak_amount == 25000
        assert data.total_cost == 22.0
        assert summary.total_cost == 42.0

    async def test_empty_records(self, memoizer):
        summary = await RecommendationService(memoizer).summarize_usage(1, [])
        assert summary.services == []
        assert summary.total_cost == 0.0

    async def test_memoized_per_input(self, memoizer):
        service = RecommendationService(memoizer)
        first = await service.summarize_usage(1, _records())
        second = await service.summarize_usage(1, _records())
        assert first is second
        assert memoizer.cache.get_stats().sets == 1

    async def test_customer_is_part_of_key(self, memoizer):
        service = RecommendationService(memoizer)
        first = await service.summarize_usage(1, _records())
        second = await service.summarize_usage(2, _records())
        assert first.customer_id == 1
        assert second.customer_id == 2

    async def test_expires_after_usage_ttl(self, memoizer, clock):
        service = RecommendationService(memoizer, usage_ttl_seconds=1800)
        first = await service.summarize_usage(1, _records())
        clock.advance(1801)
        second = await service.summarize_usage(1, _records())
        assert first is not second
        assert first == second

    async def test_stored_under_patterns_prefix(self, memoizer):
        await RecommendationService(memoizer).summarize_usage(1, _records())
        assert all(k.startswith(f"{USAGE_PATTERNS_PREFIX}:") for k in memoizer.cache.keys())

    async def test_invalid_period(self, memoizer):
        with pytest.raises(ValueError, match="period_days"):
            await RecommendationService(memoizer).summarize_usage(1, _records(), period_days=0)


class TestRuleBasedRecommendations:
    async def test_heavy_and_light_usage(self, memoizer):
        summary = await RecommendationService(memoizer).summarize_usage(1, _records())
        recommendations = rule_based_recommendations(summary)

        assert [r.service_type for r in recommendations] == [ServiceType.DATA, ServiceType.VOICE]
        upgrade, downgrade = recommendations
        assert upgrade.title == "Larger data bundle"
        assert upgrade.estimated_monthly_savings is None
        assert downgrade.title == "Downgrade voice plan"
        assert downgrade.estimated_monthly_savings == 20.0

    async def test_moderate_usage_yields_nothing(self, memoizer):
        records = [make_usage_record(amount=300 * 30, cost=5.0)]
        summary = await RecommendationService(memoizer).summarize_usage(1, records)
        assert rule_based_recommendations(summary) == []

    async def test_free_light_usage_not_downgraded(self, memoizer):
        records = [make_usage_record(service_type=ServiceType.SMS, amount=3, unit="messages", cost=0.0)]
        summary = await RecommendationService(memoizer).summarize_usage(1, records)
        assert rule_based_recommendations(summary) == []


class TestRecommendServices:
    async def test_rules_without_gemini(self, memoizer):
        result = await RecommendationService(memoizer).recommend_services(1, _records())
        assert result.source == RecommendationSource.RULES
        assert len(result.recommendations) == 2

    async def test_ai_recommendations(self, memoizer):
        gemini = _gemini(AI_REPLY)
        result = await RecommendationService(memoizer, gemini).recommend_services(1, _records())

        assert result.source == RecommendationSource.AI
        assert result.recommendations[0].title == "Business fiber 500"
        assert result.recommendations[0].service_type == ServiceType.INTERNET
        prompt = gemini.generate.await_args.args[0]
        assert "45000" in prompt

    async def test_use_ai_false_skips_gemini(self, memoizer):
        gemini = _gemini(AI_REPLY)
        result = await RecommendationService(memoizer, gemini).recommend_services(
            1, _records(), use_ai=False
        )
        assert result.source == RecommendationSource.RULES
        gemini.generate.assert_not_awaited()

    async def test_memoized_within_ttl(self, memoizer):
        gemini = _gemini(AI_REPLY)
        service = RecommendationService(memoizer, gemini)
        first = await service.recommend_services(1, _records())
        second = await service.recommend_services(1, _records())
        assert first == second
        assert gemini.generate.await_count == 1

    async def test_recomputed_after_ttl(self, memoizer, clock):
        gemini = _gemini(AI_REPLY)
        service = RecommendationService(memoizer, gemini, recommendation_ttl_seconds=3600)
        await service.recommend_services(1, _records())
        clock.advance(3601)
        await service.recommend_services(1, _records())
        assert gemini.generate.await_count == 2

    async def test_ai_failure_propagates_and_is_not_cached(self, memoizer):
        gemini = _gemini(AI_REPLY)
        gemini.generate.side_effect = [TransientAPIError("AI service unavailable"), gemini.generate.return_value]
        service = RecommendationService(memoizer, gemini)

        with pytest.raises(TransientAPIError):
            await service.recommend_services(1, _records())
        result = await service.recommend_services(1, _records())
        assert result.source == RecommendationSource.AI
        assert gemini.generate.await_count == 2

    @pytest.mark.parametrize(
        "reply",
        [
            "I cannot help with that.",
            '{"recommendations": "none"}',
            '{"recommendations": [{"service_type": "data"}]}',
        ],
    )
    async def test_malformed_ai_reply(self, memoizer, reply):
        service = RecommendationService(memoizer, _gemini(reply))
        with pytest.raises(SchemaChangeError):
            await service.recommend_services(1, _records())
        summary = await service.summarize_usage(1, _records())
        key = build_payload_key(
            RECOMMENDATIONS_PREFIX,
            {"customer_id": 1, "summary": summary.model_dump(mode="json"), "use_ai": True},
        )
        assert not memoizer.cache.has(key)


class TestPrompt:
    async def test_prompt_lists_usage_and_service_types(self, memoizer):
        summary = await RecommendationService(memoizer).summarize_usage(1, _records(), period_days=7)
        prompt = build_recommendation_prompt(summary)
        assert "last 7 days" in prompt
        assert '"customer_id": 1' in prompt
        for service_type in ServiceType:
            assert service_type.value in prompt


def _subscriptions():
    return [
        Subscription(
            subscription_id=1,
            service_type=ServiceType.DATA,
            service_name="Data 50GB",
            monthly_cost=30.0,
            monthly_allowance=50000,
        ),
        Subscription(
            subscription_id=2,
            service_type=ServiceType.VOICE,
            service_name="Voice 500",
            monthly_cost=20.0,
            monthly_allowance=500,
        ),
        Subscription(
            subscription_id=3,
            service_type=ServiceType.DATA,
            service_name="Data backup 10GB",
            monthly_cost=10.0,
            monthly_allowance=10000,
        ),
    ]


class TestOptimizeCosts:
    async def test_utilization_per_subscription(self, memoizer):
        report = await RecommendationService(memoizer).optimize_costs(
            1, _subscriptions(), _records()
        )
        assert [u.subscription_id for u in report.utilization] == [1, 2, 3]
        assert [u.utilization_percent for u in report.utilization] == [90.0, 2.0, 450.0]
        assert report.utilization[0].monthly_usage == 45000

    async def test_downgrade_and_consolidation(self, memoizer):
        report = await RecommendationService(memoizer).optimize_costs(
            1, _subscriptions(), _records()
        )
        downgrade, consolidate = report.recommendations
        assert downgrade.title == "Downgrade Voice 500"
        assert downgrade.estimated_monthly_savings == 19.6
        assert consolidate.title == "Consolidate data subscriptions"
        assert "Data 50GB, Data backup 10GB" in consolidate.reason
        assert "40.00/month" in consolidate.reason
        assert report.total_potential_savings == 19.6

    async def test_usage_scaled_to_a_month(self, memoizer):
        report = await RecommendationService(memoizer).optimize_costs(
            1, _subscriptions()[:1], _records(), period_days=15
        )
        assert report.utilization[0].monthly_usage == 90000
        assert report.utilization[0].utilization_percent == 180.0

    async def test_threshold(self, memoizer):
        report = await RecommendationService(memoizer).optimize_costs(
            1, _subscriptions()[:1], _records(), threshold_percent=95
        )
        assert report.recommendations[0].title == "Downgrade Data 50GB"
        assert report.recommendations[0].estimated_monthly_savings == 3.0

    async def test_without_allowance_or_cost_no_downgrade(self, memoizer):
        subscriptions = [
            Subscription(
                subscription_id=4,
                service_type=ServiceType.SMS,
                service_name="SMS pack",
                monthly_cost=5.0,
            ),
            Subscription(
                subscription_id=5,
                service_type=ServiceType.VOICE,
                service_name="Free voice",
                monthly_cost=0.0,
                monthly_allowance=100,
            ),
        ]
        report = await RecommendationService(memoizer).optimize_costs(1, subscriptions, [])
        assert report.utilization[0].utilization_percent is None
        assert report.utilization[1].utilization_percent == 0.0
        assert report.recommendations == []
        assert report.total_potential_savings == 0.0

    async def test_memoized_per_input(self, memoizer):
        service = RecommendationService(memoizer)
        first = await service.optimize_costs(1, _subscriptions(), _records())
        second = await service.optimize_costs(1, _subscriptions(), _records())
        assert second == first
        await service.optimize_costs(1, _subscriptions(), _records(), threshold_percent=10)
        stats = memoizer.cache.get_stats()
        assert stats.sets == 2
        assert stats.hits == 1

    async def test_stored_under_optimization_prefix(self, memoizer):
        await RecommendationService(memoizer).optimize_costs(7, [], [])
        descriptor = {
            "customer_id": 7,
            "period_days": 30,
            "threshold_percent": 50.0,
            "subscriptions": [],
            "records": [],
        }
        assert memoizer.cache.has(build_payload_key(OPTIMIZATION_PREFIX, descriptor))

    async def test_expires_after_ttl(self, memoizer, clock):
        service = RecommendationService(memoizer, optimization_ttl_seconds=3600)
        await service.optimize_costs(1, _subscriptions(), _records())
        clock.advance(3600)
        await service.optimize_costs(1, _subscriptions(), _records())
        assert memoizer.cache.get_stats().sets == 2

    @pytest.mark.parametrize(
        ("period_days", "threshold"), [(0, 50), (30, 0), (30, 101), (30, -5)]
    )
    async def test_invalid_arguments(self, memoizer, period_days, threshold):
        with pytest.raises(ValueError):
            await RecommendationService(memoizer).optimize_costs(
                1, [], [], period_days=period_days, threshold_percent=threshold
            )
