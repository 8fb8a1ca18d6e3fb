"""Tests for the usage summary and service recommendation tools."""

from unittest.mock import AsyncMock, MagicMock

from fastmcp import Client, FastMCP

from telecache.clients.gemini import GeminiClient
from telecache.clients.resilience import CircuitOpenError
from telecache.services.recommendations import RecommendationService
from telecache.tools.recommendations import register_recommendation_tools

# ── Helpers ──────────────────────────────────────────────────────────────

USAGE = [
    {"service_type": "data", "amount": 20000, "unit": "MB", "usage_date": "2026-09-01", "cost": 10},
    {"service_type": "data", "amount": 25000, "unit": "MB", "usage_date": "2026-09-02", "cost": 12},
    {"service_type": "voice", "amount": 10, "unit": "minutes", "usage_date": "2026-09-03", "cost": 20},
]


def _server(service: RecommendationService) -> FastMCP:
    test_mcp = FastMCP("test")
    register_recommendation_tools(test_mcp, service)
    return test_mcp


class TestRegisterRecommendationTools:
    def test_registration_succeeds(self, memoizer):
        register_recommendation_tools(FastMCP("test"), RecommendationService(memoizer))


class TestUsageSummary:
    async def test_summary(self, memoizer):
        async with Client(_server(RecommendationService(memoizer))) as client:
            result = await client.call_tool("usage_summary", {"customer_id": 7, "usage": USAGE})
        text = str(result)
        assert "Usage for customer 7 (last 30 days)" in text
        assert "data: 45000 MB (1500.0/day, peak 25000 on 2026-09-02), cost 22.00" in text
        assert "Total cost: 42.00" in text

    async def test_no_usage(self, memoizer):
        async with Client(_server(RecommendationService(memoizer))) as client:
            result = await client.call_tool("usage_summary", {"customer_id": 7, "usage": []})
        assert "No usage recorded for customer 7" in str(result)

    async def test_invalid_period(self, memoizer):
        async with Client(_server(RecommendationService(memoizer))) as client:
            result = await client.call_tool(
                "usage_summary", {"customer_id": 7, "usage": USAGE, "period_days": 0}
            )
        assert "Invalid input" in str(result)

    async def test_repeated_call_uses_cache(self, memoizer):
        async with Client(_server(RecommendationService(memoizer))) as client:
            await client.call_tool("usage_summary", {"customer_id": 7, "usage": USAGE})
            await client.call_tool("usage_summary", {"customer_id": 7, "usage": USAGE})
        stats = memoizer.cache.get_stats()
        assert stats.sets == 1
        assert stats.hits == 1


class TestRecommendServices:
    async def test_rule_based(self, memoizer):
        async with Client(_server(RecommendationService(memoizer))) as client:
            result = await client.call_tool("recommend_services", {"customer_id": 7, "usage": USAGE})
        text = str(result)
        assert "Recommendations for customer 7 (rules)" in text
        assert "1. Larger data bundle" in text
        assert "2. Downgrade voice plan (saves ~20.00/month)" in text

    async def test_nothing_to_recommend(self, memoizer):
        usage = [{"service_type": "data", "amount": 9000, "unit": "MB", "usage_date": "2026-09-01"}]
        async with Client(_server(RecommendationService(memoizer))) as client:
            result = await client.call_tool("recommend_services", {"customer_id": 7, "usage": usage})
        assert "No changes recommended for customer 7" in str(result)

    async def test_ai_unavailable_message(self, memoizer):
        gemini = MagicMock(spec=GeminiClient)
        gemini.generate = AsyncMock(side_effect=CircuitOpenError("Circuit 'gemini' is open"))
        async with Client(_server(RecommendationService(memoizer, gemini))) as client:
            result = await client.call_tool("recommend_services", {"customer_id": 7, "usage": USAGE})
        text = str(result)
        assert "the recommendation service is temporarily unavailable" in text
        assert memoizer.cache.get_stats().sets == 1  # only the usage summary


SUBSCRIPTIONS = [
    {
        "subscription_id": 1,
        "service_type": "data",
        "service_name": "Data 50GB",
        "monthly_cost": 30,
        "monthly_allowance": 50000,
    },
    {
        "subscription_id": 2,
        "service_type": "voice",
        "service_name": "Voice 500",
        "monthly_cost": 20,
        "monthly_allowance": 500,
    },
]


class TestOptimizeCosts:
    async def test_report(self, memoizer):
        async with Client(_server(RecommendationService(memoizer))) as client:
            result = await client.call_tool(
                "optimize_costs",
                {"customer_id": 7, "subscriptions": SUBSCRIPTIONS, "usage": USAGE},
            )
        text = str(result)
        assert "Cost review for customer 7" in text
        assert "#1 Data 50GB: 90% of allowance, 30.00/month" in text
        assert "1. Downgrade Voice 500" in text
        assert "Potential savings: 19.60/month" in text

    async def test_no_savings(self, memoizer):
        async with Client(_server(RecommendationService(memoizer))) as client:
            result = await client.call_tool(
                "optimize_costs",
                {"customer_id": 7, "subscriptions": SUBSCRIPTIONS[:1], "usage": USAGE},
            )
        assert "No savings found." in str(result)

    async def test_invalid_threshold(self, memoizer):
        async with Client(_server(RecommendationService(memoizer))) as client:
            result = await client.call_tool(
                "optimize_costs",
                {
                    "customer_id": 7,
                    "subscriptions": SUBSCRIPTIONS,
                    "usage": USAGE,
                    "threshold_percent": 0,
                },
            )
        assert "Invalid input" in str(result)
