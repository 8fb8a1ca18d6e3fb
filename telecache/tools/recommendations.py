"""MCP tools for usage analysis, plan recommendations and cost review."""

import logging

from fastmcp import FastMCP

from telecache.models.usage import Subscription, UsageRecord
from telecache.services.recommendations import RecommendationService
from telecache.tools.error_messages import safe_tool_wrapper

logger = logging.getLogger(__name__)

_AI_CONTEXT = {"service": "the recommendation service"}


def register_recommendation_tools(mcp: FastMCP, service: RecommendationService) -> None:
    """Register usage and recommendation tools on the MCP server."""

    @mcp.tool
    async def usage_summary(
        customer_id: int, usage: list[UsageRecord], period_days: int = 30
    ) -> str:
        """Summarize a customer's usage per service type.

        Args:
            customer_id: Customer identifier.
            usage: Usage records (service_type, amount, unit, usage_date, cost).
            period_days: Length of the period the records cover.

        Returns:
            Totals, daily averages and peak day per service.
        """

        async def _summary() -> str:
            summary = await service.summarize_usage(customer_id, usage, period_days)
            if not summary.services:
                return f"No usage recorded for customer {customer_id}."
            lines = [f"Usage for customer {customer_id} (last {period_days} days):"]
            for s in summary.services:
                peak = f", peak {s.peak_amount:g} on {s.peak_day}" if s.peak_day else ""
                lines.append(
                    f"  {s.service_type}: {s.total:g} {s.unit} "
                    f"({s.daily_average:.1f}/day{peak}), cost {s.total_cost:.2f}"
                )
            lines.append(f"Total cost: {summary.total_cost:.2f}")
            return "\n".join(lines)

        return await safe_tool_wrapper(_summary, context=_AI_CONTEXT)

    @mcp.tool
    async def recommend_services(
        customer_id: int,
        usage: list[UsageRecord],
        period_days: int = 30,
        use_ai: bool = True,
    ) -> str:
        """Recommend plan changes for a customer based on usage.

        Args:
            customer_id: Customer identifier.
            usage: Usage records for the period.
            period_days: Length of the period the records cover.
            use_ai: Ask Gemini when configured; otherwise rule-based.

        Returns:
            Numbered recommendations with reasons.
        """

        async def _recommend() -> str:
            result = await service.recommend_services(customer_id, usage, period_days, use_ai)
            if not result.recommendations:
                return f"No changes recommended for customer {customer_id}."
            lines = [f"Recommendations for customer {customer_id} ({result.source}):"]
            for i, rec in enumerate(result.recommendations, 1):
                savings = (
                    f" (saves ~{rec.estimated_monthly_savings:.2f}/month)"
                    if rec.estimated_monthly_savings
                    else ""
                )
                lines.append(f"  {i}. {rec.title}{savings}: {rec.reason}")
            return "\n".join(lines)

        return await safe_tool_wrapper(_recommend, context=_AI_CONTEXT)

    @mcp.tool
    async def optimize_costs(
        customer_id: int,
        subscriptions: list[Subscription],
        usage: list[UsageRecord],
        period_days: int = 30,
        threshold_percent: float = 50.0,
    ) -> str:
        """Find subscriptions a customer could downgrade or consolidate.

        Args:
            customer_id: Customer identifier.
            subscriptions: Active subscriptions (subscription_id, service_type,
                service_name, monthly_cost, monthly_allowance).
            usage: Usage records for the period.
            period_days: Length of the period the records cover.
            threshold_percent: Allowance utilization below which a downgrade
                is suggested.

        Returns:
            Utilization per subscription and suggested savings.
        """

        async def _optimize() -> str:
            report = await service.optimize_costs(
                customer_id, subscriptions, usage, period_days, threshold_percent
            )
            lines = [f"Cost review for customer {customer_id}:"]
            for u in report.utilization:
                used = (
                    f"{u.utilization_percent:g}% of allowance"
                    if u.utilization_percent is not None
                    else "no allowance"
                )
                lines.append(
                    f"  #{u.subscription_id} {u.service_name}: {used}, {u.monthly_cost:.2f}/month"
                )
            if not report.recommendations:
                lines.append("No savings found.")
                return "\n".join(lines)
            for i, rec in enumerate(report.recommendations, 1):
                lines.append(f"  {i}. {rec.title}: {rec.reason}")
            lines.append(f"Potential savings: {report.total_potential_savings:.2f}/month")
            return "\n".join(lines)

        return await safe_tool_wrapper(_optimize)
