"""Human-readable Markdown summary of a resource-level cost report."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from leasecosts.models.base import CostReport


def format_currency(amount: float | str | Decimal) -> str:
    cents = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return f"${cents}"


def render_markdown_report(report: CostReport) -> str:
    lines = [
        "# Cost report",
        f"accountid {report.account_id}",
        "",
        f"## Total cost for period: {format_currency(report.total_cost)}",
        "",
        "Cost by resource breakdown:",
        "| Resource Name | Service | Region | Cost |",
        "|---------------|---------|--------|------|",
    ]
    for item in report.costs_by_resource:
        if Decimal(item.cost) <= 0:
            continue
        name = item.resource_name.replace("|", "\\|").replace("\n", " ")
        service = item.service_name.replace("|", "\\|")
        lines.append(f"| {name} | {service} | {item.region} | {format_currency(item.cost)} |")
    return "\n".join(lines)
