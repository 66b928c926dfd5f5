"""RFC 4180 CSV rendering with spreadsheet formula neutralization.

Rows keep the order of the report; sorting belongs to the aggregator.
Lines are joined with ``\\n`` and the output has no trailing newline.
"""

from __future__ import annotations

from leasecosts.models.base import CostReport, ServiceCostReport

RESOURCE_HEADER = "Resource Name,Service,Region,Cost"
SERVICE_HEADER = "Service,Cost"

# Leading characters that spreadsheet tools evaluate as a formula.
FORMULA_PREFIXES = ("=", "+", "-", "@", "|", "%", "\t")
_QUOTE_TRIGGERS = (",", '"', "\n", "\r")


def neutralize_formula(value: str) -> str:
    """Prefix ``'`` when a cell would otherwise start a formula."""
    if value.startswith(FORMULA_PREFIXES):
        return "'" + value
    return value


def escape_csv_value(value: str) -> str:
    """Neutralize, then quote per RFC 4180 when the value needs it."""
    value = neutralize_formula(value)
    if any(ch in value for ch in _QUOTE_TRIGGERS):
        return '"' + value.replace('"', '""') + '"'
    return value


def generate_csv(report: CostReport) -> str:
    """Render the resource-level report as ``Resource Name,Service,Region,Cost``."""
    lines = [RESOURCE_HEADER]
    for item in report.costs_by_resource:
        lines.append(
            ",".join(
                (
                    escape_csv_value(item.resource_name),
                    escape_csv_value(item.service_name),
                    escape_csv_value(item.region),
                    item.cost,
                )
            )
        )
    return "\n".join(lines)


def generate_service_csv(report: ServiceCostReport) -> str:
    """Render the service-level report as ``Service,Cost`` with two decimals."""
    lines = [SERVICE_HEADER]
    for service in report.costs_by_service:
        lines.append(f"{escape_csv_value(service.service_name)},{service.cost:.2f}")
    return "\n".join(lines)
