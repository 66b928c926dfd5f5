"""Billing window, Cost Explorer aggregation and report rendering."""

from leasecosts.billing.cost_explorer import CostExplorerAggregator
from leasecosts.billing.csv_report import generate_csv, generate_service_csv
from leasecosts.billing.date_window import calculate_billing_window
from leasecosts.billing.markdown_report import render_markdown_report

__all__ = [
    "CostExplorerAggregator",
    "calculate_billing_window",
    "generate_csv",
    "generate_service_csv",
    "render_markdown_report",
]
