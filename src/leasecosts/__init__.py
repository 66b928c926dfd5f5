"""Cost collection and reporting for terminated sandbox leases."""

__version__ = "0.1.0"
