"""Clients for AWS services and the leases API."""
