"""Pondwatch - water-quality alerting and notification dispatch for aquaculture ponds."""

__version__ = "0.1.0"
