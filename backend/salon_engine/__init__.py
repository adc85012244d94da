"""Booking scheduling and payment reconciliation engine for salon operations."""

__version__ = "0.1.0"
