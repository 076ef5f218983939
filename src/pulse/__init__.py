"""Pulse Insights — AI insight gateway for the Pulse CRM."""

__version__ = "1.0.0"
