"""API routes."""

from ghl_dashboard.api.routes import appointments, health, leads, oauth, proxy

__all__ = ["appointments", "health", "leads", "oauth", "proxy"]
