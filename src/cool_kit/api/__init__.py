"""Client for the managed application's HTTP API."""

from .client import Application, CoolifyClient, Deployment, normalize_base_url, parse_logs

__all__ = ["Application", "CoolifyClient", "Deployment", "normalize_base_url", "parse_logs"]
