"""Local execution for targets running on the current machine."""

from .session import LocalSession

__all__ = ["LocalSession"]
