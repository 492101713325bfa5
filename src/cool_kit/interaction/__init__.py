"""Operator-facing presentation and prompts."""

from .console import AutoConfirm, ConsoleInteraction, ConsoleSink, InteractionHandler

__all__ = ["AutoConfirm", "ConsoleInteraction", "ConsoleSink", "InteractionHandler"]
