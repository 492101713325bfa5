"""Terminal presentation: a rich event sink and confirmation prompts."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm

from ..orchestrator.events import Event, LogEvent, LogLevel, ProgressEvent

logger = logging.getLogger(__name__)

_STYLES = {
    LogLevel.DEBUG: ("dim", "·"),
    LogLevel.INFO: ("cyan", "ℹ"),
    LogLevel.WARNING: ("yellow", "⚠"),
    LogLevel.ERROR: ("bold red", "✗"),
    LogLevel.SUCCESS: ("green", "✓"),
}


class ConsoleSink:
    """Renders bus events on a rich console.

    Progress events print one line per message change; log events are shown
    with a colored icon. Debug lines are hidden unless ``verbose`` is set.
    """

    def __init__(self, console: Optional[Console] = None, *, verbose: bool = False) -> None:
        self.console = console or Console()
        self.verbose = verbose
        self._last_message: Optional[str] = None

    def handle(self, event: Event) -> None:
        if isinstance(event, ProgressEvent):
            self._render_progress(event)
        else:
            self._render_log(event)

    def _render_progress(self, event: ProgressEvent) -> None:
        if event.message == self._last_message:
            return
        self._last_message = event.message
        percent = int(round(event.fraction_complete * 100))
        step = min(event.step_index + 1, event.total_steps)
        self.console.print(
            f"[bold blue][{step}/{event.total_steps}][/] "
            f"[dim]{percent:3d}%[/] {escape(event.message)}"
        )

    def _render_log(self, event: LogEvent) -> None:
        if event.level is LogLevel.DEBUG and not self.verbose:
            return
        style, icon = _STYLES[event.level]
        # step completion messages already carry their own check mark
        message = event.message
        if event.level is LogLevel.SUCCESS and message.startswith("✓"):
            message = message[1:].lstrip()
        self.console.print(f"   [{style}]{icon}[/] {escape(message)}")


class InteractionHandler(Protocol):
    def confirm(self, question: str, default: bool = False) -> bool: ...


class ConsoleInteraction:
    """Asks the operator through rich prompts."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console()

    def confirm(self, question: str, default: bool = False) -> bool:
        try:
            return Confirm.ask(question, default=default, console=self.console)
        except (KeyboardInterrupt, EOFError):
            self.console.print("\n   (cancelled)")
            return False


class AutoConfirm:
    """Non-interactive handler: every confirmation gets the same answer."""

    def __init__(self, answer: bool = True) -> None:
        self.answer = answer

    def confirm(self, question: str, default: bool = False) -> bool:
        logger.info("Auto-answering %r with %s", question, "yes" if self.answer else "no")
        return self.answer
