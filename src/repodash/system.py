import logging
import subprocess
import sys

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm

from .constants import APP_NAME

err_console = Console(stderr=True)
logger = logging.getLogger(APP_NAME)


class SystemStrategy:
    """Platform hook for desktop notifications. The base class drops them."""

    def notify(self, title: str, message: str) -> None:
        """Shows a desktop notification, e.g. after a successful sync.

        Args:
            title (str): The notification title, usually the app name.
            message (str): The notification body text.
        """
        pass


class MacOSStrategy(SystemStrategy):
    """Notifications through AppleScript."""

    def notify(self, title: str, message: str) -> None:
        """Runs `display notification` via `osascript`."""
        # Sanitize quotes to prevent AppleScript syntax errors.
        clean_msg = message.replace('"', "'")
        clean_title = title.replace('"', "'")
        script = f'display notification "{clean_msg}" with title "{clean_title}"'
        try:
            subprocess.run(["osascript", "-e", script], stderr=subprocess.DEVNULL)
        except OSError as e:
            logger.debug(f"Notification failed: {e}")


class LinuxStrategy(SystemStrategy):
    """Notifications through libnotify."""

    def notify(self, title: str, message: str) -> None:
        """Runs `notify-send`; a missing binary is ignored."""
        try:
            subprocess.run(["notify-send", title, message], stderr=subprocess.DEVNULL)
        except FileNotFoundError:
            logger.debug("notify-send not available; notification dropped.")


def get_system() -> SystemStrategy:
    """Picks the notification strategy for the running platform.

    Returns:
        SystemStrategy: MacOSStrategy on darwin, LinuxStrategy on linux, and the
        silent base strategy elsewhere.
    """
    if sys.platform == "darwin":
        return MacOSStrategy()
    elif sys.platform.startswith("linux"):
        return LinuxStrategy()
    else:
        return SystemStrategy()


class ConsolePrompter:
    """Terminal confirmation and alert surfaces for local git actions.

    UI front-ends supply their own objects with the same ``confirm`` and
    ``alert`` methods; this one is the default for console use.
    """

    def __init__(self, console: Console | None = None):
        self.console = console or err_console

    def confirm(self, title: str, message: str) -> bool:
        """Asks a yes/no question. Defaults to No."""
        self.console.print(f"[bold]{title}[/bold]")
        return Confirm.ask(f"   {message}", default=False, console=self.console)

    def alert(self, title: str, message: str) -> None:
        """Shows a blocking error panel."""
        self.console.print(
            Panel(message, title=f"[bold red]{title}[/bold red]", border_style="red")
        )
