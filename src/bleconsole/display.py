"""
Display manager for Rich-based console output.

Values read from or notified by a device are always printed verbatim.
Informational chatter (listings after connect/select, progress messages) is
only printed in interactive mode, so batch runs produce clean output.
"""

import logging
from typing import Any, Optional, Sequence

from rich.columns import Columns
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .core import __version__
from .model import Attribute, GattTree

logger = logging.getLogger(__name__)


class DisplayManager:
    """Manages console output with Rich library."""

    def __init__(self, console: Optional[Console] = None, interactive: bool = True):
        """Initialize display manager.

        Args:
            console: Rich Console instance (creates one if None)
            interactive: False for batch runs with redirected input
        """
        self.console = console or Console()
        self.interactive = interactive

    def print_banner(self) -> None:
        """Print startup banner."""
        panel = Panel(
            f"[bold cyan]BLE Console ver. {__version__}[/bold cyan]\n"
            "[dim]Type 'help' for commands, 'quit' to exit[/dim]",
            expand=False,
        )
        self.console.print(panel)

    def print_error(self, message: str) -> None:
        """Print red error message.

        Args:
            message: Error message text
        """
        self.console.print(f"[red]Error:[/red] {message}", highlight=False)

    def print_info(self, message: str) -> None:
        """Print info message (interactive mode only).

        Args:
            message: Info message text
        """
        if self.interactive:
            self.console.print(message, markup=False, highlight=False)

    def print_value(self, text: str) -> None:
        """Print a rendered characteristic value as-is."""
        self.console.print(text, markup=False, highlight=False, soft_wrap=True)

    def print_notification(self, uuid: str, text: str) -> None:
        if self.interactive:
            self.console.print(
                f"Value changed for {uuid}: {text}", markup=False, highlight=False
            )
        else:
            self.print_value(text)

    def print_devices(self, names: Sequence[str], wide: bool = False) -> None:
        """List device names as ``#NN: name``.

        Args:
            names: Device names in listing order
            wide: Lay the entries out in columns
        """
        entries = [f"#{i:02d}: {name}" for i, name in enumerate(names)]
        if wide and entries:
            self.console.print(Columns(entries, padding=(0, 3)), highlight=False)
            return
        for entry in entries:
            self.console.print(entry, markup=False, highlight=False)

    def print_services(self, services: Sequence[Attribute]) -> None:
        for i, service in enumerate(services):
            self.console.print(f"#{i:02d}: {service.name}", markup=False, highlight=False)

    def print_characteristics(self, characteristics: Sequence[Attribute]) -> None:
        table = self.format_characteristics_table(characteristics)
        self.console.print(table)

    def print_status(self, tree: GattTree) -> None:
        """Display the connection state and the GATT selection.

        Args:
            tree: Current GATT tree model
        """
        device = tree.device
        if device is None:
            self.console.print("No device connected.")
            return
        if not device.is_connected:
            self.console.print(f"Device {device.name} is disconnected.", markup=False)
            return

        self.console.print(f"Device {device.name} is connected.", markup=False)
        if not tree.services:
            return

        self.console.print("Available services:")
        self.print_services(tree.services)
        if tree.selected_service is None:
            return

        self.console.print(
            f"Selected service: {tree.selected_service.name}", markup=False
        )
        if tree.characteristics:
            self.console.print("Available characteristics:")
            self.print_characteristics(tree.characteristics)
            if tree.selected_characteristic is not None:
                self.console.print(
                    f"Selected characteristic: {tree.selected_characteristic.name}",
                    markup=False,
                )

    def print_help(self, commands: list) -> None:
        """Display command reference.

        Args:
            commands: List of Command objects
        """
        table = Table(title="Available Commands", show_header=True)
        table.add_column("Command", style="cyan")
        table.add_column("Aliases", style="magenta")
        table.add_column("Description", style="white")
        table.add_column("Usage", style="yellow")

        for cmd in commands:
            aliases = ", ".join(cmd.aliases) if cmd.aliases else "-"
            table.add_row(cmd.name, aliases, cmd.description, cmd.usage)

        self.console.print(table)
        self.console.print(
            "[dim]<target> is service/characteristic, or a characteristic of the "
            "selected service; names can be given as #NN[/dim]"
        )
        self.console.print(
            "[dim]Keyboard shortcuts: Ctrl+C to interrupt, Ctrl+D to exit[/dim]"
        )

    def clear(self) -> None:
        self.console.clear()

    @staticmethod
    def format_characteristics_table(characteristics: Sequence[Any]) -> Table:
        """Create a borderless table of ``#NN: name`` and property descriptors.

        Args:
            characteristics: Attribute objects in listing order

        Returns:
            Rich Table object
        """
        table = Table(box=None, show_header=False, pad_edge=False)
        table.add_column("Characteristic", no_wrap=True)
        table.add_column("Properties", style="yellow")
        for i, characteristic in enumerate(characteristics):
            table.add_row(f"#{i:02d}: {characteristic.name}", characteristic.descriptor)
        return table
