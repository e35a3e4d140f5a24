"""
Command definitions and auto-completion for the console.

Defines all available commands with metadata and provides a completer
for prompt_toolkit auto-completion of command names, format names and
GATT addresses.
"""

from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional

from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from .codec import FORMAT_NAMES


@dataclass
class Command:
    """Command definition with metadata."""

    name: str
    aliases: List[str]
    description: str
    usage: str
    handler: str


# Define all available commands
COMMANDS = [
    Command(
        name="help",
        aliases=["?"],
        description="Show all available commands",
        usage="help",
        handler="cmd_help",
    ),
    Command(
        name="quit",
        aliases=["q", "exit"],
        description="Quit the console",
        usage="quit",
        handler="cmd_quit",
    ),
    Command(
        name="clear",
        aliases=["cls", "clr"],
        description="Clear the screen",
        usage="clear",
        handler="cmd_clear",
    ),
    Command(
        name="list",
        aliases=["ls"],
        description="Show discovered BLE devices (w = wide)",
        usage="list [w]",
        handler="cmd_list",
    ),
    Command(
        name="open",
        aliases=[],
        description="Connect to a BLE device",
        usage="open <name>|#NN",
        handler="cmd_open",
    ),
    Command(
        name="close",
        aliases=[],
        description="Disconnect from the current device",
        usage="close",
        handler="cmd_close",
    ),
    Command(
        name="stat",
        aliases=["st"],
        description="Show current device status",
        usage="stat",
        handler="cmd_stat",
    ),
    Command(
        name="timeout",
        aliases=[],
        description="Show/change connection timeout in seconds",
        usage="timeout [sec]",
        handler="cmd_timeout",
    ),
    Command(
        name="delay",
        aliases=[],
        description="Pause for a number of milliseconds",
        usage="delay <msec>",
        handler="cmd_delay",
    ),
    Command(
        name="format",
        aliases=["fmt"],
        description="Show/change display format (ASCII/UTF8/Dec/Hex/Bin)",
        usage="format [name]",
        handler="cmd_format",
    ),
    Command(
        name="print",
        aliases=["p"],
        description="Print text with %name, %mac, %now ... variables",
        usage="print <text>",
        handler="cmd_print",
    ),
    Command(
        name="set",
        aliases=[],
        description="Select current service for read/write",
        usage="set <service>|#NN",
        handler="cmd_set",
    ),
    Command(
        name="read",
        aliases=["r"],
        description="Read a characteristic value",
        usage="read <target>",
        handler="cmd_read",
    ),
    Command(
        name="write",
        aliases=["w"],
        description="Write a value in the current format",
        usage="write <target> <value>",
        handler="cmd_write",
    ),
    Command(
        name="wrrr",
        aliases=[],
        description="Write, then retry reading until non-empty; repeat cycle (0 = forever)",
        usage="wrrr <repeats> <retries> <target> <value>",
        handler="cmd_wrrr",
    ),
    Command(
        name="sub",
        aliases=["subs"],
        description="Subscribe to value changes",
        usage="sub <target>",
        handler="cmd_sub",
    ),
    Command(
        name="unsub",
        aliases=["unsubs"],
        description="Unsubscribe from value changes",
        usage="unsub <target>|all",
        handler="cmd_unsub",
    ),
    Command(
        name="wait",
        aliases=[],
        description="Wait for the next notification (timeout applies)",
        usage="wait",
        handler="cmd_wait",
    ),
]

# Commands whose first argument is a GATT address
_TARGET_COMMANDS = {"read", "r", "write", "w", "sub", "subs", "unsub", "unsubs"}


def get_command(name: str) -> Command | None:
    """Get command by name or alias.

    Args:
        name: Command name or alias

    Returns:
        Command object if found, None otherwise
    """
    for cmd in COMMANDS:
        if cmd.name == name or name in cmd.aliases:
            return cmd
    return None


class CommandCompleter(Completer):
    """Auto-completion for commands and arguments."""

    def __init__(
        self,
        services: Optional[Callable[[], Iterable[str]]] = None,
        characteristics: Optional[Callable[[], Iterable[str]]] = None,
    ) -> None:
        """Initialize completer.

        Args:
            services: Returns current service names
            characteristics: Returns characteristic names of the selected service
        """
        self._command_names = set()
        self._command_aliases = set()
        self._services = services or (lambda: ())
        self._characteristics = characteristics or (lambda: ())

        for cmd in COMMANDS:
            self._command_names.add(cmd.name)
            self._command_aliases.update(cmd.aliases)

    def get_completions(self, document: Document, complete_event) -> Any:  # type: ignore[no-untyped-def]
        """Get completion suggestions for current input.

        Args:
            document: Current input document
            complete_event: Completion event

        Yields:
            Completion objects for matching commands/arguments
        """
        text = document.text_before_cursor.lstrip()
        parts = text.split()

        # If no text yet, suggest nothing (avoid spam)
        if not text:
            return

        # First part: complete command name
        if len(parts) == 1 and not text.endswith(" "):
            partial_cmd = parts[0].lower()
            all_names = self._command_names | self._command_aliases

            for name in sorted(all_names):
                if name.startswith(partial_cmd):
                    yield Completion(
                        name,
                        start_position=-len(partial_cmd),
                        display=name,
                    )
            return

        first_cmd = parts[0].lower()
        partial = "" if text.endswith(" ") else parts[-1]
        arg_index = len(parts) - 1 if partial else len(parts)
        if arg_index != 1:
            return

        if first_cmd in ("format", "fmt"):
            candidates: Iterable[str] = sorted(FORMAT_NAMES)
        elif first_cmd == "set":
            candidates = self._services()
        elif first_cmd in _TARGET_COMMANDS:
            candidates = list(self._characteristics()) + [
                f"{name}/" for name in self._services()
            ]
        else:
            return

        for candidate in candidates:
            if candidate.startswith(partial):
                yield Completion(
                    candidate,
                    start_position=-len(partial),
                    display=candidate,
                )
