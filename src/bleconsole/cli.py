"""
Main console application for exploring BLE GATT peripherals.

Interactive command loop with async support and auto-completion, plus a
batch mode that reads commands from redirected standard input. The process
exit status is the number of errors accumulated over all commands.
"""

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
import threading
from typing import Optional, TextIO

from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import FormattedText
from prompt_toolkit.history import InMemoryHistory
from prompt_toolkit.patch_stdout import patch_stdout

from .codec import FORMAT_NAMES, parse_format
from .commands import COMMANDS, CommandCompleter, get_command
from .controller import GattController
from .core import WRITE_SETTLE_DELAY, __description__, __version__
from .display import DisplayManager
from .errors import NoDeviceConnectedError, TransportFailure
from .session import ReadLog, Session, WaitResult
from .transport import BleakTransport, DeviceWatcher, GattTransport
from .variables import expand

logger = logging.getLogger(__name__)


class BleConsole:
    """Command dispatcher shared by the interactive and batch front ends."""

    def __init__(
        self,
        session: Optional[Session] = None,
        display: Optional[DisplayManager] = None,
        transport: Optional[GattTransport] = None,
        watcher: Optional[DeviceWatcher] = None,
        settle_delay: float = WRITE_SETTLE_DELAY,
    ) -> None:
        """Initialize console with its session, transport and display."""
        self.session = session or Session()
        self.display = display or DisplayManager()
        self.watcher = watcher or DeviceWatcher()
        self.transport = transport or BleakTransport(
            on_disconnect=self._on_device_disconnect
        )
        self.controller = GattController(
            self.transport, self.session, self.display, self.watcher
        )
        self.settle_delay = settle_delay
        self.running = False

        self._command_task: Optional[asyncio.Future] = None
        self._interrupted = False
        self._notify_task: Optional[asyncio.Task] = None
        self._input_wait: Optional[asyncio.Future] = None

    @property
    def exit_code(self) -> int:
        return self.session.exit_code

    async def run(self, scan_time: float = 0) -> int:
        """Run the interactive prompt loop."""
        self.running = True
        self.display.print_banner()

        prompt_session: PromptSession = PromptSession(
            completer=CommandCompleter(
                services=lambda: [s.name for s in self.session.tree.services],
                characteristics=lambda: [
                    c.name for c in self.session.tree.characteristics
                ],
            ),
            history=InMemoryHistory(),
            enable_history_search=True,
        )

        await self.start(install_signal_handler=True, scan_time=scan_time)
        try:
            with patch_stdout():
                while self.running:
                    try:
                        text = await prompt_session.prompt_async(self._get_prompt())
                    except KeyboardInterrupt:
                        self.display.console.print("\nBLE Console is terminated")
                        break

                    if text.strip():
                        await self.execute(text)
        except EOFError:
            # End of input (Ctrl+D)
            pass
        finally:
            await self.shutdown()
        return self.exit_code

    async def run_batch(self, stream: TextIO, scan_time: float = 0) -> int:
        """Execute commands read line by line until EOF or an empty line.

        Lines are read on a daemon thread so an interrupt while waiting for
        input ends the run even if the stream never delivers another line.
        """
        self.running = True
        lines: asyncio.Queue = asyncio.Queue()
        loop = asyncio.get_running_loop()

        def _reader() -> None:
            try:
                for line in iter(stream.readline, ""):
                    loop.call_soon_threadsafe(lines.put_nowait, line)
                loop.call_soon_threadsafe(lines.put_nowait, "")
            except RuntimeError:
                # event loop already closed
                return

        threading.Thread(target=_reader, name="batch-input", daemon=True).start()

        await self.start(install_signal_handler=stream is sys.stdin, scan_time=scan_time)
        try:
            while self.running:
                self._input_wait = asyncio.ensure_future(lines.get())
                try:
                    line = await self._input_wait
                except asyncio.CancelledError:
                    if self.running:
                        raise
                    break
                finally:
                    self._input_wait = None
                if not line.strip():
                    break
                await self.execute(line.rstrip("\r\n"))
        finally:
            await self.shutdown()
        return self.exit_code

    async def start(self, install_signal_handler: bool = False, scan_time: float = 0) -> None:
        """Start device discovery and notification delivery."""
        if install_signal_handler:
            with contextlib.suppress(NotImplementedError, RuntimeError):
                asyncio.get_running_loop().add_signal_handler(
                    signal.SIGINT, self._on_interrupt
                )

        try:
            await self.watcher.start()
        except TransportFailure as e:
            self.display.print_error(str(e))
        if scan_time > 0:
            await asyncio.sleep(scan_time)

        self._notify_task = asyncio.create_task(self._notification_loop())

    async def shutdown(self) -> None:
        self.running = False
        if self._notify_task:
            self._notify_task.cancel()
            try:
                await self._notify_task
            except asyncio.CancelledError:
                pass
            self._notify_task = None

        await self.controller.close_device()
        await self.watcher.stop()
        with contextlib.suppress(NotImplementedError, RuntimeError):
            asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)

    async def execute(self, line: str) -> int:
        """Run one command line and fold its errors into the exit code.

        Args:
            line: Raw command line

        Returns:
            Number of errors produced by this command
        """
        self._interrupted = False
        self._command_task = asyncio.ensure_future(self._dispatch(line))
        try:
            errors = await self._command_task
        except asyncio.CancelledError:
            if not self._interrupted:
                raise
            self.display.print_info("Interrupted")
            errors = 0
        finally:
            self._command_task = None

        self.session.add_errors(errors)
        return errors

    def _get_prompt(self) -> FormattedText:
        """Get dynamic prompt based on connection state.

        Returns:
            FormattedText for prompt_toolkit
        """
        device = self.session.tree.device
        if device is not None and self.controller.is_connected:
            return FormattedText([("class:prompt", f"BLE [{device.name}]: ")])
        return FormattedText([("class:prompt", "BLE: ")])

    async def _dispatch(self, line: str) -> int:
        """Parse and dispatch command.

        Args:
            line: Raw user input text

        Returns:
            Number of errors
        """
        line = line.lstrip(" \t")
        cmd_name, _, args = line.partition(" ")
        cmd_name = cmd_name.lower()
        if not cmd_name:
            return 0

        cmd = get_command(cmd_name)
        if not cmd:
            self.display.print_error('Unknown command. Type "?" for help.')
            return 0

        if self.controller.refresh_status():
            self.display.print_info(f"Device {self.session.tree.device.name} is disconnected.")

        handler = getattr(self, cmd.handler)
        try:
            errors = await handler(args)
        except Exception as e:
            self.display.print_error(f"Command failed: {e}")
            logger.exception("Command exception")
            return 1

        # Give a notification triggered by the write a chance to arrive
        if cmd.name == "write":
            await asyncio.sleep(self.settle_delay)
        return errors

    async def _notification_loop(self) -> None:
        """Background task printing delivered notifications."""
        try:
            async for uuid, text in self.controller.notifications():
                self.display.print_notification(uuid, text)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Notification loop error: {e}")

    def _on_interrupt(self) -> None:
        """Ctrl+C: abandon a wait/delay, else cancel the running command, else quit."""
        if self.session.waiter.cancel():
            return
        if self._command_task is not None and not self._command_task.done():
            self._interrupted = True
            self._command_task.cancel()
            return
        self.display.console.print("\nBLE Console is terminated")
        self.running = False
        if self._input_wait is not None:
            self._input_wait.cancel()

    def _on_device_disconnect(self) -> None:
        """Callback when the transport reports a dropped link."""
        self.display.print_info("Device disconnected")

    # ========== Command Handlers ==========

    async def cmd_help(self, args: str) -> int:
        """Show all available commands."""
        self.display.print_help(COMMANDS)
        return 0

    async def cmd_quit(self, args: str) -> int:
        self.running = False
        return 0

    async def cmd_clear(self, args: str) -> int:
        self.display.clear()
        return 0

    async def cmd_list(self, args: str) -> int:
        """List discovered devices, optionally in wide layout."""
        wide = args.replace("/", "").strip().lower() == "w"
        names = [device.name for device in self.watcher.named_devices()]
        if not names:
            self.display.print_info("No BLE devices discovered yet.")
            return 0
        self.display.print_devices(names, wide=wide)
        return 0

    async def cmd_open(self, args: str) -> int:
        return await self.controller.open_device(args)

    async def cmd_close(self, args: str) -> int:
        return await self.controller.close_device()

    async def cmd_stat(self, args: str) -> int:
        """Show device status and GATT selection."""
        self.display.print_status(self.session.tree)
        if self.controller.subscriptions:
            self.display.print_info(
                f"Subscribed to: {', '.join(self.controller.subscriptions)}"
            )
        return 0

    async def cmd_timeout(self, args: str) -> int:
        args = args.strip()
        if args:
            try:
                self.session.set_timeout(int(args))
            except ValueError:
                pass
        self.display.console.print(
            f"Device connection timeout (sec): {self.session.timeout:g}"
        )
        return 0

    async def cmd_delay(self, args: str) -> int:
        try:
            milliseconds = int(args.strip())
        except ValueError:
            milliseconds = int(self.session.timeout * 1000)
        if await self.controller.delay(milliseconds) is WaitResult.CANCELLED:
            self.display.print_info("Delay cancelled")
        return 0

    async def cmd_format(self, args: str) -> int:
        if args.strip():
            fmt = parse_format(args)
            if fmt is None:
                self.display.print_error(f"Unknown format {args.strip()}")
            else:
                self.session.data_format = fmt
        self.display.console.print(
            f"Current display format: {self.session.data_format.value}"
        )
        return 0

    async def cmd_print(self, args: str) -> int:
        try:
            text = expand(args, self.session.tree.device)
        except NoDeviceConnectedError as e:
            self.display.print_error(str(e))
            return 1
        self.display.print_value(text)
        return 0

    async def cmd_set(self, args: str) -> int:
        return await self.controller.set_service(args)

    async def cmd_read(self, args: str) -> int:
        return await self.controller.read(args)

    async def cmd_write(self, args: str) -> int:
        return await self.controller.write(args)

    async def cmd_wrrr(self, args: str) -> int:
        """Write, retry-read and repeat."""
        parts = args.split(maxsplit=3)
        if len(parts) < 4:
            self.display.print_error(
                "Usage: wrrr <repeats> <retries> <target> <value>"
            )
            return 1
        try:
            repeats, retries = int(parts[0]), int(parts[1])
        except ValueError:
            repeats = retries = -1
        if repeats < 0 or retries < 0:
            self.display.print_error("Repeats and retries must be non-negative integers")
            return 1
        return await self.controller.write_retry_repeat(
            repeats, retries, parts[2], parts[3]
        )

    async def cmd_sub(self, args: str) -> int:
        return await self.controller.subscribe(args)

    async def cmd_unsub(self, args: str) -> int:
        return await self.controller.unsubscribe(args)

    async def cmd_wait(self, args: str) -> int:
        result = await self.controller.wait_for_notification()
        if result is WaitResult.TIMED_OUT:
            self.display.print_info("No notification received")
        return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bleconsole",
        description=__description__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  bleconsole                        # Start interactive console
  bleconsole --format hex           # Start with hexadecimal display format
  bleconsole --scan-timeout 5 < cmds.txt
                                    # Run commands from a file, exit status = error count
        """,
    )
    parser.add_argument(
        "--timeout", type=int, default=None, help="Connection timeout in seconds (1-59)"
    )
    parser.add_argument(
        "--format",
        choices=sorted(FORMAT_NAMES),
        default=None,
        help="Initial display format",
    )
    parser.add_argument(
        "--log-dir", default=".", help="Directory for the retry-read log file"
    )
    parser.add_argument(
        "--scan-timeout",
        type=float,
        default=0.0,
        help="Seconds to scan for devices before accepting commands",
    )
    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="Increase log verbosity"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main() -> None:
    """Entry point for the console application."""
    parser = _build_parser()
    args = parser.parse_args()

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(message)s")

    session = Session(read_log=ReadLog(args.log_dir))
    if args.timeout is not None and not session.set_timeout(args.timeout):
        parser.error("--timeout must be between 1 and 59 seconds")
    if args.format:
        session.data_format = FORMAT_NAMES[args.format]

    interactive = sys.stdin.isatty()
    console = BleConsole(session=session, display=DisplayManager(interactive=interactive))

    async def _main() -> int:
        if interactive:
            return await console.run(scan_time=args.scan_timeout)
        return await console.run_batch(sys.stdin, scan_time=args.scan_timeout)

    try:
        exit_code = asyncio.run(_main())
    except KeyboardInterrupt:
        print("\nInterrupted")
        exit_code = console.exit_code
    sys.exit(min(exit_code, 255))


if __name__ == "__main__":
    main()
