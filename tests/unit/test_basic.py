"""Basic functionality test for console components without a device."""

import asyncio
import io
import threading

import pytest
from prompt_toolkit.document import Document

from bleconsole.cli import BleConsole
from bleconsole.codec import DataFormat
from bleconsole.commands import COMMANDS, CommandCompleter, get_command

from conftest import LEVEL


@pytest.fixture
def console(session, display, transport, watcher) -> BleConsole:
    return BleConsole(
        session=session,
        display=display,
        transport=transport,
        watcher=watcher,
        settle_delay=0,
    )


def _completions(completer, text):
    return [c.text for c in completer.get_completions(Document(text), None)]


def test_commands():
    """Test command definitions."""
    for name in ("?", "q", "exit", "cls", "clr", "ls", "st", "fmt", "p", "r", "w", "subs", "unsubs"):
        assert get_command(name) is not None, name
    assert get_command("wrrr").handler == "cmd_wrrr"
    assert get_command("nonexistent") is None
    assert all(hasattr(BleConsole, cmd.handler) for cmd in COMMANDS)


def test_completer():
    """Test command and argument completion."""
    completer = CommandCompleter(
        services=lambda: ["Battery", "DeviceInformation"],
        characteristics=lambda: ["Level"],
    )
    assert "read" in _completions(completer, "re")
    assert _completions(completer, "") == []
    assert _completions(completer, "fmt he") == ["hex", "hexadecimal", "hexdecimal"]
    assert _completions(completer, "set Dev") == ["DeviceInformation"]
    assert _completions(completer, "read ") == ["Level", "Battery/", "DeviceInformation/"]
    assert _completions(completer, "write Level ") == []


@pytest.mark.asyncio
async def test_open_set_read(console, transport, output):
    transport.read_script[LEVEL.handle] = [b"\x64"]
    assert await console.execute("open #00") == 0
    assert await console.execute("set #00") == 0
    assert await console.execute("format dec") == 0
    assert await console.execute("read Level") == 0
    assert output.getvalue().splitlines()[-1] == "100"
    assert console.exit_code == 0
    assert console._get_prompt()[0][1] == "BLE [Sensor-A]: "


@pytest.mark.asyncio
async def test_errors_accumulate(console, output):
    assert await console.execute("read Level") == 1
    assert await console.execute("set Battery") == 1
    assert await console.execute("  bogus") == 0
    assert 'Unknown command. Type "?" for help.' in output.getvalue()
    assert console.exit_code == 2
    assert console._get_prompt()[0][1] == "BLE: "


@pytest.mark.asyncio
async def test_format_command(console, session, output):
    await console.execute("fmt HEX")
    assert session.data_format is DataFormat.HEX
    assert "Current display format: Hex" in output.getvalue()

    assert await console.execute("format ebcdic") == 0
    assert session.data_format is DataFormat.HEX


@pytest.mark.asyncio
async def test_timeout_command(console, session, output):
    await console.execute("timeout 10")
    assert session.timeout == 10
    await console.execute("timeout 99")
    assert session.timeout == 10
    assert "Device connection timeout (sec): 10" in output.getvalue()


@pytest.mark.asyncio
async def test_print_command(console, output):
    assert await console.execute("print Hello\\nWorld") == 0
    assert output.getvalue().splitlines()[-2:] == ["Hello", "World"]
    assert await console.execute("print %name") == 1

    await console.execute("open Sensor-B")
    assert await console.execute("p device=%name") == 0
    assert output.getvalue().splitlines()[-1] == "device=Sensor-B"


@pytest.mark.asyncio
async def test_wrrr_argument_validation(console):
    await console.execute("open #00")
    assert await console.execute("wrrr 1 1 Battery/Level") == 1
    assert await console.execute("wrrr -1 1 Battery/Level x") == 1
    assert await console.execute("wrrr a 1 Battery/Level x") == 1


@pytest.mark.asyncio
async def test_wrrr_payload_keeps_spaces(console, transport):
    await console.execute("open #00")
    transport.read_script[LEVEL.handle] = [b"OK!"]
    assert await console.execute("wrrr 1 0 Battery/Level AT +X") == 0
    assert transport.writes == [(LEVEL.handle, b"AT +X")]


@pytest.mark.asyncio
async def test_interrupt_cancels_delay(console, session, output):
    task = asyncio.create_task(console.execute("delay 5000"))
    while not session.waiter.active:
        await asyncio.sleep(0)
    console._on_interrupt()
    assert await asyncio.wait_for(task, 1) == 0
    assert "Delay cancelled" in output.getvalue()


@pytest.mark.asyncio
async def test_interrupt_cancels_running_command(console, transport, output):
    await console.execute("open #00")
    console.controller.retry_interval = 0.001
    task = asyncio.create_task(console.execute("wrrr 0 1 Battery/Level go"))
    while len(transport.writes) < 2:
        await asyncio.sleep(0.001)
    console._on_interrupt()
    assert await asyncio.wait_for(task, 1) == 0
    assert "Interrupted" in output.getvalue()


@pytest.mark.asyncio
async def test_notifications_printed(console, transport, output):
    await console.start()
    await console.execute("open #00")
    await console.execute("set Battery")
    await console.execute("sub Level")
    transport.notify(LEVEL.handle, b"first")
    transport.notify(LEVEL.handle, b"second")
    assert await console.execute("wait") == 0
    await asyncio.sleep(0.01)
    await console.shutdown()

    text = output.getvalue()
    assert f"Value changed for {LEVEL.uuid}: second" in text
    assert "first" not in text
    assert transport.stopped == [LEVEL.handle]


@pytest.mark.asyncio
async def test_run_batch_stops_at_empty_line(console, transport, output):
    transport.read_script[LEVEL.handle] = [b"abc"]
    script = io.StringIO("open #00\nset Battery\nread Level\nread Missing\n\nread Level\n")

    exit_code = await console.run_batch(script)

    assert exit_code == 1
    assert transport.read_calls == [LEVEL.handle]
    assert transport.disconnects == 1


@pytest.mark.asyncio
async def test_run_batch_quit(console, transport):
    script = io.StringIO("quit\nopen #00\n")
    assert await console.run_batch(script) == 0
    assert transport.disconnects == 0


@pytest.mark.asyncio
async def test_stat_and_list(console, output):
    await console.execute("stat")
    assert "No device connected." in output.getvalue()

    await console.execute("ls")
    assert "#00: Sensor-A" in output.getvalue()
    assert "#01: Sensor-B" in output.getvalue()

    await console.execute("open #00")
    await console.execute("set Battery")
    await console.execute("read Level")
    await console.execute("st")
    text = output.getvalue()
    assert "Device Sensor-A is connected." in text
    assert "Selected service: Battery" in text
    assert "Selected characteristic: Level" in text


@pytest.mark.asyncio
async def test_help(console, output):
    await console.execute("?")
    text = output.getvalue()
    for cmd in COMMANDS:
        assert cmd.name in text


@pytest.mark.asyncio
@pytest.mark.parametrize("line, settles", [
    ("write Level 1", True),
    ("w Level 1", True),
    ("read Level", False),
    ("print x", False),
])
async def test_write_settle_delay(console, line, settles):
    await console.execute("open #00")
    await console.execute("set Battery")
    console.settle_delay = 0.3
    loop = asyncio.get_running_loop()

    started = loop.time()
    await console.execute(line)
    elapsed = loop.time() - started

    assert (elapsed >= 0.3) is settles


class _StalledStream:
    """Input stream that hands out one line and then blocks."""

    def __init__(self, first_line):
        self.first_line = first_line
        self.release = threading.Event()

    def readline(self):
        line, self.first_line = self.first_line, ""
        if line:
            return line
        self.release.wait()
        return ""


@pytest.mark.asyncio
async def test_interrupt_ends_batch_waiting_for_input(console, output):
    stream = _StalledStream("bogus\n")
    task = asyncio.create_task(console.run_batch(stream))
    while "Unknown command" not in output.getvalue():
        await asyncio.sleep(0.01)
    await asyncio.sleep(0.01)

    console._on_interrupt()
    try:
        assert await asyncio.wait_for(task, 1) == 0
        assert "BLE Console is terminated" in output.getvalue()
    finally:
        stream.release.set()


@pytest.mark.asyncio
async def test_link_drop_seen_by_next_command(console, transport, output):
    await console.execute("open #00")
    await console.execute("set Battery")
    await console.execute("sub Level")
    transport.connected = False

    assert await console.execute("read Level") == 1
    assert await console.execute("stat") == 0

    text = output.getvalue()
    assert "Device Sensor-A is disconnected." in text
    assert console.session.tree.selected_service is None
    assert console.controller.subscriptions == []
