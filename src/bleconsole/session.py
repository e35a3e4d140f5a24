"""
Session state shared by the command loop and the operation engine.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from .codec import DataFormat
from .core import DEFAULT_TIMEOUT, LOG_TIMESTAMP_FORMAT, TIMEOUT_MAX, TIMEOUT_MIN
from .errors import StateError
from .model import GattTree

logger = logging.getLogger(__name__)


class WaitResult(Enum):
    NOTIFIED = "notified"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed out"


class Waiter:
    """Single outstanding wait that can be released or cancelled from outside.

    Used by both the "wait" (next notification) and "delay" commands.
    """

    def __init__(self) -> None:
        self._event: Optional[asyncio.Event] = None
        self._result = WaitResult.TIMED_OUT

    @property
    def active(self) -> bool:
        return self._event is not None

    async def wait(self, timeout: float) -> WaitResult:
        """Block until released, cancelled, or the timeout elapses.

        Raises:
            StateError: If another wait is already outstanding
        """
        if self._event is not None:
            raise StateError("Another wait is already in progress")

        self._event = asyncio.Event()
        self._result = WaitResult.TIMED_OUT
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(timeout, 0))
        except asyncio.TimeoutError:
            return WaitResult.TIMED_OUT
        finally:
            self._event = None
        return self._result

    def release(self) -> bool:
        """Release an outstanding wait because a notification arrived."""
        return self._set(WaitResult.NOTIFIED)

    def cancel(self) -> bool:
        """Abandon an outstanding wait (e.g. on Ctrl+C)."""
        return self._set(WaitResult.CANCELLED)

    def _set(self, result: WaitResult) -> bool:
        if self._event is None or self._event.is_set():
            return False
        self._result = result
        self._event.set()
        return True


def _safe_file_name(name: str) -> str:
    return re.sub(r"[\\/:*?\"<>|\s]+", "_", name.strip()) or "device"


class ReadLog:
    """Append-only log of successful retried reads, one line per value.

    The file name is fixed on the first successful open of a device and is
    kept for the rest of the process run.
    """

    def __init__(self, directory: Path | str = ".") -> None:
        self.directory = Path(directory)
        self.path: Optional[Path] = None

    def configure(self, device_name: str, now: Optional[datetime] = None) -> Path:
        if self.path is None:
            stamp = (now or datetime.now()).strftime(LOG_TIMESTAMP_FORMAT)
            self.path = self.directory / f"{_safe_file_name(device_name)}-{stamp}.log"
            logger.info(f"Retry-read log: {self.path}")
        return self.path

    def append(self, line: str) -> Path:
        path = self.path or self.configure("device")
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(line + "\n")
        return path


@dataclass
class Session:
    """Selection, display format, timeout and accumulated exit code."""

    tree: GattTree = field(default_factory=GattTree)
    data_format: DataFormat = DataFormat.UTF8
    timeout: float = DEFAULT_TIMEOUT
    exit_code: int = 0
    waiter: Waiter = field(default_factory=Waiter)
    read_log: ReadLog = field(default_factory=ReadLog)

    def add_errors(self, count: int) -> int:
        self.exit_code += count
        return self.exit_code

    def set_timeout(self, seconds: int) -> bool:
        """Change the connect timeout if it lies within the accepted range."""
        if TIMEOUT_MIN <= seconds <= TIMEOUT_MAX:
            self.timeout = float(seconds)
            return True
        return False
