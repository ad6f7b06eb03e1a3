"""Print surfaces the dispatcher delivers receipts to.

A shared surface is a single, long-lived print target reused by every
print request in the process (the spool file). An output target factory
opens a short-lived, independent target per attempt (a temp file) and is
only used when the shared surface is missing or inaccessible.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import List, Optional, Protocol, TextIO


logger = logging.getLogger(__name__)

DEFAULT_PRINT_COMMAND = "lp"


class PrintError(Exception):
    """Base class for delivery failures raised by surfaces."""


class SurfaceUnavailable(PrintError):
    """A print surface or output target could not be reached."""


class DeliveryFailed(PrintError):
    """The host print action failed."""


class SurfaceWindow(Protocol):
    def write(self, document: str) -> None: ...

    def print(self) -> None: ...


class SharedSurface(Protocol):
    lock: asyncio.Lock

    def content_window(self) -> Optional[SurfaceWindow]:
        """Return a handle for replacing content and printing, or None if inaccessible."""
        ...


class OutputTarget(Protocol):
    def write(self, document: str) -> None: ...

    def print(self) -> None: ...

    def close(self) -> None: ...


class OutputTargetFactory(Protocol):
    def open(self) -> Optional[OutputTarget]: ...


def run_print_command(command: str, path: Path) -> None:
    """Submit ``path`` to the host print command, e.g. ``lp receipt.html``."""
    argv: List[str] = shlex.split(command) + [str(path)]
    try:
        subprocess.run(argv, check=True, capture_output=True)
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or b"").decode("utf-8", "replace").strip()
        raise DeliveryFailed(f"{argv[0]} exited with {exc.returncode}: {stderr}") from exc
    except OSError as exc:
        raise DeliveryFailed(f"could not run {argv[0]}: {exc}") from exc


class _SpoolWindow:
    def __init__(self, path: Path, command: str) -> None:
        self._path = path
        self._command = command

    def write(self, document: str) -> None:
        self._path.write_text(document, encoding="utf-8")

    def print(self) -> None:
        run_print_command(self._command, self._path)


class SpoolFileSurface:
    """Shared surface backed by one spool file that every print overwrites."""

    def __init__(self, path: Path, command: str = DEFAULT_PRINT_COMMAND) -> None:
        self.path = Path(path)
        self.command = command
        self.lock = asyncio.Lock()

    def content_window(self) -> Optional[SurfaceWindow]:
        if not self.path.parent.is_dir():
            return None
        if self.path.exists() and not os.access(self.path, os.W_OK):
            return None
        return _SpoolWindow(self.path, self.command)


class TempFileTarget:
    def __init__(self, path: Path, command: str) -> None:
        self.path = path
        self._command = command

    def write(self, document: str) -> None:
        self.path.write_text(document, encoding="utf-8")

    def print(self) -> None:
        run_print_command(self._command, self.path)

    def close(self) -> None:
        self.path.unlink(missing_ok=True)


class TempFileTargetFactory:
    """Opens a fresh temporary file per attempt and removes it afterwards."""

    def __init__(self, command: str = DEFAULT_PRINT_COMMAND, directory: Optional[Path] = None, suffix: str = ".html") -> None:
        self.command = command
        self.directory = directory
        self.suffix = suffix

    def open(self) -> Optional[OutputTarget]:
        try:
            fd, name = tempfile.mkstemp(prefix="receipt-", suffix=self.suffix, dir=self.directory)
        except OSError as exc:
            logger.error(f"Could not open temporary print target: {exc}")
            return None
        os.close(fd)
        return TempFileTarget(Path(name), self.command)


class _ConsoleWindow:
    def __init__(self, stream: TextIO) -> None:
        self._stream = stream

    def write(self, document: str) -> None:
        self._stream.write(document)
        self._stream.write("\n")

    def print(self) -> None:
        self._stream.flush()


class ConsoleSurface:
    """Shared surface that writes documents to a text stream."""

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self.stream = stream
        self.lock = asyncio.Lock()

    def content_window(self) -> Optional[SurfaceWindow]:
        stream = self.stream if self.stream is not None else sys.stdout
        if stream.closed:
            return None
        return _ConsoleWindow(stream)
