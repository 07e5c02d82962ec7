"""
Local IPC transports for talking to the mpv process.

mpv exposes its JSON IPC on a Unix domain socket (Linux/macOS) or a named
pipe (Windows). Both are wrapped in the same line-oriented capability so the
protocol client never branches on the platform:

    transport = create_transport(default_ipc_endpoint())
    await transport.open()
    await transport.write_line(b'{"command": ["get_version"]}')
    line = await transport.read_line()
    await transport.close()
"""

import asyncio
import logging
import os
import sys
import tempfile
from typing import Optional

from anyio import to_thread

from config import settings

logger = logging.getLogger(__name__)


def default_ipc_endpoint(pid: Optional[int] = None, prefix: Optional[str] = None) -> str:
    """Build the IPC endpoint path for this process.

    The pid is part of the name so several instances of the application can
    run side by side without fighting over the same socket.
    """
    pid = os.getpid() if pid is None else pid
    prefix = prefix or settings.MPV_IPC_PREFIX
    if sys.platform == "win32":
        return rf"\\.\pipe\{prefix}-{pid}"
    return os.path.join(tempfile.gettempdir(), f"{prefix}-{pid}.sock")


class IpcTransport:
    """Line-oriented byte stream to the player.

    ``open()`` raises ``OSError`` while the endpoint does not exist yet,
    ``read_line()`` returns ``b""`` at EOF.
    """

    def __init__(self, endpoint: str):
        self.endpoint = endpoint

    async def open(self) -> None:
        raise NotImplementedError

    async def read_line(self) -> bytes:
        raise NotImplementedError

    async def write_line(self, line: bytes) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError

    @property
    def is_open(self) -> bool:
        raise NotImplementedError


class UnixSocketTransport(IpcTransport):
    """mpv IPC over a Unix domain socket using asyncio streams."""

    def __init__(self, endpoint: str, line_limit: Optional[int] = None):
        super().__init__(endpoint)
        self.line_limit = line_limit or settings.IPC_LINE_LIMIT
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None

    async def open(self) -> None:
        self._reader, self._writer = await asyncio.open_unix_connection(
            self.endpoint, limit=self.line_limit)
        logger.debug(f"Connected to IPC socket {self.endpoint}")

    async def read_line(self) -> bytes:
        if self._reader is None:
            raise ConnectionError("Transport is not open")
        return await self._reader.readline()

    async def write_line(self, line: bytes) -> None:
        if self._writer is None:
            raise ConnectionError("Transport is not open")
        if not line.endswith(b"\n"):
            line += b"\n"
        self._writer.write(line)
        await self._writer.drain()

    async def close(self) -> None:
        writer = self._writer
        self._reader = None
        self._writer = None
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Error closing IPC socket {self.endpoint}: {e}")

    @property
    def is_open(self) -> bool:
        return self._writer is not None


class NamedPipeTransport(IpcTransport):
    """mpv IPC over a Windows named pipe.

    The pipe is opened as a plain file and the blocking reads and writes are
    pushed to worker threads so the event loop keeps running. A read that
    outlives a cancelled caller stays pending and hands its line to the next
    ``read_line()``, so a timeout never loses a reply.
    """

    def __init__(self, endpoint: str):
        super().__init__(endpoint)
        self._pipe = None
        self._pending_read: Optional[asyncio.Future] = None

    async def open(self) -> None:
        self._pipe = await to_thread.run_sync(self._open_pipe)
        logger.debug(f"Connected to IPC pipe {self.endpoint}")

    def _open_pipe(self):
        return open(self.endpoint, "r+b", buffering=0)

    async def read_line(self) -> bytes:
        if self._pipe is None:
            raise ConnectionError("Transport is not open")
        if self._pending_read is None:
            self._pending_read = asyncio.ensure_future(
                to_thread.run_sync(self._pipe.readline))
        pending = self._pending_read
        # The worker thread cannot be interrupted, only the wait for it
        try:
            line = await asyncio.shield(pending)
        except Exception:
            self._pending_read = None
            raise
        self._pending_read = None
        return line

    async def write_line(self, line: bytes) -> None:
        if self._pipe is None:
            raise ConnectionError("Transport is not open")
        if not line.endswith(b"\n"):
            line += b"\n"
        pipe = self._pipe

        def _write():
            pipe.write(line)
            pipe.flush()

        await to_thread.run_sync(_write)

    async def close(self) -> None:
        pipe = self._pipe
        pending = self._pending_read
        self._pipe = None
        self._pending_read = None
        if pending is not None and not pending.done():
            pending.add_done_callback(_discard_read)
        if pipe is not None:
            try:
                pipe.close()
            except OSError as e:
                logger.debug(f"Error closing IPC pipe {self.endpoint}: {e}")

    @property
    def is_open(self) -> bool:
        return self._pipe is not None


def _discard_read(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()


def create_transport(endpoint: str) -> IpcTransport:
    """Return the transport implementation for the current platform."""
    if sys.platform == "win32":
        return NamedPipeTransport(endpoint)
    return UnixSocketTransport(endpoint)
