"""
mpv process supervisor.

Spawns a single idle mpv instance with its JSON IPC server enabled, connects
to the IPC endpoint with bounded retries and owns the teardown:

- Quit command first so mpv can exit cleanly
- Short grace period, then kill and reap the process
- Stale socket files removed before spawn and after teardown
"""

import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from typing import Callable, List, Optional

from config import settings
from mpv_ipc import (
    MpvConnectionError,
    MpvError,
    MpvIpc,
    MpvStartError,
)
from transport import IpcTransport, create_transport, default_ipc_endpoint

logger = logging.getLogger(__name__)


@dataclass
class ProcessHandle:
    """A running mpv process and the IPC client connected to it."""
    process: asyncio.subprocess.Process
    ipc: MpvIpc

    @property
    def pid(self) -> int:
        return self.process.pid


class MpvProcess:
    """
    Owns the mpv process and its IPC connection.

    The IPC client only exists while the process does. When no handle is
    installed the player counts as "not initialized" and ``start()`` may be
    retried.
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        mpv_path: Optional[str] = None,
        extra_args: Optional[List[str]] = None,
        transport_factory: Callable[[str], IpcTransport] = create_transport,
        connect_attempts: Optional[int] = None,
        connect_delay: Optional[float] = None,
    ):
        self.endpoint = endpoint or default_ipc_endpoint()
        self.mpv_path = mpv_path or settings.MPV_PATH
        self.extra_args = list(
            extra_args if extra_args is not None else settings.MPV_EXTRA_ARGS)
        self.transport_factory = transport_factory
        self.connect_attempts = connect_attempts or settings.IPC_CONNECT_ATTEMPTS
        self.connect_delay = (
            settings.IPC_CONNECT_DELAY if connect_delay is None else connect_delay)
        self._handle: Optional[ProcessHandle] = None
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        handle = self._handle
        return (
            handle is not None
            and handle.process.returncode is None
            and handle.ipc.is_connected
        )

    @property
    def ipc(self) -> Optional[MpvIpc]:
        return self._handle.ipc if self._handle else None

    @property
    def pid(self) -> Optional[int]:
        return self._handle.pid if self._handle else None

    def build_command(self) -> List[str]:
        """Build the mpv command line."""
        cmd = [
            self.mpv_path,
            "--idle=yes",
            f"--input-ipc-server={self.endpoint}",
            "--vo=gpu",
            f"--hwdec={settings.MPV_HWDEC}",
            "--keep-open=yes",
            "--cache=yes",
            f"--demuxer-max-bytes={settings.MPV_DEMUXER_MAX_BYTES}",
            f"--demuxer-max-back-bytes={settings.MPV_DEMUXER_MAX_BACK_BYTES}",
        ]

        # Fullscreen with on-screen controls
        if settings.MPV_FULLSCREEN:
            cmd.extend(["--fullscreen=yes", "--osc=yes"])

        cmd.append(f"--title={settings.MPV_WINDOW_TITLE}")
        cmd.extend(self.extra_args)
        return cmd

    async def start(self) -> None:
        """Start mpv and connect to its IPC server. No-op if already running."""
        async with self._lock:
            if self.is_running:
                return

            # Drop whatever is left of a previous instance
            if self._handle is not None:
                logger.warning(f"mpv (PID {self._handle.pid}) is gone, restarting")
            await self._teardown()
            self._remove_stale_socket()

            cmd = self.build_command()
            logger.info(f"Starting mpv with IPC server at {self.endpoint}")
            logger.debug(f"mpv command: {' '.join(cmd)}")

            kwargs = {}
            if sys.platform == "win32":
                kwargs["creationflags"] = 0x08000000  # CREATE_NO_WINDOW

            try:
                process = await asyncio.create_subprocess_exec(
                    *cmd,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.DEVNULL,
                    **kwargs
                )
            except OSError as e:
                raise MpvStartError(f"Failed to spawn mpv: {e}") from e

            try:
                transport = await self._connect_with_retry(process)
            except BaseException:
                # Also on cancellation, no handle exists yet to clean up later
                await self._kill(process)
                raise

            self._handle = ProcessHandle(process=process, ipc=MpvIpc(transport))
            logger.info(f"mpv started with PID {process.pid}")

    async def _connect_with_retry(self, process: asyncio.subprocess.Process) -> IpcTransport:
        for attempt in range(self.connect_attempts):
            if process.returncode is not None:
                raise MpvStartError(
                    f"mpv exited with code {process.returncode} before IPC was ready")

            transport = self.transport_factory(self.endpoint)
            try:
                await transport.open()
                return transport
            except OSError as e:
                if attempt % 10 == 0:
                    logger.debug(
                        f"Waiting for mpv IPC socket... attempt {attempt + 1}/{self.connect_attempts}: {e}")

            await asyncio.sleep(self.connect_delay)

        raise MpvConnectionError("Timeout waiting for mpv IPC socket")

    async def stop(self) -> None:
        """Quit mpv and reap the process. Safe to call when nothing runs."""
        async with self._lock:
            await self._teardown()

    async def _teardown(self) -> None:
        handle = self._handle
        self._handle = None
        if handle is None:
            return

        if handle.process.returncode is None and handle.ipc.is_connected:
            try:
                await handle.ipc.command("quit")
            except MpvError as e:
                # mpv usually closes the socket before replying to quit
                logger.debug(f"Quit command did not complete: {e}")
            await asyncio.sleep(settings.MPV_QUIT_GRACE)

        await handle.ipc.close()
        await self._kill(handle.process)
        self._remove_stale_socket()
        logger.info("mpv stopped")

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass  # Process already dead
        await process.wait()

    def _remove_stale_socket(self) -> None:
        if sys.platform == "win32":
            return
        if os.path.exists(self.endpoint):
            try:
                os.remove(self.endpoint)
                logger.debug(f"Removed stale mpv socket: {self.endpoint}")
            except OSError as e:
                logger.warning(
                    f"Failed to remove stale mpv socket {self.endpoint}: {e}")

    async def __aenter__(self) -> "MpvProcess":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
