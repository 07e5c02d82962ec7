"""
Lifecycle of the media streaming listener.

Runs the streaming app with uvicorn as a task on the running event loop,
records the bound port and the LAN address, and composes the URLs handed to
remote viewers. Registered streams only live as long as one server run.
"""

import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import Optional, Tuple

from uvicorn import Config, Server

from config import settings
from stream_registry import StreamRegistry
from streaming import create_streaming_app

logger = logging.getLogger(__name__)


class StreamingServerError(Exception):
    """Raised when the streaming server cannot be started or used"""


@dataclass
class StreamInfo:
    stream_id: str
    stream_url: str
    server_url: str


def get_local_ip(probe_host: Optional[str] = None) -> str:
    """Returns the LAN IP of this machine (best-guess via a dummy UDP connect)."""
    probe_host = probe_host or settings.LOCAL_IP_PROBE_HOST
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect((probe_host, 80))
            return s.getsockname()[0]
    except OSError as e:
        logger.debug(f"Local IP discovery failed, using loopback: {e}")
        return '127.0.0.1'


class StreamingServer:
    def __init__(self, registry: Optional[StreamRegistry] = None, host: Optional[str] = None):
        self.registry = registry or StreamRegistry()
        self.host = host or settings.STREAM_HOST
        self.port: int = 0
        self.local_ip: Optional[str] = None
        self._server: Optional[Server] = None
        self._task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, port: Optional[int] = None) -> Tuple[str, int]:
        """Start serving on ``port`` (0 = OS-assigned). Returns ``(local_ip, port)``."""
        port = settings.STREAM_PORT if port is None else port
        async with self._lock:
            if self.is_running:
                raise StreamingServerError("Server already running")

            local_ip = get_local_ip()
            logger.info(f"Starting streaming server on {local_ip}:{port}")

            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                sock.bind((self.host, port))
            except OSError as e:
                sock.close()
                raise StreamingServerError(f"Failed to start server: {e}") from e
            actual_port = sock.getsockname()[1]

            app = create_streaming_app(self.registry)
            config = Config(
                app,
                lifespan="off",
                log_config=None,
                log_level=settings.LOG_LEVEL.lower(),
                access_log=False,
                timeout_graceful_shutdown=settings.STREAM_SHUTDOWN_TIMEOUT,
            )
            server = Server(config)
            task = asyncio.create_task(server.serve(sockets=[sock]))

            # Wait for uvicorn to start accepting connections
            while not server.started:
                if task.done():
                    sock.close()
                    error = task.exception() if not task.cancelled() else None
                    raise StreamingServerError(f"Failed to start server: {error}")
                await asyncio.sleep(0.01)

            self._server = server
            self._task = task
            self.port = actual_port
            self.local_ip = local_ip

            logger.info(f"Streaming server started on {local_ip}:{actual_port}")
            return local_ip, actual_port

    async def stop(self) -> None:
        """Signal shutdown and drop all registered streams. Safe when not running."""
        async with self._lock:
            server, task = self._server, self._task
            self._server = None
            self._task = None
            if server is None or task is None:
                return

            server.should_exit = True
            try:
                await task
            except Exception as e:
                logger.error(f"Streaming server exited with error: {e}")

            self.registry.clear()
            self.port = 0
            self.local_ip = None
            logger.info("Streaming server stopped")

    def get_url(self) -> Optional[str]:
        if self.local_ip and self.port > 0:
            return f"http://{self.local_ip}:{self.port}"
        return None

    def get_stream_url(self, stream_id: str, filename: Optional[str] = None) -> Optional[str]:
        base_url = self.get_url()
        if base_url is None:
            return None
        if filename:
            return f"{base_url}/stream/{stream_id}/{filename}"
        return f"{base_url}/stream/{stream_id}"

    def register_stream(self, path: str) -> str:
        return self.registry.register(path)

    def remove_stream(self, stream_id: str) -> bool:
        return self.registry.remove(stream_id)

    def create_stream(self, path: str, filename: Optional[str] = None) -> StreamInfo:
        """Register ``path`` and return the URLs a remote viewer needs."""
        server_url = self.get_url()
        if server_url is None:
            raise StreamingServerError("Server not running")
        stream_id = self.register_stream(path)
        return StreamInfo(
            stream_id=stream_id,
            stream_url=self.get_stream_url(stream_id, filename),
            server_url=server_url,
        )
