"""
JSON IPC client for mpv.

Commands are sent as one JSON object per line carrying a request_id. mpv
answers asynchronously on the same stream and interleaves unsolicited events,
so replies are correlated by id and everything else is skipped.

    -> {"command": ["get_property", "volume"], "request_id": 7}
    <- {"event": "playback-restart"}
    <- {"error": "success", "data": 100.0, "request_id": 7}
"""

import asyncio
import itertools
import json
import logging
from functools import lru_cache
from typing import Any, Optional

from pydantic import TypeAdapter, ValidationError

from config import settings
from transport import IpcTransport

logger = logging.getLogger(__name__)


class MpvError(Exception):
    """Base class for all mpv control errors"""


class MpvStartError(MpvError):
    """The mpv process could not be spawned or exited during startup"""


class MpvConnectionError(MpvError):
    """The IPC endpoint could not be reached"""


class MpvSendError(MpvError):
    """A command could not be serialized or written"""


class MpvReceiveError(MpvError):
    """Reading or decoding a reply failed"""


class MpvTimeoutError(MpvReceiveError):
    """No matching reply arrived within the read bounds"""


class MpvCommandError(MpvError):
    """mpv answered with a non-success error string"""


class MpvNotRunningError(MpvError):
    """There is no open IPC connection"""

    def __init__(self, message: str = "MPV not running"):
        super().__init__(message)


@lru_cache(maxsize=64)
def _type_adapter(type_: Any) -> TypeAdapter:
    return TypeAdapter(type_)


class MpvIpc:
    """Request/response client over a single IPC transport.

    Only one request is in flight at a time: the lock is held from the write
    until the matching reply has been read.
    """

    def __init__(
        self,
        transport: IpcTransport,
        max_reads: Optional[int] = None,
        response_timeout: Optional[float] = None,
    ):
        self.transport = transport
        self.max_reads = max_reads or settings.IPC_RESPONSE_MAX_READS
        self.response_timeout = response_timeout or settings.IPC_RESPONSE_TIMEOUT
        self._request_ids = itertools.count(1)
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def is_connected(self) -> bool:
        return not self._closed and self.transport.is_open

    def _next_request_id(self) -> int:
        return next(self._request_ids)

    async def command(self, *args: Any) -> Any:
        """Send a command and return the ``data`` of its reply."""
        if not self.is_connected:
            raise MpvNotRunningError()

        request_id = self._next_request_id()
        try:
            payload = json.dumps({"command": list(args), "request_id": request_id})
        except (TypeError, ValueError) as e:
            raise MpvSendError(f"Failed to serialize: {e}") from e

        async with self._lock:
            logger.debug(f"Sending mpv command: {payload}")
            try:
                await self.transport.write_line(payload.encode("utf-8") + b"\n")
            except (OSError, ConnectionError) as e:
                raise MpvSendError(f"Write error: {e}") from e

            try:
                return await asyncio.wait_for(
                    self._read_response(request_id), timeout=self.response_timeout)
            except asyncio.TimeoutError:
                logger.error(
                    f"Response timeout after {self.response_timeout}s for request {request_id}")
                raise MpvTimeoutError("Response timeout")

    async def _read_response(self, expected_id: int) -> Any:
        for attempt in range(self.max_reads):
            try:
                line = await self.transport.read_line()
            except (OSError, ConnectionError) as e:
                logger.error(f"Read error: {e}")
                raise MpvReceiveError(f"Read error: {e}") from e

            if not line:
                logger.error("EOF reached while waiting for response")
                raise MpvReceiveError("EOF reached")

            logger.debug(
                f"Received from mpv (attempt {attempt}): {line.strip()!r}")
            try:
                message = json.loads(line)
            except ValueError:
                continue

            # Events and replies to other requests are not ours
            if not isinstance(message, dict) or message.get("request_id") != expected_id:
                continue

            error = message.get("error") or ""
            if error in ("success", ""):
                return message.get("data")

            logger.error(f"MPV error: {error}")
            raise MpvCommandError(error)

        logger.error(f"Response timeout after {self.max_reads} attempts")
        raise MpvTimeoutError("Response timeout")

    async def get_property(self, name: str, type_: Any = Any) -> Any:
        """Read a property and validate it against ``type_``."""
        value = await self.command("get_property", name)
        if type_ is Any:
            return value
        try:
            return _type_adapter(type_).validate_python(value)
        except ValidationError as e:
            raise MpvReceiveError(f"Failed to parse property {name}: {e}") from e

    async def set_property(self, name: str, value: Any) -> None:
        await self.command("set_property", name, value)

    async def close(self) -> None:
        self._closed = True
        await self.transport.close()
