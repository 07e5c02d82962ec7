"""In-memory stand-in for the mpv IPC endpoint used by the tests."""

import asyncio
import json
from typing import Any, Dict, List, Optional

from transport import IpcTransport

DEFAULT_PROPERTIES = {
    "pause": False,
    "volume": 100.0,
    "mute": False,
    "fullscreen": False,
    "speed": 1.0,
    "time-pos": 12.5,
    "duration": 100.0,
    "filename": "movie.mkv",
    "media-title": "Movie",
}


class FakeMpvTransport(IpcTransport):
    """
    Emulates mpv's JSON IPC: keeps a property store, answers commands by
    request_id and can interleave events or withhold replies.
    """

    def __init__(
        self,
        endpoint: str = "/tmp/fake-mpv.sock",
        properties: Optional[Dict[str, Any]] = None,
        events_before_reply: int = 0,
    ):
        super().__init__(endpoint)
        self.properties = dict(DEFAULT_PROPERTIES if properties is None else properties)
        self.events_before_reply = events_before_reply
        self.unavailable: set = set()
        self.failing_commands: Dict[str, str] = {}
        self.commands: List[List[Any]] = []
        # "reply" answers normally, "flood" answers every read with an event,
        # "silent" never answers
        self.mode = "reply"
        self.opened = False
        self.closed = False
        # Requests written whose reply has not been read back yet
        self.awaiting_reply: set = set()
        self.max_in_flight = 0
        self._lines: asyncio.Queue = asyncio.Queue()
        self._eof = False

    async def open(self) -> None:
        self.opened = True

    @property
    def is_open(self) -> bool:
        return self.opened and not self.closed

    async def close(self) -> None:
        self.closed = True

    def push_line(self, message: Any) -> None:
        line = message if isinstance(message, bytes) else json.dumps(message).encode()
        self._lines.put_nowait(line + b"\n")

    async def write_line(self, line: bytes) -> None:
        request = json.loads(line)
        command = request["command"]
        request_id = request["request_id"]
        self.commands.append(command)

        if self.mode != "reply":
            return

        self.awaiting_reply.add(request_id)
        self.max_in_flight = max(self.max_in_flight, len(self.awaiting_reply))

        for _ in range(self.events_before_reply):
            self.push_line({"event": "property-change", "name": "time-pos", "data": 1.0})
        # A reply to somebody else's request must be skipped too
        self.push_line({"error": "success", "data": "stale", "request_id": request_id + 1000})

        error, data = self._execute(command)
        self.push_line({"error": error, "data": data, "request_id": request_id})
        if command and command[0] == "quit":
            self._eof = True

    def _execute(self, command: List[Any]):
        name = command[0]
        if name in self.failing_commands:
            return self.failing_commands[name], None
        if name == "get_property":
            prop = command[1]
            if prop in self.unavailable or prop not in self.properties:
                return "property unavailable", None
            return "success", self.properties[prop]
        if name == "set_property":
            prop, value = command[1], command[2]
            if prop in self.unavailable:
                return "property unavailable", None
            self.properties[prop] = value
            return "success", None
        return "success", None

    async def read_line(self) -> bytes:
        # Yield like a real socket read so concurrent callers can interleave
        await asyncio.sleep(0)
        if self.mode == "flood":
            return json.dumps({"event": "idle"}).encode() + b"\n"
        if self._lines.empty() and self._eof:
            return b""
        line = await self._lines.get()
        try:
            message = json.loads(line)
        except ValueError:
            return line
        if isinstance(message, dict):
            self.awaiting_reply.discard(message.get("request_id"))
        return line

    def sent(self, name: str) -> List[List[Any]]:
        return [c for c in self.commands if c and c[0] == name]
