import logging
import os
import threading
import uuid
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class StreamRegistry:
    """Maps opaque stream ids to absolute file paths.

    Shared between the HTTP handlers and the control API, so every access
    goes through the lock. Nothing is persisted.
    """

    def __init__(self):
        self._streams: Dict[str, str] = {}
        self._lock = threading.Lock()

    def register(self, path: str) -> str:
        """Register a file and return its new stream id."""
        stream_id = uuid.uuid4().hex
        abs_path = os.path.abspath(path)
        with self._lock:
            self._streams[stream_id] = abs_path
        logger.info(f"Registered stream {stream_id} -> {abs_path}")
        return stream_id

    def resolve(self, stream_id: str) -> Optional[str]:
        with self._lock:
            return self._streams.get(stream_id)

    def remove(self, stream_id: str) -> bool:
        with self._lock:
            removed = self._streams.pop(stream_id, None) is not None
        if removed:
            logger.info(f"Removed stream {stream_id}")
        return removed

    def clear(self) -> None:
        with self._lock:
            count = len(self._streams)
            self._streams.clear()
        logger.debug(f"Cleared {count} registered streams")

    def __len__(self) -> int:
        with self._lock:
            return len(self._streams)

    def __contains__(self, stream_id: object) -> bool:
        with self._lock:
            return stream_id in self._streams
