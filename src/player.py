"""
Playback facade over the mpv IPC client.

One method per user-facing intent. Inputs are clamped locally (volume,
speed) instead of being rejected, and the composite state query fills in
defaults for any property mpv cannot report right now.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from config import settings
from mpv_ipc import MpvCommandError, MpvError, MpvIpc
from mpv_process import MpvProcess

logger = logging.getLogger(__name__)


class PlayerNotInitializedError(MpvError):
    """Raised when a playback operation is attempted before mpv is started"""

    def __init__(self, message: str = "MPV not initialized"):
        super().__init__(message)


@dataclass
class PlaybackState:
    position: float = 0.0
    duration: float = 0.0
    is_playing: bool = False
    is_paused: bool = True
    volume: int = 100
    is_muted: bool = False
    filename: Optional[str] = None
    media_title: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def clamp(value, lower, upper):
    return max(lower, min(upper, value))


class MpvPlayer:
    def __init__(self, process: MpvProcess):
        self.process = process
        self.current_url: Optional[str] = None
        self.last_position: float = 0.0

    @property
    def is_initialized(self) -> bool:
        return self.process.is_running

    def _ipc(self) -> MpvIpc:
        ipc = self.process.ipc
        if ipc is None or not self.process.is_running:
            raise PlayerNotInitializedError()
        return ipc

    async def ensure_started(self) -> None:
        if not self.process.is_running:
            logger.info("Initializing MPV player via IPC...")
            await self.process.start()
            logger.info("MPV player initialized successfully")

    async def shutdown(self) -> None:
        await self.process.stop()
        self.current_url = None
        self.last_position = 0.0

    # ========================================
    # Loading and transport control
    # ========================================

    async def load(
        self,
        url: str,
        start_position: Optional[float] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        """Load and play a file or URL, optionally with start offset and HTTP headers."""
        ipc = self._ipc()

        # mpv takes these as options for the next loadfile and keeps them
        # afterwards, so a load without them resets both
        header_block = "\r\n".join(f"{k}: {v}" for k, v in (headers or {}).items())
        try:
            await ipc.set_property("http-header-fields", header_block)
        except MpvCommandError as e:
            logger.warning(f"Failed to set HTTP headers for {url}: {e}")

        start = "none" if start_position is None else f"{start_position}"
        try:
            await ipc.set_property("start", start)
        except MpvCommandError as e:
            logger.warning(f"Failed to set start position {start}: {e}")

        logger.info(f"Loading file: {url}")
        await ipc.command("loadfile", url, "replace")
        self.current_url = url
        self.last_position = start_position or 0.0
        logger.info("File loaded successfully")

    async def play(self) -> None:
        await self._ipc().set_property("pause", False)

    async def pause(self) -> None:
        await self._ipc().set_property("pause", True)

    async def toggle_pause(self) -> bool:
        """Flip the pause flag and return the new paused state."""
        ipc = self._ipc()
        paused = await ipc.get_property("pause", bool)
        await ipc.set_property("pause", not paused)
        return not paused

    async def stop(self) -> None:
        await self._ipc().command("stop")
        self.current_url = None
        self.last_position = 0.0

    async def seek(self, position: float) -> None:
        await self._ipc().command("seek", position, "absolute")

    async def seek_relative(self, offset: float) -> None:
        await self._ipc().command("seek", offset, "relative")

    # ========================================
    # Volume and mute
    # ========================================

    async def set_volume(self, volume: int) -> None:
        await self._ipc().set_property("volume", clamp(int(volume), 0, 100))

    async def get_volume(self) -> int:
        volume = await self._ipc().get_property("volume", float)
        return int(round(volume))

    async def set_mute(self, muted: bool) -> None:
        await self._ipc().set_property("mute", muted)

    async def is_muted(self) -> bool:
        return await self._ipc().get_property("mute", bool)

    async def toggle_mute(self) -> bool:
        ipc = self._ipc()
        muted = await ipc.get_property("mute", bool)
        await ipc.set_property("mute", not muted)
        return not muted

    # ========================================
    # Tracks and speed
    # ========================================

    async def set_audio_track(self, index: int) -> None:
        await self._ipc().set_property("aid", index)

    async def set_subtitle_track(self, index: int) -> None:
        """Select a subtitle track; 0 or negative turns subtitles off."""
        if index <= 0:
            await self._ipc().set_property("sid", "no")
        else:
            await self._ipc().set_property("sid", index)

    async def set_speed(self, speed: float) -> None:
        await self._ipc().set_property(
            "speed", clamp(float(speed), settings.SPEED_MIN, settings.SPEED_MAX))

    # ========================================
    # Fullscreen
    # ========================================

    async def is_fullscreen(self) -> bool:
        return await self._ipc().get_property("fullscreen", bool)

    async def set_fullscreen(self, fullscreen: bool) -> None:
        await self._ipc().set_property("fullscreen", fullscreen)

    async def toggle_fullscreen(self) -> bool:
        ipc = self._ipc()
        fullscreen = await ipc.get_property("fullscreen", bool)
        await ipc.set_property("fullscreen", not fullscreen)
        return not fullscreen

    # ========================================
    # State queries
    # ========================================

    async def _property_or(self, ipc: MpvIpc, name: str, type_: Any, default: Any) -> Any:
        try:
            value = await ipc.get_property(name, type_)
        except MpvError as e:
            logger.debug(f"Property {name} unavailable, using {default!r}: {e}")
            return default
        return default if value is None else value

    async def get_position(self) -> float:
        return await self._property_or(self._ipc(), "time-pos", float, 0.0)

    async def get_duration(self) -> float:
        return await self._property_or(self._ipc(), "duration", float, 0.0)

    async def get_state(self) -> PlaybackState:
        """Snapshot of the player. Not atomic: each field is a separate query."""
        ipc = self._ipc()
        paused = await self._property_or(ipc, "pause", bool, True)
        volume = await self._property_or(ipc, "volume", float, 100)
        state = PlaybackState(
            position=await self._property_or(ipc, "time-pos", float, 0.0),
            duration=await self._property_or(ipc, "duration", float, 0.0),
            is_playing=not paused,
            is_paused=paused,
            volume=int(round(volume)),
            is_muted=await self._property_or(ipc, "mute", bool, False),
            filename=await self._property_or(ipc, "filename", Optional[str], None),
            media_title=await self._property_or(ipc, "media-title", Optional[str], None),
        )
        self.last_position = state.position
        return state
