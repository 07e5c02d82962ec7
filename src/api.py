from fastapi import FastAPI, Request, Depends
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
import os
from typing import Any, Awaitable, Dict, Generic, Optional, TypeVar
from pydantic import BaseModel, field_validator
from datetime import datetime, timezone
import uvicorn

from config import settings, VERSION
from mpv_ipc import MpvError
from mpv_process import MpvProcess
from player import MpvPlayer
from stream_server import StreamingServer, StreamingServerError, get_local_ip

# Set up logging
logging.basicConfig(level=getattr(
    logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)

T = TypeVar("T")


class CommandResult(BaseModel, Generic[T]):
    """Envelope returned by every control route"""
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "CommandResult":
        return cls(success=True, data=data)

    @classmethod
    def err(cls, message: str) -> "CommandResult":
        return cls(success=False, error=message)


# Request models
class PlayRequest(BaseModel):
    url: str
    start_position: Optional[float] = None
    # Jellyfin/Emby access token, sent as X-Emby-Token
    auth_token: Optional[str] = None
    headers: Optional[Dict[str, str]] = None

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        if not v or not v.strip():
            raise ValueError("URL cannot be empty")
        return v.strip()

    def build_headers(self) -> Dict[str, str]:
        headers = dict(self.headers or {})
        if self.auth_token:
            headers["X-Emby-Token"] = self.auth_token
        return headers


class SeekRequest(BaseModel):
    position: float


class SeekRelativeRequest(BaseModel):
    offset: float


class VolumeRequest(BaseModel):
    volume: int


class MuteRequest(BaseModel):
    muted: bool


class TrackRequest(BaseModel):
    index: int


class SpeedRequest(BaseModel):
    speed: float


class FullscreenRequest(BaseModel):
    fullscreen: bool


class StreamingStartRequest(BaseModel):
    port: Optional[int] = None

    @field_validator('port')
    @classmethod
    def validate_port(cls, v):
        if v is not None and not 0 <= v <= 65535:
            raise ValueError("port must be between 0 and 65535")
        return v


class CreateStreamRequest(BaseModel):
    file_path: str
    filename: Optional[str] = None


async def run_command(operation: Awaitable[Any], name: str) -> CommandResult:
    """Await a player/streaming operation and wrap the outcome"""
    try:
        return CommandResult.ok(await operation)
    except (MpvError, StreamingServerError) as e:
        logger.error(f"Command {name} failed: {e}")
        return CommandResult.err(str(e))


def get_player(request: Request) -> MpvPlayer:
    return request.app.state.player


def get_streaming_server(request: Request) -> StreamingServer:
    return request.app.state.streaming_server


def create_app(
    player: Optional[MpvPlayer] = None,
    streaming_server: Optional[StreamingServer] = None,
) -> FastAPI:
    """Build the control API around an explicitly owned player and streaming server"""
    player = player or MpvPlayer(MpvProcess())
    streaming_server = streaming_server or StreamingServer()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown events"""
        logger.info("⚡️ mpv-cast-bridge starting up...")
        app.state.started_at = datetime.now(timezone.utc)
        try:
            yield
        finally:
            # Shutdown
            logger.info("mpv-cast-bridge shutting down...")
            await streaming_server.stop()
            await player.shutdown()

    app = FastAPI(
        title="mpv-cast-bridge",
        version=VERSION,
        description="Remote control for an mpv player plus LAN media streaming",
        lifespan=lifespan,
    )
    app.state.player = player
    app.state.streaming_server = streaming_server
    app.state.started_at = datetime.now(timezone.utc)

    # The UI may be served from a webview or another local origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_status_routes(app)
    _register_player_routes(app)
    _register_streaming_routes(app)
    return app


def _register_status_routes(app: FastAPI):
    @app.get("/")
    async def root(request: Request):
        uptime = datetime.now(timezone.utc) - request.app.state.started_at
        return {
            "message": "mpv-cast-bridge",
            "status": "running",
            "version": VERSION,
            "uptime": uptime.total_seconds(),
        }

    @app.get("/health")
    async def health_check(
        player: MpvPlayer = Depends(get_player),
        server: StreamingServer = Depends(get_streaming_server),
    ):
        return {
            "status": "healthy",
            "version": VERSION,
            "player": {
                "initialized": player.is_initialized,
                "pid": player.process.pid,
            },
            "streaming": {
                "running": server.is_running,
                "url": server.get_url(),
                "streams": len(server.registry),
            },
        }


def _register_player_routes(app: FastAPI):
    # Player initialization
    @app.post("/player/init", response_model=CommandResult)
    async def init_player(player: MpvPlayer = Depends(get_player)):
        return await run_command(player.ensure_started(), "init_player")

    @app.post("/player/destroy", response_model=CommandResult)
    async def destroy_player(player: MpvPlayer = Depends(get_player)):
        return await run_command(player.shutdown(), "destroy_player")

    # Playback control
    @app.post("/player/play", response_model=CommandResult)
    async def play_video(payload: PlayRequest, player: MpvPlayer = Depends(get_player)):
        try:
            await player.ensure_started()
        except MpvError as e:
            logger.error(f"Failed to initialize player: {e}")
            return CommandResult.err(f"Failed to initialize player: {e}")
        return await run_command(
            player.load(
                payload.url,
                start_position=payload.start_position,
                headers=payload.build_headers() or None,
            ),
            "play_video",
        )

    @app.post("/player/pause", response_model=CommandResult)
    async def pause_video(player: MpvPlayer = Depends(get_player)):
        return await run_command(player.pause(), "pause_video")

    @app.post("/player/resume", response_model=CommandResult)
    async def resume_video(player: MpvPlayer = Depends(get_player)):
        return await run_command(player.play(), "resume_video")

    @app.post("/player/toggle", response_model=CommandResult)
    async def toggle_playback(player: MpvPlayer = Depends(get_player)):
        return await run_command(player.toggle_pause(), "toggle_playback")

    @app.post("/player/stop", response_model=CommandResult)
    async def stop_video(player: MpvPlayer = Depends(get_player)):
        return await run_command(player.stop(), "stop_video")

    # Seeking
    @app.post("/player/seek", response_model=CommandResult)
    async def seek_video(payload: SeekRequest, player: MpvPlayer = Depends(get_player)):
        return await run_command(player.seek(payload.position), "seek_video")

    @app.post("/player/seek/relative", response_model=CommandResult)
    async def seek_video_relative(payload: SeekRelativeRequest, player: MpvPlayer = Depends(get_player)):
        return await run_command(player.seek_relative(payload.offset), "seek_video_relative")

    # Volume
    @app.post("/player/volume", response_model=CommandResult)
    async def set_volume(payload: VolumeRequest, player: MpvPlayer = Depends(get_player)):
        return await run_command(player.set_volume(payload.volume), "set_volume")

    @app.get("/player/volume", response_model=CommandResult)
    async def get_volume(player: MpvPlayer = Depends(get_player)):
        return await run_command(player.get_volume(), "get_volume")

    @app.post("/player/mute", response_model=CommandResult)
    async def set_mute(payload: MuteRequest, player: MpvPlayer = Depends(get_player)):
        return await run_command(player.set_mute(payload.muted), "set_mute")

    @app.post("/player/mute/toggle", response_model=CommandResult)
    async def toggle_mute(player: MpvPlayer = Depends(get_player)):
        return await run_command(player.toggle_mute(), "toggle_mute")

    # State
    @app.get("/player/state", response_model=CommandResult)
    async def get_playback_state(player: MpvPlayer = Depends(get_player)):
        result = await run_command(player.get_state(), "get_playback_state")
        if result.success:
            result.data = result.data.to_dict()
        return result

    @app.get("/player/position", response_model=CommandResult)
    async def get_position(player: MpvPlayer = Depends(get_player)):
        return await run_command(player.get_position(), "get_position")

    @app.get("/player/duration", response_model=CommandResult)
    async def get_duration(player: MpvPlayer = Depends(get_player)):
        return await run_command(player.get_duration(), "get_duration")

    # Tracks
    @app.post("/player/audio-track", response_model=CommandResult)
    async def set_audio_track(payload: TrackRequest, player: MpvPlayer = Depends(get_player)):
        return await run_command(player.set_audio_track(payload.index), "set_audio_track")

    @app.post("/player/subtitle-track", response_model=CommandResult)
    async def set_subtitle_track(payload: TrackRequest, player: MpvPlayer = Depends(get_player)):
        return await run_command(player.set_subtitle_track(payload.index), "set_subtitle_track")

    @app.post("/player/speed", response_model=CommandResult)
    async def set_playback_speed(payload: SpeedRequest, player: MpvPlayer = Depends(get_player)):
        return await run_command(player.set_speed(payload.speed), "set_playback_speed")

    # Fullscreen
    @app.post("/player/fullscreen", response_model=CommandResult)
    async def set_fullscreen(payload: FullscreenRequest, player: MpvPlayer = Depends(get_player)):
        return await run_command(player.set_fullscreen(payload.fullscreen), "set_fullscreen")

    @app.post("/player/fullscreen/toggle", response_model=CommandResult)
    async def toggle_fullscreen(player: MpvPlayer = Depends(get_player)):
        return await run_command(player.toggle_fullscreen(), "toggle_fullscreen")

    @app.get("/player/fullscreen", response_model=CommandResult)
    async def is_fullscreen(player: MpvPlayer = Depends(get_player)):
        return await run_command(player.is_fullscreen(), "is_fullscreen")


def _register_streaming_routes(app: FastAPI):
    @app.post("/streaming/start", response_model=CommandResult)
    async def start_stream_server(
        payload: Optional[StreamingStartRequest] = None,
        server: StreamingServer = Depends(get_streaming_server),
    ):
        port = payload.port if payload else None
        result = await run_command(server.start(port), "start_stream_server")
        if result.success:
            result.data = server.get_url()
        return result

    @app.post("/streaming/stop", response_model=CommandResult)
    async def stop_stream_server(server: StreamingServer = Depends(get_streaming_server)):
        return await run_command(server.stop(), "stop_stream_server")

    @app.get("/streaming/status", response_model=CommandResult)
    async def is_stream_server_running(server: StreamingServer = Depends(get_streaming_server)):
        return CommandResult.ok(server.is_running)

    @app.get("/streaming/url", response_model=CommandResult)
    async def get_stream_server_url(server: StreamingServer = Depends(get_streaming_server)):
        return CommandResult.ok(server.get_url())

    @app.get("/streaming/local-ip", response_model=CommandResult)
    async def local_ip():
        return CommandResult.ok(get_local_ip())

    @app.post("/streaming/streams", response_model=CommandResult)
    async def create_stream(
        payload: CreateStreamRequest,
        server: StreamingServer = Depends(get_streaming_server),
    ):
        if not os.path.isfile(payload.file_path):
            return CommandResult.err(f"File not found: {payload.file_path}")
        try:
            info = server.create_stream(payload.file_path, payload.filename)
        except StreamingServerError as e:
            logger.error(f"Command create_stream failed: {e}")
            return CommandResult.err(str(e))
        return CommandResult.ok({
            "stream_id": info.stream_id,
            "stream_url": info.stream_url,
            "server_url": info.server_url,
        })

    @app.delete("/streaming/streams/{stream_id}", response_model=CommandResult)
    async def remove_stream(stream_id: str, server: StreamingServer = Depends(get_streaming_server)):
        server.remove_stream(stream_id)
        return CommandResult.ok()


app = create_app()


def main():
    uvicorn.run(app, host=settings.HOST, port=settings.PORT,
                log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
