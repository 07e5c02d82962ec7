from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

# Application version
VERSION = "0.1.0"


class Settings(BaseSettings):
    """
    Application configuration loaded from environment variables.
    Utilizes pydantic-settings for robust validation and type-casting.
    """

    # Control API Configuration
    HOST: str = "127.0.0.1"
    PORT: int = 8764
    LOG_LEVEL: str = "info"

    # Streaming Server Configuration
    # The media server is reachable from other devices, so it binds all interfaces
    STREAM_HOST: str = "0.0.0.0"
    STREAM_PORT: int = 8765
    # Body chunk size for file streaming (64 KiB)
    STREAM_CHUNK_SIZE: int = 65536
    # Seconds uvicorn lets in-flight responses finish after stop()
    STREAM_SHUTDOWN_TIMEOUT: float = 5.0
    # Remote address used for local IP discovery. Nothing is sent to it.
    LOCAL_IP_PROBE_HOST: str = "8.8.8.8"

    # mpv process configuration
    MPV_PATH: str = "mpv"
    # IPC endpoint name prefix, the pid is appended to keep instances apart
    MPV_IPC_PREFIX: str = "mpv-cast-bridge"
    MPV_HWDEC: str = "auto-safe"
    MPV_DEMUXER_MAX_BYTES: str = "150MiB"
    MPV_DEMUXER_MAX_BACK_BYTES: str = "75MiB"
    MPV_FULLSCREEN: bool = True
    MPV_WINDOW_TITLE: str = "mpv-cast-bridge Player"
    MPV_EXTRA_ARGS: List[str] = []
    # Grace period (seconds) between the quit command and the forced kill
    MPV_QUIT_GRACE: float = 0.1

    # IPC connect retry: 50 x 100ms = 5 seconds
    IPC_CONNECT_ATTEMPTS: int = 50
    IPC_CONNECT_DELAY: float = 0.1
    # Reply correlation bounds - whichever is hit first ends the wait
    IPC_RESPONSE_MAX_READS: int = 100
    IPC_RESPONSE_TIMEOUT: float = 5.0
    # Max bytes in a single IPC line (track-list replies can be large)
    IPC_LINE_LIMIT: int = 1024 * 1024

    # Playback limits
    SPEED_MIN: float = 0.1
    SPEED_MAX: float = 4.0

    # Model configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="",  # No prefix, read directly from .env
        extra="ignore"  # Ignore extra environment variables
    )


# Global settings instance
settings = Settings()
