"""
HTTP range streaming for local media files.

Serves registered files byte-for-byte to remote viewers (smart TVs, browsers)
with HTTP Range support so they can seek:

- GET/HEAD /stream/{stream_id}
- GET/HEAD /stream/{stream_id}/{filename}   (filename is cosmetic, for clients
  that infer the type from the URL)
"""

import logging
import os
import re
from typing import AsyncIterator, BinaryIO, Optional, Tuple

from anyio import to_thread
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from config import settings
from stream_registry import StreamRegistry

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    '.mp4': 'video/mp4',
    '.mkv': 'video/x-matroska',
    '.mov': 'video/quicktime',
    '.avi': 'video/x-msvideo',
    '.webm': 'video/webm',
    '.m4v': 'video/x-m4v',
    '.ts': 'video/mp2t',
    '.mp3': 'audio/mpeg',
    '.m4a': 'audio/mp4',
    '.flac': 'audio/flac',
    '.wav': 'audio/wav',
    '.ogg': 'audio/ogg',
}


# Plain ASCII digits on either side of the dash
BYTE_RANGE_RE = re.compile(r'(\d*)-(\d*)', re.ASCII)


def get_content_type(path: str) -> str:
    """Determine content type based on file extension"""
    _, ext = os.path.splitext(path)
    return CONTENT_TYPES.get(ext.lower(), 'application/octet-stream')


def parse_range(range_header: Optional[str], file_size: int) -> Optional[Tuple[int, int]]:
    """
    Parse a single ``bytes=start-end`` range against ``file_size``.

    Returns the inclusive ``(start, end)`` window, or None when the header is
    absent or unusable, in which case the whole file is served.
    """
    if not range_header:
        return None

    value = range_header.strip()
    if not value.startswith('bytes='):
        return None
    value = value[len('bytes='):]

    # Multi-range is not supported
    if ',' in value:
        return None

    match = BYTE_RANGE_RE.fullmatch(value)
    if not match:
        return None
    start_s, end_s = match.groups()
    first = int(start_s) if start_s else None
    last = int(end_s) if end_s else None

    if first is None:
        # Suffix range: "-500" means the last 500 bytes
        if not last:
            return None
        start = max(file_size - last, 0)
        end = file_size - 1
    else:
        start = first
        end = file_size - 1 if last is None else last

    if start > end or start >= file_size:
        return None

    return start, min(end, file_size - 1)


async def iter_file_range(
    file: BinaryIO,
    start: int,
    length: int,
    chunk_size: Optional[int] = None,
) -> AsyncIterator[bytes]:
    """Yield ``length`` bytes of ``file`` from ``start`` in fixed-size chunks.

    The file is closed when the iterator finishes. A read error ends the
    response early and is re-raised so the server aborts this connection only.
    """
    chunk_size = chunk_size or settings.STREAM_CHUNK_SIZE
    remaining = length
    try:
        if start:
            await to_thread.run_sync(file.seek, start)
        while remaining > 0:
            data = await to_thread.run_sync(file.read, min(chunk_size, remaining))
            if not data:
                break  # EOF
            remaining -= len(data)
            yield data
    except OSError as e:
        logger.error(f"I/O error while streaming {getattr(file, 'name', '?')}: {e}")
        raise
    finally:
        file.close()


async def _open_stream(registry: StreamRegistry, stream_id: str) -> Tuple[str, BinaryIO, int]:
    path = registry.resolve(stream_id)
    if path is None:
        raise HTTPException(status_code=404, detail="Stream not found")

    try:
        file = await to_thread.run_sync(open, path, 'rb')
    except FileNotFoundError:
        logger.error(f"Failed to open file {path}: not found")
        raise HTTPException(status_code=404, detail="File not found")
    except OSError as e:
        logger.error(f"Failed to open file {path}: {e}")
        raise HTTPException(status_code=500, detail="Failed to read file")

    try:
        file_size = os.fstat(file.fileno()).st_size
    except OSError as e:
        file.close()
        logger.error(f"Failed to get file metadata for {path}: {e}")
        raise HTTPException(status_code=500, detail="Failed to read file")

    return path, file, file_size


async def serve_stream(request: Request, stream_id: str) -> Response:
    """Core streaming logic with Range support"""
    registry: StreamRegistry = request.app.state.registry
    path, file, file_size = await _open_stream(registry, stream_id)

    content_type = get_content_type(path)
    range_header = request.headers.get('range')
    byte_range = parse_range(range_header, file_size)

    headers = {
        "Accept-Ranges": "bytes",
    }
    if byte_range:
        start, end = byte_range
        length = end - start + 1
        status_code = 206
        headers["Content-Range"] = f"bytes {start}-{end}/{file_size}"
        logger.debug(
            f"Range request for stream {stream_id}: {range_header} -> {start}-{end}/{file_size}")
    else:
        start = 0
        length = file_size
        status_code = 200
        if range_header:
            logger.debug(
                f"Ignoring unusable range for stream {stream_id}: {range_header}")
    headers["Content-Length"] = str(length)

    if request.method == "HEAD":
        file.close()
        return Response(
            content=None,
            status_code=status_code,
            headers=headers,
            media_type=content_type
        )

    return StreamingResponse(
        iter_file_range(file, start, length, request.app.state.chunk_size),
        status_code=status_code,
        headers=headers,
        media_type=content_type
    )


def create_streaming_app(
    registry: StreamRegistry,
    chunk_size: Optional[int] = None,
) -> FastAPI:
    """Build the FastAPI app that serves registered streams."""
    app = FastAPI(
        title="mpv-cast-bridge streaming",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.registry = registry
    app.state.chunk_size = chunk_size or settings.STREAM_CHUNK_SIZE

    # Remote players load media from arbitrary origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["*"],
    )

    @app.api_route("/stream/{stream_id}", methods=["GET", "HEAD"])
    async def stream(stream_id: str, request: Request):
        return await serve_stream(request, stream_id)

    @app.api_route("/stream/{stream_id}/{filename}", methods=["GET", "HEAD"])
    async def stream_with_filename(stream_id: str, filename: str, request: Request):
        """Same as /stream/{stream_id}; the filename helps TVs pick a decoder"""
        return await serve_stream(request, stream_id)

    return app
