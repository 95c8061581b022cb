import asyncio
import inspect
from contextlib import asynccontextmanager
from typing import Callable, Optional
from urllib.parse import quote

import aiofiles
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, StreamingResponse
from starlette.background import BackgroundTask

from sd_http_server import config
from sd_http_server.logger_config import setup_logger
from sd_http_server.services.capture import CommandCapture
from sd_http_server.services.content_types import get_content_type
from sd_http_server.services.directory_lister import DirectoryLister
from sd_http_server.services.mount_detector import MountDetector
from sd_http_server.services.path_resolver import PathResolver
from sd_http_server.services.retention import RetentionEnforcer
from sd_http_server.services.status import StatusReporter
from sd_http_server.services.volume import Volume

# Logger setup
logger = setup_logger(__name__)

SDCARD_PREFIX = "/sdcard/"


def init_state(state, volume: Volume, max_files_to_keep: int = 0, capture: Optional[Callable] = None):
    """Wire the storage services for one volume onto the application state."""
    detector = MountDetector(volume)
    state.volume = volume
    state.detector = detector
    state.resolver = PathResolver(volume, detector)
    state.lister = DirectoryLister(volume, detector)
    state.retention = RetentionEnforcer(volume, detector, max_files_to_keep)
    state.status_reporter = StatusReporter(volume, detector)
    state.capture = capture


async def retention_loop(enforcer: RetentionEnforcer, interval: float):
    while True:
        await asyncio.sleep(interval)
        try:
            await enforcer.enforce()
        except Exception as e:
            logger.error(f"Error enforcing retention: {str(e)}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    volume = Volume(config.MOUNT_BASE_DIR, config.CARD_TYPE)
    init_state(app.state, volume, config.MAX_FILES_TO_KEEP)
    if config.CAPTURE_COMMAND:
        app.state.capture = CommandCapture(
            volume, app.state.detector, config.CAPTURE_COMMAND, config.CAPTURE_TIMEOUT_SECONDS
        )

    app.state.lister.debug_list()
    await app.state.retention.enforce()

    task = None
    if config.RETENTION_INTERVAL_SECONDS > 0 and config.MAX_FILES_TO_KEEP > 0:
        task = asyncio.create_task(retention_loop(app.state.retention, config.RETENTION_INTERVAL_SECONDS))
    yield
    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


# Create FastAPI app with lifespan
app = FastAPI(title="SD HTTP Server", lifespan=lifespan)


def download_name(path: str) -> str:
    """Return the basename used for the Content-Disposition filename."""
    return path.rsplit("/", 1)[-1]


def content_disposition(filename: str) -> str:
    # Names that need escaping go in the RFC 5987 form, as FileResponse does
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


def download_ref(saved: str) -> str:
    """Relativize a saved capture path so the download link goes through the resolver's prefixes."""
    rel = saved
    if rel.startswith(SDCARD_PREFIX):
        rel = rel[len(SDCARD_PREFIX):]
    if rel.startswith("/"):
        rel = rel[1:]
    return rel


@app.get("/", response_class=HTMLResponse)
async def index(request: Request):
    """HTML listing of every file on the card."""
    state = request.app.state
    body = [
        "<!doctype html><html><head><meta charset='utf-8'><title>SD card</title></head><body>",
        "<h2>Files on SD card</h2>",
    ]

    if not state.volume.is_mounted():
        body.append("SD card not mounted.<br>")
    else:
        root = state.detector.detect_root()
        if root is None:
            body.append("SD mounted but no files found (or unable to access mountpoint).<br>")
        else:
            body.append(f"<p>Listing for: {root}</p>")
            listing = state.lister.render_html(root)
            if listing is None:
                body.append(f"Failed to open directory at {root}<br>")
            else:
                body.append(listing)

    body.append(
        "<hr><small>Use /download?file=/img_YYYY... or /download?file=img_... to download "
        "or /snap to take a photo now</small></body></html>"
    )
    return HTMLResponse("".join(body))


@app.get("/download")
async def download(request: Request, file: Optional[str] = None):
    """Stream a file from the card as an attachment."""
    if file is None:
        raise HTTPException(status_code=400, detail="Missing file parameter")

    logger.info(f"Receiving download request for file: {file}")
    handle = request.app.state.resolver.resolve(file)
    if handle is None or handle.is_directory:
        if handle is not None:
            handle.close()
        raise HTTPException(status_code=404, detail="File not found")

    content_type = get_content_type(file)
    headers = {
        "content-disposition": content_disposition(download_name(file)),
        "content-length": str(handle.size),
    }

    async def file_iterator():
        try:
            async with aiofiles.open(handle.fileno(), 'rb', closefd=False) as f:
                while chunk := await f.read(config.CHUNK_SIZE):
                    yield chunk
        finally:
            handle.close()

    # Also closes the handle when the body is never iterated
    return StreamingResponse(
        file_iterator(),
        media_type=content_type,
        headers=headers,
        background=BackgroundTask(handle.close),
    )


@app.get("/snap")
async def snap(request: Request):
    """Trigger a capture and report where the image was saved."""
    state = request.app.state
    logger.info("HTTP /snap requested - triggering capture")

    saved = ""
    if state.capture is not None:
        try:
            saved = state.capture()
            if inspect.isawaitable(saved):
                saved = await saved
        except Exception as e:
            logger.error(f"Error during capture: {str(e)}", exc_info=True)
            saved = ""

    if not saved:
        raise HTTPException(status_code=500, detail="Capture failed or SD not mounted")

    await state.retention.enforce()
    return PlainTextResponse(f"Saved: {saved}\nDownload URL: /download?file={download_ref(saved)}")


@app.get("/sd_status")
async def sd_status(request: Request):
    return PlainTextResponse(request.app.state.status_reporter.status())


if __name__ == "__main__":
    logger.info("Starting SD HTTP Server...")
    logger.info(f"Mount base directory: {config.MOUNT_BASE_DIR}")
    logger.info(f"Card type: {config.CARD_TYPE}")
    logger.info(f"Max files to keep: {config.MAX_FILES_TO_KEEP or 'unlimited'}")
    uvicorn.run(app, host=config.HOST, port=config.PORT)
