import asyncio
import shlex
from datetime import datetime
from typing import Callable, Optional

from sd_http_server.logger_config import setup_logger
from sd_http_server.services.mount_detector import SDCARD, MountDetector
from sd_http_server.services.volume import Volume, join

logger = setup_logger(__name__)


def capture_filename(now: Optional[datetime] = None) -> str:
    """Timestamped name; lexicographic order matches capture order."""
    now = now or datetime.now()
    return f"img_{now.strftime('%Y%m%d_%H%M%S')}.jpg"


class CommandCapture:
    """Capture collaborator that shells out to a camera tool.

    The command template gets ``{output}`` replaced by the host path of the new
    image. Calling the instance returns the saved volume path, or an empty string
    when the capture failed.
    """

    def __init__(
        self,
        volume: Volume,
        detector: MountDetector,
        command: str,
        timeout: float = 10.0,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.volume = volume
        self.detector = detector
        self.command = command
        self.timeout = timeout
        self.clock = clock

    async def __call__(self) -> str:
        if not self.command:
            logger.error("Capture failed: no capture command configured")
            return ""
        if not self.volume.is_mounted():
            logger.error("Capture failed: SD not mounted")
            return ""

        root = self.detector.detect_root() or SDCARD
        saved = join(root, capture_filename(self.clock()))
        output_path = self.volume.host_path(saved)
        cmd = [part.replace("{output}", str(output_path)) for part in shlex.split(self.command)]

        try:
            logger.info(f"Capturing image to {saved}")
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
            try:
                _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
                logger.error(f"Capture command timed out after {self.timeout}s")
                return ""
        except OSError as e:
            logger.error(f"Failed to run capture command {cmd[0]}: {e}")
            return ""

        if process.returncode != 0:
            logger.error(f"Capture command failed ({process.returncode}): {stderr.decode(errors='replace')}")
            return ""
        if not output_path.is_file():
            logger.error(f"Capture command did not produce {output_path}")
            return ""

        logger.info(f"Image captured: {saved}")
        return saved
