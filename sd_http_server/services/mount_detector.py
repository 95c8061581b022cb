from typing import Optional

from sd_http_server.logger_config import setup_logger
from sd_http_server.services.volume import Volume

logger = setup_logger(__name__)

ROOT = "/"
SDCARD = "/sdcard"


class MountDetector:
    """Works out whether the card's files are visible at "/" or at "/sdcard".

    Boards differ in where the card gets mounted, so the answer is re-derived on
    every call instead of being cached.
    """

    def __init__(self, volume: Volume):
        self.volume = volume

    def count_files(self, path: str) -> int:
        """Count non-directory entries directly under path; 0 if it cannot be opened."""
        count = 0
        try:
            with self.volume.scandir(path) as entries:
                for entry in entries:
                    if not entry.is_dir():
                        count += 1
        except OSError:
            return 0
        return count

    def detect_root(self) -> Optional[str]:
        if not self.volume.is_mounted():
            return None

        count_root = self.count_files(ROOT)
        count_sdcard = self.count_files(SDCARD)
        logger.debug(f"Mount probe: {ROOT}={count_root} files, {SDCARD}={count_sdcard} files")

        if count_root == 0 and count_sdcard == 0:
            # Empty card: fall back on whichever opens, /sdcard first
            if self.volume.exists(SDCARD):
                return SDCARD
            if self.volume.exists(ROOT):
                return ROOT
            return None

        # Ties go to "/"
        if count_root >= count_sdcard:
            return ROOT
        return SDCARD
