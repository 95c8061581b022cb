import posixpath
from dataclasses import dataclass, field
from typing import List, Optional

import aiofiles.os

from sd_http_server.logger_config import setup_diag_logger, setup_logger
from sd_http_server.services.mount_detector import MountDetector
from sd_http_server.services.volume import Volume, join

logger = setup_logger(__name__)
diag = setup_diag_logger()


@dataclass
class RetentionReport:
    root: Optional[str] = None
    deleted: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    kept: int = 0


class RetentionEnforcer:
    def __init__(self, volume: Volume, detector: MountDetector, max_files_to_keep: int = 0):
        self.volume = volume
        self.detector = detector
        self.max_files_to_keep = 0
        self.set_max_files_to_keep(max_files_to_keep)

    def set_max_files_to_keep(self, max_files: int):
        """Set the file-count ceiling; 0 disables retention."""
        if max_files < 0:
            raise ValueError("max_files_to_keep must be >= 0")
        self.max_files_to_keep = max_files

    def list_top_level_files(self, root: str) -> Optional[List[str]]:
        """Base names of the files directly under root, or None when it cannot be opened."""
        names = []
        try:
            with self.volume.scandir(root) as entries:
                for entry in entries:
                    if not entry.is_dir():
                        names.append(posixpath.basename(entry.name))
        except OSError as e:
            logger.warning(f"Retention: unable to open {root}: {e}")
            return None
        return names

    async def enforce(self) -> RetentionReport:
        """Delete the oldest top-level files until at most max_files_to_keep remain.

        Files are assumed to carry a timestamp prefix, so name order is age order.
        A file that cannot be removed is logged and skipped; the rest are still
        processed.
        """
        report = RetentionReport()
        if self.max_files_to_keep == 0:
            return report

        report.root = self.detector.detect_root()
        if report.root is None:
            return report

        names = self.list_top_level_files(report.root)
        if names is None:
            return report
        if len(names) <= self.max_files_to_keep:
            report.kept = len(names)
            return report

        names.sort()
        to_remove = len(names) - self.max_files_to_keep
        for name in names[:to_remove]:
            path = join(report.root, name)
            diag.info(f"Removing old file: {path}")
            try:
                await aiofiles.os.remove(self.volume.host_path(path))
            except OSError as e:
                logger.error(f"Failed to remove {path}: {str(e)}")
                report.failed.append(path)
                continue
            report.deleted.append(path)

        report.kept = len(names) - len(report.deleted)
        logger.info(
            f"Retention: removed {len(report.deleted)} of {to_remove} file(s) under {report.root}, "
            f"{report.kept} remaining"
        )
        return report
