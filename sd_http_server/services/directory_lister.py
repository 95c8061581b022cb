import html
import posixpath
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import quote

from sd_http_server.logger_config import setup_diag_logger, setup_logger
from sd_http_server.services.mount_detector import ROOT, SDCARD, MountDetector
from sd_http_server.services.volume import Volume, join

logger = setup_logger(__name__)
diag = setup_diag_logger()


@dataclass(frozen=True)
class FileEntry:
    path: str
    is_directory: bool
    size: int
    depth: int = 0

    @property
    def name(self) -> str:
        return posixpath.basename(self.path)

    def relative_to(self, root: str) -> str:
        return posixpath.relpath(self.path, root)


class DirectoryLister:
    """Depth-first, pre-order enumeration of the volume.

    A directory is reported before its children and carries the total size of
    the files below it. Only one directory scan is open per nesting level.
    """

    def __init__(self, volume: Volume, detector: MountDetector):
        self.volume = volume
        self.detector = detector

    def list(self, root: str) -> Optional[List[FileEntry]]:
        """Return the entries below root, or None when root cannot be opened."""
        entries: List[FileEntry] = []
        try:
            self._walk(root, 0, entries)
        except OSError as e:
            logger.warning(f"Failed to open directory {root}: {e}")
            return None
        return entries

    def _walk(self, path: str, depth: int, out: List[FileEntry]) -> int:
        total = 0
        with self.volume.scandir(path) as scan:
            children = sorted(scan, key=lambda e: e.name)
            for child in children:
                child_path = join(path, child.name)
                if child.is_dir():
                    index = len(out)
                    out.append(FileEntry(child_path, True, 0, depth))
                    try:
                        size = self._walk(child_path, depth + 1, out)
                    except OSError as e:
                        logger.warning(f"Failed to open subdir {child_path}: {e}")
                        size = 0
                    out[index] = FileEntry(child_path, True, size, depth)
                else:
                    try:
                        size = child.stat().st_size
                    except OSError as e:
                        logger.warning(f"Unable to stat {child_path}: {e}")
                        size = 0
                    out.append(FileEntry(child_path, False, size, depth))
                total += size
        return total

    def render_html(self, root: str) -> Optional[str]:
        """HTML fragment with a download link per file; None when root cannot be opened."""
        entries = self.list(root)
        if entries is None:
            return None
        parts = []
        for entry in entries:
            if entry.is_directory:
                parts.append(f"<b>{html.escape(entry.name)}/</b><br>")
            else:
                rel = entry.relative_to(root)
                parts.append(
                    f'<a href="/download?file={quote(rel)}">{html.escape(rel)}</a> '
                    f"({entry.size} bytes)<br>"
                )
        return "".join(parts)

    def debug_list(self):
        """Write a full listing of the card to the diagnostic log."""
        diag.info("debug_list: Scanning SD for files...")
        if not self.volume.is_mounted():
            diag.info("  SD reports no card (CARD_NONE).")
            return

        root = self.detector.detect_root()
        if root is None:
            diag.info("  No mount root detected (no files found or unable to access / and /sdcard).")
            for probe in (ROOT, SDCARD):
                if self.volume.exists(probe):
                    diag.info(f"  '{probe}' opened successfully but no files found.")
                else:
                    diag.info(f"  Unable to open '{probe}'.")
            return

        diag.info(f"  Detected mount root: {root}")
        entries = self.list(root)
        if entries is None:
            diag.info(f"  Unable to open detected root: {root}")
            return
        for entry in entries:
            if entry.is_directory:
                diag.info(f"DIR  : {entry.path}")
            else:
                diag.info(f"FILE : {entry.path}  ({entry.size} bytes)")
        diag.info("debug_list: scan complete.")
