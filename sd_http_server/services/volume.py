import os
import posixpath
import stat
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional, Union


class CardType(str, Enum):
    NONE = "CARD_NONE"
    MMC = "MMC"
    SD = "SDSC"
    SDHC = "SDHC/SDXC"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Union[str, "CardType"]) -> "CardType":
        """Map a configured card type onto a known tag, UNKNOWN for anything else."""
        if isinstance(value, CardType):
            return value
        for card_type in cls:
            if value in (card_type.value, card_type.name):
                return card_type
        return cls.UNKNOWN


def normalize(path: str) -> str:
    """Normalize a logical volume path to an absolute form that stays inside the volume."""
    normalized = posixpath.normpath("/" + path.lstrip("/"))
    # normpath keeps a leading "//" as-is
    return "/" + normalized.lstrip("/")


def join(root: str, name: str) -> str:
    return normalize(root.rstrip("/") + "/" + name.lstrip("/"))


class VolumeHandle:
    """Read-only descriptor on a file or directory of the volume.

    Usable as a context manager; the descriptor is released on exit.
    """

    def __init__(self, path: str, fd: int):
        self.path = path
        self._fd: Optional[int] = fd
        st = os.fstat(fd)
        self.is_directory = stat.S_ISDIR(st.st_mode)
        self.size = 0 if self.is_directory else st.st_size

    @property
    def closed(self) -> bool:
        return self._fd is None

    def fileno(self) -> int:
        if self._fd is None:
            raise ValueError(f"Handle for {self.path} is closed")
        return self._fd

    def close(self):
        if self._fd is not None:
            os.close(self._fd)
            self._fd = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self):
        kind = "dir" if self.is_directory else "file"
        return f"VolumeHandle({self.path!r}, {kind}, size={self.size})"


class Volume:
    """Removable storage volume whose files are visible below a host directory."""

    def __init__(self, base_dir: Union[str, Path], card_type: Union[str, CardType] = CardType.SDHC):
        self.base_dir = Path(base_dir)
        self._card_type = CardType.parse(card_type)

    @property
    def card_type(self) -> CardType:
        if self._card_type is CardType.NONE or not self.base_dir.is_dir():
            return CardType.NONE
        return self._card_type

    def is_mounted(self) -> bool:
        return self.card_type is not CardType.NONE

    def host_path(self, path: str) -> Path:
        relative = normalize(path).lstrip("/")
        return self.base_dir / relative if relative else self.base_dir

    def open(self, path: str) -> Optional[VolumeHandle]:
        """Open a file or directory; None when the volume is absent or the open fails.

        Only absolute volume paths open, as on the card's own filesystem.
        """
        if not path or not path.startswith("/") or not self.is_mounted():
            return None
        logical = normalize(path)
        try:
            fd = os.open(self.host_path(logical), os.O_RDONLY)
        except (OSError, ValueError):
            return None
        try:
            return VolumeHandle(logical, fd)
        except OSError:
            os.close(fd)
            return None

    def exists(self, path: str) -> bool:
        handle = self.open(path)
        if handle is None:
            return False
        handle.close()
        return True

    @contextmanager
    def scandir(self, path: str) -> Iterator[Iterator[os.DirEntry]]:
        """Scoped directory scan; raises OSError when the directory cannot be opened."""
        if not self.is_mounted():
            raise FileNotFoundError(f"Volume not mounted: {self.base_dir}")
        try:
            scan = os.scandir(self.host_path(path))
        except ValueError as e:
            raise FileNotFoundError(f"Invalid path {path!r}: {e}") from e
        with scan as entries:
            yield entries
