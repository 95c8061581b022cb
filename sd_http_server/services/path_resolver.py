from typing import Callable, Iterator, Optional, Tuple

from sd_http_server.logger_config import setup_logger
from sd_http_server.services.mount_detector import MountDetector
from sd_http_server.services.volume import Volume, VolumeHandle, join

logger = setup_logger(__name__)

SDCARD_PREFIX = "/sdcard/"

Transform = Callable[[str], Optional[str]]


# Each transform maps a normalized reference to one candidate path, or None
# when it does not apply to that reference.

def as_given(ref: str) -> Optional[str]:
    return ref


def sdcard_prefixed(ref: str) -> Optional[str]:
    if ref.startswith("/"):
        return None
    return SDCARD_PREFIX + ref


def slash_prefixed(ref: str) -> Optional[str]:
    if ref.startswith("/"):
        return None
    return "/" + ref


def sdcard_reprefixed(ref: str) -> Optional[str]:
    if not ref.startswith("/"):
        return None
    return SDCARD_PREFIX + ref[1:]


def slash_reprefixed(ref: str) -> Optional[str]:
    if not ref.startswith("/"):
        return None
    return "/" + ref[1:]


TRANSFORMS: Tuple[Transform, ...] = (
    as_given,
    sdcard_prefixed,
    slash_prefixed,
    sdcard_reprefixed,
    slash_reprefixed,
)


def strip_dot_slash(ref: str) -> str:
    while ref.startswith("./"):
        ref = ref[2:]
    return ref


def under_root(ref: str, root: str) -> str:
    """Last-resort candidate: the reference placed below the detected mount root."""
    if ref.startswith("/"):
        ref = ref[1:]
    return join(root, ref)


class PathResolver:
    """Turns a client file reference into an open handle on the volume.

    Browser links and the capture routine spell the same file with zero, one or
    two levels of mount prefix, so the resolver tries a fixed sequence of
    candidates and returns the first one that opens.
    """

    def __init__(self, volume: Volume, detector: MountDetector, transforms: Tuple[Transform, ...] = TRANSFORMS):
        self.volume = volume
        self.detector = detector
        self.transforms = transforms

    def candidates(self, requested: str) -> Iterator[str]:
        """Yield candidate paths in precedence order; the mount root is only detected when reached."""
        ref = strip_dot_slash(requested or "")
        if not ref:
            return
        for transform in self.transforms:
            candidate = transform(ref)
            if candidate is not None:
                yield candidate
        root = self.detector.detect_root()
        if root:
            yield under_root(ref, root)

    def resolve(self, requested: str) -> Optional[VolumeHandle]:
        for candidate in self.candidates(requested):
            handle = self.volume.open(candidate)
            if handle is not None:
                logger.debug(f"Resolved {requested!r} to {handle.path}")
                return handle
        logger.debug(f"No candidate opened for {requested!r}")
        return None
