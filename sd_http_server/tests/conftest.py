from pathlib import Path
from typing import Dict, Union

import pytest

from sd_http_server.services.mount_detector import MountDetector
from sd_http_server.services.volume import CardType, Volume


def populate(base: Path, files: Dict[str, Union[bytes, None]]):
    """Create files (bytes) and empty directories (None) below base."""
    for rel, content in files.items():
        path = base / rel
        if content is None:
            path.mkdir(parents=True, exist_ok=True)
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)


@pytest.fixture
def card_dir(tmp_path):
    base = tmp_path / "card"
    base.mkdir()
    return base


@pytest.fixture
def volume(card_dir):
    return Volume(card_dir, CardType.SDHC)


@pytest.fixture
def detector(volume):
    return MountDetector(volume)
