import os

import pytest
from fastapi.testclient import TestClient

from conftest import populate
from sd_http_server import config
from sd_http_server.main import app, download_ref, init_state
from sd_http_server.services.volume import CardType, Volume

# Create a test client
client = TestClient(app)


@pytest.fixture(autouse=True)
def setup_state(volume):
    """Attach services for a fresh throw-away card to the app state."""
    init_state(app.state, volume)
    yield


def test_download_relative_reference():
    """A bare name is found below /sdcard and streamed back as an attachment."""
    card_dir = app.state.volume.base_dir
    content = os.urandom(20000)  # spans several chunks
    populate(card_dir, {"sdcard/img_1.jpg": content})

    response = client.get("/download", params={"file": "img_1.jpg"})
    assert response.status_code == 200
    assert response.content == content
    assert response.headers.get("content-type") == "image/jpeg"
    assert response.headers.get("content-disposition") == 'attachment; filename="img_1.jpg"'


def test_download_absolute_reference_uses_basename():
    card_dir = app.state.volume.base_dir
    populate(card_dir, {"sdcard/notes.txt": b"hello"})

    response = client.get("/download", params={"file": "/sdcard/notes.txt"})
    assert response.status_code == 200
    assert response.text == "hello"
    assert response.headers.get("content-type").startswith("text/plain")
    assert response.headers.get("content-disposition") == 'attachment; filename="notes.txt"'


def test_download_missing_parameter():
    response = client.get("/download")
    assert response.status_code == 400
    assert "Missing file parameter" in response.text


def test_download_not_found():
    response = client.get("/download", params={"file": "nonexistent"})
    assert response.status_code == 404
    assert "File not found" in response.text


def test_download_empty_reference_not_found():
    response = client.get("/download?file=")
    assert response.status_code == 404


def test_download_directory_not_found():
    card_dir = app.state.volume.base_dir
    populate(card_dir, {"sdcard/day1/img.jpg": b"x"})

    response = client.get("/download", params={"file": "day1"})
    assert response.status_code == 404
    assert "File not found" in response.text


def test_download_non_latin1_name():
    """Names outside latin-1 are sent in the RFC 5987 filename* form."""
    card_dir = app.state.volume.base_dir
    populate(card_dir, {"sdcard/写真.jpg": b"x"})

    response = client.get("/download", params={"file": "写真.jpg"})
    assert response.status_code == 200
    assert response.content == b"x"
    assert response.headers.get("content-disposition") == "attachment; filename*=utf-8''%E5%86%99%E7%9C%9F.jpg"


def test_download_name_with_quotes():
    card_dir = app.state.volume.base_dir
    populate(card_dir, {'sdcard/my "best".jpg': b"x"})

    response = client.get("/download", params={"file": 'my "best".jpg'})
    assert response.status_code == 200
    assert response.headers.get("content-disposition") == "attachment; filename*=utf-8''my%20%22best%22.jpg"


def test_download_null_byte_not_found():
    response = client.get("/download?file=a%00b.jpg")
    assert response.status_code == 404
    assert "File not found" in response.text


def test_index_lists_files_with_links():
    card_dir = app.state.volume.base_dir
    populate(card_dir, {"sdcard/img_1.jpg": b"abc", "sdcard/day1/img_2.jpg": b"de"})

    response = client.get("/")
    assert response.status_code == 200
    assert response.headers.get("content-type").startswith("text/html")
    assert "Listing for: /sdcard" in response.text
    assert '<a href="/download?file=img_1.jpg">img_1.jpg</a> (3 bytes)<br>' in response.text
    assert "<b>day1/</b><br>" in response.text
    assert '<a href="/download?file=day1/img_2.jpg">day1/img_2.jpg</a> (2 bytes)<br>' in response.text


def test_index_links_round_trip():
    """Every link on the index page downloads the listed file."""
    card_dir = app.state.volume.base_dir
    populate(card_dir, {"img_1.jpg": b"top", "day1/img_2.jpg": b"nested"})

    response = client.get("/")
    assert client.get("/download?file=img_1.jpg").content == b"top"
    assert client.get("/download?file=day1/img_2.jpg").content == b"nested"
    assert "Listing for: /</p>" in response.text


def test_index_without_card(card_dir):
    init_state(app.state, Volume(card_dir, CardType.NONE))

    response = client.get("/")
    assert response.status_code == 200
    assert "SD card not mounted." in response.text


def test_sd_status():
    card_dir = app.state.volume.base_dir
    populate(card_dir, {"img_1.jpg": b"x"})

    response = client.get("/sd_status")
    assert response.status_code == 200
    assert response.text == "SD mounted: yes\nDetected mount root: /\nCard type: SDHC/SDXC\n"


def test_snap_without_capture_fails():
    response = client.get("/snap")
    assert response.status_code == 500
    assert "Capture failed or SD not mounted" in response.text


def test_snap_empty_result_fails():
    app.state.capture = lambda: ""

    response = client.get("/snap")
    assert response.status_code == 500


def test_snap_error_fails():
    def broken():
        raise RuntimeError("camera unplugged")

    app.state.capture = broken

    response = client.get("/snap")
    assert response.status_code == 500


def test_snap_link_round_trips():
    """The download link from /snap resolves back to the captured file."""
    card_dir = app.state.volume.base_dir
    (card_dir / "sdcard").mkdir()

    async def capture():
        populate(card_dir, {"sdcard/img_20240101_000001.jpg": b"shot"})
        return "/sdcard/img_20240101_000001.jpg"

    app.state.capture = capture

    response = client.get("/snap")
    assert response.status_code == 200
    assert response.text == (
        "Saved: /sdcard/img_20240101_000001.jpg\n"
        "Download URL: /download?file=img_20240101_000001.jpg"
    )

    response = client.get("/download?file=img_20240101_000001.jpg")
    assert response.content == b"shot"


def test_snap_enforces_retention():
    card_dir = app.state.volume.base_dir
    populate(card_dir, {f"sdcard/img_2024010{i}_000000.jpg": b"x" for i in range(1, 4)})
    app.state.retention.set_max_files_to_keep(2)

    def capture():
        populate(card_dir, {"sdcard/img_20240109_000000.jpg": b"new"})
        return "/sdcard/img_20240109_000000.jpg"

    app.state.capture = capture

    response = client.get("/snap")
    assert response.status_code == 200
    assert sorted(os.listdir(card_dir / "sdcard")) == [
        "img_20240103_000000.jpg",
        "img_20240109_000000.jpg",
    ]


@pytest.mark.parametrize(
    "saved, expected",
    [
        ("/sdcard/img_1.jpg", "img_1.jpg"),
        ("/img_1.jpg", "img_1.jpg"),
        ("img_1.jpg", "img_1.jpg"),
        ("/sdcard/day1/img_1.jpg", "day1/img_1.jpg"),
    ],
)
def test_download_ref(saved, expected):
    assert download_ref(saved) == expected


def test_lifespan_builds_services_from_config(card_dir, monkeypatch):
    """Startup wires the configured card and trims it to the retention limit."""
    populate(card_dir, {f"img_2024010{i}_000000.jpg": b"x" for i in range(1, 6)})
    monkeypatch.setattr(config, "MOUNT_BASE_DIR", str(card_dir))
    monkeypatch.setattr(config, "CARD_TYPE", "MMC")
    monkeypatch.setattr(config, "MAX_FILES_TO_KEEP", 2)
    monkeypatch.setattr(config, "CAPTURE_COMMAND", "")

    with TestClient(app) as started:
        response = started.get("/sd_status")
        assert "Card type: MMC" in response.text
        assert app.state.retention.max_files_to_keep == 2
        assert app.state.capture is None

    assert sorted(os.listdir(card_dir)) == ["img_20240104_000000.jpg", "img_20240105_000000.jpg"]


if __name__ == "__main__":
    pytest.main(["-xvs", __file__])
