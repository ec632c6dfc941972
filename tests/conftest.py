"""Pytest configuration and fixtures"""

from io import BytesIO

import pytest
from PIL import Image

from managers.asset_library import AssetLibrary
from managers.settings_manager import VALIDATORS, ENV_PREFIX, SettingsManager

PIL_FORMATS = {
    "image/jpeg": "JPEG",
    "image/png": "PNG",
    "image/gif": "GIF",
    "image/webp": "WEBP",
}


def encode_test_image(img: Image.Image, mime_type: str = "image/png") -> bytes:
    buf = BytesIO()
    img.save(buf, format=PIL_FORMATS.get(mime_type, mime_type))
    return buf.getvalue()


@pytest.fixture
def make_image():
    """Factory for encoded test images of a single colour."""
    def _make(size=(100, 100), color=(200, 50, 50), mime_type="image/png", mode="RGB"):
        return encode_test_image(Image.new(mode, size, color), mime_type)
    return _make


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep IMAGE_SERVER_* variables from the developer's shell out of tests."""
    for key in VALIDATORS:
        monkeypatch.delenv(ENV_PREFIX + key.upper(), raising=False)


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    path = tmp_path / "data"
    monkeypatch.setenv("IMAGE_SERVER_DATA_DIR", str(path))
    return path


@pytest.fixture
def settings_manager(tmp_path, data_dir):
    """SettingsManager with an isolated config file and data directory."""
    return SettingsManager(config_file=tmp_path / "config" / "config.json")


@pytest.fixture
def asset_library(settings_manager):
    return AssetLibrary(settings_manager)


def decode_bytes(data: bytes) -> Image.Image:
    img = Image.open(BytesIO(data))
    img.load()
    return img
