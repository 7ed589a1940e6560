"""
Pytest configuration and shared fixtures for resin-image-unwrapper tests.

This module provides common fixtures and utilities used across all test modules.
"""

from contextlib import suppress
from pathlib import Path
from typing import Callable, List
from unittest.mock import Mock

import pytest
from loguru import logger

from resin_image_unwrapper.config import ConversionRequest, ImageFormat, UnwrapConfig


# ==============================================================================
# Subprocess Mock Fixtures
# ==============================================================================


@pytest.fixture
def mock_subprocess_run(mocker):
    """
    Fixture providing a mock for subprocess.run.

    Returns:
        Mock object for subprocess.run
    """
    return mocker.patch("subprocess.run")


@pytest.fixture
def mock_subprocess_success(mocker) -> Mock:
    """
    Fixture providing a mock subprocess.run that always succeeds.

    Returns:
        Mock object for subprocess.run.
    """
    mock_result = Mock()
    mock_result.returncode = 0
    mock_result.stdout = ""
    mock_result.stderr = ""
    return mocker.patch("subprocess.run", return_value=mock_result)


@pytest.fixture
def capture_subprocess_calls(mocker) -> List[List]:
    """
    Fixture that captures all subprocess.run calls for inspection.

    Returns:
        List that will contain all subprocess command arguments.
    """
    calls = []

    def track_call(cmd, **kwargs):
        calls.append(cmd)
        result = Mock()
        result.returncode = 0
        result.stdout = ""
        result.stderr = ""
        return result

    mocker.patch("subprocess.run", side_effect=track_call)
    return calls


# ==============================================================================
# Logging Fixtures
# ==============================================================================


@pytest.fixture
def log_records() -> List[dict]:
    """
    Fixture collecting loguru records emitted during a test.

    Returns:
        List of loguru record dicts, in emission order.
    """
    records: List[dict] = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    with suppress(ValueError):
        logger.remove(handler_id)


# ==============================================================================
# Image and Configuration Fixtures
# ==============================================================================


@pytest.fixture
def flasher_image(tmp_path) -> Path:
    """Fixture providing a fake flasher image file."""
    image = tmp_path / "input" / "resin-flasher.img"
    image.parent.mkdir()
    image.write_bytes(b"\0" * 1024)
    return image


@pytest.fixture
def output_dir(tmp_path) -> Path:
    """Fixture providing an existing output directory."""
    directory = tmp_path / "output"
    directory.mkdir()
    return directory


@pytest.fixture
def make_config(tmp_path, flasher_image, output_dir) -> Callable[..., UnwrapConfig]:
    """
    Fixture providing a factory for run configurations.

    Keyword arguments override the UnwrapConfig fields; ``image_format`` and
    ``image_size`` build the conversion request.
    """

    def factory(image_format=None, image_size=None, **overrides) -> UnwrapConfig:
        conversion = None
        if image_format:
            conversion = ConversionRequest(ImageFormat(image_format), image_size)
        values = {
            "flasher_image": flasher_image,
            "output_directory": output_dir,
            "conversion": conversion,
            "mount_root": tmp_path / "mnt",
            "qemu_img": "qemu-img",
        }
        values.update(overrides)
        return UnwrapConfig(**values)

    return factory


@pytest.fixture
def flasher_boot(tmp_path) -> Path:
    """
    Fixture providing a populated flasher boot partition tree.

    Contains splash images, config.json and both network directories.
    """
    boot = tmp_path / "flasher-boot"
    (boot / "splash").mkdir(parents=True)
    (boot / "splash" / "resin-logo.png").write_bytes(b"\x89PNG flasher logo")
    (boot / "splash" / "extra").mkdir()
    (boot / "splash" / "extra" / "frame.png").write_bytes(b"frame")
    (boot / "config.json").write_text('{"applicationId": 1234}', encoding="utf-8")
    (boot / "system-connections").mkdir()
    (boot / "system-connections" / "wifi").write_text("[wifi]\nssid=office\n", encoding="utf-8")
    (boot / "system-proxy").mkdir()
    (boot / "system-proxy" / "redsocks.conf").write_text("base {}\n", encoding="utf-8")
    return boot


@pytest.fixture
def output_boot(tmp_path) -> Path:
    """
    Fixture providing the boot partition tree of a freshly extracted image.

    Holds stock splash and config plus stale network settings.
    """
    boot = tmp_path / "output-boot"
    (boot / "splash").mkdir(parents=True)
    (boot / "splash" / "resin-logo.png").write_bytes(b"stock logo")
    (boot / "config.json").write_text("{}", encoding="utf-8")
    (boot / "system-connections").mkdir()
    (boot / "system-connections" / "stale-ethernet").write_text("old", encoding="utf-8")
    return boot


@pytest.fixture(autouse=True)
def reset_logging():
    """
    Auto-use fixture that drops loguru sinks added during a test.

    Keeps sinks bound to captured streams from leaking into later tests.
    """
    yield
    logger.remove()
