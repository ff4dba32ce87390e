"""Pytest configuration and shared fixtures for igdnat tests."""

from __future__ import annotations

import logging

import pytest

from igdnat.nat.device import DeviceReference
from igdnat.nat.locator import parse_location_url


def pytest_configure(config):
    """Register all project markers to avoid warnings when ini isn't loaded."""
    markers = [
        ("asyncio", "marks tests as async (deselect with '-m \"not asyncio\"')"),
        ("unit", "marks tests as unit tests"),
        ("network", "marks tests as network tests"),
        ("cli", "marks tests as CLI tests"),
        ("config", "marks tests as configuration tests"),
        ("observability", "marks tests as observability tests"),
    ]
    for name, desc in markers:
        config.addinivalue_line("markers", f"{name}: {desc}")


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Keep IGDNAT_* variables from the developer's shell out of tests."""
    import os

    for name in list(os.environ):
        if name.startswith("IGDNAT_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def cleanup_logging():
    """Clean up logging handlers after each test to prevent closed file errors."""
    yield
    for logger_name in list(logging.Logger.manager.loggerDict.keys()):
        logger = logging.getLogger(logger_name)
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

    # dictConfig turns propagation off, which hides records from caplog
    package_logger = logging.getLogger("igdnat")
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)


@pytest.fixture
def device() -> DeviceReference:
    """Unresolved reference to a gateway at 192.168.1.1:5000."""
    return parse_location_url("http://192.168.1.1:5000/rootDesc.xml")


@pytest.fixture
def resolved_device(device: DeviceReference) -> DeviceReference:
    device.bind_control_path("/ctl/IPConn")
    return device
