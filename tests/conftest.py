"""Test configuration and fixtures."""

import shutil

import pytest

from tests.helpers import FakeImageSource, build_layer


@pytest.fixture
def abc_layers():
    """Three-layer chain A <- B <- C exercising overwrites and whiteouts."""
    return {
        "A": build_layer(
            dirs=["etc", "shared"],
            files={
                "etc/version": "A",
                "a.txt": "from A",
                "shared/old.txt": "lower",
            },
        ),
        "B": build_layer(
            files={"etc/version": "B", "b.txt": "from B"},
            whiteouts=["a.txt"],
        ),
        "C": build_layer(
            files={"etc/version": "C", "c.txt": "from C", "shared/new.txt": "upper"},
            opaque=["shared"],
        ),
    }


@pytest.fixture
def abc_source(abc_layers):
    """Image source serving the A/B/C chain, slowest layer first."""
    return FakeImageSource(abc_layers, delays={"A": 0.03, "B": 0.02, "C": 0.0})


@pytest.fixture
def dest(tmp_path):
    """Destination root filesystem directory (not created yet)."""
    return tmp_path / "rootfs"


@pytest.fixture
def git_available():
    if shutil.which("git") is None:
        pytest.skip("git not available")


# Pytest configuration
def pytest_configure(config):
    """Configure pytest markers and settings."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test requiring git"
    )
    config.addinivalue_line("markers", "unit: mark test as unit test (default)")
