"""Global pytest fixtures and configuration."""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from platconf.models.manifest import ImageRef, ReleaseManifestV2  # noqa: E402
from platconf.services.status_store import StatusStore  # noqa: E402


@pytest.fixture
def status_store():
    """Fresh StatusStore with an empty record."""
    return StatusStore()


@pytest.fixture
def sample_manifest_v2():
    """Sample v2 manifest document as served by the build server."""
    return {
        "build": 1234,
        "codename": "Kilimanjaro",
        "url": "https://example.com/releases/1234",
        "published_at": "2017-03-01T12:00:00Z",
        "images": [
            {"name": "quay.io/experimentalplatform/configure", "tag": "1.4.2", "pre_download": True},
            {"name": "quay.io/experimentalplatform/skvs", "tag": "2.0.1", "pre_download": True},
            {"name": "quay.io/experimentalplatform/monitoring", "tag": "0.9.0", "pre_download": False},
        ],
    }


@pytest.fixture
def sample_manifest_v1():
    """Sample v1 manifest document (a one-element array)."""
    return [
        {
            "build": 1000,
            "codename": "Everest",
            "url": "https://example.com/releases/1000",
            "published_at": "2016-11-20T08:30:00Z",
            "images": {
                "quay.io/experimentalplatform/configure": "1.0.0",
                "quay.io/experimentalplatform/skvs": "1.3.7",
            },
        }
    ]


@pytest.fixture
def manifest(sample_manifest_v2):
    """Parsed v2 manifest."""
    return ReleaseManifestV2.model_validate(sample_manifest_v2)


@pytest.fixture
def mock_process_manager():
    """Mock ProcessManager, every host command succeeds."""
    manager = MagicMock()
    manager.pull_image = AsyncMock()
    manager.extract_image = AsyncMock()
    manager.perform_os_update = AsyncMock()
    manager.reload_systemd = AsyncMock()
    manager.reboot = AsyncMock()
    manager.set_button = AsyncMock()
    return manager


@pytest.fixture
def make_images():
    """Factory building ImageRefs named <prefix>-0 .. <prefix>-N."""

    def factory(count: int, prefix: str = "quay.io/test/image") -> list:
        return [
            ImageRef(name=f"{prefix}-{i}", tag=f"v{i}", pre_download=True)
            for i in range(count)
        ]

    return factory
