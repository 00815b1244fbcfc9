"""Shared pytest configuration and fixtures for the smi2mqtt test suite."""

import sys
from pathlib import Path

import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from smi2mqtt.gpu.types import Device  # noqa: E402
from tests.infrastructure.mocks.mqtt_mocks import FakePublisher  # noqa: E402

GPU_A_UUID = "GPU-00000000-0000-0000-0000-000000000000"
GPU_B_UUID = "GPU-11111111-2222-3333-4444-555555555555"


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "hardware: mark test as requiring an NVIDIA GPU and nvidia-smi"
    )


def pytest_addoption(parser):
    """Add custom command-line options."""
    parser.addoption(
        "--run-hardware",
        action="store_true",
        default=False,
        help="Run tests that require physical hardware",
    )


def pytest_collection_modifyitems(config, items):
    """Skip hardware tests unless --run-hardware is specified."""
    if config.getoption("--run-hardware"):
        return

    skip_hardware = pytest.mark.skip(reason="Need --run-hardware option to run")
    for item in items:
        if "hardware" in item.keywords:
            item.add_marker(skip_hardware)


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def gpu_a() -> Device:
    return Device(index=0, name="NVIDIA GeForce RTX 3090", uuid=GPU_A_UUID)


@pytest.fixture
def gpu_b() -> Device:
    return Device(index=1, name="NVIDIA RTX A4000", uuid=GPU_B_UUID)


@pytest.fixture
def fake_publisher() -> FakePublisher:
    return FakePublisher()
