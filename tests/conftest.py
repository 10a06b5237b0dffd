"""Test fixtures for the csi-driver-lvm extension."""

from collections.abc import Generator

import pytest

from csi_driver_lvm.actuator import Actuator
from csi_driver_lvm.config import ControllerConfiguration
from csi_driver_lvm.image import ImageReference, ImageVector
from csi_driver_lvm.managedresources import InMemoryClient
from csi_driver_lvm.manifest import Extension
from csi_driver_lvm.resources import IMAGE_NAMES


@pytest.fixture(name="image_vector")
def image_vector_fixture() -> ImageVector:
    """Image vector with a fixed reference for every required image."""
    return ImageVector(
        images=[
            ImageReference(name=name, repository=f"example.com/{name}", tag="v1.0.0")
            for name in IMAGE_NAMES
        ]
    )


@pytest.fixture(name="controller_config")
def controller_config_fixture() -> ControllerConfiguration:
    """Operator defaults used by the actuator."""
    return ControllerConfiguration(
        default_host_write_path="/etc/lvm",
        default_device_pattern="/dev/nvme[0-9]n[0-9]",
    )


@pytest.fixture(name="client")
def client_fixture() -> InMemoryClient:
    """In-memory managed resource client."""
    return InMemoryClient()


@pytest.fixture(name="actuator")
def actuator_fixture(
    client: InMemoryClient,
    controller_config: ControllerConfiguration,
    image_vector: ImageVector,
) -> Actuator:
    """Actuator backed by the in-memory client."""
    return Actuator(client, controller_config, image_vector)


@pytest.fixture(name="extension")
def extension_fixture() -> Extension:
    """Extension without provider config."""
    return Extension(name="csi-driver-lvm", namespace="shoot--prod--cluster")


@pytest.fixture(autouse=True)
def clear_image_overwrite(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Ensure the image vector overwrite from the environment is not used."""
    monkeypatch.delenv("IMAGEVECTOR_OVERWRITE", raising=False)
    yield
