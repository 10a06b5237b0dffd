"""Tests for image."""

from pathlib import Path

import pytest

from csi_driver_lvm.exceptions import ImageResolutionError, InputException
from csi_driver_lvm.image import (
    ImageReference,
    ImageVector,
    default_image_vector,
    read_image_vector,
)
from csi_driver_lvm.resources import IMAGE_NAMES

TESTDATA = Path(__file__).parent / "testdata"


def test_packaged_image_vector_has_all_images() -> None:
    """Test every image used by the deployment is packaged."""
    vector = default_image_vector()
    for name in IMAGE_NAMES:
        assert vector.resolve(name).name == name


def test_resolve() -> None:
    """Test resolving an image by name."""
    vector = ImageVector(
        images=[
            ImageReference(name="csi-driver-lvm", repository="ghcr.io/metal-stack/csi-driver-lvm", tag="v0.6.3"),
        ]
    )
    assert str(vector.resolve("csi-driver-lvm")) == "ghcr.io/metal-stack/csi-driver-lvm:v0.6.3"

    with pytest.raises(ImageResolutionError, match="Failed to find csi-resizer image") as excinfo:
        vector.resolve("csi-resizer")
    assert excinfo.value.image_name == "csi-resizer"


@pytest.mark.parametrize(
    ("image", "expected"),
    [
        (ImageReference(name="a", repository="example.com/a", tag="v1"), "example.com/a:v1"),
        (ImageReference(name="a", repository="example.com/a"), "example.com/a"),
        (
            ImageReference(name="a", repository="example.com/a", tag="sha256:abc"),
            "example.com/a@sha256:abc",
        ),
    ],
)
def test_image_reference_str(image: ImageReference, expected: str) -> None:
    """Test formatting image references."""
    assert str(image) == expected


def test_image_vector_overwrite(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test the overwrite file replaces packaged images by name."""
    monkeypatch.setenv("IMAGEVECTOR_OVERWRITE", str(TESTDATA / "images-overwrite.yaml"))
    vector = default_image_vector()
    assert (
        str(vector.resolve("csi-driver-lvm"))
        == "registry.example.com/metal-stack/csi-driver-lvm:v0.7.0-rc.1"
    )
    assert (
        str(vector.resolve("csi-attacher"))
        == "registry.example.com/sig-storage/csi-attacher@sha256:0123456789abcdef"
    )
    assert str(vector.resolve("csi-resizer")).startswith("registry.k8s.io/sig-storage/csi-resizer:")
    assert len([image for image in vector.images if image.name == "csi-driver-lvm"]) == 1


def test_read_image_vector() -> None:
    """Test reading an image vector file."""
    vector = read_image_vector(TESTDATA / "images-overwrite.yaml")
    assert [image.name for image in vector.images] == ["csi-driver-lvm", "csi-attacher"]


@pytest.mark.parametrize(
    "content",
    [
        "images:\n- name: a\n  repository: b\n  registry: c\n",
        "images:\n- name: a\n",
        "images: [broken",
    ],
)
def test_parse_invalid_image_vector(content: str) -> None:
    """Test invalid image vectors are rejected."""
    with pytest.raises(InputException):
        ImageVector.parse_yaml(content)
