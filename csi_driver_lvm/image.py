"""Resolve symbolic image names to concrete container image references.

The image vector is a YAML document listing the images used by the deployed
workloads. A packaged vector ships with the extension and may be overridden
per image by the file named in the `IMAGEVECTOR_OVERWRITE` environment
variable.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import logging
import os
from pathlib import Path

from mashumaro import DataClassDictMixin
from mashumaro.config import BaseConfig
from mashumaro.codecs.yaml import yaml_decode
from mashumaro.exceptions import (
    ExtraKeysError,
    InvalidFieldValue,
    MissingField,
)
import yaml

from .exceptions import ImageResolutionError, InputException

__all__ = [
    "ImageResolver",
    "ImageReference",
    "ImageVector",
    "read_image_vector",
    "default_image_vector",
]

_LOGGER = logging.getLogger(__name__)

IMAGES_PATH = Path(__file__).parent / "images.yaml"
OVERWRITE_ENV = "IMAGEVECTOR_OVERWRITE"


@dataclass(frozen=True)
class ImageReference(DataClassDictMixin):
    """A single entry of the image vector."""

    name: str
    repository: str
    tag: str | None = None

    def __str__(self) -> str:
        if not self.tag:
            return self.repository
        if self.tag.startswith("sha256:"):
            return f"{self.repository}@{self.tag}"
        return f"{self.repository}:{self.tag}"

    class Config(BaseConfig):
        omit_none = True
        forbid_extra_keys = True


class ImageResolver(ABC):
    """Looks up an image reference by its symbolic name."""

    @abstractmethod
    def resolve(self, name: str) -> ImageReference:
        """Return the image for the name or raise ImageResolutionError."""


@dataclass
class ImageVector(ImageResolver, DataClassDictMixin):
    """An image resolver backed by a list of image references."""

    images: list[ImageReference] = field(default_factory=list)

    def resolve(self, name: str) -> ImageReference:
        # Later entries replace earlier ones with the same name
        for image in reversed(self.images):
            if image.name == name:
                return image
        raise ImageResolutionError(name)

    def merge(self, overwrite: "ImageVector") -> "ImageVector":
        """Return a vector where images in `overwrite` replace those with the same name."""
        replaced = {image.name for image in overwrite.images}
        return ImageVector(
            images=[image for image in self.images if image.name not in replaced]
            + list(overwrite.images)
        )

    @classmethod
    def parse_yaml(cls, content: str) -> "ImageVector":
        """Parse a serialized image vector."""
        try:
            return yaml_decode(content, cls)
        except (
            yaml.YAMLError,
            ExtraKeysError,
            InvalidFieldValue,
            MissingField,
        ) as err:
            raise InputException(f"Unable to parse image vector: {err}") from err


def read_image_vector(path: Path) -> ImageVector:
    """Read an image vector from the specified file."""
    _LOGGER.debug("Reading image vector from %s", path)
    return ImageVector.parse_yaml(path.read_text(encoding="utf-8"))


def default_image_vector() -> ImageVector:
    """Return the packaged image vector with any configured overwrite applied."""
    vector = read_image_vector(IMAGES_PATH)
    if overwrite_path := os.environ.get(OVERWRITE_ENV):
        _LOGGER.info("Applying image vector overwrite from %s", overwrite_path)
        vector = vector.merge(read_image_vector(Path(overwrite_path)))
    return vector
