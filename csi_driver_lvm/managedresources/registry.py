"""Serialize a set of objects into the data of a managed resource secret."""

import logging
from typing import Any

import yaml

from csi_driver_lvm.exceptions import SerializationError

__all__ = ["Registry"]

_LOGGER = logging.getLogger(__name__)


def object_filename(obj: dict[str, Any]) -> str:
    """Return the secret data key used for an object."""
    try:
        kind = obj["kind"]
        metadata = obj["metadata"]
        name = metadata["name"]
    except (KeyError, TypeError) as err:
        raise SerializationError(f"Object is missing kind or metadata.name: {obj}") from err
    namespace = metadata.get("namespace") or ""
    return f"{kind.lower()}__{namespace}__{name.replace(':', '_')}.yaml"


class Registry:
    """Collects objects and serializes each of them as a YAML document."""

    def __init__(self) -> None:
        """Initialize Registry."""
        self._data: dict[str, bytes] = {}

    def add(self, *objects: dict[str, Any]) -> None:
        """Add objects to the registry.

        Raises SerializationError if an object cannot be encoded or an object
        with the same kind, namespace and name was already added.
        """
        for obj in objects:
            filename = object_filename(obj)
            if filename in self._data:
                raise SerializationError(f"Duplicate object in registry: {filename}")
            try:
                content = yaml.safe_dump(obj, sort_keys=True, default_flow_style=False)
            except yaml.YAMLError as err:
                raise SerializationError(
                    f"Unable to serialize object {filename}: {err}"
                ) from err
            _LOGGER.debug("Adding %s to registry", filename)
            self._data[filename] = content.encode()

    def serialize(self) -> dict[str, bytes]:
        """Return the serialized objects keyed by filename in sorted order."""
        return {key: self._data[key] for key in sorted(self._data)}

    def __len__(self) -> int:
        return len(self._data)
