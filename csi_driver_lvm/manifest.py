"""Representation of the Extension resource and its provider config.

An Extension is the parent object whose presence drives the lifecycle of the
csi-driver-lvm deployment. Its provider config is carried as opaque bytes
until it is strictly decoded into a `CsiDriverLvmConfig`.
"""

from dataclasses import dataclass, field
import json
import logging
from typing import Any, ClassVar

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig
from mashumaro.exceptions import (
    ExtraKeysError,
    InvalidFieldValue,
    MissingField,
)
import yaml

from .exceptions import DecodeError, InputException

__all__ = [
    "NamedResource",
    "Extension",
    "CsiDriverLvmConfig",
    "decode_provider_config",
]

_LOGGER = logging.getLogger(__name__)


EXTENSION_DOMAIN = "extensions.gardener.cloud"
EXTENSION_KIND = "Extension"
EXTENSION_TYPE = "csi-driver-lvm"
CONFIG_DOMAIN = "csi-driver-lvm.metal-stack.io"
CSI_DRIVER_LVM_CONFIG_KIND = "CsiDriverLvmConfig"
PROVIDER_CONFIG_STRING_KEYS = ("apiVersion", "kind", "hostWritePath", "devicePattern")


def _check_version(doc: dict[str, Any], version: str) -> None:
    """Assert that the resource has the specified version."""
    if not (api_version := doc.get("apiVersion")):
        raise InputException(f"Invalid object missing apiVersion: {doc}")
    if not isinstance(api_version, str) or not api_version.startswith(version):
        raise InputException(f"Invalid object expected '{version}': {doc}")


@dataclass
class BaseManifest(DataClassDictMixin):
    """Base class for all manifest objects."""

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass(frozen=True, order=True)
class NamedResource:
    """Identifier for a kubernetes resource."""

    kind: str
    namespace: str | None
    name: str

    @property
    def namespaced_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    def __str__(self) -> str:
        """Return the kind and namespaced name concatenated as an id."""
        return f"{self.kind}/{self.namespaced_name}"


@dataclass
class CsiDriverLvmConfig(BaseManifest):
    """Provider configuration supplied on the Extension resource.

    Both fields are optional; `None` means the operator default applies.
    """

    host_write_path: str | None = field(
        metadata=field_options(alias="hostWritePath"), default=None
    )
    """Filesystem root used by the driver on each node."""

    device_pattern: str | None = field(
        metadata=field_options(alias="devicePattern"), default=None
    )
    """Glob selecting the block devices that make up the volume group."""

    api_version: str | None = field(
        metadata=field_options(alias="apiVersion"), default=None
    )

    kind: str | None = None

    class Config(BaseManifest.Config):
        forbid_extra_keys = True


def decode_provider_config(raw: bytes | str | None) -> CsiDriverLvmConfig | None:
    """Strictly decode the raw provider config of an Extension.

    Returns None when no provider config was supplied. Unknown fields, a
    mismatched apiVersion or kind, or malformed content raise DecodeError.
    """
    if raw is None:
        return None
    try:
        doc = yaml.safe_load(raw)
    except yaml.YAMLError as err:
        raise DecodeError(f"failed to decode provider config: {err}") from err
    if doc is None:
        return None
    if not isinstance(doc, dict):
        raise DecodeError(
            f"failed to decode provider config: expected a mapping, got {type(doc).__name__}"
        )
    for key in PROVIDER_CONFIG_STRING_KEYS:
        if (value := doc.get(key)) is not None and not isinstance(value, str):
            raise DecodeError(
                f"failed to decode provider config: {key} must be a string, got {type(value).__name__}"
            )
    try:
        config = CsiDriverLvmConfig.from_dict(doc)
    except (ExtraKeysError, InvalidFieldValue, MissingField) as err:
        raise DecodeError(f"failed to decode provider config: {err}") from err
    if config.api_version is not None and not config.api_version.startswith(
        f"{CONFIG_DOMAIN}/"
    ):
        raise DecodeError(
            f"failed to decode provider config: unexpected apiVersion '{config.api_version}'"
        )
    if config.kind is not None and config.kind != CSI_DRIVER_LVM_CONFIG_KIND:
        raise DecodeError(
            f"failed to decode provider config: unexpected kind '{config.kind}'"
        )
    _LOGGER.debug("Decoded provider config %s", config)
    return config


@dataclass
class Extension(BaseManifest):
    """An Extension resource requesting the csi-driver-lvm deployment."""

    kind: ClassVar[str] = EXTENSION_KIND
    """The kind of the object."""

    name: str
    """The name of the Extension."""

    namespace: str
    """The namespace of the Extension, typically the shoot namespace in the seed."""

    type: str = EXTENSION_TYPE
    """The extension type."""

    provider_config: bytes | None = field(
        metadata=field_options(alias="providerConfig"), default=None
    )
    """Raw provider config, decoded on each reconcile."""

    @property
    def resource_id(self) -> NamedResource:
        return NamedResource(self.kind, self.namespace, self.name)

    @property
    def namespaced_name(self) -> str:
        return self.resource_id.namespaced_name

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Extension":
        """Parse an Extension from a raw kubernetes object."""
        _check_version(doc, EXTENSION_DOMAIN)
        if doc.get("kind") != EXTENSION_KIND:
            raise InputException(f"Invalid {cls} unexpected kind: {doc}")
        if not isinstance(metadata := doc.get("metadata"), dict) or not metadata:
            raise InputException(f"Invalid {cls} missing metadata: {doc}")
        if not isinstance(name := metadata.get("name"), str) or not name:
            raise InputException(f"Invalid {cls} missing metadata.name: {doc}")
        if not isinstance(namespace := metadata.get("namespace"), str) or not namespace:
            raise InputException(f"Invalid {cls} missing metadata.namespace: {doc}")
        spec = doc.get("spec") or {}
        provider_config: bytes | None = None
        if (raw := spec.get("providerConfig")) is not None:
            if isinstance(raw, bytes):
                provider_config = raw
            elif isinstance(raw, str):
                provider_config = raw.encode()
            else:
                provider_config = json.dumps(raw, sort_keys=True).encode()
        return cls(
            name=name,
            namespace=namespace,
            type=spec.get("type", EXTENSION_TYPE),
            provider_config=provider_config,
        )
