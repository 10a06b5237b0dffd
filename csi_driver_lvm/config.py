"""Operator configuration for the csi-driver-lvm extension.

The controller configuration is loaded once at startup and shared read-only
by every reconcile. It supplies the defaults used when an Extension does not
set a value in its provider config.
"""

from dataclasses import dataclass, field
import logging
from pathlib import Path
import re

import aiofiles
from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig
from mashumaro.exceptions import (
    ExtraKeysError,
    InvalidFieldValue,
    MissingField,
)
import yaml

from .exceptions import InputException
from .manifest import CONFIG_DOMAIN

__all__ = [
    "ControllerConfiguration",
    "HealthCheckConfig",
    "parse_config",
    "read_config",
]

_LOGGER = logging.getLogger(__name__)

CONTROLLER_CONFIGURATION_KIND = "ControllerConfiguration"
DEFAULT_SYNC_PERIOD = "30s"

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(h|ms|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def parse_duration(value: str) -> float:
    """Parse a duration such as `30s` or `1m30s` into seconds."""
    if not value or _DURATION_RE.sub("", value):
        raise InputException(f"Invalid duration '{value}'")
    return sum(
        float(amount) * _DURATION_UNITS[unit]
        for amount, unit in _DURATION_RE.findall(value)
    )


class _StrictConfig(BaseConfig):
    omit_none = True
    serialize_by_alias = True
    forbid_extra_keys = True


@dataclass(frozen=True)
class HealthCheckConfig(DataClassDictMixin):
    """Settings for the health check controller that watches the bundle."""

    sync_period: str = field(
        metadata=field_options(alias="syncPeriod"), default=DEFAULT_SYNC_PERIOD
    )

    @property
    def sync_period_seconds(self) -> float:
        return parse_duration(self.sync_period)

    class Config(_StrictConfig):
        pass


@dataclass(frozen=True)
class ControllerConfiguration(DataClassDictMixin):
    """Process wide defaults for the extension controller."""

    default_host_write_path: str | None = field(
        metadata=field_options(alias="defaultHostWritePath"), default=None
    )
    """Host write path used when an Extension does not set one."""

    default_device_pattern: str | None = field(
        metadata=field_options(alias="defaultDevicePattern"), default=None
    )
    """Device pattern used when an Extension does not set one."""

    health_check_config: HealthCheckConfig | None = field(
        metadata=field_options(alias="healthCheckConfig"), default=None
    )

    api_version: str | None = field(
        metadata=field_options(alias="apiVersion"), default=None
    )

    kind: str | None = None

    class Config(_StrictConfig):
        pass


def parse_config(content: str) -> ControllerConfiguration:
    """Parse the YAML contents of a controller configuration file."""
    try:
        doc = yaml.safe_load(content)
    except yaml.YAMLError as err:
        raise InputException(f"Unable to parse controller configuration: {err}") from err
    if doc is None:
        return ControllerConfiguration()
    if not isinstance(doc, dict):
        raise InputException(f"Invalid controller configuration: {doc}")
    if (api_version := doc.get("apiVersion")) is not None and (
        not isinstance(api_version, str) or not api_version.startswith(CONFIG_DOMAIN)
    ):
        raise InputException(f"Invalid object expected '{CONFIG_DOMAIN}': {doc}")
    if (kind := doc.get("kind")) is not None and kind != CONTROLLER_CONFIGURATION_KIND:
        raise InputException(
            f"Invalid object expected kind '{CONTROLLER_CONFIGURATION_KIND}': {doc}"
        )
    for key in ("defaultHostWritePath", "defaultDevicePattern"):
        if (value := doc.get(key)) is not None and not isinstance(value, str):
            raise InputException(
                f"Invalid controller configuration: {key} must be a string, got {type(value).__name__}"
            )
    try:
        config = ControllerConfiguration.from_dict(doc)
    except (ExtraKeysError, InvalidFieldValue, MissingField) as err:
        raise InputException(f"Invalid controller configuration: {err}") from err
    if config.health_check_config is not None:
        parse_duration(config.health_check_config.sync_period)
    return config


async def read_config(config_path: Path) -> ControllerConfiguration:
    """Return the controller configuration stored in the specified file."""
    _LOGGER.debug("Reading controller configuration from %s", config_path)
    async with aiofiles.open(str(config_path)) as config_file:
        content = await config_file.read()
    return parse_config(content)
