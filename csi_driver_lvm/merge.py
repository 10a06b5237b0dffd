"""Merge Extension provider config with the operator defaults."""

from dataclasses import dataclass
import logging

from .config import ControllerConfiguration
from .manifest import CsiDriverLvmConfig

__all__ = ["MergedConfig", "merge_config"]

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergedConfig:
    """Provider config with every optional field resolved.

    An empty string is a terminal value and is not resolved any further.
    """

    host_write_path: str
    device_pattern: str


def _resolve(explicit: str | None, default: str | None) -> str:
    if explicit is not None:
        return explicit
    if default is not None:
        return default
    return ""


def merge_config(
    config: CsiDriverLvmConfig | None, defaults: ControllerConfiguration
) -> MergedConfig:
    """Combine the Extension provider config with the operator defaults.

    Each field is resolved independently: an explicit value wins, else the
    operator default, else the empty string. An absent config behaves like a
    config with no fields set.
    """
    config = config or CsiDriverLvmConfig()
    merged = MergedConfig(
        host_write_path=_resolve(
            config.host_write_path, defaults.default_host_write_path
        ),
        device_pattern=_resolve(config.device_pattern, defaults.default_device_pattern),
    )
    _LOGGER.debug("Merged provider config %s with defaults into %s", config, merged)
    return merged
