"""Environment-driven configuration for the kernel bridge."""

import logging
import os
import pathlib
from dataclasses import dataclass
from typing import Optional

from .errors import ConfigurationError

_default_path = pathlib.Path(__file__).resolve().parents[2] / 'build' / 'libortkernel.so'

_TRUTHY = ('1', 'true', 'yes', 'on')


@dataclass
class BridgeConfig:
    """
    Attributes:
        library_path: Shared library exporting the engine's C entry points
        enable_scratch_buffers: Allow KernelContext.allocate to reach the
            native scratch buffer entry point
        log_level: Level applied to the ``ortkernel`` logger, if set
    """

    library_path: str = str(_default_path)
    enable_scratch_buffers: bool = False
    log_level: Optional[str] = None

    @classmethod
    def from_env(cls) -> "BridgeConfig":
        return cls(
            library_path=os.environ.get('ORTKERNEL_LIB', str(_default_path)),
            enable_scratch_buffers=os.environ.get(
                'ORTKERNEL_SCRATCH_BUFFERS', '').lower() in _TRUTHY,
            log_level=_check_log_level(os.environ.get('ORTKERNEL_LOG_LEVEL') or None),
        )


def _check_log_level(level: Optional[str]) -> Optional[str]:
    if level is not None and not isinstance(logging.getLevelName(level.upper()), int):
        raise ConfigurationError(
            "unknown log level", context={"ORTKERNEL_LOG_LEVEL": level})
    return level


_config: Optional[BridgeConfig] = None


def get_config() -> BridgeConfig:
    global _config
    if _config is None:
        _config = BridgeConfig.from_env()
    return _config


def set_config(config: Optional[BridgeConfig]) -> Optional[BridgeConfig]:
    """Replace the active configuration; ``None`` re-reads the environment
    on next access. Returns the previous one."""
    global _config
    previous, _config = _config, config
    return previous
