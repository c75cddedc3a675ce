"""
Runtime configuration for activeorm.

Settings come from explicit constructor arguments first, then from
``ACTIVEORM_*`` environment variables, then from built-in defaults.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

_TRUE_VALUES = ('true', '1', 'yes', 'on')
_FALSE_VALUES = ('false', '0', 'no', 'off')


def _env_flag(name: str, default: bool) -> bool:
    """Read a boolean environment variable, falling back to ``default``."""
    value = os.environ.get(name, '').lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return default


def _env_int(name: str, default: int) -> int:
    """Read a positive integer environment variable, falling back to ``default``."""
    raw = os.environ.get(name)
    if raw is None or raw == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring invalid integer for %s: %r", name, raw)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive value for %s: %r", name, raw)
        return default
    return value


@dataclass
class Settings:
    """
    Repository-wide settings.

    Attributes:
        cache_enabled: Whether models flagged with ``cache`` use a cache at all
        cache_engine: ``memory`` for the in-process TTL cache, ``noop`` to
            keep the cache interface but never hit
        default_cache_ttl: TTL in seconds for models declaring ``cache = True``
        request_cache_ttl: TTL in seconds used by ``Request.cache()`` without
            an argument
        log_level: Optional level name applied to the ``activeorm`` logger

    Example:
        >>> settings = Settings.from_env()
        >>> settings.default_cache_ttl
        300
    """

    cache_enabled: bool = True
    cache_engine: str = 'memory'
    default_cache_ttl: int = 300
    request_cache_ttl: int = 5
    log_level: Optional[str] = None

    @classmethod
    def from_env(cls, **overrides) -> "Settings":
        """
        Build settings from the environment.

        Args:
            **overrides: Explicit values that win over the environment

        Returns:
            Settings instance
        """
        values = {
            'cache_enabled': not _env_flag('ACTIVEORM_CACHE_DISABLED', False),
            'cache_engine': os.environ.get('ACTIVEORM_CACHE_ENGINE', 'memory').lower(),
            'default_cache_ttl': _env_int('ACTIVEORM_DEFAULT_CACHE_TTL', 300),
            'request_cache_ttl': _env_int('ACTIVEORM_REQUEST_CACHE_TTL', 5),
            'log_level': os.environ.get('ACTIVEORM_LOG_LEVEL') or None,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        settings = cls(**values)
        if settings.cache_engine not in ('memory', 'noop'):
            logger.warning(
                "Unknown cache engine %r, falling back to 'memory'", settings.cache_engine
            )
            settings.cache_engine = 'memory'
        return settings

    def configure_logging(self) -> None:
        """Apply ``log_level`` to the package logger when one is configured."""
        if self.log_level:
            logging.getLogger('activeorm').setLevel(self.log_level.upper())
