"""Core module - Foundation components with no lock-protocol dependencies.

This module provides the basic building blocks used throughout the library:
- Version information
- Custom exceptions
- Configuration dataclasses
- Constants and defaults
"""

from mongo_dlock.core.version import __version__

from mongo_dlock.core.exceptions import (
    MongoLockError,
    ConfigurationError,
    StoreTransportError,
    LockOwnershipLostError,
    LockUnavailableError,
)

from mongo_dlock.core.config import (
    ENV_VAR_MAPPING,
    LockSvcOptions,
    LockOptions,
    ReaperConfig,
    LogConfig,
)

from mongo_dlock.core.constants import (
    DEFAULT_SERVER_TIME_SAMPLES,
    DEFAULT_LOCK_OPTIONS,
    DEFAULT_REAPER,
    LOG_FILE_MAX_BYTES,
    LOG_FILE_BACKUP_COUNT,
)

__all__ = [
    # Version
    '__version__',
    # Exceptions
    'MongoLockError',
    'ConfigurationError',
    'StoreTransportError',
    'LockOwnershipLostError',
    'LockUnavailableError',
    # Config dataclasses
    'ENV_VAR_MAPPING',
    'LockSvcOptions',
    'LockOptions',
    'ReaperConfig',
    'LogConfig',
    # Constants
    'DEFAULT_SERVER_TIME_SAMPLES',
    'DEFAULT_LOCK_OPTIONS',
    'DEFAULT_REAPER',
    'LOG_FILE_MAX_BYTES',
    'LOG_FILE_BACKUP_COUNT',
]
