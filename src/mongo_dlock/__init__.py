"""
mongo-dlock - Named cross-process locks stored in MongoDB

Locks are single documents updated with atomic conditional writes, stamped
with latency-adjusted server time and kept alive by holder heartbeats. A
background reaper reclaims locks whose holders went away.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

__all__ = [
    "__version__",
    "AcquireStatus",
    "ConfigurationError",
    "LockOptions",
    "LockService",
    "LockSvcOptions",
    "ReaperConfig",
    "ReleaseStatus",
]

_EXPORTS = {
    "__version__": "mongo_dlock.core.version",
    "ConfigurationError": "mongo_dlock.core.exceptions",
    "LockOptions": "mongo_dlock.core.config",
    "LockSvcOptions": "mongo_dlock.core.config",
    "ReaperConfig": "mongo_dlock.core.config",
    "AcquireStatus": "mongo_dlock.locks.coordinator",
    "ReleaseStatus": "mongo_dlock.locks.coordinator",
    "LockService": "mongo_dlock.locks.service",
}

if TYPE_CHECKING:
    from mongo_dlock.core.config import LockOptions, LockSvcOptions, ReaperConfig
    from mongo_dlock.core.exceptions import ConfigurationError
    from mongo_dlock.core.version import __version__
    from mongo_dlock.locks.coordinator import AcquireStatus, ReleaseStatus
    from mongo_dlock.locks.service import LockService


def __getattr__(name: str) -> Any:
    if name in _EXPORTS:
        import importlib

        return getattr(importlib.import_module(_EXPORTS[name]), name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
