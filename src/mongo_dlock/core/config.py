"""Configuration dataclasses for mongo-dlock.

These dataclasses centralize every option for type safety and easy testing.
They can be built directly in code, from parsed command-line arguments, or
from ``MONGO_DLOCK_*`` environment variables.
"""

from __future__ import annotations

import argparse
import logging
import math
import os
import socket
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from mongo_dlock.core.exceptions import ConfigurationError
from mongo_dlock.core.version import __version__

# Maps option names to the environment variables that override them
ENV_VAR_MAPPING: dict[str, str] = {
    "uri": "MONGO_DLOCK_URI",
    "db_name": "MONGO_DLOCK_DB",
    "collection_name": "MONGO_DLOCK_COLLECTION",
    "history_collection_name": "MONGO_DLOCK_HISTORY_COLLECTION",
    "enable_history": "MONGO_DLOCK_ENABLE_HISTORY",
    "app_name": "MONGO_DLOCK_APP_NAME",
    "use_sessions": "MONGO_DLOCK_USE_SESSIONS",
    "server_time_samples": "MONGO_DLOCK_SERVER_TIME_SAMPLES",
    "server_selection_timeout_ms": "MONGO_DLOCK_SERVER_SELECTION_TIMEOUT_MS",
    "socket_timeout_ms": "MONGO_DLOCK_SOCKET_TIMEOUT_MS",
    "inactive_lock_timeout_ms": "MONGO_DLOCK_INACTIVE_TIMEOUT_MS",
    "heartbeat_interval_ms": "MONGO_DLOCK_HEARTBEAT_INTERVAL_MS",
    "reaper_interval_seconds": "MONGO_DLOCK_REAPER_INTERVAL",
    "reaper_batch_size": "MONGO_DLOCK_REAPER_BATCH_SIZE",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_env_numeric(value: str | None, cast: Callable[[str], Any]) -> Any | None:
    """Parse an environment value, returning None when invalid."""
    if value is None:
        return None
    try:
        parsed = cast(value)
    except (TypeError, ValueError):
        return None
    if isinstance(parsed, float) and not math.isfinite(parsed):
        return None
    return parsed


def _parse_env_bool(value: str | None) -> bool | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    return None


def _env_overrides(
    env: Mapping[str, str],
    fields: dict[str, Callable[[str | None], Any]],
    defaults: dict[str, Any],
) -> dict[str, Any]:
    """Collect valid env overrides for ``fields``, warning about invalid ones."""
    logger = logging.getLogger(__name__)
    overrides: dict[str, Any] = {}
    for name, parser in fields.items():
        env_name = ENV_VAR_MAPPING[name]
        raw = env.get(env_name)
        if raw is None:
            continue
        parsed = parser(raw)
        if parsed is None:
            logger.warning(f"Ignoring invalid {env_name}={raw!r}; using default {defaults[name]!r}")
            continue
        overrides[name] = parsed
    return overrides


def _env_str(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _env_int(value: str | None) -> int | None:
    return _parse_env_numeric(value, int)


def _env_float(value: str | None) -> float | None:
    return _parse_env_numeric(value, float)


def _default_host_address() -> str:
    try:
        return socket.gethostbyname(socket.gethostname())
    except OSError:
        return "127.0.0.1"


@dataclass
class LockSvcOptions:
    """Service-wide options shared by every lock in one collection.

    Attributes:
        uri: MongoDB connection string (ignored when a client is injected)
        db_name: Database holding the lock collection
        collection_name: Lock collection name (default: "locks")
        history_collection_name: Collection for release/reclaim history
        enable_history: Record a history snapshot on every release/reclaim
        app_name: Application name stamped on held locks
        host_address: Host address stamped on held locks
        hostname: Hostname stamped on held locks
        library_version: Version stamped on lock documents
        use_sessions: Pin acquire round trips to one causally consistent session
        server_time_samples: Round trips used to estimate server time (default: 3)
        server_selection_timeout_ms: Driver server selection timeout
        socket_timeout_ms: Driver socket timeout
    """

    uri: str = "mongodb://localhost:27017"
    db_name: str = "mongo_dlock"
    collection_name: str = "locks"
    history_collection_name: str = "lockHistory"
    enable_history: bool = False
    app_name: str = "mongo-dlock"
    host_address: str = field(default_factory=_default_host_address)
    hostname: str = field(default_factory=socket.gethostname)
    library_version: str = __version__
    use_sessions: bool = False
    server_time_samples: int = 3
    server_selection_timeout_ms: int = 5000
    socket_timeout_ms: int = 10000

    def validate(self) -> None:
        """Fail fast on options the lock service cannot run with."""
        for name in ("uri", "db_name", "collection_name", "app_name"):
            if not getattr(self, name):
                raise ConfigurationError(f"Missing required option '{name}'", field=name)
        if self.enable_history and not self.history_collection_name:
            raise ConfigurationError(
                "History is enabled but no history collection is configured", field="history_collection_name"
            )
        if self.history_collection_name == self.collection_name:
            raise ConfigurationError(
                "History collection must differ from the lock collection", field="history_collection_name"
            )
        if self.server_time_samples < 1:
            raise ConfigurationError("server_time_samples must be at least 1", field="server_time_samples")
        if self.server_selection_timeout_ms <= 0:
            raise ConfigurationError(
                "server_selection_timeout_ms must be positive", field="server_selection_timeout_ms"
            )
        if self.socket_timeout_ms <= 0:
            raise ConfigurationError("socket_timeout_ms must be positive", field="socket_timeout_ms")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, **overrides: Any) -> LockSvcOptions:
        """Build options from ``MONGO_DLOCK_*`` variables; keyword overrides win."""
        env = os.environ if env is None else env
        base = cls()
        values = _env_overrides(
            env,
            {
                "uri": _env_str,
                "db_name": _env_str,
                "collection_name": _env_str,
                "history_collection_name": _env_str,
                "enable_history": _parse_env_bool,
                "app_name": _env_str,
                "use_sessions": _parse_env_bool,
                "server_time_samples": _env_int,
                "server_selection_timeout_ms": _env_int,
                "socket_timeout_ms": _env_int,
            },
            {name: getattr(base, name) for name in ENV_VAR_MAPPING if hasattr(base, name)},
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return replace(base, **values)


@dataclass
class LockOptions:
    """Per-lock options.

    Attributes:
        inactive_lock_timeout_ms: Heartbeat age after which the lock may be
            reclaimed (default: 120000 = 2 minutes)
        heartbeat_interval_ms: Holder heartbeat cadence; None derives it from
            the timeout (a third of it, clamped to 1s..30s, and always
            shorter than the timeout)
    """

    inactive_lock_timeout_ms: int = 120_000
    heartbeat_interval_ms: int | None = None

    @property
    def effective_heartbeat_interval_ms(self) -> int:
        if self.heartbeat_interval_ms is not None:
            return self.heartbeat_interval_ms
        timeout_ms = self.inactive_lock_timeout_ms
        interval = int(min(30_000, max(1_000, timeout_ms / 3)))
        if interval >= timeout_ms:
            # Sub-second timeouts drop the 1s floor.
            interval = max(1, timeout_ms // 3)
        return interval

    def validate(self) -> None:
        if self.inactive_lock_timeout_ms <= 0:
            raise ConfigurationError("inactive_lock_timeout_ms must be positive", field="inactive_lock_timeout_ms")
        interval = self.effective_heartbeat_interval_ms
        if interval <= 0:
            raise ConfigurationError("heartbeat_interval_ms must be positive", field="heartbeat_interval_ms")
        if interval >= self.inactive_lock_timeout_ms:
            raise ConfigurationError(
                "heartbeat interval must be shorter than the inactive lock timeout",
                field="heartbeat_interval_ms",
                details=f"{interval}ms >= {self.inactive_lock_timeout_ms}ms",
            )

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> LockOptions:
        env = os.environ if env is None else env
        base = cls()
        values = _env_overrides(
            env,
            {"inactive_lock_timeout_ms": _env_int, "heartbeat_interval_ms": _env_int},
            {"inactive_lock_timeout_ms": base.inactive_lock_timeout_ms, "heartbeat_interval_ms": None},
        )
        return replace(base, **values)


@dataclass
class ReaperConfig:
    """Configuration for the background lock reaper.

    Attributes:
        interval_seconds: Pause between scans (default: 10.0)
        batch_size: Maximum LOCKED documents examined per scan (default: 100)
    """

    interval_seconds: float = 10.0
    batch_size: int = 100

    def validate(self) -> None:
        if self.interval_seconds <= 0:
            raise ConfigurationError("Reaper interval must be positive", field="interval_seconds")
        if self.batch_size < 1:
            raise ConfigurationError("Reaper batch size must be at least 1", field="batch_size")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> ReaperConfig:
        env = os.environ if env is None else env
        base = cls()
        values = _env_overrides(
            env,
            {"reaper_interval_seconds": _env_float, "reaper_batch_size": _env_int},
            {"reaper_interval_seconds": base.interval_seconds, "reaper_batch_size": base.batch_size},
        )
        return replace(
            base,
            interval_seconds=values.get("reaper_interval_seconds", base.interval_seconds),
            batch_size=values.get("reaper_batch_size", base.batch_size),
        )


@dataclass
class LogConfig:
    """Configuration for logging behavior.

    Attributes:
        level: Logging level string (default: "INFO")
        format: "text" or "json" (default: "text")
        file: Optional rotating log file path
        file_max_bytes: Maximum size per log file (default: 10MB)
        file_backup_count: Number of backup log files (default: 5)
    """

    level: str = "INFO"
    format: str = "text"
    file: str | None = None
    file_max_bytes: int = 10 * 1024 * 1024  # 10MB
    file_backup_count: int = 5

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> LogConfig:
        """Create configuration from parsed command-line arguments."""
        return cls(
            level=getattr(args, "log_level", None) or os.environ.get("LOG_LEVEL", "INFO"),
            format=getattr(args, "log_format", "text"),
            file=getattr(args, "log_file", None),
        )
