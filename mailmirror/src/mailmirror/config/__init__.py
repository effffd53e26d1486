"""mailmirror configuration package.

What:
  Provide one import surface for configuration loading, validation and run
  status persistence.

Interfaces:
  - get_runtime_config / load_runtime_config / reset_runtime_config: resolve
    ``config.yaml`` and expose a cached runtime configuration object.
  - load_status / dump_status: ``status.yaml`` round trip.
  - RuntimeConfig / SyncSettings / MailboxConfig / StatusDocument /
    ValidationError: pydantic models and error type.
  - StatusStore: run history on disk.
"""

from .loader import (
    ConfigLoadError,
    RuntimeConfigError,
    dump_status,
    get_runtime_config,
    load_runtime_config,
    load_status,
    reset_runtime_config,
)
from .schema import (
    MailboxConfig,
    RunRecord,
    RuntimeConfig,
    ServerConfig,
    StatusDocument,
    SyncSettings,
    ValidationError,
)
from .status_store import StatusStore

__all__ = [
    "ConfigLoadError",
    "RuntimeConfigError",
    "load_status",
    "dump_status",
    "get_runtime_config",
    "load_runtime_config",
    "reset_runtime_config",
    "MailboxConfig",
    "RunRecord",
    "RuntimeConfig",
    "ServerConfig",
    "StatusDocument",
    "SyncSettings",
    "ValidationError",
    "StatusStore",
]
