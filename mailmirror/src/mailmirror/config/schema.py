"""Pydantic models describing mailmirror configuration documents."""
from __future__ import annotations

import os
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as _PydanticValidationError
from pydantic import model_validator


class ValidationError(ValueError):
    """Raised when configuration data does not satisfy the schema."""


class PathsConfig(BaseModel):
    """Filesystem layout used by the runtime."""

    model_config = ConfigDict(extra="forbid")

    state_dir: str
    store_file: str = "store.sqlite3"
    status_file: str = "status.yaml"


class SyncSettings(BaseModel):
    """Knobs applied to every synchronization pass."""

    model_config = ConfigDict(extra="forbid")

    read_only: bool = False
    tagging_enabled: bool = True
    old_sample_size: int = Field(default=500, ge=0)
    new_batch_size: int = Field(default=51, gt=0)
    interval_s: int = Field(default=300, gt=0)
    max_tag_length: int = Field(default=20, gt=0)
    history_limit: int = Field(default=50, gt=0)


class ServerConfig(BaseModel):
    """Connection parameters for one IMAP account."""

    model_config = ConfigDict(extra="forbid")

    host: str
    port: int = 993
    ssl: bool = True
    username: str
    password: Optional[str] = None
    password_env: Optional[str] = None
    timeout_s: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _validate_secret(self) -> "ServerConfig":
        if self.password is None and self.password_env is None:
            raise ValidationError("server requires either password or password_env")
        return self

    def resolve_password(self) -> str:
        """Return the literal password or read it from ``password_env``."""

        if self.password is not None:
            return self.password
        value = os.environ.get(self.password_env or "")
        if value is None:
            raise ValidationError(f"environment variable {self.password_env} is not set")
        return value


class MailboxConfig(BaseModel):
    """One remote folder mirrored into the local store for a group."""

    model_config = ConfigDict(extra="forbid")

    name: str = "INBOX"
    group: str
    provider: Literal["generic", "gmail"] = "generic"
    server: ServerConfig


class RuntimeConfig(BaseModel):
    """Root configuration loaded from ``config.yaml``."""

    model_config = ConfigDict(extra="forbid")

    version: int = 1
    paths: PathsConfig
    sync: SyncSettings = Field(default_factory=SyncSettings)
    mailboxes: List[MailboxConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_mailboxes(self) -> "RuntimeConfig":
        keys = [(item.group, item.name) for item in self.mailboxes]
        if len(keys) != len(set(keys)):
            raise ValidationError("mailboxes must be unique per (group, name)")
        return self

    def find_mailbox(self, name: str) -> MailboxConfig:
        """Return the mailbox configured under ``name`` or ``group/name``."""

        for item in self.mailboxes:
            if name in (item.name, f"{item.group}/{item.name}"):
                return item
        raise KeyError(name)


class RunMetrics(BaseModel):
    """Counters captured from one pass."""

    model_config = ConfigDict(extra="forbid")

    uid_validity: int = 0
    last_seen_uid: int = 0
    cursor_reset: bool = False
    old_checked: int = 0
    old_updated: int = 0
    new_fetched: int = 0
    ingested: int = 0
    failed_uids: List[int] = Field(default_factory=list)
    pushed: int = 0
    elapsed_s: float = 0.0


class RunRecord(BaseModel):
    """Outcome of a single pass as seen by the scheduler."""

    model_config = ConfigDict(extra="forbid")

    run_id: str
    mailbox: str
    started_at: str
    ended_at: str
    ok: bool
    error: Optional[str] = None
    metrics: RunMetrics = Field(default_factory=RunMetrics)


class StatusDocument(BaseModel):
    """Content of ``status.yaml``."""

    model_config = ConfigDict(extra="forbid")

    version: Literal[1] = 1
    runs: List[RunRecord] = Field(default_factory=list)

    @classmethod
    def model_validate(cls, data: Dict[str, Any]) -> "StatusDocument":  # type: ignore[override]
        try:
            return super().model_validate(data)
        except _PydanticValidationError as exc:  # pragma: no cover - exercised indirectly
            raise ValidationError(str(exc)) from exc

    def last_run(self, mailbox: str) -> Optional[RunRecord]:
        for record in reversed(self.runs):
            if record.mailbox == mailbox:
                return record
        return None
