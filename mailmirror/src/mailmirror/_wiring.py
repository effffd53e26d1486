"""Helper utilities bridging the CLI with runtime subsystems.

What:
  Provide reusable helpers used by :mod:`mailmirror.cli` to resolve the watch
  interval, compute retry delays, open the local stores and build providers
  for configured mailboxes.

Why:
  Isolating these pieces keeps the command implementations concise and gives
  tests a single seam to replace the network-backed provider.

How:
  Pure functions taking the validated :class:`~mailmirror.config.schema.RuntimeConfig`
  or mailbox models. ``pass_metrics`` extracts counters from the engine even
  after a failed pass.

Interfaces:
  ``resolve_interval``, ``exponential_backoff``, ``build_provider``,
  ``open_store``, ``open_status_store``, ``mailbox_label``, ``pass_metrics``.

Invariants & Safety:
  - Passwords are resolved when the provider is built and never logged.
  - ``exponential_backoff`` clamps values between the base and the cap.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

from .config.schema import MailboxConfig, RuntimeConfig, SyncSettings
from .config.status_store import StatusStore
from .imap import ImapConfig, ImapProvider, get_provider_class
from .store.sqlite import SqliteStore
from .utils.logging import JsonLogger


def resolve_interval(runtime: RuntimeConfig, override: Optional[int]) -> int:
    """Determine the polling interval for the watch command.

    Prefer a positive ``override``, otherwise ``runtime.sync.interval_s``.
    The result is always at least ``1``.
    """

    if override is not None and override > 0:
        return override
    return max(int(runtime.sync.interval_s), 1)


def exponential_backoff(
    *,
    base: int = 5,
    factor: float = 2.0,
    cap: int = 60,
    failures: int = 0,
) -> int:
    """Return an exponential backoff delay for ``failures`` retries.

    What:
      Calculate ``base * factor**failures`` and clamp it to ``cap`` while
      keeping the result at least ``base``.

    Why:
      Provides predictable retry behaviour for the ``watch`` loop when a
      server is unreachable or rate limits us.

    Args:
      base: Smallest delay returned.
      factor: Multiplicative growth factor.
      cap: Maximum delay permitted.
      failures: Number of consecutive failures (zero-indexed).

    Returns:
      Delay in whole seconds.
    """

    delay = base * (factor ** max(failures, 0))
    if delay < base:
        delay = base
    if delay > cap:
        delay = cap
    return int(delay)


def mailbox_label(mailbox: MailboxConfig) -> str:
    return f"{mailbox.group}/{mailbox.name}"


def build_provider(
    mailbox: MailboxConfig,
    settings: SyncSettings,
    *,
    logger: Optional[JsonLogger] = None,
) -> ImapProvider:
    """Instantiate the provider configured for ``mailbox``.

    Raises:
      ValueError: If the provider name is unknown.
      ValidationError: If ``password_env`` points to an unset variable.
    """

    provider_class = get_provider_class(mailbox.provider)
    config = ImapConfig.from_mailbox(mailbox, max_tag_length=settings.max_tag_length)
    return provider_class(config, logger=logger)


def open_store(runtime: RuntimeConfig) -> SqliteStore:
    return SqliteStore(Path(runtime.paths.state_dir) / runtime.paths.store_file)


def open_status_store(runtime: RuntimeConfig) -> StatusStore:
    return StatusStore(
        Path(runtime.paths.state_dir) / runtime.paths.status_file,
        history_limit=runtime.sync.history_limit,
    )


def pass_metrics(engine: Any) -> Dict[str, Any]:
    """Return the counters of the engine's latest pass, or an empty mapping."""

    stats = getattr(engine, "last_stats", None)
    if stats is None:
        return {}
    return stats.as_metrics()
