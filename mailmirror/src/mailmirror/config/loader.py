"""Strict loaders and serializers for mailmirror configuration documents.

What:
  Locate, parse, validate and serialise the runtime configuration
  (``config.yaml``) and the run status document (``status.yaml``).

Why:
  Configuration lives outside the package and can be malformed. Centralising
  the parsing keeps validation consistent so the engine, providers and CLI can
  trust the resulting models.

How:
  Resolve candidate file locations from explicit parameters, the
  ``MAILMIRROR_CONFIG_PATH`` environment variable and defaults. Parse YAML with
  PyYAML's safe loader and validate through the pydantic models of
  :mod:`mailmirror.config.schema`.

Interfaces:
  - :func:`load_runtime_config` / :func:`get_runtime_config` /
    :func:`reset_runtime_config`: ``config.yaml`` discovery and caching.
  - :func:`load_status` / :func:`dump_status`: ``status.yaml`` round trip.

Invariants:
  - External payloads pass strict pydantic validation before being returned.
  - The runtime cache respects explicit reload requests and the precedence
    order of candidate paths.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Iterable, Optional, Tuple

import yaml
from pydantic import ValidationError as _PydanticValidationError

from .schema import RuntimeConfig, StatusDocument, ValidationError


class ConfigLoadError(Exception):
    """Base error for configuration parsing or validation failures.

    Grouping failures under one type lets the CLI report operator mistakes
    separately from IMAP connectivity problems.
    """


class RuntimeConfigError(ConfigLoadError):
    """Error raised when ``config.yaml`` cannot be loaded or validated."""


_CONFIG_ENV = "MAILMIRROR_CONFIG_PATH"
_DEFAULT_LOCATIONS: Tuple[Path, ...] = (
    Path("config.yaml"),
    Path("/etc/mailmirror/config.yaml"),
)
_RUNTIME_CACHE: Optional[Tuple[Path, RuntimeConfig]] = None


def _candidate_paths(path: Optional[Path]) -> Iterable[Path]:
    """Yield configuration file locations in priority order.

    What:
      Produce the ordered, deduplicated list of paths that may hold
      ``config.yaml``.

    Why:
      Operators override the location through a CLI argument, the environment
      or well-known defaults; this helper captures that precedence chain.

    How:
      Yield the explicit argument, then ``MAILMIRROR_CONFIG_PATH``, then the
      defaults, expanding ``~`` and skipping duplicates.

    Args:
      path: Explicit path requested by the caller, or ``None``.

    Yields:
      Candidate paths ordered from most to least specific.
    """

    seen: set[Path] = set()
    candidates = []
    if path is not None:
        candidates.append(path)
    env_path = os.environ.get(_CONFIG_ENV)
    if env_path:
        candidates.append(Path(env_path))
    candidates.extend(_DEFAULT_LOCATIONS)
    for item in candidates:
        candidate = item.expanduser()
        if candidate not in seen:
            seen.add(candidate)
            yield candidate


def _parse_yaml_mapping(text: str, source: str) -> dict[str, Any]:
    """Parse ``text`` and require a top-level mapping.

    Raises:
      ConfigLoadError: If the YAML is invalid or not a mapping.
    """

    try:
        payload = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ConfigLoadError(f"Invalid YAML in {source}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigLoadError(f"{source} must contain a mapping at the top-level")
    return payload


def _load_runtime_from_path(path: Path) -> RuntimeConfig:
    """Load and validate ``config.yaml`` from ``path``.

    Raises:
      RuntimeConfigError: If the file cannot be read, parsed or validated.
    """

    try:
        text = path.read_text()
    except FileNotFoundError as exc:
        raise RuntimeConfigError(f"Configuration file missing: {path}") from exc
    except OSError as exc:  # pragma: no cover - filesystem surface
        raise RuntimeConfigError(f"Unable to read configuration file {path}: {exc}") from exc
    try:
        payload = _parse_yaml_mapping(text, str(path))
    except ConfigLoadError as exc:
        raise RuntimeConfigError(str(exc)) from exc
    try:
        return RuntimeConfig.model_validate(payload)
    except (_PydanticValidationError, ValidationError) as exc:
        raise RuntimeConfigError(f"Invalid config.yaml: {exc}") from exc


def load_runtime_config(
    path: Optional[Path | str] = None,
    *,
    reload: bool = False,
) -> RuntimeConfig:
    """Resolve, parse and cache the runtime configuration.

    What:
      Locate ``config.yaml`` through :func:`_candidate_paths`, parse it and
      return a validated :class:`RuntimeConfig`.

    Why:
      Every pass needs the mailbox list and sync settings; caching avoids
      repeated disk IO in the ``watch`` loop while ``reload`` gives tests a
      deterministic refresh.

    How:
      Consult the module cache unless ``reload`` is set or a different path is
      requested, then load the first existing candidate and cache it.

    Args:
      path: Optional explicit location of ``config.yaml``.
      reload: Bypass the cache when ``True``.

    Returns:
      The validated runtime configuration.

    Raises:
      RuntimeConfigError: If no candidate exists or validation fails.
    """

    global _RUNTIME_CACHE

    requested_path = Path(path).expanduser() if isinstance(path, (str, Path)) else None
    if not reload and _RUNTIME_CACHE is not None:
        cached_path, cached_config = _RUNTIME_CACHE
        if requested_path is None or cached_path == requested_path:
            return cached_config

    searched: list[str] = []
    for candidate in _candidate_paths(requested_path):
        if not candidate.exists():
            searched.append(str(candidate))
            continue
        config = _load_runtime_from_path(candidate)
        _RUNTIME_CACHE = (candidate, config)
        return config

    raise RuntimeConfigError(
        f"Unable to locate config.yaml (searched: {', '.join(searched) or '<none>'})"
    )


def get_runtime_config() -> RuntimeConfig:
    """Return the cached runtime configuration, loading it on demand."""

    return load_runtime_config()


def reset_runtime_config() -> None:
    """Clear the runtime configuration cache."""

    global _RUNTIME_CACHE
    _RUNTIME_CACHE = None


def load_status(source: bytes) -> StatusDocument:
    """Parse and validate a ``status.yaml`` payload.

    Raises:
      ConfigLoadError: If parsing or validation fails.
    """

    payload = _parse_yaml_mapping(source.decode("utf-8"), "status.yaml")
    try:
        return StatusDocument.model_validate(payload)
    except ValidationError as exc:
        raise ConfigLoadError(str(exc)) from exc


def dump_status(model: StatusDocument) -> bytes:
    """Serialise a :class:`StatusDocument` into canonical YAML bytes."""

    text = yaml.safe_dump(model.model_dump(mode="json"), sort_keys=False)
    return text.encode("utf-8")
