"""Pytest configuration shared by every suite.

What:
  Establish project import paths and define a fixture that applies a canned
  runtime configuration to every test.

Why:
  Tests import the ``mailmirror`` package straight from the source tree, and
  the runtime configuration is cached globally; without explicit resets tests
  could depend on execution order.

How:
  Prepend ``mailmirror/src`` to ``sys.path`` when present and define
  :func:`runtime_config`, which points ``MAILMIRROR_CONFIG_PATH`` at
  ``tests/data/config.yaml`` and resets the cache before and after each test.

Interfaces:
  :func:`runtime_config` (pytest fixture).
"""

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "mailmirror" / "src"
if SRC_DIR.exists():
    sys.path.insert(0, str(SRC_DIR))

import pytest

from mailmirror.config.loader import reset_runtime_config

CONFIG_PATH = Path(__file__).resolve().parent / "data" / "config.yaml"


@pytest.fixture(autouse=True)
def runtime_config(monkeypatch: pytest.MonkeyPatch):
    """Apply the canned configuration file for every test.

    Args:
      monkeypatch: Pytest helper injected automatically for environment control.
    """

    monkeypatch.setenv("MAILMIRROR_CONFIG_PATH", str(CONFIG_PATH))
    reset_runtime_config()
    try:
        yield
    finally:
        reset_runtime_config()
