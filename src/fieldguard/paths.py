"""Shared filesystem path helpers for fieldguard."""
from __future__ import annotations

import os
import sys
from pathlib import Path

from platformdirs import PlatformDirs

_APP_NAME = "FieldGuard"
_LINUX_APP_NAME = "fieldguard"
_STORE_ENV = "FIELDGUARD_STORE_DIR"


def _dirs() -> PlatformDirs:
    if sys.platform in ("win32", "darwin"):
        return PlatformDirs(appname=_APP_NAME, appauthor=None, roaming=True)
    return PlatformDirs(appname=_LINUX_APP_NAME, appauthor=None, roaming=False)


def runtime_config_dir() -> Path:
    """Return the per-user configuration directory."""
    return Path(_dirs().user_config_path)


def default_store_dir() -> Path:
    """Return the key store directory, honouring ``FIELDGUARD_STORE_DIR``."""
    value = os.getenv(_STORE_ENV)
    if value:
        return Path(value).expanduser()
    return Path(_dirs().user_data_path)
