"""Configuration paths and built-in defaults for aidev."""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(os.environ.get("AIDEV_HOME", str(Path.home() / ".aidev"))).expanduser()
# User-level defaults, written by `aidev set-defaults`
USER_CONFIG_FILE = BASE_DIR / "config.toml"

# Per-project model directory, relative to the project root
PROJECT_DIR_NAME = ".aidev"

DEFAULT_PROVIDER = "claude"
DEFAULT_BUDGET = 100000
SUPPORTED_PROVIDERS = ("claude", "openai", "generic")


def ensure_base_dirs() -> None:
    """Create the user-level base directory if needed."""
    BASE_DIR.mkdir(parents=True, exist_ok=True)
