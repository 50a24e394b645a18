"""User-level configuration for aidev stored as TOML."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import toml

logger = logging.getLogger(__name__)


def load_full_config(config_file: Path) -> Dict[str, Any]:
    """Load the entire TOML config (all sections).

    A missing or unreadable file yields an empty dict so that built-in
    defaults apply.
    """
    if not config_file.exists():
        return {}
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", config_file, exc)
        return {}


def _save_full_config(config_file: Path, config: Dict[str, Any]) -> bool:
    """Write entire config dict to TOML file, preserving all sections."""
    config_file.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(config_file, "w", encoding="utf-8") as f:
            toml.dump(config, f)
        return True
    except OSError as exc:
        logger.warning("Could not write config %s: %s", config_file, exc)
        return False


def load_prompt_config(config_file: Path) -> Dict[str, Any]:
    """Load prompt defaults from the ``[prompt]`` section.

    Returns:
        Dict with optional ``provider`` and ``budget`` keys.
    """
    return load_full_config(config_file).get("prompt", {})


def save_prompt_config(
    config_file: Path,
    provider: Optional[str] = None,
    budget: Optional[int] = None,
) -> bool:
    """Save prompt defaults to the config TOML.

    Preserves other sections in the file. Only the given keys are updated.

    Args:
        config_file: Path of the user config file.
        provider: Default output provider (claude, openai, generic).
        budget: Default token budget.

    Returns:
        True if saved successfully, False otherwise
    """
    config = load_full_config(config_file)
    section = dict(config.get("prompt", {}))
    if provider is not None:
        section["provider"] = provider
    if budget is not None:
        section["budget"] = budget
    config["prompt"] = section
    return _save_full_config(config_file, config)


def clear_prompt_config(config_file: Path) -> bool:
    """Remove the ``[prompt]`` section, resetting to built-in defaults."""
    config = load_full_config(config_file)
    config.pop("prompt", None)
    return _save_full_config(config_file, config)
