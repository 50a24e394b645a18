"""Error types shared across aidev and their exit-code mapping."""

from __future__ import annotations

import json
from typing import Optional


class AidevError(Exception):
    """Base class for every error aidev raises on purpose."""

    code = "AIDEV_ERROR"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ConfigError(AidevError):
    """Invalid or unreadable configuration (project model, budgets)."""

    code = "CONFIG_ERROR"


class BudgetValidationError(ConfigError):
    """Token budget or category budget table is structurally invalid."""


class GitError(AidevError):
    code = "GIT_ERROR"


class ParseError(AidevError):
    code = "PARSE_ERROR"

    def __init__(self, message: str, file: Optional[str] = None) -> None:
        super().__init__(message)
        self.file = file


class ScanError(AidevError):
    code = "SCAN_ERROR"

    def __init__(self, message: str, file: Optional[str] = None) -> None:
        super().__init__(message)
        self.file = file


class SecurityError(AidevError):
    code = "SECURITY_ERROR"


EXIT_CODES = {
    "ConfigError": 10,
    "GitError": 20,
    "ParseError": 30,
    "ScanError": 40,
    "SecurityError": 50,
    "AidevError": 1,
}


def exit_code_for(exc: BaseException) -> int:
    """Return the process exit code for *exc* (1 for anything unknown).

    Subclasses inherit the code of their nearest mapped ancestor.
    """
    for cls in type(exc).__mro__:
        if cls.__name__ in EXIT_CODES:
            return EXIT_CODES[cls.__name__]
    return 1


def format_error(exc: BaseException, fmt: str = "text") -> str:
    """Render *exc* for the terminal (``text``) or for machines (``json``)."""
    name = type(exc).__name__
    message = getattr(exc, "message", None) or str(exc)

    if fmt == "json":
        payload = {
            "error": name,
            "message": message,
            "exitCode": exit_code_for(exc),
        }
        file = getattr(exc, "file", None)
        if file:
            payload["file"] = file
        return json.dumps(payload, indent=2)

    return f"Error [{name}]: {message}"
