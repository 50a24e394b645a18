"""Secret redaction applied to file content before it goes into a pack."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Pattern, Sequence, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SecretPattern:
    name: str
    type: str
    pattern: Pattern[str]
    severity: str = "high"


@dataclass(frozen=True)
class Redaction:
    type: str
    line: int
    column: int
    length: int
    pattern: str


@dataclass
class RedactionResult:
    content: str
    redactions: List[Redaction] = field(default_factory=list)


def _p(name: str, type_: str, regex: str, severity: str = "high", flags: int = 0) -> SecretPattern:
    return SecretPattern(name, type_, re.compile(regex, flags), severity)


# Specific formats come before the generic assignment patterns so they win
# the replacement.
DEFAULT_PATTERNS: Sequence[SecretPattern] = (
    _p("private_key_header", "private_key",
       r"-----BEGIN (?:RSA |EC |OPENSSH |DSA )?PRIVATE KEY-----", "critical"),
    _p("anthropic_key", "api_key", r"sk-ant-[a-zA-Z0-9\-]{20,}"),
    _p("openai_key", "api_key", r"sk-[a-zA-Z0-9]{20,}"),
    _p("stripe_key", "api_key", r"(?:sk|rk)_(?:live|test)_[0-9a-zA-Z]{20,}", "critical"),
    _p("google_api_key", "api_key", r"AIza[0-9A-Za-z\-_]{35}"),
    _p("sendgrid_key", "api_key", r"SG\.[\w\-]{16,}\.[\w\-]{16,}"),
    _p("github_token", "token", r"gh[pousr]_[a-zA-Z0-9]{36}", "critical"),
    _p("slack_token", "token", r"xox[baprs]-[a-zA-Z0-9\-]{10,}", "critical"),
    _p("npm_token", "token", r"npm_[A-Za-z0-9]{36}", "critical"),
    _p("pypi_token", "token", r"pypi-[A-Za-z0-9_\-]{85,}", "critical"),
    _p("slack_webhook", "url",
       r"https://hooks\.slack\.com/services/[A-Z0-9]+/[A-Z0-9]+/[a-zA-Z0-9]+"),
    _p("database_url", "connection_string",
       r"(?:postgres(?:ql)?|mysql|mongodb(?:\+srv)?|redis)://[^:\s]+:[^@\s]+@[^\s\"']+",
       "critical", re.IGNORECASE),
    _p("azure_connection_string", "connection_string",
       r"DefaultEndpointsProtocol=https?;AccountName=[^;\s]+;AccountKey=[^;\s]+", "critical"),
    _p("basic_auth_url", "credential", r"https?://[^\s:/@\"']+:[^\s@/\"']+@[^\s\"']+"),
    _p("aws_access_key", "aws_key", r"AKIA[0-9A-Z]{16}", "critical"),
    _p("aws_secret_key", "aws_key",
       r"(?:aws_secret|secret_access_key)[\"']?\s*[:=]\s*[\"']?[a-zA-Z0-9/+=]{40}[\"']?",
       "critical", re.IGNORECASE),
    _p("jwt_token", "token", r"eyJ[A-Za-z0-9_\-]+\.eyJ[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+"),
    _p("bearer_token", "token", r"Bearer\s+[a-zA-Z0-9\-_.]{20,}", "medium", re.IGNORECASE),
    _p("generic_api_key", "api_key",
       r"(?:api[_-]?key|apikey)[\"']?\s*[:=]\s*[\"']?[a-zA-Z0-9_\-]{20,}[\"']?", "high", re.IGNORECASE),
    _p("password_assignment", "password",
       r"(?:password|passwd|pwd)[\"']?\s*[:=]\s*[\"'][^\"'\s]{8,}[\"']", "high", re.IGNORECASE),
)


def _line_and_column(content: str, index: int) -> Tuple[int, int]:
    line = content.count("\n", 0, index) + 1
    column = index - content.rfind("\n", 0, index)
    return line, column


class SecretRedactor:
    """Replace secrets with ``[REDACTED:<type>]`` placeholders.

    Patterns run in order over the progressively redacted text, so a
    secret matched by an earlier pattern is reported only once.  Line and
    column (both 1-based) refer to the text as seen by the matching pattern.
    """

    def __init__(self, patterns: Optional[Sequence[SecretPattern]] = None):
        self.patterns = list(DEFAULT_PATTERNS if patterns is None else patterns)

    def redact(self, content: str) -> RedactionResult:
        redactions: List[Redaction] = []
        redacted = content

        for secret in self.patterns:
            placeholder = f"[REDACTED:{secret.type}]"
            matches = list(secret.pattern.finditer(redacted))
            if not matches:
                continue
            for match in matches:
                line, column = _line_and_column(redacted, match.start())
                redactions.append(
                    Redaction(
                        type=secret.type,
                        line=line,
                        column=column,
                        length=len(match.group(0)),
                        pattern=secret.name,
                    )
                )
            redacted = secret.pattern.sub(placeholder, redacted)

        if redactions:
            logger.debug("Redacted %d secret(s)", len(redactions))
        return RedactionResult(content=redacted, redactions=redactions)
