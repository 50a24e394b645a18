"""Path, glob and ordering helpers shared by the graph and impact layers.

Everything here is pure string manipulation: nothing touches the
filesystem, so results depend only on the inputs.  All sorting uses plain
code-point comparison of ``str`` values, never locale-aware collation.
"""

from __future__ import annotations

import json
import re
from functools import lru_cache
from typing import Any, Callable, Iterable, List, Pattern, TypeVar, Union

T = TypeVar("T")
SortKey = Union[str, int, float]


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

def normalize_path(path: str) -> str:
    """Convert to forward slashes and drop a trailing slash (except root)."""
    normalized = path.replace("\\", "/")
    if len(normalized) > 1 and normalized.endswith("/"):
        normalized = normalized[:-1]
    return normalized


def relative_path(from_path: str, to_path: str) -> str:
    """Relative path from the directory holding *from_path* to *to_path*."""
    from_parts = normalize_path(from_path).split("/")
    to_parts = normalize_path(to_path).split("/")

    common = 0
    while (
        common < len(from_parts)
        and common < len(to_parts)
        and from_parts[common] == to_parts[common]
    ):
        common += 1

    ups = [".."] * max(len(from_parts) - common - 1, 0)
    return "/".join(ups + to_parts[common:]) or "."


def posix_dirname(path: str) -> str:
    normalized = normalize_path(path)
    last_slash = normalized.rfind("/")
    if last_slash == -1:
        return "."
    if last_slash == 0:
        return "/"
    return normalized[:last_slash]


def join_path(*segments: str) -> str:
    return normalize_path("/".join(segments))


def resolve_relative(from_dir: str, relative: str) -> str:
    """Lexically resolve *relative* against *from_dir*.

    ``.`` segments are skipped and ``..`` pops one segment; popping past
    the top is a no-op.  Returns ``"."`` for an empty result.
    """
    normalized_from = normalize_path(from_dir)
    from_parts = [] if normalized_from == "." else [p for p in normalized_from.split("/") if p]
    rel_parts = [p for p in normalize_path(relative).split("/") if p]

    result = list(from_parts)
    for part in rel_parts:
        if part == ".":
            continue
        if part == "..":
            if result:
                result.pop()
        else:
            result.append(part)

    return "/".join(result) or "."


# ---------------------------------------------------------------------------
# Globs
# ---------------------------------------------------------------------------

def glob_to_regex(pattern: str) -> str:
    """Translate a path glob into an anchored regular expression.

    ``**`` matches any number of path segments; ``*``, ``?`` and character
    classes ``[...]`` (``[!...]`` negates) never match a ``/``;
    ``{a,b}`` is an alternation.
    """
    pattern = normalize_path(pattern)
    out: List[str] = []
    i = 0
    n = len(pattern)
    brace_depth = 0

    while i < n:
        ch = pattern[i]
        if ch == "*":
            if i + 1 < n and pattern[i + 1] == "*":
                i += 2
                if i < n and pattern[i] == "/":
                    # "**/" also matches zero directories
                    out.append("(?:.*/)?")
                    i += 1
                else:
                    out.append(".*")
                continue
            out.append("[^/]*")
        elif ch == "?":
            out.append("[^/]")
        elif ch == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(ch))
            else:
                body = pattern[i + 1:end].replace("\\", "\\\\")
                # classes stay inside one segment, like * and ?
                if body.startswith("!"):
                    out.append("[^/" + body[1:] + "]")
                else:
                    out.append("(?!/)[" + body + "]")
                i = end
        elif ch == "{":
            brace_depth += 1
            out.append("(?:")
        elif ch == "}" and brace_depth:
            brace_depth -= 1
            out.append(")")
        elif ch == "," and brace_depth:
            out.append("|")
        else:
            out.append(re.escape(ch))
        i += 1

    out.extend(")" * brace_depth)
    return "".join(out)


@lru_cache(maxsize=1024)
def _compiled_glob(pattern: str) -> Pattern[str]:
    return re.compile(glob_to_regex(pattern))


def match_glob(path: str, pattern: str) -> bool:
    """True when the whole of *path* matches the glob *pattern*."""
    return _compiled_glob(pattern).fullmatch(normalize_path(path)) is not None


# ---------------------------------------------------------------------------
# Deterministic ordering
# ---------------------------------------------------------------------------

def stable_sort_by(items: Iterable[T], *key_funcs: Callable[[T], SortKey]) -> List[T]:
    """Sort by each key in turn; equal items keep their input order."""
    return sorted(items, key=lambda item: tuple(f(item) for f in key_funcs))


def canonicalize_output(obj: Any) -> str:
    """JSON with recursively sorted keys, identical for equal data."""
    return json.dumps(obj, indent=2, sort_keys=True, ensure_ascii=False)
