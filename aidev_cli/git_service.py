"""Thin wrapper around the ``git`` command line."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .errors import GitError
from .models import ChangedFile
from .utils import normalize_path

logger = logging.getLogger(__name__)

_STATUS_TO_CHANGE = {
    "A": "added",
    "M": "modified",
    "D": "deleted",
    "R": "renamed",
}


def parse_diff_output(output: str) -> List[ChangedFile]:
    """Parse ``git diff --name-status`` output.

    Rename lines look like ``R100<TAB>old<TAB>new``; unknown status letters
    (copies, type changes) are reported as modifications.
    """
    changes: List[ChangedFile] = []
    for line in output.strip().splitlines():
        if not line.strip():
            continue
        parts = line.split("\t")
        status = parts[0].strip()
        if status.startswith("R") and len(parts) >= 3:
            changes.append(
                ChangedFile(
                    path=normalize_path(parts[2]),
                    change_type="renamed",
                    old_path=normalize_path(parts[1]),
                )
            )
            continue
        if len(parts) < 2:
            logger.debug("Skipping malformed diff line: %r", line)
            continue
        change_type = _STATUS_TO_CHANGE.get(status[:1], "modified")
        if change_type == "renamed":
            change_type = "modified"
        changes.append(ChangedFile(path=normalize_path(parts[-1]), change_type=change_type))
    return changes


class GitService:
    """Run git in *repo_path* and return parsed results."""

    def __init__(self, repo_path: Path, timeout: int = 30) -> None:
        self.repo_path = Path(repo_path)
        self.timeout = timeout

    def _run(self, args: Sequence[str]) -> str:
        cmd = ["git", *args]
        logger.debug("Running %s in %s", " ".join(cmd), self.repo_path)
        try:
            result = subprocess.run(
                cmd,
                cwd=self.repo_path,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            raise GitError("git executable not found") from exc
        except subprocess.TimeoutExpired as exc:
            raise GitError(f"git {' '.join(args)} timed out") from exc

        if result.returncode != 0:
            message = result.stderr.strip() or f"exit status {result.returncode}"
            raise GitError(f"git {' '.join(args)} failed: {message}")
        return result.stdout

    def get_staged_changes(self) -> List[ChangedFile]:
        return parse_diff_output(self._run(["diff", "--cached", "--name-status"]))

    def get_unstaged_changes(self) -> List[ChangedFile]:
        return parse_diff_output(self._run(["diff", "--name-status"]))

    def get_diff_changes(self, from_ref: str, to_ref: Optional[str] = None) -> List[ChangedFile]:
        """Changes between two refs (or a single git range expression)."""
        args = ["diff", from_ref]
        if to_ref:
            args.append(to_ref)
        args.append("--name-status")
        return parse_diff_output(self._run(args))

    def get_file_content(self, path: str, ref: Optional[str] = None) -> str:
        if ref:
            return self._run(["show", f"{ref}:{path}"])
        return (Path(self.get_repo_root()) / path).read_text(encoding="utf-8")

    def get_repo_root(self) -> str:
        return self._run(["rev-parse", "--show-toplevel"]).strip()

    def get_current_branch(self) -> str:
        return self._run(["rev-parse", "--abbrev-ref", "HEAD"]).strip()

    def is_git_repo(self) -> bool:
        try:
            self._run(["rev-parse", "--git-dir"])
        except GitError:
            return False
        return True


def parse_diff_range(spec: str) -> Tuple[str, Optional[str]]:
    """Split ``A..B`` into refs; a single ref ``A`` means ``A..HEAD``.

    ``A...B`` (changes since the merge base) is passed to git unchanged.
    """
    if "..." in spec:
        return spec, None
    if ".." not in spec:
        return spec, "HEAD"
    from_ref, to_ref = spec.split("..", 1)
    return from_ref or "HEAD", to_ref or "HEAD"
