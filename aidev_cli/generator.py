"""Assemble a token-budgeted context pack from an impact report."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from .allocator import CONTEXT_CATEGORIES, AllocationResult, BudgetAllocator, ContextItem
from .config import PROJECT_DIR_NAME
from .models import ImpactReport
from .redactor import SecretRedactor
from .tokens import TokenEstimator, create_estimator
from .utils import normalize_path

logger = logging.getLogger(__name__)

PACK_VERSION = "1.0.0"

PRIORITY_TASK = 1.0
PRIORITY_CHANGED = 0.95
PRIORITY_IMPACTED_DEFAULT = 0.7
PRIORITY_CONTRACT = 0.7
PRIORITY_ARCHITECTURE = 0.6

CATEGORY_TITLES: Dict[str, str] = {
    "task": "Task Description",
    "changed": "Changed Files",
    "impacted": "Impacted Files",
    "contract": "Component Contracts",
    "architecture": "Architecture Documentation",
    "decision": "Design Decisions",
}

LANGUAGE_BY_EXTENSION: Dict[str, str] = {
    "ts": "typescript",
    "tsx": "typescript",
    "js": "javascript",
    "jsx": "javascript",
    "mjs": "javascript",
    "cjs": "javascript",
    "py": "python",
    "pyi": "python",
    "yaml": "yaml",
    "yml": "yaml",
    "json": "json",
    "md": "markdown",
    "sql": "sql",
    "go": "go",
    "rs": "rust",
    "rb": "ruby",
    "java": "java",
    "kt": "kotlin",
    "cs": "csharp",
    "css": "css",
    "html": "html",
    "sh": "bash",
}

ARCHITECTURE_DOCS = (
    f"{PROJECT_DIR_NAME}/docs/architecture.md",
    "ARCHITECTURE.md",
    "docs/architecture.md",
)


@dataclass
class PromptSection:
    category: str
    title: str
    content: str
    tokens: int
    files: List[str] = field(default_factory=list)


@dataclass
class PromptPack:
    manifest: Dict[str, Any]
    content: str
    sections: List[PromptSection]
    allocation: AllocationResult


def language_for(path: str) -> str:
    ext = path.rsplit(".", 1)[-1] if "." in path.rsplit("/", 1)[-1] else ""
    return LANGUAGE_BY_EXTENSION.get(ext, ext)


def format_file_content(path: str, content: str, context: str) -> str:
    return f"## File: {path}\n**Context:** {context}\n\n```{language_for(path)}\n{content}\n```"


class PromptPackGenerator:
    """Collect, redact, budget and render the context for a change.

    Args:
        project_path: Root the report's paths are relative to.
        provider: Target provider; picks the token estimator.
        budget: Total token budget.
        task_description: Optional free text placed first in the pack.
        include_architecture: Add the architecture document when present.
        include_contracts: Add contract files of affected components.
    """

    def __init__(
        self,
        project_path: Path,
        provider: str = "claude",
        budget: int = 100000,
        task_description: Optional[str] = None,
        include_architecture: bool = True,
        include_contracts: bool = True,
        estimator: Optional[TokenEstimator] = None,
    ) -> None:
        self.project_path = Path(project_path)
        self.provider = provider
        self.budget = budget
        self.task_description = task_description
        self.include_architecture = include_architecture
        self.include_contracts = include_contracts
        self.estimator = estimator or create_estimator(provider)
        self.redactor = SecretRedactor()
        self.allocator = BudgetAllocator(budget, estimator=self.estimator)
        self._redacted_paths: Set[str] = set()

    def generate(self, report: ImpactReport, now: Optional[datetime] = None) -> PromptPack:
        self._redacted_paths = set()
        items = self.collect_items(report)
        allocation = self.allocator.allocate(items)
        sections = self.build_sections(allocation)

        generated_at = (now or datetime.now(timezone.utc)).isoformat()
        content = self.render(sections, generated_at)
        manifest = self.build_manifest(report, allocation, sections, generated_at)

        logger.info(
            "Pack: %d items allocated, %d dropped, %d/%d tokens",
            len(allocation.allocated), len(allocation.dropped),
            allocation.total_tokens, self.budget,
        )
        return PromptPack(manifest=manifest, content=content, sections=sections, allocation=allocation)

    # ------------------------------------------------------------------
    # Candidate items
    # ------------------------------------------------------------------

    def _item(self, category: str, content: str, priority: float,
              path: Optional[str] = None, truncatable: bool = False) -> ContextItem:
        return ContextItem(
            category=category,
            content=content,
            tokens=self.estimator.estimate_text(content),
            priority=priority,
            path=path,
            truncatable=truncatable,
        )

    def collect_items(self, report: ImpactReport) -> List[ContextItem]:
        items: List[ContextItem] = []

        if self.task_description:
            items.append(self._item("task", self.task_description, PRIORITY_TASK))

        changed_paths = set()
        for change in report.changed_files:
            path = normalize_path(change.path)
            changed_paths.add(path)
            content = self.read_and_redact(path)
            if content is not None:
                items.append(self._item(
                    "changed", format_file_content(path, content, change.change_type),
                    PRIORITY_CHANGED, path=path, truncatable=True,
                ))

        for path in report.affected_files:
            if path in changed_paths:
                continue
            content = self.read_and_redact(path)
            if content is None:
                continue
            edge = report.edge_for_file(path)
            priority = edge.confidence if edge is not None else PRIORITY_IMPACTED_DEFAULT
            items.append(self._item(
                "impacted", format_file_content(path, content, "impacted"),
                priority, path=path, truncatable=True,
            ))

        if self.include_architecture:
            for rel in ARCHITECTURE_DOCS:
                content = self._read(rel)
                if content is not None:
                    items.append(self._item("architecture", content, PRIORITY_ARCHITECTURE,
                                            path=rel, truncatable=True))
                    break

        if self.include_contracts:
            for name in report.affected_components:
                rel = f"{PROJECT_DIR_NAME}/model/contracts/{name}.yaml"
                content = self._read(rel)
                if content is not None:
                    items.append(self._item("contract", content, PRIORITY_CONTRACT, path=rel))

        return items

    def _read(self, rel_path: str) -> Optional[str]:
        full_path = self.project_path / rel_path
        if not full_path.is_file():
            return None
        try:
            return full_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning('Excluding file "%s" due to read error: %s', rel_path, exc)
            return None

    def read_and_redact(self, rel_path: str) -> Optional[str]:
        """File content with secrets redacted; ``None`` if missing (e.g. deleted)."""
        content = self._read(rel_path)
        if content is None:
            return None
        result = self.redactor.redact(content)
        if result.redactions:
            self._redacted_paths.add(rel_path)
            logger.info("Redacted %d secret(s) in %s", len(result.redactions), rel_path)
        return result.content

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    @staticmethod
    def build_sections(allocation: AllocationResult) -> List[PromptSection]:
        by_category: Dict[str, List[ContextItem]] = {}
        for item in allocation.allocated:
            by_category.setdefault(item.category, []).append(item)

        sections: List[PromptSection] = []
        for category in CONTEXT_CATEGORIES:
            items = by_category.get(category)
            if not items:
                continue
            sections.append(PromptSection(
                category=category,
                title=CATEGORY_TITLES[category],
                content="\n\n---\n\n".join(i.content for i in items),
                tokens=sum(i.tokens for i in items),
                files=[i.path for i in items if i.path],
            ))
        return sections

    def render(self, sections: List[PromptSection], generated_at: Optional[str] = None) -> str:
        """Markdown pack; without *generated_at* the output is timestamp-free."""
        parts = ["# AI Development Context Pack\n"]
        if generated_at:
            parts.append(f"Generated: {generated_at}\n")
        parts.append(f"Provider: {self.provider}\n")
        parts.append("---\n")
        for section in sections:
            parts.append(f"\n# {section.title}\n")
            parts.append(f"**Files:** {len(section.files)} | **Tokens:** ~{section.tokens}\n\n")
            parts.append(section.content)
            parts.append("\n")
        return "".join(parts)

    def build_manifest(
        self,
        report: ImpactReport,
        allocation: AllocationResult,
        sections: List[PromptSection],
        generated_at: str,
    ) -> Dict[str, Any]:
        content_hash = hashlib.sha256(self.render(sections).encode("utf-8")).hexdigest()[:12]
        included = [i.path for i in allocation.allocated if i.path]

        return {
            "version": PACK_VERSION,
            "provider": self.provider,
            "generatedAt": generated_at,
            "contentHash": content_hash,
            "tokens": {
                "total": allocation.total_tokens,
                "byCategory": dict(allocation.budget_used),
                "budget": self.budget,
                "utilization": allocation.total_tokens / self.budget,
            },
            "files": {
                "changed": len(report.changed_files),
                "impacted": max(0, len(report.affected_files) - len(report.changed_files)),
                "included": len(included),
                "redacted": len([p for p in included if p in self._redacted_paths]),
            },
            "components": {
                "affected": len(report.affected_components),
                "names": list(report.affected_components),
            },
        }
