"""Output adapters that render a :class:`PromptPack` for a destination."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List
from xml.sax.saxutils import escape

from .generator import PromptPack, PromptSection


@dataclass(frozen=True)
class FormattedOutput:
    content: str
    mime_type: str
    extension: str
    provider: str


class ProviderAdapter(ABC):
    name: str = ""

    @abstractmethod
    def format(self, pack: PromptPack) -> FormattedOutput:
        """Render the whole pack."""

    @abstractmethod
    def format_section(self, section: PromptSection) -> str:
        """Render one section."""


def escape_xml(text: str) -> str:
    return escape(text, {'"': "&quot;", "'": "&apos;"})


class ClaudeAdapter(ProviderAdapter):
    """XML-tagged output."""

    name = "claude"

    TAGS: Dict[str, str] = {
        "task": "task_description",
        "changed": "changed_files",
        "impacted": "impacted_files",
        "contract": "contracts",
        "architecture": "architecture",
        "decision": "decisions",
    }

    def format(self, pack: PromptPack) -> FormattedOutput:
        manifest = pack.manifest
        parts = [
            "<context>",
            "<metadata>",
            f"  <provider>{escape_xml(manifest['provider'])}</provider>",
            f"  <generated>{escape_xml(manifest['generatedAt'])}</generated>",
            f"  <content_hash>{manifest['contentHash']}</content_hash>",
            f"  <tokens_used>{manifest['tokens']['total']}</tokens_used>",
            f"  <budget>{manifest['tokens']['budget']}</budget>",
            "</metadata>",
            "",
        ]

        names = manifest["components"]["names"]
        if names:
            parts.append("<affected_components>")
            parts.extend(f"  <component>{escape_xml(n)}</component>" for n in names)
            parts.append("</affected_components>")
            parts.append("")

        for section in pack.sections:
            parts.append(self.format_section(section))
            parts.append("")

        parts.append("</context>")
        return FormattedOutput("\n".join(parts), "text/xml", ".xml", self.name)

    def format_section(self, section: PromptSection) -> str:
        tag = self.TAGS.get(section.category, section.category)
        parts = [
            f"<{tag}>",
            f"  <title>{escape_xml(section.title)}</title>",
            f"  <tokens>{section.tokens}</tokens>",
        ]
        if section.files:
            parts.append("  <files>")
            parts.extend(f"    <file>{escape_xml(f)}</file>" for f in section.files)
            parts.append("  </files>")
        parts.append("  <content>")
        parts.append(escape_xml(section.content))
        parts.append("  </content>")
        parts.append(f"</{tag}>")
        return "\n".join(parts)


class OpenAIAdapter(ProviderAdapter):
    """Chat ``messages`` array: one system message plus one user message."""

    name = "openai"

    HEADERS: Dict[str, str] = {
        "task": "Task Description",
        "changed": "Changed Files",
        "impacted": "Impacted Files (Review for Side Effects)",
        "contract": "API Contracts",
        "architecture": "Architecture Documentation",
        "decision": "Design Decisions",
    }

    def format(self, pack: PromptPack) -> FormattedOutput:
        return FormattedOutput(
            json.dumps(self.to_messages(pack), indent=2, ensure_ascii=False),
            "application/json",
            ".json",
            self.name,
        )

    def to_messages(self, pack: PromptPack) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": self._system_message(pack)},
            {"role": "user", "content": self._user_message(pack)},
        ]

    def format_section(self, section: PromptSection) -> str:
        parts = [f"## {self.HEADERS.get(section.category, section.category)}", ""]
        if section.files:
            parts.append(f"Files: {', '.join(section.files)}")
            parts.append("")
        parts.append(section.content)
        return "\n".join(parts)

    @staticmethod
    def _system_message(pack: PromptPack) -> str:
        manifest = pack.manifest
        components = ", ".join(manifest["components"]["names"]) or "none"
        return "\n".join([
            "You are an expert software developer assisting with code changes.",
            "",
            "Context Information:",
            f"- Components affected: {components}",
            f"- Files changed: {manifest['files']['changed']}",
            f"- Files impacted: {manifest['files']['impacted']}",
            f"- Token budget used: {manifest['tokens']['total']}/{manifest['tokens']['budget']}",
            "",
            "Guidelines:",
            "- Review the changed files carefully",
            "- Consider the impact on dependent files",
            "- Follow existing code patterns and conventions",
            "- Ensure changes are safe and well-tested",
        ])

    def _user_message(self, pack: PromptPack) -> str:
        parts: List[str] = []
        for section in pack.sections:
            if section.category == "task":
                parts.extend(["# Task", "", section.content, ""])
        for section in pack.sections:
            if section.category != "task":
                parts.append(self.format_section(section))
                parts.append("")
        return "\n".join(parts)


class MarkdownAdapter(ProviderAdapter):
    """Plain Markdown, for any other destination."""

    name = "generic"

    def format(self, pack: PromptPack) -> FormattedOutput:
        return FormattedOutput(pack.content, "text/markdown", ".md", self.name)

    def format_section(self, section: PromptSection) -> str:
        return f"# {section.title}\n\n{section.content}\n"


def create_adapter(provider: str) -> ProviderAdapter:
    """Adapter for *provider*; unknown names fall back to Claude's XML."""
    name = (provider or "").lower()
    if name in ("openai", "gpt"):
        return OpenAIAdapter()
    if name in ("generic", "markdown"):
        return MarkdownAdapter()
    return ClaudeAdapter()
