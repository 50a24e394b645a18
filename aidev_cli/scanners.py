"""Language scanners that extract imports, exports and calls from source.

* Python files go through the built-in ``ast`` module.
* TypeScript / JavaScript files go through Tree-sitter grammars, which
  tolerate syntax errors and yield a concrete syntax tree.

Scanners only report what they see; turning import specifiers into edges
is the job of :class:`~aidev_cli.graph_builder.GraphBuilder`.
"""

from __future__ import annotations

import ast
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Set, Tuple

import tree_sitter_javascript
import tree_sitter_typescript
from tree_sitter import Language, Node, Parser as TSParser

from .errors import ScanError
from .graph_builder import GraphBuilder
from .models import Edge, ImportInfo, ScanResult
from .utils import match_glob, normalize_path

logger = logging.getLogger(__name__)

SKIP_DIRS: Set[str] = {
    ".venv", "venv", "__pycache__", "node_modules", ".git",
    "site-packages", ".tox", ".pytest_cache", "build", "dist",
    ".mypy_cache", ".ruff_cache", "htmlcov", ".eggs", ".aidev",
}


# ===================================================================
# Abstract scanner interface
# ===================================================================

class LanguageScanner(ABC):
    """Extracts a :class:`ScanResult` from one source file."""

    name: str = ""
    extensions: Tuple[str, ...] = ()

    def supports(self, path: str) -> bool:
        return any(path.endswith(ext) for ext in self.extensions)

    @abstractmethod
    def scan(self, path: str, content: str) -> ScanResult:
        """Scan *content* (the text of *path*)."""


def _unique(items: List[str]) -> List[str]:
    seen: Set[str] = set()
    out: List[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


# ===================================================================
# Python (ast)
# ===================================================================

def relative_specifier(level: int, module: Optional[str]) -> str:
    """Path-style specifier for a relative Python import.

    ``from .a.b import x`` -> ``./a/b``; ``from .. import m`` -> ``../m``
    (the caller passes ``m`` as *module* in that case).
    """
    base = "." if level <= 1 else "/".join([".."] * (level - 1))
    if not module:
        return base
    return f"{base}/{module.replace('.', '/')}"


class PythonScanner(LanguageScanner):
    name = "python"
    extensions = (".py", ".pyi")

    def scan(self, path: str, content: str) -> ScanResult:
        try:
            tree = ast.parse(content, filename=path)
        except (SyntaxError, ValueError) as exc:
            logger.warning("SyntaxError in %s: %s", path, exc)
            return ScanResult()

        result = ScanResult()
        calls: List[str] = []
        type_refs: List[str] = []

        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                for alias in node.names:
                    result.imports.append(ImportInfo(
                        source=alias.name,
                        symbols=[alias.asname or alias.name],
                        is_namespace=True,
                        line=node.lineno,
                    ))
            elif isinstance(node, ast.ImportFrom):
                result.imports.extend(self._from_import(node))
            elif isinstance(node, ast.Call):
                name = _call_name(node.func)
                if name:
                    calls.append(name)
            elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                annotations = [a.annotation for a in node.args.args + node.args.kwonlyargs]
                annotations.append(node.returns)
                for annotation in annotations:
                    type_refs.extend(_annotation_names(annotation))
            elif isinstance(node, ast.AnnAssign):
                type_refs.extend(_annotation_names(node.annotation))

        result.exports = _python_exports(tree)
        result.calls = _unique(calls)
        result.type_references = _unique(type_refs)
        return result

    @staticmethod
    def _from_import(node: ast.ImportFrom) -> List[ImportInfo]:
        names = [alias.name for alias in node.names]
        if node.level == 0:
            return [ImportInfo(source=node.module or "", symbols=names, line=node.lineno)]
        if node.module:
            return [ImportInfo(
                source=relative_specifier(node.level, node.module),
                symbols=names,
                line=node.lineno,
            )]
        # "from . import a, b": each name is a sibling module
        if names == ["*"]:
            return [ImportInfo(source=relative_specifier(node.level, None), symbols=names,
                               is_namespace=True, line=node.lineno)]
        return [
            ImportInfo(source=relative_specifier(node.level, name), symbols=[name],
                       is_namespace=True, line=node.lineno)
            for name in names
        ]


def _call_name(func: ast.AST) -> Optional[str]:
    if isinstance(func, ast.Name):
        return func.id
    if isinstance(func, ast.Attribute):
        return func.attr
    return None


def _annotation_names(annotation: Optional[ast.AST]) -> List[str]:
    if annotation is None:
        return []
    if isinstance(annotation, ast.Constant) and isinstance(annotation.value, str):
        try:
            annotation = ast.parse(annotation.value, mode="eval")
        except SyntaxError:
            return []
    return [n.id for n in ast.walk(annotation) if isinstance(n, ast.Name)]


def _python_exports(tree: ast.Module) -> List[str]:
    """``__all__`` when it is a literal list, else public top-level names."""
    names: List[str] = []
    for stmt in tree.body:
        if isinstance(stmt, ast.Assign):
            for target in stmt.targets:
                if isinstance(target, ast.Name) and target.id == "__all__":
                    if isinstance(stmt.value, (ast.List, ast.Tuple)):
                        return [
                            elt.value for elt in stmt.value.elts
                            if isinstance(elt, ast.Constant) and isinstance(elt.value, str)
                        ]
                elif isinstance(target, ast.Name):
                    names.append(target.id)
        elif isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            names.append(stmt.name)
    return _unique([n for n in names if not n.startswith("_")])


# ===================================================================
# TypeScript / JavaScript (Tree-sitter)
# ===================================================================

_EXPORTABLE_DECLARATIONS = {
    "function_declaration",
    "generator_function_declaration",
    "class_declaration",
    "abstract_class_declaration",
    "interface_declaration",
    "type_alias_declaration",
    "enum_declaration",
}


def _text(node: Node) -> str:
    return node.text.decode("utf-8", errors="ignore")


def _string_value(node: Optional[Node]) -> Optional[str]:
    if node is None or node.type != "string":
        return None
    return _text(node)[1:-1]


def _walk(root: Node) -> Iterator[Node]:
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


class TypeScriptScanner(LanguageScanner):
    """Tree-sitter based scanner for ``.ts``/``.tsx`` and plain JavaScript."""

    name = "typescript"
    extensions = (".ts", ".tsx", ".mts", ".cts", ".js", ".jsx", ".mjs", ".cjs")

    _GRAMMARS = {
        "typescript": tree_sitter_typescript.language_typescript,
        "tsx": tree_sitter_typescript.language_tsx,
        "javascript": tree_sitter_javascript.language,
    }

    def __init__(self) -> None:
        self._parsers: Dict[str, TSParser] = {}

    def _grammar_for(self, path: str) -> str:
        if path.endswith((".tsx", ".jsx")):
            return "tsx"
        if path.endswith((".js", ".mjs", ".cjs")):
            return "javascript"
        return "typescript"

    def _parser(self, grammar: str) -> TSParser:
        if grammar not in self._parsers:
            self._parsers[grammar] = TSParser(Language(self._GRAMMARS[grammar]()))
            logger.debug("Loaded tree-sitter parser for %s", grammar)
        return self._parsers[grammar]

    def scan(self, path: str, content: str) -> ScanResult:
        try:
            tree = self._parser(self._grammar_for(path)).parse(content.encode("utf-8"))
        except ValueError as exc:
            raise ScanError(f"Could not parse {path}: {exc}", file=path) from exc

        result = ScanResult()
        calls: List[str] = []
        type_refs: List[str] = []

        for node in _walk(tree.root_node):
            if node.type == "import_statement":
                info = self._import_statement(node)
                if info is not None:
                    result.imports.append(info)
            elif node.type == "export_statement":
                self._export_statement(node, result)
            elif node.type == "call_expression":
                self._call_expression(node, result, calls)
            elif node.type == "type_identifier":
                type_refs.append(_text(node))

        result.exports = _unique(result.exports)
        result.calls = _unique(calls)
        result.type_references = _unique(type_refs)
        return result

    @staticmethod
    def _import_statement(node: Node) -> Optional[ImportInfo]:
        source = _string_value(node.child_by_field_name("source"))
        if source is None:
            return None
        info = ImportInfo(source=source, line=node.start_point[0] + 1)
        for clause in node.children:
            if clause.type != "import_clause":
                continue
            for part in clause.children:
                if part.type == "identifier":
                    info.is_default = True
                    info.symbols.append(_text(part))
                elif part.type == "namespace_import":
                    info.is_namespace = True
                    info.symbols.extend(_text(c) for c in part.children if c.type == "identifier")
                elif part.type == "named_imports":
                    for spec in part.children:
                        if spec.type == "import_specifier":
                            name = spec.child_by_field_name("name")
                            if name is not None:
                                info.symbols.append(_text(name))
        return info

    @staticmethod
    def _export_statement(node: Node, result: ScanResult) -> None:
        source = _string_value(node.child_by_field_name("source"))
        symbols: List[str] = []

        for child in node.children:
            if child.type == "default":
                symbols.append("default")
            elif child.type == "export_clause":
                for spec in child.children:
                    if spec.type == "export_specifier":
                        alias = spec.child_by_field_name("alias") or spec.child_by_field_name("name")
                        if alias is not None:
                            symbols.append(_text(alias))
            elif child.type in _EXPORTABLE_DECLARATIONS:
                name = child.child_by_field_name("name")
                if name is not None:
                    symbols.append(_text(name))
            elif child.type in ("lexical_declaration", "variable_declaration"):
                for declarator in child.children:
                    if declarator.type == "variable_declarator":
                        name = declarator.child_by_field_name("name")
                        if name is not None and name.type == "identifier":
                            symbols.append(_text(name))

        if source is not None:
            # re-export: "export { a } from './x'" / "export * from './x'"
            result.imports.append(ImportInfo(
                source=source,
                symbols=symbols,
                is_namespace=not symbols,
                line=node.start_point[0] + 1,
            ))
        result.exports.extend(symbols)

    @staticmethod
    def _call_expression(node: Node, result: ScanResult, calls: List[str]) -> None:
        func = node.child_by_field_name("function")
        if func is None:
            return
        arguments = node.child_by_field_name("arguments")
        first_arg = None
        if arguments is not None:
            named = [c for c in arguments.children if c.is_named]
            first_arg = named[0] if named else None

        if func.type == "import" or (func.type == "identifier" and _text(func) == "require"):
            source = _string_value(first_arg)
            if source is not None:
                result.imports.append(ImportInfo(
                    source=source,
                    is_namespace=True,
                    line=node.start_point[0] + 1,
                ))
            return

        if func.type == "identifier":
            calls.append(_text(func))
        elif func.type == "member_expression":
            prop = func.child_by_field_name("property")
            if prop is not None:
                calls.append(_text(prop))


# ===================================================================
# Registry & project scan
# ===================================================================

SCANNERS: Sequence[LanguageScanner] = (PythonScanner(), TypeScriptScanner())


def scanner_for(path: str) -> Optional[LanguageScanner]:
    """Scanner registered for the extension of *path*, if any."""
    for scanner in SCANNERS:
        if scanner.supports(path):
            return scanner
    return None


def is_excluded(rel_path: str, patterns: Sequence[str]) -> bool:
    """True when *rel_path* falls under one of the ``scan.exclude`` entries.

    ``dir/`` entries exclude a directory of that name at any depth; other
    entries are globs matched against the whole relative path.
    """
    parts = rel_path.split("/")
    for pattern in patterns:
        pattern = normalize_path(pattern.strip())
        if not pattern:
            continue
        if "/" not in pattern and not any(c in pattern for c in "*?["):
            if pattern in parts[:-1] or pattern == rel_path:
                return True
        elif rel_path.startswith(pattern + "/") or match_glob(rel_path, pattern):
            return True
    return False


@dataclass
class ProjectScan:
    files: List[str] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    truncated: bool = False


def iter_source_files(project_root: Path, exclude: Sequence[str] = ()) -> Iterator[str]:
    """Relative POSIX paths of scannable files, in sorted order."""
    for dirpath, dirnames, filenames in os.walk(project_root):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
        rel_dir = Path(dirpath).relative_to(project_root).as_posix()
        for filename in sorted(filenames):
            rel = filename if rel_dir == "." else f"{rel_dir}/{filename}"
            if scanner_for(rel) is None or is_excluded(rel, exclude):
                continue
            yield rel


def scan_project(project_root: Path, config: Any = None) -> ProjectScan:
    """Scan every source file under *project_root* and build import edges.

    Args:
        project_root: Directory to walk.
        config: Optional :class:`~aidev_cli.model_loader.ProjectConfig`;
            its ``scan.exclude`` and ``scan.max_files`` are honoured.

    Returns:
        A :class:`ProjectScan` with the scanned files and discovered edges.
    """
    exclude: Sequence[str] = config.scan.exclude if config is not None else ()
    max_files: int = config.scan.max_files if config is not None else 10000

    builder = GraphBuilder()
    scan = ProjectScan()

    for rel in iter_source_files(project_root, exclude):
        if len(scan.files) >= max_files:
            logger.warning("Stopped after %d files (scan.max_files)", max_files)
            scan.truncated = True
            break
        scanner = scanner_for(rel)
        try:
            content = (project_root / rel).read_text(encoding="utf-8", errors="ignore")
            result = scanner.scan(rel, content)
        except (OSError, ScanError) as exc:
            logger.warning("Failed to scan %s: %s", rel, exc)
            scan.skipped.append(rel)
            continue
        builder.add_scan_result(rel, result)
        scan.files.append(rel)

    scan.edges = builder.build_edges()
    logger.info("Scanned %d files, discovered %d edges", len(scan.files), len(scan.edges))
    return scan
