"""Turn per-file scan results into discovered file-level import edges."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .models import Edge, ScanResult
from .utils import join_path, normalize_path, posix_dirname, resolve_relative

logger = logging.getLogger(__name__)

# Tried in order; the first candidate present in the known file set wins.
RESOLVE_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".py", ".pyi", "")
INDEX_NAMES = ("index", "__init__")
JS_EXTENSIONS = (".js", ".jsx", ".mjs", ".cjs")

IMPORT_CONFIDENCE = 0.95


def is_relative_import(specifier: str) -> bool:
    return (
        specifier.startswith("./")
        or specifier.startswith("../")
        or specifier in (".", "..")
    )


class GraphBuilder:
    """Collects scan results and resolves relative imports between them.

    Only files added through :meth:`add_scan_result` can be edge targets,
    so anything outside the scanned set (packages, generated code) is
    silently left out.
    """

    def __init__(self) -> None:
        self._files: Dict[str, ScanResult] = {}

    def add_scan_result(self, path: str, result: ScanResult) -> None:
        self._files[normalize_path(path)] = result

    def get_files(self) -> List[str]:
        return sorted(self._files)

    def clear(self) -> None:
        self._files.clear()

    def build_edges(self) -> List[Edge]:
        """Resolve every relative import and return edges sorted by (source, target)."""
        edges: List[Edge] = []
        seen: Set[Tuple[str, str]] = set()

        for source in sorted(self._files):
            for imp in self._files[source].imports:
                if not is_relative_import(imp.source):
                    continue
                target = self.resolve_import(source, imp.source)
                if target is None:
                    logger.debug("Unresolved import %r in %s", imp.source, source)
                    continue
                # one edge per file pair; the first import statement wins
                if (source, target) in seen:
                    continue
                seen.add((source, target))
                edges.append(
                    Edge(
                        source=source,
                        target=target,
                        type="import",
                        confidence=IMPORT_CONFIDENCE,
                        detection_method="ast",
                        evidence=f"import from '{imp.source}'",
                    )
                )

        edges.sort(key=lambda e: (e.source, e.target))
        return edges

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_import(self, from_path: str, specifier: str) -> Optional[str]:
        """Known file that *specifier* imported from *from_path* refers to."""
        resolved = resolve_relative(posix_dirname(from_path), specifier)

        for candidate in self._candidates(resolved):
            if candidate in self._files:
                return candidate

        # ESM style: "./foo.js" written against a "foo.ts" source file
        for ext in JS_EXTENSIONS:
            if resolved.endswith(ext):
                stripped = resolved[: -len(ext)]
                for candidate in self._candidates(stripped):
                    if candidate in self._files:
                        return candidate
                break

        return None

    @staticmethod
    def _candidates(base: str) -> Iterable[str]:
        for ext in RESOLVE_EXTENSIONS:
            yield base + ext
        for index_name in INDEX_NAMES:
            for ext in RESOLVE_EXTENSIONS:
                if not ext:
                    continue
                yield index_name + ext if base == "." else join_path(base, index_name + ext)
