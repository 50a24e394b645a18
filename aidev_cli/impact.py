"""Impact analysis: which components and files a set of changes reaches.

Two traversals run over the loaded :class:`ProjectModel`:

* **components**: changed paths are matched against component globs, then
  a breadth-first walk over the reverse ``depends_on`` map collects every
  component that (transitively) depends on a directly touched one;
* **files**: declared and discovered edges are merged and walked in both
  directions from the changed files.

Confidence values produced here are ranking heuristics, not calibrated
probabilities.  Every traversal explores neighbours in sorted order, so the
same model and changes always give the same report.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .model_loader import ProjectModel
from .models import (
    ChangedFile,
    Component,
    Edge,
    FileImpactEdge,
    ImpactEdge,
    ImpactEvidence,
    ImpactHop,
    ImpactReport,
    ImpactSummary,
)
from .utils import match_glob, normalize_path

logger = logging.getLogger(__name__)

COMPONENT_DECAY = 0.2
COMPONENT_FLOOR = 0.3
FILE_DECAY = 0.1
FILE_FLOOR = 0.5
EXPLAIN_DECAY = 0.05
EXPLAIN_FLOOR = 0.8


def component_confidence(distance: int) -> float:
    """1.0 for a direct match, then -0.2 per hop down to 0.3."""
    if distance == 0:
        return 1.0
    return max(COMPONENT_FLOOR, 1.0 - distance * COMPONENT_DECAY)


def file_confidence(edge_confidence: float, distance: int) -> float:
    """Edge confidence attenuated by distance, never below half of it."""
    return edge_confidence * max(FILE_FLOOR, 1.0 - distance * FILE_DECAY)


def _edge_key(edge: Edge) -> Tuple[str, str, str]:
    return normalize_path(edge.source), normalize_path(edge.target), edge.type


def _best_per_key(edges: Iterable[Edge]) -> List[Edge]:
    """One edge per key from a single list, independent of list order.

    Highest confidence wins; ties fall to detection method, then evidence.
    """
    ranked = sorted(
        edges,
        key=lambda e: (_edge_key(e), -e.confidence, e.detection_method, e.evidence or ""),
    )
    best: Dict[Tuple[str, str, str], Edge] = {}
    for edge in ranked:
        best.setdefault(_edge_key(edge), edge)
    return list(best.values())


class ImpactAnalyzer:
    """Compute an :class:`ImpactReport` for a list of changed files.

    The merged edge list and the adjacency indexes are built on first use
    and then reused for the lifetime of the instance; the analyzer exposes
    no way to mutate them.
    """

    def __init__(self, model: ProjectModel) -> None:
        self.model = model
        self._components: Dict[str, Component] = {c.name: c for c in model.components}
        self._merged_edges: Optional[List[Edge]] = None
        self._forward_index: Optional[Dict[str, List[Edge]]] = None
        self._reverse_index: Optional[Dict[str, List[Edge]]] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def analyze(self, changes: Iterable[ChangedFile]) -> ImpactReport:
        changes = list(changes)
        changed_paths = sorted({normalize_path(c.path) for c in changes})

        direct = self._find_direct_components(changed_paths)
        affected = self._find_transitive_components(direct)
        impact_edges = self._build_impact_edges(changed_paths, direct, affected)

        affected_files, file_edges = self._find_affected_files(changed_paths)

        confidences = [e.confidence for e in impact_edges]
        confidence_mean = sum(confidences) / len(confidences) if confidences else 0.0

        logger.debug(
            "Impact: %d changed, %d direct components, %d affected components, %d files",
            len(changes), len(direct), len(affected), len(affected_files),
        )

        return ImpactReport(
            changed_files=tuple(changes),
            affected_components=tuple(sorted(affected)),
            affected_files=tuple(sorted(affected_files)),
            impact_edges=tuple(impact_edges),
            file_impact_edges=tuple(file_edges),
            summary=ImpactSummary(
                files_changed=len(changes),
                components_affected=len(affected),
                files_affected=len(affected_files),
                confidence_mean=confidence_mean,
            ),
        )

    def get_merged_edges(self) -> List[Edge]:
        """Declared and discovered edges merged on (source, target, type).

        Declared edges go in first; a discovered duplicate replaces one only
        with strictly higher confidence.  Sorted by (source, target, type).
        """
        if self._merged_edges is not None:
            return self._merged_edges

        merged: Dict[Tuple[str, str, str], Edge] = {}
        for edge in _best_per_key(self.model.declared_edges):
            merged[_edge_key(edge)] = edge
        for edge in _best_per_key(self.model.discovered_edges):
            key = _edge_key(edge)
            existing = merged.get(key)
            if existing is None or edge.confidence > existing.confidence:
                merged[key] = edge

        self._merged_edges = [merged[key] for key in sorted(merged)]
        return self._merged_edges

    def explain(self, target: str, changes: Iterable[ChangedFile]) -> Optional[ImpactEvidence]:
        """Shortest path from any changed file to *target*, or ``None``.

        Edges are walked in both directions; the score multiplies each
        hop's edge confidence by ``max(0.8, 1 - hop_index * 0.05)``.
        """
        target = normalize_path(target)
        starts = sorted({normalize_path(c.path) for c in changes})
        if not starts:
            return None

        if target in starts:
            return ImpactEvidence(
                target=target,
                path=(target,),
                hops=(),
                score=1.0,
                summary=f"{target} is itself a changed file",
            )

        parents: Dict[str, Tuple[str, ImpactHop]] = {}
        visited: Set[str] = set(starts)
        queue = list(starts)
        head = 0
        found = False

        while head < len(queue) and not found:
            current = queue[head]
            head += 1
            for neighbour, hop in self._neighbours(current):
                if neighbour in visited:
                    continue
                visited.add(neighbour)
                parents[neighbour] = (current, hop)
                if neighbour == target:
                    found = True
                    break
                queue.append(neighbour)

        if not found:
            return None

        hops: List[ImpactHop] = []
        path = [target]
        node = target
        while node in parents:
            node, hop = parents[node]
            hops.append(hop)
            path.append(node)
        hops.reverse()
        path.reverse()

        score = 1.0
        for index, hop in enumerate(hops):
            score *= hop.confidence * max(EXPLAIN_FLOOR, 1.0 - index * EXPLAIN_DECAY)
        score = min(1.0, max(0.0, score))

        return ImpactEvidence(
            target=target,
            path=tuple(path),
            hops=tuple(hops),
            score=score,
            summary=self._summarize(path, hops),
        )

    # ------------------------------------------------------------------
    # Component traversal
    # ------------------------------------------------------------------

    def _matches(self, component: Component, path: str) -> bool:
        return any(match_glob(path, pattern) for pattern in component.paths)

    def _find_direct_components(self, changed_paths: List[str]) -> Set[str]:
        direct: Set[str] = set()
        for path in changed_paths:
            for component in self.model.components:
                if self._matches(component, path):
                    direct.add(component.name)
        return direct

    def _dependents(self, name: str) -> List[str]:
        return sorted(self.model.dependents_by_component.get(name, ()))

    def _find_transitive_components(self, direct: Set[str]) -> List[str]:
        """Direct components plus their dependents, in traversal order."""
        queue = sorted(direct)
        seen = set(queue)
        head = 0
        while head < len(queue):
            current = queue[head]
            head += 1
            for dependent in self._dependents(current):
                if dependent not in seen:
                    seen.add(dependent)
                    queue.append(dependent)
        return queue

    def _calculate_distances(self, direct: Set[str]) -> Dict[str, int]:
        distances: Dict[str, int] = {}
        queue: List[Tuple[str, int]] = [(name, 0) for name in sorted(direct)]
        head = 0
        while head < len(queue):
            current, distance = queue[head]
            head += 1
            if current in distances and distances[current] <= distance:
                continue
            distances[current] = distance
            for dependent in self._dependents(current):
                if dependent not in distances:
                    queue.append((dependent, distance + 1))
        return distances

    def _dependency_source(self, name: str, direct: Set[str]) -> str:
        component = self._components.get(name)
        if component is None:
            return "unknown"
        for dep in component.depends_on:
            if dep in direct:
                return dep
        return component.depends_on[0] if component.depends_on else "unknown"

    def _build_impact_edges(
        self,
        changed_paths: List[str],
        direct: Set[str],
        affected: List[str],
    ) -> List[ImpactEdge]:
        distances = self._calculate_distances(direct)
        edges: List[ImpactEdge] = []

        for name in affected:
            distance = distances.get(name, 0)
            if name in direct:
                component = self._components[name]
                matching = [p for p in changed_paths if self._matches(component, p)]
                edges.append(
                    ImpactEdge(
                        source=matching[0] if matching else "unknown",
                        target=name,
                        type="direct",
                        confidence=1.0,
                        distance=0,
                        reason="File matches component path pattern",
                    )
                )
            else:
                edges.append(
                    ImpactEdge(
                        source=self._dependency_source(name, direct),
                        target=name,
                        type="transitive",
                        confidence=component_confidence(distance),
                        distance=distance,
                        reason=f"Depends on affected component (distance: {distance})",
                    )
                )

        # stable: equal confidences keep traversal order
        edges.sort(key=lambda e: -e.confidence)
        return edges

    # ------------------------------------------------------------------
    # File traversal
    # ------------------------------------------------------------------

    def _get_forward_index(self) -> Dict[str, List[Edge]]:
        if self._forward_index is None:
            index: Dict[str, List[Edge]] = {}
            for edge in self.get_merged_edges():
                index.setdefault(normalize_path(edge.source), []).append(edge)
            for edges in index.values():
                edges.sort(key=lambda e: normalize_path(e.target))
            self._forward_index = index
        return self._forward_index

    def _get_reverse_index(self) -> Dict[str, List[Edge]]:
        if self._reverse_index is None:
            index: Dict[str, List[Edge]] = {}
            for edge in self.get_merged_edges():
                index.setdefault(normalize_path(edge.target), []).append(edge)
            for edges in index.values():
                edges.sort(key=lambda e: normalize_path(e.source))
            self._reverse_index = index
        return self._reverse_index

    def _find_affected_files(self, changed_paths: List[str]) -> Tuple[Set[str], List[FileImpactEdge]]:
        affected: Set[str] = set(changed_paths)
        file_edges: List[FileImpactEdge] = []
        forward = self._get_forward_index()
        reverse = self._get_reverse_index()

        queue: List[Tuple[str, int]] = [(path, 0) for path in changed_paths]
        visited: Set[str] = set()
        head = 0

        while head < len(queue):
            current, distance = queue[head]
            head += 1
            if current in visited:
                continue
            visited.add(current)

            neighbours = [(normalize_path(e.target), e) for e in forward.get(current, ())]
            neighbours += [(normalize_path(e.source), e) for e in reverse.get(current, ())]
            for other, edge in neighbours:
                if other in affected:
                    continue
                affected.add(other)
                file_edges.append(
                    FileImpactEdge(
                        source=current,
                        target=other,
                        type=edge.type,
                        confidence=file_confidence(edge.confidence, distance),
                        detection_method=edge.detection_method,
                        distance=distance + 1,
                    )
                )
                queue.append((other, distance + 1))

        file_edges.sort(key=lambda e: (e.source, e.target))
        return affected, file_edges

    # ------------------------------------------------------------------
    # Explanation helpers
    # ------------------------------------------------------------------

    def _neighbours(self, node: str) -> List[Tuple[str, ImpactHop]]:
        result: List[Tuple[str, ImpactHop]] = []
        for edge in self._get_forward_index().get(node, ()):
            other = normalize_path(edge.target)
            result.append((other, ImpactHop(node, other, edge.type, edge.confidence,
                                            edge.detection_method, "forward")))
        for edge in self._get_reverse_index().get(node, ()):
            other = normalize_path(edge.source)
            result.append((other, ImpactHop(node, other, edge.type, edge.confidence,
                                            edge.detection_method, "reverse")))
        return result

    @staticmethod
    def _summarize(path: List[str], hops: List[ImpactHop]) -> str:
        counts = Counter(hop.edge_type for hop in hops)
        best = max(counts.values())
        # ties go to the type seen first along the path
        dominant = next(hop.edge_type for hop in hops if counts[hop.edge_type] == best)
        noun = "hop" if len(hops) == 1 else "hops"
        return f"{path[0]} reaches {path[-1]} in {len(hops)} {noun}, mostly via {dominant} edges"
