"""Core data models shared by the graph, impact and prompt layers."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, List, Literal, Optional, Tuple

EDGE_TYPES: Tuple[str, ...] = (
    "import",
    "call",
    "type_reference",
    "extends",
    "uses_table",
    "publishes_event",
    "calls_endpoint",
    "reads_config",
    "test_covers",
)

DETECTION_METHODS: Tuple[str, ...] = ("declared", "ast", "regex", "heuristic")

CHANGE_TYPES: Tuple[str, ...] = ("added", "modified", "deleted", "renamed")


def _check_confidence(value: Any) -> float:
    """Return *value* as a float; bools, strings and out-of-range numbers fail."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"confidence must be a number, got {value!r}")
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"confidence must be within [0, 1], got {value!r}")
    return float(value)


def _check_str(value: Any, field_name: str) -> None:
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string, got {value!r}")


def _check_str_list(value: Any, field_name: str) -> None:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"{field_name} must be a list of strings, got {value!r}")


@dataclass
class Edge:
    """Directed dependency between two files or components."""
    source: str
    target: str
    type: str
    confidence: float
    detection_method: str = "declared"
    evidence: Optional[str] = None

    def __post_init__(self):
        _check_str(self.source, "source")
        _check_str(self.target, "target")
        if self.type not in EDGE_TYPES:
            raise ValueError(f"Unknown edge type: {self.type}")
        if self.detection_method not in DETECTION_METHODS:
            raise ValueError(f"Unknown detection method: {self.detection_method}")
        if self.evidence is not None:
            _check_str(self.evidence, "evidence")
        self.confidence = _check_confidence(self.confidence)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        if payload["evidence"] is None:
            payload.pop("evidence")
        return payload


@dataclass
class Component:
    """Named group of files with declared dependencies on other components."""
    name: str
    paths: List[str]
    depends_on: List[str] = field(default_factory=list)
    description: str = ""
    contracts: List[str] = field(default_factory=list)

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name:
            raise ValueError("Component name must be a non-empty string")
        _check_str_list(self.paths, "paths")
        _check_str_list(self.depends_on, "depends_on")
        _check_str_list(self.contracts, "contracts")
        _check_str(self.description, "description")
        if not self.paths:
            raise ValueError(f"Component '{self.name}' needs at least one path pattern")


@dataclass
class ChangedFile:
    """One entry of a diff."""
    path: str
    change_type: Literal["added", "modified", "deleted", "renamed"] = "modified"
    old_path: Optional[str] = None

    def __post_init__(self):
        if self.change_type not in CHANGE_TYPES:
            raise ValueError(f"Unknown change type: {self.change_type}")
        if self.change_type != "renamed" and self.old_path is not None:
            raise ValueError("old_path is only valid for renamed files")

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"path": self.path, "changeType": self.change_type}
        if self.old_path is not None:
            payload["oldPath"] = self.old_path
        return payload


# ---------------------------------------------------------------------------
# Scanner output
# ---------------------------------------------------------------------------

@dataclass
class ImportInfo:
    source: str
    symbols: List[str] = field(default_factory=list)
    is_default: bool = False
    is_namespace: bool = False
    line: int = 0


@dataclass
class ScanResult:
    imports: List[ImportInfo] = field(default_factory=list)
    exports: List[str] = field(default_factory=list)
    calls: List[str] = field(default_factory=list)
    type_references: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Impact analysis output
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ImpactEdge:
    """Explains why a component is in the impact set."""
    source: str
    target: str
    type: Literal["direct", "transitive"]
    confidence: float
    distance: int
    reason: str


@dataclass(frozen=True)
class FileImpactEdge:
    """Explains why a file is in the impact set."""
    source: str
    target: str
    type: str
    confidence: float
    detection_method: str
    distance: int


@dataclass(frozen=True)
class ImpactSummary:
    files_changed: int
    components_affected: int
    files_affected: int
    confidence_mean: float


@dataclass(frozen=True)
class ImpactReport:
    changed_files: Tuple[ChangedFile, ...]
    affected_components: Tuple[str, ...]
    affected_files: Tuple[str, ...]
    impact_edges: Tuple[ImpactEdge, ...]
    file_impact_edges: Tuple[FileImpactEdge, ...]
    summary: ImpactSummary

    def edge_for_file(self, path: str) -> Optional[FileImpactEdge]:
        """First file edge that pulled *path* into the impact set."""
        for edge in self.file_impact_edges:
            if edge.target == path:
                return edge
        return None

    def filter_by_confidence(self, min_confidence: float) -> "ImpactReport":
        """Copy of the report without edges below *min_confidence*.

        An affected file survives unless the edge that brought it in is
        below the threshold; changed files have no such edge and always stay.
        """
        if min_confidence <= 0:
            return self

        file_edges = tuple(e for e in self.file_impact_edges if e.confidence >= min_confidence)
        files = []
        for path in self.affected_files:
            edge = self.edge_for_file(path)
            if edge is None or edge.confidence >= min_confidence:
                files.append(path)
        impact_edges = tuple(e for e in self.impact_edges if e.confidence >= min_confidence)

        return replace(
            self,
            affected_files=tuple(files),
            file_impact_edges=file_edges,
            impact_edges=impact_edges,
            summary=replace(self.summary, files_affected=len(files)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "changedFiles": [c.to_dict() for c in self.changed_files],
            "affectedComponents": list(self.affected_components),
            "affectedFiles": list(self.affected_files),
            "impactEdges": [asdict(e) for e in self.impact_edges],
            "fileImpactEdges": [asdict(e) for e in self.file_impact_edges],
            "summary": {
                "filesChanged": self.summary.files_changed,
                "componentsAffected": self.summary.components_affected,
                "filesAffected": self.summary.files_affected,
                "confidenceMean": self.summary.confidence_mean,
            },
        }


@dataclass(frozen=True)
class ImpactHop:
    source: str
    target: str
    edge_type: str
    confidence: float
    detection_method: str
    direction: Literal["forward", "reverse"]


@dataclass(frozen=True)
class ImpactEvidence:
    """Shortest explanation path from a changed file to an affected file."""
    target: str
    path: Tuple[str, ...]
    hops: Tuple[ImpactHop, ...]
    score: float
    summary: str

    @property
    def hop_count(self) -> int:
        return len(self.hops)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "path": list(self.path),
            "hops": [asdict(h) for h in self.hops],
            "score": self.score,
            "summary": self.summary,
        }
