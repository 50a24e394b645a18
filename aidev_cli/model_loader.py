"""Load the per-project model (components, declared and discovered edges).

Layout under ``<project>/.aidev/``::

    config.yaml
    model/components/<name>.yaml       (files starting with "_" are skipped)
    model/graph/declared_edges.yaml    (edges: [...])
    model/graph/discovered_edges.yaml  (edges: [...], written by `aidev sync`)
    model/contracts/<component>.yaml
    docs/architecture.md
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from .config import PROJECT_DIR_NAME
from .errors import ConfigError
from .models import Component, Edge

logger = logging.getLogger(__name__)

DECLARED_EDGES_FILE = "declared_edges.yaml"
DISCOVERED_EDGES_FILE = "discovered_edges.yaml"

_COMPONENT_KEYS = ("name", "paths", "depends_on", "description", "contracts")
_EDGE_KEYS = ("source", "target", "type", "confidence", "detection_method", "evidence")


# ===================================================================
# Project configuration (config.yaml)
# ===================================================================

class ScanConfig(BaseModel):
    exclude: List[str] = Field(default_factory=lambda: ["node_modules/", "dist/", "vendor/"])
    max_files: int = 10000


class ProvidersConfig(BaseModel):
    default: str = "claude"
    token_budgets: Dict[str, int] = Field(
        default_factory=lambda: {"claude": 100000, "openai": 100000}
    )


class ProjectConfig(BaseModel):
    version: str = "1.0.0"
    scan: ScanConfig = Field(default_factory=ScanConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)

    def budget_for(self, provider: str) -> Optional[int]:
        return self.providers.token_budgets.get(provider)


# ===================================================================
# Project model
# ===================================================================

@dataclass(frozen=True)
class ProjectModel:
    """Everything loaded for one command invocation.

    Declared and discovered edges stay in separate lists; they are only
    reconciled by the impact analyzer.
    """
    config: ProjectConfig = field(default_factory=ProjectConfig)
    components: List[Component] = field(default_factory=list)
    declared_edges: List[Edge] = field(default_factory=list)
    discovered_edges: List[Edge] = field(default_factory=list)
    dependents_by_component: Dict[str, List[str]] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        components: Iterable[Component] = (),
        declared_edges: Iterable[Edge] = (),
        discovered_edges: Iterable[Edge] = (),
        config: Optional[ProjectConfig] = None,
    ) -> "ProjectModel":
        """Assemble a model and precompute the reverse dependency map."""
        components = list(components)
        return cls(
            config=config or ProjectConfig(),
            components=components,
            declared_edges=list(declared_edges),
            discovered_edges=list(discovered_edges),
            dependents_by_component=build_dependents_map(components),
        )


def build_dependents_map(components: Iterable[Component]) -> Dict[str, List[str]]:
    """Reverse lookup: component name -> names of components depending on it.

    Every component gets a key (possibly with an empty list).  A
    ``depends_on`` entry naming an unknown component still gets its own key.
    """
    components = list(components)
    dependents: Dict[str, List[str]] = {c.name: [] for c in components}
    for component in components:
        for dep in component.depends_on:
            dependents.setdefault(dep, []).append(component.name)
    return dependents


# ===================================================================
# Loading
# ===================================================================

def project_dir(project_root: Path) -> Path:
    return project_root / PROJECT_DIR_NAME


def load_project_model(project_root: Path) -> ProjectModel:
    """Load the model for *project_root*; empty when ``.aidev/`` is absent."""
    aidev_dir = project_dir(project_root)
    if not aidev_dir.exists():
        logger.debug("No %s directory under %s; using empty model", PROJECT_DIR_NAME, project_root)
        return ProjectModel.build()

    config = load_config(aidev_dir)
    components = load_components(aidev_dir)
    declared = load_edges(aidev_dir, DECLARED_EDGES_FILE)
    discovered = load_edges(aidev_dir, DISCOVERED_EDGES_FILE)

    logger.info(
        "Loaded model: %d components, %d declared edges, %d discovered edges",
        len(components), len(declared), len(discovered),
    )
    return ProjectModel.build(components, declared, discovered, config=config)


def _read_yaml(path: Path) -> Any:
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read {path}: {exc}") from exc


def load_config(aidev_dir: Path) -> ProjectConfig:
    config_path = aidev_dir / "config.yaml"
    if not config_path.exists():
        return ProjectConfig()
    data = _read_yaml(config_path) or {}
    try:
        return ProjectConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in {config_path}: {exc}") from exc


def _pick(data: Dict[str, Any], keys: Iterable[str]) -> Dict[str, Any]:
    return {k: data[k] for k in keys if k in data and data[k] is not None}


def load_components(aidev_dir: Path) -> List[Component]:
    components_dir = aidev_dir / "model" / "components"
    if not components_dir.exists():
        return []

    components: List[Component] = []
    for path in sorted(components_dir.glob("*.yaml")):
        if path.name.startswith("_"):
            continue
        data = _read_yaml(path)
        if not isinstance(data, dict):
            raise ConfigError(f"Component file {path} must contain a mapping")
        try:
            components.append(Component(**_pick(data, _COMPONENT_KEYS)))
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid component in {path}: {exc}") from exc
    return components


def load_edges(aidev_dir: Path, filename: str) -> List[Edge]:
    edges_path = aidev_dir / "model" / "graph" / filename
    if not edges_path.exists():
        return []

    data = _read_yaml(edges_path) or {}
    raw_edges = (data.get("edges") or []) if isinstance(data, dict) else []
    edges: List[Edge] = []
    for index, raw in enumerate(raw_edges):
        if not isinstance(raw, dict):
            raise ConfigError(f"Edge #{index} in {edges_path} must be a mapping")
        try:
            edges.append(Edge(**_pick(raw, _EDGE_KEYS)))
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid edge #{index} in {edges_path}: {exc}") from exc
    return edges


# ===================================================================
# Writing
# ===================================================================

def save_discovered_edges(project_root: Path, edges: Iterable[Edge]) -> Path:
    """Overwrite ``discovered_edges.yaml`` with *edges* and return its path."""
    graph_dir = project_dir(project_root) / "model" / "graph"
    graph_dir.mkdir(parents=True, exist_ok=True)
    out = graph_dir / DISCOVERED_EDGES_FILE
    payload = {"edges": [e.to_dict() for e in edges]}
    out.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
    return out


_DEFAULT_CONFIG_YAML = """\
version: "1.0.0"
scan:
  exclude:
    - node_modules/
    - dist/
    - vendor/
  max_files: 10000
providers:
  default: claude
  token_budgets:
    claude: 100000
    openai: 100000
"""

_EXAMPLE_COMPONENT_YAML = """\
# Example component definition (files starting with "_" are ignored).
name: example
description: Describe what this component owns
paths:
  - "src/example/**"
depends_on: []
contracts: []
"""


def init_project(project_root: Path) -> List[Path]:
    """Create the ``.aidev/`` skeleton, leaving existing files untouched.

    Returns:
        Paths that were created by this call.
    """
    aidev_dir = project_dir(project_root)
    created: List[Path] = []

    for directory in (
        aidev_dir,
        aidev_dir / "model" / "components",
        aidev_dir / "model" / "graph",
        aidev_dir / "model" / "contracts",
        aidev_dir / "docs",
    ):
        if not directory.exists():
            directory.mkdir(parents=True)
            created.append(directory)

    files = {
        aidev_dir / "config.yaml": _DEFAULT_CONFIG_YAML,
        aidev_dir / "model" / "components" / "_example.yaml": _EXAMPLE_COMPONENT_YAML,
        aidev_dir / "model" / "graph" / DECLARED_EDGES_FILE: "edges: []\n",
    }
    for path, content in files.items():
        if not path.exists():
            path.write_text(content, encoding="utf-8")
            created.append(path)

    return created
