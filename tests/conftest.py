"""Pytest configuration and fixtures for aidev tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Generator, Iterable, List

import pytest

from aidev_cli.model_loader import ProjectModel
from aidev_cli.models import ChangedFile, Component, Edge


@pytest.fixture(autouse=True)
def _isolated_user_config(tmp_path: Path, monkeypatch):
    """Point the user-level config at a throwaway file for every test."""
    monkeypatch.setattr("aidev_cli.config.BASE_DIR", tmp_path / "aidev-home")
    monkeypatch.setattr("aidev_cli.config.USER_CONFIG_FILE", tmp_path / "aidev-home" / "config.toml")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def sample_project_path() -> Path:
    """Path to the read-only sample project."""
    return Path(__file__).parent / "fixtures" / "sample_project"


@pytest.fixture
def sample_project(sample_project_path: Path, temp_dir: Path) -> Path:
    """Writable copy of the sample project."""
    dest = temp_dir / "sample_project"
    shutil.copytree(sample_project_path, dest)
    return dest


def make_model(
    components: Iterable[Component] = (),
    declared: Iterable[Edge] = (),
    discovered: Iterable[Edge] = (),
) -> ProjectModel:
    return ProjectModel.build(components, declared, discovered)


def component(name: str, paths: List[str], depends_on: List[str] = None) -> Component:
    return Component(name=name, paths=paths, depends_on=list(depends_on or []))


def edge(source: str, target: str, confidence: float = 0.95,
         type: str = "import", method: str = "ast") -> Edge:
    return Edge(source=source, target=target, type=type,
                confidence=confidence, detection_method=method)


def changed(*paths: str) -> List[ChangedFile]:
    return [ChangedFile(path=p) for p in paths]


@pytest.fixture
def synced_project(sample_project: Path) -> Path:
    """Sample project with discovered edges already written."""
    from aidev_cli.model_loader import load_project_model, save_discovered_edges
    from aidev_cli.scanners import scan_project

    scan = scan_project(sample_project, load_project_model(sample_project).config)
    save_discovered_edges(sample_project, scan.edges)
    return sample_project


@pytest.fixture
def offline_estimator(monkeypatch):
    """Use the generic estimator for every provider (tiktoken fetches its encodings)."""
    from aidev_cli.tokens import GenericTokenEstimator

    monkeypatch.setattr("aidev_cli.generator.create_estimator", lambda provider: GenericTokenEstimator())
