"""Tests for core data models."""

import pytest

from aidev_cli.models import (
    ChangedFile,
    Component,
    Edge,
    FileImpactEdge,
    ImpactEdge,
    ImpactReport,
    ImpactSummary,
)


class TestEdge:
    """Tests for Edge validation."""

    def test_valid_edge(self):
        e = Edge(source="a.ts", target="b.ts", type="import", confidence=0.95, detection_method="ast")
        assert e.detection_method == "ast"
        assert e.to_dict() == {
            "source": "a.ts",
            "target": "b.ts",
            "type": "import",
            "confidence": 0.95,
            "detection_method": "ast",
        }

    def test_evidence_kept_in_dict(self):
        e = Edge("a", "b", "call", 1.0, evidence="a() calls b()")
        assert e.to_dict()["evidence"] == "a() calls b()"

    @pytest.mark.parametrize("confidence", [-0.1, 1.01, float("nan"), True])
    def test_rejects_bad_confidence(self, confidence):
        with pytest.raises(ValueError):
            Edge("a", "b", "import", confidence)

    @pytest.mark.parametrize("confidence", ["0.9", None, [0.9]])
    def test_rejects_non_numeric_confidence(self, confidence):
        with pytest.raises(ValueError, match="number"):
            Edge("a", "b", "import", confidence)

    def test_integer_confidence_stored_as_float(self):
        assert isinstance(Edge("a", "b", "import", 1).confidence, float)

    def test_rejects_non_string_endpoints(self):
        with pytest.raises(ValueError, match="source"):
            Edge(["a"], "b", "import", 0.5)

    def test_rejects_unknown_type(self):
        with pytest.raises(ValueError, match="edge type"):
            Edge("a", "b", "inherits", 0.5)

    def test_rejects_unknown_method(self):
        with pytest.raises(ValueError, match="detection method"):
            Edge("a", "b", "import", 0.5, detection_method="guess")


class TestComponent:
    def test_defaults(self):
        c = Component(name="api", paths=["src/api/**"])
        assert c.depends_on == []
        assert c.contracts == []

    def test_self_dependency_allowed(self):
        c = Component(name="loop", paths=["x/**"], depends_on=["loop"])
        assert c.depends_on == ["loop"]

    def test_requires_name_and_paths(self):
        with pytest.raises(ValueError):
            Component(name="", paths=["x"])
        with pytest.raises(ValueError):
            Component(name="x", paths=[])

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"paths": "src/core/**"},
            {"paths": ["src/core/**"], "depends_on": "db"},
            {"paths": ["src/core/**"], "contracts": ("api",)},
            {"paths": ["src/core/**", None]},
        ],
    )
    def test_rejects_non_list_fields(self, kwargs):
        with pytest.raises(ValueError, match="list of strings"):
            Component(name="core", **kwargs)


class TestChangedFile:
    def test_old_path_only_for_renames(self):
        with pytest.raises(ValueError):
            ChangedFile(path="b.ts", change_type="modified", old_path="a.ts")
        renamed = ChangedFile(path="b.ts", change_type="renamed", old_path="a.ts")
        assert renamed.to_dict() == {"path": "b.ts", "changeType": "renamed", "oldPath": "a.ts"}

    def test_rejects_unknown_change_type(self):
        with pytest.raises(ValueError):
            ChangedFile(path="a", change_type="copied")


def _report() -> ImpactReport:
    return ImpactReport(
        changed_files=(ChangedFile("a.ts"),),
        affected_components=("core",),
        affected_files=("a.ts", "b.ts", "c.ts"),
        impact_edges=(ImpactEdge("a.ts", "core", "direct", 1.0, 0, "match"),),
        file_impact_edges=(
            FileImpactEdge("a.ts", "b.ts", "import", 0.95, "ast", 1),
            FileImpactEdge("b.ts", "c.ts", "import", 0.4, "regex", 2),
        ),
        summary=ImpactSummary(1, 1, 3, 1.0),
    )


class TestImpactReport:
    def test_edge_for_file(self):
        report = _report()
        assert report.edge_for_file("c.ts").source == "b.ts"
        assert report.edge_for_file("a.ts") is None

    def test_filter_by_confidence(self):
        filtered = _report().filter_by_confidence(0.5)

        assert filtered.affected_files == ("a.ts", "b.ts")
        assert [e.target for e in filtered.file_impact_edges] == ["b.ts"]
        assert filtered.summary.files_affected == 2
        assert filtered.summary.files_changed == 1

    def test_filter_zero_is_identity(self):
        report = _report()
        assert report.filter_by_confidence(0) is report

    def test_is_immutable(self):
        report = _report()
        with pytest.raises(Exception):
            report.affected_files = ()

    def test_to_dict_uses_camel_case(self):
        payload = _report().to_dict()
        assert payload["affectedFiles"] == ["a.ts", "b.ts", "c.ts"]
        assert payload["summary"]["filesAffected"] == 3
        assert payload["fileImpactEdges"][0]["detection_method"] == "ast"
