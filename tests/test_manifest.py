"""
Tests for manifest assembly, build-info persistence and package.json reading.
"""

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from npm_buildinfo.build_info import BuildConfiguration, BuildInfoStore, build_dir_name
from npm_buildinfo.dependency import Checksum, DependencyGraph
from npm_buildinfo.error_handling import PrerequisiteError
from npm_buildinfo.manifest import BuildDependency, ManifestAssembler, assemble_manifest
from npm_buildinfo.package_info import PackageInfo, read_package_info

ROOT = "app:1.0.0"


@pytest.fixture
def enriched_graph():
    graph = DependencyGraph()
    graph.upsert("a", "1.0.0", "prod", ["a:1.0.0", ROOT])
    graph.upsert("b", "2.0.0", "dev", ["b:2.0.0", ROOT])
    graph.upsert("c", "3.0.0", "prod", ["c:3.0.0", "a:1.0.0", ROOT])
    graph.upsert("c", "3.0.0", "dev", ["c:3.0.0", "b:2.0.0", ROOT])
    graph["a:1.0.0"].checksum = Checksum(sha1="a1", md5="am", sha256="a256")
    graph["a:1.0.0"].file_type = "tgz"
    graph["c:3.0.0"].checksum = Checksum(sha1="c1")
    graph["c:3.0.0"].file_type = "tgz"
    return graph


class TestAssembleManifest:
    """Test partitioning into resolved and missing."""

    def test_partition_is_complete_and_disjoint(self, enriched_graph):
        manifest = assemble_manifest(enriched_graph)

        resolved = {dep.id for dep in manifest.resolved}
        missing = {dep.id for dep in manifest.missing}
        assert resolved | missing == set(enriched_graph.keys())
        assert resolved & missing == set()
        assert manifest.total == len(enriched_graph)

    def test_graph_order_kept(self, enriched_graph):
        manifest = assemble_manifest(enriched_graph)

        assert [dep.id for dep in manifest.resolved] == ["a:1.0.0", "c:3.0.0"]
        assert [dep.id for dep in manifest.missing] == ["b:2.0.0"]

    def test_record_fields(self, enriched_graph):
        manifest = assemble_manifest(enriched_graph)
        c_dep = manifest.resolved[1]

        assert c_dep.scopes == ("prod", "dev")
        assert c_dep.requested_by == (
            ("c:3.0.0", "a:1.0.0", ROOT),
            ("c:3.0.0", "b:2.0.0", ROOT),
        )
        assert c_dep.type == "tgz"

    def test_empty_graph(self):
        manifest = assemble_manifest(DependencyGraph())
        assert manifest.resolved == ()
        assert manifest.missing == ()

    def test_to_dict(self):
        dep = BuildDependency(
            id="a:1.0.0",
            type="tgz",
            scopes=("prod",),
            checksum=Checksum(sha1="s1", md5="m5"),
            requested_by=(("a:1.0.0", ROOT),),
        )

        assert dep.to_dict() == {
            "id": "a:1.0.0",
            "type": "tgz",
            "scopes": ["prod"],
            "sha1": "s1",
            "md5": "m5",
            "requestedBy": [["a:1.0.0", ROOT]],
        }

    def test_assembler_delegates(self, enriched_graph, tmp_path):
        store = BuildInfoStore(tmp_path)
        reporter = MagicMock()
        build = BuildConfiguration("my-build", "42", ROOT)

        manifest = ManifestAssembler(store, reporter).assemble_and_save(enriched_graph, build)

        reporter.print_missing_dependencies.assert_called_once_with(manifest.missing)
        partial_files = list(store.partials_dir("my-build", "42").glob("*.json"))
        assert len(partial_files) == 1
        partial = json.loads(partial_files[0].read_text(encoding="utf-8"))
        assert [dep["id"] for dep in partial["dependencies"]] == ["a:1.0.0", "c:3.0.0"]


class TestBuildInfoStore:
    def test_partial_contents(self, tmp_path):
        store = BuildInfoStore(tmp_path)
        timestamp = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

        path = store.save_dependencies(
            BuildConfiguration("my build", "7", "app:1.0.0"),
            [{"id": "a:1.0.0"}],
            timestamp=timestamp,
        )

        assert path.parent == tmp_path / "my_build_7" / "partials"
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["buildName"] == "my build"
        assert data["buildNumber"] == "7"
        assert data["moduleId"] == "app:1.0.0"
        assert data["timestamp"] == int(timestamp.timestamp() * 1000)
        assert data["dependencies"] == [{"id": "a:1.0.0"}]

    def test_build_dir_name_sanitized(self):
        assert build_dir_name("a/b", "1") == "a_b_1"

    def test_is_collecting(self):
        assert BuildConfiguration("b", "1").is_collecting
        assert not BuildConfiguration("b", "").is_collecting
        assert not BuildConfiguration().is_collecting


class TestPackageInfo:
    def test_module_id(self):
        assert PackageInfo("app", "1.0.0").build_info_module_id() == "app:1.0.0"

    def test_scoped_module_id(self):
        info = PackageInfo.from_package_name("@acme/app", "2.1.0")

        assert info.scope == "@acme"
        assert info.full_name == "@acme/app"
        assert info.build_info_module_id() == "acme:app:2.1.0"

    def test_read_package_json(self, project_dir):
        info = read_package_info(project_dir)
        assert info == PackageInfo("app", "1.0.0")

    def test_missing_package_json(self, tmp_path):
        with pytest.raises(PrerequisiteError):
            read_package_info(tmp_path)

    def test_invalid_package_json(self, tmp_path):
        (tmp_path / "package.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(PrerequisiteError):
            read_package_info(tmp_path)

    def test_package_json_without_name(self, tmp_path):
        (tmp_path / "package.json").write_text('{"version": "1.0.0"}', encoding="utf-8")
        with pytest.raises(PrerequisiteError):
            read_package_info(tmp_path)
