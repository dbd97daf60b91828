"""
Tests for flattening 'npm ls --json' output into a dependency graph.
"""

import json
from collections import Counter

import pytest

from npm_buildinfo.dependency import DependencyGraph
from npm_buildinfo.error_handling import TreeParseError
from npm_buildinfo.tree_parser import (
    FIELD_ABSENT,
    get_field,
    parse_dependency_tree,
    parse_npm_ls_output,
)

ROOT = "app@1.0.0"


def graph_snapshot(graph: DependencyGraph):
    """Graph contents with scopes as sets and paths as multisets."""
    return {
        node.id: (
            frozenset(node.scopes),
            Counter(tuple(path) for path in node.paths_to_root),
        )
        for node in graph.nodes()
    }


class TestParseDependencyTree:
    """Test the depth-first walk over 'dependencies'."""

    def test_nested_tree_paths(self):
        """A two-level tree records the node itself at the head of each path."""
        tree = {"dependencies": {"a": {"version": "1.0.0", "dependencies": {"b": {"version": "2.0.0"}}}}}

        graph = parse_dependency_tree(tree, "prod", ROOT)

        assert graph.keys() == ["a:1.0.0", "b:2.0.0"]
        assert graph["a:1.0.0"].scopes == ["prod"]
        assert graph["a:1.0.0"].paths_to_root == [["a:1.0.0", ROOT]]
        assert graph["b:2.0.0"].scopes == ["prod"]
        assert graph["b:2.0.0"].paths_to_root == [["b:2.0.0", "a:1.0.0", ROOT]]

    def test_parsing_is_deterministic(self):
        """Parsing identical input twice yields identical graphs."""
        tree = {
            "dependencies": {
                "a": {"version": "1.0.0", "dependencies": {"c": {"version": "3.0.0"}}},
                "b": {"version": "2.0.0", "dependencies": {"c": {"version": "3.0.0"}}},
            }
        }

        first = parse_dependency_tree(tree, "dev", ROOT)
        second = parse_dependency_tree(tree, "dev", ROOT)

        assert graph_snapshot(first) == graph_snapshot(second)

    def test_scope_merge_in_either_order(self):
        """A package in both listings ends with dev and prod exactly once each."""
        tree = {"dependencies": {"shared": {"version": "1.2.3"}}}

        for order in (("dev", "prod"), ("prod", "dev")):
            graph = DependencyGraph()
            for scope in order:
                parse_dependency_tree(tree, scope, ROOT, graph)
            parse_dependency_tree(tree, order[0], ROOT, graph)

            scopes = graph["shared:1.2.3"].scopes
            assert sorted(scopes) == ["dev", "prod"]
            assert len(scopes) == 2

    def test_versionless_node_is_excluded(self):
        """Entries without a version never enter the graph, but their children do."""
        tree = {
            "dependencies": {
                "peer": {"dependencies": {"child": {"version": "1.0.0"}}},
                "a": {"version": "1.0.0"},
            }
        }

        graph = parse_dependency_tree(tree, "prod", ROOT)

        assert all(not key.startswith("peer:") for key in graph)
        assert "child:1.0.0" in graph
        assert graph["child:1.0.0"].paths_to_root == [["child:1.0.0", ROOT]]

    def test_null_version_is_excluded(self):
        tree = {
            "dependencies": {
                "peer": {"version": None, "dependencies": {"child": {"version": "1.0.0"}}},
            }
        }

        graph = parse_dependency_tree(tree, "prod", ROOT)

        assert graph.keys() == ["child:1.0.0"]
        assert graph["child:1.0.0"].paths_to_root == [["child:1.0.0", ROOT]]

    def test_paths_accumulate_per_ancestor_chain(self):
        """A node reached through N chains has N path entries."""
        tree = {
            "dependencies": {
                "a": {"version": "1.0.0", "dependencies": {"d": {"version": "4.0.0"}}},
                "b": {"version": "1.0.0", "dependencies": {"d": {"version": "4.0.0"}}},
                "c": {
                    "version": "1.0.0",
                    "dependencies": {
                        "e": {"version": "1.0.0", "dependencies": {"d": {"version": "4.0.0"}}}
                    },
                },
            }
        }

        graph = parse_dependency_tree(tree, "prod", ROOT)

        paths = graph["d:4.0.0"].paths_to_root
        assert len(paths) == 3
        assert ["d:4.0.0", "e:1.0.0", "c:1.0.0", ROOT] in paths

    def test_repeated_listing_appends_paths(self):
        """Paths are appended on every visit, also across scopes."""
        tree = {"dependencies": {"a": {"version": "1.0.0"}}}
        graph = DependencyGraph()

        parse_dependency_tree(tree, "dev", ROOT, graph)
        parse_dependency_tree(tree, "prod", ROOT, graph)

        assert len(graph["a:1.0.0"].paths_to_root) == 2

    def test_malformed_dependencies_raises(self):
        """A present but non-object 'dependencies' is a typed parse error."""
        tree = {"dependencies": {"a": {"version": "1.0.0", "dependencies": ["b"]}}}

        with pytest.raises(TreeParseError):
            parse_dependency_tree(tree, "prod", ROOT)

    def test_missing_dependencies_is_empty(self):
        """A tree without 'dependencies' gives an empty graph."""
        graph = parse_dependency_tree({"name": "app"}, "prod", ROOT)
        assert len(graph) == 0

    def test_invalid_scope_rejected(self):
        with pytest.raises(ValueError):
            parse_dependency_tree({}, "optional", ROOT)

    def test_get_field_absent(self):
        """Missing fields are reported with the FIELD_ABSENT sentinel."""
        assert get_field({}, "version") is FIELD_ABSENT
        assert get_field({"version": ""}, "version") == ""


class TestParseNpmLsOutput:
    """Test parsing raw 'npm ls' stdout."""

    def test_raw_json(self):
        raw = json.dumps({"name": "app", "dependencies": {"a": {"version": "1.0.0"}}})

        graph = parse_npm_ls_output(raw, "prod", ROOT)

        assert graph.keys() == ["a:1.0.0"]

    @pytest.mark.parametrize("raw", ["", "   \n", "npm ERR! not json", "[1, 2]"])
    def test_unusable_output_yields_no_nodes(self, raw):
        """Empty or invalid output is a warning, never an error."""
        graph = parse_npm_ls_output(raw, "dev", ROOT)
        assert len(graph) == 0

    def test_merges_into_existing_graph(self):
        graph = DependencyGraph()
        graph.upsert("x", "1.0.0", "dev", ["x:1.0.0", ROOT])

        parse_npm_ls_output("not json", "prod", ROOT, graph)

        assert graph.keys() == ["x:1.0.0"]
