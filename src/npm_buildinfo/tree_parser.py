"""
Dependency tree parsing for 'npm ls --json' output.

Flattens the nested listing into a DependencyGraph keyed by name:version,
recording every scope and every ancestor chain through which each package
was reached.
"""

import json
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .dependency import DependencyGraph, Scope, dependency_id
from .error_handling import TreeParseError, log_tree_listing_warning
from .structured_logging import get_tree_logger


class _Absent(Enum):
    FIELD_ABSENT = "field-absent"


# Returned by lookups when the field is missing entirely
FIELD_ABSENT = _Absent.FIELD_ABSENT


def get_field(entry: Dict[str, Any], field_name: str) -> Union[Any, _Absent]:
    """Return entry[field_name] or FIELD_ABSENT."""
    return entry.get(field_name, FIELD_ABSENT)


def _transitive_dependencies(name: str, entry: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    transitive = get_field(entry, "dependencies")
    if transitive is FIELD_ABSENT or transitive is None:
        return None
    if not isinstance(transitive, dict):
        raise TreeParseError(
            f"'dependencies' of {name} must be an object, got {type(transitive).__name__}"
        )
    return transitive


def parse_dependencies(
    dependencies: Dict[str, Any],
    scope: str,
    path_to_root: List[str],
    graph: DependencyGraph,
) -> None:
    """
    Walk a 'dependencies' object depth-first and merge it into the graph.

    Args:
        dependencies: Mapping of package name to its 'npm ls' entry
        scope: 'dev' or 'prod'
        path_to_root: Ancestor chain of the entries being expanded, nearest first.
            Each recorded path starts with the node's own identity.
        graph: Graph to merge into
    """
    logger = get_tree_logger()

    for name, entry in dependencies.items():
        if not isinstance(entry, dict):
            raise TreeParseError(
                f"Entry for {name} must be an object, got {type(entry).__name__}"
            )

        version = get_field(entry, "version")
        if version is FIELD_ABSENT or version is None:
            # Usually an unmet peer dependency, which npm never installs
            logger.debug(
                "dependency_skipped_no_version",
                package_name=name,
                reason="npm ls did not return a version; likely an uninstalled peer dependency",
            )
            child_path = path_to_root
        else:
            child_path = [dependency_id(name, str(version))] + path_to_root
            graph.upsert(name, str(version), scope, child_path)

        transitive = _transitive_dependencies(name, entry)
        if transitive:
            parse_dependencies(transitive, scope, child_path, graph)


def parse_dependency_tree(
    tree: Dict[str, Any],
    scope: str,
    root_module_id: str,
    graph: Optional[DependencyGraph] = None,
) -> DependencyGraph:
    """
    Merge one 'npm ls --json' listing into a dependency graph.

    Args:
        tree: Parsed 'npm ls --json' document
        scope: Scope of this listing, 'dev' or 'prod'
        root_module_id: Identity of the build module, seeds every path
        graph: Graph to merge into; a new one is created when omitted

    Returns:
        DependencyGraph: The merged graph
    """
    scope = Scope(scope).value
    if graph is None:
        graph = DependencyGraph()

    dependencies = _transitive_dependencies(root_module_id, tree)
    if dependencies:
        parse_dependencies(dependencies, scope, [root_module_id], graph)

    get_tree_logger().debug(
        "dependency_tree_parsed", scope=scope, total_dependencies=len(graph)
    )
    return graph


def parse_npm_ls_output(
    raw_output: str,
    scope: str,
    root_module_id: str,
    graph: Optional[DependencyGraph] = None,
) -> DependencyGraph:
    """
    Parse raw 'npm ls' stdout; unreadable output is a warning, not an error.

    Returns:
        DependencyGraph: The merged graph (unchanged if nothing was parsed)
    """
    if graph is None:
        graph = DependencyGraph()

    if not raw_output or not raw_output.strip():
        return graph

    try:
        tree = json.loads(raw_output)
    except json.JSONDecodeError as e:
        log_tree_listing_warning(
            "Could not parse 'npm ls' output as JSON", scope, exception=e
        )
        return graph

    if not isinstance(tree, dict):
        log_tree_listing_warning(
            f"'npm ls' output must be a JSON object, got {type(tree).__name__}", scope
        )
        return graph

    return parse_dependency_tree(tree, scope, root_module_id, graph)
