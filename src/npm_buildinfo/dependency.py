# In src/npm_buildinfo/dependency.py
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional


class Scope(str, Enum):
    """Whether a dependency is needed at development or production time."""

    DEV = "dev"
    PROD = "prod"


@dataclass(frozen=True)
class Checksum:
    """Content digests recorded for a dependency artifact."""

    sha1: Optional[str] = None
    md5: Optional[str] = None
    sha256: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.sha1 or self.md5 or self.sha256)


@dataclass(frozen=True)
class RecordedDependency:
    """A dependency as recorded by an earlier build of the same project."""

    id: str
    checksum: Optional[Checksum] = None
    file_type: Optional[str] = None


def dependency_id(name: str, version: str) -> str:
    """Identity of a dependency node: 'name:version'."""
    return f"{name}:{version}"


@dataclass
class DependencyNode:
    """
    A resolved npm package in the dependency graph.

    scopes and paths_to_root only ever grow while the tree is parsed; each
    path is an ancestor chain ordered nearest-first, ending at the module.
    """

    name: str
    version: str
    scopes: List[str] = field(default_factory=list)
    paths_to_root: List[List[str]] = field(default_factory=list)
    file_type: Optional[str] = None
    checksum: Optional[Checksum] = None

    @property
    def id(self) -> str:
        return dependency_id(self.name, self.version)

    def add_scope(self, scope: str) -> None:
        if scope not in self.scopes:
            self.scopes.append(scope)

    def add_path(self, path_to_root: List[str]) -> None:
        self.paths_to_root.append(list(path_to_root))


class DependencyGraph:
    """
    Mapping from dependency identity to DependencyNode.

    Nodes are addressed by key only. The parser fills the graph from a single
    thread; enrichment tasks then each own exactly one key, so the container
    itself is never locked.
    """

    def __init__(self):
        self._nodes: Dict[str, DependencyNode] = {}

    def upsert(
        self, name: str, version: str, scope: str, path_to_root: List[str]
    ) -> DependencyNode:
        """Create the node or merge scope and path into the existing one."""
        key = dependency_id(name, version)
        node = self._nodes.get(key)
        if node is None:
            node = DependencyNode(name=name, version=version, scopes=[scope])
            self._nodes[key] = node
        else:
            node.add_scope(scope)
        node.add_path(path_to_root)
        return node

    def get(self, key: str) -> Optional[DependencyNode]:
        return self._nodes.get(key)

    def __getitem__(self, key: str) -> DependencyNode:
        return self._nodes[key]

    def __contains__(self, key: object) -> bool:
        return key in self._nodes

    def __iter__(self) -> Iterator[str]:
        return iter(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)

    def keys(self) -> List[str]:
        return list(self._nodes)

    def nodes(self) -> List[DependencyNode]:
        return list(self._nodes.values())
