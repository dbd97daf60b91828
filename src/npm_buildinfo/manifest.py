"""
Partitioning of an enriched dependency graph into build-info records.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .build_info import BuildConfiguration, BuildInfoStore
from .dependency import Checksum, DependencyGraph, DependencyNode


@dataclass(frozen=True)
class BuildDependency:
    """One dependency as it appears in build-info."""

    id: str
    type: Optional[str] = None
    scopes: Tuple[str, ...] = ()
    checksum: Optional[Checksum] = None
    requested_by: Tuple[Tuple[str, ...], ...] = ()

    @classmethod
    def from_node(cls, node: DependencyNode) -> "BuildDependency":
        return cls(
            id=node.id,
            type=node.file_type,
            scopes=tuple(node.scopes),
            checksum=node.checksum,
            requested_by=tuple(tuple(path) for path in node.paths_to_root),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Build-info JSON representation; empty fields are omitted."""
        data: Dict[str, Any] = {"id": self.id}
        if self.type:
            data["type"] = self.type
        if self.scopes:
            data["scopes"] = list(self.scopes)
        if self.checksum is not None:
            for algorithm in ("sha1", "md5", "sha256"):
                value = getattr(self.checksum, algorithm)
                if value:
                    data[algorithm] = value
        if self.requested_by:
            data["requestedBy"] = [list(path) for path in self.requested_by]
        return data


@dataclass(frozen=True)
class ResolvedManifest:
    """Dependencies with a checksum, and those the registry does not know."""

    resolved: Tuple[BuildDependency, ...] = field(default_factory=tuple)
    missing: Tuple[BuildDependency, ...] = field(default_factory=tuple)

    @property
    def total(self) -> int:
        return len(self.resolved) + len(self.missing)


def assemble_manifest(graph: DependencyGraph) -> ResolvedManifest:
    """Split graph nodes into resolved and missing, keeping graph order."""
    resolved: List[BuildDependency] = []
    missing: List[BuildDependency] = []
    for node in graph.nodes():
        record = BuildDependency.from_node(node)
        if node.checksum is not None:
            resolved.append(record)
        else:
            missing.append(record)
    return ResolvedManifest(resolved=tuple(resolved), missing=tuple(missing))


class ManifestAssembler:
    """Assembles the manifest and hands it to the store and the reporter."""

    def __init__(self, store: BuildInfoStore, reporter):
        self.store = store
        self.reporter = reporter

    def assemble_and_save(
        self, graph: DependencyGraph, build: BuildConfiguration
    ) -> ResolvedManifest:
        manifest = assemble_manifest(graph)
        self.store.save_dependencies(build, [dep.to_dict() for dep in manifest.resolved])
        self.reporter.print_missing_dependencies(manifest.missing)
        return manifest
