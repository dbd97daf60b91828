"""
Concurrent checksum enrichment for a parsed dependency graph.

Each node takes its checksum from the previous build when that build recorded
it, and from a registry lookup otherwise. A fixed pool of worker coroutines
drains a queue of node identities; per-node failures are collected and
reported together once every node has been attempted.
"""

import asyncio
import threading
import time
from dataclasses import dataclass
from typing import List, Mapping, Optional

from .dependency import DependencyGraph, RecordedDependency
from .error_handling import EnrichmentError, ErrorCategory, get_error_handler
from .registry_clients import ChecksumLookupResult
from .structured_logging import get_enrichment_logger, log_enrichment_complete


class LookupFailedError(Exception):
    """A registry lookup that failed for a reason other than not-found."""

    def __init__(self, dependency_id: str, reason: str):
        self.dependency_id = dependency_id
        self.reason = reason
        super().__init__(f"{dependency_id}: {reason}")


class ErrorsCollector:
    """
    Thread-safe, bounded collector of per-node failures.

    Keeps the first `max_errors` errors and counts every one; never signals
    the workers to stop.
    """

    def __init__(self, max_errors: int = 100):
        self.max_errors = max_errors
        self._errors: List[BaseException] = []
        self._count = 0
        self._lock = threading.Lock()

    def add(self, error: BaseException) -> None:
        with self._lock:
            self._count += 1
            if len(self._errors) < self.max_errors:
                self._errors.append(error)

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    @property
    def first_error(self) -> Optional[BaseException]:
        with self._lock:
            return self._errors[0] if self._errors else None

    @property
    def errors(self) -> List[BaseException]:
        with self._lock:
            return list(self._errors)

    def is_empty(self) -> bool:
        return self.count == 0


@dataclass
class EnrichmentStats:
    """Counters for one enrichment pass."""

    total: int = 0
    from_previous_build: int = 0
    from_registry: int = 0
    missing: int = 0
    errors: int = 0
    duration_ms: int = 0


class ChecksumEnricher:
    """
    Fills in checksum and file type for every node of a DependencyGraph.

    The registry client only needs a `find_npm_checksum(name, version)`
    coroutine returning a ChecksumLookupResult.
    """

    def __init__(self, registry_client, threads: int = 3, max_errors: int = 100):
        self.registry_client = registry_client
        self.threads = threads
        self.max_errors = max_errors
        self.stats = EnrichmentStats()

    @property
    def worker_count(self) -> int:
        return max(self.threads, 1)

    async def enrich(
        self,
        graph: DependencyGraph,
        previous_build: Optional[Mapping[str, RecordedDependency]] = None,
    ) -> EnrichmentStats:
        """
        Enrich every node of the graph in place.

        Args:
            graph: Parsed dependency graph
            previous_build: Read-only index of the previous build's dependencies

        Returns:
            EnrichmentStats: Counters for this pass

        Raises:
            EnrichmentError: If any lookup failed for a reason other than not-found
        """
        previous_build = previous_build or {}
        collector = ErrorsCollector(self.max_errors)
        self.stats = EnrichmentStats(total=len(graph))
        start_time = time.monotonic()

        queue: "asyncio.Queue[str]" = asyncio.Queue()
        for key in graph.keys():
            queue.put_nowait(key)

        workers = [
            asyncio.create_task(self._worker(queue, graph, previous_build, collector))
            for _ in range(self.worker_count)
        ]
        await queue.join()
        await asyncio.gather(*workers)

        self.stats.errors = collector.count
        self.stats.missing = sum(1 for node in graph.nodes() if node.checksum is None)
        self.stats.duration_ms = int((time.monotonic() - start_time) * 1000)
        log_enrichment_complete(
            total=self.stats.total,
            from_previous_build=self.stats.from_previous_build,
            from_registry=self.stats.from_registry,
            missing=self.stats.missing,
            errors=self.stats.errors,
        )

        if not collector.is_empty():
            error = EnrichmentError(collector.first_error, collector.count)
            get_error_handler().error(
                ErrorCategory.ENRICHMENT,
                str(error),
                "checksum_enricher",
                "enrich",
                details={"error_count": collector.count},
            )
            raise error
        return self.stats

    async def _worker(
        self,
        queue: "asyncio.Queue[str]",
        graph: DependencyGraph,
        previous_build: Mapping[str, RecordedDependency],
        collector: ErrorsCollector,
    ) -> None:
        while True:
            try:
                key = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                await self._enrich_node(key, graph, previous_build)
            except Exception as e:
                collector.add(e)
            finally:
                queue.task_done()

    async def _enrich_node(
        self,
        key: str,
        graph: DependencyGraph,
        previous_build: Mapping[str, RecordedDependency],
    ) -> None:
        node = graph[key]
        recorded = previous_build.get(key)
        if recorded is not None and recorded.checksum is not None:
            node.checksum = recorded.checksum
            node.file_type = recorded.file_type
            self.stats.from_previous_build += 1
            return

        result: ChecksumLookupResult = await self.registry_client.find_npm_checksum(
            node.name, node.version
        )
        if result.error:
            raise LookupFailedError(key, result.error)
        if not result.found:
            get_enrichment_logger().debug("dependency_not_in_registry", dependency_id=key)
            return

        node.checksum = result.checksum
        node.file_type = result.file_type
        self.stats.from_registry += 1

