"""
Extraction Pipeline - drives staged extraction into the GraphStore.

Stages run strictly in order:
1. nodes: request concepts for the syllabus, reconcile, replace the extracted nodes
2. edges: request relationships for the trusted node set, reconcile, replace the extracted edges

External, faculty-defined and confirmed entities survive every run; only
unconfirmed ai_extracted ones are replaced. Each stage is committed only
after its batch is fully validated. The first
failing stage aborts the rest of the run; commits from earlier stages stay in
the graph.

The completion function is an external collaborator:

    async def complete(stage: str, context: dict) -> str

It raises TransientServiceError for retryable conditions. Those, and
per-attempt timeouts, are retried with exponential backoff.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import Settings
from ..errors import CurriculumGraphError, StageFailure, TransientServiceError
from ..models import GraphMetadata, KnowledgeEdge, KnowledgeNode, SourceType
from ..storage.graph import GraphStore
from .ingestion import IngestionMetadata, IngestionReconciler


logger = logging.getLogger(__name__)

CompletionFn = Callable[[str, dict[str, Any]], Awaitable[str]]

NODES_STAGE = "nodes"
EDGES_STAGE = "edges"
GRAPH_STAGE = "graph"


class CancellationToken:
    """Cooperative cancellation checked before each stage and each attempt."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self, stage: str) -> None:
        if self._cancelled:
            raise StageFailure(stage, "cancelled")


class StageStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StageResult:
    stage: str
    status: StageStatus
    metadata: Optional[IngestionMetadata] = None
    error: Optional[CurriculumGraphError] = None
    attempts: int = 0


@dataclass
class PipelineResult:
    stages: list[StageResult] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return all(s.status == StageStatus.COMPLETED for s in self.stages)

    @property
    def failure(self) -> Optional[CurriculumGraphError]:
        for stage in self.stages:
            if stage.error is not None:
                return stage.error
        return None

    def stage(self, name: str) -> Optional[StageResult]:
        for stage in self.stages:
            if stage.stage == name:
                return stage
        return None


def kept_nodes(nodes: Iterable[KnowledgeNode]) -> list[KnowledgeNode]:
    """Nodes an extraction run must not replace: external, faculty-defined or confirmed."""
    return [
        node for node in nodes
        if node.is_external or node.confirmed or node.source != SourceType.AI_EXTRACTED
    ]


def kept_edges(edges: Iterable[KnowledgeEdge]) -> list[KnowledgeEdge]:
    """Edges an extraction run must not replace: faculty-defined or confirmed."""
    return [
        edge for edge in edges
        if edge.confirmed or edge.source_type != SourceType.AI_EXTRACTED
    ]


def _merge(kept: list[Any], extracted: list[Any], kind: str) -> list[Any]:
    """Kept entities first; an extracted entity never overrides a kept id."""
    kept_ids = {item.id for item in kept}
    merged = list(kept)
    for item in extracted:
        if item.id in kept_ids:
            logger.info(f"Keeping existing {kind} {item.id}; extracted duplicate ignored")
            continue
        merged.append(item)
    return merged


class ExtractionPipeline:
    """
    Sequential, fail-fast extraction into a GraphStore.

    Usage:
        pipeline = ExtractionPipeline(store, complete)
        result = await pipeline.run(syllabus_text, modules)
        if not result.succeeded:
            show_error(result.failure)
    """

    def __init__(
        self,
        store: GraphStore,
        complete: CompletionFn,
        reconciler: Optional[IngestionReconciler] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.store = store
        self.complete = complete
        self.reconciler = reconciler or IngestionReconciler()
        self.settings = settings or Settings.from_env()

    async def run(
        self,
        syllabus_text: str,
        modules: Optional[list[dict[str, Any]]] = None,
        token: Optional[CancellationToken] = None,
    ) -> PipelineResult:
        """Run the nodes stage then the edges stage."""
        token = token or CancellationToken()
        syllabus = self._truncate(syllabus_text)
        result = PipelineResult()

        stages = [
            (NODES_STAGE, lambda: self._nodes_stage(syllabus, modules or [], token)),
            (EDGES_STAGE, lambda: self._edges_stage(syllabus, modules or [], token)),
        ]
        for name, run_stage in stages:
            if result.failure is not None:
                result.stages.append(StageResult(name, StageStatus.SKIPPED))
                continue
            result.stages.append(await self._guarded(name, run_stage))

        if result.succeeded:
            logger.info(
                f"Extraction complete: {len(self.store)} nodes, "
                f"{len(self.store.edge_ids)} edges, dag_valid={self.store.is_dag_valid}"
            )
        return result

    async def run_single_pass(
        self,
        syllabus_text: str,
        modules: Optional[list[dict[str, Any]]] = None,
        token: Optional[CancellationToken] = None,
    ) -> PipelineResult:
        """Extract nodes and edges from one combined response."""
        token = token or CancellationToken()
        syllabus = self._truncate(syllabus_text)
        stage = await self._guarded(
            GRAPH_STAGE, lambda: self._graph_stage(syllabus, modules or [], token)
        )
        return PipelineResult(stages=[stage])

    # ─────────────────────────────────────────────────────────────────────────
    # Stages
    # ─────────────────────────────────────────────────────────────────────────

    async def _nodes_stage(
        self,
        syllabus: str,
        modules: list[dict[str, Any]],
        token: CancellationToken,
    ) -> StageResult:
        context = {"syllabus": syllabus, "modules": modules}
        text, attempts = await self._complete_with_retry(NODES_STAGE, context, token)

        kept = kept_nodes(self.store.nodes)
        batch = self.reconciler.ingest_nodes_response(text, reserved_ids={n.id for n in kept})
        token.raise_if_cancelled(NODES_STAGE)

        self.store.replace_all_nodes(_merge(kept, batch.nodes, "node"))
        self.store.set_metadata(extraction_method=self.reconciler.extraction_method)
        return StageResult(NODES_STAGE, StageStatus.COMPLETED, batch.metadata, attempts=attempts)

    async def _edges_stage(
        self,
        syllabus: str,
        modules: list[dict[str, Any]],
        token: CancellationToken,
    ) -> StageResult:
        nodes = self.store.nodes
        context = {
            "syllabus": syllabus,
            "modules": modules,
            "nodes": [node.model_dump(mode="json", exclude_none=True) for node in nodes],
        }
        text, attempts = await self._complete_with_retry(EDGES_STAGE, context, token)

        kept = kept_edges(self.store.edges)
        # Validate against the trusted node set, not against whatever the response mentions
        batch = self.reconciler.ingest_edges_response(
            text, self.store.node_ids, reserved_ids={e.id for e in kept}
        )
        token.raise_if_cancelled(EDGES_STAGE)

        self.store.replace_all_edges(_merge(kept, batch.edges, "edge"))
        return StageResult(EDGES_STAGE, StageStatus.COMPLETED, batch.metadata, attempts=attempts)

    async def _graph_stage(
        self,
        syllabus: str,
        modules: list[dict[str, Any]],
        token: CancellationToken,
    ) -> StageResult:
        context = {"syllabus": syllabus, "modules": modules}
        text, attempts = await self._complete_with_retry(GRAPH_STAGE, context, token)

        nodes = kept_nodes(self.store.nodes)
        edges = kept_edges(self.store.edges)
        reserved = {n.id for n in nodes} | {e.id for e in edges}
        batch = self.reconciler.ingest_graph_response(text, reserved_ids=reserved)
        token.raise_if_cancelled(GRAPH_STAGE)

        self.store.load(
            _merge(nodes, batch.nodes.nodes, "node"),
            _merge(edges, batch.edges.edges, "edge"),
            metadata=GraphMetadata(extraction_method=self.reconciler.extraction_method),
        )
        return StageResult(GRAPH_STAGE, StageStatus.COMPLETED, batch.metadata, attempts=attempts)

    # ─────────────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────────────

    async def _guarded(
        self,
        stage: str,
        run_stage: Callable[[], Awaitable[StageResult]],
    ) -> StageResult:
        """Run a stage, turning library errors into a failed StageResult."""
        try:
            return await run_stage()
        except CurriculumGraphError as e:
            logger.error(f"Extraction stage '{stage}' failed: {e}")
            attempts = e.attempts if isinstance(e, StageFailure) else 1
            return StageResult(stage, StageStatus.FAILED, error=e, attempts=attempts)

    async def _complete_with_retry(
        self,
        stage: str,
        context: dict[str, Any],
        token: CancellationToken,
    ) -> tuple[str, int]:
        token.raise_if_cancelled(stage)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.max_attempts),
            wait=wait_exponential(
                multiplier=1,
                min=self.settings.backoff_min,
                max=self.settings.backoff_max,
            ),
            retry=retry_if_exception_type((TransientServiceError, asyncio.TimeoutError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

        attempts = 0
        try:
            async for attempt in retrying:
                with attempt:
                    token.raise_if_cancelled(stage)
                    attempts += 1
                    text = await asyncio.wait_for(
                        self.complete(stage, context),
                        timeout=self.settings.stage_timeout,
                    )
        except StageFailure as e:
            e.attempts = attempts
            raise
        except asyncio.TimeoutError as e:
            raise StageFailure(
                stage, f"timed out after {self.settings.stage_timeout}s", attempts
            ) from e
        except CurriculumGraphError as e:
            raise StageFailure(stage, str(e), attempts) from e
        except Exception as e:
            raise StageFailure(stage, f"{type(e).__name__}: {e}", attempts) from e

        if not isinstance(text, str):
            raise StageFailure(stage, f"completion returned {type(text).__name__}, expected str", attempts)
        return text, attempts

    def _truncate(self, syllabus_text: str) -> str:
        limit = self.settings.max_syllabus_chars
        if len(syllabus_text) > limit:
            logger.warning(f"Syllabus truncated from {len(syllabus_text)} to {limit} characters")
            return syllabus_text[:limit]
        return syllabus_text
