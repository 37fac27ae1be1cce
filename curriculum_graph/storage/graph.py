"""
In-memory curriculum knowledge graph.

Implements:
- CRUD for knowledge nodes and edges
- Cascading node removal
- Derived lookup indices (by module, incoming/outgoing edges,
  external nodes, entry points)
- Continuous prerequisite DAG validation

Every mutation builds new node/edge maps, recomputes all derived indices
and DAG validity from scratch, and swaps in a new immutable snapshot.
Mutations are serialised by a lock; readers use whatever snapshot was
last committed and never block.
"""

import itertools
import logging
import threading
import uuid
import warnings
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Container, Iterable, Mapping

from ..errors import CycleWarning
from ..models import (
    ExtractionMethod,
    GraphMetadata,
    KnowledgeEdge,
    KnowledgeNode,
    SourceType,
)
from .dag import build_prerequisite_adjacency, find_cycle


logger = logging.getLogger(__name__)


_id_sequence = itertools.count(1)

# Derived by the store, never set by callers
_DERIVED_METADATA_FIELDS = frozenset({"node_count", "edge_count", "is_dag_valid"})


def _unique_id(prefix: str, reserved: Container[str]) -> str:
    while True:
        candidate = f"{prefix}-{next(_id_sequence)}-{uuid.uuid4().hex[:5]}"
        if candidate not in reserved:
            return candidate


def generate_node_id(node_type: str, reserved: Container[str] = ()) -> str:
    """Generate a node id with a type-derived prefix, e.g. 'threshold-concept-12-a3f9c'."""
    prefix = str(getattr(node_type, "value", node_type)).replace("_", "-") or "node"
    return _unique_id(prefix, reserved)


def generate_edge_id(reserved: Container[str] = ()) -> str:
    """Generate an edge id, e.g. 'edge-13-0b7e1'."""
    return _unique_id("edge", reserved)


@dataclass(frozen=True)
class GraphSnapshot:
    """One committed, immutable state of the graph."""
    nodes: Mapping[str, KnowledgeNode]
    edges: Mapping[str, KnowledgeEdge]
    metadata: GraphMetadata

    # Derived indices (ids only)
    nodes_by_module: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    incoming_edges: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    outgoing_edges: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    external_node_ids: tuple[str, ...] = ()
    entry_point_ids: tuple[str, ...] = ()
    prerequisite_cycle: tuple[str, ...] | None = None


def _build_snapshot(
    nodes: dict[str, KnowledgeNode],
    edges: dict[str, KnowledgeEdge],
    metadata: GraphMetadata,
) -> GraphSnapshot:
    """Recompute every derived index and DAG validity as one unit."""
    nodes_by_module: dict[str, list[str]] = {}
    external_ids: list[str] = []
    entry_ids: list[str] = []

    for node in nodes.values():
        if node.parent_module_id:
            nodes_by_module.setdefault(node.parent_module_id, []).append(node.id)
        if node.is_external:
            external_ids.append(node.id)
        if node.is_entry_point:
            entry_ids.append(node.id)

    incoming: dict[str, list[str]] = {}
    outgoing: dict[str, list[str]] = {}
    for edge in edges.values():
        incoming.setdefault(edge.target, []).append(edge.id)
        outgoing.setdefault(edge.source, []).append(edge.id)

    cycle = find_cycle(build_prerequisite_adjacency(edges.values()), nodes.keys())

    metadata = metadata.model_copy(update={
        "node_count": len(nodes),
        "edge_count": len(edges),
        "is_dag_valid": cycle is None,
    })

    return GraphSnapshot(
        nodes=MappingProxyType(nodes),
        edges=MappingProxyType(edges),
        metadata=metadata,
        nodes_by_module=MappingProxyType({k: tuple(v) for k, v in nodes_by_module.items()}),
        incoming_edges=MappingProxyType({k: tuple(v) for k, v in incoming.items()}),
        outgoing_edges=MappingProxyType({k: tuple(v) for k, v in outgoing.items()}),
        external_node_ids=tuple(external_ids),
        entry_point_ids=tuple(entry_ids),
        prerequisite_cycle=tuple(cycle) if cycle else None,
    )


class GraphStore:
    """
    Sole authority over one curriculum graph.

    Holds the node and edge collections, their derived indices and the
    prerequisite DAG validity flag. Structurally invalid input (dangling
    references, self-loops) is not rejected here; the ingestion layer
    and callers are expected to pre-validate. A cyclic prerequisite
    subgraph is reported through is_dag_valid and a CycleWarning, never
    by refusing the change.
    """

    def __init__(
        self,
        extraction_method: ExtractionMethod = ExtractionMethod.AI_EXTRACTED
    ) -> None:
        self._lock = threading.RLock()
        self._initial_method = ExtractionMethod(extraction_method)
        self._snapshot = _build_snapshot(
            {}, {}, GraphMetadata(extraction_method=self._initial_method)
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Snapshot access
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def snapshot(self) -> GraphSnapshot:
        """The last committed state."""
        return self._snapshot

    @property
    def metadata(self) -> GraphMetadata:
        return self._snapshot.metadata

    @property
    def is_dag_valid(self) -> bool:
        return self._snapshot.metadata.is_dag_valid

    @property
    def nodes(self) -> list[KnowledgeNode]:
        return list(self._snapshot.nodes.values())

    @property
    def edges(self) -> list[KnowledgeEdge]:
        return list(self._snapshot.edges.values())

    @property
    def node_ids(self) -> set[str]:
        return set(self._snapshot.nodes)

    @property
    def edge_ids(self) -> set[str]:
        return set(self._snapshot.edges)

    def __len__(self) -> int:
        return len(self._snapshot.nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._snapshot.nodes

    # ─────────────────────────────────────────────────────────────────────────
    # Node Operations
    # ─────────────────────────────────────────────────────────────────────────

    def add_node(self, node: KnowledgeNode) -> KnowledgeNode:
        """Add a node. An existing node with the same id is replaced."""
        with self._lock:
            current = self._snapshot
            if node.id in current.nodes:
                logger.debug(f"Replacing existing node: {node.id}")
            nodes = dict(current.nodes)
            nodes[node.id] = node
            self._commit(nodes, dict(current.edges))
        logger.info(f"Added node: {node.id} ({node.type.value}) - {node.label}")
        return node

    def update_node(self, node_id: str, updates: Mapping[str, Any]) -> KnowledgeNode | None:
        """
        Apply a partial update to a node.

        Keys that are not node fields are ignored and the id cannot be
        changed. Values are validated like a freshly constructed node.

        Returns the updated node, or None if the node does not exist.
        """
        with self._lock:
            current = self._snapshot
            existing = current.nodes.get(node_id)
            if existing is None:
                logger.warning(f"Cannot update unknown node: {node_id}")
                return None

            applied = self._filter_updates(KnowledgeNode, updates)
            updated = KnowledgeNode.model_validate({**existing.model_dump(), **applied})

            nodes = dict(current.nodes)
            nodes[node_id] = updated
            self._commit(nodes, dict(current.edges))

        logger.info(f"Updated node: {node_id}, fields: {list(applied)}")
        return updated

    def remove_node(self, node_id: str) -> bool:
        """Remove a node and every edge incident to it."""
        with self._lock:
            current = self._snapshot
            if node_id not in current.nodes:
                return False

            nodes = dict(current.nodes)
            del nodes[node_id]

            incident = set(current.incoming_edges.get(node_id, ()))
            incident.update(current.outgoing_edges.get(node_id, ()))
            edges = {
                edge_id: edge for edge_id, edge in current.edges.items()
                if edge_id not in incident
            }
            self._commit(nodes, edges)

        logger.info(f"Removed node: {node_id} (cascaded {len(incident)} edges)")
        return True

    def confirm_node(self, node_id: str) -> KnowledgeNode | None:
        """Mark a node as reviewed by faculty."""
        with self._lock:
            current = self._snapshot
            existing = current.nodes.get(node_id)
            if existing is None:
                return None

            confirmed = existing.model_copy(update={
                "confirmed": True,
                "source": SourceType.FACULTY_DEFINED,
            })
            nodes = dict(current.nodes)
            nodes[node_id] = confirmed
            self._commit(nodes, dict(current.edges))
        return confirmed

    def replace_all_nodes(self, nodes: Iterable[KnowledgeNode]) -> int:
        """
        Replace the whole node set.

        Edges whose source or target is no longer present are pruned.

        Returns the number of pruned edges.
        """
        with self._lock:
            new_nodes = self._keyed(nodes, "node")
            edges, pruned = self._prune_dangling(self._snapshot.edges, new_nodes)
            self._commit(new_nodes, edges)

        logger.info(f"Replaced node set: {len(new_nodes)} nodes, pruned {pruned} edges")
        return pruned

    # ─────────────────────────────────────────────────────────────────────────
    # Edge Operations
    # ─────────────────────────────────────────────────────────────────────────

    def add_edge(self, edge: KnowledgeEdge) -> KnowledgeEdge:
        """Add an edge. An existing edge with the same id is replaced."""
        with self._lock:
            current = self._snapshot
            self._warn_if_structurally_invalid(edge, current.nodes)
            edges = dict(current.edges)
            edges[edge.id] = edge
            self._commit(dict(current.nodes), edges)

        logger.info(
            f"Added edge: {edge.id} ({edge.source} -{edge.relationship.value}-> {edge.target})"
        )
        return edge

    def update_edge(self, edge_id: str, updates: Mapping[str, Any]) -> KnowledgeEdge | None:
        """Apply a partial update to an edge. Returns None if the edge does not exist."""
        with self._lock:
            current = self._snapshot
            existing = current.edges.get(edge_id)
            if existing is None:
                logger.warning(f"Cannot update unknown edge: {edge_id}")
                return None

            applied = self._filter_updates(KnowledgeEdge, updates)
            updated = KnowledgeEdge.model_validate({**existing.model_dump(), **applied})
            self._warn_if_structurally_invalid(updated, current.nodes)

            edges = dict(current.edges)
            edges[edge_id] = updated
            self._commit(dict(current.nodes), edges)

        logger.info(f"Updated edge: {edge_id}, fields: {list(applied)}")
        return updated

    def remove_edge(self, edge_id: str) -> bool:
        with self._lock:
            current = self._snapshot
            if edge_id not in current.edges:
                return False
            edges = dict(current.edges)
            del edges[edge_id]
            self._commit(dict(current.nodes), edges)

        logger.info(f"Removed edge: {edge_id}")
        return True

    def confirm_edge(self, edge_id: str) -> KnowledgeEdge | None:
        """Mark an edge as reviewed by faculty; confidence becomes certain."""
        with self._lock:
            current = self._snapshot
            existing = current.edges.get(edge_id)
            if existing is None:
                return None

            confirmed = existing.model_copy(update={
                "confirmed": True,
                "confidence": 1.0,
                "source_type": SourceType.FACULTY_DEFINED,
            })
            edges = dict(current.edges)
            edges[edge_id] = confirmed
            self._commit(dict(current.nodes), edges)
        return confirmed

    def replace_all_edges(self, edges: Iterable[KnowledgeEdge]) -> None:
        """Replace the whole edge set."""
        with self._lock:
            new_edges = self._keyed(edges, "edge")
            current = self._snapshot
            for edge in new_edges.values():
                self._warn_if_structurally_invalid(edge, current.nodes)
            self._commit(dict(current.nodes), new_edges)

        logger.info(f"Replaced edge set: {len(new_edges)} edges")

    # ─────────────────────────────────────────────────────────────────────────
    # External Nodes and Entry Points
    # ─────────────────────────────────────────────────────────────────────────

    def add_external_node(self, node: KnowledgeNode) -> KnowledgeNode:
        """Add a node representing knowledge assumed from outside the course."""
        if not node.is_external:
            logger.warning(f"add_external_node called with non-external node type: {node.type.value}")
        return self.add_node(node)

    def get_external_nodes(self) -> list[KnowledgeNode]:
        snapshot = self._snapshot
        return [snapshot.nodes[node_id] for node_id in snapshot.external_node_ids]

    def get_entry_points(self) -> list[KnowledgeNode]:
        snapshot = self._snapshot
        return [snapshot.nodes[node_id] for node_id in snapshot.entry_point_ids]

    # ─────────────────────────────────────────────────────────────────────────
    # Validation
    # ─────────────────────────────────────────────────────────────────────────

    def validate_dag(self) -> bool:
        """Recompute prerequisite DAG validity on demand and record when it ran."""
        with self._lock:
            current = self._snapshot
            self._commit(
                dict(current.nodes),
                dict(current.edges),
                last_validated=datetime.now(timezone.utc),
            )
            return self._snapshot.metadata.is_dag_valid

    def find_prerequisite_cycle(self) -> list[str] | None:
        """One offending prerequisite cycle as a closed path, or None."""
        cycle = self._snapshot.prerequisite_cycle
        return list(cycle) if cycle else None

    # ─────────────────────────────────────────────────────────────────────────
    # Lookups
    # ─────────────────────────────────────────────────────────────────────────

    def get_node(self, node_id: str) -> KnowledgeNode | None:
        return self._snapshot.nodes.get(node_id)

    def get_edge(self, edge_id: str) -> KnowledgeEdge | None:
        return self._snapshot.edges.get(edge_id)

    def get_nodes_by_module(self, module_id: str) -> list[KnowledgeNode]:
        snapshot = self._snapshot
        return [snapshot.nodes[i] for i in snapshot.nodes_by_module.get(module_id, ())]

    def get_incoming_edges(self, node_id: str) -> list[KnowledgeEdge]:
        snapshot = self._snapshot
        return [snapshot.edges[i] for i in snapshot.incoming_edges.get(node_id, ())]

    def get_outgoing_edges(self, node_id: str) -> list[KnowledgeEdge]:
        snapshot = self._snapshot
        return [snapshot.edges[i] for i in snapshot.outgoing_edges.get(node_id, ())]

    # ─────────────────────────────────────────────────────────────────────────
    # Bulk Operations
    # ─────────────────────────────────────────────────────────────────────────

    def set_metadata(self, **updates: Any) -> GraphMetadata:
        """Update non-derived metadata such as extraction_method."""
        ignored = _DERIVED_METADATA_FIELDS.intersection(updates)
        if ignored:
            logger.warning(f"Ignoring derived metadata fields: {sorted(ignored)}")
        applied = {
            k: v for k, v in updates.items()
            if k in GraphMetadata.model_fields and k not in _DERIVED_METADATA_FIELDS
        }
        with self._lock:
            current = self._snapshot
            merged = GraphMetadata.model_validate({**current.metadata.model_dump(), **applied})
            self._snapshot = GraphSnapshot(
                nodes=current.nodes,
                edges=current.edges,
                metadata=merged,
                nodes_by_module=current.nodes_by_module,
                incoming_edges=current.incoming_edges,
                outgoing_edges=current.outgoing_edges,
                external_node_ids=current.external_node_ids,
                entry_point_ids=current.entry_point_ids,
                prerequisite_cycle=current.prerequisite_cycle,
            )
        return merged

    def apply(
        self,
        add_nodes: Iterable[KnowledgeNode] = (),
        add_edges: Iterable[KnowledgeEdge] = (),
    ) -> None:
        """Add several nodes and edges as one transaction."""
        with self._lock:
            current = self._snapshot
            nodes = dict(current.nodes)
            nodes.update(self._keyed(add_nodes, "node"))
            edges = dict(current.edges)
            for edge in add_edges:
                self._warn_if_structurally_invalid(edge, nodes)
                edges[edge.id] = edge
            self._commit(nodes, edges)

    def load(
        self,
        nodes: Iterable[KnowledgeNode],
        edges: Iterable[KnowledgeEdge],
        metadata: GraphMetadata | None = None,
    ) -> int:
        """
        Restore both collections at once, e.g. from a snapshot.

        Indices and validity are recomputed from the restored data; edges
        referencing missing nodes are pruned.

        Returns the number of pruned edges.
        """
        with self._lock:
            new_nodes = self._keyed(nodes, "node")
            new_edges, pruned = self._prune_dangling(self._keyed(edges, "edge"), new_nodes)
            base = metadata or GraphMetadata(extraction_method=self._initial_method)
            self._commit(new_nodes, new_edges, base=base)

        if pruned:
            logger.warning(f"Pruned {pruned} dangling edges while loading graph")
        logger.info(f"Loaded graph: {len(new_nodes)} nodes, {len(new_edges)} edges")
        return pruned

    def reset(self) -> None:
        """Clear the graph for a new session."""
        with self._lock:
            self._commit({}, {}, base=GraphMetadata(extraction_method=self._initial_method))
        logger.info("Graph reset")

    # ─────────────────────────────────────────────────────────────────────────
    # Private Helpers
    # ─────────────────────────────────────────────────────────────────────────

    def _commit(
        self,
        nodes: dict[str, KnowledgeNode],
        edges: dict[str, KnowledgeEdge],
        base: GraphMetadata | None = None,
        **metadata_updates: Any,
    ) -> None:
        """Build and publish the next snapshot. Caller must hold the lock."""
        previous = self._snapshot
        metadata = base or previous.metadata
        if metadata_updates:
            metadata = metadata.model_copy(update=metadata_updates)

        snapshot = _build_snapshot(nodes, edges, metadata)
        self._snapshot = snapshot

        if previous.metadata.is_dag_valid and not snapshot.metadata.is_dag_valid:
            path = " → ".join(snapshot.prerequisite_cycle or ())
            message = f"Prerequisite cycle detected: {path}"
            logger.warning(message)
            warnings.warn(message, CycleWarning, stacklevel=3)

    @staticmethod
    def _filter_updates(model: type, updates: Mapping[str, Any]) -> dict[str, Any]:
        applied = {}
        for name, value in updates.items():
            if name == "id":
                logger.warning("Ignoring attempt to change an id through an update")
            elif name in model.model_fields:
                applied[name] = value
        return applied

    @staticmethod
    def _keyed(items: Iterable[Any], kind: str) -> dict[str, Any]:
        keyed: dict[str, Any] = {}
        for item in items:
            if item.id in keyed:
                logger.warning(f"Duplicate {kind} id in bulk operation, keeping last: {item.id}")
            keyed[item.id] = item
        return keyed

    @staticmethod
    def _prune_dangling(
        edges: Mapping[str, KnowledgeEdge],
        nodes: Mapping[str, KnowledgeNode],
    ) -> tuple[dict[str, KnowledgeEdge], int]:
        kept = {
            edge_id: edge for edge_id, edge in edges.items()
            if edge.source in nodes and edge.target in nodes
        }
        return kept, len(edges) - len(kept)

    @staticmethod
    def _warn_if_structurally_invalid(
        edge: KnowledgeEdge,
        nodes: Mapping[str, KnowledgeNode],
    ) -> None:
        if edge.source == edge.target:
            logger.warning(f"Edge {edge.id} is a self-loop on {edge.source}")
        missing = [ref for ref in (edge.source, edge.target) if ref not in nodes]
        if missing:
            logger.warning(f"Edge {edge.id} references unknown nodes: {missing}")
