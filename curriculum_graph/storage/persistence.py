"""
Snapshot persistence for the curriculum graph.

The stored form keeps only canonical data:

    {"nodes": [[id, node], ...], "edges": [[id, edge], ...],
     "metadata": {"extraction_method": ...}}

Derived indices, counts and the DAG validity flag are never written.
They are always recomputed from the restored nodes and edges.
"""

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ..models import (
    ExtractionMethod,
    GraphMetadata,
    KnowledgeEdge,
    KnowledgeNode,
    LegacyPrerequisites,
)
from .graph import GraphStore

if TYPE_CHECKING:
    from ..session import CurriculumSession


logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


def serialize_graph(store: GraphStore) -> dict[str, Any]:
    """Flatten the graph's keyed collections into JSON-safe key/value pairs."""
    snapshot = store.snapshot
    return {
        "nodes": [
            [node_id, node.model_dump(mode="json", exclude_none=True)]
            for node_id, node in snapshot.nodes.items()
        ],
        "edges": [
            [edge_id, edge.model_dump(mode="json", exclude_none=True)]
            for edge_id, edge in snapshot.edges.items()
        ],
        "metadata": {
            "extraction_method": snapshot.metadata.extraction_method.value,
        },
    }


def deserialize_graph(data: dict[str, Any], store: GraphStore | None = None) -> GraphStore:
    """
    Rebuild a graph from its flattened form.

    Any derived state present in the data is ignored; indices and DAG
    validity are recomputed by the store.
    """
    # An empty store has len() == 0, so test for None explicitly
    if store is None:
        store = GraphStore()

    nodes = [KnowledgeNode.model_validate(_keyed_value(pair)) for pair in data.get("nodes", [])]
    edges = [KnowledgeEdge.model_validate(_keyed_value(pair)) for pair in data.get("edges", [])]

    raw_metadata = data.get("metadata") or {}
    metadata = GraphMetadata(
        extraction_method=ExtractionMethod(
            raw_metadata.get("extraction_method", ExtractionMethod.AI_EXTRACTED.value)
        )
    )

    store.load(nodes, edges, metadata=metadata)
    return store


def _keyed_value(pair: Any) -> dict[str, Any]:
    """Accept [id, value] pairs; the key wins over any id inside the value."""
    key, value = pair
    return {**value, "id": key}


# ─────────────────────────────────────────────────────────────────────────────
# Session snapshots
# ─────────────────────────────────────────────────────────────────────────────

def serialize_session(session: "CurriculumSession") -> dict[str, Any]:
    return {
        "version": SNAPSHOT_VERSION,
        "session_id": session.session_id,
        "graph": serialize_graph(session.graph),
        "prerequisites": session.prerequisites.model_dump(mode="json", exclude_none=True),
        "prerequisites_migrated": session.prerequisites_migrated,
    }


def deserialize_session(data: dict[str, Any]) -> "CurriculumSession":
    from ..session import CurriculumSession

    version = data.get("version", SNAPSHOT_VERSION)
    if version != SNAPSHOT_VERSION:
        logger.warning(f"Loading snapshot version {version}, expected {SNAPSHOT_VERSION}")

    session = CurriculumSession(session_id=data.get("session_id"))
    deserialize_graph(data.get("graph") or {}, store=session.graph)
    session.prerequisites = LegacyPrerequisites.model_validate(data.get("prerequisites") or {})
    session.prerequisites_migrated = bool(data.get("prerequisites_migrated", False))
    return session


def save_snapshot(session: "CurriculumSession", path: str | Path) -> Path:
    """Write a session snapshot as JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(serialize_session(session), indent=2), encoding="utf-8")
    logger.info(f"Saved session {session.session_id} to {path}")
    return path


def load_snapshot(path: str | Path) -> "CurriculumSession":
    """Restore a session snapshot written by save_snapshot."""
    path = Path(path)
    session = deserialize_session(json.loads(path.read_text(encoding="utf-8")))
    logger.info(f"Loaded session {session.session_id} from {path}")
    return session
