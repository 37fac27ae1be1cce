"""
Ingestion Reconciler - turns untrusted extraction output into trusted entities.

The generation service returns free text that should contain one JSON
object. This module locates and parses that object, then validates each
node or edge entry into either a trusted model or an explicit Rejection.
Nothing here touches the GraphStore: callers commit a batch only after
it has been fully reconciled.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from numbers import Real
from typing import Any, Iterable, List, Optional

from pydantic import BaseModel, ValidationError

from ..errors import ParseError
from ..models import (
    BloomLevel,
    EdgeRelationship,
    EdgeStrength,
    ExtractionMethod,
    KnowledgeEdge,
    KnowledgeNode,
    NodeDifficulty,
    NodeType,
    SourceType,
)
from ..storage.dag import is_prerequisite_dag
from ..storage.graph import generate_edge_id, generate_node_id


logger = logging.getLogger(__name__)

# Assigned to extracted edges that carry no usable confidence score.
# A fixed default carried over from earlier tooling, not an estimate.
DEFAULT_EDGE_CONFIDENCE = 0.75

DEFAULT_NODE_LABEL = "Unnamed Concept"


class RejectionReason(str, Enum):
    """Why an extracted entry was not accepted."""
    MALFORMED = "malformed"
    DUPLICATE_ID = "duplicate_id"
    DANGLING_REFERENCE = "dangling_reference"
    SELF_LOOP = "self_loop"


@dataclass
class Rejection:
    """An extracted entry that did not become a trusted entity."""
    reason: RejectionReason
    detail: str
    raw: Any = None


class IngestionMetadata(BaseModel):
    """Summary returned alongside every reconciled batch."""

    extraction_method: ExtractionMethod = ExtractionMethod.AI_EXTRACTED
    node_count: int = 0
    edge_count: int = 0
    is_dag_valid: bool = True
    filtered_count: int = 0


@dataclass
class NodeBatch:
    nodes: list[KnowledgeNode]
    rejected: list[Rejection] = field(default_factory=list)
    metadata: IngestionMetadata = field(default_factory=IngestionMetadata)

    @property
    def node_ids(self) -> set[str]:
        return {node.id for node in self.nodes}


@dataclass
class EdgeBatch:
    edges: list[KnowledgeEdge]
    rejected: list[Rejection] = field(default_factory=list)
    metadata: IngestionMetadata = field(default_factory=IngestionMetadata)

    @property
    def dangling_count(self) -> int:
        return sum(1 for r in self.rejected if r.reason == RejectionReason.DANGLING_REFERENCE)


@dataclass
class GraphBatch:
    """Nodes and edges reconciled from a single combined extraction."""
    nodes: NodeBatch
    edges: EdgeBatch

    @property
    def metadata(self) -> IngestionMetadata:
        return self.edges.metadata


# ─────────────────────────────────────────────────────────────────────────────
# Response parsing
# ─────────────────────────────────────────────────────────────────────────────

def extract_json_object(text: str) -> Optional[str]:
    """
    Return the first top-level balanced {...} substring of text.

    Braces inside JSON strings are ignored, so prose around the object
    and braces embedded in values are both tolerated.
    """
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]

    return None


def parse_response(text: str) -> dict[str, Any]:
    """Parse the JSON object embedded in a generation response."""
    if not isinstance(text, str):
        raise ParseError(f"Expected text response, got {type(text).__name__}")

    candidate = extract_json_object(text)
    if candidate is None:
        logger.error(f"No JSON object found in response: {text[:200]!r}")
        raise ParseError("No JSON found in response", raw_response=text)

    try:
        return json.loads(candidate)
    except json.JSONDecodeError as e:
        logger.error(f"JSON parse error: {e}")
        raise ParseError(f"Failed to parse response JSON: {e}", raw_response=text) from e


def _require_list(payload: dict[str, Any], key: str, text: str) -> list[Any]:
    value = payload.get(key)
    if not isinstance(value, list):
        raise ParseError(f"Invalid response: {key} array not found", raw_response=text)
    return value


# ─────────────────────────────────────────────────────────────────────────────
# Field normalisation
# ─────────────────────────────────────────────────────────────────────────────

def _enum_value(enum_cls: type[Enum], raw: Any) -> Optional[Enum]:
    """Match loosely formatted enum values such as 'Threshold Concept'."""
    if isinstance(raw, enum_cls):
        return raw
    if not isinstance(raw, str):
        return None
    normalized = raw.strip().lower().replace(" ", "_").replace("-", "_")
    try:
        return enum_cls(normalized)
    except ValueError:
        return None


def _string_list(raw: Any) -> Optional[list[str]]:
    if not isinstance(raw, list):
        return None
    return [str(item) for item in raw if item is not None and str(item).strip()]


def _optional_text(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


def _flag(raw: Any) -> bool:
    """Real booleans and "true"/"false" strings; anything else is False."""
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        return raw.strip().lower() == "true"
    return False


def _confidence(raw: Any) -> float:
    if isinstance(raw, bool) or not isinstance(raw, Real):
        return DEFAULT_EDGE_CONFIDENCE
    value = float(raw)
    if value != value:  # NaN
        return DEFAULT_EDGE_CONFIDENCE
    return min(1.0, max(0.0, value))


class IngestionReconciler:
    """
    Validates extracted node and edge batches before they reach the graph.

    Every accepted entity is tagged ai_extracted and unconfirmed. Missing
    ids are synthesised so they never collide with ids in the batch or
    with the reserved ids passed in (usually the live graph's ids).
    """

    def __init__(
        self,
        extraction_method: ExtractionMethod = ExtractionMethod.AI_EXTRACTED
    ) -> None:
        self.extraction_method = ExtractionMethod(extraction_method)

    # =========================================================
    # NODES
    # =========================================================

    def reconcile_nodes(
        self,
        raw_nodes: Iterable[Any],
        reserved_ids: Iterable[str] = (),
    ) -> NodeBatch:
        raw_nodes = list(raw_nodes)
        unavailable = set(reserved_ids)
        unavailable.update(
            str(raw["id"]) for raw in raw_nodes
            if isinstance(raw, dict) and raw.get("id") not in (None, "")
        )

        accepted: List[KnowledgeNode] = []
        rejected: List[Rejection] = []
        seen: set[str] = set()

        for raw in raw_nodes:
            result = self._reconcile_node(raw, seen, unavailable)
            if isinstance(result, Rejection):
                logger.warning(f"Rejected extracted node ({result.reason.value}): {result.detail}")
                rejected.append(result)
                continue
            seen.add(result.id)
            unavailable.add(result.id)
            accepted.append(result)

        metadata = IngestionMetadata(
            extraction_method=self.extraction_method,
            node_count=len(accepted),
            filtered_count=len(rejected),
        )
        logger.info(f"Reconciled {len(accepted)} nodes ({len(rejected)} rejected)")
        return NodeBatch(nodes=accepted, rejected=rejected, metadata=metadata)

    def _reconcile_node(
        self,
        raw: Any,
        seen: set[str],
        unavailable: set[str],
    ) -> KnowledgeNode | Rejection:
        if not isinstance(raw, dict):
            return Rejection(RejectionReason.MALFORMED, "node entry is not an object", raw)

        node_type = NodeType.CONCEPT
        if raw.get("type") not in (None, ""):
            node_type = _enum_value(NodeType, raw["type"])
            if node_type is None:
                return Rejection(RejectionReason.MALFORMED, f"unknown node type {raw['type']!r}", raw)

        node_id = _optional_text(raw.get("id"))
        if node_id is None:
            node_id = generate_node_id(node_type.value, unavailable)
            logger.debug(f"Synthesised node id: {node_id}")
        elif node_id in seen:
            return Rejection(RejectionReason.DUPLICATE_ID, f"duplicate node id {node_id!r}", raw)

        fields = {
            "id": node_id,
            "type": node_type,
            "label": _optional_text(raw.get("label")) or DEFAULT_NODE_LABEL,
            "description": _optional_text(raw.get("description")),
            "bloom_level": _enum_value(BloomLevel, raw.get("bloom_level")) or BloomLevel.UNDERSTAND,
            "difficulty": _enum_value(NodeDifficulty, raw.get("difficulty")) or NodeDifficulty.INTERMEDIATE,
            "parent_module_id": _optional_text(raw.get("parent_module_id")),
            "keywords": _string_list(raw.get("keywords")) or [],
            "ai_notes": _optional_text(raw.get("ai_notes")),
            "common_misconceptions": _string_list(raw.get("common_misconceptions")),
            "is_entry_point": _flag(raw.get("is_entry_point")),
            "source": SourceType.AI_EXTRACTED,
            "confirmed": False,
        }
        if node_type.is_external and isinstance(raw.get("external_source"), dict):
            fields["external_source"] = raw["external_source"]

        try:
            return KnowledgeNode.model_validate(fields)
        except ValidationError as e:
            return Rejection(RejectionReason.MALFORMED, str(e), raw)

    # =========================================================
    # EDGES
    # =========================================================

    def reconcile_edges(
        self,
        raw_edges: Iterable[Any],
        valid_node_ids: Iterable[str],
        reserved_ids: Iterable[str] = (),
    ) -> EdgeBatch:
        """
        Validate edges against the trusted node set.

        Edges whose source or target is not a trusted node id are dropped
        and counted in filtered_count, as are self-loops and malformed
        entries.
        """
        raw_edges = list(raw_edges)
        valid_ids = set(valid_node_ids)
        unavailable = set(reserved_ids)
        unavailable.update(
            str(raw["id"]) for raw in raw_edges
            if isinstance(raw, dict) and raw.get("id") not in (None, "")
        )

        accepted: List[KnowledgeEdge] = []
        rejected: List[Rejection] = []
        seen: set[str] = set()

        for raw in raw_edges:
            result = self._reconcile_edge(raw, valid_ids, seen, unavailable)
            if isinstance(result, Rejection):
                logger.warning(f"Filtering out edge ({result.reason.value}): {result.detail}")
                rejected.append(result)
                continue
            seen.add(result.id)
            unavailable.add(result.id)
            accepted.append(result)

        is_dag_valid = is_prerequisite_dag(accepted, valid_ids)
        if not is_dag_valid:
            logger.warning("Extracted prerequisite edges contain a cycle")

        metadata = IngestionMetadata(
            extraction_method=self.extraction_method,
            node_count=len(valid_ids),
            edge_count=len(accepted),
            is_dag_valid=is_dag_valid,
            filtered_count=len(raw_edges) - len(accepted),
        )
        logger.info(
            f"Reconciled {len(accepted)} edges ({metadata.filtered_count} filtered, "
            f"dag_valid={is_dag_valid})"
        )
        return EdgeBatch(edges=accepted, rejected=rejected, metadata=metadata)

    def _reconcile_edge(
        self,
        raw: Any,
        valid_ids: set[str],
        seen: set[str],
        unavailable: set[str],
    ) -> KnowledgeEdge | Rejection:
        if not isinstance(raw, dict):
            return Rejection(RejectionReason.MALFORMED, "edge entry is not an object", raw)

        source = _optional_text(raw.get("source"))
        target = _optional_text(raw.get("target"))
        if source is None or target is None:
            return Rejection(RejectionReason.MALFORMED, "edge is missing source or target", raw)

        if source not in valid_ids or target not in valid_ids:
            return Rejection(
                RejectionReason.DANGLING_REFERENCE,
                f"invalid node reference: {source} -> {target}",
                raw,
            )
        if source == target:
            return Rejection(RejectionReason.SELF_LOOP, f"self-loop on {source}", raw)

        relationship = EdgeRelationship.RELATED_TO
        if raw.get("relationship") not in (None, ""):
            relationship = _enum_value(EdgeRelationship, raw["relationship"])
            if relationship is None:
                return Rejection(
                    RejectionReason.MALFORMED,
                    f"unknown relationship {raw['relationship']!r}",
                    raw,
                )

        # Edges are never referenced by id, so a clashing id is replaced rather than rejected
        edge_id = _optional_text(raw.get("id"))
        if edge_id is None or edge_id in seen:
            edge_id = generate_edge_id(unavailable)

        fields = {
            "id": edge_id,
            "source": source,
            "target": target,
            "relationship": relationship,
            "strength": _enum_value(EdgeStrength, raw.get("strength")) or EdgeStrength.RECOMMENDED,
            "confidence": _confidence(raw.get("confidence")),
            "rationale": _optional_text(raw.get("rationale")),
            "source_type": SourceType.AI_EXTRACTED,
            "confirmed": False,
        }

        try:
            return KnowledgeEdge.model_validate(fields)
        except ValidationError as e:
            return Rejection(RejectionReason.MALFORMED, str(e), raw)

    # =========================================================
    # RESPONSES
    # =========================================================

    def ingest_nodes_response(
        self,
        text: str,
        reserved_ids: Iterable[str] = (),
    ) -> NodeBatch:
        """Parse a node-extraction response and reconcile its nodes array."""
        payload = parse_response(text)
        return self.reconcile_nodes(_require_list(payload, "nodes", text), reserved_ids)

    def ingest_edges_response(
        self,
        text: str,
        valid_node_ids: Iterable[str],
        reserved_ids: Iterable[str] = (),
    ) -> EdgeBatch:
        """Parse an edge-extraction response and reconcile its edges array."""
        payload = parse_response(text)
        return self.reconcile_edges(
            _require_list(payload, "edges", text), valid_node_ids, reserved_ids
        )

    def ingest_graph_response(
        self,
        text: str,
        reserved_ids: Iterable[str] = (),
    ) -> GraphBatch:
        """
        Parse a combined {"nodes": [...], "edges": [...]} response.

        Edges are validated against the nodes accepted from the same
        response.
        """
        payload = parse_response(text)
        node_batch = self.reconcile_nodes(_require_list(payload, "nodes", text), reserved_ids)

        raw_edges = payload.get("edges", [])
        if not isinstance(raw_edges, list):
            raise ParseError("Invalid response: edges must be an array", raw_response=text)
        edge_batch = self.reconcile_edges(raw_edges, node_batch.node_ids, reserved_ids)

        return GraphBatch(nodes=node_batch, edges=edge_batch)
