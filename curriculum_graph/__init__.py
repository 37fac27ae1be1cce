"""
Curriculum Graph Library.

Builds and maintains the knowledge graph of a course: concepts, skills
and competencies connected by typed relationships, with a continuously
checked acyclic prerequisite structure.

Graph fragments extracted by an external generation service are
reconciled before they reach the in-memory GraphStore, and legacy flat
prerequisite lists are migrated into external graph nodes once per session.
"""

from .models import (
    KnowledgeNode,
    KnowledgeEdge,
    ExternalSource,
    GraphMetadata,
    LegacyPrerequisites,
    NodeType,
    EdgeRelationship,
)

from .storage import (
    GraphStore,
    GraphSnapshot,
    serialize_graph,
    deserialize_graph,
    save_snapshot,
    load_snapshot,
)

from .services import (
    IngestionReconciler,
    ExtractionPipeline,
    CancellationToken,
    PrerequisiteMigrator,
    export_as_prerequisites,
)

from .errors import (
    CurriculumGraphError,
    ParseError,
    StageFailure,
    TransientServiceError,
    CycleWarning,
)

from .session import CurriculumSession

__all__ = [
    # Models
    "KnowledgeNode",
    "KnowledgeEdge",
    "ExternalSource",
    "GraphMetadata",
    "LegacyPrerequisites",
    "NodeType",
    "EdgeRelationship",
    # Storage
    "GraphStore",
    "GraphSnapshot",
    "serialize_graph",
    "deserialize_graph",
    "save_snapshot",
    "load_snapshot",
    # Services
    "IngestionReconciler",
    "ExtractionPipeline",
    "CancellationToken",
    "PrerequisiteMigrator",
    "export_as_prerequisites",
    # Errors
    "CurriculumGraphError",
    "ParseError",
    "StageFailure",
    "TransientServiceError",
    "CycleWarning",
    # Session
    "CurriculumSession",
]
