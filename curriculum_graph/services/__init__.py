"""
Services layer for the curriculum graph.

Provides ingestion of extracted fragments, the staged extraction
pipeline and the legacy prerequisite migration.
"""

from .ingestion import (
    IngestionReconciler,
    IngestionMetadata,
    NodeBatch,
    EdgeBatch,
    GraphBatch,
    Rejection,
    RejectionReason,
    DEFAULT_EDGE_CONFIDENCE,
    extract_json_object,
    parse_response,
)
from .migration import (
    PrerequisiteMigrator,
    MigrationResult,
    export_as_prerequisites,
)
from .pipeline import (
    ExtractionPipeline,
    CancellationToken,
    PipelineResult,
    StageResult,
    StageStatus,
)

__all__ = [
    # Ingestion
    "IngestionReconciler",
    "IngestionMetadata",
    "NodeBatch",
    "EdgeBatch",
    "GraphBatch",
    "Rejection",
    "RejectionReason",
    "DEFAULT_EDGE_CONFIDENCE",
    "extract_json_object",
    "parse_response",
    # Migration
    "PrerequisiteMigrator",
    "MigrationResult",
    "export_as_prerequisites",
    # Pipeline
    "ExtractionPipeline",
    "CancellationToken",
    "PipelineResult",
    "StageResult",
    "StageStatus",
]
