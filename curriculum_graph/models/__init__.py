"""
Curriculum Graph Domain Models.

These are storage-agnostic Pydantic models representing
the nodes, edges and legacy prerequisite records of a course.
"""

from .base import (
    KnowledgeNode,
    KnowledgeEdge,
    ExternalSource,
    GraphMetadata,
    NodeType,
    BloomLevel,
    NodeDifficulty,
    SourceType,
    ExtractionMethod,
    EdgeRelationship,
    EdgeStrength,
    ExternalSourceKind,
    ProficiencyLevel,
)

from .prerequisites import (
    LegacyPrerequisites,
    PrerequisiteCourse,
    PrerequisiteSkill,
    PrerequisiteKnowledge,
)

__all__ = [
    # Graph entities
    "KnowledgeNode",
    "KnowledgeEdge",
    "ExternalSource",
    "GraphMetadata",
    # Enums
    "NodeType",
    "BloomLevel",
    "NodeDifficulty",
    "SourceType",
    "ExtractionMethod",
    "EdgeRelationship",
    "EdgeStrength",
    "ExternalSourceKind",
    "ProficiencyLevel",
    # Legacy prerequisites
    "LegacyPrerequisites",
    "PrerequisiteCourse",
    "PrerequisiteSkill",
    "PrerequisiteKnowledge",
]
