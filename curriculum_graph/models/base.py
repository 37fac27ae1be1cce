"""
Core graph entities for the curriculum knowledge graph.

These models are storage-agnostic and describe the nodes and edges
that the GraphStore holds and the ingestion layer produces.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class NodeType(str, Enum):
    """Kinds of knowledge graph nodes."""
    CONCEPT = "concept"
    SKILL = "skill"
    COMPETENCY = "competency"
    THRESHOLD_CONCEPT = "threshold_concept"
    MISCONCEPTION = "misconception"
    EXTERNAL_CONCEPT = "external_concept"
    EXTERNAL_SKILL = "external_skill"
    EXTERNAL_KNOWLEDGE = "external_knowledge"

    @property
    def is_external(self) -> bool:
        return self.value.startswith("external_")


class BloomLevel(str, Enum):
    """Bloom's taxonomy cognitive levels."""
    REMEMBER = "remember"
    UNDERSTAND = "understand"
    APPLY = "apply"
    ANALYZE = "analyze"
    EVALUATE = "evaluate"
    CREATE = "create"


class NodeDifficulty(str, Enum):
    FOUNDATIONAL = "foundational"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class SourceType(str, Enum):
    """Provenance of a node or edge."""
    AI_EXTRACTED = "ai_extracted"
    FACULTY_DEFINED = "faculty_defined"
    IMPORTED = "imported"


class ExtractionMethod(str, Enum):
    """How the graph as a whole was produced."""
    AI_EXTRACTED = "ai_extracted"
    FACULTY_DEFINED = "faculty_defined"
    AI_WITH_FACULTY_REVIEW = "ai_with_faculty_review"
    IMPORTED = "imported"


class EdgeRelationship(str, Enum):
    """Relationship kinds between knowledge nodes."""
    PREREQUISITE_OF = "prerequisite_of"            # source must be mastered before target (DAG)
    BUILDS_ON = "builds_on"
    PART_OF = "part_of"
    RELATED_TO = "related_to"
    CONTRASTS_WITH = "contrasts_with"
    APPLIES_TO = "applies_to"
    EXAMPLE_OF = "example_of"
    REQUIRES_SKILL = "requires_skill"
    DEVELOPS_SKILL = "develops_skill"
    ADDRESSES_MISCONCEPTION = "addresses_misconception"
    ASSUMED_BY = "assumed_by"                      # external node -> entry node


class EdgeStrength(str, Enum):
    REQUIRED = "required"
    RECOMMENDED = "recommended"
    OPTIONAL = "optional"


class ExternalSourceKind(str, Enum):
    COURSE = "course"
    SKILL = "skill"
    KNOWLEDGE_AREA = "knowledge_area"


class ProficiencyLevel(str, Enum):
    BASIC = "basic"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class ExternalSource(BaseModel):
    """Where an external (assumed) node comes from."""

    kind: ExternalSourceKind
    course_code: Optional[str] = None
    course_title: Optional[str] = None
    proficiency_level: Optional[ProficiencyLevel] = None
    required: bool = False

    model_config = {"from_attributes": True, "frozen": True}


class KnowledgeNode(BaseModel):
    """
    A concept, skill or competency in the curriculum graph.

    External node types represent knowledge assumed from outside the
    course and are the only ones allowed to carry an external_source.
    """

    id: str = Field(..., min_length=1)
    type: NodeType = NodeType.CONCEPT
    label: str

    # Content
    description: Optional[str] = None
    bloom_level: BloomLevel = BloomLevel.UNDERSTAND
    difficulty: NodeDifficulty = NodeDifficulty.INTERMEDIATE
    parent_module_id: Optional[str] = Field(None, description="Lookup key of the owning module")
    keywords: List[str] = Field(default_factory=list)

    # Annotations
    ai_notes: Optional[str] = None
    common_misconceptions: Optional[List[str]] = None
    external_source: Optional[ExternalSource] = None
    is_entry_point: bool = False

    # Provenance
    source: SourceType = SourceType.FACULTY_DEFINED
    confirmed: bool = True

    model_config = {"from_attributes": True, "frozen": True}

    @model_validator(mode="after")
    def _external_source_only_on_external_nodes(self) -> "KnowledgeNode":
        if self.external_source is not None and not self.type.is_external:
            raise ValueError(
                f"external_source is only allowed on external node types, got '{self.type.value}'"
            )
        return self

    @property
    def is_external(self) -> bool:
        return self.type.is_external


class KnowledgeEdge(BaseModel):
    """A typed, directed relationship between two knowledge nodes."""

    id: str = Field(..., min_length=1)
    source: str = Field(..., min_length=1, description="Source node ID")
    target: str = Field(..., min_length=1, description="Target node ID")
    relationship: EdgeRelationship = EdgeRelationship.RELATED_TO

    strength: EdgeStrength = EdgeStrength.RECOMMENDED
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    rationale: Optional[str] = None

    # Provenance
    source_type: SourceType = SourceType.FACULTY_DEFINED
    confirmed: bool = True

    model_config = {"from_attributes": True, "frozen": True}

    @property
    def is_prerequisite(self) -> bool:
        return self.relationship == EdgeRelationship.PREREQUISITE_OF


class GraphMetadata(BaseModel):
    """Summary state of one graph instance."""

    extraction_method: ExtractionMethod = ExtractionMethod.AI_EXTRACTED
    node_count: int = 0
    edge_count: int = 0
    is_dag_valid: bool = True
    last_validated: Optional[datetime] = None

    model_config = {"from_attributes": True}
