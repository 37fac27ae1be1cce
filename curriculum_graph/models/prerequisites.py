"""
Legacy flat prerequisite records.

Before prerequisites lived in the graph, a course carried three flat
lists: prerequisite courses, skills and background knowledge areas.
These models describe that shape so it can be migrated into external
graph nodes and exported back out again.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from .base import ProficiencyLevel


class PrerequisiteCourse(BaseModel):
    """A course students are expected to have completed."""

    code: str
    title: Optional[str] = None
    required: bool = True
    concepts_assumed: List[str] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class PrerequisiteSkill(BaseModel):
    """A skill students are expected to bring."""

    skill: str
    proficiency_level: Optional[ProficiencyLevel] = None
    required: bool = True

    model_config = {"from_attributes": True}


class PrerequisiteKnowledge(BaseModel):
    """A background knowledge area students are assumed to be familiar with."""

    area: str
    description: Optional[str] = None
    required: bool = True

    model_config = {"from_attributes": True}


class LegacyPrerequisites(BaseModel):
    """The three flat prerequisite lists of a course."""

    courses: List[PrerequisiteCourse] = Field(default_factory=list)
    skills: List[PrerequisiteSkill] = Field(default_factory=list)
    knowledge: List[PrerequisiteKnowledge] = Field(default_factory=list)

    model_config = {"from_attributes": True}

    def is_empty(self) -> bool:
        return not (self.courses or self.skills or self.knowledge)

    def record_count(self) -> int:
        return len(self.courses) + len(self.skills) + len(self.knowledge)
