"""
Prerequisite Migrator - moves legacy flat prerequisite lists into the graph.

Each legacy record (course, skill or knowledge area) becomes one external
node linked to the course's entry node by an assumed_by edge. Migration
runs once per session: the session's prerequisites_migrated flag guards
against re-running, and the legacy lists are cleared afterwards so the
graph is the only source of truth.

The reverse view, export_as_prerequisites, rebuilds flat lists from the
graph's external nodes for export layers that still expect them.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, Optional

from ..models import (
    EdgeRelationship,
    EdgeStrength,
    ExternalSource,
    ExternalSourceKind,
    KnowledgeEdge,
    KnowledgeNode,
    LegacyPrerequisites,
    NodeType,
    PrerequisiteCourse,
    PrerequisiteKnowledge,
    PrerequisiteSkill,
    SourceType,
)
from ..storage.graph import GraphStore, generate_edge_id, generate_node_id

if TYPE_CHECKING:
    from ..session import CurriculumSession


logger = logging.getLogger(__name__)

_DIGITS = re.compile(r"\d+")


def is_first_module(module_id: Optional[str]) -> bool:
    """
    Heuristic for ids naming the first module: 'module-1', 'mod_01', 'm1',
    'course-2024-module-1'. The last number in the id must equal 1, so
    'module-10' and 'module-21' do not match.
    """
    if not module_id:
        return False
    numbers = _DIGITS.findall(module_id)
    return bool(numbers) and int(numbers[-1]) == 1


@dataclass
class MigrationResult:
    """Outcome of one migration attempt."""
    migrated: bool
    created_node_ids: list[str] = field(default_factory=list)
    created_edge_ids: list[str] = field(default_factory=list)
    entry_node_id: Optional[str] = None
    skipped_reason: Optional[str] = None


class PrerequisiteMigrator:
    """One-time, idempotent transform of legacy prerequisites into external nodes."""

    def migrate(self, session: "CurriculumSession") -> MigrationResult:
        if session.prerequisites_migrated:
            logger.debug(f"Session {session.session_id}: prerequisites already migrated")
            return MigrationResult(migrated=False, skipped_reason="already_migrated")

        legacy = session.prerequisites
        if legacy.is_empty():
            return MigrationResult(migrated=False, skipped_reason="no_legacy_data")

        graph = session.graph
        if graph.get_external_nodes():
            # Graph already owns the prerequisites; migrating again would duplicate them
            session.prerequisites = LegacyPrerequisites()
            session.prerequisites_migrated = True
            logger.info(f"Session {session.session_id}: external nodes present, skipping migration")
            return MigrationResult(migrated=False, skipped_reason="external_nodes_present")

        entry_node, module_one_nodes = self.choose_entry_node(graph.nodes)
        if entry_node is None:
            logger.warning("No entry node found; external nodes will be created without edges")

        reserved = graph.node_ids | graph.edge_ids
        external_nodes = self.build_external_nodes(legacy, reserved)

        edges: list[KnowledgeEdge] = []
        if entry_node is not None:
            for node in external_nodes:
                edge = self._assumed_by_edge(node, entry_node.id, reserved)
                reserved.add(edge.id)
                edges.append(edge)

        # Fallback entry nodes from module 1 become explicit entry points
        promoted = [
            node.model_copy(update={"is_entry_point": True})
            for node in module_one_nodes
        ]

        graph.apply(add_nodes=[*promoted, *external_nodes], add_edges=edges)

        session.prerequisites = LegacyPrerequisites()
        session.prerequisites_migrated = True

        logger.info(
            f"Migrated {legacy.record_count()} legacy prerequisites into "
            f"{len(external_nodes)} external nodes and {len(edges)} edges "
            f"(entry node: {entry_node.id if entry_node else None})"
        )
        return MigrationResult(
            migrated=True,
            created_node_ids=[n.id for n in external_nodes],
            created_edge_ids=[e.id for e in edges],
            entry_node_id=entry_node.id if entry_node else None,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Entry node selection
    # ─────────────────────────────────────────────────────────────────────────

    def choose_entry_node(
        self,
        nodes: Iterable[KnowledgeNode],
    ) -> tuple[Optional[KnowledgeNode], list[KnowledgeNode]]:
        """
        Pick the node external prerequisites attach to.

        The first internal node flagged is_entry_point wins. Otherwise the
        first node of module 1 is used, and all module 1 nodes are returned
        so the caller can mark them as entry points.
        """
        internal = [n for n in nodes if not n.is_external]

        for node in internal:
            if node.is_entry_point:
                return node, []

        module_one = [n for n in internal if is_first_module(n.parent_module_id)]
        if module_one:
            return module_one[0], module_one
        return None, []

    # ─────────────────────────────────────────────────────────────────────────
    # Node construction
    # ─────────────────────────────────────────────────────────────────────────

    def build_external_nodes(
        self,
        legacy: LegacyPrerequisites,
        reserved: set[str],
    ) -> list[KnowledgeNode]:
        nodes: list[KnowledgeNode] = []
        records = (
            [(self._course_node, c) for c in legacy.courses]
            + [(self._skill_node, s) for s in legacy.skills]
            + [(self._knowledge_node, k) for k in legacy.knowledge]
        )
        for build, record in records:
            node = build(record, reserved)
            reserved.add(node.id)
            nodes.append(node)
        return nodes

    def _course_node(self, course: PrerequisiteCourse, reserved: set[str]) -> KnowledgeNode:
        return KnowledgeNode(
            id=generate_node_id(NodeType.EXTERNAL_CONCEPT.value, reserved),
            type=NodeType.EXTERNAL_CONCEPT,
            label=f"{course.code}: {course.title}" if course.title else course.code,
            description=course.title or f"Prerequisite course {course.code}",
            keywords=list(course.concepts_assumed),
            external_source=ExternalSource(
                kind=ExternalSourceKind.COURSE,
                course_code=course.code,
                course_title=course.title,
                required=course.required,
            ),
            source=SourceType.FACULTY_DEFINED,
            confirmed=True,
        )

    def _skill_node(self, skill: PrerequisiteSkill, reserved: set[str]) -> KnowledgeNode:
        description = None
        if skill.proficiency_level:
            description = f"Required proficiency: {skill.proficiency_level.value}"
        return KnowledgeNode(
            id=generate_node_id(NodeType.EXTERNAL_SKILL.value, reserved),
            type=NodeType.EXTERNAL_SKILL,
            label=skill.skill,
            description=description,
            external_source=ExternalSource(
                kind=ExternalSourceKind.SKILL,
                proficiency_level=skill.proficiency_level,
                required=skill.required,
            ),
            source=SourceType.FACULTY_DEFINED,
            confirmed=True,
        )

    def _knowledge_node(self, knowledge: PrerequisiteKnowledge, reserved: set[str]) -> KnowledgeNode:
        return KnowledgeNode(
            id=generate_node_id(NodeType.EXTERNAL_KNOWLEDGE.value, reserved),
            type=NodeType.EXTERNAL_KNOWLEDGE,
            label=knowledge.area,
            description=knowledge.description,
            external_source=ExternalSource(
                kind=ExternalSourceKind.KNOWLEDGE_AREA,
                required=knowledge.required,
            ),
            source=SourceType.FACULTY_DEFINED,
            confirmed=True,
        )

    def _assumed_by_edge(
        self,
        node: KnowledgeNode,
        entry_node_id: str,
        reserved: set[str],
    ) -> KnowledgeEdge:
        required = bool(node.external_source and node.external_source.required)
        return KnowledgeEdge(
            id=generate_edge_id(reserved),
            source=node.id,
            target=entry_node_id,
            relationship=EdgeRelationship.ASSUMED_BY,
            strength=EdgeStrength.REQUIRED if required else EdgeStrength.RECOMMENDED,
            confidence=1.0,
            source_type=SourceType.FACULTY_DEFINED,
            confirmed=True,
        )


def export_as_prerequisites(store: GraphStore) -> LegacyPrerequisites:
    """
    Rebuild flat prerequisite lists from the graph's external nodes.

    External concept nodes are grouped by course code; nodes without a
    matching external_source are left out.
    """
    courses: dict[str, PrerequisiteCourse] = {}
    skills: list[PrerequisiteSkill] = []
    knowledge: list[PrerequisiteKnowledge] = []

    for node in store.get_external_nodes():
        origin = node.external_source
        if origin is None:
            continue

        if node.type == NodeType.EXTERNAL_CONCEPT and origin.kind == ExternalSourceKind.COURSE:
            code = origin.course_code or "UNKNOWN"
            assumed = list(node.keywords)
            existing = courses.get(code)
            if existing is None:
                courses[code] = PrerequisiteCourse(
                    code=code,
                    title=origin.course_title,
                    required=origin.required,
                    concepts_assumed=assumed,
                )
            else:
                existing.concepts_assumed.extend(assumed or [node.label])
        elif node.type == NodeType.EXTERNAL_SKILL and origin.kind == ExternalSourceKind.SKILL:
            skills.append(PrerequisiteSkill(
                skill=node.label,
                proficiency_level=origin.proficiency_level,
                required=origin.required,
            ))
        elif node.type == NodeType.EXTERNAL_KNOWLEDGE and origin.kind == ExternalSourceKind.KNOWLEDGE_AREA:
            knowledge.append(PrerequisiteKnowledge(
                area=node.label,
                description=node.description,
                required=origin.required,
            ))

    return LegacyPrerequisites(courses=list(courses.values()), skills=skills, knowledge=knowledge)
