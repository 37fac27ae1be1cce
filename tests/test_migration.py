"""
Unit tests for the Prerequisite Migrator.
"""

import pytest

from curriculum_graph import CurriculumSession, KnowledgeNode
from curriculum_graph.models import (
    EdgeRelationship,
    EdgeStrength,
    ExternalSource,
    ExternalSourceKind,
    LegacyPrerequisites,
    NodeType,
    PrerequisiteCourse,
    PrerequisiteKnowledge,
    PrerequisiteSkill,
    ProficiencyLevel,
    SourceType,
)
from curriculum_graph.services.migration import (
    PrerequisiteMigrator,
    export_as_prerequisites,
    is_first_module,
)


def legacy_fixture():
    return LegacyPrerequisites(
        courses=[PrerequisiteCourse(code="CS101", title="Intro to Programming",
                                    required=True, concepts_assumed=["variables", "loops"])],
        skills=[PrerequisiteSkill(skill="Algebra", proficiency_level=ProficiencyLevel.BASIC, required=False)],
        knowledge=[PrerequisiteKnowledge(area="Discrete maths", description="Sets and logic", required=True)],
    )


class TestModuleOneHeuristic:

    @pytest.mark.parametrize("module_id", ["module-1", "mod_01", "m1", "Module 1", "course-2024-module-1"])
    def test_matches_first_module(self, module_id):
        assert is_first_module(module_id) is True

    @pytest.mark.parametrize("module_id", ["module-10", "module-21", "module-2", "intro", "", None])
    def test_rejects_other_modules(self, module_id):
        assert is_first_module(module_id) is False


class TestMigration:

    def setup_method(self):
        self.session = CurriculumSession(session_id="s-1")
        self.session.graph.add_node(KnowledgeNode(id="intro", label="Intro", is_entry_point=True))
        self.session.graph.add_node(KnowledgeNode(id="later", label="Later", parent_module_id="module-1"))

    def test_single_course_creates_one_node_and_edge(self):
        self.session.prerequisites = LegacyPrerequisites(
            courses=[PrerequisiteCourse(code="CS101", required=True)]
        )

        result = self.session.migrate_prerequisites()

        externals = self.session.graph.get_external_nodes()
        assert result.migrated is True
        assert len(externals) == 1
        assert externals[0].type == NodeType.EXTERNAL_CONCEPT
        assert externals[0].external_source.course_code == "CS101"

        edges = self.session.graph.get_incoming_edges("intro")
        assert len(edges) == 1
        assert edges[0].source == externals[0].id
        assert edges[0].relationship == EdgeRelationship.ASSUMED_BY
        assert edges[0].strength == EdgeStrength.REQUIRED
        assert result.entry_node_id == "intro"

    def test_records_become_typed_external_nodes(self):
        self.session.prerequisites = legacy_fixture()

        result = self.session.migrate_prerequisites()

        nodes = {n.type: n for n in self.session.graph.get_external_nodes()}
        assert set(nodes) == {NodeType.EXTERNAL_CONCEPT, NodeType.EXTERNAL_SKILL, NodeType.EXTERNAL_KNOWLEDGE}
        assert nodes[NodeType.EXTERNAL_CONCEPT].keywords == ["variables", "loops"]
        assert nodes[NodeType.EXTERNAL_SKILL].external_source.proficiency_level == ProficiencyLevel.BASIC
        assert nodes[NodeType.EXTERNAL_KNOWLEDGE].description == "Sets and logic"
        assert all(n.source == SourceType.FACULTY_DEFINED and n.confirmed for n in nodes.values())

        strengths = {
            self.session.graph.get_node(e.source).type: e.strength
            for e in self.session.graph.get_incoming_edges("intro")
        }
        assert strengths[NodeType.EXTERNAL_SKILL] == EdgeStrength.RECOMMENDED
        assert strengths[NodeType.EXTERNAL_KNOWLEDGE] == EdgeStrength.REQUIRED
        assert len(result.created_edge_ids) == 3

    def test_legacy_lists_cleared_and_flag_set(self):
        self.session.prerequisites = legacy_fixture()

        self.session.migrate_prerequisites()

        assert self.session.prerequisites.is_empty()
        assert self.session.prerequisites_migrated is True

    def test_second_run_is_a_no_op(self):
        self.session.prerequisites = legacy_fixture()
        self.session.migrate_prerequisites()
        nodes_after_first = dict(self.session.graph.snapshot.nodes)
        edges_after_first = dict(self.session.graph.snapshot.edges)

        result = self.session.migrate_prerequisites()

        assert result.migrated is False
        assert result.skipped_reason == "already_migrated"
        assert dict(self.session.graph.snapshot.nodes) == nodes_after_first
        assert dict(self.session.graph.snapshot.edges) == edges_after_first

    def test_existing_external_nodes_block_migration(self):
        self.session.graph.add_external_node(KnowledgeNode(
            id="ext-math",
            type=NodeType.EXTERNAL_KNOWLEDGE,
            label="Math",
            external_source=ExternalSource(kind=ExternalSourceKind.KNOWLEDGE_AREA),
        ))
        self.session.prerequisites = legacy_fixture()

        result = self.session.migrate_prerequisites()

        assert result.skipped_reason == "external_nodes_present"
        assert len(self.session.graph.get_external_nodes()) == 1
        assert self.session.prerequisites_migrated is True
        assert self.session.prerequisites.is_empty()

    def test_no_legacy_data_is_a_no_op(self):
        result = self.session.migrate_prerequisites()

        assert result.skipped_reason == "no_legacy_data"
        assert self.session.prerequisites_migrated is False
        assert len(self.session.graph) == 2


class TestEntryNodeSelection:

    def test_falls_back_to_first_module_and_marks_entry_points(self):
        session = CurriculumSession()
        session.graph.add_node(KnowledgeNode(id="ten", label="Ten", parent_module_id="module-10"))
        session.graph.add_node(KnowledgeNode(id="one-a", label="One A", parent_module_id="module-1"))
        session.graph.add_node(KnowledgeNode(id="one-b", label="One B", parent_module_id="module-1"))
        session.prerequisites = LegacyPrerequisites(skills=[PrerequisiteSkill(skill="Typing")])

        result = session.migrate_prerequisites()

        assert result.entry_node_id == "one-a"
        assert {n.id for n in session.graph.get_entry_points()} == {"one-a", "one-b"}
        assert session.graph.get_node("ten").is_entry_point is False

    def test_without_entry_node_no_edges_are_created(self):
        session = CurriculumSession()
        session.graph.add_node(KnowledgeNode(id="x", label="X", parent_module_id="module-3"))
        session.prerequisites = LegacyPrerequisites(courses=[PrerequisiteCourse(code="CS101")])

        result = session.migrate_prerequisites()

        assert result.migrated is True
        assert result.entry_node_id is None
        assert result.created_edge_ids == []
        assert len(session.graph.get_external_nodes()) == 1

    def test_external_nodes_are_never_entry_nodes(self):
        migrator = PrerequisiteMigrator()
        external = KnowledgeNode(
            id="ext", type=NodeType.EXTERNAL_SKILL, label="Typing", is_entry_point=True,
        )
        internal = KnowledgeNode(id="intro", label="Intro", parent_module_id="m1")

        entry, promoted = migrator.choose_entry_node([external, internal])

        assert entry.id == "intro"
        assert [n.id for n in promoted] == ["intro"]


class TestExport:

    def test_export_rebuilds_legacy_records(self, session):
        session.graph.add_node(KnowledgeNode(id="intro", label="Intro", is_entry_point=True))
        session.prerequisites = legacy_fixture()
        session.migrate_prerequisites()

        exported = export_as_prerequisites(session.graph)

        assert exported == legacy_fixture()

    def test_export_groups_course_nodes_by_code(self, graph_store):
        for node_id, keyword in (("a", "recursion"), ("b", "pointers")):
            graph_store.add_external_node(KnowledgeNode(
                id=node_id,
                type=NodeType.EXTERNAL_CONCEPT,
                label=keyword.title(),
                keywords=[keyword],
                external_source=ExternalSource(kind=ExternalSourceKind.COURSE, course_code="CS102", required=True),
            ))

        exported = export_as_prerequisites(graph_store)

        assert len(exported.courses) == 1
        assert exported.courses[0].concepts_assumed == ["recursion", "pointers"]
        assert exported.skills == [] and exported.knowledge == []
