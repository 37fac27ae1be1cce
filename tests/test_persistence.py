"""
Unit tests for graph and session snapshot persistence.
"""

import json

import pytest

from curriculum_graph import (
    CurriculumSession,
    CycleWarning,
    EdgeRelationship,
    GraphStore,
    KnowledgeEdge,
    KnowledgeNode,
    deserialize_graph,
    load_snapshot,
    save_snapshot,
    serialize_graph,
)
from curriculum_graph.models import (
    ExternalSource,
    ExternalSourceKind,
    ExtractionMethod,
    LegacyPrerequisites,
    NodeType,
    PrerequisiteCourse,
)


def by_id(items):
    """Order-independent view of a node or edge collection."""
    return {item.id: item for item in items}


class TestGraphRoundTrip:

    def test_round_trip_is_set_equal(self, chain_graph):
        chain_graph.add_external_node(KnowledgeNode(
            id="ext-cs101",
            type=NodeType.EXTERNAL_CONCEPT,
            label="CS101",
            keywords=["variables"],
            external_source=ExternalSource(kind=ExternalSourceKind.COURSE, course_code="CS101", required=True),
        ))
        chain_graph.add_edge(KnowledgeEdge(
            id="e-assumed",
            source="ext-cs101",
            target="variables",
            relationship=EdgeRelationship.ASSUMED_BY,
            confidence=0.75,
        ))

        restored = deserialize_graph(serialize_graph(chain_graph))

        assert by_id(restored.nodes) == by_id(chain_graph.nodes)
        assert by_id(restored.edges) == by_id(chain_graph.edges)

    def test_serialized_form_is_json_safe_key_value_pairs(self, chain_graph):
        data = json.loads(json.dumps(serialize_graph(chain_graph)))

        assert [pair[0] for pair in data["nodes"]] == ["variables", "loops", "recursion"]
        assert data["edges"][0][1]["relationship"] == "prerequisite_of"
        assert data["metadata"] == {"extraction_method": "ai_extracted"}

    def test_derived_state_is_not_written(self, chain_graph):
        data = serialize_graph(chain_graph)

        assert set(data) == {"nodes", "edges", "metadata"}
        assert "is_dag_valid" not in data["metadata"]
        assert "node_count" not in data["metadata"]

    def test_indices_and_validity_are_recomputed_on_load(self):
        data = {
            "nodes": [["a", {"id": "a", "label": "A"}], ["b", {"id": "b", "label": "B"}]],
            "edges": [
                ["ab", {"id": "ab", "source": "a", "target": "b", "relationship": "prerequisite_of"}],
                ["ba", {"id": "ba", "source": "b", "target": "a", "relationship": "prerequisite_of"}],
            ],
            "metadata": {"extraction_method": "imported", "is_dag_valid": True, "edge_count": 40},
        }

        with pytest.warns(CycleWarning):
            store = deserialize_graph(data)

        assert store.is_dag_valid is False
        assert store.metadata.edge_count == 2
        assert store.metadata.extraction_method == ExtractionMethod.IMPORTED
        assert [e.id for e in store.get_incoming_edges("a")] == ["ba"]

    def test_dangling_edges_in_snapshot_are_pruned(self):
        data = {
            "nodes": [["a", {"id": "a", "label": "A"}]],
            "edges": [["ax", {"id": "ax", "source": "a", "target": "x"}]],
        }

        store = deserialize_graph(data)

        assert store.edges == []

    def test_key_wins_over_embedded_id(self):
        data = {"nodes": [["a", {"id": "stale", "label": "A"}]], "edges": []}

        store = deserialize_graph(data)

        assert store.node_ids == {"a"}

    def test_deserialize_into_existing_store_replaces_content(self, chain_graph):
        target = GraphStore()
        target.add_node(KnowledgeNode(id="old", label="Old"))

        deserialize_graph(serialize_graph(chain_graph), store=target)

        assert target.node_ids == chain_graph.node_ids

    def test_deserialize_into_empty_store_fills_that_store(self, chain_graph):
        target = GraphStore()

        returned = deserialize_graph(serialize_graph(chain_graph), store=target)

        assert returned is target
        assert target.node_ids == chain_graph.node_ids
        assert by_id(target.edges) == by_id(chain_graph.edges)


class TestSessionSnapshots:

    def test_save_and_load_session(self, tmp_path, chain_graph):
        session = CurriculumSession(session_id="s-42")
        session.graph.load(chain_graph.nodes, chain_graph.edges)
        session.prerequisites = LegacyPrerequisites(courses=[PrerequisiteCourse(code="CS101")])

        path = session.save(tmp_path / "snapshots" / "s-42.json")
        restored = CurriculumSession.load(path)

        assert restored.session_id == "s-42"
        assert by_id(restored.graph.nodes) == by_id(chain_graph.nodes)
        assert by_id(restored.graph.edges) == by_id(chain_graph.edges)
        assert restored.prerequisites.courses[0].code == "CS101"
        assert restored.prerequisites_migrated is False

    def test_migration_flag_survives_snapshot(self, tmp_path):
        session = CurriculumSession()
        session.graph.add_node(KnowledgeNode(id="intro", label="Intro", is_entry_point=True))
        session.prerequisites = LegacyPrerequisites(courses=[PrerequisiteCourse(code="CS101")])
        session.migrate_prerequisites()

        path = save_snapshot(session, tmp_path / "session.json")
        restored = load_snapshot(path)
        restored.prerequisites = LegacyPrerequisites(courses=[PrerequisiteCourse(code="CS999")])

        result = restored.migrate_prerequisites()

        assert restored.prerequisites_migrated is True
        assert result.migrated is False
        assert len(restored.graph.get_external_nodes()) == 1

    def test_reset_starts_a_new_session(self, session):
        session.graph.add_node(KnowledgeNode(id="intro", label="Intro"))
        session.prerequisites_migrated = True

        session.reset(session_id="session-next")

        assert session.session_id == "session-next"
        assert len(session.graph) == 0
        assert session.prerequisites_migrated is False
