"""
Pytest configuration for curriculum graph tests.

Provides shared fixtures for unit tests and BDD step definitions.
"""

import pytest

from curriculum_graph import (
    CurriculumSession,
    GraphStore,
    KnowledgeEdge,
    KnowledgeNode,
    EdgeRelationship,
)
from curriculum_graph.config import Settings


@pytest.fixture
def graph_store():
    """Fresh in-memory graph for each test."""
    return GraphStore()


@pytest.fixture
def session():
    """Fresh curriculum session for each test."""
    return CurriculumSession(session_id="session-test")


@pytest.fixture
def fast_settings():
    """Pipeline settings with no backoff delay."""
    return Settings(stage_timeout=1.0, max_attempts=3, backoff_min=0.0, backoff_max=0.0)


@pytest.fixture
def chain_graph(graph_store):
    """
    Three concepts in module-1 and module-2 linked by prerequisites:
    variables -> loops -> recursion
    """
    graph_store.add_node(KnowledgeNode(id="variables", label="Variables", parent_module_id="module-1"))
    graph_store.add_node(KnowledgeNode(id="loops", label="Loops", parent_module_id="module-1"))
    graph_store.add_node(KnowledgeNode(id="recursion", label="Recursion", parent_module_id="module-2"))

    graph_store.add_edge(KnowledgeEdge(
        id="e-variables-loops",
        source="variables",
        target="loops",
        relationship=EdgeRelationship.PREREQUISITE_OF,
    ))
    graph_store.add_edge(KnowledgeEdge(
        id="e-loops-recursion",
        source="loops",
        target="recursion",
        relationship=EdgeRelationship.PREREQUISITE_OF,
    ))
    return graph_store
