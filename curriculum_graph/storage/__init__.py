"""
Storage for the curriculum graph.

Provides the in-memory GraphStore, prerequisite cycle detection
and snapshot persistence.
"""

from .dag import find_prerequisite_cycle, is_prerequisite_dag
from .graph import GraphStore, GraphSnapshot, generate_node_id, generate_edge_id
from .persistence import (
    serialize_graph,
    deserialize_graph,
    save_snapshot,
    load_snapshot,
)

__all__ = [
    "GraphStore",
    "GraphSnapshot",
    "generate_node_id",
    "generate_edge_id",
    "find_prerequisite_cycle",
    "is_prerequisite_dag",
    "serialize_graph",
    "deserialize_graph",
    "save_snapshot",
    "load_snapshot",
]
