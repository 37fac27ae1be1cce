"""
Prerequisite cycle detection.

Only prerequisite_of edges take part: the prerequisite subgraph must be
a DAG, every other relationship kind may form cycles freely.

Uses an explicit-stack depth-first search with two sets:
- visited: every node discovered so far
- on_stack: nodes on the current traversal path

Reaching an on_stack node is a back edge (a cycle). Reaching a node that
is only visited is a cross or forward edge and is fine.
"""

from itertools import chain
from typing import Iterable, Iterator

from ..models import EdgeRelationship, KnowledgeEdge


def build_prerequisite_adjacency(edges: Iterable[KnowledgeEdge]) -> dict[str, list[str]]:
    """Adjacency list restricted to prerequisite_of edges."""
    adjacency: dict[str, list[str]] = {}
    for edge in edges:
        if edge.relationship == EdgeRelationship.PREREQUISITE_OF:
            adjacency.setdefault(edge.source, []).append(edge.target)
    return adjacency


def find_cycle(
    adjacency: dict[str, list[str]],
    roots: Iterable[str] = ()
) -> list[str] | None:
    """
    Find one directed cycle in the adjacency list.

    Traversal starts from every undiscovered root and then from every
    adjacency source, so disconnected components are all covered.

    Returns the cycle as a closed path (first id repeated at the end),
    or None if the graph is acyclic.
    """
    visited: set[str] = set()
    on_stack: set[str] = set()

    for root in chain(roots, adjacency):
        if root in visited:
            continue

        visited.add(root)
        on_stack.add(root)
        path: list[str] = [root]
        frames: list[Iterator[str]] = [iter(adjacency.get(root, ()))]

        while frames:
            descended = False
            for neighbor in frames[-1]:
                if neighbor in on_stack:
                    start = path.index(neighbor)
                    return path[start:] + [neighbor]
                if neighbor not in visited:
                    visited.add(neighbor)
                    on_stack.add(neighbor)
                    path.append(neighbor)
                    frames.append(iter(adjacency.get(neighbor, ())))
                    descended = True
                    break

            if not descended:
                frames.pop()
                on_stack.discard(path.pop())

    return None


def find_prerequisite_cycle(
    edges: Iterable[KnowledgeEdge],
    node_ids: Iterable[str] = ()
) -> list[str] | None:
    """Find one cycle among the prerequisite_of edges, if any."""
    return find_cycle(build_prerequisite_adjacency(edges), node_ids)


def is_prerequisite_dag(
    edges: Iterable[KnowledgeEdge],
    node_ids: Iterable[str] = ()
) -> bool:
    """True iff the prerequisite_of subgraph has no directed cycle."""
    return find_prerequisite_cycle(edges, node_ids) is None
