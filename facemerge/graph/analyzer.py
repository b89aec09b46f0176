"""
Relationship graph analytics.

Every function works on a snapshot of persons and connections passed in by
the caller and never mutates it.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Set, Iterable

import networkx as nx

from ..core.person import Person
from ..core.connection import Connection
from ..utils.config import EngineConfig

logger = logging.getLogger(__name__)

OTHER_CATEGORY = 'other'


@dataclass
class ConnectionSummary:
    """Connection counts for one person."""
    person_id: str
    total: int = 0
    by_category: Dict[str, int] = field(default_factory=dict)
    by_type: Dict[str, int] = field(default_factory=dict)
    strong: int = 0
    weak: int = 0

    def __str__(self) -> str:
        categories = ', '.join(f"{k}: {v}" for k, v in self.by_category.items())
        return (
            f"Connections: {self.total} ({categories})\n"
            f"  Strong: {self.strong}  Weak: {self.weak}"
        )


@dataclass
class NetworkStats:
    """Whole-network statistics."""
    degrees: Dict[str, int]
    most_connected: List[str]
    isolated: List[str]
    average_degree: float
    density: float
    total_connections: int = 0
    person_count: int = 0

    def __str__(self) -> str:
        return (
            f"People: {self.person_count}  Connections: {self.total_connections}\n"
            f"  Average degree: {self.average_degree:.2f}\n"
            f"  Density: {self.density:.3f}\n"
            f"  Isolated: {len(self.isolated)}"
        )


def build_graph(connections: Iterable[Connection]) -> nx.Graph:
    """
    Build an undirected adjacency graph.

    Neighbors are stored in the order they are first seen in
    ``connections``. Self-loops are skipped.
    """
    graph = nx.Graph()
    for conn in connections:
        if conn.is_self_loop():
            continue
        graph.add_edge(conn.from_person_id, conn.to_person_id)
    return graph


class RelationshipGraphAnalyzer:
    """Computes per-person and network-wide relationship statistics."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

    def categorize(self, conn: Connection) -> List[str]:
        """
        Categories a connection falls into.

        A connection counts once per matching category; 'other' only when no
        category matched.
        """
        matched = [
            name for name, types in self.config.category_types.items()
            if any(t in types for t in conn.types)
        ]
        return matched or [OTHER_CATEGORY]

    def analyze_person(self, person_id: str, connections: List[Connection]) -> ConnectionSummary:
        """
        Summarize the connections incident to one person.

        Args:
            person_id: Person to summarize
            connections: Connection snapshot (any connections not involving
                the person are ignored)

        Returns:
            ConnectionSummary
        """
        summary = ConnectionSummary(
            person_id=person_id,
            by_category={name: 0 for name in self.config.category_types},
        )
        summary.by_category[OTHER_CATEGORY] = 0

        for conn in connections:
            if not conn.involves(person_id):
                continue

            summary.total += 1

            for category in self.categorize(conn):
                summary.by_category[category] = summary.by_category.get(category, 0) + 1

            for type_key in dict.fromkeys(conn.types):
                summary.by_type[type_key] = summary.by_type.get(type_key, 0) + 1

            bucket = conn.strength_bucket(
                strong_at=self.config.strong_strength,
                weak_below=self.config.weak_strength_below,
            )
            if bucket == 'strong':
                summary.strong += 1
            elif bucket == 'weak':
                summary.weak += 1

        return summary

    def analyze_network(self, persons: List[Person], connections: List[Connection]) -> NetworkStats:
        """
        Compute degree, isolation and density statistics.

        Degree counts connections in either direction. Density is the share
        of possible person pairs that are connected, capped at 1.

        Args:
            persons: Person snapshot
            connections: Connection snapshot

        Returns:
            NetworkStats
        """
        degrees = {p.id: 0 for p in persons}
        for conn in connections:
            for person_id in (conn.from_person_id, conn.to_person_id):
                if person_id in degrees:
                    degrees[person_id] += 1

        # sorted() is stable, so ties keep input order
        ranked = sorted(degrees, key=lambda pid: degrees[pid], reverse=True)
        most_connected = ranked[:self.config.top_connected_limit]

        isolated = [pid for pid, degree in degrees.items() if degree == 0]

        n = len(degrees)
        average_degree = sum(degrees.values()) / n if n else 0.0

        if n <= 1:
            density = 0.0
        else:
            possible = n * (n - 1) / 2
            density = min(1.0, len(connections) / possible)

        logger.debug(f"Network of {n} people: density {density:.3f}, {len(isolated)} isolated")

        return NetworkStats(
            degrees=degrees,
            most_connected=most_connected,
            isolated=isolated,
            average_degree=average_degree,
            density=density,
            total_connections=len(connections),
            person_count=n,
        )

    def find_path(
        self,
        from_id: str,
        to_id: str,
        connections: List[Connection],
        max_degrees: Optional[int] = None
    ) -> Optional[List[str]]:
        """
        Find the shortest path between two persons.

        Breadth-first search over the undirected graph, visiting neighbors
        in the order they first appear in ``connections``.

        Args:
            from_id: Start person
            to_id: End person
            connections: Connection snapshot
            max_degrees: Maximum number of hops (defaults to config)

        Returns:
            Ordered person ids including both ends, or None if there is no
            path within ``max_degrees`` hops
        """
        if from_id == to_id:
            return [from_id]

        if max_degrees is None:
            max_degrees = self.config.default_max_degrees

        graph = build_graph(connections)
        if from_id not in graph or to_id not in graph:
            return None

        visited: Set[str] = {from_id}
        queue = deque([[from_id]])

        while queue:
            path = queue.popleft()
            if len(path) - 1 >= max_degrees:
                continue

            for neighbor in graph.neighbors(path[-1]):
                if neighbor in visited:
                    continue
                if neighbor == to_id:
                    return path + [neighbor]
                visited.add(neighbor)
                queue.append(path + [neighbor])

        return None

    def connected_person_ids(self, person_id: str, connections: List[Connection]) -> List[str]:
        """Persons directly connected to ``person_id``, in connection order."""
        graph = build_graph(connections)
        if person_id not in graph:
            return []
        return list(graph.neighbors(person_id))

    def mutual_connections(self, a: str, b: str, connections: List[Connection]) -> List[str]:
        """Persons connected to both ``a`` and ``b``, in ``a``'s neighbor order."""
        graph = build_graph(connections)
        if a not in graph or b not in graph:
            return []
        b_neighbors = set(graph.neighbors(b))
        return [pid for pid in graph.neighbors(a) if pid in b_neighbors and pid != b]
