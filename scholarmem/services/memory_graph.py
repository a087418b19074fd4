"""
Graph algorithms over memory entities and their relationships.

Relationships are directed but traversed in both directions.
"""

from collections import deque
from typing import Dict, List, Optional, Set, Tuple

from ..models.core import MemoryEdge, MemoryGraph, MemoryNode
from ..utils.config import MemoryConfig
from ..utils.logging_config import get_logger
from ..utils.vector_math import cosine_similarity
from .memory_store import MemoryStore

logger = get_logger(__name__)


class MemoryGraphEngine:
    """Traversal, path finding, clustering and centrality over one owner's memories."""

    def __init__(self, memory_store: MemoryStore, config: MemoryConfig):
        self.memory_store = memory_store
        self.config = config

    def get_related_memories(self, owner_id: str, seed_id: str, depth: int = 1) -> MemoryGraph:
        """
        Breadth-first neighbourhood of a memory.

        Args:
            owner_id: Owner of the memories
            seed_id: Starting entity
            depth: Maximum number of hops

        Returns:
            All nodes within ``depth`` hops and every edge traversed while
            expanding them. Empty graph when the seed doesn't exist.
        """
        seed = self.memory_store.get_entity(owner_id, seed_id)
        if seed is None:
            logger.debug(f'Memory {seed_id} not found for owner {owner_id}')
            return MemoryGraph()

        nodes: Dict[str, MemoryNode] = {seed.id: MemoryNode.from_entity(seed)}
        edges: Dict[str, MemoryEdge] = {}
        visited: Set[str] = {seed.id}
        missing: Set[str] = set()
        queue = deque([(seed.id, 0)])

        while queue:
            current_id, distance = queue.popleft()
            if distance >= depth:
                continue

            for relationship in self.memory_store.incident_relationships(owner_id, current_id):
                neighbor_id = relationship.to_id if relationship.from_id == current_id else relationship.from_id
                if neighbor_id in missing:
                    continue

                if neighbor_id not in visited:
                    neighbor = self.memory_store.get_entity(owner_id, neighbor_id)
                    if neighbor is None:
                        missing.add(neighbor_id)
                        continue
                    visited.add(neighbor_id)
                    nodes[neighbor_id] = MemoryNode.from_entity(neighbor)
                    queue.append((neighbor_id, distance + 1))

                edges.setdefault(relationship.id, MemoryEdge.from_relationship(relationship))

        logger.debug(f'Related memories of {seed_id} at depth {depth}: {len(nodes)} nodes, {len(edges)} edges')
        return MemoryGraph(nodes=list(nodes.values()), edges=list(edges.values()))

    def find_path(self, owner_id: str, from_id: str, to_id: str) -> List[MemoryEdge]:
        """
        Shortest path between two memories, by number of edges.

        Returns:
            Edges from ``from_id`` to ``to_id``; empty if unreachable or the ids are equal
        """
        if from_id == to_id:
            return []

        parents: Dict[str, Tuple[Optional[str], Optional[MemoryEdge]]] = {from_id: (None, None)}
        queue = deque([from_id])

        while queue:
            current_id = queue.popleft()
            for relationship in self.memory_store.incident_relationships(owner_id, current_id):
                neighbor_id = relationship.to_id if relationship.from_id == current_id else relationship.from_id
                if neighbor_id in parents:
                    continue
                parents[neighbor_id] = (current_id, MemoryEdge.from_relationship(relationship))

                if neighbor_id == to_id:
                    path = []
                    node_id = to_id
                    while parents[node_id][0] is not None:
                        previous_id, edge = parents[node_id]
                        path.append(edge)
                        node_id = previous_id
                    return list(reversed(path))

                queue.append(neighbor_id)

        return []

    def cluster_by_similarity(self, owner_id: str, threshold: float = 0.8) -> Dict[str, List[str]]:
        """
        Greedy single-pass clustering in stored order.

        Each unclustered entity seeds a cluster and pulls in every later
        unclustered entity whose similarity to the seed is at least ``threshold``.

        Returns:
            Mapping of seed id to member ids (seed first)
        """
        cap = self.config.cluster_entity_cap
        parse = self.memory_store.embeddings.parse_stored
        entities = []
        for entity in self.memory_store.list_entities(owner_id, limit=cap + 1):
            entity.embedding = parse(entity.embedding)
            if entity.embedding:
                entities.append(entity)
        if len(entities) > cap:
            logger.warning(f'Clustering truncated to the first {cap} memories for owner {owner_id}')
            entities = entities[:cap]

        clusters: Dict[str, List[str]] = {}
        clustered: Set[str] = set()

        for index, seed in enumerate(entities):
            if seed.id in clustered:
                continue

            members = [seed.id]
            clustered.add(seed.id)
            for other in entities[index + 1:]:
                if other.id in clustered:
                    continue
                if cosine_similarity(seed.embedding, other.embedding) >= threshold:
                    members.append(other.id)
                    clustered.add(other.id)

            clusters[seed.id] = members

        logger.debug(f'Clustered {len(entities)} memories into {len(clusters)} clusters')
        return clusters

    def get_central_memories(self, owner_id: str, limit: int = 10) -> List[MemoryNode]:
        """Memories with the most relationships."""
        return [MemoryNode.from_entity(e) for e in self.memory_store.most_connected(owner_id, limit)]

