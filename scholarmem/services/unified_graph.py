"""
Unified graph over documents, notes and memories.

Node keys carry their type as a prefix (``doc:``, ``note:``, ``mem:``) so that
ids from different collections never collide.
"""

from collections import deque
from typing import Any, Dict, List, Optional, Set, Tuple

from ..models.core import (DOCUMENT_LINKS, DOCUMENTS, ENTITIES, NOTE_RELATIONSHIPS, NOTES, NoteRelationship, TimelineItem,
                           UnifiedEdge, UnifiedGraph, UnifiedNode)
from ..utils.config import GraphConfig, MemoryConfig
from ..utils.errors import ServiceUnavailable
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import to_datetime
from ..utils.vector_math import find_similar, round_score
from .embedding_gateway import EmbeddingGateway
from .memory_graph import MemoryGraphEngine
from .memory_store import MemoryStore
from .relationship_detector import embed_missing

logger = get_logger(__name__)

PREFIXES = {'document': 'doc', 'note': 'note', 'memory': 'mem'}
VECTOR_FIELDS = ('embedding', 'description_embedding')


def node_key(node_type: str, raw_id: str) -> str:
    return f'{PREFIXES[node_type]}:{raw_id}'


def _public(record: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in record.items() if k not in VECTOR_FIELDS}


class UnifiedGraphEngine(MemoryGraphEngine):
    """Memory graph engine extended across documents and notes."""

    def __init__(self, store, memory_store: MemoryStore, embeddings: EmbeddingGateway, memory_config: MemoryConfig,
                 graph_config: GraphConfig):
        super().__init__(memory_store, memory_config)
        self.store = store
        self.embeddings = embeddings
        self.graph_config = graph_config

    # ------------------------------------------------------------------
    # Node resolution
    # ------------------------------------------------------------------

    def _document_node(self, owner_id: str, document_id: str) -> Optional[UnifiedNode]:
        found = self.store.find(DOCUMENTS, owner_id, filters={'document_id': document_id}, limit=1)
        if not found:
            return None
        record = found[0]
        return UnifiedNode(id=node_key('document', document_id),
                           node_type='document',
                           label=record.get('title') or record.get('description') or '',
                           data=_public(record))

    def _note_node(self, owner_id: str, note_id: str) -> Optional[UnifiedNode]:
        record = self.store.get(NOTES, note_id, owner_id)
        if record is None:
            return None
        return UnifiedNode(id=node_key('note', note_id), node_type='note', label=record.get('content', ''), data=_public(record))

    def _memory_node(self, owner_id: str, memory_id: str) -> Optional[UnifiedNode]:
        record = self.store.get(ENTITIES, memory_id, owner_id)
        if record is None:
            return None
        return UnifiedNode(id=node_key('memory', memory_id), node_type='memory', label=record.get('text', ''), data=_public(record))

    def _resolve(self, owner_id: str, node_type: str, raw_id: str) -> Optional[UnifiedNode]:
        resolvers = {'document': self._document_node, 'note': self._note_node, 'memory': self._memory_node}
        return resolvers[node_type](owner_id, raw_id)

    # ------------------------------------------------------------------
    # Document-centric graph
    # ------------------------------------------------------------------

    def get_document_centric_graph(self, owner_id: str, document_id: str, max_depth: int = 2) -> UnifiedGraph:
        """
        Breadth-first graph around a document.

        Documents expand to linked documents, their notes and the memories
        tied to them; notes expand along their note relationships; memories
        along memory relationships. Nodes at ``max_depth`` are included but
        not expanded.

        Returns:
            UnifiedGraph; empty when the document has no description
        """
        root = self._document_node(owner_id, document_id)
        if root is None:
            logger.debug(f'Document {document_id} has no description for owner {owner_id}')
            return UnifiedGraph()

        nodes: Dict[str, UnifiedNode] = {root.id: root}
        edges: List[UnifiedEdge] = []
        edge_keys: Set[Tuple[str, str, str]] = set()
        processed: Set[str] = set()
        queue = deque([(root.id, 'document', document_id, 0)])

        def link(source: str, node: UnifiedNode, relationship_type: str, strength: Optional[float], node_type: str, raw_id: str,
                 depth: int) -> None:
            if node.id not in nodes:
                nodes[node.id] = node
                queue.append((node.id, node_type, raw_id, depth + 1))
            key = (source, node.id, relationship_type)
            if key not in edge_keys:
                edge_keys.add(key)
                edges.append(UnifiedEdge(source=source, target=node.id, relationship_type=relationship_type, strength=strength))

        while queue:
            key, node_type, raw_id, depth = queue.popleft()
            if key in processed:
                continue
            processed.add(key)
            if depth >= max_depth:
                continue

            if node_type == 'document':
                self._expand_document(owner_id, key, raw_id, depth, link)
            elif node_type == 'note':
                self._expand_note(owner_id, key, raw_id, depth, link)
            else:
                self._expand_memory(owner_id, key, raw_id, depth, link)

        logger.debug(f'Document graph for {document_id}: {len(nodes)} nodes, {len(edges)} edges')
        return UnifiedGraph(nodes=list(nodes.values()), edges=edges)

    def _expand_document(self, owner_id: str, key: str, document_id: str, depth: int, link) -> None:
        for record in self.store.find(DOCUMENT_LINKS, owner_id, filters={'source_document_id': document_id}):
            related_id = record.get('related_document_id')
            node = self._document_node(owner_id, related_id) if related_id else None
            if node is None:
                continue
            relevance = record.get('relevance_percentage')
            link(key, node, record.get('relationship_description') or 'related',
                 round_score(relevance / 100) if relevance is not None else None, 'document', related_id, depth)

        limit = self.graph_config.expansion_limit
        for record in self.store.find(NOTES, owner_id, filters={'document_id': document_id}, sort=[('created_at', 'asc')], limit=limit):
            node = UnifiedNode(id=node_key('note', record['id']), node_type='note', label=record.get('content', ''), data=_public(record))
            link(key, node, 'contains', None, 'note', record['id'], depth)

        for record in self.store.find(ENTITIES, owner_id, filters={'document_id': document_id}, sort=[('created_at', 'asc')], limit=limit):
            node = UnifiedNode(id=node_key('memory', record['id']), node_type='memory', label=record.get('text', ''), data=_public(record))
            link(key, node, 'extracted_from', None, 'memory', record['id'], depth)

    def _expand_note(self, owner_id: str, key: str, note_id: str, depth: int, link) -> None:
        for record in self.store.find(NOTE_RELATIONSHIPS, owner_id, filters={'note_id': note_id}, sort=[('created_at', 'asc')]):
            relationship = NoteRelationship.from_document(record)
            node = self._resolve(owner_id, relationship.related_type, relationship.related_id)
            if node is None:
                continue
            link(key, node, relationship.relationship_type, relationship.similarity_score, relationship.related_type,
                 relationship.related_id, depth)

    def _expand_memory(self, owner_id: str, key: str, memory_id: str, depth: int, link) -> None:
        for relationship in self.memory_store.incident_relationships(owner_id, memory_id):
            neighbor_id = relationship.to_id if relationship.from_id == memory_id else relationship.from_id
            node = self._memory_node(owner_id, neighbor_id)
            if node is None:
                continue
            link(key, node, relationship.relationship_type, relationship.strength, 'memory', neighbor_id, depth)

    # ------------------------------------------------------------------
    # Search and timeline
    # ------------------------------------------------------------------

    def search_across_graphs(self, owner_id: str, query: str, limit: int = 20) -> List[UnifiedNode]:
        """
        Similarity search over documents, memories and notes at once.

        Returns:
            Nodes with ``similarity`` set, best first; empty if the query can't be embedded
        """
        try:
            query_vector = self.embeddings.embed(query)
        except ServiceUnavailable as e:
            logger.warning(f'Unified search skipped, query could not be embedded: {e}')
            return []

        config = self.graph_config
        results: List[UnifiedNode] = []

        documents = self.store.find(DOCUMENTS,
                                    owner_id,
                                    exists=['description_embedding'],
                                    sort=[('created_at', 'desc')],
                                    limit=config.search_document_limit)
        records = {d['document_id']: d for d in documents if d.get('document_id')}
        population = [(d['document_id'], self.embeddings.parse_stored(d['description_embedding'])) for d in records.values()]
        for raw_id, similarity in self._score(query_vector, population):
            record = records[raw_id]
            results.append(
                UnifiedNode(id=node_key('document', raw_id),
                            node_type='document',
                            label=record.get('title') or record.get('description') or '',
                            data=_public(record),
                            similarity=similarity))

        memories = self.store.find(ENTITIES, owner_id, exists=['embedding'], sort=[('created_at', 'desc')], limit=config.search_memory_limit)
        records = {m['id']: m for m in memories}
        population = [(m['id'], self.embeddings.parse_stored(m['embedding'])) for m in memories]
        for raw_id, similarity in self._score(query_vector, population):
            record = records[raw_id]
            results.append(
                UnifiedNode(id=node_key('memory', raw_id),
                            node_type='memory',
                            label=record.get('text', ''),
                            data=_public(record),
                            similarity=similarity))

        notes = self.store.find(NOTES, owner_id, sort=[('created_at', 'desc')], limit=config.search_note_limit)
        records = {n['id']: n for n in notes}
        for raw_id, similarity in self._score(query_vector, embed_missing(self.embeddings, notes, 'embedding', 'content')):
            record = records[raw_id]
            results.append(
                UnifiedNode(id=node_key('note', raw_id),
                            node_type='note',
                            label=record.get('content', ''),
                            data=_public(record),
                            similarity=similarity))

        results.sort(key=lambda node: node.similarity, reverse=True)
        logger.debug(f'Unified search returned {min(len(results), limit)}/{len(results)} matches for owner {owner_id}')
        return results[:limit]

    def _score(self, query_vector: List[float], population: List[Tuple[str, Optional[List[float]]]]) -> List[Tuple[str, float]]:
        population = [(raw_id, vector) for raw_id, vector in population if vector is not None]
        matches = find_similar(query_vector, [vector for _, vector in population], self.graph_config.search_threshold)
        return [(population[index][0], round_score(similarity)) for index, similarity in matches]

    def get_timeline(self, owner_id: str, concept: str) -> List[TimelineItem]:
        """
        Items matching a concept in chronological order.

        Hits without a creation timestamp are left out. Notes and memories list
        their owning document in ``related_items``.
        """
        items = []
        for node in self.search_across_graphs(owner_id, concept, limit=self.graph_config.timeline_limit):
            timestamp = node.data.get('created_at')
            if to_datetime(timestamp) is None:
                continue

            related_items = []
            if node.node_type in ('note', 'memory') and node.data.get('document_id'):
                related_items.append(node_key('document', node.data['document_id']))

            items.append(TimelineItem(node=node, timestamp=timestamp, related_items=related_items))

        return sorted(items, key=lambda item: to_datetime(item.timestamp))

    def get_note_relationships(self, owner_id: str, note_id: str) -> List[UnifiedNode]:
        """Nodes a note is related to, with relationship type and score, best first."""
        documents = self.store.find(NOTE_RELATIONSHIPS, owner_id, filters={'note_id': note_id}, sort=[('created_at', 'asc')])
        relationships = sorted((NoteRelationship.from_document(d) for d in documents),
                               key=lambda r: r.similarity_score or 0.0,
                               reverse=True)

        nodes = []
        for relationship in relationships:
            node = self._resolve(owner_id, relationship.related_type, relationship.related_id)
            if node is None:
                continue
            node.relationship_type = relationship.relationship_type
            node.similarity = relationship.similarity_score
            nodes.append(node)
        return nodes
