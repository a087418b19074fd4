"""
Context builder for chat prompts.

Assembles a bounded bundle of memories, notes and highlights relevant to a
query. The limit is split between the three sources (half memories, 30% notes,
20% highlights).
"""

import math
from typing import List, Optional

from ..models.core import HIGHLIGHTS, NOTES, ContextBundle, Highlight, Note, ScoredEntity
from ..utils.errors import ServiceUnavailable
from ..utils.logging_config import get_logger
from ..utils.vector_math import find_similar
from .embedding_gateway import EmbeddingGateway
from .memory_store import MemoryStore

logger = get_logger(__name__)

SIMILARITY_THRESHOLD = 0.7
SCAN_LIMIT = 500

MEMORY_INDICATORS = ('before', 'previous', 'earlier', 'what did', 'remember', 'mentioned', 'discussed', 'compare', 'related',
                     'similar')


class ContextBuilder:
    """Build memory-augmented context for a query."""

    def __init__(self, store, memory_store: MemoryStore, embeddings: EmbeddingGateway):
        self.store = store
        self.memory_store = memory_store
        self.embeddings = embeddings

    def build_context(self,
                      owner_id: str,
                      query: str,
                      conversation_id: Optional[str] = None,
                      document_id: Optional[str] = None,
                      limit: int = 15) -> ContextBundle:
        """
        Collect context for a query.

        The query is embedded once. When it can't be embedded, memories are
        skipped and notes and highlights fall back to text matching.

        Args:
            owner_id: Owner of the material
            query: User query
            conversation_id: Attach this conversation's summary
            document_id: Restrict notes and highlights to this document
            limit: Total item budget

        Returns:
            ContextBundle with rendered ``context_text`` and its token estimate
        """
        try:
            query_vector = self.embeddings.embed(query)
        except ServiceUnavailable as e:
            logger.warning(f'Context built without embeddings: {e}')
            query_vector = None

        memories: List[ScoredEntity] = []
        if query_vector is not None:
            memories = self.memory_store.search_memories(owner_id,
                                                         query,
                                                         limit=math.ceil(limit * 0.5),
                                                         document_id=document_id,
                                                         similarity_threshold=SIMILARITY_THRESHOLD,
                                                         query_embedding=query_vector)

        notes: List[Note] = []
        highlights: List[Highlight] = []
        if document_id:
            notes = self._relevant_notes(owner_id, document_id, query, query_vector, math.ceil(limit * 0.3))
            highlights = self._relevant_highlights(owner_id, document_id, query, query_vector, math.ceil(limit * 0.2))

        bundle = ContextBundle(memories=memories, notes=notes, highlights=highlights)
        if conversation_id:
            bundle.conversation_summary = self.get_conversation_summary(owner_id, conversation_id)

        bundle.context_text = self._render(bundle)
        bundle.token_estimate = math.ceil(len(bundle.context_text) / 4)

        logger.debug(f'Built context with {len(memories)} memories, {len(notes)} notes, {len(highlights)} highlights '
                     f'(~{bundle.token_estimate} tokens)')
        return bundle

    def _relevant_notes(self, owner_id: str, document_id: str, query: str, query_vector: Optional[List[float]],
                        limit: int) -> List[Note]:
        if query_vector is not None:
            documents = self.store.find(NOTES,
                                        owner_id,
                                        filters={'document_id': document_id},
                                        exists=['embedding'],
                                        sort=[('created_at', 'desc')],
                                        limit=SCAN_LIMIT)
            notes = [Note.from_document(d) for d in documents]
            matches = self._similar(query_vector, [n.embedding for n in notes], limit)
            if matches:
                return [notes[i] for i in matches]

        documents = self.store.find(NOTES,
                                    owner_id,
                                    filters={'document_id': document_id},
                                    sort=[('created_at', 'desc')],
                                    limit=limit * 2)
        needle = query.lower()
        return [Note.from_document(d) for d in documents if needle in (d.get('content') or '').lower()][:limit]

    def _relevant_highlights(self, owner_id: str, document_id: str, query: str, query_vector: Optional[List[float]],
                             limit: int) -> List[Highlight]:
        filters = {'document_id': document_id, 'is_orphaned': False}
        if query_vector is not None:
            documents = self.store.find(HIGHLIGHTS,
                                        owner_id,
                                        filters=filters,
                                        exists=['embedding'],
                                        sort=[('created_at', 'desc')],
                                        limit=SCAN_LIMIT)
            highlights = [Highlight.from_document(d) for d in documents]
            matches = self._similar(query_vector, [h.embedding for h in highlights], limit)
            if matches:
                return [highlights[i] for i in matches]

        documents = self.store.find(HIGHLIGHTS, owner_id, filters=filters, sort=[('created_at', 'desc')], limit=limit * 2)
        needle = query.lower()
        return [Highlight.from_document(d) for d in documents if needle in (d.get('text') or '').lower()][:limit]

    def _similar(self, query_vector: List[float], stored: List, limit: int) -> List[int]:
        indexes = []
        vectors = []
        for index, value in enumerate(stored):
            vector = self.embeddings.parse_stored(value)
            if vector is not None:
                indexes.append(index)
                vectors.append(vector)
        return [indexes[i] for i, _ in find_similar(query_vector, vectors, SIMILARITY_THRESHOLD)[:limit]]

    @staticmethod
    def _render(bundle: ContextBundle) -> str:
        parts = []

        if bundle.conversation_summary:
            parts.append('## Conversation Summary')
            parts.append(bundle.conversation_summary)

        if bundle.memories:
            parts.append('\n## Previous Conversation Memory')
            for scored in bundle.memories:
                parts.append(f'- {scored.entity.entity_type}: {scored.entity.text}')

        if bundle.notes:
            parts.append('\n## Relevant Notes')
            for note in bundle.notes:
                parts.append(f'- Page {note.page_number}: {note.content[:200]}')

        if bundle.highlights:
            parts.append('\n## Relevant Highlights')
            for highlight in bundle.highlights:
                parts.append(f'- Page {highlight.page_number}: "{highlight.text}"')

        return '\n'.join(parts).strip()

    def get_conversation_summary(self, owner_id: str, conversation_id: str) -> Optional[str]:
        """
        Summary of a conversation built from its extracted insights.

        Returns:
            Insights joined by newlines, a placeholder if the conversation has
            memories but no insights, or None if it has no memories
        """
        memories = self.memory_store.get_conversation_memories(owner_id, conversation_id)
        if not memories:
            return None

        insights = [m.text for m in memories if m.entity_type == 'insight']
        if not insights:
            return 'No insights extracted from this conversation yet.'
        return '\n'.join(insights)

    @staticmethod
    def should_use_memory_context(query: str) -> bool:
        """Whether a query looks like it refers to earlier conversations or related material."""
        lowered = query.lower()
        return any(indicator in lowered for indicator in MEMORY_INDICATORS)
