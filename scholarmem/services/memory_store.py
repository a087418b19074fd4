"""
Memory store service: entity extraction, persistence and similarity search.

Extraction asks the reasoning service for entities and the relationships
between them, embeds every entity and persists what embedded. Relationships
are only persisted when both endpoints were persisted.
"""

from collections import Counter
from typing import Any, Dict, List, Optional, Tuple

from ..models.core import (ENTITIES, HIGHLIGHTS, NOTES, RELATIONSHIPS, ExtractionResult, Highlight, MemoryEntity,
                           MemoryRelationship, Note, ScoredEntity, new_id, stable_id)
from ..utils.config import MemoryConfig
from ..utils.errors import ServiceUnavailable, StoreError, ValidationError
from ..utils.logging_config import get_logger
from ..utils.vector_math import find_similar, round_score
from .embedding_gateway import EmbeddingGateway

logger = get_logger(__name__)

EXTRACTION_SYSTEM_PROMPT = """
You are an expert knowledge extraction system for a research reading assistant.
Extract semantic entities from the provided content. Focus on:
- Concepts discussed (academic terms, theories, frameworks, methodologies)
- Questions asked by the user
- Insights or conclusions reached
- Document references (titles, authors, papers)
- Actions taken (notes created, highlights made, sections read)

Then extract the relationships between the entities you found.

Return a JSON object with this exact format:
```json
{
  "entities": [
    {
      "type": "concept|question|insight|reference|action|document",
      "text": "the entity text, specific and concise",
      "metadata": {"source_message_index": 0}
    }
  ],
  "relationships": [
    {
      "from": 0,
      "to": 1,
      "type": "relates_to|contradicts|supports|cites|explains",
      "strength": 0.8
    }
  ]
}
```

"from" and "to" are indexes into the entities array. Strength is between 0.0 and 1.0.
Be thorough but concise. Extract 5-15 entities.
Return {"entities": [], "relationships": []} if nothing is worth remembering."""


class MemoryStore:
    """Persist and query memory entities and their relationships for one store."""

    def __init__(self, store, embeddings: EmbeddingGateway, reasoning, config: MemoryConfig):
        """
        Args:
            store: PersistentStore (``OpenSearchStore`` or a compatible object)
            embeddings: Embedding gateway
            reasoning: Reasoning service with ``generate_json(prompt, system_prompt)``
            config: Memory settings
        """
        self.store = store
        self.embeddings = embeddings
        self.reasoning = reasoning
        self.config = config

        logger.info('Initialized MemoryStore')

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def extract_and_store(self,
                          owner_id: str,
                          turns: List[Dict[str, str]],
                          conversation_id: Optional[str] = None,
                          document_id: Optional[str] = None,
                          document_title: Optional[str] = None) -> ExtractionResult:
        """
        Extract entities and relationships from conversation turns and persist them.

        Args:
            owner_id: Owner of the memories
            turns: Messages with 'role' and 'content' keys
            conversation_id: Conversation the turns belong to
            document_id: Document the conversation is about
            document_title: Title passed to the reasoning service as context

        Returns:
            ExtractionResult with created/failed/dropped counts
        """
        content_list = []
        for index, turn in enumerate(turns or []):
            if turn.get('role') in ['user', 'assistant'] and (turn.get('content') or '').strip():
                content_list.append(f'[{index}] {turn["role"].capitalize()}:\n{turn["content"]}')

        if not content_list:
            logger.warning('Empty conversation provided for memory extraction')
            return ExtractionResult(success=False, error='No content to extract from')

        prompt = 'Extract semantic entities from the conversation'
        if document_title:
            prompt += f' about the document "{document_title}"'
        prompt += ':\n\n' + '\n\n'.join(content_list)

        return self._extract(owner_id,
                             prompt,
                             base_metadata={'source': 'conversation'},
                             conversation_id=conversation_id,
                             document_id=document_id)

    def extract_from_notes(self,
                           owner_id: str,
                           note_ids: Optional[List[str]] = None,
                           document_id: Optional[str] = None) -> ExtractionResult:
        """Run extraction over the owner's notes (optionally restricted by id or document)."""
        filters: Dict[str, Any] = {}
        if note_ids:
            filters['_id'] = list(note_ids)
        if document_id:
            filters['document_id'] = document_id

        notes = [Note.from_document(d) for d in self.store.find(NOTES, owner_id, filters=filters, sort=[('created_at', 'asc')])]
        notes = [n for n in notes if n.content.strip()]
        if not notes:
            logger.debug(f'No notes to extract from for owner {owner_id}')
            return ExtractionResult(success=False, error='No notes found')

        note_texts = '\n\n'.join(f'Note {i + 1} (Page {n.page_number}): {n.content}' for i, n in enumerate(notes))
        return self._extract(owner_id,
                             f'Extract semantic entities from these notes:\n\n{note_texts}',
                             base_metadata={
                                 'source': 'note',
                                 'note_ids': [n.id for n in notes]
                             },
                             document_id=document_id or notes[0].document_id)

    def extract_from_highlights(self,
                                owner_id: str,
                                highlight_ids: Optional[List[str]] = None,
                                document_id: Optional[str] = None) -> ExtractionResult:
        """Run extraction over the owner's highlights. Orphaned highlights are skipped."""
        filters: Dict[str, Any] = {'is_orphaned': False}
        if highlight_ids:
            filters['_id'] = list(highlight_ids)
        if document_id:
            filters['document_id'] = document_id

        highlights = [
            Highlight.from_document(d) for d in self.store.find(HIGHLIGHTS, owner_id, filters=filters, sort=[('created_at', 'asc')])
        ]
        highlights = [h for h in highlights if h.text.strip()]
        if not highlights:
            logger.debug(f'No highlights to extract from for owner {owner_id}')
            return ExtractionResult(success=False, error='No highlights found')

        highlight_texts = '\n\n'.join(f'Highlight {i + 1} (Page {h.page_number}): "{h.text}"' for i, h in enumerate(highlights))
        return self._extract(owner_id,
                             f'Extract semantic entities and concepts from these highlights:\n\n{highlight_texts}',
                             base_metadata={
                                 'source': 'highlight',
                                 'highlight_ids': [h.id for h in highlights]
                             },
                             document_id=document_id or highlights[0].document_id)

    def extract_from_notes_and_highlights(self, owner_id: str, document_id: str) -> ExtractionResult:
        """Extract from both the notes and the highlights of one document."""
        notes_result = self.extract_from_notes(owner_id, document_id=document_id)
        highlights_result = self.extract_from_highlights(owner_id, document_id=document_id)

        return ExtractionResult(
            success=notes_result.success or highlights_result.success,
            entities_created=notes_result.entities_created + highlights_result.entities_created,
            relationships_created=notes_result.relationships_created + highlights_result.relationships_created,
            entities_failed=notes_result.entities_failed + highlights_result.entities_failed,
            relationships_dropped=notes_result.relationships_dropped + highlights_result.relationships_dropped)

    def _extract(self,
                 owner_id: str,
                 prompt: str,
                 base_metadata: Dict[str, Any],
                 conversation_id: Optional[str] = None,
                 document_id: Optional[str] = None) -> ExtractionResult:
        try:
            payload = self.reasoning.generate_json(prompt, EXTRACTION_SYSTEM_PROMPT)
        except ServiceUnavailable as e:
            logger.warning(f'Reasoning service unavailable during extraction: {e}')
            return ExtractionResult(success=False, error='Reasoning service unavailable')
        except ValidationError as e:
            logger.warning(f'Unparsable extraction response: {e}')
            return ExtractionResult(success=False, error='Unparsable extraction response')

        if not isinstance(payload, dict) or not isinstance(payload.get('entities'), list):
            logger.warning(f'Expected extraction object, got {type(payload).__name__}')
            return ExtractionResult(success=False, error='Unparsable extraction response')

        # Validate proposals, remembering each one's position in the proposal list
        candidates: List[Tuple[int, MemoryEntity]] = []
        entities_failed = 0
        for index, proposal in enumerate(payload['entities']):
            try:
                candidates.append((index, self._build_entity(owner_id, proposal, base_metadata, conversation_id, document_id)))
            except ValidationError as e:
                logger.debug(f'Dropping proposed entity {index}: {e}')
                entities_failed += 1

        if not candidates:
            logger.debug('No valid entities extracted')
            return ExtractionResult(success=False, entities_failed=entities_failed, error='No entities extracted')

        vectors = self.embeddings.embed_batch([entity.text for _, entity in candidates])

        persisted: Dict[int, str] = {}
        for (index, entity), vector in zip(candidates, vectors):
            if vector is None:
                entities_failed += 1
                continue
            entity.embedding = self.embeddings.format_for_storage(vector)
            entity.id = new_id()
            try:
                self.store.insert(ENTITIES, entity.to_document(), doc_id=entity.id)
            except StoreError as e:
                logger.warning(f'Failed to persist extracted entity {index}: {e}')
                entities_failed += 1
                continue
            persisted[index] = entity.id

        relationships_created = 0
        relationships_dropped = 0
        for proposal in payload.get('relationships') or []:
            relationship = self._build_relationship(owner_id, proposal, persisted)
            try:
                created = relationship is not None and self.add_relationship(relationship)
            except StoreError as e:
                logger.warning(f'Failed to persist extracted relationship: {e}')
                created = False
            if not created:
                relationships_dropped += 1
                continue
            relationships_created += 1

        logger.info(f'Extracted {len(persisted)} entities and {relationships_created} relationships for owner {owner_id} '
                    f'({entities_failed} entities failed, {relationships_dropped} relationships dropped)')

        return ExtractionResult(success=len(persisted) > 0,
                                entities_created=len(persisted),
                                relationships_created=relationships_created,
                                entities_failed=entities_failed,
                                relationships_dropped=relationships_dropped,
                                error=None if persisted else 'No entities could be persisted')

    def _build_entity(self, owner_id: str, proposal: Any, base_metadata: Dict[str, Any], conversation_id: Optional[str],
                      document_id: Optional[str]) -> MemoryEntity:
        if not isinstance(proposal, dict):
            raise ValidationError('Entity proposal must be an object')

        metadata = proposal.get('metadata') or {}
        if not isinstance(metadata, dict):
            raise ValidationError('Entity metadata must be an object')
        metadata = dict(metadata)
        if 'sourceMessageIndex' in metadata:
            metadata['source_message_index'] = metadata.pop('sourceMessageIndex')

        entity = MemoryEntity(owner_id=owner_id,
                              entity_type=str(proposal.get('type', '')).strip().lower(),
                              text=str(proposal.get('text') or '').strip(),
                              metadata={
                                  **metadata,
                                  **base_metadata
                              },
                              conversation_id=conversation_id,
                              document_id=document_id)
        entity.validate()
        return entity

    def _build_relationship(self, owner_id: str, proposal: Any, persisted: Dict[int, str]) -> Optional[MemoryRelationship]:
        if not isinstance(proposal, dict):
            return None

        from_index, to_index = proposal.get('from'), proposal.get('to')
        if from_index not in persisted or to_index not in persisted or from_index == to_index:
            return None

        strength = proposal.get('strength')
        try:
            strength = self.config.default_strength if strength is None else round_score(float(strength), self.config.score_precision)
        except (TypeError, ValueError):
            strength = self.config.default_strength

        relationship = MemoryRelationship(owner_id=owner_id,
                                          from_id=persisted[from_index],
                                          to_id=persisted[to_index],
                                          relationship_type=str(proposal.get('type', '')).strip().lower(),
                                          strength=strength)
        try:
            relationship.validate()
        except ValidationError as e:
            logger.debug(f'Dropping proposed relationship: {e}')
            return None
        return relationship

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    def add_relationship(self, relationship: MemoryRelationship) -> bool:
        """
        Persist a relationship unless one with the same endpoints and type exists.

        Both endpoints' degree counters are incremented on success. A failed
        increment is logged and leaves that counter behind; the relationship
        itself stays.

        Returns:
            True if the relationship was created, False for a duplicate
        """
        relationship.validate()
        relationship.id = stable_id(relationship.owner_id, relationship.from_id, relationship.to_id,
                                    relationship.relationship_type)

        if self.store.insert(RELATIONSHIPS, relationship.to_document(), doc_id=relationship.id) is None:
            logger.debug(f'Relationship {relationship.id} already exists')
            return False

        for endpoint in {relationship.from_id, relationship.to_id}:
            try:
                self.store.increment(ENTITIES, endpoint, relationship.owner_id, 'degree', 1)
            except StoreError as e:
                logger.warning(f'Degree of {endpoint} not updated for relationship {relationship.id}: {e}')
        return True

    def incident_relationships(self, owner_id: str, entity_id: str, limit: int = 1000) -> List[MemoryRelationship]:
        """Relationships touching an entity in either direction, in stored order."""
        documents = self.store.find(RELATIONSHIPS,
                                    owner_id,
                                    any_of={
                                        'from_id': entity_id,
                                        'to_id': entity_id
                                    },
                                    sort=[('created_at', 'asc')],
                                    limit=limit)
        return [MemoryRelationship.from_document(d) for d in documents]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_entity(self, owner_id: str, entity_id: str) -> Optional[MemoryEntity]:
        document = self.store.get(ENTITIES, entity_id, owner_id)
        return MemoryEntity.from_document(document) if document else None

    def list_entities(self,
                      owner_id: str,
                      limit: int = 1000,
                      entity_types: Optional[List[str]] = None,
                      document_id: Optional[str] = None) -> List[MemoryEntity]:
        """Entities in stored (creation) order."""
        filters: Dict[str, Any] = {}
        if entity_types:
            filters['entity_type'] = list(entity_types)
        if document_id:
            filters['document_id'] = document_id
        documents = self.store.find(ENTITIES, owner_id, filters=filters, sort=[('created_at', 'asc')], limit=limit)
        return [MemoryEntity.from_document(d) for d in documents]

    def most_connected(self, owner_id: str, limit: int = 10) -> List[MemoryEntity]:
        """Entities ordered by degree descending, ties in stored order."""
        documents = self.store.find(ENTITIES, owner_id, sort=[('degree', 'desc'), ('created_at', 'asc')], limit=limit)
        return [MemoryEntity.from_document(d) for d in documents]

    def get_conversation_memories(self, owner_id: str, conversation_id: str) -> List[MemoryEntity]:
        documents = self.store.find(ENTITIES, owner_id, filters={'conversation_id': conversation_id}, sort=[('created_at', 'asc')])
        return [MemoryEntity.from_document(d) for d in documents]

    def search_memories(self,
                        owner_id: str,
                        query: str,
                        limit: int = 10,
                        entity_types: Optional[List[str]] = None,
                        document_id: Optional[str] = None,
                        similarity_threshold: Optional[float] = None,
                        query_embedding: Optional[List[float]] = None) -> List[ScoredEntity]:
        """
        Find memories similar to a query.

        Only the ``2 * limit`` most recent candidates are scored.

        Args:
            owner_id: Owner of the memories
            query: Query text
            limit: Maximum results
            entity_types: Restrict to these entity types
            document_id: Restrict to one document
            similarity_threshold: Minimum similarity (config default when None)
            query_embedding: Precomputed query vector

        Returns:
            Matches sorted by similarity descending; empty if the query cannot be embedded
        """
        threshold = self.config.search_threshold if similarity_threshold is None else similarity_threshold

        if query_embedding is None:
            try:
                query_embedding = self.embeddings.embed(query)
            except ServiceUnavailable as e:
                logger.warning(f'Memory search skipped, query could not be embedded: {e}')
                return []

        filters: Dict[str, Any] = {}
        if entity_types:
            filters['entity_type'] = list(entity_types)
        if document_id:
            filters['document_id'] = document_id

        documents = self.store.find(ENTITIES,
                                    owner_id,
                                    filters=filters,
                                    exists=['embedding'],
                                    sort=[('created_at', 'desc')],
                                    limit=limit * 2)

        entities = []
        vectors = []
        for document in documents:
            vector = self.embeddings.parse_stored(document.get('embedding'))
            if vector is not None:
                entities.append(MemoryEntity.from_document(document))
                vectors.append(vector)

        matches = find_similar(query_embedding, vectors, threshold)[:limit]
        logger.debug(f'Memory search matched {len(matches)}/{len(vectors)} candidates for owner {owner_id}')
        return [ScoredEntity(entity=entities[i], similarity=round_score(s, self.config.score_precision)) for i, s in matches]

    def aggregate_memories(self,
                           owner_id: str,
                           start: Optional[str] = None,
                           end: Optional[str] = None,
                           limit: int = 10) -> Dict[str, List[Dict[str, Any]]]:
        """
        Most frequent concepts, questions and insights, counted case-insensitively.

        Args:
            owner_id: Owner of the memories
            start: Inclusive lower bound on created_at (ISO)
            end: Inclusive upper bound on created_at (ISO)
            limit: Maximum entries per category

        Returns:
            Dict with top_concepts, top_questions and top_insights lists of {text, count}
        """
        bounds = {}
        if start:
            bounds['gte'] = start
        if end:
            bounds['lte'] = end

        documents = self.store.find(ENTITIES,
                                    owner_id,
                                    filters={'entity_type': ['concept', 'question', 'insight']},
                                    ranges={'created_at': bounds} if bounds else None,
                                    limit=10000)

        counters = {'concept': Counter(), 'question': Counter(), 'insight': Counter()}
        for document in documents:
            counters[document['entity_type']][document['text'].lower()] += 1

        return {
            f'top_{entity_type}s': [{
                'text': text,
                'count': count
            } for text, count in counter.most_common(limit)]
            for entity_type, counter in counters.items()
        }

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete_conversation_memories(self, owner_id: str, conversation_id: str) -> int:
        """Delete a conversation's entities and their relationships. Returns entities deleted."""
        return self._delete_entities(owner_id, {'conversation_id': conversation_id})

    def delete_document_memories(self, owner_id: str, document_id: str) -> int:
        """Delete a document's entities and their relationships. Returns entities deleted."""
        return self._delete_entities(owner_id, {'document_id': document_id})

    def _delete_entities(self, owner_id: str, filters: Dict[str, Any]) -> int:
        entity_ids = [d['id'] for d in self.store.find(ENTITIES, owner_id, filters=filters, limit=10000)]
        if not entity_ids:
            return 0

        doomed = set(entity_ids)
        relationships = self.store.find(RELATIONSHIPS,
                                        owner_id,
                                        any_of={
                                            'from_id': entity_ids,
                                            'to_id': entity_ids
                                        },
                                        limit=10000)

        # Surviving endpoints lose the edge
        for relationship in relationships:
            for endpoint in {relationship['from_id'], relationship['to_id']} - doomed:
                self.store.increment(ENTITIES, endpoint, owner_id, 'degree', -1)

        if relationships:
            self.store.delete_where(RELATIONSHIPS, owner_id, filters={'_id': [r['id'] for r in relationships]})
        deleted = self.store.delete_where(ENTITIES, owner_id, filters={'_id': entity_ids})

        logger.info(f'Deleted {deleted} entities and {len(relationships)} relationships for owner {owner_id}')
        return deleted
