"""
Automatic note relationship detection.

A note is compared against bounded windows of document descriptions, memories
and other notes. Each similarity is classified into a relationship type by band.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..models.core import DOCUMENTS, ENTITIES, NOTE_RELATIONSHIPS, NOTES, Note, NoteRelationship, stable_id
from ..utils.config import DetectorConfig
from ..utils.errors import ServiceUnavailable, ValidationError
from ..utils.logging_config import get_logger
from ..utils.vector_math import find_similar, round_score
from .embedding_gateway import EmbeddingGateway

logger = get_logger(__name__)

# related_type -> labels for the strong, middle and weak bands
BAND_LABELS: Dict[str, Tuple[str, str, str]] = {
    'document': ('references', 'illustrates', 'complements'),
    'memory': ('references', 'illustrates', 'exemplifies'),
    'note': ('complements', 'references', 'references'),
}


class RelationshipDetector:
    """Detect and manage relationships between a note and the rest of the owner's material."""

    def __init__(self, store, embeddings: EmbeddingGateway, config: DetectorConfig, score_precision: int = 4):
        self.store = store
        self.embeddings = embeddings
        self.config = config
        self.score_precision = score_precision

    def classify(self, similarity: float, related_type: str) -> Optional[str]:
        """
        Relationship type for a similarity score.

        Args:
            similarity: Cosine similarity
            related_type: document, memory or note

        Returns:
            Relationship type, or None below the weakest band
        """
        labels = BAND_LABELS.get(related_type)
        if labels is None:
            raise ValidationError(f'Unknown related type: {related_type!r}')

        if similarity >= self.config.strong_threshold:
            return labels[0]
        if similarity >= self.config.middle_threshold:
            return labels[1]
        if similarity >= self.config.weak_threshold:
            return labels[2]
        return None

    def detect_note_relationships(self, owner_id: str, note_id: str) -> int:
        """
        Detect and persist relationships for one note.

        Returns:
            Number of relationships newly created (0 if the note doesn't exist
            or the embedding provider is unavailable)
        """
        document = self.store.get(NOTES, note_id, owner_id)
        if document is None:
            logger.debug(f'Note {note_id} not found for owner {owner_id}')
            return 0
        note = Note.from_document(document)

        try:
            note_vector = self.embeddings.parse_stored(note.embedding) or self.embeddings.embed(note.content)
        except ServiceUnavailable as e:
            logger.warning(f'Relationship detection skipped for note {note_id}: {e}')
            return 0

        candidates: List[Tuple[str, str, float]] = []
        candidates.extend(self._match('document', note_vector, self._document_vectors(owner_id)))
        candidates.extend(self._match('memory', note_vector, self._memory_vectors(owner_id)))
        candidates.extend(self._match('note', note_vector, self._note_vectors(owner_id, exclude=note_id)))

        created = 0
        for related_type, related_id, similarity in candidates:
            relationship = NoteRelationship(owner_id=owner_id,
                                            note_id=note_id,
                                            related_type=related_type,
                                            related_id=related_id,
                                            relationship_type=self.classify(similarity, related_type),
                                            similarity_score=round_score(similarity, self.score_precision),
                                            auto_detected=True)
            if self._persist(relationship):
                created += 1

        logger.info(f'Detected {created} new relationships for note {note_id} ({len(candidates)} candidates)')
        return created

    def detect_all_note_relationships(self, owner_id: str) -> int:
        """Run detection for every note that has no relationships yet."""
        linked = {d['note_id'] for d in self.store.find(NOTE_RELATIONSHIPS, owner_id, limit=10000)}
        notes = self.store.find(NOTES, owner_id, exclude_ids=list(linked), sort=[('created_at', 'asc')], limit=10000)

        total = 0
        for note in notes:
            total += self.detect_note_relationships(owner_id, note['id'])
        return total

    def get_note_relationships(self, owner_id: str, note_id: str) -> List[NoteRelationship]:
        """Relationships of a note, highest similarity first."""
        documents = self.store.find(NOTE_RELATIONSHIPS, owner_id, filters={'note_id': note_id}, sort=[('created_at', 'asc')])
        relationships = [NoteRelationship.from_document(d) for d in documents]
        return sorted(relationships, key=lambda r: r.similarity_score or 0.0, reverse=True)

    def create_relationship(self,
                            owner_id: str,
                            note_id: str,
                            related_type: str,
                            related_id: str,
                            relationship_type: str,
                            similarity_score: Optional[float] = None) -> bool:
        """
        Manually link a note to a document, note or memory.

        Returns:
            True if created, False if the note is missing or the link already exists

        Raises:
            ValidationError: If the types or score are invalid
        """
        relationship = NoteRelationship(owner_id=owner_id,
                                        note_id=note_id,
                                        related_type=related_type,
                                        related_id=related_id,
                                        relationship_type=relationship_type,
                                        similarity_score=similarity_score,
                                        auto_detected=False)
        relationship.validate()

        if self.store.get(NOTES, note_id, owner_id) is None:
            logger.debug(f'Cannot link missing note {note_id}')
            return False
        return self._persist(relationship)

    def delete_relationship(self, owner_id: str, relationship_id: str) -> bool:
        return self.store.delete(NOTE_RELATIONSHIPS, relationship_id, owner_id)

    def _persist(self, relationship: NoteRelationship) -> bool:
        relationship.validate()
        relationship.id = stable_id(relationship.owner_id, relationship.note_id, relationship.related_type,
                                    relationship.related_id)
        return self.store.insert(NOTE_RELATIONSHIPS, relationship.to_document(), doc_id=relationship.id) is not None

    def _match(self, related_type: str, note_vector: List[float],
               population: Sequence[Tuple[str, List[float]]]) -> List[Tuple[str, str, float]]:
        ids = [item_id for item_id, _ in population]
        matches = find_similar(note_vector, [vector for _, vector in population], self.config.weak_threshold)
        return [(related_type, ids[index], similarity) for index, similarity in matches]

    def _document_vectors(self, owner_id: str) -> List[Tuple[str, List[float]]]:
        documents = self.store.find(DOCUMENTS,
                                    owner_id,
                                    exists=['description_embedding'],
                                    sort=[('created_at', 'desc')],
                                    limit=self.config.document_window)
        return self._with_vectors(documents, 'description_embedding', id_field='document_id')

    def _memory_vectors(self, owner_id: str) -> List[Tuple[str, List[float]]]:
        documents = self.store.find(ENTITIES,
                                    owner_id,
                                    exists=['embedding'],
                                    sort=[('created_at', 'desc')],
                                    limit=self.config.memory_window)
        return self._with_vectors(documents, 'embedding')

    def _note_vectors(self, owner_id: str, exclude: str) -> List[Tuple[str, List[float]]]:
        documents = self.store.find(NOTES,
                                    owner_id,
                                    exclude_ids=[exclude],
                                    sort=[('created_at', 'desc')],
                                    limit=self.config.note_window)
        return embed_missing(self.embeddings, documents, 'embedding', 'content')

    def _with_vectors(self, documents: List[Dict[str, Any]], field: str, id_field: str = 'id') -> List[Tuple[str, List[float]]]:
        population = []
        for document in documents:
            vector = self.embeddings.parse_stored(document.get(field))
            if vector is not None:
                population.append((document.get(id_field) or document['id'], vector))
        return population


def embed_missing(embeddings: EmbeddingGateway, documents: List[Dict[str, Any]], vector_field: str,
                  text_field: str) -> List[Tuple[str, List[float]]]:
    """
    Pair each document id with its vector, embedding the ones that have none.

    Documents whose text can't be embedded are left out.
    """
    population: List[Tuple[str, List[float]]] = []
    pending: List[Dict[str, Any]] = []

    for document in documents:
        vector = embeddings.parse_stored(document.get(vector_field))
        if vector is not None:
            population.append((document['id'], vector))
        elif (document.get(text_field) or '').strip():
            pending.append(document)

    if pending:
        vectors = embeddings.embed_batch([d[text_field] for d in pending])
        for document, vector in zip(pending, vectors):
            if vector is not None:
                population.append((document['id'], vector))

    return population
