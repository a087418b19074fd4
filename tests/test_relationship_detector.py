from __future__ import annotations

import math

import pytest

from scholarmem.factory import Services
from scholarmem.models.core import NOTE_RELATIONSHIPS
from scholarmem.services.relationship_detector import RelationshipDetector
from scholarmem.utils.errors import ValidationError
from tests.conftest import OWNER, FakeEmbedProvider, InMemoryStore, add_document, add_entity, add_note, vec


def at(similarity: float):
    """Unit vector whose cosine similarity with vec(1.0) is ``similarity``."""
    return vec(similarity, math.sqrt(1.0 - similarity**2))


@pytest.fixture
def detector(services: Services) -> RelationshipDetector:
    return services.detector


@pytest.fixture
def library(store: InMemoryStore) -> str:
    """A note at vec(1.0) and material at known similarities to it. Returns the close memory id."""
    add_note(store, 'n1', 'self-attention note', vec(1.0), document_id='d1')
    add_document(store, 'd1', at(0.95))
    add_document(store, 'd2', at(0.87))
    add_document(store, 'd3', at(0.50))
    add_document(store, 'd4', None)
    add_note(store, 'n2', 'close note', at(0.92))
    add_note(store, 'n3', 'unembedded note about gardening')
    memory = add_entity(store, 'attention memory', at(0.80))
    add_entity(store, 'unrelated memory', at(0.10))
    return memory.id


class TestClassify:

    @pytest.mark.parametrize('similarity,related_type,expected', [
        (0.95, 'document', 'references'),
        (0.87, 'document', 'illustrates'),
        (0.80, 'document', 'complements'),
        (0.95, 'memory', 'references'),
        (0.87, 'memory', 'illustrates'),
        (0.80, 'memory', 'exemplifies'),
        (0.95, 'note', 'complements'),
        (0.87, 'note', 'references'),
        (0.80, 'note', 'references'),
        (0.90, 'document', 'references'),
        (0.85, 'document', 'illustrates'),
        (0.75, 'document', 'complements'),
        (0.7499, 'document', None),
    ])
    def test_bands(self, detector: RelationshipDetector, similarity: float, related_type: str, expected) -> None:
        assert detector.classify(similarity, related_type) == expected

    def test_unknown_related_type(self, detector: RelationshipDetector) -> None:
        with pytest.raises(ValidationError):
            detector.classify(0.9, 'highlight')


class TestDetect:

    def test_detects_by_band(self, detector: RelationshipDetector, library: str) -> None:
        created = detector.detect_note_relationships(OWNER, 'n1')

        relationships = detector.get_note_relationships(OWNER, 'n1')
        found = {(r.related_type, r.related_id): r.relationship_type for r in relationships}
        assert created == 4
        assert found == {
            ('document', 'd1'): 'references',
            ('document', 'd2'): 'illustrates',
            ('note', 'n2'): 'complements',
            ('memory', library): 'exemplifies',
        }
        assert all(r.auto_detected for r in relationships)
        assert [r.similarity_score for r in relationships] == sorted((r.similarity_score for r in relationships), reverse=True)
        assert relationships[0].similarity_score == pytest.approx(0.95, abs=1e-4)

    def test_rerun_creates_nothing(self, detector: RelationshipDetector, store: InMemoryStore, library: str) -> None:
        detector.detect_note_relationships(OWNER, 'n1')

        assert detector.detect_note_relationships(OWNER, 'n1') == 0
        assert len(store.all(NOTE_RELATIONSHIPS)) == 4

    def test_embeds_note_without_vector(self, detector: RelationshipDetector, store: InMemoryStore,
                                        embed_provider: FakeEmbedProvider) -> None:
        embed_provider.register('fresh note', vec(1.0))
        add_note(store, 'fresh', 'fresh note')
        add_document(store, 'd1', at(0.95))

        assert detector.detect_note_relationships(OWNER, 'fresh') == 1

    def test_missing_note(self, detector: RelationshipDetector, library: str) -> None:
        assert detector.detect_note_relationships(OWNER, 'nope') == 0
        assert detector.detect_note_relationships('owner-2', 'n1') == 0

    def test_provider_unavailable(self, detector: RelationshipDetector, store: InMemoryStore,
                                  embed_provider: FakeEmbedProvider) -> None:
        add_note(store, 'fresh', 'fresh note')
        embed_provider.available = False

        assert detector.detect_note_relationships(OWNER, 'fresh') == 0

    def test_detect_all_skips_linked_notes(self, detector: RelationshipDetector, library: str) -> None:
        first = detector.detect_all_note_relationships(OWNER)

        assert first > 0
        assert detector.detect_all_note_relationships(OWNER) == 0


class TestManualRelationships:

    def test_create_and_delete(self, detector: RelationshipDetector, library: str) -> None:
        assert detector.create_relationship(OWNER, 'n1', 'document', 'd3', 'defines', 0.4)
        assert not detector.create_relationship(OWNER, 'n1', 'document', 'd3', 'references')

        [relationship] = detector.get_note_relationships(OWNER, 'n1')
        assert relationship.relationship_type == 'defines'
        assert not relationship.auto_detected

        assert detector.delete_relationship(OWNER, relationship.id)
        assert detector.get_note_relationships(OWNER, 'n1') == []
        assert not detector.delete_relationship(OWNER, relationship.id)

    def test_missing_note(self, detector: RelationshipDetector, library: str) -> None:
        assert not detector.create_relationship(OWNER, 'ghost', 'document', 'd1', 'references')

    @pytest.mark.parametrize('related_type,relationship_type,score', [
        ('highlight', 'references', None),
        ('document', 'agrees', None),
        ('document', 'references', 1.2),
    ])
    def test_invalid(self, detector: RelationshipDetector, library: str, related_type: str, relationship_type: str,
                     score) -> None:
        with pytest.raises(ValidationError):
            detector.create_relationship(OWNER, 'n1', related_type, 'd1', relationship_type, score)
