from __future__ import annotations

from datetime import datetime, timezone

import pytest

from scholarmem.factory import Services
from scholarmem.models.core import HIGHLIGHTS, INTEREST_PROFILES, InterestConcept
from scholarmem.services.interest_profile import InterestProfileService, compute_trends, extract_concepts
from scholarmem.utils.timestamp_utils import days_ago, to_iso
from tests.conftest import OWNER, InMemoryStore, add_document, add_note, vec

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def concept(name: str, frequency: int) -> InterestConcept:
    return InterestConcept(concept=name, frequency=frequency, importance=0.5, first_seen='', last_seen='')


class TestExtractConcepts:

    def test_counts_long_words(self) -> None:
        items = [
            {'text': 'Transformers use attention. The transformers win!', 'created_at': to_iso(NOW)},
            {'text': 'attention is everything', 'created_at': to_iso(days_ago(15, NOW))},
        ]

        concepts = {c.concept: c for c in extract_concepts(items, days=30, now=NOW)}

        assert set(concepts) == {'transformers', 'attention', 'everything'}
        assert concepts['transformers'].frequency == 2
        assert concepts['attention'].frequency == 2
        assert concepts['attention'].first_seen == to_iso(days_ago(15, NOW))
        assert concepts['attention'].last_seen == to_iso(NOW)

    def test_importance_weighs_frequency_and_recency(self) -> None:
        items = [{'text': 'fresh', 'created_at': to_iso(NOW)}, {'text': 'stale', 'created_at': to_iso(days_ago(15, NOW))}]

        concepts = {c.concept: c for c in extract_concepts(items, days=30, now=NOW)}

        assert concepts['fresh'].importance == pytest.approx(0.6 * 0.1 + 0.4 * 1.0)
        assert concepts['stale'].importance == pytest.approx(0.6 * 0.1 + 0.4 * 0.5)

    def test_sorted_and_capped(self) -> None:
        items = [{'text': ' '.join(f'concept{i}' for i in range(30)), 'created_at': to_iso(NOW)}]
        items.append({'text': 'popular popular popular', 'created_at': to_iso(NOW)})

        concepts = extract_concepts(items, days=30, now=NOW)

        assert len(concepts) == 20
        assert concepts[0].concept == 'popular'


def test_compute_trends() -> None:
    current = [concept('attention', 5), concept('graphs', 1), concept('kernels', 4)]
    previous = [concept('attention', 4), concept('graphs', 6), concept('bayes', 3)]

    trends = compute_trends(current, previous)

    assert trends == {'emerging': ['kernels'], 'declining': ['graphs', 'bayes'], 'stable': ['attention']}


@pytest.fixture
def profiles(services: Services) -> InterestProfileService:
    return services.interest_profiles


@pytest.fixture
def activity(store: InMemoryStore) -> None:
    """Recent attention notes and highlights, older graph notes."""
    add_note(store, 'n1', 'attention heads', vec(1.0, 0.0), created_at=to_iso(days_ago(1)))
    add_note(store, 'n2', 'attention masking', vec(1.0, 0.2), created_at=to_iso(days_ago(2)))
    add_note(store, 'n3', 'graphs everywhere', vec(0.0, 1.0), created_at=to_iso(days_ago(40)))
    store.insert(HIGHLIGHTS, {
        'owner_id': OWNER,
        'document_id': 'd1',
        'text': 'attention scores',
        'is_orphaned': False,
        'embedding': vec(1.0, -0.2),
        'created_at': to_iso(days_ago(3))
    },
                 doc_id='h1')
    store.insert(HIGHLIGHTS, {
        'owner_id': OWNER,
        'document_id': 'd1',
        'text': 'orphaned attention',
        'is_orphaned': True,
        'embedding': vec(0.0, 1.0),
        'created_at': to_iso(days_ago(3))
    },
                 doc_id='h2')


class TestInterestProfileService:

    def test_build(self, profiles: InterestProfileService, activity: None) -> None:
        profile = profiles.build_interest_profile(OWNER, days=30)

        assert profile.total_notes_analyzed == 2
        assert profile.total_highlights_analyzed == 1
        assert profile.interest_vector == pytest.approx(vec(1.0, 0.0))
        assert profile.top_concepts[0].concept == 'attention'
        assert profile.top_concepts[0].frequency == 3
        assert 'attention' in profile.trends['emerging']
        assert 'graphs' in profile.trends['declining']

    def test_rebuild_replaces_stored_profile(self, profiles: InterestProfileService, store: InMemoryStore,
                                             activity: None) -> None:
        profiles.build_interest_profile(OWNER, days=30)
        profiles.build_interest_profile(OWNER, days=7)

        [stored] = store.all(INTEREST_PROFILES)
        assert stored['analysis_period_days'] == 7
        assert profiles.get_cached_profile(OWNER).analysis_period_days == 7

    def test_cached_profile_round_trip(self, profiles: InterestProfileService, activity: None) -> None:
        built = profiles.build_interest_profile(OWNER)

        assert profiles.get_cached_profile(OWNER) == built

    def test_no_activity(self, profiles: InterestProfileService) -> None:
        profile = profiles.build_interest_profile(OWNER)

        assert profile.interest_vector is None
        assert profile.top_concepts == []
        assert profiles.get_recommended_documents(OWNER) == []

    def test_trends_build_on_demand(self, profiles: InterestProfileService, store: InMemoryStore, activity: None) -> None:
        assert profiles.get_cached_profile(OWNER) is None

        trends = profiles.get_interest_trends(OWNER)

        assert 'attention' in trends['emerging']
        assert len(store.all(INTEREST_PROFILES)) == 1

    def test_recommended_documents(self, profiles: InterestProfileService, store: InMemoryStore, activity: None) -> None:
        add_document(store, 'close', vec(1.0, 0.05))
        add_document(store, 'closer', vec(1.0, 0.0))
        add_document(store, 'far', vec(0.0, 1.0))
        add_document(store, 'undescribed', None)

        assert profiles.get_recommended_documents(OWNER) == ['closer', 'close']
        assert profiles.get_recommended_documents(OWNER, limit=1) == ['closer']
