"""
Reader interest profiles built from recent notes and highlights.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models.core import DOCUMENTS, HIGHLIGHTS, INTEREST_PROFILES, NOTES, InterestConcept, InterestProfile, stable_id
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import days_ago, to_datetime, to_iso, utc_now
from ..utils.vector_math import find_similar, mean_vector
from .embedding_gateway import EmbeddingGateway

logger = get_logger(__name__)

TOP_CONCEPTS = 20
RECOMMENDATION_THRESHOLD = 0.7
_NON_WORD = re.compile(r'[^\w\s]')


def extract_concepts(items: List[Dict[str, str]], days: int, now: Optional[datetime] = None) -> List[InterestConcept]:
    """
    Frequency-based concepts from dated texts.

    Words longer than four characters are counted. Importance weighs frequency
    (saturating at 10 occurrences) at 0.6 and recency of the last sighting
    within the window at 0.4.

    Args:
        items: Dicts with 'text' and 'created_at'
        days: Window length used for recency
        now: Reference time

    Returns:
        Top concepts by importance
    """
    now = now or utc_now()
    seen: Dict[str, Dict[str, Any]] = {}

    for item in items:
        created_at = item['created_at']
        for word in _NON_WORD.sub(' ', (item.get('text') or '').lower()).split():
            if len(word) <= 4:
                continue
            entry = seen.setdefault(word, {'count': 0, 'first_seen': created_at, 'last_seen': created_at})
            entry['count'] += 1
            if to_datetime(created_at) < to_datetime(entry['first_seen']):
                entry['first_seen'] = created_at
            if to_datetime(created_at) > to_datetime(entry['last_seen']):
                entry['last_seen'] = created_at

    concepts = []
    for word, entry in seen.items():
        days_since = (now - to_datetime(entry['last_seen'])).total_seconds() / 86400
        recency = max(0.0, 1 - days_since / days) if days > 0 else 0.0
        frequency = min(1.0, entry['count'] / 10)
        concepts.append(
            InterestConcept(concept=word,
                            frequency=entry['count'],
                            importance=round(0.6 * frequency + 0.4 * recency, 4),
                            first_seen=entry['first_seen'],
                            last_seen=entry['last_seen']))

    concepts.sort(key=lambda c: c.importance, reverse=True)
    return concepts[:TOP_CONCEPTS]


def compute_trends(current: List[InterestConcept], previous: List[InterestConcept]) -> Dict[str, List[str]]:
    """Classify concepts as emerging, declining or stable against the previous window."""
    previous_by_name = {c.concept: c for c in previous}
    current_names = {c.concept for c in current}
    trends: Dict[str, List[str]] = {'emerging': [], 'declining': [], 'stable': []}

    for concept in current:
        before = previous_by_name.get(concept.concept)
        if before is None:
            trends['emerging'].append(concept.concept)
        elif concept.frequency < before.frequency * 0.5:
            trends['declining'].append(concept.concept)
        else:
            trends['stable'].append(concept.concept)

    for concept in previous:
        if concept.concept not in current_names:
            trends['declining'].append(concept.concept)

    return trends


class InterestProfileService:
    """Build, cache and use per-owner interest profiles."""

    def __init__(self, store, embeddings: EmbeddingGateway):
        self.store = store
        self.embeddings = embeddings

    def _window(self, owner_id: str, start: str, end: Optional[str], with_embeddings: bool) -> Dict[str, List[Dict[str, Any]]]:
        bounds = {'gte': start}
        if end:
            bounds['lt'] = end
        exists = ['embedding'] if with_embeddings else []

        notes = self.store.find(NOTES, owner_id, exists=exists, ranges={'created_at': bounds}, limit=10000)
        highlights = self.store.find(HIGHLIGHTS,
                                     owner_id,
                                     filters={'is_orphaned': False},
                                     exists=exists,
                                     ranges={'created_at': bounds},
                                     limit=10000)
        return {'notes': notes, 'highlights': highlights}

    def build_interest_profile(self, owner_id: str, days: int = 30) -> InterestProfile:
        """
        Rebuild the owner's profile from the last ``days`` days and store it.

        The stored profile is replaced, never merged.
        """
        now = utc_now()
        current_start = to_iso(days_ago(days, now))
        window = self._window(owner_id, current_start, None, with_embeddings=True)
        notes, highlights = window['notes'], window['highlights']

        profile = InterestProfile(owner_id=owner_id, analysis_period_days=days, last_analyzed_at=to_iso(now))
        profile.total_notes_analyzed = len(notes)
        profile.total_highlights_analyzed = len(highlights)

        vectors = [v for v in (self.embeddings.parse_stored(d.get('embedding')) for d in notes + highlights) if v]
        if vectors:
            profile.interest_vector = mean_vector(vectors)

        items = [{'text': n.get('content'), 'created_at': n['created_at']} for n in notes]
        items += [{'text': h.get('text'), 'created_at': h['created_at']} for h in highlights]
        profile.top_concepts = extract_concepts(items, days, now)

        previous = self._window(owner_id, to_iso(days_ago(days * 2, now)), current_start, with_embeddings=False)
        previous_items = [{'text': n.get('content'), 'created_at': n['created_at']} for n in previous['notes']]
        previous_items += [{'text': h.get('text'), 'created_at': h['created_at']} for h in previous['highlights']]
        profile.trends = compute_trends(profile.top_concepts, extract_concepts(previous_items, days, now))

        self.store.delete_where(INTEREST_PROFILES, owner_id)
        self.store.insert(INTEREST_PROFILES, profile.to_document(), doc_id=stable_id(owner_id, 'interest_profile'))

        logger.info(f'Built interest profile for owner {owner_id}: {len(notes)} notes, {len(highlights)} highlights, '
                    f'{len(profile.top_concepts)} concepts')
        return profile

    def get_cached_profile(self, owner_id: str) -> Optional[InterestProfile]:
        found = self.store.find(INTEREST_PROFILES, owner_id, limit=1)
        return InterestProfile.from_document(found[0]) if found else None

    def get_interest_trends(self, owner_id: str) -> Dict[str, List[str]]:
        profile = self.get_cached_profile(owner_id) or self.build_interest_profile(owner_id)
        return profile.trends

    def get_recommended_documents(self, owner_id: str, limit: int = 10) -> List[str]:
        """
        Documents whose descriptions are similar to the owner's interest vector.

        Returns:
            Document ids, most similar first
        """
        profile = self.get_cached_profile(owner_id) or self.build_interest_profile(owner_id)
        if not profile.interest_vector:
            return []

        documents = self.store.find(DOCUMENTS, owner_id, exists=['description_embedding'], limit=10000)
        ids = []
        vectors = []
        for document in documents:
            vector = self.embeddings.parse_stored(document.get('description_embedding'))
            if vector is not None:
                ids.append(document.get('document_id') or document['id'])
                vectors.append(vector)

        matches = find_similar(profile.interest_vector, vectors, RECOMMENDATION_THRESHOLD)[:limit]
        return [ids[index] for index, _ in matches]
