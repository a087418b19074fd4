"""
Semantic action cache.

Natural-language commands are matched by embedding similarity against earlier
commands of the same owner. A close enough match reuses the action it was
resolved to; otherwise the reasoning service translates the command and the
validated result is cached for next time.
"""

from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple

from ..models.actions import action_to_dict, parse_action
from ..models.core import ACTION_CACHE, ActionCacheEntry, ActionCacheResult, stable_id
from ..utils.config import ActionCacheConfig
from ..utils.errors import ServiceUnavailable, ValidationError
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import days_ago, to_iso
from ..utils.vector_math import cosine_similarity, round_score
from .embedding_gateway import EmbeddingGateway

logger = get_logger(__name__)

TRANSLATION_SYSTEM_PROMPT = """
You translate natural-language commands from a reader into a structured action for a document reading application.

Available action types:
1. highlight - Highlight text in the document
2. create_note - Create an annotation or note (note_type: cornell|outline|mindmap|chart|boxing|freeform)
3. search_concept - Search for a concept (scope: current|library|memory|all)
4. export - Export notes or highlights (format: markdown|json|pdf|docx; content: notes|highlights|annotations|all)
5. tts_play - Start text-to-speech (mode: page|to_end|selection)
6. question - Ask a question (context: document|memory|both; mode: study|general|notes)
7. navigate - Navigate to a page, section, bookmark or highlight

Return ONLY a JSON object matching one of these action types, for example:
```json
{"type": "highlight", "text": "this paragraph", "colorId": "yellow", "colorHex": "#FFD700", "pageNumber": 5, "positionData": {"x": 0, "y": 0, "width": 100, "height": 20}}
{"type": "search_concept", "query": "methodology", "scope": "memory"}
{"type": "question", "query": "What is the main argument?", "context": "document"}
```

If the command doesn't match any action type, return null."""


def normalize_command(text: str) -> str:
    return ' '.join(text.lower().split())


class ActionSemanticCache:
    """Resolve commands to actions, reusing earlier resolutions of similar commands."""

    def __init__(self, store, embeddings: EmbeddingGateway, reasoning, config: ActionCacheConfig):
        self.store = store
        self.embeddings = embeddings
        self.reasoning = reasoning
        self.config = config

    def get_or_translate(self, owner_id: str, query: str, context: Optional[str] = None) -> ActionCacheResult:
        """
        Resolve a command to an action.

        Args:
            owner_id: Owner of the cache
            query: Natural-language command
            context: Optional context passed to the reasoning service

        Returns:
            ActionCacheResult. ``from_cache`` is True for a cache hit; a fresh
            translation has ``hit`` True with the default confidence; a command
            that can't be translated has ``hit`` False.
        """
        try:
            query_vector = self.embeddings.embed(query)
        except ServiceUnavailable as e:
            logger.warning(f'Action cache lookup skipped, command could not be embedded: {e}')
            query_vector = None

        if query_vector is not None:
            cached = self._lookup(owner_id, query_vector)
            if cached is not None:
                return cached

        action = self._translate(query, context)
        if action is None:
            return ActionCacheResult(hit=False, from_cache=False)

        if query_vector is not None:
            self._store(owner_id, query, query_vector, action)

        return ActionCacheResult(hit=True, action=action, confidence=self.config.miss_confidence, from_cache=False)

    def _lookup(self, owner_id: str, query_vector: List[float]) -> Optional[ActionCacheResult]:
        documents = self.store.find(ACTION_CACHE,
                                    owner_id,
                                    exists=['embedding'],
                                    sort=[('hit_count', 'desc'), ('created_at', 'asc')],
                                    limit=self.config.candidate_limit)

        matches: List[Tuple[Dict[str, Any], float]] = []
        for document in documents:
            vector = self.embeddings.parse_stored(document.get('embedding'))
            if vector is None:
                continue
            similarity = cosine_similarity(query_vector, vector)
            if similarity >= self.config.hit_threshold:
                matches.append((document, similarity))

        # sorted() is stable, so equal similarities keep hit-count order
        for document, similarity in sorted(matches, key=lambda match: match[1], reverse=True):
            try:
                action = parse_action(document.get('resolved_action'))
            except ValidationError as e:
                logger.warning(f'Removing cached action {document["id"]} that no longer validates: {e}')
                self.store.delete(ACTION_CACHE, document['id'], owner_id)
                continue

            self.store.increment(ACTION_CACHE, document['id'], owner_id, 'hit_count', 1)
            self.store.update(ACTION_CACHE, document['id'], owner_id, {'last_used_at': to_iso()})

            logger.debug(f'Action cache hit {document["id"]} for owner {owner_id} (similarity {similarity:.4f})')
            return ActionCacheResult(hit=True, action=action, confidence=round_score(similarity), from_cache=True)

        logger.debug(f'Action cache miss for owner {owner_id} ({len(documents)} candidates)')
        return None

    def _translate(self, query: str, context: Optional[str]):
        prompt = f'User command: "{query}"'
        if context:
            prompt += f'\nContext: {context}'

        try:
            payload = self.reasoning.generate_json(prompt, TRANSLATION_SYSTEM_PROMPT)
        except ServiceUnavailable as e:
            logger.warning(f'Reasoning service unavailable for action translation: {e}')
            return None
        except ValidationError as e:
            logger.info(f'Unparsable action translation: {e}')
            return None

        try:
            return parse_action(payload)
        except ValidationError as e:
            logger.info(f'Rejected translated action: {e}')
            return None

    def _store(self, owner_id: str, query: str, query_vector: List[float], action) -> None:
        entry = ActionCacheEntry(owner_id=owner_id,
                                 natural_language=query,
                                 resolved_action=action_to_dict(action),
                                 action_type=action.type,
                                 embedding=self.embeddings.format_for_storage(query_vector))
        entry.id = stable_id(owner_id, normalize_command(query))

        if self.store.insert(ACTION_CACHE, entry.to_document(), doc_id=entry.id) is None:
            logger.debug(f'Action cache entry for "{query}" already exists')

    def clear_old_entries(self, owner_id: str, max_age_days: Optional[int] = None) -> int:
        """
        Delete entries not used within ``max_age_days``.

        Returns:
            Number of entries deleted
        """
        max_age_days = self.config.max_age_days if max_age_days is None else max_age_days
        cutoff = to_iso(days_ago(max_age_days))
        deleted = self.store.delete_where(ACTION_CACHE, owner_id, ranges={'last_used_at': {'lt': cutoff}})
        logger.info(f'Cleared {deleted} action cache entries older than {max_age_days} days for owner {owner_id}')
        return deleted

    def get_stats(self, owner_id: str) -> Dict[str, Any]:
        """Entry count, total hits and the most used action types."""
        documents = self.store.find(ACTION_CACHE, owner_id, limit=10000)

        hits_by_type: Dict[str, int] = defaultdict(int)
        for document in documents:
            hits_by_type[document.get('action_type') or 'unknown'] += document.get('hit_count') or 0

        top_actions = sorted(hits_by_type.items(), key=lambda item: item[1], reverse=True)[:10]
        return {
            'total_entries': len(documents),
            'total_hits': sum(hits_by_type.values()),
            'top_actions': [{
                'type': action_type,
                'hits': hits
            } for action_type, hits in top_actions],
        }
