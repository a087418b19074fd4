from __future__ import annotations

import copy
import hashlib
import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pytest

from scholarmem.factory import Services, build_services
from scholarmem.models.core import DOCUMENTS, ENTITIES, NOTES, MemoryEntity, new_id
from scholarmem.utils.config import load_config
from scholarmem.utils.errors import ServiceUnavailable, ValidationError

DIMENSION = 8
OWNER = 'owner-1'


# =============================================================================
# In-memory PersistentStore
# =============================================================================


class InMemoryStore:
    """Dict-backed store with the same owner-scoped interface as OpenSearchStore."""

    def __init__(self) -> None:
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def _collection(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self.collections.setdefault(name, {})

    @staticmethod
    def _require_owner(owner_id: Optional[str]) -> None:
        if not owner_id or not str(owner_id).strip():
            raise ValidationError('owner_id is required for every store operation')

    @staticmethod
    def _value(doc_id: str, document: Dict[str, Any], field: str) -> Any:
        return doc_id if field in ('_id', 'id') else document.get(field)

    def _matches(self, doc_id: str, document: Dict[str, Any], owner_id: str, filters, any_of, exists, ranges,
                 exclude_ids) -> bool:
        if document.get('owner_id') != owner_id or doc_id in exclude_ids:
            return False

        for field, expected in (filters or {}).items():
            actual = self._value(doc_id, document, field)
            if isinstance(expected, (list, tuple, set)):
                if actual not in expected:
                    return False
            elif actual != expected:
                return False

        for field in exists:
            if document.get(field) in (None, [], ''):
                return False

        for field, bounds in (ranges or {}).items():
            actual = document.get(field)
            if actual is None:
                return False
            for op, bound in bounds.items():
                if op == 'gte' and not actual >= bound:
                    return False
                if op == 'gt' and not actual > bound:
                    return False
                if op == 'lte' and not actual <= bound:
                    return False
                if op == 'lt' and not actual < bound:
                    return False

        if any_of:
            for field, expected in any_of.items():
                actual = self._value(doc_id, document, field)
                if isinstance(expected, (list, tuple, set)) and actual in expected:
                    return True
                if not isinstance(expected, (list, tuple, set)) and actual == expected:
                    return True
            return False

        return True

    def ensure_collection(self, collection: str) -> str:
        if collection in self.collections:
            return 'exists'
        self._collection(collection)
        return 'created'

    def insert(self, collection: str, document: Dict[str, Any], doc_id: Optional[str] = None) -> Optional[str]:
        self._require_owner(document.get('owner_id'))
        documents = self._collection(collection)
        doc_id = doc_id or str(uuid.uuid4())
        if doc_id in documents:
            return None
        documents[doc_id] = copy.deepcopy({k: v for k, v in document.items() if k != 'id'})
        return doc_id

    def get(self, collection: str, doc_id: str, owner_id: str) -> Optional[Dict[str, Any]]:
        self._require_owner(owner_id)
        document = self._collection(collection).get(doc_id)
        if document is None or document.get('owner_id') != owner_id:
            return None
        return {'id': doc_id, **copy.deepcopy(document)}

    def find(self,
             collection: str,
             owner_id: str,
             filters=None,
             any_of=None,
             exists: Iterable[str] = (),
             ranges=None,
             exclude_ids: Iterable[str] = (),
             sort: Optional[Sequence[Tuple[str, str]]] = None,
             limit: int = 100) -> List[Dict[str, Any]]:
        self._require_owner(owner_id)
        exists = list(exists)
        exclude_ids = set(exclude_ids)
        results = [{
            'id': doc_id,
            **copy.deepcopy(document)
        } for doc_id, document in self._collection(collection).items()
                   if self._matches(doc_id, document, owner_id, filters, any_of, exists, ranges, exclude_ids)]

        for field, order in reversed(list(sort or [])):
            present = [r for r in results if r.get(field) is not None]
            missing = [r for r in results if r.get(field) is None]
            present.sort(key=lambda r: r[field], reverse=order == 'desc')
            results = present + missing

        return results[:limit]

    def update(self, collection: str, doc_id: str, owner_id: str, fields: Dict[str, Any]) -> bool:
        self._require_owner(owner_id)
        document = self._collection(collection).get(doc_id)
        if document is None or document.get('owner_id') != owner_id:
            return False
        document.update(copy.deepcopy(fields))
        return True

    def increment(self, collection: str, doc_id: str, owner_id: str, field: str, amount: int = 1) -> bool:
        self._require_owner(owner_id)
        document = self._collection(collection).get(doc_id)
        if document is None or document.get('owner_id') != owner_id:
            return False
        document[field] = (document.get(field) or 0) + amount
        return True

    def delete(self, collection: str, doc_id: str, owner_id: str) -> bool:
        return self.delete_where(collection, owner_id, filters={'_id': doc_id}) > 0

    def delete_where(self, collection: str, owner_id: str, filters=None, any_of=None, ranges=None) -> int:
        self._require_owner(owner_id)
        documents = self._collection(collection)
        doomed = [
            doc_id for doc_id, document in documents.items()
            if self._matches(doc_id, document, owner_id, filters, any_of, [], ranges, set())
        ]
        for doc_id in doomed:
            del documents[doc_id]
        return len(doomed)

    def health_check(self) -> bool:
        return True

    def all(self, collection: str) -> List[Dict[str, Any]]:
        return [{'id': doc_id, **document} for doc_id, document in self._collection(collection).items()]


# =============================================================================
# Providers
# =============================================================================


def vec(*values: float) -> List[float]:
    """Pad a short vector to the test dimension."""
    return list(values) + [0.0] * (DIMENSION - len(values))


class FakeEmbedProvider:
    """Deterministic embeddings.

    Registered texts map to fixed vectors. Unregistered texts get a hash-derived
    vector on the upper half of the dimensions, orthogonal to every registered
    vector that only uses the lower half.
    """

    supports_batch = False

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None) -> None:
        self.vectors: Dict[str, List[float]] = dict(vectors or {})
        self.available = True
        self.failing: set = set()
        self.calls: List[str] = []

    def register(self, text: str, vector: List[float]) -> None:
        self.vectors[text] = vector

    def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if not self.available or text in self.failing:
            raise ServiceUnavailable('embedding provider offline')
        if text in self.vectors:
            return list(self.vectors[text])
        digest = hashlib.sha256(text.encode('utf-8')).digest()
        half = DIMENSION // 2
        return [0.0] * half + [(digest[i] - 127.5) / 127.5 for i in range(DIMENSION - half)]


class FakeReasoning:
    """Scripted reasoning service: returns (or raises) queued responses in order."""

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.prompts: List[str] = []

    def queue(self, *responses: Any) -> None:
        self.responses.extend(responses)

    def generate_json(self, prompt: str, system_prompt: str, temperature: Optional[float] = None) -> Any:
        self.prompts.append(prompt)
        if not self.responses:
            raise ServiceUnavailable('reasoning service offline')
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def add_entity(store: InMemoryStore,
               text: str,
               embedding: Optional[List[float]] = None,
               entity_type: str = 'concept',
               owner_id: str = OWNER,
               **fields: Any) -> MemoryEntity:
    """Persist an entity directly, bypassing extraction."""
    entity = MemoryEntity(owner_id=owner_id,
                          entity_type=entity_type,
                          text=text,
                          embedding=embedding if embedding is not None else [],
                          id=new_id(),
                          **fields)
    store.insert(ENTITIES, entity.to_document(), doc_id=entity.id)
    return entity


def add_document(store: InMemoryStore,
                 document_id: str,
                 embedding: Optional[List[float]] = None,
                 title: str = '',
                 owner_id: str = OWNER,
                 created_at: str = '2026-01-01T00:00:00.000000+00:00') -> None:
    store.insert(DOCUMENTS, {
        'owner_id': owner_id,
        'document_id': document_id,
        'title': title or document_id,
        'description': f'Description of {document_id}',
        'description_embedding': embedding,
        'created_at': created_at
    },
                 doc_id=document_id)


def add_note(store: InMemoryStore,
             note_id: str,
             content: str,
             embedding: Optional[List[float]] = None,
             document_id: Optional[str] = None,
             owner_id: str = OWNER,
             created_at: str = '2026-01-01T00:00:00.000000+00:00') -> None:
    store.insert(NOTES, {
        'owner_id': owner_id,
        'document_id': document_id,
        'content': content,
        'page_number': 1,
        'note_type': 'freeform',
        'embedding': embedding,
        'created_at': created_at
    },
                 doc_id=note_id)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def app_config():
    config = load_config()
    config.bedrock_embed.dimension = DIMENSION
    config.bedrock_embed.batch_size = 4
    config.opensearch.dimension = DIMENSION
    return config


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def embed_provider() -> FakeEmbedProvider:
    return FakeEmbedProvider()


@pytest.fixture
def reasoning() -> FakeReasoning:
    return FakeReasoning()


@pytest.fixture
def services(app_config, store, embed_provider, reasoning) -> Services:
    return build_services(app_config, store=store, embed_provider=embed_provider, reasoning=reasoning)
