"""
Core data models for the semantic memory layer.

Timestamps are kept as UTC ISO-8601 strings, the same encoding the store uses.
"""

import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from ..utils.errors import ValidationError
from ..utils.timestamp_utils import to_iso

ENTITY_TYPES = ('concept', 'question', 'insight', 'reference', 'action', 'document')
RELATIONSHIP_TYPES = ('relates_to', 'contradicts', 'supports', 'cites', 'explains')
NOTE_RELATED_TYPES = ('document', 'note', 'memory')
NOTE_RELATIONSHIP_TYPES = ('references', 'illustrates', 'contradicts', 'complements', 'exemplifies', 'defines')

# Store collections
ENTITIES = 'memory_entities'
RELATIONSHIPS = 'memory_relationships'
NOTE_RELATIONSHIPS = 'note_relationships'
ACTION_CACHE = 'action_cache'
INTEREST_PROFILES = 'interest_profiles'
DOCUMENTS = 'documents'
DOCUMENT_LINKS = 'document_links'
NOTES = 'notes'
HIGHLIGHTS = 'highlights'


_ID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, 'scholarmem')


def new_id() -> str:
    return str(uuid.uuid4())


def stable_id(*parts: Any) -> str:
    """Deterministic id for records that must be unique on a key."""
    return str(uuid.uuid5(_ID_NAMESPACE, '|'.join(str(p) for p in parts)))


def _pick(document: Dict[str, Any], cls) -> Dict[str, Any]:
    names = cls.__dataclass_fields__.keys()
    return {k: v for k, v in document.items() if k in names}


@dataclass
class MemoryEntity:
    """A knowledge entity extracted from a conversation, note or highlight.

    Known metadata keys: ``source`` (conversation, note, highlight),
    ``source_message_index``, ``note_ids``, ``highlight_ids``.
    """
    owner_id: str
    entity_type: str  # One of ENTITY_TYPES
    text: str
    embedding: List[float] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    conversation_id: Optional[str] = None
    document_id: Optional[str] = None
    degree: int = 0  # Number of incident relationships
    id: Optional[str] = None
    created_at: str = field(default_factory=to_iso)

    def validate(self) -> None:
        if self.entity_type not in ENTITY_TYPES:
            raise ValidationError(f'Unknown entity type: {self.entity_type!r}')
        if not isinstance(self.text, str) or not self.text.strip():
            raise ValidationError('Entity text must be a non-empty string')
        if not isinstance(self.metadata, dict):
            raise ValidationError('Entity metadata must be an object')

    def to_document(self) -> Dict[str, Any]:
        document = asdict(self)
        document.pop('id')
        return document

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> 'MemoryEntity':
        return cls(**_pick(document, cls))


@dataclass
class MemoryRelationship:
    """Directed, typed edge between two entities of the same owner."""
    owner_id: str
    from_id: str
    to_id: str
    relationship_type: str  # One of RELATIONSHIP_TYPES
    strength: float = 0.5
    id: Optional[str] = None
    created_at: str = field(default_factory=to_iso)

    def validate(self) -> None:
        if self.relationship_type not in RELATIONSHIP_TYPES:
            raise ValidationError(f'Unknown relationship type: {self.relationship_type!r}')
        if not 0.0 <= self.strength <= 1.0:
            raise ValidationError(f'Relationship strength out of range: {self.strength}')

    def to_document(self) -> Dict[str, Any]:
        document = asdict(self)
        document.pop('id')
        return document

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> 'MemoryRelationship':
        return cls(**_pick(document, cls))


@dataclass
class NoteRelationship:
    """Link from a note to a document, another note or a memory."""
    owner_id: str
    note_id: str
    related_type: str  # One of NOTE_RELATED_TYPES
    related_id: str
    relationship_type: str  # One of NOTE_RELATIONSHIP_TYPES
    similarity_score: Optional[float] = None
    auto_detected: bool = True
    id: Optional[str] = None
    created_at: str = field(default_factory=to_iso)

    def validate(self) -> None:
        if self.related_type not in NOTE_RELATED_TYPES:
            raise ValidationError(f'Unknown related type: {self.related_type!r}')
        if self.relationship_type not in NOTE_RELATIONSHIP_TYPES:
            raise ValidationError(f'Unknown note relationship type: {self.relationship_type!r}')
        if self.similarity_score is not None and not 0.0 <= self.similarity_score <= 1.0:
            raise ValidationError(f'Similarity score out of range: {self.similarity_score}')

    def to_document(self) -> Dict[str, Any]:
        document = asdict(self)
        document.pop('id')
        return document

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> 'NoteRelationship':
        return cls(**_pick(document, cls))


@dataclass
class ActionCacheEntry:
    """A natural-language command and the action it was resolved to."""
    owner_id: str
    natural_language: str
    resolved_action: Dict[str, Any]  # Encoded UserAction
    action_type: str
    embedding: List[float] = field(default_factory=list)
    hit_count: int = 0
    id: Optional[str] = None
    last_used_at: str = field(default_factory=to_iso)
    created_at: str = field(default_factory=to_iso)

    def to_document(self) -> Dict[str, Any]:
        document = asdict(self)
        document.pop('id')
        return document

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> 'ActionCacheEntry':
        return cls(**_pick(document, cls))


@dataclass
class InterestConcept:
    concept: str
    frequency: int
    importance: float
    first_seen: str
    last_seen: str


@dataclass
class InterestProfile:
    """Per-owner reading interests, rebuilt from scratch on every analysis."""
    owner_id: str
    interest_vector: Optional[List[float]] = None
    top_concepts: List[InterestConcept] = field(default_factory=list)
    trends: Dict[str, List[str]] = field(default_factory=lambda: {'emerging': [], 'declining': [], 'stable': []})
    total_notes_analyzed: int = 0
    total_highlights_analyzed: int = 0
    analysis_period_days: int = 30
    last_analyzed_at: str = field(default_factory=to_iso)

    def to_document(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> 'InterestProfile':
        values = _pick(document, cls)
        values['top_concepts'] = [InterestConcept(**c) for c in values.get('top_concepts') or []]
        return cls(**values)


# Records owned by the reading application; only read here


@dataclass
class DocumentDescription:
    document_id: str
    owner_id: str
    title: str = ''
    description: str = ''
    description_embedding: Optional[List[float]] = None
    created_at: Optional[str] = None

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> 'DocumentDescription':
        values = _pick(document, cls)
        values.setdefault('document_id', document.get('id'))
        return cls(**values)


@dataclass
class DocumentLink:
    source_document_id: str
    related_document_id: str
    relationship_description: str = ''
    relevance_percentage: Optional[float] = None

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> 'DocumentLink':
        return cls(**_pick(document, cls))


@dataclass
class Note:
    id: str
    owner_id: str
    document_id: Optional[str] = None
    content: str = ''
    page_number: Optional[int] = None
    note_type: str = 'freeform'
    embedding: Optional[List[float]] = None
    created_at: Optional[str] = None

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> 'Note':
        return cls(**_pick(document, cls))


@dataclass
class Highlight:
    id: str
    owner_id: str
    document_id: Optional[str] = None
    text: str = ''
    color_hex: Optional[str] = None
    page_number: Optional[int] = None
    is_orphaned: bool = False
    embedding: Optional[List[float]] = None
    created_at: Optional[str] = None

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> 'Highlight':
        return cls(**_pick(document, cls))


# Operation results


@dataclass
class ExtractionResult:
    success: bool
    entities_created: int = 0
    relationships_created: int = 0
    entities_failed: int = 0
    relationships_dropped: int = 0
    error: Optional[str] = None


@dataclass
class ScoredEntity:
    entity: MemoryEntity
    similarity: float


@dataclass
class ActionCacheResult:
    hit: bool
    action: Optional[Any] = None  # UserAction variant
    confidence: float = 0.0
    from_cache: bool = False


@dataclass
class ContextBundle:
    memories: List[ScoredEntity] = field(default_factory=list)
    notes: List[Note] = field(default_factory=list)
    highlights: List[Highlight] = field(default_factory=list)
    conversation_summary: Optional[str] = None
    context_text: str = ''
    token_estimate: int = 0


@dataclass
class MemoryNode:
    id: str
    entity_type: str
    text: str
    degree: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[str] = None

    @classmethod
    def from_entity(cls, entity: MemoryEntity) -> 'MemoryNode':
        return cls(id=entity.id,
                   entity_type=entity.entity_type,
                   text=entity.text,
                   degree=entity.degree,
                   metadata=dict(entity.metadata),
                   created_at=entity.created_at)


@dataclass
class MemoryEdge:
    id: str
    source: str
    target: str
    relationship_type: str
    strength: float

    @classmethod
    def from_relationship(cls, relationship: MemoryRelationship) -> 'MemoryEdge':
        return cls(id=relationship.id,
                   source=relationship.from_id,
                   target=relationship.to_id,
                   relationship_type=relationship.relationship_type,
                   strength=relationship.strength)


@dataclass
class MemoryGraph:
    nodes: List[MemoryNode] = field(default_factory=list)
    edges: List[MemoryEdge] = field(default_factory=list)


@dataclass
class UnifiedNode:
    id: str  # Prefixed key: doc:, note: or mem:
    node_type: str  # document, note or memory
    label: str
    data: Dict[str, Any] = field(default_factory=dict)
    similarity: Optional[float] = None
    relationship_type: Optional[str] = None


@dataclass
class UnifiedEdge:
    source: str
    target: str
    relationship_type: str
    strength: Optional[float] = None


@dataclass
class UnifiedGraph:
    nodes: List[UnifiedNode] = field(default_factory=list)
    edges: List[UnifiedEdge] = field(default_factory=list)


@dataclass
class TimelineItem:
    node: UnifiedNode
    timestamp: str
    related_items: List[str] = field(default_factory=list)
