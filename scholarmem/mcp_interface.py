"""
MCP Interface Layer using fastmcp for agent orchestration.

Tools return plain JSON-able structures. Internal errors are logged and
replaced by a generic message; validation errors are reported as is.
"""

from dataclasses import asdict
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from .factory import Services, build_services
from .models.actions import action_to_dict
from .utils.config import config
from .utils.errors import ValidationError
from .utils.health_check import get_system_info
from .utils.logging_config import get_logger

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('ScholarMem')


@lru_cache(maxsize=1)
def get_services() -> Services:
    return build_services(config)


def _require(owner_id: str) -> None:
    if not owner_id or not owner_id.strip():
        raise ValueError('Owner ID is required')


def _fail(operation: str, error: Exception) -> Exception:
    if isinstance(error, (ValidationError, ValueError)):
        return Exception(f'{operation} failed: {error}')
    logger.error(f'Unexpected error in MCP {operation.lower()}: {error}')
    return Exception(f'{operation} failed due to an internal error')


@mcp.tool()
def extract_and_store_memory(owner_id: str,
                             messages: List[Dict[str, str]],
                             conversation_id: Optional[str] = None,
                             document_id: Optional[str] = None,
                             document_title: Optional[str] = None) -> Dict[str, Any]:
    """Extract memory entities and relationships from a conversation and store them.

    Args:
        owner_id: Owner ID
        messages: Conversation turns with 'role' and 'content'
        conversation_id: Conversation the turns belong to
        document_id: Document being discussed
        document_title: Title of that document

    Returns:
        Extraction counts
    """
    try:
        _require(owner_id)
        result = get_services().memory_store.extract_and_store(owner_id, messages, conversation_id, document_id, document_title)
        return asdict(result)
    except Exception as e:
        raise _fail('Memory extraction', e)


@mcp.tool()
def search_memories(owner_id: str,
                    query: str,
                    limit: int = 10,
                    entity_types: Optional[List[str]] = None,
                    document_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """Search stored memories by meaning.

    Args:
        owner_id: Owner ID
        query: Natural language query
        limit: Maximum number of results to return (default: 10)
        entity_types: Restrict to these entity types
        document_id: Restrict to one document

    Returns:
        List of {id, entity_type, text, similarity}
    """
    try:
        _require(owner_id)
        if not query or not query.strip():
            return []

        results = get_services().memory_store.search_memories(owner_id, query, limit, entity_types, document_id)
        logger.debug(f'MCP search returned {len(results)} memories for owner {owner_id}')
        return [{
            'id': r.entity.id,
            'entity_type': r.entity.entity_type,
            'text': r.entity.text,
            'similarity': r.similarity
        } for r in results]
    except Exception as e:
        raise _fail('Memory search', e)


@mcp.tool()
def get_or_translate_action(owner_id: str, query: str, context: Optional[str] = None) -> Dict[str, Any]:
    """Resolve a natural language command into a reader action, using the semantic cache.

    Args:
        owner_id: Owner ID
        query: Natural language command
        context: Optional context for translation

    Returns:
        {hit, action, confidence, from_cache}
    """
    try:
        _require(owner_id)
        result = get_services().action_cache.get_or_translate(owner_id, query, context)
        return {
            'hit': result.hit,
            'action': action_to_dict(result.action) if result.action is not None else None,
            'confidence': result.confidence,
            'from_cache': result.from_cache
        }
    except Exception as e:
        raise _fail('Action translation', e)


@mcp.tool()
def build_context(owner_id: str,
                  query: str,
                  conversation_id: Optional[str] = None,
                  document_id: Optional[str] = None,
                  limit: int = 15) -> Dict[str, Any]:
    """Build memory-augmented context for a chat query.

    Returns:
        {context_text, token_estimate, memory_count, note_count, highlight_count}
    """
    try:
        _require(owner_id)
        bundle = get_services().context_builder.build_context(owner_id, query, conversation_id, document_id, limit)
        return {
            'context_text': bundle.context_text,
            'token_estimate': bundle.token_estimate,
            'memory_count': len(bundle.memories),
            'note_count': len(bundle.notes),
            'highlight_count': len(bundle.highlights)
        }
    except Exception as e:
        raise _fail('Context building', e)


@mcp.tool()
def detect_relationships(owner_id: str, note_id: Optional[str] = None) -> int:
    """Detect relationships for one note, or for every note without any when no note is given.

    Returns:
        Number of relationships created
    """
    try:
        _require(owner_id)
        detector = get_services().detector
        if note_id:
            return detector.detect_note_relationships(owner_id, note_id)
        return detector.detect_all_note_relationships(owner_id)
    except Exception as e:
        raise _fail('Relationship detection', e)


@mcp.tool()
def get_related_memories(owner_id: str, memory_id: str, depth: int = 1) -> Dict[str, Any]:
    """Memories within `depth` hops of a memory.

    Returns:
        {nodes, edges}
    """
    try:
        _require(owner_id)
        return asdict(get_services().graph.get_related_memories(owner_id, memory_id, depth))
    except Exception as e:
        raise _fail('Related memory lookup', e)


@mcp.tool()
def get_document_graph(owner_id: str, document_id: str, max_depth: int = 2) -> Dict[str, Any]:
    """Graph of documents, notes and memories around a document.

    Returns:
        {nodes, edges}
    """
    try:
        _require(owner_id)
        return asdict(get_services().graph.get_document_centric_graph(owner_id, document_id, max_depth))
    except Exception as e:
        raise _fail('Document graph', e)


@mcp.tool()
def search_across_graphs(owner_id: str, query: str, limit: int = 20) -> List[Dict[str, Any]]:
    """Search documents, notes and memories at once."""
    try:
        _require(owner_id)
        return [asdict(node) for node in get_services().graph.search_across_graphs(owner_id, query, limit)]
    except Exception as e:
        raise _fail('Unified search', e)


@mcp.tool()
def get_timeline(owner_id: str, concept: str) -> List[Dict[str, Any]]:
    """Chronological list of items related to a concept."""
    try:
        _require(owner_id)
        return [asdict(item) for item in get_services().graph.get_timeline(owner_id, concept)]
    except Exception as e:
        raise _fail('Timeline', e)


@mcp.tool()
def clear_action_cache(owner_id: str, max_age_days: Optional[int] = None) -> int:
    """Delete cached actions not used within `max_age_days` days.

    Returns:
        Number of entries deleted
    """
    try:
        _require(owner_id)
        return get_services().action_cache.clear_old_entries(owner_id, max_age_days)
    except Exception as e:
        raise _fail('Action cache cleanup', e)


@mcp.tool()
def get_health() -> Dict[str, Any]:
    """Report configuration and the health of Bedrock and OpenSearch."""
    try:
        return get_system_info(get_services(), config)
    except Exception as e:
        raise _fail('Health check', e)


if __name__ == '__main__':
    transport = config.mcp.transport
    host = config.mcp.host
    port = config.mcp.port
    mcp.run(transport=transport, host=host, port=port)
