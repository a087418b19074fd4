"""
Composition root: wires providers, store and services together.
"""

from dataclasses import dataclass
from typing import Any, Optional

from .services.action_cache import ActionSemanticCache
from .services.context_builder import ContextBuilder
from .services.embedding_gateway import EmbeddingGateway
from .services.interest_profile import InterestProfileService
from .services.memory_store import MemoryStore
from .services.relationship_detector import RelationshipDetector
from .services.unified_graph import UnifiedGraphEngine
from .utils.config import AppConfig
from .utils.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class Services:
    embeddings: EmbeddingGateway
    memory_store: MemoryStore
    graph: UnifiedGraphEngine
    detector: RelationshipDetector
    action_cache: ActionSemanticCache
    context_builder: ContextBuilder
    interest_profiles: InterestProfileService
    store: Any
    embed_provider: Any
    reasoning: Any


def build_services(config: Optional[AppConfig] = None, store=None, embed_provider=None, reasoning=None) -> Services:
    """
    Build every service over shared collaborators.

    Collaborators that aren't passed in are created from configuration
    (Bedrock for embeddings and reasoning, OpenSearch for storage).

    Args:
        config: AppConfig instance, uses default if None
        store: PersistentStore
        embed_provider: Embedding provider
        reasoning: Reasoning service

    Returns:
        Services container
    """
    if config is None:
        from .utils.config import config as default_config
        config = default_config

    if embed_provider is None:
        from .utils.bedrock_embed import BedrockEmbed
        embed_provider = BedrockEmbed(config.bedrock_embed)

    if reasoning is None:
        from .utils.bedrock_llm import BedrockLLM
        reasoning = BedrockLLM(config.bedrock_llm)

    if store is None:
        from .utils.opensearch_client import OpenSearchStore
        store = OpenSearchStore(config.opensearch)
        store.ensure_all()

    embeddings = EmbeddingGateway(embed_provider, config.bedrock_embed.dimension, config.bedrock_embed.batch_size)
    memory_store = MemoryStore(store, embeddings, reasoning, config.memory)

    services = Services(embeddings=embeddings,
                        memory_store=memory_store,
                        graph=UnifiedGraphEngine(store, memory_store, embeddings, config.memory, config.graph),
                        detector=RelationshipDetector(store, embeddings, config.detector, config.memory.score_precision),
                        action_cache=ActionSemanticCache(store, embeddings, reasoning, config.action_cache),
                        context_builder=ContextBuilder(store, memory_store, embeddings),
                        interest_profiles=InterestProfileService(store, embeddings),
                        store=store,
                        embed_provider=embed_provider,
                        reasoning=reasoning)

    logger.info('Initialized ScholarMem services')
    return services
