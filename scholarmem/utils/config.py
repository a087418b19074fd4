"""
Configuration management for AWS services and memory layer settings.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class BedrockLLMConfig:
    """Configuration for the Amazon Bedrock reasoning model."""
    region: str
    model_id: str
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float
    connect_timeout: int
    read_timeout: int


@dataclass
class BedrockEmbedConfig:
    """Configuration for the Amazon Bedrock embedding model."""
    region: str
    model_id: str
    dimension: int
    batch_size: int
    retry_attempts: int
    retry_delay: float
    connect_timeout: int
    read_timeout: int


@dataclass
class OpenSearchConfig:
    """Configuration for OpenSearch."""
    endpoint: str
    port: int
    region: str
    index_prefix: str
    dimension: int
    use_aws_auth: bool
    service: str


@dataclass
class MemoryConfig:
    """Configuration for entity storage and graph algorithms."""
    search_threshold: float
    cluster_entity_cap: int
    default_strength: float
    score_precision: int


@dataclass
class DetectorConfig:
    """Band thresholds and candidate windows for relationship detection."""
    strong_threshold: float
    middle_threshold: float
    weak_threshold: float
    document_window: int
    memory_window: int
    note_window: int


@dataclass
class GraphConfig:
    """Limits for the unified document/note/memory graph."""
    search_threshold: float
    search_document_limit: int
    search_memory_limit: int
    search_note_limit: int
    expansion_limit: int
    timeline_limit: int


@dataclass
class ActionCacheConfig:
    """Configuration for the semantic action cache."""
    hit_threshold: float
    candidate_limit: int
    miss_confidence: float
    max_age_days: int


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    bedrock_llm: BedrockLLMConfig
    bedrock_embed: BedrockEmbedConfig
    opensearch: OpenSearchConfig
    memory: MemoryConfig
    detector: DetectorConfig
    graph: GraphConfig
    action_cache: ActionCacheConfig
    mcp: MCPConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock reasoning configuration
    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-haiku-20240307-v1:0'),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '4096')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.2')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '3')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '1.0')),
                                          connect_timeout=int(os.getenv('BEDROCK_LLM_CONNECT_TIMEOUT', '10')),
                                          read_timeout=int(os.getenv('BEDROCK_LLM_READ_TIMEOUT', '120')))

    # Bedrock Embed configuration
    bedrock_embed_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
                                              batch_size=int(os.getenv('BEDROCK_EMBED_BATCH_SIZE', '96')),
                                              retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '3')),
                                              retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '1.0')),
                                              connect_timeout=int(os.getenv('BEDROCK_EMBED_CONNECT_TIMEOUT', '5')),
                                              read_timeout=int(os.getenv('BEDROCK_EMBED_READ_TIMEOUT', '30')))

    # Document store configuration
    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=int(os.getenv('OPENSEARCH_PORT', '443')),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         index_prefix=os.getenv('OPENSEARCH_INDEX_PREFIX', 'scholarmem'),
                                         dimension=int(os.getenv('OPENSEARCH_DIMENSION', '1024')),
                                         use_aws_auth=_env_bool('OPENSEARCH_USE_AWS_AUTH', 'true'),
                                         service=os.getenv('OPENSEARCH_AWS_SERVICE', 'aoss'))

    memory_config = MemoryConfig(search_threshold=float(os.getenv('MEMORY_SEARCH_THRESHOLD', '0.7')),
                                 cluster_entity_cap=int(os.getenv('MEMORY_CLUSTER_ENTITY_CAP', '500')),
                                 default_strength=float(os.getenv('MEMORY_DEFAULT_STRENGTH', '0.5')),
                                 score_precision=int(os.getenv('MEMORY_SCORE_PRECISION', '4')))

    detector_config = DetectorConfig(strong_threshold=float(os.getenv('DETECTOR_STRONG_THRESHOLD', '0.90')),
                                     middle_threshold=float(os.getenv('DETECTOR_MIDDLE_THRESHOLD', '0.85')),
                                     weak_threshold=float(os.getenv('DETECTOR_WEAK_THRESHOLD', '0.75')),
                                     document_window=int(os.getenv('DETECTOR_DOCUMENT_WINDOW', '100')),
                                     memory_window=int(os.getenv('DETECTOR_MEMORY_WINDOW', '100')),
                                     note_window=int(os.getenv('DETECTOR_NOTE_WINDOW', '50')))

    graph_config = GraphConfig(search_threshold=float(os.getenv('GRAPH_SEARCH_THRESHOLD', '0.70')),
                               search_document_limit=int(os.getenv('GRAPH_SEARCH_DOCUMENT_LIMIT', '50')),
                               search_memory_limit=int(os.getenv('GRAPH_SEARCH_MEMORY_LIMIT', '50')),
                               search_note_limit=int(os.getenv('GRAPH_SEARCH_NOTE_LIMIT', '100')),
                               expansion_limit=int(os.getenv('GRAPH_EXPANSION_LIMIT', '20')),
                               timeline_limit=int(os.getenv('GRAPH_TIMELINE_LIMIT', '100')))

    action_cache_config = ActionCacheConfig(hit_threshold=float(os.getenv('ACTION_CACHE_HIT_THRESHOLD', '0.85')),
                                            candidate_limit=int(os.getenv('ACTION_CACHE_CANDIDATE_LIMIT', '50')),
                                            miss_confidence=float(os.getenv('ACTION_CACHE_MISS_CONFIDENCE', '0.7')),
                                            max_age_days=int(os.getenv('ACTION_CACHE_MAX_AGE_DAYS', '90')))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_llm=bedrock_llm_config,
                     bedrock_embed=bedrock_embed_config,
                     opensearch=opensearch_config,
                     memory=memory_config,
                     detector=detector_config,
                     graph=graph_config,
                     action_cache=action_cache_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
