"""
Health reporting for the reasoning model, embedding model and store.
"""

from typing import Any, Dict, Optional

from .config import AppConfig
from .logging_config import get_logger

logger = get_logger(__name__)

SERVICE_NAME = 'ScholarMem'
VERSION = '1.0.0'


def _check_component(component: Any) -> Dict[str, Any]:
    check = getattr(component, 'health_check', None)
    if check is None:
        return {'healthy': False, 'error': 'no health check available'}
    try:
        return {'healthy': bool(check())}
    except Exception as e:
        logger.error(f'Health check for {type(component).__name__} raised: {e}')
        return {'healthy': False, 'error': 'health check failed'}


def get_health_status(services, config: Optional[AppConfig] = None) -> Dict[str, Any]:
    """Get the health of each backing component.

    Args:
        services: Services container from ``build_services``
        config: AppConfig instance, uses default if None

    Returns:
        Mapping of component name to its status
    """
    if config is None:
        from .config import config as default_config
        config = default_config

    components = {
        'bedrock_llm': (services.reasoning, 'Amazon Bedrock LLM', {'model': config.bedrock_llm.model_id}),
        'bedrock_embed': (services.embed_provider, 'Amazon Bedrock Embed', {'model': config.bedrock_embed.model_id}),
        'opensearch': (services.store, 'Amazon OpenSearch', {'endpoint': config.opensearch.endpoint}),
    }
    return {
        name: {'service': label, **details, **_check_component(component)}
        for name, (component, label, details) in components.items()
    }


def check_health(services, config: Optional[AppConfig] = None) -> bool:
    """True when every component reports healthy."""
    status = get_health_status(services, config)
    unhealthy = [name for name, entry in status.items() if not entry['healthy']]
    if unhealthy:
        logger.warning(f'Unhealthy components: {", ".join(unhealthy)}')
        return False
    logger.info('All system components are healthy')
    return True


def get_system_info(services, config: Optional[AppConfig] = None) -> Dict[str, Any]:
    """Service metadata, effective configuration and component health."""
    if config is None:
        from .config import config as default_config
        config = default_config

    return {
        'service_name': SERVICE_NAME,
        'version': VERSION,
        'configuration': {
            'bedrock_llm_model': config.bedrock_llm.model_id,
            'bedrock_embed_model': config.bedrock_embed.model_id,
            'embedding_dimension': config.bedrock_embed.dimension,
            'index_prefix': config.opensearch.index_prefix,
            'action_cache_hit_threshold': config.action_cache.hit_threshold,
            'aws_region': config.bedrock_llm.region
        },
        'health_status': get_health_status(services, config)
    }
