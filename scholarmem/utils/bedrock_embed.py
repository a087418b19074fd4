"""
Amazon Bedrock embedding provider (Titan and Cohere model families).
"""

import json
from typing import Any, Dict, List

import boto3
from botocore.config import Config as BotoConfig

from .config import BedrockEmbedConfig
from .errors import ServiceUnavailable
from .logging_config import get_logger
from .retry import with_retries

logger = get_logger(__name__)

COHERE_DIMENSION = 1024


class BedrockEmbedError(ServiceUnavailable):
    """Raised when an embedding cannot be produced."""
    pass


class BedrockEmbed:
    """Embedding provider; Cohere models embed several texts per request."""

    def __init__(self, config: BedrockEmbedConfig):
        self.config = config
        self.model_id = config.model_id
        self.dimension = config.dimension
        self.bedrock = boto3.client(service_name='bedrock-runtime',
                                    region_name=config.region,
                                    config=BotoConfig(connect_timeout=config.connect_timeout,
                                                      read_timeout=config.read_timeout,
                                                      retries={'max_attempts': 0}))

        logger.info(f'Initialized Bedrock Embed client with model: {self.model_id} ({self.dimension} dims)')

    @property
    def family(self) -> str:
        model = self.model_id.lower()
        for name in ('titan', 'cohere'):
            if name in model:
                return name
        return ''

    @property
    def supports_batch(self) -> bool:
        return self.family == 'cohere'

    def _invoke(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Send one invoke_model request and decode the JSON body."""
        body = json.dumps(payload)

        def call() -> Dict[str, Any]:
            response = self.bedrock.invoke_model(body=body,
                                                 modelId=self.model_id,
                                                 accept='application/json',
                                                 contentType='application/json')
            return json.loads(response['body'].read())

        return with_retries(call,
                            label='Bedrock Embed',
                            attempts=self.config.retry_attempts,
                            delay=self.config.retry_delay,
                            error_cls=BedrockEmbedError)

    def embed(self, text: str, input_type: str = 'search_document') -> List[float]:
        """
        Embed a single text.

        Args:
            text: Text to embed
            input_type: Cohere input type (search_document or search_query)

        Raises:
            BedrockEmbedError: If the model is unsupported or the call fails
        """
        if self.family == 'titan':
            return self._invoke({'inputText': text, 'dimensions': self.dimension}).get('embedding') or []
        if self.family == 'cohere':
            return self.embed_batch([text], input_type=input_type)[0]
        raise BedrockEmbedError(f'Unsupported embedding model: {self.model_id}')

    def embed_batch(self, texts: List[str], input_type: str = 'search_document') -> List[List[float]]:
        """
        Embed several texts in one request, returned in input order.

        Raises:
            BedrockEmbedError: If the model has no batch endpoint, the call
                fails or the response size does not match the input
        """
        if not self.supports_batch:
            raise BedrockEmbedError(f'Batch embedding not supported by {self.model_id}')
        if self.dimension != COHERE_DIMENSION:
            raise BedrockEmbedError(f'Cohere models produce {COHERE_DIMENSION} dimensions, configured {self.dimension}')

        embeddings = self._invoke({'input_type': input_type, 'texts': texts}).get('embeddings') or []
        if len(embeddings) != len(texts):
            raise BedrockEmbedError(f'Expected {len(texts)} embeddings, got {len(embeddings)}')
        return embeddings

    def health_check(self) -> bool:
        try:
            return len(self.embed('health check')) == self.dimension
        except Exception as e:
            logger.error(f'Bedrock Embed health check failed: {e}')
            return False
