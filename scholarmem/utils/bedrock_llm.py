"""
Amazon Bedrock reasoning client.

Used for entity extraction and for translating natural-language commands into
reader actions. Responses are streamed through the Converse API.
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple

import boto3
from botocore.config import Config as BotoConfig

from .config import BedrockLLMConfig
from .errors import ServiceUnavailable
from .json_utils import parse_json_response
from .logging_config import get_logger
from .retry import with_retries

logger = get_logger(__name__)

JSON_FENCE = '```json'
FENCE_END = '```'


class BedrockLLMError(ServiceUnavailable):
    """Raised when the reasoning model cannot produce a response."""
    pass


def read_stream(stream: Optional[Iterable[Dict[str, Any]]]) -> Tuple[str, Optional[Dict[str, Any]]]:
    """Concatenate streamed text deltas and pick up usage metrics."""
    text = []
    metrics = None
    for event in stream or ():
        delta = event.get('contentBlockDelta')
        if delta:
            text.append(delta['delta'].get('text', ''))
        metadata = event.get('metadata')
        if metadata:
            metrics = {**metadata.get('usage', {}), **metadata.get('metrics', {})}
    return ''.join(text), metrics


class BedrockLLM:
    """Reasoning service backed by a Bedrock chat model."""

    def __init__(self, config: BedrockLLMConfig):
        """
        Args:
            config: Model id, region, timeouts and retry settings
        """
        self.config = config
        self.model_id = config.model_id
        self.bedrock_runtime = boto3.client('bedrock-runtime',
                                            region_name=config.region,
                                            config=BotoConfig(connect_timeout=config.connect_timeout,
                                                              read_timeout=config.read_timeout,
                                                              retries={'max_attempts': 0}))

        logger.info(f'Initialized Bedrock LLM client with model: {self.model_id}')

    def generate_response(self,
                          messages: List[Dict[str, Any]],
                          system_prompt: str,
                          max_tokens: Optional[int] = None,
                          temperature: Optional[float] = None,
                          stop_sequences: Optional[List[str]] = None) -> Tuple[str, Optional[Dict[str, Any]]]:
        """
        Run one Converse request, retrying throttling and transport errors.

        Args:
            messages: Conversation in Bedrock message format
            system_prompt: System prompt
            max_tokens: Generation cap, config default when None
            temperature: Sampling temperature, config default when None
            stop_sequences: Optional stop sequences

        Returns:
            Tuple of (response_text, invoke_metrics)

        Raises:
            BedrockLLMError: If the request is rejected or every attempt fails
        """
        request = {
            'modelId': self.model_id,
            'messages': messages,
            'system': [{'text': system_prompt}],
            'inferenceConfig': {
                'maxTokens': max_tokens or self.config.max_tokens,
                'temperature': self.config.temperature if temperature is None else temperature,
                'stopSequences': stop_sequences or [],
            },
        }

        def converse() -> Tuple[str, Optional[Dict[str, Any]]]:
            return read_stream(self.bedrock_runtime.converse_stream(**request).get('stream'))

        text, metrics = with_retries(converse,
                                     label='Bedrock LLM',
                                     attempts=self.config.retry_attempts,
                                     delay=self.config.retry_delay,
                                     error_cls=BedrockLLMError)
        logger.debug(f'Bedrock LLM response generated (length: {len(text)})')
        return text, metrics

    def generate_json(self, prompt: str, system_prompt: str, temperature: Optional[float] = None) -> Any:
        """
        Ask the model for a JSON payload and decode it.

        The assistant turn is prefilled with a json fence and generation stops
        at the closing fence, so the model only emits the payload.

        Raises:
            BedrockLLMError: If the model cannot be reached
            ValidationError: If the response is not valid JSON
        """
        messages = [
            {'role': 'user', 'content': [{'text': prompt}]},
            {'role': 'assistant', 'content': [{'text': JSON_FENCE}]},
        ]
        response, _ = self.generate_response(messages=messages,
                                             system_prompt=system_prompt,
                                             temperature=temperature,
                                             stop_sequences=[FENCE_END])
        return parse_json_response(response)

    def health_check(self) -> bool:
        try:
            response, _ = self.generate_response(messages=[{'role': 'user', 'content': [{'text': 'Hi'}]}],
                                                 system_prompt="Respond with just 'OK'.",
                                                 max_tokens=10,
                                                 temperature=0.0)
            return bool(response.strip())
        except Exception as e:
            logger.error(f'Bedrock LLM health check failed: {e}')
            return False
