from __future__ import annotations

import io
import json
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from scholarmem.utils import bedrock_llm, retry
from scholarmem.utils.bedrock_embed import BedrockEmbed, BedrockEmbedError
from scholarmem.utils.bedrock_llm import BedrockLLM, BedrockLLMError
from scholarmem.utils.errors import ServiceUnavailable, ValidationError
from scholarmem.utils.json_utils import clean_json_response, parse_json_response


@pytest.fixture
def runtime(monkeypatch: pytest.MonkeyPatch) -> MagicMock:
    """Replace the bedrock-runtime client and skip backoff sleeps."""
    client = MagicMock()
    monkeypatch.setattr(bedrock_llm.boto3, 'client', lambda *args, **kwargs: client)
    monkeypatch.setattr(retry.time, 'sleep', lambda seconds: None)
    return client


def _stream(*chunks: str):
    events = [{'contentBlockDelta': {'delta': {'text': chunk}}} for chunk in chunks]
    events.append({'metadata': {'usage': {'inputTokens': 10, 'outputTokens': 5}, 'metrics': {'latencyMs': 42}}})
    return {'stream': events}


def _throttled() -> ClientError:
    return ClientError({'Error': {'Code': 'ThrottlingException', 'Message': 'slow down'}}, 'ConverseStream')


class TestBedrockLLM:

    def test_generate_json_prefills_fence(self, app_config, runtime: MagicMock) -> None:
        runtime.converse_stream.return_value = _stream('\n{"entities": ', '[]}\n')

        payload = BedrockLLM(app_config.bedrock_llm).generate_json('Extract', 'system')

        assert payload == {'entities': []}
        kwargs = runtime.converse_stream.call_args.kwargs
        assert kwargs['messages'][-1] == {'role': 'assistant', 'content': [{'text': '```json'}]}
        assert kwargs['inferenceConfig']['stopSequences'] == ['```']
        assert kwargs['system'] == [{'text': 'system'}]

    def test_generate_json_null(self, app_config, runtime: MagicMock) -> None:
        runtime.converse_stream.return_value = _stream('null')

        assert BedrockLLM(app_config.bedrock_llm).generate_json('Translate', 'system') is None

    def test_invalid_json(self, app_config, runtime: MagicMock) -> None:
        runtime.converse_stream.return_value = _stream('not json at all')

        with pytest.raises(ValidationError):
            BedrockLLM(app_config.bedrock_llm).generate_json('Translate', 'system')

    def test_metrics(self, app_config, runtime: MagicMock) -> None:
        runtime.converse_stream.return_value = _stream('OK')

        text, metrics = BedrockLLM(app_config.bedrock_llm).generate_response([], 'system')

        assert text == 'OK'
        assert metrics == {'inputTokens': 10, 'outputTokens': 5, 'latencyMs': 42}

    def test_retries_then_succeeds(self, app_config, runtime: MagicMock) -> None:
        runtime.converse_stream.side_effect = [_throttled(), _stream('OK')]

        text, _ = BedrockLLM(app_config.bedrock_llm).generate_response([], 'system')

        assert text == 'OK'
        assert runtime.converse_stream.call_count == 2

    def test_gives_up_as_service_unavailable(self, app_config, runtime: MagicMock) -> None:
        runtime.converse_stream.side_effect = _throttled()

        with pytest.raises(ServiceUnavailable):
            BedrockLLM(app_config.bedrock_llm).generate_response([], 'system')
        assert runtime.converse_stream.call_count == app_config.bedrock_llm.retry_attempts

    def test_rejected_request_is_not_retried(self, app_config, runtime: MagicMock) -> None:
        runtime.converse_stream.side_effect = ClientError(
            {'Error': {'Code': 'ValidationException', 'Message': 'bad model id'}}, 'ConverseStream')

        with pytest.raises(BedrockLLMError, match='rejected'):
            BedrockLLM(app_config.bedrock_llm).generate_response([], 'system')
        assert runtime.converse_stream.call_count == 1

    def test_health_check(self, app_config, runtime: MagicMock) -> None:
        runtime.converse_stream.side_effect = BedrockLLMError('down')

        assert not BedrockLLM(app_config.bedrock_llm).health_check()


class TestBedrockEmbed:

    def _body(self, payload) -> dict:
        return {'body': io.BytesIO(json.dumps(payload).encode('utf-8'))}

    def test_titan(self, app_config, runtime: MagicMock) -> None:
        runtime.invoke_model.return_value = self._body({'embedding': [0.1] * 8})
        embed = BedrockEmbed(app_config.bedrock_embed)

        assert embed.embed('hello') == [0.1] * 8
        assert not embed.supports_batch
        request = json.loads(runtime.invoke_model.call_args.kwargs['body'])
        assert request == {'inputText': 'hello', 'dimensions': 8}

    def test_cohere_batch(self, app_config, runtime: MagicMock) -> None:
        app_config.bedrock_embed.model_id = 'cohere.embed-english-v3'
        app_config.bedrock_embed.dimension = 1024
        runtime.invoke_model.return_value = self._body({'embeddings': [[0.0] * 1024, [1.0] * 1024]})
        embed = BedrockEmbed(app_config.bedrock_embed)

        vectors = embed.embed_batch(['a', 'b'])

        assert embed.supports_batch
        assert len(vectors) == 2
        assert json.loads(runtime.invoke_model.call_args.kwargs['body'])['texts'] == ['a', 'b']

    def test_batch_unsupported(self, app_config, runtime: MagicMock) -> None:
        with pytest.raises(BedrockEmbedError):
            BedrockEmbed(app_config.bedrock_embed).embed_batch(['a'])

    def test_unknown_model(self, app_config, runtime: MagicMock) -> None:
        app_config.bedrock_embed.model_id = 'acme.embedder'

        with pytest.raises(ServiceUnavailable):
            BedrockEmbed(app_config.bedrock_embed).embed('hello')

    def test_retries_exhausted(self, app_config, runtime: MagicMock) -> None:
        runtime.invoke_model.side_effect = _throttled()

        with pytest.raises(BedrockEmbedError):
            BedrockEmbed(app_config.bedrock_embed).embed('hello')
        assert runtime.invoke_model.call_count == app_config.bedrock_embed.retry_attempts


class TestJsonUtils:

    @pytest.mark.parametrize('raw,expected', [
        ('```json\n{"a": 1}\n```', '{"a": 1}'),
        ('```\n[1]\n```', '[1]'),
        ('  {"a": 1}  ', '{"a": 1}'),
        (None, ''),
    ])
    def test_clean(self, raw, expected: str) -> None:
        assert clean_json_response(raw) == expected

    def test_parse(self) -> None:
        assert parse_json_response('```json\n{"type": "export"}```') == {'type': 'export'}

    @pytest.mark.parametrize('raw', ['', '```json\n```', '{broken'])
    def test_parse_rejects(self, raw: str) -> None:
        with pytest.raises(ValidationError):
            parse_json_response(raw)
