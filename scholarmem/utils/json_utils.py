"""
JSON utilities for cleaning and parsing reasoning-service responses.
"""

import json
from typing import Any

from .errors import ValidationError


def clean_json_response(response: str) -> str:
    """Clean LLM response by removing code block markers.

    Args:
        response: Raw LLM response

    Returns:
        Cleaned JSON string
    """
    response = (response or '').strip()

    if response.startswith('```json'):
        response = response[7:]
    elif response.startswith('```'):
        response = response[3:]

    if response.endswith('```'):
        response = response[:-3]

    return response.strip()


def parse_json_response(response: str) -> Any:
    """Clean and decode a JSON payload produced by the reasoning service.

    A bare ``null`` is returned as None; callers decide whether that is valid.

    Raises:
        ValidationError: If the payload is not valid JSON
    """
    cleaned = clean_json_response(response)
    if not cleaned:
        raise ValidationError('Empty response from reasoning service')
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ValidationError(f'Reasoning service returned invalid JSON: {e}')
