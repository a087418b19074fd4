"""
User actions a natural-language command can be translated into.

The set of actions is closed: every variant is a dataclass tagged by its
``type`` field, and ``parse_action`` rejects anything that doesn't match one of
them.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, Union

from ..utils.errors import InvalidAction

NOTE_TYPES = ('cornell', 'outline', 'mindmap', 'chart', 'boxing', 'freeform')
SEARCH_SCOPES = ('current', 'library', 'memory', 'all')
EXPORT_FORMATS = ('markdown', 'json', 'pdf', 'docx')
EXPORT_CONTENT = ('notes', 'highlights', 'annotations', 'all')
TTS_MODES = ('page', 'to_end', 'selection')
QUESTION_CONTEXTS = ('document', 'memory', 'both')
QUESTION_MODES = ('study', 'general', 'notes')
NAVIGATE_TARGETS = ('page', 'section', 'bookmark', 'highlight')


@dataclass
class HighlightAction:
    text: str
    color_id: str
    color_hex: str
    page_number: int
    position_data: Dict[str, float]  # x, y, width, height
    metadata: Dict[str, Any] = field(default_factory=dict)
    type: str = 'highlight'


@dataclass
class CreateNoteAction:
    content: str
    page_number: int
    note_type: str = 'freeform'
    position: Optional[Dict[str, float]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    type: str = 'create_note'


@dataclass
class SearchConceptAction:
    query: str
    scope: str = 'all'
    filters: Dict[str, Any] = field(default_factory=dict)
    type: str = 'search_concept'


@dataclass
class ExportAction:
    format: str
    content: str = 'all'
    filters: Dict[str, Any] = field(default_factory=dict)
    output_path: Optional[str] = None
    type: str = 'export'


@dataclass
class TTSPlayAction:
    mode: str
    page_number: Optional[int] = None
    settings: Dict[str, Any] = field(default_factory=dict)
    type: str = 'tts_play'


@dataclass
class QuestionAction:
    query: str
    context: str = 'both'
    mode: str = 'general'
    type: str = 'question'


@dataclass
class NavigateAction:
    target: str
    value: Union[str, int]
    type: str = 'navigate'


UserAction = Union[HighlightAction, CreateNoteAction, SearchConceptAction, ExportAction, TTSPlayAction, QuestionAction,
                   NavigateAction]

ACTION_TYPES: Dict[str, Type] = {
    'highlight': HighlightAction,
    'create_note': CreateNoteAction,
    'search_concept': SearchConceptAction,
    'export': ExportAction,
    'tts_play': TTSPlayAction,
    'question': QuestionAction,
    'navigate': NavigateAction,
}

# Wire (camelCase) name -> field name
_FIELD_ALIASES = {
    'colorId': 'color_id',
    'colorHex': 'color_hex',
    'pageNumber': 'page_number',
    'positionData': 'position_data',
    'noteType': 'note_type',
    'outputPath': 'output_path',
}


def _require_text(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise InvalidAction(f'{key} must be a non-empty string')
    return value


def _require_page(data: Dict[str, Any], key: str = 'page_number', optional: bool = False) -> Optional[int]:
    value = data.get(key)
    if value is None and optional:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise InvalidAction(f'{key} must be a positive integer')
    return value


def _require_choice(data: Dict[str, Any], key: str, choices: Tuple[str, ...], default: Optional[str] = None) -> str:
    value = data.get(key, default)
    if value not in choices:
        raise InvalidAction(f'{key} must be one of {", ".join(choices)}; got {value!r}')
    return value


def _optional_dict(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise InvalidAction(f'{key} must be an object')
    return value


def _parse_highlight(data: Dict[str, Any]) -> HighlightAction:
    position = data.get('position_data')
    if not isinstance(position, dict) or not all(isinstance(position.get(k), (int, float)) for k in ('x', 'y', 'width', 'height')):
        raise InvalidAction('position_data must contain numeric x, y, width and height')
    return HighlightAction(text=_require_text(data, 'text'),
                           color_id=_require_text(data, 'color_id'),
                           color_hex=_require_text(data, 'color_hex'),
                           page_number=_require_page(data),
                           position_data={k: float(position[k]) for k in ('x', 'y', 'width', 'height')},
                           metadata=_optional_dict(data, 'metadata'))


def _parse_create_note(data: Dict[str, Any]) -> CreateNoteAction:
    return CreateNoteAction(content=_require_text(data, 'content'),
                            page_number=_require_page(data),
                            note_type=_require_choice(data, 'note_type', NOTE_TYPES, 'freeform'),
                            position=data.get('position') or None,
                            metadata=_optional_dict(data, 'metadata'))


def _parse_search_concept(data: Dict[str, Any]) -> SearchConceptAction:
    return SearchConceptAction(query=_require_text(data, 'query'),
                               scope=_require_choice(data, 'scope', SEARCH_SCOPES, 'all'),
                               filters=_optional_dict(data, 'filters'))


def _parse_export(data: Dict[str, Any]) -> ExportAction:
    output_path = data.get('output_path')
    if output_path is not None and not isinstance(output_path, str):
        raise InvalidAction('output_path must be a string')
    return ExportAction(format=_require_choice(data, 'format', EXPORT_FORMATS),
                        content=_require_choice(data, 'content', EXPORT_CONTENT, 'all'),
                        filters=_optional_dict(data, 'filters'),
                        output_path=output_path)


def _parse_tts_play(data: Dict[str, Any]) -> TTSPlayAction:
    return TTSPlayAction(mode=_require_choice(data, 'mode', TTS_MODES),
                         page_number=_require_page(data, optional=True),
                         settings=_optional_dict(data, 'settings'))


def _parse_question(data: Dict[str, Any]) -> QuestionAction:
    return QuestionAction(query=_require_text(data, 'query'),
                          context=_require_choice(data, 'context', QUESTION_CONTEXTS, 'both'),
                          mode=_require_choice(data, 'mode', QUESTION_MODES, 'general'))


def _parse_navigate(data: Dict[str, Any]) -> NavigateAction:
    value = data.get('value')
    if isinstance(value, bool) or not isinstance(value, (str, int)) or value == '':
        raise InvalidAction('value must be a string or an integer')
    return NavigateAction(target=_require_choice(data, 'target', NAVIGATE_TARGETS), value=value)


_PARSERS: Dict[str, Callable[[Dict[str, Any]], Any]] = {
    'highlight': _parse_highlight,
    'create_note': _parse_create_note,
    'search_concept': _parse_search_concept,
    'export': _parse_export,
    'tts_play': _parse_tts_play,
    'question': _parse_question,
    'navigate': _parse_navigate,
}


def parse_action(data: Any) -> UserAction:
    """
    Validate a decoded action payload and build its variant.

    Accepts both snake_case and camelCase field names.

    Args:
        data: Decoded JSON object with a ``type`` tag

    Returns:
        The matching action variant

    Raises:
        InvalidAction: If the payload is not an object, has an unknown type or malformed fields
    """
    if not isinstance(data, dict):
        raise InvalidAction('Action must be a JSON object')

    normalized = {_FIELD_ALIASES.get(k, k): v for k, v in data.items()}
    action_type = normalized.get('type')
    parser = _PARSERS.get(action_type)
    if parser is None:
        raise InvalidAction(f'Unknown action type: {action_type!r}')
    return parser(normalized)


def action_to_dict(action: UserAction) -> Dict[str, Any]:
    """Encode an action for storage."""
    if type(action) not in ACTION_TYPES.values():
        raise InvalidAction(f'Not an action: {type(action).__name__}')
    return asdict(action)


def _describe_highlight(action: HighlightAction) -> Tuple[str, List[str]]:
    return f'Highlight on page {action.page_number}: "{action.text[:50]}"', [action.color_id]


def _describe_create_note(action: CreateNoteAction) -> Tuple[str, List[str]]:
    return f'Create {action.note_type} note on page {action.page_number}', [action.note_type]


def _describe_search_concept(action: SearchConceptAction) -> Tuple[str, List[str]]:
    return f'Search for "{action.query}" in {action.scope}', action.query.split()


def _describe_export(action: ExportAction) -> Tuple[str, List[str]]:
    return f'Export {action.content} as {action.format}', [action.format, action.content]


def _describe_tts_play(action: TTSPlayAction) -> Tuple[str, List[str]]:
    return f'Read aloud ({action.mode})', [action.mode]


def _describe_question(action: QuestionAction) -> Tuple[str, List[str]]:
    return f'Answer: "{action.query[:50]}"', [action.context, action.mode]


def _describe_navigate(action: NavigateAction) -> Tuple[str, List[str]]:
    return f'Go to {action.target} {action.value}', [action.target]


_DESCRIBERS: Dict[Type, Callable[[Any], Tuple[str, List[str]]]] = {
    HighlightAction: _describe_highlight,
    CreateNoteAction: _describe_create_note,
    SearchConceptAction: _describe_search_concept,
    ExportAction: _describe_export,
    TTSPlayAction: _describe_tts_play,
    QuestionAction: _describe_question,
    NavigateAction: _describe_navigate,
}


def describe_action(action: UserAction) -> Dict[str, Any]:
    """Human-readable summary and key terms of an action."""
    describer = _DESCRIBERS.get(type(action))
    if describer is None:
        raise InvalidAction(f'Not an action: {type(action).__name__}')
    summary, key_terms = describer(action)
    return {'type': action.type, 'summary': summary, 'key_terms': key_terms}
