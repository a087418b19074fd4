from __future__ import annotations

import pytest

from scholarmem.models.actions import (CreateNoteAction, ExportAction, HighlightAction, NavigateAction, QuestionAction,
                                       SearchConceptAction, TTSPlayAction, action_to_dict, describe_action, parse_action)
from scholarmem.utils.errors import InvalidAction, ValidationError

HIGHLIGHT = {
    'type': 'highlight',
    'text': 'the key result',
    'colorId': 'yellow',
    'colorHex': '#FFD700',
    'pageNumber': 5,
    'positionData': {
        'x': 10,
        'y': 20,
        'width': 100,
        'height': 12.5
    }
}


class TestParseAction:

    def test_highlight_from_camel_case(self) -> None:
        action = parse_action(HIGHLIGHT)

        assert isinstance(action, HighlightAction)
        assert action.color_hex == '#FFD700'
        assert action.page_number == 5
        assert action.position_data == {'x': 10.0, 'y': 20.0, 'width': 100.0, 'height': 12.5}

    @pytest.mark.parametrize('payload,expected', [
        ({'type': 'create_note', 'content': 'Summary', 'page_number': 2, 'note_type': 'cornell'}, CreateNoteAction),
        ({'type': 'search_concept', 'query': 'methodology', 'scope': 'memory'}, SearchConceptAction),
        ({'type': 'export', 'format': 'markdown', 'content': 'notes'}, ExportAction),
        ({'type': 'tts_play', 'mode': 'to_end'}, TTSPlayAction),
        ({'type': 'question', 'query': 'What is the main argument?', 'context': 'document'}, QuestionAction),
        ({'type': 'navigate', 'target': 'page', 'value': 12}, NavigateAction),
        ({'type': 'navigate', 'target': 'section', 'value': 'Results'}, NavigateAction),
    ])
    def test_variants(self, payload, expected) -> None:
        assert isinstance(parse_action(payload), expected)

    def test_defaults(self) -> None:
        question = parse_action({'type': 'question', 'query': 'Why?'})
        search = parse_action({'type': 'search_concept', 'query': 'entropy'})

        assert (question.context, question.mode) == ('both', 'general')
        assert search.scope == 'all'

    @pytest.mark.parametrize('payload', [
        None,
        'highlight',
        ['type', 'highlight'],
        {},
        {'type': 'dance'},
        {'type': 'highlight', 'text': 'x'},
        {**HIGHLIGHT, 'pageNumber': 0},
        {**HIGHLIGHT, 'pageNumber': True},
        {**HIGHLIGHT, 'positionData': {'x': 1}},
        {'type': 'create_note', 'content': 'x', 'page_number': 1, 'note_type': 'scribble'},
        {'type': 'search_concept', 'query': '  '},
        {'type': 'export', 'format': 'rtf'},
        {'type': 'export', 'format': 'json', 'outputPath': 7},
        {'type': 'tts_play', 'mode': 'page', 'page_number': -1},
        {'type': 'question', 'query': 'x', 'mode': 'exam'},
        {'type': 'navigate', 'target': 'page', 'value': ''},
        {'type': 'navigate', 'target': 'chapter', 'value': 2},
    ])
    def test_rejects_malformed(self, payload) -> None:
        with pytest.raises(InvalidAction):
            parse_action(payload)

    def test_invalid_action_is_a_validation_error(self) -> None:
        with pytest.raises(ValidationError):
            parse_action({'type': 'dance'})


def test_stored_form_parses_back() -> None:
    action = parse_action(HIGHLIGHT)

    stored = action_to_dict(action)

    assert stored['type'] == 'highlight'
    assert stored['color_id'] == 'yellow'
    assert parse_action(stored) == action


def test_action_to_dict_rejects_other_objects() -> None:
    with pytest.raises(InvalidAction):
        action_to_dict({'type': 'highlight'})


@pytest.mark.parametrize('action,summary,key_terms', [
    (QuestionAction(query='What is attention?', context='memory'), 'Answer: "What is attention?"', ['memory', 'general']),
    (NavigateAction(target='page', value=3), 'Go to page 3', ['page']),
    (ExportAction(format='pdf', content='highlights'), 'Export highlights as pdf', ['pdf', 'highlights']),
    (SearchConceptAction(query='transfer learning', scope='library'), 'Search for "transfer learning" in library',
     ['transfer', 'learning']),
])
def test_describe_action(action, summary: str, key_terms) -> None:
    description = describe_action(action)

    assert description == {'type': action.type, 'summary': summary, 'key_terms': key_terms}
