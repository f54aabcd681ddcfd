"""
Tests for custom choice normalization
"""

import json
import logging

import pytest

from ohmage_pipeline.errors import EncodingFailure
from ohmage_pipeline.glossary import (
    CUSTOM,
    GLOBAL,
    ChoiceGlossary,
    CustomChoiceItem,
    CustomChoiceNormalizer,
)
from ohmage_pipeline.rollup import roll_up

from .conftest import COLOR_RESPONSE, row


def custom_row(response, username='alice', timestamp='t1', prompt_id='p3', prompt_type='single_choice_custom'):
    if isinstance(response, dict):
        response = json.dumps(response)
    return row(username=username, timestamp=timestamp, prompt_id=prompt_id,
               response=response, prompt_type=prompt_type)


def test_single_custom_choice():
    results = roll_up([custom_row(COLOR_RESPONSE)])

    results, glossary = CustomChoiceNormalizer().normalize(results)

    assert results[0].prompt_responses['p3'] == 3
    assert glossary.to_dict() == {
        'p3': {
            '3': {'label': 'Red', 'type': 'global'},
            '100': {'label': 'Mauve', 'type': 'custom'},
        }
    }


def test_multi_custom_choice_keeps_the_chosen_array():
    response = dict(COLOR_RESPONSE, value=[3, 101])
    results = roll_up([custom_row(response, prompt_type='multi_choice_custom')])

    results, _ = CustomChoiceNormalizer().normalize(results)

    assert results[0].prompt_responses['p3'] == [3, 101]


def test_equal_custom_choices_share_one_surrogate():
    bob = {"value": 105, "custom_choices": [{"choice_id": 105, "choice_value": "Mauve"}]}
    carol = {"value": 101, "custom_choices": [{"choice_id": 101, "choice_value": "Teal"}]}
    results = roll_up([
        custom_row(COLOR_RESPONSE),
        custom_row(bob, username='bob'),
        custom_row(carol, username='carol'),
    ])

    results, glossary = CustomChoiceNormalizer().normalize(results)

    assert [r.prompt_responses['p3'] for r in results] == [3, 105, 101]
    assert [(i.id, i.value) for i in glossary.items('p3')] == [(3, 'Red'), (100, 'Mauve'), (101, 'Teal')]


def test_global_ids_are_kept_verbatim():
    response = {"value": 42, "custom_choices": [{"choice_id": 42, "choice_value": "Green"}]}
    results, glossary = CustomChoiceNormalizer().normalize(roll_up([custom_row(response)]))

    assert results[0].prompt_responses['p3'] == 42
    assert glossary.items('p3')[0].provenance == GLOBAL
    assert glossary.items('p3')[0].id == 42


def test_surrogates_are_numbered_per_prompt():
    mauve = {"value": 150, "custom_choices": [{"choice_id": 150, "choice_value": "Mauve"}]}
    tofu = {"value": 150, "custom_choices": [{"choice_id": 150, "choice_value": "Tofu"}]}
    results = roll_up([custom_row(mauve, prompt_id='color'), custom_row(tofu, prompt_id='food')])

    results, glossary = CustomChoiceNormalizer().normalize(results)

    assert results[0].prompt_responses == {'color': 150, 'food': 150}
    assert glossary.prompt_ids() == ['color', 'food']
    assert glossary.items('color')[0].id == 100
    assert glossary.items('food')[0].id == 100


def test_sentinels_pass_through():
    results = roll_up([custom_row('SKIPPED'), custom_row('NOT_DISPLAYED', prompt_id='p4')])

    results, glossary = CustomChoiceNormalizer().normalize(results)

    assert results[0].prompt_responses == {'p3': 'SKIPPED', 'p4': 'NOT_DISPLAYED'}
    assert len(glossary) == 0
    assert 'p3' not in glossary


def test_non_custom_prompts_are_untouched():
    results = roll_up([row(response='{"value": 1}', prompt_type='text')])

    results, glossary = CustomChoiceNormalizer().normalize(results)

    assert results[0].prompt_responses['p1'] == '{"value": 1}'
    assert len(glossary) == 0


def test_normalizing_twice_is_stable():
    results = roll_up([custom_row(COLOR_RESPONSE)])
    normalizer = CustomChoiceNormalizer()

    results, glossary = normalizer.normalize(results)
    first = glossary.to_dict()
    results, glossary = normalizer.normalize(results)
    assert glossary.to_dict() == first
    assert results[0].prompt_responses['p3'] == 3

    results, fresh = CustomChoiceNormalizer().normalize(results)
    assert fresh.to_dict() == first


def test_malformed_payload():
    with pytest.raises(EncodingFailure):
        CustomChoiceNormalizer().normalize(roll_up([custom_row('{not json')]))

    with pytest.raises(EncodingFailure):
        CustomChoiceNormalizer().normalize(roll_up([custom_row({"custom_choices": []})]))

    with pytest.raises(EncodingFailure):
        CustomChoiceNormalizer().normalize(roll_up([custom_row({"value": "red", "custom_choices": []})]))


def test_item_equality_ignores_surrogate_and_owner():
    a = CustomChoiceItem(101, 'alice', 'Mauve', CUSTOM, id=100)
    b = CustomChoiceItem(105, 'bob', 'Mauve', CUSTOM)
    assert a == b
    assert hash(a) == hash(b)

    assert CustomChoiceItem(3, 'alice', 'Red', GLOBAL) != CustomChoiceItem(4, 'alice', 'Red', GLOBAL)


def test_register_returns_existing_item():
    glossary = ChoiceGlossary()
    first = glossary.register('p', CustomChoiceItem(101, 'alice', 'Mauve', CUSTOM))
    second = glossary.register('p', CustomChoiceItem(130, 'bob', 'Mauve', CUSTOM))

    assert second is first
    assert first.id == 100
    assert len(glossary.items('p')) == 1


def test_conflicting_global_labels_are_logged(caplog):
    glossary = ChoiceGlossary()
    glossary.register('c', CustomChoiceItem(3, 'alice', 'Red', GLOBAL))

    with caplog.at_level(logging.WARNING, logger='ohmage_pipeline.glossary'):
        glossary.register('c', CustomChoiceItem(3, 'bob', 'Rouge', GLOBAL))

    assert len(glossary.items('c')) == 2
    assert glossary.to_dict()['c'] == {'3': {'label': 'Rouge', 'type': 'global'}}
    assert "labelled both 'Red' and 'Rouge'" in caplog.text


def test_matching_global_labels_are_not_logged(caplog):
    glossary = ChoiceGlossary()
    with caplog.at_level(logging.WARNING, logger='ohmage_pipeline.glossary'):
        glossary.register('c', CustomChoiceItem(3, 'alice', 'Red', GLOBAL))
        glossary.register('c', CustomChoiceItem(3, 'bob', 'Red', GLOBAL))

    assert caplog.text == ''
