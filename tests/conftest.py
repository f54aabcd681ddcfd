"""
Shared fixtures for the ohmage pipeline tests
"""

import copy
import json

import pytest
import yaml

from ohmage_pipeline.definitions import parse_observer
from ohmage_pipeline.rollup import FlatResponseRow


OBSERVER = {
    'id': 'org.ohmage.mood',
    'version': 2,
    'name': 'Mood tracker',
    'streams': [
        {
            'id': 'mood_survey',
            'version': 1,
            'title': 'Daily mood',
            'description': 'How are you today?',
            'prompts': [
                {'id': 'energy', 'type': 'number', 'display_label': 'Energy', 'unit': 'points',
                 'constraints': {'min': 0, 'max': 10}},
                {'id': 'notes', 'type': 'text', 'skippable': True, 'constraints': {'max_length': 20}},
                {'id': 'feeling', 'type': 'single_choice', 'choices': {0: 'Sad', 1: 'Ok', 2: 'Happy'}},
                {'id': 'activities', 'type': 'multi_choice', 'required': False,
                 'choices': {0: 'Walk', 1: 'Run', 2: 'Swim'}},
                {'id': 'color', 'type': 'single_choice_custom', 'skippable': True,
                 'choices': {3: 'Red', 4: 'Blue'}},
                {'id': 'foods', 'type': 'multi_choice_custom', 'required': False,
                 'condition': 'feeling == 2', 'choices': {1: 'Apple'}},
                {'id': 'meals', 'type': 'repeatable_set', 'condition': 'feeling != 0',
                 'prompts': [
                     {'id': 'meal_time', 'type': 'timestamp'},
                     {'id': 'calories', 'type': 'number', 'constraints': {'min': 0}},
                 ]},
            ],
        },
        {
            'id': 'accel',
            'version': 3,
            'prompts': [
                {'id': 'moving', 'type': 'boolean'},
                {'id': 'snapshot', 'type': 'photo', 'required': False},
            ],
        },
    ],
}

CATALOG = [
    "urn:ohmage:user:id",
    "urn:ohmage:context:timestamp",
    "urn:ohmage:survey:id",
    "urn:ohmage:repeatable_set:id",
    "urn:ohmage:repeatable_set:iteration",
    "urn:ohmage:prompt:response",
]

COLOR_RESPONSE = {
    "value": 3,
    "custom_choices": [
        {"choice_id": 3, "choice_value": "Red"},
        {"choice_id": 101, "choice_value": "Mauve"},
    ],
}


def mood_data(**overrides):
    data = {
        'energy': 7,
        'notes': 'fine',
        'feeling': 2,
        'color': copy.deepcopy(COLOR_RESPONSE),
    }
    data.update(overrides)
    return data


def mood_point(point_id='point-1', timestamp='2011-09-20T10:00:00Z', **overrides):
    return {
        'meta_data': {'id': point_id, 'timestamp': timestamp},
        'stream_id': 'mood_survey',
        'stream_version': 1,
        'data': mood_data(**overrides),
    }


def row(username='alice', timestamp='t1', survey_id='s1', prompt_id='p1', response='5',
        repeatable_set_id=None, repeatable_set_iteration=None, prompt_type='number', **context):
    return FlatResponseRow(
        username=username,
        timestamp=timestamp,
        survey_id=survey_id,
        prompt_id=prompt_id,
        response=response,
        repeatable_set_id=repeatable_set_id,
        repeatable_set_iteration=repeatable_set_iteration,
        prompt_type=prompt_type,
        **context,
    )


@pytest.fixture
def observer():
    return parse_observer(copy.deepcopy(OBSERVER))


@pytest.fixture
def mood_stream(observer):
    return observer.stream('mood_survey')


@pytest.fixture
def config():
    return {
        'project': {'name': 'test'},
        'validation': {'best_effort': True},
        'output': {'csv_list_delimiter': ';', 'column_catalog': list(CATALOG)},
    }


@pytest.fixture
def config_file(tmp_path, config):
    config = copy.deepcopy(config)
    config['validation']['error_directory'] = str(tmp_path / 'invalid_points')
    path = tmp_path / 'config.yml'
    path.write_text(yaml.safe_dump(config))
    return path


@pytest.fixture
def definition_file(tmp_path):
    path = tmp_path / 'observer.json'
    path.write_text(json.dumps(OBSERVER))
    return path
