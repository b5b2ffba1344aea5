
import asyncio
import time
from datetime import date

import pytest
from pydantic import ValidationError

from criteria_compiler.config import Settings
from criteria_compiler.errors import GeneratorError
from criteria_compiler.nlp.generator import coerce_generator_payload
from criteria_compiler.pipeline import CriteriaCompiler, explain, segment_id
from criteria_compiler.values.resolver import ValueResolver
from criteria_compiler.values.store import InMemoryMappingStore

REQUEST = 'female customers in Los Angeles who purchased at least 1 time in the last 3 months'

class StaticGenerator:
    def __init__(self, payload):
        self.payload = payload

    def generate(self, text):
        return coerce_generator_payload(self.payload)

class FailingGenerator:
    def generate(self, text):
        raise RuntimeError('upstream 503')

ASSISTANT_PAYLOAD = {
    'filter_criteria': {
        'conditions': [
            {'id': 1, 'type': 'attribute', 'field': 'gender', 'operator': 'equals', 'value': 'M', 'value2': '',
             'chosen': False, 'selected': False},
            {'id': 2, 'type': 'event', 'columnKey': 'customer_id', 'eventType': 'performed',
             'frequency': 'at_least', 'count': 1, 'timePeriod': 'months', 'timeValue': 3,
             'attributeConditions': [{'id': 4, 'field': 'total_amount', 'operator': 'greater_than',
                                      'value': '100', 'value2': ''}]},
        ],
        'conditionGroups': [],
        'rootOperator': 'AND',
    },
    'explanation': {'query_intent': 'Men who spent over 100 recently', 'key_conditions': ['gender', 'spend']},
}

def test_compile_text():
    result = CriteriaCompiler().compile_text(REQUEST)
    assert result.status == 'ok'
    tree = result.criteria.to_dict()
    assert (tree['rootOperator'], tree['size'], tree['conditionGroups']) == ('AND', 3, [])
    gender, city, purchase = tree['conditions']
    assert (gender['id'], gender['datasetKey'], gender['columnKey'], gender['value']) == (
        1, 'customers', 'gender', 'F')
    assert (city['id'], city['columnKey'], city['operator'], city['value']) == (2, 'city', 'equals', 'Los Angeles')
    assert (purchase['id'], purchase['type'], purchase['eventType']) == (3, 'event', 'performed')
    assert (purchase['frequency'], purchase['count']) == ('at_least', 1)
    assert (purchase['timePeriod'], purchase['timeValue']) == ('months', 3)

def test_explanation():
    result = CriteriaCompiler().compile_text(REQUEST)
    assert result.explanation == [
        'customers.gender is F',
        'customers.city is Los Angeles',
        'Performed purchase at least 1 time(s) in the last 3 months',
    ]
    assert explain(result.criteria) == result.explanation

def test_compile_text_sql():
    sql, params = CriteriaCompiler().compile_text(REQUEST).sql(today=date(2025, 4, 30))
    assert sql.startswith('c.gender = %s AND c.city = %s AND EXISTS (')
    assert params == ['F', 'Los Angeles', date(2025, 1, 30), 1]

def test_unrecognized_text_is_empty():
    result = CriteriaCompiler().compile_text('hello there')
    assert result.status == 'empty'
    assert result.criteria.size == 0
    assert result.sql() == ('TRUE', [])

def test_assistant_tree():
    compiler = CriteriaCompiler(generator=StaticGenerator(ASSISTANT_PAYLOAD))
    result = compiler.compile_text('men who spent over 100 in the last 3 months')
    assert result.status == 'ok'
    assert result.assistant_explanation['query_intent'] == 'Men who spent over 100 recently'
    gender, event = result.criteria.conditions
    assert (gender.id, gender.value, gender.dataset_key) == (1, 'M', 'customers')
    assert (event.id, event.count, event.time_period, event.time_value) == (2, 1, 'months', 3)
    [amount] = event.attribute_conditions
    assert (amount.id, amount.dataset_key, amount.column_key, amount.value) == (
        1, 'transactions', 'total_amount', '100')

def test_rejected_request():
    payload = {'is_rejected': True, 'explanation': {'query_intent': 'Not a customer segment'}}
    result = CriteriaCompiler(generator=StaticGenerator(payload)).compile_text('tell me a joke')
    assert result.rejected
    assert result.message == 'Not a customer segment'
    assert result.criteria is None
    with pytest.raises(ValueError):
        result.sql()

def test_generator_failure_is_raised():
    with pytest.raises(GeneratorError):
        CriteriaCompiler(generator=FailingGenerator()).compile_text(REQUEST)

def test_original_tree_is_preserved():
    tree = {'conditions': [{'field': 'gender', 'operator': 'equals', 'value': 'Nữ'}]}
    result = CriteriaCompiler().compile_tree(tree)
    assert result.original.conditions[0].value == 'Nữ'
    assert result.criteria.conditions[0].value == 'F'
    assert tree == {'conditions': [{'field': 'gender', 'operator': 'equals', 'value': 'Nữ'}]}

def test_compile_async():
    compiler = CriteriaCompiler()
    result = asyncio.run(compiler.compile_text_async(REQUEST))
    assert result.criteria.size == 3
    result = asyncio.run(CriteriaCompiler(generator=StaticGenerator(ASSISTANT_PAYLOAD)).compile_text_async('x'))
    assert result.criteria.size == 2

def test_compile_tree_async():
    tree = {'conditions': [{'field': 'gender', 'operator': 'equals', 'value': 'nam'}]}
    result = asyncio.run(CriteriaCompiler().compile_tree_async(tree))
    assert result.criteria.conditions[0].value == 'M'

def test_from_settings_loads_mappings(tmp_path):
    path = tmp_path / 'mappings.csv'
    path.write_text('mapping_type,input_value,standard_value\ncity,saigon,Ho Chi Minh City\n', encoding='utf-8')
    compiler = CriteriaCompiler.from_settings(Settings(VALUE_MAPPINGS_CSV=str(path), RESOLVER_CACHE_SIZE=8))
    assert compiler.resolver.cache.maxsize == 8
    [city] = compiler.compile_text('customers in Saigon').criteria.conditions
    assert city.value == 'Ho Chi Minh City'

def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv('SIMILARITY_THRESHOLD', '0.9')
    monkeypatch.setenv('LOG_JSON', 'true')
    settings = Settings()
    assert settings.SIMILARITY_THRESHOLD == 0.9
    assert settings.LOG_JSON is True
    with pytest.raises(ValidationError):
        Settings(SIMILARITY_THRESHOLD=1.5)

def test_segment_id():
    assert segment_id('VIP Customers 2024!') == 'segment:vip-customers-2024'
    assert segment_id('  Khách hàng nữ  ') == 'segment:khach-hang-nu'

class SlowStore(InMemoryMappingStore):
    def find_exact(self, mapping_type, input_value):
        time.sleep(0.5)
        return None

async def timed(coro):
    start = time.monotonic()
    result = await coro
    return result, time.monotonic() - start

def test_async_compile_honors_resolver_timeout():
    compiler = CriteriaCompiler(resolver=ValueResolver(store=SlowStore()), resolver_timeout=0.02)
    tree = {'conditions': [{'field': 'gender', 'operator': 'equals', 'value': 'nữ'}]}
    result, elapsed = asyncio.run(timed(compiler.compile_tree_async(tree)))
    assert result.criteria.conditions[0].value == 'F'
    assert elapsed < 0.3

    result, elapsed = asyncio.run(timed(compiler.compile_text_async(REQUEST)))
    assert [c.value for c in result.criteria.conditions[:2]] == ['F', 'Los Angeles']
    assert elapsed < 0.3

def test_async_compile_keeps_mapped_values():
    mappings = InMemoryMappingStore.from_records([
        {'mapping_type': 'payment_method', 'input_value': 'momo', 'standard_value': 'E_WALLET'}])
    compiler = CriteriaCompiler(resolver=ValueResolver(store=mappings), resolver_timeout=1.0)
    tree = {'conditions': [{'type': 'event', 'attribute_conditions': [
        {'field': 'payment_method', 'operator': 'equals', 'value': 'MoMo'}]}]}
    result = asyncio.run(compiler.compile_tree_async(tree))
    assert result.criteria.conditions[0].attribute_conditions[0].value == 'E_WALLET'
    assert result.criteria == compiler.compile_tree(tree).criteria
