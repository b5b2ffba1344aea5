
from datetime import date

from criteria_compiler.dsl.schema import AttributeCondition, EventCondition, Frequency, RawEntity, TimePeriod
from criteria_compiler.nlp.mapper import map_entities

def test_age_range_uses_current_year():
    year = date.today().year
    [c] = map_entities([RawEntity(kind='attribute', dataset='customers', field='birth_date',
                                  operator='age_between', value=25, value2=35)])
    assert isinstance(c, AttributeCondition)
    assert c.operator == 'between'
    assert (c.value, c.value2) == (f'{year - 35}-01-01', f'{year - 25}-12-31')

def test_enumerated_values_are_resolved():
    entities = [
        RawEntity(kind='attribute', dataset='customers', field='gender', operator='equals', value='female'),
        RawEntity(kind='attribute', dataset='customers', field='city', operator='equals', value='los angeles'),
        RawEntity(kind='attribute', dataset='transactions', field='payment_method', operator='equals',
                  value='Tiền mặt'),
    ]
    assert [c.value for c in map_entities(entities)] == ['F', 'Los Angeles', 'CASH']

def test_free_text_values_pass_through():
    [c] = map_entities([RawEntity(kind='attribute', dataset='product_lines', field='category',
                                  operator='equals', value='Electronics')])
    assert c.value == 'Electronics'

def test_events_pass_through():
    entity = RawEntity(kind='event', event_name='purchase', event_condition_type='performed',
                       frequency=Frequency(operator='at_least', value=2),
                       time_period=TimePeriod(unit='months', value=3))
    [c] = map_entities([entity], today=date(2025, 1, 1))
    assert isinstance(c, EventCondition)
    assert c.frequency == Frequency(operator='at_least', value=2)
    assert c.time_period == TimePeriod(unit='months', value=3)
    assert c.attribute_conditions == []
