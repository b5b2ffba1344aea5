
from datetime import date
from typing import List, Optional

import structlog

from criteria_compiler.dsl.fields import mapping_category
from criteria_compiler.dsl.schema import AttributeCondition, Condition, EventCondition, RawEntity
from criteria_compiler.values.resolver import ValueResolver

logger = structlog.get_logger(__name__)

def _birth_date_range(entity: RawEntity, year: int) -> AttributeCondition:
    # youngest age -> latest birth date
    lo, hi = sorted((int(entity.value), int(entity.value2)))
    return AttributeCondition(
        dataset=entity.dataset, field=entity.field, operator="between",
        value=f"{year - hi}-01-01", value2=f"{year - lo}-12-31")

def _event(entity: RawEntity) -> EventCondition:
    return EventCondition(
        event_name=entity.event_name, event_condition_type=entity.event_condition_type,
        field=entity.field, operator=entity.operator, value=entity.value, value2=entity.value2,
        frequency=entity.frequency, time_period=entity.time_period)

def map_entities(entities: List[RawEntity], resolver: Optional[ValueResolver] = None,
                 today: Optional[date] = None) -> List[Condition]:
    """Turn raw entities into typed conditions.

    Age ranges become a birth_date interval, enumerated attribute values are
    resolved to their standard form, and events pass through untouched.
    """
    resolver = resolver or ValueResolver()
    year = (today or date.today()).year
    conditions: List[Condition] = []
    for entity in entities:
        if entity.kind == "event":
            conditions.append(_event(entity))
        elif entity.operator == "age_between":
            conditions.append(_birth_date_range(entity, year))
        else:
            value = entity.value
            category = mapping_category(entity.dataset, entity.field)
            if category and isinstance(value, str):
                value = resolver.resolve(category, value)
            conditions.append(AttributeCondition(
                dataset=entity.dataset, field=entity.field, operator=entity.operator,
                value=value, value2=entity.value2))
    logger.debug("map_done", conditions=len(conditions))
    return conditions
