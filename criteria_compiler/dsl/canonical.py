
import itertools
from typing import Any, Iterator, List

import structlog

from criteria_compiler.dsl.fields import dataset_for_field
from criteria_compiler.dsl.schema import (AttributeCondition, Condition, CriteriaInput, EventCondition,
                                          StorageTree, StoredAttributeCondition, StoredEventCondition,
                                          StoredGroup)
from criteria_compiler.dsl.vocabulary import (DEFAULT_EVENT_CONDITION_TYPE, DEFAULT_FREQUENCY,
                                              DEFAULT_LOGIC_OPERATOR, DEFAULT_TIME_PERIOD)

logger = structlog.get_logger(__name__)

def stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(stringify(v) for v in value)
    return str(value)

def _count(value: Any, default: Any) -> Any:
    try:
        return int(value) if value is not None else default
    except (TypeError, ValueError):
        return default

def _stored_attribute(c: AttributeCondition, id_: int, logic: str, default_dataset: str) -> StoredAttributeCondition:
    return StoredAttributeCondition(
        id=id_, dataset_key=c.dataset or dataset_for_field(c.field, default_dataset), column_key=c.field,
        operator=c.operator, value=stringify(c.value), value2=stringify(c.value2), logic_operator=logic)

def _stored_event(c: EventCondition, id_: int) -> StoredEventCondition:
    nested_ids = itertools.count(1)
    nested: List[StoredAttributeCondition] = []
    if c.has_direct_comparison:
        direct = AttributeCondition(dataset="transactions", field=c.field or "total_amount",
                                    operator=c.operator, value=c.value, value2=c.value2)
        nested.append(_stored_attribute(direct, next(nested_ids), "AND", "transactions"))
    for a in c.attribute_conditions:
        nested.append(_stored_attribute(a, next(nested_ids), "AND", "transactions"))

    freq, period = c.frequency, c.time_period
    return StoredEventCondition(
        id=id_, event_name=c.event_name or "purchase",
        event_type=c.event_condition_type or DEFAULT_EVENT_CONDITION_TYPE,
        frequency=(freq.operator if freq and freq.operator else DEFAULT_FREQUENCY),
        count=_count(freq.value if freq else None, 1),
        time_period=(period.unit if period and period.unit else DEFAULT_TIME_PERIOD),
        time_value=_count(period.value if period else None, None),
        attribute_conditions=nested)

def _stored(conditions: List[Condition], logic: str, ids: Iterator[int]):
    for c in conditions:
        if isinstance(c, EventCondition):
            yield _stored_event(c, next(ids))
        else:
            yield _stored_attribute(c, next(ids), logic, "customers")

def canonicalize(tree: Any) -> StorageTree:
    """Flatten a criteria tree into its storage shape.

    Root conditions are numbered from 1; each group numbers its members from 1
    and each event numbers its nested attribute conditions from 1. ``size`` is
    recomputed from the conditions. Unknown datasets and fields are kept as
    given.
    """
    source = CriteriaInput.from_raw(tree)
    root = source.logic_operator if source.logic_operator in ("AND", "OR") else DEFAULT_LOGIC_OPERATOR
    conditions = list(_stored(source.conditions, root, itertools.count(1)))
    groups = [
        StoredGroup(id=gid, operator=g.operator if g.operator in ("AND", "OR") else DEFAULT_LOGIC_OPERATOR,
                    conditions=list(_stored(g.conditions, root, itertools.count(1))))
        for gid, g in enumerate(source.condition_groups, start=1)]
    size = len(conditions) + sum(len(g.conditions) for g in groups)
    logger.info("canonicalize_done", size=size, groups=len(groups), root_operator=root)
    return StorageTree(size=size, root_operator=root, conditions=conditions, condition_groups=groups)
