
from typing import Any, List, Optional

import structlog

from criteria_compiler.dsl.fields import dataset_for_field, field_type, mapping_category
from criteria_compiler.dsl.schema import (AttributeCondition, Condition, ConditionGroup, CriteriaInput,
                                          EventCondition, Frequency, TimePeriod)
from criteria_compiler.dsl.vocabulary import (DEFAULT_EVENT_CONDITION_TYPE, DEFAULT_FREQUENCY,
                                              DEFAULT_LOGIC_OPERATOR, DEFAULT_TIME_PERIOD, EVENT_CONDITION_TYPES,
                                              FREQUENCY_OPTIONS, LOGIC_OPERATORS, OPERATORS, TIME_PERIOD_OPTIONS,
                                              OperatorDescriptor)
from criteria_compiler.values.resolver import ValueResolver
from criteria_compiler.values.rules import capitalize_words

logger = structlog.get_logger(__name__)

def validate_choice(options: List[OperatorDescriptor], value: Any, default: str) -> str:
    """Exact code match, then case-insensitive label match, then ``default``."""
    if isinstance(value, str):
        for o in options:
            if o.code == value:
                return o.code
        lowered = value.strip().lower()
        for o in options:
            if o.label.lower() == lowered:
                return o.code
    return default

def validate_operator(field_type_: str, operator: Any) -> str:
    options = OPERATORS.get(field_type_) or OPERATORS["text"]
    return validate_choice(options, operator, options[0].code)

def _checked(kind: str, given: Any, used: Any, **context) -> Any:
    if given != used:
        logger.warning("vocabulary_defaulted", kind=kind, given=given, used=used, **context)
    return used

def _int(value: Any, default: Optional[int], minimum: int = 1) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return default
    try:
        n = int(float(value))
    except (TypeError, ValueError):
        return default
    return n if n >= minimum else default

def _logic(operator: Any) -> str:
    used = operator.strip().upper() if isinstance(operator, str) else DEFAULT_LOGIC_OPERATOR
    if used not in LOGIC_OPERATORS:
        used = DEFAULT_LOGIC_OPERATOR
    return _checked("logic_operator", operator, used)

def _standardize(dataset: Optional[str], field: Optional[str], value: Any, resolver: ValueResolver) -> Any:
    category = mapping_category(dataset, field)
    if not category or not isinstance(value, str) or not value.strip():
        return value
    if category == "city":
        return capitalize_words(value)
    return resolver.resolve(category, value)

def _attribute(c: AttributeCondition, resolver: ValueResolver,
               default_dataset: str = "customers") -> AttributeCondition:
    dataset = c.dataset or dataset_for_field(c.field, default_dataset)
    operator = validate_operator(field_type(dataset, c.field), c.operator)
    _checked("operator", c.operator, operator, dataset=dataset, field=c.field)
    return AttributeCondition(
        dataset=dataset, field=c.field, operator=operator,
        value=_standardize(dataset, c.field, c.value, resolver), value2=c.value2)

def _time_unit(unit: Any) -> str:
    if isinstance(unit, str) and not unit.endswith("s"):
        unit = unit + "s"
    return validate_choice(TIME_PERIOD_OPTIONS, unit, DEFAULT_TIME_PERIOD)

def _event(c: EventCondition, resolver: ValueResolver) -> EventCondition:
    ctype = validate_choice(EVENT_CONDITION_TYPES, c.event_condition_type, DEFAULT_EVENT_CONDITION_TYPE)
    _checked("event_condition_type", c.event_condition_type, ctype)

    freq = c.frequency or Frequency()
    # zero is a legal count for exactly / at_most
    count = _int(freq.value, None, minimum=0)
    if count is None:
        count = 1 if freq.value is None else _checked("frequency_count", freq.value, 1)
    frequency = Frequency(operator=validate_choice(FREQUENCY_OPTIONS, freq.operator, DEFAULT_FREQUENCY),
                          value=count)
    _checked("frequency", freq.operator, frequency.operator)

    period = c.time_period or TimePeriod()
    time_period = TimePeriod(unit=_time_unit(period.unit), value=_int(period.value, None))
    _checked("time_period", period.unit, time_period.unit)

    field, operator = c.field, None
    if c.operator is not None:
        field = c.field or "total_amount"
        operator = validate_operator("number", c.operator)
        _checked("operator", c.operator, operator, field=field)

    return EventCondition(
        event_name=c.event_name or "purchase", event_condition_type=ctype,
        field=field, operator=operator, value=c.value, value2=c.value2,
        frequency=frequency, time_period=time_period,
        attribute_conditions=[_attribute(a, resolver, "transactions") for a in c.attribute_conditions])

def _condition(c: Condition, resolver: ValueResolver) -> Condition:
    if isinstance(c, EventCondition):
        return _event(c, resolver)
    return _attribute(c, resolver)

def normalize(tree: Any, resolver: Optional[ValueResolver] = None) -> CriteriaInput:
    """Validate a criteria tree against the vocabulary and standardize values.

    Returns a new tree; the input is never modified. Unknown operators, units
    and types fall back to their defaults. Idempotent. On any internal failure
    the empty tree is returned.
    """
    resolver = resolver or ValueResolver()
    try:
        source = CriteriaInput.from_raw(tree)
        return CriteriaInput(
            conditions=[_condition(c, resolver) for c in source.conditions],
            condition_groups=[
                ConditionGroup(operator=_logic(g.operator), conditions=[_condition(c, resolver) for c in g.conditions])
                for g in source.condition_groups],
            logic_operator=_logic(source.logic_operator))
    except Exception:
        logger.exception("normalize_failed")
        return CriteriaInput()
