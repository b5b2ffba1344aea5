
import re
from datetime import date
from typing import Any, List, NamedTuple, Optional, Tuple, Union

import structlog
from dateutil.relativedelta import relativedelta

from criteria_compiler.dsl.fields import JOIN_KEYS, TABLE_ALIASES, field_type
from criteria_compiler.dsl.schema import StorageTree, StoredAttributeCondition, StoredEventCondition
from criteria_compiler.dsl.vocabulary import (DEFAULT_LOGIC_OPERATOR, DEFAULT_TIME_PERIOD, LOGIC_OPERATORS,
                                              TIME_PERIOD_OPTIONS, codes)
from criteria_compiler.errors import UnsafeIdentifierError

logger = structlog.get_logger(__name__)

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

COMPARISONS = {
    "equals": "=",
    "not_equals": "!=",
    "greater_than": ">",
    "less_than": "<",
    "greater_than_or_equal": ">=",
    "less_than_or_equal": "<=",
    "after": ">",
    "before": "<",
}
DATE_COMPARISONS = {"on": "=", "not_on": "!="}
LIKE_PATTERNS = {
    "contains": ("LIKE", "%{}%"),
    "not_contains": ("NOT LIKE", "%{}%"),
    "starts_with": ("LIKE", "{}%"),
    "ends_with": ("LIKE", "%{}"),
}

class Fragment(NamedTuple):
    sql: str
    params: List[Any]

def _ident(name: Optional[str]) -> str:
    if not isinstance(name, str) or not _IDENT_RE.match(name):
        raise UnsafeIdentifierError(f"unsafe identifier: {name!r}")
    return name

def _coerce(value: str, ftype: str) -> Any:
    if value == "":
        return None
    if ftype == "number":
        try:
            return int(value)
        except ValueError:
            try:
                return float(value)
            except ValueError:
                return value
    if ftype == "boolean" and value.lower() in ("true", "false"):
        return value.lower() == "true"
    return value

def window_start(unit: str, amount: int, today: Optional[date] = None) -> date:
    """First day of a trailing ``amount`` ``unit`` window ending today."""
    return (today or date.today()) - relativedelta(**{unit: amount})

def _comparison(c: StoredAttributeCondition, alias: str, today: date) -> Optional[Fragment]:
    col = f"{alias}.{_ident(c.column_key)}"
    ftype = field_type(c.dataset_key, c.column_key)
    value, value2 = _coerce(c.value, ftype), _coerce(c.value2, ftype)
    op = c.operator
    if op in COMPARISONS:
        return Fragment(f"{col} {COMPARISONS[op]} %s", [value])
    if op in DATE_COMPARISONS:
        return Fragment(f"CAST({col} AS DATE) {DATE_COMPARISONS[op]} %s", [value])
    if op == "between":
        return Fragment(f"{col} BETWEEN %s AND %s", [value, value2])
    if op in LIKE_PATTERNS:
        keyword, pattern = LIKE_PATTERNS[op]
        return Fragment(f"{col} {keyword} %s", [pattern.format(c.value)])
    if op == "is_null":
        return Fragment(f"{col} IS NULL", [])
    if op == "is_not_null":
        return Fragment(f"{col} IS NOT NULL", [])
    if op == "relative_days_ago":
        try:
            days = int(c.value)
        except ValueError:
            logger.warning("operator_not_compiled", operator=op, field=c.column_key, reason="bad_day_count")
            return None
        return Fragment(f"{col} >= %s", [window_start("days", days, today)])
    logger.warning("operator_not_compiled", operator=op, field=c.column_key)
    return None

def _join(dataset: str) -> str:
    alias, key = TABLE_ALIASES[dataset], JOIN_KEYS[dataset]
    return f" JOIN {dataset} {alias} ON {alias}.{key} = t.{key}"

def _attribute(c: StoredAttributeCondition, today: date) -> Optional[Fragment]:
    dataset = c.dataset_key or "customers"
    if dataset not in TABLE_ALIASES:
        logger.warning("dataset_not_compiled", dataset=dataset, field=c.column_key)
        return None
    frag = _comparison(c, TABLE_ALIASES[dataset], today)
    if frag is None or dataset == "customers":
        return frag
    # other datasets reach the customer through their transactions
    joins = _join(dataset) if dataset in JOIN_KEYS else ""
    sql = (f"EXISTS (SELECT 1 FROM transactions t{joins} "
           f"WHERE t.customer_id = c.customer_id AND {frag.sql})")
    return Fragment(sql, frag.params)

def _event(c: StoredEventCondition, today: date) -> Optional[Fragment]:
    if c.event_type != "performed":
        logger.warning("event_not_compiled", event_type=c.event_type, condition_id=c.id)
        return None
    if c.frequency != "at_least":
        logger.warning("frequency_compiled_as_at_least", frequency=c.frequency, condition_id=c.id)

    where, params, joins = ["t.customer_id = c.customer_id"], [], []
    if c.time_value:
        unit = c.time_period
        if unit not in codes(TIME_PERIOD_OPTIONS):
            logger.warning("vocabulary_defaulted", kind="time_period", given=unit, used=DEFAULT_TIME_PERIOD)
            unit = DEFAULT_TIME_PERIOD
        where.append("t.transaction_date >= %s")
        params.append(window_start(unit, c.time_value, today))

    nested = []
    for a in c.attribute_conditions:
        dataset = a.dataset_key or "transactions"
        if dataset not in ("transactions",) + tuple(JOIN_KEYS):
            logger.warning("dataset_not_compiled", dataset=dataset, field=a.column_key)
            continue
        frag = _safe(_comparison, a, TABLE_ALIASES[dataset], today)
        if frag is None:
            continue
        if dataset in JOIN_KEYS and _join(dataset) not in joins:
            joins.append(_join(dataset))
        nested.append(frag.sql)
        params.extend(frag.params)
    if len(nested) == 1:
        where.append(nested[0])
    elif nested:
        where.append("(" + f" {_logic(c.attribute_operator)} ".join(nested) + ")")

    params.append(c.count)
    sql = (f"EXISTS (SELECT 1 FROM transactions t{''.join(joins)} WHERE {' AND '.join(where)} "
           f"GROUP BY t.customer_id HAVING COUNT(*) >= %s)")
    return Fragment(sql, params)

def _safe(fn, *args) -> Optional[Fragment]:
    try:
        return fn(*args)
    except UnsafeIdentifierError as e:
        logger.warning("identifier_rejected", error=str(e))
        return None

def _fragments(conditions, today: date) -> List[Fragment]:
    out = []
    for c in conditions:
        frag = _safe(_event if isinstance(c, StoredEventCondition) else _attribute, c, today)
        if frag is not None:
            out.append(frag)
    return out

def _logic(operator: str) -> str:
    return operator if operator in LOGIC_OPERATORS else DEFAULT_LOGIC_OPERATOR

def _combine(fragments: List[Fragment], operator: str) -> Fragment:
    params: List[Any] = []
    for f in fragments:
        params.extend(f.params)
    return Fragment(f" {_logic(operator)} ".join(f.sql for f in fragments), params)

def to_sql(tree: Union[StorageTree, dict], today: Optional[date] = None) -> Tuple[str, List[Any]]:
    """Compile a storage tree into a WHERE expression over ``customers c``.

    Root conditions and groups are joined by the root operator; each group is
    one parenthesized fragment joined by its own operator. Values are returned
    as bind parameters for ``%s`` placeholders.
    """
    tree = tree if isinstance(tree, StorageTree) else StorageTree.model_validate(tree)
    today = today or date.today()
    fragments = _fragments(tree.conditions, today)
    for g in tree.condition_groups:
        inner = _fragments(g.conditions, today)
        if inner:
            grouped = _combine(inner, g.operator)
            fragments.append(Fragment(f"({grouped.sql})", grouped.params))
    if not fragments:
        return "TRUE", []
    return _combine(fragments, tree.root_operator)

def to_select(tree: Union[StorageTree, dict], today: Optional[date] = None) -> Tuple[str, List[Any]]:
    where, params = to_sql(tree, today=today)
    base = 'SELECT c.customer_id FROM customers c'
    sql = f"""{base}
WHERE {where}"""
    return sql, params

def _literal(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, date):
        return f"'{value.isoformat()}'"
    return "'" + str(value).replace("'", "''") + "'"

def preview(sql: str, params: List[Any]) -> str:
    """Inline parameters for display only; never execute the result."""
    parts = sql.split("%s")
    if len(parts) - 1 != len(params):
        raise ValueError(f"expected {len(parts) - 1} params, got {len(params)}")
    out = [parts[0]]
    for value, part in zip(params, parts[1:]):
        out.append(_literal(value))
        out.append(part)
    return "".join(out)
