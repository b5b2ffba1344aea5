
from typing import Dict, List

from pydantic import BaseModel

class OperatorDescriptor(BaseModel, frozen=True):
    code: str
    label: str

def _ops(*pairs) -> List[OperatorDescriptor]:
    return [OperatorDescriptor(code=c, label=l) for c, l in pairs]

# the first entry of each group is the fallback for unknown operators
OPERATORS: Dict[str, List[OperatorDescriptor]] = {
    "text": _ops(
        ("equals", "is"),
        ("not_equals", "is not"),
        ("contains", "contains"),
        ("not_contains", "does not contain"),
        ("starts_with", "starts with"),
        ("ends_with", "ends with"),
        ("is_null", "is blank"),
        ("is_not_null", "is not blank"),
    ),
    "number": _ops(
        ("equals", "equals"),
        ("not_equals", "does not equal"),
        ("greater_than", "more than"),
        ("less_than", "less than"),
        ("greater_than_or_equal", "at least"),
        ("less_than_or_equal", "at most"),
        ("between", "between"),
        ("is_null", "is blank"),
        ("is_not_null", "is not blank"),
    ),
    "datetime": _ops(
        ("after", "after"),
        ("before", "before"),
        ("on", "on"),
        ("not_on", "not on"),
        ("between", "between"),
        ("relative_days_ago", "in the last..."),
        ("is_null", "is blank"),
        ("is_not_null", "is not blank"),
    ),
    "boolean": _ops(
        ("equals", "is"),
        ("not_equals", "is not"),
    ),
    "array": _ops(
        ("contains", "contains"),
        ("not_contains", "does not contain"),
        ("contains_all", "contains all of"),
        ("is_empty", "is empty"),
        ("is_not_empty", "is not empty"),
    ),
}

EVENT_CONDITION_TYPES = _ops(
    ("performed", "Performed"),
    ("not_performed", "Not Performed"),
    ("first_time", "First Time"),
    ("last_time", "Last Time"),
)

FREQUENCY_OPTIONS = _ops(
    ("at_least", "at least"),
    ("at_most", "at most"),
    ("exactly", "exactly"),
)

TIME_PERIOD_OPTIONS = _ops(
    ("days", "days"),
    ("weeks", "weeks"),
    ("months", "months"),
)

DEFAULT_EVENT_CONDITION_TYPE = "performed"
DEFAULT_FREQUENCY = "at_least"
DEFAULT_TIME_PERIOD = "days"
DEFAULT_LOGIC_OPERATOR = "AND"
LOGIC_OPERATORS = ("AND", "OR")

def codes(options: List[OperatorDescriptor]) -> List[str]:
    return [o.code for o in options]

def label_for(field_type: str, code: str) -> str:
    for op in OPERATORS.get(field_type, []):
        if op.code == code:
            return op.label
    return code.replace("_", " ")
