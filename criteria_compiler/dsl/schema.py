
from typing import Annotated, Any, List, Literal, Optional, Union

import structlog
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

logger = structlog.get_logger(__name__)

# ---- input contract --------------------------------------------------------

class Frequency(BaseModel):
    operator: Optional[str] = None
    value: Any = None

class TimePeriod(BaseModel):
    unit: Optional[str] = None
    value: Any = None

class AttributeCondition(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["attribute"] = "attribute"
    dataset: Optional[str] = Field(None, validation_alias=AliasChoices("dataset", "datasetKey"))
    field: Optional[str] = Field(None, validation_alias=AliasChoices("field", "columnKey"))
    operator: Optional[str] = None
    value: Any = None
    value2: Any = None

class EventCondition(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["event"] = "event"
    event_name: Optional[str] = Field("purchase", validation_alias=AliasChoices("event_name", "eventName"))
    event_condition_type: Optional[str] = Field(
        None, validation_alias=AliasChoices("event_condition_type", "eventType"))
    # direct comparison on the event itself, e.g. amount spent
    field: Optional[str] = None
    operator: Optional[str] = None
    value: Any = None
    value2: Any = None
    frequency: Optional[Frequency] = None
    time_period: Optional[TimePeriod] = Field(None, validation_alias=AliasChoices("time_period", "timePeriod"))
    attribute_conditions: List[AttributeCondition] = Field(
        default_factory=list, validation_alias=AliasChoices("attribute_conditions", "attributeConditions"))

    @model_validator(mode="before")
    @classmethod
    def storage_shape(cls, data):
        """Accept the flat storage spelling (frequency/count, timePeriod/timeValue)."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        freq = data.get("frequency")
        if isinstance(freq, str) or (freq is None and "count" in data):
            data["frequency"] = {"operator": freq, "value": data.pop("count", None)}
        period = data.get("timePeriod", data.get("time_period"))
        if isinstance(period, str) or (period is None and "timeValue" in data):
            data.pop("timePeriod", None)
            data["time_period"] = {"unit": period, "value": data.pop("timeValue", None)}
        return data

    @field_validator("attribute_conditions", mode="before")
    @classmethod
    def nested_conditions(cls, v):
        return [c for c in parse_conditions(v) if isinstance(c, AttributeCondition)]

    @property
    def has_direct_comparison(self) -> bool:
        return self.operator is not None

Condition = Union[AttributeCondition, EventCondition]

def parse_condition(raw: Any) -> Optional[Condition]:
    """Discriminate one raw condition on its ``type`` tag.

    A missing tag means attribute. Anything else is logged and dropped.
    """
    if isinstance(raw, (AttributeCondition, EventCondition)):
        return raw.model_copy(deep=True)
    if not isinstance(raw, dict):
        logger.warning("condition_rejected", reason="not_an_object", raw_type=type(raw).__name__)
        return None
    kind = raw.get("type") or "attribute"
    model = {"attribute": AttributeCondition, "event": EventCondition}.get(kind)
    if model is None:
        logger.warning("condition_rejected", reason="unknown_type", condition_type=kind)
        return None
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        logger.warning("condition_rejected", reason="invalid_shape", condition_type=kind, errors=e.error_count())
        return None

def parse_conditions(raw: Any) -> List[Condition]:
    if raw is None:
        return []
    if not isinstance(raw, (list, tuple)):
        logger.warning("conditions_rejected", reason="not_a_list", raw_type=type(raw).__name__)
        return []
    parsed = (parse_condition(item) for item in raw)
    return [c for c in parsed if c is not None]

class ConditionGroup(BaseModel):
    operator: Any = "AND"
    conditions: List[Condition] = []

    @field_validator("conditions", mode="before")
    @classmethod
    def discriminate(cls, v):
        return parse_conditions(v)

class CriteriaInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conditions: List[Condition] = []
    condition_groups: List[ConditionGroup] = Field(
        default_factory=list, validation_alias=AliasChoices("condition_groups", "conditionGroups"))
    logic_operator: Any = Field("AND", validation_alias=AliasChoices("logic_operator", "rootOperator"))

    @field_validator("conditions", mode="before")
    @classmethod
    def discriminate(cls, v):
        return parse_conditions(v)

    @field_validator("condition_groups", mode="before")
    @classmethod
    def groups(cls, v):
        if v is None:
            return []
        if not isinstance(v, (list, tuple)):
            logger.warning("condition_groups_rejected", reason="not_a_list", raw_type=type(v).__name__)
            return []
        groups = [g for g in v if isinstance(g, (dict, ConditionGroup))]
        if len(groups) != len(v):
            logger.warning("condition_groups_rejected", reason="not_an_object", dropped=len(v) - len(groups))
        return groups

    @classmethod
    def from_raw(cls, tree: Any) -> "CriteriaInput":
        """Build a fresh tree from a dict or another tree; never raises."""
        if isinstance(tree, CriteriaInput):
            tree = tree.model_dump()
        if not isinstance(tree, dict):
            logger.warning("criteria_rejected", reason="not_an_object", raw_type=type(tree).__name__)
            return cls()
        try:
            return cls.model_validate(tree)
        except ValidationError as e:
            logger.warning("criteria_rejected", reason="invalid_shape", errors=e.error_count())
            return cls()

    def condition_count(self) -> int:
        return len(self.conditions) + sum(len(g.conditions) for g in self.condition_groups)

# ---- extraction ------------------------------------------------------------

class RawEntity(BaseModel):
    kind: Literal["attribute", "event"]
    dataset: Optional[str] = None
    field: Optional[str] = None
    operator: Optional[str] = None
    value: Any = None
    value2: Any = None
    event_name: Optional[str] = None
    event_condition_type: Optional[str] = None
    frequency: Optional[Frequency] = None
    time_period: Optional[TimePeriod] = None

# ---- storage shape ---------------------------------------------------------

class StoredModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class StoredAttributeCondition(StoredModel):
    id: int
    type: Literal["attribute"] = "attribute"
    dataset_key: Optional[str] = None
    column_key: Optional[str] = None
    operator: Optional[str] = None
    value: str = ""
    value2: str = ""
    logic_operator: str = "AND"
    chosen: bool = False
    selected: bool = False

class StoredEventCondition(StoredModel):
    id: int
    type: Literal["event"] = "event"
    event_name: str = "purchase"
    column_key: str = "customer_id"
    related_col_key: str = "customer_id"
    event_type: str = "performed"
    frequency: str = "at_least"
    count: int = 1
    time_period: str = "days"
    time_value: Optional[int] = None
    attribute_operator: str = "AND"
    attribute_conditions: List[StoredAttributeCondition] = []
    chosen: bool = False
    selected: bool = False

StoredCondition = Annotated[Union[StoredAttributeCondition, StoredEventCondition], Field(discriminator="type")]

class StoredGroup(StoredModel):
    id: int
    type: Literal["group"] = "group"
    operator: str = "AND"
    conditions: List[StoredCondition] = []

class StorageTree(StoredModel):
    size: int = 0
    root_operator: str = "AND"
    conditions: List[StoredCondition] = []
    condition_groups: List[StoredGroup] = []

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)

    @property
    def is_empty(self) -> bool:
        return self.size == 0
