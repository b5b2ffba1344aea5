
import re
from datetime import date
from typing import List, Optional

import structlog

from criteria_compiler.dsl.schema import CriteriaInput, Frequency, RawEntity, TimePeriod
from criteria_compiler.nlp.mapper import map_entities
from criteria_compiler.values.resolver import ValueResolver

logger = structlog.get_logger(__name__)

# whole-word substitutions applied to lower-cased text, longest phrases first
SYNONYMS = [
    ("khách hàng", "customers"),
    ("phụ nữ", "female"),
    ("nữ giới", "female"),
    ("nữ", "female"),
    ("đàn ông", "male"),
    ("nam giới", "male"),
    ("tuổi từ", "aged"),
    ("độ tuổi", "aged"),
    ("tuổi", "years old"),
    ("từ", "from"),
    ("đến", "to"),
    ("sống ở", "living in"),
    ("ở", "in"),
    ("tại", "in"),
    ("thành phố", "city of"),
    ("đã mua hàng", "purchased"),
    ("mua hàng", "purchased"),
    ("đã mua", "purchased"),
    ("ít nhất", "at least"),
    ("nhiều nhất", "at most"),
    ("tối đa", "at most"),
    ("chính xác", "exactly"),
    ("đã chi tiêu", "spent"),
    ("chi tiêu", "spent"),
    ("đã chi", "spent"),
    ("trên", "over"),
    ("dưới", "under"),
    ("lần", "times"),
    ("trong", "within"),
    ("ngày", "days"),
    ("tuần", "weeks"),
    ("tháng", "months"),
    ("điện tử", "electronics"),
    ("thời trang", "fashion"),
    ("mỹ phẩm", "cosmetics"),
    ("once", "1 time"),
    ("twice", "2 times"),
    ("thrice", "3 times"),
    ("last month", "last 1 month"),
    ("last week", "last 1 week"),
    ("past month", "past 1 month"),
    ("past week", "past 1 week"),
    ("one", "1"), ("two", "2"), ("three", "3"), ("four", "4"), ("five", "5"), ("six", "6"),
    ("seven", "7"), ("eight", "8"), ("nine", "9"), ("ten", "10"), ("twelve", "12"),
]

_SYNONYM_RES = [(re.compile(r"(?<!\w)" + re.escape(k) + r"(?!\w)"), v) for k, v in SYNONYMS]

GENDER_RE = re.compile(r"\b(females?|wom[ae]n|lad(?:y|ies)|girls?|males?|m[ae]n|gentlem[ae]n|boys?)\b")
_FEMALE = ("female", "females", "woman", "women", "lady", "ladies", "girl", "girls")

LOCALITY_RE = re.compile(
    r"\b(?:living in|lives in|live in|located in|based in|in|from)\s+"
    r"(?!(?:the\s+)?(?:last|past|next|previous)\b)"
    r"(?:the\s+)?(?:city\s+of\s+)?"
    r"([^\W\d_][^\d,.;:!?()]*)")
LOCALITY_STOP_RE = re.compile(
    r"\s+(?:who|that|which|and|or|with|aged?|purchased|bought|spent|paid|has|have|had|made|"
    r"within|in|during|over|under|between|from|for|born|are|is|was|were)\b")

AGE_RES = [
    re.compile(r"\baged?\s+(?:from\s+|between\s+)?(\d{1,3})\s*(?:to|-|and)\s*(\d{1,3})"),
    re.compile(r"\b(?:from|between)\s+(\d{1,3})\s*(?:to|-|and)\s*(\d{1,3})\s*(?:years?|yrs?)\b"),
    re.compile(r"\b(\d{1,3})\s*(?:to|-)\s*(\d{1,3})\s*years?\s*old\b"),
]

FREQUENCY_RE = re.compile(
    r"(\d+)\s*times?\s+(?:with)?in\s+(?:the\s+)?(?:last\s+|past\s+)?(\d+)\s*(days?|weeks?|months?)\b")

AMOUNT_RE = re.compile(
    r"\b(?:spent|spend|spends|spending|paid|pay|pays|paying)\s+(?:a\s+total\s+of\s+)?"
    r"(?:(more than|over|above|at least|less than|under|below|at most|exactly)\s+)?"
    r"\$?\s?(\d[\d,]*(?:\.\d+)?)(?:\s*(k|m|thousand|million)\b)?"
    r"(?:\s*(?:usd|dollars?|vnd)\b)?"
    r"(?:\s+(?:with)?in\s+(?:the\s+)?(?:last\s+|past\s+)?(\d+)\s*(days?|weeks?|months?)\b)?")

AMOUNT_OPERATORS = {
    "more than": "greater_than",
    "over": "greater_than",
    "above": "greater_than",
    "at least": "greater_than_or_equal",
    "less than": "less_than",
    "under": "less_than",
    "below": "less_than",
    "at most": "less_than_or_equal",
    "exactly": "equals",
}
_MULTIPLIERS = {"k": 1000, "thousand": 1000, "m": 1000000, "million": 1000000}

CATEGORIES = {
    "home appliances": "Home Appliances",
    "appliances": "Home Appliances",
    "electronics": "Electronics",
    "electronic": "Electronics",
    "clothing": "Clothing",
    "clothes": "Clothing",
    "fashion": "Fashion",
    "cosmetics": "Cosmetics",
    "beauty": "Beauty",
    "groceries": "Groceries",
    "grocery": "Groceries",
    "food": "Food",
    "beverages": "Beverages",
    "drinks": "Beverages",
    "furniture": "Furniture",
    "toys": "Toys",
    "books": "Books",
    "sports": "Sports",
}
CATEGORY_RE = re.compile(r"\b(" + "|".join(re.escape(k) for k in CATEGORIES) + r")\b")

def normalize_query(text: str) -> str:
    text = (text or '').strip().lower()
    for pattern, replacement in _SYNONYM_RES:
        text = pattern.sub(replacement, text)
    return re.sub(r"\s+", " ", text)

def _plural(unit: str) -> str:
    return unit if unit.endswith("s") else unit + "s"

def _number(raw: str):
    n = float(raw.replace(",", ""))
    return int(n) if n.is_integer() else n

def _gender(text: str) -> Optional[RawEntity]:
    m = GENDER_RE.search(text)
    if not m:
        return None
    value = "female" if m.group(1) in _FEMALE else "male"
    return RawEntity(kind="attribute", dataset="customers", field="gender", operator="equals", value=value)

def _locality(text: str) -> Optional[RawEntity]:
    for m in LOCALITY_RE.finditer(text):
        span = LOCALITY_STOP_RE.split(m.group(1), maxsplit=1)[0].strip()
        if len(span) <= 1 or CATEGORY_RE.match(span):
            continue
        return RawEntity(kind="attribute", dataset="customers", field="city", operator="equals", value=span)
    return None

def _age(text: str) -> Optional[RawEntity]:
    for pattern in AGE_RES:
        m = pattern.search(text)
        if m:
            lo, hi = sorted((int(m.group(1)), int(m.group(2))))
            return RawEntity(kind="attribute", dataset="customers", field="birth_date",
                             operator="age_between", value=lo, value2=hi)
    return None

def _qualifier(text: str, start: int, end: int) -> str:
    # only look inside the clause holding the match
    clause_start = max(text.rfind(d, 0, start) for d in ",;.") + 1
    window = text[clause_start:end]
    if "at most" in window:
        return "at_most"
    if "exactly" in window:
        return "exactly"
    return "at_least"

def _frequency(text: str) -> Optional[RawEntity]:
    m = FREQUENCY_RE.search(text)
    if not m:
        return None
    return RawEntity(
        kind="event", event_name="purchase", event_condition_type="performed",
        frequency=Frequency(operator=_qualifier(text, m.start(), m.end()), value=int(m.group(1))),
        time_period=TimePeriod(unit=_plural(m.group(3)), value=int(m.group(2))))

def _amount(text: str) -> Optional[RawEntity]:
    m = AMOUNT_RE.search(text)
    if not m:
        return None
    qualifier, raw, suffix, period_value, period_unit = m.groups()
    value = _number(raw) * _MULTIPLIERS.get(suffix, 1)
    period = TimePeriod(unit=_plural(period_unit), value=int(period_value)) if period_value else None
    return RawEntity(
        kind="event", event_name="purchase", event_condition_type="performed",
        field="total_amount", operator=AMOUNT_OPERATORS.get(qualifier, "greater_than_or_equal"),
        value=value, time_period=period)

def _category(text: str) -> Optional[RawEntity]:
    m = CATEGORY_RE.search(text)
    if not m:
        return None
    return RawEntity(kind="attribute", dataset="product_lines", field="category",
                     operator="equals", value=CATEGORIES[m.group(1)])

PATTERNS = (_gender, _locality, _age, _frequency, _amount, _category)

def extract(text: str) -> List[RawEntity]:
    """Scan ``text`` for condition entities, in pattern order.

    Any subset of patterns may fire; a pattern that errors is logged and skipped.
    """
    normalized = normalize_query(text)
    entities = []
    for pattern in PATTERNS:
        try:
            entity = pattern(normalized)
        except (ValueError, IndexError):
            logger.warning("extract_pattern_failed", pattern=pattern.__name__, exc_info=True)
            continue
        if entity is not None:
            entities.append(entity)
    logger.info("extract_done", entities=len(entities), kinds=[e.kind for e in entities])
    return entities

def parse(text: str, resolver: Optional[ValueResolver] = None, today: Optional[date] = None) -> CriteriaInput:
    conditions = map_entities(extract(text), resolver=resolver, today=today)
    return CriteriaInput(conditions=conditions, logic_operator="AND")
