
from typing import Dict, Optional

# dataset -> field -> comparison type
FIELD_TYPES: Dict[str, Dict[str, str]] = {
    "customers": {
        "customer_id": "text",
        "first_name": "text",
        "last_name": "text",
        "email": "text",
        "phone": "text",
        "gender": "text",
        "birth_date": "datetime",
        "registration_date": "datetime",
        "address": "text",
        "city": "text",
    },
    "transactions": {
        "transaction_id": "text",
        "customer_id": "text",
        "store_id": "text",
        "transaction_date": "datetime",
        "total_amount": "number",
        "quantity": "number",
        "unit_price": "number",
        "payment_method": "text",
        "product_line_id": "text",
    },
    "product_lines": {
        "product_line_id": "text",
        "name": "text",
        "category": "text",
        "subcategory": "text",
        "brand": "text",
        "unit_cost": "number",
    },
    "stores": {
        "store_id": "text",
        "store_name": "text",
        "address": "text",
        "city": "text",
        "store_type": "text",
        "opening_date": "datetime",
        "region": "text",
    },
}

# fields whose values go through the value resolver, keyed by mapping category
MAPPING_CATEGORIES: Dict[tuple, str] = {
    ("customers", "gender"): "gender",
    ("customers", "city"): "city",
    ("stores", "city"): "city",
    ("transactions", "payment_method"): "payment_method",
    ("stores", "store_type"): "store_type",
}

TABLE_ALIASES = {"customers": "c", "transactions": "t", "product_lines": "p", "stores": "s"}

# how a non-customer dataset reaches a customer row
JOIN_KEYS = {"product_lines": "product_line_id", "stores": "store_id"}

def field_type(dataset: Optional[str], field: Optional[str]) -> str:
    return FIELD_TYPES.get(dataset or "", {}).get(field or "", "text")

def mapping_category(dataset: Optional[str], field: Optional[str]) -> Optional[str]:
    return MAPPING_CATEGORIES.get((dataset, field))

def dataset_for_field(field: Optional[str], default: str = "customers") -> str:
    """First dataset (in catalog order) that declares ``field``."""
    if field and field in FIELD_TYPES.get(default, {}):
        return default
    for dataset, fields in FIELD_TYPES.items():
        if field in fields:
            return dataset
    return default
