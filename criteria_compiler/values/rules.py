"""Declarative standardization rules for the value resolver.

Each category maps to an ordered list of ``(patterns, standard_value)``. Input
is normalized before matching and the first entry with a pattern contained in
the input wins.
"""
import unicodedata
from typing import Callable, Dict, List, Optional, Sequence, Tuple

Rule = Tuple[Sequence[str], str]

SUBSTRING_RULES: Dict[str, List[Rule]] = {
    "gender": [
        (("nu", "female", "f"), "F"),
        (("nam", "male", "m"), "M"),
    ],
    "payment_method": [
        (("tien mat", "cash", "tien"), "CASH"),
        (("the tin dung", "credit card", "credit_card", "the"), "CREDIT_CARD"),
        (("chuyen khoan", "bank transfer", "bank_transfer", "transfer"), "BANK_TRANSFER"),
    ],
    "store_type": [
        (("cua hang", "store", "shop"), "STORE"),
        (("sieu thi", "supermarket", "market"), "SUPERMARKET"),
    ],
}

def normalize_text(value) -> str:
    """Trim, lowercase and strip diacritics."""
    text = str(value).strip().lower().replace("đ", "d")
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))

def capitalize_words(text: str) -> str:
    return " ".join(w[:1].upper() + w[1:] for w in str(text).split(" "))

FORMATTERS: Dict[str, Callable[[str], str]] = {
    "city": capitalize_words,
}

def match_rules(category: str, normalized: str) -> Optional[str]:
    for patterns, standard in SUBSTRING_RULES.get(category, []):
        if any(p in normalized for p in patterns):
            return standard
    return None

def apply_rules(category: str, normalized: str) -> str:
    """Rule-based standardization, falling back to the normalized input."""
    matched = match_rules(category, normalized)
    if matched is not None:
        return matched
    formatter = FORMATTERS.get(category)
    if formatter is not None:
        return formatter(normalized)
    return normalized
