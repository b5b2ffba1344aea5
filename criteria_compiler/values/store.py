
from typing import Dict, Iterable, List, Optional, Protocol

import pandas as pd
from pydantic import BaseModel, field_validator

from criteria_compiler.values.rules import normalize_text

class ValueMapping(BaseModel):
    mapping_type: str
    input_value: str
    standard_value: str

    @field_validator("input_value")
    @classmethod
    def normalized_input(cls, v):
        return normalize_text(v)

class ValueMappingStore(Protocol):
    def find_exact(self, mapping_type: str, input_value: str) -> Optional[str]: ...

    def list_mappings(self, mapping_type: str) -> List[ValueMapping]: ...

class InMemoryMappingStore:
    """Mapping records held in insertion order."""

    def __init__(self, mappings: Iterable[ValueMapping] = ()):
        self._by_type: Dict[str, List[ValueMapping]] = {}
        for m in mappings:
            self.add(m)

    @classmethod
    def from_records(cls, records: Iterable[dict]) -> "InMemoryMappingStore":
        return cls(ValueMapping.model_validate(r) for r in records)

    def add(self, mapping: ValueMapping) -> None:
        self._by_type.setdefault(mapping.mapping_type, []).append(mapping)

    def find_exact(self, mapping_type: str, input_value: str) -> Optional[str]:
        for m in self._by_type.get(mapping_type, []):
            if m.input_value == input_value:
                return m.standard_value
        return None

    def list_mappings(self, mapping_type: str) -> List[ValueMapping]:
        return list(self._by_type.get(mapping_type, []))

def load_csv_mappings(path: str) -> InMemoryMappingStore:
    """Load a mapping_type,input_value,standard_value CSV."""
    df = pd.read_csv(path, dtype=str, encoding="utf-8")
    missing = {"mapping_type", "input_value", "standard_value"} - set(df.columns)
    if missing:
        raise ValueError(f"value mapping csv missing columns: {sorted(missing)}")
    df = df.dropna(subset=["mapping_type", "input_value", "standard_value"])
    return InMemoryMappingStore.from_records(
        df[["mapping_type", "input_value", "standard_value"]].to_dict(orient="records"))
