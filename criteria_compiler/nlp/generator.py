
from datetime import date
from typing import Any, Iterable, Optional, Protocol, Union

import structlog
from pydantic import BaseModel

from criteria_compiler.dsl.schema import CriteriaInput
from criteria_compiler.errors import GeneratorError
from criteria_compiler.nlp.parser import parse
from criteria_compiler.values.resolver import ValueResolver

logger = structlog.get_logger(__name__)

TOOL_NAME = "generate_filter_criteria"

class Accepted(BaseModel):
    criteria: CriteriaInput
    explanation: Any = None

class Rejected(BaseModel):
    message: str

GeneratorResponse = Union[Accepted, Rejected]

class CriteriaGenerator(Protocol):
    """Turns a natural-language request into criteria, or declines it."""

    def generate(self, text: str) -> GeneratorResponse: ...

class RuleBasedGenerator:
    """Deterministic extractor behind the generator interface. Never rejects."""

    def __init__(self, resolver: Optional[ValueResolver] = None, today: Optional[date] = None):
        self.resolver = resolver
        self.today = today

    def generate(self, text: str) -> GeneratorResponse:
        return Accepted(criteria=parse(text, resolver=self.resolver, today=self.today))

def _rejection_message(payload: dict) -> str:
    explanation = payload.get("explanation")
    if isinstance(explanation, dict) and explanation.get("query_intent"):
        return str(explanation["query_intent"])
    if isinstance(explanation, str) and explanation:
        return explanation
    return str(payload.get("message") or "request rejected")

def coerce_generator_payload(payload: Any) -> GeneratorResponse:
    """Interpret an assistant's ``{filter_criteria, explanation}`` output.

    An explicit rejection flag becomes ``Rejected``. A missing or malformed
    ``filter_criteria`` becomes an empty tree.
    """
    if not isinstance(payload, dict):
        raise GeneratorError(f"generator returned {type(payload).__name__}, expected an object")
    if payload.get("is_rejected") or payload.get("isRejected") or payload.get("rejected"):
        message = _rejection_message(payload)
        logger.info("generator_rejected", message=message)
        return Rejected(message=message)
    criteria = payload.get("filter_criteria")
    if not isinstance(criteria, dict):
        logger.warning("generator_payload_defaulted", reason="missing_filter_criteria")
        criteria = {}
    return Accepted(criteria=CriteriaInput.from_raw(criteria), explanation=payload.get("explanation"))

def payload_from_tool_use(blocks: Iterable[Any], tool_name: str = TOOL_NAME) -> dict:
    """Pick the input of the first matching tool_use block of a message."""
    for block in blocks or []:
        if isinstance(block, dict):
            kind, name, data = block.get("type"), block.get("name"), block.get("input")
        else:
            kind, name, data = getattr(block, "type", None), getattr(block, "name", None), getattr(block, "input", None)
        if kind == "tool_use" and name == tool_name and data:
            return data
    logger.warning("generator_payload_defaulted", reason="no_tool_use_block", tool=tool_name)
    return {}
