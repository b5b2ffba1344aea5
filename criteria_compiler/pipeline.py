
import asyncio
import re
from datetime import date
from typing import Any, Iterable, List, Literal, Optional, Tuple

import structlog
from pydantic import BaseModel

from criteria_compiler.config import Settings, get_settings
from criteria_compiler.dsl.canonical import canonicalize
from criteria_compiler.dsl.fields import dataset_for_field, field_type, mapping_category
from criteria_compiler.dsl.normalizer import normalize
from criteria_compiler.dsl.schema import (CriteriaInput, EventCondition, StorageTree, StoredAttributeCondition,
                                          StoredEventCondition)
from criteria_compiler.dsl.vocabulary import EVENT_CONDITION_TYPES, FREQUENCY_OPTIONS, label_for
from criteria_compiler.errors import GeneratorError
from criteria_compiler.nlp.generator import CriteriaGenerator, Rejected, RuleBasedGenerator
from criteria_compiler.nlp.parser import extract
from criteria_compiler.sql.builder import to_sql
from criteria_compiler.values.cache import ResolverCache
from criteria_compiler.values.resolver import CacheOnlyResolver, ValueResolver
from criteria_compiler.values.rules import normalize_text
from criteria_compiler.values.store import InMemoryMappingStore, load_csv_mappings

logger = structlog.get_logger(__name__)

def segment_id(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", normalize_text(name or "")).strip("-")
    return f"segment:{slug}"

def _describe_attribute(c: StoredAttributeCondition) -> str:
    label = label_for(field_type(c.dataset_key, c.column_key), c.operator or "")
    text = f"{c.dataset_key}.{c.column_key} {label}"
    if c.operator in ("is_null", "is_not_null", "is_empty", "is_not_empty"):
        return text
    text += f" {c.value}"
    if c.operator == "between":
        text += f" and {c.value2}"
    return text

def _option_label(options, code: str) -> str:
    return next((o.label for o in options if o.code == code), code)

def _describe_event(c: StoredEventCondition) -> str:
    text = (f"{_option_label(EVENT_CONDITION_TYPES, c.event_type)} {c.event_name} "
            f"{_option_label(FREQUENCY_OPTIONS, c.frequency)} {c.count} time(s)")
    if c.time_value:
        text += f" in the last {c.time_value} {c.time_period}"
    if c.attribute_conditions:
        text += " with " + f" {c.attribute_operator.lower()} ".join(
            _describe_attribute(a) for a in c.attribute_conditions)
    return text

def _describe(c) -> str:
    return _describe_event(c) if isinstance(c, StoredEventCondition) else _describe_attribute(c)

def explain(tree: StorageTree) -> List[str]:
    """One human-readable line per root condition or group."""
    lines = [_describe(c) for c in tree.conditions]
    for g in tree.condition_groups:
        if g.conditions:
            prefix = "any of: " if g.operator == "OR" else "all of: "
            lines.append(prefix + "; ".join(_describe(c) for c in g.conditions))
    return lines

class CompileResult(BaseModel):
    status: Literal["ok", "empty", "rejected"]
    query: Optional[str] = None
    original: Optional[CriteriaInput] = None
    criteria: Optional[StorageTree] = None
    explanation: List[str] = []
    assistant_explanation: Any = None
    message: Optional[str] = None

    @property
    def rejected(self) -> bool:
        return self.status == "rejected"

    def sql(self, today: Optional[date] = None) -> Tuple[str, List[Any]]:
        if self.criteria is None:
            raise ValueError(f"no criteria to compile (status={self.status})")
        return to_sql(self.criteria, today=today)

class CriteriaCompiler:
    """Text or assistant tree -> normalized tree -> storage tree.

    Without a generator, text goes through the rule-based extractor.
    """

    def __init__(self, resolver: Optional[ValueResolver] = None, generator: Optional[CriteriaGenerator] = None,
                 resolver_timeout: Optional[float] = None):
        self.resolver = resolver or ValueResolver()
        self.generator = generator
        self.resolver_timeout = resolver_timeout

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None,
                      generator: Optional[CriteriaGenerator] = None) -> "CriteriaCompiler":
        settings = settings or get_settings()
        if settings.VALUE_MAPPINGS_CSV:
            store = load_csv_mappings(settings.VALUE_MAPPINGS_CSV)
        else:
            store = InMemoryMappingStore()
        resolver = ValueResolver(store=store, cache=ResolverCache(settings.RESOLVER_CACHE_SIZE),
                                 similarity_threshold=settings.SIMILARITY_THRESHOLD)
        return cls(resolver=resolver, generator=generator, resolver_timeout=settings.RESOLVER_TIMEOUT_SECONDS)

    def _generate(self, text: str, resolver=None):
        generator = self.generator or RuleBasedGenerator(resolver or self.resolver)
        try:
            return generator.generate(text)
        except GeneratorError:
            raise
        except Exception as e:
            raise GeneratorError(f"criteria generator failed: {e}") from e

    def compile_text(self, text: str) -> CompileResult:
        return self._compile_text(text, self.resolver)

    def _compile_text(self, text: str, resolver) -> CompileResult:
        logger.info("compile_text", query=text, generator=type(self.generator).__name__ if self.generator else "rules")
        response = self._generate(text, resolver)
        if isinstance(response, Rejected):
            logger.info("compile_rejected", query=text, message=response.message)
            return CompileResult(status="rejected", query=text, message=response.message)
        return self._compile_tree(response.criteria, resolver, query=text, assistant_explanation=response.explanation)

    def compile_tree(self, tree: Any, query: Optional[str] = None, assistant_explanation: Any = None) -> CompileResult:
        return self._compile_tree(tree, self.resolver, query=query, assistant_explanation=assistant_explanation)

    def _compile_tree(self, tree: Any, resolver, query: Optional[str] = None,
                      assistant_explanation: Any = None) -> CompileResult:
        original = CriteriaInput.from_raw(tree)
        criteria = canonicalize(normalize(original, resolver))
        status = "empty" if criteria.is_empty else "ok"
        if status == "empty":
            logger.warning("compile_empty", query=query)
        return CompileResult(status=status, query=query, original=original, criteria=criteria,
                             explanation=explain(criteria), assistant_explanation=assistant_explanation)

    async def _warm(self, pairs: Iterable[Tuple[str, Any]]) -> CacheOnlyResolver:
        """Resolve ``pairs`` under the timeout; the returned view answers the sync passes."""
        known = []
        for category, value in pairs:
            resolved = await self.resolver.resolve_async(category, value, timeout=self.resolver_timeout)
            known.append((category, value, resolved))
        return CacheOnlyResolver(self.resolver, known)

    async def compile_text_async(self, text: str) -> CompileResult:
        """Like ``compile_text``, with value-store lookups bounded by the resolver timeout.

        Store I/O only happens in the warm-up; the sync passes run against a
        ``CacheOnlyResolver`` so they never block the loop.
        """
        if self.generator is not None:
            response = await asyncio.to_thread(self._generate, text)
            if isinstance(response, Rejected):
                return CompileResult(status="rejected", query=text, message=response.message)
            return await self.compile_tree_async(response.criteria, query=text,
                                                 assistant_explanation=response.explanation)
        resolver = await self._warm(
            (mapping_category(e.dataset, e.field), e.value) for e in extract(text)
            if e.kind == "attribute" and mapping_category(e.dataset, e.field) and isinstance(e.value, str))
        return self._compile_text(text, resolver)

    async def compile_tree_async(self, tree: Any, query: Optional[str] = None,
                                 assistant_explanation: Any = None) -> CompileResult:
        original = CriteriaInput.from_raw(tree)
        resolver = await self._warm(_resolvable(original))
        return self._compile_tree(original, resolver, query=query, assistant_explanation=assistant_explanation)

def _resolvable(tree: CriteriaInput):
    conditions = list(tree.conditions)
    for g in tree.condition_groups:
        conditions.extend(g.conditions)
    for c in conditions:
        attrs = c.attribute_conditions if isinstance(c, EventCondition) else [c]
        for a in attrs:
            default = "transactions" if isinstance(c, EventCondition) else "customers"
            dataset = a.dataset or dataset_for_field(a.field, default)
            category = mapping_category(dataset, a.field)
            if category and category != "city" and isinstance(a.value, str) and a.value.strip():
                yield category, a.value
