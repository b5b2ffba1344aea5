
import asyncio
import time

import pytest

from criteria_compiler.values.cache import ResolverCache
from criteria_compiler.values.resolver import CacheOnlyResolver, ValueResolver, similarity
from criteria_compiler.values.rules import apply_rules, capitalize_words, normalize_text
from criteria_compiler.values.store import InMemoryMappingStore, load_csv_mappings

class CountingStore(InMemoryMappingStore):
    def __init__(self, mappings=()):
        super().__init__(mappings)
        self.calls = 0

    def find_exact(self, mapping_type, input_value):
        self.calls += 1
        return super().find_exact(mapping_type, input_value)

class BrokenStore:
    def find_exact(self, mapping_type, input_value):
        raise ConnectionError('mapping table unreachable')

    def list_mappings(self, mapping_type):
        raise ConnectionError('mapping table unreachable')

class SlowStore(InMemoryMappingStore):
    def find_exact(self, mapping_type, input_value):
        time.sleep(0.2)
        return 'SLOW'

def store(*rows):
    return InMemoryMappingStore.from_records(
        {'mapping_type': t, 'input_value': i, 'standard_value': s} for t, i, s in rows)

def test_normalize_text():
    assert normalize_text('  Nữ ') == 'nu'
    assert normalize_text('Đà Nẵng') == 'da nang'
    assert capitalize_words('los angeles') == 'Los Angeles'

def test_gender_rules():
    resolver = ValueResolver()
    assert resolver.resolve('gender', 'Nữ') == 'F'
    assert resolver.resolve('gender', 'nu') == 'F'
    assert resolver.resolve('gender', 'female') == 'F'
    assert resolver.resolve('gender', 'Nam') == 'M'
    assert resolver.resolve('gender', 'male') == 'M'

def test_unmatched_value_passes_through_normalized():
    assert ValueResolver().resolve('gender', 'XYZ') == 'xyz'
    assert ValueResolver().resolve('city', 'san diego') == 'San Diego'

def test_rules_are_idempotent():
    for category, value in [('gender', 'F'), ('gender', 'M'), ('payment_method', 'CASH'),
                            ('payment_method', 'CREDIT_CARD'), ('payment_method', 'BANK_TRANSFER'),
                            ('store_type', 'SUPERMARKET')]:
        assert apply_rules(category, normalize_text(value)) == value

def test_exact_mapping_wins():
    resolver = ValueResolver(store=store(('city', 'HCM', 'Ho Chi Minh City'), ('gender', 'phụ nữ', 'F')))
    assert resolver.resolve('city', 'hcm') == 'Ho Chi Minh City'
    assert resolver.resolve('gender', 'Phụ Nữ') == 'F'

def test_fuzzy_mapping():
    resolver = ValueResolver(store=store(('city', 'sai gon', 'Ho Chi Minh City')))
    assert similarity('saigon', 'sai gon') >= 0.8
    assert resolver.resolve('city', 'Saigon') == 'Ho Chi Minh City'
    assert resolver.resolve('city', 'san diego') == 'San Diego'

def test_fuzzy_tie_keeps_first_mapping():
    resolver = ValueResolver(store=store(('city', 'saigonx', 'First'), ('city', 'saigony', 'Second')))
    assert resolver.resolve('city', 'saigonz') == 'First'

def test_threshold_is_configurable():
    resolver = ValueResolver(store=store(('city', 'sai gon', 'Ho Chi Minh City')), similarity_threshold=0.99)
    assert resolver.resolve('city', 'saigon') == 'Saigon'

def test_results_are_cached():
    counting = CountingStore()
    resolver = ValueResolver(store=counting)
    assert resolver.resolve('gender', 'Nữ') == 'F'
    assert resolver.resolve('gender', 'nữ') == 'F'
    assert counting.calls == 1
    assert ('gender', 'nu') in resolver.cache

def test_broken_store_falls_back_to_rules_without_caching():
    resolver = ValueResolver(store=BrokenStore())
    assert resolver.resolve('gender', 'Nữ') == 'F'
    assert len(resolver.cache) == 0

def test_cache_is_bounded():
    cache = ResolverCache(maxsize=2)
    cache.set('a', '1')
    cache.set('b', '2')
    assert cache.get('a') == '1'
    cache.set('c', '3')
    assert 'b' not in cache
    assert cache.get('a') == '1' and cache.get('c') == '3'
    with pytest.raises(ValueError):
        ResolverCache(maxsize=0)

def test_resolve_async():
    resolver = ValueResolver(store=store(('city', 'hn', 'Hanoi')))
    assert asyncio.run(resolver.resolve_async('city', 'HN', timeout=1.0)) == 'Hanoi'

def test_resolve_async_timeout_uses_rules():
    resolver = ValueResolver(store=SlowStore())
    assert asyncio.run(resolver.resolve_async('gender', 'nữ', timeout=0.01)) == 'F'
    assert len(resolver.cache) == 0

def test_load_csv_mappings(tmp_path):
    path = tmp_path / 'mappings.csv'
    path.write_text('mapping_type,input_value,standard_value\n'
                    'city,TP HCM,Ho Chi Minh City\n'
                    'gender,,F\n', encoding='utf-8')
    loaded = load_csv_mappings(str(path))
    assert loaded.find_exact('city', 'tp hcm') == 'Ho Chi Minh City'
    assert loaded.list_mappings('gender') == []

def test_load_csv_mappings_requires_columns(tmp_path):
    path = tmp_path / 'bad.csv'
    path.write_text('type,value\ncity,hn\n', encoding='utf-8')
    with pytest.raises(ValueError):
        load_csv_mappings(str(path))

def test_standard_value_resolves_to_itself():
    resolver = ValueResolver(store=store(('payment_method', 'momo', 'E_WALLET')))
    assert resolver.resolve('payment_method', 'momo') == 'E_WALLET'
    assert resolver.resolve('payment_method', 'E_WALLET') == 'E_WALLET'
    assert ValueResolver(store=resolver.store).resolve('payment_method', 'e_wallet') == 'E_WALLET'

def test_cache_only_resolver_never_reaches_store():
    counting = CountingStore()
    resolver = ValueResolver(store=counting)
    resolver.cache.set(('payment_method', 'momo'), 'E_WALLET')
    view = CacheOnlyResolver(resolver, [('gender', 'Phụ nữ', 'F'), ('store_type', 'tap hoa', 'STORE')])
    assert view.resolve('payment_method', 'MoMo') == 'E_WALLET'
    assert view.resolve('gender', 'phu nu') == 'F'
    assert view.resolve('store_type', 'store') == 'STORE'
    assert view.resolve('gender', 'nam') == 'M'
    assert view.resolve('payment_method', 'zalopay') == 'zalopay'
    assert counting.calls == 0
    assert ('gender', 'nam') not in resolver.cache
