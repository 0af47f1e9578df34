"""
Tests for StubTap Request Matcher

Tests deterministic stub selection including:
- Priority ordering and most-recent tie-break
- Remaining-use consumption and exhaustion
- Scenario gating
- Query, header, body and path-param matchers (exact, subset, regex)
- Closest-stub diagnostics
- Concurrent consumption through compare-and-swap
"""

import threading

import pytest

from stubtap.common.errors import ConcurrencyConflict, NotFoundError
from stubtap.mock.matcher import RequestMatcher, is_subset, matcher_accepts
from stubtap.mock.models import Matcher, RequestDescriptor, StubDefinition
from stubtap.mock.registry import StubRegistry


@pytest.fixture
def registry():
    """Empty registry."""
    return StubRegistry()


@pytest.fixture
def matcher(registry):
    """Matcher over the registry fixture."""
    return RequestMatcher(registry)


def get(path, **kwargs):
    return RequestDescriptor.build('GET', path, **kwargs)


class TestPriority:
    """Test priority ordering."""

    def test_higher_priority_wins(self, registry, matcher):
        """Test a higher-priority specific stub beats a lower-priority generic one."""
        registry.register(StubDefinition(method='GET', path='/users/{id}', priority=1, id='generic'))
        registry.register(StubDefinition(
            method='GET', path='/users/{id}', priority=10, id='specific',
            matchers=(Matcher(target='path_param', value={'id': '42'}),)
        ))

        assert matcher.match(get('/users/42')).stub.id == 'specific'
        assert matcher.match(get('/users/7')).stub.id == 'generic'

    def test_priority_beats_registration_order(self, registry, matcher):
        """Test an older high-priority stub beats a newer low-priority one."""
        registry.register(StubDefinition(method='GET', path='/a', priority=5, id='old'))
        registry.register(StubDefinition(method='GET', path='/a', priority=0, id='new'))

        assert matcher.match(get('/a')).stub.id == 'old'

    def test_tie_broken_by_most_recent(self, registry, matcher):
        """Test equal priority picks the most recently registered stub."""
        registry.register(StubDefinition(method='GET', path='/a', id='first'))
        registry.register(StubDefinition(method='GET', path='/a', id='second'))

        assert matcher.match(get('/a')).stub.id == 'second'

    def test_match_is_deterministic(self, registry, matcher):
        """Test repeated matching yields the same stub."""
        for n in range(5):
            registry.register(StubDefinition(method='GET', path='/a/{x}', priority=n % 2, id=f's{n}'))

        winners = {matcher.match(get('/a/b')).stub.id for _ in range(20)}

        assert winners == {'s3'}

    def test_path_params_returned(self, registry, matcher):
        """Test bound path params are returned."""
        registry.register(StubDefinition(method='GET', path='/users/{user}/orders/{order}'))

        result = matcher.match(get('/users/u1/orders/o9'))

        assert result.path_params == {'user': 'u1', 'order': 'o9'}
        assert result.to_dict()['path_params'] == {'user': 'u1', 'order': 'o9'}


class TestRemainingUses:
    """Test use consumption."""

    def test_exhaustion_falls_through(self, registry, matcher):
        """Test a limited stub serves its uses, then the unlimited stub takes over."""
        registry.register(StubDefinition(method='GET', path='/flaky', priority=0, id='ok'))
        registry.register(StubDefinition(method='GET', path='/flaky', priority=5, remaining_uses=2, id='fail'))

        ids = [matcher.match(get('/flaky')).stub.id for _ in range(4)]

        assert ids == ['fail', 'fail', 'ok', 'ok']
        assert registry.get('fail').uses_left == 0
        assert registry.get('fail').exhausted is True

    def test_exhausted_only_stub_not_found(self, registry, matcher):
        """Test an exhausted stub no longer matches."""
        registry.register(StubDefinition(method='GET', path='/once', remaining_uses=1))

        matcher.match(get('/once'))

        with pytest.raises(NotFoundError):
            matcher.match(get('/once'))

    def test_zero_uses_never_matches(self, registry, matcher):
        """Test a stub registered with zero uses never matches."""
        registry.register(StubDefinition(method='GET', path='/never', remaining_uses=0))

        with pytest.raises(NotFoundError):
            matcher.match(get('/never'))

    def test_unlimited_stays_unlimited(self, registry, matcher):
        """Test unlimited stubs are never decremented."""
        stub_id = registry.register(StubDefinition(method='GET', path='/a'))

        for _ in range(10):
            matcher.match(get('/a'))

        assert registry.get(stub_id).uses_left == -1

    def test_concurrent_consumption_is_exact(self, registry):
        """Test N uses shared by many threads give exactly N successes."""
        uses, threads_count, attempts = 25, 8, 10
        registry.register(StubDefinition(method='GET', path='/limited', remaining_uses=uses))
        matcher = RequestMatcher(registry, cas_max_retries=1000)
        results = {'ok': 0, 'missing': 0}
        lock = threading.Lock()
        barrier = threading.Barrier(threads_count)

        def worker():
            barrier.wait()
            for _ in range(attempts):
                try:
                    matcher.match(get('/limited'))
                    outcome = 'ok'
                except NotFoundError:
                    outcome = 'missing'
                with lock:
                    results[outcome] += 1

        threads = [threading.Thread(target=worker) for _ in range(threads_count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results['ok'] == uses
        assert results['missing'] == threads_count * attempts - uses
        assert registry.list()[0].uses_left == 0

    def test_cas_contention_raises_conflict(self, registry):
        """Test exhausting CAS retries raises ConcurrencyConflict."""
        stub_id = registry.register(StubDefinition(method='GET', path='/a', remaining_uses=3))
        stub = registry.get(stub_id)
        stub.uses.compare_and_swap = lambda expected, new: False
        matcher = RequestMatcher(registry, cas_max_retries=3)

        with pytest.raises(ConcurrencyConflict):
            matcher.match(get('/a'))


class TestScenarios:
    """Test scenario gating."""

    def test_scenario_stub_only_in_its_scenario(self, registry, matcher):
        """Test non-default stubs are gated by the active scenario."""
        registry.register(StubDefinition(method='GET', path='/cart', id='base'))
        registry.register(StubDefinition(method='GET', path='/cart', scenario='checkout', priority=5, id='checkout'))

        assert matcher.match(get('/cart'), 'default').stub.id == 'base'
        assert matcher.match(get('/cart'), 'checkout').stub.id == 'checkout'
        assert matcher.match(get('/cart'), 'other').stub.id == 'base'

    def test_scenario_only_stub_not_found_elsewhere(self, registry, matcher):
        """Test a scenario-only stub is invisible in other scenarios."""
        registry.register(StubDefinition(method='GET', path='/cart', scenario='checkout'))

        with pytest.raises(NotFoundError):
            matcher.match(get('/cart'), 'default')


class TestMatchers:
    """Test predicate matchers."""

    def test_query_subset(self):
        """Test subset query matching ignores extra params."""
        m = Matcher(target='query', kind='subset', value={'category': 'shoes'})

        assert matcher_accepts(m, get('/p', query={'category': 'shoes', 'page': '2'}), {})
        assert not matcher_accepts(m, get('/p', query={'category': 'hats'}), {})
        assert not matcher_accepts(m, get('/p'), {})

    def test_query_exact_requires_same_keys(self):
        """Test exact query matching rejects extra params."""
        m = Matcher(target='query', kind='exact', value={'category': 'shoes'})

        assert matcher_accepts(m, get('/p', query={'category': 'shoes'}), {})
        assert not matcher_accepts(m, get('/p', query={'category': 'shoes', 'page': '2'}), {})

    def test_query_multi_values(self):
        """Test repeated query params."""
        m = Matcher(target='query', kind='subset', value={'tag': 'b'})

        assert matcher_accepts(m, get('/p', query={'tag': ['a', 'b']}), {})

    def test_query_regex(self):
        """Test regex query matching."""
        m = Matcher(target='query', kind='regex', value={'page': r'^\d+$'})

        assert matcher_accepts(m, get('/p', query={'page': '12'}), {})
        assert not matcher_accepts(m, get('/p', query={'page': 'x'}), {})

    def test_header_case_insensitive(self):
        """Test header names match case-insensitively."""
        m = Matcher(target='header', kind='exact', value={'X-Api-Key': 'secret'})

        assert matcher_accepts(m, get('/p', headers={'x-api-key': 'secret'}), {})
        assert not matcher_accepts(m, get('/p', headers={'X-API-KEY': 'other'}), {})

    def test_header_regex(self):
        """Test regex header matching."""
        m = Matcher(target='header', kind='regex', value={'Authorization': r'^Bearer \w+'})

        assert matcher_accepts(m, get('/p', headers={'Authorization': 'Bearer abc123'}), {})
        assert not matcher_accepts(m, get('/p', headers={'Authorization': 'Basic abc'}), {})

    def test_path_param_regex(self):
        """Test regex path-param matching."""
        m = Matcher(target='path_param', kind='regex', value={'id': r'^\d+$'})

        assert matcher_accepts(m, get('/users/42'), {'id': '42'})
        assert not matcher_accepts(m, get('/users/me'), {'id': 'me'})

    def test_body_exact(self):
        """Test exact body matching."""
        m = Matcher(target='body', kind='exact', value={'name': 'Ada'})
        post = RequestDescriptor.build('POST', '/users', body=b'{"name": "Ada"}')

        assert matcher_accepts(m, post, {})
        assert not matcher_accepts(m, RequestDescriptor.build('POST', '/users', body={'name': 'Ada', 'x': 1}), {})

    def test_body_subset(self):
        """Test subset body matching."""
        m = Matcher(target='body', kind='subset', value={'user': {'role': 'admin'}, 'tags': ['a']})
        body = {'user': {'role': 'admin', 'name': 'Ada'}, 'tags': ['b', 'a'], 'extra': True}

        assert matcher_accepts(m, RequestDescriptor.build('POST', '/u', body=body), {})
        assert not matcher_accepts(m, RequestDescriptor.build('POST', '/u', body={'user': {'role': 'user'}}), {})

    def test_body_regex(self):
        """Test regex over the serialized body."""
        m = Matcher(target='body', kind='regex', value=r'"sku": "A-\d+"')

        assert matcher_accepts(m, RequestDescriptor.build('POST', '/cart', body={'sku': 'A-17'}), {})
        assert not matcher_accepts(m, RequestDescriptor.build('POST', '/cart', body={'sku': 'B-17'}), {})

    def test_body_regex_raw_text(self):
        """Test regex over a non-JSON body."""
        m = Matcher(target='body', kind='regex', value=r'^hello')

        assert matcher_accepts(m, RequestDescriptor.build('POST', '/echo', body=b'hello world'), {})

    def test_all_matchers_required(self, registry, matcher):
        """Test a stub needs every matcher to accept."""
        registry.register(StubDefinition(
            method='GET', path='/p',
            matchers=(
                Matcher(target='query', kind='subset', value={'a': '1'}),
                Matcher(target='header', kind='exact', value={'x-mode': 'test'}),
            )
        ))

        with pytest.raises(NotFoundError):
            matcher.match(get('/p', query={'a': '1'}))
        assert matcher.match(get('/p', query={'a': '1'}, headers={'X-Mode': 'test'}))


class TestIsSubset:
    """Test the recursive subset helper."""

    def test_scalars(self):
        assert is_subset(1, 1)
        assert not is_subset(1, '1')

    def test_nested(self):
        assert is_subset({'a': {'b': 1}}, {'a': {'b': 1, 'c': 2}, 'd': 3})
        assert not is_subset({'a': {'b': 1}}, {'a': 1})

    def test_lists(self):
        assert is_subset([{'id': 1}], [{'id': 2}, {'id': 1, 'x': 0}])
        assert not is_subset([3], [1, 2])


class TestClosestStubs:
    """Test near-miss diagnostics."""

    def test_not_found_lists_closest(self, registry, matcher):
        """Test NotFoundError carries ranked near misses."""
        registry.register(StubDefinition(method='GET', path='/users/{id}', id='get-user'))
        registry.register(StubDefinition(method='POST', path='/users', id='create-user'))
        registry.register(StubDefinition(method='DELETE', path='/orders/{id}/items', id='far'))

        with pytest.raises(NotFoundError) as excinfo:
            matcher.match(RequestDescriptor.build('PUT', '/users/42'))

        closest = excinfo.value.closest
        assert len(closest) == 3
        assert closest[0]['id'] == 'get-user'
        assert any('method' in reason for reason in closest[0]['reasons'])
        assert closest[0]['score'] >= closest[1]['score'] >= closest[2]['score']

    def test_closest_limit(self, registry):
        """Test the number of near misses is capped."""
        for n in range(6):
            registry.register(StubDefinition(method='GET', path=f'/r{n}'))
        matcher = RequestMatcher(registry, closest_limit=2)

        with pytest.raises(NotFoundError) as excinfo:
            matcher.match(get('/nothing/here'))

        assert len(excinfo.value.closest) == 2

    def test_closest_reports_matcher_failures(self, registry, matcher):
        """Test reasons name the failing matcher."""
        registry.register(StubDefinition(
            method='GET', path='/p', matchers=(Matcher(target='query', kind='exact', value={'a': '1'}),)
        ))

        with pytest.raises(NotFoundError) as excinfo:
            matcher.match(get('/p'))

        assert excinfo.value.closest[0]['reasons'] == ['query exact matcher failed']

    def test_closest_never_selects(self, registry, matcher):
        """Test near misses are diagnostic only."""
        registry.register(StubDefinition(method='GET', path='/users/{id}'))

        with pytest.raises(NotFoundError):
            matcher.match(get('/users'))

        assert registry.list()[0].uses_left == -1
