"""
Tests for StubTap Mock Server

Tests the FastAPI adapter including:
- Catch-all mock route and debug headers
- Admin API for stubs, scenarios, the request log and metrics
- Contract upload and contract-backed stubs
- Error translation (400 / 404)
- Server construction from files
"""

import json

import pytest
import yaml
from fastapi.testclient import TestClient

from stubtap.mock.engine import MockConfig, MockEngine
from stubtap.mock.server import MockServer, create_app, create_mock_server


@pytest.fixture
def sample_stubs():
    """Stub definitions used across server tests."""
    return [
        {
            'id': 'get-user',
            'method': 'GET',
            'path': '/users/{id}',
            'response': {
                'status': 200,
                'headers': {'X-Source': 'stub'},
                'body': {'id': '{{request.path_params.id}}', 'name': 'Ada'}
            }
        },
        {
            'id': 'create-user',
            'method': 'POST',
            'path': '/users',
            'body': {'role': 'admin'},
            'body_match': 'subset',
            'response': {'status': 201, 'body': {'created': '{{request.body.name}}'}}
        },
    ]


@pytest.fixture
def engine(sample_stubs):
    """Engine preloaded with the sample stubs."""
    engine = MockEngine(MockConfig(seed=1))
    for stub in sample_stubs:
        engine.register_stub(stub)
    return engine


@pytest.fixture
def client(engine):
    return TestClient(create_app(engine))


class TestMockRoute:
    """Test the catch-all mock route."""

    def test_matched_get(self, client):
        """Test a matched request returns the rendered stub response."""
        response = client.get('/users/42')

        assert response.status_code == 200
        assert response.json() == {'id': '42', 'name': 'Ada'}
        assert response.headers['x-source'] == 'stub'
        assert response.headers['x-stubtap-stub-id'] == 'get-user'
        assert response.headers['x-stubtap-scenario'] == 'default'

    def test_matched_post_body(self, client):
        """Test body matchers and request-body templating."""
        response = client.post('/users', json={'name': 'Grace', 'role': 'admin'})

        assert response.status_code == 201
        assert response.json() == {'created': 'Grace'}

    def test_unmatched_returns_diagnostics(self, client):
        """Test unmatched requests get a 404 explaining near misses."""
        response = client.post('/users', json={'name': 'Grace', 'role': 'member'})

        assert response.status_code == 404
        data = response.json()
        assert data['error'] == 'No matching stub'
        assert data['closest_stubs'][0]['id'] == 'create-user'
        assert 'x-stubtap-stub-id' not in response.headers

    def test_query_string_reaches_matchers(self, engine, client):
        """Test query parameters are passed through."""
        engine.register_stub({
            'method': 'GET', 'path': '/search', 'query': {'tag': 'b'},
            'response': {'body': {'q': '{{request.query.tag}}'}}
        })

        assert client.get('/search?tag=a&tag=b').json() == {'q': ['a', 'b']}
        assert client.get('/search?tag=c').status_code == 404

    def test_render_failure_is_server_error(self, engine, client):
        """Test a stub that fails to render answers 500, not 400, and is logged."""
        engine.register_stub({
            'id': 'broken', 'method': 'GET', 'path': '/total',
            'response': {'actions': [
                {'type': 'invoke', 'target': 'body.total', 'function': 'add', 'args': ['{{request.query.n}}']}
            ]}
        })

        response = client.get('/total')

        assert response.status_code == 500
        assert response.json()['stub_id'] == 'broken'
        assert response.headers['x-stubtap-stub-id'] == 'broken'
        assert client.get('/__admin__/requests', params={'stub_id': 'broken'}).json()['total'] == 1


class TestStubAdmin:
    """Test stub administration."""

    def test_list_stubs(self, client):
        response = client.get('/__admin__/stubs')

        assert response.status_code == 200
        data = response.json()
        assert data['total'] == 2
        assert [s['id'] for s in data['stubs']] == ['get-user', 'create-user']

    def test_list_stubs_filtered(self, client):
        data = client.get('/__admin__/stubs', params={'method': 'post'}).json()

        assert [s['id'] for s in data['stubs']] == ['create-user']

    def test_create_stub(self, client):
        """Test registering a stub over HTTP."""
        response = client.post('/__admin__/stubs', json={
            'method': 'GET', 'path': '/ping', 'response': {'body': 'pong'}
        })

        assert response.status_code == 201
        stub_id = response.json()['id']
        assert client.get('/ping').text == 'pong'
        assert client.get(f'/__admin__/stubs/{stub_id}').json()['path'] == '/ping'

    def test_create_stub_list(self, client):
        response = client.post('/__admin__/stubs', json=[
            {'method': 'GET', 'path': '/a'},
            {'method': 'GET', 'path': '/b'},
        ])

        assert response.status_code == 201
        assert len(response.json()['ids']) == 2

    def test_invalid_stub_is_400(self, client):
        response = client.post('/__admin__/stubs', json={'method': 'GET', 'path': 'no-slash'})

        assert response.status_code == 400
        assert response.json()['error'] == 'validation'

    def test_malformed_json_is_400(self, client):
        response = client.post(
            '/__admin__/stubs', content=b'{not json', headers={'Content-Type': 'application/json'}
        )

        assert response.status_code == 400

    def test_delete_stub(self, client):
        assert client.delete('/__admin__/stubs/get-user').status_code == 200
        assert client.get('/users/1').status_code == 404
        assert client.delete('/__admin__/stubs/get-user').status_code == 404

    def test_unknown_stub_is_404(self, client):
        response = client.get('/__admin__/stubs/missing')

        assert response.status_code == 404
        assert response.json()['error'] == 'not_found'


class TestScenarioAdmin:
    """Test scenario administration."""

    def test_switch_scenario(self, engine, client):
        """Test switching the active scenario over HTTP."""
        engine.register_stub({
            'method': 'GET', 'path': '/users/{id}', 'scenario': 'outage', 'priority': 5,
            'response': {'status': 503}
        })

        assert client.get('/__admin__/scenarios/active').json() == {'name': 'default'}
        assert client.put('/__admin__/scenarios/active', json={'name': 'outage'}).status_code == 200
        response = client.get('/users/1')

        assert response.status_code == 503
        assert response.headers['x-stubtap-scenario'] == 'outage'

    def test_switch_to_empty_name_is_400(self, client):
        assert client.put('/__admin__/scenarios/active', json={'name': ''}).status_code == 400
        assert client.put('/__admin__/scenarios/active', json=['x']).status_code == 400

    def test_state_and_reset(self, engine, client):
        """Test reading and resetting scenario state."""
        engine.register_stub({
            'method': 'POST', 'path': '/visits',
            'initial_state': {'visits': 0},
            'state_actions': [{'type': 'invoke', 'target': 'state.visits', 'function': 'add', 'args': ['{{state.visits}}', 1]}]
        })
        client.post('/visits')
        client.post('/visits')

        state = client.get('/__admin__/scenarios/default').json()
        assert state['data'] == {'visits': 2}
        assert state['match_count'] == 2

        assert client.post('/__admin__/scenarios/default/reset').status_code == 200
        assert client.get('/__admin__/scenarios/default').json()['data'] == {'visits': 0}


class TestRequestLogAdmin:
    """Test request log administration."""

    def test_requests_listed_and_filtered(self, client):
        client.get('/users/1')
        client.get('/nowhere')

        all_requests = client.get('/__admin__/requests').json()
        unmatched = client.get('/__admin__/requests', params={'matched': 'false'}).json()
        by_stub = client.get('/__admin__/requests', params={'stub_id': 'get-user'}).json()

        assert all_requests['total'] == 2
        assert [r['request']['path'] for r in unmatched['requests']] == ['/nowhere']
        assert by_stub['requests'][0]['request']['path'] == '/users/1'

    def test_admin_calls_not_logged(self, client):
        client.get('/__admin__/stubs')

        assert client.get('/__admin__/requests').json()['total'] == 0

    def test_clear_requests(self, client):
        client.get('/users/1')

        response = client.delete('/__admin__/requests')

        assert response.json()['cleared_count'] == 1
        assert client.get('/__admin__/requests').json()['total'] == 0


class TestContractAdmin:
    """Test contract upload."""

    def test_upload_and_register(self, client):
        contract = {
            'paths': {'/orders/{id}': {'get': {'responses': {'200': {'body': {'$ref': '#/schemas/Order'}}}}}},
            'schemas': {'Order': {'type': 'object', 'properties': {'total': {'type': 'number', 'minimum': 1}}}}
        }

        response = client.post('/__admin__/contract?register_stubs=true', json=contract)
        order = client.get('/orders/5')

        assert response.status_code == 200
        assert response.json()['operations'] == 1
        assert len(response.json()['stub_ids']) == 1
        assert order.status_code == 200
        assert order.json()['total'] >= 1


class TestMetricsAndReset:
    """Test metrics and global reset."""

    def test_metrics(self, client):
        client.get('/users/1')
        client.get('/nowhere')

        data = client.get('/__admin__/metrics').json()

        assert data['total_requests'] == 2
        assert data['matched_requests'] == 1
        assert 'uptime_seconds' in data

    def test_reset(self, client):
        client.get('/users/1')

        assert client.post('/__admin__/reset').status_code == 200
        assert client.get('/__admin__/stubs').json()['total'] == 0
        assert client.get('/__admin__/metrics').json()['total_requests'] == 0


class TestServerConstruction:
    """Test MockServer and create_mock_server."""

    def test_mock_server_from_files(self, tmp_path, sample_stubs):
        stub_file = tmp_path / 'stubs.json'
        stub_file.write_text(json.dumps({'stubs': sample_stubs}))

        server = MockServer(MockConfig(admin_prefix='/_admin'), stub_file=stub_file)
        client = TestClient(server.get_app())

        assert client.get('/_admin/stubs').json()['total'] == 2
        assert client.get('/users/3').json()['id'] == '3'

    def test_create_mock_server_with_overrides(self, tmp_path, sample_stubs):
        config_file = tmp_path / 'config.yaml'
        config_file.write_text(yaml.safe_dump({'mock': {'active_scenario': 'ci', 'seed': 4}}))
        stub_file = tmp_path / 'stubs.yaml'
        stub_file.write_text(yaml.safe_dump(sample_stubs))

        server = create_mock_server(stub_file, config_file=config_file, seed=8)

        assert server.config.active_scenario == 'ci'
        assert server.config.seed == 8
        assert len(server.engine.list_stubs()) == 2

    def test_missing_stub_file(self):
        with pytest.raises(FileNotFoundError):
            MockServer(stub_file='nonexistent.yaml')
