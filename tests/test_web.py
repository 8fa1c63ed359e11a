"""Tests for the JSON web endpoints."""
import pytest

from src.nodetree.reader import node
from src.web.app import create_app

from conftest import C_COLLATION, CHECK_NOT_EMPTY, DEFAULT_COLLATION, TEXT


@pytest.fixture
def client(catalog):
    catalog.add_relation(16400, 'users', [(TEXT, DEFAULT_COLLATION)])
    catalog.add_constraint(16410, relation=16400, expression=CHECK_NOT_EMPTY, keys=[1])
    catalog.add_index(16420, 16400, [(1, C_COLLATION)], name='users_name_idx')
    catalog.add_index(16421, 16400, [(None, 0)], expressions=[node('JSONEXPR')],
                      name='users_json_idx')

    app = create_app(lambda: catalog)
    app.config['TESTING'] = True
    return app.test_client()


def test_constraint_collations(client):
    response = client.get('/collations/constraint/16410')

    assert response.status_code == 200
    assert response.get_json() == {
        'object': {'kind': 'constraint', 'oid': 16410},
        'rows': [{'collation': DEFAULT_COLLATION}],
    }


def test_describe(client):
    response = client.get('/collations/index/16420?describe=1')

    payload = response.get_json()
    assert payload['rows'] == [{'collation': C_COLLATION}]
    assert payload['collations'][0]['name'] == 'C'
    assert payload['collations'][0]['version_mismatch'] is False


def test_unknown_kind(client):
    response = client.get('/collations/view/16400')
    assert response.status_code == 400


def test_not_found(client):
    response = client.get('/collations/matview/99')

    assert response.status_code == 404
    assert response.get_json()['code'] == 'NOT_FOUND'


def test_unsupported_construct(client):
    response = client.get('/collations/index/16421')

    assert response.status_code == 422
    assert response.get_json()['details'] == {'tag': 'JSONEXPR'}


def test_graph(client):
    """The broken index stays in the graph as a node with its error."""
    response = client.get('/graph')

    assert response.status_code == 200
    data = response.get_json()
    ids = {n['id'] for n in data['nodes']}
    assert 'index:public.users_json_idx' in ids
    assert 'collation:950' in ids
