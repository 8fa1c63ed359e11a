"""Test database connection"""
import psycopg2
import pytest

from src.core.exceptions import ConfigurationError
from src.db.connection import DatabaseConnection


class StubConnection:
    def __init__(self, **params):
        self.params = params
        self.closed = 0

    def close(self):
        self.closed = 1


@pytest.fixture
def connect_calls(monkeypatch):
    calls = []

    def connect(**params):
        calls.append(params)
        return StubConnection(**params)

    monkeypatch.setattr(psycopg2, 'connect', connect)
    return calls


def test_connection_params(connect_calls):
    """Empty values are dropped, 'database' is accepted for 'dbname'"""
    db = DatabaseConnection({'host': 'db.local', 'port': '5433', 'database': 'shop',
                             'user': 'scanner', 'password': ''})
    db.connect()

    assert connect_calls == [{'host': 'db.local', 'port': '5433', 'dbname': 'shop',
                              'user': 'scanner', 'application_name': 'collation-dependencies'}]


def test_connection_reused_until_closed(connect_calls):
    db = DatabaseConnection({'dbname': 'shop'})
    first = db.connect()
    assert db.connect() is first

    db.close()
    assert first.closed
    assert db.connect() is not first
    assert len(connect_calls) == 2


def test_context_manager(connect_calls):
    with DatabaseConnection({'dbname': 'shop'}) as conn:
        assert conn.params['dbname'] == 'shop'
    assert conn.closed


def test_from_file(connect_calls, tmp_path):
    path = tmp_path / 'db.ini'
    path.write_text("[database]\nhost = replica\ndbname = shop\n", encoding='utf-8')

    DatabaseConnection.from_file(str(path)).connect()
    assert connect_calls[0]['host'] == 'replica'
    assert connect_calls[0]['dbname'] == 'shop'


def test_from_missing_file(tmp_path):
    with pytest.raises(ConfigurationError):
        DatabaseConnection.from_file(str(tmp_path / 'missing.ini'))
