"""Tests for the command line interface."""
import json

import pytest

from src.main import main

from conftest import C_COLLATION, CHECK_NOT_EMPTY, DEFAULT_COLLATION, TEXT


@pytest.fixture
def shop(catalog):
    catalog.add_relation(16400, 'users', [(TEXT, DEFAULT_COLLATION)], schema='shop')
    catalog.add_constraint(16410, relation=16400, expression=CHECK_NOT_EMPTY, keys=[1],
                           name='users_name_check', schema='shop')
    catalog.add_index(16420, 16400, [(1, C_COLLATION)], name='users_name_idx', schema='shop')
    catalog.add_collation(12345, 'en-x-icu', provider='i', recorded_version='153.14',
                          actual_version='153.120')
    catalog.add_index(16421, 16400, [(1, 12345)], name='users_name_icu_idx', schema='shop')
    return catalog


def test_constraint_text(shop, capsys):
    assert main(['constraint', '16410'], catalog=shop) == 0
    assert capsys.readouterr().out.strip() == str(DEFAULT_COLLATION)


def test_index_by_name_json(shop, capsys):
    assert main(['--format', 'json', 'index', 'shop.users_name_idx'], catalog=shop) == 0

    report = json.loads(capsys.readouterr().out)
    assert report == {'object': {'kind': 'index', 'oid': 16420}, 'collations': [C_COLLATION]}


def test_describe_shows_version_change(shop, capsys):
    assert main(['--describe', 'index', '16421'], catalog=shop) == 0

    out = capsys.readouterr().out
    assert 'pg_catalog.en-x-icu' in out
    assert '153.14 -> 153.120' in out


def test_constraint_needs_oid(shop, capsys):
    assert main(['constraint', 'users_name_check'], catalog=shop) == 1
    assert 'OID' in capsys.readouterr().err


def test_missing_object(shop, capsys):
    assert main(['matview', 'shop.nothing'], catalog=shop) == 1
    assert 'NOT_FOUND' in capsys.readouterr().err


def test_scan(shop, capsys):
    assert main(['--format', 'json', 'scan', '--collation', '12345'], catalog=shop) == 0

    report = json.loads(capsys.readouterr().out)
    assert [entry['name'] for entry in report['objects']] == ['shop.users_name_icu_idx']


def test_scan_text_and_graph(shop, capsys, tmp_path):
    path = tmp_path / 'deps.png'
    assert main(['scan', '--graph', str(path)], catalog=shop) == 0

    lines = capsys.readouterr().out.splitlines()
    assert 'constraint shop.users_name_check (16410): 100' in lines
    assert path.exists()


def test_bad_config(tmp_path, capsys):
    assert main(['--config', str(tmp_path / 'missing.ini'), 'constraint', '1']) == 1
    assert 'CONFIGURATION_ERROR' in capsys.readouterr().err
