"""Test database-wide scan functionality."""
import pytest

from src.core.exceptions import UnsupportedConstructError
from src.db.models import ObjectType
from src.nodetree.reader import node
from src.scanner.collector import DependencyCollector, affected_by

from conftest import C_COLLATION, CHECK_NOT_EMPTY, DEFAULT_COLLATION, INT4, POSIX_COLLATION, TEXT


@pytest.fixture
def populated(catalog):
    """Schema with one object of each kind, plus one in an excluded schema."""
    catalog.add_relation(16400, 'users', [(TEXT, DEFAULT_COLLATION), (INT4, 0)])
    catalog.add_constraint(16410, relation=16400, expression=CHECK_NOT_EMPTY, keys=[1],
                           name='users_name_check')
    catalog.add_index(16420, 16400, [(1, C_COLLATION)], name='users_name_idx')
    catalog.add_index(16421, 16400, [(2, 0)], name='users_id_idx')
    catalog.add_materialized_view(
        16430, 'user_names',
        node('QUERY', commandType=1,
             targetList=[node('TARGETENTRY', expr=node('VAR', varno=1, varattno=1, vartype=TEXT,
                                                       varcollid=POSIX_COLLATION))]),
        [(TEXT, POSIX_COLLATION)])
    catalog.add_relation(2600, 'pg_class', [(INT4, 0)], schema='pg_catalog')
    catalog.add_index(2662, 2600, [(1, 0)], name='pg_class_oid_index', schema='pg_catalog')
    return catalog


def test_collect_all(resolver, populated):
    """Every scannable object outside system schemas is resolved."""
    results = DependencyCollector(resolver).collect()

    by_name = {result.obj.qualified_name: result for result in results}
    assert set(by_name) == {'public.users_name_check', 'public.users_name_idx',
                            'public.users_id_idx', 'public.user_names'}
    assert by_name['public.users_name_check'].collations == [DEFAULT_COLLATION]
    assert by_name['public.users_name_idx'].collations == [C_COLLATION]
    assert by_name['public.users_id_idx'].collations == []
    assert by_name['public.user_names'].collations == [DEFAULT_COLLATION, POSIX_COLLATION]
    assert not any(result.failed for result in results)
    # one snapshot per object
    assert populated.snapshots_taken == 4


def test_collect_one_kind(resolver, populated):
    results = DependencyCollector(resolver).collect([ObjectType.MATERIALIZED_VIEW])
    assert [result.obj.oid for result in results] == [16430]


def test_collect_keeps_going(resolver, populated):
    """A broken object is reported, the rest of the scan still runs."""
    populated.add_index(16422, 16400, [(None, 0)], expressions=[node('JSONEXPR')],
                        name='users_json_idx')
    results = DependencyCollector(resolver).collect([ObjectType.INDEX])

    failed = [result for result in results if result.failed]
    assert [result.obj.oid for result in failed] == [16422]
    assert 'UNSUPPORTED_CONSTRUCT' in failed[0].error
    assert len(results) == 3


def test_collect_strict(resolver, populated):
    populated.add_index(16422, 16400, [(None, 0)], expressions=[node('JSONEXPR')],
                        name='users_json_idx')
    with pytest.raises(UnsupportedConstructError):
        DependencyCollector(resolver, strict=True).collect([ObjectType.INDEX])


def test_excluded_schemas(resolver, populated):
    results = DependencyCollector(resolver, excluded_schemas=[]).collect([ObjectType.INDEX])
    assert 'pg_catalog.pg_class_oid_index' in [result.obj.qualified_name for result in results]


def test_affected_by(resolver, populated):
    results = DependencyCollector(resolver).collect()

    affected = affected_by([POSIX_COLLATION, C_COLLATION], results)
    assert sorted(result.obj.oid for result in affected) == [16420, 16430]
    assert affected_by([12345], results) == []
