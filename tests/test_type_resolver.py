"""Tests for type and relation collation resolution."""
import pytest

from src.core.exceptions import NotFoundError
from src.db.models import ObjectType, TypeKind
from src.nodetree.reader import node

from conftest import (
    BOOL, C_COLLATION, DEFAULT_COLLATION, INT4, INT4_ARRAY, POSIX_COLLATION, TEXT, TEXT_ARRAY,
)


def test_scalar_types(resolver):
    assert resolver.types.resolve(TEXT) == [DEFAULT_COLLATION]
    assert resolver.types.resolve(INT4) == []
    assert resolver.types.resolve(BOOL) == []


def test_array_follows_element(resolver):
    assert resolver.types.resolve(TEXT_ARRAY) == [DEFAULT_COLLATION]
    assert resolver.types.resolve(INT4_ARRAY) == []


def test_unknown_type(resolver):
    with pytest.raises(NotFoundError):
        resolver.types.resolve(424242)


def test_domain_with_constraint(resolver, catalog):
    """A domain adds the collations of its CHECK constraints."""
    catalog.add_type(5000, TypeKind.DOMAIN, base=TEXT)
    check = node('OPEXPR', opresulttype=BOOL, opcollid=0, inputcollid=C_COLLATION, args=[
        node('COERCETODOMAINVALUE', typeId=TEXT, typeMod=-1, collation=DEFAULT_COLLATION),
        node('CONST', consttype=TEXT, constcollid=DEFAULT_COLLATION),
    ])
    catalog.add_constraint(5001, type_id=5000, expression=check)

    assert sorted(set(resolver.types.resolve(5000))) == [DEFAULT_COLLATION, C_COLLATION]


def test_declared_collation_wins(resolver, catalog):
    """A type with its own collation does not look at its base type."""
    catalog.add_type(5000, TypeKind.DOMAIN, collation=POSIX_COLLATION, base=TEXT)
    assert resolver.types.resolve(5000) == [POSIX_COLLATION]


def test_composite_type(resolver, catalog):
    """Composite types collect every column, explicit collations included."""
    catalog.add_relation(6001, 'pair', [(TEXT, C_COLLATION), (INT4, 0)], relkind='c')
    catalog.add_type(6000, TypeKind.COMPOSITE, relation=6001)

    assert sorted(resolver.types.resolve(6000)) == [DEFAULT_COLLATION, C_COLLATION]


def test_table_skips_system_columns(resolver, catalog):
    catalog.add_relation(6101, 't', [(INT4, 0)])
    assert resolver.relations.resolve(6101) == []


def test_range_and_multirange(resolver, catalog):
    """Ranges bring their own collation and the subtype's."""
    catalog.add_type(7000, TypeKind.RANGE)
    catalog.add_type(7001, TypeKind.MULTIRANGE)
    catalog.add_range(7000, subtype=TEXT, collation=C_COLLATION, multirange_type=7001)

    assert sorted(resolver.types.resolve(7000)) == [DEFAULT_COLLATION, C_COLLATION]
    assert sorted(resolver.types.resolve(7001)) == [DEFAULT_COLLATION, C_COLLATION]


def test_range_of_non_collatable(resolver, catalog):
    catalog.add_type(7100, TypeKind.RANGE)
    catalog.add_range(7100, subtype=INT4)
    assert resolver.types.resolve(7100) == []


def test_self_referencing_composite(resolver, catalog):
    """A type reachable from itself is resolved once."""
    catalog.add_type(6200, TypeKind.COMPOSITE, relation=6201)
    catalog.add_relation(6201, 'loop', [(6200, 0), (TEXT, 0)], relkind='c')

    assert resolver.types.resolve(6200) == [DEFAULT_COLLATION]
    assert resolver.guard.depth == 0


def test_non_constraint_dependents_ignored(resolver, catalog):
    catalog.add_dependency(ObjectType.FUNCTION, 9000, TEXT)
    assert resolver.types.resolve(TEXT) == [DEFAULT_COLLATION]
