"""Shared fixtures: an in-memory catalog seeded with built-in objects."""
import pytest

from src.db.memory import MemoryCatalog
from src.db.models import TypeKind
from src.resolver.dependencies import CollationDependencyResolver

# Built-in OIDs
BOOL = 16
NAME = 19
INT4 = 23
TEXT = 25
OID = 26
TID = 27
XID = 28
CID = 29
INT4_ARRAY = 1007
TEXT_ARRAY = 1009
RECORD = 2249

DEFAULT_COLLATION = 100
C_COLLATION = 950
POSIX_COLLATION = 951

# CHECK (a <> '') on a text column, as PostgreSQL 16 stores it in conbin
CHECK_NOT_EMPTY = (
    "{OPEXPR :opno 531 :opfuncid 157 :opresulttype 16 :opretset false :opcollid 0 "
    ":inputcollid 100 :args ({VAR :varno 1 :varattno 1 :vartype 25 :vartypmod -1 "
    ":varcollid 100 :varnullingrels (b) :varlevelsup 0 :varnosyn 1 :varattnosyn 1 "
    ":location 20} {CONST :consttype 25 :consttypmod -1 :constcollid 100 :constlen -1 "
    ":constbyval false :constisnull false :location 25 :constvalue 4 [ 16 0 0 0 ]}) "
    ":location 22}"
)


@pytest.fixture
def catalog():
    """Catalog with the built-in types and collations."""
    cat = MemoryCatalog()
    for oid in (BOOL, INT4, OID, TID, XID, CID):
        cat.add_type(oid)
    cat.add_type(TEXT, collation=DEFAULT_COLLATION)
    cat.add_type(NAME, collation=C_COLLATION)
    cat.add_type(INT4_ARRAY, TypeKind.ARRAY, element=INT4)
    cat.add_type(TEXT_ARRAY, TypeKind.ARRAY, element=TEXT)
    cat.add_type(RECORD, TypeKind.PSEUDO)

    cat.add_collation(DEFAULT_COLLATION, 'default', provider='d')
    cat.add_collation(C_COLLATION, 'C', provider='c')
    cat.add_collation(POSIX_COLLATION, 'POSIX', provider='c')
    return cat


@pytest.fixture
def resolver(catalog):
    """Resolver over the fixture catalog."""
    return CollationDependencyResolver(catalog)
