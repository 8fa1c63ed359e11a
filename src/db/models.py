"""Catalog object models."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple

INVALID_OID = 0

# anonymous record type, pg_type.dat
RECORDOID = 2249

# CmdType value stored in pg_rewrite.ev_type for ON SELECT rules
CMD_SELECT = "1"


class ObjectType(Enum):
    """Types of database objects."""
    TABLE = "table"
    VIEW = "view"
    MATERIALIZED_VIEW = "materialized_view"
    COMPOSITE_TYPE = "composite_type"
    FUNCTION = "function"
    TYPE = "type"
    INDEX = "index"
    CONSTRAINT = "constraint"
    COLLATION = "collation"
    OTHER = "other"


class TypeKind(Enum):
    """How a type is built, as far as collation sourcing is concerned."""
    SCALAR = "scalar"
    ARRAY = "array"
    DOMAIN = "domain"
    COMPOSITE = "composite"
    RANGE = "range"
    MULTIRANGE = "multirange"
    ENUM = "enum"
    PSEUDO = "pseudo"


# pg_type.typtype -> TypeKind, arrays are detected separately
TYPTYPE_KINDS = {
    "b": TypeKind.SCALAR,
    "c": TypeKind.COMPOSITE,
    "d": TypeKind.DOMAIN,
    "e": TypeKind.ENUM,
    "p": TypeKind.PSEUDO,
    "r": TypeKind.RANGE,
    "m": TypeKind.MULTIRANGE,
}


@dataclass(frozen=True)
class TypeDescriptor:
    """A pg_type row, reduced to what collation sourcing needs."""
    id: int
    kind: TypeKind = TypeKind.SCALAR
    declared_collation: int = INVALID_OID
    element_type: int = INVALID_OID
    base_type: int = INVALID_OID
    composite_relation: int = INVALID_OID

    @property
    def is_range(self) -> bool:
        return self.kind in (TypeKind.RANGE, TypeKind.MULTIRANGE)


@dataclass(frozen=True)
class AttributeDescriptor:
    """A live pg_attribute row."""
    relation_id: int
    position: int
    type_id: int
    explicit_collation: int = INVALID_OID

    @property
    def is_system_column(self) -> bool:
        return self.position < 0


@dataclass(frozen=True)
class ConstraintDescriptor:
    """A pg_constraint row.

    ``serialized_expression`` is the stored ``conbin`` text and
    ``key_attribute_positions`` the ``conkey`` array; either may be missing.
    A key position of 0 is a whole-row reference.
    """
    id: int
    owner_relation: int = INVALID_OID
    owner_type: int = INVALID_OID
    serialized_expression: Any = None
    key_attribute_positions: Optional[Tuple[int, ...]] = None
    name: str = ""


@dataclass(frozen=True)
class IndexKeyColumn:
    """One key column of an index: an attribute or an expression."""
    attribute_position: Optional[int] = None
    explicit_collation: int = INVALID_OID

    @property
    def is_expression(self) -> bool:
        return not self.attribute_position


@dataclass(frozen=True)
class IndexDescriptor:
    """A pg_index row, key columns only (INCLUDE columns are not keys)."""
    id: int
    base_relation: int
    key_columns: Tuple[IndexKeyColumn, ...] = ()
    serialized_expressions: Any = None
    serialized_predicate: Any = None


@dataclass(frozen=True)
class RangeDescriptor:
    """A pg_range row."""
    range_type: int
    subtype: int
    collation: int = INVALID_OID
    multirange_type: int = INVALID_OID


@dataclass(frozen=True)
class RewriteRule:
    """A pg_rewrite row; ``actions`` is the serialized or parsed action list."""
    event: str
    is_instead: bool
    actions: Any = None


@dataclass(frozen=True)
class MaterializedViewDescriptor:
    """A materialized view with its single stored defining query."""
    id: int
    name: str
    defining_query: Any


@dataclass(frozen=True)
class DependencyEdge:
    """A pg_depend row: ``referencing`` depends on ``referenced``."""
    referencing_kind: ObjectType
    referencing_id: int
    referenced_kind: ObjectType
    referenced_id: int
    deptype: str = "n"


@dataclass(frozen=True)
class ObjectRef:
    """A constraint, index or materialized view that can be scanned."""
    obj_type: ObjectType
    oid: int
    name: str
    schema: str = ""

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}" if self.schema else self.name


@dataclass(frozen=True)
class CollationDescriptor:
    """A pg_collation row with recorded and library versions."""
    oid: int
    name: str
    schema: str = ""
    provider: str = ""
    recorded_version: Optional[str] = None
    actual_version: Optional[str] = None

    @property
    def version_mismatch(self) -> bool:
        if self.recorded_version is None or self.actual_version is None:
            return False
        return self.recorded_version != self.actual_version


@dataclass
class ObjectDependencies:
    """Result of resolving one object during a scan."""
    obj: ObjectRef
    collations: List[int] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None
