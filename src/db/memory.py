"""In-memory catalog snapshot, used as a fixture catalog and for offline analysis."""
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from src.core.exceptions import NotFoundError
from src.nodetree.reader import read_node_tree
from .catalog import SCANNABLE_TYPES, CatalogAccessor
from .models import (
    CMD_SELECT, INVALID_OID, AttributeDescriptor, CollationDescriptor, ConstraintDescriptor,
    DependencyEdge, IndexDescriptor, IndexKeyColumn, MaterializedViewDescriptor, ObjectRef, ObjectType,
    RangeDescriptor, RewriteRule, TypeDescriptor, TypeKind,
)

logger = logging.getLogger(__name__)


class MemoryCatalog(CatalogAccessor):
    """Catalog held in dictionaries keyed by OID.

    Stored expressions may be given either as ``pg_node_tree`` text or as
    already built ``PgNode`` trees.
    """

    def __init__(self):
        self.types: Dict[int, TypeDescriptor] = {}
        self.relations: Dict[int, Tuple[str, str, str]] = {}   # oid -> (relkind, name, schema)
        self.attributes: Dict[int, List[AttributeDescriptor]] = {}
        self.constraints: Dict[int, ConstraintDescriptor] = {}
        self.constraint_schemas: Dict[int, str] = {}
        self.indexes: Dict[int, IndexDescriptor] = {}
        self.ranges: List[RangeDescriptor] = []
        self.dependencies: List[DependencyEdge] = []
        self.rules: Dict[int, List[RewriteRule]] = {}
        self.collations: Dict[int, CollationDescriptor] = {}

        self.held_locks: List[int] = []
        self.lock_history: List[int] = []
        self.snapshots_taken = 0
        self._snapshot_depth = 0

    # -- population ---------------------------------------------------------

    def add_type(self, oid: int, kind: TypeKind = TypeKind.SCALAR, collation: int = INVALID_OID,
                 element: int = INVALID_OID, base: int = INVALID_OID,
                 relation: int = INVALID_OID) -> TypeDescriptor:
        typ = TypeDescriptor(id=oid, kind=kind, declared_collation=collation, element_type=element,
                             base_type=base, composite_relation=relation)
        self.types[oid] = typ
        return typ

    def add_relation(self, oid: int, name: str, columns: Sequence[Tuple[int, int]] = (),
                     relkind: str = 'r', schema: str = 'public',
                     system_columns: bool = None) -> List[AttributeDescriptor]:
        """Add a relation with ``columns`` as (type, collation) pairs, numbered from 1.

        Tables get the usual system columns unless ``system_columns`` is False;
        composite types never have them.
        """
        self.relations[oid] = (relkind, name, schema)
        attrs = []
        if system_columns is None:
            system_columns = relkind in ('r', 'p', 'm')
        if system_columns:
            # ctid, xmin, cmin, xmax, cmax, tableoid
            for position, type_id in ((-6, 26), (-5, 29), (-4, 28), (-3, 29), (-2, 28), (-1, 27)):
                attrs.append(AttributeDescriptor(relation_id=oid, position=position, type_id=type_id))
        for position, (type_id, collation) in enumerate(columns, start=1):
            attrs.append(AttributeDescriptor(relation_id=oid, position=position, type_id=type_id,
                                             explicit_collation=collation))
        self.attributes[oid] = sorted(attrs, key=lambda a: a.position)
        return self.attributes[oid]

    def add_constraint(self, oid: int, relation: int = INVALID_OID, type_id: int = INVALID_OID,
                       expression: Any = None, keys: Optional[Sequence[int]] = None,
                       name: str = '', schema: str = 'public') -> ConstraintDescriptor:
        """Add a constraint; a domain constraint also gets its dependency edge."""
        con = ConstraintDescriptor(id=oid, name=name or f"con_{oid}", owner_relation=relation,
                                   owner_type=type_id, serialized_expression=expression,
                                   key_attribute_positions=tuple(keys) if keys is not None else None)
        self.constraints[oid] = con
        self.constraint_schemas[oid] = schema
        if type_id:
            self.add_dependency(ObjectType.CONSTRAINT, oid, type_id, deptype='a')
        return con

    def add_index(self, oid: int, relation: int, columns: Sequence[Tuple[Optional[int], int]],
                  expressions: Any = None, predicate: Any = None, name: str = '',
                  schema: str = 'public') -> IndexDescriptor:
        """Add an index with ``columns`` as (attribute position or None, collation) pairs."""
        self.relations[oid] = ('i', name or f"idx_{oid}", schema)
        index = IndexDescriptor(
            id=oid, base_relation=relation,
            key_columns=tuple(IndexKeyColumn(attribute_position=pos or None, explicit_collation=coll)
                              for pos, coll in columns),
            serialized_expressions=expressions, serialized_predicate=predicate)
        self.indexes[oid] = index
        return index

    def add_range(self, range_type: int, subtype: int, collation: int = INVALID_OID,
                  multirange_type: int = INVALID_OID) -> RangeDescriptor:
        rng = RangeDescriptor(range_type=range_type, subtype=subtype, collation=collation,
                              multirange_type=multirange_type)
        self.ranges.append(rng)
        return rng

    def add_dependency(self, referencing_kind: ObjectType, referencing_id: int, type_id: int,
                       deptype: str = 'n') -> DependencyEdge:
        edge = DependencyEdge(referencing_kind=referencing_kind, referencing_id=referencing_id,
                              referenced_kind=ObjectType.TYPE, referenced_id=type_id, deptype=deptype)
        self.dependencies.append(edge)
        return edge

    def add_materialized_view(self, oid: int, name: str, query: Any,
                              columns: Sequence[Tuple[int, int]] = (), schema: str = 'public'):
        """Add a materialized view whose single ON SELECT rule runs ``query``.

        ``query`` is either a QUERY node or the whole ``ev_action`` text.
        """
        self.add_relation(oid, name, columns, relkind='m', schema=schema)
        actions = query if isinstance(query, str) else [query]
        self.rules[oid] = [RewriteRule(event=CMD_SELECT, is_instead=True, actions=actions)]

    def add_collation(self, oid: int, name: str, provider: str = 'c', schema: str = 'pg_catalog',
                      recorded_version: str = None, actual_version: str = None) -> CollationDescriptor:
        coll = CollationDescriptor(oid=oid, name=name, schema=schema, provider=provider,
                                   recorded_version=recorded_version, actual_version=actual_version)
        self.collations[oid] = coll
        return coll

    # -- CatalogAccessor ----------------------------------------------------

    @contextmanager
    def snapshot(self) -> Iterator['MemoryCatalog']:
        outermost = self._snapshot_depth == 0
        if outermost:
            self.snapshots_taken += 1
        self._snapshot_depth += 1
        try:
            yield self
        finally:
            self._snapshot_depth -= 1
            if outermost:
                logger.debug("Releasing %d lock(s)", len(self.held_locks))
                self.held_locks.clear()

    def lock_relation(self, oid: int):
        if oid not in self.relations:
            raise NotFoundError('relation', oid)
        self.held_locks.append(oid)
        self.lock_history.append(oid)

    def parse_serialized_expression(self, text: Any) -> Any:
        if isinstance(text, str):
            return read_node_tree(text)
        return text

    def lookup_type(self, oid: int) -> TypeDescriptor:
        try:
            return self.types[oid]
        except KeyError:
            raise NotFoundError('type', oid) from None

    def list_attributes(self, relation_id: int) -> List[AttributeDescriptor]:
        if relation_id not in self.attributes:
            raise NotFoundError('relation', relation_id)
        return list(self.attributes[relation_id])

    def lookup_constraint(self, oid: int) -> ConstraintDescriptor:
        try:
            return self.constraints[oid]
        except KeyError:
            raise NotFoundError('constraint', oid) from None

    def lookup_index(self, oid: int) -> IndexDescriptor:
        try:
            return self.indexes[oid]
        except KeyError:
            raise NotFoundError('index', oid) from None

    def lookup_range(self, type_id: int, is_multirange: bool = False) -> RangeDescriptor:
        for rng in self.ranges:
            key = rng.multirange_type if is_multirange else rng.range_type
            if key == type_id:
                return rng
        raise NotFoundError('range', type_id)

    def list_constraint_dependents(self, type_id: int) -> List[DependencyEdge]:
        return [edge for edge in self.dependencies if edge.referenced_id == type_id]

    def lookup_materialized_view(self, oid: int) -> MaterializedViewDescriptor:
        if oid not in self.relations:
            raise NotFoundError('materialized view', oid)
        relkind, name, _ = self.relations[oid]
        if relkind != 'm':
            raise NotFoundError('materialized view', oid, f'"{name}" is not a materialized view')
        return self._materialized_view(oid, name, self.rules.get(oid, []))

    def list_objects(self, obj_types: Iterable[ObjectType] = SCANNABLE_TYPES,
                     excluded_schemas: Sequence[str] = ()) -> List[ObjectRef]:
        objects = []
        for obj_type in obj_types:
            if obj_type == ObjectType.CONSTRAINT:
                found = [ObjectRef(obj_type, oid, con.name, self.constraint_schemas.get(oid, ''))
                         for oid, con in self.constraints.items()]
            elif obj_type == ObjectType.INDEX:
                found = [ObjectRef(obj_type, oid, self.relations[oid][1], self.relations[oid][2])
                         for oid in self.indexes]
            elif obj_type == ObjectType.MATERIALIZED_VIEW:
                found = [ObjectRef(obj_type, oid, name, schema)
                         for oid, (relkind, name, schema) in self.relations.items() if relkind == 'm']
            else:
                raise ValueError(f"cannot scan objects of type {obj_type.value}")
            objects.extend(sorted((ref for ref in found if ref.schema not in excluded_schemas),
                                  key=lambda ref: (ref.schema, ref.name, ref.oid)))
        return objects

    def describe_collations(self, oids: Iterable[int]) -> List[CollationDescriptor]:
        return [self.collations[oid] for oid in sorted(set(oids)) if oid in self.collations]

    def resolve_relation(self, name_or_oid: Union[str, int]) -> int:
        if isinstance(name_or_oid, int) or str(name_or_oid).isdigit():
            return int(name_or_oid)
        schema, _, name = name_or_oid.rpartition('.')
        for oid, (_, relname, relschema) in self.relations.items():
            if relname == name and (not schema or schema == relschema):
                return oid
        raise NotFoundError('relation', name_or_oid)
