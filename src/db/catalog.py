"""
Read-only access to the system catalog.

``CatalogAccessor`` is what the resolvers see; ``PgCatalog`` answers it with
SQL over a psycopg2 connection, ``src.db.memory.MemoryCatalog`` from
in-memory dictionaries.
"""
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, List, Optional, Sequence, Union

import psycopg2
import psycopg2.errors
from psycopg2 import sql
from psycopg2.extensions import TRANSACTION_STATUS_IDLE, connection

from src.core.exceptions import CorruptCatalogError, NotFoundError
from src.nodetree.reader import PgNode, read_node_tree
from .models import (
    CMD_SELECT, INVALID_OID, AttributeDescriptor, CollationDescriptor, ConstraintDescriptor,
    DependencyEdge, IndexDescriptor, IndexKeyColumn, MaterializedViewDescriptor, ObjectRef,
    ObjectType, RangeDescriptor, RewriteRule, TypeDescriptor, TypeKind, TYPTYPE_KINDS,
)

logger = logging.getLogger(__name__)

SCANNABLE_TYPES = (ObjectType.CONSTRAINT, ObjectType.INDEX, ObjectType.MATERIALIZED_VIEW)

# pg_depend.classid::regclass -> ObjectType
CATALOG_OBJECT_TYPES = {
    'pg_constraint': ObjectType.CONSTRAINT,
    'pg_class': ObjectType.TABLE,
    'pg_type': ObjectType.TYPE,
    'pg_proc': ObjectType.FUNCTION,
    'pg_collation': ObjectType.COLLATION,
}


class CatalogAccessor(ABC):
    """Point lookups and small scans over the catalog."""

    @abstractmethod
    def lookup_type(self, oid: int) -> TypeDescriptor:
        """Return the type or raise NotFoundError."""

    @abstractmethod
    def list_attributes(self, relation_id: int) -> List[AttributeDescriptor]:
        """Return live attributes ordered by position, system columns included."""

    @abstractmethod
    def lookup_constraint(self, oid: int) -> ConstraintDescriptor:
        """Return the constraint or raise NotFoundError."""

    @abstractmethod
    def lookup_index(self, oid: int) -> IndexDescriptor:
        """Return the index or raise NotFoundError."""

    @abstractmethod
    def lookup_range(self, type_id: int, is_multirange: bool = False) -> RangeDescriptor:
        """Return the pg_range row of a range (or multirange) type."""

    @abstractmethod
    def list_constraint_dependents(self, type_id: int) -> List[DependencyEdge]:
        """Return dependency edges whose referenced object is the given type."""

    @abstractmethod
    def lookup_materialized_view(self, oid: int) -> MaterializedViewDescriptor:
        """Return the view and its defining query.

        Raises:
            NotFoundError: ``oid`` is not a materialized view
            CorruptCatalogError: the rewrite rules are not a single SELECT INSTEAD action
        """

    @abstractmethod
    def lock_relation(self, oid: int):
        """Take a share lock on a relation until the current snapshot ends."""

    @abstractmethod
    def snapshot(self):
        """Context manager: one consistent read snapshot, locks released at exit."""

    @abstractmethod
    def list_objects(self, obj_types: Iterable[ObjectType] = SCANNABLE_TYPES,
                     excluded_schemas: Sequence[str] = ()) -> List[ObjectRef]:
        """Enumerate constraints, indexes and materialized views."""

    @abstractmethod
    def describe_collations(self, oids: Iterable[int]) -> List[CollationDescriptor]:
        """Names and versions of the given collations, ordered by OID."""

    @abstractmethod
    def resolve_relation(self, name_or_oid: Union[str, int]) -> int:
        """Turn a relation name (or an OID in text form) into an OID."""

    def parse_serialized_expression(self, text: Any) -> Any:
        """Parse a stored node tree into PgNode objects."""
        return read_node_tree(text)

    def _materialized_view(self, oid: int, name: str,
                           rules: Sequence[RewriteRule]) -> MaterializedViewDescriptor:
        """Check the rule set of a materialized view and extract its query.

        A materialized view always has exactly one ON SELECT DO INSTEAD rule
        with a single action; anything else is an internal inconsistency.
        """
        if not rules:
            raise CorruptCatalogError(
                f'materialized view "{name}" is missing rewrite information',
                object_type='materialized view', oid=oid)
        if len(rules) > 1:
            raise CorruptCatalogError(f'materialized view "{name}" has too many rules',
                                      object_type='materialized view', oid=oid)

        rule = rules[0]
        if rule.event != CMD_SELECT or not rule.is_instead:
            raise CorruptCatalogError(
                f'the rule for materialized view "{name}" is not a SELECT INSTEAD OF rule',
                object_type='materialized view', oid=oid)

        actions = rule.actions
        if isinstance(actions, str):
            actions = self.parse_serialized_expression(actions)
        if not isinstance(actions, list) or len(actions) != 1:
            raise CorruptCatalogError(
                f'the rule for materialized view "{name}" is not a single action',
                object_type='materialized view', oid=oid)

        query = actions[0]
        if not isinstance(query, PgNode) or not query.is_a('QUERY'):
            raise CorruptCatalogError(
                f'the action of materialized view "{name}" is not a query',
                object_type='materialized view', oid=oid)
        return MaterializedViewDescriptor(id=oid, name=name, defining_query=query)


class PgCatalog(CatalogAccessor):
    """Catalog accessor over a live PostgreSQL connection."""

    def __init__(self, conn: connection):
        """Initialize accessor with database connection."""
        self.conn = conn
        self._snapshot_depth = 0
        self._manual_transaction = False
        # psycopg2 opens a transaction on the first statement; remember when
        # that statement was ours so the transaction is not taken for the caller's
        self._implicit_transaction = False

    def _execute(self, cur, query: str, params: tuple):
        if (not self._snapshot_depth and not self.conn.autocommit
                and self.conn.get_transaction_status() == TRANSACTION_STATUS_IDLE):
            self._implicit_transaction = True
        cur.execute(query, params)

    def _fetchone(self, query: str, params: tuple) -> Optional[tuple]:
        with self.conn.cursor() as cur:
            self._execute(cur, query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, params: tuple) -> List[tuple]:
        with self.conn.cursor() as cur:
            self._execute(cur, query, params)
            return cur.fetchall()

    @contextmanager
    def snapshot(self) -> Iterator['PgCatalog']:
        if self._snapshot_depth:
            self._snapshot_depth += 1
            try:
                yield self
            finally:
                self._snapshot_depth -= 1
            return

        in_transaction = (not self.conn.autocommit
                          and self.conn.get_transaction_status() != TRANSACTION_STATUS_IDLE)
        if in_transaction and self._implicit_transaction:
            # осталась транзакция от наших же запросов вне снимка
            logger.debug("Ending the transaction left by a lookup outside a snapshot")
            self.conn.rollback()
            self._implicit_transaction = False
            in_transaction = False

        if in_transaction:
            # Вызывающий уже открыл транзакцию: работаем в ней, блокировки
            # снимутся при её завершении.
            logger.debug("Reusing the caller's open transaction")
            self._snapshot_depth = 1
            try:
                yield self
            finally:
                self._snapshot_depth = 0
            return

        with self.conn.cursor() as cur:
            if self.conn.autocommit:
                cur.execute("BEGIN ISOLATION LEVEL REPEATABLE READ READ ONLY")
                self._manual_transaction = True
            else:
                cur.execute("SET TRANSACTION ISOLATION LEVEL REPEATABLE READ READ ONLY")

        self._snapshot_depth = 1
        try:
            yield self
        except BaseException:
            self._finish(commit=False)
            raise
        else:
            self._finish(commit=True)
        finally:
            self._snapshot_depth = 0
            self._manual_transaction = False

    def _finish(self, commit: bool):
        self._implicit_transaction = False
        if self._manual_transaction:
            with self.conn.cursor() as cur:
                cur.execute("COMMIT" if commit else "ROLLBACK")
        elif commit:
            self.conn.commit()
        else:
            self.conn.rollback()

    def lock_relation(self, oid: int):
        row = self._fetchone("""
            SELECT c.relkind, c.oid::regclass::text, i.indrelid
            FROM pg_catalog.pg_class c
            LEFT JOIN pg_catalog.pg_index i ON i.indexrelid = c.oid
            WHERE c.oid = %s
        """, (oid,))
        if row is None:
            raise NotFoundError('relation', oid)

        relkind, relname, indrelid = row
        if relkind in ('i', 'I'):
            # LOCK TABLE does not accept indexes; DROP/ALTER INDEX need a
            # conflicting lock on the table, so locking the table is enough.
            logger.debug("Locking table %s for index %s", indrelid, relname)
            self.lock_relation(indrelid)
        elif relkind in ('r', 'p', 'v'):
            logger.debug("Locking %s in ACCESS SHARE mode", relname)
            with self.conn.cursor() as cur:
                cur.execute(sql.SQL("LOCK TABLE ONLY {} IN ACCESS SHARE MODE").format(sql.SQL(relname)))
        elif relkind == 'm':
            # LOCK TABLE refuses materialized views; planning a scan takes the
            # same lock and, unlike executing it, works on unpopulated views.
            logger.debug("Locking materialized view %s", relname)
            with self.conn.cursor() as cur:
                cur.execute(sql.SQL("EXPLAIN SELECT FROM ONLY {}").format(sql.SQL(relname)))
                cur.fetchall()
        else:
            logger.debug("Relation %s (relkind %s) needs no lock", relname, relkind)

    def lookup_type(self, oid: int) -> TypeDescriptor:
        row = self._fetchone("""
            SELECT t.typtype, t.typcollation, t.typelem, t.typbasetype, t.typrelid,
                   t.typelem <> 0 AND t.typlen = -1 AS is_array
            FROM pg_catalog.pg_type t
            WHERE t.oid = %s
        """, (oid,))
        if row is None:
            raise NotFoundError('type', oid)

        typtype, typcollation, typelem, typbasetype, typrelid, is_array = row
        kind = TypeKind.ARRAY if is_array else TYPTYPE_KINDS.get(typtype, TypeKind.SCALAR)
        return TypeDescriptor(id=oid, kind=kind, declared_collation=typcollation or INVALID_OID,
                              element_type=typelem or INVALID_OID,
                              base_type=typbasetype or INVALID_OID,
                              composite_relation=typrelid or INVALID_OID)

    def list_attributes(self, relation_id: int) -> List[AttributeDescriptor]:
        if self._fetchone("SELECT 1 FROM pg_catalog.pg_class WHERE oid = %s", (relation_id,)) is None:
            raise NotFoundError('relation', relation_id)

        rows = self._fetchall("""
            SELECT a.attnum, a.atttypid, a.attcollation
            FROM pg_catalog.pg_attribute a
            WHERE a.attrelid = %s
                AND NOT a.attisdropped
            ORDER BY a.attnum
        """, (relation_id,))
        return [
            AttributeDescriptor(relation_id=relation_id, position=attnum, type_id=atttypid,
                                explicit_collation=attcollation or INVALID_OID)
            for attnum, atttypid, attcollation in rows
        ]

    def lookup_constraint(self, oid: int) -> ConstraintDescriptor:
        row = self._fetchone("""
            SELECT c.conname, c.conrelid, c.contypid, c.conbin, c.conkey
            FROM pg_catalog.pg_constraint c
            WHERE c.oid = %s
        """, (oid,))
        if row is None:
            raise NotFoundError('constraint', oid)

        conname, conrelid, contypid, conbin, conkey = row
        keys = None
        if conkey is not None:
            if not isinstance(conkey, list) or not all(type(k) is int for k in conkey):
                raise CorruptCatalogError("conkey is not a 1-D smallint array",
                                          object_type='constraint', oid=oid)
            keys = tuple(conkey)

        return ConstraintDescriptor(id=oid, name=conname, owner_relation=conrelid or INVALID_OID,
                                    owner_type=contypid or INVALID_OID,
                                    serialized_expression=conbin, key_attribute_positions=keys)

    def lookup_index(self, oid: int) -> IndexDescriptor:
        row = self._fetchone("""
            SELECT i.indrelid, i.indnkeyatts, i.indkey::int2[], i.indcollation::oid[]::int8[],
                   i.indexprs, i.indpred
            FROM pg_catalog.pg_index i
            WHERE i.indexrelid = %s
        """, (oid,))
        if row is None:
            raise NotFoundError('index', oid)

        indrelid, nkeyatts, indkey, indcollation, indexprs, indpred = row
        indkey = indkey or []
        indcollation = indcollation or []
        if len(indkey) < nkeyatts:
            raise CorruptCatalogError(f"indkey has {len(indkey)} entries, expected {nkeyatts}",
                                      object_type='index', oid=oid)

        columns = []
        for i in range(nkeyatts):
            collation = indcollation[i] if i < len(indcollation) else INVALID_OID
            columns.append(IndexKeyColumn(attribute_position=indkey[i] or None,
                                          explicit_collation=collation or INVALID_OID))

        return IndexDescriptor(id=oid, base_relation=indrelid, key_columns=tuple(columns),
                               serialized_expressions=indexprs, serialized_predicate=indpred)

    def lookup_range(self, type_id: int, is_multirange: bool = False) -> RangeDescriptor:
        column = 'rngmultitypid' if is_multirange else 'rngtypid'
        row = self._fetchone(sql.SQL("""
            SELECT r.rngtypid, r.rngsubtype, r.rngcollation, r.rngmultitypid
            FROM pg_catalog.pg_range r
            WHERE r.{} = %s
        """).format(sql.Identifier(column)), (type_id,))
        if row is None:
            raise NotFoundError('range', type_id)

        rngtypid, rngsubtype, rngcollation, rngmultitypid = row
        return RangeDescriptor(range_type=rngtypid, subtype=rngsubtype,
                               collation=rngcollation or INVALID_OID,
                               multirange_type=rngmultitypid or INVALID_OID)

    def list_constraint_dependents(self, type_id: int) -> List[DependencyEdge]:
        rows = self._fetchall("""
            SELECT d.classid::regclass::text, d.objid, d.deptype
            FROM pg_catalog.pg_depend d
            WHERE d.refclassid = 'pg_catalog.pg_type'::regclass
                AND d.refobjid = %s
            ORDER BY d.classid, d.objid
        """, (type_id,))
        return [
            DependencyEdge(referencing_kind=CATALOG_OBJECT_TYPES.get(classname, ObjectType.OTHER),
                           referencing_id=objid, referenced_kind=ObjectType.TYPE,
                           referenced_id=type_id, deptype=deptype)
            for classname, objid, deptype in rows
        ]

    def lookup_materialized_view(self, oid: int) -> MaterializedViewDescriptor:
        row = self._fetchone("SELECT c.relkind, c.relname FROM pg_catalog.pg_class c WHERE c.oid = %s",
                             (oid,))
        if row is None:
            raise NotFoundError('materialized view', oid)
        relkind, relname = row
        if relkind != 'm':
            raise NotFoundError('materialized view', oid, f'"{relname}" is not a materialized view')

        rules = [
            RewriteRule(event=ev_type, is_instead=is_instead, actions=ev_action)
            for ev_type, is_instead, ev_action in self._fetchall("""
                SELECT r.ev_type, r.is_instead, r.ev_action
                FROM pg_catalog.pg_rewrite r
                WHERE r.ev_class = %s
                ORDER BY r.rulename
            """, (oid,))
        ]
        return self._materialized_view(oid, relname, rules)

    def list_objects(self, obj_types: Iterable[ObjectType] = SCANNABLE_TYPES,
                     excluded_schemas: Sequence[str] = ()) -> List[ObjectRef]:
        excluded = list(excluded_schemas)
        objects: List[ObjectRef] = []
        with self.snapshot():
            for obj_type in obj_types:
                if obj_type == ObjectType.CONSTRAINT:
                    query = """
                        SELECT c.oid, c.conname, n.nspname
                        FROM pg_catalog.pg_constraint c
                        JOIN pg_catalog.pg_namespace n ON n.oid = c.connamespace
                        WHERE n.nspname <> ALL(%s::text[])
                        ORDER BY n.nspname, c.conname, c.oid
                    """
                elif obj_type == ObjectType.INDEX:
                    query = """
                        SELECT c.oid, c.relname, n.nspname
                        FROM pg_catalog.pg_index i
                        JOIN pg_catalog.pg_class c ON c.oid = i.indexrelid
                        JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
                        WHERE n.nspname <> ALL(%s::text[])
                        ORDER BY n.nspname, c.relname
                    """
                elif obj_type == ObjectType.MATERIALIZED_VIEW:
                    query = """
                        SELECT c.oid, c.relname, n.nspname
                        FROM pg_catalog.pg_class c
                        JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
                        WHERE c.relkind = 'm'
                            AND n.nspname <> ALL(%s::text[])
                        ORDER BY n.nspname, c.relname
                    """
                else:
                    raise ValueError(f"cannot scan objects of type {obj_type.value}")

                objects.extend(ObjectRef(obj_type=obj_type, oid=oid, name=name, schema=schema)
                               for oid, name, schema in self._fetchall(query, (excluded,)))
        return objects

    def describe_collations(self, oids: Iterable[int]) -> List[CollationDescriptor]:
        oids = sorted(set(oids))
        if not oids:
            return []
        with self.snapshot():
            rows = self._fetchall("""
                SELECT c.oid, c.collname, n.nspname, c.collprovider, c.collversion,
                       pg_catalog.pg_collation_actual_version(c.oid)
                FROM pg_catalog.pg_collation c
                JOIN pg_catalog.pg_namespace n ON n.oid = c.collnamespace
                WHERE c.oid = ANY(%s::oid[])
                ORDER BY c.oid
            """, (oids,))
        return [
            CollationDescriptor(oid=oid, name=name, schema=schema, provider=provider,
                                recorded_version=recorded, actual_version=actual)
            for oid, name, schema, provider, recorded, actual in rows
        ]

    def resolve_relation(self, name_or_oid: Union[str, int]) -> int:
        if isinstance(name_or_oid, int) or str(name_or_oid).isdigit():
            return int(name_or_oid)
        # ошибка приведения к regclass откатывает снимок
        with self.snapshot():
            try:
                row = self._fetchone("SELECT %s::regclass::oid", (name_or_oid,))
            except (psycopg2.errors.UndefinedTable, psycopg2.errors.InvalidSchemaName) as e:
                raise NotFoundError('relation', name_or_oid) from e
        return row[0]
