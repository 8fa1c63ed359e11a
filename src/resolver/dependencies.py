"""
Entry points: collation dependencies of a constraint, an index or a
materialized view.

Every call runs in one catalog snapshot, takes share locks on the relations
it opens and returns the fully normalized result; any error aborts the call
and releases what was acquired.
"""
import logging
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Tuple

from src.config import RESOLVER_CONFIG
from src.core.exceptions import ResourceExhaustedError
from src.db.catalog import CatalogAccessor
from src.db.models import ObjectType
from .normalize import normalize, to_rows
from .objects import ConstraintResolver, IndexResolver, MaterializedViewResolver
from .type_resolver import RelationResolver, TypeResolver
from .walker import ExpressionWalker

logger = logging.getLogger(__name__)


class DepthGuard:
    """Bounds the depth of the mutually recursive resolvers."""

    def __init__(self, max_depth: int):
        self.max_depth = max_depth
        self.path: List[str] = []

    @property
    def depth(self) -> int:
        return len(self.path)

    @contextmanager
    def descend(self, label: str) -> Iterator[None]:
        if len(self.path) >= self.max_depth:
            raise ResourceExhaustedError(self.max_depth, self.path)
        self.path.append(label)
        try:
            yield
        finally:
            self.path.pop()


class CollationDependencyResolver:
    """Wires the resolvers together around one catalog accessor."""

    def __init__(self, catalog: CatalogAccessor, max_depth: int = None):
        self.catalog = catalog
        self.guard = DepthGuard(max_depth or RESOLVER_CONFIG['max_depth'])
        self.walker = ExpressionWalker(self)
        self.types = TypeResolver(self)
        self.relations = RelationResolver(self)
        self.constraints = ConstraintResolver(self)
        self.indexes = IndexResolver(self)
        self.matviews = MaterializedViewResolver(self)

    @contextmanager
    def _call(self, what: str, oid: int) -> Iterator[None]:
        logger.debug("Resolving collation dependencies of %s %s", what, oid)
        with self.catalog.snapshot():
            try:
                yield
            except RecursionError as e:
                raise ResourceExhaustedError(self.guard.max_depth, self.guard.path) from e

    def constraint_collation_dependencies(self, constraint_id: int) -> List[int]:
        with self._call('constraint', constraint_id):
            return normalize(self.constraints.resolve(constraint_id))

    def index_collation_dependencies(self, index_id: int) -> List[int]:
        with self._call('index', index_id):
            # both the index and its table must be locked before the
            # descriptor can be trusted
            self.catalog.lock_relation(index_id)
            index = self.catalog.lookup_index(index_id)
            self.catalog.lock_relation(index.base_relation)
            return normalize(self.indexes.resolve(index))

    def materialized_view_collation_dependencies(self, matview_id: int) -> List[int]:
        with self._call('materialized view', matview_id):
            self.catalog.lock_relation(matview_id)
            view = self.catalog.lookup_materialized_view(matview_id)
            return normalize(self.matviews.resolve(view))

    def entry_point(self, obj_type: ObjectType) -> Callable[[int], List[int]]:
        entry_points: Dict[ObjectType, Callable[[int], List[int]]] = {
            ObjectType.CONSTRAINT: self.constraint_collation_dependencies,
            ObjectType.INDEX: self.index_collation_dependencies,
            ObjectType.MATERIALIZED_VIEW: self.materialized_view_collation_dependencies,
        }
        try:
            return entry_points[obj_type]
        except KeyError:
            raise ValueError(f"no collation dependencies for objects of type {obj_type.value}") from None

    def resolve(self, obj_type: ObjectType, oid: int) -> List[int]:
        return self.entry_point(obj_type)(oid)

    def rows(self, obj_type: ObjectType, oid: int) -> List[Tuple[int]]:
        """Single-column row set, computed in full before it is returned."""
        return to_rows(self.resolve(obj_type, oid))
