"""
Сбор зависимостей от правил сортировки по всей базе данных
"""
import logging
from typing import Iterable, List, Optional, Sequence

from src.config import SCAN_CONFIG
from src.core.exceptions import CollationDependencyError
from src.db.catalog import SCANNABLE_TYPES, CatalogAccessor
from src.db.models import ObjectDependencies, ObjectRef, ObjectType
from src.resolver.dependencies import CollationDependencyResolver

logger = logging.getLogger(__name__)


class DependencyCollector:
    """Resolves every constraint, index and materialized view of a database."""

    def __init__(self, resolver: CollationDependencyResolver, catalog: CatalogAccessor = None,
                 strict: bool = None, excluded_schemas: Sequence[str] = None):
        self.resolver = resolver
        self.catalog = catalog or resolver.catalog
        self.strict = SCAN_CONFIG['strict'] if strict is None else strict
        self.excluded_schemas = list(SCAN_CONFIG['excluded_schemas']
                                     if excluded_schemas is None else excluded_schemas)

    def collect(self, obj_types: Optional[Iterable[ObjectType]] = None) -> List[ObjectDependencies]:
        """Resolve each object in its own call.

        A failing object is recorded with its error and the scan goes on,
        unless the collector is strict.
        """
        objects = self.catalog.list_objects(tuple(obj_types or SCANNABLE_TYPES), self.excluded_schemas)
        logger.info("Scanning %d object(s)", len(objects))
        return [self.collect_object(obj) for obj in objects]

    def collect_object(self, obj: ObjectRef) -> ObjectDependencies:
        try:
            collations = self.resolver.resolve(obj.obj_type, obj.oid)
        except CollationDependencyError as e:
            if self.strict:
                raise
            logger.warning("Cannot resolve %s %s (%s): %s", obj.obj_type.value,
                           obj.qualified_name, obj.oid, e)
            return ObjectDependencies(obj=obj, error=str(e))
        return ObjectDependencies(obj=obj, collations=collations)


def affected_by(collation_ids: Iterable[int],
                results: Iterable[ObjectDependencies]) -> List[ObjectDependencies]:
    """Objects depending on at least one of the given collations."""
    wanted = set(collation_ids)
    return [result for result in results if wanted.intersection(result.collations)]
