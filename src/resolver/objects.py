"""Collations of constraints, indexes and materialized views."""
import logging
from typing import TYPE_CHECKING, Dict, List, Set

from src.core.exceptions import CorruptCatalogError
from src.db.models import (
    AttributeDescriptor, ConstraintDescriptor, IndexDescriptor, MaterializedViewDescriptor,
)

if TYPE_CHECKING:
    from .dependencies import CollationDependencyResolver

logger = logging.getLogger(__name__)


class ConstraintResolver:
    """Collations from a constraint's stored expression and key columns."""

    def __init__(self, context: 'CollationDependencyResolver'):
        self.context = context
        self._active: Set[int] = set()

    def resolve(self, constraint_id: int) -> List[int]:
        if constraint_id in self._active:
            logger.debug("Constraint %s is already being resolved, skipping", constraint_id)
            return []

        with self.context.guard.descend(f"constraint {constraint_id}"):
            self._active.add(constraint_id)
            try:
                constraint = self.context.catalog.lookup_constraint(constraint_id)
                return self.collations(constraint)
            finally:
                self._active.discard(constraint_id)

    def collations(self, constraint: ConstraintDescriptor) -> List[int]:
        catalog = self.context.catalog
        result: List[int] = []

        has_expression = constraint.serialized_expression is not None
        if has_expression:
            expr = catalog.parse_serialized_expression(constraint.serialized_expression)
            self.context.walker.walk(expr, result)

        if constraint.key_attribute_positions is not None:
            if not constraint.owner_relation:
                raise CorruptCatalogError(f"constraint {constraint.id} has key columns but no relation",
                                          object_type='constraint', oid=constraint.id)
            catalog.lock_relation(constraint.owner_relation)
            attributes = _by_position(catalog.list_attributes(constraint.owner_relation))

            for position in constraint.key_attribute_positions:
                if not position:
                    # Whole-row references are covered by the Vars of the expression.
                    if not has_expression:
                        raise CorruptCatalogError(
                            f"constraint {constraint.id} has a whole-row key but no expression",
                            object_type='constraint', oid=constraint.id)
                    continue

                attr = attributes.get(position)
                if attr is None:
                    raise CorruptCatalogError(
                        f"constraint {constraint.id} references missing column {position} "
                        f"of relation {constraint.owner_relation}",
                        object_type='constraint', oid=constraint.id)
                result.extend(self.context.types.resolve(attr.type_id))

        logger.debug("Constraint %s -> %s", constraint.id, result)
        return result


class IndexResolver:
    """Collations from index key columns, key expressions and the predicate."""

    def __init__(self, context: 'CollationDependencyResolver'):
        self.context = context

    def resolve(self, index: IndexDescriptor) -> List[int]:
        catalog = self.context.catalog
        result: List[int] = []

        expressions = []
        if index.serialized_expressions is not None:
            expressions = catalog.parse_serialized_expression(index.serialized_expressions)
            if not isinstance(expressions, list):
                raise CorruptCatalogError(f"expressions of index {index.id} are not a list",
                                          object_type='index', oid=index.id)
        remaining = iter(expressions)

        attributes = None
        for column in index.key_columns:
            if column.is_expression:
                try:
                    expr = next(remaining)
                except StopIteration:
                    raise CorruptCatalogError("too few entries in indexprs list",
                                              object_type='index', oid=index.id) from None
                self.context.walker.walk(expr, result)
                continue

            # An explicit collation replaces the column's own: the index does
            # not depend on the type's collation then.
            if column.explicit_collation:
                result.append(column.explicit_collation)
                continue

            if attributes is None:
                attributes = _by_position(catalog.list_attributes(index.base_relation))
            attr = attributes.get(column.attribute_position)
            if attr is None:
                raise CorruptCatalogError(
                    f"index {index.id} references missing column {column.attribute_position} "
                    f"of relation {index.base_relation}",
                    object_type='index', oid=index.id)
            result.extend(self.context.types.resolve(attr.type_id))

        if index.serialized_predicate is not None:
            predicate = catalog.parse_serialized_expression(index.serialized_predicate)
            self.context.walker.walk(predicate, result)

        logger.debug("Index %s -> %s", index.id, result)
        return result


class MaterializedViewResolver:
    """Collations from the stored defining query of a materialized view."""

    def __init__(self, context: 'CollationDependencyResolver'):
        self.context = context

    def resolve(self, view: MaterializedViewDescriptor) -> List[int]:
        # The stored query was rewritten at definition time but never planned.
        result = self.context.walker.collations(view.defining_query)
        logger.debug("Materialized view %s -> %s", view.name, result)
        return result


def _by_position(attributes: List[AttributeDescriptor]) -> Dict[int, AttributeDescriptor]:
    return {attr.position: attr for attr in attributes}
