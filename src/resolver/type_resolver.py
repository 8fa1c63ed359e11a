"""Collations implied by types and by the columns of relations."""
import logging
from typing import TYPE_CHECKING, List, Set

from src.db.models import ObjectType, TypeDescriptor, TypeKind

if TYPE_CHECKING:
    from .dependencies import CollationDependencyResolver

logger = logging.getLogger(__name__)


class TypeResolver:
    """Resolves the collations a type depends on.

    The structural contribution follows a fixed priority, whatever the type
    kind: declared collation, element type, base type, composite relation,
    range subtype. Constraints attached to the type always add to it.
    """

    def __init__(self, context: 'CollationDependencyResolver'):
        self.context = context
        self._active: Set[int] = set()

    def resolve(self, type_id: int) -> List[int]:
        if type_id in self._active:
            # уже обрабатывается выше по стеку, внешний вызов всё соберёт
            logger.debug("Type %s is already being resolved, skipping", type_id)
            return []

        with self.context.guard.descend(f"type {type_id}"):
            self._active.add(type_id)
            try:
                typ = self.context.catalog.lookup_type(type_id)
                result = self._structural_collations(typ)
                result.extend(self._constraint_collations(type_id))
            finally:
                self._active.discard(type_id)

        logger.debug("Type %s -> %s", type_id, result)
        return result

    def _structural_collations(self, typ: TypeDescriptor) -> List[int]:
        if typ.declared_collation:
            return [typ.declared_collation]
        if typ.element_type:
            return self.resolve(typ.element_type)
        if typ.base_type:
            return self.resolve(typ.base_type)
        if typ.composite_relation:
            return self.context.relations.resolve(typ.composite_relation)
        if typ.is_range:
            return self._range_collations(typ)
        return []

    def _range_collations(self, typ: TypeDescriptor) -> List[int]:
        rng = self.context.catalog.lookup_range(typ.id, is_multirange=typ.kind == TypeKind.MULTIRANGE)
        result = []
        if rng.collation:
            result.append(rng.collation)
        result.extend(self.resolve(rng.subtype))
        return result

    def _constraint_collations(self, type_id: int) -> List[int]:
        """Collations of CHECK constraints attached to the type (domains, mostly)."""
        result = []
        for edge in self.context.catalog.list_constraint_dependents(type_id):
            if edge.referencing_kind != ObjectType.CONSTRAINT:
                continue
            result.extend(self.context.constraints.resolve(edge.referencing_id))
        return result


class RelationResolver:
    """Resolves the collations of every column of a table or composite type."""

    def __init__(self, context: 'CollationDependencyResolver'):
        self.context = context

    def resolve(self, relation_id: int) -> List[int]:
        result = []
        with self.context.guard.descend(f"relation {relation_id}"):
            for attr in self.context.catalog.list_attributes(relation_id):
                # System columns are guaranteed to not rely on any collation.
                if attr.is_system_column:
                    continue
                if attr.explicit_collation:
                    result.append(attr.explicit_collation)
                # nested types can bring their own collations
                result.extend(self.context.types.resolve(attr.type_id))
        return result
