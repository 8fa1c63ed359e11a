"""
Expression and query tree walker.

Collects every collation an expression (or a whole stored query) can observe
directly, plus the collations implied by every type it references. No attempt
is made to prove a collation unused: redundant entries are fine, missing ones
are not.

Dispatch is a closed table keyed by node tag: a tag missing from
``NODE_RULES`` raises ``UnsupportedConstructError``.
"""
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from src.core.exceptions import UnsupportedConstructError
from src.db.models import RECORDOID
from src.nodetree.reader import PgNode

if TYPE_CHECKING:
    from .dependencies import CollationDependencyResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NodeRule:
    """What to collect from one node kind and where its children are.

    Attributes:
        collations: fields holding a single collation OID
        types: fields holding a single type OID
        collation_lists: fields holding a list of collation OIDs
        type_lists: fields holding a list of type OIDs
        children: fields to descend into; ``None`` means every node or list field
    """
    collations: Tuple[str, ...] = ()
    types: Tuple[str, ...] = ()
    collation_lists: Tuple[str, ...] = ()
    type_lists: Tuple[str, ...] = ()
    children: Optional[Tuple[str, ...]] = None


# Nodes with nothing to collect, the generic descent is enough.
STRUCTURAL = NodeRule()

QUERY_CHILDREN = (
    'targetList', 'withCheckOptions', 'onConflict', 'returningList', 'jointree',
    'setOperations', 'havingQual', 'limitOffset', 'limitCount', 'cteList', 'rtable',
    'windowClause', 'sortClause', 'groupClause', 'distinctClause',
)

RTE_CHILDREN = (
    'tablesample', 'subquery', 'joinaliasvars', 'functions', 'tablefunc', 'values_lists',
    'securityQuals',
)

_RESULT = NodeRule(collations=('resultcollid',), types=('resulttype',))
_OPERATOR = NodeRule(collations=('opcollid', 'inputcollid'), types=('opresulttype',))

NODE_RULES: Dict[str, NodeRule] = {
    'VAR': NodeRule(collations=('varcollid',), types=('vartype',)),
    'CONST': NodeRule(collations=('constcollid',), types=('consttype',)),
    'PARAM': NodeRule(collations=('paramcollid',), types=('paramtype',)),
    'FUNCEXPR': NodeRule(collations=('funccollid', 'inputcollid'), types=('funcresulttype',)),
    'OPEXPR': _OPERATOR,
    'DISTINCTEXPR': _OPERATOR,
    'NULLIFEXPR': _OPERATOR,
    'SCALARARRAYOPEXPR': NodeRule(collations=('inputcollid',)),
    'SUBSCRIPTINGREF': NodeRule(collations=('refcollid',), types=('refrestype',)),
    'FIELDSELECT': _RESULT,
    'RELABELTYPE': _RESULT,
    'COERCEVIAIO': _RESULT,
    'ARRAYCOERCEEXPR': _RESULT,
    'CONVERTROWTYPEEXPR': NodeRule(types=('resulttype',)),
    'COERCETODOMAIN': _RESULT,
    'COERCETODOMAINVALUE': NodeRule(collations=('collation',), types=('typeId',)),
    'CASETESTEXPR': NodeRule(collations=('collation',)),
    'COLLATEEXPR': NodeRule(collations=('collOid',)),
    'ROWEXPR': NodeRule(types=('row_typeid',)),
    'ROWCOMPAREEXPR': NodeRule(collation_lists=('inputcollids',)),
    'ARRAYEXPR': NodeRule(collations=('array_collid',), types=('array_typeid',)),
    'CASEEXPR': NodeRule(collations=('casecollid',), types=('casetype',)),
    'COALESCEEXPR': NodeRule(collations=('coalescecollid',), types=('coalescetype',)),
    'MINMAXEXPR': NodeRule(collations=('minmaxcollid', 'inputcollid'), types=('minmaxtype',)),
    'AGGREF': NodeRule(collations=('aggcollid', 'inputcollid'), types=('aggtype',)),
    'WINDOWFUNC': NodeRule(collations=('wincollid', 'inputcollid'), types=('wintype',)),
    'SQLVALUEFUNCTION': NodeRule(types=('type',)),
    'TABLEFUNC': NodeRule(collation_lists=('colcollations',), type_lists=('coltypes',)),
    'RANGETBLFUNCTION': NodeRule(collation_lists=('funccolcollations',),
                                 type_lists=('funccoltypes',)),
    'COMMONTABLEEXPR': NodeRule(collation_lists=('ctecolcollations',),
                                type_lists=('ctecoltypes',)),
    'SETOPERATIONSTMT': NodeRule(collation_lists=('colCollations',), type_lists=('colTypes',)),
    'CTECYCLECLAUSE': NodeRule(collations=('cycle_mark_collation',), types=('cycle_mark_type',)),
    'RANGETBLENTRY': NodeRule(collation_lists=('colcollations',), type_lists=('coltypes',),
                              children=RTE_CHILDREN),
    'QUERY': NodeRule(children=QUERY_CHILDREN),

    'JOINEXPR': STRUCTURAL,
    'FROMEXPR': STRUCTURAL,
    'RANGETBLREF': STRUCTURAL,
    'SORTGROUPCLAUSE': STRUCTURAL,
    'SUBLINK': STRUCTURAL,
    'TABLESAMPLECLAUSE': STRUCTURAL,
    'TARGETENTRY': STRUCTURAL,
    'ALIAS': STRUCTURAL,
    'RANGEVAR': STRUCTURAL,
    'INTOCLAUSE': STRUCTURAL,
    'NAMEDARGEXPR': STRUCTURAL,
    'BOOLEXPR': STRUCTURAL,
    'CASEWHEN': STRUCTURAL,
    'XMLEXPR': STRUCTURAL,
    'NULLTEST': STRUCTURAL,
    'BOOLEANTEST': STRUCTURAL,
    'WINDOWCLAUSE': STRUCTURAL,
    'CTESEARCHCLAUSE': STRUCTURAL,
}


def is_scalar_reference(value: Any) -> bool:
    """True for a bare column reference or literal."""
    return isinstance(value, PgNode) and value.is_a('VAR', 'CONST')


class ExpressionWalker:
    """Walks parsed node trees, collecting collation OIDs."""

    def __init__(self, context: 'CollationDependencyResolver'):
        self.context = context

    def collations(self, tree: Any) -> List[int]:
        """Return the (unsorted, possibly redundant) collations of a tree."""
        collector: List[int] = []
        self.walk(tree, collector)
        return collector

    def walk(self, value: Any, collector: List[int]):
        """Visit ``value`` and everything below it.

        Lists are plain containers; scalar values carry nothing to collect.
        """
        if isinstance(value, list):
            for item in value:
                self.walk(item, collector)
            return
        if not isinstance(value, PgNode):
            return

        rule = NODE_RULES.get(value.tag)
        if rule is None:
            raise UnsupportedConstructError(value.tag)

        with self.context.guard.descend(value.tag):
            self._collect(value, rule, collector)

            # A domain coercion of a plain column or literal adds nothing the
            # coercion itself has not already contributed.
            if value.tag == 'COERCETODOMAIN' and is_scalar_reference(value.get('arg')):
                return

            for child in value.children(rule.children):
                self.walk(child, collector)

    def _collect(self, node: PgNode, rule: NodeRule, collector: List[int]):
        for name in rule.collations:
            self._append_collation(collector, node.get(name))
        for name in rule.collation_lists:
            for oid in node.get(name) or ():
                self._append_collation(collector, oid)
        for name in rule.types:
            self._append_type_collations(collector, node.get(name))
        for name in rule.type_lists:
            for oid in node.get(name) or ():
                self._append_type_collations(collector, oid)

    @staticmethod
    def _append_collation(collector: List[int], oid: Any):
        if oid:
            collector.append(oid)

    def _append_type_collations(self, collector: List[int], type_id: Any):
        # anonymous record types have no catalog structure behind them
        if not type_id or type_id == RECORDOID:
            return
        collector.extend(self.context.types.resolve(type_id))
